"""
Structured logging configuration.

Every record emitted while a request is being served is stamped with the
request id, the acting administrator and, on /students/<id>/… routes, the
student id, so service-level lines ("stage updated", "dates edited") can be
correlated with the request that caused them without passing ids around.

- Development: one readable line per record, context appended as key=value
- Production: one JSON object per record (log aggregator compatible)
- LOG_LEVEL / LOG_FORMAT env variables override the defaults
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context, request

# Record attributes carried into the output when present.
CONTEXT_FIELDS = (
    "request_id",
    "actor",
    "student_id",
    "stage",
    "event_type",
    "method",
    "path",
    "status",
    "duration_ms",
)


class RequestContextFilter(logging.Filter):
    """Attach request_id / actor / student_id from the current request.

    Values passed explicitly through ``extra=`` win over the request ones.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not has_request_context():
            return True
        if getattr(record, "request_id", None) is None:
            record.request_id = g.get("request_id")
        if getattr(record, "actor", None) is None:
            record.actor = request.headers.get("X-Actor")
        if getattr(record, "student_id", None) is None:
            record.student_id = (request.view_args or {}).get("student_id")
        return True


def _context(record: logging.LogRecord) -> dict:
    return {
        key: getattr(record, key)
        for key in CONTEXT_FIELDS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(_context(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored single-line format for a developer terminal."""

    _LEVEL_COLORS = {
        logging.DEBUG: 36,
        logging.INFO: 32,
        logging.WARNING: 33,
        logging.ERROR: 31,
        logging.CRITICAL: 35,
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self._LEVEL_COLORS.get(record.levelno, 0)
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        context = _context(record)
        request_id = context.pop("request_id", None)
        duration = context.pop("duration_ms", None)

        line = f"\033[{color}m{ts} {record.levelname:<8}\033[0m "
        if request_id:
            line += f"[{request_id}] "
        line += f"{record.name}: {record.getMessage()}"
        if duration is not None:
            line += f" [{duration:.0f}ms]"
        if context:
            line += " " + " ".join(f"{k}={v}" for k, v in context.items())
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install a single stderr handler on the root logger.

    JSON in production, readable elsewhere, unless LOG_FORMAT says otherwise.
    Level from LOG_LEVEL (default: INFO in production, DEBUG otherwise).
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    log_format = (app.config.get("LOG_FORMAT") or ("json" if is_prod else "readable")).lower()
    formatter = JSONFormatter() if log_format == "json" else ReadableFormatter()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    handler.setLevel(level)
    handler.addFilter(RequestContextFilter())

    root = logging.getLogger()
    # create_app runs more than once per process in tests
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("werkzeug", "sqlalchemy.engine", "flask_limiter"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, log_format)
