"""
Request id + timing middleware.

Assigns g.request_id (inbound X-Request-ID when well-formed, otherwise a new
one) before the view runs, so every log line of the request carries it via
RequestContextFilter. After the view, one access line is logged per API call
and X-Request-ID / X-Request-Duration-Ms are set on the response.
"""

import logging
import re
import time
import uuid

from flask import Flask, current_app, g, request

logger = logging.getLogger(__name__)

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")

# Probed by orchestrators every few seconds
_QUIET_BLUEPRINTS = frozenset({"health"})


def _request_id() -> str:
    inbound = request.headers.get("X-Request-ID", "")
    return inbound if _REQUEST_ID_RE.match(inbound) else uuid.uuid4().hex[:12]


def init_request_timing(app: Flask):
    """Register the request-id and access-log hooks."""

    @app.before_request
    def _start_request():
        g.request_start = time.perf_counter()
        g.request_id = _request_id()

    @app.after_request
    def _finish_request(response):
        start = g.get("request_start")
        if start is None:
            return response

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"

        if request.blueprint in _QUIET_BLUEPRINTS or not request.path.startswith("/api/"):
            return response

        if response.status_code >= 500:
            level = logging.ERROR
        elif duration_ms > current_app.config.get("SLOW_REQUEST_MS", 1000):
            level = logging.WARNING
        else:
            level = logging.INFO
        logger.log(
            level, "%s %s → %d (%.0fms)",
            request.method, request.path, response.status_code, duration_ms,
            extra={
                "method": request.method,
                "path": request.path,
                "status": response.status_code,
                "duration_ms": round(duration_ms, 1),
                "event_type": request.endpoint,
            },
        )
        return response
