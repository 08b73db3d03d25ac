"""
Progress message composition and dispatch.

Outbound messages go through a MessageTransport. The transport is a thin
collaborator: the service logs and audits its result but never interprets
it further (no retry, no state change on the process).

Transports:
    - LoggingTransport ("log"): writes the message to the application log and
      reports success. Default in every environment.

Without an explicit template the current stage's text comes from
template_service (administrator override, else the built-in default).

Testability: pass a transport instance to send_progress_message() instead of
relying on the configured one.

Usage:
    from certtrack.services.messaging import preview_message, send_progress_message

    text = preview_message(student_id=7)
    result = send_progress_message(7, phone="5511999999999", actor="admin")
"""

import logging
import time

from flask import current_app

from certtrack.core.exceptions import ValidationError
from certtrack.models.audit import write_audit
from certtrack.models import db
from certtrack.services.certification_service import load_process
from certtrack.services.template_service import get_template_table
from certtrack.services.timeline import render_message

logger = logging.getLogger(__name__)


class SendResult:
    """Structured return value from MessageTransport.send().

    Attributes:
        ok:           True if the transport accepted the message.
        transport:    Transport name ("log", …).
        error:        Human-readable error message or None.
        duration_ms:  Dispatch latency in milliseconds.
    """

    def __init__(self, ok: bool, transport: str, error: str | None = None,
                 duration_ms: int = 0) -> None:
        self.ok = ok
        self.transport = transport
        self.error = error
        self.duration_ms = duration_ms

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "transport": self.transport,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


class MessageTransport:
    """Base transport. Subclasses implement _deliver()."""

    name = "base"

    def send(self, phone: str, message: str) -> SendResult:
        start = time.monotonic()
        try:
            self._deliver(phone, message)
        except OSError as exc:
            duration_ms = int((time.monotonic() - start) * 1000)
            logger.error("Message transport %s failed: %s", self.name, exc)
            return SendResult(False, self.name, error=str(exc), duration_ms=duration_ms)
        return SendResult(True, self.name, duration_ms=int((time.monotonic() - start) * 1000))

    def _deliver(self, phone: str, message: str) -> None:
        raise NotImplementedError


class LoggingTransport(MessageTransport):
    """Writes outgoing messages to the log instead of a delivery channel."""

    name = "log"

    def _deliver(self, phone: str, message: str) -> None:
        logger.info(
            "Outgoing message to %s (%d chars)\n%s", _mask_phone(phone), len(message), message,
            extra={"event_type": "message.outgoing"},
        )


_TRANSPORTS = {
    LoggingTransport.name: LoggingTransport,
}


def get_transport(name: str | None = None) -> MessageTransport:
    """Instantiate the transport named by *name* or config MESSAGE_TRANSPORT."""
    name = name or current_app.config.get("MESSAGE_TRANSPORT", LoggingTransport.name)
    try:
        return _TRANSPORTS[name]()
    except KeyError:
        raise ValueError(f"Unknown message transport: {name!r}") from None


def _mask_phone(phone: str) -> str:
    digits = "".join(ch for ch in str(phone or "") if ch.isdigit())
    return f"***{digits[-4:]}" if len(digits) > 4 else "***"


# ═════════════════════════════════════════════════════════════════════════════
# Service functions
# ═════════════════════════════════════════════════════════════════════════════


def preview_message(student_id: int, template: str | None = None) -> str:
    """Expanded template + timeline block; nothing is sent or written."""
    process = load_process(student_id)
    return render_message(
        process, template,
        student_name=process.student.name,
        templates=get_template_table(),
    )


def send_progress_message(
    student_id: int,
    *,
    phone: str | None = None,
    template: str | None = None,
    actor: str = "system",
    transport: MessageTransport | None = None,
) -> dict:
    """Render the progress message and hand it to the transport.

    The phone falls back to the student's registered number.

    Raises:
        NotFoundError: no process for the student.
        ValidationError: no phone number available.
    """
    process = load_process(student_id)
    phone = (phone or process.student.phone or "").strip()
    if not phone:
        raise ValidationError("phone is required to send a message", details={"phone": "required"})

    message = render_message(
        process, template,
        student_name=process.student.name,
        templates=get_template_table(),
    )
    transport = transport or get_transport()
    result = transport.send(phone, message)

    write_audit(
        entity_type="certification_process",
        entity_id=process.id,
        student_id=student_id,
        action="certification.message_sent",
        actor=actor,
        diff={"phone": _mask_phone(phone), "stage": process.status, **result.to_dict()},
    )
    db.session.commit()

    log = logger.info if result.ok else logger.warning
    log(
        "Progress message dispatched via %s: ok=%s", result.transport, result.ok,
        extra={"student_id": student_id, "stage": process.status,
               "event_type": "certification.message_sent"},
    )
    return {"message": message, "result": result.to_dict()}
