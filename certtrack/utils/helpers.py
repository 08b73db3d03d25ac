"""Shared datetime helpers.

as_utc:              normalise SQLite-naive / tz-aware datetimes to UTC-aware
reference_tz:        resolve the configured reference timezone
format_in_reference: dd/MM/yyyy HH:mm:ss rendering in the reference timezone
"""
from datetime import UTC, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flask import current_app, has_app_context

DEFAULT_REFERENCE_TIMEZONE = "America/Sao_Paulo"

DISPLAY_FORMAT = "%d/%m/%Y %H:%M:%S"


def as_utc(dt: datetime) -> datetime:
    """Normalise a datetime to UTC-aware regardless of whether SQLite stored it naive.

    SQLite's DateTime columns return naive datetimes (stored as UTC);
    PostgreSQL returns tz-aware. Every elapsed-time comparison goes through
    this helper so the same code works in both environments.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def reference_tz(name: str | None = None) -> ZoneInfo:
    """Return the reference timezone.

    Resolution order: explicit *name*, ``REFERENCE_TIMEZONE`` from the active
    Flask app config, then DEFAULT_REFERENCE_TIMEZONE.
    """
    if name is None and has_app_context():
        name = current_app.config.get("REFERENCE_TIMEZONE")
    try:
        return ZoneInfo(name or DEFAULT_REFERENCE_TIMEZONE)
    except ZoneInfoNotFoundError as exc:
        raise ValueError(f"Unknown reference timezone: {name!r}") from exc


def format_in_reference(dt: datetime | None, tz: ZoneInfo | None = None) -> str | None:
    """Format an absolute instant in the reference timezone, seconds precision."""
    if dt is None:
        return None
    return as_utc(dt).astimezone(tz or reference_tz()).strftime(DISPLAY_FORMAT)
