"""
Date-Edit Validator — retroactive correction of stage timestamps.

parse_instant() is the single parsing entry point for user-supplied dates. The
caller states explicitly how naive input is to be read:

    parse_instant("2024-01-05T10:00", assume_reference_tz=True)
        → 10:00 in the reference timezone, normalised to UTC
    parse_instant("2024-01-05T10:00", assume_reference_tz=False)
        → UnparseableDateError (an absolute instant was promised)

Input carrying an explicit offset ("Z", "+00:00", "-03:00") is always honoured.

apply_date_edit() overwrites exactly one stage timestamp. Ordering across
stages is deliberately not enforced (administrators may backdate records);
the lifecycle engine tolerates non-monotonic histories.
"""

import logging
from datetime import UTC, date, datetime
from zoneinfo import ZoneInfo

from certtrack.core.exceptions import UnparseableDateError, ValidationError
from certtrack.models.certification import (
    STAGE_BY_FIELD,
    STAGE_ORDER,
    STAGE_REGISTRY,
    Stage,
    parse_stage,
)
from certtrack.utils.helpers import reference_tz

logger = logging.getLogger(__name__)


def parse_instant(value, *, assume_reference_tz: bool, tz: ZoneInfo | None = None) -> datetime:
    """Parse an ISO-8601 date/datetime into a UTC-aware instant.

    Args:
        value: ISO string, datetime or date.
        assume_reference_tz: interpret naive input in the reference timezone
            (True) or reject it (False).
        tz: reference timezone override; defaults to the configured one.

    Raises:
        UnparseableDateError: empty, malformed, out of range, or naive when not
            allowed.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = str(value or "").strip()
        if not text:
            raise UnparseableDateError(value, "empty value")
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise UnparseableDateError(value, "expected ISO-8601") from None

    if parsed.tzinfo is None:
        if not assume_reference_tz:
            raise UnparseableDateError(value, "missing timezone offset")
        parsed = parsed.replace(tzinfo=tz or reference_tz())

    try:
        return parsed.astimezone(UTC)
    except (OverflowError, ValueError):
        raise UnparseableDateError(value, "out of range") from None


def resolve_date_key(key) -> Stage:
    """Map a stage id or a timestamp field name to its Stage.

    Raises:
        InvalidStageError: neither a stage id nor a tracked field.
    """
    text = str(key).strip()
    if text in STAGE_BY_FIELD:
        return STAGE_BY_FIELD[text]
    return parse_stage(text)


def _check_ordering(process, stage: Stage, new_instant: datetime) -> None:
    """Log (never reject) an edit that breaks monotonic stage order."""
    order = STAGE_ORDER[stage]
    for definition in STAGE_REGISTRY:
        other = process.get_stage_timestamp(definition.stage)
        if other is None or definition.stage == stage:
            continue
        earlier = STAGE_ORDER[definition.stage] < order
        if (earlier and other > new_instant) or (not earlier and other < new_instant):
            logger.warning(
                "Non-monotonic date edit: %s=%s vs %s=%s",
                stage.value, new_instant.isoformat(),
                definition.stage.value, other.isoformat(),
                extra={"student_id": process.student_id, "stage": stage.value,
                       "event_type": "date_edit.non_monotonic"},
            )
            return


def apply_date_edit(
    process,
    stage_id,
    new_instant,
    *,
    assume_reference_tz: bool = True,
    tz: ZoneInfo | None = None,
) -> tuple[datetime | None, datetime]:
    """Overwrite the timestamp of one stage on *process*.

    Only the targeted field changes; ``status`` is never touched.

    Returns:
        (old_value, new_value), both UTC-aware (old may be None).

    Raises:
        InvalidStageError, UnparseableDateError — before any mutation.
    """
    stage = resolve_date_key(stage_id)
    instant = parse_instant(new_instant, assume_reference_tz=assume_reference_tz, tz=tz)

    _check_ordering(process, stage, instant)
    old = process.get_stage_timestamp(stage)
    process.set_stage_timestamp(stage, instant)
    return old, instant


def validate_date_edits(
    edits: dict,
    *,
    assume_reference_tz: bool = True,
    tz: ZoneInfo | None = None,
) -> dict[Stage, datetime | None]:
    """Validate a partial {stage_or_field: value} map without touching any process.

    Every entry is checked before the caller writes anything, so a single bad
    entry rejects the whole batch. ``None`` / empty values mean "clear the
    field", except for the welcome stage whose timestamp is the creation time.

    Raises:
        ValidationError, InvalidStageError, UnparseableDateError.
    """
    if not isinstance(edits, dict) or not edits:
        raise ValidationError("Date edits must be a non-empty object of {stage: date}")

    resolved: dict[Stage, datetime | None] = {}
    for key, value in edits.items():
        stage = resolve_date_key(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            if stage == Stage.WELCOME:
                raise ValidationError(
                    "The welcome date cannot be cleared", details={str(key): "required"},
                )
            resolved[stage] = None
            continue
        resolved[stage] = parse_instant(value, assume_reference_tz=assume_reference_tz, tz=tz)
    return resolved
