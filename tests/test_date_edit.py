"""
Tests: date-edit validator — explicit reference-timezone parsing and single-field edits.

Covers:
    - Naive input interpreted in America/Sao_Paulo (10:00 local → 13:00 UTC)
    - Naive input rejected when an absolute instant was promised
    - Offset-carrying input honoured regardless of the flag
    - Round trip independent of notation (Z / +00:00 / -03:00 / naive)
    - Unknown stage and malformed dates rejected before mutation
    - Only the targeted field changes; status untouched; non-monotonic accepted
    - Batch validation: field-name keys, clearing, welcome cannot be cleared
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime

import pytest

from certtrack.core.exceptions import InvalidStageError, UnparseableDateError, ValidationError
from certtrack.models.certification import CertificationProcess, Stage
from certtrack.services.date_edit import (
    apply_date_edit,
    parse_instant,
    resolve_date_key,
    validate_date_edits,
)

EXPECTED = datetime(2024, 1, 5, 13, 0, tzinfo=UTC)


def _process(status: Stage = Stage.DOCUMENTS_UNDER_REVIEW, **timestamps) -> CertificationProcess:
    timestamps.setdefault("created_at", datetime(2024, 1, 1, 12, 0, tzinfo=UTC))
    return CertificationProcess(student_id=1, status=status.value, wants_physical=False, **timestamps)


# ── parse_instant ────────────────────────────────────────────────────────────


@pytest.mark.unit
def test_naive_input_is_reference_wall_clock():
    assert parse_instant("2024-01-05T10:00", assume_reference_tz=True) == EXPECTED


@pytest.mark.unit
def test_naive_input_rejected_when_absolute_required():
    with pytest.raises(UnparseableDateError):
        parse_instant("2024-01-05T10:00", assume_reference_tz=False)


@pytest.mark.unit
@pytest.mark.parametrize("text", [
    "2024-01-05T13:00:00Z",
    "2024-01-05T13:00:00+00:00",
    "2024-01-05T10:00:00-03:00",
    "2024-01-05T10:00",
])
def test_equivalent_notations_parse_to_same_instant(text):
    assert parse_instant(text, assume_reference_tz=True) == EXPECTED


@pytest.mark.unit
def test_date_only_is_reference_midnight():
    assert parse_instant("2024-01-05", assume_reference_tz=True) == datetime(2024, 1, 5, 3, 0, tzinfo=UTC)
    assert parse_instant(date(2024, 1, 5), assume_reference_tz=True) == datetime(2024, 1, 5, 3, 0, tzinfo=UTC)


@pytest.mark.unit
@pytest.mark.parametrize("value", [
    "", "   ", None, "05/01/2024", "not-a-date", "9999-12-31T23:00", "0001-01-01T00:00:00+05:00",
])
def test_unparseable_values(value):
    with pytest.raises(UnparseableDateError) as exc:
        parse_instant(value, assume_reference_tz=True)
    assert exc.value.code == "ERR_UNPARSEABLE_DATE"


# ── apply_date_edit ──────────────────────────────────────────────────────────


@pytest.mark.unit
def test_apply_edit_round_trip_and_status_untouched():
    process = _process()
    old, new = apply_date_edit(process, "exam_in_progress", "2024-01-05T10:00")
    assert old is None
    assert new == EXPECTED
    assert process.get_stage_timestamp(Stage.EXAM_IN_PROGRESS) == EXPECTED
    assert process.status == "documents_under_review"
    assert process.documents_requested_at is None


@pytest.mark.unit
def test_apply_edit_accepts_field_name_key():
    process = _process()
    apply_date_edit(process, "exam_started_at", "2024-01-05T13:00:00Z")
    assert process.get_stage_timestamp(Stage.EXAM_IN_PROGRESS) == EXPECTED


@pytest.mark.unit
def test_apply_edit_unknown_stage_does_not_mutate():
    process = _process()
    with pytest.raises(InvalidStageError):
        apply_date_edit(process, "shipping", "2024-01-05T10:00")
    assert process.exam_started_at is None


@pytest.mark.unit
def test_apply_edit_bad_date_does_not_mutate():
    process = _process(exam_started_at=datetime(2024, 1, 2, tzinfo=UTC))
    with pytest.raises(UnparseableDateError):
        apply_date_edit(process, "exam_in_progress", "garbage")
    assert process.get_stage_timestamp(Stage.EXAM_IN_PROGRESS) == datetime(2024, 1, 2, tzinfo=UTC)


@pytest.mark.unit
def test_non_monotonic_edit_is_accepted_and_logged(caplog):
    process = _process(documents_requested_at=datetime(2024, 1, 10, tzinfo=UTC))
    with caplog.at_level(logging.WARNING, logger="certtrack.services.date_edit"):
        apply_date_edit(process, "exam_in_progress", "2024-02-01T00:00:00Z")
    assert process.get_stage_timestamp(Stage.EXAM_IN_PROGRESS) == datetime(2024, 2, 1, tzinfo=UTC)
    assert any("Non-monotonic" in r.getMessage() for r in caplog.records)


# ── validate_date_edits ──────────────────────────────────────────────────────


@pytest.mark.unit
def test_resolve_date_key():
    assert resolve_date_key("completed_at") is Stage.COMPLETED
    assert resolve_date_key("completed") is Stage.COMPLETED
    with pytest.raises(InvalidStageError):
        resolve_date_key("completed_on")


@pytest.mark.unit
def test_validate_batch_mixed_keys_and_clear():
    resolved = validate_date_edits({
        "exam_started_at": "2024-01-05T10:00",
        "documents_requested": None,
    })
    assert resolved == {Stage.EXAM_IN_PROGRESS: EXPECTED, Stage.DOCUMENTS_REQUESTED: None}


@pytest.mark.unit
def test_validate_batch_rejects_whole_batch_on_one_bad_entry():
    with pytest.raises(UnparseableDateError):
        validate_date_edits({"exam_in_progress": "2024-01-05T10:00", "completed": "32/13/2024"})


@pytest.mark.unit
def test_welcome_date_cannot_be_cleared():
    with pytest.raises(ValidationError):
        validate_date_edits({"created_at": None})


@pytest.mark.unit
@pytest.mark.parametrize("edits", [{}, [], "2024-01-05"])
def test_validate_batch_requires_non_empty_mapping(edits):
    with pytest.raises(ValidationError):
        validate_date_edits(edits)
