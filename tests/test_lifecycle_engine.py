"""
Tests: lifecycle engine — effective sequence, stage classification, SLA evaluation.

Covers:
    - Physical stage filtering by wants_physical
    - completed / current / upcoming classification, terminal process
    - Nearest-preceding anchoring when the stored stage is filtered out
    - SLA scenarios (warning at 5 days, overdue at 8 days, terminal → none)
    - Boundaries: zero elapsed, days_remaining == warning_days, == 0, == -1
    - Missing entry timestamp → unknown; missing SLA row → default
    - Property tests: single current stage, ok → warning → overdue monotonicity

Processes are transient CertificationProcess instances (never flushed);
the engine reads only status, wants_physical and stage timestamps.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from certtrack.models.certification import (
    SLA_DEFAULTS,
    CertificationProcess,
    SLARule,
    Stage,
)
from certtrack.services.lifecycle_engine import (
    SLAStatus,
    StageState,
    classify,
    current_stage,
    days_between,
    effective_sequence,
    evaluate,
    evaluate_sla,
    resolve_sla_rule,
    sla_status,
)

NOW = datetime(2024, 3, 10, 15, 0, tzinfo=UTC)
_fixture_ok = settings(
    max_examples=60,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
    deadline=None,
)


def _process(status: Stage, *, wants_physical: bool = False, **timestamps) -> CertificationProcess:
    timestamps.setdefault("created_at", NOW - timedelta(days=60))
    return CertificationProcess(
        student_id=1,
        status=status.value,
        wants_physical=wants_physical,
        **timestamps,
    )


def _under_review(entered_days_ago: float) -> CertificationProcess:
    return _process(
        Stage.DOCUMENTS_UNDER_REVIEW,
        documents_under_review_at=NOW - timedelta(days=entered_days_ago),
    )


# ── Effective sequence ───────────────────────────────────────────────────────


@pytest.mark.unit
def test_physical_stage_absent_when_not_wanted():
    stages = [d.stage for d in effective_sequence(_process(Stage.WELCOME))]
    assert Stage.PHYSICAL_CERTIFICATE_SENT not in stages
    assert len(stages) == 7


@pytest.mark.unit
def test_physical_stage_present_when_wanted():
    stages = [d.stage for d in effective_sequence(_process(Stage.WELCOME, wants_physical=True))]
    assert stages == list(Stage)


# ── Classification ───────────────────────────────────────────────────────────


@pytest.mark.unit
def test_classify_positions_relative_to_current():
    process = _process(Stage.DOCUMENTS_REQUESTED)
    states = {d.stage: s for d, s in classify(process)}
    assert states[Stage.WELCOME] is StageState.COMPLETED
    assert states[Stage.EXAM_IN_PROGRESS] is StageState.COMPLETED
    assert states[Stage.DOCUMENTS_REQUESTED] is StageState.CURRENT
    assert states[Stage.DOCUMENTS_UNDER_REVIEW] is StageState.UPCOMING
    assert states[Stage.COMPLETED] is StageState.UPCOMING


@pytest.mark.unit
def test_terminal_process_has_no_current_stage():
    states = [s for _, s in classify(_process(Stage.COMPLETED, wants_physical=True))]
    assert all(s is StageState.COMPLETED for s in states)
    assert len(states) == 8


@pytest.mark.unit
def test_filtered_out_status_anchors_on_preceding_stage():
    """Physical stage stored but wants_physical switched off afterwards."""
    process = _process(Stage.PHYSICAL_CERTIFICATE_SENT, wants_physical=False)
    assert current_stage(process) is Stage.DIGITAL_CERTIFICATE_SENT
    states = {d.stage: s for d, s in classify(process)}
    assert states[Stage.DIGITAL_CERTIFICATE_SENT] is StageState.CURRENT
    assert Stage.PHYSICAL_CERTIFICATE_SENT not in states


# ── SLA scenarios ────────────────────────────────────────────────────────────


@pytest.mark.unit
def test_entered_five_days_ago_is_warning():
    result = evaluate_sla(_under_review(5), {Stage.DOCUMENTS_UNDER_REVIEW: SLARule(7, 2)}, NOW)
    assert result.days_elapsed == 5
    assert result.days_remaining == 2
    assert result.status is SLAStatus.WARNING


@pytest.mark.unit
def test_entered_eight_days_ago_is_overdue():
    result = evaluate_sla(_under_review(8), {Stage.DOCUMENTS_UNDER_REVIEW: SLARule(7, 2)}, NOW)
    assert result.days_remaining == -1
    assert result.status is SLAStatus.OVERDUE


@pytest.mark.unit
def test_digital_stage_without_physical_evaluates_digital_sla():
    process = _process(
        Stage.DIGITAL_CERTIFICATE_SENT,
        digital_certificate_sent_at=NOW - timedelta(days=1),
    )
    result = evaluate_sla(process, None, NOW)
    assert result.stage is Stage.DIGITAL_CERTIFICATE_SENT
    assert result.rule == SLA_DEFAULTS[Stage.DIGITAL_CERTIFICATE_SENT]


@pytest.mark.unit
def test_completed_process_is_none_regardless_of_config():
    process = _process(Stage.COMPLETED, completed_at=NOW - timedelta(days=400))
    table = {Stage.COMPLETED: SLARule(1, 0)}
    assert sla_status(process, table, NOW) is SLAStatus.NONE


@pytest.mark.unit
def test_zero_elapsed_is_ok():
    result = evaluate_sla(_under_review(0), {Stage.DOCUMENTS_UNDER_REVIEW: SLARule(7, 2)}, NOW)
    assert result.days_remaining == 7
    assert result.status is SLAStatus.OK


@pytest.mark.unit
def test_deadline_day_is_warning_and_day_after_is_overdue():
    table = {Stage.DOCUMENTS_UNDER_REVIEW: SLARule(7, 2)}
    assert sla_status(_under_review(7), table, NOW) is SLAStatus.WARNING
    assert sla_status(_under_review(8), table, NOW) is SLAStatus.OVERDUE


@pytest.mark.unit
def test_partial_days_are_floored():
    table = {Stage.DOCUMENTS_UNDER_REVIEW: SLARule(7, 2)}
    result = evaluate_sla(_under_review(4.9), table, NOW)
    assert result.days_elapsed == 4
    assert result.status is SLAStatus.OK


@pytest.mark.unit
def test_missing_entry_timestamp_is_unknown():
    process = _process(Stage.CERTIFICATION_STARTED, certification_started_at=None)
    result = evaluate_sla(process, None, NOW)
    assert result.status is SLAStatus.UNKNOWN
    assert result.days_remaining is None


@pytest.mark.unit
def test_missing_sla_row_falls_back_to_default():
    assert resolve_sla_rule(Stage.EXAM_IN_PROGRESS, {}) == SLA_DEFAULTS[Stage.EXAM_IN_PROGRESS]
    assert resolve_sla_rule(Stage.EXAM_IN_PROGRESS, None) == SLARule(15, 3)


@pytest.mark.unit
def test_warning_window_is_clamped_to_limit():
    assert resolve_sla_rule(Stage.WELCOME, {Stage.WELCOME: SLARule(3, 10)}) == SLARule(3, 3)


@pytest.mark.unit
def test_deadline_is_entry_plus_limit():
    process = _under_review(3)
    result = evaluate_sla(process, {Stage.DOCUMENTS_UNDER_REVIEW: SLARule(7, 2)}, NOW)
    assert result.deadline == process.get_stage_timestamp(Stage.DOCUMENTS_UNDER_REVIEW) + timedelta(days=7)


@pytest.mark.unit
def test_days_between_accepts_naive_utc():
    start = datetime(2024, 1, 1, 0, 0)
    assert days_between(start, datetime(2024, 1, 3, 23, 59, tzinfo=UTC)) == 2


@pytest.mark.unit
def test_evaluate_bundle_shape():
    bundle = evaluate(_under_review(5), None, NOW)
    assert bundle["current_stage"] == "documents_under_review"
    assert len(bundle["stages"]) == 7
    assert bundle["sla"]["status"] == "warning"


# ── Property tests ───────────────────────────────────────────────────────────


@pytest.mark.unit
@_fixture_ok
@given(status=st.sampled_from(list(Stage)), wants_physical=st.booleans())
def test_exactly_one_current_unless_terminal(status, wants_physical):
    process = _process(status, wants_physical=wants_physical)
    states = [s for _, s in classify(process)]
    if status is Stage.COMPLETED:
        assert StageState.CURRENT not in states
        assert sla_status(process, None, NOW) is SLAStatus.NONE
    else:
        assert states.count(StageState.CURRENT) == 1
    if not wants_physical:
        assert len(states) == 7


_RANK = {SLAStatus.OK: 0, SLAStatus.WARNING: 1, SLAStatus.OVERDUE: 2}


@pytest.mark.unit
@_fixture_ok
@given(
    days_limit=st.integers(min_value=0, max_value=120),
    warning_days=st.integers(min_value=0, max_value=120),
    offsets=st.lists(st.integers(min_value=0, max_value=300 * 24), min_size=2, max_size=12),
)
def test_sla_status_is_monotonic_in_elapsed_time(days_limit, warning_days, offsets):
    entered = datetime(2024, 1, 1, 8, 30, tzinfo=UTC)
    process = _process(Stage.DOCUMENTS_UNDER_REVIEW, documents_under_review_at=entered)
    table = {Stage.DOCUMENTS_UNDER_REVIEW: SLARule(days_limit, warning_days)}

    ranks = [
        _RANK[sla_status(process, table, entered + timedelta(hours=h))]
        for h in sorted(offsets)
    ]
    assert ranks == sorted(ranks)
