"""
Certification Lifecycle Engine — pure stage classification and SLA evaluation.

Given a process (anything exposing ``current_stage``, ``wants_physical`` and
``get_stage_timestamp(stage)``; CertificationProcess does), the engine derives:
  - the effective stage sequence (physical stage dropped unless wanted)
  - a completed / current / upcoming state per stage
  - the SLA status of the current stage: ok | warning | overdue | unknown | none

No DB access, no clock reads unless ``now`` is omitted, no mutation. Safe to
call from any number of requests concurrently.

Usage:
    from certtrack.services.lifecycle_engine import evaluate_sla, classify

    states = classify(process)
    result = evaluate_sla(process, sla_table, now=datetime.now(UTC))
"""

import math
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum

from certtrack.models.certification import (
    PHYSICAL_STAGE,
    SLA_DEFAULTS,
    STAGE_ORDER,
    STAGE_REGISTRY,
    TERMINAL_STAGE,
    SLARule,
    Stage,
    StageDefinition,
)
from certtrack.utils.helpers import as_utc


class StageState(str, Enum):
    COMPLETED = "completed"
    CURRENT = "current"
    UPCOMING = "upcoming"


class SLAStatus(str, Enum):
    OK = "ok"
    WARNING = "warning"
    OVERDUE = "overdue"
    UNKNOWN = "unknown"   # current stage has no entry timestamp
    NONE = "none"         # terminal process, nothing to measure


@dataclass(frozen=True)
class SLAEvaluation:
    status: SLAStatus
    stage: Stage
    rule: SLARule
    started_at: datetime | None = None
    deadline: datetime | None = None
    days_elapsed: int | None = None
    days_remaining: int | None = None

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "stage": self.stage.value,
            "days_limit": self.rule.days_limit,
            "warning_days": self.rule.warning_days,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "days_elapsed": self.days_elapsed,
            "days_remaining": self.days_remaining,
        }


# ── Sequence & classification ────────────────────────────────────────────────


def effective_sequence(process) -> list[StageDefinition]:
    """Registry order, minus the physical-certificate stage when not wanted."""
    return [
        d for d in STAGE_REGISTRY
        if not (d.stage == PHYSICAL_STAGE and not process.wants_physical)
    ]


def _anchor_stage(process, sequence: list[StageDefinition]) -> Stage:
    """Stage of *sequence* that stands for the process's current stage.

    Normally the current stage itself. When the current stage was filtered out
    (physical stage after wants_physical was switched off) the nearest
    preceding stage of the sequence takes its place.
    """
    current = process.current_stage
    stages = [d.stage for d in sequence]
    if current in stages:
        return current
    order = STAGE_ORDER[current]
    preceding = [s for s in stages if STAGE_ORDER[s] < order]
    return preceding[-1] if preceding else stages[0]


def classify(process) -> list[tuple[StageDefinition, StageState]]:
    """Classify every stage of the effective sequence.

    index < current → completed, == current → current, > current → upcoming.
    A terminal process has every stage completed and no current stage.
    """
    sequence = effective_sequence(process)
    anchor = _anchor_stage(process, sequence)
    position = [d.stage for d in sequence].index(anchor)
    terminal = anchor == TERMINAL_STAGE

    result = []
    for index, definition in enumerate(sequence):
        if index < position or (terminal and index == position):
            state = StageState.COMPLETED
        elif index == position:
            state = StageState.CURRENT
        else:
            state = StageState.UPCOMING
        result.append((definition, state))
    return result


def current_stage(process) -> Stage:
    """Current stage as positioned in the effective sequence."""
    return _anchor_stage(process, effective_sequence(process))


# ── SLA evaluation ───────────────────────────────────────────────────────────


def resolve_sla_rule(stage: Stage, sla_table: Mapping[Stage, SLARule] | None) -> SLARule:
    """Configured rule for *stage*, falling back to SLA_DEFAULTS.

    Negative values are clamped to zero and the warning window never exceeds
    the limit, so a malformed row cannot invert the classification.
    """
    rule = (sla_table or {}).get(stage) or SLA_DEFAULTS[stage]
    days_limit = max(0, int(rule.days_limit))
    warning_days = min(max(0, int(rule.warning_days)), days_limit)
    return SLARule(days_limit, warning_days)


def days_between(start: datetime, now: datetime) -> int:
    """Whole days elapsed between two absolute instants (floor of hours / 24)."""
    hours = (as_utc(now) - as_utc(start)).total_seconds() / 3600
    return math.floor(hours / 24)


def evaluate_sla(
    process,
    sla_table: Mapping[Stage, SLARule] | None = None,
    now: datetime | None = None,
) -> SLAEvaluation:
    """Evaluate the SLA of the process's current stage.

    Never raises: a terminal process yields ``none``, a missing entry
    timestamp yields ``unknown``.
    """
    stage = current_stage(process)
    rule = resolve_sla_rule(stage, sla_table)

    if stage == TERMINAL_STAGE:
        return SLAEvaluation(status=SLAStatus.NONE, stage=stage, rule=rule)

    started_at = process.get_stage_timestamp(stage)
    if started_at is None:
        return SLAEvaluation(status=SLAStatus.UNKNOWN, stage=stage, rule=rule)

    now = now or datetime.now(UTC)
    days_elapsed = days_between(started_at, now)
    days_remaining = rule.days_limit - days_elapsed

    if days_remaining < 0:
        status = SLAStatus.OVERDUE
    elif days_remaining <= rule.warning_days:
        status = SLAStatus.WARNING
    else:
        status = SLAStatus.OK

    return SLAEvaluation(
        status=status,
        stage=stage,
        rule=rule,
        started_at=started_at,
        deadline=started_at + timedelta(days=rule.days_limit),
        days_elapsed=days_elapsed,
        days_remaining=days_remaining,
    )


def sla_status(
    process,
    sla_table: Mapping[Stage, SLARule] | None = None,
    now: datetime | None = None,
) -> SLAStatus:
    """Shorthand for ``evaluate_sla(...).status``."""
    return evaluate_sla(process, sla_table, now).status


def evaluate(
    process,
    sla_table: Mapping[Stage, SLARule] | None = None,
    now: datetime | None = None,
) -> dict:
    """Stage states plus SLA evaluation in one JSON-ready bundle."""
    return {
        "current_stage": current_stage(process).value,
        "stages": [
            {"stage": definition.stage.value, "state": state.value}
            for definition, state in classify(process)
        ],
        "sla": evaluate_sla(process, sla_table, now).to_dict(),
    }
