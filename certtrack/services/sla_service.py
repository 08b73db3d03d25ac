"""
SLA Table service — per-stage days_limit / warning_days.

DB rows override SLA_DEFAULTS stage by stage; a stage without a row always
evaluates against its default, so the table is never "missing".

Usage:
    from certtrack.services.sla_service import get_sla_table, update_sla_config

    table = get_sla_table()          # {Stage: SLARule} for the engine
    rows = update_sla_config([{"status": "documents_under_review",
                               "days_limit": 7, "warning_days": 2}])
"""

import logging

from sqlalchemy import select

from certtrack.core.exceptions import ValidationError
from certtrack.models import db
from certtrack.models.audit import write_audit
from certtrack.models.certification import (
    SLA_DEFAULTS,
    STAGE_REGISTRY,
    CertificationSLA,
    SLARule,
    Stage,
    parse_stage,
)

logger = logging.getLogger(__name__)


def get_sla_table() -> dict[Stage, SLARule]:
    """Return {Stage: SLARule} with DB rows merged over SLA_DEFAULTS."""
    table = dict(SLA_DEFAULTS)
    rows = db.session.execute(select(CertificationSLA)).scalars().all()
    for row in rows:
        try:
            table[Stage(row.status)] = row.rule
        except ValueError:
            logger.warning("Ignoring SLA row for unknown stage %r", row.status)
    return table


def list_sla_config() -> list[dict]:
    """One entry per stage, in pipeline order, flagged by source (db | default)."""
    rows = {
        row.status: row
        for row in db.session.execute(select(CertificationSLA)).scalars().all()
    }
    result = []
    for definition in STAGE_REGISTRY:
        row = rows.get(definition.stage.value)
        rule = row.rule if row else SLA_DEFAULTS[definition.stage]
        result.append({
            "status": definition.stage.value,
            "label": definition.label,
            "days_limit": rule.days_limit,
            "warning_days": rule.warning_days,
            "source": "db" if row else "default",
        })
    return result


def _parse_non_negative_int(value, field: str, stage: Stage) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", details={stage.value: field})
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(
            f"{field} must be an integer", details={stage.value: field},
        ) from None
    if number < 0:
        raise ValidationError(f"{field} must be ≥ 0", details={stage.value: field})
    return number


def _validate_updates(updates) -> dict[Stage, SLARule]:
    if not isinstance(updates, list) or not updates:
        raise ValidationError("SLA update must be a non-empty list")

    parsed: dict[Stage, SLARule] = {}
    for item in updates:
        if not isinstance(item, dict):
            raise ValidationError("Each SLA entry must be an object")
        stage = parse_stage(item.get("status"))
        days_limit = _parse_non_negative_int(item.get("days_limit"), "days_limit", stage)
        warning_days = _parse_non_negative_int(item.get("warning_days"), "warning_days", stage)
        if warning_days > days_limit:
            logger.warning(
                "SLA warning window exceeds limit for %s (%d > %d); engine clamps it",
                stage.value, warning_days, days_limit,
                extra={"stage": stage.value, "event_type": "sla.warning_exceeds_limit"},
            )
        parsed[stage] = SLARule(days_limit, warning_days)
    return parsed


def update_sla_config(updates: list[dict], *, actor: str = "system") -> list[dict]:
    """Upsert SLA rows atomically.

    All entries are validated first; one invalid entry rejects the batch.

    Raises:
        ValidationError, InvalidStageError
    """
    parsed = _validate_updates(updates)

    existing = {
        row.status: row
        for row in db.session.execute(
            select(CertificationSLA).where(
                CertificationSLA.status.in_([s.value for s in parsed]),
            ).with_for_update()
        ).scalars().all()
    }

    diff = {}
    try:
        for stage, rule in parsed.items():
            row = existing.get(stage.value)
            if row is None:
                row = CertificationSLA(status=stage.value)
                db.session.add(row)
                old = None
            else:
                old = row.rule.to_dict()
            row.days_limit = rule.days_limit
            row.warning_days = rule.warning_days
            diff[stage.value] = {"old": old, "new": rule.to_dict()}

        write_audit(
            entity_type="sla_config",
            entity_id="certification_sla",
            action="sla.update",
            actor=actor,
            diff=diff,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "SLA config updated for %d stage(s)", len(parsed),
        extra={"event_type": "sla.update"},
    )
    rows = db.session.execute(
        select(CertificationSLA).where(CertificationSLA.status.in_([s.value for s in parsed]))
    ).scalars().all()
    by_status = {row.status: row for row in rows}
    return [by_status[stage.value].to_dict() for stage in parsed]
