"""
Message template service — administrator-edited WhatsApp text per stage.

DB rows override DEFAULT_TEMPLATES stage by stage; resetting a stage deletes
its row so the default applies again.

Usage:
    from certtrack.services.template_service import get_template_table, update_templates

    templates = get_template_table()          # {Stage: str} for render_message
    rows = update_templates([{"status": "welcome", "message": "Olá {{nome}}!"}])
"""

import logging

from sqlalchemy import select

from certtrack.core.exceptions import ValidationError
from certtrack.models import db
from certtrack.models.audit import write_audit
from certtrack.models.certification import (
    STAGE_REGISTRY,
    MessageTemplate,
    Stage,
    parse_stage,
)
from certtrack.services.timeline import DEFAULT_TEMPLATES

logger = logging.getLogger(__name__)

# Leaves room for the timeline block under WhatsApp's 4096-character limit.
TEMPLATE_MAX_LENGTH = 3000


def _rows() -> dict[str, MessageTemplate]:
    return {
        row.status: row
        for row in db.session.execute(select(MessageTemplate)).scalars().all()
    }


def get_template_table() -> dict[Stage, str]:
    """Return {Stage: template text} with DB rows merged over the defaults."""
    table = dict(DEFAULT_TEMPLATES)
    for status, row in _rows().items():
        try:
            table[Stage(status)] = row.body
        except ValueError:
            logger.warning("Ignoring message template for unknown stage %r", status)
    return table


def list_templates() -> list[dict]:
    """One entry per stage, in pipeline order, flagged by source (db | default)."""
    rows = _rows()
    result = []
    for definition in STAGE_REGISTRY:
        row = rows.get(definition.stage.value)
        result.append({
            "status": definition.stage.value,
            "label": definition.label,
            "message": row.body if row else DEFAULT_TEMPLATES[definition.stage],
            "source": "db" if row else "default",
        })
    return result


def _validate_updates(updates) -> dict[Stage, str]:
    if not isinstance(updates, list) or not updates:
        raise ValidationError("Template update must be a non-empty list")

    parsed: dict[Stage, str] = {}
    for item in updates:
        if not isinstance(item, dict):
            raise ValidationError("Each template entry must be an object")
        stage = parse_stage(item.get("status"))
        message = item.get("message")
        if not isinstance(message, str):
            raise ValidationError("message must be a string", details={stage.value: "message"})
        if len(message) > TEMPLATE_MAX_LENGTH:
            raise ValidationError(
                f"message must be at most {TEMPLATE_MAX_LENGTH} characters",
                details={stage.value: "message"},
            )
        parsed[stage] = message
    return parsed


def update_templates(updates: list[dict], *, actor: str = "system") -> list[dict]:
    """Upsert template rows atomically; one invalid entry rejects the batch.

    Raises:
        ValidationError, InvalidStageError
    """
    parsed = _validate_updates(updates)
    existing = _rows()

    diff = {}
    try:
        for stage, message in parsed.items():
            row = existing.get(stage.value)
            if row is None:
                row = MessageTemplate(status=stage.value)
                db.session.add(row)
                old = None
            else:
                old = row.body
            row.body = message
            diff[stage.value] = {"old": old, "new": message}

        write_audit(
            entity_type="message_template",
            entity_id="message_templates",
            action="template.update",
            actor=actor,
            diff=diff,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Message templates updated for %d stage(s)", len(parsed),
        extra={"event_type": "template.update"},
    )
    return [row for row in list_templates() if Stage(row["status"]) in parsed]


def reset_templates(statuses=None, *, actor: str = "system") -> list[dict]:
    """Drop overrides so the defaults apply again.

    Args:
        statuses: stage ids to reset; None resets every stage.

    Raises:
        ValidationError, InvalidStageError
    """
    if statuses is None:
        stages = None
    elif isinstance(statuses, list):
        stages = {parse_stage(s) for s in statuses}
    else:
        raise ValidationError("statuses must be a list of stage ids")

    rows = [
        row for row in _rows().values()
        if stages is None or Stage(row.status) in stages
    ]
    if rows:
        try:
            for row in rows:
                db.session.delete(row)
            write_audit(
                entity_type="message_template",
                entity_id="message_templates",
                action="template.reset",
                actor=actor,
                diff={row.status: {"old": row.body, "new": None} for row in rows},
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    logger.info(
        "Message templates reset for %d stage(s)", len(rows),
        extra={"event_type": "template.reset"},
    )
    return list_templates()
