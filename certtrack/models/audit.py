"""
Certification Tracker
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for lifecycle events.
"""

import json
from datetime import UTC, datetime

from certtrack.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {
    "certification_process",
    "sla_config",
}

AUDIT_ACTIONS = {
    # Certification lifecycle
    "certification.create",
    "certification.advance",
    "certification.regress",
    "certification.date_edit",
    "certification.update",
    "certification.message_sent",
    # SLA table
    "sla.update",
    # Message templates
    "template.update",
    "template.reset",
}


class AuditLog(db.Model):
    """
    Immutable audit trail for every lifecycle event.

    One row per action. ``diff_json`` carries the old→new snapshot
    (``{field: {old, new}}`` for date edits, ``{from, to, at}`` for transitions).
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)

    # Polymorphic entity reference
    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="certification_process | sla_config",
    )
    entity_id = db.Column(
        db.String(36), nullable=False,
        comment="PK of the referenced entity (int-as-string)",
    )
    student_id = db.Column(db.Integer, nullable=True, index=True)

    # What happened
    action = db.Column(
        db.String(60), nullable=False,
        comment="certification.advance | certification.regress | sla.update | …",
    )
    actor = db.Column(db.String(150), nullable=False, default="system")

    # Change payload
    diff_json = db.Column(db.Text, default="{}")

    # Timestamp (immutable)
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "student_id": self.student_id,
            "action": self.action,
            "actor": self.actor,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor: str = "system",
    student_id: int | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row. Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) AuditLog instance.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")

    log = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        student_id=student_id,
        action=action,
        actor=actor or "system",
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
