"""
Certification Tracker
Certification domain models.

Models:
    - CertificationProcess:  one certification process per student (stage + stage timestamps)
    - CertificationSLA:      administrator-editable SLA per stage (days_limit / warning_days)
    - MessageTemplate:       administrator-edited WhatsApp template per stage

Static definitions:
    - Stage:           tagged enumeration of stage ids, in pipeline order
    - STAGE_REGISTRY:  ordered Stage → (label, timestamp column, optional) table
    - SLA_DEFAULTS:    fallback SLA per stage when no DB row exists

Architecture:
    Student ──1:1──▶ CertificationProcess
    CertificationSLA rows are shared by every process (one row per stage).
    MessageTemplate rows likewise; a stage without a row uses its default text.

Lifecycle:
    welcome → exam_in_progress → documents_requested → documents_under_review
    → certification_started → digital_certificate_sent
    → [physical_certificate_sent, only when wants_physical] → completed
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from certtrack.core.exceptions import InvalidStageError
from certtrack.models import db
from certtrack.utils.helpers import as_utc


# ── Stage Registry ───────────────────────────────────────────────────────────


class Stage(str, Enum):
    WELCOME = "welcome"
    EXAM_IN_PROGRESS = "exam_in_progress"
    DOCUMENTS_REQUESTED = "documents_requested"
    DOCUMENTS_UNDER_REVIEW = "documents_under_review"
    CERTIFICATION_STARTED = "certification_started"
    DIGITAL_CERTIFICATE_SENT = "digital_certificate_sent"
    PHYSICAL_CERTIFICATE_SENT = "physical_certificate_sent"
    COMPLETED = "completed"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class StageDefinition:
    stage: Stage
    label: str
    timestamp_field: str
    optional: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.stage.value,
            "label": self.label,
            "timestamp_field": self.timestamp_field,
            "optional": self.optional,
        }


STAGE_REGISTRY: tuple[StageDefinition, ...] = (
    StageDefinition(Stage.WELCOME, "🎉 Boas-vindas", "created_at"),
    StageDefinition(Stage.EXAM_IN_PROGRESS, "📝 Prova Iniciada", "exam_started_at"),
    StageDefinition(Stage.DOCUMENTS_REQUESTED, "📄 Documentos Solicitados", "documents_requested_at"),
    StageDefinition(Stage.DOCUMENTS_UNDER_REVIEW, "🔍 Documentos em Análise", "documents_under_review_at"),
    StageDefinition(Stage.CERTIFICATION_STARTED, "⚙️ Certificação Iniciada", "certification_started_at"),
    StageDefinition(Stage.DIGITAL_CERTIFICATE_SENT, "📧 Certificado Digital Enviado", "digital_certificate_sent_at"),
    StageDefinition(
        Stage.PHYSICAL_CERTIFICATE_SENT, "📦 Certificado Físico Enviado",
        "physical_certificate_sent_at", optional=True,
    ),
    StageDefinition(Stage.COMPLETED, "✅ Concluído", "completed_at"),
)

STAGE_DEFINITIONS: dict[Stage, StageDefinition] = {d.stage: d for d in STAGE_REGISTRY}
STAGE_ORDER: dict[Stage, int] = {d.stage: i for i, d in enumerate(STAGE_REGISTRY)}
STAGE_BY_FIELD: dict[str, Stage] = {d.timestamp_field: d.stage for d in STAGE_REGISTRY}

TERMINAL_STAGE = Stage.COMPLETED
PHYSICAL_STAGE = Stage.PHYSICAL_CERTIFICATE_SENT

# Registry must cover every Stage exactly once, in enum order.
if tuple(d.stage for d in STAGE_REGISTRY) != tuple(Stage):
    raise RuntimeError("STAGE_REGISTRY is out of sync with the Stage enumeration")


def parse_stage(value) -> Stage:
    """Resolve a stage id (or Stage) against the registry.

    Raises:
        InvalidStageError: unknown stage id.
    """
    if isinstance(value, Stage):
        return value
    try:
        return Stage(str(value).strip())
    except ValueError:
        raise InvalidStageError(value) from None


def stage_label(stage: Stage) -> str:
    return STAGE_DEFINITIONS[stage].label


# ── SLA defaults ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SLARule:
    days_limit: int
    warning_days: int

    def to_dict(self) -> dict:
        return {"days_limit": self.days_limit, "warning_days": self.warning_days}


# Typical dwell time per stage; the physical certificate ships within 90 days.
SLA_DEFAULTS: dict[Stage, SLARule] = {
    Stage.WELCOME: SLARule(2, 1),
    Stage.EXAM_IN_PROGRESS: SLARule(15, 3),
    Stage.DOCUMENTS_REQUESTED: SLARule(7, 2),
    Stage.DOCUMENTS_UNDER_REVIEW: SLARule(7, 2),
    Stage.CERTIFICATION_STARTED: SLARule(30, 5),
    Stage.DIGITAL_CERTIFICATE_SENT: SLARule(7, 2),
    Stage.PHYSICAL_CERTIFICATE_SENT: SLARule(90, 10),
    Stage.COMPLETED: SLARule(0, 0),
}

if set(SLA_DEFAULTS) != set(Stage):
    raise RuntimeError("SLA_DEFAULTS must define a rule for every Stage")


_STATUS_CHECK = "status IN ({})".format(",".join(f"'{s.value}'" for s in Stage))


# ═════════════════════════════════════════════════════════════════════════════
# 1. CertificationProcess
# ═════════════════════════════════════════════════════════════════════════════


class CertificationProcess(db.Model):
    """
    Certification process of a single student.

    Each stage owns one timestamp column (see STAGE_REGISTRY). ``created_at``
    doubles as the entry time of the ``welcome`` stage. ``version`` is the
    optimistic-lock counter; a stale concurrent write raises StaleDataError.
    """

    __tablename__ = "certification_processes"

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(
        db.Integer, db.ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False, unique=True, index=True,
    )
    status = db.Column(
        db.String(40), nullable=False, default=Stage.WELCOME.value,
        comment="Current stage id",
    )
    wants_physical = db.Column(db.Boolean, nullable=False, default=False)
    physical_tracking_code = db.Column(db.String(60), nullable=True)
    certifier_name = db.Column(db.String(200), default="")

    # Stage timestamps
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )
    exam_started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    documents_requested_at = db.Column(db.DateTime(timezone=True), nullable=True)
    documents_under_review_at = db.Column(db.DateTime(timezone=True), nullable=True)
    certification_started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    digital_certificate_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    physical_certificate_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        db.CheckConstraint(_STATUS_CHECK, name="ck_certification_process_status"),
    )
    __mapper_args__ = {"version_id_col": version}

    student = db.relationship("Student", back_populates="certification")

    # ── Stage accessors ──────────────────────────────────────────────────

    @property
    def current_stage(self) -> Stage:
        return Stage(self.status)

    def get_stage_timestamp(self, stage: Stage) -> datetime | None:
        """Entry instant of *stage* as UTC-aware datetime, or None."""
        value = getattr(self, STAGE_DEFINITIONS[stage].timestamp_field)
        return as_utc(value) if value is not None else None

    def set_stage_timestamp(self, stage: Stage, value: datetime | None) -> None:
        setattr(self, STAGE_DEFINITIONS[stage].timestamp_field, value)

    @property
    def stage_timestamps(self) -> dict[Stage, datetime | None]:
        return {d.stage: self.get_stage_timestamp(d.stage) for d in STAGE_REGISTRY}

    def to_dict(self):
        result = {
            "id": self.id,
            "student_id": self.student_id,
            "student_name": self.student.name if self.student else None,
            "status": self.status,
            "status_label": stage_label(self.current_stage),
            "wants_physical": self.wants_physical,
            "physical_tracking_code": self.physical_tracking_code,
            "certifier_name": self.certifier_name,
            "version": self.version,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        for d in STAGE_REGISTRY:
            ts = self.get_stage_timestamp(d.stage)
            result[d.timestamp_field] = ts.isoformat() if ts else None
        return result

    def __repr__(self):
        return f"<CertificationProcess {self.id}: student={self.student_id} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. CertificationSLA
# ═════════════════════════════════════════════════════════════════════════════


class CertificationSLA(db.Model):
    """SLA per stage: maximum dwell days and warning lead time."""

    __tablename__ = "certification_sla"

    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(
        db.String(40), nullable=False, unique=True,
        comment="Stage id this SLA applies to",
    )
    days_limit = db.Column(
        db.Integer, nullable=False,
        comment="Maximum days allowed in the stage before it is overdue",
    )
    warning_days = db.Column(
        db.Integer, nullable=False,
        comment="Days before the deadline at which the stage turns 'warning'",
    )

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        db.CheckConstraint(_STATUS_CHECK, name="ck_certification_sla_status"),
        db.CheckConstraint("days_limit >= 0", name="ck_certification_sla_days_limit"),
        db.CheckConstraint("warning_days >= 0", name="ck_certification_sla_warning_days"),
    )

    @property
    def rule(self) -> SLARule:
        return SLARule(self.days_limit, self.warning_days)

    def to_dict(self):
        return {
            "id": self.id,
            "status": self.status,
            "label": stage_label(Stage(self.status)),
            "days_limit": self.days_limit,
            "warning_days": self.warning_days,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<CertificationSLA {self.status}: {self.days_limit}d warn={self.warning_days}d>"


# ── SLA Seed Helper ──────────────────────────────────────────────────────────


def seed_default_sla() -> int:
    """
    Insert SLA_DEFAULTS rows for every stage that has no row yet.
    Existing rows are left untouched. Caller commits.

    Returns the number of rows created.
    """
    existing = {row.status for row in db.session.query(CertificationSLA.status).all()}
    created = 0
    for stage, rule in SLA_DEFAULTS.items():
        if stage.value in existing:
            continue
        db.session.add(CertificationSLA(
            status=stage.value,
            days_limit=rule.days_limit,
            warning_days=rule.warning_days,
        ))
        created += 1
    db.session.flush()
    return created


# ═════════════════════════════════════════════════════════════════════════════
# 3. MessageTemplate
# ═════════════════════════════════════════════════════════════════════════════


class MessageTemplate(db.Model):
    """Override of the default progress-message template for one stage."""

    __tablename__ = "message_templates"

    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(
        db.String(40), nullable=False, unique=True,
        comment="Stage id this template is sent for",
    )
    body = db.Column(
        db.Text, nullable=False, default="",
        comment="Template text; {{nome}} and {{codigo_rastreio}} are expanded",
    )

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        db.CheckConstraint(_STATUS_CHECK, name="ck_message_templates_status"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "status": self.status,
            "label": stage_label(Stage(self.status)),
            "message": self.body,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<MessageTemplate {self.status}: {len(self.body or '')} chars>"
