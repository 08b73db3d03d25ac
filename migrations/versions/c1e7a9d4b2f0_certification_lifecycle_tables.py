"""certification_lifecycle_tables

Revision ID: c1e7a9d4b2f0
Revises:
Create Date: 2026-10-17 09:12:40.118203

Adds:
    - students: identity referenced by certification processes (read-only here)
    - certification_processes: current stage, one timestamp per stage, version counter
    - certification_sla: per-stage days_limit / warning_days
    - audit_logs: append-only lifecycle audit trail
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'c1e7a9d4b2f0'
down_revision = None
branch_labels = None
depends_on = None


_STAGES = (
    "welcome", "exam_in_progress", "documents_requested", "documents_under_review",
    "certification_started", "digital_certificate_sent", "physical_certificate_sent",
    "completed",
)
_STATUS_CHECK = "status IN ({})".format(",".join(f"'{s}'" for s in _STAGES))


def upgrade():
    # students table
    op.create_table(
        "students",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(200), nullable=True),
        sa.Column("phone", sa.String(30), nullable=True),
        sa.Column("cpf", sa.String(14), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        if_not_exists=True,
    )
    op.create_index("ix_students_cpf", "students", ["cpf"], unique=True, if_not_exists=True)

    # certification_processes table
    op.create_table(
        "certification_processes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("student_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(40), nullable=False, server_default="welcome"),
        sa.Column("wants_physical", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("physical_tracking_code", sa.String(60), nullable=True),
        sa.Column("certifier_name", sa.String(200), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("exam_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("documents_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("documents_under_review_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("certification_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("digital_certificate_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("physical_certificate_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(_STATUS_CHECK, name="ck_certification_process_status"),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        if_not_exists=True,
    )
    op.create_index(
        "ix_certification_processes_student_id", "certification_processes", ["student_id"],
        unique=True, if_not_exists=True,
    )

    # certification_sla table
    op.create_table(
        "certification_sla",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(40), nullable=False),
        sa.Column("days_limit", sa.Integer(), nullable=False),
        sa.Column("warning_days", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(_STATUS_CHECK, name="ck_certification_sla_status"),
        sa.CheckConstraint("days_limit >= 0", name="ck_certification_sla_days_limit"),
        sa.CheckConstraint("warning_days >= 0", name="ck_certification_sla_warning_days"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("status"),
        if_not_exists=True,
    )

    # audit_logs table
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("entity_type", sa.String(30), nullable=False),
        sa.Column("entity_id", sa.String(36), nullable=False),
        sa.Column("student_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(60), nullable=False),
        sa.Column("actor", sa.String(150), nullable=False, server_default="system"),
        sa.Column("diff_json", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        if_not_exists=True,
    )
    op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"], if_not_exists=True)
    op.create_index("idx_audit_action", "audit_logs", ["action"], if_not_exists=True)
    op.create_index("idx_audit_ts", "audit_logs", ["timestamp"], if_not_exists=True)
    op.create_index("ix_audit_logs_student_id", "audit_logs", ["student_id"], if_not_exists=True)


def downgrade():
    op.drop_table("audit_logs")
    op.drop_table("certification_sla")
    op.drop_index("ix_certification_processes_student_id", table_name="certification_processes")
    op.drop_table("certification_processes")
    op.drop_index("ix_students_cpf", table_name="students")
    op.drop_table("students")
