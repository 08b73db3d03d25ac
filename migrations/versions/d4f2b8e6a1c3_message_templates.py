"""message_templates

Revision ID: d4f2b8e6a1c3
Revises: c1e7a9d4b2f0
Create Date: 2026-10-17 15:40:02.551907

Adds:
    - message_templates: administrator override of the WhatsApp text per stage
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'd4f2b8e6a1c3'
down_revision = 'c1e7a9d4b2f0'
branch_labels = None
depends_on = None


_STAGES = (
    "welcome", "exam_in_progress", "documents_requested", "documents_under_review",
    "certification_started", "digital_certificate_sent", "physical_certificate_sent",
    "completed",
)
_STATUS_CHECK = "status IN ({})".format(",".join(f"'{s}'" for s in _STAGES))


def upgrade():
    op.create_table(
        "message_templates",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(40), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(_STATUS_CHECK, name="ck_message_templates_status"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("status"),
        if_not_exists=True,
    )


def downgrade():
    op.drop_table("message_templates")
