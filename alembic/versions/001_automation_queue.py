"""automation queue and audit log

Revision ID: 001
Revises:
Create Date: 2026-10-17
"""
from alembic import op
import sqlalchemy as sa

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    existing_tables = set(inspector.get_table_names())

    # The webhook producer may have created the tables already.
    if "automation_jobs" not in existing_tables:
        op.create_table(
            "automation_jobs",
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("matter_id", sa.Text, nullable=False),
            sa.Column("client_participant_id", sa.Text, nullable=False),
            sa.Column("referrer_name", sa.Text, nullable=False),
            sa.Column("origination_percentage", sa.Numeric(5, 2), nullable=False),
            sa.Column("status", sa.String(20), server_default="pending"),
            sa.Column("error_message", sa.Text, nullable=True),
            sa.Column("attempts", sa.Integer, server_default="0"),
            sa.Column("max_attempts", sa.Integer, server_default="3"),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index("idx_automation_jobs_status", "automation_jobs", ["status"])
        op.create_index("idx_automation_jobs_created", "automation_jobs", ["created_at"])

    if "automation_logs" not in existing_tables:
        op.create_table(
            "automation_logs",
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("job_id", sa.Integer, sa.ForeignKey("automation_jobs.id"), nullable=True),
            sa.Column("matter_id", sa.Text, nullable=False),
            sa.Column("client_participant_id", sa.Text, nullable=True),
            sa.Column("action", sa.String(50), nullable=False),
            sa.Column("status", sa.String(20), nullable=False),
            sa.Column("message", sa.Text, nullable=True),
            sa.Column("error_details", sa.Text, nullable=True),
            sa.Column("triggered_by", sa.String(20), server_default="zapier"),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index("idx_automation_logs_created", "automation_logs", ["created_at"])
        op.create_index("idx_automation_logs_matter", "automation_logs", ["matter_id"])
        op.create_index("idx_automation_logs_status", "automation_logs", ["status"])


def downgrade() -> None:
    op.drop_table("automation_logs")
    op.drop_table("automation_jobs")
