"""Initial durable workflow tables.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
ACTIVE_STATUS_CLAUSE = "status IN ('CREATED', 'RUNNING', 'SUSPENDED')"


def _audit_columns() -> list[sa.Column]:
    return [
        sa.Column("sa_orm_sentinel", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Create durable workflow tables."""
    # Create workflow_instance table
    op.create_table(
        "workflow_instance",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("workflow_type", sa.String(length=255), nullable=False),
        sa.Column("workflow_version", sa.String(length=50), nullable=False),
        sa.Column("business_key", sa.String(length=255), nullable=True),
        sa.Column("input", JSONType, nullable=True),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("result", JSONType, nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("waiting_on", sa.String(length=255), nullable=True),
        sa.Column("quarantined", sa.Boolean(), nullable=False, default=False),
        sa.Column("wakeup_requested", sa.Boolean(), nullable=False, default=False),
        sa.Column("locked_by", sa.String(length=255), nullable=True),
        sa.Column("lock_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_audit_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_workflow_instance_status", "workflow_instance", ["status"])
    op.create_index("ix_workflow_instance_workflow_type", "workflow_instance", ["workflow_type"])
    op.create_index("ix_workflow_instance_wakeup", "workflow_instance", ["wakeup_requested", "quarantined"])
    op.create_index(
        "uq_workflow_instance_active_business_key",
        "workflow_instance",
        ["workflow_type", "business_key"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_STATUS_CLAUSE),
        sqlite_where=sa.text(ACTIVE_STATUS_CLAUSE),
    )

    # Create workflow_history table
    op.create_table(
        "workflow_history",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("instance_id", sa.Uuid(), nullable=False),
        sa.Column("sequence_number", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(length=50), nullable=False),
        sa.Column("step_index", sa.Integer(), nullable=True),
        sa.Column("command_payload", JSONType, nullable=True),
        sa.Column("result_payload", JSONType, nullable=True),
        sa.Column("error_payload", JSONType, nullable=True),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        *_audit_columns(),
        sa.ForeignKeyConstraint(["instance_id"], ["workflow_instance.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("instance_id", "sequence_number", name="uq_workflow_history_sequence"),
        sa.UniqueConstraint("instance_id", "step_index", "event_type", name="uq_workflow_history_step_event"),
    )
    op.create_index("ix_workflow_history_instance_id", "workflow_history", ["instance_id"])

    # Create workflow_timer table
    op.create_table(
        "workflow_timer",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("instance_id", sa.Uuid(), nullable=False),
        sa.Column("step_index", sa.Integer(), nullable=False),
        sa.Column("fire_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("fired_at", sa.DateTime(timezone=True), nullable=True),
        *_audit_columns(),
        sa.ForeignKeyConstraint(["instance_id"], ["workflow_instance.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("instance_id", "step_index", name="uq_workflow_timer_step"),
    )
    op.create_index("ix_workflow_timer_due", "workflow_timer", ["fired_at", "fire_at"])

    # Create workflow_activity_task table
    op.create_table(
        "workflow_activity_task",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("instance_id", sa.Uuid(), nullable=False),
        sa.Column("step_index", sa.Integer(), nullable=False),
        sa.Column("activity_type", sa.String(length=255), nullable=False),
        sa.Column("payload", JSONType, nullable=True),
        sa.Column("options", JSONType, nullable=False),
        sa.Column("queue_name", sa.String(length=255), nullable=True),
        sa.Column("is_compensation", sa.Boolean(), nullable=False, default=False),
        sa.Column("attempt", sa.Integer(), nullable=False, default=0),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("claimed_by", sa.String(length=255), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        *_audit_columns(),
        sa.ForeignKeyConstraint(["instance_id"], ["workflow_instance.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("instance_id", "step_index", name="uq_workflow_activity_task_step"),
    )
    op.create_index(
        "ix_workflow_activity_task_due",
        "workflow_activity_task",
        ["status", "queue_name", "next_attempt_at"],
    )


def downgrade() -> None:
    """Drop durable workflow tables."""
    op.drop_table("workflow_activity_task")
    op.drop_table("workflow_timer")
    op.drop_table("workflow_history")
    op.drop_table("workflow_instance")
