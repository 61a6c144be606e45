"""SQLAlchemy models for durable workflow state.

This module defines the tables backing :class:`SQLAlchemyWorkflowStore`:
- WorkflowInstanceModel: One row per instance, its current status snapshot
- HistoryEventModel: The append-only event log, ordered per instance
- TimerModel: Due-time records of pending timers
- ActivityTaskModel: Retry ledger of activity invocations
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from advanced_alchemy.base import UUIDAuditBase
from advanced_alchemy.types import DateTimeUTC
from sqlalchemy import JSON, Enum, ForeignKey, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from litestar_durable.core.types import ActivityTaskStatus, EventType, WorkflowStatus

__all__ = [
    "ActivityTaskModel",
    "HistoryEventModel",
    "TimerModel",
    "WorkflowInstanceModel",
]


# Cross-database JSON type: uses JSONB for PostgreSQL, JSON for others (SQLite, MySQL, etc.)
JSONType = JSON().with_variant(JSONB, "postgresql")

# Enum columns store member names
_ACTIVE_STATUS_CLAUSE = "status IN ('CREATED', 'RUNNING', 'SUSPENDED')"


class WorkflowInstanceModel(UUIDAuditBase):
    """Persisted workflow instance.

    Attributes:
        workflow_type: Registered workflow name.
        workflow_version: Version the instance is pinned to.
        business_key: Optional key, unique among active instances of a type.
        input: Immutable workflow input.
        status: Current status.
        result: Return value once completed.
        failure_reason: Error description when failed, canceled or quarantined.
        waiting_on: Pending command while suspended.
        quarantined: Halted after diverging from history.
        wakeup_requested: Flag polled by the scheduler.
        locked_by: Worker holding the execution lease.
        lock_expires_at: Expiry of the execution lease.
        started_at: Timestamp when the instance was created.
        completed_at: Timestamp when the instance became terminal.
    """

    __tablename__ = "workflow_instance"
    __table_args__ = (
        Index("ix_workflow_instance_status", "status"),
        Index("ix_workflow_instance_workflow_type", "workflow_type"),
        Index("ix_workflow_instance_wakeup", "wakeup_requested", "quarantined"),
        Index(
            "uq_workflow_instance_active_business_key",
            "workflow_type",
            "business_key",
            unique=True,
            postgresql_where=text(_ACTIVE_STATUS_CLAUSE),
            sqlite_where=text(_ACTIVE_STATUS_CLAUSE),
        ),
    )

    workflow_type: Mapped[str] = mapped_column(String(255))
    workflow_version: Mapped[str] = mapped_column(String(50))
    business_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    input: Mapped[Any] = mapped_column(JSONType, nullable=True)
    status: Mapped[WorkflowStatus] = mapped_column(
        Enum(WorkflowStatus, native_enum=False, length=50),
        default=WorkflowStatus.CREATED,
    )
    result: Mapped[Any] = mapped_column(JSONType, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    waiting_on: Mapped[str | None] = mapped_column(String(255), nullable=True)
    quarantined: Mapped[bool] = mapped_column(default=False)
    wakeup_requested: Mapped[bool] = mapped_column(default=False)
    locked_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    lock_expires_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTimeUTC(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)

    # Relationships
    history: Mapped[list[HistoryEventModel]] = relationship(
        back_populates="instance",
        lazy="noload",
        order_by="HistoryEventModel.sequence_number",
        cascade="all, delete-orphan",
    )


class HistoryEventModel(UUIDAuditBase):
    """One append-only history entry.

    Attributes:
        instance_id: Foreign key to the workflow instance.
        sequence_number: Gapless position within the instance's history.
        event_type: Kind of event.
        step_index: Workflow step the event belongs to, if any.
        command_payload: Serialized command, or signal metadata.
        result_payload: Serialized result.
        error_payload: Serialized error.
        recorded_at: When the event was appended.
    """

    __tablename__ = "workflow_history"
    __table_args__ = (
        UniqueConstraint("instance_id", "sequence_number", name="uq_workflow_history_sequence"),
        UniqueConstraint("instance_id", "step_index", "event_type", name="uq_workflow_history_step_event"),
        Index("ix_workflow_history_instance_id", "instance_id"),
    )

    instance_id: Mapped[UUID] = mapped_column(
        ForeignKey("workflow_instance.id", ondelete="CASCADE"),
    )
    sequence_number: Mapped[int] = mapped_column(Integer)
    event_type: Mapped[EventType] = mapped_column(Enum(EventType, native_enum=False, length=50))
    step_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    command_payload: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    result_payload: Mapped[Any] = mapped_column(JSONType, nullable=True)
    error_payload: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(DateTimeUTC(timezone=True))

    # Relationships
    instance: Mapped[WorkflowInstanceModel] = relationship(back_populates="history")


class TimerModel(UUIDAuditBase):
    """Durable due-time record of a timer command."""

    __tablename__ = "workflow_timer"
    __table_args__ = (
        UniqueConstraint("instance_id", "step_index", name="uq_workflow_timer_step"),
        Index("ix_workflow_timer_due", "fired_at", "fire_at"),
    )

    instance_id: Mapped[UUID] = mapped_column(
        ForeignKey("workflow_instance.id", ondelete="CASCADE"),
    )
    step_index: Mapped[int] = mapped_column(Integer)
    fire_at: Mapped[datetime] = mapped_column(DateTimeUTC(timezone=True))
    fired_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)


class ActivityTaskModel(UUIDAuditBase):
    """Retry ledger entry for one activity or compensation command.

    Attributes:
        instance_id: Foreign key to the workflow instance.
        step_index: Step of the issuing command.
        activity_type: Registered activity name.
        payload: Argument of the handler.
        options: Resolved activity options.
        queue_name: Queue the task is dispatched on.
        is_compensation: Whether ``compensate`` is called instead of ``handle``.
        attempt: Attempts already made.
        status: Task lifecycle status.
        next_attempt_at: When the next attempt becomes due.
        claimed_by: Worker holding the lease while running.
        lease_expires_at: Expiry of that lease.
        last_error: Error of the most recent failed attempt.
    """

    __tablename__ = "workflow_activity_task"
    __table_args__ = (
        UniqueConstraint("instance_id", "step_index", name="uq_workflow_activity_task_step"),
        Index("ix_workflow_activity_task_due", "status", "queue_name", "next_attempt_at"),
    )

    instance_id: Mapped[UUID] = mapped_column(
        ForeignKey("workflow_instance.id", ondelete="CASCADE"),
    )
    step_index: Mapped[int] = mapped_column(Integer)
    activity_type: Mapped[str] = mapped_column(String(255))
    payload: Mapped[Any] = mapped_column(JSONType, nullable=True)
    options: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    queue_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_compensation: Mapped[bool] = mapped_column(default=False)
    attempt: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[ActivityTaskStatus] = mapped_column(
        Enum(ActivityTaskStatus, native_enum=False, length=50),
        default=ActivityTaskStatus.PENDING,
    )
    next_attempt_at: Mapped[datetime] = mapped_column(DateTimeUTC(timezone=True))
    claimed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
