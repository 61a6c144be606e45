"""Concrete data models for litestar-durable.

This module provides the dataclasses exchanged between the engine and the
workflow stores. Stores translate their own rows into these.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from litestar_durable.core.commands import ActivityOptions
from litestar_durable.core.types import ActivityTaskStatus, EventType, WorkflowStatus

__all__ = [
    "ActivityTask",
    "EngineOutcome",
    "HistoryEvent",
    "InstanceStatusView",
    "TimerRecord",
    "WorkflowInstanceData",
]


@dataclass
class WorkflowInstanceData:
    """Current status snapshot of a workflow instance.

    Attributes:
        id: Globally unique instance identifier.
        workflow_type: Registered workflow name.
        workflow_version: Version the instance is pinned to.
        input: Immutable input passed to ``execute``.
        status: Current status.
        business_key: Optional user-meaningful key for idempotent starts.
        result: Return value, set only once COMPLETED.
        failure_reason: Error description, set when FAILED, CANCELED or quarantined.
        waiting_on: Description of the pending command while SUSPENDED.
        quarantined: Whether replay diverged from history and the instance is halted.
        wakeup_requested: Whether the scheduler should replay the instance.
        locked_by: Worker currently holding the execution lease.
        lock_expires_at: Expiry of the execution lease.
        started_at: Timestamp when the instance was created.
        completed_at: Timestamp when the instance reached a terminal status.
    """

    id: UUID
    workflow_type: str
    workflow_version: str
    input: Any
    status: WorkflowStatus
    started_at: datetime
    business_key: str | None = None
    result: Any = None
    failure_reason: str | None = None
    waiting_on: str | None = None
    quarantined: bool = False
    wakeup_requested: bool = False
    locked_by: str | None = None
    lock_expires_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass
class HistoryEvent:
    """A single append-only history entry.

    Attributes:
        instance_id: Owning workflow instance.
        sequence_number: Position in the instance's history, gapless from 1.
        event_type: Kind of event.
        recorded_at: When the event was appended.
        step_index: Workflow step the event belongs to, if any.
        command_payload: Serialized command for command and side-effect events,
            or signal metadata for signal events.
        result_payload: Serialized result value.
        error_payload: Serialized error for failure events.
    """

    instance_id: UUID
    sequence_number: int
    event_type: EventType
    recorded_at: datetime
    step_index: int | None = None
    command_payload: dict[str, Any] | None = None
    result_payload: Any = None
    error_payload: dict[str, Any] | None = None


@dataclass
class TimerRecord:
    """Durable due-time record for a pending timer."""

    instance_id: UUID
    step_index: int
    fire_at: datetime
    fired_at: datetime | None = None


@dataclass
class ActivityTask:
    """Retry ledger entry for one activity (or compensation) command.

    Attributes:
        id: Task identifier.
        instance_id: Owning workflow instance.
        step_index: Step of the command that issued the activity.
        activity_type: Registered activity name.
        payload: Argument for ``handle`` (or ``compensate``).
        options: Fully resolved activity options.
        is_compensation: Whether ``compensate`` is invoked instead of ``handle``.
        attempt: Number of attempts already made.
        status: Task lifecycle status.
        next_attempt_at: When the next attempt becomes due.
        lease_expires_at: Expiry of the worker lease while RUNNING.
        claimed_by: Worker holding the lease while RUNNING.
        last_error: Description of the most recent failed attempt.
    """

    id: UUID
    instance_id: UUID
    step_index: int
    activity_type: str
    payload: Any
    options: ActivityOptions
    next_attempt_at: datetime
    is_compensation: bool = False
    attempt: int = 0
    status: ActivityTaskStatus = ActivityTaskStatus.PENDING
    lease_expires_at: datetime | None = None
    claimed_by: str | None = None
    last_error: str | None = None

    @property
    def queue_name(self) -> str | None:
        return self.options.queue_name


@dataclass
class InstanceStatusView:
    """Answer of the query API.

    ``next_due_at`` is the earliest pending timer, if any. A SUSPENDED instance
    whose ``next_due_at`` is in the past, or which waits on nothing that can
    still resolve, is stuck rather than legitimately waiting.
    """

    instance_id: UUID
    status: WorkflowStatus
    result: Any = None
    failure_reason: str | None = None
    waiting_on: str | None = None
    next_due_at: datetime | None = None
    quarantined: bool = False


@dataclass
class EngineOutcome:
    """Result of a single :meth:`WorkflowEngine.execute` resumption cycle."""

    instance_id: UUID
    status: WorkflowStatus
    result: Any = None
    failure_reason: str | None = None
    waiting_on: str | None = None
    steps_replayed: int = 0
