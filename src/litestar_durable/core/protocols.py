"""Core protocols for litestar-durable.

This module defines the Protocol-based interfaces for workflow definitions,
activity definitions and the durable store backing the engine. Using Protocol
allows duck typing while maintaining type safety.
"""

from __future__ import annotations

from collections.abc import Generator
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from litestar_durable.core.commands import Command
    from litestar_durable.core.models import (
        ActivityTask,
        HistoryEvent,
        TimerRecord,
        WorkflowInstanceData,
    )
    from litestar_durable.core.types import EventType, WorkflowStatus


__all__ = ["Activity", "Workflow", "WorkflowStore"]


@runtime_checkable
class Workflow(Protocol):
    """Protocol defining the interface for workflow definitions.

    A workflow is ordinary sequential Python written as a generator: every
    interaction with the outside world is a yielded
    :class:`~litestar_durable.core.commands.Command`, and the value sent back is
    the command's result. The engine re-runs ``execute`` from the start on every
    resumption, so it must only branch on its input, on yielded results and on
    recorded side effects.

    Attributes:
        name: Registered workflow type.
        version: Version string; instances stay pinned to the version they started on.

    Example:
        >>> class Approval:
        ...     name = "approval"
        ...     version = "1.0.0"
        ...
        ...     def execute(self, input):
        ...         decision = yield SignalWaitCommand("decision")
        ...         return decision["approved"]
        ...
        ...     def handle_signal(self, name, payload):
        ...         pass
    """

    name: str
    version: str

    def execute(self, input: Any) -> Generator[Command, Any, Any]:
        """Run the workflow logic, yielding commands and returning the result."""
        ...

    def handle_signal(self, name: str, payload: Any) -> None:
        """Observe a signal out-of-band, mutating in-memory workflow state."""
        ...


@runtime_checkable
class Activity(Protocol):
    """Protocol defining the interface for activities.

    Activities perform the real, external work. They must be idempotent: the
    engine delivers at least once and may invoke ``handle`` more than once for the
    same logical step under retries or worker crashes.

    Attributes:
        name: Registered activity type.
    """

    name: str

    async def handle(self, payload: Any) -> Any:
        """Perform the work and return a JSON-serializable result."""
        ...

    async def on_failure(self, instance_id: UUID, error: Exception) -> None:
        """Clean up after the activity exhausted its retries."""
        ...

    async def compensate(self, instance_id: UUID, original_payload: Any) -> Any:
        """Undo the effect of a previous successful ``handle`` call."""
        ...


class WorkflowStore(Protocol):
    """Durable storage of instances, history, timers and activity tasks.

    Every method is a single atomic operation: an event append and the
    bookkeeping that accompanies it (timer record, activity task, wake-up flag)
    are written together or not at all.
    """

    async def create_instance(self, instance: WorkflowInstanceData) -> WorkflowInstanceData:
        """Persist a new instance.

        If ``instance.business_key`` is set and a non-terminal instance of the
        same workflow type already uses that key, the existing instance is
        returned instead.
        """
        ...

    async def get_instance(self, instance_id: UUID) -> WorkflowInstanceData | None:
        """Load an instance snapshot."""
        ...

    async def list_instances(
        self,
        status: WorkflowStatus | None = None,
        workflow_type: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[WorkflowInstanceData]:
        """List instances, most recent first."""
        ...

    async def update_instance(self, instance_id: UUID, **changes: Any) -> WorkflowInstanceData:
        """Update mutable snapshot fields of a non-terminal instance."""
        ...

    async def finish_instance(
        self,
        instance_id: UUID,
        status: WorkflowStatus,
        event_type: EventType,
        *,
        result: Any = None,
        failure_reason: str | None = None,
        finished_at: datetime,
    ) -> bool:
        """Append a terminal marker and set a terminal status.

        Returns:
            False if the instance was already terminal, in which case nothing changes.
        """
        ...

    async def load_history(self, instance_id: UUID, after_sequence: int = 0) -> list[HistoryEvent]:
        """Load events with ``sequence_number > after_sequence`` in order."""
        ...

    async def append_event(
        self,
        instance_id: UUID,
        event_type: EventType,
        *,
        recorded_at: datetime,
        step_index: int | None = None,
        command_payload: dict[str, Any] | None = None,
        result_payload: Any = None,
        error_payload: dict[str, Any] | None = None,
        request_wakeup: bool = False,
    ) -> HistoryEvent:
        """Append an event with the next sequence number.

        Raises:
            WorkflowInstanceNotFoundError: If the instance does not exist.
            WorkflowAlreadyCompletedError: If the instance is terminal.
            StoreError: If the step already has an event of this type.
        """
        ...

    async def request_wakeup(self, instance_id: UUID) -> None:
        """Flag the instance as resumable."""
        ...

    async def find_resumable(self, now: datetime, limit: int) -> list[UUID]:
        """Find unlocked, non-terminal, non-quarantined instances needing a replay."""
        ...

    async def try_acquire_lock(self, instance_id: UUID, worker_id: str, now: datetime, lease_seconds: float) -> bool:
        """Take the execution lease of an instance, clearing its wake-up flag."""
        ...

    async def release_lock(self, instance_id: UUID, worker_id: str) -> None:
        """Release the execution lease if ``worker_id`` holds it."""
        ...

    async def schedule_timer(
        self,
        instance_id: UUID,
        step_index: int,
        fire_at: datetime,
        command_payload: dict[str, Any],
        *,
        recorded_at: datetime,
    ) -> HistoryEvent:
        """Append the timer's ``COMMAND_ISSUED`` event and its due-time record."""
        ...

    async def due_timers(self, now: datetime, limit: int) -> list[TimerRecord]:
        """Unfired timers with ``fire_at <= now``."""
        ...

    async def fire_timer(self, instance_id: UUID, step_index: int, fired_at: datetime) -> HistoryEvent | None:
        """Append ``TIMER_FIRED`` and mark the timer fired. Idempotent."""
        ...

    async def next_timer_due(self, instance_id: UUID) -> datetime | None:
        """Earliest unfired timer of an instance."""
        ...

    async def issue_activity(
        self,
        task: ActivityTask,
        command_payload: dict[str, Any],
        *,
        recorded_at: datetime,
    ) -> HistoryEvent:
        """Append the activity's ``COMMAND_ISSUED`` event and enqueue its task."""
        ...

    async def claim_activity_tasks(
        self,
        queue_name: str | None,
        now: datetime,
        limit: int,
        worker_id: str,
    ) -> list[ActivityTask]:
        """Lease due tasks: pending ones whose attempt is due, or running ones whose lease expired."""
        ...

    async def retry_activity(
        self,
        task_id: UUID,
        worker_id: str,
        attempt: int,
        next_attempt_at: datetime,
        last_error: str,
    ) -> bool:
        """Return a task to PENDING for a later attempt.

        Only the worker currently holding the task's lease may do so. A task
        that was resolved, discarded or re-claimed by another worker after its
        lease expired is left untouched.

        Returns:
            Whether the task was rescheduled.
        """
        ...

    async def complete_activity(self, task_id: UUID, result: Any, *, recorded_at: datetime) -> HistoryEvent | None:
        """Record ``ACTIVITY_COMPLETED`` for the task's step. Idempotent."""
        ...

    async def fail_activity(
        self,
        task_id: UUID,
        attempt: int,
        error_payload: dict[str, Any],
        *,
        recorded_at: datetime,
    ) -> HistoryEvent | None:
        """Record ``ACTIVITY_FAILED`` for the task's step. Idempotent."""
        ...

    async def discard_activity(self, task_id: UUID) -> None:
        """Drop a task whose instance is terminal."""
        ...
