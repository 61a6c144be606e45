"""In-memory implementation of the workflow store.

Suitable for tests, development and single-process deployments. Every public
method runs under one :class:`asyncio.Lock`, which gives the same atomicity the
SQLAlchemy store gets from a transaction.

Payloads are passed through a JSON round trip on the way in, so they are
accepted and decoded exactly as the SQLAlchemy store's JSON columns would, and
snapshots are deep-copied on the way out. Callers never alias the store's
internal state.
"""

from __future__ import annotations

import asyncio
from copy import deepcopy
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from litestar_durable.core.config import ACTIVITY_LEASE_PADDING_SECONDS
from litestar_durable.core.models import ActivityTask, HistoryEvent, TimerRecord, WorkflowInstanceData
from litestar_durable.core.serialization import to_json_value
from litestar_durable.core.types import (
    RESOLUTION_EVENT_TYPES,
    STEP_COMMAND_EVENT_TYPES,
    ActivityTaskStatus,
    EventType,
    WorkflowStatus,
)
from litestar_durable.exceptions import StoreError, WorkflowAlreadyCompletedError, WorkflowInstanceNotFoundError

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

__all__ = ["InMemoryWorkflowStore"]

_MUTABLE_FIELDS = frozenset(
    {
        "status",
        "result",
        "failure_reason",
        "waiting_on",
        "quarantined",
        "wakeup_requested",
        "locked_by",
        "lock_expires_at",
        "completed_at",
    }
)


def _payload(value: Any) -> Any:
    try:
        return to_json_value(value)
    except (TypeError, ValueError) as e:
        msg = f"Payload is not JSON serializable: {e}"
        raise StoreError(msg) from e


class InMemoryWorkflowStore:
    """Workflow store keeping everything in process memory.

    Attributes:
        _instances: Instance snapshots keyed by id.
        _history: Ordered history per instance.
        _timers: Timer records keyed by ``(instance_id, step_index)``.
        _tasks: Activity tasks keyed by task id.
    """

    def __init__(self) -> None:
        self._instances: dict[UUID, WorkflowInstanceData] = {}
        self._history: dict[UUID, list[HistoryEvent]] = {}
        self._timers: dict[tuple[UUID, int], TimerRecord] = {}
        self._tasks: dict[UUID, ActivityTask] = {}
        self._lock = asyncio.Lock()

    # Instances

    async def create_instance(self, instance: WorkflowInstanceData) -> WorkflowInstanceData:
        instance = deepcopy(instance)
        instance.input = _payload(instance.input)
        instance.result = _payload(instance.result)
        async with self._lock:
            if instance.business_key is not None:
                for existing in self._instances.values():
                    if (
                        existing.workflow_type == instance.workflow_type
                        and existing.business_key == instance.business_key
                        and not existing.status.is_terminal
                    ):
                        return deepcopy(existing)
            if instance.id in self._instances:
                msg = f"Workflow instance '{instance.id}' already exists"
                raise StoreError(msg)
            self._instances[instance.id] = deepcopy(instance)
            self._history[instance.id] = []
            return deepcopy(instance)

    async def get_instance(self, instance_id: UUID) -> WorkflowInstanceData | None:
        async with self._lock:
            instance = self._instances.get(instance_id)
            return deepcopy(instance) if instance else None

    async def list_instances(
        self,
        status: WorkflowStatus | None = None,
        workflow_type: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[WorkflowInstanceData]:
        async with self._lock:
            instances = [
                i
                for i in self._instances.values()
                if (status is None or i.status == status) and (workflow_type is None or i.workflow_type == workflow_type)
            ]
            instances.sort(key=lambda i: i.started_at, reverse=True)
            return [deepcopy(i) for i in instances[offset : offset + limit]]

    async def update_instance(self, instance_id: UUID, **changes: Any) -> WorkflowInstanceData:
        unknown = set(changes) - _MUTABLE_FIELDS
        if unknown:
            msg = f"Cannot update instance fields: {', '.join(sorted(unknown))}"
            raise StoreError(msg)
        if "result" in changes:
            changes["result"] = _payload(changes["result"])
        async with self._lock:
            instance = self._require_open(instance_id)
            for key, value in changes.items():
                setattr(instance, key, value)
            return deepcopy(instance)

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
        result = _payload(result)
        async with self._lock:
            instance = self._require(instance_id)
            if instance.status.is_terminal:
                return False
            self._append(
                instance,
                event_type,
                recorded_at=finished_at,
                result_payload=result,
                error_payload={"failure_reason": failure_reason} if failure_reason else None,
            )
            instance.status = status
            instance.result = result
            instance.failure_reason = failure_reason
            instance.waiting_on = None
            instance.wakeup_requested = False
            instance.completed_at = finished_at
            return True

    # History

    async def load_history(self, instance_id: UUID, after_sequence: int = 0) -> list[HistoryEvent]:
        async with self._lock:
            self._require(instance_id)
            return [deepcopy(e) for e in self._history[instance_id] if e.sequence_number > after_sequence]

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
        command_payload = _payload(command_payload)
        result_payload = _payload(result_payload)
        error_payload = _payload(error_payload)
        async with self._lock:
            instance = self._require_open(instance_id)
            event = self._append(
                instance,
                event_type,
                recorded_at=recorded_at,
                step_index=step_index,
                command_payload=command_payload,
                result_payload=result_payload,
                error_payload=error_payload,
            )
            if request_wakeup:
                instance.wakeup_requested = True
            return deepcopy(event)

    # Scheduling

    async def request_wakeup(self, instance_id: UUID) -> None:
        async with self._lock:
            self._require(instance_id).wakeup_requested = True

    async def find_resumable(self, now: datetime, limit: int) -> list[UUID]:
        async with self._lock:
            found = [
                i
                for i in self._instances.values()
                if not i.status.is_terminal
                and not i.quarantined
                and (i.lock_expires_at is None or i.lock_expires_at <= now)
                and (
                    i.wakeup_requested
                    or i.status in (WorkflowStatus.CREATED, WorkflowStatus.RUNNING)
                )
            ]
            found.sort(key=lambda i: i.started_at)
            return [i.id for i in found[:limit]]

    async def try_acquire_lock(self, instance_id: UUID, worker_id: str, now: datetime, lease_seconds: float) -> bool:
        async with self._lock:
            instance = self._instances.get(instance_id)
            if instance is None or instance.status.is_terminal:
                return False
            if instance.lock_expires_at is not None and instance.lock_expires_at > now:
                return False
            instance.locked_by = worker_id
            instance.lock_expires_at = now + timedelta(seconds=lease_seconds)
            instance.wakeup_requested = False
            return True

    async def release_lock(self, instance_id: UUID, worker_id: str) -> None:
        async with self._lock:
            instance = self._instances.get(instance_id)
            if instance is not None and instance.locked_by == worker_id:
                instance.locked_by = None
                instance.lock_expires_at = None

    # Timers

    async def schedule_timer(
        self,
        instance_id: UUID,
        step_index: int,
        fire_at: datetime,
        command_payload: dict[str, Any],
        *,
        recorded_at: datetime,
    ) -> HistoryEvent:
        command_payload = _payload(command_payload)
        async with self._lock:
            instance = self._require_open(instance_id)
            event = self._append(
                instance,
                EventType.COMMAND_ISSUED,
                recorded_at=recorded_at,
                step_index=step_index,
                command_payload=command_payload,
            )
            self._timers[(instance_id, step_index)] = TimerRecord(instance_id, step_index, fire_at)
            return deepcopy(event)

    async def due_timers(self, now: datetime, limit: int) -> list[TimerRecord]:
        async with self._lock:
            due = [t for t in self._timers.values() if t.fired_at is None and t.fire_at <= now]
            due.sort(key=lambda t: t.fire_at)
            return [deepcopy(t) for t in due[:limit]]

    async def fire_timer(self, instance_id: UUID, step_index: int, fired_at: datetime) -> HistoryEvent | None:
        async with self._lock:
            timer = self._timers.get((instance_id, step_index))
            if timer is None or timer.fired_at is not None:
                return None
            timer.fired_at = fired_at
            instance = self._require(instance_id)
            if instance.status.is_terminal or self._is_resolved(instance_id, step_index):
                return None
            event = self._append(instance, EventType.TIMER_FIRED, recorded_at=fired_at, step_index=step_index)
            instance.wakeup_requested = True
            return deepcopy(event)

    async def next_timer_due(self, instance_id: UUID) -> datetime | None:
        async with self._lock:
            pending = [
                t.fire_at for t in self._timers.values() if t.instance_id == instance_id and t.fired_at is None
            ]
            return min(pending, default=None)

    # Activity tasks

    async def issue_activity(
        self,
        task: ActivityTask,
        command_payload: dict[str, Any],
        *,
        recorded_at: datetime,
    ) -> HistoryEvent:
        command_payload = _payload(command_payload)
        task = deepcopy(task)
        task.payload = _payload(task.payload)
        async with self._lock:
            instance = self._require_open(task.instance_id)
            event = self._append(
                instance,
                EventType.COMMAND_ISSUED,
                recorded_at=recorded_at,
                step_index=task.step_index,
                command_payload=command_payload,
            )
            self._tasks[task.id] = task
            return deepcopy(event)

    async def claim_activity_tasks(
        self,
        queue_name: str | None,
        now: datetime,
        limit: int,
        worker_id: str,
    ) -> list[ActivityTask]:
        async with self._lock:
            claimable = [
                t
                for t in self._tasks.values()
                if (queue_name is None or t.queue_name == queue_name)
                and (
                    (t.status == ActivityTaskStatus.PENDING and t.next_attempt_at <= now)
                    or (
                        t.status == ActivityTaskStatus.RUNNING
                        and t.lease_expires_at is not None
                        and t.lease_expires_at <= now
                    )
                )
            ]
            claimable.sort(key=lambda t: t.next_attempt_at)
            claimed = []
            for task in claimable[:limit]:
                timeout = task.options.timeout_seconds or 0.0
                task.status = ActivityTaskStatus.RUNNING
                task.lease_expires_at = now + timedelta(seconds=timeout + ACTIVITY_LEASE_PADDING_SECONDS)
                task.claimed_by = worker_id
                claimed.append(deepcopy(task))
            return claimed

    async def retry_activity(
        self,
        task_id: UUID,
        worker_id: str,
        attempt: int,
        next_attempt_at: datetime,
        last_error: str,
    ) -> bool:
        async with self._lock:
            task = self._require_task(task_id)
            if task.status != ActivityTaskStatus.RUNNING or task.claimed_by != worker_id:
                return False
            task.attempt = attempt
            task.next_attempt_at = next_attempt_at
            task.last_error = last_error
            task.status = ActivityTaskStatus.PENDING
            task.lease_expires_at = None
            task.claimed_by = None
            return True

    async def complete_activity(self, task_id: UUID, result: Any, *, recorded_at: datetime) -> HistoryEvent | None:
        result = _payload(result)
        async with self._lock:
            task = self._require_task(task_id)
            return self._resolve_task(
                task,
                ActivityTaskStatus.COMPLETED,
                EventType.ACTIVITY_COMPLETED,
                recorded_at=recorded_at,
                result_payload=result,
            )

    async def fail_activity(
        self,
        task_id: UUID,
        attempt: int,
        error_payload: dict[str, Any],
        *,
        recorded_at: datetime,
    ) -> HistoryEvent | None:
        error_payload = _payload(error_payload)
        async with self._lock:
            task = self._require_task(task_id)
            task.attempt = attempt
            task.last_error = error_payload.get("message")
            return self._resolve_task(
                task,
                ActivityTaskStatus.FAILED,
                EventType.ACTIVITY_FAILED,
                recorded_at=recorded_at,
                error_payload=error_payload,
            )

    async def discard_activity(self, task_id: UUID) -> None:
        async with self._lock:
            task = self._require_task(task_id)
            task.status = ActivityTaskStatus.DISCARDED
            task.lease_expires_at = None
            task.claimed_by = None

    # Helpers, called with the lock held

    def _require(self, instance_id: UUID) -> WorkflowInstanceData:
        instance = self._instances.get(instance_id)
        if instance is None:
            raise WorkflowInstanceNotFoundError(instance_id)
        return instance

    def _require_open(self, instance_id: UUID) -> WorkflowInstanceData:
        instance = self._require(instance_id)
        if instance.status.is_terminal:
            raise WorkflowAlreadyCompletedError(instance_id, instance.status)
        return instance

    def _require_task(self, task_id: UUID) -> ActivityTask:
        task = self._tasks.get(task_id)
        if task is None:
            msg = f"Activity task '{task_id}' not found"
            raise StoreError(msg)
        return task

    def _is_resolved(self, instance_id: UUID, step_index: int) -> bool:
        return any(
            e.step_index == step_index and e.event_type in RESOLUTION_EVENT_TYPES for e in self._history[instance_id]
        )

    def _append(
        self,
        instance: WorkflowInstanceData,
        event_type: EventType,
        *,
        recorded_at: datetime,
        step_index: int | None = None,
        command_payload: dict[str, Any] | None = None,
        result_payload: Any = None,
        error_payload: dict[str, Any] | None = None,
    ) -> HistoryEvent:
        history = self._history[instance.id]
        if step_index is not None:
            for existing in history:
                if existing.step_index != step_index:
                    continue
                if existing.event_type == event_type or (
                    event_type in STEP_COMMAND_EVENT_TYPES and existing.event_type in STEP_COMMAND_EVENT_TYPES
                ):
                    msg = f"Step {step_index} of instance '{instance.id}' already has a {existing.event_type} event"
                    raise StoreError(msg)
        event = HistoryEvent(
            instance_id=instance.id,
            sequence_number=len(history) + 1,
            event_type=event_type,
            recorded_at=recorded_at,
            step_index=step_index,
            command_payload=command_payload,
            result_payload=result_payload,
            error_payload=error_payload,
        )
        history.append(event)
        return event

    def _resolve_task(
        self,
        task: ActivityTask,
        task_status: ActivityTaskStatus,
        event_type: EventType,
        *,
        recorded_at: datetime,
        result_payload: Any = None,
        error_payload: dict[str, Any] | None = None,
    ) -> HistoryEvent | None:
        instance = self._require(task.instance_id)
        task.lease_expires_at = None
        task.claimed_by = None
        if instance.status.is_terminal:
            task.status = ActivityTaskStatus.DISCARDED
            return None
        task.status = task_status
        if self._is_resolved(task.instance_id, task.step_index):
            return None
        event = self._append(
            instance,
            event_type,
            recorded_at=recorded_at,
            step_index=task.step_index,
            result_payload=result_payload,
            error_payload=error_payload,
        )
        instance.wakeup_requested = True
        return deepcopy(event)
