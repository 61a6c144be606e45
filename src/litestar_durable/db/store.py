"""SQLAlchemy implementation of the workflow store.

Every public method runs in its own transaction. History appends first lock the
owning instance row, so sequence numbers are allocated one writer at a time per
instance, and the bookkeeping that accompanies an append (timer record,
activity task, wake-up flag) commits or rolls back together with it.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from advanced_alchemy.exceptions import RepositoryError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from litestar_durable.core.commands import ActivityOptions
from litestar_durable.core.config import ACTIVITY_LEASE_PADDING_SECONDS
from litestar_durable.core.models import ActivityTask, HistoryEvent, TimerRecord, WorkflowInstanceData
from litestar_durable.core.types import STEP_COMMAND_EVENT_TYPES, ActivityTaskStatus, EventType, WorkflowStatus
from litestar_durable.db.models import ActivityTaskModel, HistoryEventModel, TimerModel, WorkflowInstanceModel
from litestar_durable.db.repositories import (
    ActivityTaskRepository,
    HistoryEventRepository,
    TimerRepository,
    WorkflowInstanceRepository,
)
from litestar_durable.exceptions import StoreError, WorkflowAlreadyCompletedError, WorkflowInstanceNotFoundError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

__all__ = ["SQLAlchemyWorkflowStore"]

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


def _to_instance(model: WorkflowInstanceModel) -> WorkflowInstanceData:
    return WorkflowInstanceData(
        id=model.id,
        workflow_type=model.workflow_type,
        workflow_version=model.workflow_version,
        input=model.input,
        status=model.status,
        started_at=model.started_at,
        business_key=model.business_key,
        result=model.result,
        failure_reason=model.failure_reason,
        waiting_on=model.waiting_on,
        quarantined=model.quarantined,
        wakeup_requested=model.wakeup_requested,
        locked_by=model.locked_by,
        lock_expires_at=model.lock_expires_at,
        completed_at=model.completed_at,
    )


def _to_event(model: HistoryEventModel) -> HistoryEvent:
    return HistoryEvent(
        instance_id=model.instance_id,
        sequence_number=model.sequence_number,
        event_type=model.event_type,
        recorded_at=model.recorded_at,
        step_index=model.step_index,
        command_payload=model.command_payload,
        result_payload=model.result_payload,
        error_payload=model.error_payload,
    )


def _to_timer(model: TimerModel) -> TimerRecord:
    return TimerRecord(
        instance_id=model.instance_id,
        step_index=model.step_index,
        fire_at=model.fire_at,
        fired_at=model.fired_at,
    )


def _to_task(model: ActivityTaskModel) -> ActivityTask:
    return ActivityTask(
        id=model.id,
        instance_id=model.instance_id,
        step_index=model.step_index,
        activity_type=model.activity_type,
        payload=model.payload,
        options=ActivityOptions.from_dict(model.options),
        next_attempt_at=model.next_attempt_at,
        is_compensation=model.is_compensation,
        attempt=model.attempt,
        status=model.status,
        lease_expires_at=model.lease_expires_at,
        claimed_by=model.claimed_by,
        last_error=model.last_error,
    )


class SQLAlchemyWorkflowStore:
    """Durable workflow store backed by SQLAlchemy and advanced-alchemy repositories.

    Args:
        session_maker: Factory of async sessions. Sessions should be created with
            ``expire_on_commit=False``.

    Example:
        >>> engine = create_async_engine("postgresql+asyncpg://localhost/app")
        >>> store = SQLAlchemyWorkflowStore(async_sessionmaker(engine, expire_on_commit=False))
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self.session_maker = session_maker

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_maker() as session, session.begin():
                yield session
        except (SQLAlchemyError, RepositoryError) as e:
            raise StoreError(str(e)) from e

    # Instances

    async def create_instance(self, instance: WorkflowInstanceData) -> WorkflowInstanceData:
        async with self._transaction() as session:
            repo = WorkflowInstanceRepository(session=session)
            if instance.business_key is not None:
                existing = await repo.find_active_by_business_key(instance.workflow_type, instance.business_key)
                if existing is not None:
                    return _to_instance(existing)

            model = WorkflowInstanceModel(
                id=instance.id,
                workflow_type=instance.workflow_type,
                workflow_version=instance.workflow_version,
                business_key=instance.business_key,
                input=instance.input,
                status=instance.status,
                result=instance.result,
                failure_reason=instance.failure_reason,
                waiting_on=instance.waiting_on,
                wakeup_requested=instance.wakeup_requested,
                quarantined=instance.quarantined,
                locked_by=instance.locked_by,
                lock_expires_at=instance.lock_expires_at,
                started_at=instance.started_at,
                completed_at=instance.completed_at,
            )
            try:
                async with session.begin_nested():
                    session.add(model)
                    await session.flush()
            except IntegrityError:
                # Lost a race with a concurrent start using the same business key
                existing = await repo.find_active_by_business_key(instance.workflow_type, instance.business_key or "")
                if existing is None:
                    raise
                return _to_instance(existing)
            return _to_instance(model)

    async def get_instance(self, instance_id: UUID) -> WorkflowInstanceData | None:
        async with self._transaction() as session:
            model = await WorkflowInstanceRepository(session=session).get_one_or_none(id=instance_id)
            return _to_instance(model) if model else None

    async def list_instances(
        self,
        status: WorkflowStatus | None = None,
        workflow_type: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[WorkflowInstanceData]:
        async with self._transaction() as session:
            models = await WorkflowInstanceRepository(session=session).find_filtered(
                status=status, workflow_type=workflow_type, limit=limit, offset=offset
            )
            return [_to_instance(m) for m in models]

    async def update_instance(self, instance_id: UUID, **changes: Any) -> WorkflowInstanceData:
        unknown = set(changes) - _MUTABLE_FIELDS
        if unknown:
            msg = f"Cannot update instance fields: {', '.join(sorted(unknown))}"
            raise StoreError(msg)
        async with self._transaction() as session:
            model = await self._lock_open(session, instance_id)
            for key, value in changes.items():
                setattr(model, key, value)
            await session.flush()
            return _to_instance(model)

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
        async with self._transaction() as session:
            model = await self._lock(session, instance_id)
            if model.status.is_terminal:
                return False
            await self._append(
                session,
                model,
                event_type,
                recorded_at=finished_at,
                result_payload=result,
                error_payload={"failure_reason": failure_reason} if failure_reason else None,
            )
            model.status = status
            model.result = result
            model.failure_reason = failure_reason
            model.waiting_on = None
            model.wakeup_requested = False
            model.completed_at = finished_at
            return True

    # History

    async def load_history(self, instance_id: UUID, after_sequence: int = 0) -> list[HistoryEvent]:
        async with self._transaction() as session:
            if await WorkflowInstanceRepository(session=session).get_one_or_none(id=instance_id) is None:
                raise WorkflowInstanceNotFoundError(instance_id)
            events = await HistoryEventRepository(session=session).find_by_instance(instance_id, after_sequence)
            return [_to_event(e) for e in events]

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
        async with self._transaction() as session:
            model = await self._lock_open(session, instance_id)
            event = await self._append(
                session,
                model,
                event_type,
                recorded_at=recorded_at,
                step_index=step_index,
                command_payload=command_payload,
                result_payload=result_payload,
                error_payload=error_payload,
            )
            if request_wakeup:
                model.wakeup_requested = True
            return _to_event(event)

    # Scheduling

    async def request_wakeup(self, instance_id: UUID) -> None:
        async with self._transaction() as session:
            model = await self._lock(session, instance_id)
            model.wakeup_requested = True

    async def find_resumable(self, now: datetime, limit: int) -> list[UUID]:
        async with self._transaction() as session:
            return list(await WorkflowInstanceRepository(session=session).find_resumable(now, limit))

    async def try_acquire_lock(self, instance_id: UUID, worker_id: str, now: datetime, lease_seconds: float) -> bool:
        async with self._transaction() as session:
            model = await WorkflowInstanceRepository(session=session).get_for_update(instance_id)
            if model is None or model.status.is_terminal:
                return False
            if model.lock_expires_at is not None and model.lock_expires_at > now:
                return False
            model.locked_by = worker_id
            model.lock_expires_at = now + timedelta(seconds=lease_seconds)
            model.wakeup_requested = False
            return True

    async def release_lock(self, instance_id: UUID, worker_id: str) -> None:
        async with self._transaction() as session:
            model = await WorkflowInstanceRepository(session=session).get_for_update(instance_id)
            if model is not None and model.locked_by == worker_id:
                model.locked_by = None
                model.lock_expires_at = None

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
        async with self._transaction() as session:
            model = await self._lock_open(session, instance_id)
            event = await self._append(
                session,
                model,
                EventType.COMMAND_ISSUED,
                recorded_at=recorded_at,
                step_index=step_index,
                command_payload=command_payload,
            )
            await TimerRepository(session=session).add(
                TimerModel(instance_id=instance_id, step_index=step_index, fire_at=fire_at)
            )
            return _to_event(event)

    async def due_timers(self, now: datetime, limit: int) -> list[TimerRecord]:
        async with self._transaction() as session:
            return [_to_timer(t) for t in await TimerRepository(session=session).find_due(now, limit)]

    async def fire_timer(self, instance_id: UUID, step_index: int, fired_at: datetime) -> HistoryEvent | None:
        async with self._transaction() as session:
            model = await self._lock(session, instance_id)
            timer = await TimerRepository(session=session).get_by_step(instance_id, step_index)
            if timer is None or timer.fired_at is not None:
                return None
            timer.fired_at = fired_at
            if model.status.is_terminal or await HistoryEventRepository(session=session).is_resolved(
                instance_id, step_index
            ):
                return None
            event = await self._append(
                session, model, EventType.TIMER_FIRED, recorded_at=fired_at, step_index=step_index
            )
            model.wakeup_requested = True
            return _to_event(event)

    async def next_timer_due(self, instance_id: UUID) -> datetime | None:
        async with self._transaction() as session:
            return await TimerRepository(session=session).next_due(instance_id)

    # Activity tasks

    async def issue_activity(
        self,
        task: ActivityTask,
        command_payload: dict[str, Any],
        *,
        recorded_at: datetime,
    ) -> HistoryEvent:
        async with self._transaction() as session:
            model = await self._lock_open(session, task.instance_id)
            event = await self._append(
                session,
                model,
                EventType.COMMAND_ISSUED,
                recorded_at=recorded_at,
                step_index=task.step_index,
                command_payload=command_payload,
            )
            await ActivityTaskRepository(session=session).add(
                ActivityTaskModel(
                    id=task.id,
                    instance_id=task.instance_id,
                    step_index=task.step_index,
                    activity_type=task.activity_type,
                    payload=task.payload,
                    options=task.options.to_dict(),
                    queue_name=task.queue_name,
                    is_compensation=task.is_compensation,
                    attempt=task.attempt,
                    status=task.status,
                    next_attempt_at=task.next_attempt_at,
                )
            )
            return _to_event(event)

    async def claim_activity_tasks(
        self,
        queue_name: str | None,
        now: datetime,
        limit: int,
        worker_id: str,
    ) -> list[ActivityTask]:
        async with self._transaction() as session:
            tasks = await ActivityTaskRepository(session=session).find_claimable(queue_name, now, limit)
            for task in tasks:
                timeout = ActivityOptions.from_dict(task.options).timeout_seconds or 0.0
                task.status = ActivityTaskStatus.RUNNING
                task.claimed_by = worker_id
                task.lease_expires_at = now + timedelta(seconds=timeout + ACTIVITY_LEASE_PADDING_SECONDS)
            await session.flush()
            return [_to_task(t) for t in tasks]

    async def retry_activity(
        self,
        task_id: UUID,
        worker_id: str,
        attempt: int,
        next_attempt_at: datetime,
        last_error: str,
    ) -> bool:
        async with self._transaction() as session:
            task = await self._task(session, task_id)
            if task.status != ActivityTaskStatus.RUNNING or task.claimed_by != worker_id:
                return False
            task.attempt = attempt
            task.next_attempt_at = next_attempt_at
            task.last_error = last_error
            task.status = ActivityTaskStatus.PENDING
            task.claimed_by = None
            task.lease_expires_at = None
            return True

    async def complete_activity(self, task_id: UUID, result: Any, *, recorded_at: datetime) -> HistoryEvent | None:
        async with self._transaction() as session:
            task = await self._task(session, task_id)
            return await self._resolve_task(
                session,
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
        async with self._transaction() as session:
            task = await self._task(session, task_id)
            task.attempt = attempt
            task.last_error = error_payload.get("message")
            return await self._resolve_task(
                session,
                task,
                ActivityTaskStatus.FAILED,
                EventType.ACTIVITY_FAILED,
                recorded_at=recorded_at,
                error_payload=error_payload,
            )

    async def discard_activity(self, task_id: UUID) -> None:
        async with self._transaction() as session:
            task = await self._task(session, task_id)
            task.status = ActivityTaskStatus.DISCARDED
            task.claimed_by = None
            task.lease_expires_at = None

    # Helpers, called inside a transaction

    @staticmethod
    async def _lock(session: AsyncSession, instance_id: UUID) -> WorkflowInstanceModel:
        model = await WorkflowInstanceRepository(session=session).get_for_update(instance_id)
        if model is None:
            raise WorkflowInstanceNotFoundError(instance_id)
        return model

    async def _lock_open(self, session: AsyncSession, instance_id: UUID) -> WorkflowInstanceModel:
        model = await self._lock(session, instance_id)
        if model.status.is_terminal:
            raise WorkflowAlreadyCompletedError(instance_id, model.status)
        return model

    @staticmethod
    async def _task(session: AsyncSession, task_id: UUID) -> ActivityTaskModel:
        task = await ActivityTaskRepository(session=session).get_one_or_none(id=task_id)
        if task is None:
            msg = f"Activity task '{task_id}' not found"
            raise StoreError(msg)
        return task

    @staticmethod
    async def _append(
        session: AsyncSession,
        instance: WorkflowInstanceModel,
        event_type: EventType,
        *,
        recorded_at: datetime,
        step_index: int | None = None,
        command_payload: dict[str, Any] | None = None,
        result_payload: Any = None,
        error_payload: dict[str, Any] | None = None,
    ) -> HistoryEventModel:
        repo = HistoryEventRepository(session=session)
        if step_index is not None:
            conflicting = STEP_COMMAND_EVENT_TYPES if event_type in STEP_COMMAND_EVENT_TYPES else {event_type}
            existing = await repo.find_step_event(instance.id, step_index, conflicting)
            if existing is not None:
                msg = f"Step {step_index} of instance '{instance.id}' already has a {existing.event_type} event"
                raise StoreError(msg)

        return await repo.add(
            HistoryEventModel(
                instance_id=instance.id,
                sequence_number=await repo.last_sequence(instance.id) + 1,
                event_type=event_type,
                recorded_at=recorded_at,
                step_index=step_index,
                command_payload=command_payload,
                result_payload=result_payload,
                error_payload=error_payload,
            )
        )

    async def _resolve_task(
        self,
        session: AsyncSession,
        task: ActivityTaskModel,
        task_status: ActivityTaskStatus,
        event_type: EventType,
        *,
        recorded_at: datetime,
        result_payload: Any = None,
        error_payload: dict[str, Any] | None = None,
    ) -> HistoryEvent | None:
        instance = await self._lock(session, task.instance_id)
        task.claimed_by = None
        task.lease_expires_at = None
        if instance.status.is_terminal:
            task.status = ActivityTaskStatus.DISCARDED
            return None
        task.status = task_status
        if await HistoryEventRepository(session=session).is_resolved(task.instance_id, task.step_index):
            return None
        event = await self._append(
            session,
            instance,
            event_type,
            recorded_at=recorded_at,
            step_index=task.step_index,
            result_payload=result_payload,
            error_payload=error_payload,
        )
        instance.wakeup_requested = True
        return _to_event(event)
