"""Repository implementations for durable workflow persistence.

This module provides async repositories over the workflow tables using
advanced-alchemy's repository pattern. Repositories never commit; the store
wraps every operation in a single transaction.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from advanced_alchemy.filters import LimitOffset, OrderBy
from advanced_alchemy.repository import SQLAlchemyAsyncRepository
from sqlalchemy import and_, func, or_, select

from litestar_durable.core.types import (
    RESOLUTION_EVENT_TYPES,
    TERMINAL_STATUSES,
    ActivityTaskStatus,
    EventType,
    WorkflowStatus,
)
from litestar_durable.db.models import (
    ActivityTaskModel,
    HistoryEventModel,
    TimerModel,
    WorkflowInstanceModel,
)

if TYPE_CHECKING:
    from collections.abc import Collection, Sequence
    from datetime import datetime
    from uuid import UUID

__all__ = [
    "ActivityTaskRepository",
    "HistoryEventRepository",
    "TimerRepository",
    "WorkflowInstanceRepository",
]


class WorkflowInstanceRepository(SQLAlchemyAsyncRepository[WorkflowInstanceModel]):
    """Repository for workflow instance rows.

    Provides row locking for the store's atomic operations and the queries the
    scheduler polls with.
    """

    model_type = WorkflowInstanceModel

    async def get_for_update(self, instance_id: UUID) -> WorkflowInstanceModel | None:
        """Load an instance and lock its row until the transaction ends.

        Every history append locks the instance row first, which serializes
        sequence number allocation per instance.
        """
        stmt = select(WorkflowInstanceModel).where(WorkflowInstanceModel.id == instance_id).with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_active_by_business_key(self, workflow_type: str, business_key: str) -> WorkflowInstanceModel | None:
        """Find the non-terminal instance of a workflow type using ``business_key``."""
        stmt = (
            select(WorkflowInstanceModel)
            .where(
                and_(
                    WorkflowInstanceModel.workflow_type == workflow_type,
                    WorkflowInstanceModel.business_key == business_key,
                    WorkflowInstanceModel.status.not_in(list(TERMINAL_STATUSES)),
                )
            )
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_filtered(
        self,
        status: WorkflowStatus | None = None,
        workflow_type: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Sequence[WorkflowInstanceModel]:
        """List instances, most recently started first.

        Args:
            status: Optional status filter.
            workflow_type: Optional workflow type filter.
            limit: Maximum number of results.
            offset: Number of results to skip.

        Returns:
            Matching instances.
        """
        conditions = []
        if status:
            conditions.append(WorkflowInstanceModel.status == status)
        if workflow_type:
            conditions.append(WorkflowInstanceModel.workflow_type == workflow_type)

        return await self.list(
            *conditions,
            LimitOffset(limit=limit, offset=offset),
            OrderBy(field_name="started_at", sort_order="desc"),
        )

    async def find_resumable(self, now: datetime, limit: int) -> Sequence[UUID]:
        """Find ids of instances the scheduler should replay.

        An instance is resumable when it is neither terminal nor quarantined,
        its execution lease is free or expired, and it either has a wake-up
        pending or was never (or not completely) executed.
        """
        stmt = (
            select(WorkflowInstanceModel.id)
            .where(
                and_(
                    WorkflowInstanceModel.status.not_in(list(TERMINAL_STATUSES)),
                    WorkflowInstanceModel.quarantined == False,  # noqa: E712
                    or_(
                        WorkflowInstanceModel.lock_expires_at.is_(None),
                        WorkflowInstanceModel.lock_expires_at <= now,
                    ),
                    or_(
                        WorkflowInstanceModel.wakeup_requested == True,  # noqa: E712
                        WorkflowInstanceModel.status.in_([WorkflowStatus.CREATED, WorkflowStatus.RUNNING]),
                    ),
                )
            )
            .order_by(WorkflowInstanceModel.started_at)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()


class HistoryEventRepository(SQLAlchemyAsyncRepository[HistoryEventModel]):
    """Repository for the append-only history."""

    model_type = HistoryEventModel

    async def find_by_instance(self, instance_id: UUID, after_sequence: int = 0) -> Sequence[HistoryEventModel]:
        """Events of an instance with ``sequence_number > after_sequence``, in order."""
        stmt = (
            select(HistoryEventModel)
            .where(
                and_(
                    HistoryEventModel.instance_id == instance_id,
                    HistoryEventModel.sequence_number > after_sequence,
                )
            )
            .order_by(HistoryEventModel.sequence_number)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def last_sequence(self, instance_id: UUID) -> int:
        stmt = select(func.max(HistoryEventModel.sequence_number)).where(HistoryEventModel.instance_id == instance_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() or 0

    async def find_step_event(
        self,
        instance_id: UUID,
        step_index: int,
        event_types: Collection[EventType],
    ) -> HistoryEventModel | None:
        """Find the event of a step with one of ``event_types``."""
        stmt = (
            select(HistoryEventModel)
            .where(
                and_(
                    HistoryEventModel.instance_id == instance_id,
                    HistoryEventModel.step_index == step_index,
                    HistoryEventModel.event_type.in_(list(event_types)),
                )
            )
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def is_resolved(self, instance_id: UUID, step_index: int) -> bool:
        return await self.find_step_event(instance_id, step_index, RESOLUTION_EVENT_TYPES) is not None


class TimerRepository(SQLAlchemyAsyncRepository[TimerModel]):
    """Repository for timer due-time records."""

    model_type = TimerModel

    async def get_by_step(self, instance_id: UUID, step_index: int) -> TimerModel | None:
        stmt = select(TimerModel).where(and_(TimerModel.instance_id == instance_id, TimerModel.step_index == step_index))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_due(self, now: datetime, limit: int) -> Sequence[TimerModel]:
        """Unfired timers with ``fire_at <= now``, earliest first."""
        stmt = (
            select(TimerModel)
            .where(and_(TimerModel.fired_at.is_(None), TimerModel.fire_at <= now))
            .order_by(TimerModel.fire_at)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def next_due(self, instance_id: UUID) -> datetime | None:
        stmt = select(func.min(TimerModel.fire_at)).where(
            and_(TimerModel.instance_id == instance_id, TimerModel.fired_at.is_(None))
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()


class ActivityTaskRepository(SQLAlchemyAsyncRepository[ActivityTaskModel]):
    """Repository for the activity task ledger."""

    model_type = ActivityTaskModel

    async def find_claimable(self, queue_name: str | None, now: datetime, limit: int) -> Sequence[ActivityTaskModel]:
        """Lock tasks that are due, skipping rows other workers hold.

        A task is claimable when it is pending and its next attempt is due, or
        when it is running under a lease that has expired.
        """
        conditions = [
            or_(
                and_(
                    ActivityTaskModel.status == ActivityTaskStatus.PENDING,
                    ActivityTaskModel.next_attempt_at <= now,
                ),
                and_(
                    ActivityTaskModel.status == ActivityTaskStatus.RUNNING,
                    ActivityTaskModel.lease_expires_at <= now,
                ),
            )
        ]
        if queue_name is not None:
            conditions.append(ActivityTaskModel.queue_name == queue_name)

        stmt = (
            select(ActivityTaskModel)
            .where(and_(*conditions))
            .order_by(ActivityTaskModel.next_attempt_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()
