"""Durable timers.

A pending timer is a row with a due time, not a sleeping task: nothing is held
in memory while an instance waits, however long the wait. The scheduler calls
:meth:`TimerService.fire_due` on every poll.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from litestar_durable.core.commands import TimerCommand
    from litestar_durable.core.config import EngineConfig
    from litestar_durable.core.models import HistoryEvent
    from litestar_durable.core.protocols import WorkflowStore

__all__ = ["TimerService"]

logger = logging.getLogger(__name__)


class TimerService:
    """Schedules timers and fires the ones that are due."""

    def __init__(self, store: WorkflowStore, config: EngineConfig) -> None:
        self.store = store
        self.config = config

    async def schedule(self, instance_id: UUID, step_index: int, command: TimerCommand) -> HistoryEvent:
        """Record a timer's ``COMMAND_ISSUED`` event together with its due-time record.

        Relative timers are resolved against the engine clock here, once; the
        absolute time is what gets recorded and replayed.

        Args:
            instance_id: The owning instance.
            step_index: The workflow step of the timer.
            command: The timer command.

        Returns:
            The recorded ``COMMAND_ISSUED`` event.

        Raises:
            ValueError: If the timer's ``fire_at`` is not timezone-aware.
        """
        now = self.config.now()
        fire_at = command.resolve_fire_at(now)
        if fire_at.tzinfo is None:
            msg = "TimerCommand.fire_at must be timezone-aware"
            raise ValueError(msg)

        payload = command.to_payload()
        payload["fire_at"] = fire_at.isoformat()
        event = await self.store.schedule_timer(instance_id, step_index, fire_at, payload, recorded_at=now)
        logger.debug("Scheduled timer at step %d of %s for %s", step_index, instance_id, fire_at.isoformat())
        return event

    async def fire_due(self, now: datetime | None = None) -> int:
        """Fire every timer whose due time has passed.

        A timer never fires before its ``fire_at``. Firing is idempotent, so
        two schedulers racing on the same timer record a single ``TIMER_FIRED``.

        Args:
            now: Current time. Defaults to the engine clock.

        Returns:
            Number of ``TIMER_FIRED`` events appended.
        """
        now = now or self.config.now()
        fired = 0
        for timer in await self.store.due_timers(now, self.config.batch_size):
            event = await self.store.fire_timer(timer.instance_id, timer.step_index, now)
            if event is not None:
                fired += 1
                logger.debug("Fired timer at step %d of %s", timer.step_index, timer.instance_id)
        return fired
