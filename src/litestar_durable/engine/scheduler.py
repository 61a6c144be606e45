"""Scheduler and background runner.

The :class:`Scheduler` turns resolved work into engine resumptions: it fires
due timers, finds instances flagged for a wake-up, takes each one's execution
lease and replays it. The lease guarantees that at most one replay of an
instance runs at any time, across every process sharing the store.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from litestar_durable.exceptions import InstanceQuarantinedError, NonDeterminismError, WorkflowNotFoundError

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from litestar_durable.core.config import EngineConfig
    from litestar_durable.engine.activities import ActivityExecutor
    from litestar_durable.engine.replay import WorkflowEngine

__all__ = ["Runner", "Scheduler"]

logger = logging.getLogger(__name__)


class Scheduler:
    """Finds resumable instances and drives the engine under a per-instance lease.

    Attributes:
        engine: The engine to resume instances with.
        config: Configuration providing batch size, concurrency, lease length and worker id.
    """

    def __init__(self, engine: WorkflowEngine, config: EngineConfig | None = None) -> None:
        self.engine = engine
        self.store = engine.store
        self.config = config or engine.config

    async def poll_and_dispatch(self) -> int:
        """Run one scheduling pass.

        Fires due timers, then replays every resumable instance whose lease
        could be taken, up to ``max_concurrency`` at a time.

        Returns:
            Number of timers fired plus number of instances replayed.
        """
        now = self.config.now()
        fired = await self.engine.timers.fire_due(now)
        instance_ids = await self.store.find_resumable(self.config.now(), self.config.batch_size)
        if not instance_ids:
            return fired

        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def dispatch_bounded(instance_id: UUID) -> bool:
            async with semaphore:
                return await self.dispatch(instance_id)

        dispatched = await asyncio.gather(*(dispatch_bounded(instance_id) for instance_id in instance_ids))
        return fired + sum(dispatched)

    async def dispatch(self, instance_id: UUID) -> bool:
        """Replay one instance if its lease can be taken.

        Errors are contained to the instance: halting errors are logged, and
        infrastructure errors are logged and the wake-up is requested again so
        a later poll retries.

        Returns:
            Whether the instance was replayed.
        """
        worker_id = self.config.worker_id
        acquired = await self.store.try_acquire_lock(
            instance_id, worker_id, self.config.now(), self.config.lock_timeout_seconds
        )
        if not acquired:
            logger.debug("Workflow instance %s is locked by another worker", instance_id)
            return False

        try:
            outcome = await self.engine.execute(instance_id)
            logger.debug("Workflow instance %s is %s after replay", instance_id, outcome.status)
        except (NonDeterminismError, InstanceQuarantinedError, WorkflowNotFoundError) as e:
            logger.warning("Workflow instance %s halted: %s", instance_id, e)
        except Exception:
            logger.exception("Failed to resume workflow instance %s", instance_id)
            await self._request_retry(instance_id)
        finally:
            await self.store.release_lock(instance_id, worker_id)
        return True

    async def _request_retry(self, instance_id: UUID) -> None:
        try:
            await self.store.request_wakeup(instance_id)
        except Exception:
            logger.exception("Could not request a wake-up for workflow instance %s", instance_id)


class Runner:
    """Background loop alternating scheduler passes and activity processing.

    Activities can run in separate processes: start those with
    ``process_activities=False`` on the orchestration side and a runner per
    activity queue on the worker side.

    Example:
        >>> runner = Runner(Scheduler(engine), engine.executor)
        >>> await runner.start()
        >>> ...
        >>> await runner.stop()
    """

    def __init__(
        self,
        scheduler: Scheduler,
        executor: ActivityExecutor | None = None,
        queue_names: Sequence[str] | None = None,
        process_activities: bool = True,
    ) -> None:
        """Initialize the runner.

        Args:
            scheduler: The scheduler to poll.
            executor: The activity executor. Defaults to the engine's executor.
            queue_names: Activity queues to process. ``None`` processes every queue.
            process_activities: Whether this runner executes activities at all.
        """
        self.scheduler = scheduler
        self.executor = executor or scheduler.engine.executor
        self.queue_names = list(queue_names) if queue_names else None
        self.process_activities = process_activities
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        """Run one scheduler pass and one activity pass.

        Returns:
            Amount of work done; zero means the runner is idle.
        """
        work = await self.scheduler.poll_and_dispatch()
        if self.process_activities:
            for queue_name in self.queue_names or [None]:
                work += await self.executor.process_due(queue_name)
        return work

    async def run_until_idle(self, max_iterations: int = 1000) -> int:
        """Run passes until one finds nothing to do.

        Useful in tests and one-shot jobs. Work that only becomes due later
        (timers, delayed retries) does not keep the loop going.

        Returns:
            Number of passes that did work.
        """
        for iteration in range(max_iterations):
            if not await self.run_once():
                return iteration
        logger.warning("Runner still busy after %d iterations", max_iterations)
        return max_iterations

    async def serve(self) -> None:
        """Poll until :meth:`stop` is called, sleeping between idle passes."""
        self._stop_event = asyncio.Event()
        await self._serve(self._stop_event)

    async def _serve(self, stop_event: asyncio.Event) -> None:
        logger.info("Workflow runner %s started", self.scheduler.config.worker_id)
        while not stop_event.is_set():
            try:
                work = await self.run_once()
            except Exception:
                logger.exception("Workflow runner pass failed")
                work = 0
            if not work:
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(stop_event.wait(), timeout=self.scheduler.config.poll_interval_seconds)
        logger.info("Workflow runner %s stopped", self.scheduler.config.worker_id)

    async def start(self) -> None:
        """Start :meth:`serve` as a background task."""
        if self.is_running:
            return
        # A fresh event per start, the app may be restarted on another event loop
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._serve(self._stop_event))

    async def stop(self) -> None:
        """Signal the loop to stop and wait for the current pass to finish."""
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
