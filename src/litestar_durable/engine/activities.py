"""Activity execution with timeouts, retries and failure hooks.

The executor has two halves. :meth:`ActivityExecutor.invoke` runs inside a
replay: it records the activity's ``COMMAND_ISSUED`` event and enqueues a task
in one atomic store operation. :meth:`ActivityExecutor.process_due` runs on
workers, possibly on other processes and queues: it claims due tasks under a
lease, calls the handler and records the outcome.

Delivery is at least once. A handler may run more than once for the same step
(retries, a worker crashing after the call but before recording), but the step
is resolved by exactly one ``ACTIVITY_COMPLETED`` or ``ACTIVITY_FAILED`` event.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from litestar_durable.core.models import ActivityTask
from litestar_durable.core.serialization import to_json_value
from litestar_durable.core.types import CommandKind
from litestar_durable.exceptions import ActivityTimeoutError

if TYPE_CHECKING:
    from collections.abc import Callable
    from uuid import UUID

    from litestar_durable.core.commands import ActivityCommand
    from litestar_durable.core.config import EngineConfig
    from litestar_durable.core.protocols import Activity, WorkflowStore
    from litestar_durable.engine.registry import ActivityRegistry

__all__ = ["ActivityExecutor"]

logger = logging.getLogger(__name__)


async def _call(handler: Callable[..., Any], *args: Any) -> Any:
    """Await coroutine handlers; run plain functions in a worker thread."""
    if inspect.iscoroutinefunction(handler):
        return await handler(*args)
    return await asyncio.to_thread(handler, *args)


class ActivityExecutor:
    """Invokes activities on behalf of workflow instances.

    Attributes:
        store: The workflow store holding the task ledger.
        activities: Registry resolving activity types to handlers.
        config: Engine configuration providing defaults, clock and worker id.
    """

    def __init__(self, store: WorkflowStore, activities: ActivityRegistry, config: EngineConfig) -> None:
        self.store = store
        self.activities = activities
        self.config = config

    async def invoke(self, instance_id: UUID, step_index: int, command: ActivityCommand) -> ActivityTask:
        """Record an activity command and enqueue its first attempt.

        Args:
            instance_id: The owning instance.
            step_index: The workflow step issuing the command.
            command: The activity (or compensation) command.

        Returns:
            The enqueued task.

        Raises:
            TypeError: If the command payload is not JSON serializable.
        """
        now = self.config.now()
        options = command.options.merged_with(self.config.default_activity_options)
        task = ActivityTask(
            id=uuid4(),
            instance_id=instance_id,
            step_index=step_index,
            activity_type=command.activity_type,
            payload=to_json_value(command.payload),
            options=options,
            next_attempt_at=now,
            is_compensation=command.kind == CommandKind.COMPENSATION,
        )
        payload = command.to_payload()
        payload["options"] = options.to_dict()
        await self.store.issue_activity(task, payload, recorded_at=now)
        return task

    async def process_due(self, queue_name: str | None = None, limit: int | None = None) -> int:
        """Claim and run due activity attempts.

        Args:
            queue_name: Only process tasks of this queue. ``None`` processes every queue.
            limit: Maximum tasks to claim. Defaults to the configured batch size.

        Returns:
            Number of attempts made.
        """
        tasks = await self.store.claim_activity_tasks(
            queue_name,
            self.config.now(),
            limit or self.config.batch_size,
            self.config.worker_id,
        )
        if not tasks:
            return 0

        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def run_bounded(task: ActivityTask) -> None:
            async with semaphore:
                await self.run_task(task)

        await asyncio.gather(*(run_bounded(task) for task in tasks))
        return len(tasks)

    async def run_task(self, task: ActivityTask) -> None:
        """Make one attempt of a claimed task and record the outcome."""
        instance = await self.store.get_instance(task.instance_id)
        if instance is None or instance.status.is_terminal:
            logger.info("Discarding activity %s of finished workflow instance %s", task.activity_type, task.instance_id)
            await self.store.discard_activity(task.id)
            return

        activity: Activity | None = None
        try:
            activity = self.activities.get(task.activity_type)
            # A result history cannot store counts as a failed attempt
            result = to_json_value(await self._attempt(activity, task))
        except Exception as e:
            await self._handle_failure(task, activity, e)
            return

        event = await self.store.complete_activity(task.id, result, recorded_at=self.config.now())
        if event is None:
            logger.debug("Result of activity %s for %s was not recorded", task.activity_type, task.instance_id)
        else:
            logger.debug("Activity %s completed for %s", task.activity_type, task.instance_id)

    async def _attempt(self, activity: Activity, task: ActivityTask) -> Any:
        timeout = task.options.timeout_seconds
        if task.is_compensation:
            call = _call(activity.compensate, task.instance_id, task.payload)
        else:
            call = _call(activity.handle, task.payload)
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ActivityTimeoutError(task.activity_type, timeout or 0.0) from e

    async def _handle_failure(self, task: ActivityTask, activity: Activity | None, error: Exception) -> None:
        attempts = task.attempt + 1
        max_retries = task.options.max_retries or 0

        if attempts <= max_retries:
            retry_at = self.config.now() + timedelta(seconds=task.options.retry_delay_seconds or 0)
            logger.warning(
                "Activity %s attempt %d of %d failed for %s, retrying at %s: %s",
                task.activity_type,
                attempts,
                max_retries + 1,
                task.instance_id,
                retry_at.isoformat(),
                error,
            )
            rescheduled = await self.store.retry_activity(
                task.id, self.config.worker_id, attempts, retry_at, f"{type(error).__name__}: {error}"
            )
            if not rescheduled:
                logger.debug("Activity task %s is no longer leased by %s", task.id, self.config.worker_id)
            return

        logger.warning(
            "Activity %s failed for %s after %d attempt(s): %s", task.activity_type, task.instance_id, attempts, error
        )
        on_failure = getattr(activity, "on_failure", None)
        if on_failure is not None and not task.is_compensation:
            try:
                await _call(on_failure, task.instance_id, error)
            except Exception:
                logger.exception("on_failure hook of activity %s raised", task.activity_type)

        error_payload = {
            "activity_type": task.activity_type,
            "error_type": type(error).__name__,
            "message": str(error),
            "attempts": attempts,
        }
        await self.store.fail_activity(task.id, attempts, error_payload, recorded_at=self.config.now())
