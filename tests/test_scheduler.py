"""Tests for the scheduler and the background runner."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import pytest

from litestar_durable.core.types import WorkflowStatus
from litestar_durable.engine.scheduler import Runner, Scheduler

if TYPE_CHECKING:
    from uuid import UUID

    from litestar_durable.engine.replay import WorkflowEngine
    from tests.conftest import FakeClock


@pytest.mark.unit
@pytest.mark.asyncio
class TestScheduler:
    """Tests for a single scheduling pass."""

    async def test_pass_runs_created_instances(self, engine: WorkflowEngine) -> None:
        instance_id = await engine.run("onboarding", {"email": "a@b.com"})

        assert await Scheduler(engine).poll_and_dispatch() == 1

        status = await engine.get_status(instance_id)
        assert status.status == WorkflowStatus.SUSPENDED
        assert status.waiting_on == "activity:create_user_record"

    async def test_idle_pass_does_nothing(self, engine: WorkflowEngine) -> None:
        assert await Scheduler(engine).poll_and_dispatch() == 0

    async def test_suspended_instance_is_not_resumed_without_wakeup(self, engine: WorkflowEngine) -> None:
        scheduler = Scheduler(engine)
        await engine.run("onboarding", {"email": "a@b.com"})
        await scheduler.poll_and_dispatch()

        assert await scheduler.poll_and_dispatch() == 0

    async def test_lock_acquisition_clears_wakeup(self, engine: WorkflowEngine, clock: FakeClock) -> None:
        instance_id = await engine.run("onboarding", {"email": "a@b.com"})

        assert await engine.store.try_acquire_lock(instance_id, "worker-a", clock(), 60)

        instance = await engine.store.get_instance(instance_id)
        assert instance.locked_by == "worker-a"
        assert instance.wakeup_requested is False

    async def test_instance_locked_by_other_worker_is_skipped(
        self, engine: WorkflowEngine, clock: FakeClock
    ) -> None:
        instance_id = await engine.run("onboarding", {"email": "a@b.com"})
        await engine.store.try_acquire_lock(instance_id, "other-worker", clock(), 60)
        await engine.store.request_wakeup(instance_id)

        assert await Scheduler(engine).dispatch(instance_id) is False
        assert await engine.store.find_resumable(clock(), 10) == []
        assert (await engine.get_status(instance_id)).status == WorkflowStatus.CREATED

    async def test_expired_lock_is_recovered(self, engine: WorkflowEngine, clock: FakeClock) -> None:
        instance_id = await engine.run("onboarding", {"email": "a@b.com"})
        # Simulate a worker that crashed mid-replay
        await engine.store.try_acquire_lock(instance_id, "crashed-worker", clock(), 60)
        await engine.store.update_instance(instance_id, status=WorkflowStatus.RUNNING)

        assert await Scheduler(engine).poll_and_dispatch() == 0

        clock.advance(seconds=61)
        assert await engine.store.find_resumable(clock(), 10) == [instance_id]
        assert await Scheduler(engine).poll_and_dispatch() == 1
        assert (await engine.get_status(instance_id)).status == WorkflowStatus.SUSPENDED

    async def test_lock_released_after_replay(self, engine: WorkflowEngine) -> None:
        instance_id = await engine.run("onboarding", {"email": "a@b.com"})

        await Scheduler(engine).dispatch(instance_id)

        instance = await engine.store.get_instance(instance_id)
        assert instance.locked_by is None
        assert instance.lock_expires_at is None

    async def test_release_by_other_worker_is_ignored(self, engine: WorkflowEngine, clock: FakeClock) -> None:
        instance_id = await engine.run("onboarding", {"email": "a@b.com"})
        await engine.store.try_acquire_lock(instance_id, "worker-a", clock(), 60)

        await engine.store.release_lock(instance_id, "worker-b")

        assert (await engine.store.get_instance(instance_id)).locked_by == "worker-a"

    async def test_errors_are_contained_and_retried(
        self, engine: WorkflowEngine, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
    ) -> None:
        instance_id = await engine.run("onboarding", {"email": "a@b.com"})
        original_execute = engine.execute

        async def flaky_execute(target: UUID) -> Any:
            monkeypatch.setattr(engine, "execute", original_execute)
            msg = "database went away"
            raise ConnectionError(msg)

        monkeypatch.setattr(engine, "execute", flaky_execute)
        scheduler = Scheduler(engine)

        assert await scheduler.dispatch(instance_id) is True

        instance = await engine.store.get_instance(instance_id)
        assert instance.wakeup_requested is True
        assert instance.locked_by is None
        assert "Failed to resume workflow instance" in caplog.text

        await scheduler.dispatch(instance_id)
        assert (await engine.get_status(instance_id)).status == WorkflowStatus.SUSPENDED

    async def test_concurrency_is_bounded(self, engine: WorkflowEngine, monkeypatch: pytest.MonkeyPatch) -> None:
        ids = [await engine.run("onboarding", {"email": f"user{i}@b.com"}) for i in range(3)]
        original_execute = engine.execute
        running = 0
        peak = 0

        async def slow_execute(target: UUID) -> Any:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            try:
                await asyncio.sleep(0.01)
                return await original_execute(target)
            finally:
                running -= 1

        monkeypatch.setattr(engine, "execute", slow_execute)

        assert await Scheduler(engine).poll_and_dispatch() == len(ids)
        assert peak == 1


@pytest.mark.integration
@pytest.mark.asyncio
class TestRunner:
    """Tests for the polling runner."""

    async def test_run_until_idle_drives_to_completion(self, engine: WorkflowEngine, runner: Runner) -> None:
        instance_id = await engine.run("onboarding", {"email": "a@b.com"})

        passes = await runner.run_until_idle()

        assert passes > 0
        assert (await engine.get_status(instance_id)).status == WorkflowStatus.COMPLETED
        assert await runner.run_until_idle() == 0

    async def test_orchestration_only_runner_leaves_activities(self, engine: WorkflowEngine) -> None:
        orchestrator = Runner(Scheduler(engine), process_activities=False)
        instance_id = await engine.run("onboarding", {"email": "a@b.com"})

        await orchestrator.run_until_idle()
        assert engine.activities.get("create_user_record").calls == []

        worker = Runner(Scheduler(engine), queue_names=["default"])
        await worker.run_until_idle()
        assert (await engine.get_status(instance_id)).status == WorkflowStatus.COMPLETED

    async def test_start_and_stop(self, engine: WorkflowEngine) -> None:
        engine.config.poll_interval_seconds = 0.01
        runner = Runner(Scheduler(engine))
        instance_id = await engine.run("onboarding", {"email": "a@b.com"})

        await runner.start()
        assert runner.is_running
        for _ in range(200):
            if (await engine.get_status(instance_id)).status == WorkflowStatus.COMPLETED:
                break
            await asyncio.sleep(0.01)
        await runner.stop()

        assert not runner.is_running
        assert (await engine.get_status(instance_id)).status == WorkflowStatus.COMPLETED

    async def test_start_is_idempotent(self, engine: WorkflowEngine) -> None:
        engine.config.poll_interval_seconds = 0.01
        runner = Runner(Scheduler(engine))

        await runner.start()
        task = runner._task
        await runner.start()

        assert runner._task is task
        await runner.stop()

    async def test_serve_until_stopped(self, engine: WorkflowEngine) -> None:
        engine.config.poll_interval_seconds = 0.01
        runner = Runner(Scheduler(engine))
        instance_id = await engine.run("onboarding", {"email": "a@b.com"})

        serving = asyncio.create_task(runner.serve())
        for _ in range(200):
            if (await engine.get_status(instance_id)).status == WorkflowStatus.COMPLETED:
                break
            await asyncio.sleep(0.01)
        await runner.stop()
        await asyncio.wait_for(serving, timeout=1)

        assert (await engine.get_status(instance_id)).status == WorkflowStatus.COMPLETED

    async def test_restart_after_stop(self, engine: WorkflowEngine) -> None:
        engine.config.poll_interval_seconds = 0.01
        runner = Runner(Scheduler(engine))

        await runner.start()
        await runner.stop()
        await runner.start()

        assert runner.is_running
        await runner.stop()
        assert not runner.is_running

    async def test_stop_without_start(self, runner: Runner) -> None:
        await runner.stop()

        assert not runner.is_running
