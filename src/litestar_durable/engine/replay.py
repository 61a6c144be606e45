"""Replay-based workflow execution engine.

Workflow code is a generator that yields commands. Every resumption re-runs it
from the start: each yielded command is matched by step index against the
recorded history, and already-resolved steps are answered from the log without
doing any real work. The first step with no recorded resolution is the
frontier, where new work is dispatched and the instance suspends.

Signals are delivered to ``handle_signal`` strictly in history order: before a
step's resolution with sequence number ``R`` is fed back into the generator,
every signal recorded before ``R`` that has not been delivered yet is passed to
the workflow. Since the rule depends only on recorded sequence numbers, every
replay observes signals at the same points.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, NamedTuple
from uuid import uuid4

from litestar_durable.core.commands import (
    ActivityCommand,
    Command,
    SideEffectCommand,
    SignalWaitCommand,
    TimerCommand,
)
from litestar_durable.core.config import EngineConfig
from litestar_durable.core.models import EngineOutcome, InstanceStatusView, WorkflowInstanceData
from litestar_durable.core.serialization import to_json_value
from litestar_durable.core.types import (
    RESOLUTION_EVENT_TYPES,
    STEP_COMMAND_EVENT_TYPES,
    EventType,
    WorkflowStatus,
)
from litestar_durable.engine.activities import ActivityExecutor
from litestar_durable.engine.registry import ActivityRegistry
from litestar_durable.engine.side_effects import SideEffectRecorder
from litestar_durable.engine.signals import SignalHandler
from litestar_durable.engine.timers import TimerService
from litestar_durable.exceptions import (
    ActivityFailedError,
    InstanceQuarantinedError,
    InvalidCommandError,
    NonDeterminismError,
    SideEffectError,
    WorkflowAlreadyCompletedError,
    WorkflowInstanceNotFoundError,
    WorkflowNotFoundError,
)

if TYPE_CHECKING:
    from collections.abc import Generator, Iterable
    from uuid import UUID

    from litestar_durable.core.models import HistoryEvent
    from litestar_durable.core.protocols import Workflow, WorkflowStore
    from litestar_durable.engine.registry import WorkflowRegistry

__all__ = ["HistoryCursor", "WorkflowEngine"]

logger = logging.getLogger(__name__)


class HistoryCursor:
    """Step-indexed view of an instance's history.

    Attributes:
        commands: Command event per step (``COMMAND_ISSUED`` or ``SIDE_EFFECT_RECORDED``).
        resolutions: Resolving event per step.
        signals: ``SIGNAL_RECEIVED`` events in sequence order.
        last_sequence: Highest sequence number seen so far.
    """

    def __init__(self, events: Iterable[HistoryEvent] = ()) -> None:
        self.commands: dict[int, HistoryEvent] = {}
        self.resolutions: dict[int, HistoryEvent] = {}
        self.signals: list[HistoryEvent] = []
        self.last_sequence = 0
        self.extend(events)

    def extend(self, events: Iterable[HistoryEvent]) -> None:
        """Index events appended after the ones already seen."""
        for event in events:
            self.last_sequence = max(self.last_sequence, event.sequence_number)
            if event.event_type in STEP_COMMAND_EVENT_TYPES and event.step_index is not None:
                self.commands[event.step_index] = event
                if event.event_type == EventType.SIDE_EFFECT_RECORDED:
                    self.resolutions[event.step_index] = event
            elif event.event_type in RESOLUTION_EVENT_TYPES and event.step_index is not None:
                self.resolutions[event.step_index] = event
            elif event.event_type == EventType.SIGNAL_RECEIVED:
                self.signals.append(event)

    @property
    def last_step(self) -> int:
        """Highest step with a recorded command, or -1."""
        return max(self.commands, default=-1)

    def nth_signal(self, signal_name: str, rank: int) -> HistoryEvent | None:
        """Return the ``rank``-th (0-based) received signal named ``signal_name``."""
        matching = [s for s in self.signals if _signal_name(s) == signal_name]
        return matching[rank] if rank < len(matching) else None


class _Resolution(NamedTuple):
    sequence_number: int
    value: Any = None
    error: Exception | None = None


@dataclass
class _Finished:
    result: Any = None
    error: Exception | None = None


@dataclass
class _Suspended:
    waiting_on: str


@dataclass
class _Replay:
    """Mutable state of a single pass over the workflow generator."""

    workflow: Workflow
    cursor: HistoryCursor
    generator: Generator[Command, Any, Any] | None = None
    step: int = 0
    replayed: int = 0
    commands: list[Command] = field(default_factory=list)
    delivered: int = 0
    ranks: dict[str, int] = field(default_factory=dict)

    def start(self, input: Any) -> Command | _Finished:
        try:
            generator = self.workflow.execute(input)
        except Exception as exc:
            return _Finished(error=exc)
        if not inspect.isgenerator(generator):
            return _Finished(result=generator)
        self.generator = generator
        return self._advance(lambda: next(generator))

    def resume(self, resolution: _Resolution) -> Command | _Finished:
        generator = self.generator
        if generator is None:
            msg = "Cannot resume a workflow that has not yielded a command"
            raise RuntimeError(msg)
        if resolution.error is not None:
            error = resolution.error
            return self._advance(lambda: generator.throw(error))
        return self._advance(lambda: generator.send(resolution.value))

    def deliver_signals(self, before_sequence: int) -> _Finished | None:
        signals = self.cursor.signals
        while self.delivered < len(signals) and signals[self.delivered].sequence_number < before_sequence:
            event = signals[self.delivered]
            self.delivered += 1
            try:
                self.workflow.handle_signal(_signal_name(event), event.result_payload)
            except Exception as exc:
                return _Finished(error=exc)
        return None

    def next_rank(self, signal_name: str) -> int:
        rank = self.ranks.get(signal_name, 0)
        self.ranks[signal_name] = rank + 1
        return rank

    def _advance(self, resume: Any) -> Command | _Finished:
        try:
            yielded = resume()
        except StopIteration as stop:
            return _Finished(result=stop.value)
        except Exception as exc:
            return _Finished(error=exc)
        if not isinstance(yielded, Command):
            return _Finished(error=InvalidCommandError(yielded))
        self.commands.append(yielded)
        return yielded


def _signal_name(event: HistoryEvent) -> str:
    return (event.command_payload or {}).get("signal_name", "")


def _describe(signature: tuple[str, str | None]) -> str:
    kind, name = signature
    return f"{kind} {name!r}" if name else kind


def _waiting_on(command: Command, cursor_event: HistoryEvent | None = None) -> str:
    if isinstance(command, ActivityCommand):
        return f"{command.kind}:{command.activity_type}"
    if isinstance(command, SignalWaitCommand):
        return f"signal:{command.signal_name}"
    if isinstance(command, TimerCommand):
        fire_at = (cursor_event.command_payload or {}).get("fire_at") if cursor_event else None
        return f"timer:{fire_at}" if fire_at else "timer"
    return str(command.kind)


def _failure_reason(error: BaseException) -> str:
    return f"{type(error).__name__}: {error}"


class WorkflowEngine:
    """Replay driver and public API of the durable workflow engine.

    The engine owns the transition of instances between statuses. It never
    blocks while an instance waits: :meth:`execute` runs the workflow up to its
    frontier, hands new work to the activity executor, timer service or signal
    buffer, and returns. The :class:`~litestar_durable.engine.scheduler.Scheduler`
    calls :meth:`execute` again once something the instance waits on resolves.

    Attributes:
        store: Durable storage of instances and history.
        registry: Workflow definitions by name and version.
        activities: Activity handlers by type.
        config: Engine-wide configuration.
        event_bus: Optional object with an async ``emit(name, **kwargs)`` method.
        executor: Activity executor sharing the engine's store.
        timers: Timer service sharing the engine's store.
        side_effects: Side-effect recorder sharing the engine's store.
        signals: Signal handler sharing the engine's store.

    Example:
        >>> engine = WorkflowEngine(InMemoryWorkflowStore(), registry, activities)
        >>> instance_id = await engine.run("onboarding", {"email": "a@b.com"})
        >>> await engine.execute(instance_id)
    """

    def __init__(
        self,
        store: WorkflowStore,
        registry: WorkflowRegistry,
        activities: ActivityRegistry | None = None,
        config: EngineConfig | None = None,
        event_bus: Any | None = None,
    ) -> None:
        """Initialize the engine and its subsystems.

        Args:
            store: The workflow store.
            registry: The workflow registry.
            activities: The activity registry. A new, empty one is created if omitted.
            config: Engine configuration. Defaults are used if omitted.
            event_bus: Optional event bus implementing an async ``emit`` method.
        """
        self.store = store
        self.registry = registry
        self.activities = activities if activities is not None else ActivityRegistry()
        self.config = config or EngineConfig()
        self.event_bus = event_bus
        self.executor = ActivityExecutor(store, self.activities, self.config)
        self.timers = TimerService(store, self.config)
        self.side_effects = SideEffectRecorder(store, self.config)
        self.signals = SignalHandler(store, self.config)

    async def run(
        self,
        workflow_type: str,
        input: Any = None,
        business_key: str | None = None,
        version: str | None = None,
    ) -> UUID:
        """Start a new workflow instance.

        The instance is persisted as CREATED with a pending wake-up; the
        scheduler runs it on its next poll (or call :meth:`execute` directly).

        Args:
            workflow_type: Registered workflow name.
            input: Immutable input passed to ``execute``.
            business_key: Optional key making the start idempotent per workflow type.
            version: Pin a specific version instead of the latest.

        Returns:
            The new instance id, or the id of the existing non-terminal instance
            started with the same ``business_key``.

        Raises:
            WorkflowNotFoundError: If the workflow (or version) is not registered.
            TypeError: If ``input`` is not JSON serializable.
        """
        workflow_class = self.registry.get_workflow_class(workflow_type, version)
        candidate = WorkflowInstanceData(
            id=uuid4(),
            workflow_type=workflow_class.name,
            workflow_version=workflow_class.version,
            input=to_json_value(input),
            status=WorkflowStatus.CREATED,
            started_at=self.config.now(),
            business_key=business_key,
            wakeup_requested=True,
        )
        instance = await self.store.create_instance(candidate)
        if instance.id != candidate.id:
            logger.info(
                "Workflow %s with business key %r already running as %s", workflow_type, business_key, instance.id
            )
            return instance.id

        logger.info("Started workflow %s v%s as %s", instance.workflow_type, instance.workflow_version, instance.id)
        await self._emit("workflow.started", instance_id=instance.id, workflow_type=instance.workflow_type)
        return instance.id

    async def execute(self, instance_id: UUID) -> EngineOutcome:
        """Replay an instance up to its frontier and dispatch new work.

        Callers must hold the instance's execution lock; the scheduler does this.

        Args:
            instance_id: The instance to resume.

        Returns:
            The outcome of this resumption cycle.

        Raises:
            WorkflowInstanceNotFoundError: If the instance does not exist.
            InstanceQuarantinedError: If the instance is quarantined.
            NonDeterminismError: If replay diverged from history. The instance is quarantined.
            WorkflowNotFoundError: If the pinned version is no longer registered.
                The instance is quarantined.
        """
        instance = await self._require(instance_id)
        if instance.status.is_terminal:
            return self._outcome(instance)
        if instance.quarantined:
            raise InstanceQuarantinedError(instance_id, instance.failure_reason)

        try:
            workflow_class = self.registry.get_workflow_class(instance.workflow_type, instance.workflow_version)
        except WorkflowNotFoundError as exc:
            await self._quarantine(instance, str(exc))
            raise

        try:
            await self.store.update_instance(instance_id, status=WorkflowStatus.RUNNING)
            cursor = HistoryCursor(await self.store.load_history(instance_id))
            replay = _Replay(workflow=workflow_class(), cursor=cursor)
            result = await self._drive(instance, replay)
            if isinstance(result, _Suspended):
                return await self._suspend(instance, result.waiting_on, replay.replayed)
            return await self._finish(instance, result, replay.replayed)
        except NonDeterminismError as exc:
            await self._quarantine(instance, str(exc))
            raise
        except WorkflowAlreadyCompletedError:
            # Canceled by another caller while replaying
            logger.info("Workflow instance %s finished concurrently, dropping replay", instance_id)
            return self._outcome(await self._require(instance_id))

    async def signal(self, instance_id: UUID, signal_name: str, payload: Any = None) -> HistoryEvent:
        """Deliver an external signal. See :meth:`SignalHandler.signal`."""
        return await self.signals.signal(instance_id, signal_name, payload)

    async def get_status(self, instance_id: UUID) -> InstanceStatusView:
        """Return the last durably recorded status of an instance.

        ``next_due_at`` carries the earliest pending timer so that a SUSPENDED
        instance waiting on a long timer can be told apart from a stuck one.

        Raises:
            WorkflowInstanceNotFoundError: If the instance does not exist.
        """
        instance = await self._require(instance_id)
        next_due_at = None if instance.status.is_terminal else await self.store.next_timer_due(instance_id)
        return InstanceStatusView(
            instance_id=instance.id,
            status=instance.status,
            result=instance.result,
            failure_reason=instance.failure_reason,
            waiting_on=instance.waiting_on,
            next_due_at=next_due_at,
            quarantined=instance.quarantined,
        )

    async def cancel(self, instance_id: UUID, reason: str | None = None) -> None:
        """Cancel a non-terminal instance.

        Appends a ``WORKFLOW_CANCELED`` marker. Activities already in flight are
        not interrupted; their results are discarded when they complete.

        Raises:
            WorkflowInstanceNotFoundError: If the instance does not exist.
            WorkflowAlreadyCompletedError: If the instance is already terminal.
        """
        instance = await self._require(instance_id)
        finished = await self.store.finish_instance(
            instance_id,
            WorkflowStatus.CANCELED,
            EventType.WORKFLOW_CANCELED,
            failure_reason=reason or "Canceled",
            finished_at=self.config.now(),
        )
        if not finished:
            current = await self._require(instance_id)
            raise WorkflowAlreadyCompletedError(instance_id, current.status)

        logger.info("Canceled workflow instance %s (%s)", instance_id, instance.workflow_type)
        await self._emit("workflow.canceled", instance_id=instance_id, reason=reason)

    async def get_history(self, instance_id: UUID) -> list[HistoryEvent]:
        """Return the full ordered history of an instance."""
        await self._require(instance_id)
        return await self.store.load_history(instance_id)

    async def list_instances(
        self,
        status: WorkflowStatus | None = None,
        workflow_type: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[WorkflowInstanceData]:
        """List instances, most recently started first.

        Args:
            status: Only return instances in this status.
            workflow_type: Only return instances of this workflow.
            limit: Maximum number of instances to return.
            offset: Number of matching instances to skip.

        Returns:
            Snapshots of the matching instances.
        """
        return await self.store.list_instances(status=status, workflow_type=workflow_type, limit=limit, offset=offset)

    async def replay(self, instance_id: UUID, version: str | None = None) -> list[Command]:
        """Replay recorded history against the current code without writing anything.

        Side-effect producers are not invoked and no work is dispatched; the
        replay stops at the frontier.

        Args:
            instance_id: The instance whose history is replayed.
            version: Replay against this workflow version instead of the pinned one.

        Returns:
            The commands the workflow yielded, in order, up to and including the frontier.

        Raises:
            NonDeterminismError: If the code diverges from recorded history.
        """
        instance = await self._require(instance_id)
        workflow_class = self.registry.get_workflow_class(
            instance.workflow_type, version or instance.workflow_version
        )
        cursor = HistoryCursor(await self.store.load_history(instance_id))
        replay = _Replay(workflow=workflow_class(), cursor=cursor)
        await self._drive(instance, replay, dry_run=True)
        return replay.commands

    async def release_quarantine(self, instance_id: UUID) -> None:
        """Clear the quarantine flag and request a new replay.

        Call this after deploying workflow code compatible with the instance's history.

        Raises:
            WorkflowInstanceNotFoundError: If the instance does not exist.
            WorkflowAlreadyCompletedError: If the instance is terminal.
        """
        instance = await self._require(instance_id)
        if instance.status.is_terminal:
            raise WorkflowAlreadyCompletedError(instance_id, instance.status)
        if not instance.quarantined:
            return
        await self.store.update_instance(instance_id, quarantined=False, failure_reason=None, wakeup_requested=True)
        logger.info("Released workflow instance %s from quarantine", instance_id)

    async def _drive(
        self,
        instance: WorkflowInstanceData,
        replay: _Replay,
        dry_run: bool = False,
    ) -> _Finished | _Suspended:
        cursor = replay.cursor
        current = replay.start(instance.input)

        while isinstance(current, Command):
            command = current
            step = replay.step
            recorded = cursor.commands.get(step)

            if recorded is not None:
                self._check_determinism(instance.id, step, command, recorded)
                resolution = self._recorded_resolution(replay, step, command, recorded)
                if resolution is None:
                    if cursor.last_step > step:
                        raise NonDeterminismError(
                            instance.id,
                            step,
                            f"resolved {_describe(Command.signature_of(recorded.command_payload or {}))}",
                            f"unresolved {_describe(command.signature())}",
                        )
                    return _Suspended(_waiting_on(command, recorded))
                replay.replayed += 1
                logger.debug("Replayed step %d of %s from history", step, instance.id)
            else:
                if cursor.last_step > step:
                    later = cursor.commands[cursor.last_step]
                    raise NonDeterminismError(
                        instance.id,
                        step,
                        _describe(Command.signature_of(later.command_payload or {})),
                        _describe(command.signature()),
                    )
                if dry_run:
                    return _Suspended(_waiting_on(command))
                frontier = await self._dispatch(instance, replay, step, command)
                if not isinstance(frontier, _Resolution):
                    return frontier

                resolution = frontier

            replay.step += 1
            interrupted = replay.deliver_signals(resolution.sequence_number)
            current = interrupted if interrupted is not None else replay.resume(resolution)

        if cursor.last_step >= replay.step:
            extra = cursor.commands[cursor.last_step]
            raise NonDeterminismError(
                instance.id,
                replay.step,
                _describe(Command.signature_of(extra.command_payload or {})),
                "workflow completion",
            )
        return current

    async def _dispatch(
        self,
        instance: WorkflowInstanceData,
        replay: _Replay,
        step: int,
        command: Command,
    ) -> _Resolution | _Finished | _Suspended:
        """Handle a command at the frontier."""
        cursor = replay.cursor

        if isinstance(command, ActivityCommand):
            try:
                await self.executor.invoke(instance.id, step, command)
            except (TypeError, ValueError) as exc:
                return _Finished(error=exc)
            logger.debug("Issued %s %s at step %d of %s", command.kind, command.activity_type, step, instance.id)
            return _Suspended(_waiting_on(command))

        if isinstance(command, TimerCommand):
            event = await self.timers.schedule(instance.id, step, command)
            return _Suspended(_waiting_on(command, event))

        if isinstance(command, SideEffectCommand):
            try:
                event = await self.side_effects.record_event(instance.id, step, command)
            except SideEffectError as exc:
                return _Finished(error=exc.error)
            cursor.extend(await self.store.load_history(instance.id, after_sequence=cursor.last_sequence))
            return _Resolution(event.sequence_number, event.result_payload)

        if isinstance(command, SignalWaitCommand):
            await self.store.append_event(
                instance.id,
                EventType.COMMAND_ISSUED,
                recorded_at=self.config.now(),
                step_index=step,
                command_payload=command.to_payload(),
            )
            cursor.extend(await self.store.load_history(instance.id, after_sequence=cursor.last_sequence))
            resolution = self._recorded_resolution(replay, step, command, cursor.commands[step])
            return resolution if resolution is not None else _Suspended(_waiting_on(command))

        raise InvalidCommandError(command)

    def _recorded_resolution(
        self,
        replay: _Replay,
        step: int,
        command: Command,
        recorded: HistoryEvent,
    ) -> _Resolution | None:
        """Resolve a step whose command is already in history, or None if still pending."""
        if isinstance(command, SignalWaitCommand):
            signal = replay.cursor.nth_signal(command.signal_name, replay.next_rank(command.signal_name))
            if signal is None:
                return None
            return _Resolution(max(recorded.sequence_number, signal.sequence_number), signal.result_payload)

        if isinstance(command, SideEffectCommand):
            return _Resolution(recorded.sequence_number, recorded.result_payload)

        resolved = replay.cursor.resolutions.get(step)
        if resolved is None:
            return None
        if resolved.event_type == EventType.ACTIVITY_FAILED:
            error = ActivityFailedError.from_payload(resolved.error_payload or {})
            return _Resolution(resolved.sequence_number, error=error)
        return _Resolution(resolved.sequence_number, resolved.result_payload)

    @staticmethod
    def _check_determinism(instance_id: UUID, step: int, command: Command, recorded: HistoryEvent) -> None:
        expected = Command.signature_of(recorded.command_payload or {})
        actual = command.signature()
        if expected != actual:
            raise NonDeterminismError(instance_id, step, _describe(expected), _describe(actual))

    async def _suspend(self, instance: WorkflowInstanceData, waiting_on: str, replayed: int) -> EngineOutcome:
        updated = await self.store.update_instance(instance.id, status=WorkflowStatus.SUSPENDED, waiting_on=waiting_on)
        logger.debug("Workflow instance %s suspended waiting on %s", instance.id, waiting_on)
        await self._emit("workflow.suspended", instance_id=instance.id, waiting_on=waiting_on)
        return self._outcome(updated, replayed)

    async def _finish(self, instance: WorkflowInstanceData, finished: _Finished, replayed: int) -> EngineOutcome:
        now = self.config.now()
        if finished.error is None:
            try:
                finished = _Finished(result=to_json_value(finished.result))
            except (TypeError, ValueError) as exc:
                finished = _Finished(error=exc)
        if finished.error is None:
            done = await self.store.finish_instance(
                instance.id,
                WorkflowStatus.COMPLETED,
                EventType.WORKFLOW_COMPLETED,
                result=finished.result,
                finished_at=now,
            )
            if done:
                logger.info("Workflow instance %s completed", instance.id)
                await self._emit("workflow.completed", instance_id=instance.id, result=finished.result)
        else:
            reason = _failure_reason(finished.error)
            done = await self.store.finish_instance(
                instance.id,
                WorkflowStatus.FAILED,
                EventType.WORKFLOW_FAILED,
                failure_reason=reason,
                finished_at=now,
            )
            if done:
                logger.info("Workflow instance %s failed: %s", instance.id, reason)
                await self._emit("workflow.failed", instance_id=instance.id, error=reason)
        return self._outcome(await self._require(instance.id), replayed)

    async def _quarantine(self, instance: WorkflowInstanceData, reason: str) -> None:
        logger.warning("Quarantining workflow instance %s: %s", instance.id, reason)
        await self.store.update_instance(
            instance.id,
            status=instance.status,
            quarantined=True,
            failure_reason=reason,
            wakeup_requested=False,
        )
        await self._emit("workflow.quarantined", instance_id=instance.id, reason=reason)

    async def _require(self, instance_id: UUID) -> WorkflowInstanceData:
        instance = await self.store.get_instance(instance_id)
        if instance is None:
            raise WorkflowInstanceNotFoundError(instance_id)
        return instance

    async def _emit(self, event_name: str, **kwargs: Any) -> None:
        if self.event_bus:
            await self.event_bus.emit(event_name, **kwargs)

    @staticmethod
    def _outcome(instance: WorkflowInstanceData, replayed: int = 0) -> EngineOutcome:
        return EngineOutcome(
            instance_id=instance.id,
            status=instance.status,
            result=instance.result,
            failure_reason=instance.failure_reason,
            waiting_on=instance.waiting_on,
            steps_replayed=replayed,
        )
