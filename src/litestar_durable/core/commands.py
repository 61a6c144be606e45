"""Commands yielded by workflow code.

A workflow's ``execute`` generator yields one of these at every point where it
needs the outside world: an activity, a durable timer, a captured side effect,
or an external signal. The engine records each command in history and feeds the
resolved value back into the generator on replay.

Example:
    >>> class Onboarding(BaseWorkflow):
    ...     name = "onboarding"
    ...
    ...     def execute(self, input):
    ...         user = yield ActivityCommand("create_user_record", {"email": input["email"]})
    ...         yield TimerCommand.after(timedelta(days=1))
    ...         yield ActivityCommand("send_welcome_email", {"user_id": user["id"]})
    ...         return f"Onboarding complete for user: {user['id']}"
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta
from typing import Any, ClassVar

from litestar_durable.core.types import CommandKind

__all__ = [
    "ActivityCommand",
    "ActivityOptions",
    "Command",
    "CompensationCommand",
    "SideEffectCommand",
    "SignalWaitCommand",
    "TimerCommand",
]


@dataclass(frozen=True)
class ActivityOptions:
    """Per-command activity options.

    Any field left as ``None`` falls back to the engine-wide default from
    :class:`~litestar_durable.core.config.EngineConfig`.

    Attributes:
        timeout_seconds: Maximum wall time of a single attempt.
        max_retries: Retries after the first attempt before the activity fails.
        retry_delay_seconds: Delay between a failed attempt and the next one.
        queue_name: Queue the activity is dispatched on.
    """

    timeout_seconds: float | None = None
    max_retries: int | None = None
    retry_delay_seconds: float | None = None
    queue_name: str | None = None

    def merged_with(self, defaults: ActivityOptions) -> ActivityOptions:
        """Return a copy where unset fields are filled from ``defaults``."""
        merged = {}
        for f in fields(self):
            value = getattr(self, f.name)
            merged[f.name] = value if value is not None else getattr(defaults, f.name)
        return ActivityOptions(**merged)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ActivityOptions:
        data = data or {}
        return cls(**{f.name: data.get(f.name) for f in fields(cls)})


class Command:
    """Base class of all commands.

    Subclasses set :attr:`kind` and implement :meth:`to_payload`. The
    :meth:`signature` is what replay compares against history to detect
    non-deterministic workflow changes.
    """

    kind: ClassVar[CommandKind]

    def to_payload(self) -> dict[str, Any]:
        """Serialize the command for the ``command_payload`` history column."""
        raise NotImplementedError

    def signature(self) -> tuple[str, str | None]:
        """Identity of the command used for determinism checks."""
        return (str(self.kind), None)

    @staticmethod
    def signature_of(payload: dict[str, Any]) -> tuple[str, str | None]:
        """Compute the signature of a recorded ``command_payload``."""
        kind = payload.get("kind", "")
        if kind in (CommandKind.ACTIVITY, CommandKind.COMPENSATION):
            return (kind, payload.get("activity_type"))
        if kind == CommandKind.SIGNAL_WAIT:
            return (kind, payload.get("signal_name"))
        if kind == CommandKind.SIDE_EFFECT:
            return (kind, payload.get("name"))
        return (kind, None)


@dataclass
class ActivityCommand(Command):
    """Invoke an activity and wait for its result.

    Attributes:
        activity_type: Registered name of the activity.
        payload: JSON-serializable argument passed to ``handle``.
        options: Optional per-command overrides of the engine defaults.
    """

    kind: ClassVar[CommandKind] = CommandKind.ACTIVITY

    activity_type: str
    payload: Any = None
    options: ActivityOptions = field(default_factory=ActivityOptions)

    def to_payload(self) -> dict[str, Any]:
        return {
            "kind": str(self.kind),
            "activity_type": self.activity_type,
            "payload": self.payload,
            "options": self.options.to_dict(),
        }

    def signature(self) -> tuple[str, str | None]:
        return (str(self.kind), self.activity_type)


@dataclass
class CompensationCommand(ActivityCommand):
    """Invoke an activity's ``compensate`` hook with the original payload.

    Compensation is never automatic: workflow error-handling code yields this
    explicitly while unwinding earlier successful steps (Saga pattern).
    """

    kind: ClassVar[CommandKind] = CommandKind.COMPENSATION


@dataclass
class TimerCommand(Command):
    """Suspend until a point in time.

    Use :meth:`after` for a relative delay; the engine resolves it against its
    clock the first time the command is issued and replays the recorded time
    afterwards, so workflow code never reads the wall clock itself.

    Attributes:
        fire_at: Absolute, timezone-aware time at which the timer fires.
        delay: Relative delay resolved at the frontier.
    """

    kind: ClassVar[CommandKind] = CommandKind.TIMER

    fire_at: datetime | None = None
    delay: timedelta | None = None

    def __post_init__(self) -> None:
        if (self.fire_at is None) == (self.delay is None):
            msg = "TimerCommand requires exactly one of 'fire_at' or 'delay'"
            raise ValueError(msg)
        if self.fire_at is not None and self.fire_at.tzinfo is None:
            msg = "TimerCommand.fire_at must be timezone-aware"
            raise ValueError(msg)

    @classmethod
    def after(cls, delay: timedelta) -> TimerCommand:
        return cls(delay=delay)

    def resolve_fire_at(self, now: datetime) -> datetime:
        """Return the absolute fire time given the engine's current time."""
        if self.fire_at is not None:
            return self.fire_at
        return now + self.delay  # type: ignore[operator]

    def to_payload(self) -> dict[str, Any]:
        return {
            "kind": str(self.kind),
            "fire_at": self.fire_at.isoformat() if self.fire_at else None,
            "delay_seconds": self.delay.total_seconds() if self.delay is not None else None,
        }


@dataclass
class SideEffectCommand(Command):
    """Capture the result of non-deterministic code exactly once.

    The producer runs only when the step is first reached; every later replay
    receives the recorded value instead.

    Attributes:
        producer: Zero-argument callable returning a JSON-serializable value.
        name: Optional label, checked on replay to catch reordered side effects.
    """

    kind: ClassVar[CommandKind] = CommandKind.SIDE_EFFECT

    producer: Callable[[], Any]
    name: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {"kind": str(self.kind), "name": self.name}

    def signature(self) -> tuple[str, str | None]:
        return (str(self.kind), self.name)


@dataclass
class SignalWaitCommand(Command):
    """Suspend until a signal with the given name is received.

    Signals are buffered in history: the n-th wait on a name consumes the n-th
    signal received under that name, whether it arrived before or after the wait.

    Attributes:
        signal_name: Name of the signal to wait for.
    """

    kind: ClassVar[CommandKind] = CommandKind.SIGNAL_WAIT

    signal_name: str

    def to_payload(self) -> dict[str, Any]:
        return {"kind": str(self.kind), "signal_name": self.signal_name}

    def signature(self) -> tuple[str, str | None]:
        return (str(self.kind), self.signal_name)
