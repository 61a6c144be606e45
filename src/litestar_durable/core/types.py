"""Core type definitions for litestar-durable.

This module defines the fundamental enums and type aliases used throughout
the replay engine.
"""

from __future__ import annotations

import sys
from enum import Enum, auto
from typing import Any

# StrEnum backport for Python < 3.11
if sys.version_info >= (3, 11):
    from enum import StrEnum
else:

    class StrEnum(str, Enum):
        """String enumeration compatibility for Python < 3.11."""

        @staticmethod
        def _generate_next_value_(name: str, start: int, count: int, last_values: list[Any]) -> str:
            return name.lower()

        def __str__(self) -> str:
            return str(self.value)


from typing import TypeAlias

__all__ = [
    "ActivityTaskStatus",
    "CommandKind",
    "EventType",
    "Payload",
    "RESOLUTION_EVENT_TYPES",
    "STEP_COMMAND_EVENT_TYPES",
    "TERMINAL_STATUSES",
    "WorkflowStatus",
]


class WorkflowStatus(StrEnum):
    """Overall status of a workflow instance.

    Attributes:
        CREATED: Instance has been persisted but never executed.
        RUNNING: Instance is being replayed by the engine.
        SUSPENDED: Instance is waiting on an activity, timer or signal.
        COMPLETED: Workflow returned normally.
        FAILED: Workflow logic raised an unhandled error.
        CANCELED: Instance was canceled by a caller.
    """

    CREATED = auto()
    RUNNING = auto()
    SUSPENDED = auto()
    COMPLETED = auto()
    FAILED = auto()
    CANCELED = auto()

    @property
    def is_terminal(self) -> bool:
        """Whether no further history may be appended for this status."""
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.CANCELED})


class EventType(StrEnum):
    """Kind of a history event.

    Attributes:
        COMMAND_ISSUED: A workflow yielded a command at the frontier.
        ACTIVITY_COMPLETED: An activity (or compensation) returned a result.
        ACTIVITY_FAILED: An activity exhausted its retries.
        TIMER_FIRED: A durable timer elapsed.
        SIDE_EFFECT_RECORDED: A side-effect producer ran and its value was captured.
        SIGNAL_RECEIVED: An external signal arrived.
        WORKFLOW_COMPLETED: Terminal marker, workflow returned.
        WORKFLOW_FAILED: Terminal marker, workflow raised.
        WORKFLOW_CANCELED: Terminal marker, instance canceled.
    """

    COMMAND_ISSUED = auto()
    ACTIVITY_COMPLETED = auto()
    ACTIVITY_FAILED = auto()
    TIMER_FIRED = auto()
    SIDE_EFFECT_RECORDED = auto()
    SIGNAL_RECEIVED = auto()
    WORKFLOW_COMPLETED = auto()
    WORKFLOW_FAILED = auto()
    WORKFLOW_CANCELED = auto()


class CommandKind(StrEnum):
    """Tag of a command variant."""

    ACTIVITY = auto()
    COMPENSATION = auto()
    TIMER = auto()
    SIDE_EFFECT = auto()
    SIGNAL_WAIT = auto()


class ActivityTaskStatus(StrEnum):
    """Lifecycle of a queued activity invocation.

    Attributes:
        PENDING: Waiting for its next attempt to become due.
        RUNNING: Claimed by a worker under a lease.
        COMPLETED: Handler succeeded and the result was recorded.
        FAILED: Retries exhausted and the failure was recorded.
        DISCARDED: Dropped because the instance reached a terminal status.
    """

    PENDING = auto()
    RUNNING = auto()
    COMPLETED = auto()
    FAILED = auto()
    DISCARDED = auto()


Payload: TypeAlias = Any
"""JSON-serializable value exchanged with activities, signals and side effects."""


RESOLUTION_EVENT_TYPES = frozenset({EventType.ACTIVITY_COMPLETED, EventType.ACTIVITY_FAILED, EventType.TIMER_FIRED})
"""Events that resolve a previously issued command of the same step."""

STEP_COMMAND_EVENT_TYPES = frozenset({EventType.COMMAND_ISSUED, EventType.SIDE_EFFECT_RECORDED})
"""Events that record the command yielded at a step."""
