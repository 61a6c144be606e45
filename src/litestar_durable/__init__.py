"""Litestar Durable - Durable, replay-based workflows for Litestar.

Workflows are plain Python generators that yield commands. Every step is
recorded in an append-only history, so an instance survives process restarts
and resumes exactly where it left off by replaying its log.

Key Features:
    - Deterministic replay with non-determinism detection and quarantine
    - Activities with timeouts, retries, failure hooks and compensation
    - Durable timers that hold no resources while waiting
    - Buffered external signals
    - In-memory and SQLAlchemy stores
    - Litestar plugin with a background runner and REST API

Example:
    >>> from litestar_durable import ActivityCommand, BaseWorkflow
    >>>
    >>> class Onboarding(BaseWorkflow):
    ...     name = "onboarding"
    ...
    ...     def execute(self, input):
    ...         user = yield ActivityCommand("create_user_record", {"email": input["email"]})
    ...         yield ActivityCommand("send_welcome_email", {"user_id": user["id"]})
    ...         return f"Onboarding complete for user: {user['id']}"
"""

from __future__ import annotations

from litestar_durable.__metadata__ import __project__, __version__
from litestar_durable.core import (
    ActivityCommand,
    ActivityOptions,
    BaseActivity,
    BaseWorkflow,
    Command,
    CompensationCommand,
    EngineConfig,
    EngineOutcome,
    EventType,
    HistoryEvent,
    InstanceStatusView,
    SideEffectCommand,
    SignalWaitCommand,
    TimerCommand,
    WorkflowStatus,
    WorkflowStore,
)
from litestar_durable.engine import (
    ActivityRegistry,
    InMemoryWorkflowStore,
    Runner,
    Scheduler,
    WorkflowEngine,
    WorkflowRegistry,
)
from litestar_durable.exceptions import (
    ActivityError,
    ActivityFailedError,
    ActivityNotFoundError,
    ActivityTimeoutError,
    InstanceQuarantinedError,
    InvalidCommandError,
    NonDeterminismError,
    SideEffectError,
    StoreError,
    WorkflowAlreadyCompletedError,
    WorkflowInstanceNotFoundError,
    WorkflowNotFoundError,
    WorkflowsError,
)
from litestar_durable.plugin import WorkflowPlugin, WorkflowPluginConfig

__all__ = (
    "ActivityCommand",
    "ActivityError",
    "ActivityFailedError",
    "ActivityNotFoundError",
    "ActivityOptions",
    "ActivityRegistry",
    "ActivityTimeoutError",
    "BaseActivity",
    "BaseWorkflow",
    "Command",
    "CompensationCommand",
    "EngineConfig",
    "EngineOutcome",
    "EventType",
    "HistoryEvent",
    "InMemoryWorkflowStore",
    "InstanceQuarantinedError",
    "InstanceStatusView",
    "InvalidCommandError",
    "NonDeterminismError",
    "Runner",
    "Scheduler",
    "SideEffectCommand",
    "SideEffectError",
    "SignalWaitCommand",
    "StoreError",
    "TimerCommand",
    "WorkflowAlreadyCompletedError",
    "WorkflowEngine",
    "WorkflowInstanceNotFoundError",
    "WorkflowNotFoundError",
    "WorkflowPlugin",
    "WorkflowPluginConfig",
    "WorkflowRegistry",
    "WorkflowStatus",
    "WorkflowStore",
    "WorkflowsError",
    "__project__",
    "__version__",
)
