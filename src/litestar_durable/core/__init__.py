"""Core domain module for litestar-durable.

This module exports the fundamental building blocks for workflow definitions,
including commands, types, protocols, configuration and data models.
"""

from __future__ import annotations

from litestar_durable.core.commands import (
    ActivityCommand,
    ActivityOptions,
    Command,
    CompensationCommand,
    SideEffectCommand,
    SignalWaitCommand,
    TimerCommand,
)
from litestar_durable.core.config import EngineConfig, utc_now
from litestar_durable.core.definition import BaseActivity, BaseWorkflow
from litestar_durable.core.models import (
    ActivityTask,
    EngineOutcome,
    HistoryEvent,
    InstanceStatusView,
    TimerRecord,
    WorkflowInstanceData,
)
from litestar_durable.core.protocols import Activity, Workflow, WorkflowStore
from litestar_durable.core.types import (
    ActivityTaskStatus,
    CommandKind,
    EventType,
    Payload,
    WorkflowStatus,
)

__all__ = [
    "Activity",
    "ActivityCommand",
    "ActivityOptions",
    "ActivityTask",
    "ActivityTaskStatus",
    "BaseActivity",
    "BaseWorkflow",
    "Command",
    "CommandKind",
    "CompensationCommand",
    "EngineConfig",
    "EngineOutcome",
    "EventType",
    "HistoryEvent",
    "InstanceStatusView",
    "Payload",
    "SideEffectCommand",
    "SignalWaitCommand",
    "TimerCommand",
    "TimerRecord",
    "Workflow",
    "WorkflowInstanceData",
    "WorkflowStatus",
    "WorkflowStore",
    "utc_now",
]
