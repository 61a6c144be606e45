"""Replay engine and its subsystems.

This module provides the replay driver, the in-memory store, the activity
executor, timers, side effects, signals and the scheduler that resumes
suspended instances.
"""

from __future__ import annotations

from litestar_durable.engine.activities import ActivityExecutor
from litestar_durable.engine.memory import InMemoryWorkflowStore
from litestar_durable.engine.registry import ActivityRegistry, WorkflowRegistry
from litestar_durable.engine.replay import HistoryCursor, WorkflowEngine
from litestar_durable.engine.scheduler import Runner, Scheduler
from litestar_durable.engine.side_effects import SideEffectRecorder
from litestar_durable.engine.signals import SignalHandler
from litestar_durable.engine.timers import TimerService

__all__ = [
    "ActivityExecutor",
    "ActivityRegistry",
    "HistoryCursor",
    "InMemoryWorkflowStore",
    "Runner",
    "Scheduler",
    "SideEffectRecorder",
    "SignalHandler",
    "TimerService",
    "WorkflowEngine",
    "WorkflowRegistry",
]
