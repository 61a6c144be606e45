"""Database persistence layer for litestar-durable.

This module provides the SQLAlchemy models, repositories and the durable
:class:`SQLAlchemyWorkflowStore` backing the replay engine.
"""

from __future__ import annotations

from litestar_durable.db.models import (
    ActivityTaskModel,
    HistoryEventModel,
    TimerModel,
    WorkflowInstanceModel,
)
from litestar_durable.db.repositories import (
    ActivityTaskRepository,
    HistoryEventRepository,
    TimerRepository,
    WorkflowInstanceRepository,
)
from litestar_durable.db.store import SQLAlchemyWorkflowStore

__all__ = [
    "ActivityTaskModel",
    "ActivityTaskRepository",
    "HistoryEventModel",
    "HistoryEventRepository",
    "SQLAlchemyWorkflowStore",
    "TimerModel",
    "TimerRepository",
    "WorkflowInstanceModel",
    "WorkflowInstanceRepository",
]
