"""Web layer for litestar-durable.

This module provides the REST API controllers for starting, inspecting,
signaling and canceling durable workflow instances. The API is registered
automatically by WorkflowPlugin with enable_api=True (the default).

Example:
    With authentication guards::

        from litestar_durable import WorkflowPlugin, WorkflowPluginConfig

        config = WorkflowPluginConfig(
            api_path_prefix="/api/v1/workflows",
            api_guards=[require_operator],
        )
        app = Litestar(plugins=[WorkflowPlugin(config=config)])
"""

from __future__ import annotations

from litestar_durable.web.controllers import WorkflowDefinitionController, WorkflowInstanceController
from litestar_durable.web.dto import (
    HistoryEventDTO,
    InstanceStatusDTO,
    SignalDTO,
    StartWorkflowDTO,
    WorkflowDefinitionDTO,
    WorkflowInstanceDTO,
)
from litestar_durable.web.exceptions import EXCEPTION_HANDLERS

__all__ = [
    "EXCEPTION_HANDLERS",
    "HistoryEventDTO",
    "InstanceStatusDTO",
    "SignalDTO",
    "StartWorkflowDTO",
    "WorkflowDefinitionController",
    "WorkflowDefinitionDTO",
    "WorkflowInstanceController",
    "WorkflowInstanceDTO",
]
