"""REST API controllers for durable workflows.

This module provides two controller classes:
- WorkflowDefinitionController: List registered workflow types
- WorkflowInstanceController: Start, query, signal and cancel instances

Domain errors raised by the engine are turned into 404 and 409 responses by
the handlers in :mod:`litestar_durable.web.exceptions`.
"""

from __future__ import annotations

from typing import ClassVar
from uuid import UUID

from litestar import Controller, get, post
from litestar.params import Parameter
from litestar.status_codes import HTTP_202_ACCEPTED

from litestar_durable.core.types import WorkflowStatus
from litestar_durable.engine.registry import WorkflowRegistry  # noqa: TC001 - needed for DI
from litestar_durable.engine.replay import WorkflowEngine  # noqa: TC001 - needed for DI
from litestar_durable.web.dto import (
    HistoryEventDTO,
    InstanceStatusDTO,
    SignalDTO,
    StartWorkflowDTO,
    WorkflowDefinitionDTO,
    WorkflowInstanceDTO,
)

__all__ = [
    "WorkflowDefinitionController",
    "WorkflowInstanceController",
]


class WorkflowDefinitionController(Controller):
    """API controller for workflow definitions.

    Tags: Workflow Definitions
    """

    path = "/definitions"
    tags: ClassVar[list[str]] = ["Workflow Definitions"]

    @get("/")
    async def list_definitions(self, workflow_registry: WorkflowRegistry) -> list[WorkflowDefinitionDTO]:
        """List all registered workflow types.

        Args:
            workflow_registry: Injected workflow registry.

        Returns:
            One DTO per workflow type, describing its latest version.
        """
        return [
            WorkflowDefinitionDTO(
                name=workflow_class.name,
                version=workflow_class.version,
                description=getattr(workflow_class, "description", ""),
                versions=workflow_registry.get_versions(workflow_class.name),
            )
            for workflow_class in workflow_registry.list_workflows(latest_only=True)
        ]


class WorkflowInstanceController(Controller):
    """API controller for workflow instances.

    Provides endpoints for starting, listing, inspecting, signaling and
    canceling workflow instances.

    Tags: Workflow Instances
    """

    path = "/instances"
    tags: ClassVar[list[str]] = ["Workflow Instances"]

    @post("/")
    async def start_workflow(
        self,
        data: StartWorkflowDTO,
        workflow_engine: WorkflowEngine,
    ) -> InstanceStatusDTO:
        """Start a new workflow instance.

        The instance is executed by the background runner. Starting twice with
        the same ``business_key`` returns the instance already running.

        Args:
            data: Workflow start parameters.
            workflow_engine: Injected workflow engine.

        Returns:
            Status of the new (or existing) instance.
        """
        instance_id = await workflow_engine.run(
            data.workflow_type,
            data.input,
            business_key=data.business_key,
            version=data.version,
        )
        return InstanceStatusDTO.from_view(await workflow_engine.get_status(instance_id))

    @get("/")
    async def list_instances(
        self,
        workflow_engine: WorkflowEngine,
        workflow_type: str | None = Parameter(
            default=None,
            description="Filter by workflow type",
        ),
        status: WorkflowStatus | None = Parameter(
            default=None,
            description="Filter by status",
        ),
        limit: int = Parameter(
            default=50,
            ge=1,
            le=100,
            description="Maximum number of results",
        ),
        offset: int = Parameter(
            default=0,
            ge=0,
            description="Number of results to skip",
        ),
    ) -> list[WorkflowInstanceDTO]:
        """List workflow instances, most recently started first.

        Args:
            workflow_engine: Injected workflow engine.
            workflow_type: Optional workflow type filter.
            status: Optional status filter.
            limit: Maximum number of results.
            offset: Pagination offset.

        Returns:
            List of workflow instance DTOs.
        """
        instances = await workflow_engine.list_instances(
            status=status,
            workflow_type=workflow_type,
            limit=limit,
            offset=offset,
        )
        return [WorkflowInstanceDTO.from_instance(instance) for instance in instances]

    @get("/{instance_id:uuid}")
    async def get_instance(self, instance_id: UUID, workflow_engine: WorkflowEngine) -> InstanceStatusDTO:
        """Get the last recorded status of an instance."""
        return InstanceStatusDTO.from_view(await workflow_engine.get_status(instance_id))

    @get("/{instance_id:uuid}/history")
    async def get_history(self, instance_id: UUID, workflow_engine: WorkflowEngine) -> list[HistoryEventDTO]:
        """Get the ordered event history of an instance."""
        return [HistoryEventDTO.from_event(event) for event in await workflow_engine.get_history(instance_id)]

    @post("/{instance_id:uuid}/signals/{signal_name:str}", status_code=HTTP_202_ACCEPTED)
    async def send_signal(
        self,
        instance_id: UUID,
        signal_name: str,
        data: SignalDTO,
        workflow_engine: WorkflowEngine,
    ) -> HistoryEventDTO:
        """Deliver a signal to an instance.

        Args:
            instance_id: The workflow instance ID.
            signal_name: Name of the signal.
            data: The signal payload.
            workflow_engine: Injected workflow engine.

        Returns:
            The recorded ``SIGNAL_RECEIVED`` event.
        """
        event = await workflow_engine.signal(instance_id, signal_name, data.payload)
        return HistoryEventDTO.from_event(event)

    @post("/{instance_id:uuid}/cancel")
    async def cancel_instance(
        self,
        instance_id: UUID,
        workflow_engine: WorkflowEngine,
        reason: str | None = Parameter(
            default=None,
            description="Reason for cancellation",
        ),
    ) -> InstanceStatusDTO:
        """Cancel a non-terminal workflow instance.

        Args:
            instance_id: The workflow instance ID.
            workflow_engine: Injected workflow engine.
            reason: Cancellation reason.

        Returns:
            Updated status of the instance.
        """
        await workflow_engine.cancel(instance_id, reason=reason)
        return InstanceStatusDTO.from_view(await workflow_engine.get_status(instance_id))
