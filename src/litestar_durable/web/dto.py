"""Data Transfer Objects for the workflow web API.

This module defines DTOs for serializing and deserializing workflow data
in REST API requests and responses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

if TYPE_CHECKING:
    from litestar_durable.core.models import HistoryEvent, InstanceStatusView, WorkflowInstanceData

__all__ = [
    "HistoryEventDTO",
    "InstanceStatusDTO",
    "SignalDTO",
    "StartWorkflowDTO",
    "WorkflowDefinitionDTO",
    "WorkflowInstanceDTO",
]


@dataclass
class StartWorkflowDTO:
    """DTO for starting a new workflow instance.

    Attributes:
        workflow_type: Registered name of the workflow to run.
        input: Immutable input passed to the workflow.
        business_key: Optional key making the start idempotent.
        version: Optional version to pin instead of the latest.
    """

    workflow_type: str
    input: Any = None
    business_key: str | None = None
    version: str | None = None


@dataclass
class SignalDTO:
    """DTO carrying a signal payload."""

    payload: Any = None


@dataclass
class WorkflowDefinitionDTO:
    """DTO for workflow definition metadata.

    Attributes:
        name: Workflow name.
        version: Latest registered version.
        description: Human-readable description.
        versions: Every registered version.
    """

    name: str
    version: str
    description: str
    versions: list[str] = field(default_factory=list)


@dataclass
class InstanceStatusDTO:
    """DTO for the status of a workflow instance.

    Attributes:
        id: Instance ID.
        status: Current status.
        result: Return value once completed.
        failure_reason: Error description when failed, canceled or quarantined.
        waiting_on: Pending command while suspended.
        next_due_at: Earliest pending timer.
        quarantined: Whether the instance is halted after diverging from history.
    """

    id: UUID
    status: str
    result: Any = None
    failure_reason: str | None = None
    waiting_on: str | None = None
    next_due_at: datetime | None = None
    quarantined: bool = False

    @classmethod
    def from_view(cls, view: InstanceStatusView) -> InstanceStatusDTO:
        return cls(
            id=view.instance_id,
            status=view.status.value,
            result=view.result,
            failure_reason=view.failure_reason,
            waiting_on=view.waiting_on,
            next_due_at=view.next_due_at,
            quarantined=view.quarantined,
        )


@dataclass
class WorkflowInstanceDTO:
    """DTO for a workflow instance in listings."""

    id: UUID
    workflow_type: str
    workflow_version: str
    status: str
    business_key: str | None
    started_at: datetime
    completed_at: datetime | None
    quarantined: bool

    @classmethod
    def from_instance(cls, instance: WorkflowInstanceData) -> WorkflowInstanceDTO:
        return cls(
            id=instance.id,
            workflow_type=instance.workflow_type,
            workflow_version=instance.workflow_version,
            status=instance.status.value,
            business_key=instance.business_key,
            started_at=instance.started_at,
            completed_at=instance.completed_at,
            quarantined=instance.quarantined,
        )


@dataclass
class HistoryEventDTO:
    """DTO for one history event.

    Attributes:
        sequence_number: Position in the instance's history.
        event_type: Kind of event.
        step_index: Workflow step the event belongs to, if any.
        recorded_at: When the event was appended.
        command: Serialized command or signal metadata.
        result: Serialized result.
        error: Serialized error.
    """

    sequence_number: int
    event_type: str
    step_index: int | None
    recorded_at: datetime
    command: dict[str, Any] | None = None
    result: Any = None
    error: dict[str, Any] | None = None

    @classmethod
    def from_event(cls, event: HistoryEvent) -> HistoryEventDTO:
        return cls(
            sequence_number=event.sequence_number,
            event_type=event.event_type.value,
            step_index=event.step_index,
            recorded_at=event.recorded_at,
            command=event.command_payload,
            result=event.result_payload,
            error=event.error_payload,
        )
