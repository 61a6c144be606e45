"""Exception hierarchy for litestar-durable."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from uuid import UUID

__all__ = (
    "ActivityError",
    "ActivityFailedError",
    "ActivityNotFoundError",
    "ActivityTimeoutError",
    "InstanceQuarantinedError",
    "InvalidCommandError",
    "NonDeterminismError",
    "SideEffectError",
    "StoreError",
    "WorkflowAlreadyCompletedError",
    "WorkflowInstanceNotFoundError",
    "WorkflowNotFoundError",
    "WorkflowsError",
)


class WorkflowsError(Exception):
    """Base exception for all litestar-durable errors.

    All exceptions raised by litestar-durable inherit from this class.
    This allows users to catch all workflow-related errors with a single except clause.
    """


class WorkflowNotFoundError(WorkflowsError):
    """Raised when a workflow definition is not registered.

    Attributes:
        name: The workflow type that was not found.
        version: The specific version requested, if any.
    """

    def __init__(self, name: str, version: str | None = None) -> None:
        """Initialize the exception with workflow details.

        Args:
            name: The workflow type that was not found.
            version: The specific version requested, if any.
        """
        self.name = name
        self.version = version
        msg = f"Workflow '{name}'"
        if version:
            msg += f" version '{version}'"
        msg += " not found"
        super().__init__(msg)


class ActivityNotFoundError(WorkflowsError):
    """Raised when no activity is registered under the requested type.

    Attributes:
        activity_type: The activity type that was not found.
    """

    def __init__(self, activity_type: str) -> None:
        self.activity_type = activity_type
        super().__init__(f"Activity '{activity_type}' not found")


class WorkflowInstanceNotFoundError(WorkflowsError):
    """Raised when a workflow instance is not found.

    Attributes:
        instance_id: The ID of the workflow instance that was not found.
    """

    def __init__(self, instance_id: str | UUID) -> None:
        """Initialize the exception with instance details.

        Args:
            instance_id: The ID of the workflow instance that was not found.
        """
        self.instance_id = instance_id
        super().__init__(f"Workflow instance '{instance_id}' not found")


class WorkflowAlreadyCompletedError(WorkflowsError):
    """Raised when trying to modify a workflow in a terminal status.

    Attributes:
        instance_id: The ID of the workflow instance.
        status: The current terminal status of the workflow.
    """

    def __init__(self, instance_id: str | UUID, status: str) -> None:
        """Initialize the exception with workflow state details.

        Args:
            instance_id: The ID of the workflow instance.
            status: The current terminal status of the workflow.
        """
        self.instance_id = instance_id
        self.status = status
        super().__init__(f"Workflow '{instance_id}' is already {status}")


class NonDeterminismError(WorkflowsError):
    """Raised when replay diverges from the recorded history.

    This happens when workflow code was changed in a way that is incompatible
    with the history of an instance already in flight. The instance is halted
    in a quarantined state and requires operator action.

    Attributes:
        instance_id: The ID of the diverging workflow instance.
        step_index: The step at which replay diverged.
        expected: Description of what the history recorded.
        actual: Description of what the workflow code produced.
    """

    def __init__(
        self,
        instance_id: str | UUID,
        step_index: int,
        expected: str,
        actual: str,
    ) -> None:
        """Initialize the exception with divergence details.

        Args:
            instance_id: The ID of the diverging workflow instance.
            step_index: The step at which replay diverged.
            expected: Description of what the history recorded.
            actual: Description of what the workflow code produced.
        """
        self.instance_id = instance_id
        self.step_index = step_index
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Workflow instance '{instance_id}' diverged from history at step {step_index}: "
            f"expected {expected}, got {actual}"
        )


class InstanceQuarantinedError(WorkflowsError):
    """Raised when operating on an instance halted after a non-determinism error."""

    def __init__(self, instance_id: str | UUID, reason: str | None = None) -> None:
        self.instance_id = instance_id
        self.reason = reason
        msg = f"Workflow instance '{instance_id}' is quarantined"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class InvalidCommandError(WorkflowsError):
    """Raised when a workflow yields something that is not a Command."""

    def __init__(self, value: Any) -> None:
        self.value = value
        super().__init__(f"Workflows must yield Command instances, got {type(value).__name__}")


class ActivityError(WorkflowsError):
    """Base exception for activity related errors."""


class ActivityTimeoutError(ActivityError):
    """Raised by the executor when an activity exceeds its timeout.

    Attributes:
        activity_type: The activity that timed out.
        timeout_seconds: The timeout that was exceeded.
    """

    def __init__(self, activity_type: str, timeout_seconds: float) -> None:
        self.activity_type = activity_type
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Activity '{activity_type}' timed out after {timeout_seconds}s")


class ActivityFailedError(ActivityError):
    """Raised at a workflow's yield point when an activity exhausted its retries.

    Workflow code may catch this to drive compensation of prior steps, or let it
    propagate to fail the whole instance.

    Attributes:
        activity_type: The activity that failed.
        error_type: Class name of the last error raised by the handler.
        message: Message of the last error raised by the handler.
        attempts: Number of invocation attempts made.
    """

    def __init__(
        self,
        activity_type: str,
        error_type: str,
        message: str,
        attempts: int,
    ) -> None:
        """Initialize the exception with failure details.

        Args:
            activity_type: The activity that failed.
            error_type: Class name of the last error raised by the handler.
            message: Message of the last error raised by the handler.
            attempts: Number of invocation attempts made.
        """
        self.activity_type = activity_type
        self.error_type = error_type
        self.message = message
        self.attempts = attempts
        super().__init__(f"Activity '{activity_type}' failed after {attempts} attempt(s): {error_type}: {message}")

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ActivityFailedError:
        """Rebuild the error from a recorded ``ACTIVITY_FAILED`` error payload."""
        return cls(
            activity_type=payload.get("activity_type", ""),
            error_type=payload.get("error_type", "Exception"),
            message=payload.get("message", ""),
            attempts=payload.get("attempts", 0),
        )


class StoreError(WorkflowsError):
    """Raised when the workflow store cannot complete an operation."""


class SideEffectError(WorkflowsError):
    """Raised when a side-effect producer fails at the frontier.

    Nothing is recorded for the step. The engine fails the instance with the
    producer's original error.

    Attributes:
        name: The side effect's label, if any.
        error: The exception raised by the producer.
    """

    def __init__(self, name: str | None, error: Exception) -> None:
        self.name = name
        self.error = error
        label = f"'{name}'" if name else "producer"
        super().__init__(f"Side effect {label} failed: {type(error).__name__}: {error}")
