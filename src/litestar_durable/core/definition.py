"""Base classes for workflow and activity definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Generator
    from uuid import UUID

    from litestar_durable.core.commands import Command

__all__ = ["BaseActivity", "BaseWorkflow"]


class BaseWorkflow:
    """Base implementation with common functionality for workflows.

    Subclass this and implement :meth:`execute` as a generator. A fresh
    instance is created for every replay, so attributes set in ``__init__`` or by
    :meth:`handle_signal` are rebuilt from history each time.

    Example:
        >>> class Onboarding(BaseWorkflow):
        ...     name = "onboarding"
        ...
        ...     def execute(self, input):
        ...         user = yield ActivityCommand("create_user_record", {"email": input["email"]})
        ...         yield ActivityCommand("send_welcome_email", {"user_id": user["id"]})
        ...         return f"Onboarding complete for user: {user['id']}"
    """

    name: str
    """Registered workflow type."""

    version: str = "1.0.0"
    """Version of the workflow code."""

    description: str = ""
    """Human-readable description of the workflow."""

    def execute(self, input: Any) -> Generator[Command, Any, Any]:
        """Run the workflow logic.

        Override this method with a generator that yields commands.

        Args:
            input: The immutable input the instance was started with.

        Raises:
            NotImplementedError: Must be implemented by subclasses.
        """
        msg = f"Workflow {self.name} must implement execute()"
        raise NotImplementedError(msg)

    def handle_signal(self, name: str, payload: Any) -> None:
        """Hook called for every received signal, in history order.

        Override this to fold signals into in-memory state without waiting on
        them. The default ignores signals; waits are served independently.

        Args:
            name: The signal name.
            payload: The signal payload.
        """


class BaseActivity:
    """Base implementation with common functionality for activities.

    Override :meth:`handle`; the failure and compensation hooks are optional.
    """

    name: str
    """Registered activity type."""

    description: str = ""
    """Human-readable description of the activity."""

    async def handle(self, payload: Any) -> Any:
        """Perform the activity.

        Args:
            payload: The command payload.

        Returns:
            A JSON-serializable result.

        Raises:
            NotImplementedError: Must be implemented by subclasses.
        """
        msg = f"Activity {self.name} must implement handle()"
        raise NotImplementedError(msg)

    async def on_failure(self, instance_id: UUID, error: Exception) -> None:
        """Hook called once retries are exhausted, before the failure is recorded.

        Args:
            instance_id: The owning workflow instance.
            error: The error of the last attempt.
        """

    async def compensate(self, instance_id: UUID, original_payload: Any) -> Any:
        """Undo a previous successful :meth:`handle`.

        Invoked only when workflow code yields a
        :class:`~litestar_durable.core.commands.CompensationCommand`.

        Args:
            instance_id: The owning workflow instance.
            original_payload: The payload of the call being undone.

        Raises:
            NotImplementedError: If the activity has no compensation.
        """
        msg = f"Activity {self.name} does not implement compensate()"
        raise NotImplementedError(msg)
