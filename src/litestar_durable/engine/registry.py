"""Registries for workflow and activity definitions.

This module provides registries for storing, retrieving, and managing
workflow classes (with support for versioning) and activity handlers.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from litestar_durable.exceptions import ActivityNotFoundError, WorkflowNotFoundError

if TYPE_CHECKING:
    from litestar_durable.core.protocols import Activity, Workflow

__all__ = ["ActivityRegistry", "WorkflowRegistry"]


class WorkflowRegistry:
    """Registry for storing and retrieving workflow classes.

    The registry maintains a mapping of workflow names to versions and their
    classes. Old versions stay registered so that in-flight instances keep
    replaying against the code they started with.

    Attributes:
        _workflows: Nested dict mapping name -> version -> workflow class.
    """

    def __init__(self) -> None:
        """Initialize an empty workflow registry."""
        self._workflows: dict[str, dict[str, type[Workflow]]] = {}

    def register(self, workflow_class: type[Workflow]) -> None:
        """Register a workflow class under its name and version.

        Args:
            workflow_class: The workflow class to register.

        Example:
            >>> registry = WorkflowRegistry()
            >>> registry.register(OnboardingWorkflow)
        """
        self._workflows.setdefault(workflow_class.name, {})[workflow_class.version] = workflow_class

    def get_workflow_class(self, name: str, version: str | None = None) -> type[Workflow]:
        """Retrieve a workflow class by name and optional version.

        Args:
            name: The workflow name.
            version: The workflow version. If None, returns the latest version.

        Returns:
            The registered workflow class.

        Raises:
            WorkflowNotFoundError: If the workflow name or version is not registered.

        Example:
            >>> workflow_class = registry.get_workflow_class("onboarding")
            >>> workflow_v1 = registry.get_workflow_class("onboarding", "1.0.0")
        """
        if name not in self._workflows:
            raise WorkflowNotFoundError(name)

        versions = self._workflows[name]

        if version is None:
            # Latest by string ordering of the version
            version = max(versions.keys())

        if version not in versions:
            raise WorkflowNotFoundError(name, version)

        return versions[version]

    def list_workflows(self, latest_only: bool = True) -> list[type[Workflow]]:
        """List registered workflow classes.

        Args:
            latest_only: If True, only return the latest version of each workflow.

        Returns:
            List of workflow classes.
        """
        workflows: list[type[Workflow]] = []

        for versions in self._workflows.values():
            if latest_only:
                workflows.append(versions[max(versions.keys())])
            else:
                workflows.extend(versions.values())

        return workflows

    def unregister(self, name: str, version: str | None = None) -> None:
        """Remove a workflow from the registry.

        Args:
            name: The workflow name.
            version: The specific version to remove. If None, removes all versions.
        """
        if name not in self._workflows:
            return

        if version is None:
            del self._workflows[name]
            return

        self._workflows[name].pop(version, None)
        if not self._workflows[name]:
            del self._workflows[name]

    def has_workflow(self, name: str, version: str | None = None) -> bool:
        """Check if a workflow exists in the registry.

        Args:
            name: The workflow name.
            version: Optional specific version to check.

        Returns:
            True if the workflow exists, False otherwise.
        """
        if name not in self._workflows:
            return False

        if version is None:
            return True

        return version in self._workflows[name]

    def get_versions(self, name: str) -> list[str]:
        """Get all registered versions of a workflow.

        Raises:
            WorkflowNotFoundError: If the workflow name is not found.
        """
        if name not in self._workflows:
            raise WorkflowNotFoundError(name)

        return list(self._workflows[name].keys())


class ActivityRegistry:
    """Registry mapping activity types to activity handlers."""

    def __init__(self) -> None:
        self._activities: dict[str, Activity] = {}

    def register(self, activity: Activity | type[Activity]) -> None:
        """Register an activity instance, or a class that is instantiated without arguments.

        Args:
            activity: The activity or activity class.
        """
        instance = activity() if isinstance(activity, type) else activity
        self._activities[instance.name] = instance

    def get(self, activity_type: str) -> Activity:
        """Resolve the handler for an activity type.

        Raises:
            ActivityNotFoundError: If nothing is registered under ``activity_type``.
        """
        try:
            return self._activities[activity_type]
        except KeyError:
            raise ActivityNotFoundError(activity_type) from None

    def has_activity(self, activity_type: str) -> bool:
        return activity_type in self._activities

    def list_activities(self) -> list[Activity]:
        return list(self._activities.values())
