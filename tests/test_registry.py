"""Tests for WorkflowRegistry and ActivityRegistry."""

from __future__ import annotations

from typing import Any

import pytest

from litestar_durable.core.commands import ActivityCommand
from litestar_durable.core.definition import BaseActivity, BaseWorkflow
from litestar_durable.engine.registry import ActivityRegistry, WorkflowRegistry
from litestar_durable.exceptions import ActivityNotFoundError, WorkflowNotFoundError


class OnboardingV1(BaseWorkflow):
    name = "onboarding"
    version = "1.0.0"

    def execute(self, input: Any):
        yield ActivityCommand("create_user_record", input)


class OnboardingV2(OnboardingV1):
    version = "2.0.0"


class Billing(BaseWorkflow):
    name = "billing"

    def execute(self, input: Any):
        yield ActivityCommand("charge_card", input)


class ChargeCard(BaseActivity):
    name = "charge_card"

    async def handle(self, payload: Any) -> Any:
        return payload


@pytest.fixture
def registry() -> WorkflowRegistry:
    registry = WorkflowRegistry()
    registry.register(OnboardingV1)
    registry.register(OnboardingV2)
    registry.register(Billing)
    return registry


@pytest.mark.unit
class TestWorkflowRegistry:
    """Tests for WorkflowRegistry."""

    def test_get_latest_version(self, registry: WorkflowRegistry) -> None:
        assert registry.get_workflow_class("onboarding") is OnboardingV2

    def test_get_specific_version(self, registry: WorkflowRegistry) -> None:
        """Old versions stay resolvable for in-flight instances."""
        assert registry.get_workflow_class("onboarding", "1.0.0") is OnboardingV1

    def test_get_unknown_workflow(self, registry: WorkflowRegistry) -> None:
        with pytest.raises(WorkflowNotFoundError, match="Workflow 'nope' not found"):
            registry.get_workflow_class("nope")

    def test_get_unknown_version(self, registry: WorkflowRegistry) -> None:
        with pytest.raises(WorkflowNotFoundError) as exc_info:
            registry.get_workflow_class("onboarding", "9.9.9")

        assert exc_info.value.version == "9.9.9"

    def test_reregister_replaces_same_version(self, registry: WorkflowRegistry) -> None:
        class Replacement(OnboardingV1):
            pass

        registry.register(Replacement)

        assert registry.get_workflow_class("onboarding", "1.0.0") is Replacement
        assert sorted(registry.get_versions("onboarding")) == ["1.0.0", "2.0.0"]

    def test_list_latest_only(self, registry: WorkflowRegistry) -> None:
        assert set(registry.list_workflows()) == {OnboardingV2, Billing}

    def test_list_all_versions(self, registry: WorkflowRegistry) -> None:
        assert set(registry.list_workflows(latest_only=False)) == {OnboardingV1, OnboardingV2, Billing}

    def test_has_workflow(self, registry: WorkflowRegistry) -> None:
        assert registry.has_workflow("onboarding")
        assert registry.has_workflow("onboarding", "2.0.0")
        assert not registry.has_workflow("onboarding", "3.0.0")
        assert not registry.has_workflow("nope")

    def test_get_versions_unknown(self, registry: WorkflowRegistry) -> None:
        with pytest.raises(WorkflowNotFoundError):
            registry.get_versions("nope")

    def test_unregister_version(self, registry: WorkflowRegistry) -> None:
        registry.unregister("onboarding", "2.0.0")

        assert registry.get_workflow_class("onboarding") is OnboardingV1

    def test_unregister_last_version_removes_name(self, registry: WorkflowRegistry) -> None:
        registry.unregister("billing", "1.0.0")

        assert not registry.has_workflow("billing")

    def test_unregister_all_versions(self, registry: WorkflowRegistry) -> None:
        registry.unregister("onboarding")

        assert not registry.has_workflow("onboarding")

    def test_unregister_unknown_is_noop(self, registry: WorkflowRegistry) -> None:
        registry.unregister("nope")

        assert len(registry.list_workflows()) == 2


@pytest.mark.unit
class TestActivityRegistry:
    """Tests for ActivityRegistry."""

    def test_register_class(self) -> None:
        registry = ActivityRegistry()
        registry.register(ChargeCard)

        assert isinstance(registry.get("charge_card"), ChargeCard)
        assert registry.has_activity("charge_card")

    def test_register_instance(self) -> None:
        activity = ChargeCard()
        registry = ActivityRegistry()
        registry.register(activity)

        assert registry.get("charge_card") is activity
        assert registry.list_activities() == [activity]

    def test_get_unknown(self) -> None:
        with pytest.raises(ActivityNotFoundError, match="Activity 'nope' not found"):
            ActivityRegistry().get("nope")

    def test_has_activity_unknown(self) -> None:
        assert not ActivityRegistry().has_activity("nope")
