"""Tests for the workflow REST API.

This module tests the web layer end to end through ``AsyncTestClient``:
- Definition controller endpoints (list)
- Instance controller endpoints (start, list, get, history, signal, cancel)
- Mapping of domain errors onto 404 and 409 responses
- Custom guards and path prefixes
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

import pytest
from litestar import Litestar
from litestar.connection import ASGIConnection
from litestar.exceptions import NotAuthorizedException
from litestar.handlers import BaseRouteHandler
from litestar.status_codes import (
    HTTP_200_OK,
    HTTP_201_CREATED,
    HTTP_202_ACCEPTED,
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
)
from litestar.testing import AsyncTestClient

from litestar_durable.core.commands import ActivityCommand, SignalWaitCommand
from litestar_durable.core.definition import BaseWorkflow
from litestar_durable.plugin import WorkflowPlugin, WorkflowPluginConfig

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from litestar_durable.engine.replay import WorkflowEngine
    from litestar_durable.engine.scheduler import Runner


class ApprovalWorkflow(BaseWorkflow):
    name = "approval"
    description = "Wait for a decision"

    def execute(self, input: Any):
        decision = yield SignalWaitCommand("decision")
        yield ActivityCommand("echo", decision)
        return decision


class OnboardingV2(BaseWorkflow):
    name = "onboarding"
    version = "2.0.0"

    def execute(self, input: Any):
        user = yield ActivityCommand("create_user_record", {"email": input["email"]})
        return user["id"]


def api_key_guard(connection: ASGIConnection, _: BaseRouteHandler) -> None:
    if connection.headers.get("x-api-key") != "secret":
        raise NotAuthorizedException("Invalid API key")


def make_app(engine: WorkflowEngine, **kwargs: Any) -> Litestar:
    engine.registry.register(ApprovalWorkflow)
    config = WorkflowPluginConfig(engine=engine, run_scheduler=False, **kwargs)
    return Litestar(plugins=[WorkflowPlugin(config=config)])


@pytest.fixture
async def client(engine: WorkflowEngine) -> AsyncIterator[AsyncTestClient[Litestar]]:
    async with AsyncTestClient(app=make_app(engine)) as client:
        yield client


async def start(client: AsyncTestClient[Litestar], workflow_type: str = "onboarding", **body: Any) -> dict[str, Any]:
    body.setdefault("input", {"email": "a@b.com"})
    response = await client.post("/workflows/instances", json={"workflow_type": workflow_type, **body})
    assert response.status_code == HTTP_201_CREATED
    return response.json()


# =============================================================================
# Definition Controller Tests
# =============================================================================


@pytest.mark.integration
@pytest.mark.asyncio
class TestWorkflowDefinitionController:
    async def test_list_definitions(self, client: AsyncTestClient[Litestar]) -> None:
        response = await client.get("/workflows/definitions")

        assert response.status_code == HTTP_200_OK
        by_name = {d["name"]: d for d in response.json()}
        assert set(by_name) == {"onboarding", "approval"}
        assert by_name["onboarding"] == {
            "name": "onboarding",
            "version": "1.0.0",
            "description": "Create a user and welcome them",
            "versions": ["1.0.0"],
        }

    async def test_lists_latest_version(self, engine: WorkflowEngine, client: AsyncTestClient[Litestar]) -> None:
        engine.registry.register(OnboardingV2)

        response = await client.get("/workflows/definitions")

        onboarding = next(d for d in response.json() if d["name"] == "onboarding")
        assert onboarding["version"] == "2.0.0"
        assert sorted(onboarding["versions"]) == ["1.0.0", "2.0.0"]


# =============================================================================
# Instance Controller Tests
# =============================================================================


@pytest.mark.integration
@pytest.mark.asyncio
class TestWorkflowInstanceController:
    async def test_start_instance(self, client: AsyncTestClient[Litestar]) -> None:
        body = await start(client)

        assert body["status"] == "created"
        assert body["quarantined"] is False
        assert body["result"] is None

    async def test_start_with_business_key_is_idempotent(self, client: AsyncTestClient[Litestar]) -> None:
        first = await start(client, business_key="user-42")
        second = await start(client, business_key="user-42")

        assert first["id"] == second["id"]

    async def test_start_pinned_version(self, engine: WorkflowEngine, client: AsyncTestClient[Litestar]) -> None:
        engine.registry.register(OnboardingV2)

        body = await start(client, version="1.0.0")

        instance = await engine.store.get_instance(UUID(body["id"]))
        assert instance.workflow_version == "1.0.0"

    async def test_start_unknown_workflow(self, client: AsyncTestClient[Litestar]) -> None:
        response = await client.post("/workflows/instances", json={"workflow_type": "nope"})

        assert response.status_code == HTTP_404_NOT_FOUND
        assert response.json() == {"status_code": 404, "detail": "Workflow 'nope' not found"}

    async def test_start_requires_workflow_type(self, client: AsyncTestClient[Litestar]) -> None:
        response = await client.post("/workflows/instances", json={"input": {}})

        assert response.status_code == HTTP_400_BAD_REQUEST

    async def test_get_instance_after_completion(
        self, client: AsyncTestClient[Litestar], runner: Runner
    ) -> None:
        body = await start(client)
        await runner.run_until_idle()

        response = await client.get(f"/workflows/instances/{body['id']}")

        assert response.status_code == HTTP_200_OK
        data = response.json()
        assert data["status"] == "completed"
        assert data["result"] == "Onboarding complete for user: 123"
        assert data["waiting_on"] is None

    async def test_get_suspended_instance(self, client: AsyncTestClient[Litestar], runner: Runner) -> None:
        body = await start(client, "approval", input=None)
        await runner.run_until_idle()

        data = (await client.get(f"/workflows/instances/{body['id']}")).json()

        assert data["status"] == "suspended"
        assert data["waiting_on"] == "signal:decision"

    async def test_get_unknown_instance(self, client: AsyncTestClient[Litestar]) -> None:
        instance_id = uuid4()
        response = await client.get(f"/workflows/instances/{instance_id}")

        assert response.status_code == HTTP_404_NOT_FOUND
        assert response.json()["detail"] == f"Workflow instance '{instance_id}' not found"

    async def test_list_instances(self, client: AsyncTestClient[Litestar], runner: Runner) -> None:
        await start(client)
        await runner.run_until_idle()
        await start(client, "approval", input=None)

        everything = (await client.get("/workflows/instances")).json()
        assert len(everything) == 2

        completed = (await client.get("/workflows/instances", params={"status": "completed"})).json()
        assert [i["workflow_type"] for i in completed] == ["onboarding"]
        assert completed[0]["completed_at"] is not None

        approvals = (await client.get("/workflows/instances", params={"workflow_type": "approval"})).json()
        assert [i["status"] for i in approvals] == ["created"]

        page = (await client.get("/workflows/instances", params={"limit": 1, "offset": 1})).json()
        assert len(page) == 1

    async def test_list_rejects_bad_limit(self, client: AsyncTestClient[Litestar]) -> None:
        response = await client.get("/workflows/instances", params={"limit": 0})

        assert response.status_code == HTTP_400_BAD_REQUEST

    async def test_history(self, client: AsyncTestClient[Litestar], runner: Runner) -> None:
        body = await start(client)
        await runner.run_until_idle()

        response = await client.get(f"/workflows/instances/{body['id']}/history")

        assert response.status_code == HTTP_200_OK
        events = response.json()
        assert [e["event_type"] for e in events] == [
            "command_issued",
            "activity_completed",
            "command_issued",
            "activity_completed",
            "workflow_completed",
        ]
        assert [e["sequence_number"] for e in events] == [1, 2, 3, 4, 5]
        assert events[0]["command"]["activity_type"] == "create_user_record"
        assert events[1]["result"] == {"id": 123}

    async def test_signal(self, client: AsyncTestClient[Litestar], runner: Runner) -> None:
        body = await start(client, "approval", input=None)
        await runner.run_until_idle()

        response = await client.post(
            f"/workflows/instances/{body['id']}/signals/decision", json={"payload": {"approved": True}}
        )

        assert response.status_code == HTTP_202_ACCEPTED
        event = response.json()
        assert event["event_type"] == "signal_received"
        assert event["step_index"] is None
        assert event["command"] == {"signal_name": "decision"}
        assert event["result"] == {"approved": True}

        await runner.run_until_idle()
        data = (await client.get(f"/workflows/instances/{body['id']}")).json()
        assert data["status"] == "completed"
        assert data["result"] == {"approved": True}

    async def test_signal_unknown_instance(self, client: AsyncTestClient[Litestar]) -> None:
        response = await client.post(f"/workflows/instances/{uuid4()}/signals/decision", json={})

        assert response.status_code == HTTP_404_NOT_FOUND

    async def test_signal_finished_instance(self, client: AsyncTestClient[Litestar], runner: Runner) -> None:
        body = await start(client)
        await runner.run_until_idle()

        response = await client.post(f"/workflows/instances/{body['id']}/signals/decision", json={})

        assert response.status_code == HTTP_409_CONFLICT
        assert "already completed" in response.json()["detail"]

    async def test_cancel(self, client: AsyncTestClient[Litestar]) -> None:
        body = await start(client, "approval", input=None)

        response = await client.post(
            f"/workflows/instances/{body['id']}/cancel", params={"reason": "customer withdrew"}
        )

        assert response.status_code == HTTP_201_CREATED
        data = response.json()
        assert data["status"] == "canceled"
        assert data["failure_reason"] == "customer withdrew"

        again = await client.post(f"/workflows/instances/{body['id']}/cancel")
        assert again.status_code == HTTP_409_CONFLICT

    async def test_cancel_unknown_instance(self, client: AsyncTestClient[Litestar]) -> None:
        response = await client.post(f"/workflows/instances/{uuid4()}/cancel")

        assert response.status_code == HTTP_404_NOT_FOUND


# =============================================================================
# Configuration Tests
# =============================================================================


@pytest.mark.integration
@pytest.mark.asyncio
class TestApiConfiguration:
    async def test_guards_apply(self, engine: WorkflowEngine) -> None:
        app = make_app(engine, api_guards=[api_key_guard])

        async with AsyncTestClient(app=app) as client:
            denied = await client.get("/workflows/definitions")
            allowed = await client.get("/workflows/definitions", headers={"x-api-key": "secret"})

        assert denied.status_code == HTTP_401_UNAUTHORIZED
        assert allowed.status_code == HTTP_200_OK

    async def test_custom_prefix(self, engine: WorkflowEngine) -> None:
        app = make_app(engine, api_path_prefix="/api/v1/durable")

        async with AsyncTestClient(app=app) as client:
            response = await client.get("/api/v1/durable/definitions")

        assert response.status_code == HTTP_200_OK

    async def test_openapi_schema(self, engine: WorkflowEngine) -> None:
        async with AsyncTestClient(app=make_app(engine)) as client:
            schema = (await client.get("/schema/openapi.json")).json()

        assert "/workflows/instances" in schema["paths"]
        assert "/workflows/instances/{instance_id}/signals/{signal_name}" in schema["paths"]

    async def test_excluded_from_schema(self, engine: WorkflowEngine) -> None:
        async with AsyncTestClient(app=make_app(engine, include_api_in_schema=False)) as client:
            schema = (await client.get("/schema/openapi.json")).json()

        assert not any(path.startswith("/workflows") for path in schema.get("paths") or {})
