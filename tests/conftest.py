"""Shared test fixtures for litestar-durable test suite."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from litestar_durable.core.commands import ActivityCommand
from litestar_durable.core.config import EngineConfig
from litestar_durable.core.definition import BaseActivity, BaseWorkflow
from litestar_durable.db.models import WorkflowInstanceModel
from litestar_durable.db.store import SQLAlchemyWorkflowStore
from litestar_durable.engine.memory import InMemoryWorkflowStore
from litestar_durable.engine.registry import ActivityRegistry, WorkflowRegistry
from litestar_durable.engine.replay import WorkflowEngine
from litestar_durable.engine.scheduler import Runner, Scheduler

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path
    from uuid import UUID

    from litestar_durable.core.protocols import WorkflowStore


# =============================================================================
# Clock and event bus
# =============================================================================


class FakeClock:
    """Controllable engine clock. Time only moves when a test advances it."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


class MockEventBus:
    """Mock event bus for testing."""

    def __init__(self) -> None:
        """Initialize mock event bus."""
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def emit(self, event_type: str, **kwargs: Any) -> None:
        """Emit an event."""
        self.events.append((event_type, kwargs))

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.events]


# =============================================================================
# Activities and workflows
# =============================================================================


class RecordingActivity(BaseActivity):
    """Test activity remembering every call it receives."""

    def __init__(self) -> None:
        self.calls: list[Any] = []
        self.failures: list[tuple[UUID, Exception]] = []
        self.compensations: list[Any] = []

    async def on_failure(self, instance_id: UUID, error: Exception) -> None:
        self.failures.append((instance_id, error))

    async def compensate(self, instance_id: UUID, original_payload: Any) -> Any:
        self.compensations.append(original_payload)
        return {"compensated": original_payload}


class CreateUserRecord(RecordingActivity):
    name = "create_user_record"

    async def handle(self, payload: Any) -> Any:
        self.calls.append(payload)
        return {"id": 123}


class SendWelcomeEmail(RecordingActivity):
    name = "send_welcome_email"

    async def handle(self, payload: Any) -> Any:
        self.calls.append(payload)
        return {"sent": True}


class AlwaysFails(RecordingActivity):
    name = "always_fails"

    async def handle(self, payload: Any) -> Any:
        self.calls.append(payload)
        msg = "boom"
        raise RuntimeError(msg)


class Flaky(RecordingActivity):
    """Fails the first ``fail_times`` calls, then succeeds."""

    name = "flaky"
    fail_times = 1

    async def handle(self, payload: Any) -> Any:
        self.calls.append(payload)
        if len(self.calls) <= self.fail_times:
            msg = "connection reset"
            raise ConnectionError(msg)
        return {"attempt": len(self.calls)}


class Echo(RecordingActivity):
    name = "echo"

    async def handle(self, payload: Any) -> Any:
        self.calls.append(payload)
        return payload


class OnboardingWorkflow(BaseWorkflow):
    name = "onboarding"
    version = "1.0.0"
    description = "Create a user and welcome them"

    def execute(self, input: Any):
        user = yield ActivityCommand("create_user_record", {"email": input["email"]})
        yield ActivityCommand("send_welcome_email", {"user_id": user["id"]})
        return f"Onboarding complete for user: {user['id']}"


# =============================================================================
# Database
# =============================================================================


@asynccontextmanager
async def sqlite_session_maker(path: Path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Create the workflow tables in a SQLite file and yield a session factory."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{path}", echo=False)

    # Enable foreign keys for SQLite
    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(WorkflowInstanceModel.metadata.create_all)

    try:
        yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    finally:
        await engine.dispose()


@pytest.fixture
async def session_maker(tmp_path: Path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Session factory over a fresh SQLite database file."""
    async with sqlite_session_maker(tmp_path / "workflows.db") as maker:
        yield maker


@pytest.fixture
def sqlalchemy_store(session_maker: async_sessionmaker[AsyncSession]) -> SQLAlchemyWorkflowStore:
    return SQLAlchemyWorkflowStore(session_maker)


@pytest.fixture
def memory_store() -> InMemoryWorkflowStore:
    return InMemoryWorkflowStore()


@pytest.fixture(params=["memory", "sqlalchemy"])
async def store(request: pytest.FixtureRequest, tmp_path: Path) -> AsyncIterator[WorkflowStore]:
    """Run the requesting test once per store implementation."""
    if request.param == "memory":
        yield InMemoryWorkflowStore()
        return
    async with sqlite_session_maker(tmp_path / "workflows.db") as maker:
        yield SQLAlchemyWorkflowStore(maker)


# =============================================================================
# Engine
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine_config(clock: FakeClock) -> EngineConfig:
    """Engine configuration driven by the fake clock.

    Retries are immediate and replays run one at a time, which keeps SQLite
    writers from contending.
    """
    return EngineConfig(
        timeout_seconds=5.0,
        retry_delay_seconds=0.0,
        max_concurrency=1,
        worker_id="test-worker",
        clock=clock,
    )


@pytest.fixture
def mock_event_bus() -> MockEventBus:
    return MockEventBus()


@pytest.fixture
def workflow_registry() -> WorkflowRegistry:
    """Create a workflow registry with the onboarding workflow registered.

    Returns:
        WorkflowRegistry instance
    """
    registry = WorkflowRegistry()
    registry.register(OnboardingWorkflow)
    return registry


@pytest.fixture
def activity_registry() -> ActivityRegistry:
    """Create an activity registry with fresh recording activities.

    Returns:
        ActivityRegistry instance
    """
    registry = ActivityRegistry()
    for activity_class in (CreateUserRecord, SendWelcomeEmail, AlwaysFails, Flaky, Echo):
        registry.register(activity_class)
    return registry


@pytest.fixture
def engine(
    store: WorkflowStore,
    workflow_registry: WorkflowRegistry,
    activity_registry: ActivityRegistry,
    engine_config: EngineConfig,
    mock_event_bus: MockEventBus,
) -> WorkflowEngine:
    """Create a workflow engine over each store implementation.

    Returns:
        WorkflowEngine instance
    """
    return WorkflowEngine(
        store=store,
        registry=workflow_registry,
        activities=activity_registry,
        config=engine_config,
        event_bus=mock_event_bus,
    )


@pytest.fixture
def runner(engine: WorkflowEngine) -> Runner:
    return Runner(Scheduler(engine))


def pytest_configure(config: Any) -> None:
    """Configure pytest with custom markers.

    Args:
        config: Pytest config object
    """
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests")
