"""Litestar plugin for durable workflow integration.

This module provides the WorkflowPlugin, which wires a :class:`WorkflowEngine`
into a Litestar application and optionally runs the background scheduler for
the lifetime of the app.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from litestar.di import Provide
from litestar.plugins import InitPluginProtocol

from litestar_durable.core.config import EngineConfig
from litestar_durable.engine.memory import InMemoryWorkflowStore
from litestar_durable.engine.registry import ActivityRegistry, WorkflowRegistry
from litestar_durable.engine.replay import WorkflowEngine
from litestar_durable.engine.scheduler import Runner, Scheduler

if TYPE_CHECKING:
    from litestar.config.app import AppConfig

    from litestar_durable.core.protocols import WorkflowStore

__all__ = ["WorkflowPlugin", "WorkflowPluginConfig"]


@dataclass
class WorkflowPluginConfig:
    """Configuration for the WorkflowPlugin.

    Attributes:
        registry: Optional pre-configured WorkflowRegistry. If not provided,
            a new one will be created.
        activity_registry: Optional pre-configured ActivityRegistry.
        store: Workflow store used by a plugin-built engine. Defaults to an
            :class:`InMemoryWorkflowStore`, which does not survive restarts.
        engine_config: Engine configuration used by a plugin-built engine.
        engine: Optional pre-configured WorkflowEngine. When given, ``registry``,
            ``activity_registry``, ``store`` and ``engine_config`` are taken from it.
        event_bus: Optional event bus passed to a plugin-built engine.
        auto_register_workflows: Workflow classes to register on app init.
        auto_register_activities: Activity classes or instances to register on app init.
        run_scheduler: Whether to run a background :class:`Runner` between app
            startup and shutdown.
        process_activities: Whether that runner also executes activities.
        activity_queues: Activity queues the runner processes. ``None`` means all.
        dependency_key_registry: The key used for dependency injection of
            the WorkflowRegistry. Defaults to "workflow_registry".
        dependency_key_engine: The key used for dependency injection of
            the WorkflowEngine. Defaults to "workflow_engine".
        enable_api: Whether to enable the REST API endpoints. Defaults to True.
        api_path_prefix: URL path prefix for all workflow API endpoints.
            Defaults to "/workflows".
        api_guards: List of Litestar guards to apply to all workflow API endpoints.
        api_tags: OpenAPI tags to apply to workflow API endpoints.
        include_api_in_schema: Whether to include API endpoints in OpenAPI schema.
            Defaults to True.
    """

    registry: WorkflowRegistry | None = None
    activity_registry: ActivityRegistry | None = None
    store: WorkflowStore | None = None
    engine_config: EngineConfig | None = None
    engine: WorkflowEngine | None = None
    event_bus: Any | None = None
    auto_register_workflows: list[type[Any]] = field(default_factory=list)
    auto_register_activities: list[Any] = field(default_factory=list)
    run_scheduler: bool = True
    process_activities: bool = True
    activity_queues: list[str] | None = None
    dependency_key_registry: str = "workflow_registry"
    dependency_key_engine: str = "workflow_engine"
    enable_api: bool = True
    api_path_prefix: str = "/workflows"
    api_guards: list[Any] = field(default_factory=list)
    api_tags: list[str] = field(default_factory=lambda: ["Workflows"])
    include_api_in_schema: bool = True


class WorkflowPlugin(InitPluginProtocol):
    """Litestar plugin for durable workflow management.

    This plugin integrates litestar-durable with a Litestar application,
    providing dependency injection for the WorkflowRegistry and WorkflowEngine
    and, unless disabled, a background runner that resumes instances and
    executes activities.

    Example:
        Basic usage with auto-registration::

            from litestar import Litestar, post
            from litestar_durable import WorkflowEngine, WorkflowPlugin, WorkflowPluginConfig


            app = Litestar(
                plugins=[
                    WorkflowPlugin(
                        config=WorkflowPluginConfig(
                            auto_register_workflows=[OnboardingWorkflow],
                            auto_register_activities=[CreateUserRecord, SendWelcomeEmail],
                        )
                    )
                ]
            )

        Using in a route handler::

            @post("/signup")
            async def signup(data: dict, workflow_engine: WorkflowEngine) -> dict:
                instance_id = await workflow_engine.run("onboarding", data, business_key=data["email"])
                return {"instance_id": str(instance_id)}
    """

    __slots__ = ("_config", "_engine", "_registry", "_runner")

    def __init__(self, config: WorkflowPluginConfig | None = None) -> None:
        """Initialize the plugin.

        Args:
            config: Optional configuration for the plugin.
        """
        self._config = config or WorkflowPluginConfig()
        self._registry: WorkflowRegistry | None = None
        self._engine: WorkflowEngine | None = None
        self._runner: Runner | None = None

    @property
    def registry(self) -> WorkflowRegistry:
        """Get the workflow registry.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._registry is None:
            msg = "WorkflowPlugin has not been initialized. Access registry after app startup."
            raise RuntimeError(msg)
        return self._registry

    @property
    def engine(self) -> WorkflowEngine:
        """Get the workflow engine.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._engine is None:
            msg = "WorkflowPlugin has not been initialized. Access engine after app startup."
            raise RuntimeError(msg)
        return self._engine

    @property
    def runner(self) -> Runner | None:
        """The background runner, or None when ``run_scheduler`` is disabled."""
        return self._runner

    def on_app_init(self, app_config: AppConfig) -> AppConfig:
        """Initialize the plugin when the Litestar app starts.

        This method:
        1. Creates or uses the provided registries and engine
        2. Registers any auto_register_workflows and auto_register_activities
        3. Adds dependency providers to the app config
        4. Hooks the background runner into startup and shutdown
        5. Optionally registers REST API controllers if enable_api=True

        Args:
            app_config: The Litestar application configuration.

        Returns:
            The modified application configuration.
        """
        config = self._config
        if config.engine is not None:
            engine = config.engine
        else:
            engine = WorkflowEngine(
                store=config.store or InMemoryWorkflowStore(),
                registry=config.registry or WorkflowRegistry(),
                activities=config.activity_registry or ActivityRegistry(),
                config=config.engine_config or EngineConfig(),
                event_bus=config.event_bus,
            )
        self._engine = engine
        self._registry = engine.registry

        for workflow_class in config.auto_register_workflows:
            engine.registry.register(workflow_class)
        for activity in config.auto_register_activities:
            engine.activities.register(activity)

        # Create dependency providers
        def provide_registry() -> WorkflowRegistry:
            return self._registry  # type: ignore[return-value]

        def provide_engine() -> WorkflowEngine:
            return self._engine  # type: ignore[return-value]

        app_config.dependencies[config.dependency_key_registry] = Provide(
            provide_registry,
            sync_to_thread=False,
        )
        app_config.dependencies[config.dependency_key_engine] = Provide(
            provide_engine,
            sync_to_thread=False,
        )

        if config.run_scheduler:
            self._runner = Runner(
                Scheduler(engine),
                queue_names=config.activity_queues,
                process_activities=config.process_activities,
            )
            app_config.on_startup.append(self._runner.start)
            app_config.on_shutdown.append(self._runner.stop)

        # Register REST API controllers if enabled
        if config.enable_api:
            from litestar import Router

            from litestar_durable.web.controllers import WorkflowDefinitionController, WorkflowInstanceController
            from litestar_durable.web.exceptions import EXCEPTION_HANDLERS

            workflow_router = Router(
                path=config.api_path_prefix,
                route_handlers=[WorkflowDefinitionController, WorkflowInstanceController],
                guards=config.api_guards,
                tags=config.api_tags,
                include_in_schema=config.include_api_in_schema,
            )
            app_config.route_handlers.append(workflow_router)
            for exc_class, handler in EXCEPTION_HANDLERS.items():
                app_config.exception_handlers.setdefault(exc_class, handler)  # type: ignore[arg-type]

        return app_config
