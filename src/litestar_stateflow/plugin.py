"""Litestar plugin for workflow integration.

This module provides the StateflowPlugin, which makes a
:class:`~litestar_stateflow.engine.service.WorkflowService` available to route
handlers and can register workflow definitions when the application starts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog
from litestar.di import Provide
from litestar.plugins import InitPluginProtocol
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002

from litestar_stateflow.config import StateflowConfig
from litestar_stateflow.engine.cache import DefinitionCache
from litestar_stateflow.engine.effects import BusinessEffectSynchronizer
from litestar_stateflow.engine.service import WorkflowService

if TYPE_CHECKING:
    from litestar.config.app import AppConfig
    from sqlalchemy.ext.asyncio import async_sessionmaker

    from litestar_stateflow.core.definition import WorkflowDefinition
    from litestar_stateflow.core.protocols import ApproverResolver, Authorizer, EffectHandler, EventBus

__all__ = ["StateflowPlugin", "StateflowPluginConfig"]

logger = structlog.get_logger(__name__)


@dataclass
class StateflowPluginConfig:
    """Configuration for the StateflowPlugin.

    Attributes:
        engine: Engine-wide options.
        definitions: Definitions ensured at application startup. Requires
            ``session_maker``.
        session_maker: Session factory used for the startup registration.
        effect_handlers: Business effect handlers keyed by target type.
        authorizers: Actor checks for role-less actions, keyed by definition code.
        approver_resolvers: Approver resolvers keyed by definition code.
        default_resolver: Approver resolver for definitions without their own.
        event_bus: Optional sink for domain events.
        dependency_key: The key used for dependency injection of the
            WorkflowService. Defaults to "workflow_service".
    """

    engine: StateflowConfig = field(default_factory=StateflowConfig)
    definitions: list[WorkflowDefinition | dict[str, Any]] = field(default_factory=list)
    session_maker: async_sessionmaker[AsyncSession] | None = None
    effect_handlers: dict[str, EffectHandler] = field(default_factory=dict)
    authorizers: dict[str, Authorizer] = field(default_factory=dict)
    approver_resolvers: dict[str, ApproverResolver] = field(default_factory=dict)
    default_resolver: ApproverResolver | None = None
    event_bus: EventBus | None = None
    dependency_key: str = "workflow_service"


class StateflowPlugin(InitPluginProtocol):
    """Litestar plugin for stateful approval workflows.

    The plugin owns the definition cache and the effect synchronizer, which
    are shared across requests, and builds one WorkflowService per request
    from the ``db_session`` dependency (as provided by advanced-alchemy's
    ``SQLAlchemyPlugin``). No routes are registered.

    Example:
        Basic usage::

            from litestar import Litestar, post
            from litestar_stateflow import StateflowPlugin, StateflowPluginConfig
            from litestar_stateflow.definitions import ALL_DEFINITIONS

            app = Litestar(
                plugins=[
                    alchemy,
                    StateflowPlugin(
                        config=StateflowPluginConfig(
                            definitions=list(ALL_DEFINITIONS),
                            session_maker=alchemy_config.create_session_maker(),
                            effect_handlers={"company": company_effects},
                        )
                    ),
                ]
            )

        Using in a route handler::

            @post("/applications/{instance_id:uuid}/approve")
            async def approve(instance_id: UUID, workflow_service: WorkflowService) -> dict:
                result = await workflow_service.perform_action(instance_id, "approve", actor)
                return {"state": result.next_state.key}
    """

    __slots__ = ("_cache", "_config", "_synchronizer")

    def __init__(self, config: StateflowPluginConfig | None = None) -> None:
        """Initialize the plugin.

        Args:
            config: Optional configuration for the plugin.
        """
        self._config = config or StateflowPluginConfig()
        self._cache: DefinitionCache | None = None
        self._synchronizer: BusinessEffectSynchronizer | None = None

    @property
    def cache(self) -> DefinitionCache:
        """Get the shared definition cache.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._cache is None:
            msg = "StateflowPlugin has not been initialized. Access cache after app startup."
            raise RuntimeError(msg)
        return self._cache

    @property
    def synchronizer(self) -> BusinessEffectSynchronizer:
        """Get the shared business effect synchronizer.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._synchronizer is None:
            msg = "StateflowPlugin has not been initialized. Access synchronizer after app startup."
            raise RuntimeError(msg)
        return self._synchronizer

    def create_service(self, session: AsyncSession) -> WorkflowService:
        """Build a WorkflowService on ``session`` sharing the plugin's state."""
        return WorkflowService(
            session,
            config=self._config.engine,
            cache=self.cache,
            synchronizer=self.synchronizer,
            authorizers=self._config.authorizers,
            resolvers=self._config.approver_resolvers,
            default_resolver=self._config.default_resolver,
            event_bus=self._config.event_bus,
        )

    async def ensure_definitions(self) -> None:
        """Register every configured definition in one session.

        Raises:
            RuntimeError: If definitions are configured without a session maker.
        """
        if not self._config.definitions:
            return
        if self._config.session_maker is None:
            msg = "StateflowPluginConfig.definitions requires a session_maker."
            raise RuntimeError(msg)
        async with self._config.session_maker() as session:
            service = self.create_service(session)
            for definition in self._config.definitions:
                await service.ensure_definition(definition)
        logger.info("Ensured workflow definitions", count=len(self._config.definitions))

    def on_app_init(self, app_config: AppConfig) -> AppConfig:
        """Initialize the plugin when the Litestar app starts.

        This method:
        1. Creates the shared definition cache and effect synchronizer
        2. Adds the WorkflowService dependency provider
        3. Registers a startup hook ensuring the configured definitions

        Args:
            app_config: The Litestar application configuration.

        Returns:
            The modified application configuration.
        """
        engine_config = self._config.engine
        self._cache = DefinitionCache(
            maxsize=engine_config.definition_cache_size,
            ttl=engine_config.definition_cache_ttl,
        )
        self._synchronizer = BusinessEffectSynchronizer(
            self._config.effect_handlers,
            strict=engine_config.strict_effects,
        )

        def provide_workflow_service(db_session: AsyncSession) -> WorkflowService:
            return self.create_service(db_session)

        app_config.dependencies[self._config.dependency_key] = Provide(
            provide_workflow_service,
            sync_to_thread=False,
        )

        if self._config.definitions:
            app_config.on_startup.append(self.ensure_definitions)

        return app_config
