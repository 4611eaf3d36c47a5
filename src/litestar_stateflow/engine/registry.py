"""Definition registry backed by the ``workflow_definitions`` table.

This module stores, retrieves and re-registers workflow definitions. Parsed
definitions are kept in a :class:`~litestar_stateflow.engine.cache.DefinitionCache`
so transitions do not re-parse the stored graph on every call.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import structlog

from litestar_stateflow.core.definition import WorkflowDefinition
from litestar_stateflow.db.models import WorkflowDefinitionModel
from litestar_stateflow.db.repositories import WorkflowDefinitionRepository, WorkflowInstanceRepository
from litestar_stateflow.engine.cache import DefinitionCache
from litestar_stateflow.exceptions import (
    DefinitionConflictError,
    DefinitionNotFoundError,
    DefinitionValidationError,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

__all__ = ["DefinitionRegistry"]

logger = structlog.get_logger(__name__)


def _definition_from_model(model: WorkflowDefinitionModel) -> WorkflowDefinition:
    data = dict(model.config or {})
    data.update(
        code=model.code,
        name=model.name,
        description=model.description,
        category=model.category,
        is_active=model.is_active,
    )
    return WorkflowDefinition.from_dict(data)


def _apply_metadata(model: WorkflowDefinitionModel, definition: WorkflowDefinition) -> None:
    model.name = definition.name
    model.description = definition.description
    model.category = definition.category
    # Labels and descriptions live in the stored graph too.
    model.config = definition.to_dict()


def _apply_graph(model: WorkflowDefinitionModel, definition: WorkflowDefinition) -> None:
    _apply_metadata(model, definition)
    model.initial_state = definition.initial_state
    model.states = definition.state_keys
    model.roles = definition.roles
    model.shape_hash = definition.shape_hash()


def _strands_instances(stored: WorkflowDefinition, definition: WorkflowDefinition, state_key: str) -> bool:
    """Whether instances sitting in ``state_key`` break under the new graph.

    A dropped state leaves them in an undeclared state. A final state turned
    non-final would unlock completed instances.
    """
    new_state = definition.get_state(state_key)
    if new_state is None:
        return True
    old_state = stored.get_state(state_key)
    return old_state is not None and old_state.final and not new_state.final


class DefinitionRegistry:
    """Registry for storing and retrieving workflow definitions.

    The registry runs on the caller's session and does not manage transaction
    boundaries itself; :class:`~litestar_stateflow.engine.service.WorkflowService`
    wraps each call in one.

    Attributes:
        session: The session queries run on.
        cache: Shared cache of parsed definitions.
    """

    def __init__(self, session: AsyncSession, cache: DefinitionCache | None = None) -> None:
        """Initialize the registry.

        Args:
            session: The session queries run on.
            cache: Shared definition cache. A private one is created if omitted.
        """
        self.session = session
        self.cache = cache if cache is not None else DefinitionCache()
        self.repository = WorkflowDefinitionRepository(session=session)
        self.instances = WorkflowInstanceRepository(session=session)

    async def ensure_definition(self, definition: WorkflowDefinition | Mapping[str, Any]) -> WorkflowDefinition:
        """Register a definition, or reconcile it with the stored one.

        An unknown code is inserted. A code whose stored graph has the same
        shape only has its labels and descriptions refreshed. A changed graph
        replaces the stored one unless an instance, running or completed, sits
        in a state the new graph drops or turns from final into non-final.

        Args:
            definition: The definition, parsed or in its mapping form.

        Returns:
            The definition as stored.

        Raises:
            DefinitionValidationError: If the graph is structurally invalid.
            DefinitionConflictError: If the change would strand existing instances.

        Example:
            >>> await registry.ensure_definition(COMPANY_RENAME)
        """
        if isinstance(definition, Mapping):
            definition = WorkflowDefinition.from_dict(dict(definition))

        errors = definition.validate()
        if errors:
            logger.warning("Rejected invalid workflow definition", code=definition.code, errors=errors)
            raise DefinitionValidationError(errors)

        model = await self.repository.get_by_code(definition.code)
        if model is None:
            model = WorkflowDefinitionModel(code=definition.code, is_active=definition.is_active)
            _apply_graph(model, definition)
            await self.repository.add(model)
            logger.info("Registered workflow definition", code=definition.code, states=len(definition.states))
        elif model.shape_hash == definition.shape_hash():
            _apply_metadata(model, definition)
            await self.session.flush()
            logger.debug("Refreshed workflow definition metadata", code=definition.code)
        else:
            stored = _definition_from_model(model)
            occupied = await self.instances.occupied_states(definition.code)
            orphaned = {key for key in occupied if _strands_instances(stored, definition, key)}
            if orphaned:
                logger.warning(
                    "Workflow definition change would strand existing instances",
                    code=definition.code,
                    orphaned_states=sorted(orphaned),
                )
                raise DefinitionConflictError(definition.code, orphaned)
            _apply_graph(model, definition)
            await self.session.flush()
            logger.info("Replaced workflow definition graph", code=definition.code, states=len(definition.states))

        self.cache.invalidate(definition.code)
        return _definition_from_model(model)

    async def get_definition(self, code: str) -> WorkflowDefinition:
        """Load a definition by code, from the cache when possible.

        Inactive definitions are returned too; callers that start new
        instances check :attr:`WorkflowDefinition.is_active` themselves.

        Args:
            code: The definition code.

        Returns:
            The parsed definition.

        Raises:
            DefinitionNotFoundError: If no definition has this code.
        """
        cached = self.cache.get(code)
        if cached is not None:
            return cached

        model = await self.repository.get_by_code(code)
        if model is None:
            raise DefinitionNotFoundError(code)
        definition = _definition_from_model(model)
        self.cache.put(definition)
        return definition

    async def get_model(self, code: str) -> WorkflowDefinitionModel:
        """Load the stored row of a definition, bypassing the cache.

        Raises:
            DefinitionNotFoundError: If no definition has this code.
        """
        model = await self.repository.get_by_code(code)
        if model is None:
            raise DefinitionNotFoundError(code)
        return model

    async def list_definitions(
        self,
        category: str | None = None,
        *,
        active_only: bool = True,
    ) -> list[WorkflowDefinition]:
        """List stored definitions, newest first.

        Args:
            category: Optional category filter.
            active_only: Skip deactivated definitions.

        Returns:
            Parsed definitions.
        """
        models = await self.repository.list_by_category(category, active_only=active_only)
        return [_definition_from_model(model) for model in models]

    async def deactivate_definition(self, code: str) -> WorkflowDefinition:
        """Stop new instances from being created for a definition.

        Existing instances keep running against the stored graph.

        Args:
            code: The definition code.

        Returns:
            The deactivated definition.

        Raises:
            DefinitionNotFoundError: If no definition has this code.
        """
        model = await self.get_model(code)
        model.is_active = False
        await self.session.flush()
        self.cache.invalidate(code)
        logger.info("Deactivated workflow definition", code=code)
        return _definition_from_model(model)
