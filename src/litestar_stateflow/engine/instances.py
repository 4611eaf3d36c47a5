"""Instance store for workflow runs bound to business targets."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from litestar_stateflow.core.models import WorkflowInstanceData
from litestar_stateflow.core.types import InstanceStatus
from litestar_stateflow.db.models import WorkflowInstanceModel
from litestar_stateflow.db.repositories import WorkflowInstanceRepository
from litestar_stateflow.exceptions import DefinitionNotFoundError, InstanceNotFoundError

if TYPE_CHECKING:
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from litestar_stateflow.core.types import Context
    from litestar_stateflow.engine.registry import DefinitionRegistry

__all__ = ["InstanceStore"]

logger = structlog.get_logger(__name__)


class InstanceStore:
    """Creates and looks up workflow instances.

    An instance never changes state here; only the transition engine moves
    ``current_state``.

    Attributes:
        session: The session queries run on.
        registry: Registry used to resolve definitions.
    """

    def __init__(self, session: AsyncSession, registry: DefinitionRegistry) -> None:
        self.session = session
        self.registry = registry
        self.repository = WorkflowInstanceRepository(session=session)

    async def create_instance(
        self,
        definition_code: str,
        *,
        target_type: str,
        target_id: str,
        created_by_id: str | None = None,
        context: Context | None = None,
    ) -> WorkflowInstanceData:
        """Start a new run of a definition in its initial state.

        Args:
            definition_code: Code of the definition to run.
            target_type: Type tag of the business target.
            target_id: Identifier of the business target.
            created_by_id: User starting the process.
            context: Snapshot of data the process needs, such as approvers.

        Returns:
            The new instance.

        Raises:
            DefinitionNotFoundError: If the code is unknown or deactivated.
        """
        model = await self.registry.get_model(definition_code)
        if not model.is_active:
            raise DefinitionNotFoundError(definition_code, inactive=True)

        instance = WorkflowInstanceModel(
            definition_id=model.id,
            definition_code=model.code,
            target_type=target_type,
            target_id=str(target_id),
            current_state=model.initial_state,
            status=InstanceStatus.ACTIVE,
            context=dict(context or {}),
            created_by_id=created_by_id,
        )
        instance = await self.repository.add(instance)
        logger.info(
            "Created workflow instance",
            instance_id=str(instance.id),
            definition_code=definition_code,
            target_type=target_type,
            target_id=str(target_id),
            state=instance.current_state,
        )
        return WorkflowInstanceData.from_model(instance)

    async def get_instance(self, instance_id: UUID) -> WorkflowInstanceData:
        """Load an instance.

        Raises:
            InstanceNotFoundError: If the instance does not exist.
        """
        model = await self.repository.get_one_or_none(id=instance_id)
        if model is None:
            raise InstanceNotFoundError(instance_id)
        return WorkflowInstanceData.from_model(model)

    async def find_by_target(
        self,
        target_type: str,
        target_id: str,
        definition_code: str | None = None,
    ) -> WorkflowInstanceData | None:
        """Return the newest instance bound to a target, or None."""
        model = await self.repository.find_by_target(target_type, str(target_id), definition_code)
        return WorkflowInstanceData.from_model(model) if model is not None else None

    async def list_for_target(self, target_type: str, target_id: str) -> list[WorkflowInstanceData]:
        """Return every instance bound to a target, oldest first."""
        models = await self.repository.list_by_target(target_type, str(target_id))
        return [WorkflowInstanceData.from_model(model) for model in models]

    async def rebind_target(self, instance_id: UUID, target_type: str, target_id: str) -> WorkflowInstanceData:
        """Point an instance at a different business target.

        Used when the target is only created after the process started, for
        example a company row materialized from an application.

        Raises:
            InstanceNotFoundError: If the instance does not exist.
        """
        model = await self.repository.get_one_or_none(id=instance_id)
        if model is None:
            raise InstanceNotFoundError(instance_id)
        previous = (model.target_type, model.target_id)
        model.target_type = target_type
        model.target_id = str(target_id)
        await self.session.flush()
        logger.info(
            "Rebound workflow instance target",
            instance_id=str(instance_id),
            previous_target=f"{previous[0]}:{previous[1]}",
            target=f"{target_type}:{target_id}",
        )
        return WorkflowInstanceData.from_model(model)
