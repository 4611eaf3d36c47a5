"""Business effect synchronization.

States may carry a ``business`` mapping of denormalized fields (for example
``{"company_status": "ACTIVE"}``). When a transition enters such a state the
synchronizer hands the mapping to the handler registered for the instance's
target type, inside the same transaction as the state change.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import inspect, update

from litestar_stateflow.exceptions import EffectHandlerNotFoundError, PersistenceError

if TYPE_CHECKING:
    from collections.abc import Mapping
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from litestar_stateflow.core.models import WorkflowInstanceData
    from litestar_stateflow.core.protocols import EffectHandler
    from litestar_stateflow.core.types import BusinessEffect

__all__ = ["BusinessEffectSynchronizer", "ModelEffectHandler"]

logger = structlog.get_logger(__name__)


class BusinessEffectSynchronizer:
    """Dispatches business effects to handlers keyed by target type.

    The synchronizer holds no session; it is built once at startup and
    shared by every request.

    Example:
        >>> synchronizer = BusinessEffectSynchronizer()
        >>> synchronizer.register("company", ModelEffectHandler(Company, field_map={"company_status": "status"}))
    """

    def __init__(
        self,
        handlers: Mapping[str, EffectHandler] | None = None,
        *,
        strict: bool = False,
    ) -> None:
        """Initialize the synchronizer.

        Args:
            handlers: Initial handlers keyed by target type.
            strict: Raise instead of skipping when no handler matches.
        """
        self._handlers: dict[str, EffectHandler] = dict(handlers or {})
        self.strict = strict

    def register(self, target_type: str, handler: EffectHandler) -> None:
        """Register the handler for a target type, replacing any previous one."""
        self._handlers[target_type] = handler

    def unregister(self, target_type: str) -> None:
        self._handlers.pop(target_type, None)

    def has_handler(self, target_type: str) -> bool:
        return target_type in self._handlers

    @property
    def target_types(self) -> list[str]:
        return list(self._handlers)

    async def apply(
        self,
        session: AsyncSession,
        instance: WorkflowInstanceData,
        effect: BusinessEffect,
    ) -> bool:
        """Apply a business effect to the instance's target.

        Args:
            session: The session owning the open transition transaction.
            instance: The instance after the state change.
            effect: Fields to write.

        Returns:
            True if a handler ran, False if the effect was skipped.

        Raises:
            EffectHandlerNotFoundError: In strict mode, when no handler serves
                the target type.
        """
        if not effect:
            return False

        handler = self._handlers.get(instance.target_type)
        if handler is None:
            if self.strict:
                raise EffectHandlerNotFoundError(instance.target_type)
            logger.warning(
                "No business effect handler for target type, effect skipped",
                target_type=instance.target_type,
                instance_id=str(instance.id),
                state=instance.current_state,
            )
            return False

        await handler.apply(session, instance.target_id, effect, instance)
        logger.debug(
            "Applied business effect",
            target_type=instance.target_type,
            target_id=instance.target_id,
            fields=sorted(effect),
        )
        return True


class ModelEffectHandler:
    """Effect handler that writes effect keys onto SQLAlchemy model columns.

    The target row is updated by primary key. Optionally, rows of a dependent
    model linked to the same instance (such as the application that started
    the process) are updated in the same statement batch.

    Attributes:
        model: Mapped class of the target entity.
        field_map: Effect key to target column name.
        state_column: Column receiving the instance's current state key, if any.
        derive: Callback computing extra target column values from the effect.
        dependent_model: Mapped class of rows cascaded to, if any.
        dependent_field_map: Effect key to dependent column name.
        dependent_instance_column: Dependent column holding the instance id.
        dependent_parent_column: Dependent column holding the target id, if any.

    Example:
        >>> handler = ModelEffectHandler(
        ...     Company,
        ...     field_map={"company_status": "status"},
        ...     state_column="workflow_state",
        ...     dependent_model=CompanyApplication,
        ...     dependent_field_map={"application_status": "status"},
        ...     dependent_parent_column="company_id",
        ... )
    """

    def __init__(
        self,
        model: type[Any],
        *,
        field_map: Mapping[str, str],
        state_column: str | None = None,
        derive: Callable[[BusinessEffect], dict[str, Any]] | None = None,
        id_factory: Callable[[str], Any] | None = None,
        dependent_model: type[Any] | None = None,
        dependent_field_map: Mapping[str, str] | None = None,
        dependent_instance_column: str = "workflow_instance_id",
        dependent_parent_column: str | None = None,
        instance_id_factory: Callable[[UUID], Any] = str,
    ) -> None:
        self.model = model
        self.field_map = dict(field_map)
        self.state_column = state_column
        self.derive = derive
        self.id_factory = id_factory
        self.dependent_model = dependent_model
        self.dependent_field_map = dict(dependent_field_map or {})
        self.dependent_instance_column = dependent_instance_column
        self.dependent_parent_column = dependent_parent_column
        self.instance_id_factory = instance_id_factory

    def _target_id(self, target_id: str) -> Any:
        return self.id_factory(target_id) if self.id_factory is not None else target_id

    def target_values(self, effect: BusinessEffect, instance: WorkflowInstanceData) -> dict[str, Any]:
        """Column values to write on the target row."""
        values = {column: effect[key] for key, column in self.field_map.items() if key in effect}
        if self.state_column is not None:
            values[self.state_column] = instance.current_state
        if self.derive is not None:
            values.update(self.derive(effect))
        return values

    def dependent_values(self, effect: BusinessEffect) -> dict[str, Any]:
        """Column values to write on dependent rows."""
        return {column: effect[key] for key, column in self.dependent_field_map.items() if key in effect}

    async def apply(
        self,
        session: AsyncSession,
        target_id: str,
        effect: BusinessEffect,
        instance: WorkflowInstanceData,
    ) -> None:
        values = self.target_values(effect, instance)
        if values:
            (primary_key,) = inspect(self.model).primary_key
            result = await session.execute(
                update(self.model).where(primary_key == self._target_id(target_id)).values(**values)
            )
            if result.rowcount == 0:
                raise PersistenceError(
                    "apply business effect",
                    LookupError(f"{self.model.__name__} '{target_id}' does not exist"),
                )

        if self.dependent_model is None:
            return
        dependent_values = self.dependent_values(effect)
        if not dependent_values:
            return
        stmt = update(self.dependent_model).where(
            getattr(self.dependent_model, self.dependent_instance_column) == self.instance_id_factory(instance.id)
        )
        if self.dependent_parent_column is not None:
            stmt = stmt.where(getattr(self.dependent_model, self.dependent_parent_column) == self._target_id(target_id))
        await session.execute(stmt.values(**dependent_values))
