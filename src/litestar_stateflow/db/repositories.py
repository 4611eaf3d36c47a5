"""Repository implementations for workflow persistence.

This module provides async repositories for the engine's four tables using
advanced-alchemy's repository pattern.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from advanced_alchemy.filters import LimitOffset, OrderBy
from advanced_alchemy.repository import SQLAlchemyAsyncRepository
from sqlalchemy import and_, delete, select

from litestar_stateflow.db.models import (
    AuditRecordModel,
    ConsentRecordModel,
    WorkflowDefinitionModel,
    WorkflowInstanceModel,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

__all__ = [
    "AuditRecordRepository",
    "ConsentRecordRepository",
    "WorkflowDefinitionRepository",
    "WorkflowInstanceRepository",
]


class WorkflowDefinitionRepository(SQLAlchemyAsyncRepository[WorkflowDefinitionModel]):
    """Repository for workflow definition CRUD operations."""

    model_type = WorkflowDefinitionModel

    async def get_by_code(self, code: str) -> WorkflowDefinitionModel | None:
        """Get a workflow definition by its code.

        Args:
            code: The definition code.

        Returns:
            The workflow definition or None if not found.
        """
        stmt = select(WorkflowDefinitionModel).where(WorkflowDefinitionModel.code == code)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_category(
        self,
        category: str | None = None,
        *,
        active_only: bool = True,
    ) -> Sequence[WorkflowDefinitionModel]:
        """List definitions, newest first.

        Args:
            category: Optional category filter.
            active_only: If True, only return active definitions.

        Returns:
            List of workflow definitions.
        """
        conditions = []
        if category is not None:
            conditions.append(WorkflowDefinitionModel.category == category)
        if active_only:
            conditions.append(WorkflowDefinitionModel.is_active == True)  # noqa: E712

        stmt = select(WorkflowDefinitionModel).order_by(WorkflowDefinitionModel.created_at.desc())
        if conditions:
            stmt = stmt.where(and_(*conditions))
        result = await self.session.execute(stmt)
        return result.scalars().all()


class WorkflowInstanceRepository(SQLAlchemyAsyncRepository[WorkflowInstanceModel]):
    """Repository for workflow instance CRUD operations."""

    model_type = WorkflowInstanceModel

    async def get_for_update(self, instance_id: UUID, *, lock: bool = True) -> WorkflowInstanceModel | None:
        """Re-read an instance inside the current transaction.

        The row is refreshed from the database even when it is already in the
        identity map, so a state written by a concurrent transaction that has
        committed is always observed.

        Args:
            instance_id: The instance ID.
            lock: Issue ``SELECT ... FOR UPDATE`` on dialects that support it.

        Returns:
            The instance or None if not found.
        """
        stmt = (
            select(WorkflowInstanceModel)
            .where(WorkflowInstanceModel.id == instance_id)
            .execution_options(populate_existing=True)
        )
        if lock and self.session.get_bind().dialect.name != "sqlite":
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_target(
        self,
        target_type: str,
        target_id: str,
        definition_code: str | None = None,
    ) -> WorkflowInstanceModel | None:
        """Find the most recent instance bound to a business target.

        Args:
            target_type: The target type tag.
            target_id: The target identifier.
            definition_code: Optional definition filter.

        Returns:
            The newest matching instance or None.
        """
        conditions = [
            WorkflowInstanceModel.target_type == target_type,
            WorkflowInstanceModel.target_id == target_id,
        ]
        if definition_code is not None:
            conditions.append(WorkflowInstanceModel.definition_code == definition_code)

        stmt = (
            select(WorkflowInstanceModel)
            .where(and_(*conditions))
            .order_by(WorkflowInstanceModel.created_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_target(self, target_type: str, target_id: str) -> Sequence[WorkflowInstanceModel]:
        """List every instance bound to a business target, oldest first."""
        stmt = (
            select(WorkflowInstanceModel)
            .where(
                and_(
                    WorkflowInstanceModel.target_type == target_type,
                    WorkflowInstanceModel.target_id == target_id,
                )
            )
            .order_by(WorkflowInstanceModel.created_at)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def occupied_states(self, definition_code: str) -> set[str]:
        """Return the states held by any instance of a definition.

        Completed instances count too, since their final state must stay
        declared and final.

        Args:
            definition_code: The definition code.

        Returns:
            Set of state keys with at least one instance.
        """
        stmt = (
            select(WorkflowInstanceModel.current_state)
            .where(WorkflowInstanceModel.definition_code == definition_code)
            .distinct()
        )
        result = await self.session.execute(stmt)
        return set(result.scalars().all())


class ConsentRecordRepository(SQLAlchemyAsyncRepository[ConsentRecordModel]):
    """Repository for consent decisions."""

    model_type = ConsentRecordModel

    async def find_for_action(self, instance_id: UUID, action_key: str) -> Sequence[ConsentRecordModel]:
        """Find every consent record of a gated action.

        Args:
            instance_id: The workflow instance ID.
            action_key: The gated action.

        Returns:
            Consent records ordered by creation time.
        """
        stmt = (
            select(ConsentRecordModel)
            .where(
                and_(
                    ConsentRecordModel.instance_id == instance_id,
                    ConsentRecordModel.action_key == action_key,
                )
            )
            .order_by(ConsentRecordModel.created_at)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def delete_for_instance(self, instance_id: UUID, action_keys: Iterable[str] | None = None) -> None:
        """Delete consent records of an instance.

        Args:
            instance_id: The workflow instance ID.
            action_keys: Restrict deletion to these actions. None deletes all.
        """
        stmt = delete(ConsentRecordModel).where(ConsentRecordModel.instance_id == instance_id)
        if action_keys is not None:
            stmt = stmt.where(ConsentRecordModel.action_key.in_(list(action_keys)))
        await self.session.execute(stmt)


class AuditRecordRepository(SQLAlchemyAsyncRepository[AuditRecordModel]):
    """Repository for the append-only transition history."""

    model_type = AuditRecordModel

    async def find_by_instance(
        self,
        instance_id: UUID,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[AuditRecordModel], int]:
        """Page through the history of an instance, oldest first.

        Args:
            instance_id: The workflow instance ID.
            limit: Maximum number of results.
            offset: Number of results to skip.

        Returns:
            Tuple of (records, total_count).
        """
        return await self.list_and_count(
            AuditRecordModel.instance_id == instance_id,
            LimitOffset(limit=limit, offset=offset),
            OrderBy(field_name="created_at", sort_order="asc"),
        )
