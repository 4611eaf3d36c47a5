"""Append-only transition history."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from advanced_alchemy.exceptions import AdvancedAlchemyError
from sqlalchemy.exc import SQLAlchemyError

from litestar_stateflow.core.models import AuditRecordData
from litestar_stateflow.db.models import AuditRecordModel
from litestar_stateflow.db.repositories import AuditRecordRepository
from litestar_stateflow.exceptions import PersistenceError

if TYPE_CHECKING:
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from litestar_stateflow.core.definition import Action

__all__ = ["AuditTrailWriter"]

logger = structlog.get_logger(__name__)


class AuditTrailWriter:
    """Writes and pages through audit records.

    Records are only ever inserted. Writing one inside the transition
    transaction makes it commit or roll back together with the state change.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.repository = AuditRecordRepository(session=session)

    async def record(
        self,
        instance_id: UUID,
        action: Action,
        from_state: str,
        result_state: str,
        *,
        actor_id: str | None = None,
        actor_role: str | None = None,
        comment: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> AuditRecordData:
        """Write one history entry.

        Args:
            instance_id: The instance that moved.
            action: The action that fired; its label is copied.
            from_state: State before the transition.
            result_state: State after the transition.
            actor_id: Who fired the action.
            actor_role: Role that authorized the actor.
            comment: Free text from the actor.
            payload: Structured data from the actor.

        Returns:
            The stored record.

        Raises:
            PersistenceError: If the insert fails.
        """
        model = AuditRecordModel(
            instance_id=instance_id,
            actor_id=actor_id,
            actor_role=actor_role,
            from_state=from_state,
            action_key=action.key,
            action_label=action.label,
            result_state=result_state,
            comment=comment,
            payload=payload,
        )
        try:
            model = await self.repository.add(model)
        except (SQLAlchemyError, AdvancedAlchemyError) as exc:
            logger.error("Failed to write audit record", instance_id=str(instance_id), action_key=action.key)
            raise PersistenceError("record audit", exc) from exc
        return AuditRecordData.from_model(model)

    async def list_history(
        self,
        instance_id: UUID,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[AuditRecordData], int]:
        """Page through an instance's history, oldest first.

        Args:
            instance_id: The workflow instance.
            page: 1-based page number.
            page_size: Records per page.

        Returns:
            Tuple of (records on the page, total record count).
        """
        page = max(page, 1)
        page_size = max(page_size, 1)
        records, total = await self.repository.find_by_instance(
            instance_id,
            limit=page_size,
            offset=(page - 1) * page_size,
        )
        return [AuditRecordData.from_model(record) for record in records], total
