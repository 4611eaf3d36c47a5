"""Core protocols for litestar-stateflow.

This module defines the Protocol-based interfaces the engine calls out to.
Applications implement them to plug business rules into the generic runtime
without the engine knowing their schema.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from litestar_stateflow.core.definition import Action
    from litestar_stateflow.core.models import Actor, ApproverRef, WorkflowInstanceData
    from litestar_stateflow.core.types import BusinessEffect


__all__ = ["ApproverResolver", "Authorizer", "EffectHandler", "EventBus"]


@runtime_checkable
class EffectHandler(Protocol):
    """Writes a state's business effect onto one kind of target entity.

    One handler is registered per target type. It runs inside the engine's
    transaction and must only use the session it is given.

    Example:
        >>> class CompanyEffects:
        ...     async def apply(self, session, target_id, effect, instance):
        ...         company = await session.get(Company, target_id)
        ...         company.status = effect.get("company_status", company.status)
    """

    async def apply(
        self,
        session: AsyncSession,
        target_id: str,
        effect: BusinessEffect,
        instance: WorkflowInstanceData,
    ) -> None:
        """Apply ``effect`` to the target and its dependents.

        Args:
            session: The session owning the engine's open transaction.
            target_id: Identifier of the target entity.
            effect: Partial set of denormalized fields to write.
            instance: The instance after the state change.
        """
        ...


@runtime_checkable
class Authorizer(Protocol):
    """Business-rule actor check for actions without static roles.

    Registered per definition code. Called only when ``action.roles`` is empty;
    without an authorizer the engine trusts the caller to have checked.
    """

    async def authorize(
        self,
        session: AsyncSession,
        instance: WorkflowInstanceData,
        action: Action,
        actor: Actor,
    ) -> bool:
        """Return True when ``actor`` may fire ``action`` on ``instance``."""
        ...


@runtime_checkable
class ApproverResolver(Protocol):
    """Computes the current approver set for a consent-gated action.

    Approvers and their weights may change while a gate is open, so the set is
    recomputed on every decision and every evaluation.
    """

    async def resolve(
        self,
        session: AsyncSession,
        instance: WorkflowInstanceData,
        action_key: str,
    ) -> list[ApproverRef]:
        """Return the approvers whose consent ``action_key`` needs."""
        ...


@runtime_checkable
class EventBus(Protocol):
    """Minimal event sink notified after engine operations."""

    async def emit(self, event_type: str, **kwargs: Any) -> None:
        """Publish an event."""
        ...
