"""Transition engine.

This module moves workflow instances between states. A transition is checked
in a fixed order (state resolution, finality, action lookup, authorization,
consent) and then applied in one go: the new state, the business effect of
the entered state and the audit record are written on the same session, so
they commit or roll back together.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import structlog

from litestar_stateflow.config import StateflowConfig
from litestar_stateflow.core.models import TransitionResult, WorkflowInstanceData
from litestar_stateflow.core.types import InstanceStatus
from litestar_stateflow.db.repositories import WorkflowInstanceRepository
from litestar_stateflow.exceptions import (
    ActionNotAllowedError,
    ConsentPendingError,
    ConsentRejectedError,
    DefinitionCorruptError,
    ForbiddenError,
    InstanceNotFoundError,
    InstanceTerminatedError,
    InvalidInstanceStateError,
)

if TYPE_CHECKING:
    from collections.abc import Mapping
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from litestar_stateflow.core.definition import Action, State, WorkflowDefinition
    from litestar_stateflow.core.models import Actor
    from litestar_stateflow.core.protocols import Authorizer
    from litestar_stateflow.engine.audit import AuditTrailWriter
    from litestar_stateflow.engine.consent import ConsentGate
    from litestar_stateflow.engine.effects import BusinessEffectSynchronizer
    from litestar_stateflow.engine.registry import DefinitionRegistry

__all__ = ["TransitionEngine"]

logger = structlog.get_logger(__name__)


class TransitionEngine:
    """Applies actions to workflow instances.

    The engine does not open transactions; callers run :meth:`perform_action`
    inside one so every write it makes is atomic.

    Attributes:
        session: The session queries run on.
        registry: Resolves definitions.
        consent: Evaluates consent gates and opens new ones.
        synchronizer: Applies business effects.
        audit: Writes audit records.
        authorizers: Actor checks for role-less actions, keyed by definition code.
        config: Engine configuration.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        registry: DefinitionRegistry,
        consent: ConsentGate,
        synchronizer: BusinessEffectSynchronizer,
        audit: AuditTrailWriter,
        authorizers: Mapping[str, Authorizer] | None = None,
        config: StateflowConfig | None = None,
    ) -> None:
        self.session = session
        self.registry = registry
        self.consent = consent
        self.synchronizer = synchronizer
        self.audit = audit
        self.authorizers = dict(authorizers or {})
        self.config = config or StateflowConfig()
        self.repository = WorkflowInstanceRepository(session=session)

    def _matching_role(self, action: Action, actor: Actor) -> tuple[bool, str | None]:
        """Return whether the actor holds an allowed role, and which one."""
        held = next((role for role in action.roles if role in actor.roles), None)
        if held is not None:
            return True, held
        return self.config.wildcard_role in action.roles, None

    async def _authorize(self, instance: WorkflowInstanceData, action: Action, actor: Actor) -> str | None:
        if action.roles:
            allowed, role = self._matching_role(action, actor)
            if not allowed:
                raise ForbiddenError(action.key, actor.id)
            return role

        authorizer = self.authorizers.get(instance.definition_code)
        if authorizer is not None and not await authorizer.authorize(self.session, instance, action, actor):
            raise ForbiddenError(action.key, actor.id)
        return None

    def _resolve_state(self, definition: WorkflowDefinition, instance: WorkflowInstanceData) -> State:
        state = definition.get_state(instance.current_state)
        if state is None:
            logger.critical(
                "Workflow instance is in a state its definition does not declare",
                instance_id=str(instance.id),
                definition_code=definition.code,
                state=instance.current_state,
            )
            raise InvalidInstanceStateError(instance.id, instance.current_state)
        return state

    async def perform_action(
        self,
        instance_id: UUID,
        action_key: str,
        actor: Actor,
        *,
        comment: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> TransitionResult:
        """Fire an action on an instance.

        The instance row is re-read (and locked where the dialect allows) so a
        concurrent transition that already moved the instance is observed;
        the second caller then gets :class:`ActionNotAllowedError`.

        Args:
            instance_id: The instance to move.
            action_key: The action to fire from the current state.
            actor: Who is firing it.
            comment: Free text stored on the audit record.
            payload: Structured data stored on the audit record.

        Returns:
            The transition result with the updated instance and audit record.

        Raises:
            InstanceNotFoundError: If the instance does not exist.
            InvalidInstanceStateError: If the stored state is undeclared.
            InstanceTerminatedError: If the instance is in a final state.
            ActionNotAllowedError: If the current state does not offer the action.
            ForbiddenError: If the actor may not fire the action.
            ConsentRejectedError: If the action's consent gate was rejected.
            ConsentPendingError: If the action's consent gate is not yet met.
            DefinitionCorruptError: If the action's destination is undeclared.
        """
        model = await self.repository.get_for_update(instance_id, lock=self.config.lock_instance_rows)
        if model is None:
            raise InstanceNotFoundError(instance_id)
        instance = WorkflowInstanceData.from_model(model)
        definition = await self.registry.get_definition(instance.definition_code)

        state = self._resolve_state(definition, instance)
        if state.final:
            raise InstanceTerminatedError(instance.id, state.key)

        action = state.get_action(action_key)
        if action is None:
            logger.debug(
                "Transition rejected, action not offered",
                instance_id=str(instance.id),
                state=state.key,
                action_key=action_key,
            )
            raise ActionNotAllowedError(state.key, action_key)

        actor_role = await self._authorize(instance, action, actor)

        if action.requires_consent is not None:
            evaluation = await self.consent.evaluate(instance, definition, action.key)
            if evaluation.rejected:
                raise ConsentRejectedError(action.key)
            if not evaluation.satisfied:
                raise ConsentPendingError(action.key, evaluation.outstanding)

        next_state = definition.get_state(action.to)
        if next_state is None:
            logger.error(
                "Workflow action targets an undeclared state",
                definition_code=definition.code,
                state=state.key,
                action_key=action.key,
                target=action.to,
            )
            raise DefinitionCorruptError(definition.code, state.key, action.key, action.to)

        model.current_state = next_state.key
        if next_state.final:
            model.status = InstanceStatus.COMPLETED
            model.completed_at = datetime.now(timezone.utc)
        await self.session.flush()
        instance = WorkflowInstanceData.from_model(model)

        if action.metadata.get("reset_consent"):
            await self.consent.reset(instance.id)
        await self.consent.open_gates_for_state(instance, definition, next_state.key)

        if next_state.business:
            await self.synchronizer.apply(self.session, instance, next_state.business)

        record = await self.audit.record(
            instance.id,
            action,
            state.key,
            next_state.key,
            actor_id=actor.id,
            actor_role=actor_role,
            comment=comment,
            payload=payload,
        )

        logger.info(
            "Workflow transition performed",
            instance_id=str(instance.id),
            definition_code=definition.code,
            action_key=action.key,
            from_state=state.key,
            to_state=next_state.key,
            actor_id=actor.id,
        )
        return TransitionResult(
            action=action,
            previous_state=state,
            next_state=next_state,
            instance=instance,
            audit_record=record,
        )

    async def available_actions(self, instance_id: UUID, actor: Actor) -> list[Action]:
        """List the actions ``actor`` could fire from the instance's current state.

        Role checks and registered authorizers are applied; consent gates are
        not, so a gated action is listed even while its quorum is pending.

        Args:
            instance_id: The workflow instance.
            actor: The prospective actor.

        Returns:
            Actions in declaration order. Empty for a final state.

        Raises:
            InstanceNotFoundError: If the instance does not exist.
            InvalidInstanceStateError: If the stored state is undeclared.
        """
        model = await self.repository.get_one_or_none(id=instance_id)
        if model is None:
            raise InstanceNotFoundError(instance_id)
        instance = WorkflowInstanceData.from_model(model)
        definition = await self.registry.get_definition(instance.definition_code)
        state = self._resolve_state(definition, instance)

        actions: list[Action] = []
        for action in state.actions:
            try:
                await self._authorize(instance, action, actor)
            except ForbiddenError:
                continue
            actions.append(action)
        return actions
