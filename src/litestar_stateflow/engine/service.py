"""Workflow service facade.

:class:`WorkflowService` wires the registry, instance store, consent gate,
effect synchronizer, audit writer and transition engine onto one database
session. Each public method runs in its own transaction (or SAVEPOINT, when
the session already has one open) and publishes domain events once that block
has exited successfully.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import structlog

from litestar_stateflow.config import StateflowConfig
from litestar_stateflow.core.events import (
    ConsentDecisionRecorded,
    InstanceCompleted,
    InstanceCreated,
    TransitionPerformed,
)
from litestar_stateflow.engine.audit import AuditTrailWriter
from litestar_stateflow.engine.base import transaction
from litestar_stateflow.engine.cache import DefinitionCache
from litestar_stateflow.engine.consent import ConsentGate
from litestar_stateflow.engine.effects import BusinessEffectSynchronizer
from litestar_stateflow.engine.instances import InstanceStore
from litestar_stateflow.engine.registry import DefinitionRegistry
from litestar_stateflow.engine.transitions import TransitionEngine

if TYPE_CHECKING:
    from collections.abc import Mapping
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from litestar_stateflow.core.definition import Action, WorkflowDefinition
    from litestar_stateflow.core.events import WorkflowEvent
    from litestar_stateflow.core.models import (
        Actor,
        ApproverRef,
        AuditRecordData,
        ConsentEvaluation,
        ConsentRecordData,
        TransitionResult,
        WorkflowInstanceData,
    )
    from litestar_stateflow.core.protocols import ApproverResolver, Authorizer, EventBus
    from litestar_stateflow.core.types import ConsentDecision, Context

__all__ = ["WorkflowService"]

logger = structlog.get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowService:
    """Entry point for running workflows on a database session.

    Build one per session (for example per request); the definition cache and
    effect synchronizer are meant to be shared and passed in.

    Attributes:
        session: The session every operation runs on.
        config: Engine configuration.
        registry: Definition registry.
        instances: Instance store.
        consent: Consent gate.
        audit: Audit trail writer.
        engine: Transition engine.

    Example:
        >>> service = WorkflowService(session)
        >>> await service.ensure_definition(COMPANY_REGISTRATION)
        >>> instance = await service.create_instance(
        ...     "company.registration", target_type="company", target_id="c-1"
        ... )
        >>> await service.perform_action(instance.id, "approve", Actor.with_roles("u-1", "ADMIN"))
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        config: StateflowConfig | None = None,
        cache: DefinitionCache | None = None,
        synchronizer: BusinessEffectSynchronizer | None = None,
        authorizers: Mapping[str, Authorizer] | None = None,
        resolvers: Mapping[str, ApproverResolver] | None = None,
        default_resolver: ApproverResolver | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            session: The session every operation runs on.
            config: Engine configuration.
            cache: Shared definition cache.
            synchronizer: Shared business effect synchronizer.
            authorizers: Actor checks for role-less actions, keyed by definition code.
            resolvers: Approver resolvers keyed by definition code.
            default_resolver: Approver resolver for other definitions.
            event_bus: Optional sink for domain events.
        """
        self.session = session
        self.config = config or StateflowConfig()
        if cache is None:
            cache = DefinitionCache(
                maxsize=self.config.definition_cache_size,
                ttl=self.config.definition_cache_ttl,
            )
        if synchronizer is None:
            synchronizer = BusinessEffectSynchronizer(strict=self.config.strict_effects)
        self.cache = cache
        self.synchronizer = synchronizer
        self.event_bus = event_bus

        self.registry = DefinitionRegistry(session, self.cache)
        self.instances = InstanceStore(session, self.registry)
        self.consent = ConsentGate(
            session,
            resolvers=resolvers,
            default_resolver=default_resolver,
            allow_decision_override=self.config.allow_decision_override,
        )
        self.audit = AuditTrailWriter(session)
        self.engine = TransitionEngine(
            session,
            registry=self.registry,
            consent=self.consent,
            synchronizer=self.synchronizer,
            audit=self.audit,
            authorizers=authorizers,
            config=self.config,
        )

    async def _emit(self, *events: WorkflowEvent) -> None:
        if self.event_bus is None:
            return
        for event in events:
            await self.event_bus.emit(event.event_type, event=event)

    # Definitions

    async def ensure_definition(self, definition: WorkflowDefinition | Mapping[str, Any]) -> WorkflowDefinition:
        """Register or reconcile a definition. See :meth:`DefinitionRegistry.ensure_definition`."""
        async with transaction(self.session, "ensure_definition"):
            stored = await self.registry.ensure_definition(definition)
        # A concurrent reader may have cached the previous graph before commit.
        self.cache.invalidate(stored.code)
        return stored

    async def get_definition(self, code: str) -> WorkflowDefinition:
        async with transaction(self.session, "get_definition"):
            return await self.registry.get_definition(code)

    async def list_definitions(
        self,
        category: str | None = None,
        *,
        active_only: bool = True,
    ) -> list[WorkflowDefinition]:
        async with transaction(self.session, "list_definitions"):
            return await self.registry.list_definitions(category, active_only=active_only)

    async def deactivate_definition(self, code: str) -> WorkflowDefinition:
        async with transaction(self.session, "deactivate_definition"):
            definition = await self.registry.deactivate_definition(code)
        self.cache.invalidate(code)
        return definition

    # Instances

    async def create_instance(
        self,
        definition_code: str,
        *,
        target_type: str,
        target_id: str,
        created_by_id: str | None = None,
        context: Context | None = None,
    ) -> WorkflowInstanceData:
        """Start a new instance and open the consent gates of its initial state.

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
        async with transaction(self.session, "create_instance"):
            instance = await self.instances.create_instance(
                definition_code,
                target_type=target_type,
                target_id=target_id,
                created_by_id=created_by_id,
                context=context,
            )
            definition = await self.registry.get_definition(definition_code)
            await self.consent.open_gates_for_state(instance, definition, instance.current_state)

        await self._emit(
            InstanceCreated(
                instance_id=instance.id,
                timestamp=_now(),
                definition_code=instance.definition_code,
                target_type=instance.target_type,
                target_id=instance.target_id,
                initial_state=instance.current_state,
                created_by_id=created_by_id,
            )
        )
        return instance

    async def get_instance(self, instance_id: UUID) -> WorkflowInstanceData:
        async with transaction(self.session, "get_instance"):
            return await self.instances.get_instance(instance_id)

    async def find_by_target(
        self,
        target_type: str,
        target_id: str,
        definition_code: str | None = None,
    ) -> WorkflowInstanceData | None:
        async with transaction(self.session, "find_by_target"):
            return await self.instances.find_by_target(target_type, target_id, definition_code)

    async def list_for_target(self, target_type: str, target_id: str) -> list[WorkflowInstanceData]:
        async with transaction(self.session, "list_for_target"):
            return await self.instances.list_for_target(target_type, target_id)

    async def rebind_target(self, instance_id: UUID, target_type: str, target_id: str) -> WorkflowInstanceData:
        async with transaction(self.session, "rebind_target"):
            return await self.instances.rebind_target(instance_id, target_type, target_id)

    # Transitions

    async def perform_action(
        self,
        instance_id: UUID,
        action_key: str,
        actor: Actor,
        *,
        comment: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> TransitionResult:
        """Fire an action atomically. See :meth:`TransitionEngine.perform_action`."""
        async with transaction(self.session, "perform_action"):
            result = await self.engine.perform_action(
                instance_id,
                action_key,
                actor,
                comment=comment,
                payload=payload,
            )

        instance = result.instance
        events: list[WorkflowEvent] = [
            TransitionPerformed(
                instance_id=instance.id,
                timestamp=_now(),
                definition_code=instance.definition_code,
                action_key=result.action.key,
                from_state=result.previous_state.key,
                to_state=result.next_state.key,
                actor_id=actor.id,
                payload=payload,
            )
        ]
        if result.next_state.final:
            events.append(
                InstanceCompleted(
                    instance_id=instance.id,
                    timestamp=_now(),
                    definition_code=instance.definition_code,
                    final_state=result.next_state.key,
                )
            )
        await self._emit(*events)
        return result

    async def available_actions(self, instance_id: UUID, actor: Actor) -> list[Action]:
        async with transaction(self.session, "available_actions"):
            return await self.engine.available_actions(instance_id, actor)

    # Consent

    async def required_approvers(self, instance_id: UUID, action_key: str) -> list[ApproverRef]:
        async with transaction(self.session, "required_approvers"):
            instance = await self.instances.get_instance(instance_id)
            return await self.consent.required_approvers(instance, action_key)

    async def open_gate(self, instance_id: UUID, action_key: str) -> list[ConsentRecordData]:
        """Open (or top up) the consent gate of an action, e.g. after approvers changed."""
        async with transaction(self.session, "open_gate"):
            instance = await self.instances.get_instance(instance_id)
            return await self.consent.open_gate(instance, action_key)

    async def record_decision(
        self,
        instance_id: UUID,
        action_key: str,
        approver_ref: str,
        decision: ConsentDecision,
        *,
        approver_kind: str | None = None,
        comment: str | None = None,
    ) -> ConsentEvaluation:
        """Record an approver's decision. See :meth:`ConsentGate.record_decision`."""
        async with transaction(self.session, "record_decision"):
            instance = await self.instances.get_instance(instance_id)
            definition = await self.registry.get_definition(instance.definition_code)
            evaluation = await self.consent.record_decision(
                instance,
                definition,
                action_key,
                approver_ref,
                decision,
                approver_kind=approver_kind,
                comment=comment,
            )

        await self._emit(
            ConsentDecisionRecorded(
                instance_id=instance.id,
                timestamp=_now(),
                action_key=action_key,
                approver_kind=approver_kind or "",
                approver_ref=approver_ref,
                decision=str(decision),
                progress=str(evaluation.progress),
            )
        )
        return evaluation

    async def evaluate_consent(self, instance_id: UUID, action_key: str) -> ConsentEvaluation:
        async with transaction(self.session, "evaluate_consent"):
            instance = await self.instances.get_instance(instance_id)
            definition = await self.registry.get_definition(instance.definition_code)
            return await self.consent.evaluate(instance, definition, action_key)

    async def consent_records(self, instance_id: UUID, action_key: str) -> list[ConsentRecordData]:
        async with transaction(self.session, "consent_records"):
            return await self.consent.list_records(instance_id, action_key)

    async def reset_consent(self, instance_id: UUID, action_keys: list[str] | None = None) -> None:
        async with transaction(self.session, "reset_consent"):
            await self.consent.reset(instance_id, action_keys)

    # History

    async def history(
        self,
        instance_id: UUID,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[AuditRecordData], int]:
        """Page through an instance's audit trail, oldest first."""
        async with transaction(self.session, "history"):
            return await self.audit.list_history(instance_id, page, page_size)
