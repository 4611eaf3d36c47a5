"""Consent gates for actions that need a quorum of approvers.

A gate opens when an instance enters a state whose outgoing actions carry a
:class:`~litestar_stateflow.core.definition.ConsentRule`: one pending record
is written per required approver. Approvers record decisions against the gate
and the transition engine evaluates it before letting the action fire.

The approver set is recomputed on every decision and evaluation, so changes in
shareholding or office holders made while a gate is open are honored.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import structlog

from litestar_stateflow.core.models import ApproverRef, ConsentEvaluation, ConsentRecordData
from litestar_stateflow.core.types import ConsentDecision, ConsentProgress
from litestar_stateflow.db.models import ConsentRecordModel
from litestar_stateflow.db.repositories import ConsentRecordRepository
from litestar_stateflow.engine.quorum import evaluate_quorum
from litestar_stateflow.exceptions import (
    ActionNotAllowedError,
    AlreadyDecidedError,
    NotARequiredApproverError,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from litestar_stateflow.core.definition import Action, WorkflowDefinition
    from litestar_stateflow.core.models import WorkflowInstanceData
    from litestar_stateflow.core.protocols import ApproverResolver

__all__ = ["ConsentGate", "ContextApproverResolver"]

logger = structlog.get_logger(__name__)


class ContextApproverResolver:
    """Read approvers from the instance context snapshot.

    ``context["approvers"]`` is either a list of ``{"kind", "ref", "weight"}``
    mappings shared by every gated action, or a mapping from action key to
    such a list.

    Example:
        >>> context = {
        ...     "approvers": [
        ...         {"kind": "shareholder", "ref": "alice", "weight": "2/5"},
        ...         {"kind": "shareholder", "ref": "bob", "weight": "3/5"},
        ...     ]
        ... }
    """

    def __init__(self, key: str = "approvers") -> None:
        self.key = key

    async def resolve(
        self,
        session: AsyncSession,
        instance: WorkflowInstanceData,
        action_key: str,
    ) -> list[ApproverRef]:
        entries: Any = instance.context.get(self.key) or []
        if isinstance(entries, dict):
            entries = entries.get(action_key) or []
        return [ApproverRef.from_dict(entry) for entry in entries]


class ConsentGate:
    """Tracks approver decisions and evaluates quorum rules.

    Attributes:
        session: The session queries run on.
        repository: Consent record repository.
        allow_decision_override: Whether a later decision replaces an earlier one.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        resolvers: Mapping[str, ApproverResolver] | None = None,
        default_resolver: ApproverResolver | None = None,
        allow_decision_override: bool = True,
    ) -> None:
        """Initialize the gate.

        Args:
            session: The session queries run on.
            resolvers: Approver resolvers keyed by definition code.
            default_resolver: Resolver for definitions without their own.
                Defaults to :class:`ContextApproverResolver`.
            allow_decision_override: Let approvers change their decision.
        """
        self.session = session
        self.repository = ConsentRecordRepository(session=session)
        self.resolvers = dict(resolvers or {})
        self.default_resolver = default_resolver or ContextApproverResolver()
        self.allow_decision_override = allow_decision_override

    def _resolver_for(self, definition_code: str) -> ApproverResolver:
        return self.resolvers.get(definition_code, self.default_resolver)

    @staticmethod
    def _find_gated_action(
        definition: WorkflowDefinition,
        action_key: str,
        state_key: str | None = None,
    ) -> Action | None:
        states = [definition.get_state(state_key)] if state_key is not None else list(definition.states)
        for state in states:
            if state is None:
                continue
            action = state.get_action(action_key)
            if action is not None and action.requires_consent is not None:
                return action
        return None

    async def required_approvers(self, instance: WorkflowInstanceData, action_key: str) -> list[ApproverRef]:
        """Compute the current approver set of a gated action.

        Args:
            instance: The workflow instance.
            action_key: The gated action.

        Returns:
            Approvers whose consent the action needs right now.
        """
        resolver = self._resolver_for(instance.definition_code)
        return await resolver.resolve(self.session, instance, action_key)

    async def open_gate(self, instance: WorkflowInstanceData, action_key: str) -> list[ConsentRecordData]:
        """Write a pending record for every required approver without one.

        Args:
            instance: The workflow instance.
            action_key: The gated action.

        Returns:
            Every record of the gate after opening.
        """
        approvers = await self.required_approvers(instance, action_key)
        existing = await self.repository.find_for_action(instance.id, action_key)
        known = {(record.approver_kind, record.approver_ref) for record in existing}

        created = [
            ConsentRecordModel(
                instance_id=instance.id,
                action_key=action_key,
                approver_kind=approver.kind,
                approver_ref=approver.ref,
                decision=ConsentDecision.PENDING,
                weight=str(approver.weight),
            )
            for approver in approvers
            if (approver.kind, approver.ref) not in known
        ]
        if created:
            await self.repository.add_many(created)
            logger.debug(
                "Opened consent gate",
                instance_id=str(instance.id),
                action_key=action_key,
                approvers=len(created),
            )
        return [ConsentRecordData.from_model(record) for record in (*existing, *created)]

    async def open_gates_for_state(
        self,
        instance: WorkflowInstanceData,
        definition: WorkflowDefinition,
        state_key: str,
    ) -> None:
        """Open a gate for every consent-gated action leaving ``state_key``."""
        for action in definition.states_entering_gate().get(state_key, []):
            await self.open_gate(instance, action.key)

    async def record_decision(
        self,
        instance: WorkflowInstanceData,
        definition: WorkflowDefinition,
        action_key: str,
        approver_ref: str,
        decision: ConsentDecision,
        *,
        approver_kind: str | None = None,
        comment: str | None = None,
    ) -> ConsentEvaluation:
        """Record an approver's decision on a gate of the current state.

        A party that appears under several approver kinds decides for all of
        them unless ``approver_kind`` narrows it down.

        Args:
            instance: The workflow instance.
            definition: The instance's definition.
            action_key: The gated action.
            approver_ref: Identity of the deciding party.
            decision: Approved or rejected.
            approver_kind: Optional approver kind filter.
            comment: Optional free text.

        Returns:
            The gate evaluation right after the decision.

        Raises:
            ActionNotAllowedError: If the current state has no such gated action.
            NotARequiredApproverError: If the party is not a current approver.
            AlreadyDecidedError: If decisions are final and the party already decided.
        """
        if decision == ConsentDecision.PENDING:
            msg = "A consent decision must be approved or rejected"
            raise ValueError(msg)

        action = self._find_gated_action(definition, action_key, instance.current_state)
        if action is None:
            raise ActionNotAllowedError(instance.current_state, action_key)

        approvers = await self.required_approvers(instance, action_key)
        matching = [
            approver
            for approver in approvers
            if approver.ref == approver_ref and (approver_kind is None or approver.kind == approver_kind)
        ]
        if not matching:
            raise NotARequiredApproverError(action_key, approver_ref)

        records = {
            (record.approver_kind, record.approver_ref): record
            for record in await self.repository.find_for_action(instance.id, action_key)
        }
        decided_at = datetime.now(timezone.utc)
        for approver in matching:
            record = records.get((approver.kind, approver.ref))
            if record is None:
                record = ConsentRecordModel(
                    instance_id=instance.id,
                    action_key=action_key,
                    approver_kind=approver.kind,
                    approver_ref=approver.ref,
                )
                self.session.add(record)
            elif record.decision != ConsentDecision.PENDING and not self.allow_decision_override:
                raise AlreadyDecidedError(action_key, approver_ref)
            record.decision = decision
            record.weight = str(approver.weight)
            record.comment = comment
            record.decided_at = decided_at
        await self.session.flush()

        evaluation = await self.evaluate(instance, definition, action_key)
        logger.info(
            "Recorded consent decision",
            instance_id=str(instance.id),
            action_key=action_key,
            approver_ref=approver_ref,
            decision=str(decision),
            progress=str(evaluation.progress),
        )
        return evaluation

    async def evaluate(
        self,
        instance: WorkflowInstanceData,
        definition: WorkflowDefinition,
        action_key: str,
    ) -> ConsentEvaluation:
        """Evaluate a gate against the current approver set.

        Records of parties that are no longer approvers are ignored; current
        approvers without a record count as pending. An action without a
        consent rule is always satisfied.

        Args:
            instance: The workflow instance.
            definition: The instance's definition.
            action_key: The gated action.

        Returns:
            The evaluation.
        """
        action = self._find_gated_action(definition, action_key, instance.current_state)
        if action is None:
            action = self._find_gated_action(definition, action_key)
        if action is None or action.requires_consent is None:
            return ConsentEvaluation(progress=ConsentProgress.APPROVED)

        approvers = await self.required_approvers(instance, action_key)
        decisions = {
            (record.approver_kind, record.approver_ref): record.decision
            for record in await self.repository.find_for_action(instance.id, action_key)
        }
        ballots = [
            (approver, decisions.get((approver.kind, approver.ref), ConsentDecision.PENDING)) for approver in approvers
        ]
        evaluation = evaluate_quorum(action.requires_consent, ballots)
        logger.debug(
            "Evaluated consent gate",
            instance_id=str(instance.id),
            action_key=action_key,
            progress=str(evaluation.progress),
            outstanding=len(evaluation.outstanding),
        )
        return evaluation

    async def list_records(self, instance_id: UUID, action_key: str) -> list[ConsentRecordData]:
        """Return every stored record of a gate."""
        return [
            ConsentRecordData.from_model(record)
            for record in await self.repository.find_for_action(instance_id, action_key)
        ]

    async def reset(self, instance_id: UUID, action_keys: Iterable[str] | None = None) -> None:
        """Discard recorded decisions so gates reopen from scratch.

        Args:
            instance_id: The workflow instance.
            action_keys: Only reset these gates. None resets every gate.
        """
        await self.repository.delete_for_instance(instance_id, action_keys)
        logger.info("Reset consent gates", instance_id=str(instance_id))
