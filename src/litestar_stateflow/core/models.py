"""Concrete data models for litestar-stateflow.

This module provides the plain dataclasses the engine accepts and returns.
They are detached from the database session and safe to hand to callers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from fractions import Fraction
from typing import TYPE_CHECKING, Any
from uuid import UUID

from litestar_stateflow.core.types import ConsentDecision, ConsentProgress, Context, InstanceStatus

if TYPE_CHECKING:
    from litestar_stateflow.core.definition import Action, State
    from litestar_stateflow.db.models import (
        AuditRecordModel,
        ConsentRecordModel,
        WorkflowInstanceModel,
    )


__all__ = [
    "Actor",
    "ApproverRef",
    "AuditRecordData",
    "ConsentEvaluation",
    "ConsentRecordData",
    "TransitionResult",
    "WorkflowInstanceData",
]


@dataclass(frozen=True)
class Actor:
    """The identity attempting to fire an action.

    Attributes:
        id: Identifier of the acting user.
        roles: Roles the actor holds for this request.
    """

    id: str | None
    roles: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def with_roles(cls, actor_id: str | None, *roles: str) -> Actor:
        """Build an actor from an id and role names, trimming blanks."""
        return cls(id=actor_id, roles=frozenset(r.strip() for r in roles if r and r.strip()))


@dataclass(frozen=True)
class ApproverRef:
    """A party whose consent a gated action needs.

    Attributes:
        kind: Approver category, e.g. ``"shareholder"`` or ``"new_officer"``.
        ref: Identity of the party.
        weight: Voting weight used by weighted quorum rules.
    """

    kind: str
    ref: str
    weight: Fraction = Fraction(1)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ApproverRef:
        """Build a reference from ``{"kind", "ref", "weight"}``."""
        weight = data.get("weight", 1)
        if isinstance(weight, float):
            weight = Fraction(weight).limit_denominator(1_000_000)
        return cls(kind=str(data["kind"]), ref=str(data["ref"]), weight=Fraction(str(weight)))


@dataclass
class WorkflowInstanceData:
    """One run of a definition against one business target.

    Attributes:
        id: Unique identifier for this instance.
        definition_code: Code of the definition driving the instance.
        target_type: Type tag of the business target, e.g. ``"company"``.
        target_id: Identifier of the business target.
        current_state: Key of the current state.
        status: Active or completed.
        context: Snapshot captured at creation.
        created_by_id: User who started the process.
        created_at: Timestamp when the instance was created.
        completed_at: Timestamp when a final state was reached.
    """

    id: UUID
    definition_code: str
    target_type: str
    target_id: str
    current_state: str
    status: InstanceStatus
    context: Context = field(default_factory=dict)
    created_by_id: str | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_model(cls, model: WorkflowInstanceModel) -> WorkflowInstanceData:
        """Detach an instance row into a plain value."""
        return cls(
            id=model.id,
            definition_code=model.definition_code,
            target_type=model.target_type,
            target_id=model.target_id,
            current_state=model.current_state,
            status=model.status,
            context=dict(model.context or {}),
            created_by_id=model.created_by_id,
            created_at=model.created_at,
            completed_at=model.completed_at,
        )


@dataclass(frozen=True)
class AuditRecordData:
    """Append-only history entry for one transition.

    Attributes:
        id: Record identifier.
        instance_id: The instance that moved.
        actor_id: Who fired the action.
        actor_role: The role that authorized the actor, if any.
        from_state: State before the transition.
        action_key: The fired action.
        action_label: The fired action's label at the time.
        result_state: State after the transition.
        comment: Optional free text from the actor.
        payload: Optional structured data from the actor.
        created_at: When the record was written.
    """

    id: UUID
    instance_id: UUID
    actor_id: str | None
    actor_role: str | None
    from_state: str
    action_key: str
    action_label: str
    result_state: str
    comment: str | None = None
    payload: dict[str, Any] | None = None
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: AuditRecordModel) -> AuditRecordData:
        """Detach an audit row into a plain value."""
        return cls(
            id=model.id,
            instance_id=model.instance_id,
            actor_id=model.actor_id,
            actor_role=model.actor_role,
            from_state=model.from_state,
            action_key=model.action_key,
            action_label=model.action_label,
            result_state=model.result_state,
            comment=model.comment,
            payload=model.payload,
            created_at=model.created_at,
        )


@dataclass(frozen=True)
class ConsentRecordData:
    """One approver's standing decision on a gated action."""

    instance_id: UUID
    action_key: str
    approver_kind: str
    approver_ref: str
    decision: ConsentDecision
    weight: Fraction
    comment: str | None = None
    decided_at: datetime | None = None

    @classmethod
    def from_model(cls, model: ConsentRecordModel) -> ConsentRecordData:
        """Detach a consent row into a plain value."""
        return cls(
            instance_id=model.instance_id,
            action_key=model.action_key,
            approver_kind=model.approver_kind,
            approver_ref=model.approver_ref,
            decision=model.decision,
            weight=Fraction(model.weight),
            comment=model.comment,
            decided_at=model.decided_at,
        )


@dataclass(frozen=True)
class ConsentEvaluation:
    """Outcome of evaluating a consent gate.

    Attributes:
        progress: Pending, approved or rejected.
        outstanding: Approvers that have not approved yet.
        approved_weight: Weight of counted approvers that approved.
        total_weight: Weight of all counted approvers.
    """

    progress: ConsentProgress
    outstanding: tuple[ApproverRef, ...] = ()
    approved_weight: Fraction = Fraction(0)
    total_weight: Fraction = Fraction(0)

    @property
    def satisfied(self) -> bool:
        """Whether the gated action may fire."""
        return self.progress == ConsentProgress.APPROVED

    @property
    def rejected(self) -> bool:
        """Whether the gate can no longer be satisfied."""
        return self.progress == ConsentProgress.REJECTED


@dataclass(frozen=True)
class TransitionResult:
    """Output of a successful :meth:`TransitionEngine.perform_action`.

    Attributes:
        action: The action that fired.
        previous_state: State the instance left.
        next_state: State the instance entered.
        instance: The instance after the transition.
        audit_record: The history entry written for the transition.
    """

    action: Action
    previous_state: State
    next_state: State
    instance: WorkflowInstanceData
    audit_record: AuditRecordData | None = None
