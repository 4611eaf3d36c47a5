"""SQLAlchemy models for workflow persistence.

This module defines the four tables the engine owns:
- WorkflowDefinitionModel: Declarative state graphs keyed by code
- WorkflowInstanceModel: One process run per business target
- ConsentRecordModel: Approver decisions for consent-gated actions
- AuditRecordModel: Append-only transition history
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from advanced_alchemy.base import UUIDAuditBase
from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from litestar_stateflow.core.types import ConsentDecision, InstanceStatus

__all__ = [
    "AuditRecordModel",
    "ConsentRecordModel",
    "WorkflowDefinitionModel",
    "WorkflowInstanceModel",
]


# Cross-database JSON type: uses JSONB for PostgreSQL, JSON for others (SQLite, MySQL, etc.)
JSONType = JSON().with_variant(JSONB, "postgresql")


class WorkflowDefinitionModel(UUIDAuditBase):
    """Persisted workflow definition.

    Attributes:
        code: Stable unique identifier such as ``company.registration``.
        name: Human-readable name.
        description: Human-readable description of the process.
        category: Free-form grouping.
        initial_state: Key of the first declared state.
        states: State keys in declaration order.
        roles: Every role named by any action.
        config: The full nested state/action graph.
        shape_hash: SHA-256 of the structural part of ``config``.
        is_active: Whether new instances may be created.
        instances: Related workflow instances.
    """

    __tablename__ = "workflow_definitions"
    __table_args__ = (Index("ix_workflow_definitions_category", "category"),)

    code: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    initial_state: Mapped[str] = mapped_column(String(255))
    states: Mapped[list[str]] = mapped_column(JSONType, default=list)
    roles: Mapped[list[str]] = mapped_column(JSONType, default=list)
    config: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    shape_hash: Mapped[str] = mapped_column(String(64))
    is_active: Mapped[bool] = mapped_column(default=True)

    # Relationships
    instances: Mapped[list[WorkflowInstanceModel]] = relationship(
        back_populates="definition",
        lazy="noload",
    )


class WorkflowInstanceModel(UUIDAuditBase):
    """One run of a definition against one business target.

    Attributes:
        definition_id: Foreign key to the workflow definition.
        definition_code: Denormalized definition code for quick queries.
        target_type: Type tag of the business target.
        target_id: Identifier of the business target.
        current_state: Key of the current state.
        status: Active or completed.
        context: Snapshot captured at creation.
        created_by_id: User who started the process.
        completed_at: Timestamp when a final state was reached.
    """

    __tablename__ = "workflow_instances"
    __table_args__ = (
        Index("ix_workflow_instances_target", "target_type", "target_id"),
        Index("ix_workflow_instances_code_state", "definition_code", "current_state"),
        Index("ix_workflow_instances_created_by_id", "created_by_id"),
    )

    definition_id: Mapped[UUID] = mapped_column(ForeignKey("workflow_definitions.id"))
    definition_code: Mapped[str] = mapped_column(String(255))
    target_type: Mapped[str] = mapped_column(String(100))
    target_id: Mapped[str] = mapped_column(String(255))
    current_state: Mapped[str] = mapped_column(String(255))
    status: Mapped[InstanceStatus] = mapped_column(
        Enum(InstanceStatus, native_enum=False, length=50, values_callable=lambda e: [m.value for m in e]),
        default=InstanceStatus.ACTIVE,
    )
    context: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    created_by_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Relationships
    definition: Mapped[WorkflowDefinitionModel] = relationship(
        back_populates="instances",
        lazy="noload",
    )


class ConsentRecordModel(UUIDAuditBase):
    """One required approver's decision on a consent-gated action.

    Attributes:
        instance_id: Foreign key to the workflow instance.
        action_key: The gated action.
        approver_kind: Approver category, e.g. ``shareholder``.
        approver_ref: Identity of the approver.
        decision: Pending, approved or rejected.
        weight: Voting weight as an exact fraction string (``"2/5"``).
        comment: Optional free text from the approver.
        decided_at: When the approver last decided.
    """

    __tablename__ = "workflow_consent_records"
    __table_args__ = (
        UniqueConstraint(
            "instance_id",
            "action_key",
            "approver_kind",
            "approver_ref",
            name="uq_workflow_consent_records_approver",
        ),
        Index("ix_workflow_consent_records_instance_action", "instance_id", "action_key"),
        Index("ix_workflow_consent_records_approver_ref", "approver_ref"),
    )

    instance_id: Mapped[UUID] = mapped_column(ForeignKey("workflow_instances.id"))
    action_key: Mapped[str] = mapped_column(String(255))
    approver_kind: Mapped[str] = mapped_column(String(100))
    approver_ref: Mapped[str] = mapped_column(String(255))
    decision: Mapped[ConsentDecision] = mapped_column(
        Enum(ConsentDecision, native_enum=False, length=50, values_callable=lambda e: [m.value for m in e]),
        default=ConsentDecision.PENDING,
    )
    weight: Mapped[str] = mapped_column(String(64), default="1")
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )


class AuditRecordModel(UUIDAuditBase):
    """Append-only record of one transition.

    Attributes:
        instance_id: Foreign key to the workflow instance.
        actor_id: Who fired the action.
        actor_role: The role that authorized the actor, if any.
        from_state: State before the transition.
        action_key: The fired action.
        action_label: The action's label at the time.
        result_state: State after the transition.
        comment: Optional free text from the actor.
        payload: Optional structured data from the actor.
    """

    __tablename__ = "workflow_audit_records"
    __table_args__ = (
        Index("ix_workflow_audit_records_instance_created", "instance_id", "created_at"),
        Index("ix_workflow_audit_records_actor_id", "actor_id"),
    )

    instance_id: Mapped[UUID] = mapped_column(ForeignKey("workflow_instances.id"))
    actor_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    actor_role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    from_state: Mapped[str] = mapped_column(String(255))
    action_key: Mapped[str] = mapped_column(String(255))
    action_label: Mapped[str] = mapped_column(String(255))
    result_state: Mapped[str] = mapped_column(String(255))
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
