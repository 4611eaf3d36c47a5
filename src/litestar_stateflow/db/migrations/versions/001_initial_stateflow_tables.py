"""Initial stateflow tables.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _audit_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("sa_orm_sentinel", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Create the workflow definition, instance, consent and audit tables."""
    # Create workflow_definitions table
    op.create_table(
        "workflow_definitions",
        *_audit_columns(),
        sa.Column("code", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(length=100), nullable=True),
        sa.Column("initial_state", sa.String(length=255), nullable=False),
        sa.Column("states", JSONType, nullable=False),
        sa.Column("roles", JSONType, nullable=False),
        sa.Column("config", JSONType, nullable=False),
        sa.Column("shape_hash", sa.String(length=64), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, default=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_workflow_definitions_code",
        "workflow_definitions",
        ["code"],
        unique=True,
    )
    op.create_index(
        "ix_workflow_definitions_category",
        "workflow_definitions",
        ["category"],
    )

    # Create workflow_instances table
    op.create_table(
        "workflow_instances",
        *_audit_columns(),
        sa.Column("definition_id", sa.Uuid(), nullable=False),
        sa.Column("definition_code", sa.String(length=255), nullable=False),
        sa.Column("target_type", sa.String(length=100), nullable=False),
        sa.Column("target_id", sa.String(length=255), nullable=False),
        sa.Column("current_state", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("context", JSONType, nullable=False),
        sa.Column("created_by_id", sa.String(length=255), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["definition_id"], ["workflow_definitions.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_workflow_instances_target",
        "workflow_instances",
        ["target_type", "target_id"],
    )
    op.create_index(
        "ix_workflow_instances_code_state",
        "workflow_instances",
        ["definition_code", "current_state"],
    )
    op.create_index(
        "ix_workflow_instances_created_by_id",
        "workflow_instances",
        ["created_by_id"],
    )

    # Create workflow_consent_records table
    op.create_table(
        "workflow_consent_records",
        *_audit_columns(),
        sa.Column("instance_id", sa.Uuid(), nullable=False),
        sa.Column("action_key", sa.String(length=255), nullable=False),
        sa.Column("approver_kind", sa.String(length=100), nullable=False),
        sa.Column("approver_ref", sa.String(length=255), nullable=False),
        sa.Column("decision", sa.String(length=50), nullable=False),
        sa.Column("weight", sa.String(length=64), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["instance_id"], ["workflow_instances.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "instance_id",
            "action_key",
            "approver_kind",
            "approver_ref",
            name="uq_workflow_consent_records_approver",
        ),
    )
    op.create_index(
        "ix_workflow_consent_records_instance_action",
        "workflow_consent_records",
        ["instance_id", "action_key"],
    )
    op.create_index(
        "ix_workflow_consent_records_approver_ref",
        "workflow_consent_records",
        ["approver_ref"],
    )

    # Create workflow_audit_records table
    op.create_table(
        "workflow_audit_records",
        *_audit_columns(),
        sa.Column("instance_id", sa.Uuid(), nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=True),
        sa.Column("actor_role", sa.String(length=100), nullable=True),
        sa.Column("from_state", sa.String(length=255), nullable=False),
        sa.Column("action_key", sa.String(length=255), nullable=False),
        sa.Column("action_label", sa.String(length=255), nullable=False),
        sa.Column("result_state", sa.String(length=255), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("payload", JSONType, nullable=True),
        sa.ForeignKeyConstraint(["instance_id"], ["workflow_instances.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_workflow_audit_records_instance_created",
        "workflow_audit_records",
        ["instance_id", "created_at"],
    )
    op.create_index(
        "ix_workflow_audit_records_actor_id",
        "workflow_audit_records",
        ["actor_id"],
    )


def downgrade() -> None:
    """Drop stateflow tables."""
    op.drop_table("workflow_audit_records")
    op.drop_table("workflow_consent_records")
    op.drop_table("workflow_instances")
    op.drop_table("workflow_definitions")
