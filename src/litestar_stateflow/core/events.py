"""Domain events for the workflow lifecycle.

The engine publishes these to an optional :class:`~litestar_stateflow.core.protocols.EventBus`
after the owning transaction has committed, so listeners never observe state
that could still be rolled back. Use them to trigger notifications or refresh
read models.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar
from uuid import UUID

__all__ = [
    "ConsentDecisionRecorded",
    "InstanceCompleted",
    "InstanceCreated",
    "TransitionPerformed",
    "WorkflowEvent",
]


@dataclass
class WorkflowEvent:
    """Base class for all workflow events.

    Attributes:
        instance_id: Unique identifier of the workflow instance.
        timestamp: When the event occurred.
    """

    event_type: ClassVar[str] = "workflow.event"

    instance_id: UUID
    timestamp: datetime


@dataclass
class InstanceCreated(WorkflowEvent):
    """Emitted when a workflow instance is created.

    Attributes:
        definition_code: Code of the definition.
        target_type: Type tag of the business target.
        target_id: Identifier of the business target.
        initial_state: State the instance starts in.
        created_by_id: User who started the process.
    """

    event_type: ClassVar[str] = "workflow.instance_created"

    definition_code: str
    target_type: str
    target_id: str
    initial_state: str
    created_by_id: str | None = None


@dataclass
class TransitionPerformed(WorkflowEvent):
    """Emitted after an action moved an instance to a new state.

    Example:
        >>> event = TransitionPerformed(
        ...     instance_id=uuid4(),
        ...     timestamp=datetime.now(timezone.utc),
        ...     definition_code="company.rename",
        ...     action_key="approve",
        ...     from_state="under_review",
        ...     to_state="approved",
        ...     actor_id="user_123",
        ... )
    """

    event_type: ClassVar[str] = "workflow.transition_performed"

    definition_code: str
    action_key: str
    from_state: str
    to_state: str
    actor_id: str | None = None
    payload: dict[str, Any] | None = None


@dataclass
class InstanceCompleted(WorkflowEvent):
    """Emitted when a transition lands on a final state."""

    event_type: ClassVar[str] = "workflow.instance_completed"

    definition_code: str
    final_state: str


@dataclass
class ConsentDecisionRecorded(WorkflowEvent):
    """Emitted after an approver decided on a gated action.

    Attributes:
        action_key: The gated action.
        approver_kind: Approver category.
        approver_ref: The approver.
        decision: The recorded decision.
        progress: Gate outcome right after the decision.
    """

    event_type: ClassVar[str] = "workflow.consent_recorded"

    action_key: str
    approver_kind: str
    approver_ref: str
    decision: str
    progress: str
