"""Core domain module for litestar-stateflow.

This module exports the building blocks of workflow definitions and the plain
values the engine exchanges with callers.
"""

from __future__ import annotations

from litestar_stateflow.core.definition import Action, ConsentRule, State, WorkflowDefinition
from litestar_stateflow.core.events import (
    ConsentDecisionRecorded,
    InstanceCompleted,
    InstanceCreated,
    TransitionPerformed,
    WorkflowEvent,
)
from litestar_stateflow.core.models import (
    Actor,
    ApproverRef,
    AuditRecordData,
    ConsentEvaluation,
    ConsentRecordData,
    TransitionResult,
    WorkflowInstanceData,
)
from litestar_stateflow.core.protocols import ApproverResolver, Authorizer, EffectHandler, EventBus
from litestar_stateflow.core.types import (
    BusinessEffect,
    ConsentDecision,
    ConsentProgress,
    Context,
    InstanceStatus,
    QuorumMode,
)

__all__ = [
    "Action",
    "Actor",
    "ApproverRef",
    "ApproverResolver",
    "AuditRecordData",
    "Authorizer",
    "BusinessEffect",
    "ConsentDecision",
    "ConsentDecisionRecorded",
    "ConsentEvaluation",
    "ConsentProgress",
    "ConsentRecordData",
    "ConsentRule",
    "Context",
    "EffectHandler",
    "EventBus",
    "InstanceCompleted",
    "InstanceCreated",
    "InstanceStatus",
    "QuorumMode",
    "State",
    "TransitionPerformed",
    "TransitionResult",
    "WorkflowDefinition",
    "WorkflowEvent",
    "WorkflowInstanceData",
]
