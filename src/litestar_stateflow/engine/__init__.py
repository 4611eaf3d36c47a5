"""Workflow engine components.

This module provides the definition registry, instance store, transition
engine, consent gate, business effect synchronizer and audit trail writer,
plus :class:`WorkflowService`, which wires them onto one database session.
"""

from __future__ import annotations

from litestar_stateflow.engine.audit import AuditTrailWriter
from litestar_stateflow.engine.base import transaction
from litestar_stateflow.engine.cache import DefinitionCache
from litestar_stateflow.engine.consent import ConsentGate, ContextApproverResolver
from litestar_stateflow.engine.effects import BusinessEffectSynchronizer, ModelEffectHandler
from litestar_stateflow.engine.instances import InstanceStore
from litestar_stateflow.engine.quorum import evaluate_quorum
from litestar_stateflow.engine.registry import DefinitionRegistry
from litestar_stateflow.engine.service import WorkflowService
from litestar_stateflow.engine.transitions import TransitionEngine

__all__ = [
    "AuditTrailWriter",
    "BusinessEffectSynchronizer",
    "ConsentGate",
    "ContextApproverResolver",
    "DefinitionCache",
    "DefinitionRegistry",
    "InstanceStore",
    "ModelEffectHandler",
    "TransitionEngine",
    "WorkflowService",
    "evaluate_quorum",
    "transaction",
]
