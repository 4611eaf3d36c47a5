"""Litestar Stateflow - Declarative approval workflows for Litestar.

This package runs human approval processes (company registration, equity
transfer, officer changes and similar) as database-backed state machines.

Key Features:
    - Declarative state graphs registered and reconciled by code
    - Role-gated transitions with an append-only audit trail
    - Consent gates with unanimous or weighted quorum rules
    - Business effects written atomically with each state change
    - Litestar plugin providing a per-request WorkflowService

Example:
    >>> from litestar_stateflow import Actor, WorkflowService
    >>> from litestar_stateflow.definitions import COMPANY_REGISTRATION
    >>>
    >>> service = WorkflowService(session)
    >>> await service.ensure_definition(COMPANY_REGISTRATION)
    >>> instance = await service.create_instance(
    ...     "company.registration", target_type="company", target_id="c-1"
    ... )
    >>> await service.perform_action(
    ...     instance.id, "approve", Actor.with_roles("u-1", "REGISTRY_AUTHORITY_LEGAL")
    ... )
"""

from __future__ import annotations

from litestar_stateflow.__metadata__ import __project__, __version__
from litestar_stateflow.config import StateflowConfig
from litestar_stateflow.core import (
    Action,
    Actor,
    ApproverRef,
    ConsentDecision,
    ConsentRule,
    QuorumMode,
    State,
    WorkflowDefinition,
)
from litestar_stateflow.engine import BusinessEffectSynchronizer, ModelEffectHandler, WorkflowService
from litestar_stateflow.exceptions import (
    ActionNotAllowedError,
    AlreadyDecidedError,
    ConsentPendingError,
    ConsentRejectedError,
    DefinitionConflictError,
    DefinitionCorruptError,
    DefinitionNotFoundError,
    DefinitionValidationError,
    EffectHandlerNotFoundError,
    ForbiddenError,
    InstanceNotFoundError,
    InstanceTerminatedError,
    InvalidInstanceStateError,
    NotARequiredApproverError,
    PersistenceError,
    StateflowError,
)
from litestar_stateflow.plugin import StateflowPlugin, StateflowPluginConfig

__all__ = (
    "Action",
    "ActionNotAllowedError",
    "Actor",
    "AlreadyDecidedError",
    "ApproverRef",
    "BusinessEffectSynchronizer",
    "ConsentDecision",
    "ConsentPendingError",
    "ConsentRejectedError",
    "ConsentRule",
    "DefinitionConflictError",
    "DefinitionCorruptError",
    "DefinitionNotFoundError",
    "DefinitionValidationError",
    "EffectHandlerNotFoundError",
    "ForbiddenError",
    "InstanceNotFoundError",
    "InstanceTerminatedError",
    "InvalidInstanceStateError",
    "ModelEffectHandler",
    "NotARequiredApproverError",
    "PersistenceError",
    "QuorumMode",
    "State",
    "StateflowConfig",
    "StateflowError",
    "StateflowPlugin",
    "StateflowPluginConfig",
    "WorkflowDefinition",
    "WorkflowService",
    "__project__",
    "__version__",
)
