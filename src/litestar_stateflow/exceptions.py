"""Exception hierarchy for litestar-stateflow.

Every exception carries two messages: ``str(error)`` is detailed and meant for
logs, while :attr:`StateflowError.public_message` is stable, user-facing and
never names internal fields or private identifiers.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from uuid import UUID

    from litestar_stateflow.core.models import ApproverRef

__all__ = (
    "ActionNotAllowedError",
    "AlreadyDecidedError",
    "ConsentPendingError",
    "ConsentRejectedError",
    "DefinitionConflictError",
    "DefinitionCorruptError",
    "DefinitionNotFoundError",
    "DefinitionValidationError",
    "EffectHandlerNotFoundError",
    "ForbiddenError",
    "InstanceNotFoundError",
    "InstanceTerminatedError",
    "InvalidInstanceStateError",
    "NotARequiredApproverError",
    "PersistenceError",
    "StateflowError",
)


class StateflowError(Exception):
    """Base exception for all litestar-stateflow errors.

    All exceptions raised by the engine inherit from this class, so callers can
    catch every expected workflow failure with a single except clause.

    Attributes:
        public_message: Stable message safe to show to end users.
    """

    public_message: str = "The workflow operation could not be completed"


class DefinitionNotFoundError(StateflowError):
    """Raised when a workflow definition code is not registered.

    Attributes:
        code: The definition code that was looked up.
        inactive: True when the definition exists but has been deactivated.
    """

    public_message = "The requested process does not exist or is unavailable"

    def __init__(self, code: str, *, inactive: bool = False) -> None:
        """Initialize the exception with the missing code.

        Args:
            code: The definition code that was looked up.
            inactive: Whether the definition exists but is deactivated.
        """
        self.code = code
        self.inactive = inactive
        msg = f"Workflow definition '{code}' is inactive" if inactive else f"Workflow definition '{code}' not found"
        super().__init__(msg)


class DefinitionValidationError(StateflowError):
    """Raised when a definition graph fails structural validation.

    Attributes:
        errors: Every validation problem found in the definition.
    """

    public_message = "The process configuration is invalid"

    def __init__(self, errors: list[str]) -> None:
        """Initialize the exception with validation errors.

        Args:
            errors: List of validation error messages.
        """
        self.errors = errors
        super().__init__(f"Workflow definition validation failed: {'; '.join(errors)}")


class DefinitionConflictError(StateflowError):
    """Raised when re-registering a code would strand existing instances.

    Attributes:
        code: The definition code being re-registered.
        orphaned_states: State keys occupied by instances that the new graph
            drops or turns from final into non-final.
    """

    public_message = "The process configuration cannot be changed while applications are in progress"

    def __init__(self, code: str, orphaned_states: Iterable[str]) -> None:
        """Initialize the exception with conflict details.

        Args:
            code: The definition code being re-registered.
            orphaned_states: State keys that would be orphaned.
        """
        self.code = code
        self.orphaned_states = sorted(orphaned_states)
        super().__init__(
            f"Workflow definition '{code}' conflicts with existing instances in states: "
            f"{', '.join(self.orphaned_states)}"
        )


class DefinitionCorruptError(StateflowError):
    """Raised when a stored definition points at a state it does not declare.

    This is an authoring bug, not a user error.

    Attributes:
        code: The definition code.
        state_key: The state holding the broken action.
        action_key: The action whose destination does not resolve.
        target: The unresolved destination state key.
    """

    def __init__(self, code: str, state_key: str, action_key: str, target: str) -> None:
        """Initialize the exception with the broken edge.

        Args:
            code: The definition code.
            state_key: The state holding the broken action.
            action_key: The action whose destination does not resolve.
            target: The unresolved destination state key.
        """
        self.code = code
        self.state_key = state_key
        self.action_key = action_key
        self.target = target
        super().__init__(
            f"Workflow definition '{code}': action '{action_key}' of state '{state_key}' "
            f"targets undeclared state '{target}'"
        )


class InstanceNotFoundError(StateflowError):
    """Raised when a workflow instance does not exist.

    Attributes:
        instance_id: The ID of the workflow instance that was not found.
    """

    public_message = "Process instance not found"

    def __init__(self, instance_id: str | UUID) -> None:
        """Initialize the exception with instance details.

        Args:
            instance_id: The ID of the workflow instance that was not found.
        """
        self.instance_id = instance_id
        super().__init__(f"Workflow instance '{instance_id}' not found")


class InvalidInstanceStateError(StateflowError):
    """Raised when an instance sits in a state its definition does not declare.

    This is a data-integrity violation and is logged at critical level.

    Attributes:
        instance_id: The affected instance.
        state_key: The unknown state key stored on the instance.
    """

    def __init__(self, instance_id: str | UUID, state_key: str) -> None:
        """Initialize the exception with the inconsistent state.

        Args:
            instance_id: The affected instance.
            state_key: The unknown state key stored on the instance.
        """
        self.instance_id = instance_id
        self.state_key = state_key
        super().__init__(f"Workflow instance '{instance_id}' is in undeclared state '{state_key}'")


class InstanceTerminatedError(StateflowError):
    """Raised when an action is attempted on an instance in a final state.

    Attributes:
        instance_id: The workflow instance.
        state_key: The final state the instance is in.
    """

    public_message = "This process has already finished"

    def __init__(self, instance_id: str | UUID, state_key: str) -> None:
        """Initialize the exception with the terminal state.

        Args:
            instance_id: The workflow instance.
            state_key: The final state the instance is in.
        """
        self.instance_id = instance_id
        self.state_key = state_key
        super().__init__(f"Workflow instance '{instance_id}' is terminated in state '{state_key}'")


class ActionNotAllowedError(StateflowError):
    """Raised when the action key is not offered by the current state.

    This is also what a replayed or double-submitted action receives once the
    first attempt has moved the instance on.

    Attributes:
        state_key: The current state.
        action_key: The rejected action.
    """

    public_message = "The current state does not support this operation"

    def __init__(self, state_key: str, action_key: str) -> None:
        """Initialize the exception with transition details.

        Args:
            state_key: The current state.
            action_key: The rejected action.
        """
        self.state_key = state_key
        self.action_key = action_key
        super().__init__(f"Action '{action_key}' is not available in state '{state_key}'")


class ForbiddenError(StateflowError):
    """Raised when the actor may not fire the action.

    Attributes:
        action_key: The action the actor attempted.
        actor_id: The actor's identifier, if known.
    """

    public_message = "No permission to execute this process action"

    def __init__(self, action_key: str, actor_id: str | None = None) -> None:
        """Initialize the exception with authorization details.

        Args:
            action_key: The action the actor attempted.
            actor_id: The actor's identifier, if known.
        """
        self.action_key = action_key
        self.actor_id = actor_id
        super().__init__(f"Actor '{actor_id}' is not authorized to perform action '{action_key}'")


class ConsentPendingError(StateflowError):
    """Raised when a consent-gated action has not reached its quorum yet.

    Attributes:
        action_key: The gated action.
        outstanding: Approvers who have not approved yet.
    """

    def __init__(self, action_key: str, outstanding: Sequence[ApproverRef]) -> None:
        """Initialize the exception with the outstanding approvers.

        Args:
            action_key: The gated action.
            outstanding: Approvers who have not approved yet.
        """
        self.action_key = action_key
        self.outstanding = list(outstanding)
        refs = ", ".join(f"{a.kind}:{a.ref}" for a in self.outstanding)
        super().__init__(f"Action '{action_key}' is waiting for consent from: {refs}")

    @property
    def outstanding_by_kind(self) -> dict[str, int]:
        """Count outstanding approvers per approver kind."""
        counts: dict[str, int] = {}
        for approver in self.outstanding:
            counts[approver.kind] = counts.get(approver.kind, 0) + 1
        return counts

    @property
    def public_message(self) -> str:  # type: ignore[override]
        """Describe only how many approvals of each kind are missing."""
        parts = [f"{count} {kind}" for kind, count in sorted(self.outstanding_by_kind.items())]
        return f"Waiting for consent from {', '.join(parts)}" if parts else "Waiting for consent"


class ConsentRejectedError(StateflowError):
    """Raised when a consent gate can no longer be satisfied.

    Attributes:
        action_key: The gated action.
    """

    public_message = "The required participants did not consent to this operation"

    def __init__(self, action_key: str) -> None:
        """Initialize the exception.

        Args:
            action_key: The gated action.
        """
        self.action_key = action_key
        super().__init__(f"Consent for action '{action_key}' was rejected")


class NotARequiredApproverError(StateflowError):
    """Raised when a decision comes from someone outside the approver set.

    Attributes:
        action_key: The gated action.
        approver_ref: The identity that tried to decide.
    """

    public_message = "You are not required to consent to this operation"

    def __init__(self, action_key: str, approver_ref: str) -> None:
        """Initialize the exception.

        Args:
            action_key: The gated action.
            approver_ref: The identity that tried to decide.
        """
        self.action_key = action_key
        self.approver_ref = approver_ref
        super().__init__(f"'{approver_ref}' is not a required approver for action '{action_key}'")


class AlreadyDecidedError(StateflowError):
    """Raised when decisions are immutable and the approver already decided.

    Attributes:
        action_key: The gated action.
        approver_ref: The approver.
    """

    public_message = "You have already responded to this request"

    def __init__(self, action_key: str, approver_ref: str) -> None:
        """Initialize the exception.

        Args:
            action_key: The gated action.
            approver_ref: The approver.
        """
        self.action_key = action_key
        self.approver_ref = approver_ref
        super().__init__(f"'{approver_ref}' has already decided on action '{action_key}'")


class EffectHandlerNotFoundError(StateflowError):
    """Raised in strict mode when no effect handler serves a target type.

    Attributes:
        target_type: The unhandled target type.
    """

    def __init__(self, target_type: str) -> None:
        """Initialize the exception.

        Args:
            target_type: The unhandled target type.
        """
        self.target_type = target_type
        super().__init__(f"No business effect handler registered for target type '{target_type}'")


class PersistenceError(StateflowError):
    """Wraps a storage-layer failure raised inside an engine transaction.

    Attributes:
        operation: The engine operation that failed.
        cause: The underlying storage exception.
    """

    def __init__(self, operation: str, cause: Exception | None = None) -> None:
        """Initialize the exception with the failing operation.

        Args:
            operation: The engine operation that failed.
            cause: The underlying storage exception.
        """
        self.operation = operation
        self.cause = cause
        msg = f"Persistence failure during '{operation}'"
        if cause:
            msg += f": {cause}"
        super().__init__(msg)
