"""Workflow definition structures.

A definition is a plain tree: states hold actions, actions may hold a consent
rule. Definitions are authored as nested mappings (the same shape they are
stored in) and parsed with :meth:`WorkflowDefinition.from_dict`.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Any

from litestar_stateflow.core.types import QuorumMode

__all__ = ["Action", "ConsentRule", "State", "WorkflowDefinition"]


def _parse_fraction(value: Any) -> Fraction:
    if isinstance(value, Fraction):
        return value
    if isinstance(value, float):
        return Fraction(value).limit_denominator(10_000)
    return Fraction(str(value))


def _clean_roles(roles: Any) -> tuple[str, ...]:
    cleaned = (str(role).strip() for role in roles or ())
    return tuple(role for role in cleaned if role)


@dataclass(frozen=True)
class ConsentRule:
    """Quorum rule guarding an action.

    Attributes:
        approver_kinds: Approver kinds counted towards the quorum. Empty means
            every approver that is not in ``required_kinds``.
        mode: Unanimous approval or a weighted threshold.
        threshold: Fraction of the total weight that must approve in weighted
            mode.
        veto_on_reject: Any single rejection among counted approvers rejects
            the gate outright.
        required_kinds: Approver kinds that must all approve on top of the
            quorum. A rejection by any of them rejects the gate.
        head_count: Count every approver with weight 1 instead of its
            recorded weight.

    Example:
        >>> rule = ConsentRule(
        ...     approver_kinds=("shareholder",),
        ...     mode=QuorumMode.WEIGHTED,
        ...     threshold=Fraction(2, 3),
        ... )
    """

    approver_kinds: tuple[str, ...] = ()
    mode: QuorumMode = QuorumMode.UNANIMOUS
    threshold: Fraction = Fraction(2, 3)
    veto_on_reject: bool = False
    required_kinds: tuple[str, ...] = ()
    head_count: bool = False

    def counts(self, kind: str) -> bool:
        """Whether approvers of ``kind`` take part in the quorum arithmetic."""
        if kind in self.required_kinds:
            return False
        return not self.approver_kinds or kind in self.approver_kinds

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConsentRule:
        """Build a rule from its mapping form."""
        return cls(
            approver_kinds=tuple(data.get("approver_kinds") or ()),
            mode=QuorumMode(data.get("mode", QuorumMode.UNANIMOUS)),
            threshold=_parse_fraction(data.get("threshold", Fraction(2, 3))),
            veto_on_reject=bool(data.get("veto_on_reject", False)),
            required_kinds=tuple(data.get("required_kinds") or ()),
            head_count=bool(data.get("head_count", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize the rule to a JSON-compatible mapping."""
        return {
            "approver_kinds": list(self.approver_kinds),
            "mode": str(self.mode),
            "threshold": f"{self.threshold.numerator}/{self.threshold.denominator}",
            "veto_on_reject": self.veto_on_reject,
            "required_kinds": list(self.required_kinds),
            "head_count": self.head_count,
        }


@dataclass(frozen=True)
class Action:
    """A named, role-gated edge from one state to another.

    Attributes:
        key: Identifier, unique within the owning state.
        label: Human-readable name shown in history views.
        to: Destination state key.
        roles: Roles allowed to fire the action. Empty delegates authorization
            to the caller or to a registered authorizer.
        requires_consent: Optional quorum that must be met before firing.
        description: Optional longer description.
        metadata: Free-form authoring metadata.
    """

    key: str
    label: str
    to: str
    roles: tuple[str, ...] = ()
    requires_consent: ConsentRule | None = None
    description: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict, hash=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Action:
        """Build an action from its mapping form, trimming keys and roles."""
        consent = data.get("requires_consent")
        return cls(
            key=str(data.get("key", "")).strip(),
            label=data.get("label") or str(data.get("key", "")),
            to=str(data.get("to", "")).strip(),
            roles=_clean_roles(data.get("roles")),
            requires_consent=ConsentRule.from_dict(consent) if consent else None,
            description=data.get("description"),
            metadata=dict(data.get("metadata") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize the action to a JSON-compatible mapping."""
        data: dict[str, Any] = {
            "key": self.key,
            "label": self.label,
            "to": self.to,
            "roles": list(self.roles),
        }
        if self.requires_consent is not None:
            data["requires_consent"] = self.requires_consent.to_dict()
        if self.description is not None:
            data["description"] = self.description
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data


@dataclass(frozen=True)
class State:
    """A node of the workflow graph.

    Attributes:
        key: Identifier, unique within the definition.
        label: Human-readable name.
        final: Whether the state is terminal.
        business: Denormalized target fields applied when the state is entered.
        actions: Ordered outgoing actions.
        description: Optional longer description.
        metadata: Free-form authoring metadata.
    """

    key: str
    label: str
    final: bool = False
    business: dict[str, Any] | None = field(default=None, hash=False)
    actions: tuple[Action, ...] = ()
    description: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict, hash=False)

    def get_action(self, key: str) -> Action | None:
        """Return the action with ``key`` or None."""
        for action in self.actions:
            if action.key == key:
                return action
        return None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> State:
        """Build a state from its mapping form."""
        business = data.get("business")
        return cls(
            key=str(data.get("key", "")).strip(),
            label=data.get("label") or str(data.get("key", "")),
            final=bool(data.get("final", False)),
            business=dict(business) if business else None,
            actions=tuple(Action.from_dict(a) for a in data.get("actions") or ()),
            description=data.get("description"),
            metadata=dict(data.get("metadata") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize the state to a JSON-compatible mapping."""
        data: dict[str, Any] = {
            "key": self.key,
            "label": self.label,
            "final": self.final,
            "actions": [action.to_dict() for action in self.actions],
        }
        if self.business:
            data["business"] = dict(self.business)
        if self.description is not None:
            data["description"] = self.description
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data


@dataclass(frozen=True)
class WorkflowDefinition:
    """Declarative workflow structure.

    The first declared state is the initial state of every new instance.

    Attributes:
        code: Stable unique identifier, e.g. ``"company.registration"``.
        name: Human-readable name.
        states: Ordered states of the graph.
        description: Human-readable description of the process.
        category: Free-form grouping such as ``"company"``.
        is_active: Whether new instances may be created.

    Example:
        >>> definition = WorkflowDefinition.from_dict(
        ...     {
        ...         "code": "company.registration",
        ...         "name": "Company registration",
        ...         "states": [
        ...             {
        ...                 "key": "under_review",
        ...                 "label": "Under review",
        ...                 "actions": [{"key": "approve", "label": "Approve", "to": "approved"}],
        ...             },
        ...             {"key": "approved", "label": "Approved", "final": True},
        ...         ],
        ...     }
        ... )
        >>> definition.initial_state
        'under_review'
    """

    code: str
    name: str
    states: tuple[State, ...]
    description: str | None = None
    category: str | None = None
    is_active: bool = True

    @property
    def initial_state(self) -> str:
        """Key of the first declared state."""
        return self.states[0].key

    @property
    def state_keys(self) -> list[str]:
        """State keys in declaration order."""
        return [state.key for state in self.states]

    @property
    def roles(self) -> list[str]:
        """Every role named by any action, in first-seen order."""
        seen: dict[str, None] = {}
        for state in self.states:
            for action in state.actions:
                for role in action.roles:
                    seen.setdefault(role, None)
        return list(seen)

    def get_state(self, key: str) -> State | None:
        """Return the state with ``key`` or None."""
        for state in self.states:
            if state.key == key:
                return state
        return None

    def states_entering_gate(self) -> dict[str, list[Action]]:
        """Map state keys to the consent-gated actions leaving them."""
        gated: dict[str, list[Action]] = {}
        for state in self.states:
            for action in state.actions:
                if action.requires_consent is not None:
                    gated.setdefault(state.key, []).append(action)
        return gated

    def validate(self) -> list[str]:
        """Validate the definition graph.

        Returns:
            List of validation error messages. Empty list if valid.
        """
        errors: list[str] = []

        if not self.code.strip():
            errors.append("Definition code must not be empty")
        if not self.states:
            errors.append("At least one state is required")
            return errors

        seen_states: set[str] = set()
        for state in self.states:
            if not state.key:
                errors.append("State keys must not be empty")
                continue
            if state.key in seen_states:
                errors.append(f"Duplicate state key: {state.key}")
            seen_states.add(state.key)

        for state in self.states:
            if state.final and state.actions:
                errors.append(f"Final state '{state.key}' must not declare actions")
            seen_actions: set[str] = set()
            for action in state.actions:
                if not action.key:
                    errors.append(f"State '{state.key}' has an action without a key")
                    continue
                if action.key in seen_actions:
                    errors.append(f"Duplicate action key '{action.key}' in state '{state.key}'")
                seen_actions.add(action.key)
                if action.to not in seen_states:
                    errors.append(
                        f"Action '{action.key}' of state '{state.key}' targets undeclared state '{action.to}'"
                    )
                rule = action.requires_consent
                if rule is not None and not Fraction(0) < rule.threshold <= Fraction(1):
                    errors.append(f"Consent threshold of action '{action.key}' must be in (0, 1]")

        return errors

    def shape(self) -> list[dict[str, Any]]:
        """Return the structural part of the graph, without labels or descriptions."""
        return [
            {
                "key": state.key,
                "final": state.final,
                "business": state.business or {},
                "actions": [
                    {
                        "key": action.key,
                        "to": action.to,
                        "roles": sorted(action.roles),
                        "requires_consent": action.requires_consent.to_dict() if action.requires_consent else None,
                    }
                    for action in state.actions
                ],
            }
            for state in self.states
        ]

    def shape_hash(self) -> str:
        """Deterministic SHA-256 of :meth:`shape` for conflict detection."""
        canonical = json.dumps(self.shape(), sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowDefinition:
        """Build a definition from its nested mapping form."""
        return cls(
            code=str(data.get("code", "")).strip(),
            name=data.get("name") or str(data.get("code", "")),
            states=tuple(State.from_dict(s) for s in data.get("states") or ()),
            description=data.get("description"),
            category=data.get("category"),
            is_active=bool(data.get("is_active", True)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize the definition to its nested mapping form."""
        return {
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "states": [state.to_dict() for state in self.states],
        }

    def to_mermaid(self, current_state: str | None = None) -> str:
        """Generate a MermaidJS state diagram of the workflow.

        Args:
            current_state: Optional state key to highlight.

        Returns:
            MermaidJS graph definition as a string.

        Example:
            >>> print(definition.to_mermaid())
            graph TD
                under_review[START: Under review]
                approved([END: Approved])
                under_review -->|Approve| approved
        """
        lines = ["graph TD"]

        for state in self.states:
            shape_start, shape_end = ("([", "])") if state.final else ("[", "]")
            prefix = ""
            if state.key == self.initial_state:
                prefix = "START: "
            elif state.final:
                prefix = "END: "
            label = state.label.replace('"', "").replace("'", "")
            lines.append(f"    {state.key}{shape_start}{prefix}{label}{shape_end}")

        for state in self.states:
            for action in state.actions:
                label = action.label.replace('"', "").replace("'", "")
                lines.append(f"    {state.key} -->|{label}| {action.to}")

        if current_state:
            lines.append(f"    style {current_state} fill:#FFD700,stroke:#FFA500,stroke-width:3px")

        return "\n".join(lines)
