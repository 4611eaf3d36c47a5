"""Configuration for the workflow engine.

This module provides the engine-wide options shared by every service built on
a session: definition caching, authorization wildcards, the consent decision
policy and how strictly business effects are enforced.
"""

from __future__ import annotations

from dataclasses import dataclass

__all__ = ["StateflowConfig"]


@dataclass
class StateflowConfig:
    """Configuration for the workflow engine.

    Attributes:
        definition_cache_ttl: Seconds a loaded definition stays cached.
        definition_cache_size: Maximum number of cached definitions.
        wildcard_role: Role name in ``action.roles`` that matches any actor.
        allow_decision_override: Whether an approver's later decision replaces
            an earlier one. When False, a second decision raises
            :class:`~litestar_stateflow.exceptions.AlreadyDecidedError`.
        strict_effects: Raise when a state carries a business effect but no
            handler serves the instance's target type. When False the effect
            is skipped and logged.
        lock_instance_rows: Re-read the instance with ``SELECT ... FOR UPDATE``
            inside the transition transaction on dialects that support it.

    Example:
        >>> config = StateflowConfig(definition_cache_ttl=60, strict_effects=True)
    """

    definition_cache_ttl: float = 300.0
    definition_cache_size: int = 128
    wildcard_role: str = "*"
    allow_decision_override: bool = True
    strict_effects: bool = False
    lock_instance_rows: bool = True
