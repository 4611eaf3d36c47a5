"""Core type definitions for litestar-stateflow.

This module defines the enums and type aliases used throughout the engine.
"""

from __future__ import annotations

import sys
from enum import Enum
from typing import Any, TypeAlias

# StrEnum backport for Python < 3.11
if sys.version_info >= (3, 11):
    from enum import StrEnum
else:

    class StrEnum(str, Enum):
        """String enumeration compatibility for Python < 3.11."""

        def __str__(self) -> str:
            return str(self.value)


__all__ = [
    "BusinessEffect",
    "ConsentDecision",
    "ConsentProgress",
    "Context",
    "InstanceStatus",
    "QuorumMode",
]


class InstanceStatus(StrEnum):
    """Lifecycle status of a workflow instance.

    Attributes:
        ACTIVE: The instance sits in a non-final state and accepts actions.
        COMPLETED: The instance reached a final state.
    """

    ACTIVE = "active"
    COMPLETED = "completed"


class ConsentDecision(StrEnum):
    """A single approver's answer to a consent request.

    Attributes:
        PENDING: The approver has not answered yet.
        APPROVED: The approver consents.
        REJECTED: The approver refuses.
    """

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ConsentProgress(StrEnum):
    """Aggregate outcome of a consent gate.

    Attributes:
        PENDING: Quorum not reached but still reachable.
        APPROVED: Quorum reached; the gated action may fire.
        REJECTED: Quorum can no longer be reached, or a veto was cast.
    """

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class QuorumMode(StrEnum):
    """How a consent rule aggregates decisions.

    Attributes:
        UNANIMOUS: Every counted approver must approve.
        WEIGHTED: Approved weight must reach a fraction of the total weight.
    """

    UNANIMOUS = "unanimous"
    WEIGHTED = "weighted"


Context: TypeAlias = dict[str, Any]
"""Free-form snapshot captured on an instance at creation."""

BusinessEffect: TypeAlias = dict[str, Any]
"""Partial set of denormalized target fields implied by a state."""
