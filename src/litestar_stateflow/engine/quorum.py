"""Quorum arithmetic for consent gates.

Pure functions over approvers and their decisions; no I/O. Weights are exact
:class:`~fractions.Fraction` values so a 2/3 threshold never suffers from
floating point rounding.
"""

from __future__ import annotations

from fractions import Fraction
from typing import TYPE_CHECKING

from litestar_stateflow.core.models import ConsentEvaluation
from litestar_stateflow.core.types import ConsentDecision, ConsentProgress, QuorumMode

if TYPE_CHECKING:
    from collections.abc import Sequence

    from litestar_stateflow.core.definition import ConsentRule
    from litestar_stateflow.core.models import ApproverRef

__all__ = ["Ballot", "evaluate_quorum"]

Ballot = tuple["ApproverRef", ConsentDecision]


def _unanimous(ballots: Sequence[Ballot]) -> ConsentProgress:
    decisions = {decision for _, decision in ballots}
    if ConsentDecision.REJECTED in decisions:
        return ConsentProgress.REJECTED
    if ConsentDecision.PENDING in decisions:
        return ConsentProgress.PENDING
    return ConsentProgress.APPROVED


def evaluate_quorum(rule: ConsentRule, ballots: Sequence[Ballot]) -> ConsentEvaluation:
    """Decide whether a consent gate is satisfied.

    Approvers whose kind is listed in ``rule.required_kinds`` must each
    approve; a rejection by any of them rejects the gate. The remaining
    counted approvers are judged by ``rule.mode``:

    - ``UNANIMOUS``: everyone approves, any rejection rejects.
    - ``WEIGHTED``: approved weight reaches ``threshold`` of the total weight.
      The gate is rejected early once approved plus pending weight can no
      longer reach the threshold, or on any rejection when
      ``veto_on_reject`` is set.

    A weighted rule whose counted approvers carry no weight at all falls
    back to a unanimous head count. A gate with no approvers is satisfied.

    Args:
        rule: The quorum rule of the gated action.
        ballots: Each current approver with its standing decision.

    Returns:
        The evaluation, including the approvers still pending.

    Example:
        >>> rule = ConsentRule(mode=QuorumMode.WEIGHTED, threshold=Fraction(2, 3))
        >>> evaluate_quorum(rule, [(a, ConsentDecision.APPROVED), (b, ConsentDecision.PENDING)])
    """
    required = [b for b in ballots if b[0].kind in rule.required_kinds]
    counted = [b for b in ballots if rule.counts(b[0].kind)]
    outstanding = tuple(approver for approver, decision in (*required, *counted) if decision == ConsentDecision.PENDING)

    def weight(approver: ApproverRef) -> Fraction:
        return Fraction(1) if rule.head_count else approver.weight

    weighted = [(approver, decision) for approver, decision in counted if weight(approver) > 0]
    total = sum((weight(a) for a, _ in weighted), Fraction(0))
    approved = sum((weight(a) for a, d in weighted if d == ConsentDecision.APPROVED), Fraction(0))
    pending = sum((weight(a) for a, d in weighted if d == ConsentDecision.PENDING), Fraction(0))

    def result(progress: ConsentProgress) -> ConsentEvaluation:
        return ConsentEvaluation(
            progress=progress,
            outstanding=outstanding,
            approved_weight=approved,
            total_weight=total,
        )

    required_progress = _unanimous(required)
    if required_progress == ConsentProgress.REJECTED:
        return result(ConsentProgress.REJECTED)

    if rule.mode == QuorumMode.UNANIMOUS or total == 0:
        counted_progress = _unanimous(counted)
    elif rule.veto_on_reject and any(d == ConsentDecision.REJECTED for _, d in counted):
        counted_progress = ConsentProgress.REJECTED
    else:
        needed = rule.threshold * total
        if approved + pending < needed:
            counted_progress = ConsentProgress.REJECTED
        elif approved >= needed:
            counted_progress = ConsentProgress.APPROVED
        else:
            counted_progress = ConsentProgress.PENDING

    if counted_progress == ConsentProgress.REJECTED:
        return result(ConsentProgress.REJECTED)
    if counted_progress == ConsentProgress.APPROVED and required_progress == ConsentProgress.APPROVED:
        return result(ConsentProgress.APPROVED)
    return result(ConsentProgress.PENDING)
