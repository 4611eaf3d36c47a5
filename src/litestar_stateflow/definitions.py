"""Built-in company process definitions.

Nine processes covering the life of a registered company. Each is a plain
mapping in the stored shape, parsed once into a
:class:`~litestar_stateflow.core.definition.WorkflowDefinition`. Register
them at startup with :meth:`WorkflowService.ensure_definition` or through
:class:`~litestar_stateflow.plugin.StateflowPluginConfig.definitions`.

Business effects use two keys: ``company_status`` for the company row and
``application_status`` for the application that started the process.

Example:
    >>> from litestar_stateflow.definitions import ALL_DEFINITIONS
    >>> for definition in ALL_DEFINITIONS:
    ...     await service.ensure_definition(definition)
"""

from __future__ import annotations

from fractions import Fraction
from typing import Any

from litestar_stateflow.core.definition import ConsentRule, WorkflowDefinition
from litestar_stateflow.core.types import QuorumMode

__all__ = [
    "ALL_DEFINITIONS",
    "COMPANY_BUSINESS_SCOPE_CHANGE",
    "COMPANY_CAPITAL_CHANGE",
    "COMPANY_DEREGISTRATION",
    "COMPANY_DOMICILE_CHANGE",
    "COMPANY_EQUITY_TRANSFER",
    "COMPANY_MANAGEMENT_CHANGE",
    "COMPANY_OFFICER_CHANGE",
    "COMPANY_REGISTRATION",
    "COMPANY_RENAME",
    "DEFINITIONS_BY_CODE",
    "REVIEWER_ROLES",
]

ADMIN = "ADMIN"
REGISTRY_AUTHORITY_LEGAL = "REGISTRY_AUTHORITY_LEGAL"
REVIEWER_ROLES = (REGISTRY_AUTHORITY_LEGAL, ADMIN)

UNANIMOUS = ConsentRule()
TWO_THIRDS_OF_SHAREHOLDERS = ConsentRule(
    approver_kinds=("shareholder",),
    mode=QuorumMode.WEIGHTED,
    threshold=Fraction(2, 3),
)
OFFICER_CHANGE_QUORUM = ConsentRule(
    approver_kinds=("shareholder",),
    mode=QuorumMode.WEIGHTED,
    threshold=Fraction(1, 2),
    required_kinds=("new_officer",),
)
MANAGEMENT_CHANGE_QUORUM = ConsentRule(
    approver_kinds=("director",),
    mode=QuorumMode.WEIGHTED,
    threshold=Fraction(1, 2),
    head_count=True,
    required_kinds=("manager", "deputy_manager", "financial_officer"),
)


def _action(key: str, label: str, to: str, roles: tuple[str, ...] = (ADMIN,), **extra: Any) -> dict[str, Any]:
    return {"key": key, "label": label, "to": to, "roles": list(roles), **extra}


def _company_registration() -> dict[str, Any]:
    review_actions = [
        _action("approve", "Approve and register", "approved", REVIEWER_ROLES, requires_consent=UNANIMOUS.to_dict()),
        _action(
            "request_changes",
            "Request changes",
            "needs_revision",
            REVIEWER_ROLES,
            metadata={"reset_consent": True},
        ),
        _action("reject", "Reject application", "rejected", REVIEWER_ROLES),
    ]
    return {
        "code": "company.registration",
        "name": "Company registration",
        "description": "An applicant files a company; the registry authority reviews it before it takes effect.",
        "category": "company",
        "states": [
            {
                "key": "under_review",
                "label": "Under review",
                "business": {"company_status": "UNDER_REVIEW", "application_status": "UNDER_REVIEW"},
                "actions": review_actions,
            },
            {
                "key": "needs_revision",
                "label": "Needs revision",
                "business": {"company_status": "NEEDS_REVISION", "application_status": "NEEDS_CHANGES"},
                "actions": [
                    # The applicant check is a business rule, see Authorizer.
                    _action("resubmit", "Resubmit", "under_review", ()),
                    _action("withdraw", "Withdraw application", "rejected", ()),
                ],
            },
            {
                "key": "approved",
                "label": "Registered",
                "final": True,
                "business": {"company_status": "ACTIVE", "application_status": "APPROVED"},
            },
            {
                "key": "rejected",
                "label": "Rejected",
                "final": True,
                "business": {"company_status": "REJECTED", "application_status": "REJECTED"},
            },
        ],
    }


def _change_process(
    code: str,
    name: str,
    description: str,
    approve_label: str,
    approved_label: str,
    *,
    consent: ConsentRule | None,
    approved_business: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build the submitted / under review / approved / rejected shape shared by change processes."""
    route = {"requires_consent": consent.to_dict()} if consent is not None else {}
    return {
        "code": code,
        "name": name,
        "description": description,
        "category": "company",
        "states": [
            {
                "key": "submitted",
                "label": "Submitted",
                "business": {"application_status": "SUBMITTED"},
                "actions": [
                    _action("route_to_review", "Route to review", "under_review", **route),
                    _action("reject", "Reject application", "rejected"),
                ],
            },
            {
                "key": "under_review",
                "label": "Under review",
                "business": {"application_status": "UNDER_REVIEW"},
                "actions": [
                    _action("approve", approve_label, "approved"),
                    _action("reject", "Reject application", "rejected"),
                ],
            },
            {
                "key": "approved",
                "label": approved_label,
                "final": True,
                "business": {**(approved_business or {}), "application_status": "APPROVED"},
            },
            {
                "key": "rejected",
                "label": "Rejected",
                "final": True,
                "business": {"application_status": "REJECTED"},
            },
        ],
    }


COMPANY_REGISTRATION = WorkflowDefinition.from_dict(_company_registration())

COMPANY_DEREGISTRATION = WorkflowDefinition.from_dict(
    _change_process(
        "company.deregistration",
        "Company deregistration",
        "The company files for deregistration; it is archived once approved.",
        "Approve deregistration",
        "Deregistered",
        consent=TWO_THIRDS_OF_SHAREHOLDERS,
        approved_business={"company_status": "ARCHIVED"},
    )
)

COMPANY_EQUITY_TRANSFER = WorkflowDefinition.from_dict(
    _change_process(
        "company.equity_transfer",
        "Equity transfer",
        "A shareholder transfers equity; the transferee must consent.",
        "Approve transfer",
        "Transferred",
        consent=UNANIMOUS,
    )
)

COMPANY_RENAME = WorkflowDefinition.from_dict(
    _change_process(
        "company.rename",
        "Company rename",
        "The company changes its registered name.",
        "Approve rename",
        "Renamed",
        consent=TWO_THIRDS_OF_SHAREHOLDERS,
    )
)

COMPANY_DOMICILE_CHANGE = WorkflowDefinition.from_dict(
    _change_process(
        "company.change_domicile",
        "Domicile change",
        "The company moves its registered domicile.",
        "Approve domicile change",
        "Domicile changed",
        consent=TWO_THIRDS_OF_SHAREHOLDERS,
    )
)

COMPANY_BUSINESS_SCOPE_CHANGE = WorkflowDefinition.from_dict(
    _change_process(
        "company.change_business_scope",
        "Business scope change",
        "The company changes its registered business scope.",
        "Approve scope change",
        "Scope changed",
        consent=TWO_THIRDS_OF_SHAREHOLDERS,
    )
)

COMPANY_CAPITAL_CHANGE = WorkflowDefinition.from_dict(
    _change_process(
        "company.capital_change",
        "Registered capital change",
        "The company increases or reduces its registered capital.",
        "Approve capital change",
        "Capital changed",
        consent=TWO_THIRDS_OF_SHAREHOLDERS,
    )
)

COMPANY_OFFICER_CHANGE = WorkflowDefinition.from_dict(
    _change_process(
        "company.change_officers",
        "Officer change",
        "Directors or supervisors change; shareholders holding half the voting rights and every new officer consent.",
        "Approve officer change",
        "Officers changed",
        consent=OFFICER_CHANGE_QUORUM,
    )
)

COMPANY_MANAGEMENT_CHANGE = WorkflowDefinition.from_dict(
    _change_process(
        "company.change_management",
        "Management change",
        "Managers or the financial officer change; half of the directors and every new manager consent.",
        "Approve management change",
        "Management changed",
        consent=MANAGEMENT_CHANGE_QUORUM,
    )
)

ALL_DEFINITIONS: tuple[WorkflowDefinition, ...] = (
    COMPANY_REGISTRATION,
    COMPANY_DEREGISTRATION,
    COMPANY_EQUITY_TRANSFER,
    COMPANY_RENAME,
    COMPANY_DOMICILE_CHANGE,
    COMPANY_BUSINESS_SCOPE_CHANGE,
    COMPANY_CAPITAL_CHANGE,
    COMPANY_OFFICER_CHANGE,
    COMPANY_MANAGEMENT_CHANGE,
)

DEFINITIONS_BY_CODE: dict[str, WorkflowDefinition] = {definition.code: definition for definition in ALL_DEFINITIONS}
