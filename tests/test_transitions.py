"""Tests for performing actions on workflow instances."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import uuid4

import pytest
from sqlalchemy import select

from litestar_stateflow.core.models import Actor
from litestar_stateflow.core.types import ConsentDecision, InstanceStatus
from litestar_stateflow.db.models import WorkflowDefinitionModel, WorkflowInstanceModel
from litestar_stateflow.definitions import COMPANY_REGISTRATION
from litestar_stateflow.engine.service import WorkflowService
from litestar_stateflow.exceptions import (
    ActionNotAllowedError,
    ConsentPendingError,
    ConsentRejectedError,
    DefinitionCorruptError,
    ForbiddenError,
    InstanceNotFoundError,
    InstanceTerminatedError,
    InvalidInstanceStateError,
)

from tests.conftest import Company

if TYPE_CHECKING:
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from litestar_stateflow.core.definition import Action, WorkflowDefinition
    from litestar_stateflow.core.models import WorkflowInstanceData


class RecordingBus:
    """Event bus keeping every emitted event."""

    def __init__(self) -> None:
        self.events: list[tuple[str, Any]] = []

    async def emit(self, event_type: str, **kwargs: Any) -> None:
        self.events.append((event_type, kwargs["event"]))


class ApplicantOnly:
    """Authorizer allowing only the user who started the instance."""

    async def authorize(
        self,
        session: AsyncSession,
        instance: WorkflowInstanceData,
        action: Action,
        actor: Actor,
    ) -> bool:
        return actor.id is not None and actor.id == instance.created_by_id


async def _registration(service: WorkflowService, **kwargs: Any) -> WorkflowInstanceData:
    await service.ensure_definition(COMPANY_REGISTRATION)
    return await service.create_instance(
        "company.registration",
        target_type="company",
        target_id="company-1",
        created_by_id="applicant-1",
        **kwargs,
    )


async def _reload_company(session: AsyncSession) -> Company:
    company = await session.get(Company, "company-1", populate_existing=True)
    await session.commit()
    assert company is not None
    return company


@pytest.mark.integration
class TestRegistrationScenario:
    """End-to-end runs of the company registration process."""

    async def test_approve_registers_company(
        self,
        service: WorkflowService,
        async_session: AsyncSession,
        company: Company,
        registry_officer: Actor,
    ) -> None:
        """Approving moves the instance to a final state and activates the company."""
        instance = await _registration(service)
        assert instance.current_state == "under_review"

        result = await service.perform_action(
            instance.id, "approve", registry_officer, comment="All documents in order"
        )

        assert result.previous_state.key == "under_review"
        assert result.next_state.key == "approved"
        assert result.instance.status == InstanceStatus.COMPLETED
        assert result.instance.completed_at is not None

        stored = await _reload_company(async_session)
        assert stored.status == "ACTIVE"
        assert stored.workflow_state == "approved"
        assert stored.approved_at is not None

        records, total = await service.history(instance.id)
        assert total == 1
        assert records[0].action_key == "approve"
        assert records[0].from_state == "under_review"
        assert records[0].result_state == "approved"
        assert records[0].actor_id == "officer-1"
        assert records[0].actor_role == "REGISTRY_AUTHORITY_LEGAL"
        assert records[0].comment == "All documents in order"

    async def test_forbidden_actor_changes_nothing(
        self,
        service: WorkflowService,
        async_session: AsyncSession,
        company: Company,
        nobody: Actor,
    ) -> None:
        """An actor without a listed role is refused and nothing is written."""
        instance = await _registration(service)

        with pytest.raises(ForbiddenError):
            await service.perform_action(instance.id, "approve", nobody)

        assert (await service.get_instance(instance.id)).current_state == "under_review"
        assert (await service.history(instance.id))[1] == 0
        assert (await _reload_company(async_session)).status == "UNDER_REVIEW"

    async def test_final_state_is_locked(
        self,
        service: WorkflowService,
        company: Company,
        registry_officer: Actor,
    ) -> None:
        """No action can be fired once a final state is reached."""
        instance = await _registration(service)
        await service.perform_action(instance.id, "reject", registry_officer)

        with pytest.raises(InstanceTerminatedError) as exc_info:
            await service.perform_action(instance.id, "approve", registry_officer)

        assert exc_info.value.state_key == "rejected"
        assert await service.available_actions(instance.id, registry_officer) == []

    async def test_repeated_action_is_not_applied_twice(
        self,
        service: WorkflowService,
        company: Company,
        registry_officer: Actor,
    ) -> None:
        """A retried request finds the instance already moved on."""
        instance = await _registration(service)
        await service.perform_action(instance.id, "request_changes", registry_officer)

        with pytest.raises(ActionNotAllowedError) as exc_info:
            await service.perform_action(instance.id, "request_changes", registry_officer)

        assert exc_info.value.state_key == "needs_revision"
        assert (await service.history(instance.id))[1] == 1

    async def test_revision_loop(
        self,
        service: WorkflowService,
        async_session: AsyncSession,
        company: Company,
        registry_officer: Actor,
    ) -> None:
        """Requesting changes and resubmitting returns the instance to review."""
        service.engine.authorizers["company.registration"] = ApplicantOnly()
        instance = await _registration(service)

        await service.perform_action(instance.id, "request_changes", registry_officer)
        assert (await _reload_company(async_session)).status == "NEEDS_REVISION"

        with pytest.raises(ForbiddenError):
            await service.perform_action(instance.id, "resubmit", registry_officer)

        result = await service.perform_action(instance.id, "resubmit", Actor(id="applicant-1"))

        assert result.next_state.key == "under_review"
        assert result.audit_record is not None
        assert result.audit_record.actor_role is None
        assert (await _reload_company(async_session)).status == "UNDER_REVIEW"

    async def test_stale_session_observes_concurrent_transition(
        self,
        service: WorkflowService,
        session_maker: async_sessionmaker[AsyncSession],
        company: Company,
        registry_officer: Actor,
    ) -> None:
        """A second session holding the old state still refuses the action."""
        instance = await _registration(service)

        async with session_maker() as other_session:
            other = WorkflowService(other_session, cache=service.cache, synchronizer=service.synchronizer)
            assert (await other.get_instance(instance.id)).current_state == "under_review"

            await service.perform_action(instance.id, "approve", registry_officer)

            with pytest.raises(InstanceTerminatedError):
                await other.perform_action(instance.id, "reject", registry_officer)

        assert (await service.history(instance.id))[1] == 1


@pytest.mark.integration
class TestConsentGatedTransitions:
    """Tests for actions behind a consent gate."""

    async def _in_review(
        self,
        service: WorkflowService,
        review_definition: WorkflowDefinition | dict[str, Any],
        context: dict[str, Any],
    ) -> WorkflowInstanceData:
        await service.ensure_definition(review_definition)
        instance = await service.create_instance(
            "test.review", target_type="company", target_id="company-1", context=context
        )
        await service.perform_action(instance.id, "submit", Actor(id="applicant-1"))
        return instance

    async def test_pending_consent_blocks(
        self,
        service: WorkflowService,
        company: Company,
        review_definition: WorkflowDefinition,
        shareholder_context: dict[str, Any],
        reviewer: Actor,
    ) -> None:
        """One 40% approval is not enough for a 2/3 quorum."""
        instance = await self._in_review(service, review_definition, shareholder_context)
        await service.record_decision(instance.id, "approve", "A", ConsentDecision.APPROVED)

        with pytest.raises(ConsentPendingError) as exc_info:
            await service.perform_action(instance.id, "approve", reviewer)

        assert exc_info.value.outstanding_by_kind == {"shareholder": 2}
        assert (await service.get_instance(instance.id)).current_state == "review"

    async def test_quorum_reached_allows_action(
        self,
        service: WorkflowService,
        async_session: AsyncSession,
        company: Company,
        review_definition: WorkflowDefinition,
        shareholder_context: dict[str, Any],
        reviewer: Actor,
    ) -> None:
        """40% plus 35% meets the 2/3 quorum."""
        instance = await self._in_review(service, review_definition, shareholder_context)
        await service.record_decision(instance.id, "approve", "A", ConsentDecision.APPROVED)
        evaluation = await service.record_decision(instance.id, "approve", "B", ConsentDecision.APPROVED)
        assert evaluation.satisfied

        result = await service.perform_action(instance.id, "approve", reviewer)

        assert result.next_state.key == "approved"
        assert (await _reload_company(async_session)).status == "ACTIVE"

    async def test_rejected_consent_blocks(
        self,
        service: WorkflowService,
        company: Company,
        review_definition: WorkflowDefinition,
        shareholder_context: dict[str, Any],
        reviewer: Actor,
    ) -> None:
        """Once the quorum is out of reach the action is refused for good."""
        instance = await self._in_review(service, review_definition, shareholder_context)
        await service.record_decision(instance.id, "approve", "A", ConsentDecision.REJECTED)

        with pytest.raises(ConsentRejectedError):
            await service.perform_action(instance.id, "approve", reviewer)

        # Ungated alternatives stay available.
        result = await service.perform_action(instance.id, "reject", reviewer)
        assert result.next_state.key == "rejected"

    async def test_entering_gated_state_opens_gate(
        self,
        service: WorkflowService,
        company: Company,
        review_definition: WorkflowDefinition,
        shareholder_context: dict[str, Any],
    ) -> None:
        """A pending record is written for every approver on entry."""
        instance = await self._in_review(service, review_definition, shareholder_context)

        records = await service.consent_records(instance.id, "approve")

        assert sorted(record.approver_ref for record in records) == ["A", "B", "C"]
        assert {record.decision for record in records} == {ConsentDecision.PENDING}

    async def test_reset_consent_on_send_back(
        self,
        service: WorkflowService,
        company: Company,
        review_definition: WorkflowDefinition,
        shareholder_context: dict[str, Any],
        reviewer: Actor,
    ) -> None:
        """An action flagged ``reset_consent`` discards earlier decisions."""
        data = review_definition.to_dict()
        data["states"][1]["actions"][1]["metadata"] = {"reset_consent": True}
        instance = await self._in_review(service, data, shareholder_context)
        await service.record_decision(instance.id, "approve", "A", ConsentDecision.APPROVED)
        await service.record_decision(instance.id, "approve", "B", ConsentDecision.APPROVED)

        await service.perform_action(instance.id, "send_back", reviewer)
        await service.perform_action(instance.id, "submit", Actor(id="applicant-1"))

        records = await service.consent_records(instance.id, "approve")
        assert {record.decision for record in records} == {ConsentDecision.PENDING}
        with pytest.raises(ConsentPendingError):
            await service.perform_action(instance.id, "approve", reviewer)

    async def test_decisions_survive_loop_without_reset(
        self,
        service: WorkflowService,
        company: Company,
        review_definition: WorkflowDefinition,
        shareholder_context: dict[str, Any],
        reviewer: Actor,
    ) -> None:
        """Without the reset flag, decisions carry over a revision loop."""
        instance = await self._in_review(service, review_definition, shareholder_context)
        await service.record_decision(instance.id, "approve", "A", ConsentDecision.APPROVED)
        await service.record_decision(instance.id, "approve", "B", ConsentDecision.APPROVED)

        await service.perform_action(instance.id, "send_back", reviewer)
        await service.perform_action(instance.id, "submit", Actor(id="applicant-1"))

        result = await service.perform_action(instance.id, "approve", reviewer)
        assert result.next_state.key == "approved"


@pytest.mark.integration
class TestAuthorization:
    """Tests for role and authorizer checks."""

    async def test_wildcard_role_allows_anyone(
        self,
        service: WorkflowService,
        review_definition: WorkflowDefinition,
        nobody: Actor,
    ) -> None:
        """The ``*`` role lets any actor fire the action."""
        data = review_definition.to_dict()
        data["states"][1]["actions"][2]["roles"] = ["*"]
        await service.ensure_definition(data)
        instance = await service.create_instance("test.review", target_type="document", target_id="d-1")
        await service.perform_action(instance.id, "submit", nobody)

        result = await service.perform_action(instance.id, "reject", nobody)

        assert result.next_state.key == "rejected"
        assert result.audit_record is not None
        assert result.audit_record.actor_role is None

    async def test_first_held_role_is_recorded(
        self,
        service: WorkflowService,
        review_definition: WorkflowDefinition,
    ) -> None:
        """The audit record names the first listed role the actor holds."""
        await service.ensure_definition(review_definition)
        instance = await service.create_instance("test.review", target_type="document", target_id="d-1")
        await service.perform_action(instance.id, "submit", Actor(id="u-1"))

        result = await service.perform_action(instance.id, "reject", Actor.with_roles("u-2", "ADMIN", "REVIEWER"))

        assert result.audit_record is not None
        assert result.audit_record.actor_role == "REVIEWER"

    async def test_roleless_action_without_authorizer_is_open(
        self,
        service: WorkflowService,
        review_definition: WorkflowDefinition,
        nobody: Actor,
    ) -> None:
        """Without an authorizer a role-less action is left to the caller."""
        await service.ensure_definition(review_definition)
        instance = await service.create_instance("test.review", target_type="document", target_id="d-1")

        result = await service.perform_action(instance.id, "submit", nobody)

        assert result.next_state.key == "review"

    async def test_available_actions(
        self,
        service: WorkflowService,
        company: Company,
        registry_officer: Actor,
        nobody: Actor,
    ) -> None:
        """Only actions the actor may fire are listed; consent is not checked."""
        instance = await _registration(service)

        officer_actions = [action.key for action in await service.available_actions(instance.id, registry_officer)]
        nobody_actions = await service.available_actions(instance.id, nobody)

        assert officer_actions == ["approve", "request_changes", "reject"]
        assert nobody_actions == []


@pytest.mark.integration
class TestFailureModes:
    """Tests for corrupt data and unknown instances."""

    async def test_unknown_instance(self, service: WorkflowService, reviewer: Actor) -> None:
        """An unknown id raises InstanceNotFoundError."""
        with pytest.raises(InstanceNotFoundError):
            await service.perform_action(uuid4(), "approve", reviewer)

    async def test_unknown_action(
        self,
        service: WorkflowService,
        review_definition: WorkflowDefinition,
        reviewer: Actor,
    ) -> None:
        """An action the state does not offer is refused."""
        await service.ensure_definition(review_definition)
        instance = await service.create_instance("test.review", target_type="document", target_id="d-1")

        with pytest.raises(ActionNotAllowedError) as exc_info:
            await service.perform_action(instance.id, "approve", reviewer)

        assert exc_info.value.state_key == "draft"

    async def test_undeclared_state(
        self,
        service: WorkflowService,
        async_session: AsyncSession,
        review_definition: WorkflowDefinition,
        reviewer: Actor,
    ) -> None:
        """An instance in a state the definition lacks is reported, not moved."""
        await service.ensure_definition(review_definition)
        instance = await service.create_instance("test.review", target_type="document", target_id="d-1")
        await _set_state(async_session, instance.id, "ghost")

        with pytest.raises(InvalidInstanceStateError) as exc_info:
            await service.perform_action(instance.id, "submit", reviewer)

        assert exc_info.value.state_key == "ghost"

    async def test_corrupt_target(
        self,
        service: WorkflowService,
        async_session: AsyncSession,
        review_definition: WorkflowDefinition,
        reviewer: Actor,
    ) -> None:
        """An action pointing at an undeclared state fails without moving the instance."""
        await service.ensure_definition(review_definition)
        instance = await service.create_instance("test.review", target_type="document", target_id="d-1")

        stmt = select(WorkflowDefinitionModel).where(WorkflowDefinitionModel.code == "test.review")
        model = (await async_session.execute(stmt)).scalar_one()
        config = dict(model.config)
        states = [dict(state) for state in config["states"]]
        states[0] = {**states[0], "actions": [{**states[0]["actions"][0], "to": "nowhere"}]}
        model.config = {**config, "states": states}
        await async_session.commit()
        service.cache.clear()

        with pytest.raises(DefinitionCorruptError) as exc_info:
            await service.perform_action(instance.id, "submit", reviewer)

        assert exc_info.value.target == "nowhere"
        assert (await service.get_instance(instance.id)).current_state == "draft"

    async def test_failed_transition_rolls_back_to_savepoint(
        self,
        service: WorkflowService,
        async_session: AsyncSession,
        review_definition: WorkflowDefinition,
        nobody: Actor,
    ) -> None:
        """Inside a caller's transaction only the failed action is undone."""
        await service.ensure_definition(review_definition)
        instance = await service.create_instance("test.review", target_type="document", target_id="d-1")

        async with async_session.begin():
            await service.perform_action(instance.id, "submit", nobody)
            with pytest.raises(ForbiddenError):
                await service.perform_action(instance.id, "approve", nobody)

        assert (await service.get_instance(instance.id)).current_state == "review"
        assert (await service.history(instance.id))[1] == 1


@pytest.mark.integration
class TestEvents:
    """Tests for domain events published by the service."""

    async def test_events_follow_committed_work(
        self,
        async_session: AsyncSession,
        synchronizer: Any,
        company: Company,
        registry_officer: Actor,
        nobody: Actor,
    ) -> None:
        """Creation, transitions and completion are published; failures are not."""
        bus = RecordingBus()
        service = WorkflowService(async_session, synchronizer=synchronizer, event_bus=bus)
        instance = await _registration(service)

        with pytest.raises(ForbiddenError):
            await service.perform_action(instance.id, "approve", nobody)
        await service.perform_action(instance.id, "approve", registry_officer)

        assert [event_type for event_type, _ in bus.events] == [
            "workflow.instance_created",
            "workflow.transition_performed",
            "workflow.instance_completed",
        ]
        transition = bus.events[1][1]
        assert transition.from_state == "under_review"
        assert transition.to_state == "approved"
        assert transition.actor_id == "officer-1"
        assert bus.events[2][1].final_state == "approved"


async def _set_state(session: AsyncSession, instance_id: UUID, state: str) -> None:
    stmt = select(WorkflowInstanceModel).where(WorkflowInstanceModel.id == instance_id)
    model = (await session.execute(stmt)).scalar_one()
    model.current_state = state
    await session.commit()
