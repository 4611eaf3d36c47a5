"""Tests for business effect synchronization."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import uuid4

import pytest

from litestar_stateflow.config import StateflowConfig
from litestar_stateflow.core.models import Actor, WorkflowInstanceData
from litestar_stateflow.core.types import InstanceStatus
from litestar_stateflow.engine.effects import BusinessEffectSynchronizer
from litestar_stateflow.engine.service import WorkflowService
from litestar_stateflow.exceptions import EffectHandlerNotFoundError, PersistenceError

from tests.conftest import Company, CompanyApplication, make_company_handler

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from litestar_stateflow.core.definition import WorkflowDefinition
    from litestar_stateflow.core.types import BusinessEffect


class RecordingHandler:
    """Effect handler remembering what it was asked to write."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any], str]] = []

    async def apply(
        self,
        session: AsyncSession,
        target_id: str,
        effect: BusinessEffect,
        instance: WorkflowInstanceData,
    ) -> None:
        self.calls.append((target_id, dict(effect), instance.current_state))


@pytest.mark.unit
class TestSynchronizerRegistry:
    """Tests for handler registration."""

    def test_register_and_unregister(self) -> None:
        """Handlers are keyed by target type."""
        synchronizer = BusinessEffectSynchronizer()
        synchronizer.register("company", RecordingHandler())

        assert synchronizer.has_handler("company")
        assert synchronizer.target_types == ["company"]

        synchronizer.unregister("company")
        synchronizer.unregister("company")

        assert not synchronizer.has_handler("company")


@pytest.mark.integration
class TestSynchronizer:
    """Tests for dispatching effects during transitions."""

    async def test_handler_receives_entered_state_effect(
        self,
        async_session: AsyncSession,
        review_definition: WorkflowDefinition,
    ) -> None:
        """The effect of the entered state is passed with the moved instance."""
        handler = RecordingHandler()
        service = WorkflowService(async_session, synchronizer=BusinessEffectSynchronizer({"document": handler}))
        await service.ensure_definition(review_definition)
        instance = await service.create_instance("test.review", target_type="document", target_id="d-7")

        await service.perform_action(instance.id, "submit", Actor(id="u-1"))

        assert handler.calls == [("d-7", {"company_status": "UNDER_REVIEW"}, "review")]

    async def test_missing_handler_is_skipped(
        self,
        service: WorkflowService,
        review_definition: WorkflowDefinition,
    ) -> None:
        """Without a handler the transition still goes through."""
        await service.ensure_definition(review_definition)
        instance = await service.create_instance("test.review", target_type="document", target_id="d-7")

        result = await service.perform_action(instance.id, "submit", Actor(id="u-1"))

        assert result.next_state.key == "review"

    async def test_missing_handler_raises_when_strict(
        self,
        async_session: AsyncSession,
        review_definition: WorkflowDefinition,
    ) -> None:
        """Strict mode turns a missing handler into a failed transition."""
        service = WorkflowService(async_session, config=StateflowConfig(strict_effects=True))
        await service.ensure_definition(review_definition)
        instance = await service.create_instance("test.review", target_type="document", target_id="d-7")

        with pytest.raises(EffectHandlerNotFoundError) as exc_info:
            await service.perform_action(instance.id, "submit", Actor(id="u-1"))

        assert exc_info.value.target_type == "document"
        assert (await service.get_instance(instance.id)).current_state == "draft"


@pytest.mark.integration
class TestModelEffectHandler:
    """Tests for the column-mapping effect handler."""

    async def test_updates_target_and_linked_application(
        self,
        service: WorkflowService,
        async_session: AsyncSession,
        company: Company,
        review_definition: WorkflowDefinition,
    ) -> None:
        """Mapped effect keys land on the company and its linked application."""
        data = review_definition.to_dict()
        data["states"][1]["business"] = {"company_status": "UNDER_REVIEW", "application_status": "IN_REVIEW"}
        await service.ensure_definition(data)
        instance = await service.create_instance("test.review", target_type="company", target_id="company-1")

        linked = CompanyApplication(
            id="application-2",
            company_id="company-1",
            workflow_instance_id=str(instance.id),
            status="SUBMITTED",
        )
        async_session.add(linked)
        await async_session.commit()

        await service.perform_action(instance.id, "submit", Actor(id="u-1"))

        stored = await async_session.get(Company, "company-1", populate_existing=True)
        linked_row = await async_session.get(CompanyApplication, "application-2", populate_existing=True)
        unlinked_row = await async_session.get(CompanyApplication, "application-1", populate_existing=True)
        await async_session.commit()

        assert stored is not None
        assert stored.workflow_state == "review"
        assert stored.approved_at is None
        assert linked_row is not None
        assert linked_row.status == "IN_REVIEW"
        assert unlinked_row is not None
        assert unlinked_row.status == "UNDER_REVIEW"

    def test_derived_columns(self) -> None:
        """The derive callback adds computed columns."""
        instance = WorkflowInstanceData(
            id=uuid4(),
            definition_code="test.review",
            target_type="company",
            target_id="company-1",
            current_state="approved",
            status=InstanceStatus.COMPLETED,
        )

        values = make_company_handler().target_values({"company_status": "ACTIVE", "other": 1}, instance)

        assert values["status"] == "ACTIVE"
        assert values["workflow_state"] == "approved"
        assert values["approved_at"] is not None
        assert "other" not in values

    async def test_missing_target_row_fails_the_transition(
        self,
        service: WorkflowService,
        review_definition: WorkflowDefinition,
    ) -> None:
        """An effect aimed at a missing row rolls the transition back."""
        await service.ensure_definition(review_definition)
        instance = await service.create_instance("test.review", target_type="company", target_id="ghost-company")

        with pytest.raises(PersistenceError) as exc_info:
            await service.perform_action(instance.id, "submit", Actor(id="u-1"))

        assert isinstance(exc_info.value.cause, LookupError)
        assert (await service.get_instance(instance.id)).current_state == "draft"
        assert (await service.history(instance.id))[1] == 0
