"""Shared test fixtures for litestar-stateflow test suite."""

from __future__ import annotations

from datetime import datetime
from fractions import Fraction
from typing import TYPE_CHECKING, Any

import pytest
from advanced_alchemy.base import UUIDAuditBase
from sqlalchemy import DateTime, String, event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from litestar_stateflow.config import StateflowConfig
from litestar_stateflow.core.definition import WorkflowDefinition
from litestar_stateflow.core.models import Actor
from litestar_stateflow.engine.effects import BusinessEffectSynchronizer, ModelEffectHandler
from litestar_stateflow.engine.service import WorkflowService

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncEngine


# =============================================================================
# Business target tables
# =============================================================================


class TargetBase(DeclarativeBase):
    """Declarative base for the business tables workflows write to."""


class Company(TargetBase):
    """Minimal company row driven by the registration process."""

    __tablename__ = "test_companies"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(50), default="DRAFT")
    workflow_state: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class CompanyApplication(TargetBase):
    """Application row that started a process for a company."""

    __tablename__ = "test_company_applications"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    company_id: Mapped[str] = mapped_column(String(64))
    workflow_instance_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(50), default="SUBMITTED")


def _company_derive(effect: dict[str, Any]) -> dict[str, Any]:
    if effect.get("company_status") == "ACTIVE":
        return {"approved_at": datetime(2026, 1, 1)}
    return {}


def make_company_handler() -> ModelEffectHandler:
    """Build the effect handler mapping process effects onto the test tables."""
    return ModelEffectHandler(
        Company,
        field_map={"company_status": "status"},
        state_column="workflow_state",
        derive=_company_derive,
        dependent_model=CompanyApplication,
        dependent_field_map={"application_status": "status"},
        dependent_parent_column="company_id",
    )


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
async def async_engine() -> AsyncIterator[AsyncEngine]:
    """Create an async SQLite in-memory engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )

    # Hand transaction control to SQLAlchemy so SAVEPOINTs work, and enable foreign keys
    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(UUIDAuditBase.metadata.create_all)
        await conn.run_sync(TargetBase.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        bind=async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def async_session(session_maker: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    """Create an async session for testing."""
    async with session_maker() as session:
        yield session
        await session.rollback()


# =============================================================================
# Engine Fixtures
# =============================================================================


@pytest.fixture
def stateflow_config() -> StateflowConfig:
    """Default engine configuration."""
    return StateflowConfig()


@pytest.fixture
def synchronizer() -> BusinessEffectSynchronizer:
    """Effect synchronizer serving the ``company`` target type."""
    return BusinessEffectSynchronizer({"company": make_company_handler()})


@pytest.fixture
def service(
    async_session: AsyncSession,
    stateflow_config: StateflowConfig,
    synchronizer: BusinessEffectSynchronizer,
) -> WorkflowService:
    """Workflow service on the test session."""
    return WorkflowService(async_session, config=stateflow_config, synchronizer=synchronizer)


@pytest.fixture
async def company(async_session: AsyncSession) -> Company:
    """Persist a company with its registration application."""
    row = Company(id="company-1", name="Acme Trading", status="UNDER_REVIEW")
    async_session.add(row)
    async_session.add(CompanyApplication(id="application-1", company_id=row.id, status="UNDER_REVIEW"))
    await async_session.commit()
    return row


# =============================================================================
# Definition Fixtures
# =============================================================================


@pytest.fixture
def review_definition() -> WorkflowDefinition:
    """A small review process with a non-final loop and two final states.

    ``draft -> review -> (approved | rejected)``, with ``review -> draft`` on
    ``send_back``. ``approve`` is gated by a 2/3 weighted shareholder vote.
    """
    return WorkflowDefinition.from_dict(
        {
            "code": "test.review",
            "name": "Review",
            "category": "test",
            "states": [
                {
                    "key": "draft",
                    "label": "Draft",
                    "actions": [
                        {"key": "submit", "label": "Submit", "to": "review", "roles": []},
                    ],
                },
                {
                    "key": "review",
                    "label": "In review",
                    "business": {"company_status": "UNDER_REVIEW"},
                    "actions": [
                        {
                            "key": "approve",
                            "label": "Approve",
                            "to": "approved",
                            "roles": ["REVIEWER"],
                            "requires_consent": {
                                "approver_kinds": ["shareholder"],
                                "mode": "weighted",
                                "threshold": "2/3",
                            },
                        },
                        {"key": "send_back", "label": "Send back", "to": "draft", "roles": ["REVIEWER"]},
                        {"key": "reject", "label": "Reject", "to": "rejected", "roles": ["REVIEWER", "ADMIN"]},
                    ],
                },
                {
                    "key": "approved",
                    "label": "Approved",
                    "final": True,
                    "business": {"company_status": "ACTIVE"},
                },
                {"key": "rejected", "label": "Rejected", "final": True},
            ],
        }
    )


@pytest.fixture
def shareholder_context() -> dict[str, Any]:
    """Instance context with three weighted shareholders (40/35/25)."""
    return {
        "approvers": [
            {"kind": "shareholder", "ref": "A", "weight": str(Fraction(40, 100))},
            {"kind": "shareholder", "ref": "B", "weight": str(Fraction(35, 100))},
            {"kind": "shareholder", "ref": "C", "weight": str(Fraction(25, 100))},
        ]
    }


@pytest.fixture
def reviewer() -> Actor:
    """Actor holding the REVIEWER role."""
    return Actor.with_roles("reviewer-1", "REVIEWER")


@pytest.fixture
def registry_officer() -> Actor:
    """Actor holding the registry authority role."""
    return Actor.with_roles("officer-1", "REGISTRY_AUTHORITY_LEGAL")


@pytest.fixture
def nobody() -> Actor:
    """Actor without any role."""
    return Actor(id="nobody")


# =============================================================================
# Pytest Configuration
# =============================================================================


def pytest_configure(config: Any) -> None:
    """Configure pytest with custom markers.

    Args:
        config: Pytest config object
    """
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests")
