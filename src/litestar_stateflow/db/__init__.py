"""Database persistence layer for litestar-stateflow.

This module provides SQLAlchemy models and repositories for persisting
workflow definitions, instances, consent decisions and the audit trail.
"""

from __future__ import annotations

from litestar_stateflow.db.models import (
    AuditRecordModel,
    ConsentRecordModel,
    WorkflowDefinitionModel,
    WorkflowInstanceModel,
)
from litestar_stateflow.db.repositories import (
    AuditRecordRepository,
    ConsentRecordRepository,
    WorkflowDefinitionRepository,
    WorkflowInstanceRepository,
)

__all__ = [
    "AuditRecordModel",
    "AuditRecordRepository",
    "ConsentRecordModel",
    "ConsentRecordRepository",
    "WorkflowDefinitionModel",
    "WorkflowDefinitionRepository",
    "WorkflowInstanceModel",
    "WorkflowInstanceRepository",
]
