# ruff: noqa: TC001, TC003
from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel

from app.models.enums import ReconciliationRunStatus, TriggerType, Unit
from app.schemas.assignment import AssignmentResponse


class RunReconciliationRequest(BaseModel):
    """Reconcile every period that ended before ``as_of`` (defaults to today)."""

    as_of: date | None = None


class ReconciliationRunResponse(BaseModel):
    """One reconciliation of an (entity, policy, period)."""

    id: uuid.UUID
    entity_id: str
    policy_key: str
    period_start: date
    period_end: date
    trigger: TriggerType
    status: ReconciliationRunStatus
    carried_over: Decimal
    expired: Decimal
    unit: Unit
    next_policy_key: str | None
    error: str | None
    created_at: datetime
    completed_at: datetime | None


class ReconciliationRunListResponse(BaseModel):
    """Paginated list of reconciliation runs."""

    items: list[ReconciliationRunResponse]
    total: int


class ReconciliationBatchResponse(BaseModel):
    """Counters from one scheduler pass."""

    as_of: date
    processed: int
    reconciled: int
    skipped: int
    errors: int


class PolicyChangeResponse(BaseModel):
    """Outcome of moving an entity between policies."""

    closed: AssignmentResponse
    opened: AssignmentResponse
    run: ReconciliationRunResponse
