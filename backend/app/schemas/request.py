# ruff: noqa: TC001, TC003
from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Self

from pydantic import BaseModel, Field, model_validator

from app.models.enums import RequestStatus, Unit

# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------


class SubmitRequestPayload(BaseModel):
    """Request body for consuming a resource over one or more days.

    ``amount_per_day`` is drawn on every counted day in ``[start_date, end_date]``.
    Weekends are skipped for time-off resources unless ``include_weekends`` is set.
    """

    resource_type: str = Field(min_length=1, max_length=100)
    start_date: date
    end_date: date
    amount_per_day: Decimal = Field(default=Decimal(1), gt=0)
    include_weekends: bool = False
    reason: str | None = Field(default=None, max_length=1000)
    idempotency_key: str | None = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def _validate_dates(self) -> Self:
        if self.end_date < self.start_date:
            msg = "end_date must be >= start_date"
            raise ValueError(msg)
        return self


class DecisionPayload(BaseModel):
    """Request body for approve/reject/cancel actions."""

    note: str | None = Field(default=None, max_length=1000)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class AllocationResponse(BaseModel):
    """The share of a request drawn from one policy."""

    policy_key: str
    assignment_id: str
    amount: Decimal
    requires_approval: bool


class RequestResponse(BaseModel):
    id: uuid.UUID
    entity_id: str
    resource_type: str
    start_date: date
    end_date: date
    amount_per_day: Decimal
    total_amount: Decimal
    unit: Unit
    reason: str | None
    status: RequestStatus
    requires_approval: bool
    allocations: list[AllocationResponse]
    transaction_ids: list[str]
    decided_at: datetime | None
    decided_by: str | None
    decision_note: str | None
    idempotency_key: str | None
    created_at: datetime


class RequestListResponse(BaseModel):
    """Paginated list of resource requests."""

    items: list[RequestResponse]
    total: int
