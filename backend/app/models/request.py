# ruff: noqa: TC003
from __future__ import annotations

from datetime import date, datetime
from typing import Any

import sqlalchemy as sa
from sqlmodel import Field

from app.models.base import TimestampMixin, UUIDBase, amount_field
from app.models.enums import RequestStatus


class ResourceRequest(UUIDBase, TimestampMixin, table=True):
    """A consumption request with approval workflow state.

    ``transaction_ids`` lists the pending (or, once approved, consumption)
    transactions the request currently holds in the ledger.
    """

    __tablename__ = "resource_request"
    __table_args__ = (
        sa.Index("ix_request_entity_status", "entity_id", "status"),
        sa.UniqueConstraint("entity_id", "idempotency_key", name="uq_request_idempotency"),
    )

    entity_id: str = Field(max_length=255, index=True)
    resource_type: str = Field(max_length=100)
    start_date: date
    end_date: date
    amount_per_day: str = amount_field()
    total_amount: str = amount_field()
    unit: str = Field(max_length=20)
    reason: str | None = None
    status: str = Field(default=RequestStatus.PENDING, max_length=50, index=True)
    requires_approval: bool = Field(default=False)
    allocations_json: list[dict[str, Any]] | None = Field(default=None, sa_type=sa.JSON)
    transaction_ids: list[str] | None = Field(default=None, sa_type=sa.JSON)
    decided_at: datetime | None = Field(
        default=None,
        sa_type=sa.DateTime(timezone=True),  # ty: ignore[invalid-argument-type]
    )
    decided_by: str | None = Field(default=None, max_length=255)
    decision_note: str | None = None
    idempotency_key: str | None = Field(default=None, max_length=255)
