# ruff: noqa: TC003
from __future__ import annotations

from datetime import date, datetime

import sqlalchemy as sa
from sqlmodel import Field

from app.models.base import TimestampMixin, UUIDBase, amount_field
from app.models.enums import ReconciliationRunStatus


class ReconciliationRun(UUIDBase, TimestampMixin, table=True):
    """One reconciliation of (entity, policy, period); the unique key is the replay guard."""

    __tablename__ = "reconciliation_run"
    __table_args__ = (
        sa.UniqueConstraint("entity_id", "policy_key", "period_start", "period_end", name="uq_reconciliation_run"),
    )

    entity_id: str = Field(max_length=255, index=True)
    policy_key: str = Field(max_length=255, index=True)
    period_start: date
    period_end: date
    trigger: str = Field(max_length=50)
    status: str = Field(default=ReconciliationRunStatus.RUNNING, max_length=50, index=True)
    carried_over: str = amount_field("0")
    expired: str = amount_field("0")
    unit: str = Field(max_length=20)
    next_policy_key: str | None = Field(default=None, max_length=255)
    error: str | None = None
    completed_at: datetime | None = Field(
        default=None,
        sa_type=sa.DateTime(timezone=True),  # ty: ignore[invalid-argument-type]
    )
