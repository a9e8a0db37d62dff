# ruff: noqa: TC003
from __future__ import annotations

from datetime import date, datetime

import sqlalchemy as sa
from sqlmodel import Field

from app.models.base import UUIDBase, amount_field, utc_timestamp_field


class BalanceSnapshot(UUIDBase, table=True):
    """Point-in-time copy of a balance, written when a period is closed.

    Informational only: balances are always recomputed from the ledger.
    """

    __tablename__ = "balance_snapshot"
    __table_args__ = (
        sa.UniqueConstraint("entity_id", "policy_key", "period_start", "period_end", name="uq_balance_snapshot_period"),
    )

    entity_id: str = Field(max_length=255, index=True)
    policy_key: str = Field(max_length=255)
    period_start: date
    period_end: date
    unit: str = Field(max_length=20)
    accrued_to_date: str = amount_field()
    total_entitlement: str = amount_field()
    total_consumed: str = amount_field()
    pending: str = amount_field()
    adjustments: str = amount_field()
    current_accrued: str = amount_field()
    taken_at: datetime = utc_timestamp_field()
