# ruff: noqa: TC003
from __future__ import annotations

from datetime import date, datetime
from typing import Any

import sqlalchemy as sa
from sqlmodel import Field

from app.models.base import UUIDBase, amount_field, utc_timestamp_field


class LedgerTransaction(UUIDBase, table=True):
    """Append-only row for one immutable ledger transaction.

    Amounts are stored as decimal strings next to their unit so no precision is
    lost on engines without a native decimal type.
    """

    __tablename__ = "ledger_transaction"
    __table_args__ = (
        sa.Index("ix_ledger_entity_policy_day", "entity_id", "policy_id", "effective_day"),
        sa.Index("ix_ledger_entity_day", "entity_id", "effective_day"),
    )

    tx_id: str = Field(max_length=255, unique=True)
    entity_id: str = Field(max_length=255, index=True)
    policy_id: str = Field(max_length=255, index=True)
    resource_type: str = Field(max_length=100)
    tx_type: str = Field(max_length=50)
    amount: str = amount_field()
    unit: str = Field(max_length=20)
    effective_at: datetime = Field(sa_type=sa.DateTime(timezone=True))  # ty: ignore[invalid-argument-type]
    effective_day: date
    granularity: str = Field(default="day", max_length=20)
    reference_id: str = Field(default="", max_length=255, index=True)
    reason: str = Field(default="")
    idempotency_key: str | None = Field(default=None, max_length=255, unique=True)
    reversed_transaction_id: str | None = Field(default=None, max_length=255, unique=True)
    metadata_json: dict[str, Any] | None = Field(default=None, sa_type=sa.JSON)
    created_at: datetime = utc_timestamp_field()


class ConsumptionDayClaim(UUIDBase, table=True):
    """Occupancy marker backing the one-consumption-per-day rule.

    A claim is written with every consumption or pending transaction on a
    day-exclusive resource and removed when that transaction is reversed. The
    ledger rows themselves are never touched.
    """

    __tablename__ = "consumption_day_claim"
    __table_args__ = (
        sa.UniqueConstraint("entity_id", "resource_type", "day", name="uq_consumption_day_claim"),
    )

    entity_id: str = Field(max_length=255)
    resource_type: str = Field(max_length=100)
    day: date
    transaction_id: str = Field(max_length=255, unique=True)
