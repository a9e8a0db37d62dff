# ruff: noqa: TC001, TC003
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Self

from pydantic import BaseModel, Field, model_validator

from app.models.enums import ConsumptionMode, TransactionType, Unit

# ---------------------------------------------------------------------------
# Balance response schemas
# ---------------------------------------------------------------------------


class PolicyBalanceResponse(BaseModel):
    """Balance of one policy within an entity's resource pool."""

    policy_key: str
    assignment_id: str
    consumption_priority: int
    period_start: date
    period_end: date
    unit: Unit
    mode: ConsumptionMode
    is_unlimited: bool
    available: Decimal | None  # None for unlimited policies
    accrued_to_date: Decimal
    total_entitlement: Decimal
    consumed: Decimal
    pending: Decimal
    adjustments: Decimal
    current_accrued: Decimal


class ResourceBalanceResponse(BaseModel):
    """All policy balances of one resource type for an entity."""

    entity_id: str
    resource_type: str
    unit: Unit
    as_of: date
    is_unlimited: bool
    total_available: Decimal | None
    policies: list[PolicyBalanceResponse]


# ---------------------------------------------------------------------------
# Projection schemas
# ---------------------------------------------------------------------------


class ProjectionResponse(BaseModel):
    """Outcome of checking a prospective consumption against one policy."""

    policy_key: str
    requested: Decimal
    remaining: Decimal
    is_valid: bool
    error: str | None
    balance: PolicyBalanceResponse


# ---------------------------------------------------------------------------
# Ledger response schemas
# ---------------------------------------------------------------------------


class TransactionResponse(BaseModel):
    """A single ledger transaction."""

    id: str
    entity_id: str
    policy_id: str
    resource_type: str
    type: TransactionType
    amount: Decimal
    unit: Unit
    effective_at: datetime
    reference_id: str
    reason: str
    idempotency_key: str | None
    metadata: dict[str, Any]


class LedgerListResponse(BaseModel):
    """Ledger transactions for an entity."""

    items: list[TransactionResponse]
    total: int


# ---------------------------------------------------------------------------
# Adjustment / grant request schemas
# ---------------------------------------------------------------------------


class CreateAdjustmentRequest(BaseModel):
    """Request body for creating an admin balance adjustment."""

    policy_key: str = Field(min_length=1, max_length=255)
    amount: Decimal = Field(description="Signed amount: positive to add, negative to deduct")
    effective_date: date | None = None
    reason: str = Field(min_length=1, max_length=1000)
    idempotency_key: str | None = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def _validate_amount(self) -> Self:
        if self.amount == 0:
            msg = "amount must not be zero"
            raise ValueError(msg)
        return self


class CreateGrantRequest(BaseModel):
    """Credit a policy directly, or from hours reported by payroll."""

    policy_key: str = Field(min_length=1, max_length=255)
    amount: Decimal | None = Field(default=None, gt=0)
    hours_worked: Decimal | None = Field(default=None, gt=0)
    effective_date: date | None = None
    reason: str = Field(default="", max_length=1000)
    idempotency_key: str | None = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def _validate_source(self) -> Self:
        if (self.amount is None) == (self.hours_worked is None):
            msg = "Exactly one of amount or hours_worked must be set"
            raise ValueError(msg)
        return self
