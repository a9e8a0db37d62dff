# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, Self

from pydantic import BaseModel, Discriminator, Field, Tag, model_validator

from app.models.enums import (
    AccrualFrequency,
    ActionType,
    ConsumptionMode,
    PeriodType,
    TriggerType,
    Unit,
)

# ---------------------------------------------------------------------------
# Document sub-schemas
# ---------------------------------------------------------------------------


class PeriodSettings(BaseModel):
    """How the policy carves time into accounting periods."""

    type: PeriodType = PeriodType.CALENDAR_YEAR
    fiscal_year_start_month: int = Field(default=1, ge=1, le=12)
    rolling_months: int = Field(default=12, ge=1)


class ConstraintSettings(BaseModel):
    allow_negative: bool = False
    max_balance: Decimal | None = None
    min_balance: Decimal | None = None

    @model_validator(mode="after")
    def _validate_bounds(self) -> Self:
        if self.max_balance is not None and self.min_balance is not None and self.min_balance > self.max_balance:
            msg = "min_balance must be <= max_balance"
            raise ValueError(msg)
        return self


class ActionSettings(BaseModel):
    """One reconciliation step."""

    type: ActionType
    max_carryover: Decimal | None = Field(default=None, ge=0)


class RuleSettings(BaseModel):
    trigger: TriggerType = TriggerType.PERIOD_END
    actions: list[ActionSettings] = Field(min_length=1)


class TenureTierSettings(BaseModel):
    """Annual amount that applies once ``after_years`` of service are reached."""

    after_years: int = Field(ge=0)
    annual_amount: Decimal = Field(ge=0)


# ---------------------------------------------------------------------------
# Accrual schedules (discriminated union)
# ---------------------------------------------------------------------------


class YearlyAccrualSettings(BaseModel):
    """Fixed annual amount granted upfront, monthly or daily."""

    kind: Literal["yearly"] = "yearly"
    annual_amount: Decimal = Field(gt=0)
    frequency: AccrualFrequency = AccrualFrequency.MONTHLY


class TenureAccrualSettings(BaseModel):
    """Annual amount stepping up with years of service."""

    kind: Literal["tenure"] = "tenure"
    tiers: list[TenureTierSettings] = Field(min_length=1)
    frequency: AccrualFrequency = AccrualFrequency.MONTHLY
    hire_date: date | None = None


class HoursWorkedAccrualSettings(BaseModel):
    """Earn ``granted_hours`` for every ``per_hours_worked`` hours reported by payroll."""

    kind: Literal["hours_worked"] = "hours_worked"
    granted_hours: Decimal = Field(gt=0)
    per_hours_worked: Decimal = Field(gt=0)
    hours_per_day: Decimal | None = Field(default=None, gt=0)


def _accrual_discriminator(v: Any) -> str:
    """Discriminate accrual settings by their ``kind`` tag."""
    kind = v.get("kind", "") if isinstance(v, dict) else getattr(v, "kind", "")
    if kind in ("yearly", "tenure", "hours_worked"):
        return kind
    return "unknown"


AccrualSettings = Annotated[
    Annotated[YearlyAccrualSettings, Tag("yearly")]
    | Annotated[TenureAccrualSettings, Tag("tenure")]
    | Annotated[HoursWorkedAccrualSettings, Tag("hours_worked")],
    Discriminator(_accrual_discriminator),
]


class PolicyDocument(BaseModel):
    """Serialized policy configuration stored in ``resource_policy.config_json``."""

    resource_type: str = Field(min_length=1, max_length=100)
    unit: Unit | None = None
    period: PeriodSettings = Field(default_factory=PeriodSettings)
    consumption_mode: ConsumptionMode = ConsumptionMode.CONSUME_AHEAD
    constraints: ConstraintSettings = Field(default_factory=ConstraintSettings)
    reconciliation_rules: list[RuleSettings] = []
    is_unlimited: bool = False
    unique_per_time_point: bool | None = None
    accrual: AccrualSettings | None = None

    @model_validator(mode="after")
    def _validate_unlimited(self) -> Self:
        if self.is_unlimited and self.accrual is not None:
            msg = "Unlimited policies cannot define an accrual schedule"
            raise ValueError(msg)
        return self


# ---------------------------------------------------------------------------
# API request / response schemas
# ---------------------------------------------------------------------------


class CreatePolicyRequest(BaseModel):
    """Request body for creating a new policy."""

    key: str = Field(min_length=1, max_length=255)
    name: str = Field(min_length=1, max_length=255)
    config: PolicyDocument


class CreatePresetRequest(BaseModel):
    """Request body for instantiating a preset policy."""

    key: str | None = Field(default=None, min_length=1, max_length=255)
    name: str | None = Field(default=None, min_length=1, max_length=255)


class PolicyResponse(BaseModel):
    """Response schema for a stored policy."""

    id: uuid.UUID
    key: str
    name: str
    resource_type: str
    config: PolicyDocument
    created_at: datetime


class PolicyListResponse(BaseModel):
    """Paginated list of policies."""

    items: list[PolicyResponse]
    total: int
