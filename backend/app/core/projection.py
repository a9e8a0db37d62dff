"""Validate a consumption request against a projected policy balance."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from app.core.balance import calculate_balance

if TYPE_CHECKING:
    from datetime import date

    from app.core.amount import Amount
    from app.core.balance import Balance
    from app.core.policy import Policy
    from app.core.time import Period, TimePoint
    from app.core.transaction import Transaction
    from app.models.enums import ConsumptionMode

INSUFFICIENT_BALANCE = "insufficient_balance"
EXCEEDS_MAX = "exceeds_max"
BELOW_MINIMUM = "below_minimum"


@dataclass(frozen=True)
class BalanceDisplay:
    """Flattened balance figures for presentation."""

    available: Amount
    accrued_to_date: Amount
    total_entitlement: Amount
    consumed: Amount
    pending: Amount
    adjustments: Amount
    mode: ConsumptionMode

    @classmethod
    def from_balance(cls, balance: Balance, mode: ConsumptionMode) -> BalanceDisplay:
        return cls(
            available=balance.available_with_mode(mode),
            accrued_to_date=balance.accrued_to_date,
            total_entitlement=balance.total_entitlement,
            consumed=balance.total_consumed,
            pending=balance.pending,
            adjustments=balance.adjustments,
            mode=mode,
        )


@dataclass(frozen=True)
class ProjectionResult:
    balance: Balance
    is_valid: bool
    remaining: Amount
    display: BalanceDisplay
    error: str | None = None


def project(
    transactions: list[Transaction],
    policy: Policy,
    period: Period,
    requested: Amount,
    *,
    as_of: TimePoint | None = None,
    hire_date: date | None = None,
) -> ProjectionResult:
    """Would consuming ``requested`` from ``policy`` in ``period`` be allowed?"""
    balance = calculate_balance(transactions, period, policy.unit, policy.accrual, as_of, hire_date)
    mode = policy.consumption_mode
    display = BalanceDisplay.from_balance(balance, mode)
    remaining = balance.available_with_mode(mode) - requested
    constraints = policy.constraints

    error = None
    if not policy.is_unlimited:
        if not constraints.allow_negative and remaining.is_negative():
            error = INSUFFICIENT_BALANCE
        elif constraints.min_balance is not None and remaining < constraints.min_balance:
            error = BELOW_MINIMUM
        elif constraints.max_balance is not None and balance.current() > constraints.max_balance:
            error = EXCEEDS_MAX

    return ProjectionResult(balance=balance, is_valid=error is None, remaining=remaining, display=display, error=error)
