"""Balance calculation.

A balance is never stored as authoritative state. It is a pure function of
the period's transactions, the policy's accrual schedule, the as-of date and
the entity's hire date, recomputed on every query.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING

from app.core.accrual import total_accrued
from app.core.amount import Amount
from app.core.time import Period, TimePoint
from app.models.enums import ConsumptionMode, TransactionType, Unit

if TYPE_CHECKING:
    from app.core.accrual import AccrualSchedule
    from app.core.transaction import Transaction


@dataclass(frozen=True)
class Balance:
    """Derived balance for one entity/policy/period as of a given instant."""

    period: Period
    accrued_to_date: Amount
    total_entitlement: Amount
    total_consumed: Amount
    pending: Amount
    adjustments: Amount

    @classmethod
    def zero(cls, period: Period, unit: Unit) -> Balance:
        z = Amount.zero(unit)
        return cls(period, z, z, z, z, z)

    @property
    def unit(self) -> Unit:
        return self.accrued_to_date.unit

    def current_accrued(self) -> Amount:
        """Earned so far minus consumed, plus adjustments. Ignores pending."""
        return self.accrued_to_date - self.total_consumed + self.adjustments

    def current(self) -> Amount:
        """Full-period entitlement minus consumed, plus adjustments."""
        return self.total_entitlement - self.total_consumed + self.adjustments

    def available(self) -> Amount:
        return self.available_with_mode(ConsumptionMode.CONSUME_AHEAD)

    def available_with_mode(self, mode: ConsumptionMode) -> Amount:
        if mode == ConsumptionMode.CONSUME_UP_TO_ACCRUED:
            return self.current_accrued() - self.pending
        return self.current() - self.pending

    def can_consume(self, amount: Amount, mode: ConsumptionMode, *, allow_negative: bool = False) -> bool:
        if allow_negative:
            return True
        return not (self.available_with_mode(mode) - amount).is_negative()


def accrual_start(period: Period, hire_date: date | None) -> TimePoint:
    """Accruals begin at the later of the period start and the hire date."""
    if hire_date is not None and hire_date > period.start.date:
        return TimePoint.of(hire_date)
    return period.start


def calculate_balance(
    transactions: list[Transaction],
    period: Period,
    unit: Unit,
    accrual: AccrualSchedule | None = None,
    as_of: TimePoint | None = None,
    hire_date: date | None = None,
) -> Balance:
    """Fold ``transactions`` and ``accrual`` into a Balance for ``period``.

    ``transactions`` must already be filtered to the entity, policy and period.
    ``as_of`` defaults to the period end.
    """
    if as_of is None:
        as_of = period.end

    granted = Amount.zero(unit)
    consumed = Amount.zero(unit)
    pending = Amount.zero(unit)
    adjustments = Amount.zero(unit)

    types_by_id = {tx.id: tx.type for tx in transactions}
    for tx in transactions:
        if tx.type == TransactionType.GRANT:
            granted += tx.delta
        elif tx.type == TransactionType.CONSUMPTION:
            consumed -= tx.delta
        elif tx.type == TransactionType.PENDING:
            pending -= tx.delta
        elif tx.type in (TransactionType.RECONCILIATION, TransactionType.ADJUSTMENT):
            adjustments += tx.delta
        elif tx.type == TransactionType.REVERSAL:
            # A reversed hold releases pending; anything else restores consumed.
            reversed_type = types_by_id.get(tx.reference_id) or tx.metadata.get("reversed_type")
            if reversed_type == TransactionType.PENDING:
                pending -= tx.delta
            else:
                consumed -= tx.delta

    accrued_to_date = granted
    total_entitlement = granted
    if accrual is not None:
        start = accrual_start(period, hire_date)
        until = min(as_of, period.end)
        computed = total_accrued(accrual, start, until, unit) if start <= until else Amount.zero(unit)
        accrued_to_date = granted.max(computed)
        if accrual.is_deterministic():
            total_entitlement = total_accrued(accrual, start, period.end, unit).max(accrued_to_date)
        else:
            total_entitlement = accrued_to_date

    return Balance(
        period=period,
        accrued_to_date=accrued_to_date,
        total_entitlement=total_entitlement,
        total_consumed=consumed,
        pending=pending,
        adjustments=adjustments,
    )
