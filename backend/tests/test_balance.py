"""Tests for the balance fold and consumption projection."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from app.core.accrual import YearlyAccrual
from app.core.amount import Amount
from app.core.balance import Balance, calculate_balance
from app.core.policy import Constraints, Policy
from app.core.projection import BELOW_MINIMUM, EXCEEDS_MAX, INSUFFICIENT_BALANCE, BalanceDisplay, project
from app.core.time import Period, TimePoint
from app.core.transaction import Transaction
from app.models.enums import ConsumptionMode, TransactionType, Unit

YEAR = Period.of(date(2025, 1, 1), date(2025, 12, 31))
ACCRUAL = YearlyAccrual(annual_amount=Decimal(24))


def _days(value: int | str) -> Amount:
    return Amount.of(value, Unit.DAYS)


def _tx(tx_type: TransactionType, delta: int | str, on: date = date(2025, 3, 3), **kwargs: object) -> Transaction:
    return Transaction(
        entity_id="emp-1",
        policy_id="pto",
        resource_type="pto",
        effective_at=TimePoint.of(on),
        delta=_days(delta),
        type=tx_type,
        **kwargs,  # type: ignore[arg-type]
    )


# ---------------------------------------------------------------------------
# Balance fold
# ---------------------------------------------------------------------------


class TestCalculateBalance:
    def test_accrued_minus_consumed(self) -> None:
        consumed = _tx(TransactionType.CONSUMPTION, -10)
        balance = calculate_balance([consumed], YEAR, Unit.DAYS, ACCRUAL, as_of=YEAR.end)
        assert balance.accrued_to_date == _days(24)
        assert balance.current_accrued() == _days(14)

    def test_consume_ahead_sees_full_year(self) -> None:
        balance = calculate_balance([], YEAR, Unit.DAYS, ACCRUAL, as_of=TimePoint.day(2025, 3, 15))
        assert balance.accrued_to_date == _days(6)
        assert balance.total_entitlement == _days(24)
        assert balance.available_with_mode(ConsumptionMode.CONSUME_AHEAD) == _days(24)
        assert balance.available_with_mode(ConsumptionMode.CONSUME_UP_TO_ACCRUED) == _days(6)

    def test_mode_never_makes_up_to_accrued_larger(self) -> None:
        txs = [_tx(TransactionType.PENDING, -2), _tx(TransactionType.ADJUSTMENT, 1)]
        for month in range(1, 13):
            balance = calculate_balance(txs, YEAR, Unit.DAYS, ACCRUAL, as_of=TimePoint.day(2025, month, 1))
            ahead = balance.available_with_mode(ConsumptionMode.CONSUME_AHEAD)
            accrued = balance.available_with_mode(ConsumptionMode.CONSUME_UP_TO_ACCRUED)
            assert accrued <= ahead

    def test_pending_reduces_available_not_current(self) -> None:
        pending = _tx(TransactionType.PENDING, -3)
        balance = calculate_balance([pending], YEAR, Unit.DAYS, ACCRUAL, as_of=YEAR.end)
        assert balance.pending == _days(3)
        assert balance.current() == _days(24)
        assert balance.available() == _days(21)

    def test_reversed_pending_releases_hold(self) -> None:
        pending = _tx(TransactionType.PENDING, -3)
        balance = calculate_balance([pending, pending.reversal()], YEAR, Unit.DAYS, ACCRUAL, as_of=YEAR.end)
        assert balance.pending == Amount.zero(Unit.DAYS)
        assert balance.total_consumed == Amount.zero(Unit.DAYS)

    def test_reversed_consumption_restores_balance(self) -> None:
        consumed = _tx(TransactionType.CONSUMPTION, -4)
        balance = calculate_balance([consumed, consumed.reversal()], YEAR, Unit.DAYS, ACCRUAL, as_of=YEAR.end)
        assert balance.total_consumed == Amount.zero(Unit.DAYS)
        assert balance.current_accrued() == _days(24)

    def test_reversal_without_its_target_uses_metadata(self) -> None:
        pending = _tx(TransactionType.PENDING, -3)
        balance = calculate_balance([pending.reversal()], YEAR, Unit.DAYS, ACCRUAL, as_of=YEAR.end)
        assert balance.pending == _days(-3)
        assert balance.total_consumed == Amount.zero(Unit.DAYS)

    def test_adjustments_and_reconciliation_count_as_adjustments(self) -> None:
        txs = [_tx(TransactionType.ADJUSTMENT, 5), _tx(TransactionType.RECONCILIATION, 2, on=date(2025, 1, 1))]
        balance = calculate_balance(txs, YEAR, Unit.DAYS, ACCRUAL, as_of=YEAR.end)
        assert balance.adjustments == _days(7)
        assert balance.current_accrued() == _days(31)

    def test_grants_without_schedule(self) -> None:
        grant = _tx(TransactionType.GRANT, 10)
        balance = calculate_balance([grant], YEAR, Unit.DAYS)
        assert balance.accrued_to_date == _days(10)
        assert balance.total_entitlement == _days(10)

    def test_grants_are_subsumed_by_a_schedule(self) -> None:
        grant = _tx(TransactionType.GRANT, 2, on=date(2025, 1, 1))
        balance = calculate_balance([grant], YEAR, Unit.DAYS, ACCRUAL, as_of=TimePoint.day(2025, 2, 15))
        assert balance.accrued_to_date == _days(4)

    def test_zero(self) -> None:
        balance = Balance.zero(YEAR, Unit.POINTS)
        assert balance.available() == Amount.zero(Unit.POINTS)
        assert balance.unit == Unit.POINTS

    def test_can_consume(self) -> None:
        balance = calculate_balance([], YEAR, Unit.DAYS, ACCRUAL, as_of=YEAR.end)
        assert balance.can_consume(_days(24), ConsumptionMode.CONSUME_AHEAD)
        assert not balance.can_consume(_days(25), ConsumptionMode.CONSUME_AHEAD)
        assert balance.can_consume(_days(25), ConsumptionMode.CONSUME_AHEAD, allow_negative=True)


# ---------------------------------------------------------------------------
# Projection
# ---------------------------------------------------------------------------


def _policy(**kwargs: object) -> Policy:
    return Policy(
        id="pto", name="PTO", resource_type="pto", unit=Unit.DAYS, accrual=ACCRUAL, **kwargs  # type: ignore[arg-type]
    )


class TestProjection:
    def test_valid_request(self) -> None:
        result = project([], _policy(), YEAR, _days(5), as_of=TimePoint.day(2025, 3, 1))
        assert result.is_valid
        assert result.error is None
        assert result.remaining == _days(19)

    def test_insufficient_balance(self) -> None:
        result = project([], _policy(), YEAR, _days(25), as_of=TimePoint.day(2025, 3, 1))
        assert not result.is_valid
        assert result.error == INSUFFICIENT_BALANCE
        assert result.remaining == _days(-1)

    def test_up_to_accrued_mode(self) -> None:
        policy = _policy(consumption_mode=ConsumptionMode.CONSUME_UP_TO_ACCRUED)
        result = project([], policy, YEAR, _days(8), as_of=TimePoint.day(2025, 3, 1))
        assert result.error == INSUFFICIENT_BALANCE

    def test_negative_allowed_down_to_minimum(self) -> None:
        policy = _policy(constraints=Constraints(allow_negative=True, min_balance=_days(-3)))
        assert project([], policy, YEAR, _days(26), as_of=YEAR.end).is_valid
        result = project([], policy, YEAR, _days(28), as_of=YEAR.end)
        assert result.error == BELOW_MINIMUM

    def test_exceeds_max(self) -> None:
        policy = _policy(constraints=Constraints(max_balance=_days(20)))
        result = project([], policy, YEAR, _days(1), as_of=YEAR.end)
        assert result.error == EXCEEDS_MAX

    def test_unlimited_is_always_valid(self) -> None:
        policy = Policy(id="unl", name="Unlimited", resource_type="pto", unit=Unit.DAYS, is_unlimited=True)
        assert project([], policy, YEAR, _days(500)).is_valid

    def test_display(self) -> None:
        balance = calculate_balance([_tx(TransactionType.PENDING, -2)], YEAR, Unit.DAYS, ACCRUAL, as_of=YEAR.end)
        display = BalanceDisplay.from_balance(balance, ConsumptionMode.CONSUME_AHEAD)
        assert display.available == _days(22)
        assert display.pending == _days(2)
        assert display.mode == ConsumptionMode.CONSUME_AHEAD
