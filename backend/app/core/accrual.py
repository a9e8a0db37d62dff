"""Accrual schedules.

An accrual schedule turns a policy's rate definition into the entitlement
events that fall inside a date range. Events are never stored; balances
regenerate them on every query.

Three variants share the same contract (``generate_accruals`` and
``is_deterministic``) and are discriminated by their ``kind`` tag:

* ``YearlyAccrual``: a fixed annual amount spread upfront, monthly or daily.
* ``TenureAccrual``: like yearly, but the annual amount steps up with years of
  service.
* ``HoursWorkedAccrual``: one event per observed payroll record. Future hours
  are unknown, so the schedule is non-deterministic.

Monthly events land on the 1st of the month. A range that starts after the
1st excludes that month, which is what prorates mid-month hires.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import calendar
from datetime import date, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Literal

from app.core.amount import Amount, quantize, sum_amounts, to_decimal
from app.core.time import TimePoint
from app.models.enums import AccrualFrequency, Unit

if TYPE_CHECKING:
    from collections.abc import Callable

MONTHS_PER_YEAR = 12
MINUTES_PER_HOUR = 60


@dataclass(frozen=True)
class AccrualEvent:
    """A single computed entitlement occurrence."""

    at: TimePoint
    amount: Amount
    reason: str


# ---------------------------------------------------------------------------
# Frequency mechanics (shared by yearly and tenure schedules)
# ---------------------------------------------------------------------------


def _share(annual: Decimal, index: int, parts: int) -> Decimal:
    """The ``index``-th of ``parts`` shares of ``annual``.

    Shares telescope, so any run of consecutive shares sums to the exact
    quantized difference and a full year sums to ``annual`` itself.
    """
    return quantize(annual * (index + 1) / parts) - quantize(annual * index / parts)


def _frequency_events(
    start: date,
    end: date,
    frequency: AccrualFrequency,
    rate_for: Callable[[date], Decimal],
    unit: Unit,
    reason: str,
) -> list[AccrualEvent]:
    events: list[AccrualEvent] = []
    if start > end:
        return events

    if frequency == AccrualFrequency.UPFRONT:
        for year in range(start.year, end.year + 1):
            grant_date = date(year, 1, 1)
            if start <= grant_date <= end:
                annual = rate_for(grant_date)
                if annual > 0:
                    events.append(AccrualEvent(TimePoint.of(grant_date), Amount(annual, unit), reason))
        return events

    if frequency == AccrualFrequency.DAILY:
        current = start
        while current <= end:
            annual = rate_for(current)
            if annual > 0:
                days_in_year = 366 if calendar.isleap(current.year) else 365
                share = _share(annual, current.timetuple().tm_yday - 1, days_in_year)
                events.append(AccrualEvent(TimePoint.of(current), Amount(share, unit), reason))
            current += timedelta(days=1)
        return events

    current = date(start.year, start.month, 1)
    while current <= end:
        if current >= start:
            annual = rate_for(current)
            if annual > 0:
                share = _share(annual, current.month - 1, MONTHS_PER_YEAR)
                events.append(AccrualEvent(TimePoint.of(current), Amount(share, unit), reason))
        current = date(current.year + current.month // 12, current.month % 12 + 1, 1)
    return events


# ---------------------------------------------------------------------------
# Variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class YearlyAccrual:
    """Fixed annual amount, e.g. "20 days per year, monthly"."""

    annual_amount: Decimal
    frequency: AccrualFrequency = AccrualFrequency.MONTHLY
    unit: Unit = Unit.DAYS
    kind: Literal["yearly"] = "yearly"

    def generate_accruals(self, start: TimePoint, end: TimePoint) -> list[AccrualEvent]:
        annual = to_decimal(self.annual_amount)
        return _frequency_events(
            start.date, end.date, self.frequency, lambda _: annual, self.unit, f"{self.frequency} accrual"
        )

    def is_deterministic(self) -> bool:
        return True


@dataclass(frozen=True)
class TenureTier:
    after_years: int
    annual_amount: Decimal


@dataclass(frozen=True)
class TenureAccrual:
    """Annual amount that steps up with years of service."""

    hire_date: date
    tiers: tuple[TenureTier, ...]
    frequency: AccrualFrequency = AccrualFrequency.MONTHLY
    unit: Unit = Unit.DAYS
    kind: Literal["tenure"] = "tenure"

    def years_of_service(self, on: date) -> int:
        years = on.year - self.hire_date.year
        if on.month < self.hire_date.month:
            years -= 1
        return years

    def annual_rate(self, on: date) -> Decimal:
        """Rate of the highest tier whose threshold is met on ``on``."""
        years = self.years_of_service(on)
        rate = Decimal(0)
        for tier in sorted(self.tiers, key=lambda t: t.after_years):
            if years >= tier.after_years:
                rate = to_decimal(tier.annual_amount)
        return rate

    def generate_accruals(self, start: TimePoint, end: TimePoint) -> list[AccrualEvent]:
        return _frequency_events(start.date, end.date, self.frequency, self.annual_rate, self.unit, "tenure accrual")

    def is_deterministic(self) -> bool:
        return True


@dataclass(frozen=True)
class PayrollRecord:
    """Hours reported by payroll for one pay date."""

    on: date
    hours_worked: Decimal


@dataclass(frozen=True)
class HoursWorkedAccrual:
    """Earn ``granted_hours`` for every ``per_hours_worked`` hours reported."""

    granted_hours: Decimal
    per_hours_worked: Decimal
    records: tuple[PayrollRecord, ...] = field(default_factory=tuple)
    unit: Unit = Unit.HOURS
    hours_per_day: Decimal = Decimal(8)
    kind: Literal["hours_worked"] = "hours_worked"

    def with_records(self, records: list[PayrollRecord]) -> HoursWorkedAccrual:
        return replace(self, records=tuple(records))

    def _convert(self, hours: Decimal) -> Decimal:
        if self.unit == Unit.DAYS:
            return hours / to_decimal(self.hours_per_day)
        if self.unit == Unit.MINUTES:
            return hours * MINUTES_PER_HOUR
        return hours

    def generate_accruals(self, start: TimePoint, end: TimePoint) -> list[AccrualEvent]:
        ratio = to_decimal(self.granted_hours) / to_decimal(self.per_hours_worked)
        events: list[AccrualEvent] = []
        for record in sorted(self.records, key=lambda r: r.on):
            if not start.date <= record.on <= end.date:
                continue
            earned = quantize(self._convert(to_decimal(record.hours_worked) * ratio))
            events.append(AccrualEvent(TimePoint.of(record.on), Amount(earned, self.unit), "hours worked accrual"))
        return events

    def is_deterministic(self) -> bool:
        return False


AccrualSchedule = YearlyAccrual | TenureAccrual | HoursWorkedAccrual


def total_accrued(schedule: AccrualSchedule, start: TimePoint, end: TimePoint, unit: Unit) -> Amount:
    """Sum of every event ``schedule`` generates in ``[start, end]``."""
    return sum_amounts([event.amount for event in schedule.generate_accruals(start, end)], unit)
