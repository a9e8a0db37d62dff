"""Calendar points and accounting periods."""

from __future__ import annotations

from calendar import monthrange
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from functools import total_ordering

from app.models.enums import Granularity, PeriodType

_GRANULARITY_RANK = {Granularity.DAY: 0, Granularity.HOUR: 1, Granularity.MINUTE: 2}


def add_months(d: date, months: int) -> date:
    """Shift ``d`` by whole months, clamping the day to the target month's length."""
    month_index = d.year * 12 + (d.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    _, days_in_month = monthrange(year, month)
    return d.replace(year=year, month=month, day=min(d.day, days_in_month))


def months_between(start: date, end: date) -> int:
    """Whole calendar months from ``start`` to ``end`` (ignores days)."""
    return (end.year - start.year) * 12 + (end.month - start.month)


# ---------------------------------------------------------------------------
# TimePoint
# ---------------------------------------------------------------------------


@total_ordering
@dataclass(frozen=True, eq=False)
class TimePoint:
    """A UTC instant with the granularity it is meaningful at.

    Day-granular points (time-off) compare equal for any time on the same
    calendar day; finer points (rewards events) compare by hour or minute.
    """

    at: datetime
    granularity: Granularity = Granularity.DAY

    def __post_init__(self) -> None:
        at = self.at
        if at.tzinfo is None:
            at = at.replace(tzinfo=UTC)
        object.__setattr__(self, "at", at.astimezone(UTC))

    @classmethod
    def day(cls, year: int, month: int, day: int) -> TimePoint:
        return cls(datetime(year, month, day, tzinfo=UTC), Granularity.DAY)

    @classmethod
    def of(cls, value: date | datetime | TimePoint, granularity: Granularity | None = None) -> TimePoint:
        """Build a TimePoint from a date, datetime or another TimePoint."""
        if isinstance(value, TimePoint):
            return value if granularity is None else cls(value.at, granularity)
        if isinstance(value, datetime):
            return cls(value, granularity or Granularity.MINUTE)
        return cls(datetime(value.year, value.month, value.day, tzinfo=UTC), granularity or Granularity.DAY)

    @classmethod
    def today(cls) -> TimePoint:
        return cls.of(datetime.now(UTC).date())

    def _normalized(self, granularity: Granularity) -> datetime:
        if granularity == Granularity.DAY:
            return self.at.replace(hour=0, minute=0, second=0, microsecond=0)
        if granularity == Granularity.HOUR:
            return self.at.replace(minute=0, second=0, microsecond=0)
        return self.at

    def _key(self, other: TimePoint) -> tuple[datetime, datetime]:
        coarser = min(self.granularity, other.granularity, key=_GRANULARITY_RANK.__getitem__)
        return self._normalized(coarser), other._normalized(coarser)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TimePoint):
            return NotImplemented
        mine, theirs = self._key(other)
        return mine == theirs

    def __lt__(self, other: TimePoint) -> bool:
        mine, theirs = self._key(other)
        return mine < theirs

    def __hash__(self) -> int:
        return hash(self._normalized(Granularity.DAY))

    @property
    def date(self) -> date:
        return self.at.date()

    @property
    def year(self) -> int:
        return self.at.year

    @property
    def month(self) -> int:
        return self.at.month

    def add_days(self, days: int) -> TimePoint:
        return TimePoint(self.at + timedelta(days=days), self.granularity)

    def add_months(self, months: int) -> TimePoint:
        shifted = add_months(self.at.date(), months)
        return TimePoint(self.at.replace(year=shifted.year, month=shifted.month, day=shifted.day), self.granularity)

    def add_years(self, years: int) -> TimePoint:
        return self.add_months(12 * years)

    def start_of_month(self) -> TimePoint:
        return TimePoint.day(self.year, self.month, 1)

    def start_of_year(self) -> TimePoint:
        return TimePoint.day(self.year, 1, 1)

    def __str__(self) -> str:
        if self.granularity == Granularity.DAY:
            return self.at.strftime("%Y-%m-%d")
        if self.granularity == Granularity.HOUR:
            return self.at.strftime("%Y-%m-%d %H:00")
        return self.at.isoformat()


# ---------------------------------------------------------------------------
# Period
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Period:
    """A closed-inclusive range of calendar days ``[start, end]``."""

    start: TimePoint
    end: TimePoint

    @classmethod
    def of(cls, start: date, end: date) -> Period:
        return cls(TimePoint.of(start), TimePoint.of(end))

    def contains(self, point: TimePoint) -> bool:
        return self.start.date <= point.date <= self.end.date

    def days(self) -> int:
        """Number of calendar days covered, both ends included."""
        return (self.end.date - self.start.date).days + 1

    def elapsed_fraction(self, full: Period) -> Decimal:
        """Share of ``full`` covered by this period, clamped to ``[0, 1]``."""
        if full.days() <= 0:
            return Decimal(1)
        fraction = Decimal(self.days()) / Decimal(full.days())
        return max(Decimal(0), min(Decimal(1), fraction))

    def _month_span(self) -> int | None:
        """Whole months covered, or None when the period is not month-shaped."""
        after_end = self.end.date + timedelta(days=1)
        months = months_between(self.start.date, after_end)
        if months > 0 and add_months(self.start.date, months) == after_end:
            return months
        return None

    def next_period(self) -> Period:
        """The immediately following period of the same shape."""
        start = self.end.date + timedelta(days=1)
        months = self._month_span()
        if months is not None:
            return Period.of(start, add_months(start, months) - timedelta(days=1))
        return Period.of(start, start + timedelta(days=self.days() - 1))

    def previous_period(self) -> Period:
        end = self.start.date - timedelta(days=1)
        months = self._month_span()
        if months is not None:
            return Period.of(add_months(self.start.date, -months), end)
        return Period.of(end - timedelta(days=self.days() - 1), end)

    def __str__(self) -> str:
        return f"{self.start}..{self.end}"


@dataclass(frozen=True)
class PeriodConfig:
    """How a policy carves time into accounting periods."""

    type: PeriodType = PeriodType.CALENDAR_YEAR
    fiscal_year_start_month: int = 1
    rolling_months: int = 12

    def period_for(self, on: date, hire_date: date | None = None) -> Period:
        """Return the period that contains ``on``."""
        if self.type == PeriodType.FISCAL_YEAR:
            return self._fiscal_year(on)
        if self.type == PeriodType.ANNIVERSARY and hire_date is not None:
            return self._anniversary(on, hire_date)
        if self.type == PeriodType.ROLLING:
            start = add_months(on, -self.rolling_months) + timedelta(days=1)
            return Period.of(start, on)
        return Period.of(date(on.year, 1, 1), date(on.year, 12, 31))

    def _fiscal_year(self, on: date) -> Period:
        start_year = on.year if on.month >= self.fiscal_year_start_month else on.year - 1
        start = date(start_year, self.fiscal_year_start_month, 1)
        return Period.of(start, add_months(start, 12) - timedelta(days=1))

    @staticmethod
    def _anniversary(on: date, hire_date: date) -> Period:
        years = on.year - hire_date.year
        start = add_months(hire_date, 12 * years)
        if start > on:
            start = add_months(hire_date, 12 * (years - 1))
        return Period.of(start, add_months(start, 12) - timedelta(days=1))
