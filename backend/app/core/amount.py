"""Exact, unit-tagged quantities.

Every balance figure in the system is an ``Amount``: a ``Decimal`` value with a
``Unit``. Arithmetic and ordering are only defined between amounts of the same
unit; anything else raises ``UnitMismatchError`` immediately.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal
from functools import total_ordering

from app.exceptions import UnitMismatchError
from app.models.enums import Unit

QUANTUM = Decimal("0.000001")


def to_decimal(value: Decimal | int | str | float) -> Decimal:
    """Coerce a number to Decimal without going through binary floating point."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def quantize(value: Decimal) -> Decimal:
    """Round to the engine's fixed precision."""
    return value.quantize(QUANTUM, rounding=ROUND_HALF_EVEN)


@total_ordering
@dataclass(frozen=True, eq=False)
class Amount:
    """A decimal quantity tagged with its unit."""

    value: Decimal
    unit: Unit

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", to_decimal(self.value))
        object.__setattr__(self, "unit", Unit(self.unit))

    @classmethod
    def of(cls, value: Decimal | int | str | float, unit: Unit | str) -> Amount:
        return cls(to_decimal(value), Unit(unit))

    @classmethod
    def zero(cls, unit: Unit | str) -> Amount:
        return cls(Decimal(0), Unit(unit))

    def _check(self, other: Amount) -> None:
        if not isinstance(other, Amount):
            msg = f"Expected Amount, got {type(other).__name__}"
            raise TypeError(msg)
        if other.unit != self.unit:
            msg = f"Cannot combine {self.unit} with {other.unit}"
            raise UnitMismatchError(msg)

    # -- arithmetic ----------------------------------------------------------

    def __add__(self, other: Amount) -> Amount:
        self._check(other)
        return Amount(self.value + other.value, self.unit)

    def __sub__(self, other: Amount) -> Amount:
        self._check(other)
        return Amount(self.value - other.value, self.unit)

    def __neg__(self) -> Amount:
        return Amount(-self.value, self.unit)

    def __abs__(self) -> Amount:
        return Amount(abs(self.value), self.unit)

    def scale(self, factor: Decimal | int | str) -> Amount:
        """Multiply by a dimensionless factor, rounding to the engine precision."""
        return Amount(quantize(self.value * to_decimal(factor)), self.unit)

    def min(self, other: Amount) -> Amount:
        self._check(other)
        return self if self.value <= other.value else other

    def max(self, other: Amount) -> Amount:
        self._check(other)
        return self if self.value >= other.value else other

    # -- comparison ----------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Amount):
            return NotImplemented
        self._check(other)
        return self.value == other.value

    def __lt__(self, other: Amount) -> bool:
        self._check(other)
        return self.value < other.value

    def __hash__(self) -> int:
        return hash((self.value, self.unit))

    def is_zero(self) -> bool:
        return self.value == 0

    def is_positive(self) -> bool:
        return self.value > 0

    def is_negative(self) -> bool:
        return self.value < 0

    def __str__(self) -> str:
        return f"{self.value.normalize():f} {self.unit}"


def sum_amounts(amounts: list[Amount], unit: Unit | str) -> Amount:
    """Sum a list of amounts; an empty list yields zero in ``unit``."""
    total = Amount.zero(unit)
    for amount in amounts:
        total = total + amount
    return total
