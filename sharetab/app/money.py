"""
money.py — Fixed-precision currency value type.

Money stores a signed amount as integer minor units (cents). It is the only
representation of an amount inside the engine; Decimal appears only at the
boundaries (database Numeric(12, 2) columns, JSON strings).

Rounding rule, applied everywhere:
  Values with more than 2 decimal places are rounded HALF-UP (ties away
  from zero) to the nearest cent. Input that is not a number at all is
  rejected with InvalidAmount — it is never coerced to zero.

No Flask imports. No database imports.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from fractions import Fraction
from typing import Iterable, Sequence, Union

from sharetab.app.errors import InvalidAmount

_CENT = Decimal("0.01")

Number = Union[int, Fraction, Decimal]


def round_half_up(value: Fraction) -> int:
    """Rounds an exact rational to the nearest integer, ties away from zero."""
    if value < 0:
        return -round_half_up(-value)
    return int(value + Fraction(1, 2))


def distribute_cents(total: int, weights: Sequence[Number]) -> list[int]:
    """
    Splits `total` cents proportionally to `weights`.

    Each part starts at floor(total * w_i / sum(w)); the cents left over are
    then handed out one at a time to the earliest parts in input order.
    The result always sums to `total` exactly and no part differs from its
    exact proportional value by a cent or more.

    Negative totals are distributed as the negation of the positive case so
    that the same participant absorbs the remainder either way.
    """
    if total < 0:
        return [-part for part in distribute_cents(-total, weights)]

    fractions = [Fraction(w) for w in weights]
    weight_sum = sum(fractions, Fraction(0))
    if weight_sum <= 0:
        raise ValueError("weights must have a positive sum")

    parts = [int(Fraction(total) * w / weight_sum) for w in fractions]
    leftover = total - sum(parts)
    for i in range(leftover):
        parts[i % len(parts)] += 1
    return parts


@dataclass(frozen=True, order=True)
class Money:
    cents: int = 0

    def __post_init__(self) -> None:
        if isinstance(self.cents, bool) or not isinstance(self.cents, int):
            raise InvalidAmount(f"Money requires integer cents, got {self.cents!r}.")

    # ── Construction ──────────────────────────────────────────────────────

    @classmethod
    def zero(cls) -> Money:
        return cls(0)

    @classmethod
    def parse(cls, value: object, field: str | None = None) -> Money:
        """
        Builds Money from user or database input.

        Accepts str, int, Decimal, float and Money. Strings may carry
        surrounding whitespace. More than 2 decimals are rounded half-up.

        Raises:
            InvalidAmount — empty strings, non-numeric text, NaN/Infinity,
                            booleans and unsupported types.
        """
        if isinstance(value, Money):
            return value
        if isinstance(value, bool):
            raise InvalidAmount(f"{value!r} is not a currency amount.", field=field)
        if isinstance(value, int):
            return cls(value * 100)

        if isinstance(value, float):
            # repr() is the shortest string that round-trips, so 0.1 parses as
            # 0.1 rather than 0.1000000000000000055511151231257827.
            raw = repr(value)
        elif isinstance(value, (str, Decimal)):
            raw = str(value).strip()
        else:
            raise InvalidAmount(f"{type(value).__name__} is not a currency amount.", field=field)

        if not raw:
            raise InvalidAmount("Amount must not be empty.", field=field)

        try:
            parsed = Decimal(raw)
        except InvalidOperation:
            raise InvalidAmount(f"{raw!r} is not a valid amount.", field=field) from None

        if not parsed.is_finite():
            raise InvalidAmount(f"{raw!r} is not a finite amount.", field=field)

        try:
            return cls.from_decimal(parsed)
        except InvalidOperation:
            raise InvalidAmount(f"{raw!r} is out of range.", field=field) from None

    @classmethod
    def from_decimal(cls, value: Decimal) -> Money:
        quantized = value.quantize(_CENT, rounding=ROUND_HALF_UP)
        return cls(int(quantized * 100))

    @classmethod
    def sum(cls, amounts: Iterable[Money]) -> Money:
        return cls(sum(a.cents for a in amounts))

    # ── Arithmetic ────────────────────────────────────────────────────────

    def add(self, other: Money) -> Money:
        return Money(self.cents + other.cents)

    def subtract(self, other: Money) -> Money:
        return Money(self.cents - other.cents)

    def multiply_by_fraction(self, factor: Number) -> Money:
        """Scales by an exact factor and rounds half-up to the nearest cent."""
        return Money(round_half_up(Fraction(self.cents) * Fraction(factor)))

    def distribute(self, weights: Sequence[Number]) -> list[Money]:
        """Allocates self across `weights`; see distribute_cents()."""
        return [Money(c) for c in distribute_cents(self.cents, weights)]

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        return self.add(other)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        return self.subtract(other)

    def __neg__(self) -> Money:
        return Money(-self.cents)

    def __abs__(self) -> Money:
        return Money(abs(self.cents))

    # ── Inspection / output ───────────────────────────────────────────────

    def compare(self, other: Money) -> int:
        """Returns -1, 0 or 1."""
        return (self.cents > other.cents) - (self.cents < other.cents)

    @property
    def is_zero(self) -> bool:
        return self.cents == 0

    @property
    def is_positive(self) -> bool:
        return self.cents > 0

    @property
    def is_negative(self) -> bool:
        return self.cents < 0

    def to_decimal(self) -> Decimal:
        return (Decimal(self.cents) / 100).quantize(_CENT)

    def to_display_string(self, symbol: str = "$") -> str:
        """'$1,234.50' / '-$0.07'."""
        sign = "-" if self.cents < 0 else ""
        whole, frac = divmod(abs(self.cents), 100)
        return f"{sign}{symbol}{whole:,}.{frac:02d}"

    def __str__(self) -> str:
        return str(self.to_decimal())

    def __repr__(self) -> str:
        return f"Money('{self}')"
