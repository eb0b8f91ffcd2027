"""
services/split_allocator.py — Allocating an expense total across participants.

This file is the SINGLE place where split amounts are computed. The
coordinator, the preview endpoint and the share rebalancer all call
allocate(); nothing else divides money.

Guarantees (for every policy):
  - sum(allocation.amount) == total, exactly, in cents.
  - Allocations come back in participant input order, one per participant.
  - Indivisible cents are assigned one at a time to the earliest
    participants in input order (stable remainder). The tie-break never
    depends on the size of the fractional parts.

Layer rules:
  - No Flask imports, no store access. Pure function over its inputs.
  - Errors are AllocationError subclasses (or ValidationError for malformed
    participant lists) and are raised before anything is written.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from decimal import Decimal
from fractions import Fraction
from typing import Mapping, Sequence, Union

from sharetab.app.errors import (
    AppError,
    ErrorCode,
    InvalidShareTotal,
    InvalidTotal,
    InvalidWeight,
    NoParticipants,
    SplitMismatch,
    ValidationError,
)
from sharetab.app.money import Money, distribute_cents

# Percentages may be off by at most this much (in percentage points) before
# they are rejected; inside the tolerance they are normalised as weights.
PERCENT_TOLERANCE = Fraction(1, 100)


class SplitMode(str, enum.Enum):
    EQUAL       = "equal"
    SHARES      = "shares"
    PERCENTAGES = "percentages"
    EXACT       = "exact"


# ── Policies ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class EqualSplit:
    mode = SplitMode.EQUAL


@dataclass(frozen=True)
class ShareSplit:
    """Positive weights keyed by member id, e.g. {u1: 1, u2: 2}."""
    weights: Mapping[int, Union[int, Decimal, Fraction]] = field(default_factory=dict)
    mode = SplitMode.SHARES


@dataclass(frozen=True)
class PercentageSplit:
    """Percentages keyed by member id; must total 100 within PERCENT_TOLERANCE."""
    percentages: Mapping[int, Union[int, Decimal, Fraction]] = field(default_factory=dict)
    mode = SplitMode.PERCENTAGES


@dataclass(frozen=True)
class ExactSplit:
    """Caller-supplied amounts keyed by member id; must total the expense exactly."""
    amounts: Mapping[int, Money] = field(default_factory=dict)
    mode = SplitMode.EXACT


SplitPolicy = Union[EqualSplit, ShareSplit, PercentageSplit, ExactSplit]


@dataclass(frozen=True)
class Allocation:
    member_id: int
    share: Fraction
    amount: Money


# ── Private helpers ────────────────────────────────────────────────────────

def _as_fraction(value: object, member_id: int) -> Fraction:
    """Converts a weight/percentage to an exact Fraction or raises InvalidWeight."""
    if isinstance(value, bool):
        raise InvalidWeight(f"Weight for member {member_id} must be a number.", field="weights")
    try:
        if isinstance(value, float):
            return Fraction(Decimal(repr(value)))
        return Fraction(value)
    except (TypeError, ValueError, ArithmeticError):
        raise InvalidWeight(
            f"Weight for member {member_id} is not a number: {value!r}.",
            field="weights",
        ) from None


def _check_participants(participants: Sequence[int]) -> list[int]:
    if not participants:
        raise NoParticipants("At least one participant is required.", field="participants")
    ordered = list(participants)
    if len(set(ordered)) != len(ordered):
        raise ValidationError(
            "The same member appears more than once in the participant list.",
            field="participants",
            code=ErrorCode.DUPLICATE_SPLIT_USER,
        )
    return ordered


def _check_keys(policy_keys, participants: list[int], label: str) -> None:
    """Policy maps must cover exactly the participant set."""
    keys = set(policy_keys)
    expected = set(participants)
    if keys != expected:
        missing = sorted(expected - keys)
        extra = sorted(keys - expected)
        raise ValidationError(
            f"{label} must name every participant exactly once "
            f"(missing: {missing}, unexpected: {extra}).",
            field=label,
        )


def _positive_weights(raw: Mapping, participants: list[int], label: str) -> list[Fraction]:
    _check_keys(raw.keys(), participants, label)
    weights = [_as_fraction(raw[m], m) for m in participants]
    for member_id, weight in zip(participants, weights):
        if weight <= 0:
            raise InvalidWeight(
                f"Weight for member {member_id} must be greater than zero.",
                field=label,
            )
    return weights


def _weighted(total: Money, participants: list[int], weights: list[Fraction]) -> list[Allocation]:
    weight_sum = sum(weights, Fraction(0))
    cents = distribute_cents(total.cents, weights)
    return [
        Allocation(member_id=m, share=w / weight_sum, amount=Money(c))
        for m, w, c in zip(participants, weights, cents)
    ]


def _assert_exact_sum(total: Money, allocations: list[Allocation]) -> None:
    # A failure here is a programming error, not bad input.
    computed = Money.sum(a.amount for a in allocations)
    if computed != total:
        raise AppError(
            ErrorCode.INTERNAL_ERROR,
            f"Allocation produced sum {computed} for total {total}. This is a bug.",
            500,
        )


# ── Public API ─────────────────────────────────────────────────────────────

def allocate(
        total: Money,
        participants: Sequence[int],
        policy: SplitPolicy,
) -> list[Allocation]:
    """
    Splits `total` among `participants` according to `policy`.

    Equal:        share 1/N; total // N each, leftover cents to the first
                  participants in input order.
    Shares:       share w_i / sum(w); floor of the proportional amount, then
                  leftover cents in input order.
    Percentages:  validated to total 100 (±0.01), then treated as weights.
    Exact:        amounts used as given; they must total `total` exactly.

    Raises:
        NoParticipants     — empty participant list
        ValidationError    — duplicate participants, policy keys that do not
                             match the participant list
        InvalidTotal       — total <= 0
        InvalidWeight      — non-positive weight, negative exact amount
        InvalidShareTotal  — percentages outside 100 ± 0.01
        SplitMismatch      — exact amounts that do not total `total`
    """
    ordered = _check_participants(participants)

    if not isinstance(total, Money):
        raise InvalidTotal(f"Total must be Money, got {type(total).__name__}.", field="amount")
    if not total.is_positive:
        raise InvalidTotal(f"Total must be greater than zero, got {total}.", field="amount")

    if isinstance(policy, EqualSplit):
        allocations = _weighted(total, ordered, [Fraction(1)] * len(ordered))

    elif isinstance(policy, ShareSplit):
        weights = _positive_weights(policy.weights, ordered, "weights")
        allocations = _weighted(total, ordered, weights)

    elif isinstance(policy, PercentageSplit):
        weights = _positive_weights(policy.percentages, ordered, "percentages")
        percent_sum = sum(weights, Fraction(0))
        if abs(percent_sum - 100) > PERCENT_TOLERANCE:
            raise InvalidShareTotal(
                f"Percentages must add up to 100, got {float(percent_sum):.4g}.",
                field="percentages",
            )
        allocations = _weighted(total, ordered, weights)

    elif isinstance(policy, ExactSplit):
        _check_keys(policy.amounts.keys(), ordered, "amounts")
        amounts = [policy.amounts[m] for m in ordered]
        for member_id, amount in zip(ordered, amounts):
            if amount.is_negative:
                raise InvalidWeight(
                    f"Amount for member {member_id} must not be negative.",
                    field="amounts",
                )
        given = Money.sum(amounts)
        if given != total:
            raise SplitMismatch(
                f"Split amounts ({given}) do not equal expense amount ({total}).",
                field="amounts",
            )
        allocations = [
            Allocation(member_id=m, share=Fraction(a.cents, total.cents), amount=a)
            for m, a in zip(ordered, amounts)
        ]

    else:
        raise ValidationError(
            f"Unknown split policy {type(policy).__name__}.",
            field="split_mode",
            code=ErrorCode.INVALID_SPLIT_MODE,
        )

    _assert_exact_sum(total, allocations)
    return allocations
