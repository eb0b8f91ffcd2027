"""
services/share_rebalancer.py — Live redistribution of percentage shares.

Backs the custom-share form: the user types a value for one participant
and everyone they have not touched is rebalanced so the shares keep adding
up to 100 %.

State model:
  Each participant carries one ShareState tag — LOCKED (the user typed a
  value) or AUTO (distributed by the rebalancer) — and an integer number of
  percent units (hundredths of a percent, 10000 == 100.00 %). Both live in
  one ordered map so lock bookkeeping cannot drift from the active set.

Distribution rule:
  The units left after the locked entries (10000 - sum(locked)) are split
  evenly among AUTO participants; leftover units go one at a time to the
  earliest AUTO participants in input order — the same stable-remainder
  rule split_allocator uses for cents. If the locked entries already
  exceed 100 %, AUTO participants receive 0 and the state is invalid until
  the user fixes it.

Ownership:
  One instance per editing session. Instances are not shared between
  concurrent edits and are not thread-safe.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from fractions import Fraction
from typing import Iterable

from sharetab.app.errors import InvalidShareTotal, InvalidWeight, ValidationError
from sharetab.app.money import Money, round_half_up
from sharetab.app.services.split_allocator import Allocation, PercentageSplit, allocate

FULL_UNITS = 10000


class ShareState(str, enum.Enum):
    LOCKED = "locked"
    AUTO   = "auto"


@dataclass
class _Entry:
    units: int
    state: ShareState = ShareState.AUTO


def units_to_amount(units: int, total: Money) -> Money:
    """Currency view of a percent-unit value: total * units / 10000, half-up."""
    return total.multiply_by_fraction(Fraction(units, FULL_UNITS))


def amount_to_units(amount: Money, total: Money) -> int:
    """
    Inverse of units_to_amount, rounded half-up to the nearest unit.

    One unit is 0.01% of the total, so units_to_amount(amount_to_units(a, t), t)
    is within one cent of `a` only while `t` is at most 20000 cents ($200.00).
    Above that a unit is worth more than a cent and the currency view drifts
    by up to half a unit.
    """
    if total.is_zero:
        return 0
    return round_half_up(Fraction(amount.cents * FULL_UNITS, total.cents))


def _spread(units: int, count: int) -> list[int]:
    base, extra = divmod(units, count)
    return [base + 1 if i < extra else base for i in range(count)]


class ShareRebalancer:

    def __init__(self, participants: Iterable[int] = ()) -> None:
        self._entries: dict[int, _Entry] = {}
        ids = list(participants)
        if ids:
            self.set_participants(ids)

    # ── Queries ───────────────────────────────────────────────────────────

    @property
    def participants(self) -> list[int]:
        return list(self._entries)

    @property
    def percent_units(self) -> dict[int, int]:
        return {m: e.units for m, e in self._entries.items()}

    @property
    def locked(self) -> set[int]:
        return {m for m, e in self._entries.items() if e.state == ShareState.LOCKED}

    def state_of(self, member_id: int) -> ShareState:
        return self._entry(member_id).state

    def total_units(self) -> int:
        return sum(e.units for e in self._entries.values())

    def is_valid(self) -> bool:
        """True iff there is at least one participant and units total exactly 10000."""
        return bool(self._entries) and self.total_units() == FULL_UNITS

    # ── Mutations ─────────────────────────────────────────────────────────

    def set_participants(self, member_ids: Iterable[int]) -> None:
        """
        Replaces the active set.

        Locked entries for ids that remain keep their value; ids that leave
        drop out entirely (lock included). Everyone else is AUTO and shares
        the remaining units.
        """
        ids = list(member_ids)
        if len(set(ids)) != len(ids):
            raise ValidationError("Participant ids must be unique.", field="participants")

        previous = self._entries
        self._entries = {
            m: previous[m] if m in previous and previous[m].state == ShareState.LOCKED
            else _Entry(units=0)
            for m in ids
        }
        self._rebalance()

    def edit_share(self, member_id: int, new_units: int) -> None:
        """Locks `member_id` at `new_units` and rebalances the AUTO entries."""
        entry = self._entry(member_id)
        if isinstance(new_units, bool) or not isinstance(new_units, int):
            raise InvalidWeight(f"Share units must be an integer, got {new_units!r}.", field="units")
        if new_units < 0:
            raise InvalidWeight("Share units must not be negative.", field="units")
        entry.units = new_units
        entry.state = ShareState.LOCKED
        self._rebalance()

    def edit_amount(self, member_id: int, amount: Money, total: Money) -> None:
        """Edits in the currency view; converts to units and behaves like edit_share."""
        if amount.is_negative:
            raise InvalidWeight("Share amount must not be negative.", field="amount")
        self.edit_share(member_id, amount_to_units(amount, total))

    def toggle_participant(self, member_id: int, included: bool) -> None:
        """Adds or removes a participant. Toggling off also forgets any lock."""
        if included:
            if member_id not in self._entries:
                self._entries[member_id] = _Entry(units=0)
        else:
            self._entries.pop(member_id, None)
        self._rebalance()

    def reset(self) -> None:
        """Clears every lock and returns to an equal split."""
        for entry in self._entries.values():
            entry.state = ShareState.AUTO
        self._rebalance()

    # ── Views / hand-off to the allocator ─────────────────────────────────

    def amounts(self, total: Money) -> dict[int, Money]:
        """Currency view of the current units. Display only — may not sum to total."""
        return {m: units_to_amount(e.units, total) for m, e in self._entries.items()}

    def to_policy(self) -> tuple[list[int], PercentageSplit]:
        """
        Builds the allocator input from the current state.

        Participants left with 0 units owe nothing and are omitted, since
        the allocator only accepts positive weights.

        Raises:
            InvalidShareTotal — the state does not add up to 100 %.
        """
        if not self.is_valid():
            raise InvalidShareTotal(
                f"Shares add up to {self.total_units() / 100:.2f}%, expected 100.00%.",
                field="percentages",
            )
        members = [m for m, e in self._entries.items() if e.units > 0]
        percentages = {m: Fraction(self._entries[m].units, 100) for m in members}
        return members, PercentageSplit(percentages=percentages)

    def allocate(self, total: Money) -> list[Allocation]:
        members, policy = self.to_policy()
        return allocate(total, members, policy)

    # ── Internals ─────────────────────────────────────────────────────────

    def _entry(self, member_id: int) -> _Entry:
        try:
            return self._entries[member_id]
        except KeyError:
            raise ValidationError(
                f"Member {member_id} is not part of this split.",
                field="participants",
            ) from None

    def _rebalance(self) -> None:
        auto = [e for e in self._entries.values() if e.state == ShareState.AUTO]
        if not auto:
            return
        locked_total = sum(e.units for e in self._entries.values() if e.state == ShareState.LOCKED)
        remaining = FULL_UNITS - locked_total
        if remaining <= 0:
            for entry in auto:
                entry.units = 0
            return
        for entry, units in zip(auto, _spread(remaining, len(auto))):
            entry.units = units
