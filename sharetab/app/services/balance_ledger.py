"""
services/balance_ledger.py — Per-member and pairwise balances for one group.

This file is the SINGLE SOURCE OF TRUTH for how balances are computed.
Any change to how balances work must be made here.

Sign convention (used everywhere, including the pairwise view):
  balance > 0  → the member IS OWED money
  balance < 0  → the member OWES money

Canonical reduction — every event becomes directed obligations
(debtor → creditor, cents):
  Expense:     each split whose member is not the expense creator means
               the split member owes the creator split.amount. The
               creator's own split cancels out and produces nothing.
  Settlement:  paid_by handed paid_to `amount`, so paid_to now owes
               paid_by that amount back (it offsets the original debt).

  balance[m] = Σ obligations owed to m − Σ obligations owed by m

Because every obligation credits one member and debits another by the same
amount, sum(balances) == 0 always holds — including after a member's splits
are purged, since the creator is only credited for splits that still exist.

Membership scope:
  When a member leaves, every obligation touching them is excluded. The
  ledger never reports a removed member, and balances still sum to zero.

Settlements that reference a deleted expense keep counting; the expense
link is informational.

Incremental hooks must be applied in commit order. Passing event versions
lets the ledger detect out-of-order application (ConsistencyError).
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, replace
from typing import Iterable

from sharetab.app.errors import ConsistencyError
from sharetab.app.money import Money
from sharetab.app.records import ExpenseRecord, SettlementRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Obligation:
    debtor: int
    creditor: int
    cents: int


@dataclass(frozen=True)
class PairwiseDebt:
    """Net debt between two members after opposite directions cancel."""
    debtor: int
    creditor: int
    amount: Money


@dataclass(frozen=True)
class ExpenseOutstanding:
    expense_id: int
    description: str
    owed: Money
    settled: Money

    @property
    def remaining(self) -> Money:
        left = self.owed - self.settled
        return left if left.is_positive else Money.zero()


# ── Reduction ──────────────────────────────────────────────────────────────

def expense_obligations(expense: ExpenseRecord) -> list[Obligation]:
    return [
        Obligation(debtor=s.member_id, creditor=expense.created_by, cents=s.amount.cents)
        for s in expense.splits
        if s.member_id != expense.created_by and s.amount.cents != 0
    ]


def settlement_obligation(settlement: SettlementRecord) -> Obligation:
    return Obligation(
        debtor=settlement.paid_to,
        creditor=settlement.paid_by,
        cents=settlement.amount.cents,
    )


def simplify_debts(balances: dict[int, Money]) -> list[PairwiseDebt]:
    """
    Greedy minimum cash flow debt simplification.

    Repeatedly matches the largest debtor with the largest creditor until all
    balances reach zero. For N members, produces at most N-1 transfers.
    Ties are broken by member id so the output is deterministic.

    Args:
        balances: {member_id: balance} — MUST sum to zero.
    """
    creditors = sorted(
        [(m, b.cents) for m, b in balances.items() if b.cents > 0],
        key=lambda x: (-x[1], x[0]),
    )
    debtors = sorted(
        [(m, -b.cents) for m, b in balances.items() if b.cents < 0],
        key=lambda x: (-x[1], x[0]),
    )

    transfers: list[PairwiseDebt] = []
    i = j = 0

    while i < len(creditors) and j < len(debtors):
        cid, credit = creditors[i]
        did, debt = debtors[j]

        transfer = min(credit, debt)
        transfers.append(PairwiseDebt(debtor=did, creditor=cid, amount=Money(transfer)))

        creditors[i] = (cid, credit - transfer)
        debtors[j] = (did, debt - transfer)

        if creditors[i][1] == 0:
            i += 1
        if debtors[j][1] == 0:
            j += 1

    return transfers


# ── Ledger ─────────────────────────────────────────────────────────────────

class BalanceLedger:
    """
    Derived balances for one group with incremental update hooks.

    Construct with recompute() for a from-scratch view, or start empty and
    feed hooks as events commit. Either way the ledger retains the events
    it has seen, so check_consistency() can always compare the incremental
    totals against a fresh recompute.
    """

    def __init__(self, group_id: int, member_ids: Iterable[int] | None = None) -> None:
        self.group_id = group_id
        self._members: set[int] | None = set(member_ids) if member_ids is not None else None
        self._removed: set[int] = set()
        self._expenses: dict[int, ExpenseRecord] = {}
        self._settlements: dict[int, SettlementRecord] = {}
        self._pairs: dict[tuple[int, int], int] = defaultdict(int)
        self._version = 0

    # ── Construction ──────────────────────────────────────────────────────

    @classmethod
    def recompute(
            cls,
            group_id: int,
            expenses: Iterable[ExpenseRecord],
            settlements: Iterable[SettlementRecord],
            member_ids: Iterable[int] | None = None,
    ) -> BalanceLedger:
        """
        Builds balances from the full event history.

        Idempotent and order-independent: the same inputs always produce
        the same balances. When `member_ids` is given, obligations touching
        anyone outside that set are excluded.
        """
        ledger = cls(group_id, member_ids)
        for expense in expenses:
            ledger._add_expense(expense)
        for settlement in settlements:
            ledger._add_settlement(settlement)
        return ledger

    # ── Incremental hooks ─────────────────────────────────────────────────

    def on_expense_added(self, expense: ExpenseRecord, version: int | None = None) -> None:
        self._advance(version)
        if expense.id in self._expenses:
            # Already applied.
            logger.debug("ledger %s: expense %s already applied", self.group_id, expense.id)
            return
        self._add_expense(expense)

    def on_expense_removed(self, expense_id: int, version: int | None = None) -> None:
        self._advance(version)
        expense = self._expenses.pop(expense_id, None)
        if expense is None:
            logger.debug("ledger %s: expense %s not present", self.group_id, expense_id)
            return
        for obligation in expense_obligations(expense):
            self._apply(obligation, sign=-1)

    def on_settlement_added(self, settlement: SettlementRecord, version: int | None = None) -> None:
        self._advance(version)
        if settlement.id in self._settlements:
            logger.debug("ledger %s: settlement %s already applied", self.group_id, settlement.id)
            return
        self._add_settlement(settlement)

    def on_member_removed(self, member_id: int, version: int | None = None) -> None:
        """
        Drops every obligation touching `member_id`.

        Also removes the member's splits from retained expenses, mirroring
        the purge the coordinator performs in the store.
        """
        self._advance(version)
        for key in [k for k in self._pairs if member_id in k]:
            del self._pairs[key]
        for expense_id, expense in list(self._expenses.items()):
            if any(s.member_id == member_id for s in expense.splits):
                kept = tuple(s for s in expense.splits if s.member_id != member_id)
                self._expenses[expense_id] = replace(expense, splits=kept)
        if self._members is not None:
            self._members.discard(member_id)
        self._removed.add(member_id)

    # ── Views ─────────────────────────────────────────────────────────────

    @property
    def version(self) -> int:
        return self._version

    @property
    def expenses(self) -> list[ExpenseRecord]:
        return list(self._expenses.values())

    @property
    def settlements(self) -> list[SettlementRecord]:
        return list(self._settlements.values())

    def balances(self) -> dict[int, Money]:
        """
        {member_id: balance}. Every current member appears, with 0 when they
        have no activity; members that have left never appear.
        """
        cents: dict[int, int] = defaultdict(int)
        for (debtor, creditor), amount in self._pairs.items():
            cents[creditor] += amount
            cents[debtor] -= amount
        if self._members is not None:
            for member_id in self._members:
                cents.setdefault(member_id, 0)
        return {m: Money(c) for m, c in sorted(cents.items())}

    def balance_of(self, member_id: int) -> Money:
        return self.balances().get(member_id, Money.zero())

    def pairwise(self) -> list[PairwiseDebt]:
        """Who owes whom: one entry per pair with a non-zero net debt."""
        net: dict[tuple[int, int], int] = defaultdict(int)
        for (debtor, creditor), amount in self._pairs.items():
            low, high = sorted((debtor, creditor))
            # Positive means `low` owes `high`.
            net[(low, high)] += amount if debtor == low else -amount

        debts = []
        for (low, high), amount in sorted(net.items()):
            if amount > 0:
                debts.append(PairwiseDebt(debtor=low, creditor=high, amount=Money(amount)))
            elif amount < 0:
                debts.append(PairwiseDebt(debtor=high, creditor=low, amount=Money(-amount)))
        return debts

    def owed_between(self, debtor: int, creditor: int) -> Money:
        """Net amount `debtor` owes `creditor`; zero when the debt runs the other way."""
        for debt in self.pairwise():
            if debt.debtor == debtor and debt.creditor == creditor:
                return debt.amount
        return Money.zero()

    def expense_outstanding(self, debtor: int, creditor: int) -> list[ExpenseOutstanding]:
        """
        Per-expense breakdown of what `debtor` still owes `creditor`.

        Lists expenses created by `creditor` that carry a split for
        `debtor`, minus settlements debtor → creditor linked to that
        expense. Unlinked settlements are not attributed to any expense.
        """
        settled: dict[int, int] = defaultdict(int)
        for s in self._settlements.values():
            if s.paid_by == debtor and s.paid_to == creditor and s.expense_id is not None:
                settled[s.expense_id] += s.amount.cents

        rows = []
        for expense in sorted(self._expenses.values(), key=lambda e: e.id):
            if expense.created_by != creditor or debtor == creditor:
                continue
            owed = sum(s.amount.cents for s in expense.splits if s.member_id == debtor)
            if owed == 0:
                continue
            rows.append(ExpenseOutstanding(
                expense_id=expense.id,
                description=expense.description,
                owed=Money(owed),
                settled=Money(settled.get(expense.id, 0)),
            ))
        return rows

    def simplified_debts(self) -> list[PairwiseDebt]:
        return simplify_debts(self.balances())

    # ── Consistency ───────────────────────────────────────────────────────

    def check_consistency(self) -> None:
        """
        Recomputes from the retained events and compares.

        Raises:
            ConsistencyError — the incremental state disagrees with a full
                               recompute. The caller must discard this
                               ledger and rebuild it from the store.
        """
        fresh = BalanceLedger(self.group_id, self._members)
        fresh._removed = set(self._removed)
        for expense in self._expenses.values():
            fresh._add_expense(expense)
        for settlement in self._settlements.values():
            fresh._add_settlement(settlement)

        mine = self.balances()
        theirs = fresh.balances()
        if mine != theirs:
            diff = sorted(
                m for m in set(mine) | set(theirs)
                if mine.get(m) != theirs.get(m)
            )
            raise ConsistencyError(
                f"Ledger for group {self.group_id} diverged from a full recompute "
                f"for members {diff}."
            )

    def matches(self, other: BalanceLedger) -> bool:
        return self.balances() == other.balances() and self.pairwise() == other.pairwise()

    # ── Internals ─────────────────────────────────────────────────────────

    def _advance(self, version: int | None) -> None:
        if version is None:
            self._version += 1
            return
        if version <= self._version:
            raise ConsistencyError(
                f"Ledger for group {self.group_id} received event version {version} "
                f"after version {self._version}; events must be applied in commit order."
            )
        self._version = version

    def _in_scope(self, obligation: Obligation) -> bool:
        for member_id in (obligation.debtor, obligation.creditor):
            if member_id in self._removed:
                return False
            if self._members is not None and member_id not in self._members:
                return False
        return True

    def _apply(self, obligation: Obligation, sign: int) -> None:
        if obligation.debtor == obligation.creditor or not self._in_scope(obligation):
            return
        key = (obligation.debtor, obligation.creditor)
        self._pairs[key] += sign * obligation.cents
        if self._pairs[key] == 0:
            del self._pairs[key]

    def _add_expense(self, expense: ExpenseRecord) -> None:
        self._expenses[expense.id] = expense
        for obligation in expense_obligations(expense):
            self._apply(obligation, sign=1)

    def _add_settlement(self, settlement: SettlementRecord) -> None:
        self._settlements[settlement.id] = settlement
        self._apply(settlement_obligation(settlement), sign=1)
