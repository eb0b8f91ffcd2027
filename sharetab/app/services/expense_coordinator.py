"""
services/expense_coordinator.py — Multi-step expense and membership mutations.

Two sequences are orchestrated here, each all-or-nothing at the logical level:

  Expense creation
    VALIDATING → ALLOCATING → PERSISTING → COMMITTED, FAILED from any state.
      - VALIDATING:  description non-blank, amount > 0, participants
                     non-empty, caller and participants are group members.
                     No side effects.
      - ALLOCATING:  split_allocator.allocate(). No side effects.
      - PERSISTING:  insert the expense row, then the split rows. If the
                     split write fails the expense row is deleted again
                     (compensation) and PersistError is raised. If that
                     delete fails too, PersistError(compensated=False) names
                     the orphaned expense and the id is logged at ERROR.
    cancel() is honoured while VALIDATING or ALLOCATING. Once PERSISTING has
    begun the write is shielded from task cancellation and runs to
    COMMITTED or FAILED.

  Member removal
    LOOKUP_SPLITS → PURGE_SPLITS → REMOVE_MEMBERSHIP → COMMITTED.
    A failed purge aborts before the membership row is touched. If the
    membership delete fails after the purge, the purged splits are inserted
    again; if that fails too, PersistError(compensated=False) names the
    expenses that lost a split.

At most one creation per (caller, client_token) may be in flight; a second
submission with the same token raises DuplicateSubmission until the first
one finishes.

Layer rules:
  - No Flask imports. Receives a SessionContext and plain values.
  - Store failures arrive as StoreError and leave here as PersistError.
  - Commits are the route's responsibility.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Sequence

from sharetab.app.errors import (
    AppError,
    DuplicateSubmission,
    ErrorCode,
    PersistError,
    ValidationError,
)
from sharetab.app.money import Money
from sharetab.app.records import (
    ExpenseDraft,
    ExpenseRecord,
    MembershipRecord,
    SplitDraft,
    SplitRecord,
)
from sharetab.app.services.balance_ledger import BalanceLedger
from sharetab.app.services.split_allocator import (
    Allocation,
    EqualSplit,
    SplitPolicy,
    allocate,
)
from sharetab.app.session_context import SessionContext
from sharetab.app.store.ledger_store import LedgerStore, StoreError

logger = logging.getLogger(__name__)


class Phase(str, enum.Enum):
    VALIDATING = "validating"
    ALLOCATING = "allocating"
    PERSISTING = "persisting"
    COMMITTED  = "committed"
    FAILED     = "failed"


class RemovalPhase(str, enum.Enum):
    LOOKUP_SPLITS     = "lookup_splits"
    PURGE_SPLITS      = "purge_splits"
    REMOVE_MEMBERSHIP = "remove_membership"
    COMMITTED         = "committed"
    FAILED            = "failed"


_CANCELLABLE = frozenset({Phase.VALIDATING, Phase.ALLOCATING})


@dataclass(frozen=True)
class ExpenseSubmission:
    group_id: int
    description: str
    amount: Money
    participants: Sequence[int]
    policy: SplitPolicy = field(default_factory=EqualSplit)
    date: date | None = None
    client_token: str | None = None


@dataclass(frozen=True)
class MemberRemoval:
    group_id: int
    member_id: int
    purged_expense_ids: tuple[int, ...] = ()


# ── Shared helpers ─────────────────────────────────────────────────────────

async def require_group_member(
        store: LedgerStore, group_id: int, profile_id: int,
) -> MembershipRecord:
    """
    Returns the caller's membership or raises.

    GROUP_NOT_FOUND (404) when the group does not exist; FORBIDDEN (403)
    when it does but the caller is not in it.
    """
    try:
        group = await store.get_group(group_id)
        membership = await store.get_membership(group_id, profile_id) if group else None
    except StoreError as exc:
        raise PersistError(f"Could not load group {group_id}: {exc}") from exc
    if group is None:
        raise AppError(ErrorCode.GROUP_NOT_FOUND, f"Group {group_id} does not exist.", 404)
    if membership is None:
        raise AppError(ErrorCode.FORBIDDEN, "You are not a member of this group.", 403)
    return membership


class InFlightRegistry:
    """
    Client tokens with an allocate+persist sequence currently running.

    Thread-safe: the HTTP layer may drive several event loops at once.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tokens: set[tuple[int, str]] = set()

    def claim(self, profile_id: int, token: str) -> None:
        key = (profile_id, token)
        with self._lock:
            if key in self._tokens:
                raise DuplicateSubmission(
                    f"A submission with token {token!r} is already in progress."
                )
            self._tokens.add(key)

    def release(self, profile_id: int, token: str) -> None:
        with self._lock:
            self._tokens.discard((profile_id, token))

    def __contains__(self, key: tuple[int, str]) -> bool:
        with self._lock:
            return key in self._tokens


# ── Expense creation ───────────────────────────────────────────────────────

class ExpenseCreation:
    """
    One expense-creation request and its current phase.

    Obtain through ExpenseCoordinator.begin_expense(); drive with run().
    """

    def __init__(
            self,
            coordinator: ExpenseCoordinator,
            context: SessionContext,
            submission: ExpenseSubmission,
    ) -> None:
        self._coordinator = coordinator
        self.context      = context
        self.submission   = submission
        self.phase        = Phase.VALIDATING
        self.failure: AppError | None = None
        self.cancelled    = False
        self.allocations: list[Allocation] = []
        self.expense: ExpenseRecord | None = None
        self._task: asyncio.Task | None = None

    def start(self) -> asyncio.Task:
        """Schedules run() on the running loop so cancel() can interrupt it."""
        self._task = asyncio.ensure_future(self.run())
        self._task.add_done_callback(self._on_done)
        return self._task

    def _on_done(self, task: asyncio.Task) -> None:
        # A task cancelled before its first step never enters run().
        if task.cancelled() and self.phase in _CANCELLABLE:
            self.phase = Phase.FAILED
            self.cancelled = True
        self._coordinator._release(self.context, self.submission)

    def cancel(self) -> None:
        """
        Abandons the request while it is still side-effect free.

        Raises CANCEL_NOT_ALLOWED (409) once persisting has begun or the
        request has finished.
        """
        if self.phase not in _CANCELLABLE:
            raise AppError(
                ErrorCode.CANCEL_NOT_ALLOWED,
                f"Cannot cancel an expense submission in phase {self.phase.value}.",
                409,
            )
        self.cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def run(self) -> ExpenseRecord:
        try:
            await self._validate()
            self._raise_if_cancelled()

            self.phase = Phase.ALLOCATING
            self.allocations = allocate(
                self.submission.amount,
                list(self.submission.participants),
                self.submission.policy,
            )
            self._raise_if_cancelled()

            self.phase = Phase.PERSISTING
            persist = asyncio.ensure_future(
                self._coordinator._persist_expense(self.context, self.submission, self.allocations)
            )
            try:
                self.expense = await asyncio.shield(persist)
            except asyncio.CancelledError:
                if persist.cancelled():
                    raise
                logger.info(
                    "cancellation ignored while persisting expense for group %s",
                    self.submission.group_id,
                )
                self.expense = await persist

            self.phase = Phase.COMMITTED
            return self.expense

        except AppError as exc:
            self.phase = Phase.FAILED
            self.failure = exc
            raise
        except asyncio.CancelledError:
            self.phase = Phase.FAILED
            self.cancelled = True
            raise
        finally:
            self._coordinator._release(self.context, self.submission)

    def _raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise asyncio.CancelledError()

    async def _validate(self) -> None:
        submission = self.submission
        if not submission.description or not submission.description.strip():
            raise ValidationError(
                "Description must not be blank.",
                field="description",
                code=ErrorCode.MISSING_FIELD,
            )
        if not isinstance(submission.amount, Money) or not submission.amount.is_positive:
            raise ValidationError(
                "Amount must be greater than zero.",
                field="amount",
                code=ErrorCode.INVALID_AMOUNT,
            )
        if not submission.participants:
            raise ValidationError(
                "At least one participant is required.",
                field="participants",
                code=ErrorCode.MISSING_FIELD,
            )

        store = self._coordinator.store
        await require_group_member(store, submission.group_id, self.context.profile_id)
        try:
            memberships = await store.list_memberships(submission.group_id)
        except StoreError as exc:
            raise PersistError(f"Could not load members: {exc}") from exc
        member_ids = {m.member_id for m in memberships}
        outsiders = [p for p in submission.participants if p not in member_ids]
        if outsiders:
            raise AppError(
                ErrorCode.PARTICIPANT_NOT_MEMBER,
                f"Participants {outsiders} are not members of this group.",
                422,
                field="participants",
            )


# ── Coordinator ────────────────────────────────────────────────────────────

class ExpenseCoordinator:

    def __init__(
            self,
            store: LedgerStore,
            ledger: BalanceLedger | None = None,
            in_flight: InFlightRegistry | None = None,
    ) -> None:
        self.store     = store
        self.ledger    = ledger
        self.in_flight = in_flight if in_flight is not None else InFlightRegistry()

    # ── Expense creation ──────────────────────────────────────────────────

    def begin_expense(
            self, context: SessionContext, submission: ExpenseSubmission,
    ) -> ExpenseCreation:
        """
        Registers a creation request without running it.

        Raises DuplicateSubmission (409) if the same client token is in flight.
        """
        if submission.client_token:
            self.in_flight.claim(context.profile_id, submission.client_token)
        return ExpenseCreation(self, context, submission)

    async def submit_expense(
            self, context: SessionContext, submission: ExpenseSubmission,
    ) -> ExpenseRecord:
        return await self.begin_expense(context, submission).run()

    def _release(self, context: SessionContext, submission: ExpenseSubmission) -> None:
        if submission.client_token:
            self.in_flight.release(context.profile_id, submission.client_token)

    async def _persist_expense(
            self,
            context: SessionContext,
            submission: ExpenseSubmission,
            allocations: list[Allocation],
    ) -> ExpenseRecord:
        draft = ExpenseDraft(
            group_id=submission.group_id,
            created_by=context.profile_id,
            description=submission.description.strip(),
            amount=submission.amount,
            date=submission.date,
        )
        try:
            expense = await self.store.insert_expense(draft)
        except StoreError as exc:
            raise PersistError(f"Could not save expense: {exc}") from exc

        split_drafts = [
            SplitDraft(member_id=a.member_id, amount=a.amount, share=a.share)
            for a in allocations
        ]
        try:
            splits = await self.store.insert_splits(expense.id, split_drafts)
        except StoreError as exc:
            await self._compensate(expense.id, exc)

        committed = replace(expense, splits=tuple(splits))
        logger.info(
            "expense %s committed in group %s: %s across %d participants",
            committed.id, committed.group_id, committed.amount, len(committed.splits),
        )
        if self.ledger is not None and self.ledger.group_id == committed.group_id:
            self.ledger.on_expense_added(committed)
        return committed

    async def _compensate(self, expense_id: int, cause: StoreError) -> None:
        """Deletes a half-written expense, then raises PersistError either way."""
        try:
            await self.store.delete_expense(expense_id)
        except StoreError as undo_exc:
            logger.error(
                "compensation failed: expense %s has no splits and could not be deleted (%s; %s)",
                expense_id, cause, undo_exc,
            )
            raise PersistError(
                f"Saving splits failed and expense {expense_id} could not be removed.",
                compensated=False,
            ) from undo_exc
        logger.warning("expense %s rolled back after split write failed: %s", expense_id, cause)
        raise PersistError("Saving splits failed; the expense was not recorded.") from cause

    # ── Expense deletion ──────────────────────────────────────────────────

    async def delete_expense(self, context: SessionContext, expense_id: int) -> ExpenseRecord:
        """
        Hard-deletes an expense and its splits.

        Allowed for the expense's creator and for group admins.
        """
        try:
            expense = await self.store.get_expense(expense_id)
        except StoreError as exc:
            raise PersistError(f"Could not load expense {expense_id}: {exc}") from exc
        if expense is None:
            raise AppError(ErrorCode.EXPENSE_NOT_FOUND, f"Expense {expense_id} does not exist.", 404)

        membership = await require_group_member(self.store, expense.group_id, context.profile_id)
        if expense.created_by != context.profile_id and not membership.is_admin:
            raise AppError(
                ErrorCode.FORBIDDEN,
                "Only the expense creator or a group admin can delete this expense.",
                403,
            )

        try:
            await self.store.delete_expense(expense_id)
        except StoreError as exc:
            raise PersistError(f"Could not delete expense {expense_id}: {exc}") from exc

        logger.info("expense %s deleted from group %s", expense_id, expense.group_id)
        if self.ledger is not None and self.ledger.group_id == expense.group_id:
            self.ledger.on_expense_removed(expense_id)
        return expense

    # ── Member removal ────────────────────────────────────────────────────

    async def remove_member(
            self, context: SessionContext, group_id: int, member_id: int,
    ) -> MemberRemoval:
        """
        Purges a member's splits in the group, then removes the membership.

        Admins may remove anyone; any member may remove themself. If the
        purge fails the membership is left in place.
        """
        caller = await require_group_member(self.store, group_id, context.profile_id)
        if member_id != context.profile_id and not caller.is_admin:
            raise AppError(ErrorCode.FORBIDDEN, "Only group admins can remove other members.", 403)

        try:
            target = await self.store.get_membership(group_id, member_id)
        except StoreError as exc:
            raise PersistError(f"Could not load membership: {exc}") from exc
        if target is None:
            raise AppError(
                ErrorCode.MEMBER_NOT_FOUND,
                f"Profile {member_id} is not a member of group {group_id}.",
                404,
            )

        phase = RemovalPhase.LOOKUP_SPLITS
        try:
            splits = await self.store.list_member_splits(group_id, member_id)
            expense_ids = tuple(sorted({s.expense_id for s in splits}))

            phase = RemovalPhase.PURGE_SPLITS
            if expense_ids:
                await self.store.delete_splits(member_id, expense_ids)

            phase = RemovalPhase.REMOVE_MEMBERSHIP
            await self.store.delete_membership(group_id, member_id)
        except StoreError as exc:
            logger.warning(
                "removing member %s from group %s failed during %s: %s",
                member_id, group_id, phase.value, exc,
            )
            if phase == RemovalPhase.REMOVE_MEMBERSHIP:
                await self._restore_splits(group_id, member_id, splits, exc)
            raise PersistError(
                f"Could not remove member {member_id} ({phase.value} failed); "
                f"the membership was kept."
            ) from exc

        logger.info(
            "member %s removed from group %s; splits purged from %d expenses",
            member_id, group_id, len(expense_ids),
        )
        if self.ledger is not None and self.ledger.group_id == group_id:
            self.ledger.on_member_removed(member_id)
        return MemberRemoval(group_id=group_id, member_id=member_id, purged_expense_ids=expense_ids)

    async def _restore_splits(
            self,
            group_id: int,
            member_id: int,
            splits: list[SplitRecord],
            cause: StoreError,
    ) -> None:
        """
        Re-inserts splits purged for a member whose membership delete failed.

        Returns quietly on success so the caller can report the failure;
        raises PersistError(compensated=False) if any expense cannot be restored.
        """
        by_expense: dict[int, list[SplitDraft]] = {}
        for s in splits:
            by_expense.setdefault(s.expense_id, []).append(
                SplitDraft(member_id=s.member_id, amount=s.amount, share=s.share)
            )

        unrestored: list[int] = []
        last_exc: StoreError | None = None
        for expense_id, drafts in sorted(by_expense.items()):
            try:
                await self.store.insert_splits(expense_id, drafts)
            except StoreError as undo_exc:
                unrestored.append(expense_id)
                last_exc = undo_exc

        if unrestored:
            logger.error(
                "compensation failed: member %s is still in group %s but lost splits on expenses %s (%s; %s)",
                member_id, group_id, unrestored, cause, last_exc,
            )
            raise PersistError(
                f"Member {member_id} could not be removed and their splits on "
                f"expenses {unrestored} could not be restored.",
                compensated=False,
            ) from last_exc
        logger.warning(
            "splits of member %s restored on %d expenses after membership delete failed",
            member_id, len(by_expense),
        )
