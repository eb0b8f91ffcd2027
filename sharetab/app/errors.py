"""
errors.py — AppError base class, error taxonomy and error code registry.

Every error returned by the sharetab API must use a code defined here.
Do not raise strings or generic exceptions from engine, service or route code.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - Allocation and rebalancing errors are raised synchronously and carry no
    side effects; the immediate caller (form validation) handles them.
  - PersistError and ConsistencyError surface to the client as failures;
    nothing at this layer retries.
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
#
# IMPORTANT: these are the string values sent in the API response.
# Do not rename them without a major version bump.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_AMOUNT             = "INVALID_AMOUNT"
    INVALID_SPLIT_MODE         = "INVALID_SPLIT_MODE"
    DUPLICATE_SPLIT_USER       = "DUPLICATE_SPLIT_USER"
    VALIDATION_FAILED          = "VALIDATION_FAILED"

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    ALREADY_MEMBER             = "ALREADY_MEMBER"
    SUBMISSION_IN_PROGRESS     = "SUBMISSION_IN_PROGRESS"
    CANCEL_NOT_ALLOWED         = "CANCEL_NOT_ALLOWED"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    PROFILE_NOT_FOUND          = "PROFILE_NOT_FOUND"
    GROUP_NOT_FOUND            = "GROUP_NOT_FOUND"
    EXPENSE_NOT_FOUND          = "EXPENSE_NOT_FOUND"
    MEMBER_NOT_FOUND           = "MEMBER_NOT_FOUND"

    # ── Allocation Errors (422) ────────────────────────────────────────────
    NO_PARTICIPANTS            = "NO_PARTICIPANTS"
    INVALID_WEIGHT             = "INVALID_WEIGHT"
    INVALID_TOTAL              = "INVALID_TOTAL"
    INVALID_SHARE_TOTAL        = "INVALID_SHARE_TOTAL"
    SPLIT_SUM_MISMATCH         = "SPLIT_SUM_MISMATCH"

    # ── Business Rule Violations (422) ────────────────────────────────────
    PARTICIPANT_NOT_MEMBER     = "PARTICIPANT_NOT_MEMBER"
    RECIPIENT_NOT_MEMBER       = "RECIPIENT_NOT_MEMBER"
    SELF_SETTLEMENT            = "SELF_SETTLEMENT"
    NOT_A_PLACEHOLDER          = "NOT_A_PLACEHOLDER"

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not allowed
    TOKEN_MISSING              = "TOKEN_MISSING"          # 401
    TOKEN_INVALID              = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"          # 401
    FORBIDDEN                  = "FORBIDDEN"              # 403

    # ── System Errors (500) ────────────────────────────────────────────────
    PERSIST_FAILED             = "PERSIST_FAILED"
    LEDGER_INCONSISTENT        = "LEDGER_INCONSISTENT"
    INTERNAL_ERROR             = "INTERNAL_ERROR"


# ── Warning Code Registry ──────────────────────────────────────────────────
#
# Warnings are returned alongside a 2xx response in the `warnings` array.
# They do not block the request.
# ──────────────────────────────────────────────────────────────────────────

class WarningCode:

    # Settlement amount exceeds the current outstanding debt between the two
    # parties. Still recorded; pre-payment is valid.
    OVERPAYMENT = "OVERPAYMENT"

    # Removing a member left some expenses with splits that no longer add up
    # to the expense amount.
    SPLITS_PURGED = "SPLITS_PURGED"


# ── Error taxonomy ─────────────────────────────────────────────────────────
#
# Each class pins its code and HTTP status so raise sites only supply the
# message (and optionally the offending field).
# ──────────────────────────────────────────────────────────────────────────

class ValidationError(AppError):
    """Bad caller input. Raised before any side effect; always recoverable."""

    def __init__(self, message: str, field: str | None = None,
                 code: str = ErrorCode.VALIDATION_FAILED) -> None:
        super().__init__(code, message, 400, field=field)


class InvalidAmount(AppError):
    """A value could not be interpreted as a 2-decimal currency amount."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(ErrorCode.INVALID_AMOUNT, message, 400, field=field)


class AllocationError(AppError):
    """Base for allocator-level failures. No side effects have happened."""

    code_value = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(self.code_value, message, 422, field=field)


class NoParticipants(AllocationError):
    code_value = ErrorCode.NO_PARTICIPANTS


class InvalidWeight(AllocationError):
    code_value = ErrorCode.INVALID_WEIGHT


class InvalidTotal(AllocationError):
    code_value = ErrorCode.INVALID_TOTAL


class InvalidShareTotal(AllocationError):
    code_value = ErrorCode.INVALID_SHARE_TOTAL


class SplitMismatch(AllocationError):
    code_value = ErrorCode.SPLIT_SUM_MISMATCH


class DuplicateSubmission(AppError):
    """The same client token already has an allocate+persist in flight."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.SUBMISSION_IN_PROGRESS, message, 409)


class PersistError(AppError):
    """
    The data-access collaborator failed.

    `compensated` is False when a partial write could not be undone; the
    message then names the orphaned expense or the expenses missing a split.
    """

    def __init__(self, message: str, compensated: bool = True) -> None:
        super().__init__(ErrorCode.PERSIST_FAILED, message, 500)
        self.compensated = compensated


class ConsistencyError(AppError):
    """Incremental ledger state disagrees with a full recompute."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.LEDGER_INCONSISTENT, message, 500)
