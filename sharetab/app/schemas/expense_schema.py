"""
schemas/expense_schema.py — Marshmallow schemas for expense endpoints.

Validation responsibility:
  - This file:
      - Field types, lengths, enum values, amount parsing (MoneyField)
      - DUPLICATE_SPLIT_USER (400) — same id twice in participants
      - The policy field matching split_mode must be present
        (weights / percentages / amounts), and no other policy field
      - Non-empty-after-trim enforcement for description
  - services/split_allocator.py:
      - Policy keys match participants (400), weights positive (422),
        percentages total 100 (422), exact amounts total the expense (422)
  - services/expense_coordinator.py:
      - Caller and participants are group members (403 / 422)

Request shape (create):
    {
      "description": "Dinner",
      "amount": "100.00",
      "date": "2026-10-01",                 optional
      "split_mode": "equal",                equal | shares | percentages | exact
      "participants": [1, 2, 3],
      "weights": {"1": 1, "2": 2},          shares only
      "percentages": {"1": "50", ...},      percentages only
      "amounts": {"1": "30.00", ...},       exact only
      "client_token": "c0ffee"              optional, guards double submission
    }

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate, validates_schema

from sharetab.app.errors import ErrorCode
from sharetab.app.schemas.money_field import MoneyField
from sharetab.app.services.split_allocator import SplitMode

# Which optional field carries the policy for each split mode.
_POLICY_FIELD = {
    SplitMode.SHARES:      "weights",
    SplitMode.PERCENTAGES: "percentages",
    SplitMode.EXACT:       "amounts",
}


def _validate_non_empty_after_trim(value: str) -> None:
    """
    Raises ValidationError if the string is blank or contains only whitespace.
    Mirrors the DB CHECK(LENGTH(TRIM(...)) > 0) constraint at the API layer.
    """
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


def _member_id(**kwargs) -> fields.Int:
    return fields.Int(
        strict=True,
        validate=validate.Range(min=1, error="Member ids must be positive integers."),
        **kwargs,
    )


# ── Allocation request (preview and create share this) ─────────────────────

class AllocationRequestSchema(Schema):
    """
    POST /groups/:id/expenses/preview

    Everything needed to compute splits; nothing is written.
    """

    amount = MoneyField(required=True, positive=True)

    split_mode = fields.Enum(
        SplitMode,
        load_default=SplitMode.EQUAL,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_SPLIT_MODE},
    )

    participants = fields.List(
        _member_id(),
        required=True,
        validate=validate.Length(min=1, error="At least one participant is required."),
    )

    # JSON object keys are strings; fields.Int parses "1" → 1.
    weights = fields.Dict(keys=fields.Int(), values=fields.Decimal(), load_default=None)
    percentages = fields.Dict(keys=fields.Int(), values=fields.Decimal(), load_default=None)
    amounts = fields.Dict(keys=fields.Int(), values=MoneyField(), load_default=None)

    @validates_schema
    def validate_policy_coherence(self, data: dict, **kwargs) -> None:
        """
        1. DUPLICATE_SPLIT_USER (400): an id appears twice in participants.
        2. The policy field for split_mode must be present.
        3. Policy fields belonging to other modes must be absent.
        """
        participants = data.get("participants") or []
        if len(participants) != len(set(participants)):
            raise ValidationError({"participants": [ErrorCode.DUPLICATE_SPLIT_USER]})

        mode = data.get("split_mode", SplitMode.EQUAL)
        expected = _POLICY_FIELD.get(mode)
        if expected is not None and data.get(expected) is None:
            raise ValidationError({
                expected: [f"{expected} is required when split_mode is '{mode.value}'."],
            })
        for name in _POLICY_FIELD.values():
            if name != expected and data.get(name) is not None:
                raise ValidationError({
                    name: [f"{name} is not accepted when split_mode is '{mode.value}'."],
                })


# ── Create expense ─────────────────────────────────────────────────────────

class CreateExpenseSchema(AllocationRequestSchema):
    """
    POST /groups/:id/expenses

    The caller (from the session context) is recorded as the member who
    paid. Membership checks happen in the coordinator.
    """

    description = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=255,
                error="Description must be between 1 and 255 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    date = fields.Date(load_default=None)

    client_token = fields.Str(
        load_default=None,
        validate=validate.Length(min=1, max=100),
    )


# ── Live share editing ─────────────────────────────────────────────────────

class ShareEditSchema(Schema):
    """One edit in a rebalance request: units OR an amount, not both."""

    member_id = _member_id(required=True)
    units = fields.Int(strict=True, load_default=None)
    amount = MoneyField(load_default=None)

    @validates_schema
    def validate_one_value(self, data: dict, **kwargs) -> None:
        if (data.get("units") is None) == (data.get("amount") is None):
            raise ValidationError({"units": ["Provide exactly one of units or amount."]})


class RebalanceRequestSchema(Schema):
    """
    POST /groups/:id/expenses/rebalance

    Replays a custom-share form: start from an equal split over
    `participants`, drop `excluded`, apply `edits` in order (each edit
    locks that member). Returns the settled share map and amounts.
    """

    amount = MoneyField(required=True, positive=True)
    participants = fields.List(
        _member_id(),
        required=True,
        validate=validate.Length(min=1, error="At least one participant is required."),
    )
    excluded = fields.List(_member_id(), load_default=list)
    edits = fields.List(fields.Nested(ShareEditSchema), load_default=list)

    @validates_schema
    def validate_participants(self, data: dict, **kwargs) -> None:
        participants = data.get("participants") or []
        if len(participants) != len(set(participants)):
            raise ValidationError({"participants": [ErrorCode.DUPLICATE_SPLIT_USER]})
