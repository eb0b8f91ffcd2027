"""
schemas/settlement_schema.py — Marshmallow schema for settlement endpoints.

Validation responsibility:
  - This file: field types, positive amount, note length.
  - services/settlement_service.py:
      - SELF_SETTLEMENT (422)      — paid_by comes from the session context,
                                     which schemas never see
      - OVERPAYMENT (warning, 201) — requires the current ledger
      - RECIPIENT_NOT_MEMBER (422) — requires a membership lookup
      - EXPENSE_NOT_FOUND (404)    — requires an expense lookup

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from marshmallow import Schema, fields, validate

from sharetab.app.schemas.money_field import MoneyField


class CreateSettlementSchema(Schema):
    """
    POST /groups/:id/settlements

    Records a payment from the caller to another group member, optionally
    tied to one expense for per-expense reconciliation.
    """

    # Must be a positive integer. Membership is a DB concern.
    paid_to = fields.Int(
        required=True,
        strict=True,   # reject floats like 1.0 — integers only
        validate=validate.Range(min=1, error="paid_to must be a positive integer."),
    )

    # Overpayment is valid — not checked here.
    amount = MoneyField(required=True, positive=True)

    expense_id = fields.Int(
        load_default=None,
        strict=True,
        validate=validate.Range(min=1, error="expense_id must be a positive integer."),
    )

    note = fields.Str(load_default=None, validate=validate.Length(max=255))
