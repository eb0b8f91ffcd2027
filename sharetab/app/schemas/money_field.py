"""
schemas/money_field.py — Marshmallow field for currency amounts.

Accepts strings ("12.50"), integers and JSON numbers and deserializes to
Money. Input with more than 2 decimal places is rounded half-up to the
cent; garbage, NaN/Infinity and booleans fail with INVALID_AMOUNT.

The route error handler recognises the INVALID_AMOUNT message as a
registered error code and returns it as the response code.
"""

from __future__ import annotations

from marshmallow import ValidationError, fields

from sharetab.app.errors import ErrorCode, InvalidAmount
from sharetab.app.money import Money


class MoneyField(fields.Field):

    def __init__(self, *, positive: bool = False, **kwargs) -> None:
        super().__init__(**kwargs)
        self.positive = positive

    def _deserialize(self, value, attr, data, **kwargs) -> Money:
        try:
            money = Money.parse(value, field=attr)
        except InvalidAmount:
            raise ValidationError(ErrorCode.INVALID_AMOUNT) from None
        if self.positive and not money.is_positive:
            raise ValidationError("Amount must be greater than zero.")
        if money.is_negative:
            raise ValidationError("Amount must not be negative.")
        return money

    def _serialize(self, value, attr, obj, **kwargs):
        if value is None:
            return None
        return str(value)
