"""
schemas/group_schema.py — Marshmallow schemas for group and membership endpoints.

Validation responsibility:
  - This file: field types, string lengths, non-empty checks (including trim),
    invite shape (existing profile XOR new placeholder).
  - services/group_service.py:
      - caller must be a member to read/write group data
      - PROFILE_NOT_FOUND (profile_id existence requires a DB lookup)
      - GROUP_NOT_FOUND (requires a DB lookup)
  - services/profile_service.py:
      - NOT_A_PLACEHOLDER, admin-only edits

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate, validates_schema

from sharetab.app.records import Role


def _validate_non_empty_after_trim(value: str) -> None:
    """
    Raises ValidationError if the string is blank or contains only whitespace.
    Mirrors the DB CHECK(LENGTH(TRIM(...)) > 0) constraint at the API layer.
    """
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


def _display_name(**kwargs) -> fields.Str:
    return fields.Str(
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Display name must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
        **kwargs,
    )


class CreateGroupSchema(Schema):
    """
    POST /groups

    name — non-empty after trim, max 100 chars. The DB has the same CHECK;
    the schema is the primary gate.
    """

    name = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Group name must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )


class InviteMemberSchema(Schema):
    """
    POST /groups/:id/members

    Either `profile_id` (add an existing profile) or `display_name`
    (+ optional email) to create a placeholder member. Never both.
    """

    profile_id = fields.Int(
        load_default=None,
        strict=True,
        validate=validate.Range(min=1, error="profile_id must be a positive integer."),
    )
    display_name = _display_name(load_default=None)
    email = fields.Email(load_default=None)
    role = fields.Str(
        load_default=Role.MEMBER.value,
        validate=validate.OneOf([r.value for r in Role]),
    )

    @validates_schema
    def validate_target(self, data: dict, **kwargs) -> None:
        has_profile = data.get("profile_id") is not None
        has_name = data.get("display_name") is not None
        if has_profile == has_name:
            raise ValidationError(
                {"profile_id": ["Provide exactly one of profile_id or display_name."]}
            )


class UpdatePlaceholderSchema(Schema):
    """
    PATCH /groups/:id/members/:profile_id

    Only provided fields are updated; null clears an optional field.
    """

    display_name = _display_name()
    email = fields.Email(allow_none=True)
    avatar_url = fields.Str(allow_none=True, validate=validate.Length(max=500))
    venmo_username = fields.Str(allow_none=True, validate=validate.Length(max=100))
    cashapp_username = fields.Str(allow_none=True, validate=validate.Length(max=100))
    paypal_username = fields.Str(allow_none=True, validate=validate.Length(max=100))
