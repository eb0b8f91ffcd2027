"""
routes/groups.py — Group and membership route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.
  - Services are coroutines; each handler drives one with asyncio.run().

Endpoints (base url_prefix=/api/v1/groups):
  POST   /groups                          → 201  create group (caller is admin)
  GET    /groups                          → 200  list caller's groups
  GET    /groups/:id                      → 200  get group + members
  POST   /groups/:id/members              → 201  invite profile / placeholder
                                            200  already a member
  DELETE /groups/:id/members/:profile_id  → 200  remove member (admin or self)
  PATCH  /groups/:id/members/:profile_id  → 200  edit placeholder (admin only)
"""

from __future__ import annotations

import asyncio

from flask import Blueprint, current_app, g, jsonify, request

from sharetab.app.errors import WarningCode
from sharetab.app.extensions import db
from sharetab.app.middleware.session_middleware import current_store, require_session
from sharetab.app.schemas.group_schema import (
    CreateGroupSchema,
    InviteMemberSchema,
    UpdatePlaceholderSchema,
)
from sharetab.app.services import group_service, profile_service
from sharetab.app.services.expense_coordinator import ExpenseCoordinator

groups_bp = Blueprint("groups", __name__)


@groups_bp.route("/", methods=["POST"])
@require_session
def create_group():
    """POST /groups — Create a new group. Caller becomes its first admin."""
    data = CreateGroupSchema().load(request.get_json(force=True) or {})
    result = asyncio.run(group_service.create_group(
        current_store(), g.session_context, data["name"].strip(),
    ))
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@groups_bp.route("/", methods=["GET"])
@require_session
def list_groups():
    """GET /groups — List all groups the caller belongs to."""
    result = asyncio.run(group_service.list_groups(current_store(), g.session_context))
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>", methods=["GET"])
@require_session
def get_group(group_id: int):
    """GET /groups/:id — Group details with member list. Caller must be a member."""
    result = asyncio.run(group_service.get_group(current_store(), g.session_context, group_id))
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>/members", methods=["POST"])
@require_session
def invite_member(group_id: int):
    """POST /groups/:id/members — Add an existing profile or a placeholder."""
    data = InviteMemberSchema().load(request.get_json(force=True) or {})
    result, created = asyncio.run(group_service.invite_member(
        current_store(), g.session_context, group_id, data,
    ))
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201 if created else 200


@groups_bp.route("/<int:group_id>/members/<int:profile_id>", methods=["DELETE"])
@require_session
def remove_member(group_id: int, profile_id: int):
    """
    DELETE /groups/:id/members/:profile_id — Remove a member.

    The member's splits in this group are purged first. Expenses that lose
    a split no longer add up to their amount; they are listed in a
    SPLITS_PURGED warning.
    """
    coordinator = ExpenseCoordinator(
        current_store(), in_flight=current_app.extensions["sharetab.in_flight"],
    )
    removal = asyncio.run(coordinator.remove_member(g.session_context, group_id, profile_id))
    db.session.commit()

    warnings = []
    if removal.purged_expense_ids:
        warnings.append({
            "code": WarningCode.SPLITS_PURGED,
            "message": (
                f"Splits for member {profile_id} were removed from expenses "
                f"{list(removal.purged_expense_ids)}."
            ),
        })
    return jsonify({
        "data": {
            "group_id": removal.group_id,
            "member_id": removal.member_id,
            "purged_expense_ids": list(removal.purged_expense_ids),
        },
        "warnings": warnings,
    }), 200


@groups_bp.route("/<int:group_id>/members/<int:profile_id>", methods=["PATCH"])
@require_session
def update_placeholder(group_id: int, profile_id: int):
    """PATCH /groups/:id/members/:profile_id — Edit a placeholder member."""
    data = UpdatePlaceholderSchema().load(request.get_json(force=True) or {})
    profile = asyncio.run(profile_service.update_placeholder(
        current_store(), g.session_context, group_id, profile_id, data,
    ))
    db.session.commit()
    return jsonify({"data": profile_service.profile_dict(profile), "warnings": []}), 200
