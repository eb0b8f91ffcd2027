"""
routes/balances.py — Balance route handlers.

Layer rules:
  - Parse query params, call ONE service, return envelope.
  - No business logic. No DB queries. No bare SQL.

Endpoints (base url_prefix=/api/v1/groups):
  GET /groups/:id/balances                     → 200  balances, pairwise, simplified debts
  GET /groups/:id/balances/outstanding?with=N  → 200  per-expense debts between caller and N
"""

from __future__ import annotations

import asyncio

from flask import Blueprint, current_app, g, jsonify, request

from sharetab.app.errors import AppError, ErrorCode
from sharetab.app.middleware.session_middleware import current_store, require_session
from sharetab.app.services import balance_service

balances_bp = Blueprint("balances", __name__)


@balances_bp.route("/<int:group_id>/balances", methods=["GET"])
@require_session
def get_balances(group_id: int):
    """
    GET /groups/:id/balances

    Positive balance = the member is owed money. The service checks that
    balances sum to zero and raises LEDGER_INCONSISTENT (500) otherwise.
    """
    result = asyncio.run(balance_service.get_balance_response(
        current_store(),
        g.session_context,
        group_id,
        symbol=current_app.config.get("CURRENCY_SYMBOL", "$"),
    ))
    return jsonify({"data": result, "warnings": []}), 200


@balances_bp.route("/<int:group_id>/balances/outstanding", methods=["GET"])
@require_session
def get_outstanding(group_id: int):
    """
    GET /groups/:id/balances/outstanding?with=<profile_id>

    Settle-up view: what the caller and the other member owe each other,
    expense by expense.
    """
    other = request.args.get("with", type=int)
    if other is None:
        raise AppError(
            ErrorCode.MISSING_FIELD,
            "Query parameter 'with' (a member's profile id) is required.",
            400,
            field="with",
        )
    result = asyncio.run(balance_service.get_outstanding_response(
        current_store(),
        g.session_context,
        group_id,
        other,
        symbol=current_app.config.get("CURRENCY_SYMBOL", "$"),
    ))
    return jsonify({"data": result, "warnings": []}), 200
