"""
routes/expenses.py — Expense route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.
  - Writes go through ExpenseCoordinator; reads through expense_service.

Registered at /api/v1 (not /api/v1/expenses) because this blueprint owns
both the group-scoped paths and the expense-scoped ones.

Endpoints:
  POST   /groups/:id/expenses            → 201  create expense + splits
  GET    /groups/:id/expenses            → 200  list expenses, newest first
  POST   /groups/:id/expenses/preview    → 200  allocation preview, no writes
  POST   /groups/:id/expenses/rebalance  → 200  custom-share form replay, no writes
  GET    /expenses/:id                   → 200  one expense with splits
  DELETE /expenses/:id                   → 200  delete expense (creator or admin)
"""

from __future__ import annotations

import asyncio

from flask import Blueprint, current_app, g, jsonify, request

from sharetab.app.extensions import db
from sharetab.app.middleware.session_middleware import current_store, require_session
from sharetab.app.schemas.expense_schema import (
    AllocationRequestSchema,
    CreateExpenseSchema,
    RebalanceRequestSchema,
)
from sharetab.app.services import expense_service
from sharetab.app.services.expense_coordinator import ExpenseCoordinator

expenses_bp = Blueprint("expenses", __name__)


def _symbol() -> str:
    return current_app.config.get("CURRENCY_SYMBOL", "$")


def _coordinator() -> ExpenseCoordinator:
    return ExpenseCoordinator(
        current_store(), in_flight=current_app.extensions["sharetab.in_flight"],
    )


@expenses_bp.route("/groups/<int:group_id>/expenses", methods=["POST"])
@require_session
def create_expense(group_id: int):
    """
    POST /groups/:id/expenses — Create an expense with computed splits.

    The caller is recorded as the member who paid.
    """
    data = CreateExpenseSchema().load(request.get_json(force=True) or {})
    submission = expense_service.build_submission(group_id, data)
    expense = asyncio.run(_coordinator().submit_expense(g.session_context, submission))
    db.session.commit()
    return jsonify({"data": expense_service.expense_dict(expense, _symbol()), "warnings": []}), 201


@expenses_bp.route("/groups/<int:group_id>/expenses", methods=["GET"])
@require_session
def list_expenses(group_id: int):
    """GET /groups/:id/expenses — List a group's expenses."""
    expenses = asyncio.run(expense_service.list_expenses(
        current_store(), g.session_context, group_id,
    ))
    symbol = _symbol()
    return jsonify({
        "data": [expense_service.expense_dict(e, symbol) for e in expenses],
        "warnings": [],
    }), 200


@expenses_bp.route("/groups/<int:group_id>/expenses/preview", methods=["POST"])
@require_session
def preview_expense(group_id: int):
    """POST /groups/:id/expenses/preview — Show the splits an expense would get."""
    data = AllocationRequestSchema().load(request.get_json(force=True) or {})
    allocations = asyncio.run(expense_service.preview(
        current_store(), g.session_context, group_id, data,
    ))
    return jsonify({
        "data": {
            "amount": str(data["amount"]),
            "split_mode": data["split_mode"].value,
            "allocations": expense_service.allocation_dicts(allocations, _symbol()),
        },
        "warnings": [],
    }), 200


@expenses_bp.route("/groups/<int:group_id>/expenses/rebalance", methods=["POST"])
@require_session
def rebalance_shares(group_id: int):
    """POST /groups/:id/expenses/rebalance — Settle a custom-share form."""
    data = RebalanceRequestSchema().load(request.get_json(force=True) or {})
    result = asyncio.run(expense_service.rebalance(
        current_store(), g.session_context, group_id, data,
    ))
    return jsonify({"data": result, "warnings": []}), 200


@expenses_bp.route("/expenses/<int:expense_id>", methods=["GET"])
@require_session
def get_expense(expense_id: int):
    """GET /expenses/:id — One expense with its splits."""
    expense = asyncio.run(expense_service.get_expense(
        current_store(), g.session_context, expense_id,
    ))
    return jsonify({"data": expense_service.expense_dict(expense, _symbol()), "warnings": []}), 200


@expenses_bp.route("/expenses/<int:expense_id>", methods=["DELETE"])
@require_session
def delete_expense(expense_id: int):
    """DELETE /expenses/:id — Hard-delete an expense and its splits."""
    expense = asyncio.run(_coordinator().delete_expense(g.session_context, expense_id))
    db.session.commit()
    return jsonify({
        "data": {"id": expense.id, "group_id": expense.group_id, "deleted": True},
        "warnings": [],
    }), 200
