"""
routes/settlements.py — Settlement route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.

Special: create_settlement returns (settlement, warnings[]).
  If warnings is non-empty (e.g. OVERPAYMENT), the route includes them in the
  response envelope: {"data": {...}, "warnings": [{"code": "OVERPAYMENT", ...}]}.
  The HTTP status is still 201 — overpayment does NOT block the request.

Endpoints (base url_prefix=/api/v1/groups):
  POST   /groups/:id/settlements  → 201  record a payment
  GET    /groups/:id/settlements  → 200  list all settlements for a group
"""

from __future__ import annotations

import asyncio

from flask import Blueprint, g, jsonify, request

from sharetab.app.extensions import db
from sharetab.app.middleware.session_middleware import current_store, require_session
from sharetab.app.records import SettlementRecord
from sharetab.app.schemas.settlement_schema import CreateSettlementSchema
from sharetab.app.services import settlement_service

settlements_bp = Blueprint("settlements", __name__)


# ── Serialization helper ───────────────────────────────────────────────────

def _serialize_settlement(s: SettlementRecord) -> dict:
    return {
        "id": s.id,
        "group_id": s.group_id,
        "paid_by": s.paid_by,
        "paid_to": s.paid_to,
        "amount": str(s.amount),  # money leaves as a string, never a JS number
        "expense_id": s.expense_id,
        "note": s.note,
        "created_at": s.created_at.isoformat() if s.created_at else None,
    }


# ── Route handlers ─────────────────────────────────────────────────────────

@settlements_bp.route("/<int:group_id>/settlements", methods=["POST"])
@require_session
def create_settlement(group_id: int):
    """
    POST /groups/:id/settlements — Record a payment.

    paid_by is the caller, not from the body. If the amount exceeds what
    the caller owes the recipient, the settlement is still recorded and an
    OVERPAYMENT warning is included. Status remains 201.
    """
    data = CreateSettlementSchema().load(request.get_json(force=True) or {})
    settlement, warnings = asyncio.run(settlement_service.create_settlement(
        current_store(), g.session_context, group_id, data,
    ))
    db.session.commit()
    return jsonify({"data": _serialize_settlement(settlement), "warnings": warnings}), 201


@settlements_bp.route("/<int:group_id>/settlements", methods=["GET"])
@require_session
def list_settlements(group_id: int):
    """GET /groups/:id/settlements — List all settlements for a group."""
    settlements = asyncio.run(settlement_service.list_settlements(
        current_store(), g.session_context, group_id,
    ))
    return jsonify({
        "data": [_serialize_settlement(s) for s in settlements],
        "warnings": [],
    }), 200
