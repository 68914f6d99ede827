# Overview: Flask API routes for payments; parses input and returns JSON responses.

# backend/exchange/routes/payments.py
"""
Payment routes.

Record keeping only: no charge is made anywhere. Card numbers are
validated and reduced to their last four digits before storage.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..errors import MarketError
from ..validation import parse_id
from ..services import payment_service, stats_service
from ..decorators import require_auth


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("")
@require_auth
def record_payment_route():
    """Body: {"order_id": 1, "payment_method": "credit_card", "card_number": "4242..."}"""
    try:
        data = request.get_json(silent=True) or {}
        order_id = parse_id(data.get("order_id"), "order_id")
        method = data.get("payment_method")
        if not method:
            return jsonify({"error": "payment_method is required"}), 400

        payment = payment_service.record_payment(order_id, g.current_user, method, data.get("card_number"))
        return jsonify({"payment": payment.to_dict()}), 201

    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/order/<int:order_id>")
@require_auth
def get_order_payment_route(order_id: int):
    try:
        payment = payment_service.get_payment_for_order(order_id, g.current_user)
        return jsonify({"payment": payment.to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code


@payments_bp.get("/mine")
@require_auth
def list_my_payments_route():
    """Query params: status, page (default 1), per_page (default 20, max 100)"""
    page = max(request.args.get("page", 1, type=int), 1)
    per_page = min(max(request.args.get("per_page", 20, type=int), 1), 100)

    payments, total = payment_service.list_payments_for_user(
        g.current_user,
        status=request.args.get("status"),
        page=page,
        per_page=per_page,
    )
    return jsonify({
        "payments": [p.to_dict() for p in payments],
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": (total + per_page - 1) // per_page if total else 1,
        },
    }), 200


@payments_bp.get("/summary")
@require_auth
def payment_summary_route():
    """The caller's total spent and payment counts by status."""
    return jsonify({"summary": stats_service.payment_summary(g.current_user)}), 200
