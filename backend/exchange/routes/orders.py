# Overview: Flask API routes for orders; parses input and returns JSON responses.

# backend/exchange/routes/orders.py
"""
Order routes: creation, buyer/seller confirmation, cancellation, meetup.

The acting party is always the authenticated user; confirm sets the
buyer's or the seller's flag depending on who calls it.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..errors import MarketError
from ..services import order_service
from ..decorators import require_auth, rate_limited


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
@require_auth
@rate_limited("order_create")
def create_order_route():
    """
    Create an order.

    Body: [{"product_id": 1, "quantity": 2}, ...]
       or {"items": [...], "shipping_address": {...}}

    400 for bad references or insufficient inventory.
    """
    try:
        data = request.get_json(silent=True)
        if isinstance(data, dict):
            items = data.get("items")
            shipping_address = data.get("shipping_address")
        else:
            items = data
            shipping_address = None

        order = order_service.create_order(g.current_user, items, shipping_address)
        return jsonify({"order": order.to_dict()}), 201

    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_auth
def list_my_orders_route():
    """Orders the caller placed as buyer."""
    orders = order_service.list_orders_for_buyer(g.current_user.id)
    return jsonify({"orders": [o.to_dict() for o in orders], "count": len(orders)}), 200


@orders_bp.get("/seller")
@require_auth
def list_seller_orders_route():
    """Orders placed against the caller's listings."""
    orders = order_service.list_orders_for_seller(g.current_user.id)
    return jsonify({"orders": [o.to_dict() for o in orders], "count": len(orders)}), 200


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id, g.current_user)
        return jsonify({"order": order.to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code


@orders_bp.get("/<int:order_id>/events")
@require_auth
def get_order_events_route(order_id: int):
    try:
        events = order_service.get_order_events(order_id, g.current_user)
        return jsonify({"events": [ev.to_dict() for ev in events]}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code


@orders_bp.patch("/<int:order_id>/confirm")
@require_auth
def confirm_order_route(order_id: int):
    """
    Confirm the meetup as buyer or seller.

    Idempotent. 404 absent/deleted, 403 not a party, 409 cancelled or disputed.
    """
    try:
        order = order_service.confirm_order(order_id, g.current_user)
        return jsonify({"order": order.to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to confirm order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/cancel")
@require_auth
def cancel_order_route(order_id: int):
    """Cancel; repeating it is a no-op, 409 once the order is completed."""
    try:
        order = order_service.cancel_order(order_id, g.current_user)
        return jsonify({"order": order.to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/meetup")
@require_auth
def set_meetup_route(order_id: int):
    """Body: {"location": "...", "meetup_at": "2026-05-01T15:00:00Z"}"""
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.set_meetup(
            order_id, g.current_user, data.get("location"), data.get("meetup_at")
        )
        return jsonify({"order": order.to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to set meetup")
        return jsonify({"error": "Internal server error"}), 500
