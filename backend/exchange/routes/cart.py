# Overview: Flask API routes for the cart and checkout; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app, g

from ..errors import MarketError
from ..services import cart_service
from ..decorators import require_auth, rate_limited


cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


@cart_bp.get("")
@require_auth
def get_cart_route():
    cart = cart_service.get_cart(g.current_user)
    return jsonify({"cart": cart_service.serialize_cart(cart)}), 200


@cart_bp.post("/items")
@require_auth
def add_item_route():
    try:
        data = request.get_json(silent=True) or {}
        if data.get("product_id") is None:
            return jsonify({"error": "product_id required"}), 400
        cart = cart_service.add_item(g.current_user, data.get("product_id"), data.get("quantity", 1))
        return jsonify({"cart": cart_service.serialize_cart(cart)}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add cart item")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.put("/items/<int:product_id>")
@require_auth
def update_item_route(product_id: int):
    try:
        data = request.get_json(silent=True) or {}
        cart = cart_service.update_item(g.current_user, product_id, data.get("quantity"))
        return jsonify({"cart": cart_service.serialize_cart(cart)}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update cart item")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.delete("/items/<int:product_id>")
@require_auth
def remove_item_route(product_id: int):
    cart = cart_service.remove_item(g.current_user, product_id)
    return jsonify({"cart": cart_service.serialize_cart(cart)}), 200


@cart_bp.delete("")
@require_auth
def clear_cart_route():
    cart = cart_service.clear_cart(g.current_user)
    return jsonify({"cart": cart_service.serialize_cart(cart)}), 200


@cart_bp.post("/checkout")
@require_auth
@rate_limited("order_create")
def checkout_route():
    """
    Turn the cart into one order per seller.

    Body: {"shipping_address": {...}} (optional)
    """
    try:
        data = request.get_json(silent=True) or {}
        orders = cart_service.checkout(g.current_user, data.get("shipping_address"))
        return jsonify({"orders": [o.to_dict() for o in orders]}), 201
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to check out cart")
        return jsonify({"error": "Internal server error"}), 500
