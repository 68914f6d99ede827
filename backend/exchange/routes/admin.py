# Overview: Flask API routes for admin operations; parses input and returns JSON responses.

# backend/exchange/routes/admin.py
"""
Admin routes for marketplace moderation.

Provides endpoints for:
- Orders (list, reset, soft delete, restore)
- Disputes (list, soft delete, restore)
- Payments (refund)
- Listings (restore)
- Users (directory, detail with history, ban, unban)
- Categories (list, create, update, soft delete, restore)
- Dashboard and payment statistics

All endpoints require an authenticated admin.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import MarketError
from ..services import (
    auth_service,
    category_service,
    dispute_service,
    order_service,
    payment_service,
    products_service,
    stats_service,
    user_service,
)
from ..decorators import require_auth, require_admin

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


def _include_deleted() -> bool:
    return request.args.get("include_deleted", "false").lower() == "true"


# =============================================================================
# ORDERS
# =============================================================================

@admin_bp.get("/orders")
@require_auth
@require_admin
def list_orders():
    """
    List all orders.

    Query params:
    - status: waiting_to_meet | met_and_exchanged | cancelled
    - include_deleted: bool (default false)
    - page, per_page (default 50, max 200)
    """
    page = max(request.args.get("page", 1, type=int), 1)
    per_page = min(max(request.args.get("per_page", 50, type=int), 1), 200)

    orders, total = order_service.list_all_orders(
        status=request.args.get("status"),
        include_deleted=_include_deleted(),
        page=page,
        per_page=per_page,
    )
    return jsonify({
        "orders": [o.to_dict() for o in orders],
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": (total + per_page - 1) // per_page if total else 1,
        },
    }), 200


@admin_bp.post("/orders/<int:order_id>/reset")
@require_auth
@require_admin
def reset_order(order_id: int):
    """Put an order back to waiting_to_meet with both confirmations cleared."""
    try:
        order = order_service.reset_order(order_id, g.current_user)
        return jsonify({"order": order.to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reset order")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.delete("/orders/<int:order_id>")
@require_auth
@require_admin
def delete_order(order_id: int):
    try:
        order = order_service.soft_delete_order(order_id, g.current_user)
        return jsonify({"order": order.to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete order")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.post("/orders/<int:order_id>/restore")
@require_auth
@require_admin
def restore_order(order_id: int):
    try:
        order = order_service.restore_order(order_id, g.current_user)
        return jsonify({"order": order.to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to restore order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# DISPUTES
# =============================================================================

@admin_bp.get("/disputes")
@require_auth
@require_admin
def list_disputes():
    disputes = dispute_service.list_all_disputes(
        status=request.args.get("status"),
        include_deleted=_include_deleted(),
    )
    return jsonify({"disputes": [d.to_dict(include_messages=False) for d in disputes], "count": len(disputes)}), 200


@admin_bp.delete("/disputes/<int:dispute_id>")
@require_auth
@require_admin
def delete_dispute(dispute_id: int):
    try:
        dispute = dispute_service.soft_delete_dispute(dispute_id, g.current_user)
        return jsonify({"dispute": dispute.to_dict(include_messages=False)}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete dispute")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.post("/disputes/<int:dispute_id>/restore")
@require_auth
@require_admin
def restore_dispute(dispute_id: int):
    try:
        dispute = dispute_service.restore_dispute(dispute_id, g.current_user)
        return jsonify({"dispute": dispute.to_dict(include_messages=False)}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to restore dispute")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYMENTS AND LISTINGS
# =============================================================================

@admin_bp.post("/payments/<int:payment_id>/refund")
@require_auth
@require_admin
def refund_payment(payment_id: int):
    """Body: {"amount": "5.00"} (optional; full refund when omitted)"""
    try:
        data = request.get_json(silent=True) or {}
        payment = payment_service.refund_payment(payment_id, g.current_user, data.get("amount"))
        return jsonify({"payment": payment.to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to refund payment")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.post("/products/<int:product_id>/restore")
@require_auth
@require_admin
def restore_product(product_id: int):
    try:
        product = products_service.restore_product(product_id, g.current_user)
        return jsonify({"product": products_service.serialize_product(product)}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code


# =============================================================================
# USERS
# =============================================================================

@admin_bp.get("/users")
@require_auth
@require_admin
def list_users():
    """
    Account directory, newest first.

    Query params:
    - search: substring of email, first or last name
    - role: user | admin
    - include_deleted: bool (default false)
    - page, per_page (default 20, max 200)
    """
    page = max(request.args.get("page", 1, type=int), 1)
    per_page = min(max(request.args.get("per_page", 20, type=int), 1), 200)

    users, total = user_service.list_users(
        search=request.args.get("search"),
        role=request.args.get("role"),
        include_deleted=_include_deleted(),
        page=page,
        per_page=per_page,
    )
    return jsonify({
        "users": [u.to_dict() for u in users],
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": (total + per_page - 1) // per_page if total else 1,
        },
    }), 200


@admin_bp.get("/users/<int:user_id>")
@require_auth
@require_admin
def get_user(user_id: int):
    """Account with its listings, orders as buyer, reviews and total spent."""
    try:
        return jsonify(user_service.get_user_detail(user_id, include_deleted=_include_deleted())), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code


@admin_bp.post("/users/<int:user_id>/ban")
@require_auth
@require_admin
def ban_user(user_id: int):
    """Body: {"reason": "..."} (optional). Revokes every session of the user."""
    try:
        data = request.get_json(silent=True) or {}
        user = auth_service.ban_user(user_id, g.current_user, data.get("reason"))
        return jsonify({"user": user.to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to ban user")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.post("/users/<int:user_id>/unban")
@require_auth
@require_admin
def unban_user(user_id: int):
    try:
        user = auth_service.unban_user(user_id, g.current_user)
        return jsonify({"user": user.to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code


# =============================================================================
# CATEGORIES
# =============================================================================

@admin_bp.get("/categories")
@require_auth
@require_admin
def list_categories():
    """Every category, soft-deleted ones included, with live listing counts."""
    categories = category_service.list_categories(include_deleted=True)
    return jsonify({"categories": categories, "count": len(categories)}), 200


@admin_bp.post("/categories")
@require_auth
@require_admin
def create_category():
    """Body: {"name": "...", "description": "...", "icon": "..."}"""
    try:
        data = request.get_json(silent=True) or {}
        category = category_service.create_category(g.current_user, data)
        return jsonify({"category": category.to_dict()}), 201
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create category")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.put("/categories/<int:category_id>")
@require_auth
@require_admin
def update_category(category_id: int):
    try:
        data = request.get_json(silent=True) or {}
        category = category_service.update_category(category_id, g.current_user, data)
        return jsonify({"category": category.to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update category")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.delete("/categories/<int:category_id>")
@require_auth
@require_admin
def delete_category(category_id: int):
    try:
        category = category_service.soft_delete_category(category_id, g.current_user)
        return jsonify({"category": category.to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code


@admin_bp.post("/categories/<int:category_id>/restore")
@require_auth
@require_admin
def restore_category(category_id: int):
    try:
        category = category_service.restore_category(category_id, g.current_user)
        return jsonify({"category": category.to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code


# =============================================================================
# STATISTICS
# =============================================================================

@admin_bp.get("/stats")
@require_auth
@require_admin
def dashboard_stats():
    return jsonify({"stats": stats_service.dashboard_stats()}), 200


@admin_bp.get("/stats/payments")
@require_auth
@require_admin
def payment_stats():
    return jsonify({"stats": stats_service.payment_stats()}), 200
