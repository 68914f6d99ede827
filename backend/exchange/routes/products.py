# Overview: Flask API routes for listings; parses input and returns JSON responses.

# backend/exchange/routes/products.py
"""
Listing routes.

Browsing (list, detail, inventory) is public. Creating, editing and
deleting require authentication; edits and deletes are owner-or-admin.
"""
from flask import Blueprint, request, jsonify, current_app, g

from ..errors import MarketError
from ..models import Product
from ..services import inventory_service, products_service
from ..validation import ModelValidationPolicy, validate_payload, enforce_rules_product
from ..decorators import require_auth

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "price", "category", "condition", "images", "campus", "quantity"},
    required_on_create={"name", "description", "price", "category", "condition", "campus"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
def list_products():
    """
    Browse listings.

    Query params:
    - category, condition, campus: exact filters
    - search: substring of name or description
    - seller_id: int
    - page: int (default 1)
    - per_page: int (default 20, max 100)
    """
    result = products_service.list_products(
        category=request.args.get("category"),
        condition=request.args.get("condition"),
        campus=request.args.get("campus"),
        search=request.args.get("search"),
        seller_id=request.args.get("seller_id", type=int),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return jsonify(result), 200


@products_bp.post("")
@require_auth
def create_product_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
        product = products_service.create_product(seller=g.current_user, patch=patch)
        return jsonify({"product": products_service.serialize_product(product)}), 201
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create listing")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        product = products_service.get_product(product_id)
        return jsonify({"product": products_service.serialize_product(product)}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code


@products_bp.get("/<int:product_id>/inventory")
def get_inventory_route(product_id: int):
    """{listed, available, sold, reserved}, derived from orders at read time."""
    try:
        product = products_service.get_product(product_id)
        return jsonify(inventory_service.get_inventory_stats(product.id, product.quantity)), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code


@products_bp.patch("/<int:product_id>")
@require_auth
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
        product = products_service.update_product(product_id, g.current_user, patch)
        return jsonify({"product": products_service.serialize_product(product)}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update listing")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.delete("/<int:product_id>")
@require_auth
def delete_product_route(product_id: int):
    """Soft delete; 409 while orders for the listing are waiting to meet."""
    try:
        products_service.delete_product(product_id, g.current_user)
        return jsonify({"message": "Listing deleted"}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete listing")
        return jsonify({"error": "Internal server error"}), 500
