# Overview: Flask API routes for browsing categories; parses input and returns JSON responses.

"""
Public category browsing. Admin upkeep lives under /api/admin/categories.
"""
from flask import Blueprint, jsonify

from ..errors import MarketError
from ..services import category_service

categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")


@categories_bp.get("")
def list_categories():
    categories = category_service.list_categories()
    return jsonify({"categories": categories, "count": len(categories)}), 200


@categories_bp.get("/<string:slug>")
def get_category(slug: str):
    try:
        category = category_service.get_category_by_slug(slug)
        return jsonify({"category": category.to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
