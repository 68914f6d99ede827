# Overview: Flask API routes for reviews; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app, g

from ..errors import MarketError
from ..validation import parse_id
from ..services import review_service
from ..decorators import require_auth, rate_limited


reviews_bp = Blueprint("reviews", __name__, url_prefix="/api/reviews")


@reviews_bp.get("/product/<int:product_id>")
def list_reviews_route(product_id: int):
    return jsonify(review_service.list_reviews(product_id)), 200


@reviews_bp.get("/can-review/<int:product_id>")
@require_auth
def can_review_route(product_id: int):
    return jsonify(review_service.can_review(g.current_user, product_id)), 200


@reviews_bp.post("")
@require_auth
@rate_limited("review_create")
def create_review_route():
    """Body: {"product_id": 1, "rating": 5, "comment": "..."}"""
    try:
        data = request.get_json(silent=True) or {}
        product_id = parse_id(data.get("product_id"), "product_id")

        review = review_service.create_review(
            g.current_user, product_id, data.get("rating"), data.get("comment")
        )
        return jsonify({"review": review.to_dict()}), 201

    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create review")
        return jsonify({"error": "Internal server error"}), 500


@reviews_bp.patch("/<int:review_id>")
@require_auth
def update_review_route(review_id: int):
    try:
        data = request.get_json(silent=True) or {}
        review = review_service.update_review(
            review_id, g.current_user, data.get("rating"), data.get("comment")
        )
        return jsonify({"review": review.to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update review")
        return jsonify({"error": "Internal server error"}), 500


@reviews_bp.delete("/<int:review_id>")
@require_auth
def delete_review_route(review_id: int):
    try:
        review_service.delete_review(review_id, g.current_user)
        return jsonify({"message": "Review deleted"}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
