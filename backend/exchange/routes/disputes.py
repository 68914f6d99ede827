# Overview: Flask API routes for disputes; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app, g

from ..errors import MarketError
from ..validation import parse_id
from ..services import dispute_service
from ..decorators import require_auth, require_admin


disputes_bp = Blueprint("disputes", __name__, url_prefix="/api/disputes")


@disputes_bp.post("")
@require_auth
def open_dispute_route():
    """Body: {"order_id": 1, "reason": "..."}"""
    try:
        data = request.get_json(silent=True) or {}
        order_id = parse_id(data.get("order_id"), "order_id")

        dispute = dispute_service.open_dispute(order_id, g.current_user, data.get("reason"))
        return jsonify({"dispute": dispute.to_dict()}), 201

    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to open dispute")
        return jsonify({"error": "Internal server error"}), 500


@disputes_bp.get("")
@require_auth
def list_my_disputes_route():
    disputes = dispute_service.list_disputes_for_user(g.current_user)
    return jsonify({"disputes": [d.to_dict(include_messages=False) for d in disputes]}), 200


@disputes_bp.get("/<int:dispute_id>")
@require_auth
def get_dispute_route(dispute_id: int):
    try:
        dispute = dispute_service.get_dispute(dispute_id, g.current_user)
        return jsonify({"dispute": dispute.to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code


@disputes_bp.post("/<int:dispute_id>/messages")
@require_auth
def add_message_route(dispute_id: int):
    """Body: {"message": "..."} (10-5000 characters)"""
    try:
        data = request.get_json(silent=True) or {}
        dispute = dispute_service.add_message(dispute_id, g.current_user, data.get("message"))
        return jsonify({"dispute": dispute.to_dict()}), 201
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add dispute message")
        return jsonify({"error": "Internal server error"}), 500


@disputes_bp.patch("/<int:dispute_id>/resolve")
@require_auth
@require_admin
def resolve_dispute_route(dispute_id: int):
    """Body: {"resolution": "..."}. Cancels the order if it is still waiting to meet."""
    try:
        data = request.get_json(silent=True) or {}
        dispute = dispute_service.resolve_dispute(dispute_id, g.current_user, data.get("resolution"))
        return jsonify({"dispute": dispute.to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to resolve dispute")
        return jsonify({"error": "Internal server error"}), 500


@disputes_bp.patch("/<int:dispute_id>/close")
@require_auth
@require_admin
def close_dispute_route(dispute_id: int):
    try:
        dispute = dispute_service.close_dispute(dispute_id, g.current_user)
        return jsonify({"dispute": dispute.to_dict()}), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to close dispute")
        return jsonify({"error": "Internal server error"}), 500
