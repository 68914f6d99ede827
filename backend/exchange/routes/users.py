# Overview: Flask API routes for public user profiles; parses input and returns JSON responses.

from flask import Blueprint, jsonify

from ..errors import MarketError
from ..services import user_service

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("/<int:user_id>")
def get_public_profile(user_id: int):
    """Public seller page: listings and written reviews. No contact details."""
    try:
        return jsonify(user_service.get_public_profile(user_id)), 200
    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
