# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/exchange/routes/auth.py
"""
Authentication API routes

- Self-registration for campus accounts (password strength enforced)
- Login rate-limited per remote address (auth_login bucket)
- Bearer session tokens (see services/session_service.py)
- Profile edits and password changes for the signed-in account
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..errors import MarketError
from ..services import auth_service
from ..services import session_service
from ..decorators import require_auth, rate_limited


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/register")
def register_route():
    """Create an account and return a session token for it."""
    try:
        data = request.get_json(silent=True) or {}
        user = auth_service.register_user(
            email=data.get("email"),
            password=data.get("password"),
            first_name=data.get("first_name"),
            last_name=data.get("last_name"),
            phone=data.get("phone"),
        )
        _, token = session_service.create_session(
            user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
        return jsonify({"user": user.to_dict(), "token": token}), 201

    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to register user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/login")
@rate_limited("auth_login")
def login_route():
    """
    Authenticate and create a session token.

    Token must be sent as "Authorization: Bearer <token>" on protected routes.
    """
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        password = data.get("password")

        if not all([email, password]):
            return jsonify({"error": "email and password required"}), 400

        user = auth_service.authenticate(email, password)
        if not user:
            return jsonify({"error": "Invalid credentials"}), 401

        _, token = session_service.create_session(
            user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
        return jsonify({"user": user.to_dict(), "token": token}), 200

    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to log in")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    token = request.headers.get("Authorization", "").split(" ", 1)[1].strip()
    session_service.revoke_session(token)
    return jsonify({"message": "Logged out"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200


@auth_bp.put("/profile")
@require_auth
def update_profile_route():
    """Body: any of {"first_name", "last_name", "phone"}"""
    try:
        data = request.get_json(silent=True) or {}
        user = auth_service.update_profile(g.current_user, data)
        return jsonify({"user": user.to_dict()}), 200

    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update profile")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.put("/change-password")
@require_auth
def change_password_route():
    """
    Body: {"current_password": "...", "new_password": "..."}

    Signs out every other device; the token used for this request stays valid.
    """
    try:
        data = request.get_json(silent=True) or {}
        token = request.headers.get("Authorization", "").split(" ", 1)[1].strip()
        auth_service.change_password(
            g.current_user,
            data.get("current_password"),
            data.get("new_password"),
            keep_token=token,
        )
        return jsonify({"message": "Password changed"}), 200

    except MarketError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to change password")
        return jsonify({"error": "Internal server error"}), 500
