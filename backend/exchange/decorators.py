# Overview: Request decorators for API routes: authentication, admin gate, rate limiting.

from functools import wraps
from flask import current_app, request, jsonify, g

from .extensions import limiter
from .services import session_service
from .services.session_service import AccountBlockedError


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def require_auth(f):
    """
    Require a valid bearer token.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.session_context: The full SessionContext object

    Returns 401 for a missing, invalid or expired token and 403 when the
    account behind a valid token is banned, deleted or deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1].strip()

        try:
            context = session_service.validate_session(token)
        except AccountBlockedError as e:
            return jsonify({"error": "Account is not allowed to use the marketplace", "details": {"reason": str(e)}}), 403

        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """Require the authenticated user to be an admin. Stack below @require_auth."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _is_authenticated():
            return jsonify({"error": "Authentication required"}), 401
        if not g.current_user.is_admin:
            return jsonify({"error": "Admin access required"}), 403
        return f(*args, **kwargs)
    return decorated_function


def rate_limited(bucket: str):
    """
    Apply Config.RATE_LIMITS[bucket] to a route.

    Routes naming the same bucket share one counter (order creation and
    checkout both spend "order_create"). Over the limit, Flask-Limiter raises
    RateLimitExceeded, rendered as JSON 429 with Retry-After by the factory.
    """
    return limiter.shared_limit(lambda: current_app.config["RATE_LIMITS"][bucket], scope=bucket)
