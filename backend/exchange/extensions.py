# Overview: Flask extension instances for database, migrations and rate limiting.

from flask import request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()


def rate_limit_key() -> str:
    """
    Signed-in callers are limited per account, everyone else per address.

    Limits are checked before the view's own decorators run, so the bearer
    token is resolved here rather than read from g.current_user.
    """
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        from .services.session_service import user_id_for_token
        user_id = user_id_for_token(header.split(" ", 1)[1].strip())
        if user_id is not None:
            return f"user:{user_id}"
    return get_remote_address()


# Storage, strategy and on/off come from RATELIMIT_* config at init_app time
limiter = Limiter(key_func=rate_limit_key)
