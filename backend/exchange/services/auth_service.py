# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service

WHY: Every order, dispute message and review must be attributable to an
account. Uses bcrypt for password hashing and validates password strength.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, with uppercase, lowercase, digit and special char
- Emails are stored lower-cased; uniqueness is marketplace-wide
- Banned or deleted accounts cannot authenticate
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt
from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, ForbiddenError, InvalidInputError, NotFoundError
from ..extensions import db
from ..models import User
from ..models.auth import ROLE_ADMIN, ROLE_USER
from ..time_utils import utcnow
from . import session_service


EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class PasswordValidationError(InvalidInputError):
    """Raised when password doesn't meet strength requirements."""


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>?_\-]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Hash password using bcrypt with cost factor 12 (strength is validated first)."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    A malformed stored hash (e.g. a fixture placeholder) never verifies.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def normalize_email(email) -> str:
    if not isinstance(email, str) or not email.strip():
        raise InvalidInputError("email is required")
    email = email.strip().lower()
    if len(email) > 255 or not EMAIL_RE.match(email):
        raise InvalidInputError("email is not valid")
    return email


def _require_name(value, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError(f"{field} is required")
    value = value.strip()
    if len(value) > 120:
        raise InvalidInputError(f"{field} exceeds max length 120")
    return value


def register_user(
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    phone: str | None = None,
    role: str = ROLE_USER,
) -> User:
    """
    Create a marketplace account.

    Raises:
        InvalidInputError: malformed email/name
        PasswordValidationError: weak password
        ConflictError: email already registered
    """
    email = normalize_email(email)
    first_name = _require_name(first_name, "first_name")
    last_name = _require_name(last_name, "last_name")

    if db.session.query(User).filter_by(email=email).first():
        raise ConflictError("Email already registered")

    user = User(
        email=email,
        password_hash=hash_password(password),
        first_name=first_name,
        last_name=last_name,
        phone=(phone or "").strip() or None,
        role=role,
    )
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Email already registered")
    return user


def create_admin(email: str, password: str, first_name: str = "Campus", last_name: str = "Admin") -> User:
    """Create an admin account, or promote an existing account with that email."""
    email = normalize_email(email)
    existing = db.session.query(User).filter_by(email=email).first()
    if existing:
        existing.role = ROLE_ADMIN
        existing.password_hash = hash_password(password)
        db.session.commit()
        return existing
    return register_user(email, password, first_name, last_name, role=ROLE_ADMIN)


def authenticate(email: str, password: str) -> User | None:
    """
    Authenticate by email and password.

    Returns the User on success (and stamps last_login_at), None otherwise.
    Banned, deleted and deactivated accounts never authenticate.
    """
    if not isinstance(email, str) or not isinstance(password, str):
        return None

    user = db.session.query(User).filter(
        User.email == email.strip().lower(),
        User.is_active.is_(True),
        User.is_banned.is_(False),
        User.is_deleted.is_(False),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None


PROFILE_FIELDS = {"first_name", "last_name", "phone"}


def update_profile(user: User, data: dict) -> User:
    """
    Self-service edit of first_name, last_name and phone.

    Email and role are not editable here. A blank phone clears it.
    """
    unknown = sorted(k for k in data if k not in PROFILE_FIELDS)
    if unknown:
        raise InvalidInputError(f"Field not allowed: {unknown[0]}")

    if "first_name" in data:
        user.first_name = _require_name(data["first_name"], "first_name")
    if "last_name" in data:
        user.last_name = _require_name(data["last_name"], "last_name")
    if "phone" in data:
        phone = data["phone"]
        if phone is not None and not isinstance(phone, str):
            raise InvalidInputError("phone must be a string")
        phone = (phone or "").strip()
        if len(phone) > 32:
            raise InvalidInputError("phone exceeds max length 32")
        user.phone = phone or None

    db.session.commit()
    return user


def change_password(user: User, current_password, new_password, *, keep_token: str | None = None) -> None:
    """
    Replace the password after checking the current one.

    Every other session of the account is revoked; `keep_token` (the
    caller's own bearer token) stays valid.
    """
    if not current_password or not new_password:
        raise InvalidInputError("Current and new passwords are required")
    if not isinstance(current_password, str) or not verify_password(current_password, user.password_hash):
        raise InvalidInputError("Current password is incorrect")
    if current_password == new_password:
        raise PasswordValidationError("New password must differ from the current one")

    user.password_hash = hash_password(new_password)
    db.session.commit()

    session_service.revoke_all_user_sessions(user.id, reason="Password changed", except_token=keep_token)
    current_app.logger.info("Password changed for user=%s", user.id)


def _load_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def ban_user(user_id: int, admin: User, reason: str | None = None) -> User:
    """
    Ban an account and revoke every session it holds.

    Listings of banned sellers drop out of the catalog; their existing orders
    are left untouched for the counterparties and admins to settle.
    """
    if not admin.is_admin:
        raise ForbiddenError("Admin access required")
    user = _load_user(user_id)
    if user.id == admin.id:
        raise InvalidInputError("You cannot ban yourself")
    if user.is_admin:
        raise ForbiddenError("Admins cannot be banned")

    user.is_banned = True
    user.banned_at = utcnow()
    user.ban_reason = (reason or "").strip()[:255] or None
    db.session.commit()

    session_service.revoke_all_user_sessions(user.id, reason="Account banned")
    current_app.logger.info("User %s banned by admin=%s", user.id, admin.id)
    return user


def unban_user(user_id: int, admin: User) -> User:
    if not admin.is_admin:
        raise ForbiddenError("Admin access required")
    user = _load_user(user_id)
    user.is_banned = False
    user.banned_at = None
    user.ban_reason = None
    db.session.commit()
    return user
