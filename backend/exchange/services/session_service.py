# Overview: Service-layer operations for session; encapsulates business logic and database work.

"""
Session Token Management Service

WHY: Bearer tokens for the API. Tokens are cryptographically secure, hashed
in the database, and time-limited.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- 24-hour absolute timeout (SESSION_ABSOLUTE_TIMEOUT)
- 2-hour idle timeout (SESSION_IDLE_TIMEOUT)
- Revoked automatically once the account is banned, deleted or deactivated
"""

import secrets
import hashlib
from dataclasses import dataclass
from datetime import timedelta

from ..errors import ForbiddenError
from ..extensions import db
from ..models import SessionToken, User
from ..time_utils import utcnow


SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=24)
SESSION_IDLE_TIMEOUT = timedelta(hours=2)


class AccountBlockedError(ForbiddenError):
    """Valid token, but the account behind it may no longer act."""


@dataclass
class SessionContext:
    """Result of validate_session: the account and the session row it came from."""
    user: User
    session: SessionToken


def generate_token() -> str:
    """64-character hex string; the plaintext is only ever handed to the client."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    Hash token for database storage using SHA-256.

    WHY SHA-256 not bcrypt: Tokens are already high-entropy (unlike passwords).
    """
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def _account_blocked_reason(user: User | None) -> str | None:
    if user is None:
        return "User not found"
    if user.is_deleted:
        return "User account deleted"
    if user.is_banned:
        return "User account banned"
    if not user.is_active:
        return "User account deactivated"
    return None


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None
) -> tuple[SessionToken, str]:
    """
    Create new session token for a user.

    Returns (session_record, plaintext_token).
    Raises ValueError if the account cannot sign in.
    """
    user = db.session.get(User, user_id)
    reason = _account_blocked_reason(user)
    if reason:
        raise ValueError(reason)

    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        user_id=user_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + SESSION_ABSOLUTE_TIMEOUT,
        user_agent=user_agent,
        ip_address=ip_address,
        is_revoked=False,
    )

    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def _revoke(session: SessionToken, reason: str) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason
    db.session.commit()


def validate_session(token: str) -> SessionContext | None:
    """
    Validate session token and return SessionContext if valid.

    Returns None if the token is unknown, expired, idle too long or revoked.
    Raises AccountBlockedError (after revoking the session) if the account
    has since been banned, deleted or deactivated.

    Updates last_used_at on success.
    """
    now = utcnow()

    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()

    if not session:
        return None

    if session.expires_at < now:
        return None

    if now - session.last_used_at > SESSION_IDLE_TIMEOUT:
        _revoke(session, "Idle timeout")
        return None

    user = session.user
    reason = _account_blocked_reason(user)
    if reason:
        _revoke(session, reason)
        raise AccountBlockedError(reason)

    session.last_used_at = now
    db.session.commit()

    return SessionContext(user=user, session=session)


def user_id_for_token(token: str) -> int | None:
    """Account behind a live, unrevoked token, without touching last_used_at."""
    row = (
        db.session.query(SessionToken.user_id)
        .filter(
            SessionToken.token_hash == hash_token(token),
            SessionToken.is_revoked.is_(False),
            SessionToken.expires_at > utcnow(),
        )
        .first()
    )
    return row.user_id if row else None


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """Revoke one session token. Returns False if it was not found or already revoked."""
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()

    if not session:
        return False

    _revoke(session, reason)
    return True


def revoke_all_user_sessions(
    user_id: int,
    reason: str = "Revoke all sessions",
    except_token: str | None = None,
) -> int:
    """
    Revoke all active sessions for a user, optionally sparing the caller's own.

    WHY: Bans, account deletion and password changes must take effect on
    every device at once.
    """
    now = utcnow()

    q = db.session.query(SessionToken).filter_by(
        user_id=user_id,
        is_revoked=False
    )
    if except_token:
        q = q.filter(SessionToken.token_hash != hash_token(except_token))
    sessions = q.all()

    for session in sessions:
        session.is_revoked = True
        session.revoked_at = now
        session.revoked_reason = reason

    db.session.commit()
    return len(sessions)


def cleanup_expired_sessions() -> int:
    """Delete expired or revoked sessions older than 30 days. Returns rows deleted."""
    now = utcnow()
    cutoff = now - timedelta(days=30)

    deleted = db.session.query(SessionToken).filter(
        db.or_(
            SessionToken.expires_at < now,
            SessionToken.is_revoked.is_(True)
        ),
        SessionToken.created_at < cutoff
    ).delete(synchronize_session=False)

    db.session.commit()
    return deleted
