# Overview: Service-layer operations for bearer sessions.

"""
Session Token Management Service

Tokens are cryptographically secure, hashed in database, and time-limited.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- Absolute expiry of SESSION_TTL_HOURS
- Revocable on logout, deactivation or password change
"""

import hashlib
import secrets
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, User
from posledger.time_utils import utcnow


def generate_token() -> str:
    """64-character hex string (32 bytes of entropy); sent to the client, never stored."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(user_id: int) -> tuple[SessionToken, str]:
    """
    Create new session token for user.

    Returns (session_record, plaintext_token).
    """
    plaintext_token = generate_token()
    now = utcnow()
    session = SessionToken(
        user_id=user_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        expires_at=now + timedelta(hours=current_app.config["SESSION_TTL_HOURS"]),
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, plaintext_token


def validate_session(token: str) -> User | None:
    """
    Return the active user for a token, or None.

    Read-only: nothing is written here, so a request's own write
    transaction always starts from a clean session.
    """
    if not token:
        return None

    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if not session or session.is_revoked or session.expires_at <= utcnow():
        return None

    user = session.user
    if not user or not user.is_active:
        return None
    return user


def revoke_session(token: str) -> bool:
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if not session or session.is_revoked:
        return False
    session.is_revoked = True
    session.revoked_at = utcnow()
    db.session.commit()
    return True


def revoke_user_sessions(user_id: int, *, commit: bool = True) -> int:
    now = utcnow()
    sessions = db.session.query(SessionToken).filter_by(user_id=user_id, is_revoked=False).all()
    for session in sessions:
        session.is_revoked = True
        session.revoked_at = now
    if commit:
        db.session.commit()
    return len(sessions)
