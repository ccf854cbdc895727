# Overview: Service-layer operations for users and credentials.

"""
Authentication and user management.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, at least one letter and one digit
- Inactive accounts cannot log in and lose their sessions
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt
from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import User, Sale, StockAdjustment, StockCount
from ..permissions import ROLES
from ..validation import ConflictError, ValidationError
from posledger.time_utils import utcnow

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class AuthError(Exception):
    """Raised when credentials are rejected."""
    pass


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long", {"password": "too short"})

    if not re.search(r"[A-Za-z]", password):
        raise PasswordValidationError("Password must contain at least one letter", {"password": "needs a letter"})

    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit", {"password": "needs a digit"})


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt (cost factor BCRYPT_ROUNDS, default 12).

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """Verify password against bcrypt hash (timing-safe via bcrypt.checkpw)."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash in the database
        return False


def _normalize_email(email) -> str:
    email = (email or "").strip().lower()
    if not EMAIL_RE.match(email):
        raise ValidationError("email is not valid", {"email": "is not valid"})
    return email


def _validate_role(role) -> str:
    if role not in ROLES:
        raise ValidationError(f"role must be one of {', '.join(ROLES)}", {"role": "is not a known role"})
    return role


def authenticate(email: str, password: str) -> User:
    """
    Return the active user matching email/password.

    The same message is used for unknown email and wrong password.
    """
    user = db.session.query(User).filter_by(email=(email or "").strip().lower()).first()
    if not user or not verify_password(password or "", user.password_hash):
        raise AuthError("Invalid email or password")
    if not user.is_active:
        raise AuthError("Account is inactive. Contact administrator.")

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def create_user(name: str, email: str, password: str, role: str) -> User:
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required", {"name": "is required"})
    email = _normalize_email(email)
    role = _validate_role(role)

    if db.session.query(User).filter_by(email=email).first():
        raise ConflictError("User with this email already exists")

    user = User(name=name, email=email, role=role, password_hash=hash_password(password))
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("User with this email already exists")
    return user


def get_user(user_id: int) -> User:
    user = db.session.query(User).filter_by(id=user_id).first()
    if not user:
        raise LookupError("User not found")
    return user


def update_user(user_id: int, patch: dict) -> User:
    """Update name, role, active flag and/or password."""
    user = get_user(user_id)

    if patch.get("name"):
        user.name = str(patch["name"]).strip()
    if patch.get("role"):
        user.role = _validate_role(patch["role"])
    if "is_active" in patch:
        if not isinstance(patch["is_active"], bool):
            raise ValidationError("is_active must be true or false", {"is_active": "must be a boolean"})
        user.is_active = patch["is_active"]
    if patch.get("password"):
        user.password_hash = hash_password(patch["password"])

    if not user.is_active or patch.get("password"):
        from .session_service import revoke_user_sessions
        revoke_user_sessions(user.id, commit=False)

    db.session.commit()
    return user


def delete_user(user_id: int, acting_user_id: int) -> None:
    """
    Delete a user account.

    Users referenced by sales, adjustments or counts are kept for the audit
    trail; deactivate them instead.
    """
    if user_id == acting_user_id:
        raise ValidationError("You can't delete your own account")

    user = db.session.query(User).filter_by(id=user_id).first()
    if not user:
        raise LookupError("User not found")

    for model in (Sale, StockAdjustment, StockCount):
        if db.session.query(model.id).filter_by(user_id=user_id).first():
            raise ConflictError("User has recorded stock activity; deactivate the account instead")

    db.session.delete(user)
    db.session.commit()


def list_users(*, q: str | None = None, role: str | None = None, is_active: bool | None = None,
               page: int = 1, page_size: int = 20) -> tuple[list[User], int]:
    query = db.session.query(User)
    if q:
        like = f"%{q}%"
        query = query.filter(or_(User.name.ilike(like), User.email.ilike(like)))
    if role:
        query = query.filter(User.role == role)
    if is_active is not None:
        query = query.filter(User.is_active == is_active)

    total = query.count()
    rows = (
        query.order_by(User.created_at.desc(), User.id.desc())
        .offset((max(page, 1) - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return rows, total
