# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import current_app, request, jsonify, g

from .permissions import role_has_permission
from .services import session_service


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1]


def require_auth(f):
    """
    Require a valid bearer token.

    Sets g.current_user (the active User) and g.session_token (the raw
    token, used by logout). Returns 401 if the header is missing, the token
    is unknown, expired or revoked, or the account is deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        user = session_service.validate_session(token)
        if not user:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = user
        g.session_token = token
        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """Require the current user's role to grant permission_code."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            user = g.current_user
            if not role_has_permission(user.role, permission_code):
                current_app.logger.warning(
                    "Permission %s denied for user %s (%s) on %s %s",
                    permission_code, user.id, user.role, request.method, request.path,
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_code,
                    "message": f"Role {user.role} lacks permission: {permission_code}",
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
