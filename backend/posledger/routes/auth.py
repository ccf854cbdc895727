# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/posledger/routes/auth.py
"""
Authentication API routes

- Login by email + password returns an opaque bearer token
- Token must be sent as "Authorization: Bearer <token>"
- Logout revokes the presented token
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..permissions import ROLE_PERMISSIONS
from ..services import auth_service
from ..services import session_service
from ..services.auth_service import AuthError
from ..decorators import require_auth
from posledger.time_utils import to_utc_z


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Returns user info, permissions and session token on success.
    """
    try:
        data = request.get_json(silent=True) or {}
        email = data.get("email")
        password = data.get("password")

        if not all([email, password]):
            return jsonify({"error": "email and password required", "details": {}}), 400

        user = auth_service.authenticate(email, password)
        session, token = session_service.create_session(user.id)

        current_app.logger.info("User %s logged in", user.id)
        return jsonify({
            "user": user.to_dict(),
            "permissions": sorted(ROLE_PERMISSIONS.get(user.role, set())),
            "token": token,
            "expires_at": to_utc_z(session.expires_at),
            "message": "Login successful"
        }), 200

    except AuthError as e:
        current_app.logger.warning("Failed login for %s", request.remote_addr)
        return jsonify({"error": str(e), "details": {}}), 401
    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    """Revoke the token used for this request."""
    session_service.revoke_session(g.session_token)
    return jsonify({"message": "Logged out successfully"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    user = g.current_user
    return jsonify({
        "user": user.to_dict(),
        "permissions": sorted(ROLE_PERMISSIONS.get(user.role, set())),
    }), 200
