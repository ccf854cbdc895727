# Overview: Flask API routes for user administration; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..validation import ConflictError, ValidationError
from ..decorators import require_auth, require_permission


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


def _to_int(value, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@users_bp.get("")
@require_auth
@require_permission("users.view")
def list_users_route():
    """
    List users.

    Query params: q, role, is_active (true/false), page, page_size
    """
    is_active = request.args.get("is_active")
    if is_active is not None:
        is_active = is_active.lower() in ("1", "true", "yes")

    page = max(_to_int(request.args.get("page"), 1), 1)
    page_size = min(max(_to_int(request.args.get("page_size"), 20), 1), 200)

    rows, total = auth_service.list_users(
        q=request.args.get("q"),
        role=request.args.get("role"),
        is_active=is_active,
        page=page,
        page_size=page_size,
    )
    return jsonify({
        "items": [u.to_dict() for u in rows],
        "page": page,
        "page_size": page_size,
        "total": total,
    }), 200


@users_bp.post("")
@require_auth
@require_permission("users.create")
def create_user_route():
    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.create_user(
            name=data.get("name"),
            email=data.get("email"),
            password=data.get("password"),
            role=data.get("role") or "CASHIER",
        )
        current_app.logger.info("User %s created by %s", user.id, g.current_user.id)
        return jsonify({"user": user.to_dict()}), 201
    except ConflictError as e:
        return jsonify({"error": str(e), "details": {}}), 409
    except ValidationError as e:
        return jsonify({"error": str(e), "details": {"fields": e.fields}}), 400
    except Exception:
        current_app.logger.exception("Failed to create user")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.get("/<int:user_id>")
@require_auth
@require_permission("users.view")
def get_user_route(user_id: int):
    try:
        user = auth_service.get_user(user_id)
    except LookupError as e:
        return jsonify({"error": str(e), "details": {"user_id": user_id}}), 404
    return jsonify({"user": user.to_dict()}), 200


@users_bp.patch("/<int:user_id>")
@require_auth
@require_permission("users.edit")
def update_user_route(user_id: int):
    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.update_user(user_id, data)
        return jsonify({"user": user.to_dict()}), 200
    except LookupError as e:
        return jsonify({"error": str(e), "details": {"user_id": user_id}}), 404
    except ValidationError as e:
        return jsonify({"error": str(e), "details": {"fields": e.fields}}), 400
    except Exception:
        current_app.logger.exception("Failed to update user")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.delete("/<int:user_id>")
@require_auth
@require_permission("users.delete")
def delete_user_route(user_id: int):
    try:
        auth_service.delete_user(user_id, acting_user_id=g.current_user.id)
        current_app.logger.info("User %s deleted by %s", user_id, g.current_user.id)
        return jsonify({"message": "User deleted successfully"}), 200
    except LookupError as e:
        return jsonify({"error": str(e), "details": {"user_id": user_id}}), 404
    except ConflictError as e:
        return jsonify({"error": str(e), "details": {}}), 409
    except ValidationError as e:
        return jsonify({"error": str(e), "details": {"fields": e.fields}}), 400
    except Exception:
        current_app.logger.exception("Failed to delete user")
        return jsonify({"error": "Internal server error"}), 500
