# Overview: Flask API routes for stock adjustments; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app, g

from ..services import inventory_service
from ..services.ledger_service import LedgerError, PersistenceFailure
from ..decorators import require_auth, require_permission


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _to_int(value, default):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@inventory_bp.get("/adjustments")
@require_auth
@require_permission("products.view")
def list_adjustments_route():
    """
    Adjustment history.

    Query params: productId, type, startDate, endDate, page, limit
    """
    try:
        result = inventory_service.list_adjustments(
            product_id=_to_int(request.args.get("productId"), None),
            adjustment_type=request.args.get("type") or None,
            start=request.args.get("startDate"),
            end=request.args.get("endDate"),
            page=_to_int(request.args.get("page"), 1),
            limit=min(_to_int(request.args.get("limit"), 10), 200),
        )
        return jsonify({
            "data": [a.to_dict() for a in result["data"]],
            "pagination": {
                "page": result["page"],
                "limit": result["limit"],
                "total": result["total"],
                "total_pages": result["total_pages"],
            },
        }), 200
    except LedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code


@inventory_bp.post("/adjustments")
@require_auth
@require_permission("stock.adjust")
def create_adjustment_route():
    """
    Apply a stock adjustment.

    Request body:
    {
        "product_id": int,
        "type": "ADJUSTMENT_ADD" | "ADJUSTMENT_REMOVE" | "DAMAGE" | ...,
        "quantity": number > 0,
        "reason": str,
        "notes": str (optional)
    }
    """
    try:
        adjustment = inventory_service.create_adjustment(request.get_json(silent=True), g.current_user.id)
        return jsonify({"adjustment": adjustment.to_dict()}), 201
    except PersistenceFailure as e:
        current_app.logger.error("Adjustment not saved: %s", e)
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except LedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create adjustment")
        return jsonify({"error": "Internal server error"}), 500
