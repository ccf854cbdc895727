# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/posledger/routes/sales.py
"""Sales API routes with permission enforcement"""

from flask import Blueprint, request, jsonify, current_app, g

from ..services import sales_service
from ..services.sales_service import SaleError
from ..services.ledger_service import LedgerError, PersistenceFailure
from ..decorators import require_auth, require_permission


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _to_int(value, default):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@sales_bp.post("")
@require_auth
@require_permission("sales.create")
def create_sale_route():
    """
    Checkout: record a sale and decrement stock for every line.

    Requires: sales.create permission
    Available to: OWNER, MANAGER, CASHIER
    """
    try:
        sale = sales_service.checkout(request.get_json(silent=True), g.current_user.id)
        return jsonify({"sale": sale.to_dict()}), 201

    except PersistenceFailure as e:
        current_app.logger.error("Sale not saved: %s", e)
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except LedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@require_auth
@require_permission("sales.view")
def list_sales_route():
    """
    List sales, newest first.

    Query params: search, paymentMethod, startDate, endDate, take, skip
    """
    try:
        take = min(max(_to_int(request.args.get("take"), 50), 1), 500)
        skip = max(_to_int(request.args.get("skip"), 0), 0)
        rows, total = sales_service.list_sales(
            q=request.args.get("search"),
            payment_method=request.args.get("paymentMethod") or None,
            start=request.args.get("startDate"),
            end=request.args.get("endDate"),
            take=take,
            skip=skip,
        )
        return jsonify({
            "data": [s.to_dict(include_items=False) for s in rows],
            "total": total,
            "take": take,
            "skip": skip,
        }), 200
    except LedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_permission("sales.view")
def get_sale_route(sale_id: int):
    """Get sale with lines."""
    try:
        sale = sales_service.get_sale(sale_id)
    except SaleError as e:
        return jsonify({"error": str(e), "details": e.details}), 404
    return jsonify({"sale": sale.to_dict()}), 200
