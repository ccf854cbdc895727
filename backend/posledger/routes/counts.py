# backend/posledger/routes/counts.py
"""
Physical stock count API routes.
"""
from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth, require_permission
from ..services import count_service
from ..services.ledger_service import LedgerError, PersistenceFailure
from posledger.time_utils import parse_iso_datetime


counts_bp = Blueprint("counts", __name__, url_prefix="/api/stock-count")


@counts_bp.route("", methods=["POST"])
@require_auth
@require_permission("stock.count")
def submit_count():
    """
    Submit a count batch; each product's stock is set to the counted figure.

    Request body:
    {
        "counts": [
            {"product_id": int, "actual_qty": number, "expected_qty": number (optional), "notes": str (optional)}
        ],
        "count_date": ISO-8601 (optional)
    }

    Returns:
        201: Counts recorded
        400: Invalid request
        403: Forbidden
        404: Unknown product
    """
    try:
        records = count_service.submit_count(request.get_json(silent=True), g.current_user.id)
        return jsonify({"data": [r.to_dict() for r in records]}), 201

    except PersistenceFailure as e:
        current_app.logger.error("Stock count not saved: %s", e)
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except LedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to save stock count")
        return jsonify({"error": "Failed to save stock count"}), 500


@counts_bp.route("", methods=["GET"])
@require_auth
@require_permission("stock.count")
def list_counts():
    """
    List counts for a date or range.

    Query params: date (one UTC day) or startDate/endDate
    """
    try:
        records = count_service.list_counts(
            date=request.args.get("date"),
            start=request.args.get("startDate"),
            end=request.args.get("endDate"),
        )
        return jsonify({"data": [r.to_dict() for r in records]}), 200
    except LedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code


@counts_bp.route("/sheet", methods=["GET"])
@require_auth
@require_permission("stock.count")
def count_sheet():
    """Expected stock per product; query param since (ISO-8601, optional)."""
    since = request.args.get("since")
    try:
        since_dt = parse_iso_datetime(since) if since else None
    except ValueError:
        return jsonify({"error": "since must be ISO-8601", "details": {"since": since}}), 400
    return jsonify({"data": count_service.build_count_sheet(since_dt)}), 200


@counts_bp.route("/variance", methods=["GET"])
@require_auth
@require_permission("reports.view")
def variance():
    """Variance and estimated unrecorded sales for one UTC day (query param date)."""
    try:
        return jsonify(count_service.variance_report(request.args.get("date"))), 200
    except LedgerError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
