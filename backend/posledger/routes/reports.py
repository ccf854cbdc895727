# Overview: Flask API routes for reports; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..services import reporting_service
from ..services.reporting_service import ReportError
from ..decorators import require_auth, require_permission


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("")
@require_auth
@require_permission("reports.view")
def report_route():
    """
    Build a report.

    Query params: type (sales|inventory|profit), startDate, endDate (sales only)
    """
    try:
        data = reporting_service.build_report(
            request.args.get("type") or "",
            start=request.args.get("startDate"),
            end=request.args.get("endDate"),
        )
        return jsonify({"data": data}), 200
    except ReportError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to build report")
        return jsonify({"error": "Failed to fetch report"}), 500
