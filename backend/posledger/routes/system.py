# backend/posledger/routes/system.py
"""
System health endpoint.

Checks the database and the tables the ledger depends on, for deployment
probes and debugging.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Product, SessionToken, User
from posledger.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        user_count = db.session.query(User).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "users": user_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_session_service_health() -> dict:
    """Verify the session table is readable and report sessions pending cleanup."""
    start_time = time.time()
    try:
        active_sessions = db.session.query(SessionToken).filter_by(is_revoked=False).count()
        expired_sessions = db.session.query(SessionToken).filter(
            SessionToken.expires_at < utcnow(),
            SessionToken.is_revoked.is_(False),
        ).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "active_sessions": active_sessions,
                "expired_pending_cleanup": expired_sessions,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Session service health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Session service error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: All systems healthy
    - 503: One or more systems unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    session_health = check_session_service_health()

    all_checks = [database_health, session_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status = "unhealthy"
        http_status = 503
    else:
        overall_status = "healthy"
        http_status = 200

    # Health probes must not leave a read transaction open on SQLite
    db.session.rollback()

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "config": {
            "allow_negative_stock": bool(current_app.config["ALLOW_NEGATIVE_STOCK"]),
            "currency": current_app.config["CURRENCY"],
        },
        "checks": {
            "database": database_health,
            "session_service": session_health,
        }
    }

    return response, http_status
