# Overview: Service-layer operations for stock adjustments.

"""
Stock adjustment service.

Creating an adjustment is a thin wrapper over ledger_service.apply_adjustment;
this module adds request parsing and the adjustment history listing.
"""
from __future__ import annotations

import math

from ..extensions import db
from ..models import StockAdjustment
from posledger.time_utils import parse_date_range
from .ledger_service import ADJUSTMENT_TYPES, ValidationFailed, apply_adjustment


def create_adjustment(payload: dict, user_id: int | None) -> StockAdjustment:
    if not isinstance(payload, dict):
        raise ValidationFailed("Invalid JSON payload")

    missing = [f for f in ("product_id", "type", "quantity", "reason") if payload.get(f) in (None, "")]
    if missing:
        raise ValidationFailed(
            f"Missing required fields: {', '.join(missing)}",
            {f: "is required" for f in missing},
        )

    return apply_adjustment(
        payload["product_id"],
        payload["type"],
        payload["quantity"],
        payload["reason"],
        user_id=user_id,
        notes=payload.get("notes"),
    )


def list_adjustments(
    *,
    product_id: int | None = None,
    adjustment_type: str | None = None,
    start: str | None = None,
    end: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> dict:
    """
    Adjustment history, newest first.

    Returns {"data": [...], "total": n, "page": p, "limit": l, "total_pages": k}.
    """
    page = max(page, 1)
    limit = max(limit, 1)

    query = db.session.query(StockAdjustment)
    if product_id is not None:
        query = query.filter(StockAdjustment.product_id == product_id)
    if adjustment_type:
        if adjustment_type not in ADJUSTMENT_TYPES:
            raise ValidationFailed(
                f"type must be one of {', '.join(ADJUSTMENT_TYPES)}",
                {"type": "is not a known adjustment type"},
            )
        query = query.filter(StockAdjustment.type == adjustment_type)

    try:
        start_dt, end_dt = parse_date_range(start, end)
    except ValueError:
        raise ValidationFailed("start/end must be ISO-8601 dates", {"start": "invalid", "end": "invalid"})
    if start_dt is not None:
        query = query.filter(StockAdjustment.created_at >= start_dt)
    if end_dt is not None:
        query = query.filter(StockAdjustment.created_at < end_dt)

    total = query.count()
    rows = (
        query.order_by(StockAdjustment.created_at.desc(), StockAdjustment.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "data": rows,
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": math.ceil(total / limit),
    }
