# Overview: Service-layer operations for physical stock counts; count sheets, submission and variance.

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import func

from ..extensions import db
from ..models import Product, Sale, SaleLine, StockAdjustment, StockCount
from posledger.time_utils import day_bounds, parse_date_range, parse_iso_datetime, to_utc_z, utcnow
from .ledger_service import ValidationFailed, apply_count
from .stock_calculations import calculate_daily_summary, calculate_stock_variance

"""
Daily stock count workflow.

1. build_count_sheet(): per product, what the shelf should hold
   (opening - recorded sales + net adjustments).
2. Staff count the shelf and submit_count() with actual_qty (and the
   sheet's expected_qty). The ledger overwrites stored stock with the
   counted figure in one transaction.
3. variance_report(day): shortfalls valued at selling price are the
   estimated unrecorded sales for the day.

Opening stock for a product is the actual quantity of its most recent
count. With no count (or when an explicit `since` is given) it is
reconstructed from current stock by undoing every movement after the
period start: sales are added back, adjustment deltas and count
overwrites are subtracted.
"""


def _sum(column, model, product_id: int, after: datetime | None, time_col, inclusive: bool) -> Decimal:
    query = db.session.query(func.coalesce(func.sum(column), 0)).filter(model.product_id == product_id)
    if after is not None:
        query = query.filter(time_col >= after if inclusive else time_col > after)
    return Decimal(str(query.scalar() or 0))


def _movements_since(product_id: int, after: datetime | None, inclusive: bool) -> dict:
    return {
        "recorded_sales": _sum(SaleLine.quantity, SaleLine, product_id, after, SaleLine.created_at, inclusive),
        "net_adjustments": _sum(
            StockAdjustment.quantity_delta, StockAdjustment, product_id, after,
            StockAdjustment.created_at, inclusive,
        ),
        "count_deltas": _sum(
            StockCount.actual_qty - StockCount.previous_stock, StockCount, product_id, after,
            StockCount.count_date, inclusive,
        ),
    }


def _last_count(product_id: int) -> StockCount | None:
    return (
        db.session.query(StockCount)
        .filter(StockCount.product_id == product_id)
        .order_by(StockCount.count_date.desc(), StockCount.id.desc())
        .first()
    )


def build_count_sheet(since: datetime | None = None) -> list[dict]:
    """
    Expected stock per active product, for pre-filling a count.

    Each row: product, opening_stock, recorded_sales, net_adjustments,
    expected_stock, current_stock, last_count_date. Read-only.
    """
    products = (
        db.session.query(Product)
        .filter(Product.is_active.is_(True))
        .order_by(Product.name.asc(), Product.id.asc())
        .all()
    )

    sheet = []
    for product in products:
        last = None if since is not None else _last_count(product.id)
        if last is not None:
            period_start = last.count_date
            moves = _movements_since(product.id, period_start, inclusive=False)
            opening = Decimal(last.actual_qty)
        else:
            period_start = since
            moves = _movements_since(product.id, period_start, inclusive=True)
            opening = (
                Decimal(product.current_stock)
                + moves["recorded_sales"]
                - moves["net_adjustments"]
                - moves["count_deltas"]
            )

        expected = opening - moves["recorded_sales"] + moves["net_adjustments"]
        sheet.append({
            "product_id": product.id,
            "product_name": product.name,
            "sku": product.sku,
            "unit": product.unit,
            "opening_stock": str(opening),
            "recorded_sales": str(moves["recorded_sales"]),
            "net_adjustments": str(moves["net_adjustments"]),
            "expected_stock": str(expected),
            "current_stock": str(product.current_stock),
            "last_count_date": to_utc_z(last.count_date) if last else None,
        })
    return sheet


def submit_count(payload: dict, user_id: int | None) -> list[StockCount]:
    """
    Submit a count batch: {"counts": [{"product_id", "actual_qty",
    "expected_qty"?, "notes"?}], "count_date"?}.
    """
    if not isinstance(payload, dict):
        raise ValidationFailed("Invalid JSON payload")
    counts = payload.get("counts")
    if not isinstance(counts, list):
        raise ValidationFailed("counts must be a list", {"counts": "must be a list"})

    count_date = None
    if payload.get("count_date"):
        try:
            count_date = parse_iso_datetime(str(payload["count_date"]))
        except ValueError:
            raise ValidationFailed("count_date must be an ISO-8601 datetime", {"count_date": "invalid"})
        if count_date > utcnow():
            raise ValidationFailed("count_date cannot be in the future", {"count_date": "is in the future"})

    return apply_count(counts, user_id=user_id, count_date=count_date)


def list_counts(
    *,
    date: str | None = None,
    start: str | None = None,
    end: str | None = None,
    limit: int = 1000,
) -> list[StockCount]:
    """Counts for one UTC day (date) or a whole-day range (start/end), newest first."""
    query = db.session.query(StockCount)
    try:
        if date:
            start_dt, end_dt = day_bounds(parse_iso_datetime(date))
        else:
            start_dt, end_dt = parse_date_range(start, end)
    except (TypeError, ValueError):
        raise ValidationFailed("dates must be ISO-8601", {"date": "invalid"})

    if start_dt is not None:
        query = query.filter(StockCount.count_date >= start_dt)
    if end_dt is not None:
        query = query.filter(StockCount.count_date < end_dt)

    return query.order_by(StockCount.count_date.desc(), StockCount.id.desc()).limit(limit).all()


def variance_report(date: str | None = None) -> dict:
    """
    Variance per counted product for one UTC day plus the day summary.

    Per product, opening = expected_qty + that day's recorded sales, so the
    computed variance matches the stored one. Negative variance counts as
    unrecorded sales valued at the product's selling price.
    """
    try:
        day = parse_iso_datetime(date) if date else utcnow()
    except ValueError:
        raise ValidationFailed("date must be ISO-8601", {"date": "invalid"})
    start_dt, end_dt = day_bounds(day)

    counts = (
        db.session.query(StockCount)
        .filter(StockCount.count_date >= start_dt, StockCount.count_date < end_dt)
        .order_by(StockCount.count_date.asc(), StockCount.id.asc())
        .all()
    )

    rows = []
    pairs = []
    for count in counts:
        sold = (
            db.session.query(func.coalesce(func.sum(SaleLine.quantity), 0))
            .filter(
                SaleLine.product_id == count.product_id,
                SaleLine.created_at >= start_dt,
                SaleLine.created_at < end_dt,
            )
            .scalar()
        )
        sold = Decimal(str(sold or 0))
        product = count.product
        result = calculate_stock_variance(
            opening_stock=Decimal(count.expected_qty) + sold,
            recorded_sales=sold,
            actual_stock=count.actual_qty,
            selling_price=product.selling_price,
        )
        pairs.append((result.variance, product.selling_price))
        rows.append({
            "count_id": count.id,
            "product_id": product.id,
            "product_name": product.name,
            "recorded_sales": str(sold),
            **result.to_dict(),
        })

    recorded_total, recorded_count = (
        db.session.query(func.coalesce(func.sum(Sale.total), 0), func.count(Sale.id))
        .filter(Sale.created_at >= start_dt, Sale.created_at < end_dt)
        .one()
    )
    summary = calculate_daily_summary(pairs, Decimal(str(recorded_total or 0)), int(recorded_count or 0))

    return {
        "date": start_dt.date().isoformat(),
        "products": rows,
        "summary": {key: str(value) if isinstance(value, Decimal) else value for key, value in summary.items()},
    }
