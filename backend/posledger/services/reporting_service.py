# Overview: Service-layer operations for reporting; read-only aggregates over sales and stock.

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Product, Sale, SaleLine
from posledger.time_utils import parse_date_range, to_utc_z, utcnow
from .ledger_service import PAYMENT_METHODS
from .stock_calculations import (
    calculate_inventory_value,
    calculate_percentage_change,
    calculate_profit_margin,
    calculate_reorder_quantity,
    needs_reorder,
)


class ReportError(Exception):
    """Raised when report generation fails."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


REPORT_TYPES = ("sales", "inventory", "profit")


def _money_str(value) -> str:
    return str(Decimal(str(value or 0)).quantize(Decimal("0.01")))


def _parse_range(start: str | None, end: str | None) -> tuple[datetime | None, datetime | None]:
    try:
        return parse_date_range(start, end)
    except ValueError:
        raise ReportError("start/end must be ISO-8601 dates", {"start": start, "end": end})


def _sales_total(start_dt: datetime, end_dt: datetime) -> Decimal:
    total = (
        db.session.query(func.coalesce(func.sum(Sale.total), 0))
        .filter(Sale.created_at >= start_dt, Sale.created_at < end_dt)
        .scalar()
    )
    return Decimal(str(total or 0))


def sales_report(*, start: str | None = None, end: str | None = None) -> dict:
    """
    Total, count and per-payment-method totals over an optional whole-day range.

    With both ends given, the report also compares the total against the
    period of equal length just before it.
    """
    start_dt, end_dt = _parse_range(start, end)

    query = db.session.query(
        Sale.payment_method,
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.total), 0),
    )
    if start_dt is not None:
        query = query.filter(Sale.created_at >= start_dt)
    if end_dt is not None:
        query = query.filter(Sale.created_at < end_dt)
    rows = query.group_by(Sale.payment_method).all()

    by_method = {method: {"count": 0, "total": Decimal("0")} for method in PAYMENT_METHODS}
    for method, count, total in rows:
        bucket = by_method.setdefault(method, {"count": 0, "total": Decimal("0")})
        bucket["count"] += int(count)
        bucket["total"] += Decimal(str(total or 0))

    total_sales = sum((b["total"] for b in by_method.values()), Decimal("0"))
    sales_count = sum(b["count"] for b in by_method.values())

    comparison = None
    if start_dt is not None and end_dt is not None:
        previous_start = start_dt - (end_dt - start_dt)
        previous_total = _sales_total(previous_start, start_dt)
        change = calculate_percentage_change(total_sales, previous_total)
        comparison = {
            "previous_start": to_utc_z(previous_start),
            "previous_total": _money_str(previous_total),
            "change": _money_str(change["change"]),
            "percentage_change": str(change["percentage_change"]),
            "is_increase": change["is_increase"],
        }

    return {
        "type": "sales",
        "currency": current_app.config["CURRENCY"],
        "start": to_utc_z(start_dt),
        "end": to_utc_z(end_dt),
        "total_sales": _money_str(total_sales),
        "sales_count": sales_count,
        "by_payment_method": {
            method: {"count": b["count"], "total": _money_str(b["total"])}
            for method, b in by_method.items()
        },
        "comparison": comparison,
        "generated_at": to_utc_z(utcnow()),
    }


def suggested_reorder_quantities() -> dict[int, int]:
    """
    Units to order per product: average daily sales over the last
    REORDER_LOOKBACK_DAYS, covering REORDER_LEAD_TIME_DAYS plus safety stock.
    """
    lookback = current_app.config["REORDER_LOOKBACK_DAYS"]
    lead_time = current_app.config["REORDER_LEAD_TIME_DAYS"]
    rows = (
        db.session.query(SaleLine.product_id, func.coalesce(func.sum(SaleLine.quantity), 0))
        .filter(SaleLine.created_at >= utcnow() - timedelta(days=lookback))
        .group_by(SaleLine.product_id)
        .all()
    )
    return {
        product_id: calculate_reorder_quantity(Decimal(str(sold or 0)) / lookback, lead_time)
        for product_id, sold in rows
    }


def inventory_report() -> dict:
    """Stock valuation and reorder lists over active products."""
    products = (
        db.session.query(Product)
        .filter(Product.is_active.is_(True))
        .order_by(Product.name.asc(), Product.id.asc())
        .all()
    )

    value = calculate_inventory_value(
        (p.current_stock, p.cost_price, p.selling_price) for p in products
    )
    suggested = suggested_reorder_quantities()

    def _row(p: Product) -> dict:
        return {
            "id": p.id,
            "sku": p.sku,
            "name": p.name,
            "unit": p.unit,
            "current_stock": str(p.current_stock),
            "reorder_level": str(p.reorder_level),
            "suggested_reorder_qty": suggested.get(p.id, 0),
        }

    out_of_stock = [_row(p) for p in products if p.current_stock <= 0]
    low_stock = [
        _row(p) for p in products
        if p.current_stock > 0 and needs_reorder(p.current_stock, p.reorder_level)
    ]

    return {
        "type": "inventory",
        "currency": current_app.config["CURRENCY"],
        "product_count": len(products),
        "cost_value": _money_str(value["cost_value"]),
        "retail_value": _money_str(value["retail_value"]),
        "potential_profit": _money_str(value["potential_profit"]),
        "low_stock": low_stock,
        "out_of_stock": out_of_stock,
        "generated_at": to_utc_z(utcnow()),
    }


def profit_report() -> dict:
    """Per-product unit profit, margin (% of price) and markup (% of cost)."""
    products = (
        db.session.query(Product)
        .filter(Product.is_active.is_(True))
        .order_by(Product.name.asc(), Product.id.asc())
        .all()
    )

    rows = []
    for p in products:
        margin = calculate_profit_margin(p.cost_price, p.selling_price)
        rows.append({
            "id": p.id,
            "sku": p.sku,
            "name": p.name,
            "cost_price": str(p.cost_price),
            "selling_price": str(p.selling_price),
            "profit": _money_str(margin["profit"]),
            "profit_margin": None if margin["profit_margin"] is None else str(margin["profit_margin"]),
            "markup": None if margin["markup"] is None else str(margin["markup"]),
        })

    return {
        "type": "profit",
        "currency": current_app.config["CURRENCY"],
        "products": rows,
        "generated_at": to_utc_z(utcnow()),
    }


def build_report(report_type: str, *, start: str | None = None, end: str | None = None) -> dict:
    if report_type == "sales":
        return sales_report(start=start, end=end)
    if report_type == "inventory":
        return inventory_report()
    if report_type == "profit":
        return profit_report()
    raise ReportError("Invalid report type", {"type": report_type, "allowed": list(REPORT_TYPES)})
