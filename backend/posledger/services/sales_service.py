# Overview: Service-layer operations for sales; checkout delegates stock work to the ledger.

from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..models import Sale
from posledger.time_utils import parse_date_range
from .ledger_service import PAYMENT_METHODS, ValidationFailed, apply_sale


class SaleError(Exception):
    """Raised when a sale lookup fails."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def checkout(payload: dict, user_id: int | None) -> Sale:
    """
    Ring up a sale from a request payload.

    Payload shape:
    {
        "items": [{"product_id": 1, "quantity": 2, "unit_price": "50.00"}],
        "payment_method": "CASH",
        "customer_name": "optional",
        "tax_rate": "0.16",        // optional, defaults to DEFAULT_TAX_RATE
        "discount": "0",           // optional
        "amount_paid": "200.00",   // optional, defaults to the total
        "notes": "optional"
    }

    All stock validation, the sale number, totals and the decrements
    happen inside apply_sale as one atomic unit.
    """
    if not isinstance(payload, dict):
        raise ValidationFailed("Invalid JSON payload")

    items = payload.get("items")
    if not isinstance(items, list):
        raise ValidationFailed("items must be a list", {"items": "must be a list"})

    customer_name = payload.get("customer_name")
    if customer_name is not None:
        customer_name = str(customer_name).strip() or None

    return apply_sale(
        items,
        user_id=user_id,
        payment_method=payload.get("payment_method") or "CASH",
        customer_name=customer_name,
        tax_rate=payload.get("tax_rate"),
        discount=payload.get("discount") or 0,
        amount_paid=payload.get("amount_paid"),
        notes=payload.get("notes"),
    )


def get_sale(sale_id: int) -> Sale:
    sale = db.session.query(Sale).filter_by(id=sale_id).first()
    if not sale:
        raise SaleError("Sale not found", {"sale_id": sale_id})
    return sale


def list_sales(
    *,
    q: str | None = None,
    payment_method: str | None = None,
    start: str | None = None,
    end: str | None = None,
    take: int = 50,
    skip: int = 0,
) -> tuple[list[Sale], int]:
    """
    Sales newest first.

    start/end are dates (or datetimes) and cover whole UTC days, so
    start=end=2025-10-17 returns that entire day.
    """
    query = db.session.query(Sale)
    if q:
        like = f"%{q}%"
        query = query.filter(or_(Sale.sale_number.ilike(like), Sale.customer_name.ilike(like)))
    if payment_method:
        if payment_method not in PAYMENT_METHODS:
            raise ValidationFailed(
                f"payment_method must be one of {', '.join(PAYMENT_METHODS)}",
                {"payment_method": "is not supported"},
            )
        query = query.filter(Sale.payment_method == payment_method)

    try:
        start_dt, end_dt = parse_date_range(start, end)
    except ValueError:
        raise ValidationFailed("start/end must be ISO-8601 dates", {"start": "invalid", "end": "invalid"})
    if start_dt is not None:
        query = query.filter(Sale.created_at >= start_dt)
    if end_dt is not None:
        query = query.filter(Sale.created_at < end_dt)

    total = query.count()
    rows = query.order_by(Sale.created_at.desc(), Sale.id.desc()).offset(skip).limit(take).all()
    return rows, total
