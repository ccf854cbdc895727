# Overview: Stock ledger; the only code allowed to change Product.current_stock.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, Sequence, TypeVar

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Product, Sale, SaleLine, StockAdjustment, StockCount
from ..validation import ValidationError, to_decimal, quantize_quantity, quantize_money
from posledger.time_utils import utcnow
from .concurrency import (
    TransactionTimeout,
    begin_write_transaction,
    check_deadline,
    lock_for_update,
    run_with_retry,
    transaction_deadline,
)
from .stock_calculations import (
    calculate_change,
    calculate_sale_totals,
    generate_sale_number,
    line_subtotal,
    validate_stock_availability,
)
"""
Stock Ledger Invariants (authoritative)

Stock model:
- Product.current_stock is the stored, authoritative quantity on hand.
- It changes through exactly three operations: apply_sale (decrement),
  apply_adjustment (signed delta by type) and apply_count (overwrite).
- Each operation writes its audit rows (SaleLine / StockAdjustment /
  StockCount) and the new stock in ONE transaction: both commit or neither.

Concurrency:
- Every operation runs inside run_atomic(): a write transaction opened with
  BEGIN IMMEDIATE (SQLite) or bounded lock/statement timeouts (PostgreSQL),
  product rows read with SELECT ... FOR UPDATE in ascending id order, and an
  optimistic version_id on Product. A lost update is therefore impossible:
  the second of two racing writers either waits and re-reads, or fails its
  version check and is retried from the top.
- Lock/deadlock/version conflicts are retried LEDGER_RETRY_ATTEMPTS times;
  after that, and for any other storage error or a blown transaction
  deadline, the caller gets PersistenceFailure with nothing applied.

Policy:
- Unless ALLOW_NEGATIVE_STOCK is set, a decrement larger than the stored
  stock is rejected with InsufficientStock before anything is written.
- A multi-line sale validates every line (aggregated per product) before
  the first decrement; one short line rejects the whole sale.
- apply_count sets stock rather than adding a delta, so whatever moved the
  stock between preparing the count sheet and submitting it is replaced
  by the physical figure. previous_stock on the count row records what
  was overwritten.
"""

T = TypeVar("T")

ADJUSTMENT_ADD = "ADJUSTMENT_ADD"
ADJUSTMENT_REMOVE = "ADJUSTMENT_REMOVE"
DAMAGE = "DAMAGE"
THEFT = "THEFT"
EXPIRY = "EXPIRY"
CORRECTION = "CORRECTION"
RETURN = "RETURN"
SAMPLE = "SAMPLE"

ADJUSTMENT_TYPES = (
    ADJUSTMENT_ADD,
    ADJUSTMENT_REMOVE,
    DAMAGE,
    THEFT,
    EXPIRY,
    CORRECTION,
    RETURN,
    SAMPLE,
)

# Types that take stock away. Everything else adds, CORRECTION and SAMPLE
# included; see DESIGN.md before changing this set.
REMOVAL_TYPES = frozenset({ADJUSTMENT_REMOVE, DAMAGE, THEFT, EXPIRY})

PAYMENT_METHODS = ("CASH", "CARD", "MOBILE_MONEY", "OTHER")


class LedgerError(Exception):
    """Base class for stock ledger failures; carries structured details."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ProductNotFound(LedgerError):
    status_code = 404

    def __init__(self, product_id):
        super().__init__(f"Product {product_id} not found", {"product_id": product_id})
        self.product_id = product_id


class InsufficientStock(LedgerError):
    def __init__(
        self,
        product_id: int,
        product_name: str,
        available: Decimal,
        requested: Decimal,
        shortages: list[dict] | None = None,
    ):
        details = {
            "product_id": product_id,
            "product_name": product_name,
            "available": str(available),
            "requested": str(requested),
        }
        if shortages:
            details["items"] = shortages
        super().__init__(
            f"Insufficient stock for {product_name}. Available: {available}, Requested: {requested}",
            details,
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class ValidationFailed(LedgerError):
    def __init__(self, message: str, fields: dict | None = None):
        super().__init__(message, {"fields": fields or {}})
        self.fields = fields or {}


class PersistenceFailure(LedgerError):
    status_code = 500


@dataclass(frozen=True)
class ProductStock:
    product_id: int
    name: str
    unit: str
    current_stock: Decimal


@dataclass(frozen=True)
class SaleItem:
    product_id: int
    quantity: Decimal
    unit_price: Decimal | None = None


@dataclass(frozen=True)
class CountEntry:
    product_id: int
    actual_qty: Decimal
    expected_qty: Decimal | None = None
    notes: str | None = None


# =============================================================================
# TRANSACTION BOUNDARY
# =============================================================================

def run_atomic(fn: Callable[[], T]) -> T:
    """
    Run fn inside one locked write transaction and commit it.

    Any exception raised by fn rolls back everything fn wrote. Ledger errors
    pass through unchanged; storage errors surface as PersistenceFailure.
    """
    attempts = current_app.config["LEDGER_RETRY_ATTEMPTS"]
    deadline = transaction_deadline()

    def _op():
        try:
            begin_write_transaction(deadline)
            result = fn()
            db.session.flush()
            check_deadline(deadline)
            db.session.commit()
        except BaseException:
            db.session.rollback()
            raise
        return result

    try:
        return run_with_retry(_op, attempts=attempts, deadline=deadline)
    except InsufficientStock as exc:
        current_app.logger.warning("Stock mutation rejected: %s", exc)
        raise
    except LedgerError:
        raise
    except (SQLAlchemyError, TransactionTimeout) as exc:
        current_app.logger.warning("Stock transaction rolled back: %s", exc)
        raise PersistenceFailure(
            "Stock change could not be saved; nothing was applied",
            {"reason": exc.__class__.__name__},
        ) from exc


def _negative_stock_allowed() -> bool:
    return bool(current_app.config.get("ALLOW_NEGATIVE_STOCK", False))


def _load_products_for_update(product_ids: Iterable[int]) -> dict[int, Product]:
    """Lock product rows in ascending id order (consistent order avoids deadlocks)."""
    ids = sorted(set(product_ids))
    rows = lock_for_update(
        db.session.query(Product).filter(Product.id.in_(ids)).order_by(Product.id)
    ).populate_existing().all()
    products = {p.id: p for p in rows}
    for product_id in ids:
        if product_id not in products:
            raise ProductNotFound(product_id)
    return products


def set_product_stock(product: Product, new_stock: Decimal) -> None:
    """Single write path for Product.current_stock. Call inside run_atomic only."""
    product.current_stock = quantize_quantity(new_stock)
    db.session.flush()


def append_audit_record(record: SaleLine | StockAdjustment | StockCount):
    """Stage an audit row in the open ledger transaction, next to its stock write."""
    db.session.add(record)
    return record


def get_product_stock(product_id: int) -> ProductStock:
    product = db.session.query(Product).filter_by(id=product_id).first()
    if product is None:
        raise ProductNotFound(product_id)
    return ProductStock(
        product_id=product.id,
        name=product.name,
        unit=product.unit,
        current_stock=product.current_stock,
    )


# =============================================================================
# INPUT COERCION
# =============================================================================

def _exact_quantity(value, field: str) -> Decimal:
    """Coerce to a quantity without rounding; more than 3 decimal places is an error."""
    try:
        raw = to_decimal(value, field)
    except ValidationError as exc:
        raise ValidationFailed(str(exc), {field: "must be a number"})
    qty = quantize_quantity(raw)
    if qty != raw:
        raise ValidationFailed(
            f"{field} allows at most 3 decimal places", {field: "allows at most 3 decimal places"}
        )
    return qty


def _quantity(value, field: str, *, allow_zero: bool = False) -> Decimal:
    qty = _exact_quantity(value, field)
    if qty < 0 or (qty == 0 and not allow_zero):
        rule = "must be >= 0" if allow_zero else "must be > 0"
        raise ValidationFailed(f"{field} {rule}", {field: rule})
    return qty


def _money_value(value, field: str) -> Decimal:
    try:
        amount = quantize_money(to_decimal(value, field))
    except ValidationError as exc:
        raise ValidationFailed(str(exc), {field: "must be a number"})
    if amount < 0:
        raise ValidationFailed(f"{field} must be >= 0", {field: "must be >= 0"})
    return amount


def _product_id(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationFailed(f"{field} must be a positive integer", {field: "must be a positive integer"})
    return value


# =============================================================================
# SALES
# =============================================================================

def _coerce_sale_items(items: Sequence) -> list[SaleItem]:
    if not items:
        raise ValidationFailed("Sale must contain at least one item", {"items": "must not be empty"})

    coerced = []
    for i, item in enumerate(items):
        if isinstance(item, dict):
            product_id = item.get("product_id")
            quantity = item.get("quantity")
            unit_price = item.get("unit_price")
        elif isinstance(item, SaleItem):
            product_id, quantity, unit_price = item.product_id, item.quantity, item.unit_price
        else:
            raise ValidationFailed("Invalid sale item", {f"items[{i}]": "must be an object"})

        coerced.append(SaleItem(
            product_id=_product_id(product_id, f"items[{i}].product_id"),
            quantity=_quantity(quantity, f"items[{i}].quantity"),
            unit_price=None if unit_price is None else _money_value(unit_price, f"items[{i}].unit_price"),
        ))
    return coerced


def _check_sale_availability(products: dict[int, Product], items: list[SaleItem]) -> None:
    """Validate every product's aggregated demand before any decrement."""
    requested: dict[int, Decimal] = {}
    for item in items:
        requested[item.product_id] = requested.get(item.product_id, Decimal(0)) + item.quantity

    for product_id in requested:
        product = products[product_id]
        if not product.is_active:
            raise ValidationFailed(
                f"Product {product.name} is not active",
                {"product_id": f"product {product_id} is inactive"},
            )

    if _negative_stock_allowed():
        return

    shortages = []
    for product_id, qty in requested.items():
        product = products[product_id]
        ok, message = validate_stock_availability(qty, product.current_stock)
        if not ok:
            shortages.append({
                "product_id": product_id,
                "product_name": product.name,
                "available": str(product.current_stock),
                "requested": str(qty),
                "message": message,
            })
    if shortages:
        first = products[shortages[0]["product_id"]]
        raise InsufficientStock(
            first.id,
            first.name,
            first.current_stock,
            requested[first.id],
            shortages=shortages,
        )


def apply_sale(
    items: Sequence,
    *,
    user_id: int | None = None,
    payment_method: str = "CASH",
    customer_name: str | None = None,
    tax_rate=None,
    discount=0,
    amount_paid=None,
    notes: str | None = None,
) -> Sale:
    """
    Record a sale and decrement stock for every line, all-or-nothing.

    items: SaleItem objects or dicts with product_id, quantity and optional
    unit_price (defaults to the product's selling price, frozen on the line).
    """
    sale_items = _coerce_sale_items(items)

    if payment_method not in PAYMENT_METHODS:
        raise ValidationFailed(
            f"payment_method must be one of {', '.join(PAYMENT_METHODS)}",
            {"payment_method": "is not supported"},
        )
    if tax_rate is None:
        tax_rate = current_app.config.get("DEFAULT_TAX_RATE", 0)
    try:
        rate = to_decimal(tax_rate, "tax_rate")
    except ValidationError as exc:
        raise ValidationFailed(str(exc), {"tax_rate": "must be a number"})
    if rate < 0 or rate > 1:
        raise ValidationFailed("tax_rate must be between 0 and 1", {"tax_rate": "must be between 0 and 1"})
    discount_value = _money_value(discount or 0, "discount")
    paid_value = None if amount_paid is None else _money_value(amount_paid, "amount_paid")

    def _op() -> Sale:
        products = _load_products_for_update(item.product_id for item in sale_items)
        _check_sale_availability(products, sale_items)

        priced = []
        for item in sale_items:
            price = item.unit_price if item.unit_price is not None else products[item.product_id].selling_price
            priced.append((item, price, line_subtotal(item.quantity, price)))
        totals = calculate_sale_totals(
            [(item.quantity, price) for item, price, _ in priced],
            tax_rate=rate,
            discount=discount_value,
        )
        if totals["total"] < 0:
            raise ValidationFailed("discount exceeds sale total", {"discount": "exceeds sale total"})

        paid = totals["total"] if paid_value is None else paid_value
        if paid < totals["total"]:
            raise ValidationFailed(
                f"amount_paid {paid} is less than total {totals['total']}",
                {"amount_paid": "is less than total"},
            )

        now = utcnow()
        sale = Sale(
            sale_number=generate_sale_number(now),
            user_id=user_id,
            customer_name=customer_name,
            payment_method=payment_method,
            subtotal=totals["subtotal"],
            tax_rate=rate,
            tax=totals["tax"],
            discount=totals["discount"],
            total=totals["total"],
            amount_paid=paid,
            change=calculate_change(totals["total"], paid),
            notes=notes,
            created_at=now,
        )
        db.session.add(sale)
        db.session.flush()

        for item, price, subtotal in priced:
            product = products[item.product_id]
            previous = product.current_stock
            set_product_stock(product, previous - item.quantity)
            append_audit_record(SaleLine(
                sale_id=sale.id,
                product_id=product.id,
                quantity=item.quantity,
                unit_price=price,
                subtotal=subtotal,
                previous_stock=previous,
                new_stock=product.current_stock,
                created_at=now,
            ))
        return sale

    sale = run_atomic(_op)
    current_app.logger.info(
        "Sale %s recorded: %d line(s), total %s", sale.sale_number, len(sale_items), sale.total
    )
    return sale


# =============================================================================
# ADJUSTMENTS
# =============================================================================

def is_removal(adjustment_type: str) -> bool:
    return adjustment_type in REMOVAL_TYPES


def apply_adjustment(
    product_id: int,
    adjustment_type: str,
    quantity,
    reason: str,
    *,
    user_id: int | None = None,
    notes: str | None = None,
) -> StockAdjustment:
    """Apply a reason-coded stock change; the sign comes from the type."""
    product_id = _product_id(product_id, "product_id")
    if adjustment_type not in ADJUSTMENT_TYPES:
        raise ValidationFailed(
            f"type must be one of {', '.join(ADJUSTMENT_TYPES)}",
            {"type": "is not a known adjustment type"},
        )
    qty = _quantity(quantity, "quantity")
    reason = "" if reason is None else str(reason).strip()
    if not reason:
        raise ValidationFailed("Reason is required", {"reason": "is required"})
    if len(reason) > 255:
        raise ValidationFailed("reason exceeds max length 255", {"reason": "exceeds max length 255"})

    removal = is_removal(adjustment_type)

    def _op() -> StockAdjustment:
        product = _load_products_for_update([product_id])[product_id]
        previous = product.current_stock

        if removal and not _negative_stock_allowed() and qty > previous:
            raise InsufficientStock(product.id, product.name, previous, qty)

        delta = -qty if removal else qty
        set_product_stock(product, previous + delta)

        adjustment = StockAdjustment(
            product_id=product.id,
            user_id=user_id,
            type=adjustment_type,
            quantity=qty,
            quantity_delta=delta,
            previous_stock=previous,
            new_stock=product.current_stock,
            reason=reason,
            notes=notes,
            created_at=utcnow(),
        )
        append_audit_record(adjustment)
        return adjustment

    adjustment = run_atomic(_op)
    current_app.logger.info(
        "Adjustment %s on product %s: %s -> %s",
        adjustment_type, product_id, adjustment.previous_stock, adjustment.new_stock,
    )
    return adjustment


# =============================================================================
# PHYSICAL COUNTS
# =============================================================================

def _coerce_count_entries(entries: Sequence) -> list[CountEntry]:
    if not entries:
        raise ValidationFailed("Count must contain at least one entry", {"counts": "must not be empty"})

    coerced = []
    seen: set[int] = set()
    for i, entry in enumerate(entries):
        if isinstance(entry, dict):
            product_id = entry.get("product_id")
            actual = entry.get("actual_qty")
            expected = entry.get("expected_qty")
            notes = entry.get("notes")
        elif isinstance(entry, CountEntry):
            product_id, actual, expected, notes = (
                entry.product_id, entry.actual_qty, entry.expected_qty, entry.notes
            )
        else:
            raise ValidationFailed("Invalid count entry", {f"counts[{i}]": "must be an object"})

        product_id = _product_id(product_id, f"counts[{i}].product_id")
        if product_id in seen:
            raise ValidationFailed(
                f"Product {product_id} appears more than once in this count",
                {f"counts[{i}].product_id": "is duplicated"},
            )
        seen.add(product_id)

        if expected is not None:
            expected = _exact_quantity(expected, f"counts[{i}].expected_qty")

        coerced.append(CountEntry(
            product_id=product_id,
            actual_qty=_quantity(actual, f"counts[{i}].actual_qty", allow_zero=True),
            expected_qty=expected,
            notes=notes,
        ))
    return coerced


def apply_count(
    entries: Sequence,
    *,
    user_id: int | None = None,
    count_date: datetime | None = None,
) -> list[StockCount]:
    """
    Record a physical count batch and overwrite each product's stock.

    entries: CountEntry objects or dicts with product_id, actual_qty and
    optional expected_qty/notes. expected_qty is the caller's figure
    (opening stock minus recorded sales); when omitted, the stored stock at
    the moment of the count is used. The whole batch commits or none of it.
    """
    count_entries = _coerce_count_entries(entries)
    counted_at = count_date or utcnow()

    def _op() -> list[StockCount]:
        products = _load_products_for_update(entry.product_id for entry in count_entries)
        records = []
        for entry in count_entries:
            product = products[entry.product_id]
            previous = product.current_stock
            expected = entry.expected_qty if entry.expected_qty is not None else previous

            if expected != previous:
                current_app.logger.warning(
                    "Count for product %s expected %s but stored stock was %s",
                    product.id, expected, previous,
                )

            record = StockCount(
                product_id=product.id,
                user_id=user_id,
                expected_qty=expected,
                actual_qty=entry.actual_qty,
                variance=entry.actual_qty - expected,
                previous_stock=previous,
                notes=entry.notes,
                count_date=counted_at,
            )
            append_audit_record(record)
            set_product_stock(product, entry.actual_qty)
            records.append(record)
        return records

    records = run_atomic(_op)
    current_app.logger.info("Stock count recorded for %d product(s)", len(records))
    return records
