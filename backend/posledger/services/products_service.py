# Overview: Service-layer operations for the product catalog.

"""
Catalog management.

Product master data (names, prices, reorder levels) is edited here.
current_stock is only ever set once, as the opening stock on create;
after that every change goes through services/ledger_service.py.
"""
from __future__ import annotations

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Category, Product, SaleLine, StockAdjustment, StockCount
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_product,
    validate_payload,
)


PRODUCT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku",
        "barcode",
        "name",
        "description",
        "category_id",
        "unit",
        "cost_price",
        "selling_price",
        "current_stock",
        "reorder_level",
        "is_active",
    },
    required_on_create={"sku", "name", "unit", "cost_price", "selling_price"},
)

# current_stock is deliberately absent: stock is not catalog data.
PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=PRODUCT_CREATE_POLICY.writable_fields - {"current_stock"},
)

CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description"},
    required_on_create={"name"},
)


class ProductError(Exception):
    """Raised for catalog lookups that fail."""
    pass


def _ensure_category(category_id: int | None) -> None:
    if category_id is None:
        return
    if not db.session.query(Category).filter_by(id=category_id).first():
        raise ValidationError("category not found", {"category_id": "does not exist"})


def _ensure_unique_sku(sku: str, exclude_id: int | None = None) -> None:
    query = db.session.query(Product).filter(Product.sku == sku)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first():
        raise ConflictError(f"SKU {sku} already exists")


def create_product(payload: dict) -> tuple[Product, list[str]]:
    """
    Create a product with its opening stock.

    Returns (product, warnings); selling below cost is a warning only.
    """
    if isinstance(payload, dict) and "current_stock" not in payload:
        payload = {**payload, "current_stock": 0}
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_CREATE_POLICY, partial=False)
    warnings = enforce_rules_product(patch)
    _ensure_category(patch.get("category_id"))
    _ensure_unique_sku(patch["sku"])

    product = Product(**patch)
    db.session.add(product)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"SKU {patch['sku']} already exists")
    return product, warnings


def get_product(product_id: int) -> Product:
    product = db.session.query(Product).filter_by(id=product_id).first()
    if not product:
        raise ProductError("Product not found")
    return product


def update_product(product_id: int, payload: dict) -> tuple[Product, list[str]]:
    if isinstance(payload, dict) and "current_stock" in payload:
        raise ValidationError(
            "current_stock cannot be edited; use a stock adjustment or count",
            {"current_stock": "is managed by the stock ledger"},
        )
    product = get_product(product_id)
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_UPDATE_POLICY, partial=True)

    # Soft price check against the resulting prices, not just the patch
    check = {
        "cost_price": patch.get("cost_price", product.cost_price),
        "selling_price": patch.get("selling_price", product.selling_price),
        "reorder_level": patch.get("reorder_level"),
    }
    warnings = enforce_rules_product(check)
    for field in ("cost_price", "selling_price", "reorder_level"):
        if field in patch and patch[field] is not None:
            patch[field] = check[field]

    if "category_id" in patch:
        _ensure_category(patch["category_id"])
    if "sku" in patch:
        _ensure_unique_sku(patch["sku"], exclude_id=product.id)

    for key, value in patch.items():
        setattr(product, key, value)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("SKU already exists")
    return product, warnings


def delete_product(product_id: int) -> None:
    """
    Delete a product that nothing references.

    Products with sales, adjustments or counts keep their history; they
    must be deactivated (is_active=false) instead.
    """
    product = get_product(product_id)
    for model in (SaleLine, StockAdjustment, StockCount):
        if db.session.query(model.id).filter_by(product_id=product.id).first():
            raise ConflictError("Product has stock history; deactivate it instead")
    db.session.delete(product)
    db.session.commit()


def list_products(
    *,
    q: str | None = None,
    category_id: int | None = None,
    stock: str | None = None,
    active_only: bool = False,
    take: int = 100,
    skip: int = 0,
) -> tuple[list[Product], int]:
    """
    Search the catalog.

    stock="low": at or below the product's own reorder level.
    stock="out": nothing left (<= 0, covers negative-stock mode).
    """
    query = db.session.query(Product)
    if q:
        like = f"%{q}%"
        query = query.filter(or_(Product.name.ilike(like), Product.sku.ilike(like), Product.barcode.ilike(like)))
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)
    if stock == "low":
        query = query.filter(Product.current_stock <= Product.reorder_level)
    elif stock == "out":
        query = query.filter(Product.current_stock <= 0)
    elif stock is not None:
        raise ValidationError("stock must be 'low' or 'out'", {"stock": "must be low or out"})
    if active_only:
        query = query.filter(Product.is_active.is_(True))

    total = query.count()
    rows = query.order_by(Product.name.asc(), Product.id.asc()).offset(skip).limit(take).all()
    return rows, total


def create_category(payload: dict) -> Category:
    patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=False)
    if db.session.query(Category).filter_by(name=patch["name"]).first():
        raise ConflictError(f"Category {patch['name']} already exists")
    category = Category(**patch)
    db.session.add(category)
    db.session.commit()
    return category


def list_categories(q: str | None = None) -> list[Category]:
    query = db.session.query(Category)
    if q:
        query = query.filter(Category.name.ilike(f"%{q}%"))
    return query.order_by(Category.name.asc()).all()
