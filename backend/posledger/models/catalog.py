from __future__ import annotations

from ..extensions import db
from posledger.time_utils import to_utc_z
from ._types import Money, Quantity, decimal_str


class Category(db.Model):
    """Product grouping used for catalog filtering."""
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, unique=True)
    description = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Product master data plus the authoritative stock scalar.

    STOCK DESIGN DECISION:
    current_stock is stored, not derived. It is updated in the same
    transaction as the audit row (SaleLine, StockAdjustment, StockCount)
    that explains the change, and ONLY by services/ledger_service.py.
    Catalog edits must never write it.

    version_id is an optimistic lock: two sessions that both read the row
    and then write it cannot both commit (StaleDataError on the loser),
    which backs up SELECT ... FOR UPDATE on databases that ignore it.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_name", "name"),
        db.Index("ix_products_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False, unique=True)
    barcode = db.Column(db.String(64), nullable=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)

    unit = db.Column(db.String(32), nullable=False, default="pcs")
    cost_price = db.Column(Money, nullable=False, default=0)
    selling_price = db.Column(Money, nullable=False, default=0)

    current_stock = db.Column(Quantity, nullable=False, default=0)
    reorder_level = db.Column(Quantity, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    category = db.relationship("Category", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} stock={self.current_stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "barcode": self.barcode,
            "name": self.name,
            "description": self.description,
            "category_id": self.category_id,
            "category": self.category.to_dict() if self.category else None,
            "unit": self.unit,
            "cost_price": decimal_str(self.cost_price),
            "selling_price": decimal_str(self.selling_price),
            "current_stock": decimal_str(self.current_stock),
            "reorder_level": decimal_str(self.reorder_level),
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
