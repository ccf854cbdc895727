from __future__ import annotations

from ..extensions import db
from posledger.time_utils import to_utc_z
from ._types import Quantity, decimal_str


class StockAdjustment(db.Model):
    """
    Reason-coded manual stock change (append-only audit row).

    quantity is the positive magnitude entered by the user; quantity_delta
    is the signed change actually applied to Product.current_stock.
    """
    __tablename__ = "stock_adjustments"
    __table_args__ = (
        db.Index("ix_adjustments_product_created", "product_id", "created_at"),
        db.Index("ix_adjustments_type_created", "type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    type = db.Column(db.String(32), nullable=False)
    quantity = db.Column(Quantity, nullable=False)
    quantity_delta = db.Column(Quantity, nullable=False)
    previous_stock = db.Column(Quantity, nullable=False)
    new_stock = db.Column(Quantity, nullable=False)

    reason = db.Column(db.String(255), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")
    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product": {
                "id": self.product.id,
                "name": self.product.name,
                "sku": self.product.sku,
                "unit": self.product.unit,
            } if self.product else None,
            "user_id": self.user_id,
            "user": {"id": self.user.id, "name": self.user.name, "email": self.user.email} if self.user else None,
            "type": self.type,
            "quantity": decimal_str(self.quantity),
            "quantity_delta": decimal_str(self.quantity_delta),
            "previous_stock": decimal_str(self.previous_stock),
            "new_stock": decimal_str(self.new_stock),
            "reason": self.reason,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class StockCount(db.Model):
    """
    Physical count record.

    expected_qty comes from the caller's count sheet; previous_stock is the
    stored stock that the count overwrote. A gap between the two means the
    stock moved between preparing the sheet and submitting the count.
    """
    __tablename__ = "stock_counts"
    __table_args__ = (
        db.Index("ix_stock_counts_product_date", "product_id", "count_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    expected_qty = db.Column(Quantity, nullable=False)
    actual_qty = db.Column(Quantity, nullable=False)
    variance = db.Column(Quantity, nullable=False)
    previous_stock = db.Column(Quantity, nullable=False)

    notes = db.Column(db.Text, nullable=True)

    count_date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    product = db.relationship("Product")
    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product": {
                "id": self.product.id,
                "name": self.product.name,
                "sku": self.product.sku,
                "unit": self.product.unit,
            } if self.product else None,
            "user_id": self.user_id,
            "expected_qty": decimal_str(self.expected_qty),
            "actual_qty": decimal_str(self.actual_qty),
            "variance": decimal_str(self.variance),
            "previous_stock": decimal_str(self.previous_stock),
            "notes": self.notes,
            "count_date": to_utc_z(self.count_date),
        }
