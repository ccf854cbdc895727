from __future__ import annotations

from ..extensions import db
from posledger.time_utils import to_utc_z
from ._types import Money, Quantity, decimal_str


class Sale(db.Model):
    """
    Completed checkout.

    A Sale row only ever exists together with all of its SaleLines and the
    stock decrements they caused; see ledger_service.apply_sale.

    Totals invariant: total == subtotal + tax - discount, where subtotal is
    the sum of line subtotals.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_created", "created_at"),
        db.Index("ix_sales_payment_created", "payment_method", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number, e.g. "SALE-251017-4F9A1C"
    sale_number = db.Column(db.String(32), nullable=False, unique=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    customer_name = db.Column(db.String(255), nullable=True)
    payment_method = db.Column(db.String(32), nullable=False, default="CASH")

    subtotal = db.Column(Money, nullable=False)
    tax_rate = db.Column(db.Numeric(6, 4, asdecimal=True), nullable=False, default=0)
    tax = db.Column(Money, nullable=False, default=0)
    discount = db.Column(Money, nullable=False, default=0)
    total = db.Column(Money, nullable=False)
    amount_paid = db.Column(Money, nullable=False)
    change = db.Column(Money, nullable=False, default=0)

    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User")
    items = db.relationship(
        "SaleLine",
        backref="sale",
        lazy=True,
        order_by="SaleLine.id",
    )

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "sale_number": self.sale_number,
            "user_id": self.user_id,
            "user": {"id": self.user.id, "name": self.user.name} if self.user else None,
            "customer_name": self.customer_name,
            "payment_method": self.payment_method,
            "subtotal": decimal_str(self.subtotal),
            "tax_rate": decimal_str(self.tax_rate),
            "tax": decimal_str(self.tax),
            "discount": decimal_str(self.discount),
            "total": decimal_str(self.total),
            "amount_paid": decimal_str(self.amount_paid),
            "change": decimal_str(self.change),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleLine(db.Model):
    """One product/quantity/price entry on a sale; quantity and price are frozen at sale time."""
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(Quantity, nullable=False)
    unit_price = db.Column(Money, nullable=False)
    subtotal = db.Column(Money, nullable=False)

    # Stock audit: stored stock immediately before/after this line's decrement
    previous_stock = db.Column(Quantity, nullable=False)
    new_stock = db.Column(Quantity, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product": {
                "id": self.product.id,
                "name": self.product.name,
                "sku": self.product.sku,
                "unit": self.product.unit,
            } if self.product else None,
            "quantity": decimal_str(self.quantity),
            "unit_price": decimal_str(self.unit_price),
            "subtotal": decimal_str(self.subtotal),
            "previous_stock": decimal_str(self.previous_stock),
            "new_stock": decimal_str(self.new_stock),
            "created_at": to_utc_z(self.created_at),
        }
