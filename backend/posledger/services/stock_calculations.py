"""
Pure stock and money calculations.

No database access here: every function takes plain values and returns
plain values, so checkout, counts and reports share one definition of
each formula. Money results are rounded half-up to 2 places.
"""
from __future__ import annotations

import math
import secrets
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from posledger.time_utils import utcnow

CENT = Decimal("0.01")
ZERO = Decimal("0")


def _money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_sale_totals(
    items: Iterable[tuple[Decimal, Decimal]],
    tax_rate: Decimal = ZERO,
    discount: Decimal = ZERO,
) -> dict:
    """
    Totals for a list of (quantity, unit_price) pairs.

    subtotal = sum of line_subtotal() per pair, so it always equals the sum
    of the stored line subtotals; tax = subtotal * tax_rate;
    total = subtotal + tax - discount.
    """
    subtotal = sum((line_subtotal(qty, price) for qty, price in items), ZERO)
    tax = _money(subtotal * Decimal(tax_rate))
    discount = _money(discount)
    return {
        "subtotal": subtotal,
        "tax": tax,
        "discount": discount,
        "total": subtotal + tax - discount,
    }


def line_subtotal(quantity: Decimal, unit_price: Decimal) -> Decimal:
    return _money(Decimal(quantity) * Decimal(unit_price))


@dataclass(frozen=True)
class StockVariance:
    expected_stock: Decimal
    actual_stock: Decimal
    variance: Decimal
    unrecorded_units: Decimal
    estimated_revenue: Decimal

    def to_dict(self) -> dict:
        return {
            "expected_stock": str(self.expected_stock),
            "actual_stock": str(self.actual_stock),
            "variance": str(self.variance),
            "unrecorded_units": str(self.unrecorded_units),
            "estimated_revenue": str(self.estimated_revenue),
        }


def calculate_stock_variance(
    opening_stock: Decimal,
    recorded_sales: Decimal,
    actual_stock: Decimal,
    selling_price: Decimal,
) -> StockVariance:
    """
    Compare a physical count against opening stock minus recorded sales.

    A negative variance is stock that left without a recorded sale; it is
    valued at the selling price as estimated unrecorded revenue.
    """
    expected = Decimal(opening_stock) - Decimal(recorded_sales)
    variance = Decimal(actual_stock) - expected
    unrecorded = -variance if variance < 0 else ZERO
    return StockVariance(
        expected_stock=expected,
        actual_stock=Decimal(actual_stock),
        variance=variance,
        unrecorded_units=unrecorded,
        estimated_revenue=_money(unrecorded * Decimal(selling_price)),
    )


def calculate_daily_summary(
    variances: Iterable[tuple[Decimal, Decimal]],
    recorded_sales_total: Decimal,
    recorded_sales_count: int,
) -> dict:
    """
    Day roll-up from (variance, selling_price) pairs and recorded sales.

    Only shortfalls (negative variance) contribute unrecorded revenue.
    """
    unrecorded_revenue = ZERO
    shortfall_products = 0
    for variance, selling_price in variances:
        if variance < 0:
            unrecorded_revenue += -Decimal(variance) * Decimal(selling_price)
            shortfall_products += 1

    recorded = _money(recorded_sales_total)
    unrecorded_revenue = _money(unrecorded_revenue)
    return {
        "recorded_sales": recorded,
        "recorded_sales_count": recorded_sales_count,
        "unrecorded_revenue": unrecorded_revenue,
        "estimated_unrecorded_sales_count": shortfall_products,
        "total_estimated_revenue": recorded + unrecorded_revenue,
    }


def generate_sale_number(when: datetime | None = None) -> str:
    """SALE-YYMMDD-XXXXXX; the suffix is 24 random bits in hex."""
    when = when or utcnow()
    return f"SALE-{when:%y%m%d}-{secrets.token_hex(3).upper()}"


def calculate_profit_margin(cost_price: Decimal, selling_price: Decimal) -> dict:
    """
    Profit, margin (% of selling price) and markup (% of cost).

    Margin/markup are None when their denominator is zero.
    """
    cost = Decimal(cost_price)
    selling = Decimal(selling_price)
    profit = selling - cost
    margin = _money(profit / selling * 100) if selling else None
    markup = _money(profit / cost * 100) if cost else None
    return {"profit": _money(profit), "profit_margin": margin, "markup": markup}


def calculate_inventory_value(products: Iterable[tuple[Decimal, Decimal, Decimal]]) -> dict:
    """Cost value, retail value and potential profit of (stock, cost, selling) triples."""
    cost_value = ZERO
    retail_value = ZERO
    for stock, cost, selling in products:
        cost_value += Decimal(stock) * Decimal(cost)
        retail_value += Decimal(stock) * Decimal(selling)
    cost_value = _money(cost_value)
    retail_value = _money(retail_value)
    return {
        "cost_value": cost_value,
        "retail_value": retail_value,
        "potential_profit": retail_value - cost_value,
    }


def needs_reorder(current_stock: Decimal, reorder_level: Decimal) -> bool:
    return Decimal(current_stock) <= Decimal(reorder_level)


def calculate_reorder_quantity(
    average_daily_sales: Decimal,
    lead_time_days: int,
    safety_stock_days: int = 7,
) -> int:
    """Units to cover lead time plus safety stock, rounded up."""
    needed = Decimal(average_daily_sales) * (lead_time_days + safety_stock_days)
    return math.ceil(needed)


def calculate_change(total: Decimal, amount_paid: Decimal) -> Decimal:
    return max(ZERO, _money(Decimal(amount_paid) - Decimal(total)))


def validate_stock_availability(requested: Decimal, available: Decimal) -> tuple[bool, str | None]:
    if Decimal(requested) <= 0:
        return False, "Quantity must be greater than zero"
    if Decimal(requested) > Decimal(available):
        return False, f"Only {available} units available in stock"
    return True, None


def calculate_percentage_change(current: Decimal, previous: Decimal) -> dict:
    current = Decimal(current)
    previous = Decimal(previous)
    if previous == 0:
        return {
            "change": current,
            "percentage_change": Decimal(100) if current > 0 else ZERO,
            "is_increase": current > 0,
        }
    change = current - previous
    return {
        "change": _money(change),
        "percentage_change": _money(change / previous * 100),
        "is_increase": change >= 0,
    }
