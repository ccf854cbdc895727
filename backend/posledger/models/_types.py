from __future__ import annotations

from decimal import Decimal

from ..extensions import db

# Quantities carry three places (fractional units such as Kg); money carries two.
Quantity = db.Numeric(14, 3, asdecimal=True)
Money = db.Numeric(14, 2, asdecimal=True)


def decimal_str(value: Decimal | None) -> str | None:
    """JSON-safe rendering of Numeric columns (exact, no float round-trip)."""
    if value is None:
        return None
    return str(value)
