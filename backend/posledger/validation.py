from __future__ import annotations
from datetime import datetime
from decimal import Decimal, InvalidOperation
from posledger.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, Numeric, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Maximum price: 99,999,999.99
# This prevents database overflow issues and nonsensical prices
MAX_PRICE = Decimal("99999999.99")

# Quantities are stored with three decimal places (e.g. 1.250 Kg)
QUANTITY_PLACES = Decimal("0.001")
MONEY_PLACES = Decimal("0.01")


class ValidationError(ValueError):
    """400-level input problem."""

    def __init__(self, message: str, fields: dict | None = None):
        super().__init__(message)
        self.fields = fields or {}


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate SKU)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def to_decimal(value: Any, field: str) -> Decimal:
    """
    Coerce a JSON number or numeric string to Decimal.

    Floats go through str() so 0.1 stays 0.1 instead of its binary expansion.
    Booleans, NaN and infinities are rejected.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number", {field: "must be a number"})
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number", {field: "must be a number"})
    else:
        raise ValidationError(f"{field} must be a number", {field: "must be a number"})

    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number", {field: "must be a finite number"})
    return result


def quantize_quantity(value: Decimal) -> Decimal:
    return value.quantize(QUANTITY_PLACES)


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_PLACES)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Numeric before Integer: quantities and prices are decimals
    if isinstance(coltype, Numeric):
        return to_decimal(value, col.key)

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        # Already an int (but not bool which is a subclass of int)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        # String input - must be plain digits (with optional leading minus)
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or 'e' in stripped.lower() or '.' in stripped:
                raise ValidationError(f"{col.key} must be an integer", {col.key: "must be an integer"})
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer", {col.key: "must be an integer"})
        raise ValidationError(f"{col.key} must be an integer", {col.key: "must be an integer"})

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be true or false", {col.key: "must be a boolean"})

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                dt = None
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime", {col.key: "must be a datetime"})
            return dt
        raise ValidationError(f"{col.key} must be a datetime", {col.key: "must be a datetime"})

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                {f: "is required" for f in missing},
            )

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}", {k: "is not writable"})
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}", {k: "is unknown"})

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null", {k: "cannot be null"})
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank", {k: "cannot be blank"})

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(
                    f"{k} exceeds max length {col.type.length}",
                    {k: f"exceeds max length {col.type.length}"},
                )

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> list[str]:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.

    Returns soft warnings (e.g. selling below cost); hard violations raise.
    """
    for field in ("cost_price", "selling_price"):
        price = patch.get(field)
        if price is None:
            continue
        if price < 0:
            raise ValidationError(f"{field} must be >= 0", {field: "must be >= 0"})
        if price > MAX_PRICE:
            raise ValidationError(f"{field} cannot exceed {MAX_PRICE}", {field: f"cannot exceed {MAX_PRICE}"})
        patch[field] = quantize_money(price)

    for field in ("current_stock", "reorder_level"):
        qty = patch.get(field)
        if qty is None:
            continue
        if qty < 0:
            raise ValidationError(f"{field} must be >= 0", {field: "must be >= 0"})
        patch[field] = quantize_quantity(qty)

    warnings = []
    cost = patch.get("cost_price")
    selling = patch.get("selling_price")
    if cost is not None and selling is not None and selling < cost:
        warnings.append("selling_price is below cost_price")
    return warnings
