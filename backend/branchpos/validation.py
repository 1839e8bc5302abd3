from __future__ import annotations
from datetime import datetime
from branchpos.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError


# Maximum amount: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_AMOUNT_CENTS = 999_999_999

MAX_LINE_ITEMS = 500


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    - allow_null_fields: extra allowlist for setting null even if you want to special-case later
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore
    # Optional: keep for future; currently we just honor SQLAlchemy column.nullable
    allow_null_fields: set[str] | None = None


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_int(key: str, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        return _coerce_int(col.key, value)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        # fallback: truthiness
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

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
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable and not (policy.allow_null_fields and k in policy.allow_null_fields):
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


# =============================================================================
# LEDGER RULES
# =============================================================================

def require_int(key: str, value: Any, *, minimum: int | None = None) -> int:
    """Strict integer input; bool/float/scientific strings are rejected."""
    if value is None:
        raise ValidationError(f"{key} is required")
    val = _coerce_int(key, value)
    if minimum is not None and val < minimum:
        raise ValidationError(f"{key} must be >= {minimum}")
    return val


def require_text(key: str, value: Any, *, max_length: int = 255) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{key} is required")
    val = str(value).strip()
    if len(val) > max_length:
        raise ValidationError(f"{key} exceeds max length {max_length}")
    return val


def enforce_rules_amounts(patch: dict) -> None:
    """Header money fields: non-negative cents within MAX_AMOUNT_CENTS."""
    for key in ("discount_cents", "tax_cents", "paid_amount_cents", "refund_amount_cents"):
        if key not in patch or patch[key] is None:
            continue
        amount = patch[key]
        if not isinstance(amount, int) or isinstance(amount, bool):
            raise ValidationError(f"{key} must be an integer")
        if amount < 0:
            raise ValidationError(f"{key} must be >= 0")
        if amount > MAX_AMOUNT_CENTS:
            raise ValidationError(f"{key} cannot exceed {MAX_AMOUNT_CENTS} ({MAX_AMOUNT_CENTS / 100:,.2f})")


def enforce_rules_payment_method(patch: dict, allowed) -> None:
    method = patch.get("payment_method")
    if method is not None and method not in allowed:
        raise ValidationError(f"Invalid payment_method. Must be one of: {', '.join(allowed)}")


def normalize_line_items(items, *, price_field: str) -> list[dict]:
    """
    Validate purchase/sale line items.

    Each item needs product_id, quantity > 0 and price_field >= 0 (cents).
    Returns fresh dicts with exactly those three keys.
    """
    if not isinstance(items, (list, tuple)) or not items:
        raise ValidationError("items must be a non-empty list")
    if len(items) > MAX_LINE_ITEMS:
        raise ValidationError(f"items cannot exceed {MAX_LINE_ITEMS} lines")

    normalized = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{index}] must be an object")
        product_id = require_int(f"items[{index}].product_id", item.get("product_id"), minimum=1)
        quantity = require_int(f"items[{index}].quantity", item.get("quantity"), minimum=1)
        price = require_int(f"items[{index}].{price_field}", item.get(price_field), minimum=0)
        if price > MAX_AMOUNT_CENTS:
            raise ValidationError(f"items[{index}].{price_field} cannot exceed {MAX_AMOUNT_CENTS}")
        normalized.append({"product_id": product_id, "quantity": quantity, price_field: price})
    return normalized
