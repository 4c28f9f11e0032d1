from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Date, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError
from .money_utils import MAX_MONEY, MAX_QUANTITY, to_decimal
from .time_utils import parse_iso_date, parse_iso_datetime


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


PRODUCT_STATUSES = {"active", "inactive"}


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{col.key} must be an integer")
            if 'e' in stripped.lower():
                raise ValidationError(f"{col.key} must be a plain integer (scientific notation not allowed)")
            if '.' in stripped:
                raise ValidationError(f"{col.key} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        if isinstance(value, float):
            raise ValidationError(f"{col.key} must be an integer, not a decimal")
        raise ValidationError(f"{col.key} must be an integer")

    # Money and quantities
    if isinstance(coltype, Numeric):
        dec = to_decimal(value, col.key)
        if coltype.scale is not None:
            try:
                dec = dec.quantize(Decimal(1).scaleb(-coltype.scale))
            except InvalidOperation:
                raise ValidationError(f"{col.key} is out of range")
        return dec

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

    # Dates (invoice_date)
    if isinstance(coltype, Date):
        if isinstance(value, (date, str)):
            try:
                d = parse_iso_date(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO date (YYYY-MM-DD)")
            if d is None:
                raise ValidationError(f"{col.key} must be an ISO date (YYYY-MM-DD)")
            return d
        raise ValidationError(f"{col.key} must be a date")

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

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
    - SQLAlchemy column metadata (nullable, type, String length, Numeric scale)
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

        if raw is None:
            if not col.nullable:
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


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if "unit_price" in patch:
        price = patch["unit_price"]
        if price < 0:
            raise ValidationError("unit_price must be >= 0")
        if price > MAX_MONEY:
            raise ValidationError(f"unit_price cannot exceed {MAX_MONEY}")

    if "tax_rate" in patch and not (0 <= patch["tax_rate"] <= 100):
        raise ValidationError("tax_rate must be between 0 and 100")

    for key in ("opening_stock", "min_stock"):
        if key in patch:
            if patch[key] < 0:
                raise ValidationError(f"{key} must be >= 0")
            if patch[key] > MAX_QUANTITY:
                raise ValidationError(f"{key} cannot exceed {MAX_QUANTITY}")

    if "status" in patch and patch["status"] not in PRODUCT_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(sorted(PRODUCT_STATUSES))}")


def enforce_rules_customer(patch: dict) -> None:
    email = patch.get("email")
    if email and "@" not in email:
        raise ValidationError("email must be a valid email address")

    gstin = patch.get("gstin")
    if gstin and len(gstin) != 15:
        raise ValidationError("gstin must be 15 characters")


def enforce_rules_inventory_purchase(payload: dict) -> None:
    # PURCHASE requires quantity > 0; unit_cost optional but >= 0
    if payload.get("quantity") is None:
        raise ValidationError("quantity is required for purchase")
    if to_decimal(payload["quantity"], "quantity") <= 0:
        raise ValidationError("quantity must be > 0 for purchase")

    if payload.get("unit_cost") is not None:
        if to_decimal(payload["unit_cost"], "unit_cost") < 0:
            raise ValidationError("unit_cost must be >= 0")


def enforce_rules_inventory_adjust(payload: dict) -> None:
    # ADJUST requires quantity_delta != 0 and forbids unit_cost
    if payload.get("quantity_delta") is None:
        raise ValidationError("quantity_delta is required for adjustment")
    if to_decimal(payload["quantity_delta"], "quantity_delta") == 0:
        raise ValidationError("quantity_delta must be non-zero for adjustment")

    if payload.get("unit_cost") is not None:
        raise ValidationError("unit_cost must be omitted for adjustment")


def enforce_rules_inventory_return(payload: dict) -> None:
    if payload.get("quantity") is None:
        raise ValidationError("quantity is required for return")
    if to_decimal(payload["quantity"], "quantity") <= 0:
        raise ValidationError("quantity must be > 0 for return")


def require_int(payload: dict, key: str) -> int:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{key} must be an integer")
    return value


INVOICE_FIELDS = {
    "customer_id", "guest_name", "guest_email", "guest_phone", "guest_address",
    "guest_gstin", "invoice_date", "notes", "items",
}
INVOICE_ITEM_FIELDS = {"product_id", "description", "quantity", "unit_price", "tax_rate"}


def validate_invoice_payload(payload: dict, *, partial: bool) -> dict:
    """
    Shape check for invoice create/update bodies. Value rules (party XOR,
    quantity > 0, stock) live in invoice_service.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    for k in payload:
        if k not in INVOICE_FIELDS:
            raise ValidationError(f"Field not allowed: {k}")

    if not partial and "items" not in payload:
        raise ValidationError("Missing required fields: items")

    if "items" in payload:
        items = payload["items"]
        if not isinstance(items, list):
            raise ValidationError("items must be a list")
        for idx, item in enumerate(items):
            if not isinstance(item, dict):
                raise ValidationError(f"items[{idx}] must be an object")
            for k in item:
                if k not in INVOICE_ITEM_FIELDS:
                    raise ValidationError(f"items[{idx}]: field not allowed: {k}")

    return dict(payload)
