# Overview: Flask API routes for stock movements and balances.

# backend/stockbook/routes/inventory.py
"""
Inventory routes.

SECURITY: All routes require the shared access key.

Write routes append exactly one ledger entry each:
- POST /purchase  {product_id, quantity, unit_cost?, reference_no?, notes?}
- POST /adjust    {product_id, quantity_delta, reference_no?, notes?}
- POST /return    {product_id, quantity, reference_no?, notes?}

Read routes:
- GET /products/<id>/ledger   entries oldest first with running balances
- GET /products/<id>/balance  cached vs replayed stock
- GET /movements              recent entries across products
"""
from flask import Blueprint, current_app, request

from ..errors import StockbookError, ValidationError
from ..services import balance_service, inventory_service, ledger_service
from ..validation import (
    enforce_rules_inventory_adjust,
    enforce_rules_inventory_purchase,
    enforce_rules_inventory_return,
    require_int,
)
from ..decorators import require_access_key


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

MOVEMENT_FIELDS = {"product_id", "quantity", "quantity_delta", "unit_cost", "reference_no", "notes"}


def _payload() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    for k in payload:
        if k not in MOVEMENT_FIELDS:
            raise ValidationError(f"Field not allowed: {k}")
    return payload


def _text(payload: dict, key: str, max_len: int) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    value = str(value).strip()
    if len(value) > max_len:
        raise ValidationError(f"{key} exceeds max length {max_len}")
    return value or None


@inventory_bp.post("/purchase")
@require_access_key
def purchase_route():
    try:
        payload = _payload()
        enforce_rules_inventory_purchase(payload)
        entry = inventory_service.record_purchase(
            product_id=require_int(payload, "product_id"),
            quantity=payload["quantity"],
            unit_cost=payload.get("unit_cost"),
            reference_no=_text(payload, "reference_no", 64),
            notes=_text(payload, "notes", 255),
        )
    except StockbookError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record purchase")
        return {"error": "Failed to record purchase"}, 500

    return entry.to_dict(), 201


@inventory_bp.post("/adjust")
@require_access_key
def adjust_route():
    try:
        payload = _payload()
        enforce_rules_inventory_adjust(payload)
        entry = inventory_service.record_adjustment(
            product_id=require_int(payload, "product_id"),
            quantity_delta=payload["quantity_delta"],
            reference_no=_text(payload, "reference_no", 64),
            notes=_text(payload, "notes", 255),
        )
    except StockbookError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record adjustment")
        return {"error": "Failed to record adjustment"}, 500

    return entry.to_dict(), 201


@inventory_bp.post("/return")
@require_access_key
def return_route():
    try:
        payload = _payload()
        enforce_rules_inventory_return(payload)
        entry = inventory_service.record_return(
            product_id=require_int(payload, "product_id"),
            quantity=payload["quantity"],
            reference_no=_text(payload, "reference_no", 64),
            notes=_text(payload, "notes", 255),
        )
    except StockbookError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record return")
        return {"error": "Failed to record return"}, 500

    return entry.to_dict(), 201


@inventory_bp.get("/products/<int:product_id>/ledger")
@require_access_key
def product_ledger_route(product_id: int):
    try:
        points = balance_service.product_register(product_id)
    except StockbookError as e:
        return e.to_dict(), e.status_code

    return {
        "product_id": product_id,
        "items": [p.to_dict() for p in points],
        "count": len(points),
    }


@inventory_bp.get("/products/<int:product_id>/balance")
@require_access_key
def product_balance_route(product_id: int):
    try:
        summary = inventory_service.get_inventory_summary(product_id=product_id)
    except StockbookError as e:
        return e.to_dict(), e.status_code
    return summary


@inventory_bp.get("/movements")
@require_access_key
def movements_route():
    """
    Query params:
    - type: purchase|sale|adjustment|return (optional)
    - reference_no: str (optional) - e.g. an invoice number
    - limit: int (optional, default 200, max 500)
    """
    tx_type = request.args.get("type")
    if tx_type and tx_type not in ledger_service.TRANSACTION_TYPES:
        return {"error": f"type must be one of: {', '.join(ledger_service.TRANSACTION_TYPES)}"}, 400

    entries = ledger_service.list_entries(
        transaction_type=tx_type,
        reference_no=request.args.get("reference_no"),
        limit=request.args.get("limit", default=200, type=int),
    )
    return {"items": [e.to_dict() for e in entries], "count": len(entries)}
