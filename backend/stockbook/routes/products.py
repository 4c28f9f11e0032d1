# Overview: Flask API routes for products; parses input and returns JSON responses.

# backend/stockbook/routes/products.py
"""
Product catalog routes.

STOCK: current_stock is read-only here. POST may seed opening_stock; after
that, stock only moves through /api/inventory and invoices.

SECURITY: All routes require the shared access key.
"""
from flask import Blueprint, current_app, request

from ..errors import StockbookError
from ..models import Product
from ..services import balance_service, products_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
)
from ..decorators import require_access_key

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "name", "category", "hsn_code", "unit",
        "unit_price", "tax_rate", "opening_stock", "min_stock", "status",
    },
    required_on_create={"sku", "name", "unit_price"},
)

# Same as create minus opening_stock; current_stock is never writable
PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=PRODUCT_POLICY.writable_fields - {"opening_stock"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_access_key
def list_products():
    """
    List products.

    Query params:
    - q: str (optional) - name/SKU search
    - category: str (optional)
    - include_inactive: bool (optional, default false)
    - page: int (optional) - page number (1-indexed). If omitted, returns all items.
    - per_page: int (optional) - items per page (default 20, max 100)
    """
    return products_service.list_products(
        search=request.args.get("q"),
        category=request.args.get("category"),
        include_inactive=request.args.get("include_inactive", "false").lower() in {"1", "true", "yes"},
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )


@products_bp.get("/alerts")
@require_access_key
def stock_alerts():
    """Products that are out of stock or at/below min_stock."""
    return products_service.list_stock_alerts()


@products_bp.post("")
@require_access_key
def create_product_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
        created = products_service.create_product(patch=patch)
    except StockbookError as e:
        return e.to_dict(), e.status_code

    return created.to_dict(), 201


@products_bp.get("/<int:product_id>")
@require_access_key
def get_product_route(product_id: int):
    """Product with cached vs replayed stock."""
    try:
        product = products_service.get_product(product_id)
        check = balance_service.check_product(product_id)
    except StockbookError as e:
        return e.to_dict(), e.status_code

    data = product.to_dict()
    data["balance"] = check.to_dict()
    return data


@products_bp.patch("/<int:product_id>")
@require_access_key
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}

    for k in ("current_stock", "opening_stock"):
        if k in payload:
            return {
                "error": f"{k} cannot be edited; record a purchase or adjustment instead",
                "type": "ValidationError",
                "details": {"field": k},
            }, 400

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_UPDATE_POLICY, partial=True)
        enforce_rules_product(patch)
        updated = products_service.update_product(product_id=product_id, patch=patch)
    except StockbookError as e:
        return e.to_dict(), e.status_code

    return updated.to_dict()


@products_bp.delete("/<int:product_id>")
@require_access_key
def delete_product_route(product_id: int):
    """
    Delete a product nothing references. Returns 409 with a sample of the
    blocking references otherwise.
    """
    try:
        products_service.delete_product(product_id=product_id)
    except StockbookError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete product %s", product_id)
        return {"error": "Failed to delete product"}, 500

    return {"ok": True}, 200
