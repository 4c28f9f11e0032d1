# backend/stockbook/services/products_service.py
"""
Products Service

STOCK: current_stock is never patched here.
- create_product seeds opening_stock and current_stock with the same value
- opening_stock is fixed once the product exists; later changes are ledger entries
- delete_product refuses while invoice items or ledger entries reference the product
"""
from __future__ import annotations

import logging

from sqlalchemy import or_

from ..errors import ConflictError, NotFoundError, ReferentialIntegrityError, ValidationError
from ..extensions import db
from ..models import InvoiceItem, Product, StockLedgerEntry
from ..money_utils import ZERO

logger = logging.getLogger(__name__)

PRODUCT_MUTABLE_FIELDS = {"sku", "name", "category", "hsn_code", "unit", "unit_price", "tax_rate", "min_stock", "status"}

# How many blocking references a delete refusal lists
REFERENCE_SAMPLE_SIZE = 5


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def get_product(product_id: int) -> Product:
    p = db.session.get(Product, product_id)
    if p is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return p


def list_products(
    *,
    search: str | None = None,
    category: str | None = None,
    include_inactive: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Product listing with optional pagination.

    Returns:
        Dict with 'items', 'count', and pagination metadata if paginated.
    """
    base_query = db.session.query(Product)
    if not include_inactive:
        base_query = base_query.filter(Product.status == "active")
    if category:
        base_query = base_query.filter(Product.category == category)
    if search:
        like = f"%{search.strip()}%"
        base_query = base_query.filter(or_(Product.name.ilike(like), Product.sku.ilike(like)))
    base_query = base_query.order_by(Product.name.asc(), Product.id.asc())

    if page is None:
        products = base_query.all()
        return {
            "items": [p.to_dict() for p in products],
            "count": len(products),
        }

    per_page = min(per_page or 20, 100)  # Default 20, max 100
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    products = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def _sku_taken(sku: str, *, exclude_id: int | None = None) -> bool:
    q = db.session.query(Product.id).filter(Product.sku == sku)
    if exclude_id is not None:
        q = q.filter(Product.id != exclude_id)
    return q.first() is not None


def create_product(*, patch: dict) -> Product:
    """
    Create product using a validated patch dict.

    Raises:
        ConflictError: If SKU already exists
    """
    sku = patch.get("sku")
    if sku is None:
        raise ValidationError("sku is required")
    if _sku_taken(sku):
        raise ConflictError("SKU already exists.", details={"sku": sku})

    opening = patch.get("opening_stock") or ZERO
    p = Product(opening_stock=opening, current_stock=opening)
    apply_product_patch(p, patch)

    db.session.add(p)
    db.session.commit()
    logger.info("Created product sku=%s name=%s opening_stock=%s", p.sku, p.name, opening)
    return p


def update_product(*, product_id: int, patch: dict) -> Product:
    """
    Update catalog fields. Stock fields are rejected, not ignored, so a
    client never believes it changed stock.

    Raises:
        NotFoundError, ValidationError, ConflictError
    """
    p = get_product(product_id)

    for k in ("current_stock", "opening_stock"):
        if k in patch:
            raise ValidationError(
                f"{k} cannot be edited; record a purchase or adjustment instead"
            )

    if "sku" in patch and patch["sku"] != p.sku and _sku_taken(patch["sku"], exclude_id=p.id):
        raise ConflictError("SKU already exists.", details={"sku": patch["sku"]})

    apply_product_patch(p, patch)
    db.session.commit()
    logger.info("Updated product id=%s fields=%s", p.id, ", ".join(sorted(patch.keys())))
    return p


def _reference_check(entity: str, entity_id: int, blocked_by: str, query) -> None:
    count = query.count()
    if count:
        sample = [row[0] for row in query.limit(REFERENCE_SAMPLE_SIZE).all()]
        raise ReferentialIntegrityError(entity, entity_id, blocked_by, count, sample)


def delete_product(*, product_id: int) -> None:
    """
    Hard delete, only for products nothing references.

    Products that were ever invoiced or moved stock keep their history;
    set status="inactive" instead.
    """
    p = get_product(product_id)

    _reference_check(
        "product", p.id, "invoice items",
        db.session.query(InvoiceItem.invoice_id)
        .filter(InvoiceItem.product_id == p.id)
        .order_by(InvoiceItem.id.asc()),
    )
    _reference_check(
        "product", p.id, "ledger entries",
        db.session.query(StockLedgerEntry.id)
        .filter(StockLedgerEntry.product_id == p.id)
        .order_by(StockLedgerEntry.id.asc()),
    )

    db.session.delete(p)
    db.session.commit()
    logger.info("Deleted product id=%s sku=%s", product_id, p.sku)


def list_stock_alerts() -> dict:
    """
    Active products at or below their reorder level.

    out_of_stock: current_stock <= 0
    low_stock:    0 < current_stock <= min_stock
    """
    products = (
        db.session.query(Product)
        .filter(Product.status == "active")
        .filter(or_(Product.current_stock <= 0, Product.current_stock <= Product.min_stock))
        .order_by(Product.current_stock.asc(), Product.name.asc())
        .all()
    )
    out_of_stock = [p.to_dict() for p in products if p.stock_state == "out_of_stock"]
    low_stock = [p.to_dict() for p in products if p.stock_state == "low_stock"]
    return {
        "out_of_stock": out_of_stock,
        "low_stock": low_stock,
        "count": len(out_of_stock) + len(low_stock),
    }
