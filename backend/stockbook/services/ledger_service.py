# Overview: Append-only stock ledger; the only writer of Product.current_stock.

from __future__ import annotations

from decimal import Decimal

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Product, StockLedgerEntry
from ..money_utils import MAX_QUANTITY, ZERO, check_limit, quantize_quantity, to_decimal
from .concurrency import locked_product_query
"""
Stock Ledger Invariants (authoritative)

- Append-only: entries are inserted, never updated or deleted.
- Every append applies its quantity_delta to Product.current_stock in the
  same flush, so current_stock == opening_stock + SUM(quantity_delta).
- Sign convention: purchase/return > 0, sale < 0, adjustment != 0.
- Stock-reducing entries (sale, negative adjustment) go through
  append_if_sufficient_stock, which refuses to take a product below zero.
- Functions here flush but never commit; callers own the transaction.

Concurrency:
- The product row is read with SELECT ... FOR UPDATE during check-then-append
  (honored by PostgreSQL, ignored by SQLite).
- Product.version_id turns a lost update on current_stock into StaleDataError.
"""

TX_PURCHASE = "purchase"
TX_SALE = "sale"
TX_ADJUSTMENT = "adjustment"
TX_RETURN = "return"
TRANSACTION_TYPES = (TX_PURCHASE, TX_SALE, TX_ADJUSTMENT, TX_RETURN)

POSITIVE_TYPES = {TX_PURCHASE, TX_RETURN}
NEGATIVE_TYPES = {TX_SALE}


def get_product(product_id: int, *, lock: bool = False) -> Product | None:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        # Re-read the row so the stock check never uses a stale identity-map copy
        query = locked_product_query(query)
    return query.first()


def is_stock_reducing(transaction_type: str, quantity_delta: Decimal) -> bool:
    return quantity_delta < 0 and transaction_type in (TX_SALE, TX_ADJUSTMENT)


def _validate_entry(transaction_type: str, quantity_delta) -> Decimal:
    if transaction_type not in TRANSACTION_TYPES:
        raise ValidationError(
            f"transaction_type must be one of: {', '.join(TRANSACTION_TYPES)}"
        )

    delta = quantize_quantity(to_decimal(quantity_delta, "quantity_delta"), "quantity_delta")
    check_limit(delta, MAX_QUANTITY, "quantity_delta")
    if delta == 0:
        raise ValidationError("quantity_delta must be non-zero")
    if transaction_type in POSITIVE_TYPES and delta < 0:
        raise ValidationError(f"quantity_delta must be > 0 for {transaction_type}")
    if transaction_type in NEGATIVE_TYPES and delta > 0:
        raise ValidationError(f"quantity_delta must be < 0 for {transaction_type}")
    return delta


def _append_to_product(
    product: Product,
    *,
    transaction_type: str,
    quantity_delta: Decimal,
    unit_cost=None,
    reference_no: str | None = None,
    notes: str | None = None,
) -> StockLedgerEntry:
    entry = StockLedgerEntry(
        product_id=product.id,
        transaction_type=transaction_type,
        quantity_delta=quantity_delta,
        unit_cost=to_decimal(unit_cost, "unit_cost") if unit_cost is not None else None,
        reference_no=reference_no,
        notes=notes,
    )
    db.session.add(entry)

    product.current_stock = quantize_quantity(product.current_stock or ZERO) + quantity_delta

    db.session.flush()
    return entry


def append(
    *,
    product_id: int,
    transaction_type: str,
    quantity_delta,
    unit_cost=None,
    reference_no: str | None = None,
    notes: str | None = None,
) -> StockLedgerEntry:
    """
    Insert one immutable entry and move the cached counter.

    No stock-sufficiency check; use append_if_sufficient_stock for anything
    that can reduce stock.
    """
    delta = _validate_entry(transaction_type, quantity_delta)

    product = get_product(product_id, lock=True)
    if product is None:
        raise ValidationError(f"Product {product_id} does not exist")

    return _append_to_product(
        product,
        transaction_type=transaction_type,
        quantity_delta=delta,
        unit_cost=unit_cost,
        reference_no=reference_no,
        notes=notes,
    )


def append_if_sufficient_stock(
    *,
    product_id: int,
    transaction_type: str,
    quantity_delta,
    unit_cost=None,
    reference_no: str | None = None,
    notes: str | None = None,
) -> StockLedgerEntry:
    """
    Append, refusing any sale/negative adjustment that would leave the
    product below zero. Nothing is written when the check fails.
    """
    delta = _validate_entry(transaction_type, quantity_delta)

    product = get_product(product_id, lock=True)
    if product is None:
        raise ValidationError(f"Product {product_id} does not exist")

    if is_stock_reducing(transaction_type, delta):
        available = quantize_quantity(product.current_stock)
        if available + delta < 0:
            raise InsufficientStockError([
                {
                    "product_id": product.id,
                    "product_name": product.name,
                    "requested": -delta,
                    "available": available,
                }
            ])

    return _append_to_product(
        product,
        transaction_type=transaction_type,
        quantity_delta=delta,
        unit_cost=unit_cost,
        reference_no=reference_no,
        notes=notes,
    )


def list_for_product(product_id: int) -> list[StockLedgerEntry]:
    """Entries for one product, oldest first (running-balance order)."""
    if get_product(product_id) is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})

    return (
        db.session.query(StockLedgerEntry)
        .filter(StockLedgerEntry.product_id == product_id)
        .order_by(StockLedgerEntry.created_at.asc(), StockLedgerEntry.id.asc())
        .all()
    )


def list_entries(
    *,
    transaction_type: str | None = None,
    reference_no: str | None = None,
    limit: int = 200,
) -> list[StockLedgerEntry]:
    """Recent movements across all products, newest first."""
    q = db.session.query(StockLedgerEntry)
    if transaction_type:
        q = q.filter(StockLedgerEntry.transaction_type == transaction_type)
    if reference_no:
        q = q.filter(StockLedgerEntry.reference_no == reference_no)

    limit = max(1, min(limit, 500))
    return (
        q.order_by(StockLedgerEntry.created_at.desc(), StockLedgerEntry.id.desc())
        .limit(limit)
        .all()
    )
