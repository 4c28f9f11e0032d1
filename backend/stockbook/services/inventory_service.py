# Overview: Service-layer operations for inventory; encapsulates business logic and database work.

# backend/stockbook/services/inventory_service.py

from __future__ import annotations

import logging

from ..errors import ValidationError
from ..extensions import db
from ..models import StockLedgerEntry
from ..money_utils import MAX_MONEY, MAX_QUANTITY, check_limit, quantize_quantity, to_decimal
from . import balance_service, ledger_service
from .concurrency import retry_stock_write
"""
Inventory operations exposed to the API (purchase, adjustment, return, sale).

Each public function is one ledger append in its own transaction, retried on
lock/version conflicts. Invoice workflows do NOT call these; they use
ledger_service directly so all of an invoice's entries share one
transaction (see invoice_service).

- PURCHASE increases stock and may carry unit_cost.
- ADJUST is a signed correction; negative adjustments may not overdraw.
- RETURN increases stock (customer hands goods back outside an invoice edit).
- SALE decreases stock; it may not overdraw.
"""

logger = logging.getLogger(__name__)


def _positive_quantity(quantity, field: str = "quantity"):
    qty = quantize_quantity(to_decimal(quantity, field), field)
    if qty <= 0:
        raise ValidationError(f"{field} must be > 0")
    return check_limit(qty, MAX_QUANTITY, field)


def record_purchase(
    *,
    product_id: int,
    quantity,
    unit_cost=None,
    reference_no: str | None = None,
    notes: str | None = None,
) -> StockLedgerEntry:
    qty = _positive_quantity(quantity)
    if unit_cost is not None:
        cost = to_decimal(unit_cost, "unit_cost")
        if cost < 0:
            raise ValidationError("unit_cost must be >= 0")
        check_limit(cost, MAX_MONEY, "unit_cost")

    def _op():
        entry = ledger_service.append(
            product_id=product_id,
            transaction_type=ledger_service.TX_PURCHASE,
            quantity_delta=qty,
            unit_cost=unit_cost,
            reference_no=reference_no,
            notes=notes,
        )
        db.session.commit()
        return entry

    entry = retry_stock_write(f"purchase product_id={product_id}", _op)
    logger.info("Purchase recorded: product_id=%s qty=%s ref=%s", product_id, qty, reference_no)
    return entry


def record_adjustment(
    *,
    product_id: int,
    quantity_delta,
    reference_no: str | None = None,
    notes: str | None = None,
) -> StockLedgerEntry:
    """
    Signed stock correction (damage, recount, manual fix).

    A negative adjustment larger than current stock raises
    InsufficientStockError and writes nothing.
    """
    def _op():
        entry = ledger_service.append_if_sufficient_stock(
            product_id=product_id,
            transaction_type=ledger_service.TX_ADJUSTMENT,
            quantity_delta=quantity_delta,
            reference_no=reference_no,
            notes=notes,
        )
        db.session.commit()
        return entry

    entry = retry_stock_write(f"adjustment product_id={product_id}", _op)
    logger.info(
        "Adjustment recorded: product_id=%s delta=%s ref=%s",
        product_id, entry.quantity_delta, reference_no,
    )
    return entry


def record_return(
    *,
    product_id: int,
    quantity,
    reference_no: str | None = None,
    notes: str | None = None,
) -> StockLedgerEntry:
    qty = _positive_quantity(quantity)

    def _op():
        entry = ledger_service.append(
            product_id=product_id,
            transaction_type=ledger_service.TX_RETURN,
            quantity_delta=qty,
            reference_no=reference_no,
            notes=notes,
        )
        db.session.commit()
        return entry

    return retry_stock_write(f"return product_id={product_id}", _op)


def record_sale(
    *,
    product_id: int,
    quantity,
    reference_no: str | None = None,
    notes: str | None = None,
) -> StockLedgerEntry:
    """Standalone sale movement (counter sale without an invoice)."""
    qty = _positive_quantity(quantity)

    def _op():
        entry = ledger_service.append_if_sufficient_stock(
            product_id=product_id,
            transaction_type=ledger_service.TX_SALE,
            quantity_delta=-qty,
            reference_no=reference_no,
            notes=notes,
        )
        db.session.commit()
        return entry

    return retry_stock_write(f"sale product_id={product_id}", _op)


def get_inventory_summary(*, product_id: int) -> dict:
    """Cached vs replayed stock for one product, plus the last few movements."""
    check = balance_service.check_product(product_id)
    recent = (
        db.session.query(StockLedgerEntry)
        .filter(StockLedgerEntry.product_id == product_id)
        .order_by(StockLedgerEntry.created_at.desc(), StockLedgerEntry.id.desc())
        .limit(5)
        .all()
    )
    data = check.to_dict()
    data["recent_entries"] = [e.to_dict() for e in recent]
    return data
