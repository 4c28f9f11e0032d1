# Overview: Stock balance projections from the ledger (running balances, replay, drift checks).

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from sqlalchemy import func

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Product, StockLedgerEntry
from ..money_utils import ZERO, quantize_quantity
from . import ledger_service

logger = logging.getLogger(__name__)

MODE_CACHED = "cached"
MODE_REPLAY = "replay"


@dataclass(frozen=True)
class BalancePoint:
    """One ledger entry with the stock before and after it."""
    entry: StockLedgerEntry
    opening: Decimal
    closing: Decimal

    def to_dict(self) -> dict:
        data = self.entry.to_dict()
        data["opening_stock"] = self.opening
        data["closing_stock"] = self.closing
        return data


@dataclass(frozen=True)
class BalanceCheck:
    product_id: int
    sku: str
    name: str
    cached: Decimal
    replayed: Decimal

    @property
    def drift(self) -> Decimal:
        return self.cached - self.replayed

    @property
    def ok(self) -> bool:
        return self.drift == 0

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "sku": self.sku,
            "name": self.name,
            "cached_stock": self.cached,
            "replayed_stock": self.replayed,
            "drift": self.drift,
            "ok": self.ok,
        }


def running_balances(
    entries: Iterable[StockLedgerEntry],
    opening_balance: Decimal = ZERO,
) -> list[BalancePoint]:
    """
    balance[i] = balance[i-1] + entries[i].quantity_delta

    entries must already be in creation order (ledger_service.list_for_product).
    """
    points = []
    balance = quantize_quantity(opening_balance)
    for entry in entries:
        opening = balance
        balance = opening + quantize_quantity(entry.quantity_delta)
        points.append(BalancePoint(entry=entry, opening=opening, closing=balance))
    return points


def _require_product(product_id: int) -> Product:
    product = db.session.query(Product).filter_by(id=product_id).first()
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def _ledger_sum(product_id: int) -> Decimal:
    total = (
        db.session.query(func.coalesce(func.sum(StockLedgerEntry.quantity_delta), 0))
        .filter(StockLedgerEntry.product_id == product_id)
        .scalar()
    )
    return quantize_quantity(total)


def replay_balance(product_id: int) -> Decimal:
    """opening_stock + SUM(quantity_delta), straight from the ledger."""
    product = _require_product(product_id)
    return quantize_quantity(product.opening_stock) + _ledger_sum(product_id)


def current_balance(product_id: int, *, mode: str = MODE_CACHED) -> Decimal:
    """
    Current stock, either from the cached counter or by full replay.
    The two must agree; check_product() reports when they do not.
    """
    if mode == MODE_REPLAY:
        return replay_balance(product_id)
    if mode != MODE_CACHED:
        raise ValidationError(f"mode must be '{MODE_CACHED}' or '{MODE_REPLAY}'")
    return quantize_quantity(_require_product(product_id).current_stock)


def product_register(product_id: int) -> list[BalancePoint]:
    """Stock register: every movement with opening/closing stock."""
    product = _require_product(product_id)
    entries = ledger_service.list_for_product(product_id)
    return running_balances(entries, opening_balance=product.opening_stock)


def _check(product: Product) -> BalanceCheck:
    return BalanceCheck(
        product_id=product.id,
        sku=product.sku,
        name=product.name,
        cached=quantize_quantity(product.current_stock),
        replayed=quantize_quantity(product.opening_stock) + _ledger_sum(product.id),
    )


def check_product(product_id: int) -> BalanceCheck:
    return _check(_require_product(product_id))


def find_drift() -> list[BalanceCheck]:
    """Every product whose cached counter disagrees with its ledger."""
    drifted = []
    for product in db.session.query(Product).order_by(Product.id.asc()).all():
        check = _check(product)
        if not check.ok:
            logger.warning(
                "Stock drift for %s (id=%s): cached=%s replayed=%s",
                product.sku, product.id, check.cached, check.replayed,
            )
            drifted.append(check)
    return drifted


def rebuild_cached_balance(product_id: int) -> BalanceCheck:
    """
    Reset current_stock to the replayed value. Manual correction path only;
    returns the check as it was BEFORE the reset.
    """
    product = _require_product(product_id)
    before = _check(product)
    if not before.ok:
        product.current_stock = before.replayed
        logger.warning(
            "Rebuilt cached stock for %s (id=%s): %s -> %s",
            product.sku, product.id, before.cached, before.replayed,
        )
    db.session.commit()
    return before
