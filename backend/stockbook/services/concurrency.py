# Overview: Guards for the stock check-then-append window.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)

# Lock waits/deadlocks, and a Product.version_id that moved under us
RETRYABLE_STOCK_ERRORS = (OperationalError, StaleDataError)


def locked_product_query(query):
    """
    Read Product rows fresh and hold them until commit.

    SQLite has no FOR UPDATE; there two writers both get through the read
    and the loser fails on the version_id bump instead.
    """
    return query.with_for_update().populate_existing()


def retry_stock_write(label: str, write, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run write() and retry it after a rollback when another writer got to
    the same product first.

    write must redo its own reads: the stock it checked last time is gone
    after the rollback.
    """
    attempt = 1
    while True:
        try:
            return write()
        except RETRYABLE_STOCK_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts:
                logger.error("%s gave up after %d attempts: %s", label, attempt, exc)
                raise
            delay = backoff_base * (2 ** (attempt - 1))
            logger.warning("%s lost a stock race (%s), retry %d in %.2fs", label, type(exc).__name__, attempt, delay)
            time.sleep(delay)
            attempt += 1
