# Overview: Invoice number allocation with three degrading tiers.

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Invoice, InvoiceSequence
"""
Invoice numbers look like PREFIX-NNNN (zero-padded to at least INVOICE_NUMBER_PAD).

Tiers, first success wins:
1. SEQUENCE  - atomic increment of the invoice_sequences row for the prefix,
               inside a savepoint. Seeded from the latest invoice on first use.
2. SCANNED   - read the most recently created invoice, parse its number,
               add one.
3. TIMESTAMP - PREFIX + the last PAD digits of the millisecond clock,
               bumped past numbers already taken when the table is readable.
               Not monotonic; flagged for review.

No lock is held across tiers. A failing tier degrades to the next one
instead of blocking invoice creation.
"""

logger = logging.getLogger(__name__)


class NumberSource(str, Enum):
    SEQUENCE = "sequence"
    SCANNED = "scanned"
    TIMESTAMP = "timestamp"


class InvoiceNumberError(Exception):
    """A single allocation tier could not produce a number."""


@dataclass(frozen=True)
class AllocatedNumber:
    number: str
    source: NumberSource
    errors: tuple[str, ...] = field(default=())

    @property
    def degraded(self) -> bool:
        return self.source is not NumberSource.SEQUENCE

    def to_dict(self) -> dict:
        return {
            "invoice_number": self.number,
            "source": self.source.value,
            "degraded": self.degraded,
            "errors": list(self.errors),
        }


def _settings(prefix: str | None, pad: int | None) -> tuple[str, int]:
    if prefix is None:
        prefix = current_app.config.get("INVOICE_PREFIX", "INV")
    if pad is None:
        pad = int(current_app.config.get("INVOICE_NUMBER_PAD", 4))
    return prefix, pad


def format_invoice_number(prefix: str, number: int, pad: int = 4) -> str:
    return f"{prefix}-{number:0{pad}d}"


def parse_invoice_number(value: str | None, prefix: str) -> int | None:
    """Numeric suffix of PREFIX-<digits>, or None if value is not in that shape."""
    if not value:
        return None
    match = re.match(rf"^{re.escape(prefix)}-(\d+)", value)
    return int(match.group(1)) if match else None


def _number_taken(number: str) -> bool:
    return db.session.query(Invoice.id).filter(Invoice.invoice_number == number).first() is not None


def _first_free(prefix: str, candidate: int, pad: int) -> int:
    while _number_taken(format_invoice_number(prefix, candidate, pad)):
        candidate += 1
    return candidate


def _latest_number(prefix: str) -> int | None:
    row = (
        db.session.query(Invoice.invoice_number)
        .order_by(Invoice.created_at.desc(), Invoice.id.desc())
        .first()
    )
    return parse_invoice_number(row[0], prefix) if row else None


def _allocate_from_sequence(prefix: str, pad: int) -> str:
    if not current_app.config.get("INVOICE_SEQUENCE_ENABLED", True):
        raise InvoiceNumberError("invoice sequence is disabled")

    stmt = (
        update(InvoiceSequence)
        .where(InvoiceSequence.prefix == prefix)
        .values(next_number=InvoiceSequence.next_number + 1)
    )

    with db.session.begin_nested():
        result = db.session.execute(stmt)
        if result.rowcount:
            current = (
                db.session.query(InvoiceSequence.next_number)
                .filter_by(prefix=prefix)
                .scalar()
            )
            candidate = current - 1
        else:
            # First use: continue from whatever the invoices table already holds
            candidate = (_latest_number(prefix) or 0) + 1
            db.session.add(InvoiceSequence(prefix=prefix, next_number=candidate + 1))
            db.session.flush()

        # Numbers issued by a fallback tier may sit ahead of the counter
        free = _first_free(prefix, candidate, pad)
        if free != candidate:
            db.session.execute(
                update(InvoiceSequence)
                .where(InvoiceSequence.prefix == prefix)
                .values(next_number=free + 1)
            )
            logger.info("Invoice sequence %s skipped %d taken numbers", prefix, free - candidate)

    return format_invoice_number(prefix, free, pad)


def _allocate_from_latest_invoice(prefix: str, pad: int) -> str:
    # Savepoint: a failed read must leave the outer transaction usable
    with db.session.begin_nested():
        candidate = _first_free(prefix, (_latest_number(prefix) or 0) + 1, pad)
    return format_invoice_number(prefix, candidate, pad)


def _allocate_from_timestamp(prefix: str, pad: int, clock=None) -> str:
    clock = clock or time.time
    base = int(str(int(clock() * 1000))[-pad:])
    try:
        with db.session.begin_nested():
            candidate = _first_free(prefix, base, pad)
    except SQLAlchemyError as exc:
        logger.warning("Cannot check timestamp number against invoices: %s", exc)
        candidate = base
    return format_invoice_number(prefix, candidate, pad)


def allocate_invoice_number(prefix: str | None = None, pad: int | None = None) -> AllocatedNumber:
    """
    Produce the next invoice number, tagged with the tier that produced it.

    Never raises for backing-store failures; the timestamp tier always answers.
    The caller owns the surrounding transaction: a tier-1 increment rolls back
    with it.
    """
    prefix, pad = _settings(prefix, pad)
    errors: list[str] = []

    try:
        number = _allocate_from_sequence(prefix, pad)
        logger.debug("Allocated %s from sequence", number)
        return AllocatedNumber(number=number, source=NumberSource.SEQUENCE)
    except (SQLAlchemyError, InvoiceNumberError) as exc:
        errors.append(f"sequence: {exc}")
        logger.warning("Invoice sequence unavailable, scanning latest invoice: %s", exc)

    try:
        number = _allocate_from_latest_invoice(prefix, pad)
        return AllocatedNumber(number=number, source=NumberSource.SCANNED, errors=tuple(errors))
    except SQLAlchemyError as exc:
        errors.append(f"scan: {exc}")
        logger.warning("Latest-invoice scan failed, using timestamp number: %s", exc)

    number = _allocate_from_timestamp(prefix, pad)
    return AllocatedNumber(number=number, source=NumberSource.TIMESTAMP, errors=tuple(errors))


def preview_invoice_number(prefix: str | None = None, pad: int | None = None) -> AllocatedNumber:
    """What the next allocation would most likely return. Writes nothing."""
    prefix, pad = _settings(prefix, pad)
    source = NumberSource.SCANNED
    candidate = (_latest_number(prefix) or 0) + 1
    if current_app.config.get("INVOICE_SEQUENCE_ENABLED", True):
        source = NumberSource.SEQUENCE
        seq = db.session.query(InvoiceSequence).filter_by(prefix=prefix).first()
        if seq is not None:
            candidate = seq.next_number
    candidate = _first_free(prefix, candidate, pad)
    return AllocatedNumber(number=format_invoice_number(prefix, candidate, pad), source=source)


def reset_sequence(prefix: str | None = None) -> InvoiceSequence | None:
    """Re-seed the tier-1 counter from the latest invoice (after fallbacks or imports)."""
    prefix, _ = _settings(prefix, None)
    seq = db.session.query(InvoiceSequence).filter_by(prefix=prefix).first()
    next_number = (_latest_number(prefix) or 0) + 1
    if seq is None:
        seq = InvoiceSequence(prefix=prefix, next_number=next_number)
        db.session.add(seq)
    else:
        seq.next_number = max(seq.next_number, next_number)
    db.session.commit()
    return seq
