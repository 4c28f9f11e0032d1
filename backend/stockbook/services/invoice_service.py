"""
Invoice Service - create / edit / delete invoices with their stock movements

WHY: An invoice touches three things that must stay in step: the invoice
header, its item rows, and the stock ledger (and through it, each product's
current_stock). Every call here is one pass through a fixed list of steps,
tracked on an InvoiceOperation row so an interrupted pass can be reconciled.

Create: validate -> allocate_number -> compute_tax -> persist_invoice ->
        persist_items -> append_sale_entries -> (notify, after commit)
Edit:   validate -> compute_tax -> update_header -> replace_items ->
        append_adjustments
Delete: validate -> delete_invoice -> append_restorations

INVOICE_WORKFLOW_MODE:
- "atomic": one transaction for the whole pass. A failure rolls it all back,
  writes a "failed" InvoiceOperation row and re-raises the original error.
- "stepwise": every step commits. A failure after a data-writing step raises
  PartialWriteError naming the completed steps; nothing is undone.

Custom lines (no product_id) never touch stock.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import (
    AllocationDegradedError,
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    NotificationError,
    PartialWriteError,
    ValidationError,
)
from ..extensions import db
from ..formatting import format_quantity
from ..models import Customer, Invoice, InvoiceItem, InvoiceOperation, StockLedgerEntry
from ..money_utils import MAX_MONEY, MAX_QUANTITY, ZERO, check_limit, quantize_money, quantize_quantity, to_decimal
from ..time_utils import parse_iso_date, today
from . import invoice_number_service, ledger_service, notification_service, tax_service
from .invoice_number_service import AllocatedNumber

logger = logging.getLogger(__name__)

WORKFLOW_ATOMIC = "atomic"
WORKFLOW_STEPWISE = "stepwise"

# Steps after which a stepwise failure leaves data needing reconciliation
DATA_STEPS = {
    "persist_invoice",
    "persist_items",
    "append_sale_entries",
    "update_header",
    "replace_items",
    "append_adjustments",
    "delete_invoice",
    "append_restorations",
}

PARTY_FIELDS = ("customer_id", "guest_name", "guest_email", "guest_phone", "guest_address", "guest_gstin")
GUEST_FIELDS = PARTY_FIELDS[1:]


@dataclass
class InvoiceResult:
    invoice: Invoice | None
    items: list[InvoiceItem]
    ledger_entries: list[StockLedgerEntry]
    warnings: list[dict] = field(default_factory=list)
    allocation: AllocatedNumber | None = None
    # Snapshot of a deleted invoice (the row itself is gone)
    deleted: dict | None = None

    def to_dict(self) -> dict:
        if self.invoice is not None:
            invoice = self.invoice.to_dict(include_items=True)
        else:
            invoice = self.deleted
        return {
            "invoice": invoice,
            "ledger_entries": [e.to_dict() for e in self.ledger_entries],
            "warnings": self.warnings,
            "allocation": self.allocation.to_dict() if self.allocation else None,
        }


@dataclass(frozen=True)
class _Line:
    product_id: int | None
    description: str | None
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal


class _Workflow:
    """Step bookkeeping for one invoice operation."""

    def __init__(self, operation: str):
        mode = current_app.config.get("INVOICE_WORKFLOW_MODE", WORKFLOW_ATOMIC)
        if mode not in (WORKFLOW_ATOMIC, WORKFLOW_STEPWISE):
            raise ValueError(f"Unknown INVOICE_WORKFLOW_MODE: {mode!r}")
        self.operation = operation
        self.mode = mode
        self.record: InvoiceOperation | None = None
        self.steps: list[str] = []
        self.current_step: str | None = None
        self.invoice_id: int | None = None
        self.invoice_number: str | None = None

    def step(self, name: str) -> None:
        self.current_step = name

    def begin(self) -> None:
        """Write the intent record. Called once validation has passed."""
        self.steps.append(self.current_step)
        self.record = InvoiceOperation(
            operation=self.operation,
            invoice_id=self.invoice_id,
            invoice_number=self.invoice_number,
            status="started",
            completed_steps=",".join(self.steps),
        )
        db.session.add(self.record)
        self._checkpoint()

    def bind(self, *, invoice_id: int | None = None, invoice_number: str | None = None) -> None:
        if invoice_id is not None:
            self.invoice_id = invoice_id
        if invoice_number is not None:
            self.invoice_number = invoice_number
        if self.record is not None:
            self.record.invoice_id = self.invoice_id
            self.record.invoice_number = self.invoice_number

    def done(self) -> None:
        self.steps.append(self.current_step)
        self.record.completed_steps = ",".join(self.steps)
        self._checkpoint()

    def finish(self) -> None:
        self.record.status = "completed"
        self.current_step = None
        db.session.commit()

    def _checkpoint(self) -> None:
        if self.mode == WORKFLOW_STEPWISE:
            db.session.commit()
        else:
            db.session.flush()

    @property
    def wrote_data(self) -> bool:
        return any(s in DATA_STEPS for s in self.steps)

    def fail(self, exc: Exception):
        """Roll back the open step, record the failure, raise."""
        db.session.rollback()

        if self.record is None:
            # Failed before the intent record: nothing was written
            raise exc

        if self.mode == WORKFLOW_STEPWISE:
            record = self.record
        else:
            # The atomic rollback discarded the intent record along with everything else
            record = InvoiceOperation(operation=self.operation)
            db.session.add(record)

        record.invoice_id = self.invoice_id
        record.invoice_number = self.invoice_number
        record.status = "failed"
        record.completed_steps = ",".join(self.steps)
        record.failed_step = self.current_step
        record.error = f"{type(exc).__name__}: {exc}"
        db.session.commit()

        if self.mode == WORKFLOW_STEPWISE and self.wrote_data:
            logger.error(
                "Invoice %s for %s stopped at %s after %s",
                self.operation, self.invoice_number, self.current_step, self.steps,
            )
            raise PartialWriteError(
                operation=self.operation,
                invoice_number=self.invoice_number,
                completed_steps=self.steps,
                failed_step=self.current_step,
                cause=exc,
                operation_id=record.id,
            ) from exc

        logger.info(
            "Invoice %s for %s failed at %s and was rolled back: %s",
            self.operation, self.invoice_number, self.current_step, exc,
        )
        raise exc


# ---------------------------------------------------------------------------
# Input normalization
# ---------------------------------------------------------------------------

def _clean_str(value) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _normalize_lines(raw_items, captured: dict[int, tuple[Decimal, Decimal]] | None = None) -> list[_Line]:
    """
    captured maps product_id -> (unit_price, tax_rate) already on the invoice.
    Lines that omit price or rate keep those values; products new to the
    invoice fall back to the product's current list price and rate.
    """
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list")
    captured = captured or {}

    lines = []
    for idx, raw in enumerate(raw_items):
        label = f"items[{idx}]"
        if not isinstance(raw, dict):
            raise ValidationError(f"{label} must be an object")

        product = None
        product_id = raw.get("product_id")
        if product_id is not None:
            if isinstance(product_id, bool) or not isinstance(product_id, int):
                raise ValidationError(f"{label}.product_id must be an integer")
            product = ledger_service.get_product(product_id)
            if product is None:
                raise ValidationError(f"Product {product_id} does not exist", details={"index": idx})

        description = _clean_str(raw.get("description"))
        if product is None and description is None:
            raise ValidationError(f"{label} needs a product_id or a description")

        quantity = quantize_quantity(to_decimal(raw.get("quantity"), f"{label}.quantity"), f"{label}.quantity")
        if quantity <= 0:
            raise ValidationError(f"{label}.quantity must be > 0")
        check_limit(quantity, MAX_QUANTITY, f"{label}.quantity")

        default_price, default_rate = None, ZERO
        if product is not None:
            default_price, default_rate = captured.get(product_id, (product.unit_price, product.tax_rate))

        raw_price = raw.get("unit_price")
        if raw_price is None:
            raw_price = default_price
        unit_price = quantize_money(to_decimal(raw_price, f"{label}.unit_price"), f"{label}.unit_price")
        if unit_price <= 0:
            raise ValidationError(f"{label}.unit_price must be > 0")
        check_limit(unit_price, MAX_MONEY, f"{label}.unit_price")
        check_limit(quantity * unit_price, MAX_MONEY, f"{label} line total")

        raw_rate = raw.get("tax_rate")
        if raw_rate is None:
            raw_rate = default_rate
        tax_rate = quantize_money(to_decimal(raw_rate, f"{label}.tax_rate"), f"{label}.tax_rate")
        if tax_rate < 0 or tax_rate > 100:
            raise ValidationError(f"{label}.tax_rate must be between 0 and 100")

        lines.append(_Line(
            product_id=product_id,
            description=description,
            quantity=quantity,
            unit_price=unit_price,
            tax_rate=tax_rate,
        ))
    return lines


def _normalize_party(values: dict) -> dict:
    """customer_id XOR guest_name; the other side is cleared."""
    customer_id = values.get("customer_id")
    guest_name = _clean_str(values.get("guest_name"))

    if customer_id is not None and guest_name is not None:
        raise ValidationError("Provide either customer_id or guest_name, not both")
    if customer_id is None and guest_name is None:
        raise ValidationError("customer_id or guest_name is required")

    if customer_id is not None:
        if isinstance(customer_id, bool) or not isinstance(customer_id, int):
            raise ValidationError("customer_id must be an integer")
        if db.session.get(Customer, customer_id) is None:
            raise ValidationError(f"Customer {customer_id} does not exist")
        party = {f: None for f in GUEST_FIELDS}
        party["customer_id"] = customer_id
        return party

    party = {f: _clean_str(values.get(f)) for f in GUEST_FIELDS}
    party["customer_id"] = None
    return party


def _normalize_date(value):
    try:
        parsed = parse_iso_date(value)
    except (TypeError, ValueError):
        raise ValidationError("invoice_date must be an ISO date (YYYY-MM-DD)")
    return parsed or today()


def _aggregate(pairs) -> dict[int, Decimal]:
    """Sum quantities per product_id, skipping custom lines."""
    totals: dict[int, Decimal] = {}
    for product_id, quantity in pairs:
        if product_id is None:
            continue
        totals[product_id] = totals.get(product_id, ZERO) + quantize_quantity(quantity)
    return totals


def _check_availability(requested: dict[int, Decimal], heading: str = "Insufficient stock") -> None:
    """Raise one InsufficientStockError listing every product that is short."""
    shortages = []
    for product_id in sorted(requested):
        qty = requested[product_id]
        if qty <= 0:
            continue
        product = ledger_service.get_product(product_id, lock=True)
        available = quantize_quantity(product.current_stock)
        if qty > available:
            shortages.append({
                "product_id": product.id,
                "product_name": product.name,
                "requested": qty,
                "available": available,
            })
    if shortages:
        raise InsufficientStockError(shortages, heading=heading)


def _compute_taxes(lines: list[_Line]) -> list[tax_service.LineTax]:
    return [
        tax_service.compute_line(line.unit_price, line.tax_rate, line.quantity).rounded()
        for line in lines
    ]


def _build_items(lines: list[_Line], taxes: list[tax_service.LineTax]) -> list[InvoiceItem]:
    return [
        InvoiceItem(
            product_id=line.product_id,
            description=line.description,
            quantity=line.quantity,
            unit_price=line.unit_price,
            tax_rate=line.tax_rate,
            taxable_value=tax.taxable_value,
            tax_amount=tax.tax_amount,
            line_total=tax.line_total,
        )
        for line, tax in zip(lines, taxes)
    ]


def _apply_totals(invoice: Invoice, totals: tax_service.InvoiceTotals) -> None:
    invoice.subtotal = totals.subtotal
    invoice.tax_amount = totals.tax_amount
    invoice.total_amount = totals.total_amount


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------

def get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found", details={"invoice_id": invoice_id})
    return invoice


def list_invoices(*, customer_id: int | None = None, limit: int = 50, offset: int = 0) -> list[Invoice]:
    q = db.session.query(Invoice)
    if customer_id is not None:
        q = q.filter(Invoice.customer_id == customer_id)
    limit = max(1, min(limit, 200))
    return (
        q.order_by(Invoice.created_at.desc(), Invoice.id.desc())
        .offset(max(0, offset))
        .limit(limit)
        .all()
    )


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

def create_invoice(*, patch: dict, notify: bool = True) -> InvoiceResult:
    """
    Create an invoice, its items and one sale entry per product line.

    patch keys: customer_id | guest_name (+ guest_email, guest_phone,
    guest_address, guest_gstin), invoice_date, notes, items[] with
    product_id | description, quantity, unit_price, tax_rate.
    """
    wf = _Workflow("create")
    warnings: list[dict] = []

    try:
        wf.step("validate")
        party = _normalize_party(patch)
        invoice_date = _normalize_date(patch.get("invoice_date"))
        lines = _normalize_lines(patch.get("items"))
        _check_availability(_aggregate((l.product_id, l.quantity) for l in lines))
        wf.begin()

        wf.step("allocate_number")
        allocation = invoice_number_service.allocate_invoice_number()
        wf.bind(invoice_number=allocation.number)
        if allocation.degraded:
            degraded = AllocationDegradedError(
                allocation.number, allocation.source.value, list(allocation.errors)
            )
            logger.warning("%s", degraded)
            warnings.append(degraded.to_dict())
        wf.done()

        wf.step("compute_tax")
        taxes = _compute_taxes(lines)
        totals = tax_service.compute_totals(taxes)
        wf.done()

        wf.step("persist_invoice")
        invoice = Invoice(
            invoice_number=allocation.number,
            number_source=allocation.source.value,
            invoice_date=invoice_date,
            notes=_clean_str(patch.get("notes")),
            **party,
        )
        _apply_totals(invoice, totals)
        db.session.add(invoice)
        try:
            db.session.flush()
        except IntegrityError:
            raise ConflictError(
                f"Invoice number {allocation.number} already exists",
                details={"invoice_number": allocation.number},
            )
        wf.bind(invoice_id=invoice.id)
        wf.done()

        wf.step("persist_items")
        items = _build_items(lines, taxes)
        invoice.items = items
        db.session.flush()
        wf.done()

        wf.step("append_sale_entries")
        entries = []
        for item in items:
            if item.product_id is None:
                continue
            entries.append(ledger_service.append_if_sufficient_stock(
                product_id=item.product_id,
                transaction_type=ledger_service.TX_SALE,
                quantity_delta=-item.quantity,
                reference_no=invoice.invoice_number,
                notes=f"Sale from invoice {invoice.invoice_number}",
            ))
        wf.done()

        wf.finish()
    except Exception as exc:
        wf.fail(exc)

    logger.info(
        "Invoice %s created (%d items, %d ledger entries, total %s)",
        invoice.invoice_number, len(items), len(entries), invoice.total_amount,
    )

    if notify:
        try:
            notification_service.notify_invoice_created(invoice)
        except NotificationError as exc:
            logger.warning("Invoice %s notification failed: %s", invoice.invoice_number, exc)
            warnings.append(exc.to_dict())

    return InvoiceResult(
        invoice=invoice,
        items=items,
        ledger_entries=entries,
        warnings=warnings,
        allocation=allocation,
    )


# ---------------------------------------------------------------------------
# Edit
# ---------------------------------------------------------------------------

def _plan_adjustments(old: dict[int, Decimal], new: dict[int, Decimal]) -> list[tuple[int, Decimal, str]]:
    """
    (product_id, stock delta, note) for every product whose invoiced
    quantity changed. Sorted by product_id.
    """
    plan = []
    for product_id in sorted(set(old) | set(new)):
        before = old.get(product_id)
        after = new.get(product_id)
        if before is not None and after is not None:
            diff = after - before
            if diff != 0:
                plan.append((product_id, -diff, f"Invoice edit adjustment: {format_quantity(before)} → {format_quantity(after)}"))
        elif after is not None:
            plan.append((product_id, -after, f"New product added to invoice: {format_quantity(after)} units"))
        else:
            plan.append((product_id, before, f"Product removed from invoice: returning {format_quantity(before)} units"))
    return plan


def update_invoice(*, invoice_id: int, patch: dict) -> InvoiceResult:
    """
    Edit an invoice header and, when patch carries "items", replace the whole
    item set. Stock moves by the per-product difference only; a resubmitted
    identical item set writes no ledger entries.
    """
    wf = _Workflow("update")

    try:
        wf.step("validate")
        invoice = get_invoice(invoice_id)
        wf.bind(invoice_id=invoice.id, invoice_number=invoice.invoice_number)

        party = None
        if any(f in patch for f in PARTY_FIELDS):
            merged = {f: getattr(invoice, f) for f in PARTY_FIELDS}
            merged.update({f: patch[f] for f in PARTY_FIELDS if f in patch})
            if patch.get("customer_id") is not None:
                for f in GUEST_FIELDS:
                    merged[f] = None
            elif _clean_str(patch.get("guest_name")):
                merged["customer_id"] = None
            party = _normalize_party(merged)

        invoice_date = _normalize_date(patch["invoice_date"]) if "invoice_date" in patch else None

        replace_items = "items" in patch
        plan = []
        if replace_items:
            captured = {}
            for item in invoice.items:
                if item.product_id is not None:
                    captured.setdefault(item.product_id, (item.unit_price, item.tax_rate))
            lines = _normalize_lines(patch["items"], captured)
            old = _aggregate((i.product_id, i.quantity) for i in invoice.items)
            new = _aggregate((l.product_id, l.quantity) for l in lines)
            plan = _plan_adjustments(old, new)
            increases = {pid: -delta for pid, delta, _ in plan if delta < 0}
            _check_availability(increases, heading="Insufficient stock for increases")
        wf.begin()

        if replace_items:
            wf.step("compute_tax")
            taxes = _compute_taxes(lines)
            totals = tax_service.compute_totals(taxes)
            wf.done()

        wf.step("update_header")
        if party is not None:
            for key, value in party.items():
                setattr(invoice, key, value)
        if invoice_date is not None:
            invoice.invoice_date = invoice_date
        if "notes" in patch:
            invoice.notes = _clean_str(patch.get("notes"))
        db.session.flush()
        wf.done()

        entries = []
        if replace_items:
            wf.step("replace_items")
            invoice.items = _build_items(lines, taxes)
            _apply_totals(invoice, totals)
            db.session.flush()
            wf.done()

            wf.step("append_adjustments")
            for product_id, delta, note in plan:
                writer = ledger_service.append_if_sufficient_stock if delta < 0 else ledger_service.append
                entries.append(writer(
                    product_id=product_id,
                    transaction_type=ledger_service.TX_ADJUSTMENT,
                    quantity_delta=delta,
                    reference_no=invoice.invoice_number,
                    notes=note,
                ))
            wf.done()

        wf.finish()
    except Exception as exc:
        wf.fail(exc)

    logger.info(
        "Invoice %s updated (%d ledger adjustments)", invoice.invoice_number, len(entries),
    )
    return InvoiceResult(invoice=invoice, items=list(invoice.items), ledger_entries=entries)


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------

def delete_invoice(*, invoice_id: int) -> InvoiceResult:
    """Delete an invoice and return every product line's quantity to stock."""
    wf = _Workflow("delete")

    try:
        wf.step("validate")
        invoice = get_invoice(invoice_id)
        number = invoice.invoice_number
        wf.bind(invoice_id=invoice.id, invoice_number=number)
        snapshot = invoice.to_dict(include_items=True)
        restorations = [
            (item.product_id, quantize_quantity(item.quantity))
            for item in invoice.items
            if item.product_id is not None
        ]
        wf.begin()

        wf.step("delete_invoice")
        db.session.delete(invoice)
        db.session.flush()
        wf.done()

        wf.step("append_restorations")
        entries = [
            ledger_service.append(
                product_id=product_id,
                transaction_type=ledger_service.TX_ADJUSTMENT,
                quantity_delta=quantity,
                reference_no=number,
                notes=f"Stock restored from deleted invoice {number}",
            )
            for product_id, quantity in restorations
        ]
        wf.done()

        wf.finish()
    except Exception as exc:
        wf.fail(exc)

    logger.info("Invoice %s deleted (%d restorations)", number, len(entries))
    return InvoiceResult(invoice=None, items=[], ledger_entries=entries, deleted=snapshot)


def list_operations(*, status: str | None = None, limit: int = 50) -> list[InvoiceOperation]:
    """Intent records, newest first. status="failed" lists what needs reconciling."""
    q = db.session.query(InvoiceOperation)
    if status:
        q = q.filter(InvoiceOperation.status == status)
    return q.order_by(InvoiceOperation.id.desc()).limit(max(1, limit)).all()
