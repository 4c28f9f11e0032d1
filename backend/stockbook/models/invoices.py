from __future__ import annotations

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z, utcnow


class Invoice(db.Model):
    """
    Invoice header.

    Totals are sums of the per-line values stored on invoice_items; they are
    recomputed whenever the item set is replaced.

    number_source records which allocator tier produced invoice_number
    ("sequence", "scanned", "timestamp") so fallback numbers can be reviewed.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.Index("ix_invoices_created", "created_at", "id"),
        db.Index("ix_invoices_customer_date", "customer_id", "invoice_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable, unique (e.g. "INV-0042")
    invoice_number = db.Column(db.String(64), nullable=False, unique=True)
    number_source = db.Column(db.String(16), nullable=False, default="sequence")

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    # Walk-in customer identity (mutually exclusive with customer_id)
    guest_name = db.Column(db.String(255), nullable=True)
    guest_email = db.Column(db.String(255), nullable=True)
    guest_phone = db.Column(db.String(32), nullable=True)
    guest_address = db.Column(db.Text, nullable=True)
    guest_gstin = db.Column(db.String(15), nullable=True)

    invoice_date = db.Column(db.Date, nullable=False)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    customer = db.relationship("Customer", backref=db.backref("invoices", lazy="dynamic"))
    items = db.relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.id",
    )

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.invoice_number!r} total={self.total_amount}>"

    @property
    def party_name(self) -> str | None:
        if self.customer is not None:
            return self.customer.name
        return self.guest_name

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "number_source": self.number_source,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "guest_name": self.guest_name,
            "guest_email": self.guest_email,
            "guest_phone": self.guest_phone,
            "guest_address": self.guest_address,
            "guest_gstin": self.guest_gstin,
            "invoice_date": to_iso_date(self.invoice_date),
            "subtotal": self.subtotal,
            "tax_amount": self.tax_amount,
            "total_amount": self.total_amount,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class InvoiceItem(db.Model):
    """
    One invoice line. product_id is NULL for custom lines, which never touch
    stock. unit_price and tax_rate are snapshots taken at invoice time.
    """
    __tablename__ = "invoice_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(
        db.Integer,
        db.ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)
    description = db.Column(db.String(255), nullable=True)

    quantity = db.Column(db.Numeric(14, 3), nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    tax_rate = db.Column(db.Numeric(5, 2), nullable=False, default=0)

    taxable_value = db.Column(db.Numeric(12, 2), nullable=False)
    tax_amount = db.Column(db.Numeric(12, 2), nullable=False)
    line_total = db.Column(db.Numeric(12, 2), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    invoice = db.relationship("Invoice", back_populates="items")
    product = db.relationship("Product")

    @property
    def display_name(self) -> str:
        if self.product is not None:
            return self.product.name
        return self.description or "Custom item"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "product_id": self.product_id,
            "description": self.description,
            "name": self.display_name,
            "sku": self.product.sku if self.product else None,
            "unit": self.product.unit if self.product else None,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "tax_rate": self.tax_rate,
            "taxable_value": self.taxable_value,
            "tax_amount": self.tax_amount,
            "line_total": self.line_total,
            "created_at": to_utc_z(self.created_at),
        }


class InvoiceSequence(db.Model):
    """
    Counter row behind tier 1 of the invoice number allocator.

    next_number is the number the NEXT allocation will hand out.
    """
    __tablename__ = "invoice_sequences"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    prefix = db.Column(db.String(16), nullable=False, unique=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "prefix": self.prefix,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }


class InvoiceOperation(db.Model):
    """
    Intent record for one create/update/delete pass.

    completed_steps grows as each workflow step lands, so a row left in
    status "started" or "failed" tells an operator exactly what to finish
    or undo. invoice_id is a plain column: the invoice may be gone.
    """
    __tablename__ = "invoice_operations"
    __table_args__ = (
        db.Index("ix_invoice_operations_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    operation = db.Column(db.String(16), nullable=False)
    invoice_id = db.Column(db.Integer, nullable=True)
    invoice_number = db.Column(db.String(64), nullable=True, index=True)
    status = db.Column(db.String(16), nullable=False, default="started")
    completed_steps = db.Column(db.Text, nullable=False, default="")
    failed_step = db.Column(db.String(32), nullable=True)
    error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def steps(self) -> list[str]:
        return [s for s in (self.completed_steps or "").split(",") if s]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "operation": self.operation,
            "invoice_id": self.invoice_id,
            "invoice_number": self.invoice_number,
            "status": self.status,
            "completed_steps": self.steps,
            "failed_step": self.failed_step,
            "error": self.error,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
