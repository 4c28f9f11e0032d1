from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class StockLedgerEntry(db.Model):
    """
    One immutable stock movement.

    Append-only: rows are never updated or deleted. Sign convention:
    purchase/return > 0, sale < 0, adjustment either sign.
    """
    __tablename__ = "stock_ledger"
    __table_args__ = (
        db.Index("ix_stock_ledger_product_created", "product_id", "created_at", "id"),
        db.Index("ix_stock_ledger_type_created", "transaction_type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False)

    quantity_delta = db.Column(db.Numeric(14, 3), nullable=False)

    unit_cost = db.Column(db.Numeric(12, 2), nullable=True)

    # Invoice number for sale/adjustment rows written by invoice workflows
    reference_no = db.Column(db.String(64), nullable=True, index=True)

    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    product = db.relationship("Product", backref=db.backref("ledger_entries", lazy="dynamic"))

    def __repr__(self) -> str:
        return (
            f"<StockLedgerEntry id={self.id} product_id={self.product_id} "
            f"type={self.transaction_type} delta={self.quantity_delta}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "transaction_type": self.transaction_type,
            "quantity_delta": self.quantity_delta,
            "unit_cost": self.unit_cost,
            "reference_no": self.reference_no,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
