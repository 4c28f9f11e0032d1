# Overview: Error taxonomy shared by services and routes.

"""
Every domain error carries a human-readable message plus a ``details`` dict
so routes can return ``{"error", "type", "details"}`` without knowing which
service raised it.

Status codes:
- ValidationError            400  malformed input, nothing written
- NotFoundError              404
- ConflictError              409  duplicate SKU / invoice number
- InsufficientStockError     409  stock would go negative, nothing written
- ReferentialIntegrityError  409  delete blocked by references
- PartialWriteError          500  workflow failed after some steps committed
- AllocationDegradedError    soft, attached to results as a warning
- NotificationError          soft, attached to results as a warning
"""

from __future__ import annotations


class StockbookError(Exception):
    """Base for all errors surfaced to API callers."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "type": type(self).__name__,
            "details": self.details,
        }


class ValidationError(StockbookError, ValueError):
    """400-level input problem."""


class NotFoundError(StockbookError, LookupError):
    status_code = 404


class ConflictError(StockbookError, ValueError):
    """409-level business rule conflict (e.g., duplicate SKU)."""

    status_code = 409


class InsufficientStockError(StockbookError):
    """
    One or more lines would drive a product's stock negative.

    ``shortages`` holds one dict per offending product:
    ``{"product_id", "product_name", "requested", "available"}``.
    """

    status_code = 409

    def __init__(self, shortages: list[dict], heading: str = "Insufficient stock"):
        lines = [
            f"{s['product_name']}: Requested {s['requested']}, Available {s['available']}"
            for s in shortages
        ]
        super().__init__(f"{heading}:\n" + "\n".join(lines), details={"shortages": shortages})
        self.shortages = shortages


class ReferentialIntegrityError(StockbookError):
    status_code = 409

    def __init__(self, entity: str, entity_id: int, blocked_by: str, count: int, sample: list):
        super().__init__(
            f"Cannot delete {entity} {entity_id}: referenced by {count} {blocked_by}",
            details={
                "entity": entity,
                "entity_id": entity_id,
                "blocked_by": blocked_by,
                "count": count,
                "sample": sample,
            },
        )
        self.count = count
        self.sample = sample


class AllocationDegradedError(StockbookError):
    """Invoice number came from a fallback tier. Never raised, only reported."""

    status_code = 200

    def __init__(self, number: str, source: str, reasons: list[str]):
        super().__init__(
            f"Invoice number {number} allocated by fallback tier '{source}'; review for gaps or duplicates",
            details={"invoice_number": number, "source": source, "reasons": reasons},
        )
        self.number = number
        self.source = source


class PartialWriteError(StockbookError):
    """
    A multi-step invoice workflow failed after at least one step committed.

    The operator needs ``completed_steps`` to reconcile by hand; the matching
    InvoiceOperation row (``operation_id``) keeps the same information.
    """

    status_code = 500

    def __init__(
        self,
        *,
        operation: str,
        invoice_number: str | None,
        completed_steps: list[str],
        failed_step: str,
        cause: BaseException,
        operation_id: int | None = None,
    ):
        super().__init__(
            f"Invoice {operation} for {invoice_number or 'unknown invoice'} failed at step "
            f"'{failed_step}' after {', '.join(completed_steps) or 'no steps'}: {cause}",
            details={
                "operation": operation,
                "invoice_number": invoice_number,
                "completed_steps": list(completed_steps),
                "failed_step": failed_step,
                "operation_id": operation_id,
                "cause": str(cause),
            },
        )
        self.operation = operation
        self.invoice_number = invoice_number
        self.completed_steps = list(completed_steps)
        self.failed_step = failed_step


class NotificationError(StockbookError):
    status_code = 502
