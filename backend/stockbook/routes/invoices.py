# Overview: Flask API routes for invoices; every write goes through invoice_service.

# backend/stockbook/routes/invoices.py
"""
Invoice routes.

SECURITY: All routes require the shared access key.

Responses for writes carry the invoice, the ledger entries the call wrote,
and a list of warnings (fallback invoice number, failed notification).
A PartialWriteError (stepwise workflow mode) returns 500 with the completed
steps so the caller can reconcile.
"""
from flask import Blueprint, current_app, request

from ..errors import PartialWriteError, StockbookError
from ..services import invoice_service
from ..validation import validate_invoice_payload
from ..decorators import require_access_key

invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.get("")
@require_access_key
def list_invoices():
    """
    Query params:
    - customer_id: int (optional)
    - limit: int (optional, default 50, max 200)
    - offset: int (optional)
    """
    invoices = invoice_service.list_invoices(
        customer_id=request.args.get("customer_id", type=int),
        limit=request.args.get("limit", default=50, type=int),
        offset=request.args.get("offset", default=0, type=int),
    )
    return {"items": [i.to_dict() for i in invoices], "count": len(invoices)}


@invoices_bp.get("/<int:invoice_id>")
@require_access_key
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(invoice_id)
    except StockbookError as e:
        return e.to_dict(), e.status_code
    return invoice.to_dict(include_items=True)


@invoices_bp.post("")
@require_access_key
def create_invoice_route():
    try:
        patch = validate_invoice_payload(request.get_json(silent=True), partial=False)
        result = invoice_service.create_invoice(patch=patch)
    except PartialWriteError as e:
        current_app.logger.error("Partial invoice create: %s", e)
        return e.to_dict(), e.status_code
    except StockbookError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return {"error": "Failed to create invoice"}, 500

    return result.to_dict(), 201


@invoices_bp.put("/<int:invoice_id>")
@require_access_key
def update_invoice_route(invoice_id: int):
    try:
        patch = validate_invoice_payload(request.get_json(silent=True), partial=True)
        result = invoice_service.update_invoice(invoice_id=invoice_id, patch=patch)
    except PartialWriteError as e:
        current_app.logger.error("Partial invoice update: %s", e)
        return e.to_dict(), e.status_code
    except StockbookError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update invoice %s", invoice_id)
        return {"error": "Failed to update invoice"}, 500

    return result.to_dict()


@invoices_bp.delete("/<int:invoice_id>")
@require_access_key
def delete_invoice_route(invoice_id: int):
    try:
        result = invoice_service.delete_invoice(invoice_id=invoice_id)
    except PartialWriteError as e:
        current_app.logger.error("Partial invoice delete: %s", e)
        return e.to_dict(), e.status_code
    except StockbookError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete invoice %s", invoice_id)
        return {"error": "Failed to delete invoice"}, 500

    return result.to_dict()
