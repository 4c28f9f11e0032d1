# backend/stockbook/routes/system.py
"""
System health endpoint. Not behind the access key so load balancers can
probe it.
"""

import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Invoice, InvoiceOperation, Product
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        invoice_count = db.session.query(Invoice).count()
        unfinished = (
            db.session.query(InvoiceOperation)
            .filter(InvoiceOperation.status != "completed")
            .count()
        )

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "invoices": invoice_count,
                "unfinished_invoice_operations": unfinished,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/api/health")
def health():
    database = check_database_health()
    status = "ok" if database["status"] == "healthy" else "degraded"
    code = 200 if status == "ok" else 503
    return {
        "status": status,
        "timestamp": to_utc_z(utcnow()),
        "database": database,
    }, code
