# backend/stockbook/services/customers_service.py
from __future__ import annotations

import logging

from sqlalchemy import or_

from ..errors import NotFoundError, ReferentialIntegrityError
from ..extensions import db
from ..models import Customer, Invoice

logger = logging.getLogger(__name__)

CUSTOMER_MUTABLE_FIELDS = {"name", "email", "phone", "address", "gstin"}


def get_customer(customer_id: int) -> Customer:
    c = db.session.get(Customer, customer_id)
    if c is None:
        raise NotFoundError("Customer not found", details={"customer_id": customer_id})
    return c


def list_customers(*, search: str | None = None) -> list[Customer]:
    q = db.session.query(Customer)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(Customer.name.ilike(like), Customer.email.ilike(like), Customer.phone.ilike(like)))
    return q.order_by(Customer.name.asc(), Customer.id.asc()).all()


def create_customer(*, patch: dict) -> Customer:
    c = Customer()
    for k, v in patch.items():
        if k in CUSTOMER_MUTABLE_FIELDS:
            setattr(c, k, v)
    db.session.add(c)
    db.session.commit()
    logger.info("Created customer id=%s name=%s", c.id, c.name)
    return c


def update_customer(*, customer_id: int, patch: dict) -> Customer:
    c = get_customer(customer_id)
    for k, v in patch.items():
        if k in CUSTOMER_MUTABLE_FIELDS:
            setattr(c, k, v)
    db.session.commit()
    return c


def delete_customer(*, customer_id: int) -> None:
    """Refused while any invoice references the customer."""
    c = get_customer(customer_id)

    q = db.session.query(Invoice.invoice_number).filter(Invoice.customer_id == c.id)
    count = q.count()
    if count:
        sample = [row[0] for row in q.order_by(Invoice.id.asc()).limit(5).all()]
        raise ReferentialIntegrityError("customer", c.id, "invoices", count, sample)

    db.session.delete(c)
    db.session.commit()
    logger.info("Deleted customer id=%s", customer_id)
