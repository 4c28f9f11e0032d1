# Overview: Flask API routes for customers.

from flask import Blueprint, request

from ..errors import StockbookError
from ..models import Customer
from ..services import customers_service
from ..validation import ModelValidationPolicy, validate_payload, enforce_rules_customer
from ..decorators import require_access_key

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "email", "phone", "address", "gstin"},
    required_on_create={"name"},
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_access_key
def list_customers():
    customers = customers_service.list_customers(search=request.args.get("q"))
    return {"items": [c.to_dict() for c in customers], "count": len(customers)}


@customers_bp.post("")
@require_access_key
def create_customer_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
        enforce_rules_customer(patch)
        customer = customers_service.create_customer(patch=patch)
    except StockbookError as e:
        return e.to_dict(), e.status_code
    return customer.to_dict(), 201


@customers_bp.get("/<int:customer_id>")
@require_access_key
def get_customer_route(customer_id: int):
    try:
        return customers_service.get_customer(customer_id).to_dict()
    except StockbookError as e:
        return e.to_dict(), e.status_code


@customers_bp.patch("/<int:customer_id>")
@require_access_key
def update_customer_route(customer_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=True)
        enforce_rules_customer(patch)
        customer = customers_service.update_customer(customer_id=customer_id, patch=patch)
    except StockbookError as e:
        return e.to_dict(), e.status_code
    return customer.to_dict()


@customers_bp.delete("/<int:customer_id>")
@require_access_key
def delete_customer_route(customer_id: int):
    try:
        customers_service.delete_customer(customer_id=customer_id)
    except StockbookError as e:
        return e.to_dict(), e.status_code
    return {"ok": True}, 200
