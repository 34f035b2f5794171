# Overview: Flask API routes for customers operations; parses input and returns JSON responses.

# backend/protrack/routes/customers.py
"""
Customer management routes.

SECURITY: All routes require authentication. Deleting a customer requires
the admin role.

Request bodies may send `address` and `doctor_reference` as nested objects;
they are flattened onto the customer columns before validation.
"""
from flask import Blueprint, request

from ..services import customers_service
from ..services.customers_service import CUSTOMER_MUTABLE_FIELDS, CUSTOMER_SORT_FIELDS, flatten_customer_payload
from ..models import Customer
from ..models.auth import ROLE_ADMIN
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_customer,
    parse_pagination,
    parse_sort,
    ValidationError,
    ConflictError,
)
from ..decorators import require_auth, require_role

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields=CUSTOMER_MUTABLE_FIELDS,
    required_on_create={"name", "age", "gender", "phone"},
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


def _validated_patch(partial: bool) -> dict:
    payload = flatten_customer_payload(request.get_json(silent=True) or {})
    patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=partial)
    enforce_rules_customer(patch)
    return patch


@customers_bp.get("")
@require_auth
def list_customers():
    """
    List customers with filters, sorting and pagination.

    Query params:
    - gender: exact match
    - search: name, phone or email (case-insensitive)
    - sort: name, age or created_at; "-" prefix for descending (default -created_at)
    - page, per_page (default 25, max 100)
    """
    try:
        page, per_page = parse_pagination(request.args)
        sort = parse_sort(request.args.get("sort"), CUSTOMER_SORT_FIELDS, "-created_at")
    except ValidationError as e:
        return {"error": str(e)}, 400

    return customers_service.list_customers(
        gender=request.args.get("gender") or None,
        search=request.args.get("search") or None,
        sort=sort,
        page=page,
        per_page=per_page,
    )


@customers_bp.get("/search")
@require_auth
def search_customers_route():
    """Search by name, phone or email. Requires ?query=."""
    query = (request.args.get("query") or "").strip()
    if not query:
        return {"error": "Please provide a search query"}, 400

    items = customers_service.search_customers(query)
    return {"items": items, "count": len(items)}


@customers_bp.get("/<int:customer_id>")
@require_auth
def get_customer_route(customer_id: int):
    customer = customers_service.get_customer(customer_id)
    if not customer:
        return {"error": "Customer not found"}, 404
    return customer.to_dict()


@customers_bp.get("/<int:customer_id>/history")
@require_auth
def customer_history_route(customer_id: int):
    """Customer record with a summary of each of their sales."""
    history = customers_service.customer_history(customer_id)
    if history is None:
        return {"error": "Customer not found"}, 404
    return history


@customers_bp.post("")
@require_auth
def create_customer_route():
    try:
        patch = _validated_patch(partial=False)
    except ValidationError as e:
        return {"error": str(e)}, 400

    return customers_service.create_customer(patch=patch), 201


@customers_bp.put("/<int:customer_id>")
@require_auth
def update_customer_route(customer_id: int):
    try:
        patch = _validated_patch(partial=True)
    except ValidationError as e:
        return {"error": str(e)}, 400

    updated = customers_service.update_customer(customer_id=customer_id, patch=patch)
    if not updated:
        return {"error": "Customer not found"}, 404
    return updated, 200


@customers_bp.delete("/<int:customer_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_customer_route(customer_id: int):
    """Delete a customer with no recorded sales."""
    try:
        deleted = customers_service.delete_customer(customer_id=customer_id)
    except ConflictError as e:
        return {"error": str(e)}, 409

    if not deleted:
        return {"error": "Customer not found"}, 404

    return {"ok": True}, 200
