# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/protrack/routes/products.py
"""
Product management routes.

SECURITY: All routes require authentication.
- Read operations are open to any signed-in user
- Write operations (create, update, delete, restock) require the admin role
"""
from flask import Blueprint, request, current_app

from ..services import products_service, stock_service
from ..services.products_service import PRODUCT_MUTABLE_FIELDS, PRODUCT_CREATE_FIELDS, PRODUCT_SORT_FIELDS
from ..services.stock_service import StockError, ProductNotFoundError
from ..models import Product
from ..models.auth import ROLE_ADMIN
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    parse_pagination,
    parse_sort,
    parse_bool_arg,
    parse_strict_int,
    ValidationError,
    ConflictError,
)
from ..decorators import require_auth, require_role

PRODUCT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields=PRODUCT_CREATE_FIELDS,
    required_on_create={"name", "model_number", "description", "category", "cost_price_cents", "selling_price_cents"},
)
PRODUCT_UPDATE_POLICY = ModelValidationPolicy(writable_fields=PRODUCT_MUTABLE_FIELDS)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products():
    """
    List products with filters, sorting and pagination.

    Query params:
    - category: exact category
    - low_stock: true/false
    - search: name or model number (case-insensitive)
    - sort: allow-listed field, "-" prefix for descending (default -created_at)
    - page, per_page (default 25, max 100)
    """
    try:
        page, per_page = parse_pagination(request.args)
        sort = parse_sort(request.args.get("sort"), PRODUCT_SORT_FIELDS, "-created_at")
        low_stock = parse_bool_arg(request.args.get("low_stock"), "low_stock")
    except ValidationError as e:
        return {"error": str(e)}, 400

    return products_service.list_products(
        category=request.args.get("category") or None,
        low_stock=low_stock,
        search=request.args.get("search") or None,
        sort=sort,
        page=page,
        per_page=per_page,
    )


@products_bp.get("/low-stock")
@require_auth
def low_stock_route():
    """Products at or below their low-stock threshold, lowest stock first."""
    items = products_service.low_stock_products()
    return {"items": items, "count": len(items)}


@products_bp.get("/inventory-value")
@require_auth
def inventory_value_route():
    """Cost and selling value of stock on hand."""
    return products_service.inventory_value()


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    product = products_service.get_product(product_id)
    if not product:
        return {"error": "Product not found"}, 404
    return product.to_dict()


@products_bp.post("")
@require_auth
@require_role(ROLE_ADMIN)
def create_product_route():
    """
    Create a new product.

    Opening stock may be set here; afterwards stock only moves through
    sales and restock.
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_CREATE_POLICY, partial=False)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        created = products_service.create_product(patch=patch)
    except ConflictError as e:
        return {"error": str(e)}, 409

    return created, 201


@products_bp.put("/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN)
def update_product_route(product_id: int):
    """Update catalog fields of a product (stock_quantity is not writable)."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_UPDATE_POLICY, partial=True)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        updated = products_service.update_product(product_id=product_id, patch=patch)
    except ConflictError as e:
        return {"error": str(e)}, 409

    if not updated:
        return {"error": "Product not found"}, 404

    return updated, 200


@products_bp.delete("/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_product_route(product_id: int):
    """Delete a product that no recorded sale references."""
    try:
        deleted = products_service.delete_product(product_id=product_id)
    except ConflictError as e:
        return {"error": str(e)}, 409

    if not deleted:
        return {"error": "Product not found"}, 404

    return {"ok": True}, 200


@products_bp.post("/<int:product_id>/restock")
@require_auth
@require_role(ROLE_ADMIN)
def restock_product_route(product_id: int):
    """
    Receive stock for a product.

    Body: {"quantity": <positive int>}
    """
    payload = request.get_json(silent=True) or {}

    try:
        quantity = parse_strict_int(payload.get("quantity"), "quantity")
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        new_stock = stock_service.restock(product_id, quantity)
    except ProductNotFoundError:
        return {"error": "Product not found"}, 404
    except StockError as e:
        return {"error": str(e), "details": e.details}, 400

    current_app.logger.info("Restocked product %s by %d (now %d)", product_id, quantity, new_stock)
    return products_service.get_product(product_id).to_dict(), 200
