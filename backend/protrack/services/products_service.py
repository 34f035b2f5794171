# backend/protrack/services/products_service.py
"""
Products Service

Catalog CRUD plus the read-only inventory views (low stock, stock value).
Stock quantity is deliberately not in PRODUCT_MUTABLE_FIELDS: after creation
it only moves through stock_service (sales reserve it, restock releases it).
"""
from __future__ import annotations
from sqlalchemy import func, or_

from ..extensions import db
from ..models import Product, SaleLine
from ..validation import ConflictError, fits_db_integer, paginate_query

PRODUCT_MUTABLE_FIELDS = {
    "name", "model_number", "description", "category", "size",
    "cost_price_cents", "selling_price_cents", "low_stock_threshold", "image",
}
PRODUCT_CREATE_FIELDS = PRODUCT_MUTABLE_FIELDS | {"stock_quantity"}

PRODUCT_SORT_FIELDS = {"name", "model_number", "selling_price_cents", "stock_quantity", "created_at"}


def apply_product_patch(p: Product, patch: dict, allowed: set[str] = PRODUCT_MUTABLE_FIELDS) -> None:
    for k, v in patch.items():
        if k not in allowed:
            continue
        setattr(p, k, v)


def _ensure_model_number_free(model_number: str, exclude_id: int | None = None) -> None:
    query = db.session.query(Product).filter(Product.model_number == model_number)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first():
        raise ConflictError("Model number already exists.")


def list_products(
    *,
    category: str | None = None,
    low_stock: bool | None = None,
    search: str | None = None,
    sort: tuple[str, bool] = ("created_at", True),
    page: int = 1,
    per_page: int = 25,
) -> dict:
    """
    Product listing with allow-listed filters and pagination.

    Args:
        category: exact category match
        low_stock: True -> stock <= threshold, False -> stock above threshold
        search: case-insensitive match on name or model number
        sort: (field, descending) from PRODUCT_SORT_FIELDS
    """
    query = db.session.query(Product)

    if category:
        query = query.filter(Product.category == category)
    if low_stock is True:
        query = query.filter(Product.stock_quantity <= Product.low_stock_threshold)
    elif low_stock is False:
        query = query.filter(Product.stock_quantity > Product.low_stock_threshold)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Product.name.ilike(pattern), Product.model_number.ilike(pattern)))

    field_name, descending = sort
    column = getattr(Product, field_name)
    query = query.order_by(column.desc() if descending else column.asc(), Product.id.asc())

    products, pagination = paginate_query(query, page, per_page)
    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "pagination": pagination,
    }


def get_product(product_id: int) -> Product | None:
    if not fits_db_integer(product_id):
        return None
    return db.session.get(Product, product_id, populate_existing=True)


def create_product(*, patch: dict) -> dict:
    """
    Create product using a validated patch dict.

    Raises:
        ConflictError: If the model number already exists
    """
    model_number = patch.get("model_number")
    if model_number is None:
        raise ValueError("model_number is required")
    _ensure_model_number_free(model_number)

    p = Product()
    apply_product_patch(p, patch, PRODUCT_CREATE_FIELDS)

    db.session.add(p)
    db.session.commit()
    return p.to_dict()


def update_product(*, product_id: int, patch: dict) -> dict | None:
    """
    Update catalog fields of a product.

    Returns the updated product dict, or None if not found.

    Raises:
        ConflictError: If the new model number already exists
    """
    p = get_product(product_id)
    if not p:
        return None

    if "model_number" in patch and patch["model_number"] != p.model_number:
        _ensure_model_number_free(patch["model_number"], exclude_id=p.id)

    apply_product_patch(p, patch)
    db.session.commit()
    return p.to_dict()


def delete_product(*, product_id: int) -> bool:
    """
    Delete a product that no sale references.

    Returns True if deleted, False if not found.

    Raises:
        ConflictError: If any sale line references the product
    """
    p = get_product(product_id)
    if not p:
        return False

    referenced = db.session.query(SaleLine.id).filter(SaleLine.product_id == product_id).first()
    if referenced:
        raise ConflictError("Product is referenced by recorded sales and cannot be deleted.")

    db.session.delete(p)
    db.session.commit()
    return True


def low_stock_products() -> list[dict]:
    products = (
        db.session.query(Product)
        .filter(Product.stock_quantity <= Product.low_stock_threshold)
        .order_by(Product.stock_quantity.asc(), Product.name.asc())
        .all()
    )
    return [p.to_dict() for p in products]


def inventory_value() -> dict:
    """Cost and selling value of all stock on hand."""
    cost, selling, units, count = db.session.query(
        func.coalesce(func.sum(Product.cost_price_cents * Product.stock_quantity), 0),
        func.coalesce(func.sum(Product.selling_price_cents * Product.stock_quantity), 0),
        func.coalesce(func.sum(Product.stock_quantity), 0),
        func.count(Product.id),
    ).one()
    return {
        "total_cost_value_cents": int(cost),
        "total_selling_value_cents": int(selling),
        "potential_profit_cents": int(selling) - int(cost),
        "total_units": int(units),
        "product_count": int(count),
    }
