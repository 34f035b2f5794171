# Overview: Product stock ledger; atomic reserve/release of on-hand quantity.

"""
ProTrack Stock Invariants (authoritative)

- Product.stock_quantity is never negative (DB check constraint as backstop).
- Reservation is one conditional UPDATE:
      stock_quantity = stock_quantity - q  WHERE id = :id AND stock_quantity >= q
  The database evaluates the floor check and applies the decrement as one
  statement, so two concurrent reservations cannot jointly oversell.
- Release/restock is the symmetric atomic increment.
- Each primitive commits immediately; callers needing all-or-nothing across
  several products pair every reserve with a release (see sales_service).
- Only stock_quantity (and the optimistic version_id) are touched.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import update

from ..extensions import db
from ..models import Product
from ..validation import fits_db_integer
from .concurrency import run_with_retry


class StockError(Exception):
    """Base class for product ledger failures."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ProductNotFoundError(StockError):
    """Raised when a product id does not resolve."""


class InvalidQuantityError(StockError):
    """Raised when a reserve/release quantity is not a positive integer."""


class InsufficientStockError(StockError):
    """Raised when a reservation would take stock below zero."""


@dataclass(frozen=True)
class StockQuote:
    product_id: int
    name: str
    model_number: str
    price_cents: int
    available_stock: int


def _require_positive_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidQuantityError(
            "Quantity must be a positive integer",
            details={"quantity": quantity},
        )
    return quantity


def _current_stock(product_id: int) -> int | None:
    return (
        db.session.query(Product.stock_quantity)
        .filter(Product.id == product_id)
        .scalar()
    )


def get_for_sale(product_id) -> StockQuote:
    """Current price and on-hand stock for a product."""
    product = db.session.get(Product, product_id, populate_existing=True) if fits_db_integer(product_id) else None
    if product is None:
        raise ProductNotFoundError("Product not found", details={"product_id": product_id})

    return StockQuote(
        product_id=product.id,
        name=product.name,
        model_number=product.model_number,
        price_cents=product.selling_price_cents,
        available_stock=product.stock_quantity,
    )


def reserve(product_id: int, quantity: int) -> int:
    """
    Atomically decrement stock by quantity; returns the new on-hand value.

    Raises InvalidQuantityError, ProductNotFoundError or InsufficientStockError.
    """
    quantity = _require_positive_quantity(quantity)
    if not fits_db_integer(product_id):
        raise ProductNotFoundError("Product not found", details={"product_id": product_id})

    def _op() -> int:
        stmt = (
            update(Product)
            .where(Product.id == product_id, Product.stock_quantity >= quantity)
            .values(
                stock_quantity=Product.stock_quantity - quantity,
                version_id=Product.version_id + 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)

        if not result.rowcount:
            # Floor check failed or product is gone; read inside the same txn
            row = (
                db.session.query(Product.name, Product.stock_quantity)
                .filter(Product.id == product_id)
                .first()
            )
            db.session.rollback()
            if row is None:
                raise ProductNotFoundError("Product not found", details={"product_id": product_id})
            name, available = row
            raise InsufficientStockError(
                f"Not enough stock for {name}. Available: {available}, Requested: {quantity}",
                details={
                    "product_id": product_id,
                    "product_name": name,
                    "available": available,
                    "requested": quantity,
                },
            )

        new_stock = _current_stock(product_id)
        db.session.commit()
        return new_stock

    return run_with_retry(_op)


def release(product_id: int, quantity: int) -> int:
    """
    Atomically increment stock by quantity; returns the new on-hand value.

    Inverse of reserve(). Also the primitive behind restock().
    """
    quantity = _require_positive_quantity(quantity)
    if not fits_db_integer(product_id):
        raise ProductNotFoundError("Product not found", details={"product_id": product_id})

    def _op() -> int:
        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(
                stock_quantity=Product.stock_quantity + quantity,
                version_id=Product.version_id + 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)
        if not result.rowcount:
            db.session.rollback()
            raise ProductNotFoundError("Product not found", details={"product_id": product_id})

        new_stock = _current_stock(product_id)
        db.session.commit()
        return new_stock

    return run_with_retry(_op)


def restock(product_id: int, quantity: int) -> int:
    """Receive stock into the shop (admin restock flow)."""
    return release(product_id, quantity)
