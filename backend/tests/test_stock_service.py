"""
Stock ledger tests.

Verifies:
- reserve() decrements atomically and never goes below zero
- release()/restock() are the symmetric increment
- quantity and product id validation
"""

import pytest

from protrack.models import Product
from protrack.services import stock_service
from protrack.services.stock_service import (
    InsufficientStockError,
    InvalidQuantityError,
    ProductNotFoundError,
)


class TestGetForSale:

    def test_returns_price_and_stock(self, make_product):
        product = make_product(stock=7, price_cents=12345, name="Knee Joint", model_number="KJ-1")

        quote = stock_service.get_for_sale(product.id)

        assert quote.product_id == product.id
        assert quote.name == "Knee Joint"
        assert quote.model_number == "KJ-1"
        assert quote.price_cents == 12345
        assert quote.available_stock == 7

    def test_unknown_product(self, db_session):
        with pytest.raises(ProductNotFoundError):
            stock_service.get_for_sale(999999)


class TestReserve:

    def test_decrements_stock(self, make_product, stock_of):
        product = make_product(stock=5)

        assert stock_service.reserve(product.id, 3) == 2
        assert stock_of(product.id) == 2

    def test_can_take_exactly_all_stock(self, make_product, stock_of):
        product = make_product(stock=4)

        assert stock_service.reserve(product.id, 4) == 0
        assert stock_of(product.id) == 0

    def test_insufficient_stock_leaves_stock_unchanged(self, make_product, stock_of):
        product = make_product(stock=5, name="Spinal Brace")

        with pytest.raises(InsufficientStockError) as exc_info:
            stock_service.reserve(product.id, 10)

        assert str(exc_info.value) == "Not enough stock for Spinal Brace. Available: 5, Requested: 10"
        assert exc_info.value.details["available"] == 5
        assert exc_info.value.details["requested"] == 10
        assert stock_of(product.id) == 5

    def test_unknown_product(self, db_session):
        with pytest.raises(ProductNotFoundError):
            stock_service.reserve(999999, 1)

    @pytest.mark.parametrize("quantity", [0, -1, True, 1.5, "2", None])
    def test_rejects_non_positive_or_non_integer_quantity(self, make_product, stock_of, quantity):
        product = make_product(stock=5)

        with pytest.raises(InvalidQuantityError):
            stock_service.reserve(product.id, quantity)

        assert stock_of(product.id) == 5

    def test_bumps_version(self, make_product, db_session):
        product = make_product(stock=5)
        product_id = product.id

        stock_service.reserve(product_id, 1)

        version = db_session.query(Product.version_id).filter(Product.id == product_id).scalar()
        assert version == 2


class TestRelease:

    def test_release_restores_reserved_quantity(self, make_product, stock_of):
        product = make_product(stock=5)

        stock_service.reserve(product.id, 3)
        assert stock_service.release(product.id, 3) == 5
        assert stock_of(product.id) == 5

    def test_restock_adds_stock(self, make_product, stock_of):
        product = make_product(stock=0)

        assert stock_service.restock(product.id, 12) == 12
        assert stock_of(product.id) == 12

    def test_release_unknown_product(self, db_session):
        with pytest.raises(ProductNotFoundError):
            stock_service.release(999999, 1)

    def test_release_rejects_zero(self, make_product):
        product = make_product(stock=5)

        with pytest.raises(InvalidQuantityError):
            stock_service.release(product.id, 0)
