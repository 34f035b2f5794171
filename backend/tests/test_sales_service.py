"""
Sale workflow tests (service layer).

Verifies:
- totals: subtotal + tax - discount, rates applied to the subtotal
- default tax 18% / discount 0%, explicit zero honored
- walk-in customer created when none is given
- failed sales leave stock exactly as it was (compensating release)
- invoice numbers consumed by failed sales are skipped, not reused
"""

import logging
from datetime import date

import pytest
from sqlalchemy.exc import OperationalError

from protrack.models import Customer, Sale, SaleLine
from protrack.models.customers import WALK_IN_NAME
from protrack.services import sales_service, stock_service
from protrack.services.document_service import DocumentSequenceError
from protrack.services.sales_service import (
    SaleInsufficientStockError,
    SaleNotFoundError,
    SalePersistenceError,
    SaleValidationError,
    PricedItem,
    apply_rate,
    compute_totals,
    create_sale,
)
from protrack.services.stock_service import InsufficientStockError

DAY = date(2026, 1, 19)


@pytest.fixture(autouse=True)
def fixed_sale_date(monkeypatch):
    monkeypatch.setattr(sales_service, "local_today", lambda: DAY)


def _sale_count(db_session) -> int:
    return db_session.query(Sale).count()


# =============================================================================
# TOTALS
# =============================================================================


class TestTotals:

    def test_apply_rate_rounds_half_up(self):
        assert apply_rate(12345, 1800) == 2222   # 2222.1
        assert apply_rate(250, 1800) == 45       # 45.0
        assert apply_rate(25, 1800) == 5         # 4.5 -> 5
        assert apply_rate(12345, 0) == 0

    def test_compute_totals(self):
        items = [
            PricedItem(position=1, product_id=1, product_name="A", quantity=2, unit_price_cents=1500),
            PricedItem(position=2, product_id=2, product_name="B", quantity=1, unit_price_cents=7000),
        ]

        totals = compute_totals(items, tax_rate_bps=1800, discount_rate_bps=1000)

        assert totals.subtotal_cents == 10000
        assert totals.tax_cents == 1800
        assert totals.discount_cents == 1000
        assert totals.total_cents == 10000 + 1800 - 1000


# =============================================================================
# HAPPY PATH
# =============================================================================


class TestCreateSale:

    def test_walk_in_sale_with_default_tax(self, db_session, make_product, stock_of):
        product = make_product(stock=5, price_cents=10000)

        sale = create_sale(items=[{"product_id": product.id, "quantity": 3}])

        assert sale.subtotal_cents == 30000
        assert sale.tax_rate_bps == 1800
        assert sale.tax_cents == 5400
        assert sale.discount_cents == 0
        assert sale.total_cents == 35400
        assert sale.invoice_number == "202601190001"
        assert sale.payment_method == "Cash"
        assert sale.payment_status == "Paid"
        assert stock_of(product.id) == 2

    def test_walk_in_customer_is_created(self, db_session, make_product):
        product = make_product(stock=5)

        sale = create_sale(items=[{"product_id": product.id, "quantity": 1}])

        customer = db_session.get(Customer, sale.customer_id)
        assert customer.name == WALK_IN_NAME
        assert customer.phone == "000-000-0000"
        assert customer.gender == "Other"
        assert customer.age == 0

    def test_empty_customer_id_means_walk_in(self, db_session, make_product):
        product = make_product(stock=5)

        sale = create_sale(customer_id="", items=[{"product_id": product.id, "quantity": 1}])

        assert db_session.get(Customer, sale.customer_id).name == WALK_IN_NAME

    def test_existing_customer(self, db_session, make_product, make_customer):
        product = make_product(stock=5)
        customer = make_customer(name="Jane Doe")

        sale = create_sale(customer_id=customer.id, items=[{"product_id": product.id, "quantity": 1}])

        assert sale.customer_id == customer.id
        assert db_session.query(Customer).count() == 1

    def test_explicit_zero_tax_is_honored(self, db_session, make_product):
        product = make_product(stock=5, price_cents=10000)

        sale = create_sale(items=[{"product_id": product.id, "quantity": 1}], tax_rate=0)

        assert sale.tax_rate_bps == 0
        assert sale.tax_cents == 0
        assert sale.total_cents == 10000

    def test_discount_applied_to_subtotal(self, db_session, make_product):
        product = make_product(stock=5, price_cents=10000)

        sale = create_sale(
            items=[{"product_id": product.id, "quantity": 2}],
            tax_rate="0.1",
            discount_rate=0.05,
        )

        assert sale.subtotal_cents == 20000
        assert sale.tax_cents == 2000
        assert sale.discount_cents == 1000
        assert sale.total_cents == 21000

    def test_lines_snapshot_prices_in_input_order(self, db_session, make_product):
        first = make_product(stock=5, price_cents=2500)
        second = make_product(stock=5, price_cents=4000)

        sale = create_sale(items=[
            {"product_id": second.id, "quantity": 1},
            {"product": first.id, "quantity": 2},
        ])

        lines = db_session.query(SaleLine).filter_by(sale_id=sale.id).order_by(SaleLine.position).all()
        assert [(line.position, line.product_id, line.quantity, line.unit_price_cents, line.line_total_cents)
                for line in lines] == [
            (1, second.id, 1, 4000, 4000),
            (2, first.id, 2, 2500, 5000),
        ]

    def test_consecutive_sales_get_sequential_invoices(self, db_session, make_product):
        product = make_product(stock=5)

        first = create_sale(items=[{"product_id": product.id, "quantity": 1}])
        second = create_sale(items=[{"product_id": product.id, "quantity": 1}])

        assert first.invoice_number == "202601190001"
        assert second.invoice_number == "202601190002"

    def test_committed_sale_is_logged(self, db_session, make_product, caplog):
        product = make_product(stock=5)

        with caplog.at_level(logging.INFO):
            sale = create_sale(items=[{"product_id": product.id, "quantity": 1}])

        assert f"Sale {sale.invoice_number} recorded" in caplog.text


# =============================================================================
# VALIDATION (no side effects)
# =============================================================================


class TestValidation:

    @pytest.mark.parametrize("items", [None, [], "abc", {"product_id": 1}])
    def test_items_must_be_non_empty_list(self, db_session, items):
        with pytest.raises(SaleValidationError):
            create_sale(items=items)
        assert db_session.query(Customer).count() == 0

    @pytest.mark.parametrize("quantity", [0, -2, 1.5, True, "x", None])
    def test_bad_quantity(self, db_session, make_product, stock_of, quantity):
        product = make_product(stock=5)

        with pytest.raises(SaleValidationError):
            create_sale(items=[{"product_id": product.id, "quantity": quantity}])

        assert stock_of(product.id) == 5

    def test_missing_product_id(self, db_session):
        with pytest.raises(SaleValidationError) as exc_info:
            create_sale(items=[{"quantity": 1}])
        assert "item 1" in str(exc_info.value)

    @pytest.mark.parametrize("rate", [-0.1, 1.5, "abc", True, "NaN"])
    def test_bad_tax_rate(self, db_session, make_product, rate):
        product = make_product(stock=5)

        with pytest.raises(SaleValidationError):
            create_sale(items=[{"product_id": product.id, "quantity": 1}], tax_rate=rate)

    @pytest.mark.parametrize(
        "rate,expected_bps",
        [(1 / 3, 3333), (0.12345, 1235), ("0.99995", 10000), (0.00004, 0)],
    )
    def test_fine_rate_rounds_to_basis_point(self, db_session, make_product, rate, expected_bps):
        product = make_product(stock=5, price_cents=10000)

        sale = create_sale(items=[{"product_id": product.id, "quantity": 1}], tax_rate=rate)

        assert sale.tax_rate_bps == expected_bps
        assert sale.tax_cents == (10000 * expected_bps + 5000) // 10000

    def test_unknown_payment_method(self, db_session, make_product):
        product = make_product(stock=5)

        with pytest.raises(SaleValidationError):
            create_sale(items=[{"product_id": product.id, "quantity": 1}], payment_method="Barter")

    def test_validation_does_not_create_walk_in(self, db_session, make_product):
        product = make_product(stock=5)

        with pytest.raises(SaleValidationError):
            create_sale(items=[{"product_id": product.id, "quantity": 1}], payment_status="Refunded")

        assert db_session.query(Customer).count() == 0


# =============================================================================
# NOT FOUND / INSUFFICIENT STOCK
# =============================================================================


class TestRejectedSales:

    def test_unknown_customer(self, db_session, make_product, stock_of):
        product = make_product(stock=5)

        with pytest.raises(SaleNotFoundError):
            create_sale(customer_id=999999, items=[{"product_id": product.id, "quantity": 1}])

        assert stock_of(product.id) == 5

    def test_unknown_product_names_item_position(self, db_session, make_product, stock_of):
        product = make_product(stock=5)

        with pytest.raises(SaleNotFoundError) as exc_info:
            create_sale(items=[
                {"product_id": product.id, "quantity": 1},
                {"product_id": 999999, "quantity": 1},
            ])

        assert "item 2" in str(exc_info.value)
        assert exc_info.value.details["item"] == 2
        assert stock_of(product.id) == 5

    def test_product_id_beyond_integer_range(self, db_session, make_product, stock_of):
        product = make_product(stock=5)

        with pytest.raises(SaleNotFoundError) as exc_info:
            create_sale(items=[
                {"product_id": product.id, "quantity": 1},
                {"product_id": 10**20, "quantity": 1},
            ])

        assert exc_info.value.details["item"] == 2
        assert stock_of(product.id) == 5
        assert db_session.query(Customer).count() == 0

    def test_customer_id_beyond_integer_range(self, db_session, make_product, stock_of):
        product = make_product(stock=5)

        with pytest.raises(SaleNotFoundError):
            create_sale(customer_id=10**20, items=[{"product_id": product.id, "quantity": 1}])

        assert stock_of(product.id) == 5

    def test_insufficient_stock_message(self, db_session, make_product, stock_of):
        product = make_product(stock=5, name="Hip Joint")

        with pytest.raises(SaleInsufficientStockError) as exc_info:
            create_sale(items=[{"product_id": product.id, "quantity": 10}])

        assert str(exc_info.value) == "Not enough stock for Hip Joint. Available: 5, Requested: 10"
        assert stock_of(product.id) == 5
        assert _sale_count(db_session) == 0

    def test_second_item_short_leaves_both_stocks(self, db_session, make_product, stock_of):
        p1 = make_product(stock=5, name="P1")
        p2 = make_product(stock=2, name="P2")

        with pytest.raises(SaleInsufficientStockError) as exc_info:
            create_sale(items=[
                {"product_id": p1.id, "quantity": 1},
                {"product_id": p2.id, "quantity": 3},
            ])

        assert "P2" in str(exc_info.value)
        assert stock_of(p1.id) == 5
        assert stock_of(p2.id) == 2
        assert _sale_count(db_session) == 0


# =============================================================================
# COMPENSATION
# =============================================================================


class TestCompensation:

    def test_reservation_race_releases_earlier_items(self, db_session, make_product, stock_of, monkeypatch, caplog):
        """Stock taken by someone else between pricing and reserving."""
        p1 = make_product(stock=5, name="P1")
        p2 = make_product(stock=5, name="P2")
        p2_id = p2.id
        real_reserve = stock_service.reserve

        def racing_reserve(product_id, quantity):
            if product_id == p2_id:
                raise InsufficientStockError(
                    "Not enough stock for P2. Available: 0, Requested: 1",
                    details={"product_id": p2_id, "product_name": "P2", "available": 0, "requested": 1},
                )
            return real_reserve(product_id, quantity)

        monkeypatch.setattr(stock_service, "reserve", racing_reserve)

        with caplog.at_level(logging.WARNING):
            with pytest.raises(SaleInsufficientStockError) as exc_info:
                create_sale(items=[
                    {"product_id": p1.id, "quantity": 2},
                    {"product_id": p2_id, "quantity": 1},
                ])

        assert exc_info.value.details["item"] == 2
        assert stock_of(p1.id) == 5
        assert stock_of(p2_id) == 5
        assert _sale_count(db_session) == 0
        assert "Released 2 unit(s)" in caplog.text

    def test_persistence_failure_restores_stock(self, db_session, make_product, stock_of, monkeypatch):
        p1 = make_product(stock=5)
        p2 = make_product(stock=3)

        def failing_persist(**kwargs):
            raise OperationalError("INSERT INTO sales", {}, Exception("disk I/O error"))

        monkeypatch.setattr(sales_service, "_persist", failing_persist)

        with pytest.raises(SalePersistenceError) as exc_info:
            create_sale(items=[
                {"product_id": p1.id, "quantity": 2},
                {"product_id": p2.id, "quantity": 3},
            ])

        assert exc_info.value.retryable is True
        assert exc_info.value.to_dict()["kind"] == "PERSISTENCE_ERROR"
        assert stock_of(p1.id) == 5
        assert stock_of(p2.id) == 3
        assert _sale_count(db_session) == 0

    def test_sequencer_failure_restores_stock(self, db_session, make_product, stock_of, monkeypatch):
        product = make_product(stock=5)

        def failing_sequencer(for_date=None):
            raise DocumentSequenceError("Could not allocate invoice number")

        monkeypatch.setattr(sales_service, "next_invoice_number", failing_sequencer)

        with pytest.raises(SalePersistenceError):
            create_sale(items=[{"product_id": product.id, "quantity": 4}])

        assert stock_of(product.id) == 5

    def test_interrupted_sale_releases_stock(self, db_session, make_product, stock_of, monkeypatch):
        product = make_product(stock=5)

        def interrupted(**kwargs):
            raise KeyboardInterrupt

        monkeypatch.setattr(sales_service, "_persist", interrupted)

        with pytest.raises(KeyboardInterrupt):
            create_sale(items=[{"product_id": product.id, "quantity": 2}])

        assert stock_of(product.id) == 5

    def test_failed_sale_keeps_walk_in_customer(self, db_session, make_product, monkeypatch):
        product = make_product(stock=5)

        def failing_persist(**kwargs):
            raise OperationalError("INSERT INTO sales", {}, Exception("locked"))

        monkeypatch.setattr(sales_service, "_persist", failing_persist)

        with pytest.raises(SalePersistenceError):
            create_sale(items=[{"product_id": product.id, "quantity": 1}])

        assert db_session.query(Customer).filter_by(name=WALK_IN_NAME).count() == 1

    def test_consumed_invoice_number_is_skipped(self, db_session, make_product, monkeypatch):
        product = make_product(stock=5)
        real_persist = sales_service._persist
        calls = {"n": 0}

        def fail_first(**kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise OperationalError("INSERT INTO sales", {}, Exception("locked"))
            return real_persist(**kwargs)

        monkeypatch.setattr(sales_service, "_persist", fail_first)

        with pytest.raises(SalePersistenceError):
            create_sale(items=[{"product_id": product.id, "quantity": 1}])
        sale = create_sale(items=[{"product_id": product.id, "quantity": 1}])

        assert sale.invoice_number == "202601190002"


# =============================================================================
# READS
# =============================================================================


class TestReads:

    def test_sale_detail_resolves_references(self, db_session, make_product, make_customer):
        product = make_product(stock=5, name="Cranial Plate", model_number="CP-9")
        customer = make_customer(name="John Roe", phone="555-1234")

        sale = create_sale(customer_id=customer.id, items=[{"product_id": product.id, "quantity": 2}])
        detail = sales_service.get_sale_detail(sale.id)

        assert detail["invoice_number"] == sale.invoice_number
        assert detail["customer"]["name"] == "John Roe"
        assert detail["customer"]["phone"] == "555-1234"
        assert detail["customer"]["formatted_address"] == "1 Main St, Springfield, IL - 62701"
        assert detail["lines"][0]["product"]["name"] == "Cranial Plate"
        assert detail["lines"][0]["product"]["model_number"] == "CP-9"
        assert detail["created_by"] is None

    def test_sale_detail_missing(self, db_session):
        assert sales_service.get_sale_detail(999999) is None

    def test_list_sales_filters(self, db_session, make_product):
        product = make_product(stock=10)
        create_sale(items=[{"product_id": product.id, "quantity": 1}], payment_method="Cash")
        card = create_sale(items=[{"product_id": product.id, "quantity": 1}], payment_method="Credit Card")

        result = sales_service.list_sales(payment_method="Credit Card")

        assert result["count"] == 1
        assert result["items"][0]["invoice_number"] == card.invoice_number
        assert result["pagination"]["total"] == 1

    def test_list_sales_invoice_prefix(self, db_session, make_product):
        product = make_product(stock=10)
        create_sale(items=[{"product_id": product.id, "quantity": 1}])
        create_sale(items=[{"product_id": product.id, "quantity": 1}])

        assert sales_service.list_sales(invoice_number="20260119")["pagination"]["total"] == 2
        assert sales_service.list_sales(invoice_number="20250101")["pagination"]["total"] == 0
