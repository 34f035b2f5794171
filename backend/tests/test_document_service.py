"""
Invoice number allocation tests.

Verifies:
- YYYYMMDD + 4-digit sequence, restarting per date
- numbering resumes after sales already stored for the date
- the suffix grows past 9999 instead of failing
"""

from datetime import date

from protrack.models import Sale, InvoiceSequence
from protrack.services.document_service import format_invoice_number, next_invoice_number

DAY = date(2026, 1, 19)


def _store_sale(db_session, customer, invoice_number):
    sale = Sale(
        invoice_number=invoice_number,
        customer_id=customer.id,
        subtotal_cents=100,
        tax_rate_bps=0,
        tax_cents=0,
        total_cents=100,
    )
    db_session.add(sale)
    db_session.commit()
    return sale


class TestFormat:

    def test_zero_pads_to_four_digits(self):
        assert format_invoice_number("20260119", 1) == "202601190001"
        assert format_invoice_number("20260119", 42) == "202601190042"

    def test_grows_past_9999(self):
        assert format_invoice_number("20260119", 10000) == "2026011910000"


class TestNextInvoiceNumber:

    def test_first_number_of_day(self, db_session):
        assert next_invoice_number(DAY) == "202601190001"

    def test_sequential_within_day(self, db_session):
        assert [next_invoice_number(DAY) for _ in range(3)] == [
            "202601190001",
            "202601190002",
            "202601190003",
        ]

    def test_resets_for_new_day(self, db_session):
        next_invoice_number(DAY)
        next_invoice_number(DAY)

        assert next_invoice_number(date(2026, 1, 20)) == "202601200001"

    def test_resumes_after_existing_sales(self, db_session, make_customer):
        customer = make_customer()
        _store_sale(db_session, customer, "202601190007")
        _store_sale(db_session, customer, "202601180099")

        assert next_invoice_number(DAY) == "202601190008"

    def test_counter_continues_past_9999(self, db_session):
        db_session.add(InvoiceSequence(date_key="20260119", next_number=9999))
        db_session.commit()

        assert next_invoice_number(DAY) == "202601199999"
        assert next_invoice_number(DAY) == "2026011910000"
        assert next_invoice_number(DAY) == "2026011910001"

    def test_seed_reads_five_digit_suffixes(self, db_session, make_customer):
        customer = make_customer()
        _store_sale(db_session, customer, "2026011910002")

        assert next_invoice_number(DAY) == "2026011910003"
