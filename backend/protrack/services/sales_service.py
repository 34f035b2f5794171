"""
Sales Service - point-of-sale transaction workflow

One call to create_sale() turns a customer reference and a list of
{product_id, quantity} items into one immutable Sale:

    validate -> resolve customer -> price items -> reserve stock
             -> compute totals -> allocate invoice number -> persist

There is no multi-row transaction spanning the whole workflow. Each stock
reservation commits on its own (stock_service.reserve) and is paired with a
compensating release: if anything fails after the first reservation, every
quantity reserved by this call is put back before the error propagates.
Outcomes are therefore "committed" or "stock unchanged", never partial.

Accepted leftovers of a failed call:
- a walk-in Customer created in the resolve step (not rolled back)
- an invoice number consumed in the allocate step (skipped, never reused)

Retried calls are not idempotent: each call reserves and allocates anew.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload

from ..extensions import db
from ..models import Sale, SaleLine, Customer
from ..models.sales import PAYMENT_METHODS, PAYMENT_STATUSES, BPS_SCALE
from ..validation import ValidationError, fits_db_integer, parse_rate_bps, parse_strict_int, paginate_query
from protrack.time_utils import local_today
from . import stock_service
from .stock_service import StockError, ProductNotFoundError, InsufficientStockError
from .customers_service import create_walk_in_customer, get_customer
from .document_service import next_invoice_number, DocumentSequenceError

# Business defaults (not configuration)
DEFAULT_TAX_RATE = Decimal("0.18")
DEFAULT_DISCOUNT_RATE = Decimal("0")
DEFAULT_PAYMENT_METHOD = "Cash"
DEFAULT_PAYMENT_STATUS = "Paid"

SALE_SORT_FIELDS = {"created_at", "invoice_number", "total_cents"}


class SaleError(Exception):
    """Raised for sale operation errors."""
    kind = "SALE_ERROR"
    status_code = 400
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": str(self), "kind": self.kind, "details": self.details}
        if self.retryable:
            body["retryable"] = True
        return body


class SaleValidationError(SaleError):
    kind = "VALIDATION_ERROR"
    status_code = 400


class SaleNotFoundError(SaleError):
    kind = "NOT_FOUND"
    status_code = 404


class SaleInsufficientStockError(SaleError):
    kind = "INSUFFICIENT_STOCK"
    status_code = 400


class SalePersistenceError(SaleError):
    kind = "PERSISTENCE_ERROR"
    status_code = 503
    retryable = True


@dataclass(frozen=True)
class SaleItemRequest:
    position: int
    product_id: int
    quantity: int


@dataclass(frozen=True)
class PricedItem:
    position: int
    product_id: int
    product_name: str
    quantity: int
    unit_price_cents: int

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity


@dataclass(frozen=True)
class SaleTotals:
    subtotal_cents: int
    tax_rate_bps: int
    tax_cents: int
    discount_rate_bps: int
    discount_cents: int
    total_cents: int


# =============================================================================
# Pure helpers
# =============================================================================

def apply_rate(amount_cents: int, rate_bps: int) -> int:
    """amount x rate, rounded half-up to the cent."""
    return (amount_cents * rate_bps + BPS_SCALE // 2) // BPS_SCALE


def compute_totals(items: list[PricedItem], tax_rate_bps: int, discount_rate_bps: int) -> SaleTotals:
    """
    subtotal = sum(line totals)
    tax      = subtotal x tax rate
    discount = subtotal x discount rate
    total    = subtotal + tax - discount
    """
    subtotal = sum(item.line_total_cents for item in items)
    tax = apply_rate(subtotal, tax_rate_bps)
    discount = apply_rate(subtotal, discount_rate_bps)
    return SaleTotals(
        subtotal_cents=subtotal,
        tax_rate_bps=tax_rate_bps,
        tax_cents=tax,
        discount_rate_bps=discount_rate_bps,
        discount_cents=discount,
        total_cents=subtotal + tax - discount,
    )


def _error_for_item(exc: Exception, position: int):
    """Translate a stock ledger error into the caller-facing sale error."""
    if isinstance(exc, ProductNotFoundError):
        return SaleNotFoundError(
            f"Product not found for item {position}",
            details={"item": position, **exc.details},
        )
    if isinstance(exc, InsufficientStockError):
        return SaleInsufficientStockError(str(exc), details={"item": position, **exc.details})
    return SaleValidationError(str(exc), details={"item": position, **getattr(exc, "details", {})})


def parse_items(raw_items) -> list[SaleItemRequest]:
    """Validate the items list shape; positions are 1-based in input order."""
    if not isinstance(raw_items, list) or not raw_items:
        raise SaleValidationError("Please add at least one item")

    items = []
    for position, raw in enumerate(raw_items, start=1):
        if not isinstance(raw, dict):
            raise SaleValidationError(f"Item {position} must be an object", details={"item": position})

        product_id = raw.get("product_id", raw.get("product"))
        if product_id in (None, ""):
            raise SaleValidationError(f"Product is required for item {position}", details={"item": position})
        try:
            product_id = parse_strict_int(product_id, "product_id")
            quantity = parse_strict_int(raw.get("quantity"), "quantity")
        except ValidationError as e:
            raise SaleValidationError(f"{e} for item {position}", details={"item": position})
        if not fits_db_integer(product_id):
            # No row can carry this id
            raise SaleNotFoundError(
                f"Product not found for item {position}",
                details={"item": position, "product_id": product_id},
            )

        if quantity <= 0:
            raise SaleValidationError(
                f"Quantity must be greater than 0 for item {position}",
                details={"item": position, "quantity": quantity},
            )
        items.append(SaleItemRequest(position=position, product_id=product_id, quantity=quantity))
    return items


def _resolve_rate(value, default: Decimal, name: str) -> int:
    try:
        return parse_rate_bps(default if value is None else value, name)
    except ValidationError as e:
        raise SaleValidationError(str(e), details={"field": name})


def _resolve_choice(value, allowed: tuple[str, ...], default: str, name: str) -> str:
    if value in (None, ""):
        return default
    if value not in allowed:
        raise SaleValidationError(
            f"{name} must be one of: {', '.join(allowed)}",
            details={"field": name, "value": value},
        )
    return value


# =============================================================================
# Workflow steps
# =============================================================================

def _resolve_customer(customer_id) -> Customer:
    if customer_id in (None, ""):
        return create_walk_in_customer()

    try:
        customer_id = parse_strict_int(customer_id, "customer_id")
    except ValidationError as e:
        raise SaleValidationError(str(e), details={"field": "customer_id"})

    customer = get_customer(customer_id)
    if customer is None:
        raise SaleNotFoundError("Customer not found", details={"customer_id": customer_id})
    return customer


def _price_items(items: list[SaleItemRequest]) -> list[PricedItem]:
    """Snapshot price and check stock for every item before anything is reserved."""
    priced = []
    for item in items:
        try:
            quote = stock_service.get_for_sale(item.product_id)
        except ProductNotFoundError as e:
            raise _error_for_item(e, item.position)

        if item.quantity > quote.available_stock:
            raise SaleInsufficientStockError(
                f"Not enough stock for {quote.name}. "
                f"Available: {quote.available_stock}, Requested: {item.quantity}",
                details={
                    "item": item.position,
                    "product_id": quote.product_id,
                    "product_name": quote.name,
                    "available": quote.available_stock,
                    "requested": item.quantity,
                },
            )

        priced.append(PricedItem(
            position=item.position,
            product_id=quote.product_id,
            product_name=quote.name,
            quantity=item.quantity,
            unit_price_cents=quote.price_cents,
        ))
    return priced


def _release_reservations(reserved: list[PricedItem]) -> None:
    """Compensating action: put back every quantity this sale reserved."""
    for item in reversed(reserved):
        try:
            stock_service.release(item.product_id, item.quantity)
        except (StockError, SQLAlchemyError):
            # Keep releasing the rest; the caller still sees the triggering error
            current_app.logger.exception(
                "Failed to release %d unit(s) of product %s", item.quantity, item.product_id
            )
        else:
            current_app.logger.warning(
                "Released %d unit(s) of product %s after failed sale", item.quantity, item.product_id
            )


def _reserve_all(priced: list[PricedItem], reserved: list[PricedItem]) -> None:
    """Reserve in input order, appending each success to `reserved`."""
    for item in priced:
        try:
            stock_service.reserve(item.product_id, item.quantity)
        except StockError as e:
            raise _error_for_item(e, item.position)
        reserved.append(item)


def _persist(
    *,
    invoice_number: str,
    customer_id: int,
    priced: list[PricedItem],
    totals: SaleTotals,
    payment_method: str,
    payment_status: str,
    notes: str | None,
    user_id: int | None,
) -> Sale:
    sale = Sale(
        invoice_number=invoice_number,
        customer_id=customer_id,
        subtotal_cents=totals.subtotal_cents,
        tax_rate_bps=totals.tax_rate_bps,
        tax_cents=totals.tax_cents,
        discount_rate_bps=totals.discount_rate_bps,
        discount_cents=totals.discount_cents,
        total_cents=totals.total_cents,
        payment_method=payment_method,
        payment_status=payment_status,
        notes=notes,
        created_by_user_id=user_id,
    )
    db.session.add(sale)
    db.session.flush()

    for item in priced:
        db.session.add(SaleLine(
            sale_id=sale.id,
            position=item.position,
            product_id=item.product_id,
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
            line_total_cents=item.line_total_cents,
        ))

    db.session.commit()
    return sale


def create_sale(
    *,
    items,
    customer_id=None,
    tax_rate=None,
    discount_rate=None,
    payment_method: str | None = None,
    payment_status: str | None = None,
    notes: str | None = None,
    user_id: int | None = None,
) -> Sale:
    """
    Record a completed sale.

    Raises one SaleError subclass on failure; stock is unchanged in every
    failure case.
    """
    # 1. Validate input shape (no side effects)
    requests = parse_items(items)
    tax_rate_bps = _resolve_rate(tax_rate, DEFAULT_TAX_RATE, "tax_rate")
    discount_rate_bps = _resolve_rate(discount_rate, DEFAULT_DISCOUNT_RATE, "discount_rate")
    payment_method = _resolve_choice(payment_method, PAYMENT_METHODS, DEFAULT_PAYMENT_METHOD, "payment_method")
    payment_status = _resolve_choice(payment_status, PAYMENT_STATUSES, DEFAULT_PAYMENT_STATUS, "payment_status")
    if notes is not None and not isinstance(notes, str):
        raise SaleValidationError("notes must be a string", details={"field": "notes"})

    # 2. Resolve customer (a walk-in placeholder is committed here)
    customer = _resolve_customer(customer_id)
    customer_id = customer.id

    # 3. Price every item against current stock
    priced = _price_items(requests)

    # 4-7. Everything from here on is paired with a stock release
    reserved: list[PricedItem] = []
    try:
        _reserve_all(priced, reserved)

        totals = compute_totals(priced, tax_rate_bps, discount_rate_bps)

        try:
            invoice_number = next_invoice_number(local_today())
            sale = _persist(
                invoice_number=invoice_number,
                customer_id=customer_id,
                priced=priced,
                totals=totals,
                payment_method=payment_method,
                payment_status=payment_status,
                notes=notes,
                user_id=user_id,
            )
        except (DocumentSequenceError, SQLAlchemyError) as e:
            db.session.rollback()
            current_app.logger.exception("Failed to persist sale")
            raise SalePersistenceError(
                "Could not record the sale, please retry",
                details={"reason": e.__class__.__name__},
            ) from e
    except BaseException:
        # Includes interruption mid-workflow: no reserved stock may leak
        db.session.rollback()
        _release_reservations(reserved)
        raise

    current_app.logger.info(
        "Sale %s recorded: %d line(s), total %d cents", sale.invoice_number, len(priced), sale.total_cents
    )
    return sale


# =============================================================================
# Reads
# =============================================================================

def _detail_query():
    return db.session.query(Sale).options(
        joinedload(Sale.customer),
        joinedload(Sale.created_by),
        joinedload(Sale.lines).joinedload(SaleLine.product),
    )


def sale_detail(sale: Sale) -> dict:
    """Sale with customer, product and creator references resolved for display/rendering."""
    data = sale.to_dict()

    customer = sale.customer
    data["customer"] = {
        "id": customer.id,
        "name": customer.name,
        "phone": customer.phone,
        "email": customer.email,
        "address": customer.address_dict(),
        "formatted_address": customer.formatted_address(),
    } if customer else None

    data["created_by"] = {
        "id": sale.created_by.id,
        "username": sale.created_by.username,
    } if sale.created_by else None

    data["lines"] = [
        {
            **line.to_dict(),
            "product": {
                "id": line.product.id,
                "name": line.product.name,
                "model_number": line.product.model_number,
            } if line.product else None,
        }
        for line in sale.lines
    ]
    return data


def get_sale_detail(sale_id: int) -> dict | None:
    sale = _detail_query().filter(Sale.id == sale_id).first()
    if sale is None:
        return None
    return sale_detail(sale)


def list_sales(
    *,
    payment_method: str | None = None,
    payment_status: str | None = None,
    customer_id: int | None = None,
    invoice_number: str | None = None,
    start=None,
    end=None,
    sort: tuple[str, bool] = ("created_at", True),
    page: int = 1,
    per_page: int = 25,
) -> dict:
    """Paginated sales with allow-listed filters; `start`/`end` are inclusive UTC datetimes."""
    query = db.session.query(Sale).options(joinedload(Sale.customer))

    if payment_method:
        query = query.filter(Sale.payment_method == payment_method)
    if payment_status:
        query = query.filter(Sale.payment_status == payment_status)
    if customer_id is not None:
        query = query.filter(Sale.customer_id == customer_id)
    if invoice_number:
        query = query.filter(Sale.invoice_number.like(f"{invoice_number}%"))
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at <= end)

    field_name, descending = sort
    column = getattr(Sale, field_name)
    query = query.order_by(column.desc() if descending else column.asc(), Sale.id.desc())

    sales, pagination = paginate_query(query, page, per_page)
    items = []
    for sale in sales:
        row = sale.to_dict()
        row["customer"] = {
            "id": sale.customer.id,
            "name": sale.customer.name,
            "phone": sale.customer.phone,
        } if sale.customer else None
        items.append(row)

    return {
        "items": items,
        "count": len(items),
        "pagination": pagination,
    }
