# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/protrack/routes/sales.py
"""
Sales API routes

POST /api/sales records a complete sale in one call (see
sales_service.create_sale). Every failure answers with exactly one
structured error: {"error", "kind", "details"}.
"""

from io import BytesIO

from flask import Blueprint, request, jsonify, g, current_app, send_file
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..services import sales_service, reporting_service
from ..services.sales_service import SaleError, SALE_SORT_FIELDS
from ..services.reporting_service import ReportError
from ..services.invoice_render_service import render_invoice_pdf
from ..models.sales import PAYMENT_METHODS, PAYMENT_STATUSES
from ..validation import (
    ValidationError,
    parse_pagination,
    parse_sort,
    parse_strict_int,
    parse_date_arg,
    fits_db_integer,
)
from ..decorators import require_auth


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")

# Request key -> create_sale argument; camelCase accepted for older clients
_SALE_FIELD_ALIASES = {
    "customer_id": ("customer_id", "customer"),
    "tax_rate": ("tax_rate", "taxRate"),
    "discount_rate": ("discount_rate", "discountRate"),
    "payment_method": ("payment_method", "paymentMethod"),
    "payment_status": ("payment_status", "paymentStatus"),
    "notes": ("notes",),
}

# Report query key -> sales_report argument
_REPORT_ARG_ALIASES = {
    "start": ("start", "startDate"),
    "end": ("end", "endDate"),
}


def _first_present(data: dict, keys: tuple[str, ...]):
    for key in keys:
        if key in data:
            return data[key]
    return None


def shop_info() -> dict:
    return {
        "name": current_app.config["SHOP_NAME"],
        "address": current_app.config["SHOP_ADDRESS"],
        "phone": current_app.config["SHOP_PHONE"],
        "email": current_app.config["SHOP_EMAIL"],
    }


@sales_bp.post("")
@require_auth
def create_sale_route():
    """
    Record a sale.

    Body:
    {
        "customer_id": 12,                 // optional, omitted -> walk-in customer
        "items": [{"product_id": 3, "quantity": 2}],
        "tax_rate": 0.18,                  // optional, default 0.18
        "discount_rate": 0.05,             // optional, default 0
        "payment_method": "Cash",          // optional
        "payment_status": "Paid",          // optional
        "notes": "..."                     // optional
    }
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Invalid JSON payload", "kind": "VALIDATION_ERROR", "details": {}}), 400

    kwargs = {name: _first_present(data, keys) for name, keys in _SALE_FIELD_ALIASES.items()}

    try:
        sale = sales_service.create_sale(items=data.get("items"), user_id=g.current_user.id, **kwargs)
    except SaleError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500

    # The sale is committed from here on; a failed re-read must not look like a failed sale
    sale_id, invoice_number = sale.id, sale.invoice_number
    try:
        detail = sales_service.sale_detail(sale)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Sale %s recorded but its detail could not be loaded", invoice_number)
        return jsonify({
            "sale": {"id": sale_id, "invoice_number": invoice_number},
            "message": "Sale recorded; reload it to see the full detail",
        }), 201

    return jsonify({"sale": detail}), 201


@sales_bp.get("")
@require_auth
def list_sales_route():
    """
    List sales.

    Query params:
    - payment_method, payment_status: exact match
    - customer_id: int
    - invoice_number: prefix match (e.g. "20260119")
    - start, end: ISO-8601 date/datetime, inclusive
    - sort: created_at, invoice_number or total_cents; "-" prefix for descending
    - page, per_page
    """
    args = request.args
    try:
        page, per_page = parse_pagination(args)
        sort = parse_sort(args.get("sort"), SALE_SORT_FIELDS, "-created_at")

        payment_method = args.get("payment_method") or None
        if payment_method and payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")
        payment_status = args.get("payment_status") or None
        if payment_status and payment_status not in PAYMENT_STATUSES:
            raise ValidationError(f"payment_status must be one of: {', '.join(PAYMENT_STATUSES)}")

        customer_id = args.get("customer_id")
        customer_id = parse_strict_int(customer_id, "customer_id") if customer_id else None
        if customer_id is not None and not fits_db_integer(customer_id):
            raise ValidationError("customer_id is out of range")

        start = parse_date_arg(args.get("start"), "start")
        end = parse_date_arg(args.get("end"), "end")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    result = sales_service.list_sales(
        payment_method=payment_method,
        payment_status=payment_status,
        customer_id=customer_id,
        invoice_number=args.get("invoice_number") or None,
        start=start,
        end=end,
        sort=sort,
        page=page,
        per_page=per_page,
    )
    return jsonify(result), 200


@sales_bp.get("/report")
@require_auth
def sales_report_route():
    """
    Sales report.

    Query params:
    - period: daily | weekly | monthly | yearly, from the start of the current
      local day, week (Sunday), month or year; other values -> last 30 days
    - start, end (or startDate, endDate): explicit ISO range (wins over period)
    """
    range_args = {
        name: _first_present(request.args, keys) or None
        for name, keys in _REPORT_ARG_ALIASES.items()
    }
    try:
        report = reporting_service.sales_report(
            period=request.args.get("period") or None,
            **range_args,
        )
    except ReportError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify(report), 200


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    detail = sales_service.get_sale_detail(sale_id)
    if detail is None:
        return jsonify({"error": "Sale not found", "kind": "NOT_FOUND", "details": {"sale_id": sale_id}}), 404
    return jsonify({"sale": detail}), 200


@sales_bp.get("/<int:sale_id>/invoice")
@require_auth
def sale_invoice_route(sale_id: int):
    """Printable PDF invoice for a recorded sale."""
    detail = sales_service.get_sale_detail(sale_id)
    if detail is None:
        return jsonify({"error": "Sale not found", "kind": "NOT_FOUND", "details": {"sale_id": sale_id}}), 404

    try:
        pdf = render_invoice_pdf(detail, shop_info())
    except Exception:
        current_app.logger.exception("Failed to render invoice for sale %s", sale_id)
        return jsonify({"error": "Internal server error"}), 500

    return send_file(
        BytesIO(pdf),
        mimetype="application/pdf",
        as_attachment=True,
        download_name=f"invoice-{detail['invoice_number']}.pdf",
    )
