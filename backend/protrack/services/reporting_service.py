# Overview: Service-layer operations for reporting; read-only sales aggregates.

from __future__ import annotations

from datetime import date, datetime, timedelta

from sqlalchemy import func

from protrack.extensions import db
from protrack.models import Sale, SaleLine, Product
from protrack.time_utils import local_midnight_utc, local_today, parse_iso_datetime, utcnow

DEFAULT_PERIOD_WINDOW = timedelta(days=30)
TOP_PRODUCTS_LIMIT = 5


class ReportError(Exception):
    """Raised when report parameters are invalid."""
    pass


def period_start_day(period: str, today: date) -> date | None:
    """
    First local day of the calendar period containing `today`.

    Weeks start on Sunday. Returns None for an unknown period.
    """
    if period == "daily":
        return today
    if period == "weekly":
        return today - timedelta(days=(today.weekday() + 1) % 7)
    if period == "monthly":
        return today.replace(day=1)
    if period == "yearly":
        return today.replace(month=1, day=1)
    return None


def _resolve_range(
    period: str | None,
    start: str | None,
    end: str | None,
) -> tuple[datetime | None, datetime | None]:
    """
    Explicit start/end win over period. A known period runs from the start
    of the current local day, week, month or year up to now; an unknown
    period means the last 30 days. No filter at all means all time.
    """
    if start or end:
        try:
            start_dt = parse_iso_datetime(start) if start else None
            end_dt = parse_iso_datetime(end) if end else None
        except ValueError:
            raise ReportError("start and end must be ISO-8601 dates or datetimes")
        if start_dt and end_dt and start_dt > end_dt:
            raise ReportError("start must be before end")
        return start_dt, end_dt

    if period:
        now = utcnow()
        first_day = period_start_day(period, local_today())
        if first_day is None:
            return now - DEFAULT_PERIOD_WINDOW, now
        return local_midnight_utc(first_day), now

    return None, None


def _apply_range(query, start_dt, end_dt):
    if start_dt:
        query = query.filter(Sale.created_at >= start_dt)
    if end_dt:
        query = query.filter(Sale.created_at <= end_dt)
    return query


def sales_report(
    *,
    period: str | None = None,
    start: str | None = None,
    end: str | None = None,
) -> dict:
    start_dt, end_dt = _resolve_range(period, start, end)

    count, revenue, tax, discount = _apply_range(
        db.session.query(
            func.count(Sale.id),
            func.coalesce(func.sum(Sale.total_cents), 0),
            func.coalesce(func.sum(Sale.tax_cents), 0),
            func.coalesce(func.sum(Sale.discount_cents), 0),
        ),
        start_dt,
        end_dt,
    ).one()
    count = int(count)
    revenue = int(revenue)

    top_rows = _apply_range(
        db.session.query(
            Product.id,
            Product.name,
            Product.model_number,
            func.sum(SaleLine.quantity).label("total_quantity"),
            func.sum(SaleLine.line_total_cents).label("total_revenue_cents"),
        )
        .join(SaleLine, SaleLine.product_id == Product.id)
        .join(Sale, Sale.id == SaleLine.sale_id),
        start_dt,
        end_dt,
    ).group_by(Product.id, Product.name, Product.model_number).order_by(
        func.sum(SaleLine.quantity).desc(), Product.id.asc()
    ).limit(TOP_PRODUCTS_LIMIT).all()

    payment_rows = _apply_range(
        db.session.query(
            Sale.payment_method,
            func.count(Sale.id),
            func.coalesce(func.sum(Sale.total_cents), 0),
        ),
        start_dt,
        end_dt,
    ).group_by(Sale.payment_method).order_by(Sale.payment_method.asc()).all()

    day_expr = func.date(Sale.created_at)
    day_rows = _apply_range(
        db.session.query(
            day_expr.label("day"),
            func.count(Sale.id),
            func.coalesce(func.sum(Sale.total_cents), 0),
        ),
        start_dt,
        end_dt,
    ).group_by(day_expr).order_by(day_expr.asc()).all()

    return {
        "range": {
            "period": period,
            "start": start_dt.isoformat() if start_dt else None,
            "end": end_dt.isoformat() if end_dt else None,
        },
        "summary": {
            "total_sales": count,
            "total_revenue_cents": revenue,
            "total_tax_cents": int(tax),
            "total_discount_cents": int(discount),
            "average_sale_value_cents": revenue // count if count else 0,
        },
        "top_products": [
            {
                "id": product_id,
                "name": name,
                "model_number": model_number,
                "total_quantity": int(quantity),
                "total_revenue_cents": int(line_revenue),
            }
            for product_id, name, model_number, quantity, line_revenue in top_rows
        ],
        "sales_by_payment_method": [
            {"payment_method": method, "count": int(n), "total_cents": int(total)}
            for method, n, total in payment_rows
        ],
        "sales_by_day": [
            {"date": str(day), "count": int(n), "total_cents": int(total)}
            for day, n, total in day_rows
        ],
    }
