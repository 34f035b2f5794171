# Overview: Customer records: CRUD, search, purchase history and walk-in placeholders.

from __future__ import annotations

from sqlalchemy import func, or_

from ..extensions import db
from ..models import Customer, Sale, SaleLine
from ..models.customers import WALK_IN_NAME, WALK_IN_AGE, WALK_IN_GENDER, WALK_IN_PHONE
from ..validation import ConflictError, fits_db_integer, paginate_query
from protrack.time_utils import to_utc_z

CUSTOMER_MUTABLE_FIELDS = {
    "name", "age", "gender", "phone", "email",
    "address_street", "address_city", "address_state", "address_zip_code", "address_country",
    "doctor_name", "doctor_hospital", "doctor_phone",
    "medical_history",
}

CUSTOMER_SORT_FIELDS = {"name", "age", "created_at"}

# Nested request keys -> flat columns
_NESTED_FIELDS = {
    "address": {
        "street": "address_street",
        "city": "address_city",
        "state": "address_state",
        "zip_code": "address_zip_code",
        "zipCode": "address_zip_code",
        "country": "address_country",
    },
    "doctor_reference": {
        "name": "doctor_name",
        "hospital": "doctor_hospital",
        "phone": "doctor_phone",
    },
}


def flatten_customer_payload(payload: dict) -> dict:
    """Accept `address` / `doctor_reference` objects and map them onto columns."""
    if not isinstance(payload, dict):
        return payload
    flat = {}
    for key, value in payload.items():
        mapping = _NESTED_FIELDS.get(key)
        if mapping is None:
            flat[key] = value
            continue
        if value is None:
            for column in set(mapping.values()):
                flat[column] = None
            continue
        if not isinstance(value, dict):
            flat[key] = value  # rejected by the field allow-list
            continue
        for sub_key, sub_value in value.items():
            flat[mapping.get(sub_key, f"{key}.{sub_key}")] = sub_value
    return flat


def apply_customer_patch(c: Customer, patch: dict) -> None:
    for k, v in patch.items():
        if k not in CUSTOMER_MUTABLE_FIELDS:
            continue
        setattr(c, k, v)


def list_customers(
    *,
    gender: str | None = None,
    search: str | None = None,
    sort: tuple[str, bool] = ("created_at", True),
    page: int = 1,
    per_page: int = 25,
) -> dict:
    query = db.session.query(Customer)
    if gender:
        query = query.filter(Customer.gender == gender)
    if search:
        query = query.filter(_search_clause(search))

    field_name, descending = sort
    column = getattr(Customer, field_name)
    query = query.order_by(column.desc() if descending else column.asc(), Customer.id.asc())

    customers, pagination = paginate_query(query, page, per_page)
    return {
        "items": [c.to_dict() for c in customers],
        "count": len(customers),
        "pagination": pagination,
    }


def _search_clause(text: str):
    pattern = f"%{text.strip()}%"
    return or_(
        Customer.name.ilike(pattern),
        Customer.phone.ilike(pattern),
        Customer.email.ilike(pattern),
    )


def search_customers(text: str) -> list[dict]:
    customers = (
        db.session.query(Customer)
        .filter(_search_clause(text))
        .order_by(Customer.name.asc(), Customer.id.asc())
        .all()
    )
    return [c.to_dict() for c in customers]


def get_customer(customer_id) -> Customer | None:
    if not fits_db_integer(customer_id):
        return None
    return db.session.get(Customer, customer_id)


def create_customer(*, patch: dict) -> dict:
    c = Customer()
    apply_customer_patch(c, patch)
    db.session.add(c)
    db.session.commit()
    return c.to_dict()


def create_walk_in_customer() -> Customer:
    """
    Placeholder customer for a sale recorded without one.

    Committed on its own: it survives even if the sale that needed it fails.
    """
    c = Customer(
        name=WALK_IN_NAME,
        age=WALK_IN_AGE,
        gender=WALK_IN_GENDER,
        phone=WALK_IN_PHONE,
    )
    db.session.add(c)
    db.session.commit()
    return c


def update_customer(*, customer_id: int, patch: dict) -> dict | None:
    c = get_customer(customer_id)
    if not c:
        return None
    apply_customer_patch(c, patch)
    db.session.commit()
    return c.to_dict()


def delete_customer(*, customer_id: int) -> bool:
    """
    Delete a customer with no recorded sales.

    Raises:
        ConflictError: If any sale references the customer
    """
    c = get_customer(customer_id)
    if not c:
        return False

    if db.session.query(Sale.id).filter(Sale.customer_id == customer_id).first():
        raise ConflictError("Customer has recorded sales and cannot be deleted.")

    db.session.delete(c)
    db.session.commit()
    return True


def customer_history(customer_id: int) -> dict | None:
    """Customer record plus a summary row per sale, newest first."""
    c = get_customer(customer_id)
    if not c:
        return None

    rows = (
        db.session.query(
            Sale.id,
            Sale.invoice_number,
            Sale.total_cents,
            Sale.created_at,
            func.count(SaleLine.id),
            func.coalesce(func.sum(SaleLine.quantity), 0),
        )
        .outerjoin(SaleLine, SaleLine.sale_id == Sale.id)
        .filter(Sale.customer_id == customer_id)
        .group_by(Sale.id)
        .order_by(Sale.created_at.desc(), Sale.id.desc())
        .all()
    )

    data = c.to_dict()
    data["sales"] = [
        {
            "id": sale_id,
            "invoice_number": invoice_number,
            "total_cents": total_cents,
            "created_at": to_utc_z(created_at),
            "line_count": line_count,
            "item_quantity": int(quantity),
        }
        for sale_id, invoice_number, total_cents, created_at, line_count, quantity in rows
    ]
    return data
