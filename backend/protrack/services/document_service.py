# Overview: Invoice number allocation; atomic per-date sequence.

from __future__ import annotations

from datetime import date

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import InvoiceSequence, Sale
from protrack.time_utils import date_key, local_today
from .concurrency import run_with_retry

INVOICE_SEQUENCE_PAD = 4


class DocumentSequenceError(Exception):
    """Raised when an invoice number cannot be allocated."""
    pass


def format_invoice_number(prefix: str, number: int) -> str:
    """
    prefix + zero-padded number.

    Past 9999 the suffix simply grows (e.g. 2026101910000); it is never
    truncated and allocation never fails on width.
    """
    return f"{prefix}{number:0{INVOICE_SEQUENCE_PAD}d}"


def _max_existing_number(prefix: str) -> int:
    """Highest sequence already used by a Sale for this date prefix (0 if none)."""
    numbers = (
        db.session.query(Sale.invoice_number)
        .filter(Sale.invoice_number.like(f"{prefix}%"))
        .all()
    )
    highest = 0
    for (invoice_number,) in numbers:
        if len(invoice_number) < len(prefix) or invoice_number[:len(prefix)] != prefix:
            continue
        suffix = invoice_number[len(prefix):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return highest


def _bump(prefix: str):
    stmt = (
        update(InvoiceSequence)
        .where(InvoiceSequence.date_key == prefix)
        .values(next_number=InvoiceSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt)


def _allocated_number(prefix: str) -> int:
    current = (
        db.session.query(InvoiceSequence.next_number)
        .filter_by(date_key=prefix)
        .scalar()
    )
    return current - 1


def next_invoice_number(for_date: date | None = None) -> str:
    """
    Atomically allocate the next invoice number for a calendar date.

    The per-date counter row is bumped with a single UPDATE, which the
    database serializes, so concurrent callers never see the same number.
    The first allocation of a day seeds the counter from the highest
    invoice number already stored for that date, so numbering resumes
    correctly over pre-existing sales. The allocation is committed
    immediately; a number consumed by a sale that later fails is skipped,
    never reused.
    """
    prefix = date_key(for_date or local_today())

    def _op() -> str:
        result = _bump(prefix)
        if result.rowcount:
            db.session.flush()
            next_num = _allocated_number(prefix)
        else:
            next_num = _max_existing_number(prefix) + 1
            seq = InvoiceSequence(date_key=prefix, next_number=next_num + 1)
            db.session.add(seq)
            try:
                db.session.flush()
            except IntegrityError:
                # Another caller created today's row first
                db.session.rollback()
                result = _bump(prefix)
                if not result.rowcount:
                    raise
                db.session.flush()
                next_num = _allocated_number(prefix)

        db.session.commit()
        return format_invoice_number(prefix, next_num)

    try:
        return run_with_retry(_op)
    except (OperationalError, StaleDataError, IntegrityError) as exc:
        db.session.rollback()
        raise DocumentSequenceError(f"Could not allocate invoice number for {prefix}") from exc
