from __future__ import annotations

from ..extensions import db
from protrack.time_utils import to_utc_z


class InvoiceSequence(db.Model):
    """
    Atomic per-date invoice counter.

    WHY: "read max invoice number, then write max+1" races under concurrent
    sales. The counter row is bumped with a single UPDATE so the database
    serializes allocations for the same date.
    """
    __tablename__ = "invoice_sequences"
    __table_args__ = (
        db.UniqueConstraint("date_key", name="uq_invoice_sequences_date_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    date_key = db.Column(db.String(8), nullable=False)  # YYYYMMDD
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date_key": self.date_key,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
