from __future__ import annotations

from ..extensions import db
from protrack.time_utils import to_utc_z

GENDERS = ("Male", "Female", "Other")

WALK_IN_NAME = "Walk-in Customer"
WALK_IN_AGE = 0
WALK_IN_GENDER = "Other"
WALK_IN_PHONE = "000-000-0000"


class Customer(db.Model):
    """
    Customer master data (patients of the shop).

    WALK-IN: sales recorded without a customer get a fresh placeholder row
    (WALK_IN_* values). Placeholders are ordinary customers; nothing merges
    or deletes them.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_name", "name"),
        db.Index("ix_customers_phone", "phone"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(100), nullable=False)
    age = db.Column(db.Integer, nullable=False)
    gender = db.Column(db.String(16), nullable=False)
    phone = db.Column(db.String(20), nullable=False)
    email = db.Column(db.String(255), nullable=True)

    address_street = db.Column(db.String(255), nullable=True)
    address_city = db.Column(db.String(128), nullable=True)
    address_state = db.Column(db.String(128), nullable=True)
    address_zip_code = db.Column(db.String(32), nullable=True)
    address_country = db.Column(db.String(128), nullable=True)

    doctor_name = db.Column(db.String(128), nullable=True)
    doctor_hospital = db.Column(db.String(255), nullable=True)
    doctor_phone = db.Column(db.String(20), nullable=True)

    medical_history = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def address_dict(self) -> dict:
        return {
            "street": self.address_street,
            "city": self.address_city,
            "state": self.address_state,
            "zip_code": self.address_zip_code,
            "country": self.address_country,
        }

    def formatted_address(self) -> str:
        """Single-line address: 'street, city, state - zip'."""
        text = ""
        for part in (self.address_street, self.address_city, self.address_state):
            if part:
                text = f"{text}, {part}" if text else part
        if self.address_zip_code:
            text = f"{text} - {self.address_zip_code}" if text else self.address_zip_code
        return text

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "age": self.age,
            "gender": self.gender,
            "phone": self.phone,
            "email": self.email,
            "address": self.address_dict(),
            "doctor_reference": {
                "name": self.doctor_name,
                "hospital": self.doctor_hospital,
                "phone": self.doctor_phone,
            },
            "medical_history": self.medical_history,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
