from __future__ import annotations

from ..extensions import db
from protrack.time_utils import to_utc_z

PRODUCT_CATEGORIES = ("Limb", "Joint", "Spinal", "Cranial", "Dental", "Other")
DEFAULT_LOW_STOCK_THRESHOLD = 5
NO_PHOTO = "no-photo.jpg"


class Product(db.Model):
    """
    Product master data and on-hand stock.

    STOCK: stock_quantity is the authoritative on-hand count. It is never
    written through the generic update path; only stock_service mutates it,
    using conditional UPDATE statements so concurrent sales cannot oversell.

    MODEL NUMBER: model_number is the shop's SKU and is globally unique.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("model_number", name="uq_products_model_number"),
        db.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        db.CheckConstraint("cost_price_cents >= 0", name="ck_products_cost_non_negative"),
        db.CheckConstraint("selling_price_cents >= 0", name="ck_products_price_non_negative"),
        db.Index("ix_products_category_name", "category", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(100), nullable=False)
    model_number = db.Column(db.String(64), nullable=False)
    description = db.Column(db.String(500), nullable=False)
    category = db.Column(db.String(16), nullable=False, index=True)
    size = db.Column(db.String(32), nullable=True)

    # Authoritative storage in cents (frontend may only format for display)
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)
    selling_price_cents = db.Column(db.Integer, nullable=False, default=0)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=DEFAULT_LOW_STOCK_THRESHOLD)

    image = db.Column(db.String(255), nullable=False, default=NO_PHOTO)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_low_stock(self) -> bool:
        return self.stock_quantity <= self.low_stock_threshold

    def __repr__(self) -> str:
        return f"<Product id={self.id} model_number={self.model_number!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "model_number": self.model_number,
            "description": self.description,
            "category": self.category,
            "size": self.size,
            "cost_price_cents": self.cost_price_cents,
            "selling_price_cents": self.selling_price_cents,
            "stock_quantity": self.stock_quantity,
            "low_stock_threshold": self.low_stock_threshold,
            "is_low_stock": self.is_low_stock,
            "image": self.image,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
