from __future__ import annotations

from ..extensions import db
from fulfillment.time_utils import to_utc_z


class Product(db.Model):
    """
    Catalog product as mirrored from the ERP.

    Read-only to the fulfillment core: packaging resolves scanned codes
    (barcode or internal code) to a product name here.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_barcode", "barcode"),
        db.Index("ix_products_internal_code", "internal_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    barcode = db.Column(db.String(64), nullable=True, unique=True)
    internal_code = db.Column(db.String(64), nullable=True)
    category = db.Column(db.String(128), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "barcode": self.barcode,
            "internal_code": self.internal_code,
            "category": self.category,
            "is_active": self.is_active,
        }


class Carrier(db.Model):
    """Shipping carriers (transport companies plus the in-house courier)."""
    __tablename__ = "carriers"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_carriers_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    code = db.Column(db.String(64), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
