from __future__ import annotations

from ..extensions import db
from fulfillment.time_utils import to_utc_z


class PackagingVerification(db.Model):
    """
    Per order line packing progress.

    INVARIANTS:
    - scanned_count <= required_scans (enforced by the guarded increment
      in packaging_service and by the check constraint below)
    - is_verified == (scanned_count >= required_scans)

    required_scans is fixed to the line quantity when the row is created.
    Rows are never deleted.
    """
    __tablename__ = "packaging_verifications"
    __table_args__ = (
        db.UniqueConstraint("item_id", name="uq_packaging_verifications_item"),
        db.CheckConstraint("scanned_count >= 0", name="ck_packaging_scanned_nonneg"),
        db.CheckConstraint("scanned_count <= required_scans", name="ck_packaging_scanned_bounded"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=False)

    scanned_count = db.Column(db.Integer, nullable=False, default=0)
    required_scans = db.Column(db.Integer, nullable=False)
    is_verified = db.Column(db.Boolean, nullable=False, default=False)

    # Packer-entered attributes
    packed_quantity = db.Column(db.Integer, nullable=True)
    packed_weight = db.Column(db.String(64), nullable=True)
    packed_flavor = db.Column(db.String(64), nullable=True)
    packed_size = db.Column(db.String(64), nullable=True)
    verification_notes = db.Column(db.Text, nullable=True)

    verification_method = db.Column(db.String(16), nullable=True)  # manual, barcode
    verified_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    item = db.relationship("OrderItem", backref=db.backref("verification", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "item_id": self.item_id,
            "scanned_count": self.scanned_count,
            "required_scans": self.required_scans,
            "is_verified": self.is_verified,
            "packed_quantity": self.packed_quantity,
            "packed_weight": self.packed_weight,
            "packed_flavor": self.packed_flavor,
            "packed_size": self.packed_size,
            "verification_notes": self.verification_notes,
            "verification_method": self.verification_method,
            "verified_by_user_id": self.verified_by_user_id,
            "verified_at": to_utc_z(self.verified_at),
        }


class BarcodeScanEvent(db.Model):
    """
    One physical unit scanned during packing.

    IMMUTABLE: append-only. scan_number is 1..required_scans per item, so the
    unique constraint also rejects a duplicate scan that slipped past the
    guarded increment.
    """
    __tablename__ = "barcode_scan_events"
    __table_args__ = (
        db.UniqueConstraint("item_id", "scan_number", name="uq_barcode_scan_events_item_seq"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=False, index=True)
    barcode = db.Column(db.String(64), nullable=False)
    scan_number = db.Column(db.Integer, nullable=False)
    scanned_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    scanned_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "item_id": self.item_id,
            "barcode": self.barcode,
            "scan_number": self.scan_number,
            "scanned_by_user_id": self.scanned_by_user_id,
            "scanned_at": to_utc_z(self.scanned_at),
        }
