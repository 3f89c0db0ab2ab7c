from __future__ import annotations

from ..extensions import db
from fulfillment.time_utils import to_utc_z


class Order(db.Model):
    """
    Customer order moving through billing, cartera, logistics, packaging
    and delivery.

    status is owned by the order state machine (services/order_status.py);
    it is never written outside order_service / packaging completion.
    deleted_at marks a soft delete: such orders are invisible to listings
    and to cash reconciliation.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.Index("ix_orders_status_deleted", "status", "deleted_at"),
        db.Index("ix_orders_messenger_status", "assigned_messenger_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(64), nullable=False)
    invoice_code = db.Column(db.String(64), nullable=True)

    # Customer
    customer_name = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(32), nullable=False)
    customer_address = db.Column(db.String(255), nullable=False)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_department = db.Column(db.String(128), nullable=False)
    customer_city = db.Column(db.String(128), nullable=False)

    # Workflow
    status = db.Column(db.String(32), nullable=False, index=True)
    payment_method = db.Column(db.String(32), nullable=False, default="efectivo")
    delivery_method = db.Column(db.String(32), nullable=False, default="domicilio_ciudad")
    shipping_payment_method = db.Column(db.String(32), nullable=True)  # contado, contraentrega
    carrier_id = db.Column(db.Integer, db.ForeignKey("carriers.id"), nullable=True)
    tracking_number = db.Column(db.String(64), nullable=True)

    # Amounts (cents)
    total_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    delivery_fee_cents = db.Column(db.BigInteger, nullable=False, default=0)
    delivery_fee_exempt = db.Column(db.Boolean, nullable=False, default=False)

    notes = db.Column(db.Text, nullable=True)
    logistics_notes = db.Column(db.Text, nullable=True)
    delivery_date = db.Column(db.Date, nullable=True)

    # Billing-owned; see order_service._may_set_shipping_date
    shipping_date = db.Column(db.DateTime(timezone=True), nullable=True)

    # Courier assignment
    assigned_messenger_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    messenger_status = db.Column(db.String(16), nullable=True)  # assigned, accepted, rejected, in_delivery, delivered, failed

    # Wallet review outcome
    validation_status = db.Column(db.String(16), nullable=True)  # approved, rejected
    validation_notes = db.Column(db.Text, nullable=True)

    # ERP invoice metadata (read-only to this service)
    siigo_invoice_id = db.Column(db.String(64), nullable=True, index=True)
    siigo_invoice_number = db.Column(db.String(64), nullable=True)
    siigo_invoice_created_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Soft delete
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    deleted_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    carrier = db.relationship("Carrier")
    messenger = db.relationship("User", foreign_keys=[assigned_messenger_id])
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "invoice_code": self.invoice_code,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_address": self.customer_address,
            "customer_email": self.customer_email,
            "customer_department": self.customer_department,
            "customer_city": self.customer_city,
            "status": self.status,
            "payment_method": self.payment_method,
            "delivery_method": self.delivery_method,
            "shipping_payment_method": self.shipping_payment_method,
            "carrier_id": self.carrier_id,
            "carrier_name": self.carrier.name if self.carrier else None,
            "tracking_number": self.tracking_number,
            "total_amount_cents": self.total_amount_cents,
            "delivery_fee_cents": self.delivery_fee_cents,
            "delivery_fee_exempt": self.delivery_fee_exempt,
            "notes": self.notes,
            "logistics_notes": self.logistics_notes,
            "delivery_date": self.delivery_date.isoformat() if self.delivery_date else None,
            "shipping_date": to_utc_z(self.shipping_date),
            "assigned_messenger_id": self.assigned_messenger_id,
            "messenger_name": self.messenger.display_name if self.messenger else None,
            "messenger_status": self.messenger_status,
            "validation_status": self.validation_status,
            "validation_notes": self.validation_notes,
            "siigo_invoice_number": self.siigo_invoice_number,
            "siigo_invoice_created_at": to_utc_z(self.siigo_invoice_created_at),
            "created_by_user_id": self.created_by_user_id,
            "created_by_name": self.created_by.display_name if self.created_by else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "deleted_at": to_utc_z(self.deleted_at),
            "version_id": self.version_id,
        }


class OrderItem(db.Model):
    """
    Order line.

    Lines are never edited in place: "replace all items" stamps replaced_at
    on the current lines and inserts fresh ones, which leaves their
    packaging verification rows behind and restarts verification.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.Index("ix_order_items_order_active", "order_id", "replaced_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.BigInteger, nullable=False, default=0)
    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    replaced_at = db.Column(db.DateTime(timezone=True), nullable=True)

    order = db.relationship("Order", backref=db.backref("all_items", lazy=True, order_by="OrderItem.id"))

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "description": self.description,
        }


class WalletValidation(db.Model):
    """Cartera payment/credit review of an order in revision_cartera. Append-only."""
    __tablename__ = "wallet_validations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    payment_method = db.Column(db.String(32), nullable=True)
    validation_type = db.Column(db.String(16), nullable=False)  # approved, rejected
    payment_reference = db.Column(db.String(128), nullable=True)
    payment_amount_cents = db.Column(db.BigInteger, nullable=True)
    payment_date = db.Column(db.Date, nullable=True)
    bank_name = db.Column(db.String(128), nullable=True)
    validation_notes = db.Column(db.Text, nullable=True)
    validated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    validated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    validated_by = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "payment_method": self.payment_method,
            "validation_type": self.validation_type,
            "payment_reference": self.payment_reference,
            "payment_amount_cents": self.payment_amount_cents,
            "payment_date": self.payment_date.isoformat() if self.payment_date else None,
            "bank_name": self.bank_name,
            "validation_notes": self.validation_notes,
            "validated_by_user_id": self.validated_by_user_id,
            "validated_by_name": self.validated_by.display_name if self.validated_by else None,
            "validated_at": to_utc_z(self.validated_at),
        }
