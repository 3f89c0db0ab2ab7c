from __future__ import annotations

from ..extensions import db
from fulfillment.time_utils import to_utc_z


CASH_SOURCE_WAREHOUSE = "warehouse"

COLLECTION_PENDING = "pending"
COLLECTION_COLLECTED = "collected"


class DeliveryTracking(db.Model):
    """
    Courier delivery record for an order.

    payment_collected_cents / delivery_fee_collected_cents are the cash the
    courier took in the field; they enter reconciliation through a
    HandoverDetail.
    """
    __tablename__ = "delivery_tracking"
    __table_args__ = (
        db.UniqueConstraint("order_id", "messenger_id", name="uq_delivery_tracking_order_messenger"),
        db.Index("ix_delivery_tracking_delivered", "delivered_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    messenger_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    assigned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    accepted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    started_delivery_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    failed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    failure_reason = db.Column(db.Text, nullable=True)

    payment_collected_cents = db.Column(db.BigInteger, nullable=False, default=0)
    delivery_fee_collected_cents = db.Column(db.BigInteger, nullable=False, default=0)
    payment_method = db.Column(db.String(32), nullable=True)
    delivery_fee_payment_method = db.Column(db.String(32), nullable=True)
    delivery_notes = db.Column(db.Text, nullable=True)

    order = db.relationship("Order", backref=db.backref("deliveries", lazy=True))
    messenger = db.relationship("User")

    @property
    def collected_total_cents(self) -> int:
        return (self.payment_collected_cents or 0) + (self.delivery_fee_collected_cents or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "messenger_id": self.messenger_id,
            "assigned_at": to_utc_z(self.assigned_at),
            "accepted_at": to_utc_z(self.accepted_at),
            "rejected_at": to_utc_z(self.rejected_at),
            "rejection_reason": self.rejection_reason,
            "started_delivery_at": to_utc_z(self.started_delivery_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "failed_at": to_utc_z(self.failed_at),
            "failure_reason": self.failure_reason,
            "payment_collected_cents": self.payment_collected_cents,
            "delivery_fee_collected_cents": self.delivery_fee_collected_cents,
            "payment_method": self.payment_method,
            "delivery_fee_payment_method": self.delivery_fee_payment_method,
            "delivery_notes": self.delivery_notes,
        }


class CashLedgerEntry(db.Model):
    """
    Cash physically received for an order outside a courier delivery
    (warehouse pickup paid at the counter).

    Created once per (order, source); only accept_entry mutates it.
    Never deleted except by the ERP purge of its order.
    """
    __tablename__ = "cash_ledger_entries"
    __table_args__ = (
        db.UniqueConstraint("order_id", "source", name="uq_cash_ledger_order_source"),
        db.Index("ix_cash_ledger_status_created", "status", "created_at"),
        db.Index("ix_cash_ledger_accepted", "accepted_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    source = db.Column(db.String(16), nullable=False, default=CASH_SOURCE_WAREHOUSE)

    amount_cents = db.Column(db.BigInteger, nullable=False)
    accepted_amount_cents = db.Column(db.BigInteger, nullable=True)
    payment_method = db.Column(db.String(32), nullable=True)
    delivery_method = db.Column(db.String(32), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=COLLECTION_PENDING)
    notes = db.Column(db.Text, nullable=True)

    registered_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    accepted_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    accepted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    order = db.relationship("Order", backref=db.backref("cash_entries", lazy=True))
    registered_by = db.relationship("User", foreign_keys=[registered_by_user_id])
    accepted_by = db.relationship("User", foreign_keys=[accepted_by_user_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "order_number": self.order.order_number if self.order else None,
            "source": self.source,
            "amount_cents": self.amount_cents,
            "accepted_amount_cents": self.accepted_amount_cents,
            "payment_method": self.payment_method,
            "delivery_method": self.delivery_method,
            "status": self.status,
            "notes": self.notes,
            "registered_by_user_id": self.registered_by_user_id,
            "accepted_by_user_id": self.accepted_by_user_id,
            "accepted_by_name": self.accepted_by.display_name if self.accepted_by else None,
            "created_at": to_utc_z(self.created_at),
            "accepted_at": to_utc_z(self.accepted_at),
        }


class HandoverAct(db.Model):
    """
    Courier cash handover for one closing date.

    Open acts are pending/partial and aggregate their details as they
    change. close_act finalizes once into completed or discrepancy.
    """
    __tablename__ = "handover_acts"
    __table_args__ = (
        db.UniqueConstraint("messenger_id", "closing_date", name="uq_handover_acts_messenger_date"),
        db.Index("ix_handover_acts_closing_date", "closing_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    messenger_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    closing_date = db.Column(db.Date, nullable=False)

    expected_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    declared_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    difference_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)  # pending, partial, completed, discrepancy
    notes = db.Column(db.Text, nullable=True)

    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    messenger = db.relationship("User", foreign_keys=[messenger_id])
    approved_by = db.relationship("User", foreign_keys=[approved_by_user_id])
    details = db.relationship("HandoverDetail", backref="act", lazy=True, order_by="HandoverDetail.id")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_closed(self) -> bool:
        return self.closed_at is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "messenger_id": self.messenger_id,
            "messenger_name": self.messenger.display_name if self.messenger else None,
            "closing_date": self.closing_date.isoformat() if self.closing_date else None,
            "expected_amount_cents": self.expected_amount_cents,
            "declared_amount_cents": self.declared_amount_cents,
            "difference_amount_cents": self.difference_amount_cents,
            "status": self.status,
            "notes": self.notes,
            "approved_by_user_id": self.approved_by_user_id,
            "approved_by_name": self.approved_by.display_name if self.approved_by else None,
            "approved_at": to_utc_z(self.approved_at),
            "closed_at": to_utc_z(self.closed_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class HandoverDetail(db.Model):
    """One order's cash inside a courier HandoverAct."""
    __tablename__ = "handover_details"
    __table_args__ = (
        db.UniqueConstraint("act_id", "order_id", name="uq_handover_details_act_order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    act_id = db.Column(db.Integer, db.ForeignKey("handover_acts.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    payment_method = db.Column(db.String(32), nullable=True)
    expected_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    declared_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)

    collection_status = db.Column(db.String(16), nullable=False, default=COLLECTION_PENDING)
    collected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    accepted_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    collection_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order")

    def to_dict(self) -> dict:
        return {
            "detail_id": self.id,
            "act_id": self.act_id,
            "order_id": self.order_id,
            "order_number": self.order.order_number if self.order else None,
            "customer_name": self.order.customer_name if self.order else None,
            "total_amount_cents": self.order.total_amount_cents if self.order else None,
            "payment_method": self.payment_method,
            "expected_amount_cents": self.expected_amount_cents,
            "declared_amount_cents": self.declared_amount_cents,
            "collection_status": self.collection_status,
            "collected_at": to_utc_z(self.collected_at),
            "accepted_by_user_id": self.accepted_by_user_id,
            "collection_notes": self.collection_notes,
        }
