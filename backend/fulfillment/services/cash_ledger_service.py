# Overview: Warehouse cash ledger entries (pickup orders paid at the counter).

"""
Cash Ledger

One CashLedgerEntry per (order, source). Entries are created pending by
the order state machine side effect (or by logistics/cartera for a pickup
paid at the counter) and move to collected exactly once when cartera
accepts the money.

Courier collections do not live here: they are recorded on
DeliveryTracking and reconciled through HandoverDetail rows.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CashLedgerEntry, Order
from ..models.cash import CASH_SOURCE_WAREHOUSE, COLLECTION_COLLECTED, COLLECTION_PENDING
from ..validation import NotFoundError, ValidationError, coerce_amount_cents
from .concurrency import lock_for_update
from . import order_status
from fulfillment.time_utils import utcnow


def get_entry(entry_id: int) -> CashLedgerEntry:
    entry = db.session.query(CashLedgerEntry).filter_by(id=entry_id).first()
    if not entry:
        raise NotFoundError("Cash register entry not found")
    return entry


def find_warehouse_entry(order_id: int) -> CashLedgerEntry | None:
    return db.session.query(CashLedgerEntry).filter_by(
        order_id=order_id, source=CASH_SOURCE_WAREHOUSE
    ).first()


def ensure_warehouse_entry(
    order: Order,
    *,
    registered_by_user_id: int | None,
    amount_cents: int | None = None,
    notes: str | None = None,
) -> tuple[CashLedgerEntry, bool]:
    """
    Insert the warehouse entry for `order` unless one exists.

    Runs inside the caller's transaction (no commit). Returns
    (entry, created). The caller holds the order row lock, so the
    existence check and insert are serialized per order; the unique
    constraint on (order_id, source) backs it up.
    """
    existing = find_warehouse_entry(order.id)
    if existing:
        return existing, False

    entry = CashLedgerEntry(
        order_id=order.id,
        source=CASH_SOURCE_WAREHOUSE,
        amount_cents=order.total_amount_cents if amount_cents is None else amount_cents,
        payment_method=order.payment_method,
        delivery_method=order.delivery_method,
        status=COLLECTION_PENDING,
        notes=notes,
        registered_by_user_id=registered_by_user_id,
        created_at=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()

    current_app.logger.info(
        "Cash ledger entry %s registered for order %s (%s cents)",
        entry.id, order.order_number, entry.amount_cents,
    )
    return entry, True


def register_warehouse_payment(
    order_id: int,
    *,
    user_id: int,
    amount_cents=None,
    notes: str | None = None,
) -> tuple[CashLedgerEntry, bool]:
    """
    Register cash received at the counter for a pickup order.

    Idempotent: a second call returns the existing entry with created=False.
    """
    order = lock_for_update(
        db.session.query(Order).filter(Order.id == order_id, Order.deleted_at.is_(None))
    ).first()
    if not order:
        raise NotFoundError("Order not found")

    if order_status.normalize_method(order.delivery_method) != order_status.DELIVERY_PICKUP:
        raise ValidationError("Counter payments apply only to store pickup orders")

    amount = None
    if amount_cents is not None:
        amount = coerce_amount_cents(amount_cents, "amount_cents", allow_zero=False)

    try:
        entry, created = ensure_warehouse_entry(
            order, registered_by_user_id=user_id, amount_cents=amount, notes=notes
        )
        db.session.commit()
    except IntegrityError:
        # Lost the insert race; the winner's row is the entry
        db.session.rollback()
        entry = find_warehouse_entry(order_id)
        if entry is None:
            raise
        created = False

    return entry, created


def accept_entry(
    entry_id: int,
    *,
    user_id: int,
    accepted_amount_cents=None,
    notes: str | None = None,
) -> CashLedgerEntry:
    """
    pending -> collected. Accepting an already collected entry returns it
    unchanged.
    """
    entry = lock_for_update(
        db.session.query(CashLedgerEntry).filter_by(id=entry_id)
    ).first()
    if not entry:
        raise NotFoundError("Cash register entry not found")

    if entry.status == COLLECTION_COLLECTED:
        return entry

    if accepted_amount_cents is None:
        accepted = entry.amount_cents
    else:
        accepted = coerce_amount_cents(accepted_amount_cents, "accepted_amount_cents")

    entry.status = COLLECTION_COLLECTED
    entry.accepted_amount_cents = accepted
    entry.accepted_by_user_id = user_id
    entry.accepted_at = utcnow()
    if notes:
        entry.notes = f"{entry.notes}\n{notes}" if entry.notes else notes

    db.session.commit()
    current_app.logger.info("Cash ledger entry %s accepted by user %s", entry.id, user_id)
    return entry
