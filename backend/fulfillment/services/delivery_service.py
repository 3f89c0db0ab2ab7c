# Overview: Courier delivery flow: accept, reject, start, complete and fail assigned orders.

"""
Delivery Service

messenger_status lifecycle on an assigned order:

    assigned -> accepted -> in_delivery -> delivered
            \-> rejected              \-> failed

Completion is the only step that touches Order.status (-> entregado_cliente)
and records the cash the courier took in the field on DeliveryTracking.
That cash reaches cartera through handover_service.
"""

from __future__ import annotations

from datetime import date, datetime

from flask import current_app

from ..extensions import db
from ..models import DeliveryTracking, Order
from ..validation import ConflictError, NotFoundError, ValidationError, coerce_amount_cents
from .concurrency import lock_for_update, run_with_retry
from . import order_service
from . import order_status
from fulfillment.time_utils import day_bounds, to_utc_z, utcnow


MESSENGER_ASSIGNED = "assigned"
MESSENGER_ACCEPTED = "accepted"
MESSENGER_REJECTED = "rejected"
MESSENGER_IN_DELIVERY = "in_delivery"
MESSENGER_DELIVERED = "delivered"
MESSENGER_FAILED = "failed"

# Payment methods that oblige the courier to collect the product price
CASH_ON_DELIVERY_METHODS = frozenset({order_status.PAYMENT_CASH, order_status.SHIPPING_PAY_ON_DELIVERY})


def _load_assigned(order_id: int, messenger_id: int) -> Order:
    order = lock_for_update(
        db.session.query(Order).filter(
            Order.id == order_id,
            Order.assigned_messenger_id == messenger_id,
            Order.deleted_at.is_(None),
        )
    ).first()
    if not order:
        raise NotFoundError("Order not found or not assigned to this messenger")
    return order


def _tracking(order: Order, messenger_id: int) -> DeliveryTracking:
    tracking = db.session.query(DeliveryTracking).filter_by(
        order_id=order.id, messenger_id=messenger_id
    ).first()
    if tracking is None:
        tracking = DeliveryTracking(order_id=order.id, messenger_id=messenger_id, assigned_at=utcnow())
        db.session.add(tracking)
    return tracking


def _require_messenger_status(order: Order, expected: str, action: str) -> None:
    if order.messenger_status != expected:
        raise ConflictError(f"Order must be {expected} to {action} (current: {order.messenger_status})")


def _require_reason(reason) -> str:
    reason = (reason or "").strip() if isinstance(reason, str) else ""
    if not reason:
        raise ValidationError("reason is required")
    return reason


def assigned_orders(messenger_id: int) -> list[dict]:
    """Orders assigned to the courier that are still on the street or waiting to leave."""
    orders = (
        db.session.query(Order)
        .filter(
            Order.assigned_messenger_id == messenger_id,
            Order.deleted_at.is_(None),
            Order.status.in_((order_status.STATUS_READY_FOR_DELIVERY, order_status.STATUS_IN_DELIVERY)),
        )
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )
    rows = []
    for order in orders:
        data = order_service.serialize_order_row(order)
        data["items_count"] = len(order_service.active_items_dicts(order.id))
        data["should_collect_payment"] = requires_payment(order)
        data["should_collect_delivery_fee"] = requires_delivery_fee(order)
        rows.append(data)
    return rows


def requires_payment(order: Order) -> bool:
    return order_status.normalize_method(order.payment_method) in CASH_ON_DELIVERY_METHODS


def requires_delivery_fee(order: Order) -> bool:
    """Local home delivery, freight paid on delivery, under the threshold and not exempt."""
    threshold = current_app.config["LOCAL_DELIVERY_FEE_THRESHOLD_CENTS"]
    return (
        order_status.is_local_home_delivery(order.delivery_method)
        and order_status.normalize_method(order.shipping_payment_method) == order_status.SHIPPING_PAY_ON_DELIVERY
        and (order.total_amount_cents or 0) < threshold
        and not order.delivery_fee_exempt
    )


def accept_order(order_id: int, *, messenger_id: int) -> Order:
    def _accept():
        order = _load_assigned(order_id, messenger_id)
        _require_messenger_status(order, MESSENGER_ASSIGNED, "accept")
        now = utcnow()
        order.messenger_status = MESSENGER_ACCEPTED
        order.updated_at = now
        _tracking(order, messenger_id).accepted_at = now
        db.session.commit()
        return order

    order = run_with_retry(_accept)
    current_app.logger.info("Messenger %s accepted order %s", messenger_id, order.order_number)
    return order


def reject_order(order_id: int, *, messenger_id: int, reason) -> Order:
    """The order goes back to the unassigned pool with the rejection recorded."""
    reason = _require_reason(reason)

    def _reject():
        order = _load_assigned(order_id, messenger_id)
        _require_messenger_status(order, MESSENGER_ASSIGNED, "reject")
        now = utcnow()
        tracking = _tracking(order, messenger_id)
        tracking.rejected_at = now
        tracking.rejection_reason = reason
        order.messenger_status = MESSENGER_REJECTED
        order.assigned_messenger_id = None
        order.updated_at = now
        db.session.commit()
        return order

    order = run_with_retry(_reject)
    current_app.logger.info("Messenger %s rejected order %s: %s", messenger_id, order.order_number, reason)
    return order


def start_delivery(order_id: int, *, messenger_id: int) -> Order:
    def _start():
        order = _load_assigned(order_id, messenger_id)
        _require_messenger_status(order, MESSENGER_ACCEPTED, "start delivery")
        now = utcnow()
        order.messenger_status = MESSENGER_IN_DELIVERY
        _tracking(order, messenger_id).started_delivery_at = now

        change = None
        if order.status == order_status.STATUS_READY_FOR_DELIVERY:
            change = order_service.set_status(order, order_status.STATUS_IN_DELIVERY, user_id=messenger_id)
        else:
            order.updated_at = now
        db.session.commit()
        return order, change

    order, change = run_with_retry(_start)
    order_service.publish_status_change(change)
    return order


def _validate_collection(order: Order, payload: dict) -> dict:
    payment_method = order_status.normalize_method(payload.get("payment_method"))
    fee_method = order_status.normalize_method(payload.get("delivery_fee_payment_method"))

    payment = payload.get("payment_collected_cents")
    payment = 0 if payment is None else coerce_amount_cents(payment, "payment_collected_cents")
    fee = payload.get("delivery_fee_collected_cents")
    fee = 0 if fee is None else coerce_amount_cents(fee, "delivery_fee_collected_cents")

    billed_cash = order_status.normalize_method(order.payment_method) == order_status.PAYMENT_CASH
    if billed_cash and payment_method == order_status.PAYMENT_TRANSFER:
        raise ValidationError("Billing set this order as cash; it cannot be switched to transfer at delivery")

    if requires_payment(order) and payment_method != order_status.PAYMENT_TRANSFER and payment <= 0:
        raise ValidationError("This order requires collecting the payment (or marking it as transfer)")

    if requires_delivery_fee(order) and fee_method != order_status.PAYMENT_TRANSFER and fee <= 0:
        raise ValidationError("The delivery fee must be collected (or marked as transfer)")

    notes = payload.get("delivery_notes")
    return {
        "payment_collected_cents": payment,
        "delivery_fee_collected_cents": fee,
        "payment_method": payment_method,
        "delivery_fee_payment_method": fee_method,
        "delivery_notes": notes.strip() if isinstance(notes, str) and notes.strip() else None,
    }


def complete_delivery(order_id: int, *, messenger_id: int, payload: dict | None) -> Order:
    """
    in_delivery -> delivered. Moves the order to entregado_cliente and
    records the collected product payment and delivery fee.
    """
    if payload is None or not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    def _complete():
        order = _load_assigned(order_id, messenger_id)
        _require_messenger_status(order, MESSENGER_IN_DELIVERY, "complete it")
        collected = _validate_collection(order, payload)

        tracking = _tracking(order, messenger_id)
        tracking.delivered_at = utcnow()
        for key, value in collected.items():
            setattr(tracking, key, value)

        if collected["payment_method"]:
            order.payment_method = collected["payment_method"]
        order.messenger_status = MESSENGER_DELIVERED
        change = order_service.set_status(order, order_status.STATUS_DELIVERED_CUSTOMER, user_id=messenger_id)
        db.session.commit()
        return order, change

    order, change = run_with_retry(_complete)
    current_app.logger.info("Messenger %s delivered order %s", messenger_id, order.order_number)
    order_service.publish_status_change(change)
    return order


def mark_failed(order_id: int, *, messenger_id: int, reason) -> Order:
    """in_delivery -> failed. Order.status is left as it is."""
    reason = _require_reason(reason)

    def _fail():
        order = _load_assigned(order_id, messenger_id)
        _require_messenger_status(order, MESSENGER_IN_DELIVERY, "mark it failed")
        now = utcnow()
        tracking = _tracking(order, messenger_id)
        tracking.failed_at = now
        tracking.failure_reason = reason
        order.messenger_status = MESSENGER_FAILED
        order.updated_at = now
        db.session.commit()
        return order

    order = run_with_retry(_fail)
    current_app.logger.warning("Delivery of order %s failed: %s", order.order_number, reason)
    return order


# =============================================================================
# SUMMARIES
# =============================================================================

PENDING_MESSENGER_STATUSES = (MESSENGER_ASSIGNED, MESSENGER_ACCEPTED, MESSENGER_IN_DELIVERY)
RECENT_ORDERS_LIMIT = 10


def daily_summary(messenger_id: int, day: date | None = None) -> dict:
    """Counts and collected money over the courier's orders created on `day` (UTC, default today)."""
    day = day or utcnow().date()
    start, end = day_bounds(day)
    rows = (
        db.session.query(Order, DeliveryTracking)
        .outerjoin(
            DeliveryTracking,
            (DeliveryTracking.order_id == Order.id) & (DeliveryTracking.messenger_id == messenger_id),
        )
        .filter(
            Order.assigned_messenger_id == messenger_id,
            Order.deleted_at.is_(None),
            Order.created_at >= start,
            Order.created_at < end,
        )
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )

    summary = {
        "total_assigned": len(rows),
        "total_delivered": 0,
        "total_failed": 0,
        "total_pending": 0,
        "total_payment_collected_cents": 0,
        "total_delivery_fees_cents": 0,
    }
    for order, tracking in rows:
        if order.messenger_status == MESSENGER_DELIVERED:
            summary["total_delivered"] += 1
            if tracking is not None:
                summary["total_payment_collected_cents"] += tracking.payment_collected_cents or 0
                summary["total_delivery_fees_cents"] += tracking.delivery_fee_collected_cents or 0
        elif order.messenger_status == MESSENGER_FAILED:
            summary["total_failed"] += 1
        elif order.messenger_status in PENDING_MESSENGER_STATUSES:
            summary["total_pending"] += 1

    recent = [
        {
            "id": order.id,
            "order_number": order.order_number,
            "customer_name": order.customer_name,
            "messenger_status": order.messenger_status,
            "total_amount_cents": order.total_amount_cents,
            "delivered_at": to_utc_z(tracking.delivered_at) if tracking else None,
            "failed_at": to_utc_z(tracking.failed_at) if tracking else None,
            "payment_collected_cents": tracking.payment_collected_cents if tracking else 0,
        }
        for order, tracking in rows[:RECENT_ORDERS_LIMIT]
    ]
    return {"date": day.isoformat(), "summary": summary, "recent_orders": recent}


def cash_summary(messenger_id: int, *, start: datetime | None = None, end: datetime | None = None) -> dict:
    """
    Money the courier collected on deliveries in [start, end], with a
    per-day breakdown (newest first). Defaults to today so far.
    """
    now = utcnow()
    start = start or day_bounds(now.date())[0]
    end = end or now
    if start > end:
        raise ValidationError("from must not be after to")

    trackings = (
        db.session.query(DeliveryTracking)
        .join(Order, Order.id == DeliveryTracking.order_id)
        .filter(
            DeliveryTracking.messenger_id == messenger_id,
            Order.assigned_messenger_id == messenger_id,
            Order.messenger_status == MESSENGER_DELIVERED,
            Order.deleted_at.is_(None),
            DeliveryTracking.delivered_at.isnot(None),
            DeliveryTracking.delivered_at >= start,
            DeliveryTracking.delivered_at <= end,
        )
        .all()
    )

    totals = {"delivered_count": 0, "total_payment_collected_cents": 0, "total_delivery_fees_cents": 0}
    by_day: dict[date, dict] = {}
    for tracking in trackings:
        day = tracking.delivered_at.date()
        bucket = by_day.setdefault(day, {
            "date": day.isoformat(),
            "delivered_count": 0,
            "total_payment_collected_cents": 0,
            "total_delivery_fees_cents": 0,
        })
        for target in (totals, bucket):
            target["delivered_count"] += 1
            target["total_payment_collected_cents"] += tracking.payment_collected_cents or 0
            target["total_delivery_fees_cents"] += tracking.delivery_fee_collected_cents or 0

    return {
        "range": {"from": to_utc_z(start), "to": to_utc_z(end)},
        "totals": totals,
        "breakdown": [by_day[d] for d in sorted(by_day, reverse=True)],
    }
