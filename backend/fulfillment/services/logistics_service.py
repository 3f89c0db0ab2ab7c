# Overview: Logistics desk: carrier assignment, routing to packaging and counter payments.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Carrier, Order
from ..validation import ConflictError, ModelValidationPolicy, ValidationError, validate_payload
from .concurrency import run_with_retry
from . import cash_ledger_service
from . import order_service
from . import order_status
from fulfillment.time_utils import utcnow


DELIVERY_METHOD_POLICY = ModelValidationPolicy(
    writable_fields={"delivery_method", "carrier_id", "tracking_number", "shipping_payment_method"},
)

PROCESS_POLICY = ModelValidationPolicy(
    writable_fields={
        "delivery_method",
        "carrier_id",
        "tracking_number",
        "shipping_payment_method",
        "logistics_notes",
    },
)


def logistics_orders(params: dict | None = None) -> dict:
    params = dict(params or {})
    params.setdefault("status", order_status.STATUS_LOGISTICS)
    params.setdefault("sort_by", "created_at")
    params.setdefault("sort_order", "asc")
    return order_service.list_orders(role=order_status.ROLE_LOGISTICS, user_id=0, params=params)


def active_carriers() -> list[Carrier]:
    return (
        db.session.query(Carrier)
        .filter(Carrier.is_active.is_(True))
        .order_by(Carrier.name.asc())
        .all()
    )


def _check_carrier(patch: dict) -> None:
    carrier_id = patch.get("carrier_id")
    if carrier_id is None:
        return
    if not db.session.query(Carrier.id).filter(Carrier.id == carrier_id, Carrier.is_active.is_(True)).first():
        raise ValidationError("Carrier not found or inactive")


def _load_in_logistics(order_id: int) -> Order:
    order = order_service.load_order(order_id, lock=True)
    if order.status != order_status.STATUS_LOGISTICS:
        raise ConflictError("Only orders in logistics can be changed here")
    return order


def update_delivery_method(order_id: int, payload: dict | None, *, user_id: int) -> Order:
    """Set delivery method, carrier and tracking number on an order still in logistics."""
    patch = validate_payload(model=Order, payload=payload, policy=DELIVERY_METHOD_POLICY, partial=True)
    _check_carrier(patch)

    def _update():
        order = _load_in_logistics(order_id)
        order_service.apply_fields(order, patch)
        order.updated_at = utcnow()
        db.session.commit()
        return order

    order = run_with_retry(_update)
    current_app.logger.info(
        "Order %s delivery method %s carrier %s", order.order_number, order.delivery_method, order.carrier_id
    )
    return order


def process_order(order_id: int, payload: dict | None, *, user_id: int) -> Order:
    """
    en_logistica -> pendiente_empaque with the shipping details applied.

    shipping_date is stamped only when the order has none.
    """
    patch = validate_payload(model=Order, payload=payload or {}, policy=PROCESS_POLICY, partial=True)
    _check_carrier(patch)

    def _process():
        order = _load_in_logistics(order_id)
        order_service.apply_fields(order, patch)
        if order.shipping_date is None:
            order.shipping_date = utcnow()
        change = order_service.set_status(order, order_status.STATUS_PENDING_PACKAGING, user_id=user_id)
        db.session.commit()
        return order, change

    order, change = run_with_retry(_process)
    order_service.publish_status_change(change)
    return order


def register_pickup_payment(order_id: int, payload: dict | None, *, user_id: int):
    payload = payload or {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return cash_ledger_service.register_warehouse_payment(
        order_id,
        user_id=user_id,
        amount_cents=payload.get("amount_cents"),
        notes=payload.get("notes"),
    )


# =============================================================================
# HAND-OFF
# =============================================================================

HANDOFF_POLICY = ModelValidationPolicy(
    writable_fields={"tracking_number", "logistics_notes"},
)


def _load_ready(order_id: int) -> Order:
    order = order_service.load_order(order_id, lock=True)
    if order.status != order_status.STATUS_READY_FOR_DELIVERY:
        raise ConflictError("Only orders ready for delivery can be handed off")
    return order


def mark_delivered_to_carrier(order_id: int, payload: dict | None, *, user_id: int) -> Order:
    """
    National shipping: listo_para_entrega -> entregado_transportadora once
    the parcel is with the carrier. Local home delivery and store pickup
    orders never leave through a carrier.
    """
    patch = validate_payload(model=Order, payload=payload or {}, policy=HANDOFF_POLICY, partial=True)

    def _handoff():
        order = _load_ready(order_id)
        if order_status.is_local_home_delivery(order.delivery_method):
            raise ConflictError("Local home deliveries go out with a messenger")
        if order_status.normalize_method(order.delivery_method) == order_status.DELIVERY_PICKUP:
            raise ConflictError("Store pickup orders are handed to the customer")
        if order.carrier_id is None:
            raise ValidationError("Set a carrier before handing the order off")
        order_service.apply_fields(order, patch)
        change = order_service.set_status(order, order_status.STATUS_DELIVERED_CARRIER, user_id=user_id)
        db.session.commit()
        return order, change

    order, change = run_with_retry(_handoff)
    current_app.logger.info(
        "Order %s handed to carrier %s (tracking %s)", order.order_number, order.carrier_id, order.tracking_number
    )
    order_service.publish_status_change(change)
    return order


def mark_picked_up(order_id: int, payload: dict | None, *, user_id: int) -> Order:
    """
    Store pickup: listo_para_entrega -> entregado_cliente when the customer
    collects the order. Cash pickups need their counter payment registered
    first.
    """
    patch = validate_payload(model=Order, payload=payload or {}, policy=HANDOFF_POLICY, partial=True)

    def _pickup():
        order = _load_ready(order_id)
        if order_status.normalize_method(order.delivery_method) != order_status.DELIVERY_PICKUP:
            raise ConflictError("Only store pickup orders can be picked up")
        if (
            order_status.normalize_method(order.payment_method) == order_status.PAYMENT_CASH
            and cash_ledger_service.find_warehouse_entry(order.id) is None
        ):
            raise ValidationError("Register the pickup payment before handing over the order")
        order_service.apply_fields(order, patch)
        change = order_service.set_status(order, order_status.STATUS_DELIVERED_CUSTOMER, user_id=user_id)
        db.session.commit()
        return order, change

    order, change = run_with_retry(_pickup)
    order_service.publish_status_change(change)
    return order


def mark_in_delivery(order_id: int, payload: dict | None, *, user_id: int) -> Order:
    payload = payload or {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    messenger_id = payload.get("messenger_id")
    if messenger_id is not None and (isinstance(messenger_id, bool) or not isinstance(messenger_id, int)):
        raise ValidationError("messenger_id must be an integer")
    return order_service.mark_in_delivery(order_id, user_id=user_id, messenger_id=messenger_id)
