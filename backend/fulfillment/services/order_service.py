# Overview: Order state machine operations: create, update, transitions, soft delete and listings.

"""
Order Service

Owns Order.status. Every write path locks the order row, applies the
role-gated rules from order_status, performs side effects in the same
transaction and publishes events only after commit.

SIDE EFFECTS (same transaction as the update):
- entering en_logistica as a store pickup paid cash registers the
  warehouse cash ledger entry (once per order)
- local home delivery pins carrier_id to LOCAL_COURIER_CARRIER_ID
- items in the payload soft-replace all active lines and recompute the total

Packaging completion reaches this module through complete_packaging, the
listener registered with packaging_service by register_packaging_listener.
"""

from __future__ import annotations

import secrets
import string
import time

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import (
    BarcodeScanEvent,
    Carrier,
    CashLedgerEntry,
    DeliveryTracking,
    HandoverDetail,
    Order,
    OrderItem,
    PackagingVerification,
    User,
    WalletValidation,
)
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    validate_order_items,
    validate_payload,
)
from .audit_service import record_audit
from .concurrency import guarded_update, lock_for_update, run_with_retry
from .permission_service import get_user_role_names
from . import cash_ledger_service
from . import events
from . import handover_service
from . import order_status
from . import packaging_service
from fulfillment.time_utils import day_bounds, parse_iso_date, to_utc_z, utcnow


ORDER_FIELDS = {
    "invoice_code",
    "customer_name",
    "customer_phone",
    "customer_address",
    "customer_email",
    "customer_department",
    "customer_city",
    "payment_method",
    "delivery_method",
    "shipping_payment_method",
    "carrier_id",
    "tracking_number",
    "delivery_fee_cents",
    "delivery_fee_exempt",
    "notes",
    "logistics_notes",
    "delivery_date",
    "shipping_date",
}

ORDER_CREATE_POLICY = ModelValidationPolicy(
    writable_fields=ORDER_FIELDS,
    required_on_create={
        "customer_name",
        "customer_phone",
        "customer_address",
        "customer_department",
        "customer_city",
    },
)

ORDER_UPDATE_POLICY = ModelValidationPolicy(writable_fields=ORDER_FIELDS)

SORTABLE_FIELDS = {
    "created_at": Order.created_at,
    "updated_at": Order.updated_at,
    "order_number": Order.order_number,
    "customer_name": Order.customer_name,
    "total_amount_cents": Order.total_amount_cents,
    "status": Order.status,
    "delivery_date": Order.delivery_date,
    "shipping_date": Order.shipping_date,
}

DEFAULT_PAGE_LIMIT = 20

# Statuses each workflow role sees in the order listing
ROLE_LISTING_STATUSES = {
    order_status.ROLE_BILLING: (order_status.STATUS_PENDING_BILLING,),
    order_status.ROLE_WALLET: (order_status.STATUS_WALLET_REVIEW,),
    order_status.ROLE_LOGISTICS: (
        order_status.STATUS_LOGISTICS,
        order_status.STATUS_PENDING_PACKAGING,
        order_status.STATUS_PACKAGING,
        order_status.STATUS_READY_FOR_DELIVERY,
        order_status.STATUS_IN_DELIVERY,
    ),
    order_status.ROLE_PACKAGING: order_status.PACKAGING_STATUSES,
    order_status.ROLE_COURIER: (
        order_status.STATUS_IN_DELIVERY,
        order_status.STATUS_DELIVERED_CARRIER,
    ),
}


# =============================================================================
# HELPERS
# =============================================================================

def generate_order_number() -> str:
    """ORD-<epoch millis>-<5 random uppercase alphanumerics>"""
    alphabet = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(5))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"


def load_order(order_id: int, *, lock: bool = False, include_deleted: bool = False) -> Order:
    query = db.session.query(Order).filter(Order.id == order_id)
    if not include_deleted:
        query = query.filter(Order.deleted_at.is_(None))
    if lock:
        query = lock_for_update(query)
    order = query.first()
    if not order:
        raise NotFoundError("Order not found")
    return order


def _local_courier_carrier_id() -> int:
    return current_app.config["LOCAL_COURIER_CARRIER_ID"]


def apply_fields(order: Order, patch: dict) -> None:
    if "carrier_id" in patch and patch["carrier_id"] is not None:
        if not db.session.query(Carrier.id).filter_by(id=patch["carrier_id"]).first():
            raise ValidationError("Carrier not found")

    if patch.get("delivery_fee_cents") is not None and patch["delivery_fee_cents"] < 0:
        raise ValidationError("delivery_fee_cents must be >= 0")

    for key in ("payment_method", "delivery_method", "shipping_payment_method"):
        if key in patch and patch[key] is not None:
            patch[key] = order_status.normalize_method(patch[key])
            if patch[key] is None and key != "shipping_payment_method":
                raise ValidationError(f"{key} cannot be blank")

    for key, value in patch.items():
        setattr(order, key, value)

    if order_status.is_local_home_delivery(order.delivery_method):
        order.carrier_id = _local_courier_carrier_id()


def _may_set_shipping_date(order: Order, role: str | None, auto_processed: bool) -> bool:
    """
    shipping_date belongs to billing: once set, only a manual billing
    update may change it. Other writers are ignored without error.
    """
    if role == order_status.ROLE_BILLING and not auto_processed:
        return True
    return order.shipping_date is None


def _replace_items(order: Order, items: list[dict], now) -> None:
    """Soft-replace all active lines; old verification rows stay with the old lines."""
    (
        db.session.query(OrderItem)
        .filter(OrderItem.order_id == order.id, OrderItem.replaced_at.is_(None))
        .update({OrderItem.replaced_at: now}, synchronize_session="fetch")
    )
    for item in items:
        db.session.add(OrderItem(order_id=order.id, created_at=now, **item))
    order.total_amount_cents = sum(i["quantity"] * i["unit_price_cents"] for i in items)


def _apply_status_side_effects(order: Order, previous_status: str, user_id: int | None) -> None:
    if (
        order.status == order_status.STATUS_LOGISTICS
        and previous_status != order_status.STATUS_LOGISTICS
        and order_status.is_warehouse_cash_pickup(order.delivery_method, order.payment_method)
    ):
        db.session.flush()
        cash_ledger_service.ensure_warehouse_entry(order, registered_by_user_id=user_id)


def _status_change_payload(order: Order, previous_status: str, user_id: int | None) -> dict:
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "from_status": previous_status,
        "to_status": order.status,
        "user_id": user_id,
    }


def publish_status_change(change: dict | None) -> None:
    if change and change["from_status"] != change["to_status"]:
        events.publish(events.ORDER_STATUS_CHANGED, change)


def set_status(order: Order, target: str, *, user_id: int | None) -> dict:
    """
    Move a locked order to `target` inside the caller's transaction and
    run the status side effects. Callers authorize first and commit after.
    """
    previous = order.status
    order.status = target
    order.updated_at = utcnow()
    _apply_status_side_effects(order, previous, user_id)
    if previous != target:
        current_app.logger.info(
            "Order %s status %s -> %s (user %s)", order.order_number, previous, target, user_id
        )
    return _status_change_payload(order, previous, user_id)


def active_items_dicts(order_id: int) -> list[dict]:
    return [item.to_dict() for item in packaging_service.active_items(order_id)]


def order_detail(order: Order) -> dict:
    data = order.to_dict()
    data["items"] = active_items_dicts(order.id)
    return data


# =============================================================================
# PACKAGING COMPLETION LISTENER
# =============================================================================

def complete_packaging(order: Order, user_id: int | None) -> bool:
    """
    Move a fully verified order to listo_para_entrega.

    Conditional UPDATE guarded by the packaging statuses: exactly one
    caller sees rowcount 1, later callers see 0 and do nothing.
    version_id is bumped by hand because the bulk UPDATE bypasses the mapper.
    """
    won = guarded_update(
        db.session.query(Order).filter(
            Order.id == order.id,
            Order.deleted_at.is_(None),
            Order.status.in_(order_status.PACKAGING_STATUSES),
        ),
        {
            Order.status: order_status.STATUS_READY_FOR_DELIVERY,
            Order.updated_at: utcnow(),
            Order.version_id: Order.version_id + 1,
        },
    )
    db.session.expire(order)
    if won:
        current_app.logger.info("Order %s ready for delivery (packaging complete)", order.id)
    return bool(won)


def register_packaging_listener() -> None:
    packaging_service.register_completion_listener(complete_packaging)


# =============================================================================
# CREATE / READ
# =============================================================================

def create_order(payload: dict, *, user_id: int | None) -> Order:
    """
    Create an order with its lines. The initial status comes from the
    (delivery_method, payment_method) pair; a status in the payload is ignored.
    """
    if payload is None or not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    data = dict(payload)
    items = validate_order_items(data.pop("items", None))
    data.pop("status", None)
    patch = validate_payload(model=Order, payload=data, policy=ORDER_CREATE_POLICY, partial=False)

    patch.setdefault("delivery_method", order_status.DELIVERY_HOME_CITY)
    patch.setdefault("payment_method", order_status.PAYMENT_CASH)
    if patch["delivery_method"] is None:
        patch["delivery_method"] = order_status.DELIVERY_HOME_CITY
    if patch["payment_method"] is None:
        patch["payment_method"] = order_status.PAYMENT_CASH

    def _create():
        now = utcnow()
        order = Order(
            order_number=generate_order_number(),
            status=order_status.STATUS_PENDING_BILLING,
            created_by_user_id=user_id,
            created_at=now,
            updated_at=now,
        )
        apply_fields(order, patch)
        order.status = order_status.initial_status(order.delivery_method, order.payment_method)
        db.session.add(order)
        db.session.flush()

        _replace_items(order, items, now)
        _apply_status_side_effects(order, order_status.STATUS_PENDING_BILLING, user_id)
        db.session.commit()
        return order

    order = run_with_retry(_create)
    current_app.logger.info("Order %s created with status %s", order.order_number, order.status)
    events.publish(events.ORDER_CREATED, {
        "order_id": order.id,
        "order_number": order.order_number,
        "status": order.status,
        "total_amount_cents": order.total_amount_cents,
        "user_id": user_id,
    })
    return order


def get_order(order_id: int) -> Order:
    return load_order(order_id)


def _int_param(value, name: str, default: int) -> int:
    if value in (None, ""):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")


def list_orders(*, role: str | None, user_id: int, params: dict | None = None) -> dict:
    """
    Role-scoped, paginated order listing. Soft-deleted orders never appear.

    params: status (admin, or narrowing within the role scope), date_from,
    date_to (created_at, inclusive days), search, sort_by, sort_order,
    page, limit.
    """
    params = params or {}
    query = db.session.query(Order).filter(Order.deleted_at.is_(None))

    if role == order_status.ROLE_COURIER:
        query = query.filter(db.or_(
            Order.status.in_(ROLE_LISTING_STATUSES[role]),
            Order.assigned_messenger_id == user_id,
        ))
    elif role in ROLE_LISTING_STATUSES:
        query = query.filter(Order.status.in_(ROLE_LISTING_STATUSES[role]))
    elif role != order_status.ROLE_ADMIN:
        query = query.filter(db.false())

    status = params.get("status")
    if status:
        query = query.filter(Order.status == order_status.normalize_status(status))

    try:
        date_from = parse_iso_date(params.get("date_from"))
        date_to = parse_iso_date(params.get("date_to"))
    except ValueError:
        raise ValidationError("date_from/date_to must be YYYY-MM-DD")
    if date_from:
        query = query.filter(Order.created_at >= day_bounds(date_from)[0])
    if date_to:
        query = query.filter(Order.created_at < day_bounds(date_to)[1])

    search = (params.get("search") or "").strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(db.or_(
            Order.customer_name.ilike(pattern),
            Order.customer_phone.ilike(pattern),
            Order.order_number.ilike(pattern),
        ))

    sort_by = params.get("sort_by") or "created_at"
    if sort_by not in SORTABLE_FIELDS:
        raise ValidationError(f"sort_by must be one of: {', '.join(sorted(SORTABLE_FIELDS))}")
    sort_order = (params.get("sort_order") or "desc").lower()
    if sort_order not in ("asc", "desc"):
        raise ValidationError("sort_order must be asc or desc")
    column = SORTABLE_FIELDS[sort_by]
    query = query.order_by(column.asc() if sort_order == "asc" else column.desc(), Order.id.desc())

    page = max(_int_param(params.get("page"), "page", 1), 1)
    max_limit = current_app.config["ORDER_PAGE_LIMIT_MAX"]
    limit = min(max(_int_param(params.get("limit"), "limit", DEFAULT_PAGE_LIMIT), 1), max_limit)

    total = query.count()
    orders = query.offset((page - 1) * limit).limit(limit).all()

    return {
        "orders": [order.to_dict() for order in orders],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    }


def get_stats() -> dict:
    """Order counts per stage over non-deleted orders."""
    rows = (
        db.session.query(Order.status, func.count(Order.id))
        .filter(Order.deleted_at.is_(None))
        .group_by(Order.status)
        .all()
    )
    counts = {status: 0 for status in order_status.ALL_STATUSES}
    for status, count in rows:
        counts[status] = counts.get(status, 0) + count
    return {"by_status": counts, "total": sum(counts.values())}


# =============================================================================
# UPDATE
# =============================================================================

def update_order(order_id: int, payload: dict, *, user_id: int, role: str | None) -> Order:
    """
    Role-gated update of fields, status and items as one transaction.

    Payload keys besides the order fields:
    - status: canonical or legacy status name
    - items: full replacement list of lines
    - auto_processed: the write comes from an automated process (affects
      the shipping_date rule)
    """
    if payload is None or not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    data = dict(payload)
    raw_items = data.pop("items", None)
    requested_status = data.pop("status", None)
    auto_processed = bool(data.pop("auto_processed", False))

    items = validate_order_items(raw_items) if raw_items is not None else None
    target = order_status.normalize_status(requested_status) if requested_status is not None else None
    patch = validate_payload(model=Order, payload=data, policy=ORDER_UPDATE_POLICY, partial=True)

    def _update():
        order = load_order(order_id, lock=True)

        if "shipping_date" in patch and not _may_set_shipping_date(order, role, auto_processed):
            current_app.logger.info(
                "Ignoring shipping_date change on order %s from role %s", order.order_number, role
            )
            patch.pop("shipping_date")

        order_status.authorize_update(
            role,
            order.status,
            target,
            changes_fields=bool(patch) or items is not None,
        )

        now = utcnow()
        apply_fields(order, patch)
        if items is not None:
            _replace_items(order, items, now)
        order.updated_at = now

        change = None
        if target is not None and target != order.status:
            change = set_status(order, target, user_id=user_id)

        db.session.commit()
        return order, change

    order, change = run_with_retry(_update)
    publish_status_change(change)
    return order


def start_packaging(order_id: int, *, user_id: int) -> tuple[Order, bool]:
    """pendiente_empaque -> en_empaque. Returns (order, changed)."""
    def _start():
        order = load_order(order_id, lock=True)
        if order.status == order_status.STATUS_PACKAGING:
            db.session.commit()
            return order, None
        if order.status != order_status.STATUS_PENDING_PACKAGING:
            raise ConflictError(f"Order in status {order.status} cannot start packaging")
        change = set_status(order, order_status.STATUS_PACKAGING, user_id=user_id)
        db.session.commit()
        return order, change

    order, change = run_with_retry(_start)
    publish_status_change(change)
    return order, change is not None


# =============================================================================
# ASSIGNMENT / DISPATCH
# =============================================================================

def _active_messenger(messenger_id: int) -> User:
    messenger = db.session.query(User).filter_by(id=messenger_id, is_active=True).first()
    if not messenger:
        raise ValidationError("Messenger not found")
    if order_status.ROLE_COURIER not in get_user_role_names(messenger.id):
        raise ValidationError("User is not a messenger")
    return messenger


def _attach_messenger(order: Order, messenger: User, now) -> DeliveryTracking:
    order.assigned_messenger_id = messenger.id
    order.messenger_status = "assigned"
    order.updated_at = now

    tracking = db.session.query(DeliveryTracking).filter_by(
        order_id=order.id, messenger_id=messenger.id
    ).first()
    if tracking is None:
        tracking = DeliveryTracking(order_id=order.id, messenger_id=messenger.id)
        db.session.add(tracking)
    tracking.assigned_at = now
    tracking.rejected_at = None
    tracking.rejection_reason = None
    return tracking


def assign_messenger(order_id: int, messenger_id: int, *, user_id: int) -> Order:
    """Assign a courier to an order that is ready for delivery."""
    messenger = _active_messenger(messenger_id)

    def _assign():
        order = load_order(order_id, lock=True)
        if order.status != order_status.STATUS_READY_FOR_DELIVERY:
            raise ConflictError("Only orders ready for delivery can be assigned")
        _attach_messenger(order, messenger, utcnow())
        db.session.commit()
        return order

    order = run_with_retry(_assign)
    current_app.logger.info("Order %s assigned to messenger %s", order.order_number, messenger.id)
    return order


def dispatch_order(order_id: int, *, user_id: int) -> Order:
    """listo_para_entrega with an assigned courier -> en_reparto."""
    def _dispatch():
        order = load_order(order_id, lock=True)
        if order.status != order_status.STATUS_READY_FOR_DELIVERY:
            raise ConflictError("Only orders ready for delivery can be dispatched")
        if not order.assigned_messenger_id:
            raise ConflictError("Assign a messenger before dispatching")
        change = set_status(order, order_status.STATUS_IN_DELIVERY, user_id=user_id)
        db.session.commit()
        return order, change

    order, change = run_with_retry(_dispatch)
    publish_status_change(change)
    return order


def mark_in_delivery(order_id: int, *, user_id: int, messenger_id: int | None = None) -> Order:
    """
    Logistics shortcut: listo_para_entrega -> en_reparto with the courier
    already on the street (messenger_status in_delivery).

    messenger_id (optional) assigns the courier in the same transaction;
    without it the order must already have one.
    """
    messenger = _active_messenger(messenger_id) if messenger_id is not None else None

    def _mark():
        order = load_order(order_id, lock=True)
        if order.status != order_status.STATUS_READY_FOR_DELIVERY:
            raise ConflictError("Only orders ready for delivery can be sent out")

        now = utcnow()
        if messenger is not None:
            tracking = _attach_messenger(order, messenger, now)
        elif order.assigned_messenger_id:
            tracking = db.session.query(DeliveryTracking).filter_by(
                order_id=order.id, messenger_id=order.assigned_messenger_id
            ).first()
        else:
            raise ConflictError("Assign a messenger before sending the order out")

        if tracking is None:
            tracking = DeliveryTracking(order_id=order.id, messenger_id=order.assigned_messenger_id, assigned_at=now)
            db.session.add(tracking)
        if tracking.accepted_at is None:
            tracking.accepted_at = now
        tracking.started_delivery_at = now
        order.messenger_status = "in_delivery"

        change = set_status(order, order_status.STATUS_IN_DELIVERY, user_id=user_id)
        db.session.commit()
        return order, change

    order, change = run_with_retry(_mark)
    current_app.logger.info(
        "Order %s out for delivery with messenger %s", order.order_number, order.assigned_messenger_id
    )
    publish_status_change(change)
    return order


# =============================================================================
# DELETE
# =============================================================================

def delete_order(order_id: int, *, user_id: int) -> Order:
    """Soft delete with audit trail. Deleting twice is a conflict."""
    def _delete():
        order = load_order(order_id, lock=True, include_deleted=True)
        if order.deleted_at is not None:
            raise ConflictError("Order already deleted")

        now = utcnow()
        order.deleted_at = now
        order.deleted_by_user_id = user_id
        order.updated_at = now
        record_audit(
            entity_type="order",
            entity_id=order.id,
            action="order.deleted",
            actor_user_id=user_id,
            details={"order_number": order.order_number, "status": order.status},
        )
        db.session.commit()
        return order

    order = run_with_retry(_delete)
    current_app.logger.info("Order %s soft-deleted by user %s", order.order_number, user_id)
    return order


def purge_siigo_order(order_id: int, *, user_id: int) -> dict:
    """
    Hard-delete an ERP-imported order and everything hanging off it so the
    invoice can be imported again. Open handover acts that lose a detail
    get their aggregates recomputed; acts left empty are kept.
    """
    def _purge():
        order = load_order(order_id, lock=True, include_deleted=True)
        if not order.siigo_invoice_id and not order.siigo_invoice_number:
            raise ValidationError("Order was not imported from an ERP invoice")

        summary = {
            "order_id": order.id,
            "order_number": order.order_number,
            "siigo_invoice_id": order.siigo_invoice_id,
            "siigo_invoice_number": order.siigo_invoice_number,
        }
        act_ids = [
            act_id for (act_id,) in db.session.query(HandoverDetail.act_id)
            .filter(HandoverDetail.order_id == order.id)
            .distinct()
            .all()
        ]

        for model in (
            BarcodeScanEvent,
            PackagingVerification,
            HandoverDetail,
            DeliveryTracking,
            CashLedgerEntry,
            WalletValidation,
            OrderItem,
        ):
            db.session.query(model).filter(model.order_id == order.id).delete(synchronize_session=False)

        db.session.expunge(order)
        db.session.query(Order).filter(Order.id == order_id).delete(synchronize_session=False)

        for act_id in act_ids:
            handover_service.refresh_open_act(act_id)

        record_audit(
            entity_type="order",
            entity_id=order_id,
            action="order.purged",
            actor_user_id=user_id,
            details=summary,
        )
        db.session.commit()
        return summary

    summary = run_with_retry(_purge)
    current_app.logger.info("Order %s purged for ERP re-import", summary["order_number"])
    return summary


def serialize_order_row(order: Order) -> dict:
    """Compact projection used by department queues."""
    return {
        "id": order.id,
        "order_number": order.order_number,
        "customer_name": order.customer_name,
        "customer_phone": order.customer_phone,
        "customer_address": order.customer_address,
        "customer_city": order.customer_city,
        "status": order.status,
        "payment_method": order.payment_method,
        "delivery_method": order.delivery_method,
        "shipping_payment_method": order.shipping_payment_method,
        "carrier_id": order.carrier_id,
        "tracking_number": order.tracking_number,
        "total_amount_cents": order.total_amount_cents,
        "delivery_fee_cents": order.delivery_fee_cents,
        "delivery_fee_exempt": order.delivery_fee_exempt,
        "assigned_messenger_id": order.assigned_messenger_id,
        "messenger_status": order.messenger_status,
        "created_at": to_utc_z(order.created_at),
        "shipping_date": to_utc_z(order.shipping_date),
    }
