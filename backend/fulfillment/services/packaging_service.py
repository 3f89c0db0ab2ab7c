# Overview: Packaging verification engine: per-line scans, manual checks and order completion.

"""
Packaging Verification Engine

Drives each active OrderItem from unverified to verified, either by a
manual confirmation or by scanning one physical unit at a time, and
signals order-level completion to registered listeners.

INVARIANTS:
- scanned_count <= required_scans, guarded by a conditional UPDATE
  (WHERE scanned_count < required_scans) whose row count decides whether
  a scan counted
- is_verified == (scanned_count >= required_scans); manual verification
  writes both together
- required_scans is fixed to the line quantity when the verification row
  is created

COMPLETION:
After every verification mutation the engine re-checks the order. When
all active lines are verified it calls each completion listener with the
locked Order. The order state machine registers itself as a listener
(order_service.register_packaging_listener) and owns the status change.

Every mutating operation locks the order row first, so verification rows
of one order are written by one transaction at a time.
"""

from __future__ import annotations

from typing import Callable, Optional

from flask import current_app
from sqlalchemy import case, func, update

from ..extensions import db
from ..models import Order, OrderItem, PackagingVerification, BarcodeScanEvent, Product
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    validate_payload,
)
from .concurrency import guarded_update, lock_for_update
from . import events
from . import order_status
from fulfillment.time_utils import to_utc_z, utcnow


DEFAULT_VERIFICATION_NOTE = "Item verified"

VERIFY_ITEM_POLICY = ModelValidationPolicy(
    writable_fields={
        "packed_quantity",
        "packed_weight",
        "packed_flavor",
        "packed_size",
        "verification_notes",
    },
)


class IncompletePackagingError(ValidationError):
    """Explicit completion requested while lines are still unverified."""

    def __init__(self, verified_items: int, total_items: int):
        super().__init__(
            f"Packaging incomplete: {verified_items} of {total_items} items verified"
        )
        self.verified_items = verified_items
        self.total_items = total_items


# (order, user_id) -> True if this call moved the order forward
CompletionListener = Callable[[Order, Optional[int]], bool]

_completion_listeners: list[CompletionListener] = []


def register_completion_listener(listener: CompletionListener) -> None:
    if listener not in _completion_listeners:
        _completion_listeners.append(listener)


def unregister_completion_listener(listener: CompletionListener) -> None:
    if listener in _completion_listeners:
        _completion_listeners.remove(listener)


# =============================================================================
# QUERIES
# =============================================================================

def active_items(order_id: int) -> list[OrderItem]:
    return (
        db.session.query(OrderItem)
        .filter(OrderItem.order_id == order_id, OrderItem.replaced_at.is_(None))
        .order_by(OrderItem.id.asc())
        .all()
    )


def _get_order(order_id: int, *, lock: bool = False) -> Order:
    query = db.session.query(Order).filter(Order.id == order_id, Order.deleted_at.is_(None))
    if lock:
        query = lock_for_update(query)
    order = query.first()
    if not order:
        raise NotFoundError("Order not found")
    return order


def _get_verification(item_id: int) -> PackagingVerification | None:
    return db.session.query(PackagingVerification).filter_by(item_id=item_id).first()


def _ensure_verification(item: OrderItem) -> PackagingVerification:
    """Lazily create the verification row; required_scans is frozen here."""
    verification = _get_verification(item.id)
    if verification:
        return verification

    verification = PackagingVerification(
        order_id=item.order_id,
        item=item,
        scanned_count=0,
        required_scans=item.quantity,
        is_verified=False,
        created_at=utcnow(),
    )
    db.session.add(verification)
    db.session.flush()
    return verification


def verification_counts(order_id: int) -> tuple[int, int]:
    """(verified_items, total_items) over the active lines of an order."""
    total = (
        db.session.query(func.count(OrderItem.id))
        .filter(OrderItem.order_id == order_id, OrderItem.replaced_at.is_(None))
        .scalar()
    ) or 0
    verified = (
        db.session.query(func.count(OrderItem.id))
        .join(PackagingVerification, PackagingVerification.item_id == OrderItem.id)
        .filter(
            OrderItem.order_id == order_id,
            OrderItem.replaced_at.is_(None),
            PackagingVerification.is_verified.is_(True),
        )
        .scalar()
    ) or 0
    return verified, total


def _products_by_name(names) -> dict[str, Product]:
    keys = {n.strip().lower() for n in names if n}
    if not keys:
        return {}
    products = (
        db.session.query(Product)
        .filter(func.lower(func.trim(Product.name)).in_(keys))
        .order_by(Product.is_active.desc(), Product.id.asc())
        .all()
    )
    found: dict[str, Product] = {}
    for product in products:
        found.setdefault(product.name.strip().lower(), product)
    return found


# =============================================================================
# COMPLETION
# =============================================================================

def _check_completion(order: Order, user_id: int | None) -> dict | None:
    """
    Notify listeners if every active line is verified.

    Returns the status change dict when a listener moved the order, for
    publishing after commit.
    """
    verified, total = verification_counts(order.id)
    if total == 0 or verified < total:
        return None

    previous_status = order.status
    moved = False
    for listener in list(_completion_listeners):
        if listener(order, user_id):
            moved = True

    if not moved:
        return None

    current_app.logger.info(
        "Packaging complete for order %s (%s lines)", order.order_number, total
    )
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "from_status": previous_status,
        "to_status": order_status.STATUS_READY_FOR_DELIVERY,
        "user_id": user_id,
    }


def _publish_completion(change: dict | None) -> None:
    if not change:
        return
    events.publish(events.PACKAGING_COMPLETED, {
        "order_id": change["order_id"],
        "order_number": change["order_number"],
        "completed_by_user_id": change["user_id"],
    })
    events.publish(events.ORDER_STATUS_CHANGED, change)


# =============================================================================
# VERIFICATION
# =============================================================================

def _mark_verified(
    verification: PackagingVerification,
    *,
    user_id: int | None,
    attributes: dict,
    now,
) -> None:
    was_verified = verification.is_verified

    verification.scanned_count = verification.required_scans
    verification.is_verified = True
    for key, value in attributes.items():
        setattr(verification, key, value)
    if not verification.verification_notes:
        verification.verification_notes = DEFAULT_VERIFICATION_NOTE
    if not was_verified:
        verification.verification_method = "manual"
        verification.verified_by_user_id = user_id
        verification.verified_at = now
    verification.updated_at = now


def verify_item(item_id: int, *, user_id: int | None, payload: dict | None = None) -> dict:
    """
    Manually verify one line. Idempotent: a verified line keeps its
    verification stamp; packer attributes are updated when given.
    """
    attributes = validate_payload(
        model=PackagingVerification,
        payload=payload or {},
        policy=VERIFY_ITEM_POLICY,
        partial=True,
    )
    if attributes.get("packed_quantity") is not None and attributes["packed_quantity"] < 0:
        raise ValidationError("packed_quantity must be >= 0")

    item = (
        db.session.query(OrderItem)
        .filter(OrderItem.id == item_id, OrderItem.replaced_at.is_(None))
        .first()
    )
    if not item:
        raise NotFoundError("Item not found")

    order = _get_order(item.order_id, lock=True)

    verification = _ensure_verification(item)
    _mark_verified(verification, user_id=user_id, attributes=attributes, now=utcnow())
    db.session.flush()

    change = _check_completion(order, user_id)
    db.session.commit()
    _publish_completion(change)

    return {
        "verification": verification.to_dict(),
        "order_completed": change is not None,
    }


def verify_all(order_id: int, *, user_id: int | None, notes: str | None = None) -> dict:
    """Manually verify every active line of an order in one transaction."""
    order = _get_order(order_id, lock=True)
    items = active_items(order.id)
    if not items:
        raise ValidationError("Order has no items to verify")

    attributes = {"verification_notes": notes.strip()} if notes and notes.strip() else {}
    now = utcnow()
    touched = 0
    for item in items:
        verification = _ensure_verification(item)
        if not verification.is_verified:
            touched += 1
        _mark_verified(verification, user_id=user_id, attributes=attributes, now=now)
    db.session.flush()

    change = _check_completion(order, user_id)
    db.session.commit()
    _publish_completion(change)

    return {
        "order_id": order.id,
        "items_verified": touched,
        "total_items": len(items),
        "order_completed": change is not None,
    }


def resolve_product(code: str) -> Product:
    """Active product by barcode or internal code (trimmed)."""
    cleaned = (code or "").strip()
    if not cleaned:
        raise ValidationError("barcode is required")

    product = (
        db.session.query(Product)
        .filter(
            Product.is_active.is_(True),
            db.or_(Product.barcode == cleaned, Product.internal_code == cleaned),
        )
        .order_by(Product.id.asc())
        .first()
    )
    if not product:
        raise NotFoundError(f"No product found for code {cleaned}")
    return product


def _match_item(items: list[OrderItem], product: Product) -> OrderItem | None:
    """Line whose name equals the product name (case-insensitive, trimmed); unfinished lines first."""
    wanted = product.name.strip().lower()
    matches = [item for item in items if item.name.strip().lower() == wanted]
    if not matches:
        return None
    for item in matches:
        verification = _get_verification(item.id)
        if verification is None or verification.scanned_count < verification.required_scans:
            return item
    return matches[0]


def scan_increment_statement(verification_id: int, *, user_id: int | None, now):
    """
    Conditional "+1 scan" UPDATE for one verification row.

    is_verified and verified_at are assigned before scanned_count: MySQL
    evaluates SET assignments left to right, so expressions placed after
    scanned_count would read the incremented value.
    """
    table = PackagingVerification.__table__
    reaches_required = table.c.scanned_count + 1 >= table.c.required_scans
    return (
        update(table)
        .where(
            table.c.id == verification_id,
            table.c.scanned_count < table.c.required_scans,
        )
        .ordered_values(
            (table.c.is_verified, case((reaches_required, True), else_=False)),
            (table.c.verified_at, case((reaches_required, now), else_=table.c.verified_at)),
            (table.c.scanned_count, table.c.scanned_count + 1),
            (table.c.verified_by_user_id, user_id),
            (table.c.verification_method, "barcode"),
            (table.c.updated_at, now),
        )
    )


def verify_barcode(order_id: int, *, code: str, user_id: int | None) -> dict:
    """
    Count one scanned unit against the matching order line.

    Result status:
    - "scanned": the unit counted (line may now be verified)
    - "already_verified": the line was complete; nothing written
    """
    order = _get_order(order_id, lock=True)
    product = resolve_product(code)

    item = _match_item(active_items(order.id), product)
    if item is None:
        raise ValidationError("Product not part of this order")

    verification = _ensure_verification(item)
    if verification.scanned_count >= verification.required_scans:
        db.session.commit()
        return _scan_result("already_verified", item, verification, product)

    now = utcnow()
    won = guarded_update(scan_increment_statement(verification.id, user_id=user_id, now=now))
    db.session.refresh(verification)

    if not won:
        # A concurrent scan finished the line first
        db.session.commit()
        return _scan_result("already_verified", item, verification, product)

    db.session.add(BarcodeScanEvent(
        order_id=order.id,
        item_id=item.id,
        barcode=code.strip(),
        scan_number=verification.scanned_count,
        scanned_by_user_id=user_id,
        scanned_at=now,
    ))
    db.session.flush()

    change = _check_completion(order, user_id) if verification.is_verified else None
    db.session.commit()
    _publish_completion(change)

    result = _scan_result("scanned", item, verification, product)
    result["order_completed"] = change is not None
    return result


def _scan_result(status: str, item: OrderItem, verification: PackagingVerification, product: Product) -> dict:
    return {
        "status": status,
        "item_id": item.id,
        "item_name": item.name,
        "product_id": product.id,
        "scanned_count": verification.scanned_count,
        "required_scans": verification.required_scans,
        "is_verified": verification.is_verified,
        "scan_progress": f"{verification.scanned_count}/{verification.required_scans}",
        "order_completed": False,
    }


def complete(order_id: int, *, user_id: int | None) -> dict:
    """
    Explicit completion. Raises IncompletePackagingError while any active
    line is unverified; repeating it on a completed order is a no-op.
    """
    order = _get_order(order_id, lock=True)
    verified, total = verification_counts(order.id)
    if total == 0 or verified < total:
        raise IncompletePackagingError(verified, total)

    if order.status == order_status.STATUS_READY_FOR_DELIVERY:
        db.session.commit()
        return {"order_id": order.id, "status": order.status, "already_completed": True}

    if order.status not in order_status.PACKAGING_STATUSES:
        raise ConflictError(f"Order in status {order.status} cannot complete packaging")

    change = _check_completion(order, user_id)
    db.session.commit()
    _publish_completion(change)

    return {
        "order_id": order.id,
        "status": order.status,
        "already_completed": change is None,
    }


# =============================================================================
# READ MODELS
# =============================================================================

def get_checklist(order_id: int) -> dict:
    order = _get_order(order_id)
    items = active_items(order.id)
    products = _products_by_name(item.name for item in items)

    checklist = []
    for item in items:
        verification = _get_verification(item.id)
        product = products.get(item.name.strip().lower())
        scanned = verification.scanned_count if verification else 0
        required = verification.required_scans if verification else item.quantity
        checklist.append({
            "item_id": item.id,
            "item_name": item.name,
            "quantity": item.quantity,
            "description": item.description,
            "barcode": product.barcode if product else None,
            "internal_code": product.internal_code if product else None,
            "scanned_count": scanned,
            "required_scans": required,
            "scan_progress": f"{scanned}/{required}",
            "needs_multiple_scans": required > 1,
            "is_verified": bool(verification and verification.is_verified),
            "packed_quantity": verification.packed_quantity if verification else None,
            "packed_weight": verification.packed_weight if verification else None,
            "packed_flavor": verification.packed_flavor if verification else None,
            "packed_size": verification.packed_size if verification else None,
            "verification_notes": verification.verification_notes if verification else None,
            "verification_method": verification.verification_method if verification else None,
        })

    verified = sum(1 for row in checklist if row["is_verified"])
    return {
        "order": {
            "id": order.id,
            "order_number": order.order_number,
            "customer_name": order.customer_name,
            "status": order.status,
            "delivery_method": order.delivery_method,
            "notes": order.notes,
        },
        "checklist": checklist,
        "verified_items": verified,
        "total_items": len(checklist),
    }


def _orders_with_item_counts(statuses):
    item_count = (
        db.session.query(OrderItem.order_id, func.count(OrderItem.id).label("items_count"))
        .filter(OrderItem.replaced_at.is_(None))
        .group_by(OrderItem.order_id)
        .subquery()
    )
    rows = (
        db.session.query(Order, func.coalesce(item_count.c.items_count, 0))
        .outerjoin(item_count, item_count.c.order_id == Order.id)
        .filter(Order.status.in_(statuses), Order.deleted_at.is_(None))
        .order_by(Order.created_at.asc(), Order.id.asc())
        .all()
    )
    return [
        {
            "id": order.id,
            "order_number": order.order_number,
            "customer_name": order.customer_name,
            "status": order.status,
            "delivery_method": order.delivery_method,
            "total_amount_cents": order.total_amount_cents,
            "created_at": to_utc_z(order.created_at),
            "items_count": int(count),
        }
        for order, count in rows
    ]


def pending_orders() -> list[dict]:
    """Packaging queue, oldest first."""
    return _orders_with_item_counts(order_status.PACKAGING_STATUSES)


def ready_for_delivery() -> list[dict]:
    return _orders_with_item_counts((order_status.STATUS_READY_FOR_DELIVERY,))


def get_stats() -> dict:
    rows = (
        db.session.query(Order.status, func.count(Order.id))
        .filter(
            Order.deleted_at.is_(None),
            Order.status.in_((
                order_status.STATUS_PENDING_PACKAGING,
                order_status.STATUS_PACKAGING,
                order_status.STATUS_READY_FOR_DELIVERY,
            )),
        )
        .group_by(Order.status)
        .all()
    )
    counts = dict(rows)
    return {
        "pending_packaging": counts.get(order_status.STATUS_PENDING_PACKAGING, 0),
        "in_packaging": counts.get(order_status.STATUS_PACKAGING, 0),
        "ready_for_delivery": counts.get(order_status.STATUS_READY_FOR_DELIVERY, 0),
    }
