# Overview: Cash handover reconciliation: courier acts, warehouse day consolidations, pending cash.

"""
Handover Reconciliation Engine

Two kinds of "act" reach cartera:

- PersistedAct: a HandoverAct row, one per (courier, closing date). Its
  HandoverDetail lines move pending -> collected as cartera accepts the
  cash; the act stays open (pending / partial) until close_act finalizes
  it into completed or discrepancy.
- SynthesizedAct: never stored. One per acceptance day over the collected
  warehouse CashLedgerEntry rows. Identified by the negative UTC epoch of
  the day's midnight (id) and by the string key "bodega:YYYY-MM-DD"; both
  are pure functions of the date, so they are stable across calls.

This engine reads orders and ledger entries and writes only acts and
their details. Soft-deleted orders are excluded from every query here.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from flask import current_app
from sqlalchemy import func, case

from ..extensions import db
from ..models import CashLedgerEntry, DeliveryTracking, HandoverAct, HandoverDetail, Order, User
from ..models.cash import COLLECTION_COLLECTED, COLLECTION_PENDING
from ..validation import ConflictError, NotFoundError, ValidationError, coerce_amount_cents
from .audit_service import record_audit
from .concurrency import lock_for_update, run_with_retry
from . import events
from fulfillment.time_utils import date_from_epoch, day_bounds, day_epoch, to_iso_date, to_utc_z, utcnow


ACT_PENDING = "pending"
ACT_PARTIAL = "partial"
ACT_COMPLETED = "completed"
ACT_DISCREPANCY = "discrepancy"

ACT_STATUSES = (ACT_PENDING, ACT_PARTIAL, ACT_COMPLETED, ACT_DISCREPANCY)

SOURCE_MESSENGER = "messenger"
SOURCE_WAREHOUSE = "bodega"
WAREHOUSE_LABEL = "Bodega"


def _listing_limit() -> int:
    return current_app.config["CASH_LISTING_LIMIT"]


def warehouse_key(day: date) -> str:
    return f"{SOURCE_WAREHOUSE}:{day.isoformat()}"


def warehouse_act_id(day: date) -> int:
    return -day_epoch(day)


def warehouse_day_from_act_id(act_id: int) -> date:
    """Day of a synthesized act id; ids that no day maps to are not found."""
    try:
        return date_from_epoch(-act_id)
    except (ValueError, OverflowError):
        raise NotFoundError("Handover not found")


# =============================================================================
# ACT PROJECTIONS
# =============================================================================

@dataclass(frozen=True)
class PersistedAct:
    act: HandoverAct
    items_count: int
    items_collected: int

    source = SOURCE_MESSENGER

    @property
    def id(self) -> int:
        return self.act.id

    @property
    def closing_date(self) -> date:
        return self.act.closing_date

    def to_dict(self) -> dict:
        data = self.act.to_dict()
        data.update({
            "key": f"act:{self.act.id}",
            "source": self.source,
            "items_count": self.items_count,
            "items_collected": self.items_collected,
        })
        return data


@dataclass(frozen=True)
class SynthesizedAct:
    day: date
    total_cents: int
    items_count: int
    first_created_at: object = None
    last_accepted_at: object = None

    source = SOURCE_WAREHOUSE

    @property
    def id(self) -> int:
        return warehouse_act_id(self.day)

    @property
    def key(self) -> str:
        return warehouse_key(self.day)

    @property
    def closing_date(self) -> date:
        return self.day

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "key": self.key,
            "source": self.source,
            "messenger_id": None,
            "messenger_name": WAREHOUSE_LABEL,
            "closing_date": self.day.isoformat(),
            "expected_amount_cents": self.total_cents,
            "declared_amount_cents": self.total_cents,
            "difference_amount_cents": 0,
            "status": ACT_COMPLETED,
            "approved_by_user_id": None,
            "approved_at": to_utc_z(self.last_accepted_at),
            "closed_at": None,
            "created_at": to_utc_z(self.first_created_at),
            "items_count": self.items_count,
            "items_collected": self.items_count,
        }


# =============================================================================
# AGGREGATES
# =============================================================================

def _visible_details(act_id: int):
    return (
        db.session.query(HandoverDetail)
        .join(Order, Order.id == HandoverDetail.order_id)
        .filter(HandoverDetail.act_id == act_id, Order.deleted_at.is_(None))
    )


def act_aggregates(act_id: int) -> tuple[int, int, int, int]:
    """(expected_cents, declared_cents, collected_count, total_count) over visible details."""
    row = (
        _visible_details(act_id)
        .with_entities(
            func.coalesce(func.sum(HandoverDetail.expected_amount_cents), 0),
            func.coalesce(func.sum(HandoverDetail.declared_amount_cents), 0),
            func.coalesce(func.sum(case(
                (HandoverDetail.collection_status == COLLECTION_COLLECTED, 1), else_=0
            )), 0),
            func.count(HandoverDetail.id),
        )
        .one()
    )
    return int(row[0]), int(row[1]), int(row[2]), int(row[3])


def refresh_open_act(act_id: int) -> HandoverAct | None:
    """
    Recompute the aggregates of an open act inside the caller's transaction.

    Open status is pending while nothing is collected, partial afterwards.
    Closed acts are left untouched.
    """
    act = db.session.query(HandoverAct).filter_by(id=act_id).first()
    if act is None or act.is_closed:
        return act

    expected, declared, collected, _total = act_aggregates(act.id)
    act.expected_amount_cents = expected
    act.declared_amount_cents = declared
    act.difference_amount_cents = declared - expected
    act.status = ACT_PARTIAL if collected else ACT_PENDING
    act.updated_at = utcnow()
    return act


def _get_or_create_act(messenger_id: int, closing_date: date) -> HandoverAct:
    """Act for (courier, day); unique constraint backs the check-then-insert."""
    act = lock_for_update(
        db.session.query(HandoverAct).filter_by(messenger_id=messenger_id, closing_date=closing_date)
    ).first()
    if act:
        return act

    act = HandoverAct(
        messenger_id=messenger_id,
        closing_date=closing_date,
        expected_amount_cents=0,
        declared_amount_cents=0,
        difference_amount_cents=0,
        status=ACT_PENDING,
        created_at=utcnow(),
    )
    db.session.add(act)
    db.session.flush()
    return act


def _lock_act(act_id: int) -> HandoverAct:
    act = lock_for_update(db.session.query(HandoverAct).filter_by(id=act_id)).first()
    if not act:
        raise NotFoundError("Handover act not found")
    return act


def _append_note(existing: str | None, note: str | None) -> str | None:
    if not note:
        return existing
    return f"{existing}\n{note}" if existing else note


# =============================================================================
# PENDING CASH
# =============================================================================

def pending_cash(
    *,
    messenger_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> list[dict]:
    """
    Money collected but not yet accepted by cartera, newest first.

    - courier deliveries with collected cash > 0 and no collected detail
      (messenger_id filters this block only)
    - warehouse ledger entries still pending
    """
    collected_detail = (
        db.session.query(HandoverDetail.id)
        .filter(
            HandoverDetail.order_id == DeliveryTracking.order_id,
            HandoverDetail.collection_status == COLLECTION_COLLECTED,
        )
        .exists()
    )
    courier_query = (
        db.session.query(DeliveryTracking, Order)
        .join(Order, Order.id == DeliveryTracking.order_id)
        .filter(
            Order.deleted_at.is_(None),
            DeliveryTracking.delivered_at.isnot(None),
            (DeliveryTracking.payment_collected_cents + DeliveryTracking.delivery_fee_collected_cents) > 0,
            ~collected_detail,
        )
    )
    if messenger_id:
        courier_query = courier_query.filter(DeliveryTracking.messenger_id == messenger_id)
    if date_from:
        courier_query = courier_query.filter(DeliveryTracking.delivered_at >= day_bounds(date_from)[0])
    if date_to:
        courier_query = courier_query.filter(DeliveryTracking.delivered_at < day_bounds(date_to)[1])

    warehouse_query = (
        db.session.query(CashLedgerEntry, Order)
        .join(Order, Order.id == CashLedgerEntry.order_id)
        .filter(Order.deleted_at.is_(None), CashLedgerEntry.status != COLLECTION_COLLECTED)
    )
    if date_from:
        warehouse_query = warehouse_query.filter(CashLedgerEntry.created_at >= day_bounds(date_from)[0])
    if date_to:
        warehouse_query = warehouse_query.filter(CashLedgerEntry.created_at < day_bounds(date_to)[1])

    limit = _listing_limit()
    rows = []
    for tracking, order in courier_query.order_by(DeliveryTracking.delivered_at.desc()).limit(limit).all():
        pending_detail = (
            db.session.query(HandoverDetail)
            .filter_by(order_id=order.id, collection_status=COLLECTION_PENDING)
            .order_by(HandoverDetail.id.desc())
            .first()
        )
        rows.append((tracking.delivered_at, {
            "source": SOURCE_MESSENGER,
            "order_id": order.id,
            "order_number": order.order_number,
            "customer_name": order.customer_name,
            "messenger_id": tracking.messenger_id,
            "messenger_name": tracking.messenger.display_name if tracking.messenger else None,
            "amount_cents": tracking.collected_total_cents,
            "payment_collected_cents": tracking.payment_collected_cents,
            "delivery_fee_collected_cents": tracking.delivery_fee_collected_cents,
            "payment_method": tracking.payment_method,
            "declared_amount_cents": pending_detail.declared_amount_cents if pending_detail else None,
            "detail_id": pending_detail.id if pending_detail else None,
            "cash_register_id": None,
            "collected_at": to_utc_z(tracking.delivered_at),
        }))

    for entry, order in warehouse_query.order_by(CashLedgerEntry.created_at.desc()).limit(limit).all():
        rows.append((entry.created_at, {
            "source": SOURCE_WAREHOUSE,
            "order_id": order.id,
            "order_number": order.order_number,
            "customer_name": order.customer_name,
            "messenger_id": None,
            "messenger_name": WAREHOUSE_LABEL,
            "amount_cents": entry.amount_cents,
            "payment_collected_cents": entry.amount_cents,
            "delivery_fee_collected_cents": 0,
            "payment_method": entry.payment_method,
            "declared_amount_cents": None,
            "detail_id": None,
            "cash_register_id": entry.id,
            "collected_at": to_utc_z(entry.created_at),
        }))

    rows.sort(key=lambda pair: pair[0], reverse=True)
    return [data for _, data in rows[:limit]]


# =============================================================================
# ACT LISTING / DETAIL
# =============================================================================

def list_handovers(
    *,
    status: str | None = None,
    messenger_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> list[PersistedAct | SynthesizedAct]:
    """
    Courier acts and warehouse day consolidations, newest closing date
    first, then id descending.

    status filters both kinds (warehouse days are always completed);
    messenger_id narrows courier acts only.
    """
    if status and status not in ACT_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(ACT_STATUSES)}")

    limit = _listing_limit()
    acts: list[PersistedAct | SynthesizedAct] = []

    detail_counts = (
        db.session.query(
            HandoverDetail.act_id.label("act_id"),
            func.count(HandoverDetail.id).label("items_count"),
            func.sum(case((HandoverDetail.collection_status == COLLECTION_COLLECTED, 1), else_=0)).label("items_collected"),
        )
        .join(Order, Order.id == HandoverDetail.order_id)
        .filter(Order.deleted_at.is_(None))
        .group_by(HandoverDetail.act_id)
        .subquery()
    )
    act_query = (
        db.session.query(
            HandoverAct,
            func.coalesce(detail_counts.c.items_count, 0),
            func.coalesce(detail_counts.c.items_collected, 0),
        )
        .outerjoin(detail_counts, detail_counts.c.act_id == HandoverAct.id)
    )
    if status:
        act_query = act_query.filter(HandoverAct.status == status)
    if messenger_id:
        act_query = act_query.filter(HandoverAct.messenger_id == messenger_id)
    if date_from:
        act_query = act_query.filter(HandoverAct.closing_date >= date_from)
    if date_to:
        act_query = act_query.filter(HandoverAct.closing_date <= date_to)

    for act, items_count, items_collected in (
        act_query.order_by(HandoverAct.closing_date.desc(), HandoverAct.id.desc()).limit(limit).all()
    ):
        acts.append(PersistedAct(act=act, items_count=int(items_count), items_collected=int(items_collected)))

    if not status or status == ACT_COMPLETED:
        acts.extend(_warehouse_days(date_from=date_from, date_to=date_to))

    acts.sort(key=lambda a: (a.closing_date, a.id), reverse=True)
    return acts[:limit]


def _collected_warehouse_entries(start=None, end=None):
    query = (
        db.session.query(CashLedgerEntry)
        .join(Order, Order.id == CashLedgerEntry.order_id)
        .filter(
            Order.deleted_at.is_(None),
            CashLedgerEntry.status == COLLECTION_COLLECTED,
            CashLedgerEntry.accepted_at.isnot(None),
        )
    )
    if start is not None:
        query = query.filter(CashLedgerEntry.accepted_at >= start)
    if end is not None:
        query = query.filter(CashLedgerEntry.accepted_at < end)
    return query.order_by(CashLedgerEntry.accepted_at.asc(), CashLedgerEntry.id.asc())


def _accepted_amount(entry: CashLedgerEntry) -> int:
    return entry.accepted_amount_cents if entry.accepted_amount_cents is not None else entry.amount_cents


def _warehouse_days(*, date_from: date | None, date_to: date | None) -> list[SynthesizedAct]:
    """Group collected warehouse entries by acceptance day (UTC)."""
    start = day_bounds(date_from)[0] if date_from else None
    end = day_bounds(date_to)[1] if date_to else None

    days: dict[date, dict] = {}
    for entry in _collected_warehouse_entries(start, end).all():
        day = entry.accepted_at.date()
        bucket = days.setdefault(day, {"total": 0, "count": 0, "first": None, "last": None})
        bucket["total"] += _accepted_amount(entry)
        bucket["count"] += 1
        if bucket["first"] is None or entry.created_at < bucket["first"]:
            bucket["first"] = entry.created_at
        if bucket["last"] is None or entry.accepted_at > bucket["last"]:
            bucket["last"] = entry.accepted_at

    return [
        SynthesizedAct(
            day=day,
            total_cents=bucket["total"],
            items_count=bucket["count"],
            first_created_at=bucket["first"],
            last_accepted_at=bucket["last"],
        )
        for day, bucket in days.items()
    ]


def _detail_rows(act_id: int) -> list[dict]:
    details = _visible_details(act_id).order_by(HandoverDetail.id.asc()).all()
    rows = []
    for detail in details:
        data = detail.to_dict()
        order = detail.order
        data["invoice_date"] = to_utc_z(order.siigo_invoice_created_at) if order else None
        rows.append(data)
    return rows


def get_handover(act_id: int) -> dict:
    act = db.session.query(HandoverAct).filter_by(id=act_id).first()
    if not act:
        raise NotFoundError("Handover act not found")

    items = _detail_rows(act.id)
    header = PersistedAct(
        act=act,
        items_count=len(items),
        items_collected=sum(1 for i in items if i["collection_status"] == COLLECTION_COLLECTED),
    ).to_dict()
    return {"handover": header, "items": items}


def close_act(act_id: int, *, user_id: int, notes: str | None = None) -> HandoverAct:
    """
    Finalize a courier act once.

    Sums are taken from the detail rows at close time; completed iff every
    detail is collected, otherwise discrepancy. Closing a closed act is a
    conflict.
    """
    def _close():
        act = _lock_act(act_id)
        if act.is_closed:
            raise ConflictError("Handover act already closed")

        expected, declared, collected, total = act_aggregates(act.id)
        if total == 0:
            raise ValidationError("Handover act has no items; nothing to close")

        now = utcnow()
        act.expected_amount_cents = expected
        act.declared_amount_cents = declared
        act.difference_amount_cents = declared - expected
        act.status = ACT_COMPLETED if collected == total else ACT_DISCREPANCY
        act.approved_by_user_id = user_id
        act.approved_at = now
        act.closed_at = now
        act.updated_at = now
        act.notes = _append_note(act.notes, notes)

        record_audit(
            entity_type="handover_act",
            entity_id=act.id,
            action="handover.closed",
            actor_user_id=user_id,
            details={
                "status": act.status,
                "expected_amount_cents": expected,
                "declared_amount_cents": declared,
                "collected_count": collected,
                "total_count": total,
            },
        )
        db.session.commit()
        return act

    act = run_with_retry(_close)
    current_app.logger.info(
        "Handover act %s closed as %s (expected %s, declared %s)",
        act.id, act.status, act.expected_amount_cents, act.declared_amount_cents,
    )
    events.publish(events.HANDOVER_CLOSED, {
        "act_id": act.id,
        "messenger_id": act.messenger_id,
        "closing_date": to_iso_date(act.closing_date),
        "status": act.status,
        "expected_amount_cents": act.expected_amount_cents,
        "declared_amount_cents": act.declared_amount_cents,
    })
    return act


# =============================================================================
# PER-ORDER CASH (courier declares, cartera accepts)
# =============================================================================

def _lock_order(order_id: int) -> Order:
    order = lock_for_update(
        db.session.query(Order).filter(Order.id == order_id, Order.deleted_at.is_(None))
    ).first()
    if not order:
        raise NotFoundError("Order not found")
    return order


def _delivered_tracking(order_id: int, messenger_id: int | None = None) -> DeliveryTracking | None:
    query = db.session.query(DeliveryTracking).filter(
        DeliveryTracking.order_id == order_id,
        DeliveryTracking.delivered_at.isnot(None),
    )
    if messenger_id is not None:
        query = query.filter(DeliveryTracking.messenger_id == messenger_id)
    return query.order_by(DeliveryTracking.id.desc()).first()


def declare_cash_for_order(
    order_id: int,
    *,
    messenger_id: int,
    amount_cents=None,
    notes: str | None = None,
) -> dict:
    """
    Courier declares the cash handed over for one delivered order.

    The detail lands in the courier's act for the delivery day; the act is
    created on first use. Declaring into a closed act is a conflict.
    """
    declared_input = None
    if amount_cents is not None:
        declared_input = coerce_amount_cents(amount_cents, "amount_cents")

    def _declare():
        order = _lock_order(order_id)
        tracking = _delivered_tracking(order.id, messenger_id)
        if order.assigned_messenger_id != messenger_id or tracking is None:
            raise ValidationError("Order is not marked as delivered by this messenger")

        expected = tracking.collected_total_cents
        declared = expected if declared_input is None else declared_input

        act = _get_or_create_act(messenger_id, tracking.delivered_at.date())
        if act.is_closed:
            raise ConflictError("Handover act for this day is already closed")

        detail = db.session.query(HandoverDetail).filter_by(act_id=act.id, order_id=order.id).first()
        note = f"[Courier declaration] {notes}" if notes else None
        if detail is None:
            detail = HandoverDetail(
                act_id=act.id,
                order_id=order.id,
                payment_method=tracking.payment_method or "efectivo",
                collection_status=COLLECTION_PENDING,
                created_at=utcnow(),
            )
            db.session.add(detail)
        detail.expected_amount_cents = expected
        detail.declared_amount_cents = declared
        detail.collection_notes = _append_note(detail.collection_notes, note)
        db.session.flush()

        refresh_open_act(act.id)
        db.session.commit()
        return {
            "act_id": act.id,
            "detail_id": detail.id,
            "order_id": order.id,
            "expected_amount_cents": expected,
            "declared_amount_cents": declared,
            "collection_status": detail.collection_status,
        }

    result = run_with_retry(_declare)
    current_app.logger.info(
        "Messenger %s declared %s cents for order %s", messenger_id, result["declared_amount_cents"], order_id
    )
    return result


def accept_cash_for_order(order_id: int, *, user_id: int, notes: str | None = None) -> dict:
    """
    Cartera confirms receipt of a courier's cash for one order.

    Uses the order's latest detail, or creates it (collected) from the
    delivery record when the courier never declared. Idempotent.
    """
    def _accept():
        order = _lock_order(order_id)
        detail = (
            db.session.query(HandoverDetail)
            .filter_by(order_id=order.id)
            .order_by(HandoverDetail.id.desc())
            .first()
        )
        now = utcnow()
        note = f"[Received] accepted by user {user_id}" + (f": {notes}" if notes else "")

        if detail is not None:
            act = _lock_act(detail.act_id)
            if detail.collection_status == COLLECTION_COLLECTED:
                db.session.commit()
                return act, detail, False
            if act.is_closed:
                raise ConflictError("Handover act already closed")
            detail.collection_status = COLLECTION_COLLECTED
            detail.collected_at = now
            detail.accepted_by_user_id = user_id
            detail.collection_notes = _append_note(detail.collection_notes, note)
        else:
            tracking = _delivered_tracking(order.id)
            if tracking is None:
                raise ValidationError("Order is not marked as delivered; cash cannot be accepted")
            act = _get_or_create_act(tracking.messenger_id, tracking.delivered_at.date())
            if act.is_closed:
                raise ConflictError("Handover act for this day is already closed")
            expected = tracking.collected_total_cents
            detail = HandoverDetail(
                act_id=act.id,
                order_id=order.id,
                payment_method=tracking.payment_method or "efectivo",
                expected_amount_cents=expected,
                declared_amount_cents=expected,
                collection_status=COLLECTION_COLLECTED,
                collected_at=now,
                accepted_by_user_id=user_id,
                collection_notes=f"{note} (auto-created)",
                created_at=now,
            )
            db.session.add(detail)
        db.session.flush()

        refresh_open_act(act.id)
        db.session.commit()
        return act, detail, True

    act, detail, changed = run_with_retry(_accept)
    if changed:
        current_app.logger.info("Cash for order %s accepted into act %s by user %s", order_id, act.id, user_id)
    return {
        "act_id": act.id,
        "act_status": act.status,
        "detail": detail.to_dict(),
        "already_collected": not changed,
    }


# =============================================================================
# WAREHOUSE DAY / RECEIPTS
# =============================================================================

def warehouse_day_detail(day: date) -> dict:
    start, end = day_bounds(day)
    entries = _collected_warehouse_entries(start, end).all()
    return {
        "id": warehouse_act_id(day),
        "key": warehouse_key(day),
        "source": SOURCE_WAREHOUSE,
        "closing_date": day.isoformat(),
        "entries": [entry.to_dict() for entry in entries],
        "entries_count": len(entries),
        "total_amount_cents": sum(entry.amount_cents for entry in entries),
        "total_accepted_cents": sum(_accepted_amount(entry) for entry in entries),
    }


def handover_receipt_context(act_id: int) -> dict:
    data = get_handover(act_id)
    data["generated_at"] = to_utc_z(utcnow())
    return data


def warehouse_day_receipt_context(day: date) -> dict:
    data = warehouse_day_detail(day)
    data["generated_at"] = to_utc_z(utcnow())
    return data


def cash_entry_receipt_context(entry_id: int) -> dict:
    entry = db.session.query(CashLedgerEntry).filter_by(id=entry_id).first()
    if not entry:
        raise NotFoundError("Cash register entry not found")
    order = entry.order
    return {
        "entry": entry.to_dict(),
        "order": {
            "order_number": order.order_number,
            "customer_name": order.customer_name,
            "customer_phone": order.customer_phone,
            "total_amount_cents": order.total_amount_cents,
        },
        "received_amount_cents": _accepted_amount(entry),
        "generated_at": to_utc_z(utcnow()),
    }


def messenger_options() -> list[dict]:
    """Couriers that appear on at least one act (for the cartera filter)."""
    rows = (
        db.session.query(User)
        .join(HandoverAct, HandoverAct.messenger_id == User.id)
        .distinct()
        .order_by(User.username.asc())
        .all()
    )
    return [{"id": user.id, "name": user.display_name} for user in rows]
