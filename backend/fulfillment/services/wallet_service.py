# Overview: Cartera payment review for orders in revision_cartera.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Order, WalletValidation
from ..validation import (
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    coerce_amount_cents,
    validate_payload,
)
from .concurrency import lock_for_update, run_with_retry
from . import order_service
from . import order_status
from fulfillment.time_utils import utcnow


VALIDATION_APPROVED = "approved"
VALIDATION_REJECTED = "rejected"

VALIDATION_POLICY = ModelValidationPolicy(
    writable_fields={
        "payment_method",
        "payment_reference",
        "payment_date",
        "bank_name",
        "validation_notes",
    },
)


def wallet_orders(params: dict | None = None) -> dict:
    """Orders waiting for cartera, same paging and search as the order listing."""
    params = dict(params or {})
    params.pop("status", None)
    params.setdefault("sort_by", "updated_at")
    return order_service.list_orders(role=order_status.ROLE_WALLET, user_id=0, params=params)


def validate_payment(payload: dict | None, *, user_id: int) -> tuple[Order, WalletValidation]:
    """
    Record a payment review and route the order.

    approved: validation_status approved and the order moves to en_logistica
    (which runs the ledger side effect for pickup cash orders).
    rejected: the order stays in revision_cartera, flagged rejected.
    """
    if payload is None or not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    data = dict(payload)
    order_id = data.pop("order_id", None)
    if isinstance(order_id, bool) or not isinstance(order_id, int):
        raise ValidationError("order_id must be an integer")

    validation_type = (data.pop("validation_type", None) or VALIDATION_APPROVED).strip().lower()
    if validation_type not in (VALIDATION_APPROVED, VALIDATION_REJECTED):
        raise ValidationError("validation_type must be approved or rejected")

    amount = data.pop("payment_amount_cents", None)
    if amount is not None:
        amount = coerce_amount_cents(amount, "payment_amount_cents")

    fields = validate_payload(model=WalletValidation, payload=data, policy=VALIDATION_POLICY, partial=True)
    if fields.get("payment_method"):
        fields["payment_method"] = order_status.normalize_method(fields["payment_method"])

    def _validate():
        order = lock_for_update(
            db.session.query(Order).filter(
                Order.id == order_id,
                Order.deleted_at.is_(None),
                Order.status == order_status.STATUS_WALLET_REVIEW,
            )
        ).first()
        if not order:
            raise NotFoundError("Order not found or not in cartera review")

        now = utcnow()
        validation = WalletValidation(
            order_id=order.id,
            validation_type=validation_type,
            payment_amount_cents=amount,
            validated_by_user_id=user_id,
            validated_at=now,
            **fields,
        )
        db.session.add(validation)

        order.validation_status = validation_type
        order.validation_notes = fields.get("validation_notes")
        order.updated_at = now

        change = None
        if validation_type == VALIDATION_APPROVED:
            change = order_service.set_status(order, order_status.STATUS_LOGISTICS, user_id=user_id)

        db.session.commit()
        return order, validation, change

    order, validation, change = run_with_retry(_validate)
    current_app.logger.info(
        "Payment of order %s %s by user %s", order.order_number, validation_type, user_id
    )
    order_service.publish_status_change(change)
    return order, validation


def validation_history(order_id: int) -> list[WalletValidation]:
    if not db.session.query(Order.id).filter(Order.id == order_id, Order.deleted_at.is_(None)).first():
        raise NotFoundError("Order not found")
    return (
        db.session.query(WalletValidation)
        .filter_by(order_id=order_id)
        .order_by(WalletValidation.validated_at.desc(), WalletValidation.id.desc())
        .all()
    )
