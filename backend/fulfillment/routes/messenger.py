# Overview: Flask API routes for the courier delivery flow and per-order cash handover.

from flask import Blueprint, request, jsonify, g

from ..services import delivery_service, handover_service
from ..decorators import require_auth, require_permission
from ..validation import ValidationError
from fulfillment.time_utils import parse_iso_date, parse_iso_datetime
from .errors import json_error


messenger_bp = Blueprint("messenger", __name__, url_prefix="/api/messenger")


@messenger_bp.get("/orders")
@require_auth
@require_permission("PERFORM_DELIVERIES")
def assigned_orders_route():
    try:
        orders = delivery_service.assigned_orders(g.current_user.id)
        return jsonify({"orders": orders, "count": len(orders)}), 200
    except Exception as e:
        return json_error(e, "Failed to load messenger orders")


@messenger_bp.get("/daily-summary")
@require_auth
@require_permission("PERFORM_DELIVERIES")
def daily_summary_route():
    """Query params: date (YYYY-MM-DD, default today)"""
    try:
        try:
            day = parse_iso_date(request.args.get("date"))
        except ValueError:
            raise ValidationError("date must be YYYY-MM-DD")
        return jsonify(delivery_service.daily_summary(g.current_user.id, day)), 200
    except Exception as e:
        return json_error(e, "Failed to load daily summary")


@messenger_bp.get("/cash-summary")
@require_auth
@require_permission("PERFORM_DELIVERIES")
def cash_summary_route():
    """Query params: from, to (ISO-8601; default today so far)"""
    try:
        try:
            start = parse_iso_datetime(request.args.get("from"))
            end = parse_iso_datetime(request.args.get("to"))
        except ValueError:
            raise ValidationError("from / to must be ISO-8601 datetimes")
        return jsonify(delivery_service.cash_summary(g.current_user.id, start=start, end=end)), 200
    except Exception as e:
        return json_error(e, "Failed to load cash summary")


@messenger_bp.post("/orders/<int:order_id>/accept")
@require_auth
@require_permission("PERFORM_DELIVERIES")
def accept_order_route(order_id: int):
    try:
        order = delivery_service.accept_order(order_id, messenger_id=g.current_user.id)
        return jsonify({"order": order.to_dict()}), 200
    except Exception as e:
        return json_error(e, "Failed to accept order")


@messenger_bp.post("/orders/<int:order_id>/reject")
@require_auth
@require_permission("PERFORM_DELIVERIES")
def reject_order_route(order_id: int):
    """Request body: {"reason": "..."}"""
    try:
        data = request.get_json(silent=True) or {}
        order = delivery_service.reject_order(
            order_id, messenger_id=g.current_user.id, reason=data.get("reason")
        )
        return jsonify({"order": order.to_dict()}), 200
    except Exception as e:
        return json_error(e, "Failed to reject order")


@messenger_bp.post("/orders/<int:order_id>/start-delivery")
@require_auth
@require_permission("PERFORM_DELIVERIES")
def start_delivery_route(order_id: int):
    try:
        order = delivery_service.start_delivery(order_id, messenger_id=g.current_user.id)
        return jsonify({"order": order.to_dict()}), 200
    except Exception as e:
        return json_error(e, "Failed to start delivery")


@messenger_bp.post("/orders/<int:order_id>/complete")
@require_auth
@require_permission("PERFORM_DELIVERIES")
def complete_delivery_route(order_id: int):
    """
    Request body:
    {
        "payment_collected_cents": 5000000,
        "delivery_fee_collected_cents": 600000,
        "payment_method": "efectivo",
        "delivery_fee_payment_method": "efectivo",
        "delivery_notes": "..."
    }
    """
    try:
        order = delivery_service.complete_delivery(
            order_id, messenger_id=g.current_user.id, payload=request.get_json(silent=True)
        )
        return jsonify({"order": order.to_dict()}), 200
    except Exception as e:
        return json_error(e, "Failed to complete delivery")


@messenger_bp.post("/orders/<int:order_id>/mark-failed")
@require_auth
@require_permission("PERFORM_DELIVERIES")
def mark_failed_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        order = delivery_service.mark_failed(
            order_id, messenger_id=g.current_user.id, reason=data.get("reason")
        )
        return jsonify({"order": order.to_dict()}), 200
    except Exception as e:
        return json_error(e, "Failed to mark delivery failed")


@messenger_bp.post("/orders/<int:order_id>/declare-cash")
@require_auth
@require_permission("PERFORM_DELIVERIES")
def declare_cash_route(order_id: int):
    """Optional body: {"amount_cents": 5600000, "notes": "..."}; amount defaults to the collected total."""
    try:
        data = request.get_json(silent=True) or {}
        result = handover_service.declare_cash_for_order(
            order_id,
            messenger_id=g.current_user.id,
            amount_cents=data.get("amount_cents"),
            notes=data.get("notes"),
        )
        return jsonify(result), 200
    except Exception as e:
        return json_error(e, "Failed to declare cash")


@messenger_bp.post("/orders/<int:order_id>/accept-cash")
@require_auth
@require_permission("ACCEPT_CASH")
def accept_cash_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        result = handover_service.accept_cash_for_order(
            order_id, user_id=g.current_user.id, notes=data.get("notes")
        )
        return jsonify(result), 200
    except Exception as e:
        return json_error(e, "Failed to accept cash")
