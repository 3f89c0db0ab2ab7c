# Overview: Flask API routes for the logistics desk; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..services import logistics_service
from ..decorators import require_auth, require_permission
from .errors import json_error


logistics_bp = Blueprint("logistics", __name__, url_prefix="/api/logistics")


@logistics_bp.get("/orders")
@require_auth
@require_permission("MANAGE_LOGISTICS")
def logistics_orders_route():
    """Orders in en_logistica by default; same query params as GET /api/orders."""
    try:
        return jsonify(logistics_service.logistics_orders(request.args.to_dict())), 200
    except Exception as e:
        return json_error(e, "Failed to load logistics orders")


@logistics_bp.get("/carriers")
@require_auth
@require_permission("MANAGE_LOGISTICS")
def carriers_route():
    try:
        carriers = logistics_service.active_carriers()
        return jsonify({"carriers": [c.to_dict() for c in carriers]}), 200
    except Exception as e:
        return json_error(e, "Failed to load carriers")


@logistics_bp.put("/orders/<int:order_id>/delivery-method")
@require_auth
@require_permission("MANAGE_LOGISTICS")
def update_delivery_method_route(order_id: int):
    """Request body: delivery_method, carrier_id, tracking_number, shipping_payment_method"""
    try:
        order = logistics_service.update_delivery_method(
            order_id, request.get_json(silent=True), user_id=g.current_user.id
        )
        return jsonify({"order": order.to_dict()}), 200
    except Exception as e:
        return json_error(e, "Failed to update delivery method")


@logistics_bp.post("/orders/<int:order_id>/process")
@require_auth
@require_permission("MANAGE_LOGISTICS")
def process_order_route(order_id: int):
    """Send an order in logistics to packaging with its shipping details."""
    try:
        order = logistics_service.process_order(
            order_id, request.get_json(silent=True), user_id=g.current_user.id
        )
        return jsonify({"order": order.to_dict()}), 200
    except Exception as e:
        return json_error(e, "Failed to process order")


@logistics_bp.post("/orders/<int:order_id>/pickup-payment")
@require_auth
@require_permission("MANAGE_LOGISTICS")
def pickup_payment_route(order_id: int):
    """Optional body: {"amount_cents": 150000, "notes": "..."}"""
    try:
        entry, created = logistics_service.register_pickup_payment(
            order_id, request.get_json(silent=True), user_id=g.current_user.id
        )
        return jsonify({"entry": entry.to_dict(), "created": created}), 201 if created else 200
    except Exception as e:
        return json_error(e, "Failed to register pickup payment")


@logistics_bp.post("/orders/<int:order_id>/mark-delivered-carrier")
@require_auth
@require_permission("MANAGE_LOGISTICS")
def mark_delivered_carrier_route(order_id: int):
    """Optional body: {"tracking_number": "SV-123", "logistics_notes": "..."}"""
    try:
        order = logistics_service.mark_delivered_to_carrier(
            order_id, request.get_json(silent=True), user_id=g.current_user.id
        )
        return jsonify({"order": order.to_dict()}), 200
    except Exception as e:
        return json_error(e, "Failed to mark order delivered to carrier")


@logistics_bp.post("/orders/<int:order_id>/mark-picked-up")
@require_auth
@require_permission("MANAGE_LOGISTICS")
def mark_picked_up_route(order_id: int):
    try:
        order = logistics_service.mark_picked_up(
            order_id, request.get_json(silent=True), user_id=g.current_user.id
        )
        return jsonify({"order": order.to_dict()}), 200
    except Exception as e:
        return json_error(e, "Failed to mark order picked up")


@logistics_bp.post("/orders/<int:order_id>/mark-in-delivery")
@require_auth
@require_permission("MANAGE_LOGISTICS")
def mark_in_delivery_route(order_id: int):
    """Optional body: {"messenger_id": 7}"""
    try:
        order = logistics_service.mark_in_delivery(
            order_id, request.get_json(silent=True), user_id=g.current_user.id
        )
        return jsonify({"order": order.to_dict()}), 200
    except Exception as e:
        return json_error(e, "Failed to mark order in delivery")
