# Overview: Flask API routes for packaging verification; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..services import order_service, packaging_service
from ..decorators import require_auth, require_permission
from .errors import json_error


packaging_bp = Blueprint("packaging", __name__, url_prefix="/api/packaging")


@packaging_bp.get("/pending-orders")
@require_auth
@require_permission("VIEW_PACKAGING")
def pending_orders_route():
    """Orders waiting to be packed or being packed, oldest first."""
    try:
        orders = packaging_service.pending_orders()
        return jsonify({"orders": orders, "count": len(orders)}), 200
    except Exception as e:
        return json_error(e, "Failed to load packaging queue")


@packaging_bp.get("/ready-for-delivery")
@require_auth
@require_permission("VIEW_PACKAGING")
def ready_for_delivery_route():
    try:
        orders = packaging_service.ready_for_delivery()
        return jsonify({"orders": orders, "count": len(orders)}), 200
    except Exception as e:
        return json_error(e, "Failed to load ready orders")


@packaging_bp.get("/stats")
@require_auth
@require_permission("VIEW_PACKAGING")
def packaging_stats_route():
    try:
        return jsonify(packaging_service.get_stats()), 200
    except Exception as e:
        return json_error(e, "Failed to load packaging stats")


@packaging_bp.post("/start/<int:order_id>")
@require_auth
@require_permission("VERIFY_PACKAGING")
def start_packaging_route(order_id: int):
    try:
        order, changed = order_service.start_packaging(order_id, user_id=g.current_user.id)
        return jsonify({"order": order.to_dict(), "changed": changed}), 200
    except Exception as e:
        return json_error(e, "Failed to start packaging")


@packaging_bp.get("/checklist/<int:order_id>")
@require_auth
@require_permission("VIEW_PACKAGING")
def checklist_route(order_id: int):
    try:
        return jsonify(packaging_service.get_checklist(order_id)), 200
    except Exception as e:
        return json_error(e, "Failed to load packaging checklist")


@packaging_bp.put("/verify-item/<int:item_id>")
@require_auth
@require_permission("VERIFY_PACKAGING")
def verify_item_route(item_id: int):
    """
    Manual verification of one line.

    Optional body: packed_quantity, packed_weight, packed_flavor,
    packed_size, verification_notes
    """
    try:
        result = packaging_service.verify_item(
            item_id,
            user_id=g.current_user.id,
            payload=request.get_json(silent=True),
        )
        return jsonify(result), 200
    except Exception as e:
        return json_error(e, "Failed to verify item")


@packaging_bp.put("/verify-all/<int:order_id>")
@require_auth
@require_permission("VERIFY_PACKAGING")
def verify_all_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        result = packaging_service.verify_all(
            order_id,
            user_id=g.current_user.id,
            notes=data.get("verification_notes"),
        )
        return jsonify(result), 200
    except Exception as e:
        return json_error(e, "Failed to verify order items")


@packaging_bp.post("/verify-barcode/<int:order_id>")
@require_auth
@require_permission("VERIFY_PACKAGING")
def verify_barcode_route(order_id: int):
    """Request body: {"barcode": "7701234567890"} (barcode or internal code)"""
    try:
        data = request.get_json(silent=True) or {}
        code = data.get("barcode")
        if not isinstance(code, str) or not code.strip():
            return jsonify({"error": "barcode is required"}), 400

        result = packaging_service.verify_barcode(order_id, code=code, user_id=g.current_user.id)
        return jsonify(result), 200
    except Exception as e:
        return json_error(e, "Failed to verify barcode")


@packaging_bp.post("/complete/<int:order_id>")
@require_auth
@require_permission("VERIFY_PACKAGING")
def complete_packaging_route(order_id: int):
    try:
        return jsonify(packaging_service.complete(order_id, user_id=g.current_user.id)), 200
    except Exception as e:
        return json_error(e, "Failed to complete packaging")
