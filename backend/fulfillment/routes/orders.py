# Overview: Flask API routes for orders; parses input and returns JSON responses.

"""
Order API routes

The workflow role of the caller (g.workflow_role) scopes the listing and
gates every update; permissions only decide who may call each endpoint.
"""

from flask import Blueprint, request, jsonify, g

from ..services import order_service
from ..decorators import require_auth, require_permission
from .errors import json_error


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.get("")
@require_auth
@require_permission("VIEW_ORDERS")
def list_orders_route():
    """
    Role-scoped order listing.

    Query params: status, date_from, date_to, search, sort_by, sort_order,
    page, limit (max ORDER_PAGE_LIMIT_MAX).
    """
    try:
        result = order_service.list_orders(
            role=g.workflow_role,
            user_id=g.current_user.id,
            params=request.args.to_dict(),
        )
        return jsonify(result), 200
    except Exception as e:
        return json_error(e, "Failed to list orders")


@orders_bp.get("/stats")
@require_auth
@require_permission("VIEW_ORDERS")
def order_stats_route():
    try:
        return jsonify(order_service.get_stats()), 200
    except Exception as e:
        return json_error(e, "Failed to load order stats")


@orders_bp.get("/<int:order_id>")
@require_auth
@require_permission("VIEW_ORDERS")
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        return jsonify({"order": order_service.order_detail(order)}), 200
    except Exception as e:
        return json_error(e, "Failed to load order")


@orders_bp.post("")
@require_auth
@require_permission("CREATE_ORDER")
def create_order_route():
    """
    Create order with items.

    Request body: customer_* fields, delivery_method, payment_method,
    shipping_payment_method, notes, items: [{name, quantity, unit_price_cents}]
    """
    try:
        order = order_service.create_order(request.get_json(silent=True), user_id=g.current_user.id)
        return jsonify({"order": order_service.order_detail(order)}), 201
    except Exception as e:
        return json_error(e, "Failed to create order")


@orders_bp.put("/<int:order_id>")
@require_auth
@require_permission("UPDATE_ORDER")
def update_order_route(order_id: int):
    """
    Role-gated update. Accepts order fields, status (legacy names allowed),
    items (full replacement) and auto_processed.
    """
    try:
        order = order_service.update_order(
            order_id,
            request.get_json(silent=True),
            user_id=g.current_user.id,
            role=g.workflow_role,
        )
        return jsonify({"order": order_service.order_detail(order)}), 200
    except Exception as e:
        return json_error(e, "Failed to update order")


@orders_bp.delete("/<int:order_id>")
@require_auth
@require_permission("DELETE_ORDER")
def delete_order_route(order_id: int):
    """Soft delete (audited)."""
    try:
        order = order_service.delete_order(order_id, user_id=g.current_user.id)
        return jsonify({"message": "Order deleted", "order_id": order.id}), 200
    except Exception as e:
        return json_error(e, "Failed to delete order")


@orders_bp.delete("/<int:order_id>/siigo")
@require_auth
@require_permission("PURGE_ORDERS")
def purge_order_route(order_id: int):
    """Hard delete of an ERP-invoiced order so the invoice can be imported again."""
    try:
        summary = order_service.purge_siigo_order(order_id, user_id=g.current_user.id)
        return jsonify({"message": "Order purged", "purged": summary}), 200
    except Exception as e:
        return json_error(e, "Failed to purge order")


@orders_bp.post("/<int:order_id>/assign")
@require_auth
@require_permission("ASSIGN_MESSENGER")
def assign_messenger_route(order_id: int):
    """Request body: {"messenger_id": 7}"""
    try:
        data = request.get_json(silent=True) or {}
        messenger_id = data.get("messenger_id")
        if isinstance(messenger_id, bool) or not isinstance(messenger_id, int):
            return jsonify({"error": "messenger_id must be an integer"}), 400

        order = order_service.assign_messenger(order_id, messenger_id, user_id=g.current_user.id)
        return jsonify({"order": order.to_dict()}), 200
    except Exception as e:
        return json_error(e, "Failed to assign messenger")


@orders_bp.post("/<int:order_id>/dispatch")
@require_auth
@require_permission("ASSIGN_MESSENGER")
def dispatch_order_route(order_id: int):
    try:
        order = order_service.dispatch_order(order_id, user_id=g.current_user.id)
        return jsonify({"order": order.to_dict()}), 200
    except Exception as e:
        return json_error(e, "Failed to dispatch order")
