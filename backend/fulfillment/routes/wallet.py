# Overview: Flask API routes for cartera payment review; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..services import order_service, wallet_service
from ..decorators import require_auth, require_permission
from .errors import json_error


wallet_bp = Blueprint("wallet", __name__, url_prefix="/api/wallet")


@wallet_bp.get("/orders")
@require_auth
@require_permission("VALIDATE_PAYMENTS")
def wallet_orders_route():
    """Orders in revision_cartera. Query params: search, page, limit"""
    try:
        return jsonify(wallet_service.wallet_orders(request.args.to_dict())), 200
    except Exception as e:
        return json_error(e, "Failed to load wallet orders")


@wallet_bp.post("/validate-payment")
@require_auth
@require_permission("VALIDATE_PAYMENTS")
def validate_payment_route():
    """
    Approve or reject the payment of an order under review.

    Request body:
    {
        "order_id": 12,
        "validation_type": "approved",   // or "rejected"
        "payment_method": "transferencia",
        "payment_reference": "TRX-991",
        "payment_amount_cents": 15000000,
        "payment_date": "2024-05-02",
        "bank_name": "...",
        "validation_notes": "..."
    }
    """
    try:
        order, validation = wallet_service.validate_payment(
            request.get_json(silent=True), user_id=g.current_user.id
        )
        return jsonify({
            "order": order_service.order_detail(order),
            "validation": validation.to_dict(),
        }), 200
    except Exception as e:
        return json_error(e, "Failed to validate payment")


@wallet_bp.get("/validations/<int:order_id>")
@require_auth
@require_permission("VALIDATE_PAYMENTS")
def validation_history_route(order_id: int):
    try:
        validations = wallet_service.validation_history(order_id)
        return jsonify({"validations": [v.to_dict() for v in validations]}), 200
    except Exception as e:
        return json_error(e, "Failed to load validation history")
