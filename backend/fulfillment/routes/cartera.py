# Overview: Flask API routes for cartera cash reconciliation; JSON plus printable HTML receipts.

"""
Cartera (accounts receivable) routes

Handover ids are signed: positive ids are courier acts, negative ids are
warehouse day consolidations (-epoch of the day's UTC midnight), which
are also reachable by date under /handovers/bodega/<YYYY-MM-DD>.
"""

from flask import Blueprint, request, jsonify, g, render_template

from ..services import cash_ledger_service, handover_service
from ..decorators import require_auth, require_permission
from ..validation import ValidationError
from fulfillment.time_utils import parse_iso_date
from .errors import json_error


cartera_bp = Blueprint("cartera", __name__, url_prefix="/api/cartera")


def _date_arg(name: str):
    try:
        return parse_iso_date(request.args.get(name))
    except ValueError:
        raise ValidationError(f"{name} must be YYYY-MM-DD")


def _path_date(value: str):
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError("date must be YYYY-MM-DD")


def _messenger_arg():
    raw = request.args.get("messenger_id")
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError("messenger_id must be an integer")


@cartera_bp.get("/pending")
@require_auth
@require_permission("VIEW_CASH")
def pending_cash_route():
    """
    Collected money not yet accepted.

    Query params: messenger_id (courier rows only), date_from, date_to
    """
    try:
        rows = handover_service.pending_cash(
            messenger_id=_messenger_arg(),
            date_from=_date_arg("date_from"),
            date_to=_date_arg("date_to"),
        )
        return jsonify({"items": rows, "count": len(rows)}), 200
    except Exception as e:
        return json_error(e, "Failed to load pending cash")


@cartera_bp.get("/handovers")
@require_auth
@require_permission("VIEW_CASH")
def list_handovers_route():
    """Query params: status, messenger_id, date_from, date_to"""
    try:
        acts = handover_service.list_handovers(
            status=request.args.get("status") or None,
            messenger_id=_messenger_arg(),
            date_from=_date_arg("date_from"),
            date_to=_date_arg("date_to"),
        )
        return jsonify({
            "handovers": [act.to_dict() for act in acts],
            "count": len(acts),
            "messengers": handover_service.messenger_options(),
        }), 200
    except Exception as e:
        return json_error(e, "Failed to list handovers")


@cartera_bp.get("/handovers/<int(signed=True):act_id>")
@require_auth
@require_permission("VIEW_CASH")
def get_handover_route(act_id: int):
    try:
        if act_id < 0:
            day = handover_service.warehouse_day_from_act_id(act_id)
            return jsonify(handover_service.warehouse_day_detail(day)), 200
        return jsonify(handover_service.get_handover(act_id)), 200
    except Exception as e:
        return json_error(e, "Failed to load handover")


@cartera_bp.post("/handovers/<int:act_id>/close")
@require_auth
@require_permission("CLOSE_HANDOVERS")
def close_handover_route(act_id: int):
    try:
        data = request.get_json(silent=True) or {}
        act = handover_service.close_act(act_id, user_id=g.current_user.id, notes=data.get("notes"))
        return jsonify({"handover": act.to_dict()}), 200
    except Exception as e:
        return json_error(e, "Failed to close handover")


@cartera_bp.get("/handovers/<int(signed=True):act_id>/receipt")
@require_auth
@require_permission("VIEW_CASH")
def handover_receipt_route(act_id: int):
    try:
        if act_id < 0:
            day = handover_service.warehouse_day_from_act_id(act_id)
            context = handover_service.warehouse_day_receipt_context(day)
            return render_template("receipts/warehouse_day.html", **context), 200
        context = handover_service.handover_receipt_context(act_id)
        return render_template("receipts/handover.html", **context), 200
    except Exception as e:
        return json_error(e, "Failed to render handover receipt")


@cartera_bp.get("/handovers/bodega/<day>")
@require_auth
@require_permission("VIEW_CASH")
def warehouse_day_route(day: str):
    try:
        return jsonify(handover_service.warehouse_day_detail(_path_date(day))), 200
    except Exception as e:
        return json_error(e, "Failed to load warehouse day")


@cartera_bp.get("/handovers/bodega/<day>/receipt")
@require_auth
@require_permission("VIEW_CASH")
def warehouse_day_receipt_route(day: str):
    try:
        context = handover_service.warehouse_day_receipt_context(_path_date(day))
        return render_template("receipts/warehouse_day.html", **context), 200
    except Exception as e:
        return json_error(e, "Failed to render warehouse receipt")


@cartera_bp.post("/cash-register/<int:entry_id>/accept")
@require_auth
@require_permission("ACCEPT_CASH")
def accept_cash_entry_route(entry_id: int):
    """Optional body: {"accepted_amount_cents": 150000, "notes": "..."}"""
    try:
        data = request.get_json(silent=True) or {}
        entry = cash_ledger_service.accept_entry(
            entry_id,
            user_id=g.current_user.id,
            accepted_amount_cents=data.get("accepted_amount_cents"),
            notes=data.get("notes"),
        )
        return jsonify({"entry": entry.to_dict()}), 200
    except Exception as e:
        return json_error(e, "Failed to accept cash entry")


@cartera_bp.get("/cash-register/<int:entry_id>/receipt")
@require_auth
@require_permission("VIEW_CASH")
def cash_entry_receipt_route(entry_id: int):
    try:
        context = handover_service.cash_entry_receipt_context(entry_id)
        return render_template("receipts/cash_entry.html", **context), 200
    except Exception as e:
        return json_error(e, "Failed to render cash receipt")
