"""
API surface tests: authentication, permission gates, cartera endpoints,
printable receipts, system endpoints and CLI commands.
"""

import pytest

from conftest import TEST_PASSWORD, auth_headers, get_auth_token
from fulfillment import format_money
from fulfillment.extensions import db
from fulfillment.models import SecurityEvent, User
from fulfillment.permissions import get_permission_definition, get_permissions_by_category, validate_permission_code
from fulfillment.services import cash_ledger_service, order_service
from fulfillment.time_utils import day_epoch, utcnow


def _warehouse_entry(make_order, users, accept=False):
    order = make_order(delivery_method="recogida_tienda", payment_method="efectivo")
    order_service.update_order(order.id, {"status": "en_logistica"},
                               user_id=users["facturador"].id, role="facturador")
    entry = cash_ledger_service.find_warehouse_entry(order.id)
    if accept:
        cash_ledger_service.accept_entry(entry.id, user_id=users["cartera"].id)
    return order, entry


# =============================================================================
# AUTHENTICATION
# =============================================================================


class TestAuthentication:

    def test_login_returns_usable_token(self, client, users):
        token = get_auth_token(client, "cartera", TEST_PASSWORD)
        assert token

        resp = client.post("/api/auth/validate", headers=auth_headers(token))
        assert resp.status_code == 200
        assert resp.json["roles"] == ["cartera"]
        assert "CLOSE_HANDOVERS" in resp.json["permissions"]

    def test_login_by_email(self, client, users):
        assert get_auth_token(client, "empaque@fulfillment.test", TEST_PASSWORD)

    def test_bad_password_is_logged(self, client, users):
        resp = client.post("/api/auth/login", json={"username": "cartera", "password": "nope"})
        assert resp.status_code == 401
        assert db.session.query(SecurityEvent).filter_by(event_type="LOGIN_FAILED").count() == 1

    def test_missing_credentials(self, client):
        resp = client.post("/api/auth/login", json={"username": "cartera"})
        assert resp.status_code == 400

    def test_logout_revokes_token(self, client, users):
        token = get_auth_token(client, "logistica", TEST_PASSWORD)
        assert client.post("/api/auth/logout", headers=auth_headers(token)).status_code == 200
        resp = client.get("/api/orders", headers=auth_headers(token))
        assert resp.status_code == 401
        assert resp.json["error"] == "Invalid or expired token"

    def test_inactive_user_cannot_login(self, client, users):
        users["mensajero"].is_active = False
        db.session.commit()
        assert get_auth_token(client, "mensajero", TEST_PASSWORD) is None

    def test_missing_token(self, client):
        resp = client.get("/api/cartera/pending")
        assert resp.status_code == 401
        assert resp.json["error"] == "Authentication required"


# =============================================================================
# PERMISSIONS
# =============================================================================


class TestPermissionGates:

    def test_packaging_cannot_see_cash(self, client, headers):
        resp = client.get("/api/cartera/pending", headers=headers["empaque"])
        assert resp.status_code == 403
        assert resp.json["required_permission"] == "VIEW_CASH"

        denial = db.session.query(SecurityEvent).filter_by(event_type="PERMISSION_DENIED").one()
        assert denial.action == "VIEW_CASH"
        assert denial.resource == "/api/cartera/pending"

    def test_logistics_cannot_close_handovers(self, client, headers):
        resp = client.post("/api/cartera/handovers/1/close", headers=headers["logistica"])
        assert resp.status_code == 403

    def test_courier_cannot_validate_payments(self, client, headers):
        resp = client.post("/api/wallet/validate-payment", json={"order_id": 1}, headers=headers["mensajero"])
        assert resp.status_code == 403

    def test_permission_catalog_helpers(self):
        assert validate_permission_code("ACCEPT_CASH")
        assert not validate_permission_code("MANAGE_TENANTS")
        assert get_permission_definition("CLOSE_HANDOVERS")["category"] == "CARTERA"
        assert "VIEW_CASH" in [p["code"] for p in get_permissions_by_category("CARTERA")]


# =============================================================================
# CARTERA
# =============================================================================


class TestCarteraApi:

    def test_pending_cash(self, client, headers, make_order, users):
        order, entry = _warehouse_entry(make_order, users)
        resp = client.get("/api/cartera/pending", headers=headers["cartera"])
        assert resp.status_code == 200
        assert resp.json["count"] == 1
        assert resp.json["items"][0]["cash_register_id"] == entry.id

    def test_pending_cash_bad_filter(self, client, headers):
        resp = client.get("/api/cartera/pending?messenger_id=abc", headers=headers["cartera"])
        assert resp.status_code == 400

    def test_accept_entry_endpoint(self, client, headers, make_order, users):
        _, entry = _warehouse_entry(make_order, users)
        resp = client.post(f"/api/cartera/cash-register/{entry.id}/accept", json={"notes": "counted"},
                           headers=headers["cartera"])
        assert resp.status_code == 200
        assert resp.json["entry"]["status"] == "collected"
        assert resp.json["entry"]["accepted_amount_cents"] == 3_000_000

        missing = client.post("/api/cartera/cash-register/999/accept", headers=headers["cartera"])
        assert missing.status_code == 404

    def test_warehouse_day_by_signed_id(self, client, headers, make_order, users):
        _warehouse_entry(make_order, users, accept=True)
        today = utcnow().date()

        listing = client.get("/api/cartera/handovers", headers=headers["cartera"])
        assert listing.status_code == 200
        warehouse = [h for h in listing.json["handovers"] if h["source"] == "bodega"]
        assert warehouse[0]["id"] == -day_epoch(today)

        resp = client.get(f"/api/cartera/handovers/{-day_epoch(today)}", headers=headers["cartera"])
        assert resp.status_code == 200
        assert resp.json["key"] == f"bodega:{today.isoformat()}"
        assert resp.json["entries_count"] == 1

        by_date = client.get(f"/api/cartera/handovers/bodega/{today.isoformat()}", headers=headers["cartera"])
        assert by_date.json == resp.json

    def test_bad_warehouse_date(self, client, headers):
        resp = client.get("/api/cartera/handovers/bodega/yesterday", headers=headers["cartera"])
        assert resp.status_code == 400

    def test_close_flow(self, client, headers, deliver_order):
        order = deliver_order()
        declared = client.post(f"/api/messenger/orders/{order.id}/declare-cash", json={"amount_cents": 2_000_000},
                               headers=headers["mensajero"])
        assert declared.status_code == 200
        act_id = declared.json["act_id"]

        accepted = client.post(f"/api/messenger/orders/{order.id}/accept-cash", headers=headers["cartera"])
        assert accepted.status_code == 200
        assert accepted.json["act_status"] == "partial"

        detail = client.get(f"/api/cartera/handovers/{act_id}", headers=headers["cartera"])
        assert detail.json["handover"]["items_collected"] == 1

        closed = client.post(f"/api/cartera/handovers/{act_id}/close", json={"notes": "short"},
                             headers=headers["cartera"])
        assert closed.status_code == 200
        assert closed.json["handover"]["status"] == "completed"
        assert closed.json["handover"]["difference_amount_cents"] == -1_000_000

        again = client.post(f"/api/cartera/handovers/{act_id}/close", headers=headers["cartera"])
        assert again.status_code == 409

    def test_unknown_act_is_404(self, client, headers):
        resp = client.get("/api/cartera/handovers/4242", headers=headers["cartera"])
        assert resp.status_code == 404

    @pytest.mark.parametrize("act_id", [-1, -99999999999999999])
    def test_malformed_warehouse_ids_are_404(self, client, headers, act_id):
        resp = client.get(f"/api/cartera/handovers/{act_id}", headers=headers["cartera"])
        assert resp.status_code == 404

        receipt = client.get(f"/api/cartera/handovers/{act_id}/receipt", headers=headers["cartera"])
        assert receipt.status_code == 404


# =============================================================================
# RECEIPTS
# =============================================================================


class TestReceipts:

    def test_format_money(self):
        assert format_money(3_000_000) == "$30,000.00"
        assert format_money(-1_050) == "-$10.50"
        assert format_money(None) == "-"

    def test_cash_entry_receipt(self, client, headers, make_order, users):
        order, entry = _warehouse_entry(make_order, users, accept=True)
        resp = client.get(f"/api/cartera/cash-register/{entry.id}/receipt", headers=headers["cartera"])
        assert resp.status_code == 200
        assert resp.mimetype == "text/html"
        html = resp.get_data(as_text=True)
        assert order.order_number in html
        assert "$30,000.00" in html

    def test_handover_receipt(self, client, headers, deliver_order):
        order = deliver_order()
        accepted = client.post(f"/api/messenger/orders/{order.id}/accept-cash", headers=headers["cartera"])
        resp = client.get(f"/api/cartera/handovers/{accepted.json['act_id']}/receipt", headers=headers["cartera"])
        assert resp.status_code == 200
        html = resp.get_data(as_text=True)
        assert order.order_number in html
        assert "$30,000.00" in html

    def test_warehouse_day_receipt_by_signed_id(self, client, headers, make_order, users):
        order, _ = _warehouse_entry(make_order, users, accept=True)
        act_id = -day_epoch(utcnow().date())
        resp = client.get(f"/api/cartera/handovers/{act_id}/receipt", headers=headers["cartera"])
        assert resp.status_code == 200
        assert order.order_number in resp.get_data(as_text=True)


# =============================================================================
# SYSTEM
# =============================================================================


class TestSystemEndpoints:

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json["status"] == "healthy"
        assert resp.json["checks"]["database"]["status"] == "healthy"

    def test_version(self, client):
        resp = client.get("/version")
        assert resp.status_code == 200
        assert "api_version" in resp.json

    def test_cors_headers_for_allowed_origin(self, app, client):
        origin = app.config["CORS_ALLOWED_ORIGINS"][0]
        resp = client.get("/health", headers={"Origin": origin})
        assert resp.headers.get("Access-Control-Allow-Origin") == origin


# =============================================================================
# CLI
# =============================================================================


class TestCli:

    def test_system_init_seeds_users(self, app):
        result = app.test_cli_runner().invoke(args=["system", "init", "--no-demo-data"])
        assert result.exit_code == 0
        assert "DONE Fulfillment system initialized" in result.output
        usernames = {u.username for u in db.session.query(User).all()}
        assert {"admin", "facturador", "cartera", "logistica", "empaque", "mensajero"} <= usernames

    def test_perms_check(self, app, users):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["perms", "check", "cartera", "ACCEPT_CASH"])
        assert "PASS User 'cartera' HAS permission 'ACCEPT_CASH'" in result.output

        result = runner.invoke(args=["perms", "check", "mensajero", "ACCEPT_CASH"])
        assert "DOES NOT HAVE" in result.output

    def test_perms_grant_unknown_code(self, app):
        result = app.test_cli_runner().invoke(args=["perms", "grant", "cartera", "NOT_A_PERMISSION"])
        assert "FAIL Unknown permission code" in result.output

    def test_catalog_add_product(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["catalog", "add-product", "--name", "Arequipe 250g", "--barcode", "7700000000028"])
        assert "PASS Created product" in result.output
        result = runner.invoke(args=["catalog", "add-product", "--name", "Arequipe 250g", "--barcode", "7700000000028"])
        assert "WARN" in result.output
