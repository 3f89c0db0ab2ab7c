"""
Order service and API tests.

Verifies:
- Creation: initial status, numbering, totals, local courier carrier
- Role-gated updates and their side effects (warehouse cash ledger entry)
- Atomicity of status + items + ledger writes
- shipping_date ownership
- Soft delete, ERP purge, listings and events
"""

import re

import pytest

from conftest import LOCAL_CARRIER_ID, reload_order
from fulfillment.extensions import db
from fulfillment.models import AuditEvent, CashLedgerEntry, Carrier, OrderItem
from fulfillment.services import events, order_service, packaging_service
from fulfillment.services.audit_service import list_audit_events
from fulfillment.services.permission_service import PermissionDeniedError
from fulfillment.time_utils import parse_iso_datetime
from fulfillment.validation import ConflictError, NotFoundError, ValidationError


# =============================================================================
# CREATE
# =============================================================================


class TestCreateOrder:

    def test_city_cash_order_starts_in_logistics(self, make_order):
        order = make_order()
        assert order.status == "en_logistica"
        assert re.fullmatch(r"ORD-\d{13}-[A-Z0-9]{5}", order.order_number)
        assert order.total_amount_cents == 3_000_000

    def test_local_delivery_pins_local_carrier(self, make_order):
        other = db.session.query(Carrier).filter_by(code="SERVIENTREGA").first()
        order = make_order(carrier_id=other.id)
        assert order.carrier_id == LOCAL_CARRIER_ID

    def test_pickup_on_credit_goes_to_wallet_review(self, make_order):
        order = make_order(delivery_method="recogida_tienda", payment_method="transferencia")
        assert order.status == "revision_cartera"

    def test_status_in_payload_is_ignored(self, users):
        order = order_service.create_order({
            "customer_name": "Ana Perez",
            "customer_phone": "3001234567",
            "customer_address": "Calle 10",
            "customer_department": "Antioquia",
            "customer_city": "Medellin",
            "delivery_method": "envio_nacional",
            "payment_method": "transferencia",
            "status": "entregado_cliente",
            "items": [{"name": "Arequipe 250g", "quantity": 1, "unit_price_cents": 700_000}],
        }, user_id=users["facturador"].id)
        assert order.status == "pendiente_facturacion"

    def test_missing_customer_fields_rejected(self, users):
        with pytest.raises(ValidationError):
            order_service.create_order(
                {"customer_name": "Ana", "items": [{"name": "X", "quantity": 1}]},
                user_id=users["facturador"].id,
            )

    def test_items_required(self, make_order):
        with pytest.raises(ValidationError):
            make_order(items=[])

    def test_created_event_published(self, make_order, events_sink):
        order = make_order()
        created = [payload for kind, payload in events_sink.events if kind == events.ORDER_CREATED]
        assert created[-1]["order_id"] == order.id
        assert created[-1]["status"] == "en_logistica"


# =============================================================================
# UPDATE + SIDE EFFECTS
# =============================================================================


class TestWarehouseCashSideEffect:

    def test_pickup_cash_entering_logistics_registers_one_entry(self, make_order, users):
        order = make_order(delivery_method="recogida_tienda", payment_method="efectivo")
        assert order.status == "pendiente_facturacion"

        order_service.update_order(order.id, {"status": "en_logistica"},
                                   user_id=users["facturador"].id, role="facturador")

        entries = db.session.query(CashLedgerEntry).filter_by(order_id=order.id).all()
        assert len(entries) == 1
        assert entries[0].source == "warehouse"
        assert entries[0].status == "pending"
        assert entries[0].amount_cents == reload_order(order.id).total_amount_cents

    def test_reentering_logistics_does_not_duplicate(self, make_order, users):
        order = make_order(delivery_method="recogida_tienda", payment_method="efectivo")
        billing = users["facturador"].id
        order_service.update_order(order.id, {"status": "en_logistica"}, user_id=billing, role="facturador")
        order_service.update_order(order.id, {"status": "pendiente_facturacion"}, user_id=billing, role="facturador")
        order_service.update_order(order.id, {"status": "confirmado"}, user_id=billing, role="facturador")

        assert db.session.query(CashLedgerEntry).filter_by(order_id=order.id).count() == 1

    def test_city_cash_order_has_no_warehouse_entry(self, make_order):
        order = make_order()
        assert db.session.query(CashLedgerEntry).filter_by(order_id=order.id).count() == 0

    def test_failed_side_effect_rolls_back_everything(self, make_order, users, monkeypatch):
        order = make_order(delivery_method="recogida_tienda", payment_method="efectivo")

        def boom(*args, **kwargs):
            raise RuntimeError("ledger unavailable")

        monkeypatch.setattr(order_service.cash_ledger_service, "ensure_warehouse_entry", boom)

        with pytest.raises(RuntimeError):
            order_service.update_order(
                order.id,
                {"status": "en_logistica", "items": [{"name": "Arequipe", "quantity": 1, "unit_price_cents": 900}]},
                user_id=users["facturador"].id,
                role="facturador",
            )

        reloaded = reload_order(order.id)
        assert reloaded.status == "pendiente_facturacion"
        assert [i.name for i in packaging_service.active_items(order.id)] == ["Queso campesino 500g"]
        assert reloaded.total_amount_cents == 3_000_000


class TestUpdateOrder:

    def test_items_replacement_recomputes_total(self, make_order, users):
        order = make_order()
        old_ids = [i.id for i in packaging_service.active_items(order.id)]

        updated = order_service.update_order(order.id, {"items": [
            {"name": "Arequipe 250g", "quantity": 3, "unit_price_cents": 700_000},
            {"name": "Yogurt fresa 1L", "quantity": 1, "unit_price_cents": 900_000},
        ]}, user_id=users["facturador"].id, role="facturador")

        assert updated.total_amount_cents == 3_000_000
        active = packaging_service.active_items(order.id)
        assert sorted(i.name for i in active) == ["Arequipe 250g", "Yogurt fresa 1L"]
        for old_id in old_ids:
            assert db.session.get(OrderItem, old_id).replaced_at is not None

    def test_unauthorized_update_changes_nothing(self, make_order, users):
        order = make_order()
        with pytest.raises(PermissionDeniedError):
            order_service.update_order(
                order.id,
                {"notes": "cartera edit", "items": [{"name": "Otro", "quantity": 1}]},
                user_id=users["cartera"].id,
                role="cartera",
            )
        reloaded = reload_order(order.id)
        assert reloaded.notes is None
        assert len(packaging_service.active_items(order.id)) == 1

    def test_logistics_listo_lands_in_pending_packaging(self, make_order, users):
        order = make_order()
        updated = order_service.update_order(order.id, {"status": "listo"},
                                             user_id=users["logistica"].id, role="logistica")
        assert updated.status == "pendiente_empaque"

    def test_logistics_home_delivery_overrides_carrier(self, make_order, users):
        order = make_order(delivery_method="envio_nacional", payment_method="transferencia")
        other = db.session.query(Carrier).filter_by(code="SERVIENTREGA").first()
        order_service.update_order(order.id, {"status": "en_logistica", "carrier_id": other.id},
                                   user_id=users["facturador"].id, role="facturador")
        assert reload_order(order.id).carrier_id == other.id

        updated = order_service.update_order(order.id, {"delivery_method": " Domicilio "},
                                             user_id=users["logistica"].id, role="logistica")
        assert updated.delivery_method == "domicilio"
        assert updated.carrier_id == LOCAL_CARRIER_ID

    def test_unknown_carrier_rejected(self, make_order, users):
        order = make_order()
        with pytest.raises(ValidationError):
            order_service.update_order(order.id, {"carrier_id": 9999},
                                       user_id=users["facturador"].id, role="facturador")

    def test_missing_order(self, users):
        with pytest.raises(NotFoundError):
            order_service.update_order(424242, {"notes": "x"}, user_id=users["admin"].id, role="admin")

    def test_status_change_event(self, make_order, users, events_sink):
        order = make_order()
        order_service.update_order(order.id, {"status": "pendiente_empaque"},
                                   user_id=users["logistica"].id, role="logistica")
        changes = [p for kind, p in events_sink.events if kind == events.ORDER_STATUS_CHANGED]
        assert changes[-1]["from_status"] == "en_logistica"
        assert changes[-1]["to_status"] == "pendiente_empaque"


# =============================================================================
# SHIPPING DATE
# =============================================================================


class TestShippingDate:

    def test_anyone_may_set_when_missing(self, make_order, users):
        order = make_order()
        updated = order_service.update_order(order.id, {"shipping_date": "2026-03-01T10:00:00Z"},
                                             user_id=users["logistica"].id, role="logistica")
        assert updated.shipping_date == parse_iso_datetime("2026-03-01T10:00:00Z")

    def test_billing_value_is_kept_against_other_roles(self, make_order, users):
        order = make_order()
        order_service.update_order(order.id, {"shipping_date": "2026-03-01T10:00:00Z"},
                                   user_id=users["facturador"].id, role="facturador")

        updated = order_service.update_order(
            order.id,
            {"shipping_date": "2026-04-01T10:00:00Z", "logistics_notes": "fragile"},
            user_id=users["logistica"].id,
            role="logistica",
        )
        assert updated.shipping_date == parse_iso_datetime("2026-03-01T10:00:00Z")
        assert updated.logistics_notes == "fragile"

    def test_automated_billing_update_does_not_override(self, make_order, users):
        order = make_order()
        billing = users["facturador"].id
        order_service.update_order(order.id, {"shipping_date": "2026-03-01T10:00:00Z"},
                                   user_id=billing, role="facturador")
        updated = order_service.update_order(order.id, {"shipping_date": "2026-05-01T10:00:00Z",
                                                        "auto_processed": True},
                                             user_id=billing, role="facturador")
        assert updated.shipping_date == parse_iso_datetime("2026-03-01T10:00:00Z")

    def test_manual_billing_update_changes_it(self, make_order, users):
        order = make_order()
        billing = users["facturador"].id
        order_service.update_order(order.id, {"shipping_date": "2026-03-01T10:00:00Z"},
                                   user_id=billing, role="facturador")
        updated = order_service.update_order(order.id, {"shipping_date": "2026-05-01T10:00:00Z"},
                                             user_id=billing, role="facturador")
        assert updated.shipping_date == parse_iso_datetime("2026-05-01T10:00:00Z")


# =============================================================================
# DELETE / PURGE
# =============================================================================


class TestDeleteOrder:

    def test_soft_delete_keeps_row_and_audits(self, make_order, users):
        order = make_order()
        order_service.delete_order(order.id, user_id=users["facturador"].id)

        reloaded = reload_order(order.id)
        assert reloaded is not None
        assert reloaded.deleted_at is not None
        assert reloaded.deleted_by_user_id == users["facturador"].id

        trail = list_audit_events("order", order.id)
        assert [a.action for a in trail] == ["order.deleted"]
        assert trail[0].details["order_number"] == order.order_number

    def test_deleted_order_is_invisible(self, make_order, users):
        order = make_order()
        order_service.delete_order(order.id, user_id=users["admin"].id)

        with pytest.raises(NotFoundError):
            order_service.get_order(order.id)
        listing = order_service.list_orders(role="admin", user_id=users["admin"].id)
        assert order.id not in [o["id"] for o in listing["orders"]]
        assert order_service.get_stats()["total"] == 0

    def test_double_delete_conflicts(self, make_order, users):
        order = make_order()
        order_service.delete_order(order.id, user_id=users["admin"].id)
        with pytest.raises(ConflictError):
            order_service.delete_order(order.id, user_id=users["admin"].id)

    def test_purge_requires_erp_invoice(self, make_order, users):
        order = make_order()
        with pytest.raises(ValidationError):
            order_service.purge_siigo_order(order.id, user_id=users["admin"].id)

    def test_purge_removes_order_and_children(self, make_order, users):
        order = make_order()
        order.siigo_invoice_id = "INV-77"
        db.session.commit()
        order_id = order.id

        summary = order_service.purge_siigo_order(order_id, user_id=users["admin"].id)

        assert summary["siigo_invoice_id"] == "INV-77"
        assert reload_order(order_id) is None
        assert db.session.query(OrderItem).filter_by(order_id=order_id).count() == 0
        assert db.session.query(AuditEvent).filter_by(action="order.purged", entity_id=order_id).count() == 1


# =============================================================================
# LISTING
# =============================================================================


class TestListOrders:

    def test_role_scoped_listing(self, make_order, users):
        in_review = make_order(delivery_method="recogida_tienda", payment_method="transferencia")
        make_order()

        listing = order_service.list_orders(role="cartera", user_id=users["cartera"].id)
        assert [o["id"] for o in listing["orders"]] == [in_review.id]

    def test_admin_sees_everything(self, make_order, users):
        make_order()
        make_order(delivery_method="recogida_tienda", payment_method="transferencia")
        listing = order_service.list_orders(role="admin", user_id=users["admin"].id)
        assert listing["pagination"]["total"] == 2

    def test_search_and_pagination(self, make_order, users):
        for name in ("Ana Perez", "Bruno Diaz", "Ana Gomez"):
            make_order(customer_name=name)
        listing = order_service.list_orders(role="admin", user_id=users["admin"].id,
                                            params={"search": "ana", "limit": "1", "page": "2"})
        assert listing["pagination"] == {"page": 2, "limit": 1, "total": 2, "pages": 2}
        assert len(listing["orders"]) == 1

    def test_limit_is_capped(self, make_order, users):
        make_order()
        listing = order_service.list_orders(role="admin", user_id=users["admin"].id, params={"limit": "5000"})
        assert listing["pagination"]["limit"] == 100

    def test_bad_sort_rejected(self, users):
        with pytest.raises(ValidationError):
            order_service.list_orders(role="admin", user_id=users["admin"].id, params={"sort_by": "password"})


# =============================================================================
# API
# =============================================================================


class TestOrdersApi:

    def test_create_requires_permission(self, client, headers):
        resp = client.post("/api/orders", json={}, headers=headers["mensajero"])
        assert resp.status_code == 403
        assert resp.json["required_permission"] == "CREATE_ORDER"

    def test_create_and_fetch(self, client, headers):
        resp = client.post("/api/orders", json={
            "customer_name": "Ana Perez",
            "customer_phone": "3001234567",
            "customer_address": "Calle 10",
            "customer_department": "Antioquia",
            "customer_city": "Medellin",
            "delivery_method": "recogida_tienda",
            "payment_method": "transferencia",
            "items": [{"name": "Queso campesino 500g", "quantity": 1, "unit_price_cents": 1_200_000}],
        }, headers=headers["facturador"])
        assert resp.status_code == 201
        order = resp.json["order"]
        assert order["status"] == "revision_cartera"
        assert order["items"][0]["quantity"] == 1

        resp = client.get(f"/api/orders/{order['id']}", headers=headers["admin"])
        assert resp.status_code == 200
        assert resp.json["order"]["order_number"] == order["order_number"]

    def test_invalid_payload_is_400(self, client, headers):
        resp = client.post("/api/orders", json={"customer_name": "x"}, headers=headers["facturador"])
        assert resp.status_code == 400
        assert "error" in resp.json

    def test_courier_cannot_move_in_delivery_order_backwards(self, client, headers, make_order):
        order = make_order(status="en_reparto")
        resp = client.put(f"/api/orders/{order.id}", json={"status": "en_logistica"},
                          headers=headers["mensajero"])
        assert resp.status_code == 403
        assert reload_order(order.id).status == "en_reparto"

    def test_courier_marks_delivered(self, client, headers, make_order):
        order = make_order(status="en_reparto")
        resp = client.put(f"/api/orders/{order.id}", json={"status": "entregado"},
                          headers=headers["mensajero"])
        assert resp.status_code == 200
        assert resp.json["order"]["status"] == "entregado_cliente"

    def test_unknown_order_is_404(self, client, headers):
        resp = client.get("/api/orders/999", headers=headers["admin"])
        assert resp.status_code == 404

    def test_delete_then_404(self, client, headers, make_order):
        order = make_order()
        assert client.delete(f"/api/orders/{order.id}", headers=headers["facturador"]).status_code == 200
        assert client.get(f"/api/orders/{order.id}", headers=headers["admin"]).status_code == 404
        assert client.delete(f"/api/orders/{order.id}", headers=headers["facturador"]).status_code == 409

    def test_assign_requires_integer_messenger(self, client, headers, make_order):
        order = make_order(status="listo_para_entrega")
        resp = client.post(f"/api/orders/{order.id}/assign", json={"messenger_id": "7"},
                           headers=headers["logistica"])
        assert resp.status_code == 400

    def test_assign_and_dispatch(self, client, headers, users, make_order):
        order = make_order(status="listo_para_entrega")
        resp = client.post(f"/api/orders/{order.id}/dispatch", headers=headers["logistica"])
        assert resp.status_code == 409

        resp = client.post(f"/api/orders/{order.id}/assign",
                           json={"messenger_id": users["mensajero"].id}, headers=headers["logistica"])
        assert resp.status_code == 200
        assert resp.json["order"]["messenger_status"] == "assigned"

        resp = client.post(f"/api/orders/{order.id}/dispatch", headers=headers["logistica"])
        assert resp.status_code == 200
        assert resp.json["order"]["status"] == "en_reparto"

    def test_assign_non_courier_rejected(self, client, headers, users, make_order):
        order = make_order(status="listo_para_entrega")
        resp = client.post(f"/api/orders/{order.id}/assign",
                           json={"messenger_id": users["cartera"].id}, headers=headers["logistica"])
        assert resp.status_code == 400
