"""
Packaging verification tests.

Verifies:
- Barcode scanning counts one unit per scan, never past the line quantity
- Unknown codes and products outside the order leave no trace
- Manual verification (single line / whole order) is idempotent
- Completion moves the order to listo_para_entrega exactly once
- Explicit completion reports verification progress when incomplete
- A scan that loses the race to a concurrent writer records nothing
"""

import re

import pytest
from sqlalchemy import update
from sqlalchemy.dialects import mysql

from conftest import reload_order
from fulfillment.extensions import db
from fulfillment.models import BarcodeScanEvent, PackagingVerification, Product
from fulfillment.services import events, order_service, packaging_service
from fulfillment.services.packaging_service import IncompletePackagingError
from fulfillment.time_utils import utcnow
from fulfillment.validation import ConflictError, NotFoundError, ValidationError


BARCODE = "7700000000011"


@pytest.fixture
def packing_order(make_order, product):
    """Order in pendiente_empaque with one line of 3 units of the catalog product."""
    def _make(quantity=3, status="pendiente_empaque", extra_items=None):
        items = [{"name": product.name, "quantity": quantity, "unit_price_cents": 1_000_000}]
        items.extend(extra_items or [])
        return make_order(status=status, items=items)
    return _make


def _event_count(sink, kind, order_id):
    return sum(1 for k, p in sink.events if k == kind and p["order_id"] == order_id)


# =============================================================================
# BARCODE SCANNING
# =============================================================================


class TestVerifyBarcode:

    def test_three_scans_complete_a_three_unit_line(self, packing_order, users, events_sink):
        order = packing_order()
        packer = users["empaque"].id

        first = packaging_service.verify_barcode(order.id, code=BARCODE, user_id=packer)
        assert first["status"] == "scanned"
        assert first["scan_progress"] == "1/3"
        assert first["is_verified"] is False

        packaging_service.verify_barcode(order.id, code=BARCODE, user_id=packer)
        third = packaging_service.verify_barcode(order.id, code=BARCODE, user_id=packer)

        assert third["scan_progress"] == "3/3"
        assert third["is_verified"] is True
        assert third["order_completed"] is True
        assert reload_order(order.id).status == "listo_para_entrega"

        scans = (
            db.session.query(BarcodeScanEvent)
            .filter_by(order_id=order.id)
            .order_by(BarcodeScanEvent.scan_number)
            .all()
        )
        assert [s.scan_number for s in scans] == [1, 2, 3]

        assert _event_count(events_sink, events.PACKAGING_COMPLETED, order.id) == 1
        changes = [p for k, p in events_sink.events
                   if k == events.ORDER_STATUS_CHANGED and p["order_id"] == order.id]
        assert len(changes) == 1
        assert changes[0]["from_status"] == "pendiente_empaque"
        assert changes[0]["to_status"] == "listo_para_entrega"

    def test_over_scan_is_reported_and_not_counted(self, packing_order, users, events_sink):
        order = packing_order(quantity=1)
        packer = users["empaque"].id

        packaging_service.verify_barcode(order.id, code=BARCODE, user_id=packer)
        again = packaging_service.verify_barcode(order.id, code=BARCODE, user_id=packer)

        assert again["status"] == "already_verified"
        assert again["scanned_count"] == 1
        assert db.session.query(BarcodeScanEvent).filter_by(order_id=order.id).count() == 1
        assert _event_count(events_sink, events.PACKAGING_COMPLETED, order.id) == 1

    def test_internal_code_resolves_too(self, packing_order, users):
        order = packing_order(quantity=2)
        result = packaging_service.verify_barcode(order.id, code="  QC500 ", user_id=users["empaque"].id)
        assert result["status"] == "scanned"
        assert result["scan_progress"] == "1/2"

    def test_unknown_code_is_not_found(self, packing_order, users):
        order = packing_order()
        with pytest.raises(NotFoundError):
            packaging_service.verify_barcode(order.id, code="0000", user_id=users["empaque"].id)
        assert db.session.query(BarcodeScanEvent).count() == 0

    def test_product_not_in_order_is_rejected(self, packing_order, users):
        db.session.add(Product(name="Arequipe 250g", barcode="7700000000028", internal_code="AR250"))
        db.session.commit()
        order = packing_order()

        with pytest.raises(ValidationError, match="not part of this order"):
            packaging_service.verify_barcode(order.id, code="7700000000028", user_id=users["empaque"].id)

        db.session.rollback()
        assert db.session.query(BarcodeScanEvent).count() == 0
        assert db.session.query(PackagingVerification).count() == 0

    def test_inactive_product_is_not_found(self, packing_order, product, users):
        product.is_active = False
        db.session.commit()
        order = packing_order()
        with pytest.raises(NotFoundError):
            packaging_service.verify_barcode(order.id, code=BARCODE, user_id=users["empaque"].id)

    def test_required_scans_frozen_at_first_touch(self, packing_order, users):
        order = packing_order(quantity=2)
        result = packaging_service.verify_barcode(order.id, code=BARCODE, user_id=users["empaque"].id)
        verification = db.session.query(PackagingVerification).filter_by(item_id=result["item_id"]).one()
        assert verification.required_scans == 2
        assert verification.verification_method == "barcode"

    def test_line_finished_concurrently_is_not_counted(self, packing_order, users, events_sink, monkeypatch):
        order = packing_order(quantity=2)
        packer = users["empaque"].id
        packaging_service.verify_barcode(order.id, code=BARCODE, user_id=packer)

        real_guarded_update = packaging_service.guarded_update

        def finish_line_first(statement, values=None):
            # Another packer completes the line between the check and the increment
            table = PackagingVerification.__table__
            db.session.execute(update(table).values(scanned_count=table.c.required_scans, is_verified=True))
            return real_guarded_update(statement, values)

        monkeypatch.setattr(packaging_service, "guarded_update", finish_line_first)
        result = packaging_service.verify_barcode(order.id, code=BARCODE, user_id=packer)

        assert result["status"] == "already_verified"
        assert result["scan_progress"] == "2/2"
        assert result["order_completed"] is False
        assert db.session.query(BarcodeScanEvent).filter_by(order_id=order.id).count() == 1
        assert _event_count(events_sink, events.PACKAGING_COMPLETED, order.id) == 0
        assert reload_order(order.id).status == "pendiente_empaque"

    def test_verified_flag_assigned_before_the_increment(self):
        # MySQL evaluates SET left to right; later expressions see the new count
        statement = packaging_service.scan_increment_statement(1, user_id=7, now=utcnow())
        sql = str(statement.compile(dialect=mysql.dialect()))

        set_clause = sql.split(" SET ", 1)[1].split(" WHERE ", 1)[0]
        assigned = [part.split("=", 1)[0] for part in re.split(r", (?=\w+=)", set_clause)]
        assert assigned.index("is_verified") < assigned.index("scanned_count")
        assert assigned.index("verified_at") < assigned.index("scanned_count")
        assert "scanned_count < packaging_verifications.required_scans" in sql


# =============================================================================
# MANUAL VERIFICATION
# =============================================================================


class TestManualVerification:

    def test_verify_item_sets_scans_to_required(self, packing_order, users):
        order = packing_order(quantity=4)
        item = packaging_service.active_items(order.id)[0]

        result = packaging_service.verify_item(item.id, user_id=users["empaque"].id,
                                               payload={"packed_weight": "2kg"})

        verification = result["verification"]
        assert verification["is_verified"] is True
        assert verification["scanned_count"] == 4
        assert verification["verification_notes"] == "Item verified"
        assert verification["packed_weight"] == "2kg"
        assert result["order_completed"] is True

    def test_verify_item_twice_keeps_first_stamp(self, packing_order, users):
        order = packing_order(quantity=1, extra_items=[{"name": "Bolsa", "quantity": 1}])
        item = packaging_service.active_items(order.id)[0]

        packaging_service.verify_item(item.id, user_id=users["empaque"].id)
        second = packaging_service.verify_item(item.id, user_id=users["logistica"].id,
                                               payload={"verification_notes": "rechecked"})

        assert second["verification"]["verified_by_user_id"] == users["empaque"].id
        assert second["verification"]["verification_notes"] == "rechecked"
        assert second["order_completed"] is False
        assert packaging_service.verification_counts(order.id) == (1, 2)

    def test_replaced_item_cannot_be_verified(self, packing_order, users):
        order = packing_order()
        old_item = packaging_service.active_items(order.id)[0]
        order_service.update_order(order.id, {"items": [{"name": "Bolsa", "quantity": 1}]},
                                   user_id=users["facturador"].id, role="facturador")
        with pytest.raises(NotFoundError):
            packaging_service.verify_item(old_item.id, user_id=users["empaque"].id)

    def test_verify_all_completes_order(self, packing_order, users, events_sink):
        order = packing_order(extra_items=[{"name": "Bolsa", "quantity": 2}])

        result = packaging_service.verify_all(order.id, user_id=users["empaque"].id, notes=" ok ")

        assert result == {"order_id": order.id, "items_verified": 2, "total_items": 2, "order_completed": True}
        assert reload_order(order.id).status == "listo_para_entrega"

        again = packaging_service.verify_all(order.id, user_id=users["empaque"].id)
        assert again["items_verified"] == 0
        assert again["order_completed"] is False
        assert _event_count(events_sink, events.PACKAGING_COMPLETED, order.id) == 1

    def test_verification_outside_packaging_does_not_move_order(self, packing_order, users):
        order = packing_order(status="en_logistica")
        result = packaging_service.verify_all(order.id, user_id=users["logistica"].id)
        assert result["order_completed"] is False
        assert reload_order(order.id).status == "en_logistica"

    def test_item_replacement_restarts_verification(self, packing_order, users):
        order = packing_order(status="en_logistica")
        packaging_service.verify_all(order.id, user_id=users["logistica"].id)
        assert packaging_service.verification_counts(order.id) == (1, 1)

        order_service.update_order(order.id, {"items": [{"name": "Bolsa", "quantity": 1}]},
                                   user_id=users["facturador"].id, role="facturador")
        assert packaging_service.verification_counts(order.id) == (0, 1)


# =============================================================================
# EXPLICIT COMPLETION
# =============================================================================


class TestCompletePackaging:

    def test_incomplete_reports_progress(self, packing_order, users):
        order = packing_order(extra_items=[{"name": "Bolsa", "quantity": 1}])
        bag = packaging_service.active_items(order.id)[1]
        packaging_service.verify_item(bag.id, user_id=users["empaque"].id)

        with pytest.raises(IncompletePackagingError) as excinfo:
            packaging_service.complete(order.id, user_id=users["empaque"].id)
        assert (excinfo.value.verified_items, excinfo.value.total_items) == (1, 2)

    def test_repeat_completion_is_noop(self, packing_order, users):
        order = packing_order()
        packaging_service.verify_all(order.id, user_id=users["empaque"].id)

        result = packaging_service.complete(order.id, user_id=users["empaque"].id)
        assert result["already_completed"] is True
        assert result["status"] == "listo_para_entrega"

    def test_completion_from_other_status_conflicts(self, packing_order, users):
        order = packing_order(status="en_logistica")
        packaging_service.verify_all(order.id, user_id=users["logistica"].id)
        with pytest.raises(ConflictError):
            packaging_service.complete(order.id, user_id=users["logistica"].id)

    def test_start_packaging(self, packing_order, users):
        order = packing_order()
        started, changed = order_service.start_packaging(order.id, user_id=users["empaque"].id)
        assert (started.status, changed) == ("en_empaque", True)

        _, changed = order_service.start_packaging(order.id, user_id=users["empaque"].id)
        assert changed is False

    def test_start_packaging_wrong_status(self, packing_order, users):
        order = packing_order(status="en_logistica")
        with pytest.raises(ConflictError):
            order_service.start_packaging(order.id, user_id=users["empaque"].id)

    def test_completion_listeners_are_notified_until_unregistered(self, packing_order, users):
        calls = []

        def listener(order, user_id):
            calls.append((order.id, user_id))
            return False

        first = packing_order(status="en_logistica")
        second = packing_order(status="en_logistica")
        user_id = users["logistica"].id

        packaging_service.register_completion_listener(listener)
        try:
            result = packaging_service.verify_all(first.id, user_id=user_id)
        finally:
            packaging_service.unregister_completion_listener(listener)
        packaging_service.verify_all(second.id, user_id=user_id)

        assert calls == [(first.id, user_id)]
        assert result["order_completed"] is False


# =============================================================================
# API
# =============================================================================


class TestPackagingApi:

    def test_scan_flow_over_http(self, client, headers, packing_order):
        order = packing_order(quantity=2)

        resp = client.post(f"/api/packaging/verify-barcode/{order.id}", json={"barcode": BARCODE},
                           headers=headers["empaque"])
        assert resp.status_code == 200
        assert resp.json["scan_progress"] == "1/2"

        resp = client.post(f"/api/packaging/verify-barcode/{order.id}", json={"barcode": BARCODE},
                           headers=headers["empaque"])
        assert resp.json["order_completed"] is True

        resp = client.get(f"/api/packaging/checklist/{order.id}", headers=headers["empaque"])
        assert resp.status_code == 200
        assert resp.json["verified_items"] == resp.json["total_items"] == 1
        assert resp.json["order"]["status"] == "listo_para_entrega"
        assert resp.json["checklist"][0]["barcode"] == BARCODE

    def test_missing_barcode_is_400(self, client, headers, packing_order):
        order = packing_order()
        resp = client.post(f"/api/packaging/verify-barcode/{order.id}", json={}, headers=headers["empaque"])
        assert resp.status_code == 400

    def test_unknown_barcode_is_404(self, client, headers, packing_order):
        order = packing_order()
        resp = client.post(f"/api/packaging/verify-barcode/{order.id}", json={"barcode": "999"},
                           headers=headers["empaque"])
        assert resp.status_code == 404

    def test_incomplete_completion_is_400_with_counts(self, client, headers, packing_order):
        order = packing_order()
        resp = client.post(f"/api/packaging/complete/{order.id}", headers=headers["empaque"])
        assert resp.status_code == 400
        assert resp.json["verified_items"] == 0
        assert resp.json["total_items"] == 1

    def test_queue_lists_pending_orders(self, client, headers, packing_order):
        order = packing_order()
        packing_order(status="en_logistica")
        resp = client.get("/api/packaging/pending-orders", headers=headers["empaque"])
        assert resp.status_code == 200
        assert [o["id"] for o in resp.json["orders"]] == [order.id]
        assert resp.json["orders"][0]["items_count"] == 1

    def test_courier_cannot_verify(self, client, headers, packing_order):
        order = packing_order()
        resp = client.put(f"/api/packaging/verify-all/{order.id}", json={}, headers=headers["mensajero"])
        assert resp.status_code == 403
