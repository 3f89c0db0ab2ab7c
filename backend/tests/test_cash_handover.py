"""
Cash ledger and handover reconciliation tests.

Verifies:
- Warehouse ledger entries: single pending entry per order, idempotent acceptance
- Courier acts: declare / accept per order, close once with sums from details
- Pending cash union of courier collections and warehouse entries
- Warehouse day consolidations with stable synthesized ids
- Soft-deleted orders never reach reconciliation
"""

from datetime import date

import pytest

from conftest import reload_order
from fulfillment.extensions import db
from fulfillment.models import CashLedgerEntry, HandoverAct
from fulfillment.services import cash_ledger_service, events, handover_service, order_service
from fulfillment.time_utils import day_epoch, utcnow
from fulfillment.validation import ConflictError, NotFoundError, ValidationError


@pytest.fixture
def warehouse_entry(make_order, users):
    """Pending warehouse entry of a store pickup paid cash (total 3,000,000 cents)."""
    order = make_order(delivery_method="recogida_tienda", payment_method="efectivo")
    order_service.update_order(order.id, {"status": "en_logistica"},
                               user_id=users["facturador"].id, role="facturador")
    return cash_ledger_service.find_warehouse_entry(order.id)


# =============================================================================
# CASH LEDGER
# =============================================================================


class TestCashLedger:

    def test_accept_entry_collects_full_amount(self, warehouse_entry, users):
        entry = cash_ledger_service.accept_entry(warehouse_entry.id, user_id=users["cartera"].id)
        assert entry.status == "collected"
        assert entry.accepted_amount_cents == entry.amount_cents == 3_000_000
        assert entry.accepted_by_user_id == users["cartera"].id
        assert entry.accepted_at is not None

    def test_accept_entry_is_idempotent(self, warehouse_entry, users):
        first = cash_ledger_service.accept_entry(warehouse_entry.id, user_id=users["cartera"].id,
                                                 accepted_amount_cents=2_900_000)
        accepted_at = first.accepted_at

        second = cash_ledger_service.accept_entry(warehouse_entry.id, user_id=users["admin"].id,
                                                  accepted_amount_cents=1)
        assert second.accepted_amount_cents == 2_900_000
        assert second.accepted_by_user_id == users["cartera"].id
        assert second.accepted_at == accepted_at

    def test_accept_unknown_entry(self, users):
        with pytest.raises(NotFoundError, match="Cash register entry not found"):
            cash_ledger_service.accept_entry(999, user_id=users["cartera"].id)

    def test_counter_payment_only_for_pickup(self, make_order, users):
        order = make_order()
        with pytest.raises(ValidationError):
            cash_ledger_service.register_warehouse_payment(order.id, user_id=users["logistica"].id)

    def test_counter_payment_reuses_existing_entry(self, warehouse_entry, users):
        entry, created = cash_ledger_service.register_warehouse_payment(
            warehouse_entry.order_id, user_id=users["logistica"].id, amount_cents=100
        )
        assert created is False
        assert entry.id == warehouse_entry.id
        assert entry.amount_cents == 3_000_000
        assert db.session.query(CashLedgerEntry).count() == 1

    def test_counter_payment_creates_entry(self, make_order, users):
        order = make_order(delivery_method="recogida_tienda", payment_method="efectivo")
        entry, created = cash_ledger_service.register_warehouse_payment(
            order.id, user_id=users["logistica"].id, amount_cents="2500000", notes="paid at counter"
        )
        assert created is True
        assert (entry.status, entry.amount_cents, entry.source) == ("pending", 2_500_000, "warehouse")


# =============================================================================
# COURIER ACTS
# =============================================================================


class TestCourierHandover:

    def test_discrepancy_when_not_every_detail_collected(self, deliver_order, users, events_sink):
        courier = users["mensajero"].id
        cartera = users["cartera"].id
        orders = [deliver_order() for _ in range(3)]

        declared = [3_000_000, 2_500_000, None]
        for order, amount in zip(orders, declared):
            result = handover_service.declare_cash_for_order(order.id, messenger_id=courier, amount_cents=amount)
        act_id = result["act_id"]

        act = db.session.get(HandoverAct, act_id)
        assert act.status == "pending"

        handover_service.accept_cash_for_order(orders[0].id, user_id=cartera)
        accepted = handover_service.accept_cash_for_order(orders[1].id, user_id=cartera)
        assert accepted["act_status"] == "partial"

        closed = handover_service.close_act(act_id, user_id=cartera, notes="short 5,000")

        assert closed.status == "discrepancy"
        assert closed.expected_amount_cents == 9_000_000
        assert closed.declared_amount_cents == 8_500_000
        assert closed.difference_amount_cents == -500_000
        assert closed.closed_at is not None
        assert closed.approved_by_user_id == cartera

        published = [p for k, p in events_sink.events if k == events.HANDOVER_CLOSED]
        assert published == [{
            "act_id": act_id,
            "messenger_id": courier,
            "closing_date": closed.closing_date.isoformat(),
            "status": "discrepancy",
            "expected_amount_cents": 9_000_000,
            "declared_amount_cents": 8_500_000,
        }]

    def test_completed_when_everything_collected(self, deliver_order, users):
        cartera = users["cartera"].id
        first = deliver_order()
        second = deliver_order(payment=1_000_000, fee=500_000,
                               items=[{"name": "Arequipe 250g", "quantity": 1, "unit_price_cents": 1_000_000}])

        handover_service.accept_cash_for_order(first.id, user_id=cartera)
        accepted = handover_service.accept_cash_for_order(second.id, user_id=cartera)

        assert accepted["detail"]["expected_amount_cents"] == 1_500_000
        assert "(auto-created)" in accepted["detail"]["collection_notes"]

        closed = handover_service.close_act(accepted["act_id"], user_id=cartera)
        assert closed.status == "completed"
        assert closed.expected_amount_cents == closed.declared_amount_cents == 4_500_000
        assert closed.difference_amount_cents == 0

    def test_accepting_twice_reports_already_collected(self, deliver_order, users):
        order = deliver_order()
        handover_service.accept_cash_for_order(order.id, user_id=users["cartera"].id)
        again = handover_service.accept_cash_for_order(order.id, user_id=users["cartera"].id)
        assert again["already_collected"] is True

    def test_close_twice_conflicts(self, deliver_order, users):
        order = deliver_order()
        accepted = handover_service.accept_cash_for_order(order.id, user_id=users["cartera"].id)
        handover_service.close_act(accepted["act_id"], user_id=users["cartera"].id)
        with pytest.raises(ConflictError, match="already closed"):
            handover_service.close_act(accepted["act_id"], user_id=users["cartera"].id)

    def test_closed_act_rejects_new_declarations(self, deliver_order, users):
        first = deliver_order()
        accepted = handover_service.accept_cash_for_order(first.id, user_id=users["cartera"].id)
        handover_service.close_act(accepted["act_id"], user_id=users["cartera"].id)

        second = deliver_order()
        with pytest.raises(ConflictError):
            handover_service.declare_cash_for_order(second.id, messenger_id=users["mensajero"].id)

    def test_empty_act_cannot_close(self, users):
        act = HandoverAct(messenger_id=users["mensajero"].id, closing_date=utcnow().date(), status="pending")
        db.session.add(act)
        db.session.commit()
        with pytest.raises(ValidationError):
            handover_service.close_act(act.id, user_id=users["cartera"].id)

    def test_unknown_act(self, users):
        with pytest.raises(NotFoundError):
            handover_service.close_act(12345, user_id=users["cartera"].id)

    def test_declare_requires_delivery_by_courier(self, make_order, users):
        order = make_order(status="en_reparto")
        with pytest.raises(ValidationError):
            handover_service.declare_cash_for_order(order.id, messenger_id=users["mensajero"].id)

    def test_get_handover_lists_details(self, deliver_order, users):
        order = deliver_order()
        declared = handover_service.declare_cash_for_order(order.id, messenger_id=users["mensajero"].id)

        data = handover_service.get_handover(declared["act_id"])
        assert data["handover"]["key"] == f"act:{declared['act_id']}"
        assert data["handover"]["items_count"] == 1
        assert data["handover"]["items_collected"] == 0
        assert data["items"][0]["order_number"] == order.order_number


# =============================================================================
# PENDING CASH / LISTINGS
# =============================================================================


class TestPendingCash:

    def test_union_of_courier_and_warehouse_cash(self, deliver_order, warehouse_entry, users):
        delivered = deliver_order()

        rows = handover_service.pending_cash()
        by_source = {row["source"]: row for row in rows}
        assert set(by_source) == {"messenger", "bodega"}
        assert by_source["messenger"]["order_id"] == delivered.id
        assert by_source["messenger"]["amount_cents"] == 3_000_000
        assert by_source["bodega"]["cash_register_id"] == warehouse_entry.id
        assert by_source["bodega"]["messenger_name"] == "Bodega"

    def test_messenger_filter_applies_to_courier_rows_only(self, deliver_order, warehouse_entry, users):
        deliver_order()
        rows = handover_service.pending_cash(messenger_id=users["cartera"].id)
        assert [row["source"] for row in rows] == ["bodega"]

    def test_accepted_cash_leaves_the_list(self, deliver_order, warehouse_entry, users):
        delivered = deliver_order()
        handover_service.accept_cash_for_order(delivered.id, user_id=users["cartera"].id)
        cash_ledger_service.accept_entry(warehouse_entry.id, user_id=users["cartera"].id)
        assert handover_service.pending_cash() == []

    def test_transfer_only_delivery_is_not_pending(self, deliver_order):
        deliver_order(payment=0, payment_method="transferencia")
        assert handover_service.pending_cash() == []


class TestWarehouseDays:

    def test_collected_entries_form_a_synthesized_act(self, warehouse_entry, users):
        cash_ledger_service.accept_entry(warehouse_entry.id, user_id=users["cartera"].id)
        today = utcnow().date()

        acts = handover_service.list_handovers()
        warehouse = [a.to_dict() for a in acts if a.source == "bodega"]
        assert len(warehouse) == 1
        day = warehouse[0]
        assert day["id"] == -day_epoch(today)
        assert day["key"] == f"bodega:{today.isoformat()}"
        assert day["status"] == "completed"
        assert day["messenger_name"] == "Bodega"
        assert day["expected_amount_cents"] == 3_000_000

        again = [a for a in handover_service.list_handovers() if a.source == "bodega"]
        assert again[0].id == day["id"]

    def test_pending_entries_are_not_consolidated(self, warehouse_entry):
        assert [a for a in handover_service.list_handovers() if a.source == "bodega"] == []

    def test_messenger_filter_keeps_warehouse_days(self, warehouse_entry, users):
        cash_ledger_service.accept_entry(warehouse_entry.id, user_id=users["cartera"].id)
        acts = handover_service.list_handovers(messenger_id=users["mensajero"].id)
        assert [a.source for a in acts] == ["bodega"]

    def test_status_filter(self, warehouse_entry, deliver_order, users):
        cash_ledger_service.accept_entry(warehouse_entry.id, user_id=users["cartera"].id)
        order = deliver_order()
        handover_service.declare_cash_for_order(order.id, messenger_id=users["mensajero"].id)

        assert [a.source for a in handover_service.list_handovers(status="pending")] == ["messenger"]
        assert [a.source for a in handover_service.list_handovers(status="completed")] == ["bodega"]
        with pytest.raises(ValidationError):
            handover_service.list_handovers(status="closed")

    def test_day_detail(self, warehouse_entry, users):
        cash_ledger_service.accept_entry(warehouse_entry.id, user_id=users["cartera"].id,
                                         accepted_amount_cents=2_800_000)
        detail = handover_service.warehouse_day_detail(utcnow().date())
        assert detail["entries_count"] == 1
        assert detail["total_amount_cents"] == 3_000_000
        assert detail["total_accepted_cents"] == 2_800_000

    def test_act_id_maps_back_to_its_day(self):
        day = date(2026, 3, 14)
        assert handover_service.warehouse_day_from_act_id(handover_service.warehouse_act_id(day)) == day

    @pytest.mark.parametrize("act_id", [-1, -(86_400 + 3_600), -86_400 * 10**12, -99999999999999999])
    def test_ids_no_day_maps_to_are_not_found(self, act_id):
        with pytest.raises(NotFoundError):
            handover_service.warehouse_day_from_act_id(act_id)



# =============================================================================
# SOFT DELETE
# =============================================================================


class TestSoftDeletedOrders:

    def test_deleted_orders_leave_reconciliation(self, deliver_order, warehouse_entry, users):
        kept = deliver_order()
        dropped = deliver_order()
        courier = users["mensajero"].id
        handover_service.declare_cash_for_order(kept.id, messenger_id=courier)
        declared = handover_service.declare_cash_for_order(dropped.id, messenger_id=courier)

        order_service.delete_order(dropped.id, user_id=users["admin"].id)
        order_service.delete_order(warehouse_entry.order_id, user_id=users["admin"].id)

        assert {row["order_id"] for row in handover_service.pending_cash()} == {kept.id}

        data = handover_service.get_handover(declared["act_id"])
        assert [item["order_id"] for item in data["items"]] == [kept.id]
        assert handover_service.act_aggregates(declared["act_id"]) == (3_000_000, 3_000_000, 0, 1)

    def test_deleted_order_cash_cannot_be_accepted(self, deliver_order, users):
        order = deliver_order()
        order_service.delete_order(order.id, user_id=users["admin"].id)
        with pytest.raises(NotFoundError):
            handover_service.accept_cash_for_order(order.id, user_id=users["cartera"].id)

    def test_purge_refreshes_open_act(self, deliver_order, users):
        kept = deliver_order()
        purged = deliver_order()
        courier = users["mensajero"].id
        handover_service.declare_cash_for_order(kept.id, messenger_id=courier)
        declared = handover_service.declare_cash_for_order(purged.id, messenger_id=courier)
        assert db.session.get(HandoverAct, declared["act_id"]).expected_amount_cents == 6_000_000

        purged.siigo_invoice_number = "FV-1001"
        db.session.commit()
        order_service.purge_siigo_order(purged.id, user_id=users["admin"].id)

        db.session.expire_all()
        act = db.session.get(HandoverAct, declared["act_id"])
        assert act.expected_amount_cents == 3_000_000
        assert reload_order(kept.id) is not None
