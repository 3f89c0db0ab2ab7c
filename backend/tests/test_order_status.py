"""
Order state machine rule tests (pure functions, no database).

Verifies:
- Status normalization (canonical, legacy aliases, rejects unknown)
- Initial status rule over (delivery_method, payment_method)
- Role-gated transition table
- Workflow role precedence
"""

import pytest

from fulfillment.services import order_status
from fulfillment.services.order_status import (
    authorize_update,
    initial_status,
    normalize_status,
    resolve_workflow_role,
)
from fulfillment.services.permission_service import PermissionDeniedError
from fulfillment.validation import ValidationError


# =============================================================================
# NORMALIZATION
# =============================================================================


class TestNormalizeStatus:

    @pytest.mark.parametrize("status", sorted(order_status.ALL_STATUSES))
    def test_canonical_statuses_pass_through(self, status):
        assert normalize_status(status) == status

    @pytest.mark.parametrize(
        "legacy,canonical",
        [
            ("pendiente", "pendiente_facturacion"),
            ("confirmado", "en_logistica"),
            ("enviado", "en_reparto"),
            ("entregado", "entregado_cliente"),
            ("listo", "pendiente_empaque"),
            ("  ENVIADO ", "en_reparto"),
        ],
    )
    def test_legacy_aliases_map_to_canonical(self, legacy, canonical):
        assert normalize_status(legacy) == canonical

    def test_every_alias_targets_the_closed_set(self):
        for target in order_status.LEGACY_ALIASES.values():
            assert target in order_status.ALL_STATUSES

    @pytest.mark.parametrize("value", ["archivado", "", None])
    def test_unknown_status_rejected(self, value):
        with pytest.raises(ValidationError):
            normalize_status(value)


# =============================================================================
# INITIAL STATUS
# =============================================================================


class TestInitialStatus:

    def test_pickup_on_credit_needs_wallet_review(self):
        assert initial_status("recogida_tienda", "transferencia") == "revision_cartera"

    def test_pickup_paid_cash_starts_at_billing(self):
        assert initial_status("recogida_tienda", "efectivo") == "pendiente_facturacion"

    def test_city_delivery_paid_cash_skips_wallet_review(self):
        assert initial_status("domicilio_ciudad", "efectivo") == "en_logistica"

    def test_methods_are_normalized(self):
        assert initial_status(" Domicilio_Ciudad ", "EFECTIVO") == "en_logistica"

    @pytest.mark.parametrize(
        "delivery,payment",
        [
            ("domicilio_ciudad", "transferencia"),
            ("envio_nacional", "efectivo"),
            ("envio_nacional", "credito"),
        ],
    )
    def test_everything_else_starts_at_billing(self, delivery, payment):
        assert initial_status(delivery, payment) == "pendiente_facturacion"


# =============================================================================
# TRANSITION TABLE
# =============================================================================


class TestAuthorizeUpdate:

    @pytest.mark.parametrize("role", ["admin", "facturador"])
    def test_billing_and_admin_unrestricted(self, role):
        authorize_update(role, "entregado_cliente", "pendiente_facturacion", changes_fields=True)

    @pytest.mark.parametrize("target", ["entregado_cliente", "entregado_transportadora"])
    def test_courier_may_deliver_from_en_reparto(self, target):
        authorize_update("mensajero", "en_reparto", target)

    @pytest.mark.parametrize(
        "target",
        sorted(order_status.ALL_STATUSES - order_status.DELIVERED_STATUSES),
    )
    def test_courier_cannot_set_other_statuses(self, target):
        with pytest.raises(PermissionDeniedError):
            authorize_update("mensajero", "en_reparto", target)

    def test_courier_needs_en_reparto(self):
        with pytest.raises(PermissionDeniedError):
            authorize_update("mensajero", "listo_para_entrega", "entregado_cliente")

    def test_courier_cannot_edit_fields(self):
        with pytest.raises(PermissionDeniedError):
            authorize_update("mensajero", "en_reparto", "entregado_cliente", changes_fields=True)

    def test_logistics_cannot_touch_delivered_orders(self):
        with pytest.raises(PermissionDeniedError):
            authorize_update("logistica", "entregado_transportadora", None, changes_fields=True)

    def test_logistics_cannot_mark_ready_directly(self):
        with pytest.raises(PermissionDeniedError):
            authorize_update("logistica", "en_logistica", "listo_para_entrega")

    def test_logistics_listo_is_routed_through_packaging(self):
        target = normalize_status("listo")
        authorize_update("logistica", "en_logistica", target)
        assert target == "pendiente_empaque"

    def test_wallet_approves_into_logistics(self):
        authorize_update("cartera", "revision_cartera", "en_logistica")

    def test_wallet_may_stay_in_review(self):
        authorize_update("cartera", "revision_cartera", None, changes_fields=True)

    def test_wallet_outside_review_denied(self):
        with pytest.raises(PermissionDeniedError):
            authorize_update("cartera", "en_logistica", "pendiente_empaque")

    def test_wallet_other_target_denied(self):
        with pytest.raises(PermissionDeniedError):
            authorize_update("cartera", "revision_cartera", "cancelado")

    def test_packaging_only_starts_packing(self):
        authorize_update("empaque", "pendiente_empaque", "en_empaque")
        with pytest.raises(PermissionDeniedError):
            authorize_update("empaque", "en_empaque", "listo_para_entrega")

    def test_no_role_denied(self):
        with pytest.raises(PermissionDeniedError):
            authorize_update(None, "pendiente_facturacion", "en_logistica")


# =============================================================================
# ROLES AND METHODS
# =============================================================================


class TestWorkflowRole:

    def test_precedence_picks_highest_role(self):
        assert resolve_workflow_role(["mensajero", "cartera"]) == "cartera"
        assert resolve_workflow_role(["empaque", "admin"]) == "admin"

    def test_no_known_role(self):
        assert resolve_workflow_role(["auditor"]) is None
        assert resolve_workflow_role(None) is None


class TestDeliveryMethods:

    @pytest.mark.parametrize("method", ["domicilio", "domicilio_ciudad", "mensajeria_urbana", "Domicilio_Express"])
    def test_local_home_delivery(self, method):
        assert order_status.is_local_home_delivery(method)

    @pytest.mark.parametrize("method", ["recogida_tienda", "envio_nacional", None, ""])
    def test_not_local_home_delivery(self, method):
        assert not order_status.is_local_home_delivery(method)
