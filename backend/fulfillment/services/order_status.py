# Overview: Order status vocabulary and role-gated transition rules (no database access).

"""
Order State Machine rules.

Pure functions over strings so the rules can be tested in isolation and
reused by every service that moves an order (order updates, wallet review,
logistics, packaging completion, courier flow).

STATUS SET (closed):
    pendiente_facturacion -> revision_cartera -> en_logistica
    -> pendiente_empaque -> en_empaque -> listo_para_entrega -> en_reparto
    -> entregado_cliente | entregado_transportadora
    cancelado (from anywhere, billing/admin/logistics)

Legacy names are accepted on input and mapped to the canonical set; they
are never written.
"""

from __future__ import annotations

from ..validation import ValidationError
from .permission_service import PermissionDeniedError


# =============================================================================
# STATUSES
# =============================================================================

STATUS_PENDING_BILLING = "pendiente_facturacion"
STATUS_WALLET_REVIEW = "revision_cartera"
STATUS_LOGISTICS = "en_logistica"
STATUS_PENDING_PACKAGING = "pendiente_empaque"
STATUS_PACKAGING = "en_empaque"
STATUS_READY_FOR_DELIVERY = "listo_para_entrega"
STATUS_IN_DELIVERY = "en_reparto"
STATUS_DELIVERED_CARRIER = "entregado_transportadora"
STATUS_DELIVERED_CUSTOMER = "entregado_cliente"
STATUS_CANCELLED = "cancelado"

ALL_STATUSES = frozenset({
    STATUS_PENDING_BILLING,
    STATUS_WALLET_REVIEW,
    STATUS_LOGISTICS,
    STATUS_PENDING_PACKAGING,
    STATUS_PACKAGING,
    STATUS_READY_FOR_DELIVERY,
    STATUS_IN_DELIVERY,
    STATUS_DELIVERED_CARRIER,
    STATUS_DELIVERED_CUSTOMER,
    STATUS_CANCELLED,
})

DELIVERED_STATUSES = frozenset({STATUS_DELIVERED_CARRIER, STATUS_DELIVERED_CUSTOMER})

# Statuses from which packaging completion may move an order forward
PACKAGING_STATUSES = (STATUS_PENDING_PACKAGING, STATUS_PACKAGING)

LEGACY_ALIASES = {
    "pendiente": STATUS_PENDING_BILLING,
    "pendiente_por_facturacion": STATUS_PENDING_BILLING,
    "confirmado": STATUS_LOGISTICS,
    "en_preparacion": STATUS_PACKAGING,
    "empacado": STATUS_READY_FOR_DELIVERY,
    "enviado": STATUS_IN_DELIVERY,
    "entregado": STATUS_DELIVERED_CUSTOMER,
    # Logistics "ready" never skips packaging
    "listo": STATUS_PENDING_PACKAGING,
}

STATUS_LABELS = {
    STATUS_PENDING_BILLING: "Pending billing",
    STATUS_WALLET_REVIEW: "Wallet review",
    STATUS_LOGISTICS: "In logistics",
    STATUS_PENDING_PACKAGING: "Pending packaging",
    STATUS_PACKAGING: "Packaging",
    STATUS_READY_FOR_DELIVERY: "Ready for delivery",
    STATUS_IN_DELIVERY: "Out for delivery",
    STATUS_DELIVERED_CARRIER: "Delivered to carrier",
    STATUS_DELIVERED_CUSTOMER: "Delivered to customer",
    STATUS_CANCELLED: "Cancelled",
}


# =============================================================================
# ROLES
# =============================================================================

ROLE_ADMIN = "admin"
ROLE_BILLING = "facturador"
ROLE_WALLET = "cartera"
ROLE_LOGISTICS = "logistica"
ROLE_PACKAGING = "empaque"
ROLE_COURIER = "mensajero"

# Highest first: a user holding several roles acts with the first match.
ROLE_PRECEDENCE = (
    ROLE_ADMIN,
    ROLE_BILLING,
    ROLE_WALLET,
    ROLE_LOGISTICS,
    ROLE_PACKAGING,
    ROLE_COURIER,
)

UNRESTRICTED_ROLES = frozenset({ROLE_ADMIN, ROLE_BILLING})


def resolve_workflow_role(role_names) -> str | None:
    names = set(role_names or ())
    for role in ROLE_PRECEDENCE:
        if role in names:
            return role
    return None


# =============================================================================
# METHODS
# =============================================================================

DELIVERY_PICKUP = "recogida_tienda"
DELIVERY_HOME_CITY = "domicilio_ciudad"
PAYMENT_CASH = "efectivo"
PAYMENT_TRANSFER = "transferencia"
SHIPPING_PAY_ON_DELIVERY = "contraentrega"

LOCAL_HOME_DELIVERY_METHODS = frozenset({
    "domicilio",
    "domicilio_local",
    "domicilio_ciudad",
    "mensajeria_urbana",
    "mensajeria_local",
})


def normalize_method(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = str(value).strip().lower()
    return cleaned or None


def is_local_home_delivery(delivery_method: str | None) -> bool:
    method = normalize_method(delivery_method)
    if not method:
        return False
    return method in LOCAL_HOME_DELIVERY_METHODS or "domicilio" in method


def is_warehouse_cash_pickup(delivery_method: str | None, payment_method: str | None) -> bool:
    return (
        normalize_method(delivery_method) == DELIVERY_PICKUP
        and normalize_method(payment_method) == PAYMENT_CASH
    )


# =============================================================================
# RULES
# =============================================================================

def normalize_status(value: str | None) -> str:
    """Map input (canonical or legacy) to the canonical status; reject anything else."""
    if value is None:
        raise ValidationError("status is required")
    cleaned = str(value).strip().lower()
    if cleaned in ALL_STATUSES:
        return cleaned
    if cleaned in LEGACY_ALIASES:
        return LEGACY_ALIASES[cleaned]
    raise ValidationError(f"Invalid status: {value}")


def initial_status(delivery_method: str | None, payment_method: str | None) -> str:
    """
    Status chosen at creation:
    - store pickup paid by anything but cash needs cartera review first
    - city home delivery paid cash goes straight to logistics
    - everything else starts at billing
    """
    delivery = normalize_method(delivery_method)
    payment = normalize_method(payment_method)
    if delivery == DELIVERY_PICKUP and payment != PAYMENT_CASH:
        return STATUS_WALLET_REVIEW
    if delivery == DELIVERY_HOME_CITY and payment == PAYMENT_CASH:
        return STATUS_LOGISTICS
    return STATUS_PENDING_BILLING


def authorize_update(
    role: str | None,
    current_status: str,
    target_status: str | None,
    *,
    changes_fields: bool = False,
) -> None:
    """
    Raise PermissionDeniedError unless `role` may apply this update.

    target_status is canonical (already normalized) or None when the
    update does not touch status. changes_fields says whether non-status
    fields are being edited too.
    """
    current = LEGACY_ALIASES.get(current_status, current_status)
    changes_status = target_status is not None and target_status != current

    if role in UNRESTRICTED_ROLES:
        return

    if role == ROLE_COURIER:
        if changes_fields:
            raise PermissionDeniedError("Couriers can only mark orders as delivered")
        if target_status not in DELIVERED_STATUSES:
            raise PermissionDeniedError("Couriers can only mark orders as delivered")
        if current != STATUS_IN_DELIVERY:
            raise PermissionDeniedError("Couriers can only update orders that are out for delivery")
        return

    if role == ROLE_LOGISTICS:
        if current in DELIVERED_STATUSES:
            raise PermissionDeniedError("Delivered orders cannot be modified")
        if changes_status and target_status == STATUS_READY_FOR_DELIVERY:
            raise PermissionDeniedError("Orders become ready for delivery only through packaging")
        return

    if role == ROLE_WALLET:
        if current != STATUS_WALLET_REVIEW:
            raise PermissionDeniedError("Cartera can only update orders under wallet review")
        if changes_status and target_status != STATUS_LOGISTICS:
            raise PermissionDeniedError("Cartera can only approve orders into logistics")
        return

    if role == ROLE_PACKAGING:
        if changes_fields:
            raise PermissionDeniedError("Packaging can only start packing orders")
        if not changes_status or target_status != STATUS_PACKAGING or current != STATUS_PENDING_PACKAGING:
            raise PermissionDeniedError("Packaging can only start packing orders pending packaging")
        return

    raise PermissionDeniedError("No workflow role allows this update")
