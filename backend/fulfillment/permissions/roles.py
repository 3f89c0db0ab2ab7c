# Overview: Default role -> permission assignments.

from .definitions import PERMISSION_DEFINITIONS


DEFAULT_ROLES = [
    ("admin", "Full system access"),
    ("facturador", "Billing: creates orders and owns shipping dates"),
    ("cartera", "Accounts receivable: payment review and cash reconciliation"),
    ("logistica", "Logistics: carriers, routing to packaging, dispatch"),
    ("empaque", "Packaging: scan and verify order lines"),
    ("mensajero", "Courier: delivers orders and hands over collected cash"),
]


DEFAULT_ROLE_PERMISSIONS = {
    # Admin gets ALL permissions
    "admin": [perm[0] for perm in PERMISSION_DEFINITIONS],
    "facturador": [
        "VIEW_ORDERS",
        "CREATE_ORDER",
        "UPDATE_ORDER",
        "DELETE_ORDER",
        "PURGE_ORDERS",
    ],
    "cartera": [
        "VIEW_ORDERS",
        "UPDATE_ORDER",
        "VALIDATE_PAYMENTS",
        "VIEW_CASH",
        "ACCEPT_CASH",
        "CLOSE_HANDOVERS",
    ],
    "logistica": [
        "VIEW_ORDERS",
        "UPDATE_ORDER",
        "MANAGE_LOGISTICS",
        "ASSIGN_MESSENGER",
        "VIEW_PACKAGING",
        "VERIFY_PACKAGING",
        "VIEW_CASH",
        "ACCEPT_CASH",
    ],
    "empaque": [
        "VIEW_ORDERS",
        "UPDATE_ORDER",
        "VIEW_PACKAGING",
        "VERIFY_PACKAGING",
    ],
    "mensajero": [
        "VIEW_ORDERS",
        "UPDATE_ORDER",
        "PERFORM_DELIVERIES",
    ],
}
