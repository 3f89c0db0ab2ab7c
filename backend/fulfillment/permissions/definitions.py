# Overview: All permission definitions organized by category.
# Each permission is defined as: (code, name, description, category)

from .categories import PermissionCategory


# -- ORDERS --

ORDER_PERMISSIONS = [
    (
        "VIEW_ORDERS",
        "View Orders",
        "List and view orders visible to the caller's role",
        PermissionCategory.ORDERS,
    ),
    (
        "CREATE_ORDER",
        "Create Order",
        "Create orders (initial status computed from delivery/payment method)",
        PermissionCategory.ORDERS,
    ),
    (
        "UPDATE_ORDER",
        "Update Order",
        "Change order fields and status within the caller's role rules",
        PermissionCategory.ORDERS,
    ),
    (
        "DELETE_ORDER",
        "Delete Order",
        "Soft delete orders (audited, reversible)",
        PermissionCategory.ORDERS,
    ),
    (
        "PURGE_ORDERS",
        "Purge ERP Orders",
        "Hard delete an ERP-invoiced order and its dependents for re-import",
        PermissionCategory.ORDERS,
    ),
    (
        "ASSIGN_MESSENGER",
        "Assign Messenger",
        "Assign couriers to ready orders and dispatch them",
        PermissionCategory.ORDERS,
    ),
]


# -- WALLET --

WALLET_PERMISSIONS = [
    (
        "VALIDATE_PAYMENTS",
        "Validate Payments",
        "Approve or reject payments of orders in cartera review",
        PermissionCategory.WALLET,
    ),
]


# -- LOGISTICS --

LOGISTICS_PERMISSIONS = [
    (
        "MANAGE_LOGISTICS",
        "Manage Logistics",
        "Assign carriers, register pickup payments and route orders to packaging",
        PermissionCategory.LOGISTICS,
    ),
]


# -- PACKAGING --

PACKAGING_PERMISSIONS = [
    (
        "VIEW_PACKAGING",
        "View Packaging",
        "View packaging queue, checklists and stats",
        PermissionCategory.PACKAGING,
    ),
    (
        "VERIFY_PACKAGING",
        "Verify Packaging",
        "Scan or manually verify order lines and complete packaging",
        PermissionCategory.PACKAGING,
    ),
]


# -- DELIVERY --

DELIVERY_PERMISSIONS = [
    (
        "PERFORM_DELIVERIES",
        "Perform Deliveries",
        "Accept, deliver and declare cash for assigned orders",
        PermissionCategory.DELIVERY,
    ),
]


# -- CARTERA --

CARTERA_PERMISSIONS = [
    (
        "VIEW_CASH",
        "View Cash Reconciliation",
        "View pending cash, handover acts and receipts",
        PermissionCategory.CARTERA,
    ),
    (
        "ACCEPT_CASH",
        "Accept Cash",
        "Accept cash collected by couriers or at the warehouse",
        PermissionCategory.CARTERA,
    ),
    (
        "CLOSE_HANDOVERS",
        "Close Handovers",
        "Close courier handover acts",
        PermissionCategory.CARTERA,
    ),
]


# -- SYSTEM --

SYSTEM_PERMISSIONS = [
    (
        "SYSTEM_ADMIN",
        "System Administration",
        "Full system access",
        PermissionCategory.SYSTEM,
    ),
]


PERMISSION_DEFINITIONS = (
    ORDER_PERMISSIONS
    + WALLET_PERMISSIONS
    + LOGISTICS_PERMISSIONS
    + PACKAGING_PERMISSIONS
    + DELIVERY_PERMISSIONS
    + CARTERA_PERMISSIONS
    + SYSTEM_PERMISSIONS
)
