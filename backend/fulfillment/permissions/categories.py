# Overview: Permission category constants for grouping related permissions.


class PermissionCategory:
    """Permission categories for organization and UI display."""
    ORDERS = "ORDERS"
    WALLET = "WALLET"
    LOGISTICS = "LOGISTICS"
    PACKAGING = "PACKAGING"
    DELIVERY = "DELIVERY"
    CARTERA = "CARTERA"
    SYSTEM = "SYSTEM"
