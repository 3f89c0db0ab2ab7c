from .auth import User, Role, UserRole, Permission, RolePermission, SessionToken
from .security import SecurityEvent, AuditEvent
from .catalog import Product, Carrier
from .orders import Order, OrderItem, WalletValidation
from .packaging import PackagingVerification, BarcodeScanEvent
from .cash import DeliveryTracking, CashLedgerEntry, HandoverAct, HandoverDetail

__all__ = [
    'User', 'Role', 'UserRole', 'Permission', 'RolePermission', 'SessionToken',
    'SecurityEvent', 'AuditEvent',
    'Product', 'Carrier',
    'Order', 'OrderItem', 'WalletValidation',
    'PackagingVerification', 'BarcodeScanEvent',
    'DeliveryTracking', 'CashLedgerEntry', 'HandoverAct', 'HandoverDetail',
]
