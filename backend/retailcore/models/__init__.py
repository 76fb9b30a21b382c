from .tenancy import Tenant, Branch, User
from .inventory import (
    Product,
    ProductBranchStock,
    ProductBundle,
    BundleItem,
    StockMovement,
    PurchaseOrder,
    PurchaseOrderLine,
    ReorderSuggestion,
    StockAlert,
)
from .pricing import Discount, TaxRule
from .bookings import Booking
from .timekeeping import Attendance
from .sales import Customer, Transaction, TransactionItem, SavedCart, CashDrawerSession
from .audit import AuditLogEntry, SecurityAlert
from .sync import BranchEntitySnapshot, SyncConflict

__all__ = [
    'Tenant', 'Branch', 'User',
    'Product', 'ProductBranchStock', 'ProductBundle', 'BundleItem', 'StockMovement',
    'PurchaseOrder', 'PurchaseOrderLine', 'ReorderSuggestion', 'StockAlert',
    'Discount', 'TaxRule',
    'Booking',
    'Attendance',
    'Customer', 'Transaction', 'TransactionItem', 'SavedCart', 'CashDrawerSession',
    'AuditLogEntry', 'SecurityAlert',
    'BranchEntitySnapshot', 'SyncConflict',
]
