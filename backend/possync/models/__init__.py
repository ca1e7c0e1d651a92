from .tenancy import Organization
from .entities import DiningTable, MenuItem, Customer
from .orders import Order, OrderLine
from .ledger import SyncLogEntry

__all__ = [
    'Organization',
    'DiningTable', 'MenuItem', 'Customer',
    'Order', 'OrderLine',
    'SyncLogEntry',
]
