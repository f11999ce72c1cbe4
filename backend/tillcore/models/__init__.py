from .tenancy import Company, Store
from .auth import User, SessionToken
from .customers import Customer
from .catalog import Product, ProductVariant, Inventory
from .orders import Order, OrderItem, OrderSequence
from .payments import Payment
from .shifts import CashShift

__all__ = [
    'Company', 'Store',
    'User', 'SessionToken',
    'Customer',
    'Product', 'ProductVariant', 'Inventory',
    'Order', 'OrderItem', 'OrderSequence',
    'Payment',
    'CashShift',
]
