from .inventory import Product
from .customers import Customer
from .sales import Sale, SaleLine
from .documents import InvoiceSequence
from .auth import User, SessionToken

__all__ = [
    'Product',
    'Customer',
    'Sale', 'SaleLine',
    'InvoiceSequence',
    'User', 'SessionToken',
]
