from .catalog import Category, Product
from .auth import User, SessionToken
from .sales import Sale, SaleLine
from .inventory import StockAdjustment, StockCount

__all__ = [
    'Category', 'Product',
    'User', 'SessionToken',
    'Sale', 'SaleLine',
    'StockAdjustment', 'StockCount',
]
