from .auth import User, SessionToken
from .accounts import SavedAddress
from .catalog import Product, StockMovement
from .orders import Order, OrderItem
from .carts import Cart, CartItem
from .payments import PaymentEvent
from .notifications import Notification

__all__ = [
    'User', 'SessionToken',
    'SavedAddress',
    'Product', 'StockMovement',
    'Order', 'OrderItem',
    'Cart', 'CartItem',
    'PaymentEvent',
    'Notification',
]
