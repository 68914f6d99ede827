from .auth import User, SessionToken
from .catalog import Category, Product, Review
from .orders import Order, OrderItem, OrderEvent, Cart, CartItem
from .disputes import Dispute, DisputeMessage
from .payments import Payment

__all__ = [
    'User', 'SessionToken',
    'Category', 'Product', 'Review',
    'Order', 'OrderItem', 'OrderEvent', 'Cart', 'CartItem',
    'Dispute', 'DisputeMessage',
    'Payment',
]
