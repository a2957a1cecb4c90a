from .auth import User, SessionToken
from .catalog import Product, Cart, CartItem
from .orders import Order, OrderLineItem, OrderTransaction
from .settings import ShopSetting

__all__ = [
    'User', 'SessionToken',
    'Product', 'Cart', 'CartItem',
    'Order', 'OrderLineItem', 'OrderTransaction',
    'ShopSetting',
]
