from .lifecycle import LifecycleMixin, active
from .customers import Customer, Seller
from .catalog import Product, CartItem
from .orders import Order, OrderItem, OrderDiscount, DiscountReason
from .cashback import CashbackTransaction

__all__ = [
    'LifecycleMixin', 'active',
    'Customer', 'Seller',
    'Product', 'CartItem',
    'Order', 'OrderItem', 'OrderDiscount', 'DiscountReason',
    'CashbackTransaction',
]
