# ------ storefront/model/__init__.py ------

from .user import User, Address, RefreshToken, wishlist_items
from .category import Category
from .product import Product, ProductVariant, ProductImage
from .cart import Cart, CartItem
from .coupon import Coupon
from .order import Order, OrderItem, OrderStatusHistory
from .notification import Notification

__all__ = [
    "User",
    "Address",
    "RefreshToken",
    "wishlist_items",
    "Category",
    "Product",
    "ProductVariant",
    "ProductImage",
    "Cart",
    "CartItem",
    "Coupon",
    "Order",
    "OrderItem",
    "OrderStatusHistory",
    "Notification",
]
