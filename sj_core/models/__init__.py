"""
Sharq 数据模型包
"""
from .base import Base
from .users import (
    User, Account, UserSession, VerificationToken,
    Address, UserPreference, UserActivity
)
from .catalog import Brand, Category, Product, ProductImage, ProductSpecification, ProductVariant
from .inventory import ProductInventory, VariantInventory
from .carts import Cart, CartItem, Favorite
from .orders import Order, OrderItem, OrderStatusHistory
from .payments import Payment
from .shipments import Shipment, ShipmentTrackingEvent

__all__ = [
    "Base",
    "User",
    "Account",
    "UserSession",
    "VerificationToken",
    "Address",
    "UserPreference",
    "UserActivity",
    "Brand",
    "Category",
    "Product",
    "ProductImage",
    "ProductSpecification",
    "ProductVariant",
    "ProductInventory",
    "VariantInventory",
    "Cart",
    "CartItem",
    "Favorite",
    "Order",
    "OrderItem",
    "OrderStatusHistory",
    "Payment",
    "Shipment",
    "ShipmentTrackingEvent",
]
