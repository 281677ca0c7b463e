"""
Sharq Aljazeera 核心服务模块
"""
from .base import BaseService, RepositoryMixin, Page
from .order_state import OrderStateMachine, order_status_machine, payment_status_machine, fulfillment_status_machine
from .auth_service import AuthService, get_auth_service
from .account_service import AccountService, get_account_service
from .brand_service import BrandService, get_brand_service
from .category_service import CategoryService, get_category_service
from .product_service import ProductService, get_product_service
from .inventory_service import InventoryService, get_inventory_service
from .cart_service import CartService, CartOwner, get_cart_service
from .favorite_service import FavoriteService, get_favorite_service
from .order_service import OrderService, get_order_service
from .payment_service import PaymentService, get_payment_service
from .shipment_service import ShipmentService, get_shipment_service

__all__ = [
    "BaseService",
    "RepositoryMixin",
    "Page",
    "OrderStateMachine",
    "order_status_machine",
    "payment_status_machine",
    "fulfillment_status_machine",
    "AuthService",
    "get_auth_service",
    "AccountService",
    "get_account_service",
    "BrandService",
    "get_brand_service",
    "CategoryService",
    "get_category_service",
    "ProductService",
    "get_product_service",
    "InventoryService",
    "get_inventory_service",
    "CartService",
    "CartOwner",
    "get_cart_service",
    "FavoriteService",
    "get_favorite_service",
    "OrderService",
    "get_order_service",
    "PaymentService",
    "get_payment_service",
    "ShipmentService",
    "get_shipment_service",
]
