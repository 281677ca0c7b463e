"""
Sharq Aljazeera API 路由模块
"""

from fastapi import APIRouter

from .auth import router as auth_router
from .brands import router as brands_router
from .categories import router as categories_router
from .products import router as products_router
from .inventory import router as inventory_router
from .cart import router as cart_router
from .favorites import router as favorites_router
from .account import router as account_router
from .orders import router as orders_router
from .payments import router as payments_router
from .shipments import router as shipments_router
from .currency import router as currency_router

# 创建主路由器
api_router = APIRouter()

api_router.include_router(auth_router)
api_router.include_router(brands_router)
api_router.include_router(categories_router)
api_router.include_router(products_router)
api_router.include_router(inventory_router)
api_router.include_router(cart_router)
api_router.include_router(favorites_router)
api_router.include_router(account_router)
api_router.include_router(orders_router)
api_router.include_router(payments_router)
api_router.include_router(shipments_router)
api_router.include_router(currency_router)
