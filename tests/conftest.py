"""
Pytest 配置和 fixtures
"""
import os

# 必须在导入 sj_core 之前设置，Settings 只读取一次
os.environ.setdefault("SJ__VALIDATE_ENV_ON_STARTUP", "false")
os.environ.setdefault("SJ__RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("SJ__EMAIL_ENABLED", "false")
os.environ.setdefault("SJ__LOG_LEVEL", "WARNING")

from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from sj_core import database
from sj_core.config import get_settings
from sj_core.middleware.rate_limit import MemoryRateLimitStore, reset_rate_limiter
from sj_core.services.auth_service import AuthConfig, AuthService
from sj_core.services.email_service import EmailConfig, EmailSender


@pytest_asyncio.fixture
async def db_manager():
    """数据库管理器 fixture

    使用 <db_name>_test 库，每个测试前重建全部表；数据库不可用时跳过
    """
    settings = get_settings()
    original_db_name = settings.db_name

    # 切换到测试数据库
    settings.db_name = f"{original_db_name}_test"
    database._db_manager = None
    manager = database.get_db_manager()

    if not await manager.check_connection():
        await manager.close()
        database._db_manager = None
        settings.db_name = original_db_name
        pytest.skip("Test database is not available")

    await manager.drop_tables()
    await manager.create_tables()

    yield manager

    # 清理
    await manager.drop_tables()
    await manager.close()
    database._db_manager = None

    # 恢复原始配置
    settings.db_name = original_db_name


@pytest_asyncio.fixture
async def db_session(db_manager) -> AsyncGenerator[AsyncSession, None]:
    """数据库会话 fixture"""
    async with db_manager.get_session() as session:
        yield session
        await session.rollback()  # 测试后回滚


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """不经过 lifespan 的 API 客户端（不连接数据库）"""
    from sj_core.app import app

    reset_rate_limiter()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as http_client:
        yield http_client
    reset_rate_limiter()


@pytest.fixture
def auth_service_factory():
    """构造不发邮件、使用内存计数的认证服务"""
    def factory(require_email_verification: bool = False) -> AuthService:
        sender = EmailSender(EmailConfig(
            host="", port=587, secure=False, user="", password="",
            from_name="Sharq Aljazeera", from_address="noreply@example.com", enabled=False,
        ))
        return AuthService(
            config=AuthConfig(secret_key="test-secret", require_email_verification=require_email_verification),
            store=MemoryRateLimitStore(),
            email_sender=sender,
        )
    return factory


@pytest_asyncio.fixture
async def catalog(db_manager, sample_brand_data, sample_category_data, sample_product_data):
    """品牌 + 分类 + 一个有 5 件库存的商品"""
    from sj_core.services.brand_service import BrandService
    from sj_core.services.category_service import CategoryService
    from sj_core.services.product_service import ProductService

    brand = await BrandService().create_brand(dict(sample_brand_data))
    category = await CategoryService().create_category(dict(sample_category_data))
    product = await ProductService().create_product({
        **sample_product_data,
        "brand_id": brand["id"],
        "category_id": category["id"],
    })
    return {"brand": brand, "category": category, "product": product}


@pytest.fixture
def sample_brand_data():
    """示例品牌数据"""
    return {
        "name": "Samsung",
        "description": "Consumer electronics",
        "country": "South Korea",
        "featured": True,
    }


@pytest.fixture
def sample_category_data():
    """示例分类数据"""
    return {
        "name": "Smartphones",
        "description": "Mobile phones",
    }


@pytest.fixture
def sample_product_data():
    """示例商品数据（brand_id / category_id 由测试填充）"""
    return {
        "sku": "SM-S24-128",
        "name": "Samsung Galaxy S24",
        "price": Decimal("1250000"),
        "currency": "IQD",
        "short_description": "128GB, Onyx Black",
        "inventory": {"quantity": 5, "policy": "track", "low_stock_threshold": 2},
    }


@pytest.fixture
def sample_address_data():
    """示例收货地址（巴格达）"""
    return {
        "recipient_name": "Ali Hassan",
        "recipient_phone": "+9647701234567",
        "address_line1": "Street 14, House 22",
        "city": "Baghdad",
        "governorate": "IQ-BG",
        "district": "Karrada",
        "nearest_landmark": "Near Karrada Mall",
    }
