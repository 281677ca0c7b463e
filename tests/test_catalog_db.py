"""
目录、库存、账户相关的数据库测试（需要 PostgreSQL 测试库，不可用时跳过）
"""
from decimal import Decimal

import pytest
from sqlalchemy import delete, func, select

from sj_core.models.carts import Cart, CartItem, Favorite
from sj_core.models.users import Address, User, UserPreference
from sj_core.services.account_service import AccountService
from sj_core.services.cart_service import CartOwner, CartService
from sj_core.services.brand_service import BrandService
from sj_core.services.category_service import CategoryService
from sj_core.services.favorite_service import FavoriteService
from sj_core.services.inventory_service import InventoryService
from sj_core.services.product_service import ProductService
from sj_core.utils.errors import ConflictError, InsufficientStockError, NotFoundError, ValidationError


@pytest.mark.asyncio
async def test_sign_up_creates_preferences_and_rejects_duplicates(db_manager, db_session, auth_service_factory):
    service = auth_service_factory(require_email_verification=True)
    user = await service.sign_up("Ali@Example.com", "Str0ng!Pass", "Ali", "Hassan")

    assert user["email"] == "ali@example.com"
    assert user["status"] == "pending_verification"
    assert "password_hash" not in user

    preferences = await db_session.scalar(
        select(func.count()).select_from(UserPreference).where(UserPreference.user_id == user["id"])
    )
    assert preferences == 1

    with pytest.raises(ConflictError) as exc_info:
        await service.sign_up("ali@example.com", "Str0ng!Pass", "Other", "User")
    assert exc_info.value.code == "EMAIL_ALREADY_EXISTS"


@pytest.mark.asyncio
async def test_sign_in_and_resolve_session(db_manager, auth_service_factory):
    service = auth_service_factory()
    await service.sign_up("sara@example.com", "Str0ng!Pass", "Sara", "Kareem")

    result = await service.sign_in("SARA@example.com", "Str0ng!Pass", ip_address="10.0.0.1")
    context = await service.resolve_session(result.access_token)

    assert context is not None
    assert context.email == "sara@example.com"
    assert context.role == "customer"

    await service.sign_out(result.access_token)
    assert await service.resolve_session(result.access_token) is None


@pytest.mark.asyncio
async def test_product_creation_and_duplicate_sku(catalog, sample_product_data):
    brand, category, product = catalog["brand"], catalog["category"], catalog["product"]

    assert product["slug"] == "samsung-galaxy-s24"
    assert product["brand"]["id"] == brand["id"]
    assert product["category"]["id"] == category["id"]
    assert product["inventory"]["quantity"] == 5
    assert product["inventory"]["available"] == 5
    assert Decimal(product["price"]) == Decimal("1250000")

    brand_after = await BrandService().get_brand(brand["id"])
    assert brand_after["product_count"] == 1

    with pytest.raises(ConflictError) as exc_info:
        await ProductService().create_product({
            **sample_product_data,
            "name": "Another Galaxy",
            "brand_id": brand["id"],
            "category_id": category["id"],
        })
    assert exc_info.value.code == "SKU_ALREADY_EXISTS"


@pytest.mark.asyncio
async def test_product_requires_existing_brand(db_manager, sample_category_data, sample_product_data):
    category = await CategoryService().create_category(dict(sample_category_data))

    with pytest.raises(NotFoundError) as exc_info:
        await ProductService().create_product({
            **sample_product_data, "brand_id": 999999, "category_id": category["id"]
        })
    assert exc_info.value.code == "BRAND_NOT_FOUND"


@pytest.mark.asyncio
async def test_duplicate_brand_slug(db_manager, sample_brand_data):
    service = BrandService()
    await service.create_brand(dict(sample_brand_data))

    with pytest.raises(ConflictError) as exc_info:
        await service.create_brand({"name": "Samsung"})
    assert exc_info.value.code == "SLUG_ALREADY_EXISTS"


@pytest.mark.asyncio
async def test_duplicate_category_slug(db_manager, sample_category_data):
    service = CategoryService()
    await service.create_category(dict(sample_category_data))

    with pytest.raises(ConflictError) as exc_info:
        await service.create_category({"name": "Smartphones"})
    assert exc_info.value.code == "SLUG_ALREADY_EXISTS"


@pytest.mark.asyncio
async def test_brand_in_use_cannot_be_deleted(catalog):
    brand, product = catalog["brand"], catalog["product"]

    with pytest.raises(ConflictError) as exc_info:
        await BrandService().delete_brand(brand["id"])
    assert exc_info.value.code == "RESOURCE_IN_USE"

    await ProductService().delete_product(product["id"])
    await BrandService().delete_brand(brand["id"])
    with pytest.raises(NotFoundError):
        await BrandService().get_brand(brand["id"])


@pytest.mark.asyncio
async def test_category_in_use_cannot_be_deleted(catalog):
    category, product = catalog["category"], catalog["product"]

    with pytest.raises(ConflictError) as exc_info:
        await CategoryService().delete_category(category["id"])
    assert exc_info.value.code == "RESOURCE_IN_USE"

    await ProductService().delete_product(product["id"])
    await CategoryService().delete_category(category["id"])
    with pytest.raises(NotFoundError):
        await CategoryService().get_category(category["id"])


@pytest.mark.asyncio
async def test_reservation_is_bounded_by_stock(catalog):
    product = catalog["product"]
    inventory = InventoryService()

    assert await inventory.reserve_stock(product["id"], 3) == 3

    with pytest.raises(InsufficientStockError) as exc_info:
        await inventory.reserve_stock(product["id"], 3)
    assert exc_info.value.extra["available"] == 2

    await inventory.release_stock(product["id"], 3)
    state = await inventory.get_inventory(product["id"])
    assert state["inventory"]["reserved"] == 0
    assert state["inventory"]["available"] == 5


@pytest.mark.asyncio
async def test_untracked_inventory_always_reserves(catalog):
    product = catalog["product"]
    inventory = InventoryService()

    updated = await inventory.set_inventory(product["id"], {"quantity": 0, "policy": "no_track"})
    assert updated["policy"] == "no_track"

    assert await inventory.reserve_stock(product["id"], 10) == 10


@pytest.mark.asyncio
async def test_address_governorate_and_default(db_manager, auth_service_factory, sample_address_data):
    user = await auth_service_factory().sign_up("home@example.com", "Str0ng!Pass", "Omar", "Saleh")
    account = AccountService()

    first = await account.create_address(user["id"], sample_address_data)
    assert first["governorate"] == "Baghdad"
    assert first["is_default"] is True

    second = await account.create_address(user["id"], {**sample_address_data, "governorate": "basra"})
    assert second["governorate"] == "Basra"
    assert second["is_default"] is False

    with pytest.raises(ValidationError) as exc_info:
        await account.create_address(user["id"], {**sample_address_data, "governorate": "Atlantis"})
    assert exc_info.value.code == "INVALID_GOVERNORATE"

    await account.delete_address(user["id"], first["id"])
    remaining = await account.list_addresses(user["id"])
    assert [address["id"] for address in remaining] == [second["id"]]
    assert remaining[0]["is_default"] is True


@pytest.mark.asyncio
async def test_deleting_user_cascades(catalog, db_session, auth_service_factory, sample_address_data):
    user = await auth_service_factory().sign_up("gone@example.com", "Str0ng!Pass", "Zaid", "Ali")
    product = catalog["product"]
    await AccountService().create_address(user["id"], sample_address_data)
    cart = await CartService().add_item(CartOwner(user_id=user["id"]), product["id"], quantity=2)
    await FavoriteService().add_favorite(user["id"], product["id"])

    await db_session.execute(delete(User).where(User.id == user["id"]))
    await db_session.commit()

    addresses = await db_session.scalar(
        select(func.count()).select_from(Address).where(Address.user_id == user["id"])
    )
    preferences = await db_session.scalar(
        select(func.count()).select_from(UserPreference).where(UserPreference.user_id == user["id"])
    )
    carts = await db_session.scalar(
        select(func.count()).select_from(Cart).where(Cart.user_id == user["id"])
    )
    cart_items = await db_session.scalar(
        select(func.count()).select_from(CartItem).where(CartItem.cart_id == cart["id"])
    )
    favorites = await db_session.scalar(
        select(func.count()).select_from(Favorite).where(Favorite.user_id == user["id"])
    )
    assert addresses == 0
    assert preferences == 0
    assert carts == 0
    assert cart_items == 0
    assert favorites == 0
