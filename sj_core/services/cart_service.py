"""
购物车服务

登录用户的购物车按 user_id 唯一，游客购物车按 X-Cart-Session 头的 session_id
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from sj_core.models.carts import Cart, CartItem, CART_ITEM_MAX_QUANTITY
from sj_core.models.catalog import Product, ProductVariant
from sj_core.models.inventory import ProductInventory, VariantInventory
from sj_core.services.base import BaseService, RepositoryMixin
from sj_core.utils.errors import NotFoundError, ValidationError, InsufficientStockError
from sj_core.utils.logger import get_logger

logger = get_logger(__name__)

CART_SESSION_HEADER = "X-Cart-Session"
GUEST_CART_TTL = timedelta(days=30)


@dataclass(frozen=True)
class CartOwner:
    """购物车归属：用户或游客会话"""
    user_id: Optional[int] = None
    session_id: Optional[str] = None

    @property
    def is_guest(self) -> bool:
        return self.user_id is None


def unit_price(product: Product, variant: Optional[ProductVariant]) -> Decimal:
    """变体未设置价格时使用商品价格"""
    if variant is not None and variant.price is not None:
        return variant.price
    return product.price


def _check_quantity(quantity: int) -> None:
    if quantity < 1 or quantity > CART_ITEM_MAX_QUANTITY:
        raise ValidationError(
            code="INVALID_QUANTITY",
            detail=f"Quantity must be between 1 and {CART_ITEM_MAX_QUANTITY}",
            details={"quantity": [f"Must be between 1 and {CART_ITEM_MAX_QUANTITY}"]}
        )


def serialize_cart(cart: Optional[Cart], owner: CartOwner) -> Dict[str, Any]:
    """购物车转字典，带明细与合计"""
    if cart is None:
        return {
            "id": None,
            "user_id": owner.user_id,
            "session_id": owner.session_id,
            "items": [],
            "totals": {"item_count": 0, "subtotal": "0", "currency": "IQD"},
        }

    items = []
    subtotal = Decimal("0")
    item_count = 0
    currency = "IQD"
    for item in cart.items:
        price = unit_price(item.product, item.variant)
        line_total = price * item.quantity
        subtotal += line_total
        item_count += item.quantity
        currency = item.product.currency
        items.append({
            **item.to_dict(),
            "product": {
                "id": item.product.id,
                "sku": item.product.sku,
                "name": item.product.name,
                "slug": item.product.slug,
                "image": item.product.main_image,
                "status": item.product.status,
            },
            "variant": {
                "id": item.variant.id,
                "sku": item.variant.sku,
                "name": item.variant.name,
                "options": item.variant.options,
            } if item.variant is not None else None,
            "unit_price": str(price),
            "line_total": str(line_total),
        })

    data = cart.to_dict()
    data["items"] = items
    data["totals"] = {"item_count": item_count, "subtotal": str(subtotal), "currency": currency}
    return data


class CartService(BaseService, RepositoryMixin):
    """购物车服务"""

    def _cart_stmt(self, owner: CartOwner):
        stmt = select(Cart).options(
            selectinload(Cart.items).selectinload(CartItem.product).selectinload(Product.images),
            selectinload(Cart.items).selectinload(CartItem.variant),
        ).execution_options(populate_existing=True)
        if owner.user_id is not None:
            return stmt.where(Cart.user_id == owner.user_id)
        if not owner.session_id:
            raise ValidationError(
                code="CART_SESSION_REQUIRED",
                detail=f"{CART_SESSION_HEADER} header is required for guest carts"
            )
        return stmt.where(Cart.session_id == owner.session_id, Cart.user_id.is_(None))

    async def load_cart(self, session: AsyncSession, owner: CartOwner) -> Optional[Cart]:
        """读取购物车（含明细），游客购物车过期视为不存在"""
        cart = (await session.execute(self._cart_stmt(owner))).scalar_one_or_none()
        if cart is not None and owner.is_guest and cart.expires_at is not None:
            if cart.expires_at <= datetime.now(timezone.utc):
                return None
        return cart

    async def _get_or_create_cart(self, session: AsyncSession, owner: CartOwner) -> Cart:
        cart = await self.load_cart(session, owner)
        if cart is not None:
            return cart

        data: Dict[str, Any] = {"user_id": owner.user_id}
        if owner.is_guest:
            # 过期的游客购物车直接清掉重建
            await session.execute(
                delete(Cart).where(Cart.session_id == owner.session_id, Cart.user_id.is_(None))
            )
            data["session_id"] = owner.session_id
            data["expires_at"] = datetime.now(timezone.utc) + GUEST_CART_TTL
        await self.create(session, Cart, data)
        return await self.load_cart(session, owner)

    async def _reload(self, session: AsyncSession, owner: CartOwner) -> Dict[str, Any]:
        await session.flush()
        return serialize_cart(await self.load_cart(session, owner), owner)

    async def get_cart(self, owner: CartOwner) -> Dict[str, Any]:
        return await self.execute_with_session(self._get_cart_tx, owner)

    async def _get_cart_tx(self, session: AsyncSession, owner: CartOwner) -> Dict[str, Any]:
        return serialize_cart(await self.load_cart(session, owner), owner)

    async def add_item(
        self,
        owner: CartOwner,
        product_id: int,
        quantity: int = 1,
        variant_id: Optional[int] = None
    ) -> Dict[str, Any]:
        """加入购物车，同一 (商品, 变体) 合并数量"""
        _check_quantity(quantity)
        return await self.execute_with_transaction(self._add_item_tx, owner, product_id, quantity, variant_id)

    async def _add_item_tx(
        self,
        session: AsyncSession,
        owner: CartOwner,
        product_id: int,
        quantity: int,
        variant_id: Optional[int]
    ) -> Dict[str, Any]:
        product = await self._load_purchasable(session, product_id, variant_id)
        cart = await self._get_or_create_cart(session, owner)

        existing = next(
            (item for item in cart.items if item.product_id == product_id and item.variant_id == variant_id),
            None
        )
        new_quantity = quantity + (existing.quantity if existing else 0)
        _check_quantity(new_quantity)
        await self._check_stock(session, product, variant_id, new_quantity)

        if existing is not None:
            existing.quantity = new_quantity
        else:
            session.add(CartItem(cart_id=cart.id, product_id=product_id, variant_id=variant_id, quantity=quantity))

        logger.info("Cart item added", cart_id=cart.id, product_id=product_id, variant_id=variant_id, quantity=quantity)
        return await self._reload(session, owner)

    async def _load_purchasable(
        self,
        session: AsyncSession,
        product_id: int,
        variant_id: Optional[int]
    ) -> Product:
        product = await self.get_by_id(session, Product, product_id)
        if product is None:
            raise NotFoundError(code="PRODUCT_NOT_FOUND", resource="Product")
        if product.status != "active":
            raise ValidationError(code="PRODUCT_UNAVAILABLE", detail="Product is not available for purchase")

        if variant_id is not None:
            variant = await self.get_by_id(session, ProductVariant, variant_id)
            if variant is None or variant.product_id != product_id:
                raise NotFoundError(code="VARIANT_NOT_FOUND", resource="Variant")
            if not variant.available:
                raise ValidationError(code="VARIANT_UNAVAILABLE", detail="Variant is not available for purchase")
        return product

    async def _check_stock(
        self,
        session: AsyncSession,
        product: Product,
        variant_id: Optional[int],
        quantity: int
    ) -> None:
        """加购时的可售检查（下单时再原子占用）"""
        if variant_id is not None:
            inventory = await self.get_by_field(session, VariantInventory, "variant_id", variant_id)
        else:
            inventory = await self.get_by_field(session, ProductInventory, "product_id", product.id)

        if inventory is None or inventory.policy != "track" or inventory.allow_backorder:
            return
        if inventory.available < quantity:
            raise InsufficientStockError(sku=product.sku, requested=quantity, available=inventory.available)

    async def update_item(self, owner: CartOwner, item_id: int, quantity: int) -> Dict[str, Any]:
        """设置数量，0 表示移除"""
        if quantity != 0:
            _check_quantity(quantity)
        return await self.execute_with_transaction(self._update_item_tx, owner, item_id, quantity)

    async def _update_item_tx(
        self,
        session: AsyncSession,
        owner: CartOwner,
        item_id: int,
        quantity: int
    ) -> Dict[str, Any]:
        cart = await self.load_cart(session, owner)
        item = next((item for item in cart.items if item.id == item_id), None) if cart else None
        if item is None:
            raise NotFoundError(code="CART_ITEM_NOT_FOUND", resource="Cart item")

        if quantity == 0:
            await session.delete(item)
        else:
            await self._check_stock(session, item.product, item.variant_id, quantity)
            item.quantity = quantity
        return await self._reload(session, owner)

    async def remove_item(self, owner: CartOwner, item_id: int) -> Dict[str, Any]:
        return await self.update_item(owner, item_id, 0)

    async def clear_cart(self, owner: CartOwner) -> Dict[str, Any]:
        return await self.execute_with_transaction(self._clear_cart_tx, owner)

    async def _clear_cart_tx(self, session: AsyncSession, owner: CartOwner) -> Dict[str, Any]:
        cart = await self.load_cart(session, owner)
        if cart is not None:
            await session.execute(delete(CartItem).where(CartItem.cart_id == cart.id))
        return await self._reload(session, owner)

    async def merge_guest_cart(self, user_id: int, session_id: str) -> Dict[str, Any]:
        """登录后把游客购物车并入用户购物车，数量相加并截断到上限"""
        return await self.execute_with_transaction(self._merge_guest_cart_tx, user_id, session_id)

    async def _merge_guest_cart_tx(self, session: AsyncSession, user_id: int, session_id: str) -> Dict[str, Any]:
        user_owner = CartOwner(user_id=user_id)
        guest = await self.load_cart(session, CartOwner(session_id=session_id))
        if guest is None or not guest.items:
            return await self._reload(session, user_owner)

        cart = await self._get_or_create_cart(session, user_owner)
        existing = {(item.product_id, item.variant_id): item for item in cart.items}
        merged = 0
        for guest_item in guest.items:
            key = (guest_item.product_id, guest_item.variant_id)
            if key in existing:
                target = existing[key]
                target.quantity = min(target.quantity + guest_item.quantity, CART_ITEM_MAX_QUANTITY)
            else:
                session.add(CartItem(
                    cart_id=cart.id,
                    product_id=guest_item.product_id,
                    variant_id=guest_item.variant_id,
                    quantity=guest_item.quantity,
                ))
            merged += 1

        await session.flush()
        await session.execute(delete(Cart).where(Cart.id == guest.id))
        logger.info("Guest cart merged", user_id=user_id, merged_items=merged)
        return await self._reload(session, user_owner)


_cart_service: Optional[CartService] = None


def get_cart_service() -> CartService:
    global _cart_service
    if _cart_service is None:
        _cart_service = CartService()
    return _cart_service
