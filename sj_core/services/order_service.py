"""
订单服务

- 结账：购物车 -> 订单快照，原子占用库存，清空购物车
- 查询：订单嵌套读取（明细 -> 商品 -> 品牌/分类，支付、发运、状态历史）
- 状态：所有状态修改经 apply_status，由状态机校验并写历史、时间戳与副作用
"""
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from sj_core.config import get_settings
from sj_core.models.carts import CartItem
from sj_core.models.catalog import Product
from sj_core.models.orders import Order, OrderItem, OrderStatusHistory, ORDER_STATUSES
from sj_core.models.shipments import Shipment
from sj_core.models.users import Address, UserActivity
from sj_core.services.base import BaseService, RepositoryMixin, Page
from sj_core.services.cart_service import CartOwner, get_cart_service, unit_price
from sj_core.services.inventory_service import get_inventory_service
from sj_core.services.order_state import (
    STATUS_TIMESTAMPS,
    order_status_machine,
    payment_status_machine,
    fulfillment_status_machine,
)
from sj_core.utils.errors import NotFoundError, ValidationError
from sj_core.utils.logger import get_logger

logger = get_logger(__name__)

ORDER_NUMBER_PREFIX = "SJ"
_ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits
_CENT = Decimal("0.01")

# 履约推进顺序
FULFILLMENT_PATH = ["processing", "ready_to_ship", "shipped", "out_for_delivery", "delivered"]


@dataclass(frozen=True)
class ShippingMethod:
    id: str
    name: str
    cost: Decimal
    estimated_days: int
    free_shipping_threshold: Optional[Decimal] = None

    def cost_for(self, subtotal: Decimal) -> Decimal:
        if self.free_shipping_threshold is not None and subtotal >= self.free_shipping_threshold:
            return Decimal("0")
        return self.cost


@dataclass(frozen=True)
class PaymentMethod:
    id: str
    name: str
    type: str
    provider: str


SHIPPING_METHODS: Dict[str, ShippingMethod] = {
    "standard": ShippingMethod("standard", "Standard Delivery", Decimal("5000"), 3, Decimal("100000")),
    "express": ShippingMethod("express", "Express Delivery", Decimal("10000"), 1),
    "pickup": ShippingMethod("pickup", "Store Pickup", Decimal("0"), 0),
}

PAYMENT_METHODS: Dict[str, PaymentMethod] = {
    "cod": PaymentMethod("cod", "Cash on Delivery", "cod", "cod"),
    "qicard": PaymentMethod("qicard", "Qi Card", "card", "qicard"),
    "zaincash": PaymentMethod("zaincash", "ZainCash", "wallet", "zaincash"),
}


def generate_order_number(now: Optional[datetime] = None) -> str:
    """订单号：SJ-YYYYMMDD-XXXXXX"""
    now = now or datetime.now(timezone.utc)
    suffix = "".join(secrets.choice(_ORDER_NUMBER_ALPHABET) for _ in range(6))
    return f"{ORDER_NUMBER_PREFIX}-{now:%Y%m%d}-{suffix}"


def _money(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def serialize_order(order: Order, detail: bool = False) -> Dict[str, Any]:
    """订单转字典

    列表只带商品数量与缩略图，详情带完整嵌套结构
    """
    data = order.to_dict()
    loaded = order.__dict__
    items = loaded.get("items", [])
    data["item_count"] = sum(item.quantity for item in items)

    if not detail:
        data["thumbnails"] = [item.image for item in items if item.image][:4]
        return data

    data["items"] = []
    for item in items:
        entry = item.to_dict()
        product = item.product
        entry["product"] = {
            **product.to_dict(),
            "brand": product.brand.to_dict(),
            "category": product.category.to_dict(),
        }
        entry["variant"] = item.variant.to_dict() if item.variant is not None else None
        data["items"].append(entry)

    data["shipping_address"] = order.shipping_address.to_dict() if order.shipping_address else None
    data["billing_address"] = order.billing_address.to_dict() if order.billing_address else None
    data["payments"] = [payment.to_dict() for payment in order.payments]
    data["shipments"] = [
        {**shipment.to_dict(), "tracking_events": [event.to_dict() for event in shipment.tracking_events]}
        for shipment in order.shipments
    ]
    data["status_history"] = [entry.to_dict() for entry in order.status_history]
    data["allowed_transitions"] = sorted(order_status_machine.allowed_transitions(order.status))
    data["can_cancel"] = order_status_machine.can_transition(order.status, "cancelled")
    return data


class OrderService(BaseService, RepositoryMixin):
    """订单服务"""

    def __init__(self):
        super().__init__()
        self.inventory = get_inventory_service()
        settings = get_settings()
        self.min_amount = Decimal(settings.order_min_amount)
        self.max_items = settings.order_max_items

    # ========== 读取 ==========

    def _detail_stmt(self):
        return select(Order).options(
            selectinload(Order.items).selectinload(OrderItem.product).selectinload(Product.brand),
            selectinload(Order.items).selectinload(OrderItem.product).selectinload(Product.category),
            selectinload(Order.items).selectinload(OrderItem.variant),
            selectinload(Order.payments),
            selectinload(Order.shipments).selectinload(Shipment.tracking_events),
            selectinload(Order.status_history),
            selectinload(Order.shipping_address),
            selectinload(Order.billing_address),
        ).execution_options(populate_existing=True)

    async def load_order(
        self,
        session: AsyncSession,
        order_id: int,
        user_id: Optional[int] = None,
        for_update: bool = False
    ) -> Order:
        """读取订单（含嵌套关系）

        Args:
            user_id: 非空时只允许读取该用户自己的订单
            for_update: 行锁，状态修改前使用
        """
        stmt = self._detail_stmt().where(Order.id == order_id)
        if for_update:
            stmt = stmt.with_for_update(of=Order)
        order = (await session.execute(stmt)).scalar_one_or_none()
        if order is None or (user_id is not None and order.user_id != user_id):
            raise NotFoundError(code="ORDER_NOT_FOUND", resource="Order")
        return order

    async def get_order(self, order_id: int, user_id: Optional[int] = None) -> Dict[str, Any]:
        return await self.execute_with_session(self._get_order_tx, order_id, user_id)

    async def _get_order_tx(self, session: AsyncSession, order_id: int, user_id: Optional[int]) -> Dict[str, Any]:
        return serialize_order(await self.load_order(session, order_id, user_id), detail=True)

    async def list_orders(
        self,
        user_id: Optional[int] = None,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        page: int = 1,
        limit: int = 20
    ) -> Page:
        """订单列表，user_id 为空时返回全部（员工视图）"""
        return await self.execute_with_session(self._list_orders_tx, user_id, status, payment_status, page, limit)

    async def _list_orders_tx(
        self,
        session: AsyncSession,
        user_id: Optional[int],
        status: Optional[str],
        payment_status: Optional[str],
        page: int,
        limit: int
    ) -> Page:
        stmt = select(Order).options(selectinload(Order.items))
        if user_id is not None:
            stmt = stmt.where(Order.user_id == user_id)
        if status:
            stmt = stmt.where(Order.status == status)
        if payment_status:
            stmt = stmt.where(Order.payment_status == payment_status)
        stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc())

        result = await self.paginate(session, stmt, page, limit)
        result.items = [serialize_order(order) for order in result.items]
        return result

    async def get_history(self, order_id: int, user_id: Optional[int] = None) -> List[Dict[str, Any]]:
        return await self.execute_with_session(self._get_history_tx, order_id, user_id)

    async def _get_history_tx(
        self,
        session: AsyncSession,
        order_id: int,
        user_id: Optional[int]
    ) -> List[Dict[str, Any]]:
        order = await self.load_order(session, order_id, user_id)
        return [entry.to_dict() for entry in order.status_history]

    # ========== 结账 ==========

    async def checkout(self, user_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        """由购物车创建订单

        Args:
            data: shipping_address_id, billing_address_id, shipping_method_id,
                  payment_method_id, customer_notes, metadata
        """
        self.validate_required_fields(data, ["shipping_address_id", "shipping_method_id", "payment_method_id"])
        if data["shipping_method_id"] not in SHIPPING_METHODS:
            raise ValidationError(
                code="INVALID_SHIPPING_METHOD",
                detail="Unknown shipping method",
                details={"shipping_method_id": [f"Must be one of: {', '.join(SHIPPING_METHODS)}"]}
            )
        if data["payment_method_id"] not in PAYMENT_METHODS:
            raise ValidationError(
                code="INVALID_PAYMENT_METHOD",
                detail="Unknown payment method",
                details={"payment_method_id": [f"Must be one of: {', '.join(PAYMENT_METHODS)}"]}
            )

        order = await self.execute_with_transaction(self._checkout_tx, user_id, data)
        logger.info(
            "Order placed",
            order_id=order["id"],
            order_number=order["order_number"],
            total=order["total"],
            item_count=order["item_count"]
        )
        return order

    async def _checkout_tx(self, session: AsyncSession, user_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        cart = await get_cart_service().load_cart(session, CartOwner(user_id=user_id))
        if cart is None or not cart.items:
            raise ValidationError(code="CART_EMPTY", detail="Cart is empty")
        if len(cart.items) > self.max_items:
            raise ValidationError(
                code="TOO_MANY_ITEMS",
                detail=f"An order may contain at most {self.max_items} items"
            )

        for field_name in ("shipping_address_id", "billing_address_id"):
            address_id = data.get(field_name)
            if address_id is None:
                continue
            address = await self.get_by_id(session, Address, address_id)
            if address is None or address.user_id != user_id:
                raise NotFoundError(code="ADDRESS_NOT_FOUND", resource="Address")

        shipping = SHIPPING_METHODS[data["shipping_method_id"]]
        payment = PAYMENT_METHODS[data["payment_method_id"]]

        # 商品快照与金额
        lines = []
        subtotal = Decimal("0")
        tax_total = Decimal("0")
        currency = cart.items[0].product.currency
        for item in cart.items:
            product, variant = item.product, item.variant
            if product.status != "active":
                raise ValidationError(
                    code="PRODUCT_UNAVAILABLE",
                    detail=f"Product {product.sku} is no longer available"
                )
            if variant is not None and not variant.available:
                raise ValidationError(
                    code="VARIANT_UNAVAILABLE",
                    detail=f"Variant {variant.sku} is no longer available"
                )

            price = unit_price(product, variant)
            line_subtotal = _money(price * item.quantity)
            line_tax = Decimal("0")
            if product.taxable and product.tax_rate:
                line_tax = _money(line_subtotal * product.tax_rate / 100)
            subtotal += line_subtotal
            tax_total += line_tax
            lines.append((item, price, line_subtotal, line_tax))

        if subtotal < self.min_amount:
            raise ValidationError(
                code="ORDER_BELOW_MINIMUM",
                detail=f"Order subtotal must be at least {self.min_amount}"
            )

        # 原子占用库存，任一失败整个事务回滚
        for item, _, _, _ in lines:
            sku = item.variant.sku if item.variant is not None else item.product.sku
            await self.inventory.reserve(session, item.product_id, item.quantity, item.variant_id, sku=sku)

        shipping_cost = shipping.cost_for(subtotal)
        order = Order(
            order_number=generate_order_number(),
            user_id=user_id,
            status="pending",
            payment_status="pending",
            fulfillment_status="unfulfilled",
            subtotal=subtotal,
            shipping_cost=shipping_cost,
            tax=tax_total,
            discount=Decimal("0"),
            total=subtotal + shipping_cost + tax_total,
            currency=currency,
            shipping_address_id=data["shipping_address_id"],
            billing_address_id=data.get("billing_address_id"),
            shipping_method_id=shipping.id,
            shipping_method_name=shipping.name,
            shipping_estimated_days=shipping.estimated_days,
            payment_method_id=payment.id,
            payment_method_type=payment.type,
            payment_method_name=payment.name,
            customer_notes=data.get("customer_notes"),
            extra_data=data.get("metadata"),
        )
        session.add(order)
        await session.flush()

        for item, price, line_subtotal, line_tax in lines:
            product, variant = item.product, item.variant
            session.add(OrderItem(
                order_id=order.id,
                product_id=product.id,
                variant_id=item.variant_id,
                sku=variant.sku if variant is not None else product.sku,
                name=product.name if variant is None else f"{product.name} - {variant.name}",
                slug=product.slug,
                image=(variant.image if variant is not None and variant.image else product.main_image),
                variant_options=variant.options if variant is not None else None,
                price=price,
                quantity=item.quantity,
                subtotal=line_subtotal,
                tax=line_tax,
                discount=Decimal("0"),
                total=line_subtotal + line_tax,
            ))

        session.add(OrderStatusHistory(
            order_id=order.id,
            from_status=None,
            to_status="pending",
            reason="Order placed",
            changed_by=user_id,
        ))
        session.add(UserActivity(
            user_id=user_id,
            type="order_placed",
            description=f"Order {order.order_number} placed",
            extra_data={"order_id": order.id, "total": str(order.total)},
        ))
        await session.execute(delete(CartItem).where(CartItem.cart_id == cart.id))
        await session.flush()

        return serialize_order(await self.load_order(session, order.id), detail=True)

    # ========== 状态流转 ==========

    def set_payment_status(self, order: Order, to_status: str) -> None:
        payment_status_machine.assert_transition(order.payment_status, to_status)
        order.payment_status = to_status

    def set_fulfillment_status(self, order: Order, to_status: str) -> None:
        fulfillment_status_machine.assert_transition(order.fulfillment_status, to_status)
        order.fulfillment_status = to_status

    async def apply_status(
        self,
        session: AsyncSession,
        order: Order,
        to_status: str,
        reason: Optional[str] = None,
        changed_by: Optional[int] = None,
        extra: Optional[Dict[str, Any]] = None
    ) -> None:
        """在调用方事务内修改订单状态"""
        from_status = order.status
        order_status_machine.assert_transition(from_status, to_status)

        if to_status == "cancelled":
            if order.fulfillment_status == "unfulfilled":
                for item in order.items:
                    await self.inventory.release(session, item.product_id, item.quantity, item.variant_id)
            if payment_status_machine.can_transition(order.payment_status, "voided"):
                order.payment_status = "voided"
            order.cancel_reason = reason
        elif to_status == "shipped":
            for item in order.items:
                await self.inventory.commit(session, item.product_id, item.quantity, item.variant_id)
                item.fulfillment_status = "fulfilled"
            self.set_fulfillment_status(order, "fulfilled")
        elif to_status == "refunded":
            if payment_status_machine.can_transition(order.payment_status, "refunded"):
                order.payment_status = "refunded"
            if order.refund_amount is None:
                order.refund_amount = order.total
        elif to_status == "paid":
            if payment_status_machine.can_transition(order.payment_status, "paid"):
                order.payment_status = "paid"

        order.status = to_status
        timestamp_field = STATUS_TIMESTAMPS.get(to_status)
        if timestamp_field is not None:
            setattr(order, timestamp_field, datetime.now(timezone.utc))

        session.add(OrderStatusHistory(
            order_id=order.id,
            from_status=from_status,
            to_status=to_status,
            reason=reason,
            changed_by=changed_by,
            extra_data=extra,
        ))
        await session.flush()
        logger.info(
            "Order status changed",
            order_id=order.id,
            from_status=from_status,
            to_status=to_status,
            changed_by=changed_by
        )

    async def advance_to(
        self,
        session: AsyncSession,
        order: Order,
        target: str,
        reason: Optional[str] = None,
        changed_by: Optional[int] = None
    ) -> None:
        """沿履约路径把订单推进到 target，中间状态逐个落历史"""
        while order.status != target:
            if order_status_machine.can_transition(order.status, target):
                await self.apply_status(session, order, target, reason, changed_by)
                return

            current_index = FULFILLMENT_PATH.index(order.status) if order.status in FULFILLMENT_PATH else -1
            target_index = FULFILLMENT_PATH.index(target)
            step = next(
                (
                    candidate for candidate in FULFILLMENT_PATH[current_index + 1:target_index]
                    if order_status_machine.can_transition(order.status, candidate)
                ),
                None
            )
            if step is None:
                order_status_machine.assert_transition(order.status, target)
            await self.apply_status(session, order, step, reason, changed_by)

    async def update_status(
        self,
        order_id: int,
        to_status: str,
        reason: Optional[str] = None,
        changed_by: Optional[int] = None,
        tracking_number: Optional[str] = None,
        tracking_url: Optional[str] = None,
        admin_notes: Optional[str] = None
    ) -> Dict[str, Any]:
        """员工修改订单状态"""
        if to_status not in ORDER_STATUSES:
            raise ValidationError(
                code="INVALID_STATUS",
                detail=f"Unknown order status: {to_status}",
                details={"status": [f"Must be one of: {', '.join(ORDER_STATUSES)}"]}
            )
        fields = {"tracking_number": tracking_number, "tracking_url": tracking_url, "admin_notes": admin_notes}
        return await self.execute_with_transaction(
            self._update_status_tx, order_id, to_status, reason, changed_by,
            {k: v for k, v in fields.items() if v is not None}
        )

    async def _update_status_tx(
        self,
        session: AsyncSession,
        order_id: int,
        to_status: str,
        reason: Optional[str],
        changed_by: Optional[int],
        fields: Dict[str, Any]
    ) -> Dict[str, Any]:
        order = await self.load_order(session, order_id, for_update=True)
        await self.apply_status(session, order, to_status, reason, changed_by)
        for key, value in fields.items():
            setattr(order, key, value)
        await session.flush()
        return serialize_order(await self.load_order(session, order_id), detail=True)

    async def cancel_order(
        self,
        order_id: int,
        reason: Optional[str] = None,
        user_id: Optional[int] = None,
        changed_by: Optional[int] = None
    ) -> Dict[str, Any]:
        """取消订单并释放库存占用

        Args:
            user_id: 非空时只能取消自己的订单
        """
        order = await self.execute_with_transaction(self._cancel_order_tx, order_id, reason, user_id, changed_by)
        logger.info("Order cancelled", order_id=order_id, reason=reason)
        return order

    async def _cancel_order_tx(
        self,
        session: AsyncSession,
        order_id: int,
        reason: Optional[str],
        user_id: Optional[int],
        changed_by: Optional[int]
    ) -> Dict[str, Any]:
        order = await self.load_order(session, order_id, user_id=user_id, for_update=True)
        await self.apply_status(session, order, "cancelled", reason or "Cancelled", changed_by)
        return serialize_order(await self.load_order(session, order_id), detail=True)


_order_service: Optional[OrderService] = None


def get_order_service() -> OrderService:
    global _order_service
    if _order_service is None:
        _order_service = OrderService()
    return _order_service
