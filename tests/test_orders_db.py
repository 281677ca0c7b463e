"""
结账、支付、发运的数据库测试（需要 PostgreSQL 测试库，不可用时跳过）
"""
from decimal import Decimal

import pytest
import pytest_asyncio

from sj_core.services.account_service import AccountService
from sj_core.services.cart_service import CartOwner, CartService
from sj_core.services.inventory_service import InventoryService
from sj_core.services.order_service import OrderService
from sj_core.services.payment_service import PaymentService
from sj_core.services.shipment_service import ShipmentService
from sj_core.utils.errors import (
    InsufficientStockError,
    InvalidStatusTransitionError,
    NotFoundError,
    ValidationError,
)


@pytest_asyncio.fixture
async def shopper(catalog, auth_service_factory, sample_address_data):
    """已注册用户 + 默认地址 + 一个有 5 件库存的商品"""
    user = await auth_service_factory().sign_up("buyer@example.com", "Str0ng!Pass", "Ali", "Hassan")
    address = await AccountService().create_address(user["id"], sample_address_data)
    return {"user": user, "address": address, "product": catalog["product"]}


def checkout_data(address_id: int, payment: str = "cod", shipping: str = "standard") -> dict:
    return {
        "shipping_address_id": address_id,
        "shipping_method_id": shipping,
        "payment_method_id": payment,
    }


@pytest.mark.asyncio
async def test_checkout_builds_order_from_cart(shopper, catalog):
    user, address, product = shopper["user"], shopper["address"], shopper["product"]
    owner = CartOwner(user_id=user["id"])

    cart = await CartService().add_item(owner, product["id"], quantity=2)
    assert cart["totals"]["item_count"] == 2
    assert Decimal(cart["totals"]["subtotal"]) == Decimal("2500000")

    order = await OrderService().checkout(user["id"], checkout_data(address["id"]))

    assert order["order_number"].startswith("SJ-")
    assert order["status"] == "pending"
    assert order["payment_status"] == "pending"
    assert order["fulfillment_status"] == "unfulfilled"
    assert Decimal(order["subtotal"]) == Decimal("2500000")
    # 满 100000 免标准运费
    assert Decimal(order["shipping_cost"]) == Decimal("0")
    assert Decimal(order["total"]) == Decimal("2500000")
    assert order["item_count"] == 2

    item = order["items"][0]
    assert item["sku"] == "SM-S24-128"
    assert item["product"]["id"] == product["id"]
    assert item["product"]["brand"]["id"] == catalog["brand"]["id"]
    assert item["product"]["category"]["id"] == catalog["category"]["id"]
    assert item["product"]["brand"]["name"] == "Samsung"
    assert item["product"]["category"]["name"] == "Smartphones"
    assert order["shipping_address"]["governorate"] == "Baghdad"
    assert [entry["to_status"] for entry in order["status_history"]] == ["pending"]
    assert order["can_cancel"] is True
    assert "processing" in order["allowed_transitions"]

    # 购物车清空，库存被占用
    emptied = await CartService().get_cart(owner)
    assert emptied["items"] == []
    stock = await InventoryService().get_inventory(product["id"])
    assert stock["inventory"]["reserved"] == 2


@pytest.mark.asyncio
async def test_checkout_with_empty_cart(shopper):
    with pytest.raises(ValidationError) as exc_info:
        await OrderService().checkout(shopper["user"]["id"], checkout_data(shopper["address"]["id"]))
    assert exc_info.value.code == "CART_EMPTY"


@pytest.mark.asyncio
async def test_checkout_rejects_unknown_methods(shopper):
    with pytest.raises(ValidationError) as exc_info:
        await OrderService().checkout(
            shopper["user"]["id"], checkout_data(shopper["address"]["id"], payment="bitcoin")
        )
    assert exc_info.value.code == "INVALID_PAYMENT_METHOD"


@pytest.mark.asyncio
async def test_cart_blocks_quantities_above_stock(shopper):
    owner = CartOwner(user_id=shopper["user"]["id"])
    with pytest.raises(InsufficientStockError):
        await CartService().add_item(owner, shopper["product"]["id"], quantity=6)


@pytest.mark.asyncio
async def test_checkout_fails_when_stock_is_gone(shopper):
    user, address, product = shopper["user"], shopper["address"], shopper["product"]
    await CartService().add_item(CartOwner(user_id=user["id"]), product["id"], quantity=3)

    # 其他订单先占用了库存
    await InventoryService().reserve_stock(product["id"], 4)

    with pytest.raises(InsufficientStockError):
        await OrderService().checkout(user["id"], checkout_data(address["id"]))

    # 事务回滚，购物车保留
    cart = await CartService().get_cart(CartOwner(user_id=user["id"]))
    assert cart["totals"]["item_count"] == 3


@pytest.mark.asyncio
async def test_orders_are_private(shopper, auth_service_factory):
    user, address, product = shopper["user"], shopper["address"], shopper["product"]
    await CartService().add_item(CartOwner(user_id=user["id"]), product["id"])
    order = await OrderService().checkout(user["id"], checkout_data(address["id"]))

    other = await auth_service_factory().sign_up("other@example.com", "Str0ng!Pass", "Noor", "Jasim")
    with pytest.raises(NotFoundError) as exc_info:
        await OrderService().get_order(order["id"], user_id=other["id"])
    assert exc_info.value.code == "ORDER_NOT_FOUND"

    # 员工视图不限用户
    assert (await OrderService().get_order(order["id"]))["id"] == order["id"]


@pytest.mark.asyncio
async def test_cancel_releases_reservation(shopper):
    user, address, product = shopper["user"], shopper["address"], shopper["product"]
    await CartService().add_item(CartOwner(user_id=user["id"]), product["id"], quantity=2)
    order = await OrderService().checkout(user["id"], checkout_data(address["id"]))

    cancelled = await OrderService().cancel_order(order["id"], reason="Changed my mind", user_id=user["id"])

    assert cancelled["status"] == "cancelled"
    assert cancelled["payment_status"] == "voided"
    assert cancelled["can_cancel"] is False
    stock = await InventoryService().get_inventory(product["id"])
    assert stock["inventory"]["reserved"] == 0

    with pytest.raises(InvalidStatusTransitionError):
        await OrderService().update_status(order["id"], "processing")


@pytest.mark.asyncio
async def test_online_payment_marks_order_paid(shopper):
    user, address, product = shopper["user"], shopper["address"], shopper["product"]
    await CartService().add_item(CartOwner(user_id=user["id"]), product["id"])
    order = await OrderService().checkout(user["id"], checkout_data(address["id"], payment="zaincash"))

    created = await PaymentService().create_payment(order["id"], {}, user_id=user["id"])
    assert created["payment"]["provider"] == "zaincash"
    assert created["order"]["status"] == "payment_pending"

    completed = await PaymentService().complete_payment(created["payment"]["id"], provider_transaction_id="ZC-1")
    assert completed["payment"]["status"] == "completed"
    assert completed["order"]["status"] == "paid"
    assert completed["order"]["payment_status"] == "paid"


@pytest.mark.asyncio
async def test_cod_payment_keeps_order_status(shopper):
    user, address, product = shopper["user"], shopper["address"], shopper["product"]
    await CartService().add_item(CartOwner(user_id=user["id"]), product["id"])
    order = await OrderService().checkout(user["id"], checkout_data(address["id"], payment="cod"))

    created = await PaymentService().create_payment(order["id"], {}, user_id=user["id"])
    assert created["payment"]["provider"] == "cod"
    assert created["order"]["status"] == "pending"

    completed = await PaymentService().complete_payment(created["payment"]["id"])
    assert completed["payment"]["status"] == "completed"
    assert completed["order"]["status"] == "pending"
    assert completed["order"]["payment_status"] == "paid"

    reloaded = await OrderService().get_order(order["id"])
    assert [entry["to_status"] for entry in reloaded["status_history"]] == ["pending"]


@pytest.mark.asyncio
async def test_shipment_events_drive_order_status(shopper):
    user, address, product = shopper["user"], shopper["address"], shopper["product"]
    await CartService().add_item(CartOwner(user_id=user["id"]), product["id"], quantity=2)
    order = await OrderService().checkout(user["id"], checkout_data(address["id"]))
    await OrderService().update_status(order["id"], "processing", reason="Packing")

    shipments = ShipmentService()
    shipment = await shipments.create_shipment(order["id"], {"carrier": "Baghdad Express"})
    assert shipment["status"] == "pending"
    assert shipment["destination_address"]["governorate"] == "Baghdad"

    await shipments.add_event(shipment["id"], "picked_up", "Picked up from warehouse", location="Baghdad")
    shipped = await OrderService().get_order(order["id"])
    assert shipped["status"] == "shipped"
    assert shipped["fulfillment_status"] == "fulfilled"
    assert [entry["to_status"] for entry in shipped["status_history"]] == [
        "pending", "processing", "ready_to_ship", "shipped"
    ]

    # 出库后实际库存扣减
    stock = await InventoryService().get_inventory(product["id"])
    assert stock["inventory"]["quantity"] == 3
    assert stock["inventory"]["reserved"] == 0

    await shipments.add_event(shipment["id"], "in_transit", "Departed Baghdad hub")
    await shipments.add_event(shipment["id"], "delivered", "Delivered to customer")
    delivered = await OrderService().get_order(order["id"])
    assert delivered["status"] == "delivered"

    tracking = await shipments.track(shipment["tracking_number"])
    assert tracking["status"] == "delivered"
