"""
订单相关数据模型
订单三个状态字段（status / payment_status / fulfillment_status）只允许经由状态机修改
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import (
    BigInteger, String, Text, Integer, DateTime, JSON,
    CheckConstraint, ForeignKey, Index, UniqueConstraint, func
)
from sqlalchemy.dialects.postgresql import NUMERIC
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, enum_check

ORDER_STATUSES = (
    "pending",
    "payment_pending",
    "payment_failed",
    "paid",
    "processing",
    "ready_to_ship",
    "shipped",
    "out_for_delivery",
    "delivered",
    "completed",
    "cancelled",
    "refunded",
    "failed",
)
PAYMENT_STATUSES = ("pending", "authorized", "paid", "partial", "refunded", "voided", "failed")
FULFILLMENT_STATUSES = ("unfulfilled", "partial", "fulfilled", "restocked")


class Order(Base):
    """订单"""
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    order_number: Mapped[str] = mapped_column(String(50), nullable=False, comment="订单号")
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, comment="下单用户"
    )

    # 状态
    status: Mapped[str] = mapped_column(String(30), default="pending", nullable=False, comment="订单状态")
    payment_status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False, comment="支付状态")
    fulfillment_status: Mapped[str] = mapped_column(
        String(20), default="unfulfilled", nullable=False, comment="履约状态"
    )

    # 金额（必须使用 Decimal）
    subtotal: Mapped[Decimal] = mapped_column(NUMERIC(10, 2), nullable=False, comment="商品小计")
    shipping_cost: Mapped[Decimal] = mapped_column(NUMERIC(10, 2), default=Decimal("0"), nullable=False)
    tax: Mapped[Decimal] = mapped_column(NUMERIC(10, 2), default=Decimal("0"), nullable=False)
    discount: Mapped[Decimal] = mapped_column(NUMERIC(10, 2), default=Decimal("0"), nullable=False)
    total: Mapped[Decimal] = mapped_column(NUMERIC(10, 2), nullable=False, comment="应付总额")
    currency: Mapped[str] = mapped_column(String(10), default="IQD", nullable=False)

    # 地址
    shipping_address_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("addresses.id", ondelete="RESTRICT"), nullable=False, comment="收货地址"
    )
    billing_address_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("addresses.id", ondelete="RESTRICT"), comment="账单地址"
    )

    # 配送与支付方式快照
    shipping_method_id: Mapped[str] = mapped_column(String(100), nullable=False)
    shipping_method_name: Mapped[str] = mapped_column(String(255), nullable=False)
    shipping_estimated_days: Mapped[Optional[int]] = mapped_column(Integer)
    payment_method_id: Mapped[str] = mapped_column(String(100), nullable=False)
    payment_method_type: Mapped[str] = mapped_column(String(100), nullable=False, comment="例如 cod / card")
    payment_method_name: Mapped[str] = mapped_column(String(255), nullable=False)

    tracking_number: Mapped[Optional[str]] = mapped_column(String(255))
    tracking_url: Mapped[Optional[str]] = mapped_column(Text)
    customer_notes: Mapped[Optional[str]] = mapped_column(Text)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text)
    cancel_reason: Mapped[Optional[str]] = mapped_column(Text)
    refund_amount: Mapped[Optional[Decimal]] = mapped_column(NUMERIC(10, 2))
    extra_data: Mapped[Optional[dict]] = mapped_column("metadata", JSON)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    shipped_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    user = relationship("User", back_populates="orders", foreign_keys=[user_id])
    shipping_address = relationship("Address", foreign_keys=[shipping_address_id])
    billing_address = relationship("Address", foreign_keys=[billing_address_id])
    items: Mapped[List["OrderItem"]] = relationship(
        back_populates="order", order_by="OrderItem.id", passive_deletes=True
    )
    payments = relationship("Payment", back_populates="order", order_by="Payment.id", passive_deletes=True)
    shipments = relationship("Shipment", back_populates="order", order_by="Shipment.id", passive_deletes=True)
    status_history: Mapped[List["OrderStatusHistory"]] = relationship(
        back_populates="order", order_by="OrderStatusHistory.id", passive_deletes=True
    )

    __table_args__ = (
        UniqueConstraint("order_number", name="uq_orders_order_number"),
        Index("ix_orders_user_id", "user_id"),
        Index("ix_orders_status", "status"),
        Index("ix_orders_payment_status", "payment_status"),
        Index("ix_orders_fulfillment_status", "fulfillment_status"),
        Index("ix_orders_created_at", "created_at"),
        Index("ix_orders_tracking_number", "tracking_number"),
        enum_check("status", ORDER_STATUSES, "ck_orders_status"),
        enum_check("payment_status", PAYMENT_STATUSES, "ck_orders_payment_status"),
        enum_check("fulfillment_status", FULFILLMENT_STATUSES, "ck_orders_fulfillment_status"),
        CheckConstraint("total >= 0", name="ck_orders_total_non_negative"),
    )


class OrderItem(Base):
    """订单商品（下单时的商品快照）"""
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    product_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    variant_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("product_variants.id", ondelete="RESTRICT")
    )

    # 快照
    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    image: Mapped[Optional[str]] = mapped_column(Text)
    variant_options: Mapped[Optional[dict]] = mapped_column(JSON)

    price: Mapped[Decimal] = mapped_column(NUMERIC(10, 2), nullable=False, comment="单价")
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(NUMERIC(10, 2), nullable=False)
    tax: Mapped[Decimal] = mapped_column(NUMERIC(10, 2), default=Decimal("0"), nullable=False)
    discount: Mapped[Decimal] = mapped_column(NUMERIC(10, 2), default=Decimal("0"), nullable=False)
    total: Mapped[Decimal] = mapped_column(NUMERIC(10, 2), nullable=False)

    refunded_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    refunded_amount: Mapped[Decimal] = mapped_column(NUMERIC(10, 2), default=Decimal("0"), nullable=False)
    fulfillment_status: Mapped[str] = mapped_column(String(50), default="unfulfilled", nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    order: Mapped["Order"] = relationship(back_populates="items")
    product = relationship("Product")
    variant = relationship("ProductVariant")

    __table_args__ = (
        Index("ix_order_items_order_id", "order_id"),
        Index("ix_order_items_product_id", "product_id"),
        Index("ix_order_items_sku", "sku"),
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
    )


class OrderStatusHistory(Base):
    """订单状态变更历史"""
    __tablename__ = "order_status_history"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    from_status: Mapped[Optional[str]] = mapped_column(String(30))
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text)
    changed_by: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="SET NULL"), comment="操作人"
    )
    extra_data: Mapped[Optional[dict]] = mapped_column("metadata", JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    order: Mapped["Order"] = relationship(back_populates="status_history")

    __table_args__ = (
        Index("ix_order_status_history_order_id", "order_id"),
        Index("ix_order_status_history_created_at", "created_at"),
        enum_check("to_status", ORDER_STATUSES, "ck_order_status_history_to_status"),
    )
