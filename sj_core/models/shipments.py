"""
发运和物流轨迹数据模型
只记录发运信息，不对接承运商
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import (
    BigInteger, String, Text, Integer, DateTime, JSON,
    ForeignKey, Index, UniqueConstraint, func
)
from sqlalchemy.dialects.postgresql import NUMERIC
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, enum_check

SHIPMENT_STATUSES = (
    "pending",
    "processing",
    "ready_to_ship",
    "picked_up",
    "in_transit",
    "out_for_delivery",
    "delivered",
    "failed",
    "returned",
)


class Shipment(Base):
    """发运"""
    __tablename__ = "shipments"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, comment="关联订单ID"
    )
    tracking_number: Mapped[Optional[str]] = mapped_column(String(255), comment="运单号")
    carrier: Mapped[Optional[str]] = mapped_column(String(255), comment="承运商")
    shipping_method_id: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False, comment="发运状态")

    origin_address: Mapped[dict] = mapped_column(JSON, nullable=False, comment="发货地址")
    destination_address: Mapped[dict] = mapped_column(JSON, nullable=False, comment="收货地址")
    weight: Mapped[Optional[int]] = mapped_column(Integer, comment="重量（克）")
    dimensions: Mapped[Optional[dict]] = mapped_column(JSON)
    package_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    estimated_delivery_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    actual_delivery_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cost: Mapped[Decimal] = mapped_column(NUMERIC(10, 2), nullable=False, comment="运费")
    currency: Mapped[str] = mapped_column(String(10), default="IQD", nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    tracking_url: Mapped[Optional[str]] = mapped_column(Text)
    extra_data: Mapped[Optional[dict]] = mapped_column("metadata", JSON)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
    shipped_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    order = relationship("Order", back_populates="shipments")
    tracking_events: Mapped[List["ShipmentTrackingEvent"]] = relationship(
        back_populates="shipment", order_by="ShipmentTrackingEvent.timestamp", passive_deletes=True
    )

    __table_args__ = (
        UniqueConstraint("tracking_number", name="uq_shipments_tracking_number"),
        Index("ix_shipments_order_id", "order_id"),
        Index("ix_shipments_status", "status"),
        Index("ix_shipments_created_at", "created_at"),
        enum_check("status", SHIPMENT_STATUSES, "ck_shipments_status"),
    )


class ShipmentTrackingEvent(Base):
    """物流轨迹事件"""
    __tablename__ = "shipment_tracking_events"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    shipment_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("shipments.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    location: Mapped[Optional[str]] = mapped_column(String(255))
    description: Mapped[str] = mapped_column(Text, nullable=False)
    extra_data: Mapped[Optional[dict]] = mapped_column("metadata", JSON)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, comment="事件时间")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    shipment: Mapped["Shipment"] = relationship(back_populates="tracking_events")

    __table_args__ = (
        Index("ix_shipment_tracking_events_shipment_id", "shipment_id"),
        Index("ix_shipment_tracking_events_timestamp", "timestamp"),
        enum_check("status", SHIPMENT_STATUSES, "ck_shipment_tracking_events_status"),
    )
