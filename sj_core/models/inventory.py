"""
库存数据模型
reserved 为待履约订单占用的数量，可售 = quantity - reserved
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger, Boolean, Integer, DateTime, String,
    CheckConstraint, ForeignKey, UniqueConstraint, Index, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, enum_check

INVENTORY_POLICIES = ("track", "no_track", "track_but_allow_oversell")


class ProductInventory(Base):
    """商品库存"""
    __tablename__ = "product_inventory"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    product_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, comment="商品ID"
    )
    quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False, comment="库存数量")
    policy: Mapped[str] = mapped_column(String(30), default="track", nullable=False, comment="库存策略")
    low_stock_threshold: Mapped[Optional[int]] = mapped_column(Integer, default=10, comment="低库存阈值")
    allow_backorder: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, comment="允许缺货下单")
    reserved: Mapped[int] = mapped_column(Integer, default=0, nullable=False, comment="已占用数量")
    restock_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), comment="预计补货日期")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    product = relationship("Product", back_populates="inventory")

    __table_args__ = (
        UniqueConstraint("product_id", name="uq_product_inventory_product"),
        Index("ix_product_inventory_quantity", "quantity"),
        enum_check("policy", INVENTORY_POLICIES, "ck_product_inventory_policy"),
        CheckConstraint("quantity >= 0", name="ck_product_inventory_quantity"),
        CheckConstraint("reserved >= 0", name="ck_product_inventory_reserved"),
    )

    @property
    def available(self) -> int:
        return max(self.quantity - self.reserved, 0)

    @property
    def is_low_stock(self) -> bool:
        return self.policy == "track" and self.available <= (self.low_stock_threshold or 0)


class VariantInventory(Base):
    """变体库存"""
    __tablename__ = "variant_inventory"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    variant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("product_variants.id", ondelete="CASCADE"), nullable=False, comment="变体ID"
    )
    quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    policy: Mapped[str] = mapped_column(String(30), default="track", nullable=False)
    low_stock_threshold: Mapped[Optional[int]] = mapped_column(Integer, default=10)
    allow_backorder: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reserved: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    restock_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    variant = relationship("ProductVariant", back_populates="inventory")

    __table_args__ = (
        UniqueConstraint("variant_id", name="uq_variant_inventory_variant"),
        Index("ix_variant_inventory_quantity", "quantity"),
        enum_check("policy", INVENTORY_POLICIES, "ck_variant_inventory_policy"),
        CheckConstraint("quantity >= 0", name="ck_variant_inventory_quantity"),
        CheckConstraint("reserved >= 0", name="ck_variant_inventory_reserved"),
    )

    @property
    def available(self) -> int:
        return max(self.quantity - self.reserved, 0)
