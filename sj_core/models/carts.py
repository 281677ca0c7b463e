"""
购物车与收藏数据模型
"""
from datetime import datetime
from typing import Optional, List

from sqlalchemy import (
    BigInteger, String, Text, Integer, DateTime, JSON,
    ForeignKey, Index, UniqueConstraint, CheckConstraint, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

CART_ITEM_MAX_QUANTITY = 999


class Cart(Base):
    """购物车（登录用户按 user_id，游客按 session_id）"""
    __tablename__ = "carts"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    user_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), comment="用户ID"
    )
    session_id: Mapped[Optional[str]] = mapped_column(String(255), comment="游客会话ID")
    extra_data: Mapped[Optional[dict]] = mapped_column("metadata", JSON)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), comment="游客购物车过期时间")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    user = relationship("User", back_populates="cart")
    items: Mapped[List["CartItem"]] = relationship(
        back_populates="cart", order_by="CartItem.id", passive_deletes=True
    )

    __table_args__ = (
        UniqueConstraint("user_id", name="uq_carts_user"),
        Index("ix_carts_session_id", "session_id"),
        Index("ix_carts_expires_at", "expires_at"),
    )


class CartItem(Base):
    """购物车商品"""
    __tablename__ = "cart_items"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    cart_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False
    )
    product_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    variant_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("product_variants.id", ondelete="CASCADE")
    )
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    extra_data: Mapped[Optional[dict]] = mapped_column("metadata", JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    cart: Mapped["Cart"] = relationship(back_populates="items")
    product = relationship("Product")
    variant = relationship("ProductVariant")

    __table_args__ = (
        # variant_id 为 NULL 时唯一约束不生效，由服务层合并同一商品
        UniqueConstraint("cart_id", "product_id", "variant_id", name="uq_cart_items_cart_product_variant"),
        Index("ix_cart_items_cart_id", "cart_id"),
        Index("ix_cart_items_product_id", "product_id"),
        CheckConstraint(
            f"quantity >= 1 AND quantity <= {CART_ITEM_MAX_QUANTITY}",
            name="ck_cart_items_quantity"
        ),
    )


class Favorite(Base):
    """收藏"""
    __tablename__ = "favorites"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    product_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    variant_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("product_variants.id", ondelete="CASCADE")
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, comment="用户备注")
    extra_data: Mapped[Optional[dict]] = mapped_column("metadata", JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    user = relationship("User", back_populates="favorites")
    product = relationship("Product")
    variant = relationship("ProductVariant")

    __table_args__ = (
        UniqueConstraint("user_id", "product_id", "variant_id", name="uq_favorites_user_product_variant"),
        Index("ix_favorites_user_id", "user_id"),
        Index("ix_favorites_product_id", "product_id"),
        Index("ix_favorites_user_created", "user_id", "created_at"),
    )
