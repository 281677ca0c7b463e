"""
支付流水数据模型
只记录支付结果，不对接支付网关
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    BigInteger, String, Text, DateTime, JSON,
    CheckConstraint, ForeignKey, Index, func
)
from sqlalchemy.dialects.postgresql import NUMERIC
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, enum_check

PAYMENT_PROVIDERS = ("cod", "qicard", "zaincash", "stripe", "paypal")
TRANSACTION_STATUSES = (
    "pending",
    "processing",
    "authorized",
    "completed",
    "failed",
    "cancelled",
    "refunded",
    "partially_refunded",
)
TRANSACTION_TYPES = ("payment", "refund", "authorization", "capture")


class Payment(Base):
    """支付流水"""
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(20), default="payment", nullable=False, comment="流水类型")
    status: Mapped[str] = mapped_column(String(30), default="pending", nullable=False, comment="流水状态")
    provider: Mapped[str] = mapped_column(String(20), nullable=False, comment="支付渠道")
    payment_method_id: Mapped[str] = mapped_column(String(100), nullable=False)

    amount: Mapped[Decimal] = mapped_column(NUMERIC(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), default="IQD", nullable=False)
    fee: Mapped[Optional[Decimal]] = mapped_column(NUMERIC(10, 2), default=Decimal("0"))
    net_amount: Mapped[Decimal] = mapped_column(NUMERIC(10, 2), nullable=False, comment="扣除手续费后金额")

    provider_transaction_id: Mapped[Optional[str]] = mapped_column(String(255))
    provider_reference_id: Mapped[Optional[str]] = mapped_column(String(255))
    provider_response: Mapped[Optional[dict]] = mapped_column(JSON)
    error_code: Mapped[Optional[str]] = mapped_column(String(100))
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    extra_data: Mapped[Optional[dict]] = mapped_column("metadata", JSON)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45))
    user_agent: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
    authorized_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    order = relationship("Order", back_populates="payments")

    __table_args__ = (
        Index("ix_payments_order_id", "order_id"),
        Index("ix_payments_user_id", "user_id"),
        Index("ix_payments_status", "status"),
        Index("ix_payments_provider_transaction_id", "provider_transaction_id"),
        Index("ix_payments_created_at", "created_at"),
        enum_check("type", TRANSACTION_TYPES, "ck_payments_type"),
        enum_check("status", TRANSACTION_STATUSES, "ck_payments_status"),
        enum_check("provider", PAYMENT_PROVIDERS, "ck_payments_provider"),
        CheckConstraint("amount >= 0", name="ck_payments_amount_non_negative"),
    )
