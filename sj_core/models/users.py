"""
用户及认证相关数据模型
"""
import copy
from datetime import datetime
from typing import Optional, List

from sqlalchemy import (
    BigInteger, String, Text, Boolean, DateTime, JSON,
    ForeignKey, Index, UniqueConstraint, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, enum_check

USER_ROLES = ("customer", "admin", "vendor", "support")
USER_STATUSES = ("active", "inactive", "suspended", "pending_verification")
GENDERS = ("male", "female", "other", "prefer_not_to_say")
OAUTH_PROVIDERS = ("google", "facebook", "apple")
TOKEN_TYPES = ("email_verification", "password_reset", "phone_verification", "two_factor")
ADDRESS_TYPES = ("home", "work", "other")
ACTIVITY_TYPES = (
    "login",
    "logout",
    "password_change",
    "profile_update",
    "address_added",
    "address_updated",
    "order_placed",
    "email_verified",
    "phone_verified",
)

DEFAULT_NOTIFICATIONS = {
    "email": {"orderUpdates": True, "promotions": False, "newsletter": False, "accountActivity": True},
    "sms": {"orderUpdates": True, "promotions": False},
    "push": {"orderUpdates": True, "promotions": False, "newArrivals": False},
}


class User(Base):
    """用户"""
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, comment="用户ID")

    email: Mapped[str] = mapped_column(String(255), nullable=False, comment="邮箱")
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, comment="邮箱已验证")
    phone: Mapped[Optional[str]] = mapped_column(String(20), comment="手机号")
    phone_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, comment="手机已验证")
    password_hash: Mapped[str] = mapped_column(Text, nullable=False, comment="密码哈希")

    first_name: Mapped[str] = mapped_column(String(100), nullable=False, comment="名")
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, comment="姓")
    avatar: Mapped[Optional[str]] = mapped_column(Text, comment="头像URL")
    date_of_birth: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), comment="出生日期")
    gender: Mapped[Optional[str]] = mapped_column(String(20), comment="性别")

    role: Mapped[str] = mapped_column(String(20), default="customer", nullable=False, comment="角色")
    status: Mapped[str] = mapped_column(String(30), default="active", nullable=False, comment="账号状态")

    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), comment="最后登录时间")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, comment="创建时间"
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False, comment="更新时间"
    )

    # 关系（删除用户时由数据库级联）
    accounts: Mapped[List["Account"]] = relationship(back_populates="user", passive_deletes=True)
    sessions: Mapped[List["UserSession"]] = relationship(back_populates="user", passive_deletes=True)
    addresses: Mapped[List["Address"]] = relationship(back_populates="user", passive_deletes=True)
    preferences: Mapped[Optional["UserPreference"]] = relationship(back_populates="user", passive_deletes=True)
    activities: Mapped[List["UserActivity"]] = relationship(back_populates="user", passive_deletes=True)
    cart = relationship("Cart", back_populates="user", uselist=False, passive_deletes=True)
    favorites = relationship("Favorite", back_populates="user", passive_deletes=True)
    orders = relationship("Order", back_populates="user", foreign_keys="Order.user_id", passive_deletes=True)

    __table_args__ = (
        UniqueConstraint("email", name="uq_users_email"),
        Index("ix_users_phone", "phone"),
        Index("ix_users_role", "role"),
        Index("ix_users_status", "status"),
        enum_check("role", USER_ROLES, "ck_users_role"),
        enum_check("status", USER_STATUSES, "ck_users_status"),
        enum_check("gender", GENDERS, "ck_users_gender"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:
        # 避免触发延迟加载
        id_val = self.__dict__.get("id", "?")
        role_val = self.__dict__.get("role", "?")
        return f"<User(id={id_val}, role={role_val})>"

    def to_dict(self) -> dict:
        """转换为字典（不含密码哈希）"""
        data = super().to_dict()
        data.pop("password_hash", None)
        data["full_name"] = self.full_name
        return data


class Account(Base):
    """第三方登录账号（OAuth）"""
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, comment="用户ID"
    )
    provider: Mapped[str] = mapped_column(String(20), nullable=False, comment="OAuth 提供方")
    provider_account_id: Mapped[str] = mapped_column(String(255), nullable=False, comment="提供方账号ID")
    access_token: Mapped[Optional[str]] = mapped_column(Text)
    refresh_token: Mapped[Optional[str]] = mapped_column(Text)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    token_type: Mapped[Optional[str]] = mapped_column(String(50))
    scope: Mapped[Optional[str]] = mapped_column(Text)
    id_token: Mapped[Optional[str]] = mapped_column(Text)
    session_state: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    user: Mapped["User"] = relationship(back_populates="accounts")

    __table_args__ = (
        UniqueConstraint("provider", "provider_account_id", name="uq_accounts_provider_account"),
        Index("ix_accounts_user_id", "user_id"),
        enum_check("provider", OAUTH_PROVIDERS, "ck_accounts_provider"),
    )


class UserSession(Base):
    """登录会话"""
    __tablename__ = "user_sessions"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, comment="用户ID"
    )
    session_token: Mapped[str] = mapped_column(String(64), nullable=False, comment="会话令牌")
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, comment="过期时间")
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), comment="登录IP")
    user_agent: Mapped[Optional[str]] = mapped_column(Text, comment="User-Agent")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False,
        comment="最后刷新时间"
    )

    user: Mapped["User"] = relationship(back_populates="sessions")

    __table_args__ = (
        UniqueConstraint("session_token", name="uq_user_sessions_token"),
        Index("ix_user_sessions_user_id", "user_id"),
        Index("ix_user_sessions_expires_at", "expires_at"),
    )


class VerificationToken(Base):
    """一次性验证令牌（邮箱验证、密码重置等）"""
    __tablename__ = "verification_tokens"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    user_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), comment="用户ID"
    )
    token: Mapped[str] = mapped_column(String(128), nullable=False, comment="令牌")
    type: Mapped[str] = mapped_column(String(30), nullable=False, comment="令牌类型")
    identifier: Mapped[str] = mapped_column(String(255), nullable=False, comment="标识（邮箱或手机号）")
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, comment="过期时间")
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), comment="使用时间")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("token", name="uq_verification_tokens_token"),
        Index("ix_verification_tokens_identifier", "identifier"),
        Index("ix_verification_tokens_expires_at", "expires_at"),
        enum_check("type", TOKEN_TYPES, "ck_verification_tokens_type"),
    )


class Address(Base):
    """收货地址"""
    __tablename__ = "addresses"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, comment="用户ID"
    )
    type: Mapped[str] = mapped_column(String(10), default="home", nullable=False, comment="地址类型")
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, comment="是否默认")
    recipient_name: Mapped[str] = mapped_column(String(255), nullable=False, comment="收件人")
    recipient_phone: Mapped[str] = mapped_column(String(20), nullable=False, comment="收件人电话")
    address_line1: Mapped[str] = mapped_column(Text, nullable=False, comment="地址行1")
    address_line2: Mapped[Optional[str]] = mapped_column(Text, comment="地址行2")
    city: Mapped[str] = mapped_column(String(100), nullable=False, comment="城市")
    governorate: Mapped[str] = mapped_column(String(100), nullable=False, comment="省份")
    district: Mapped[Optional[str]] = mapped_column(String(100), comment="区")
    nearest_landmark: Mapped[Optional[str]] = mapped_column(Text, comment="最近地标")
    postal_code: Mapped[Optional[str]] = mapped_column(String(20), comment="邮编")
    country: Mapped[str] = mapped_column(String(100), default="Iraq", nullable=False, comment="国家")
    latitude: Mapped[Optional[str]] = mapped_column(String(50))
    longitude: Mapped[Optional[str]] = mapped_column(String(50))
    delivery_notes: Mapped[Optional[str]] = mapped_column(Text, comment="配送备注")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    user: Mapped["User"] = relationship(back_populates="addresses")

    __table_args__ = (
        Index("ix_addresses_user_id", "user_id"),
        Index("ix_addresses_governorate", "governorate"),
        Index("ix_addresses_user_default", "user_id", "is_default"),
        enum_check("type", ADDRESS_TYPES, "ck_addresses_type"),
    )


class UserPreference(Base):
    """用户偏好"""
    __tablename__ = "user_preferences"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, comment="用户ID"
    )
    language: Mapped[str] = mapped_column(String(10), default="en", nullable=False, comment="语言")
    currency: Mapped[str] = mapped_column(String(10), default="IQD", nullable=False, comment="展示币种")
    theme: Mapped[Optional[str]] = mapped_column(String(20), default="light", comment="主题")
    notifications: Mapped[dict] = mapped_column(
        JSON, default=lambda: copy.deepcopy(DEFAULT_NOTIFICATIONS), nullable=False, comment="通知设置"
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    user: Mapped["User"] = relationship(back_populates="preferences")

    __table_args__ = (
        UniqueConstraint("user_id", name="uq_user_preferences_user"),
        enum_check("currency", ("IQD", "USD"), "ck_user_preferences_currency"),
    )


class UserActivity(Base):
    """用户活动日志"""
    __tablename__ = "user_activity"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, comment="用户ID"
    )
    type: Mapped[str] = mapped_column(String(30), nullable=False, comment="活动类型")
    description: Mapped[str] = mapped_column(Text, nullable=False, comment="描述")
    extra_data: Mapped[Optional[dict]] = mapped_column("metadata", JSON, comment="附加数据")
    ip_address: Mapped[Optional[str]] = mapped_column(String(45))
    user_agent: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    user: Mapped["User"] = relationship(back_populates="activities")

    __table_args__ = (
        Index("ix_user_activity_user_id", "user_id"),
        Index("ix_user_activity_type", "type"),
        Index("ix_user_activity_created_at", "created_at"),
        enum_check("type", ACTIVITY_TYPES, "ck_user_activity_type"),
    )
