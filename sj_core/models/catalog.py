"""
商品目录数据模型：品牌、分类、商品、图片、规格、变体
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import (
    BigInteger, String, Text, Boolean, Integer, DateTime, JSON,
    ForeignKey, Index, UniqueConstraint, CheckConstraint, func
)
from sqlalchemy.dialects.postgresql import NUMERIC
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, enum_check

BRAND_STATUSES = ("active", "inactive", "draft")
CATEGORY_STATUSES = ("active", "inactive", "draft")
PRODUCT_STATUSES = ("active", "inactive", "draft", "out_of_stock", "discontinued")
PRODUCT_CONDITIONS = ("new", "refurbished", "used", "open_box")


class Brand(Base):
    """品牌"""
    __tablename__ = "brands"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, comment="品牌名")
    slug: Mapped[str] = mapped_column(String(255), nullable=False, comment="URL 标识")
    description: Mapped[Optional[str]] = mapped_column(Text)
    logo: Mapped[Optional[str]] = mapped_column(Text)
    cover_image: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False, comment="状态")
    featured: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, comment="是否推荐")
    website_url: Mapped[Optional[str]] = mapped_column(Text)
    country: Mapped[Optional[str]] = mapped_column(String(100))
    founded_year: Mapped[Optional[int]] = mapped_column(Integer)
    product_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False, comment="商品数")
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False, comment="排序")
    seo_title: Mapped[Optional[str]] = mapped_column(String(255))
    seo_description: Mapped[Optional[str]] = mapped_column(Text)
    seo_keywords: Mapped[Optional[str]] = mapped_column(Text, comment="逗号分隔")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    products: Mapped[List["Product"]] = relationship(back_populates="brand", passive_deletes=True)

    __table_args__ = (
        UniqueConstraint("slug", name="uq_brands_slug"),
        Index("ix_brands_status", "status"),
        Index("ix_brands_featured", "featured"),
        Index("ix_brands_display_order", "display_order"),
        Index("ix_brands_name", "name"),
        enum_check("status", BRAND_STATUSES, "ck_brands_status"),
    )


class Category(Base):
    """商品分类（树形结构，level/path 为物化的层级信息）"""
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, comment="分类名")
    slug: Mapped[str] = mapped_column(String(255), nullable=False, comment="URL 标识")
    description: Mapped[Optional[str]] = mapped_column(Text)
    parent_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("categories.id", ondelete="CASCADE"), comment="父分类ID"
    )
    level: Mapped[int] = mapped_column(Integer, default=0, nullable=False, comment="层级，根为0")
    path: Mapped[list] = mapped_column(JSON, default=list, nullable=False, comment="祖先ID列表")
    icon: Mapped[Optional[str]] = mapped_column(Text)
    image: Mapped[Optional[str]] = mapped_column(Text)
    cover_image: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)
    featured: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    product_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    show_in_menu: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, comment="是否显示在菜单")
    seo_title: Mapped[Optional[str]] = mapped_column(String(255))
    seo_description: Mapped[Optional[str]] = mapped_column(Text)
    seo_keywords: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    parent: Mapped[Optional["Category"]] = relationship(
        back_populates="children", remote_side=[id]
    )
    children: Mapped[List["Category"]] = relationship(back_populates="parent", passive_deletes=True)
    products: Mapped[List["Product"]] = relationship(back_populates="category", passive_deletes=True)

    __table_args__ = (
        UniqueConstraint("slug", name="uq_categories_slug"),
        Index("ix_categories_parent_id", "parent_id"),
        Index("ix_categories_level", "level"),
        Index("ix_categories_status", "status"),
        Index("ix_categories_display_order", "display_order"),
        Index("ix_categories_name", "name"),
        enum_check("status", CATEGORY_STATUSES, "ck_categories_status"),
        CheckConstraint("level >= 0", name="ck_categories_level"),
    )


class Product(Base):
    """商品"""
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    sku: Mapped[str] = mapped_column(String(100), nullable=False, comment="SKU")
    name: Mapped[str] = mapped_column(String(255), nullable=False, comment="商品名")
    slug: Mapped[str] = mapped_column(String(255), nullable=False, comment="URL 标识")
    description: Mapped[Optional[str]] = mapped_column(Text)
    short_description: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False, comment="状态")
    condition: Mapped[str] = mapped_column(String(20), default="new", nullable=False, comment="成色")

    brand_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("brands.id", ondelete="RESTRICT"), nullable=False, comment="品牌ID"
    )
    category_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("categories.id", ondelete="RESTRICT"), nullable=False, comment="分类ID"
    )

    # 价格（默认 IQD）
    price: Mapped[Decimal] = mapped_column(NUMERIC(10, 2), nullable=False, comment="售价")
    compare_at_price: Mapped[Optional[Decimal]] = mapped_column(NUMERIC(10, 2), comment="划线价")
    cost: Mapped[Optional[Decimal]] = mapped_column(NUMERIC(10, 2), comment="成本（仅管理员可见）")
    currency: Mapped[str] = mapped_column(String(10), default="IQD", nullable=False)
    taxable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    tax_rate: Mapped[Optional[Decimal]] = mapped_column(NUMERIC(5, 2), comment="税率（%）")

    weight: Mapped[Optional[int]] = mapped_column(Integer, comment="重量（克）")
    dimensions: Mapped[Optional[dict]] = mapped_column(JSON, comment="尺寸 {length,width,height,unit}")

    featured: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_new: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_bestseller: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    tags: Mapped[Optional[str]] = mapped_column(Text, comment="逗号分隔")
    has_variants: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    seo_title: Mapped[Optional[str]] = mapped_column(String(255))
    seo_description: Mapped[Optional[str]] = mapped_column(Text)
    seo_keywords: Mapped[Optional[str]] = mapped_column(Text)

    view_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    favorite_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    review_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    average_rating: Mapped[Decimal] = mapped_column(NUMERIC(3, 2), default=Decimal("0"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), comment="上架时间")

    brand: Mapped["Brand"] = relationship(back_populates="products")
    category: Mapped["Category"] = relationship(back_populates="products")
    images: Mapped[List["ProductImage"]] = relationship(
        back_populates="product", order_by="ProductImage.position", passive_deletes=True
    )
    specifications: Mapped[List["ProductSpecification"]] = relationship(
        back_populates="product", order_by="ProductSpecification.display_order", passive_deletes=True
    )
    variants: Mapped[List["ProductVariant"]] = relationship(
        back_populates="product", order_by="ProductVariant.position", passive_deletes=True
    )
    inventory = relationship("ProductInventory", back_populates="product", uselist=False, passive_deletes=True)

    __table_args__ = (
        UniqueConstraint("sku", name="uq_products_sku"),
        UniqueConstraint("slug", name="uq_products_slug"),
        Index("ix_products_brand_id", "brand_id"),
        Index("ix_products_category_id", "category_id"),
        Index("ix_products_status", "status"),
        Index("ix_products_featured", "featured"),
        Index("ix_products_price", "price"),
        Index("ix_products_name", "name"),
        Index("ix_products_published_at", "published_at"),
        enum_check("status", PRODUCT_STATUSES, "ck_products_status"),
        enum_check("condition", PRODUCT_CONDITIONS, "ck_products_condition"),
        CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
    )

    @property
    def main_image(self) -> Optional[str]:
        """主图，没有标记主图时取第一张"""
        images = self.__dict__.get("images") or []
        for image in images:
            if image.is_main:
                return image.url
        return images[0].url if images else None


class ProductImage(Base):
    """商品图片"""
    __tablename__ = "product_images"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    product_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    url: Mapped[str] = mapped_column(Text, nullable=False)
    alt: Mapped[str] = mapped_column(String(255), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_main: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    thumbnail: Mapped[Optional[str]] = mapped_column(Text)
    variants: Mapped[Optional[dict]] = mapped_column(JSON, comment="多尺寸 {small,medium,large}")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    product: Mapped["Product"] = relationship(back_populates="images")

    __table_args__ = (
        Index("ix_product_images_product_position", "product_id", "position"),
    )


class ProductSpecification(Base):
    """商品规格参数"""
    __tablename__ = "product_specifications"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    product_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    group: Mapped[Optional[str]] = mapped_column(String(100), comment="分组，例如 Technical")
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    product: Mapped["Product"] = relationship(back_populates="specifications")

    __table_args__ = (
        Index("ix_product_specifications_product_id", "product_id"),
        Index("ix_product_specifications_group", "group"),
    )


class ProductVariant(Base):
    """商品变体（颜色、尺寸等组合）"""
    __tablename__ = "product_variants"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    product_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    options: Mapped[dict] = mapped_column(JSON, nullable=False, comment="例如 {color: Red, size: Large}")
    price: Mapped[Optional[Decimal]] = mapped_column(NUMERIC(10, 2), comment="为空时使用商品价格")
    compare_at_price: Mapped[Optional[Decimal]] = mapped_column(NUMERIC(10, 2))
    image: Mapped[Optional[str]] = mapped_column(Text)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    barcode: Mapped[Optional[str]] = mapped_column(String(100))
    weight: Mapped[Optional[int]] = mapped_column(Integer)
    available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    product: Mapped["Product"] = relationship(back_populates="variants")
    inventory = relationship("VariantInventory", back_populates="variant", uselist=False, passive_deletes=True)

    __table_args__ = (
        UniqueConstraint("sku", name="uq_product_variants_sku"),
        Index("ix_product_variants_product_id", "product_id"),
        Index("ix_product_variants_barcode", "barcode"),
        Index("ix_product_variants_available", "available"),
    )
