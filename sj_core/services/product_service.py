"""
商品服务：商品、图片、规格参数、变体

品牌与分类的 product_count 随商品的创建、删除、改挂由本服务维护
"""
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update, delete, or_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from sj_core.models.catalog import (
    Brand, Category, Product, ProductImage, ProductSpecification, ProductVariant,
    PRODUCT_STATUSES, PRODUCT_CONDITIONS,
)
from sj_core.models.inventory import ProductInventory, VariantInventory, INVENTORY_POLICIES
from sj_core.services.base import BaseService, RepositoryMixin, Page
from sj_core.services.brand_service import prepare_slug
from sj_core.utils.errors import NotFoundError, ValidationError, translate_integrity_error
from sj_core.utils.logger import get_logger
from sj_core.utils.validators import is_valid_sku

logger = get_logger(__name__)

PRODUCT_FIELDS = [
    "sku", "name", "slug", "description", "short_description", "status", "condition",
    "brand_id", "category_id", "price", "compare_at_price", "cost", "currency", "taxable",
    "tax_rate", "weight", "dimensions", "featured", "is_new", "is_bestseller", "tags",
    "seo_title", "seo_description", "seo_keywords",
]
IMAGE_FIELDS = ["url", "alt", "position", "is_main", "thumbnail", "variants"]
SPECIFICATION_FIELDS = ["name", "value", "group", "display_order"]
VARIANT_FIELDS = [
    "sku", "name", "options", "price", "compare_at_price", "image", "position",
    "barcode", "weight", "available",
]
INVENTORY_FIELDS = ["quantity", "policy", "low_stock_threshold", "allow_backorder", "restock_date"]

PRODUCT_SORTS = {
    "newest": (Product.created_at.desc(), Product.id.desc()),
    "price_asc": (Product.price.asc(), Product.id),
    "price_desc": (Product.price.desc(), Product.id),
    "name": (Product.name.asc(), Product.id),
    "popular": (Product.view_count.desc(), Product.id),
}


def _to_decimal(value: Any, field_name: str) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(detail=f"Invalid {field_name}", details={field_name: ["Must be a number"]})
    if amount < 0:
        raise ValidationError(detail=f"Invalid {field_name}", details={field_name: ["Must not be negative"]})
    return amount


def validate_inventory_data(data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """校验库存字段"""
    data = {k: v for k, v in (data or {}).items() if k in INVENTORY_FIELDS}
    if "policy" in data and data["policy"] not in INVENTORY_POLICIES:
        raise ValidationError(detail="Invalid inventory policy", details={"policy": ["Invalid policy"]})
    for field_name in ("quantity", "low_stock_threshold"):
        if data.get(field_name) is not None and int(data[field_name]) < 0:
            raise ValidationError(
                detail=f"Invalid {field_name}",
                details={field_name: ["Must not be negative"]}
            )
    return data


def serialize_inventory(inventory) -> Optional[Dict[str, Any]]:
    if inventory is None:
        return None
    data = inventory.to_dict()
    data["available"] = inventory.available
    return data


def serialize_product(product: Product, detail: bool = False) -> Dict[str, Any]:
    """商品转字典；列表只带主图、品牌、分类和库存摘要"""
    data = product.to_dict()
    loaded = product.__dict__

    data["main_image"] = product.main_image if "images" in loaded else None
    if loaded.get("brand") is not None:
        data["brand"] = {"id": product.brand.id, "name": product.brand.name, "slug": product.brand.slug}
    if loaded.get("category") is not None:
        data["category"] = {
            "id": product.category.id, "name": product.category.name, "slug": product.category.slug
        }
    if "inventory" in loaded:
        data["inventory"] = serialize_inventory(product.inventory)

    if detail:
        data["images"] = [image.to_dict() for image in loaded.get("images", [])]
        data["specifications"] = [spec.to_dict() for spec in loaded.get("specifications", [])]
        variants = []
        for variant in loaded.get("variants", []):
            item = variant.to_dict()
            if "inventory" in variant.__dict__:
                item["inventory"] = serialize_inventory(variant.inventory)
            variants.append(item)
        data["variants"] = variants
    return data


class ProductService(BaseService, RepositoryMixin):
    """商品服务"""

    # ========== 查询 ==========

    async def list_products(
        self,
        brand_id: Optional[int] = None,
        category_id: Optional[int] = None,
        status: Optional[str] = None,
        featured: Optional[bool] = None,
        search: Optional[str] = None,
        min_price: Optional[Decimal] = None,
        max_price: Optional[Decimal] = None,
        sort: str = "newest",
        page: int = 1,
        limit: int = 20
    ) -> Page:
        filters = {
            "brand_id": brand_id,
            "category_id": category_id,
            "status": status,
            "featured": featured,
            "search": search,
            "min_price": min_price,
            "max_price": max_price,
        }
        return await self.execute_with_session(self._list_products_tx, filters, sort, page, limit)

    async def _list_products_tx(
        self,
        session: AsyncSession,
        filters: Dict[str, Any],
        sort: str,
        page: int,
        limit: int
    ) -> Page:
        stmt = select(Product).options(
            selectinload(Product.images),
            selectinload(Product.brand),
            selectinload(Product.category),
            selectinload(Product.inventory),
        )

        if filters["brand_id"] is not None:
            stmt = stmt.where(Product.brand_id == filters["brand_id"])
        if filters["category_id"] is not None:
            # 包含所有子分类
            category_ids = await self._descendant_ids(session, filters["category_id"])
            stmt = stmt.where(Product.category_id.in_(category_ids))
        if filters["status"]:
            stmt = stmt.where(Product.status == filters["status"])
        if filters["featured"] is not None:
            stmt = stmt.where(Product.featured.is_(filters["featured"]))
        if filters["search"]:
            pattern = f"%{filters['search']}%"
            stmt = stmt.where(or_(
                Product.name.ilike(pattern),
                Product.sku.ilike(pattern),
                Product.tags.ilike(pattern),
                Product.short_description.ilike(pattern),
            ))
        if filters["min_price"] is not None:
            stmt = stmt.where(Product.price >= filters["min_price"])
        if filters["max_price"] is not None:
            stmt = stmt.where(Product.price <= filters["max_price"])

        stmt = stmt.order_by(*PRODUCT_SORTS.get(sort, PRODUCT_SORTS["newest"]))

        result = await self.paginate(session, stmt, page, limit)
        result.items = [serialize_product(product) for product in result.items]
        return result

    async def _descendant_ids(self, session: AsyncSession, category_id: int) -> List[int]:
        """分类自身加全部后代ID"""
        result = await session.execute(select(Category.id, Category.path))
        return [
            row_id for row_id, path in result.all()
            if row_id == category_id or category_id in (path or [])
        ]

    def _detail_stmt(self):
        return select(Product).options(
            selectinload(Product.brand),
            selectinload(Product.category),
            selectinload(Product.images),
            selectinload(Product.specifications),
            selectinload(Product.variants).selectinload(ProductVariant.inventory),
            selectinload(Product.inventory),
        ).execution_options(populate_existing=True)

    async def get_product(self, product_id: int) -> Dict[str, Any]:
        return await self.execute_with_session(self._get_product_tx, Product.id == product_id)

    async def get_product_by_slug(self, slug: str) -> Dict[str, Any]:
        return await self.execute_with_session(self._get_product_tx, Product.slug == slug)

    async def _get_product_tx(self, session: AsyncSession, condition) -> Dict[str, Any]:
        result = await session.execute(self._detail_stmt().where(condition))
        product = result.scalar_one_or_none()
        if product is None:
            raise NotFoundError(code="PRODUCT_NOT_FOUND", resource="Product")
        return serialize_product(product, detail=True)

    async def record_view(self, product_id: int) -> None:
        """浏览数加一"""
        await self.execute_with_transaction(self._record_view_tx, product_id)

    async def _record_view_tx(self, session: AsyncSession, product_id: int) -> None:
        await session.execute(
            update(Product).where(Product.id == product_id).values(view_count=Product.view_count + 1)
        )

    # ========== 商品增删改 ==========

    def _validate(self, data: Dict[str, Any]) -> Dict[str, Any]:
        data = self.sanitize_input(data, PRODUCT_FIELDS)
        prepare_slug(data)
        if "sku" in data and not is_valid_sku(data["sku"] or ""):
            raise ValidationError(code="INVALID_SKU", detail="Invalid SKU", details={"sku": ["Invalid SKU"]})
        if "status" in data and data["status"] not in PRODUCT_STATUSES:
            raise ValidationError(detail="Invalid product status", details={"status": ["Invalid status"]})
        if "condition" in data and data["condition"] not in PRODUCT_CONDITIONS:
            raise ValidationError(detail="Invalid product condition", details={"condition": ["Invalid condition"]})
        for field_name in ("price", "compare_at_price", "cost", "tax_rate"):
            if data.get(field_name) is not None:
                data[field_name] = _to_decimal(data[field_name], field_name)
        return data

    async def _ensure_references(self, session: AsyncSession, data: Dict[str, Any]) -> None:
        if "brand_id" in data and await self.get_by_id(session, Brand, data["brand_id"]) is None:
            raise NotFoundError(code="BRAND_NOT_FOUND", resource="Brand")
        if "category_id" in data and await self.get_by_id(session, Category, data["category_id"]) is None:
            raise NotFoundError(code="CATEGORY_NOT_FOUND", resource="Category")

    async def _adjust_counts(
        self,
        session: AsyncSession,
        brand_id: Optional[int],
        category_id: Optional[int],
        delta: int
    ) -> None:
        if brand_id is not None:
            await session.execute(
                update(Brand)
                .where(Brand.id == brand_id)
                .values(product_count=func.greatest(Brand.product_count + delta, 0))
            )
        if category_id is not None:
            await session.execute(
                update(Category)
                .where(Category.id == category_id)
                .values(product_count=func.greatest(Category.product_count + delta, 0))
            )

    async def create_product(self, data: Dict[str, Any]) -> Dict[str, Any]:
        inventory_data = validate_inventory_data(data.get("inventory"))
        data = self._validate(data)
        self.validate_required_fields(data, ["sku", "name", "slug", "brand_id", "category_id", "price"])
        product = await self.execute_with_transaction(self._create_product_tx, data, inventory_data)
        logger.info("Product created", product_id=product["id"], sku=product["sku"])
        return product

    async def _create_product_tx(
        self,
        session: AsyncSession,
        data: Dict[str, Any],
        inventory_data: Dict[str, Any]
    ) -> Dict[str, Any]:
        await self._ensure_references(session, data)
        if data.get("status", "active") == "active":
            data["published_at"] = datetime.now(timezone.utc)

        product = await self.create(session, Product, data)
        await self.create(session, ProductInventory, {**inventory_data, "product_id": product.id})
        await self._adjust_counts(session, product.brand_id, product.category_id, 1)
        return await self._get_product_tx(session, Product.id == product.id)

    async def update_product(self, product_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        data = self._validate(data)
        return await self.execute_with_transaction(self._update_product_tx, product_id, data)

    async def _update_product_tx(self, session: AsyncSession, product_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        product = await self.get_by_id(session, Product, product_id)
        if product is None:
            raise NotFoundError(code="PRODUCT_NOT_FOUND", resource="Product")
        await self._ensure_references(session, data)

        if "brand_id" in data and data["brand_id"] != product.brand_id:
            await self._adjust_counts(session, product.brand_id, None, -1)
            await self._adjust_counts(session, data["brand_id"], None, 1)
        if "category_id" in data and data["category_id"] != product.category_id:
            await self._adjust_counts(session, None, product.category_id, -1)
            await self._adjust_counts(session, None, data["category_id"], 1)
        if data.get("status") == "active" and product.published_at is None:
            data["published_at"] = datetime.now(timezone.utc)

        await self.update(session, product, data)
        return await self._get_product_tx(session, Product.id == product_id)

    async def delete_product(self, product_id: int) -> None:
        """删除商品（图片、规格、变体、库存级联删除，已有订单引用时失败）"""
        await self.execute_with_transaction(self._delete_product_tx, product_id)
        logger.info("Product deleted", product_id=product_id)

    async def _delete_product_tx(self, session: AsyncSession, product_id: int) -> None:
        product = await self.get_by_id(session, Product, product_id)
        if product is None:
            raise NotFoundError(code="PRODUCT_NOT_FOUND", resource="Product")
        brand_id, category_id = product.brand_id, product.category_id
        session.expunge(product)

        await self.delete_by_id(session, Product, product_id)
        await self._adjust_counts(session, brand_id, category_id, -1)

    async def _load_product(self, session: AsyncSession, product_id: int) -> Product:
        product = await self.get_by_id(session, Product, product_id)
        if product is None:
            raise NotFoundError(code="PRODUCT_NOT_FOUND", resource="Product")
        return product

    # ========== 图片 ==========

    async def list_images(self, product_id: int) -> List[Dict[str, Any]]:
        return await self.execute_with_session(self._list_children_tx, ProductImage, product_id, ProductImage.position)

    async def _list_children_tx(self, session: AsyncSession, model, product_id: int, order) -> List[Dict[str, Any]]:
        await self._load_product(session, product_id)
        result = await session.execute(select(model).where(model.product_id == product_id).order_by(order, model.id))
        return [item.to_dict() for item in result.scalars()]

    async def add_image(self, product_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        data = self.sanitize_input(data, IMAGE_FIELDS)
        self.validate_required_fields(data, ["url", "alt"])
        return await self.execute_with_transaction(self._add_image_tx, product_id, data)

    async def _add_image_tx(self, session: AsyncSession, product_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        await self._load_product(session, product_id)
        if data.get("is_main"):
            # 每个商品只有一张主图
            await session.execute(
                update(ProductImage).where(ProductImage.product_id == product_id).values(is_main=False)
            )
        if "position" not in data:
            max_position = await session.execute(
                select(func.max(ProductImage.position)).where(ProductImage.product_id == product_id)
            )
            current = max_position.scalar_one_or_none()
            data["position"] = 0 if current is None else current + 1

        image = await self.create(session, ProductImage, {**data, "product_id": product_id})
        await session.refresh(image)
        return image.to_dict()

    async def delete_image(self, product_id: int, image_id: int) -> None:
        await self.execute_with_transaction(self._delete_child_tx, ProductImage, product_id, image_id, "IMAGE_NOT_FOUND")

    async def _delete_child_tx(
        self,
        session: AsyncSession,
        model,
        product_id: int,
        child_id: int,
        not_found_code: str
    ) -> None:
        try:
            result = await session.execute(
                delete(model).where(model.id == child_id, model.product_id == product_id)
            )
        except IntegrityError as e:
            raise translate_integrity_error(e, operation="delete") from e
        if result.rowcount == 0:
            raise NotFoundError(code=not_found_code, resource=model.__name__)

    # ========== 规格参数 ==========

    async def list_specifications(self, product_id: int) -> List[Dict[str, Any]]:
        return await self.execute_with_session(
            self._list_children_tx, ProductSpecification, product_id, ProductSpecification.display_order
        )

    async def add_specification(self, product_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        data = self.sanitize_input(data, SPECIFICATION_FIELDS)
        self.validate_required_fields(data, ["name", "value"])
        return await self.execute_with_transaction(self._add_specification_tx, product_id, data)

    async def _add_specification_tx(
        self,
        session: AsyncSession,
        product_id: int,
        data: Dict[str, Any]
    ) -> Dict[str, Any]:
        await self._load_product(session, product_id)
        specification = await self.create(session, ProductSpecification, {**data, "product_id": product_id})
        await session.refresh(specification)
        return specification.to_dict()

    async def delete_specification(self, product_id: int, specification_id: int) -> None:
        await self.execute_with_transaction(
            self._delete_child_tx, ProductSpecification, product_id, specification_id, "SPECIFICATION_NOT_FOUND"
        )

    # ========== 变体 ==========

    async def list_variants(self, product_id: int) -> List[Dict[str, Any]]:
        return await self.execute_with_session(self._list_variants_tx, product_id)

    async def _list_variants_tx(self, session: AsyncSession, product_id: int) -> List[Dict[str, Any]]:
        await self._load_product(session, product_id)
        result = await session.execute(
            select(ProductVariant)
            .options(selectinload(ProductVariant.inventory))
            .where(ProductVariant.product_id == product_id)
            .order_by(ProductVariant.position, ProductVariant.id)
        )
        variants = []
        for variant in result.scalars():
            item = variant.to_dict()
            item["inventory"] = serialize_inventory(variant.inventory)
            variants.append(item)
        return variants

    def _validate_variant(self, data: Dict[str, Any]) -> Dict[str, Any]:
        data = self.sanitize_input(data, VARIANT_FIELDS)
        if "sku" in data and not is_valid_sku(data["sku"] or ""):
            raise ValidationError(code="INVALID_SKU", detail="Invalid SKU", details={"sku": ["Invalid SKU"]})
        for field_name in ("price", "compare_at_price"):
            if data.get(field_name) is not None:
                data[field_name] = _to_decimal(data[field_name], field_name)
        return data

    async def add_variant(self, product_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        inventory_data = validate_inventory_data(data.get("inventory"))
        data = self._validate_variant(data)
        self.validate_required_fields(data, ["sku", "name", "options"])
        variant = await self.execute_with_transaction(self._add_variant_tx, product_id, data, inventory_data)
        logger.info("Variant created", product_id=product_id, variant_id=variant["id"], sku=variant["sku"])
        return variant

    async def _add_variant_tx(
        self,
        session: AsyncSession,
        product_id: int,
        data: Dict[str, Any],
        inventory_data: Dict[str, Any]
    ) -> Dict[str, Any]:
        product = await self._load_product(session, product_id)
        variant = await self.create(session, ProductVariant, {**data, "product_id": product_id})
        inventory = await self.create(session, VariantInventory, {**inventory_data, "variant_id": variant.id})
        product.has_variants = True
        await session.flush()

        await session.refresh(variant)
        await session.refresh(inventory)
        item = variant.to_dict()
        item["inventory"] = serialize_inventory(inventory)
        return item

    async def update_variant(self, product_id: int, variant_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        data = self._validate_variant(data)
        return await self.execute_with_transaction(self._update_variant_tx, product_id, variant_id, data)

    async def _update_variant_tx(
        self,
        session: AsyncSession,
        product_id: int,
        variant_id: int,
        data: Dict[str, Any]
    ) -> Dict[str, Any]:
        variant = await self.get_by_id(session, ProductVariant, variant_id)
        if variant is None or variant.product_id != product_id:
            raise NotFoundError(code="VARIANT_NOT_FOUND", resource="Variant")
        await self.update(session, variant, data)
        await session.refresh(variant)
        return variant.to_dict()

    async def delete_variant(self, product_id: int, variant_id: int) -> None:
        await self.execute_with_transaction(self._delete_variant_tx, product_id, variant_id)

    async def _delete_variant_tx(self, session: AsyncSession, product_id: int, variant_id: int) -> None:
        await self._delete_child_tx(session, ProductVariant, product_id, variant_id, "VARIANT_NOT_FOUND")
        remaining = await self.exists(session, ProductVariant, product_id=product_id)
        await session.execute(
            update(Product).where(Product.id == product_id).values(has_variants=remaining)
        )


_product_service: Optional[ProductService] = None


def get_product_service() -> ProductService:
    global _product_service
    if _product_service is None:
        _product_service = ProductService()
    return _product_service
