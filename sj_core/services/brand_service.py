"""
品牌服务
"""
from typing import Any, Dict, Optional

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from sj_core.models.catalog import Brand, BRAND_STATUSES
from sj_core.services.base import BaseService, RepositoryMixin, Page
from sj_core.utils.errors import NotFoundError, ValidationError
from sj_core.utils.logger import get_logger
from sj_core.utils.validators import is_valid_slug, slugify

logger = get_logger(__name__)

BRAND_FIELDS = [
    "name", "slug", "description", "logo", "cover_image", "status", "featured", "website_url",
    "country", "founded_year", "display_order", "seo_title", "seo_description", "seo_keywords",
]


def prepare_slug(data: Dict[str, Any], source_field: str = "name") -> None:
    """补全或校验 slug"""
    if not data.get("slug") and data.get(source_field):
        data["slug"] = slugify(data[source_field])
    if "slug" in data and not is_valid_slug(data["slug"]):
        raise ValidationError(
            code="INVALID_SLUG",
            detail="Slug may only contain lowercase letters, numbers and hyphens",
            details={"slug": ["Invalid slug"]}
        )


class BrandService(BaseService, RepositoryMixin):
    """品牌服务"""

    async def list_brands(
        self,
        status: Optional[str] = None,
        featured: Optional[bool] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20
    ) -> Page:
        return await self.execute_with_session(self._list_brands_tx, status, featured, search, page, limit)

    async def _list_brands_tx(
        self,
        session: AsyncSession,
        status: Optional[str],
        featured: Optional[bool],
        search: Optional[str],
        page: int,
        limit: int
    ) -> Page:
        stmt = select(Brand)
        if status:
            stmt = stmt.where(Brand.status == status)
        if featured is not None:
            stmt = stmt.where(Brand.featured.is_(featured))
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(Brand.name.ilike(pattern), Brand.slug.ilike(pattern)))
        stmt = stmt.order_by(Brand.display_order, Brand.name)

        result = await self.paginate(session, stmt, page, limit)
        result.items = [brand.to_dict() for brand in result.items]
        return result

    async def get_brand(self, brand_id: int) -> Dict[str, Any]:
        return await self.execute_with_session(self._get_brand_tx, "id", brand_id)

    async def get_brand_by_slug(self, slug: str) -> Dict[str, Any]:
        return await self.execute_with_session(self._get_brand_tx, "slug", slug)

    async def _get_brand_tx(self, session: AsyncSession, field_name: str, value: Any) -> Dict[str, Any]:
        brand = await self.get_by_field(session, Brand, field_name, value)
        if brand is None:
            raise NotFoundError(code="BRAND_NOT_FOUND", resource="Brand")
        return brand.to_dict()

    def _validate(self, data: Dict[str, Any]) -> Dict[str, Any]:
        data = self.sanitize_input(data, BRAND_FIELDS)
        prepare_slug(data)
        if "status" in data and data["status"] not in BRAND_STATUSES:
            raise ValidationError(detail="Invalid brand status", details={"status": ["Invalid status"]})
        return data

    async def create_brand(self, data: Dict[str, Any]) -> Dict[str, Any]:
        data = self._validate(data)
        self.validate_required_fields(data, ["name", "slug"])
        brand = await self.execute_with_transaction(self._create_brand_tx, data)
        logger.info("Brand created", brand_id=brand["id"], slug=brand["slug"])
        return brand

    async def _create_brand_tx(self, session: AsyncSession, data: Dict[str, Any]) -> Dict[str, Any]:
        brand = await self.create(session, Brand, data)
        await session.refresh(brand)
        return brand.to_dict()

    async def update_brand(self, brand_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        data = self._validate(data)
        return await self.execute_with_transaction(self._update_brand_tx, brand_id, data)

    async def _update_brand_tx(self, session: AsyncSession, brand_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        brand = await self.get_by_id(session, Brand, brand_id)
        if brand is None:
            raise NotFoundError(code="BRAND_NOT_FOUND", resource="Brand")
        await self.update(session, brand, data)
        await session.refresh(brand)
        return brand.to_dict()

    async def delete_brand(self, brand_id: int) -> None:
        """删除品牌（仍有商品引用时失败）"""
        deleted = await self.execute_with_transaction(self.delete_by_id, Brand, brand_id)
        if not deleted:
            raise NotFoundError(code="BRAND_NOT_FOUND", resource="Brand")
        logger.info("Brand deleted", brand_id=brand_id)


_brand_service: Optional[BrandService] = None


def get_brand_service() -> BrandService:
    global _brand_service
    if _brand_service is None:
        _brand_service = BrandService()
    return _brand_service
