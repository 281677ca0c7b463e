"""
品牌 API 路由
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from sj_core.middleware.auth import AuthContext, get_optional_auth, require_role
from sj_core.services.brand_service import get_brand_service
from sj_core.utils.errors import SharqException, InternalServerError
from sj_core.utils.logger import get_logger
from .deps import CATALOG_WRITE_ROLES, Pagination, catalog_status_filter, ensure_visible, get_pagination
from .models import ApiResponse, PaginatedResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/brands", tags=["Brands"])


class BrandPayload(BaseModel):
    """品牌字段（更新时全部可选）"""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    slug: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    logo: Optional[str] = None
    cover_image: Optional[str] = None
    status: Optional[str] = None
    featured: Optional[bool] = None
    website_url: Optional[str] = None
    country: Optional[str] = None
    founded_year: Optional[int] = None
    display_order: Optional[int] = None
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None
    seo_keywords: Optional[str] = None


@router.get("", response_model=ApiResponse[PaginatedResponse[dict]])
async def list_brands(
    status_filter: Optional[str] = Query(None, alias="status"),
    featured: Optional[bool] = None,
    search: Optional[str] = Query(None, max_length=100),
    pagination: Pagination = Depends(get_pagination),
    auth: Optional[AuthContext] = Depends(get_optional_auth)
):
    """品牌列表"""
    result = await get_brand_service().list_brands(
        status=catalog_status_filter(status_filter, auth),
        featured=featured,
        search=search,
        page=pagination.page,
        limit=pagination.limit,
    )
    return ApiResponse.ok(PaginatedResponse.from_page(result))


@router.get("/slug/{slug}", response_model=ApiResponse[dict])
async def get_brand_by_slug(slug: str, auth: Optional[AuthContext] = Depends(get_optional_auth)):
    brand = await get_brand_service().get_brand_by_slug(slug)
    return ApiResponse.ok(ensure_visible(brand, auth, "BRAND_NOT_FOUND", "Brand"))


@router.get("/{brand_id}", response_model=ApiResponse[dict])
async def get_brand(brand_id: int, auth: Optional[AuthContext] = Depends(get_optional_auth)):
    brand = await get_brand_service().get_brand(brand_id)
    return ApiResponse.ok(ensure_visible(brand, auth, "BRAND_NOT_FOUND", "Brand"))


@router.post("", response_model=ApiResponse[dict], status_code=status.HTTP_201_CREATED)
async def create_brand(
    body: BrandPayload,
    auth: AuthContext = Depends(require_role(*CATALOG_WRITE_ROLES))
):
    """创建品牌（slug 缺省时由名称生成）"""
    try:
        brand = await get_brand_service().create_brand(body.model_dump(exclude_unset=True))
        return ApiResponse.ok(brand, message="Brand created")
    except SharqException:
        raise
    except Exception as e:
        logger.error("Create brand API failed", exc_info=True)
        raise InternalServerError(code="API_ERROR", detail=f"Unexpected error: {str(e)}")


@router.patch("/{brand_id}", response_model=ApiResponse[dict])
async def update_brand(
    brand_id: int,
    body: BrandPayload,
    auth: AuthContext = Depends(require_role(*CATALOG_WRITE_ROLES))
):
    brand = await get_brand_service().update_brand(brand_id, body.model_dump(exclude_unset=True))
    return ApiResponse.ok(brand, message="Brand updated")


@router.delete("/{brand_id}", response_model=ApiResponse[None])
async def delete_brand(brand_id: int, auth: AuthContext = Depends(require_role(*CATALOG_WRITE_ROLES))):
    """删除品牌（仍有商品引用时返回 409）"""
    await get_brand_service().delete_brand(brand_id)
    return ApiResponse.ok(message="Brand deleted")
