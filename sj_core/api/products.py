"""
商品 API 路由

- 列表与详情公开，非管理角色只能看到 active 商品
- 图片、规格参数、变体作为子资源挂在 /products/{id} 下
"""
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from sj_core.middleware.auth import AuthContext, can_manage_products, get_optional_auth, require_role
from sj_core.services.product_service import PRODUCT_SORTS, get_product_service
from sj_core.utils.errors import SharqException, InternalServerError
from sj_core.utils.logger import get_logger
from .deps import CATALOG_WRITE_ROLES, Pagination, catalog_status_filter, ensure_visible, get_pagination
from .models import ApiResponse, InventoryPayload, PaginatedResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/products", tags=["Products"])


# ========== 请求模型 ==========

class ProductPayload(BaseModel):
    """商品字段（更新时全部可选）"""
    sku: Optional[str] = Field(None, max_length=100)
    name: Optional[str] = Field(None, min_length=1, max_length=500)
    slug: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = None
    short_description: Optional[str] = None
    status: Optional[str] = None
    condition: Optional[str] = None
    brand_id: Optional[int] = None
    category_id: Optional[int] = None
    price: Optional[Decimal] = Field(None, ge=0)
    compare_at_price: Optional[Decimal] = Field(None, ge=0)
    cost: Optional[Decimal] = Field(None, ge=0)
    currency: Optional[str] = None
    taxable: Optional[bool] = None
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    weight: Optional[int] = Field(None, ge=0, description="重量（克）")
    dimensions: Optional[Dict[str, Any]] = None
    featured: Optional[bool] = None
    is_new: Optional[bool] = None
    is_bestseller: Optional[bool] = None
    tags: Optional[str] = None
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None
    seo_keywords: Optional[str] = None
    # 仅创建时使用
    inventory: Optional[InventoryPayload] = None


class ImagePayload(BaseModel):
    url: str
    alt: Optional[str] = None
    position: Optional[int] = Field(None, ge=0)
    is_main: bool = False
    thumbnail: Optional[str] = None
    variants: Optional[Dict[str, str]] = None


class SpecificationPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    value: str
    group: Optional[str] = None
    display_order: Optional[int] = None


class VariantPayload(BaseModel):
    """变体字段（更新时全部可选）"""
    sku: Optional[str] = Field(None, max_length=100)
    name: Optional[str] = Field(None, max_length=255)
    options: Optional[Dict[str, Any]] = None
    price: Optional[Decimal] = Field(None, ge=0)
    compare_at_price: Optional[Decimal] = Field(None, ge=0)
    image: Optional[str] = None
    position: Optional[int] = None
    barcode: Optional[str] = None
    weight: Optional[int] = Field(None, ge=0)
    available: Optional[bool] = None
    inventory: Optional[InventoryPayload] = None


async def _visible_product(product_id: int, auth: Optional[AuthContext]) -> Dict[str, Any]:
    product = await get_product_service().get_product(product_id)
    return ensure_visible(product, auth, "PRODUCT_NOT_FOUND", "Product")


# ========== 商品 ==========

@router.get("", response_model=ApiResponse[PaginatedResponse[dict]])
async def list_products(
    brand_id: Optional[int] = Query(None, alias="brand"),
    category_id: Optional[int] = Query(None, alias="category"),
    status_filter: Optional[str] = Query(None, alias="status"),
    featured: Optional[bool] = None,
    search: Optional[str] = Query(None, max_length=100),
    min_price: Optional[Decimal] = Query(None, ge=0),
    max_price: Optional[Decimal] = Query(None, ge=0),
    sort: str = Query("newest", description=f"排序：{' / '.join(PRODUCT_SORTS)}"),
    pagination: Pagination = Depends(get_pagination),
    auth: Optional[AuthContext] = Depends(get_optional_auth)
):
    """
    商品列表

    - category 包含所有子分类下的商品
    - 价格区间按商品价格过滤
    """
    try:
        result = await get_product_service().list_products(
            brand_id=brand_id,
            category_id=category_id,
            status=catalog_status_filter(status_filter, auth),
            featured=featured,
            search=search,
            min_price=min_price,
            max_price=max_price,
            sort=sort,
            page=pagination.page,
            limit=pagination.limit,
        )
        return ApiResponse.ok(PaginatedResponse.from_page(result))
    except SharqException:
        raise
    except Exception as e:
        logger.error("List products API failed", exc_info=True)
        raise InternalServerError(code="API_ERROR", detail=f"Unexpected error: {str(e)}")


@router.get("/slug/{slug}", response_model=ApiResponse[dict])
async def get_product_by_slug(slug: str, auth: Optional[AuthContext] = Depends(get_optional_auth)):
    service = get_product_service()
    product = ensure_visible(await service.get_product_by_slug(slug), auth, "PRODUCT_NOT_FOUND", "Product")
    if not can_manage_products(auth):
        await service.record_view(product["id"])
    return ApiResponse.ok(product)


@router.get("/{product_id}", response_model=ApiResponse[dict])
async def get_product(product_id: int, auth: Optional[AuthContext] = Depends(get_optional_auth)):
    """商品详情：图片、规格参数、变体及库存"""
    product = await _visible_product(product_id, auth)
    if not can_manage_products(auth):
        await get_product_service().record_view(product_id)
    return ApiResponse.ok(product)


@router.post("", response_model=ApiResponse[dict], status_code=status.HTTP_201_CREATED)
async def create_product(
    body: ProductPayload,
    auth: AuthContext = Depends(require_role(*CATALOG_WRITE_ROLES))
):
    """创建商品，同时创建库存记录"""
    product = await get_product_service().create_product(body.model_dump(exclude_unset=True))
    return ApiResponse.ok(product, message="Product created")


@router.patch("/{product_id}", response_model=ApiResponse[dict])
async def update_product(
    product_id: int,
    body: ProductPayload,
    auth: AuthContext = Depends(require_role(*CATALOG_WRITE_ROLES))
):
    data = body.model_dump(exclude_unset=True)
    # 库存通过 /inventory 接口修改
    data.pop("inventory", None)
    product = await get_product_service().update_product(product_id, data)
    return ApiResponse.ok(product, message="Product updated")


@router.delete("/{product_id}", response_model=ApiResponse[None])
async def delete_product(product_id: int, auth: AuthContext = Depends(require_role(*CATALOG_WRITE_ROLES))):
    await get_product_service().delete_product(product_id)
    return ApiResponse.ok(message="Product deleted")


# ========== 图片 ==========

@router.get("/{product_id}/images", response_model=ApiResponse[list])
async def list_images(product_id: int, auth: Optional[AuthContext] = Depends(get_optional_auth)):
    await _visible_product(product_id, auth)
    return ApiResponse.ok(await get_product_service().list_images(product_id))


@router.post("/{product_id}/images", response_model=ApiResponse[dict], status_code=status.HTTP_201_CREATED)
async def add_image(
    product_id: int,
    body: ImagePayload,
    auth: AuthContext = Depends(require_role(*CATALOG_WRITE_ROLES))
):
    """添加图片；is_main=true 时取消其他主图"""
    image = await get_product_service().add_image(product_id, body.model_dump(exclude_unset=True))
    return ApiResponse.ok(image)


@router.delete("/{product_id}/images/{image_id}", response_model=ApiResponse[None])
async def delete_image(
    product_id: int,
    image_id: int,
    auth: AuthContext = Depends(require_role(*CATALOG_WRITE_ROLES))
):
    await get_product_service().delete_image(product_id, image_id)
    return ApiResponse.ok(message="Image deleted")


# ========== 规格参数 ==========

@router.get("/{product_id}/specifications", response_model=ApiResponse[list])
async def list_specifications(product_id: int, auth: Optional[AuthContext] = Depends(get_optional_auth)):
    await _visible_product(product_id, auth)
    return ApiResponse.ok(await get_product_service().list_specifications(product_id))


@router.post(
    "/{product_id}/specifications",
    response_model=ApiResponse[dict],
    status_code=status.HTTP_201_CREATED
)
async def add_specification(
    product_id: int,
    body: SpecificationPayload,
    auth: AuthContext = Depends(require_role(*CATALOG_WRITE_ROLES))
):
    specification = await get_product_service().add_specification(product_id, body.model_dump(exclude_unset=True))
    return ApiResponse.ok(specification)


@router.delete("/{product_id}/specifications/{specification_id}", response_model=ApiResponse[None])
async def delete_specification(
    product_id: int,
    specification_id: int,
    auth: AuthContext = Depends(require_role(*CATALOG_WRITE_ROLES))
):
    await get_product_service().delete_specification(product_id, specification_id)
    return ApiResponse.ok(message="Specification deleted")


# ========== 变体 ==========

@router.get("/{product_id}/variants", response_model=ApiResponse[list])
async def list_variants(product_id: int, auth: Optional[AuthContext] = Depends(get_optional_auth)):
    await _visible_product(product_id, auth)
    return ApiResponse.ok(await get_product_service().list_variants(product_id))


@router.post("/{product_id}/variants", response_model=ApiResponse[dict], status_code=status.HTTP_201_CREATED)
async def add_variant(
    product_id: int,
    body: VariantPayload,
    auth: AuthContext = Depends(require_role(*CATALOG_WRITE_ROLES))
):
    """添加变体，同时创建变体库存"""
    variant = await get_product_service().add_variant(product_id, body.model_dump(exclude_unset=True))
    return ApiResponse.ok(variant)


@router.patch("/{product_id}/variants/{variant_id}", response_model=ApiResponse[dict])
async def update_variant(
    product_id: int,
    variant_id: int,
    body: VariantPayload,
    auth: AuthContext = Depends(require_role(*CATALOG_WRITE_ROLES))
):
    data = body.model_dump(exclude_unset=True)
    data.pop("inventory", None)
    variant = await get_product_service().update_variant(product_id, variant_id, data)
    return ApiResponse.ok(variant)


@router.delete("/{product_id}/variants/{variant_id}", response_model=ApiResponse[None])
async def delete_variant(
    product_id: int,
    variant_id: int,
    auth: AuthContext = Depends(require_role(*CATALOG_WRITE_ROLES))
):
    await get_product_service().delete_variant(product_id, variant_id)
    return ApiResponse.ok(message="Variant deleted")
