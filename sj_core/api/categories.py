"""
分类 API 路由
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from sj_core.middleware.auth import AuthContext, get_optional_auth, require_role
from sj_core.services.category_service import get_category_service
from .deps import CATALOG_WRITE_ROLES, Pagination, catalog_status_filter, ensure_visible, get_pagination
from .models import ApiResponse, PaginatedResponse

router = APIRouter(prefix="/categories", tags=["Categories"])


class CategoryPayload(BaseModel):
    """分类字段（更新时全部可选）"""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    slug: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    parent_id: Optional[int] = None
    icon: Optional[str] = None
    image: Optional[str] = None
    cover_image: Optional[str] = None
    status: Optional[str] = None
    featured: Optional[bool] = None
    display_order: Optional[int] = None
    show_in_menu: Optional[bool] = None
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None
    seo_keywords: Optional[str] = None


@router.get("", response_model=ApiResponse)
async def list_categories(
    tree: bool = Query(False, description="返回完整分类树"),
    parent_id: Optional[int] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = Query(None, max_length=100),
    pagination: Pagination = Depends(get_pagination),
    auth: Optional[AuthContext] = Depends(get_optional_auth)
):
    """分类列表；tree=true 时返回嵌套树（不分页）"""
    service = get_category_service()
    category_status = catalog_status_filter(status_filter, auth)
    if tree:
        return ApiResponse.ok(await service.get_category_tree(status=category_status))

    result = await service.list_categories(
        parent_id=parent_id,
        status=category_status,
        search=search,
        page=pagination.page,
        limit=pagination.limit,
    )
    return ApiResponse.ok(PaginatedResponse.from_page(result))


@router.get("/slug/{slug}", response_model=ApiResponse[dict])
async def get_category_by_slug(slug: str, auth: Optional[AuthContext] = Depends(get_optional_auth)):
    category = await get_category_service().get_category_by_slug(slug)
    return ApiResponse.ok(ensure_visible(category, auth, "CATEGORY_NOT_FOUND", "Category"))


@router.get("/{category_id}", response_model=ApiResponse[dict])
async def get_category(category_id: int, auth: Optional[AuthContext] = Depends(get_optional_auth)):
    category = await get_category_service().get_category(category_id)
    return ApiResponse.ok(ensure_visible(category, auth, "CATEGORY_NOT_FOUND", "Category"))


@router.post("", response_model=ApiResponse[dict], status_code=status.HTTP_201_CREATED)
async def create_category(
    body: CategoryPayload,
    auth: AuthContext = Depends(require_role(*CATALOG_WRITE_ROLES))
):
    """创建分类，层级与路径由父分类推导"""
    category = await get_category_service().create_category(body.model_dump(exclude_unset=True))
    return ApiResponse.ok(category, message="Category created")


@router.patch("/{category_id}", response_model=ApiResponse[dict])
async def update_category(
    category_id: int,
    body: CategoryPayload,
    auth: AuthContext = Depends(require_role(*CATALOG_WRITE_ROLES))
):
    """更新分类；修改 parent_id 会重算整棵子树的路径"""
    category = await get_category_service().update_category(category_id, body.model_dump(exclude_unset=True))
    return ApiResponse.ok(category, message="Category updated")


@router.delete("/{category_id}", response_model=ApiResponse[None])
async def delete_category(category_id: int, auth: AuthContext = Depends(require_role(*CATALOG_WRITE_ROLES))):
    await get_category_service().delete_category(category_id)
    return ApiResponse.ok(message="Category deleted")
