"""
收藏 API 路由
"""
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from sj_core.middleware.auth import AuthContext, get_current_auth
from sj_core.services.favorite_service import get_favorite_service
from .deps import Pagination, get_pagination
from .models import ApiResponse, PaginatedResponse

router = APIRouter(prefix="/favorites", tags=["Favorites"])


class AddFavoriteRequest(BaseModel):
    product_id: int
    variant_id: Optional[int] = None
    notes: Optional[str] = Field(None, max_length=1000)


@router.get("", response_model=ApiResponse[PaginatedResponse[dict]])
async def list_favorites(
    pagination: Pagination = Depends(get_pagination),
    auth: AuthContext = Depends(get_current_auth)
):
    result = await get_favorite_service().list_favorites(auth.user_id, pagination.page, pagination.limit)
    return ApiResponse.ok(PaginatedResponse.from_page(result))


@router.post("", response_model=ApiResponse[dict], status_code=status.HTTP_201_CREATED)
async def add_favorite(body: AddFavoriteRequest, auth: AuthContext = Depends(get_current_auth)):
    """收藏商品（重复收藏返回 409）"""
    favorite = await get_favorite_service().add_favorite(
        auth.user_id, body.product_id, body.variant_id, body.notes
    )
    return ApiResponse.ok(favorite, message="Added to favorites")


@router.delete("/{favorite_id}", response_model=ApiResponse[None])
async def remove_favorite(favorite_id: int, auth: AuthContext = Depends(get_current_auth)):
    await get_favorite_service().remove_favorite(auth.user_id, favorite_id)
    return ApiResponse.ok(message="Removed from favorites")
