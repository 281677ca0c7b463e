"""
购物车 API 路由

已登录按用户归属；未登录按 X-Cart-Session 头归属游客购物车
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, Field

from sj_core.middleware.auth import AuthContext, get_current_auth, get_optional_auth
from sj_core.models.carts import CART_ITEM_MAX_QUANTITY
from sj_core.services.cart_service import CartOwner, get_cart_service
from sj_core.utils.errors import ValidationError
from .models import ApiResponse

router = APIRouter(prefix="/cart", tags=["Cart"])


class AddItemRequest(BaseModel):
    product_id: int
    variant_id: Optional[int] = None
    quantity: int = Field(1, ge=1, le=CART_ITEM_MAX_QUANTITY)


class UpdateItemRequest(BaseModel):
    quantity: int = Field(..., ge=0, le=CART_ITEM_MAX_QUANTITY, description="0 表示移除")


class MergeCartRequest(BaseModel):
    session_id: Optional[str] = Field(None, description="缺省时读取 X-Cart-Session 头")


def get_cart_owner(
    auth: Optional[AuthContext] = Depends(get_optional_auth),
    cart_session: Optional[str] = Header(None, alias="X-Cart-Session")
) -> CartOwner:
    """依赖注入：当前购物车归属"""
    if auth is not None:
        return CartOwner(user_id=auth.user_id)
    return CartOwner(session_id=cart_session)


@router.get("", response_model=ApiResponse[dict])
async def get_cart(owner: CartOwner = Depends(get_cart_owner)):
    """购物车、明细与合计"""
    return ApiResponse.ok(await get_cart_service().get_cart(owner))


@router.post("/items", response_model=ApiResponse[dict])
async def add_item(body: AddItemRequest, owner: CartOwner = Depends(get_cart_owner)):
    """加入购物车，同一商品/变体合并数量"""
    cart = await get_cart_service().add_item(owner, body.product_id, body.quantity, body.variant_id)
    return ApiResponse.ok(cart, message="Item added to cart")


@router.patch("/items/{item_id}", response_model=ApiResponse[dict])
async def update_item(item_id: int, body: UpdateItemRequest, owner: CartOwner = Depends(get_cart_owner)):
    cart = await get_cart_service().update_item(owner, item_id, body.quantity)
    return ApiResponse.ok(cart)


@router.delete("/items/{item_id}", response_model=ApiResponse[dict])
async def remove_item(item_id: int, owner: CartOwner = Depends(get_cart_owner)):
    cart = await get_cart_service().remove_item(owner, item_id)
    return ApiResponse.ok(cart, message="Item removed from cart")


@router.delete("", response_model=ApiResponse[dict])
async def clear_cart(owner: CartOwner = Depends(get_cart_owner)):
    cart = await get_cart_service().clear_cart(owner)
    return ApiResponse.ok(cart, message="Cart cleared")


@router.post("/merge", response_model=ApiResponse[dict])
async def merge_cart(
    body: Optional[MergeCartRequest] = None,
    auth: AuthContext = Depends(get_current_auth),
    cart_session: Optional[str] = Header(None, alias="X-Cart-Session")
):
    """登录后合并游客购物车"""
    session_id = (body.session_id if body else None) or cart_session
    if not session_id:
        raise ValidationError(
            code="CART_SESSION_REQUIRED",
            detail="X-Cart-Session header or session_id is required",
            details={"session_id": ["Required"]}
        )
    cart = await get_cart_service().merge_guest_cart(auth.user_id, session_id)
    return ApiResponse.ok(cart, message="Cart merged")
