"""
订单 API 路由
"""
from dataclasses import asdict
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from sj_core.middleware.auth import AuthContext, get_current_auth, is_staff, require_role
from sj_core.services.order_service import PAYMENT_METHODS, SHIPPING_METHODS, get_order_service
from sj_core.utils.errors import SharqException, InternalServerError
from sj_core.utils.logger import get_logger
from .deps import ORDER_STAFF_ROLES, Pagination, get_pagination, order_scope
from .models import ApiResponse, PaginatedResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["Orders"])


class CheckoutRequest(BaseModel):
    """结账请求（商品取自当前购物车）"""
    shipping_address_id: int
    billing_address_id: Optional[int] = None
    shipping_method_id: str = Field(..., description=f"{' / '.join(SHIPPING_METHODS)}")
    payment_method_id: str = Field(..., description=f"{' / '.join(PAYMENT_METHODS)}")
    customer_notes: Optional[str] = Field(None, max_length=2000)
    metadata: Optional[Dict[str, Any]] = None


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class UpdateStatusRequest(BaseModel):
    """员工修改订单状态"""
    status: str
    reason: Optional[str] = Field(None, max_length=1000)
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    admin_notes: Optional[str] = None


@router.get("/checkout-options", response_model=ApiResponse[dict])
async def get_checkout_options():
    """可选的配送方式与支付方式"""
    shipping_methods = [
        {
            "id": method.id,
            "name": method.name,
            "cost": str(method.cost),
            "estimated_days": method.estimated_days,
            "free_shipping_threshold": (
                str(method.free_shipping_threshold) if method.free_shipping_threshold is not None else None
            ),
        }
        for method in SHIPPING_METHODS.values()
    ]
    return ApiResponse.ok({
        "shipping_methods": shipping_methods,
        "payment_methods": [asdict(method) for method in PAYMENT_METHODS.values()],
    })


@router.post("", response_model=ApiResponse[dict], status_code=status.HTTP_201_CREATED)
async def checkout(body: CheckoutRequest, auth: AuthContext = Depends(get_current_auth)):
    """
    由购物车下单

    - 商品价格快照到订单明细
    - 原子占用库存，库存不足返回 409 INSUFFICIENT_STOCK
    - 成功后清空购物车
    """
    try:
        order = await get_order_service().checkout(auth.user_id, body.model_dump(exclude_unset=True))
        return ApiResponse.ok(order, message="Order placed")
    except SharqException:
        raise
    except Exception as e:
        logger.error("Checkout API failed", exc_info=True)
        raise InternalServerError(code="API_ERROR", detail=f"Unexpected error: {str(e)}")


@router.get("", response_model=ApiResponse[PaginatedResponse[dict]])
async def list_orders(
    status_filter: Optional[str] = Query(None, alias="status"),
    payment_status: Optional[str] = None,
    pagination: Pagination = Depends(get_pagination),
    auth: AuthContext = Depends(get_current_auth)
):
    """订单列表；管理员与客服可见全部订单"""
    result = await get_order_service().list_orders(
        user_id=order_scope(auth),
        status=status_filter,
        payment_status=payment_status,
        page=pagination.page,
        limit=pagination.limit,
    )
    return ApiResponse.ok(PaginatedResponse.from_page(result))


@router.get("/{order_id}", response_model=ApiResponse[dict])
async def get_order(order_id: int, auth: AuthContext = Depends(get_current_auth)):
    """订单详情：明细（商品、品牌、分类）、支付、发运、状态历史"""
    return ApiResponse.ok(await get_order_service().get_order(order_id, order_scope(auth)))


@router.get("/{order_id}/history", response_model=ApiResponse[list])
async def get_order_history(order_id: int, auth: AuthContext = Depends(get_current_auth)):
    return ApiResponse.ok(await get_order_service().get_history(order_id, order_scope(auth)))


@router.post("/{order_id}/cancel", response_model=ApiResponse[dict])
async def cancel_order(
    order_id: int,
    body: Optional[CancelOrderRequest] = None,
    auth: AuthContext = Depends(get_current_auth)
):
    """取消订单并释放库存；顾客只能取消自己的订单"""
    order = await get_order_service().cancel_order(
        order_id,
        reason=body.reason if body else None,
        user_id=None if is_staff(auth) else auth.user_id,
        changed_by=auth.user_id,
    )
    return ApiResponse.ok(order, message="Order cancelled")


@router.post("/{order_id}/status", response_model=ApiResponse[dict])
async def update_order_status(
    order_id: int,
    body: UpdateStatusRequest,
    auth: AuthContext = Depends(require_role(*ORDER_STAFF_ROLES))
):
    """修改订单状态（状态机校验，非法流转返回 409）"""
    order = await get_order_service().update_status(
        order_id,
        body.status,
        reason=body.reason,
        changed_by=auth.user_id,
        tracking_number=body.tracking_number,
        tracking_url=body.tracking_url,
        admin_notes=body.admin_notes,
    )
    return ApiResponse.ok(order)
