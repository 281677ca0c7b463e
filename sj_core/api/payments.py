"""
支付 API 路由
"""
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field

from sj_core.middleware.auth import AuthContext, get_current_auth, is_staff, require_role
from sj_core.middleware.logging import get_client_ip
from sj_core.services.payment_service import get_payment_service
from .deps import ORDER_STAFF_ROLES, order_scope
from .models import ApiResponse

router = APIRouter(tags=["Payments"])


class CreatePaymentRequest(BaseModel):
    """创建支付流水（金额缺省为订单总额）"""
    provider: Optional[str] = Field(None, description="cod / qicard / zaincash / stripe / paypal")
    payment_method_id: Optional[str] = None
    amount: Optional[Decimal] = Field(None, ge=0)
    fee: Optional[Decimal] = Field(None, ge=0)
    provider_transaction_id: Optional[str] = None
    provider_reference_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class CompletePaymentRequest(BaseModel):
    provider_transaction_id: Optional[str] = None


class FailPaymentRequest(BaseModel):
    error_code: Optional[str] = Field(None, max_length=100)
    error_message: Optional[str] = Field(None, max_length=1000)


class RefundPaymentRequest(BaseModel):
    amount: Optional[Decimal] = Field(None, gt=0, description="缺省为全额退款")
    reason: Optional[str] = Field(None, max_length=1000)


@router.get("/orders/{order_id}/payments", response_model=ApiResponse[list])
async def list_payments(order_id: int, auth: AuthContext = Depends(get_current_auth)):
    return ApiResponse.ok(await get_payment_service().list_payments(order_id, order_scope(auth)))


@router.post("/orders/{order_id}/payments", response_model=ApiResponse[dict], status_code=status.HTTP_201_CREATED)
async def create_payment(
    order_id: int,
    body: CreatePaymentRequest,
    request: Request,
    auth: AuthContext = Depends(get_current_auth)
):
    """为订单发起支付；非货到付款时订单进入 payment_pending"""
    result = await get_payment_service().create_payment(
        order_id,
        body.model_dump(exclude_unset=True),
        user_id=None if is_staff(auth) else auth.user_id,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return ApiResponse.ok(result, message="Payment created")


@router.post("/payments/{payment_id}/complete", response_model=ApiResponse[dict])
async def complete_payment(
    payment_id: int,
    body: Optional[CompletePaymentRequest] = None,
    auth: AuthContext = Depends(require_role(*ORDER_STAFF_ROLES))
):
    result = await get_payment_service().complete_payment(
        payment_id,
        provider_transaction_id=body.provider_transaction_id if body else None,
        changed_by=auth.user_id,
    )
    return ApiResponse.ok(result, message="Payment completed")


@router.post("/payments/{payment_id}/fail", response_model=ApiResponse[dict])
async def fail_payment(
    payment_id: int,
    body: Optional[FailPaymentRequest] = None,
    auth: AuthContext = Depends(require_role(*ORDER_STAFF_ROLES))
):
    body = body or FailPaymentRequest()
    result = await get_payment_service().fail_payment(
        payment_id,
        error_code=body.error_code,
        error_message=body.error_message,
        changed_by=auth.user_id,
    )
    return ApiResponse.ok(result, message="Payment marked as failed")


@router.post("/payments/{payment_id}/refund", response_model=ApiResponse[dict])
async def refund_payment(
    payment_id: int,
    body: Optional[RefundPaymentRequest] = None,
    auth: AuthContext = Depends(require_role(*ORDER_STAFF_ROLES))
):
    """退款；全额退款时订单进入 refunded"""
    body = body or RefundPaymentRequest()
    result = await get_payment_service().refund_payment(
        payment_id,
        amount=body.amount,
        reason=body.reason,
        changed_by=auth.user_id,
    )
    return ApiResponse.ok(result, message="Payment refunded")
