"""
发运 API 路由
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from sj_core.middleware.auth import AuthContext, get_current_auth, require_role
from sj_core.services.shipment_service import get_shipment_service
from .deps import ORDER_STAFF_ROLES, order_scope
from .models import ApiResponse

router = APIRouter(tags=["Shipments"])


class CreateShipmentRequest(BaseModel):
    """创建发运（运单号缺省时自动生成）"""
    carrier: Optional[str] = Field(None, max_length=100)
    tracking_number: Optional[str] = Field(None, max_length=100)
    shipping_method_id: Optional[str] = None
    weight: Optional[int] = Field(None, ge=0, description="重量（克）")
    dimensions: Optional[Dict[str, Any]] = None
    package_count: Optional[int] = Field(None, ge=1)
    estimated_delivery_date: Optional[datetime] = None
    cost: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = None
    tracking_url: Optional[str] = None


class TrackingEventRequest(BaseModel):
    status: str
    description: str = Field(..., min_length=1, max_length=1000)
    location: Optional[str] = Field(None, max_length=255)
    timestamp: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None


@router.post("/orders/{order_id}/shipments", response_model=ApiResponse[dict], status_code=status.HTTP_201_CREATED)
async def create_shipment(
    order_id: int,
    body: CreateShipmentRequest,
    auth: AuthContext = Depends(require_role(*ORDER_STAFF_ROLES))
):
    shipment = await get_shipment_service().create_shipment(
        order_id, body.model_dump(exclude_unset=True), changed_by=auth.user_id
    )
    return ApiResponse.ok(shipment, message="Shipment created")


@router.get("/shipments/track/{tracking_number}", response_model=ApiResponse[dict])
async def track_shipment(tracking_number: str):
    """按运单号公开查询物流轨迹"""
    return ApiResponse.ok(await get_shipment_service().track(tracking_number))


@router.get("/shipments/{shipment_id}", response_model=ApiResponse[dict])
async def get_shipment(shipment_id: int, auth: AuthContext = Depends(get_current_auth)):
    return ApiResponse.ok(await get_shipment_service().get_shipment(shipment_id, order_scope(auth)))


@router.post("/shipments/{shipment_id}/events", response_model=ApiResponse[dict])
async def add_tracking_event(
    shipment_id: int,
    body: TrackingEventRequest,
    auth: AuthContext = Depends(require_role(*ORDER_STAFF_ROLES))
):
    """
    追加物流轨迹

    - 发运状态按流转表推进，非法流转返回 409
    - 揽收、派送、签收同步推进订单状态
    """
    shipment = await get_shipment_service().add_event(
        shipment_id,
        body.status,
        body.description,
        location=body.location,
        timestamp=body.timestamp,
        changed_by=auth.user_id,
        metadata=body.metadata,
    )
    return ApiResponse.ok(shipment)
