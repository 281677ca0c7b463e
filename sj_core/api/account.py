"""
账户 API 路由：个人资料、收货地址、偏好设置、活动记录、省份
"""
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from sj_core.middleware.auth import AuthContext, get_current_auth
from sj_core.services.account_service import get_account_service
from sj_core.utils.governorates import GOVERNORATES, get_all_regions, get_governorate_options
from .deps import Pagination, get_pagination
from .models import ApiResponse, PaginatedResponse

router = APIRouter(prefix="/account", tags=["Account"])


class ProfilePayload(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    avatar: Optional[str] = None
    date_of_birth: Optional[datetime] = None
    gender: Optional[str] = None


class AddressPayload(BaseModel):
    """收货地址（更新时全部可选）"""
    type: Optional[str] = Field(None, description="home / work / other")
    is_default: Optional[bool] = None
    recipient_name: Optional[str] = Field(None, max_length=255)
    recipient_phone: Optional[str] = Field(None, max_length=20)
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = Field(None, max_length=100)
    governorate: Optional[str] = Field(None, description="省份代码或英文名")
    district: Optional[str] = None
    nearest_landmark: Optional[str] = None
    postal_code: Optional[str] = Field(None, max_length=20)
    country: Optional[str] = None
    latitude: Optional[str] = None
    longitude: Optional[str] = None
    delivery_notes: Optional[str] = None


class PreferencesPayload(BaseModel):
    language: Optional[str] = Field(None, description="en / ar")
    currency: Optional[str] = Field(None, description="IQD / USD")
    theme: Optional[str] = None
    # {channel: {event: bool}}，按渠道合并
    notifications: Optional[Dict[str, Dict[str, Any]]] = None


# ========== 个人资料 ==========

@router.get("/profile", response_model=ApiResponse[dict])
async def get_profile(auth: AuthContext = Depends(get_current_auth)):
    return ApiResponse.ok(await get_account_service().get_profile(auth.user_id))


@router.patch("/profile", response_model=ApiResponse[dict])
async def update_profile(body: ProfilePayload, auth: AuthContext = Depends(get_current_auth)):
    profile = await get_account_service().update_profile(auth.user_id, body.model_dump(exclude_unset=True))
    return ApiResponse.ok(profile, message="Profile updated")


# ========== 收货地址 ==========

@router.get("/addresses", response_model=ApiResponse[list])
async def list_addresses(auth: AuthContext = Depends(get_current_auth)):
    """地址列表（默认地址在前）"""
    return ApiResponse.ok(await get_account_service().list_addresses(auth.user_id))


@router.post("/addresses", response_model=ApiResponse[dict], status_code=status.HTTP_201_CREATED)
async def create_address(body: AddressPayload, auth: AuthContext = Depends(get_current_auth)):
    """新增地址；第一个地址自动设为默认"""
    address = await get_account_service().create_address(auth.user_id, body.model_dump(exclude_unset=True))
    return ApiResponse.ok(address, message="Address added")


@router.get("/addresses/{address_id}", response_model=ApiResponse[dict])
async def get_address(address_id: int, auth: AuthContext = Depends(get_current_auth)):
    return ApiResponse.ok(await get_account_service().get_address(auth.user_id, address_id))


@router.patch("/addresses/{address_id}", response_model=ApiResponse[dict])
async def update_address(address_id: int, body: AddressPayload, auth: AuthContext = Depends(get_current_auth)):
    address = await get_account_service().update_address(
        auth.user_id, address_id, body.model_dump(exclude_unset=True)
    )
    return ApiResponse.ok(address, message="Address updated")


@router.post("/addresses/{address_id}/default", response_model=ApiResponse[dict])
async def set_default_address(address_id: int, auth: AuthContext = Depends(get_current_auth)):
    """设为默认地址，其他地址取消默认"""
    address = await get_account_service().set_default_address(auth.user_id, address_id)
    return ApiResponse.ok(address)


@router.delete("/addresses/{address_id}", response_model=ApiResponse[None])
async def delete_address(address_id: int, auth: AuthContext = Depends(get_current_auth)):
    await get_account_service().delete_address(auth.user_id, address_id)
    return ApiResponse.ok(message="Address deleted")


# ========== 偏好设置与活动 ==========

@router.get("/preferences", response_model=ApiResponse[dict])
async def get_preferences(auth: AuthContext = Depends(get_current_auth)):
    return ApiResponse.ok(await get_account_service().get_preferences(auth.user_id))


@router.put("/preferences", response_model=ApiResponse[dict])
async def update_preferences(body: PreferencesPayload, auth: AuthContext = Depends(get_current_auth)):
    preferences = await get_account_service().update_preferences(
        auth.user_id, body.model_dump(exclude_unset=True)
    )
    return ApiResponse.ok(preferences, message="Preferences updated")


@router.get("/activity", response_model=ApiResponse[PaginatedResponse[dict]])
async def list_activity(
    pagination: Pagination = Depends(get_pagination),
    auth: AuthContext = Depends(get_current_auth)
):
    result = await get_account_service().list_activity(auth.user_id, pagination.page, pagination.limit)
    return ApiResponse.ok(PaginatedResponse.from_page(result))


@router.get("/governorates", response_model=ApiResponse[dict])
async def list_governorates(locale: str = Query("en", pattern="^(en|ar)$")):
    """伊拉克省份（地址表单下拉选项）"""
    return ApiResponse.ok({
        "governorates": [gov.to_dict() for gov in GOVERNORATES],
        "options": get_governorate_options(locale),
        "regions": get_all_regions(),
    })
