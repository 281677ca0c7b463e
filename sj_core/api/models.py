"""
API 响应模型
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Generic, TypeVar

from pydantic import BaseModel, Field

from sj_core.services.base import Page

T = TypeVar('T')


class ApiResponse(BaseModel, Generic[T]):
    """统一 API 响应格式"""
    success: bool = Field(description="操作是否成功")
    data: Optional[T] = Field(default=None, description="响应数据")
    message: Optional[str] = Field(default=None, description="提示信息")
    metadata: Optional[Dict[str, Any]] = Field(default=None, description="元数据")

    @classmethod
    def ok(
        cls,
        data: Optional[T] = None,
        message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> "ApiResponse[T]":
        """创建成功响应"""
        return cls(success=True, data=data, message=message, metadata=metadata)


class PaginatedResponse(BaseModel, Generic[T]):
    """分页响应"""
    items: List[T] = Field(description="数据列表")
    total: int = Field(description="总数量")
    page: int = Field(description="当前页（从 1 开始）")
    limit: int = Field(description="每页大小")
    has_more: bool = Field(description="是否有更多数据")

    @classmethod
    def from_page(cls, page: Page) -> "PaginatedResponse[T]":
        return cls(
            items=page.items,
            total=page.total,
            page=page.page,
            limit=page.limit,
            has_more=page.has_more,
        )


class MessageResponse(BaseModel):
    """只含提示信息的响应（认证流程）"""
    success: bool = True
    message: str


class InventoryPayload(BaseModel):
    """库存字段（商品、变体共用）"""
    quantity: Optional[int] = Field(default=None, ge=0)
    policy: Optional[str] = Field(default=None, description="track / no_track")
    low_stock_threshold: Optional[int] = Field(default=None, ge=0)
    allow_backorder: Optional[bool] = None
    restock_date: Optional[datetime] = None
