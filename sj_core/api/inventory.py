"""
库存 API 路由（后台）
"""
from fastapi import APIRouter, Depends

from sj_core.middleware.auth import AuthContext, require_role
from sj_core.services.inventory_service import get_inventory_service
from .deps import CATALOG_WRITE_ROLES, Pagination, get_pagination
from .models import ApiResponse, InventoryPayload, PaginatedResponse

router = APIRouter(prefix="/inventory", tags=["Inventory"])


@router.get("/low-stock", response_model=ApiResponse[PaginatedResponse[dict]])
async def list_low_stock(
    pagination: Pagination = Depends(get_pagination),
    auth: AuthContext = Depends(require_role(*CATALOG_WRITE_ROLES))
):
    """可售数量不高于预警阈值的商品"""
    result = await get_inventory_service().list_low_stock(page=pagination.page, limit=pagination.limit)
    return ApiResponse.ok(PaginatedResponse.from_page(result))


@router.put("/variants/{variant_id}", response_model=ApiResponse[dict])
async def set_variant_inventory(
    variant_id: int,
    body: InventoryPayload,
    auth: AuthContext = Depends(require_role(*CATALOG_WRITE_ROLES))
):
    inventory = await get_inventory_service().set_variant_inventory(variant_id, body.model_dump(exclude_unset=True))
    return ApiResponse.ok(inventory, message="Inventory updated")


@router.get("/{product_id}", response_model=ApiResponse[dict])
async def get_inventory(product_id: int, auth: AuthContext = Depends(require_role(*CATALOG_WRITE_ROLES))):
    """商品库存及各变体库存（含占用与可售数量）"""
    return ApiResponse.ok(await get_inventory_service().get_inventory(product_id))


@router.put("/{product_id}", response_model=ApiResponse[dict])
async def set_inventory(
    product_id: int,
    body: InventoryPayload,
    auth: AuthContext = Depends(require_role(*CATALOG_WRITE_ROLES))
):
    """设置商品库存；占用数量只由订单流程维护"""
    inventory = await get_inventory_service().set_inventory(product_id, body.model_dump(exclude_unset=True))
    return ApiResponse.ok(inventory, message="Inventory updated")
