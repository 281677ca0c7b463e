"""
路由共用的依赖与辅助函数
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import Query

from sj_core.middleware.auth import AuthContext, can_manage_products, is_staff
from sj_core.services.base import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from sj_core.utils.errors import NotFoundError

# 目录写操作、后台库存管理
CATALOG_WRITE_ROLES = ("admin", "vendor")
# 订单状态、支付、发运管理
ORDER_STAFF_ROLES = ("admin", "support")


@dataclass
class Pagination:
    page: int
    limit: int


def get_pagination(
    page: int = Query(1, ge=1, description="页码（从 1 开始）"),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE, description="每页数量")
) -> Pagination:
    return Pagination(page=page, limit=limit)


def catalog_status_filter(requested: Optional[str], auth: Optional[AuthContext]) -> Optional[str]:
    """非管理角色只能看到 active 的目录数据"""
    if can_manage_products(auth):
        return requested
    return "active"


def ensure_visible(item: Dict[str, Any], auth: Optional[AuthContext], code: str, resource: str) -> Dict[str, Any]:
    """非 active 的目录数据对公众按不存在处理"""
    if item.get("status") != "active" and not can_manage_products(auth):
        raise NotFoundError(code=code, resource=resource)
    return item


def order_scope(auth: AuthContext) -> Optional[int]:
    """订单查询范围：员工不限，顾客只看自己"""
    return None if is_staff(auth) else auth.user_id
