"""
认证中间件与角色判断
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional, Union

from fastapi import Depends, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from sj_core.utils.logger import get_logger, user_id_var
from sj_core.utils.errors import AuthenticationError, AuthorizationError

SESSION_COOKIE_NAME = "auth.session-token"

STAFF_ROLES = ("admin", "support")
PRODUCT_MANAGER_ROLES = ("admin", "vendor")
ADMIN_PANEL_ROLES = ("admin", "support", "vendor")


@dataclass(frozen=True)
class AuthContext:
    """当前请求的认证信息"""
    user_id: int
    email: str
    role: str
    status: str
    first_name: str
    last_name: str
    email_verified: bool
    session_id: int
    session_token: str
    expires_at: datetime
    # 本次请求延长了会话有效期
    refreshed: bool = False

    def to_dict(self) -> dict:
        return {
            "user": {
                "id": self.user_id,
                "email": self.email,
                "role": self.role,
                "status": self.status,
                "first_name": self.first_name,
                "last_name": self.last_name,
                "email_verified": self.email_verified,
            },
            "session": {
                "id": self.session_id,
                "expires_at": self.expires_at.isoformat(),
            },
        }


def create_auth_context(user, session, refreshed: bool = False) -> AuthContext:
    """由用户和会话记录构建认证上下文"""
    return AuthContext(
        user_id=user.id,
        email=user.email,
        role=user.role,
        status=user.status,
        first_name=user.first_name,
        last_name=user.last_name,
        email_verified=user.email_verified,
        session_id=session.id,
        session_token=session.session_token,
        expires_at=session.expires_at,
        refreshed=refreshed,
    )


# ========== 角色判断 ==========

def has_role(user, roles: Union[str, Iterable[str]]) -> bool:
    """user 可以是 User 或 AuthContext"""
    if user is None:
        return False
    if isinstance(roles, str):
        roles = (roles,)
    return user.role in roles


def is_admin(user) -> bool:
    return has_role(user, "admin")


def is_vendor(user) -> bool:
    return has_role(user, "vendor")


def is_support(user) -> bool:
    return has_role(user, "support")


def is_customer(user) -> bool:
    return has_role(user, "customer")


def is_staff(user) -> bool:
    return has_role(user, STAFF_ROLES)


def can_manage_products(user) -> bool:
    return has_role(user, PRODUCT_MANAGER_ROLES)


def can_access_admin_panel(user) -> bool:
    return has_role(user, ADMIN_PANEL_ROLES)


def can_perform_action(user) -> bool:
    """只有 active 状态的账号可以操作"""
    return user is not None and user.status == "active"


# ========== FastAPI 依赖 ==========

def get_optional_auth(request: Request) -> Optional[AuthContext]:
    """当前认证上下文（未登录返回 None）"""
    return getattr(request.state, "auth", None)


def get_current_auth(auth: Optional[AuthContext] = Depends(get_optional_auth)) -> AuthContext:
    """要求已登录"""
    if auth is None:
        raise AuthenticationError(detail="Authentication required")
    return auth


def require_role(*roles: str):
    """
    创建角色检查依赖函数

    Usage:
        @router.post("/brands")
        async def create_brand(auth: AuthContext = Depends(require_role("admin", "vendor"))):
            ...
    """
    async def _check_role(auth: AuthContext = Depends(get_current_auth)) -> AuthContext:
        if not can_perform_action(auth):
            raise AuthorizationError(code="ACCOUNT_INACTIVE", detail="Account is not active")

        if roles and not has_role(auth, roles):
            raise AuthorizationError(
                code="INSUFFICIENT_PERMISSIONS",
                detail=f"Required role: {', '.join(roles)}"
            )
        return auth

    return _check_role


def extract_session_token(request: Request) -> Optional[str]:
    """从 Authorization 头或会话 Cookie 读取令牌"""
    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    return request.cookies.get(SESSION_COOKIE_NAME) or None


class AuthMiddleware(BaseHTTPMiddleware):
    """认证中间件

    解析令牌写入 request.state.auth，非公开的 /api 路径要求登录
    公开目录类路径的写操作由路由层 require_role 保护
    """

    PUBLIC_PATHS = {
        "/healthz",
        "/docs",
        "/redoc",
        "/openapi.json",
        "/api/orders/checkout-options",
        "/api/account/governorates",
    }

    PUBLIC_PREFIXES = [
        "/api/auth",
        "/api/products",
        "/api/categories",
        "/api/brands",
        "/api/currency",
        "/api/cart",
        "/api/shipments/track",
        "/docs",
    ]

    def __init__(self, app, api_prefix: str = "/api", logger=None):
        super().__init__(app)
        self.api_prefix = api_prefix
        self.logger = logger or get_logger("middleware.auth")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request.state.auth = None

        token = extract_session_token(request)
        if token:
            request.state.auth = await self._resolve(token)

        path = request.url.path
        if (
            request.state.auth is None
            and request.method != "OPTIONS"
            and path.startswith(self.api_prefix)
            and not self._is_public_path(path)
        ):
            error = AuthenticationError(code="UNAUTHORIZED", detail="Authentication required")
            return error.to_response(request)

        if request.state.auth is not None:
            user_token = user_id_var.set(request.state.auth.user_id)
            try:
                return await call_next(request)
            finally:
                user_id_var.reset(user_token)

        return await call_next(request)

    def _is_public_path(self, path: str) -> bool:
        """检查是否为公开路径"""
        if path in self.PUBLIC_PATHS:
            return True

        for prefix in self.PUBLIC_PREFIXES:
            if path.startswith(prefix):
                return True

        return False

    async def _resolve(self, token: str) -> Optional[AuthContext]:
        from sj_core.services.auth_service import get_auth_service

        try:
            return await get_auth_service().resolve_session(token)
        except AuthenticationError as e:
            self.logger.debug("Session resolution rejected", code=e.code)
            return None
