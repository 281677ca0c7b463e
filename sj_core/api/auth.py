"""
认证API路由

令牌同时通过响应体和会话 Cookie 下发；Bearer 头与 Cookie 均可用于后续请求
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import BaseModel, ConfigDict, Field

from sj_core.config import get_settings
from sj_core.middleware.auth import (
    AuthContext,
    SESSION_COOKIE_NAME,
    extract_session_token,
    get_optional_auth,
)
from sj_core.middleware.logging import get_client_ip
from sj_core.services.auth_service import (
    RESET_CONFIRM_MESSAGE,
    RESET_REQUEST_MESSAGE,
    SIGN_OUT_MESSAGE,
    get_auth_service,
)
from sj_core.utils.errors import SharqException, InternalServerError
from sj_core.utils.logger import get_logger
from .models import ApiResponse, MessageResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])

# 预检请求的 CORS 头
PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}

# 自带预检路由的路径（相对 api_prefix），其 OPTIONS 请求不经过全局 CORS 中间件
PREFLIGHT_PATHS = (
    "/auth/sign-out",
    "/auth/reset-password/request",
    "/auth/reset-password/confirm",
)


# ========== 请求模型 ==========

class SignUpRequest(BaseModel):
    """注册请求"""
    email: str = Field(..., max_length=255, description="邮箱")
    password: str = Field(..., description="密码")
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)


class SignInRequest(BaseModel):
    """登录请求"""
    email: str = Field(..., description="邮箱")
    password: str = Field(..., description="密码")


class VerifyEmailRequest(BaseModel):
    token: str


class ResetRequest(BaseModel):
    """申请重置密码"""
    email: str
    redirect_to: Optional[str] = Field(None, alias="redirectTo")

    model_config = ConfigDict(populate_by_name=True)


class ResetConfirmRequest(BaseModel):
    """确认重置密码"""
    token: str
    new_password: str = Field(..., alias="newPassword")

    model_config = ConfigDict(populate_by_name=True)


# ========== Cookie ==========

def set_session_cookie(response: Response, token: str, expires_at: datetime) -> None:
    settings = get_settings()
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=token,
        expires=expires_at,
        httponly=True,
        secure=not settings.api_debug,
        samesite="lax",
        path="/",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(key=SESSION_COOKIE_NAME, path="/")


def preflight_response() -> Response:
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=PREFLIGHT_HEADERS)


# ========== 注册与登录 ==========

@router.post("/sign-up", response_model=ApiResponse[dict], status_code=status.HTTP_201_CREATED)
async def sign_up(body: SignUpRequest):
    """
    注册新用户

    - 账号初始状态为 pending_verification
    - 发送邮箱验证链接（24 小时有效）
    """
    try:
        user = await get_auth_service().sign_up(
            email=body.email,
            password=body.password,
            first_name=body.first_name,
            last_name=body.last_name,
            phone=body.phone,
        )
        return ApiResponse.ok(
            {"user": user},
            message="Account created. Please check your email to verify your address."
        )
    except SharqException:
        raise
    except Exception as e:
        logger.error("Sign-up API failed", exc_info=True)
        raise InternalServerError(code="SIGN_UP_ERROR", detail=f"Unexpected error: {str(e)}")


@router.post("/sign-in", response_model=ApiResponse[dict])
async def sign_in(request: Request, response: Response, body: SignInRequest):
    """
    邮箱密码登录

    - 15 分钟内失败 5 次锁定 1 小时
    - 返回访问令牌并写入会话 Cookie
    """
    try:
        result = await get_auth_service().sign_in(
            email=body.email,
            password=body.password,
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("user-agent"),
        )
    except SharqException:
        raise
    except Exception as e:
        logger.error("Sign-in API failed", exc_info=True)
        raise InternalServerError(code="SIGN_IN_ERROR", detail=f"Unexpected error: {str(e)}")

    set_session_cookie(response, result.access_token, result.expires_at)
    return ApiResponse.ok({
        "token": result.access_token,
        "user": result.user,
        "session": {"expires_at": result.expires_at.isoformat()},
    })


@router.options("/sign-out", include_in_schema=False)
async def sign_out_preflight():
    return preflight_response()


@router.post("/sign-out", response_model=MessageResponse)
async def sign_out(request: Request, response: Response):
    """注销当前会话并清除 Cookie"""
    await get_auth_service().sign_out(extract_session_token(request))
    clear_session_cookie(response)
    return MessageResponse(message=SIGN_OUT_MESSAGE)


@router.get("/session", response_model=ApiResponse[Optional[dict]])
async def get_session(response: Response, auth: Optional[AuthContext] = Depends(get_optional_auth)):
    """当前会话（未登录返回 null）"""
    if auth is None:
        return ApiResponse.ok(None)

    if auth.refreshed:
        # 会话已延长，重新签发令牌
        token = get_auth_service().issue_token_for_context(auth)
        set_session_cookie(response, token, auth.expires_at)
        return ApiResponse.ok({**auth.to_dict(), "token": token})

    return ApiResponse.ok(auth.to_dict())


# ========== 邮箱验证与密码重置 ==========

@router.post("/verify-email", response_model=ApiResponse[dict])
async def verify_email(body: VerifyEmailRequest):
    """验证邮箱并激活账号"""
    user = await get_auth_service().verify_email(body.token)
    return ApiResponse.ok({"user": user}, message="Email verified successfully")


@router.options("/reset-password/request", include_in_schema=False)
async def reset_request_preflight():
    return preflight_response()


@router.post("/reset-password/request", response_model=MessageResponse)
async def request_password_reset(body: ResetRequest):
    """申请重置密码（不暴露邮箱是否存在）"""
    await get_auth_service().request_password_reset(body.email, body.redirect_to)
    return MessageResponse(message=RESET_REQUEST_MESSAGE)


@router.options("/reset-password/confirm", include_in_schema=False)
async def reset_confirm_preflight():
    return preflight_response()


@router.post("/reset-password/confirm", response_model=MessageResponse)
async def confirm_password_reset(body: ResetConfirmRequest):
    """使用重置令牌设置新密码"""
    await get_auth_service().confirm_password_reset(body.token, body.new_password)
    return MessageResponse(message=RESET_CONFIRM_MESSAGE)
