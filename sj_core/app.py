"""
Sharq Aljazeera FastAPI 主应用
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from sj_core.config import get_settings, validate_auth_env
from sj_core.utils.logger import setup_logging, get_logger
from sj_core.utils.errors import SharqException, handle_error
from sj_core.utils.redis import close_redis
from sj_core.database import get_db_manager
from sj_core.middleware.auth import AuthMiddleware
from sj_core.middleware.logging import LoggingMiddleware
from sj_core.middleware.rate_limit import RateLimitMiddleware, get_rate_limiter
from sj_core.middleware.security import (
    ExemptPathCORSMiddleware,
    RequestSizeLimitMiddleware,
    SecurityHeadersMiddleware,
)
from sj_core.services.auth_service import AuthService, set_auth_service
from sj_core.api import api_router
from sj_core.api.auth import PREFLIGHT_PATHS

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    settings = get_settings()
    logger.info("Starting Sharq Aljazeera application", version=settings.api_version)

    if settings.validate_env_on_startup:
        validate_auth_env(settings)

    db_manager = get_db_manager()
    if not await db_manager.check_connection():
        logger.error("Database connection check failed")
        raise RuntimeError("Database connection failed")

    # 登录失败计数与限流共用同一存储
    limiter = await get_rate_limiter()
    set_auth_service(AuthService(store=limiter.store))

    logger.info("Sharq Aljazeera application started successfully")
    yield

    logger.info("Shutting down Sharq Aljazeera application")
    try:
        await db_manager.close()
        await close_redis()
        logger.info("Sharq Aljazeera application shutdown complete")
    except Exception:
        logger.error("Error during application shutdown", exc_info=True)


def _error_response(request: Request, error: SharqException, exc: Exception) -> JSONResponse:
    """记录并渲染错误：非预期错误记 error 级别并带堆栈"""
    log_data = {
        "path": request.url.path,
        "method": request.method,
        "status_code": error.status_code,
        "code": error.code,
    }
    if error.is_operational:
        logger.warning("Request failed", **log_data)
    else:
        logger.error("Unhandled server error", err=str(exc), exc_info=exc, **log_data)
    return error.to_response(request)


def create_app() -> FastAPI:
    """创建 FastAPI 应用"""
    settings = get_settings()

    setup_logging(
        log_level=settings.log_level,
        log_format=settings.log_format
    )

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="Sharq Aljazeera e-commerce platform API",
        docs_url="/docs" if settings.api_debug else None,
        redoc_url="/redoc" if settings.api_debug else None,
        openapi_url="/openapi.json" if settings.api_debug else None,
        lifespan=lifespan,
    )

    # 添加中间件（后添加的在外层）
    app.add_middleware(AuthMiddleware, api_prefix=settings.api_prefix)
    app.add_middleware(RateLimitMiddleware, enabled=settings.rate_limit_enabled)
    app.add_middleware(RequestSizeLimitMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(
        ExemptPathCORSMiddleware,
        exempt_paths=[settings.api_prefix + path for path in PREFLIGHT_PATHS],
        allow_origins=["*"] if settings.api_debug else settings.cors_allowed_origins,
        allow_credentials=not settings.api_debug,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Trace-Id", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
    )

    app.include_router(api_router, prefix=settings.api_prefix)

    # 异常处理器
    @app.exception_handler(SharqException)
    async def sharq_exception_handler(request: Request, exc: SharqException):
        return _error_response(request, exc, exc)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """请求参数校验失败统一返回 400 VALIDATION_ERROR"""
        return _error_response(request, handle_error(exc), exc)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """路由不存在、方法不允许等框架异常"""
        error = SharqException(
            status_code=exc.status_code,
            code=f"HTTP_{exc.status_code}",
            title=str(exc.detail),
            detail=str(exc.detail),
            headers=getattr(exc, "headers", None),
        )
        return _error_response(request, error, exc)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        """未捕获异常：完整性错误按约束翻译，其余返回 500"""
        return _error_response(request, handle_error(exc), exc)

    @app.get("/healthz")
    async def health_check():
        """健康检查端点"""
        database_ok = await get_db_manager().check_connection()
        return JSONResponse(
            status_code=200 if database_ok else 503,
            content={
                "status": "healthy" if database_ok else "degraded",
                "database": "ok" if database_ok else "unavailable",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )

    return app


# 创建应用实例
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "sj_core.app:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_debug,
        log_level=settings.log_level.lower(),
        access_log=False,  # 使用自定义日志中间件
    )
