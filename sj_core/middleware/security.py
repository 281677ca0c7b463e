"""
安全中间件

- 安全响应头
- 请求体大小限制（默认 10MB）
- 带豁免路径的 CORS
"""
from typing import Callable, Dict, Iterable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.types import Receive, Scope, Send

from sj_core.utils.errors import PayloadTooLargeError
from sj_core.utils.logger import get_logger

logger = get_logger(__name__)

MAX_REQUEST_SIZE = 10 * 1024 * 1024

SECURITY_HEADERS: Dict[str, str] = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """安全响应头中间件"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """按 Content-Length 拒绝过大的请求体"""

    def __init__(self, app, max_size: int = MAX_REQUEST_SIZE):
        super().__init__(app)
        self.max_size = max_size

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > self.max_size:
            logger.warning("Request body too large", path=request.url.path, size=int(content_length))
            error = PayloadTooLargeError(
                detail=f"Request body exceeds {self.max_size // (1024 * 1024)}MB limit"
            )
            return error.to_response(request)

        return await call_next(request)


class ExemptPathCORSMiddleware(CORSMiddleware):
    """CORS 中间件，豁免路径的 OPTIONS 请求直接交给路由处理

    豁免路径自带 OPTIONS 路由，返回固定的预检响应头；其余方法照常处理
    """

    def __init__(self, app, exempt_paths: Iterable[str] = (), **kwargs):
        super().__init__(app, **kwargs)
        self.exempt_paths = frozenset(exempt_paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if (
            scope["type"] == "http"
            and scope["method"] == "OPTIONS"
            and scope["path"] in self.exempt_paths
        ):
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)
