"""
请求日志中间件

每个请求分配 trace_id（沿用上游的 X-Trace-Id），记录：
- 入站请求的方法、路径、查询参数（敏感字段脱敏）、客户端
- 响应状态码与耗时
"""
import time
import uuid
from typing import Callable, Dict, Mapping

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from sj_core.utils.logger import get_logger, LogContext

TRACE_HEADER = "X-Trace-Id"

# 只记录结果不记录参数的路径
QUIET_PATHS = {
    "/healthz",
    "/favicon.ico",
}

SENSITIVE_FIELDS = {"password", "token", "secret", "authorization", "code", "api_key"}


def mask_query_params(params: Mapping[str, str]) -> Dict[str, str]:
    """脱敏查询参数"""
    return {
        key: "***MASKED***" if key.lower() in SENSITIVE_FIELDS else value
        for key, value in params.items()
    }


def get_client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    if request.client:
        return request.client.host
    return "unknown"


class LoggingMiddleware(BaseHTTPMiddleware):
    """请求日志中间件"""

    def __init__(self, app, logger=None):
        super().__init__(app)
        self.logger = logger or get_logger("middleware.logging")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id = request.headers.get(TRACE_HEADER) or uuid.uuid4().hex
        request.state.trace_id = trace_id

        method = request.method
        path = request.url.path
        quiet = path in QUIET_PATHS
        start_time = time.perf_counter()

        with LogContext(trace_id=trace_id):
            if not quiet:
                request_log = {
                    "method": method,
                    "path": path,
                    "client_ip": get_client_ip(request),
                    "user_agent": (request.headers.get("user-agent") or "")[:200] or None,
                }
                if request.query_params:
                    request_log["query_params"] = mask_query_params(request.query_params)
                self.logger.info("API request", **request_log)

            try:
                response = await call_next(request)
            except Exception as e:
                self.logger.error(
                    "API request failed",
                    method=method,
                    path=path,
                    latency_ms=int((time.perf_counter() - start_time) * 1000),
                    err=str(e),
                    exc_info=True
                )
                raise

            latency_ms = int((time.perf_counter() - start_time) * 1000)
            response_log = {
                "method": method,
                "path": path,
                "status_code": response.status_code,
                "latency_ms": latency_ms,
            }
            if response.status_code >= 500:
                self.logger.error("API response error", **response_log)
            elif response.status_code >= 400:
                self.logger.warning("API response error", **response_log)
            elif not quiet:
                self.logger.info("API response", **response_log)

            response.headers[TRACE_HEADER] = trace_id
            return response
