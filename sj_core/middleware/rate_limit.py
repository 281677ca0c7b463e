"""
限流中间件

固定窗口限流，按 (路由类别, 客户端IP, User-Agent 前缀) 计数：
- auth:    /api/auth 或 /auth，15 分钟 5 次
- api:     其他 /api 路径，1 分钟 60 次
- default: 其他路径，1 分钟 100 次

计数存储可替换：进程内存（单实例）或 Redis（多实例共享）
存储故障时放行请求（fail-open）
"""
import asyncio
import math
import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Mapping, Optional

import redis.asyncio as redis
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from sj_core.utils.errors import RateLimitError
from sj_core.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitRule:
    """限流规则"""
    window_seconds: int
    max_requests: int


RATE_LIMIT_RULES: Dict[str, RateLimitRule] = {
    "auth": RateLimitRule(window_seconds=15 * 60, max_requests=5),
    "api": RateLimitRule(window_seconds=60, max_requests=60),
    "default": RateLimitRule(window_seconds=60, max_requests=100),
}

# 约 1% 的写操作顺带清理过期条目
CLEANUP_PROBABILITY = 0.01


# ========== 计数存储 ==========

class RateLimitStore(ABC):
    """限流计数存储"""

    @abstractmethod
    async def get(self, key: str) -> Optional[int]:
        """读取计数，不存在或已过期返回 None"""

    @abstractmethod
    async def incr(self, key: str) -> int:
        """计数加一并返回新值，不存在或已过期时从 1 开始"""

    @abstractmethod
    async def expire(self, key: str, seconds: float) -> None:
        """设置过期时间"""

    @abstractmethod
    async def ttl(self, key: str) -> Optional[float]:
        """剩余秒数，不存在或未设置过期返回 None"""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """删除计数"""

    @abstractmethod
    async def clear(self) -> None:
        """清空全部计数"""


class MemoryRateLimitStore(RateLimitStore):
    """进程内存计数存储（单实例部署、测试）"""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = asyncio.Lock()
        # key -> [count, expires_at]
        self._entries: Dict[str, List] = {}

    def _live_entry(self, key: str) -> Optional[List]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at = entry[1]
        if expires_at is not None and expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    def _cleanup_expired(self) -> None:
        now = self._clock()
        expired = [
            key for key, (_, expires_at) in self._entries.items()
            if expires_at is not None and expires_at <= now
        ]
        for key in expired:
            del self._entries[key]

    async def get(self, key: str) -> Optional[int]:
        async with self._lock:
            entry = self._live_entry(key)
            return entry[0] if entry else None

    async def incr(self, key: str) -> int:
        async with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                entry = [0, None]
                self._entries[key] = entry
                if random.random() < CLEANUP_PROBABILITY:
                    self._cleanup_expired()
            entry[0] += 1
            return entry[0]

    async def expire(self, key: str, seconds: float) -> None:
        async with self._lock:
            entry = self._live_entry(key)
            if entry is not None:
                entry[1] = self._clock() + seconds

    async def ttl(self, key: str) -> Optional[float]:
        async with self._lock:
            entry = self._live_entry(key)
            if entry is None or entry[1] is None:
                return None
            return max(entry[1] - self._clock(), 0.0)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class RedisRateLimitStore(RateLimitStore):
    """Redis 计数存储（INCR + PEXPIRE，多实例共享）"""

    def __init__(self, client: redis.Redis, namespace: str = "sj:"):
        self.client = client
        self.namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    async def get(self, key: str) -> Optional[int]:
        value = await self.client.get(self._key(key))
        return int(value) if value is not None else None

    async def incr(self, key: str) -> int:
        return int(await self.client.incr(self._key(key)))

    async def expire(self, key: str, seconds: float) -> None:
        await self.client.pexpire(self._key(key), int(seconds * 1000))

    async def ttl(self, key: str) -> Optional[float]:
        pttl = await self.client.pttl(self._key(key))
        # -2: 不存在，-1: 未设置过期
        if pttl is None or pttl < 0:
            return None
        return pttl / 1000

    async def delete(self, key: str) -> None:
        await self.client.delete(self._key(key))

    async def clear(self) -> None:
        keys = [key async for key in self.client.scan_iter(match=f"{self.namespace}*")]
        if keys:
            await self.client.delete(*keys)


# ========== 规则与客户端标识 ==========

def get_rule_name(path: str) -> str:
    """按路径选择限流规则名"""
    if path.startswith("/api/auth") or path.startswith("/auth"):
        return "auth"
    if path.startswith("/api"):
        return "api"
    return "default"


def get_rate_limit_rule(path: str) -> RateLimitRule:
    return RATE_LIMIT_RULES[get_rule_name(path)]


def get_route_class(path: str) -> str:
    """计数键中的路由类别（/auth 使用 auth 规则但计入 default）"""
    if path.startswith("/api/auth"):
        return "auth"
    if path.startswith("/api"):
        return "api"
    return "default"


def should_skip(path: str) -> bool:
    """静态资源不限流"""
    return path.startswith("/_next") or path.startswith("/static") or "." in path


def get_client_identifier(headers: Mapping[str, str]) -> str:
    """客户端标识：IP + User-Agent 前 50 个字符"""
    forwarded = (headers.get("x-forwarded-for") or "").split(",")[0].strip()
    ip = forwarded or headers.get("x-real-ip") or headers.get("cf-connecting-ip") or "unknown"
    user_agent = headers.get("user-agent") or "unknown"
    return f"{ip}:{user_agent[:50]}"


def build_rate_limit_key(client_id: str, path: str) -> str:
    return f"ratelimit:{get_route_class(path)}:{client_id}"


@dataclass(frozen=True)
class RateLimitDecision:
    """一次限流判定的结果"""
    allowed: bool
    limit: int
    remaining: int
    reset_at: float  # unix 时间戳（秒）
    retry_after: int = 0

    @property
    def reset_iso(self) -> str:
        reset = datetime.fromtimestamp(self.reset_at, tz=timezone.utc)
        return reset.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": self.reset_iso,
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class RateLimiter:
    """固定窗口限流器"""

    def __init__(
        self,
        store: RateLimitStore,
        rules: Optional[Dict[str, RateLimitRule]] = None,
        clock: Callable[[], float] = time.time
    ):
        self.store = store
        self.rules = rules or RATE_LIMIT_RULES
        self.clock = clock

    def _rule_for(self, path: str) -> RateLimitRule:
        return self.rules.get(get_rule_name(path), get_rate_limit_rule(path))

    async def hit(self, path: str, client_id: str) -> RateLimitDecision:
        """记录一次请求并判定是否放行"""
        rule = self._rule_for(path)
        key = build_rate_limit_key(client_id, path)
        now = self.clock()

        count = await self.store.incr(key)
        remaining_ttl = await self.store.ttl(key)
        if count == 1 or remaining_ttl is None:
            await self.store.expire(key, rule.window_seconds)
            remaining_ttl = float(rule.window_seconds)

        reset_at = now + remaining_ttl

        if count > rule.max_requests:
            return RateLimitDecision(
                allowed=False,
                limit=rule.max_requests,
                remaining=0,
                reset_at=reset_at,
                retry_after=math.ceil(remaining_ttl),
            )

        return RateLimitDecision(
            allowed=True,
            limit=rule.max_requests,
            remaining=max(0, rule.max_requests - count),
            reset_at=reset_at,
        )

    async def info(self, path: str, client_id: str) -> RateLimitDecision:
        """查询当前限流状态（不计数）"""
        rule = self._rule_for(path)
        key = build_rate_limit_key(client_id, path)
        now = self.clock()

        count = await self.store.get(key)
        remaining_ttl = await self.store.ttl(key)
        if count is None or remaining_ttl is None:
            return RateLimitDecision(
                allowed=True,
                limit=rule.max_requests,
                remaining=rule.max_requests,
                reset_at=now + rule.window_seconds,
            )

        return RateLimitDecision(
            allowed=count <= rule.max_requests,
            limit=rule.max_requests,
            remaining=max(0, rule.max_requests - count),
            reset_at=now + remaining_ttl,
        )

    async def reset(self, client_id: str, path: str) -> None:
        """重置某个客户端在某类路由上的计数"""
        await self.store.delete(build_rate_limit_key(client_id, path))

    async def clear_all(self) -> None:
        await self.store.clear()

    async def check(self, request: Request) -> Optional[Response]:
        """判定请求，超限返回 429 响应，否则返回 None

        放行时判定结果写入 request.state.rate_limit
        """
        path = request.url.path
        if should_skip(path):
            return None

        try:
            decision = await self.hit(path, get_client_identifier(request.headers))
        except Exception as e:
            logger.error("Rate limiting failed, request allowed", path=path, error=str(e))
            return None

        if decision.allowed:
            request.state.rate_limit = decision
            return None

        logger.warning(
            "Rate limit exceeded",
            path=path,
            route_class=get_route_class(path),
            retry_after=decision.retry_after
        )
        error = RateLimitError(retry_after=decision.retry_after, headers=decision.headers())
        return error.to_response(request)


_rate_limiter: Optional[RateLimiter] = None


async def get_rate_limiter() -> RateLimiter:
    """获取限流器单例（存储由 rate_limit_backend 决定）"""
    global _rate_limiter
    if _rate_limiter is None:
        from sj_core.config import get_settings
        from sj_core.utils.redis import get_redis

        settings = get_settings()
        if settings.rate_limit_backend == "redis":
            store: RateLimitStore = RedisRateLimitStore(await get_redis())
        else:
            store = MemoryRateLimitStore()
        _rate_limiter = RateLimiter(store)
        logger.info("Rate limiter configured", backend=settings.rate_limit_backend)
    return _rate_limiter


def reset_rate_limiter() -> None:
    global _rate_limiter
    _rate_limiter = None


class RateLimitMiddleware(BaseHTTPMiddleware):
    """限流中间件"""

    def __init__(self, app, limiter: Optional[RateLimiter] = None, enabled: bool = True):
        super().__init__(app)
        self.limiter = limiter
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.enabled:
            return await call_next(request)

        limiter = self.limiter or await get_rate_limiter()
        blocked = await limiter.check(request)
        if blocked is not None:
            return blocked

        response = await call_next(request)

        decision = getattr(request.state, "rate_limit", None)
        if decision is not None:
            response.headers.update(decision.headers())
        return response
