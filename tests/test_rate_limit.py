"""
限流器测试
"""
import json

import pytest
from fastapi import Request

from sj_core.middleware.rate_limit import (
    MemoryRateLimitStore,
    RateLimitDecision,
    RateLimiter,
    build_rate_limit_key,
    get_client_identifier,
    get_route_class,
    get_rule_name,
    should_skip,
)


class FakeClock:
    """可手动推进的时钟"""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class BrokenStore(MemoryRateLimitStore):
    async def incr(self, key: str) -> int:
        raise ConnectionError("store unavailable")


def _request(path: str, headers=None) -> Request:
    raw_headers = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    scope = {
        "type": "http",
        "method": "GET",
        "scheme": "http",
        "server": ("testserver", 80),
        "path": path,
        "root_path": "",
        "query_string": b"",
        "headers": raw_headers,
    }
    return Request(scope)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(MemoryRateLimitStore(clock=clock), clock=clock)


class TestRouting:
    def test_rule_names(self):
        assert get_rule_name("/api/auth/sign-in") == "auth"
        assert get_rule_name("/auth/callback") == "auth"
        assert get_rule_name("/api/products") == "api"
        assert get_rule_name("/healthz") == "default"

    def test_route_class(self):
        assert get_route_class("/api/auth/sign-in") == "auth"
        assert get_route_class("/auth/callback") == "default"
        assert get_route_class("/api/cart") == "api"

    def test_skip_static(self):
        assert should_skip("/_next/chunk")
        assert should_skip("/static/logo")
        assert should_skip("/favicon.ico")
        assert not should_skip("/api/products")

    def test_client_identifier(self):
        assert get_client_identifier(
            {"x-forwarded-for": "10.0.0.1, 10.0.0.2", "user-agent": "Mozilla/5.0"}
        ) == "10.0.0.1:Mozilla/5.0"
        assert get_client_identifier({"x-real-ip": "10.0.0.3"}) == "10.0.0.3:unknown"
        assert get_client_identifier({"cf-connecting-ip": "10.0.0.4", "user-agent": "x" * 80}) == "10.0.0.4:" + "x" * 50
        assert get_client_identifier({}) == "unknown:unknown"

    def test_key(self):
        assert build_rate_limit_key("1.2.3.4:ua", "/api/orders") == "ratelimit:api:1.2.3.4:ua"


class TestLimiter:
    async def test_auth_window(self, limiter, clock):
        for expected_remaining in (4, 3, 2, 1, 0):
            decision = await limiter.hit("/api/auth/sign-in", "client")
            assert decision.allowed
            assert decision.remaining == expected_remaining

        blocked = await limiter.hit("/api/auth/sign-in", "client")
        assert not blocked.allowed
        assert blocked.limit == 5
        assert blocked.retry_after == 900

        clock.advance(900)
        decision = await limiter.hit("/api/auth/sign-in", "client")
        assert decision.allowed
        assert decision.remaining == 4

    async def test_clients_counted_separately(self, limiter):
        for _ in range(5):
            await limiter.hit("/api/auth/sign-in", "a")
        assert not (await limiter.hit("/api/auth/sign-in", "a")).allowed
        assert (await limiter.hit("/api/auth/sign-in", "b")).allowed

    async def test_retry_after_shrinks(self, limiter, clock):
        for _ in range(60):
            await limiter.hit("/api/products", "client")
        clock.advance(45)
        blocked = await limiter.hit("/api/products", "client")
        assert not blocked.allowed
        assert blocked.retry_after == 15

    async def test_info_does_not_count(self, limiter):
        info = await limiter.info("/api/products", "client")
        assert info.remaining == 60

        await limiter.hit("/api/products", "client")
        info = await limiter.info("/api/products", "client")
        assert info.remaining == 59
        info = await limiter.info("/api/products", "client")
        assert info.remaining == 59

    async def test_reset_and_clear(self, limiter):
        for _ in range(6):
            await limiter.hit("/api/auth/sign-in", "client")
        await limiter.reset("client", "/api/auth/sign-in")
        assert (await limiter.hit("/api/auth/sign-in", "client")).allowed

        await limiter.clear_all()
        assert len(limiter.store) == 0

    async def test_check_blocks_with_headers(self, limiter):
        headers = {"x-forwarded-for": "10.1.1.1", "user-agent": "pytest"}
        for _ in range(5):
            request = _request("/api/auth/sign-in", headers)
            assert await limiter.check(request) is None
            assert request.state.rate_limit.allowed

        response = await limiter.check(_request("/api/auth/sign-in", headers))
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "900"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        body = json.loads(response.body)
        assert body["error"]["code"] == "RATE_LIMIT_EXCEEDED"
        assert body["error"]["retryAfter"] == 900

    async def test_check_fails_open(self, clock):
        limiter = RateLimiter(BrokenStore(clock=clock), clock=clock)
        assert await limiter.check(_request("/api/products")) is None

    async def test_check_skips_static(self, limiter):
        assert await limiter.check(_request("/static/app.js")) is None
        assert len(limiter.store) == 0


class TestDecisionHeaders:
    def test_allowed_headers(self):
        decision = RateLimitDecision(allowed=True, limit=60, remaining=59, reset_at=0)
        assert decision.headers() == {
            "X-RateLimit-Limit": "60",
            "X-RateLimit-Remaining": "59",
            "X-RateLimit-Reset": "1970-01-01T00:00:00.000Z",
        }

    def test_blocked_headers(self):
        decision = RateLimitDecision(allowed=False, limit=5, remaining=0, reset_at=0, retry_after=12)
        assert decision.headers()["Retry-After"] == "12"


class TestMemoryStore:
    async def test_expiry(self, clock):
        store = MemoryRateLimitStore(clock=clock)
        assert await store.incr("k") == 1
        assert await store.ttl("k") is None
        await store.expire("k", 10)
        assert await store.ttl("k") == 10
        clock.advance(10)
        assert await store.get("k") is None
        assert await store.incr("k") == 1
