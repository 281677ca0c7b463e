"""
API 层测试（中间件链、错误信封、无需数据库的公开端点）
"""
import pytest

from sj_core.middleware.security import SECURITY_HEADERS


async def test_currency_rates(client):
    response = await client.get("/api/currency/rates")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["rates"] == {"USD": 1, "IQD": 1320}
    assert body["data"]["currencies"]["IQD"] == "Iraqi Dinar"


async def test_middleware_headers(client):
    response = await client.get("/api/currency/rates", headers={"X-Trace-Id": "trace-123"})

    for name, value in SECURITY_HEADERS.items():
        assert response.headers[name] == value
    assert response.headers["X-Trace-Id"] == "trace-123"
    assert response.headers["X-RateLimit-Limit"] == "60"
    assert response.headers["X-RateLimit-Remaining"] == "59"
    assert response.headers["X-RateLimit-Reset"].endswith("Z")


async def test_trace_id_generated(client):
    response = await client.get("/api/currency/rates")
    assert len(response.headers["X-Trace-Id"]) == 32


async def test_currency_convert(client):
    response = await client.get("/api/currency/convert", params={"amount": 260000, "from": "IQD", "to": "USD"})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["formatted"] == "$196.97"
    assert data["exchange_rate"] == 1320
    assert data["original_currency"] == "IQD"


async def test_currency_format_defaults_to_iqd(client):
    response = await client.get("/api/currency/format", params={"amount": 260000})

    data = response.json()["data"]
    assert data["currency"] == "IQD"
    assert data["formatted"] == "260,000 د.ع."


async def test_validation_error_envelope(client):
    response = await client.get("/api/currency/convert", params={"amount": "lots", "from": "IQD", "to": "EUR"})

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"]["code"] == "VALIDATION_ERROR"
    assert body["error"]["statusCode"] == 400
    assert "amount" in body["error"]["details"]
    assert "to" in body["error"]["details"]


async def test_payload_too_large(client):
    response = await client.post(
        "/api/products",
        content=b"{}",
        headers={"content-type": "application/json", "content-length": "20000000"},
    )

    assert response.status_code == 413
    assert response.json()["error"]["code"] == "PAYLOAD_TOO_LARGE"


async def test_cors_preflight_bypasses_auth(client):
    response = await client.options(
        "/api/orders",
        headers={
            "Origin": "http://localhost:3000",
            "Access-Control-Request-Method": "POST",
        },
    )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "http://localhost:3000"


@pytest.mark.parametrize("path", [
    "/api/auth/sign-out",
    "/api/auth/reset-password/request",
    "/api/auth/reset-password/confirm",
])
async def test_auth_preflight_routes_answer_any_origin(client, path):
    response = await client.options(
        path,
        headers={
            "Origin": "https://shop.example.iq",
            "Access-Control-Request-Method": "POST",
        },
    )

    assert response.status_code == 204
    assert response.content == b""
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.headers["access-control-allow-methods"] == "POST, OPTIONS"
    assert response.headers["access-control-allow-headers"] == "Content-Type, Authorization"


async def test_other_preflights_still_use_origin_allowlist(client):
    response = await client.options(
        "/api/auth/sign-in",
        headers={
            "Origin": "https://shop.example.iq",
            "Access-Control-Request-Method": "POST",
        },
    )

    assert response.status_code == 400


async def test_protected_route_requires_auth(client):
    response = await client.get("/api/orders")

    assert response.status_code == 401
    body = response.json()
    assert body["error"]["code"] == "UNAUTHORIZED"
    assert body["error"]["instance"] == "/api/orders"


async def test_invalid_bearer_token_is_anonymous(client):
    response = await client.get("/api/account/profile", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


async def test_unknown_route(client):
    response = await client.get("/api/currency/unknown")

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "HTTP_404"


async def test_public_governorates(client):
    response = await client.get("/api/account/governorates", params={"locale": "ar"})

    assert response.status_code == 200
    data = response.json()["data"]
    assert len(data["governorates"]) == 19
    assert data["options"][0] == {"value": "IQ-BG", "label": "بغداد"}
    assert data["regions"][0] == "Central Iraq"


async def test_checkout_options_public(client):
    response = await client.get("/api/orders/checkout-options")

    assert response.status_code == 200
    data = response.json()["data"]
    assert {method["id"] for method in data["payment_methods"]} == {"cod", "qicard", "zaincash"}
    standard = next(method for method in data["shipping_methods"] if method["id"] == "standard")
    assert standard["cost"] == "5000"
    assert standard["free_shipping_threshold"] == "100000"


async def test_auth_routes_rate_limited(client):
    statuses = []
    for _ in range(6):
        response = await client.get("/api/auth/unknown-endpoint")
        statuses.append(response.status_code)

    assert statuses[:5] == [404] * 5
    assert statuses[5] == 429
    blocked = await client.get("/api/auth/unknown-endpoint")
    assert blocked.json()["error"]["code"] == "RATE_LIMIT_EXCEEDED"
    assert int(blocked.headers["Retry-After"]) > 0
