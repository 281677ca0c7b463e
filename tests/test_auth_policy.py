"""
认证策略测试：密码、令牌、登录锁定、角色依赖
"""
from datetime import datetime, timedelta, timezone

import pytest

from sj_core.api.auth import ResetConfirmRequest, ResetRequest
from sj_core.api.deps import catalog_status_filter, ensure_visible, order_scope
from sj_core.middleware.auth import (
    AuthContext,
    can_access_admin_panel,
    can_manage_products,
    can_perform_action,
    has_role,
    is_staff,
    require_role,
)
from sj_core.middleware.rate_limit import MemoryRateLimitStore
from sj_core.services.auth_service import (
    AuthConfig,
    AuthService,
    get_auth_error_message,
    map_user_role,
    normalize_email,
)
from sj_core.utils.errors import (
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)


def make_context(role="customer", status="active", user_id=7) -> AuthContext:
    return AuthContext(
        user_id=user_id,
        email="user@example.com",
        role=role,
        status=status,
        first_name="Ali",
        last_name="Hassan",
        email_verified=True,
        session_id=1,
        session_token="session-token",
        expires_at=datetime.now(timezone.utc) + timedelta(days=30),
    )


@pytest.fixture
def auth_service(auth_service_factory):
    return auth_service_factory()


class TestPasswords:
    def test_hash_and_verify(self, auth_service):
        hashed = auth_service.hash_password("Str0ng!Pass")
        assert hashed != "Str0ng!Pass"
        assert auth_service.verify_password("Str0ng!Pass", hashed)
        assert not auth_service.verify_password("wrong", hashed)

    def test_malformed_hash(self, auth_service):
        assert auth_service.verify_password("Str0ng!Pass", "not-a-bcrypt-hash") is False

    def test_weak_password(self, auth_service):
        with pytest.raises(ValidationError) as exc_info:
            auth_service.validate_password_policy("short")
        assert exc_info.value.code == "WEAK_PASSWORD"
        assert exc_info.value.details["password"]


class TestTokens:
    def test_round_trip_claims(self, auth_service):
        expires_at = datetime.now(timezone.utc) + timedelta(hours=1)
        token = auth_service.create_access_token(42, "vendor", "sess-abc", expires_at)
        payload = auth_service.decode_token(token)

        assert payload["sub"] == "42"
        assert payload["sid"] == "sess-abc"
        assert payload["role"] == "vendor"
        assert payload["jti"]

    def test_expired_token(self, auth_service):
        expired = datetime.now(timezone.utc) - timedelta(minutes=1)
        token = auth_service.create_access_token(1, "customer", "sess", expired)
        with pytest.raises(AuthenticationError) as exc_info:
            auth_service.decode_token(token)
        assert exc_info.value.code == "INVALID_TOKEN"

    def test_wrong_secret(self, auth_service):
        other = AuthService(
            config=AuthConfig(secret_key="other-secret"),
            store=MemoryRateLimitStore(),
            email_sender=auth_service.email_sender,
        )
        token = other.create_access_token(1, "customer", "sess", datetime.now(timezone.utc) + timedelta(hours=1))
        with pytest.raises(AuthenticationError):
            auth_service.decode_token(token)


class TestLoginLockout:
    async def test_locks_after_five_failures(self, auth_service):
        email = "locked@example.com"
        results = [await auth_service._record_login_failure(email) for _ in range(5)]
        assert results == [False, False, False, False, True]

        with pytest.raises(RateLimitError) as exc_info:
            await auth_service._check_login_block(email)
        assert exc_info.value.code == "ACCOUNT_LOCKED"
        assert exc_info.value.status_code == 429
        assert 3590 <= exc_info.value.retry_after <= 3600

    async def test_clear_failures(self, auth_service):
        email = "user@example.com"
        for _ in range(4):
            await auth_service._record_login_failure(email)
        await auth_service._clear_login_failures(email)

        assert await auth_service._record_login_failure(email) is False
        await auth_service._check_login_block(email)


class TestHelpers:
    def test_map_user_role(self):
        assert map_user_role("admin") == "admin"
        assert map_user_role("support") == "support"
        assert map_user_role("superuser") == "customer"
        assert map_user_role(None) == "customer"

    def test_auth_error_message(self):
        assert get_auth_error_message("active") is None
        assert "suspended" in get_auth_error_message("suspended")
        assert "verify" in get_auth_error_message("pending_verification")

    def test_normalize_email(self):
        assert normalize_email("  User@Example.COM ") == "user@example.com"

    def test_reset_requests_accept_both_field_styles(self):
        assert ResetConfirmRequest(token="t", new_password="N3w!Secret").new_password == "N3w!Secret"
        assert ResetConfirmRequest.model_validate({"token": "t", "newPassword": "N3w!Secret"}).new_password == "N3w!Secret"
        assert ResetRequest.model_validate({"email": "a@b.iq", "redirectTo": "/reset"}).redirect_to == "/reset"
        assert ResetRequest(email="a@b.iq", redirect_to="/reset").redirect_to == "/reset"

    def test_oauth_providers_need_both_credentials(self):
        from sj_core.config import Settings

        settings = Settings(
            _env_file=None,
            google_client_id="gid",
            google_client_secret="gsecret",
            facebook_client_id="fid",
        )
        config = AuthConfig.from_settings(settings)
        assert set(config.oauth_providers) == {"google"}
        assert config.oauth_providers["google"].scopes == ("openid", "email", "profile")


class TestRoles:
    def test_role_helpers(self):
        assert has_role(make_context("admin"), ("admin", "vendor"))
        assert not has_role(None, "admin")
        assert is_staff(make_context("support"))
        assert not is_staff(make_context("vendor"))
        assert can_manage_products(make_context("vendor"))
        assert not can_manage_products(make_context("support"))
        assert can_access_admin_panel(make_context("support"))
        assert not can_access_admin_panel(make_context("customer"))
        assert can_perform_action(make_context(status="active"))
        assert not can_perform_action(make_context(status="suspended"))

    async def test_require_role_allows(self):
        ctx = make_context("admin")
        assert await require_role("admin")(auth=ctx) is ctx

    async def test_require_role_rejects_other_roles(self):
        with pytest.raises(AuthorizationError) as exc_info:
            await require_role("admin", "vendor")(auth=make_context("customer"))
        assert exc_info.value.code == "INSUFFICIENT_PERMISSIONS"
        assert exc_info.value.status_code == 403

    async def test_require_role_rejects_inactive(self):
        with pytest.raises(AuthorizationError) as exc_info:
            await require_role("admin")(auth=make_context("admin", status="inactive"))
        assert exc_info.value.code == "ACCOUNT_INACTIVE"

    async def test_require_role_without_roles_only_checks_status(self):
        ctx = make_context("customer")
        assert await require_role()(auth=ctx) is ctx


class TestVisibility:
    def test_catalog_status_filter(self):
        assert catalog_status_filter("draft", None) == "active"
        assert catalog_status_filter("draft", make_context("customer")) == "active"
        assert catalog_status_filter("draft", make_context("vendor")) == "draft"
        assert catalog_status_filter(None, make_context("admin")) is None

    def test_ensure_visible(self):
        item = {"id": 1, "status": "draft"}
        assert ensure_visible(item, make_context("admin"), "PRODUCT_NOT_FOUND", "Product") is item
        with pytest.raises(NotFoundError) as exc_info:
            ensure_visible(item, None, "PRODUCT_NOT_FOUND", "Product")
        assert exc_info.value.code == "PRODUCT_NOT_FOUND"
        assert ensure_visible({"status": "active"}, None, "X", "Product") == {"status": "active"}

    def test_order_scope(self):
        assert order_scope(make_context("support")) is None
        assert order_scope(make_context("customer", user_id=9)) == 9
        assert order_scope(make_context("vendor", user_id=3)) == 3
