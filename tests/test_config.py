"""
配置测试
"""
import pytest
from pydantic import ValidationError

from sj_core.config import Settings, validate_auth_env
from sj_core.utils.errors import ConfigurationError


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


COMPLETE_EMAIL = {
    "email_host": "smtp.example.com",
    "email_user": "mailer",
    "email_password": "secret",
    "email_from_address": "noreply@example.com",
}


class TestSettings:
    def test_api_prefix_trailing_slash(self):
        assert _settings(api_prefix="/api/").api_prefix == "/api"
        assert _settings(api_prefix="/api/v1").api_prefix == "/api/v1"

    def test_api_prefix_must_start_with_api(self):
        with pytest.raises(ValidationError):
            _settings(api_prefix="/v1")

    def test_rate_limit_backend(self):
        assert _settings(rate_limit_backend="redis").rate_limit_backend == "redis"
        with pytest.raises(ValidationError):
            _settings(rate_limit_backend="memcached")

    def test_database_urls(self):
        settings = _settings(db_user="u", db_password="p", db_host="db", db_port=5433, db_name="shop")
        assert settings.database_url == "postgresql+asyncpg://u:p@db:5433/shop"
        assert settings.sync_database_url == "postgresql://u:p@db:5433/shop"

    def test_redis_url(self):
        assert _settings(redis_host="cache", redis_password=None).redis_url == "redis://cache:6379/0"
        assert _settings(redis_host="cache", redis_password="pw", redis_db=2).redis_url == "redis://:pw@cache:6379/2"

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("SJ__ORDER_MIN_AMOUNT", "2500")
        assert _settings().order_min_amount == 2500


class TestValidateAuthEnv:
    def test_complete(self):
        validate_auth_env(_settings(**COMPLETE_EMAIL))

    def test_missing_email_settings(self):
        with pytest.raises(ConfigurationError) as exc_info:
            validate_auth_env(_settings(email_host="", email_user="", email_password="", email_from_address=""))

        missing = exc_info.value.extra["missing"]
        assert missing == [
            "SJ__EMAIL_HOST",
            "SJ__EMAIL_USER",
            "SJ__EMAIL_PASSWORD",
            "SJ__EMAIL_FROM_ADDRESS",
        ]
        assert "SJ__EMAIL_HOST" in exc_info.value.detail

    def test_blank_secret(self):
        with pytest.raises(ConfigurationError) as exc_info:
            validate_auth_env(_settings(secret_key="   ", **COMPLETE_EMAIL))
        assert exc_info.value.extra["missing"] == ["SJ__SECRET_KEY"]
