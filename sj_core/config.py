"""
Sharq Aljazeera Configuration Management
遵循约束：环境变量前缀 SJ__
"""
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, validator
from functools import lru_cache

from sj_core.utils.errors import ConfigurationError


class Settings(BaseSettings):
    """全局配置类"""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="SJ__",
        case_sensitive=False
    )

    # Database
    db_host: str = Field(default="localhost")
    db_port: int = Field(default=5432)
    db_name: str = Field(default="sharq")
    db_user: str = Field(default="sharq")
    db_password: str = Field(default="")
    db_pool_size: int = Field(default=20)
    db_max_overflow: int = Field(default=40)

    # Redis
    redis_host: str = Field(default="localhost")
    redis_port: int = Field(default=6379)
    redis_db: int = Field(default=0)
    redis_password: Optional[str] = Field(default=None)

    # API Settings
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)
    api_prefix: str = Field(default="/api")
    api_title: str = Field(default="Sharq Aljazeera API")
    api_version: str = Field(default="1.0.0")
    api_debug: bool = Field(default=False)
    cors_allowed_origins: list[str] = Field(default=["http://localhost:3000"])

    # Auth
    secret_key: str = Field(default="change-me-in-production")
    algorithm: str = Field(default="HS256")
    auth_base_url: str = Field(default="http://localhost:3000")
    session_expire_days: int = Field(default=30)
    session_update_age_hours: int = Field(default=24)
    require_email_verification: bool = Field(default=True)
    send_login_notifications: bool = Field(default=False)
    validate_env_on_startup: bool = Field(default=True)

    # OAuth
    google_client_id: Optional[str] = Field(default=None)
    google_client_secret: Optional[str] = Field(default=None)
    facebook_client_id: Optional[str] = Field(default=None)
    facebook_client_secret: Optional[str] = Field(default=None)
    apple_client_id: Optional[str] = Field(default=None)
    apple_client_secret: Optional[str] = Field(default=None)

    # Email (SMTP)
    email_enabled: bool = Field(default=False)
    email_host: str = Field(default="")
    email_port: int = Field(default=587)
    email_secure: bool = Field(default=False)
    email_user: str = Field(default="")
    email_password: str = Field(default="")
    email_from_name: str = Field(default="Sharq Aljazeera")
    email_from_address: str = Field(default="")
    email_timeout: int = Field(default=10)

    # Monitoring
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")  # json or text

    # Rate Limiting
    rate_limit_enabled: bool = Field(default=True)
    rate_limit_backend: str = Field(default="memory")  # memory or redis

    # 业务常量
    default_currency: str = Field(default="IQD")
    order_min_amount: int = Field(default=10)
    order_max_items: int = Field(default=50)

    @validator("api_prefix")
    def validate_api_prefix(cls, v):
        """确保 API 前缀符合规范"""
        if not v.startswith("/api"):
            raise ValueError("API prefix must start with /api")
        return v.rstrip("/")

    @validator("rate_limit_backend")
    def validate_rate_limit_backend(cls, v):
        """限流存储只支持 memory / redis"""
        if v not in ("memory", "redis"):
            raise ValueError("rate_limit_backend must be 'memory' or 'redis'")
        return v

    @property
    def database_url(self) -> str:
        """构建数据库连接字符串"""
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def sync_database_url(self) -> str:
        """构建同步数据库连接字符串（用于 Alembic）"""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def redis_url(self) -> str:
        """构建 Redis 连接字符串"""
        password = f":{self.redis_password}@" if self.redis_password else ""
        return f"redis://{password}{self.redis_host}:{self.redis_port}/{self.redis_db}"


@lru_cache()
def get_settings() -> Settings:
    """获取配置单例"""
    return Settings()


# 启动时必须存在的配置项（字段名 -> 环境变量名）
REQUIRED_AUTH_ENV = {
    "secret_key": "SJ__SECRET_KEY",
    "auth_base_url": "SJ__AUTH_BASE_URL",
    "db_host": "SJ__DB_HOST",
    "db_name": "SJ__DB_NAME",
    "db_user": "SJ__DB_USER",
    "email_host": "SJ__EMAIL_HOST",
    "email_port": "SJ__EMAIL_PORT",
    "email_user": "SJ__EMAIL_USER",
    "email_password": "SJ__EMAIL_PASSWORD",
    "email_from_name": "SJ__EMAIL_FROM_NAME",
    "email_from_address": "SJ__EMAIL_FROM_ADDRESS",
}


def validate_auth_env(settings: Optional[Settings] = None) -> None:
    """检查认证相关配置是否存在（只校验是否为空，不校验格式）"""
    settings = settings or get_settings()

    missing = []
    for field_name, env_name in REQUIRED_AUTH_ENV.items():
        value = getattr(settings, field_name, None)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(env_name)

    if missing:
        raise ConfigurationError(
            detail=f"Missing required environment variables: {', '.join(missing)}",
            missing=missing
        )
