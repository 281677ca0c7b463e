"""
认证服务
密码哈希（bcrypt）、访问令牌（JWT）、数据库会话、邮箱验证与密码重置
"""
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple
from uuid import uuid4

import bcrypt
from jose import JWTError, jwt
from sqlalchemy import select, delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from sj_core.config import Settings, get_settings
from sj_core.middleware.auth import AuthContext, SESSION_COOKIE_NAME, create_auth_context
from sj_core.middleware.rate_limit import RateLimitStore, MemoryRateLimitStore
from sj_core.models.users import User, UserSession, VerificationToken, UserPreference, UserActivity
from sj_core.services.base import BaseService, RepositoryMixin
from sj_core.services import email_service
from sj_core.services.email_service import EmailSender, get_email_sender, get_email_subject
from sj_core.utils.errors import (
    AuthenticationError, ConflictError, ValidationError, RateLimitError, SharqException
)
from sj_core.utils.logger import get_logger
from sj_core.utils.validators import is_valid_email, validate_password_policy as check_password_policy

logger = get_logger(__name__)

OAUTH_SCOPES = {
    "google": ("openid", "email", "profile"),
    "facebook": ("email", "public_profile"),
    "apple": ("name", "email"),
}

AUTH_STATUS_MESSAGES = {
    "inactive": "Your account is inactive. Please contact support.",
    "suspended": "Your account has been suspended. Please contact support.",
    "pending_verification": "Please verify your email address before signing in.",
}

RESET_REQUEST_MESSAGE = (
    "If an account exists with this email, you will receive a password reset link shortly."
)
RESET_CONFIRM_MESSAGE = "Password has been reset successfully. You can now sign in with your new password."
SIGN_OUT_MESSAGE = "Successfully signed out"


def get_oauth_scopes(provider: str) -> Tuple[str, ...]:
    """OAuth 提供方申请的权限范围"""
    return OAUTH_SCOPES.get(provider, ())


def map_user_role(role: Optional[str] = None) -> str:
    """外部角色映射为本地角色，未知角色一律为 customer"""
    if role in ("admin", "vendor", "support"):
        return role
    return "customer"


def get_auth_error_message(status: str) -> Optional[str]:
    """账号状态对应的登录提示，active 返回 None"""
    return AUTH_STATUS_MESSAGES.get(status)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


@dataclass(frozen=True)
class OAuthProviderConfig:
    client_id: str
    client_secret: str
    scopes: Tuple[str, ...]


@dataclass(frozen=True)
class AuthConfig:
    """认证配置（由 Settings 派生）"""
    secret_key: str
    algorithm: str = "HS256"
    base_url: str = "http://localhost:3000"
    session_ttl: timedelta = timedelta(days=30)
    update_age: timedelta = timedelta(hours=24)
    cookie_name: str = SESSION_COOKIE_NAME
    require_email_verification: bool = True
    send_login_notifications: bool = False
    verification_token_ttl: timedelta = timedelta(hours=24)
    reset_token_ttl: timedelta = timedelta(hours=1)
    # 登录失败锁定：15 分钟内 5 次失败后锁定 1 小时
    max_login_attempts: int = 5
    login_attempt_window: int = 15 * 60
    login_block_duration: int = 60 * 60
    oauth_providers: Dict[str, OAuthProviderConfig] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "AuthConfig":
        settings = settings or get_settings()

        providers = {}
        for provider in OAUTH_SCOPES:
            client_id = getattr(settings, f"{provider}_client_id")
            client_secret = getattr(settings, f"{provider}_client_secret")
            if client_id and client_secret:
                providers[provider] = OAuthProviderConfig(
                    client_id=client_id,
                    client_secret=client_secret,
                    scopes=get_oauth_scopes(provider),
                )

        return cls(
            secret_key=settings.secret_key,
            algorithm=settings.algorithm,
            base_url=settings.auth_base_url.rstrip("/"),
            session_ttl=timedelta(days=settings.session_expire_days),
            update_age=timedelta(hours=settings.session_update_age_hours),
            require_email_verification=settings.require_email_verification,
            send_login_notifications=settings.send_login_notifications,
            oauth_providers=providers,
        )


@dataclass
class SignInResult:
    """登录结果"""
    access_token: str
    session_token: str
    expires_at: datetime
    user: Dict[str, Any]


class AuthService(BaseService, RepositoryMixin):
    """认证服务"""

    def __init__(
        self,
        config: Optional[AuthConfig] = None,
        store: Optional[RateLimitStore] = None,
        email_sender: Optional[EmailSender] = None
    ):
        super().__init__()
        self.config = config or AuthConfig.from_settings()
        # 登录失败计数与限流共用同一种存储
        self.store = store or MemoryRateLimitStore()
        self.email_sender = email_sender or get_email_sender()

    # ========== 密码处理 ==========

    def hash_password(self, password: str) -> str:
        """哈希密码"""
        # 确保密码不超过72字节（bcrypt限制）
        password_bytes = password.encode('utf-8')[:72]
        return bcrypt.hashpw(password_bytes, bcrypt.gensalt()).decode('utf-8')

    def verify_password(self, plain_password: str, hashed_password: str) -> bool:
        """验证密码"""
        password_bytes = plain_password.encode('utf-8')[:72]
        try:
            return bcrypt.checkpw(password_bytes, hashed_password.encode('utf-8'))
        except ValueError:
            logger.warning("Malformed password hash")
            return False

    def validate_password_policy(self, password: str) -> None:
        """校验密码策略，不满足时抛出 ValidationError"""
        errors = check_password_policy(password)
        if errors:
            raise ValidationError(
                code="WEAK_PASSWORD",
                detail=errors[0],
                details={"password": errors}
            )

    # ========== JWT处理 ==========

    def create_access_token(self, user_id: int, role: str, session_token: str, expires_at: datetime) -> str:
        """创建访问令牌，有效期与会话一致"""
        payload = {
            "sub": str(user_id),
            "sid": session_token,
            "role": role,
            "jti": str(uuid4()),
            "exp": expires_at,
        }
        return jwt.encode(payload, self.config.secret_key, algorithm=self.config.algorithm)

    def decode_token(self, token: str) -> dict:
        """解码JWT令牌"""
        try:
            return jwt.decode(token, self.config.secret_key, algorithms=[self.config.algorithm])
        except JWTError as e:
            raise AuthenticationError(
                code="INVALID_TOKEN",
                detail=f"Token validation failed: {str(e)}"
            )

    # ========== 注册与邮箱验证 ==========

    async def sign_up(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        phone: Optional[str] = None
    ) -> Dict[str, Any]:
        """注册新用户并发送验证邮件"""
        email = normalize_email(email)
        if not is_valid_email(email):
            raise ValidationError(
                code="INVALID_EMAIL",
                detail="Invalid email address",
                details={"email": ["Invalid email address"]}
            )
        self.validate_password_policy(password)

        user_data, token = await self.execute_with_transaction(
            self._sign_up_tx, email, password, first_name.strip(), last_name.strip(), phone
        )
        logger.info("User signed up", user_id=user_data["id"])

        if token:
            url = f"{self.config.base_url}/verify-email?token={token}"
            await self._send_quietly(
                email,
                "email_verification",
                email_service.generate_email_verification_email(first_name, url, "24 hours"),
            )

        return user_data

    async def _sign_up_tx(
        self,
        session: AsyncSession,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        phone: Optional[str]
    ) -> Tuple[Dict[str, Any], Optional[str]]:
        if await self.exists(session, User, email=email):
            raise ConflictError(code="EMAIL_ALREADY_EXISTS", detail="A user with this email already exists")

        status = "pending_verification" if self.config.require_email_verification else "active"
        user = await self.create(session, User, {
            "email": email,
            "password_hash": self.hash_password(password),
            "first_name": first_name,
            "last_name": last_name,
            "phone": phone,
            "role": map_user_role(),
            "status": status,
        })
        session.add(UserPreference(user_id=user.id))

        token = None
        if self.config.require_email_verification:
            token = await self._issue_token(
                session, user, "email_verification", self.config.verification_token_ttl
            )

        await session.flush()
        await session.refresh(user)
        return user.to_dict(), token

    async def _issue_token(
        self,
        session: AsyncSession,
        user: User,
        token_type: str,
        ttl: timedelta
    ) -> str:
        token = secrets.token_urlsafe(32)
        session.add(VerificationToken(
            user_id=user.id,
            token=token,
            type=token_type,
            identifier=user.email,
            expires_at=datetime.now(timezone.utc) + ttl,
        ))
        return token

    async def _consume_token(
        self,
        session: AsyncSession,
        token: str,
        token_type: str
    ) -> Optional[VerificationToken]:
        """取出有效令牌并标记已使用，无效返回 None"""
        now = datetime.now(timezone.utc)
        stmt = (
            update(VerificationToken)
            .where(
                VerificationToken.token == token,
                VerificationToken.type == token_type,
                VerificationToken.used_at.is_(None),
                VerificationToken.expires_at > now,
            )
            .values(used_at=now)
            .returning(VerificationToken)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def verify_email(self, token: str) -> Dict[str, Any]:
        """验证邮箱并激活账号"""
        user_data = await self.execute_with_transaction(self._verify_email_tx, token)
        logger.info("Email verified", user_id=user_data["id"])

        await self._send_quietly(
            user_data["email"],
            "welcome",
            email_service.generate_welcome_email(user_data["first_name"]),
        )
        return user_data

    async def _verify_email_tx(self, session: AsyncSession, token: str) -> Dict[str, Any]:
        record = await self._consume_token(session, token, "email_verification")
        if record is None or record.user_id is None:
            raise ValidationError(code="INVALID_TOKEN", detail="Invalid or expired verification token")

        user = await self.get_by_id(session, User, record.user_id)
        if user is None:
            raise ValidationError(code="INVALID_TOKEN", detail="Invalid or expired verification token")

        user.email_verified = True
        if user.status == "pending_verification":
            user.status = "active"
        session.add(UserActivity(
            user_id=user.id, type="email_verified", description="Email address verified"
        ))
        await session.flush()
        await session.refresh(user)
        return user.to_dict()

    # ========== 登录与会话 ==========

    def _failure_key(self, email: str) -> str:
        return f"login_failures:{email}"

    def _block_key(self, email: str) -> str:
        return f"login_block:{email}"

    async def _check_login_block(self, email: str) -> None:
        try:
            blocked = await self.store.get(self._block_key(email))
            retry_after = await self.store.ttl(self._block_key(email)) if blocked else None
        except Exception as e:
            logger.error("Login block check failed", error=str(e))
            return

        if blocked:
            raise RateLimitError(
                code="ACCOUNT_LOCKED",
                retry_after=int(retry_after or self.config.login_block_duration),
                detail="Too many failed sign-in attempts. Please try again later."
            )

    async def _record_login_failure(self, email: str) -> bool:
        """记录一次失败，达到上限时锁定并返回 True"""
        try:
            key = self._failure_key(email)
            count = await self.store.incr(key)
            if count == 1:
                await self.store.expire(key, self.config.login_attempt_window)
            if count >= self.config.max_login_attempts:
                await self.store.incr(self._block_key(email))
                await self.store.expire(self._block_key(email), self.config.login_block_duration)
                await self.store.delete(key)
                return True
        except Exception as e:
            logger.error("Failed to record login attempt", error=str(e))
        return False

    async def _clear_login_failures(self, email: str) -> None:
        try:
            await self.store.delete(self._failure_key(email))
        except Exception as e:
            logger.error("Failed to clear login attempts", error=str(e))

    async def sign_in(
        self,
        email: str,
        password: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> SignInResult:
        """邮箱密码登录"""
        email = normalize_email(email)
        await self._check_login_block(email)

        try:
            result, first_name = await self.execute_with_transaction(
                self._sign_in_tx, email, password, ip_address, user_agent
            )
        except AuthenticationError as e:
            if e.code == "INVALID_CREDENTIALS":
                locked = await self._record_login_failure(email)
                if locked:
                    logger.warning("Account locked after repeated failures", email=email)
                    await self._send_quietly(
                        email,
                        "account_locked",
                        email_service.generate_account_locked_email(
                            email.split("@")[0], "Too many failed sign-in attempts"
                        ),
                    )
            raise

        await self._clear_login_failures(email)
        logger.info("User signed in", user_id=result.user["id"])

        if self.config.send_login_notifications:
            await self._send_quietly(
                email,
                "login_notification",
                email_service.generate_login_notification_email(
                    first_name,
                    datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC"),
                    location=ip_address,
                    device=user_agent,
                ),
            )
        return result

    async def _sign_in_tx(
        self,
        session: AsyncSession,
        email: str,
        password: str,
        ip_address: Optional[str],
        user_agent: Optional[str]
    ) -> Tuple[SignInResult, str]:
        user = await self.get_by_field(session, User, "email", email)
        if user is None or not self.verify_password(password, user.password_hash):
            raise AuthenticationError(code="INVALID_CREDENTIALS", detail="Invalid email or password")

        if user.status != "active":
            pending_allowed = user.status == "pending_verification" and not self.config.require_email_verification
            if not pending_allowed:
                raise AuthenticationError(
                    code=f"ACCOUNT_{user.status.upper()}",
                    detail=get_auth_error_message(user.status) or "Account is not active"
                )

        now = datetime.now(timezone.utc)
        user_session = await self.create(session, UserSession, {
            "user_id": user.id,
            "session_token": secrets.token_urlsafe(32),
            "expires_at": now + self.config.session_ttl,
            "ip_address": ip_address,
            "user_agent": user_agent,
        })
        user.last_login_at = now
        session.add(UserActivity(
            user_id=user.id,
            type="login",
            description="Signed in with email and password",
            ip_address=ip_address,
            user_agent=user_agent,
        ))
        await session.flush()
        await session.refresh(user)

        result = SignInResult(
            access_token=self.create_access_token(
                user.id, user.role, user_session.session_token, user_session.expires_at
            ),
            session_token=user_session.session_token,
            expires_at=user_session.expires_at,
            user=user.to_dict(),
        )
        return result, user.first_name

    async def sign_out(self, token: Optional[str]) -> None:
        """注销当前会话"""
        if not token:
            raise AuthenticationError(code="NO_SESSION", detail="No active session found")

        try:
            payload = self.decode_token(token)
        except AuthenticationError:
            raise AuthenticationError(code="NO_SESSION", detail="No active session found")

        user_id = await self.execute_with_transaction(self._sign_out_tx, payload.get("sid"))
        if user_id is None:
            raise AuthenticationError(code="NO_SESSION", detail="No active session found")
        logger.info("User signed out", user_id=user_id)

    async def _sign_out_tx(self, session: AsyncSession, session_token: Optional[str]) -> Optional[int]:
        if not session_token:
            return None
        result = await session.execute(
            delete(UserSession)
            .where(UserSession.session_token == session_token)
            .returning(UserSession.user_id)
        )
        user_id = result.scalar_one_or_none()
        if user_id is not None:
            session.add(UserActivity(user_id=user_id, type="logout", description="Signed out"))
        return user_id

    async def resolve_session(self, token: str) -> Optional[AuthContext]:
        """解析访问令牌为认证上下文，无效或过期返回 None"""
        try:
            payload = self.decode_token(token)
        except AuthenticationError:
            return None

        session_token = payload.get("sid")
        if not session_token:
            return None
        return await self.execute_with_transaction(self._resolve_session_tx, session_token)

    async def _resolve_session_tx(self, session: AsyncSession, session_token: str) -> Optional[AuthContext]:
        stmt = (
            select(UserSession, User)
            .join(User, User.id == UserSession.user_id)
            .where(UserSession.session_token == session_token)
        )
        row = (await session.execute(stmt)).first()
        if row is None:
            return None

        user_session, user = row
        now = datetime.now(timezone.utc)
        if user_session.expires_at <= now:
            await session.delete(user_session)
            return None
        if user.status in ("inactive", "suspended"):
            return None

        refreshed = False
        if now - user_session.updated_at >= self.config.update_age:
            # 滑动过期：超过 update_age 后使用则延长会话
            user_session.expires_at = now + self.config.session_ttl
            user_session.updated_at = now
            await session.flush()
            refreshed = True

        return create_auth_context(user, user_session, refreshed=refreshed)

    def issue_token_for_context(self, auth: AuthContext) -> str:
        """会话延长后重新签发访问令牌"""
        return self.create_access_token(auth.user_id, auth.role, auth.session_token, auth.expires_at)

    # ========== 密码重置 ==========

    async def request_password_reset(self, email: str, redirect_to: Optional[str] = None) -> None:
        """申请重置密码（无论邮箱是否存在都返回成功）"""
        email = normalize_email(email)
        issued = await self.execute_with_transaction(self._request_reset_tx, email)
        if issued is None:
            logger.info("Password reset requested for unknown email")
            return

        token, first_name = issued
        base = redirect_to or f"{self.config.base_url}/reset-password"
        reset_url = f"{base}?token={token}"
        await self._send_quietly(
            email,
            "password_reset",
            email_service.generate_password_reset_email(first_name, reset_url, "1 hour"),
        )
        logger.info("Password reset requested")

    async def _request_reset_tx(self, session: AsyncSession, email: str) -> Optional[Tuple[str, str]]:
        user = await self.get_by_field(session, User, "email", email)
        if user is None:
            return None
        token = await self._issue_token(session, user, "password_reset", self.config.reset_token_ttl)
        return token, user.first_name

    async def confirm_password_reset(self, token: str, new_password: str) -> None:
        """使用重置令牌设置新密码，并注销该用户所有会话"""
        self.validate_password_policy(new_password)
        email, first_name = await self.execute_with_transaction(self._confirm_reset_tx, token, new_password)

        await self._send_quietly(
            email,
            "password_changed",
            email_service.generate_password_changed_email(
                first_name, datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
            ),
        )

    async def _confirm_reset_tx(self, session: AsyncSession, token: str, new_password: str) -> Tuple[str, str]:
        record = await self._consume_token(session, token, "password_reset")
        user = await self.get_by_id(session, User, record.user_id) if record and record.user_id else None
        if user is None:
            raise ValidationError(code="INVALID_TOKEN", detail="Invalid or expired reset token")

        user.password_hash = self.hash_password(new_password)
        await session.execute(delete(UserSession).where(UserSession.user_id == user.id))
        session.add(UserActivity(
            user_id=user.id, type="password_change", description="Password reset via email link"
        ))
        await session.flush()
        logger.info("Password reset completed", user_id=user.id)
        return user.email, user.first_name

    # ========== 邮件 ==========

    async def _send_quietly(self, to: str, template_type: str, html: str) -> None:
        """发送认证相关邮件，失败只记录日志"""
        try:
            await self.email_sender.send(to, get_email_subject(template_type), html)
        except SharqException as e:
            logger.warning("Auth email not delivered", template=template_type, code=e.code)


# 全局认证服务实例
_auth_service: Optional[AuthService] = None


def get_auth_service() -> AuthService:
    """获取认证服务单例"""
    global _auth_service
    if _auth_service is None:
        _auth_service = AuthService()
    return _auth_service


def set_auth_service(service: Optional[AuthService]) -> None:
    """替换认证服务实例（测试、按配置切换存储）"""
    global _auth_service
    _auth_service = service
