"""
通用校验工具
"""
import re
import unicodedata
from typing import List

SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
# E.164 国际号码
PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{1,14}$")
# 伊拉克手机号：+9647XXXXXXXXX 或 07XXXXXXXXX
IRAQ_MOBILE_PATTERN = re.compile(r"^(?:\+964|00964|0)?7[0-9]{9}$")
SKU_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{1,99}$")
POSTAL_CODE_PATTERN = re.compile(r"^[A-Z0-9\s-]{3,10}$", re.IGNORECASE)

# 密码策略
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 100


def is_valid_slug(value: str) -> bool:
    return bool(SLUG_PATTERN.match(value or ""))


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match(value or ""))


def is_valid_phone(value: str) -> bool:
    """校验国际号码或伊拉克本地手机号"""
    if not value:
        return False
    compact = re.sub(r"[\s()-]", "", value)
    return bool(PHONE_PATTERN.match(compact) or IRAQ_MOBILE_PATTERN.match(compact))


def is_valid_sku(value: str) -> bool:
    return bool(SKU_PATTERN.match(value or ""))


def slugify(value: str) -> str:
    """生成 URL 友好的 slug，例如 "Samsung Galaxy S24" -> "samsung-galaxy-s24" """
    normalized = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", normalized.lower()).strip("-")
    return slug


def validate_password_policy(password: str) -> List[str]:
    """返回不满足密码策略的原因列表（空列表表示通过）"""
    errors: List[str] = []

    if len(password) < PASSWORD_MIN_LENGTH:
        errors.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
    if len(password) > PASSWORD_MAX_LENGTH:
        errors.append(f"Password must not exceed {PASSWORD_MAX_LENGTH} characters")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"[0-9]", password):
        errors.append("Password must contain at least one number")
    if not re.search(r"[^A-Za-z0-9\s]", password):
        errors.append("Password must contain at least one special character")

    return errors


def sanitize_string(value: str) -> str:
    """去掉尖括号和引号"""
    return re.sub(r"[<>'\"]", "", value).strip()
