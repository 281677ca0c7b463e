"""
Sharq Aljazeera 错误处理系统
参考 RFC7807 Problem Details，统一错误响应：
{"success": false, "message": "...", "error": {..., "statusCode": 409, "code": "..."}}
"""
from typing import Any, Dict, List, Optional, Tuple

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError


class ProblemDetail(BaseModel):
    """RFC7807 Problem Details 模型"""
    type: str = Field(default="about:blank")
    title: str
    status_code: int = Field(alias="statusCode")
    detail: Optional[str] = None
    instance: Optional[str] = None
    code: Optional[str] = None  # 业务错误码
    details: Optional[Any] = None  # 字段级错误

    model_config = ConfigDict(
        populate_by_name=True,
        extra="allow",
        json_schema_extra={
            "example": {
                "type": "about:blank",
                "title": "Conflict",
                "statusCode": 409,
                "detail": "A product with this SKU already exists",
                "code": "SKU_ALREADY_EXISTS"
            }
        },
    )


class SharqException(Exception):
    """Sharq 基础异常类"""

    # 非预期错误（程序缺陷、基础设施故障）记录为 error 级别
    is_operational: bool = True

    def __init__(
        self,
        status_code: int,
        code: str,
        title: str,
        detail: Optional[str] = None,
        details: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
        **kwargs
    ):
        self.status_code = status_code
        self.code = code
        self.title = title
        self.detail = detail
        self.details = details
        self.headers = headers
        self.extra = kwargs
        super().__init__(detail or title)

    @property
    def message(self) -> str:
        return self.detail or self.title

    def to_problem_detail(self, instance: Optional[str] = None) -> ProblemDetail:
        """转换为 Problem Details 格式"""
        return ProblemDetail(
            type="about:blank",
            title=self.title,
            status_code=self.status_code,
            detail=self.detail,
            instance=instance,
            code=self.code,
            details=self.details,
            **self.extra
        )

    def to_response(self, request: Optional[Request] = None) -> JSONResponse:
        """转换为 JSON 响应"""
        instance = str(request.url.path) if request else None
        problem = self.to_problem_detail(instance)

        return JSONResponse(
            status_code=self.status_code,
            content={
                "success": False,
                "message": self.message,
                "error": problem.model_dump(by_alias=True, exclude_none=True)
            },
            headers=self.headers
        )


# 预定义错误类
class BadRequestError(SharqException):
    """400 错误请求"""
    def __init__(self, code: str = "BAD_REQUEST", detail: str = "Bad request", details: Optional[Any] = None):
        super().__init__(
            status_code=400,
            code=code,
            title="Bad Request",
            detail=detail,
            details=details
        )


class ValidationError(SharqException):
    """400 请求数据校验失败"""
    def __init__(
        self,
        code: str = "VALIDATION_ERROR",
        detail: str = "Validation failed",
        details: Optional[Any] = None
    ):
        super().__init__(
            status_code=400,
            code=code,
            title="Validation Failed",
            detail=detail,
            details=details
        )


class AuthenticationError(SharqException):
    """401 未认证"""
    def __init__(self, code: str = "UNAUTHORIZED", detail: str = "Authentication required"):
        super().__init__(
            status_code=401,
            code=code,
            title="Unauthorized",
            detail=detail
        )


class AuthorizationError(SharqException):
    """403 禁止访问"""
    def __init__(self, code: str = "FORBIDDEN", detail: str = "Access denied"):
        super().__init__(
            status_code=403,
            code=code,
            title="Forbidden",
            detail=detail
        )


class NotFoundError(SharqException):
    """404 未找到"""
    def __init__(self, code: str, resource: str):
        super().__init__(
            status_code=404,
            code=code,
            title="Not Found",
            detail=f"{resource} not found"
        )


class ConflictError(SharqException):
    """409 冲突"""
    def __init__(self, code: str, detail: str, **kwargs):
        super().__init__(
            status_code=409,
            code=code,
            title="Conflict",
            detail=detail,
            **kwargs
        )


class PayloadTooLargeError(SharqException):
    """413 请求体过大"""
    def __init__(self, code: str = "PAYLOAD_TOO_LARGE", detail: str = "Request body is too large"):
        super().__init__(
            status_code=413,
            code=code,
            title="Payload Too Large",
            detail=detail
        )


class RateLimitError(SharqException):
    """429 限流"""
    def __init__(
        self,
        code: str = "RATE_LIMIT_EXCEEDED",
        retry_after: Optional[int] = None,
        detail: str = "You have exceeded the rate limit. Please try again later.",
        headers: Optional[Dict[str, str]] = None
    ):
        super().__init__(
            status_code=429,
            code=code,
            title="Too Many Requests",
            detail=detail,
            headers=headers,
            retryAfter=retry_after
        )
        self.retry_after = retry_after


class InternalServerError(SharqException):
    """500 内部错误"""
    is_operational = False

    def __init__(self, code: str = "INTERNAL_ERROR", detail: str = "An internal error occurred", **kwargs):
        super().__init__(
            status_code=500,
            code=code,
            title="Internal Server Error",
            detail=detail,
            **kwargs
        )


class ServiceUnavailableError(SharqException):
    """503 服务不可用"""
    def __init__(self, code: str = "SERVICE_UNAVAILABLE", detail: str = "Service temporarily unavailable"):
        super().__init__(
            status_code=503,
            code=code,
            title="Service Unavailable",
            detail=detail
        )


class ConfigurationError(InternalServerError):
    """配置缺失或无效"""
    def __init__(self, detail: str, **kwargs):
        super().__init__(code="CONFIGURATION_ERROR", detail=detail, **kwargs)


# 领域错误
class InsufficientStockError(ConflictError):
    """库存不足"""
    def __init__(self, sku: str, requested: int, available: Optional[int] = None):
        detail = f"Insufficient stock for {sku}: requested {requested}"
        if available is not None:
            detail += f", available {available}"
        super().__init__(
            code="INSUFFICIENT_STOCK",
            detail=detail,
            sku=sku,
            requested=requested,
            available=available
        )


class InvalidStatusTransitionError(ConflictError):
    """状态流转不合法"""
    def __init__(self, field: str, from_status: Optional[str], to_status: str):
        super().__init__(
            code="INVALID_STATUS_TRANSITION",
            detail=f"Cannot change {field} from '{from_status}' to '{to_status}'",
            field=field,
            fromStatus=from_status,
            toStatus=to_status
        )


class EmailDeliveryError(ServiceUnavailableError):
    """邮件发送失败"""
    def __init__(self, detail: str):
        super().__init__(code="EMAIL_DELIVERY_FAILED", detail=f"Failed to send email: {detail}")


# ========== 数据库约束错误转换 ==========

# 约束名 -> (错误码, 描述)
CONSTRAINT_ERRORS: Dict[str, Tuple[str, str]] = {
    "uq_users_email": ("EMAIL_ALREADY_EXISTS", "A user with this email already exists"),
    "uq_accounts_provider_account": ("ACCOUNT_ALREADY_LINKED", "This provider account is already linked"),
    "uq_user_sessions_token": ("SESSION_TOKEN_CONFLICT", "Session token already exists"),
    "uq_verification_tokens_token": ("TOKEN_CONFLICT", "Verification token already exists"),
    "uq_user_preferences_user": ("PREFERENCES_ALREADY_EXIST", "Preferences already exist for this user"),
    "uq_brands_slug": ("SLUG_ALREADY_EXISTS", "A brand with this slug already exists"),
    "uq_categories_slug": ("SLUG_ALREADY_EXISTS", "A category with this slug already exists"),
    "uq_products_sku": ("SKU_ALREADY_EXISTS", "A product with this SKU already exists"),
    "uq_products_slug": ("SLUG_ALREADY_EXISTS", "A product with this slug already exists"),
    "uq_product_variants_sku": ("SKU_ALREADY_EXISTS", "A variant with this SKU already exists"),
    "uq_product_inventory_product": ("INVENTORY_ALREADY_EXISTS", "Inventory already exists for this product"),
    "uq_variant_inventory_variant": ("INVENTORY_ALREADY_EXISTS", "Inventory already exists for this variant"),
    "uq_carts_user": ("CART_ALREADY_EXISTS", "The user already has a cart"),
    "uq_cart_items_cart_product_variant": ("CART_ITEM_ALREADY_EXISTS", "This item is already in the cart"),
    "uq_favorites_user_product_variant": ("FAVORITE_ALREADY_EXISTS", "This product is already in favorites"),
    "uq_orders_order_number": ("ORDER_NUMBER_ALREADY_EXISTS", "An order with this number already exists"),
    "uq_shipments_tracking_number": ("TRACKING_NUMBER_ALREADY_EXISTS", "A shipment with this tracking number already exists"),
}

UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
NOT_NULL_VIOLATION = "23502"
CHECK_VIOLATION = "23514"


def _driver_error_info(exc: IntegrityError) -> Tuple[Optional[str], Optional[str]]:
    """从驱动异常中提取 SQLSTATE 和约束名"""
    orig = getattr(exc, "orig", None)
    sqlstate = None
    constraint = None

    for candidate in (orig, getattr(orig, "__cause__", None)):
        if candidate is None:
            continue
        sqlstate = sqlstate or getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        constraint = constraint or getattr(candidate, "constraint_name", None)
        diag = getattr(candidate, "diag", None)
        if diag is not None:
            constraint = constraint or getattr(diag, "constraint_name", None)

    return sqlstate, constraint


def translate_integrity_error(exc: IntegrityError, operation: str = "write") -> SharqException:
    """把数据库约束错误转换为领域错误

    Args:
        exc: SQLAlchemy IntegrityError
        operation: "write" 或 "delete"，外键错误在删除时表示资源仍被引用
    """
    sqlstate, constraint = _driver_error_info(exc)

    if sqlstate == UNIQUE_VIOLATION:
        code, detail = CONSTRAINT_ERRORS.get(
            constraint or "", ("DUPLICATE_RESOURCE", "Resource already exists")
        )
        return ConflictError(code=code, detail=detail, constraint=constraint)

    if sqlstate == FOREIGN_KEY_VIOLATION:
        if operation == "delete":
            return ConflictError(
                code="RESOURCE_IN_USE",
                detail="Resource is referenced by other records and cannot be deleted",
                constraint=constraint
            )
        return ValidationError(
            code="REFERENCE_NOT_FOUND",
            detail="Referenced resource does not exist",
            details={"constraint": constraint}
        )

    if sqlstate in (CHECK_VIOLATION, NOT_NULL_VIOLATION):
        return ValidationError(
            code="CONSTRAINT_VIOLATION",
            detail="Data violates a database constraint",
            details={"constraint": constraint}
        )

    return InternalServerError(code="DATABASE_INTEGRITY_ERROR", detail="Database integrity error")


def format_validation_errors(errors: List[Dict[str, Any]]) -> Dict[str, List[str]]:
    """把 pydantic 错误列表转换为 {字段: [错误信息]}"""
    field_errors: Dict[str, List[str]] = {}
    for error in errors:
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path", "header")]
        field = ".".join(loc) or "_root"
        field_errors.setdefault(field, []).append(error.get("msg", "Invalid value"))
    return field_errors


def handle_error(exc: Exception) -> SharqException:
    """把任意异常归类到错误体系（按类型匹配）"""
    if isinstance(exc, SharqException):
        return exc

    if isinstance(exc, (RequestValidationError, PydanticValidationError)):
        return ValidationError(details=format_validation_errors(exc.errors()))

    if isinstance(exc, IntegrityError):
        return translate_integrity_error(exc)

    return InternalServerError()
