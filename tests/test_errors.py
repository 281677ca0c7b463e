"""
错误体系与数据库约束翻译测试
"""
import json

from pydantic import BaseModel, ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError

from sj_core.utils.errors import (
    ConfigurationError,
    ConflictError,
    InsufficientStockError,
    InternalServerError,
    NotFoundError,
    ProblemDetail,
    RateLimitError,
    ValidationError,
    format_validation_errors,
    handle_error,
    translate_integrity_error,
)


class FakeDriverError(Exception):
    """模拟 asyncpg 异常（带 sqlstate 和 constraint_name）"""

    def __init__(self, sqlstate, constraint_name=None):
        super().__init__("driver error")
        self.sqlstate = sqlstate
        self.constraint_name = constraint_name


class AdaptedError(Exception):
    """模拟 SQLAlchemy 适配层包装的异常，真实错误在 __cause__"""


def _integrity_error(sqlstate, constraint=None, wrapped=False):
    driver = FakeDriverError(sqlstate, constraint)
    if wrapped:
        orig = AdaptedError("adapted")
        orig.__cause__ = driver
    else:
        orig = driver
    return IntegrityError("INSERT ...", {}, orig)


def _body(response):
    return json.loads(response.body)


class TestEnvelope:
    def test_problem_detail_accepts_field_names_and_extras(self):
        detail = ProblemDetail(title="Conflict", status_code=409, code="SKU_ALREADY_EXISTS", sku="SM-1")

        assert detail.model_dump(by_alias=True, exclude_none=True) == {
            "type": "about:blank",
            "title": "Conflict",
            "statusCode": 409,
            "code": "SKU_ALREADY_EXISTS",
            "sku": "SM-1",
        }
        assert ProblemDetail.model_validate({"title": "Conflict", "statusCode": 409}).status_code == 409

    def test_not_found_envelope(self):
        response = NotFoundError("PRODUCT_NOT_FOUND", "Product").to_response()
        body = _body(response)

        assert response.status_code == 404
        assert body["success"] is False
        assert body["message"] == "Product not found"
        assert body["error"]["statusCode"] == 404
        assert body["error"]["code"] == "PRODUCT_NOT_FOUND"
        assert body["error"]["title"] == "Not Found"
        assert body["error"]["type"] == "about:blank"

    def test_rate_limit_extra(self):
        error = RateLimitError(retry_after=30, headers={"Retry-After": "30"})
        response = error.to_response()

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "30"
        assert _body(response)["error"]["retryAfter"] == 30

    def test_insufficient_stock_extras(self):
        error = InsufficientStockError("SM-S24-128", requested=3, available=2)
        body = _body(error.to_response())

        assert error.status_code == 409
        assert body["error"]["code"] == "INSUFFICIENT_STOCK"
        assert body["error"]["sku"] == "SM-S24-128"
        assert body["error"]["requested"] == 3
        assert body["error"]["available"] == 2

    def test_configuration_error_is_not_operational(self):
        error = ConfigurationError("Missing settings", missing=["SJ__SECRET_KEY"])
        assert error.status_code == 500
        assert error.code == "CONFIGURATION_ERROR"
        assert error.is_operational is False
        assert error.extra["missing"] == ["SJ__SECRET_KEY"]


class TestTranslateIntegrityError:
    def test_known_unique_constraint(self):
        error = translate_integrity_error(_integrity_error("23505", "uq_products_sku"))
        assert isinstance(error, ConflictError)
        assert error.code == "SKU_ALREADY_EXISTS"

    def test_unknown_unique_constraint(self):
        error = translate_integrity_error(_integrity_error("23505", "uq_something_else"))
        assert error.status_code == 409
        assert error.code == "DUPLICATE_RESOURCE"

    def test_wrapped_driver_error(self):
        error = translate_integrity_error(_integrity_error("23505", "uq_users_email", wrapped=True))
        assert error.code == "EMAIL_ALREADY_EXISTS"

    def test_foreign_key_on_write(self):
        error = translate_integrity_error(_integrity_error("23503", "fk_products_brand_id"))
        assert isinstance(error, ValidationError)
        assert error.status_code == 400
        assert error.code == "REFERENCE_NOT_FOUND"

    def test_foreign_key_on_delete(self):
        error = translate_integrity_error(_integrity_error("23503", "fk_products_brand_id"), operation="delete")
        assert error.status_code == 409
        assert error.code == "RESOURCE_IN_USE"

    def test_check_and_not_null(self):
        for sqlstate in ("23514", "23502"):
            error = translate_integrity_error(_integrity_error(sqlstate, "ck_products_price"))
            assert error.status_code == 400
            assert error.code == "CONSTRAINT_VIOLATION"

    def test_unknown_sqlstate(self):
        error = translate_integrity_error(_integrity_error("23P01"))
        assert isinstance(error, InternalServerError)
        assert error.code == "DATABASE_INTEGRITY_ERROR"


class TestHandleError:
    def test_passthrough(self):
        original = NotFoundError("ORDER_NOT_FOUND", "Order")
        assert handle_error(original) is original

    def test_pydantic_validation(self):
        class Payload(BaseModel):
            quantity: int

        try:
            Payload(quantity="many")
        except PydanticValidationError as exc:
            error = handle_error(exc)

        assert error.status_code == 400
        assert error.code == "VALIDATION_ERROR"
        assert "quantity" in error.details

    def test_integrity_error(self):
        error = handle_error(_integrity_error("23505", "uq_brands_slug"))
        assert error.code == "SLUG_ALREADY_EXISTS"

    def test_unexpected_error(self):
        error = handle_error(RuntimeError("boom"))
        assert error.status_code == 500
        assert error.code == "INTERNAL_ERROR"
        assert error.is_operational is False

    def test_format_strips_location_prefix(self):
        errors = [
            {"loc": ("body", "items", 0, "quantity"), "msg": "must be positive"},
            {"loc": ("query", "page"), "msg": "must be >= 1"},
            {"loc": (), "msg": "bad payload"},
        ]
        assert format_validation_errors(errors) == {
            "items.0.quantity": ["must be positive"],
            "page": ["must be >= 1"],
            "_root": ["bad payload"],
        }
