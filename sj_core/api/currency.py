"""
货币 API 路由（IQD / USD 换算与格式化）
"""
from dataclasses import asdict
from typing import Literal, Optional

from fastapi import APIRouter, Query

from sj_core.config import get_settings
from sj_core.utils.currency import (
    CURRENCY_NAMES,
    IQD_TO_USD,
    convert_currency_with_details,
    format_price,
    get_currency_symbol,
)
from .models import ApiResponse

router = APIRouter(prefix="/currency", tags=["Currency"])

CurrencyParam = Literal["IQD", "USD"]


@router.get("/convert", response_model=ApiResponse[dict])
async def convert(
    amount: float = Query(..., description="金额"),
    from_currency: CurrencyParam = Query(..., alias="from"),
    to_currency: CurrencyParam = Query(..., alias="to")
):
    """换算金额，返回原值、结果、汇率与格式化文本"""
    result = convert_currency_with_details(amount, from_currency, to_currency)
    data = asdict(result)
    data["formatted"] = format_price(result.converted_amount, to_currency)
    return ApiResponse.ok(data)


@router.get("/format", response_model=ApiResponse[dict])
async def format_amount(
    amount: float = Query(..., description="金额"),
    currency: Optional[CurrencyParam] = Query(None, description="缺省为站点默认货币")
):
    currency = currency or get_settings().default_currency
    return ApiResponse.ok({
        "amount": amount,
        "currency": currency,
        "symbol": get_currency_symbol(currency),
        "formatted": format_price(amount, currency),
    })


@router.get("/rates", response_model=ApiResponse[dict])
async def get_rates():
    """固定汇率：1 USD = 1320 IQD"""
    return ApiResponse.ok({
        "base": "USD",
        "rates": {"USD": 1, "IQD": IQD_TO_USD},
        "currencies": CURRENCY_NAMES,
    })
