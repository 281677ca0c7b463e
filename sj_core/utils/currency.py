"""
货币换算与格式化（IQD / USD）

价格以 IQD 整数存储，展示时可换算为 USD（两位小数）。
数字一律使用西文数字和 en-US 千分位，舍入方式为四舍五入（half-up）。
"""
import re
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Literal, Optional, Union

Currency = Literal["IQD", "USD"]
CurrencyDisplay = Literal["symbol", "code", "name"]
Number = Union[int, float, Decimal]

SUPPORTED_CURRENCIES = ("IQD", "USD")
DEFAULT_CURRENCY: Currency = "IQD"

# 1 USD = 1320 IQD
IQD_TO_USD = 1320

CURRENCY_SYMBOLS = {
    "IQD": "د.ع.",
    "USD": "$",
}

CURRENCY_DECIMALS = {
    "IQD": 0,
    "USD": 2,
}

CURRENCY_NAMES = {
    "IQD": "Iraqi Dinar",
    "USD": "US Dollar",
}


@dataclass(frozen=True)
class ConversionResult:
    """换算结果"""
    original_amount: Number
    original_currency: Currency
    converted_amount: Number
    converted_currency: Currency
    exchange_rate: int


@dataclass(frozen=True)
class PriceWithCurrency:
    """带货币信息的价格"""
    amount: Number
    currency: Currency
    formatted: str
    symbol: str


@dataclass(frozen=True)
class FormattedCurrency:
    """格式化结果及元数据"""
    value: str
    numeric_value: Number
    currency: Currency
    locale: str = "en-US"


def _check_currency(currency: str) -> None:
    if currency not in SUPPORTED_CURRENCIES:
        raise ValueError(f"Unsupported currency: {currency}")


def _format_number(
    amount: Number,
    min_fraction_digits: int = 0,
    max_fraction_digits: int = 0,
    use_grouping: bool = True
) -> str:
    """en-US 数字格式化（half-up 舍入）"""
    max_fd = max(max_fraction_digits, min_fraction_digits)
    value = Decimal(str(amount)).quantize(Decimal(1).scaleb(-max_fd), rounding=ROUND_HALF_UP)
    if value == 0:
        value = abs(value)

    text = format(value, f"{',' if use_grouping else ''}.{max_fd}f")

    if max_fd > min_fraction_digits and "." in text:
        integer, fraction = text.split(".")
        fraction = fraction.rstrip("0").ljust(min_fraction_digits, "0")
        text = f"{integer}.{fraction}" if fraction else integer

    return text


_FLOAT_PREFIX = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")


def _parse_float_prefix(text: str) -> Optional[float]:
    """解析字符串开头的数字，解析不到返回 None"""
    match = _FLOAT_PREFIX.match(text.strip())
    if not match:
        return None
    return float(match.group(0))


# ========== 换算 ==========

def convert_iqd_to_usd(amount_in_iqd: Number) -> Number:
    """IQD 换算为 USD，例如 1320 -> 1.0"""
    return amount_in_iqd / IQD_TO_USD


def convert_usd_to_iqd(amount_in_usd: Number) -> Number:
    """USD 换算为 IQD，例如 1 -> 1320"""
    return amount_in_usd * IQD_TO_USD


def convert_currency(amount: Number, from_currency: Currency, to_currency: Currency) -> Number:
    """货币换算，同币种原样返回"""
    _check_currency(from_currency)
    _check_currency(to_currency)

    if from_currency == to_currency:
        return amount

    if from_currency == "IQD" and to_currency == "USD":
        return convert_iqd_to_usd(amount)

    return convert_usd_to_iqd(amount)


def convert_currency_with_details(
    amount: Number,
    from_currency: Currency,
    to_currency: Currency
) -> ConversionResult:
    """换算并返回汇率等元数据"""
    converted = convert_currency(amount, from_currency, to_currency)
    exchange_rate = 1 if from_currency == to_currency else IQD_TO_USD

    return ConversionResult(
        original_amount=amount,
        original_currency=from_currency,
        converted_amount=converted,
        converted_currency=to_currency,
        exchange_rate=exchange_rate
    )


def get_currency_symbol(currency: Currency) -> str:
    _check_currency(currency)
    return CURRENCY_SYMBOLS[currency]


def get_currency_decimals(currency: Currency) -> int:
    _check_currency(currency)
    return CURRENCY_DECIMALS[currency]


# ========== 通用价格格式化 ==========

def format_price(amount: Number, currency: Currency) -> str:
    """格式化价格

    USD 符号在前（$196.97，负数为 -$50.25），IQD 符号在后（260,000 د.ع.）
    """
    decimals = get_currency_decimals(currency)
    symbol = get_currency_symbol(currency)
    formatted = _format_number(amount, decimals, decimals)

    if currency == "USD":
        if amount < 0:
            return f"-{symbol}{formatted.replace('-', '')}"
        return f"{symbol}{formatted}"

    return f"{formatted} {symbol}"


def format_price_with_currency(amount: Number, currency: Currency) -> PriceWithCurrency:
    return PriceWithCurrency(
        amount=amount,
        currency=currency,
        formatted=format_price(amount, currency),
        symbol=get_currency_symbol(currency)
    )


def convert_and_format_price(amount: Number, from_currency: Currency, to_currency: Currency) -> str:
    """换算后格式化，例如 260000 IQD -> "$196.97" """
    converted = convert_currency(amount, from_currency, to_currency)
    return format_price(converted, to_currency)


def parse_formatted_price(formatted_price: str) -> Optional[float]:
    """把格式化后的价格解析回数字，失败返回 None"""
    if not formatted_price or not isinstance(formatted_price, str):
        return None

    normalized = re.sub(r"[$د\sع]", "", formatted_price).replace(",", "")

    # 只保留最后一个小数点
    last_dot = normalized.rfind(".")
    if last_dot != -1:
        normalized = normalized[:last_dot].replace(".", "") + normalized[last_dot:]

    return _parse_float_prefix(normalized)


# ========== 紧凑格式 ==========

_COMPACT_UNITS = [
    (Decimal(1), ""),
    (Decimal(1_000), "K"),
    (Decimal(1_000_000), "M"),
    (Decimal(1_000_000_000), "B"),
    (Decimal(1_000_000_000_000), "T"),
]


def _compact_number(amount: Number) -> str:
    """紧凑数字：保留一位小数，去掉 .0，达到 1000 时进位到下一个单位"""
    value = Decimal(str(amount))
    abs_value = abs(value)

    index = 0
    for i, (threshold, _) in enumerate(_COMPACT_UNITS):
        if abs_value >= threshold:
            index = i

    one_decimal = Decimal("0.1")
    scaled = (abs_value / _COMPACT_UNITS[index][0]).quantize(one_decimal, rounding=ROUND_HALF_UP)
    if scaled >= 1000 and index < len(_COMPACT_UNITS) - 1:
        index += 1
        scaled = (abs_value / _COMPACT_UNITS[index][0]).quantize(one_decimal, rounding=ROUND_HALF_UP)

    text = _format_number(scaled, 0, 1, use_grouping=False) + _COMPACT_UNITS[index][1]
    if value < 0 and scaled != 0:
        text = f"-{text}"
    return text


# ========== IQD ==========

def format_iqd(
    amount: Number,
    use_grouping: bool = True,
    currency_display: CurrencyDisplay = "symbol",
    min_fraction_digits: int = 0,
    max_fraction_digits: int = 0
) -> str:
    """格式化伊拉克第纳尔

    symbol: "260,000 د.ع."  code: "IQD 260,000"  name: "260,000 Iraqi Dinar"
    """
    formatted = _format_number(amount, min_fraction_digits, max_fraction_digits, use_grouping)

    if currency_display == "code":
        return f"IQD {formatted}"
    if currency_display == "name":
        return f"{formatted} {CURRENCY_NAMES['IQD']}"
    return f"{formatted} {CURRENCY_SYMBOLS['IQD']}"


def format_iqd_with_meta(amount: Number, **options) -> FormattedCurrency:
    return FormattedCurrency(value=format_iqd(amount, **options), numeric_value=amount, currency="IQD")


def parse_iqd(formatted_value: str) -> Optional[float]:
    """解析 IQD 字符串，例如 "IQD 260,000" -> 260000"""
    if not formatted_value or not isinstance(formatted_value, str):
        return None

    normalized = re.sub(r"IQD|د\.ع|[^\d.-]", "", formatted_value)
    return _parse_float_prefix(normalized)


def format_iqd_compact(amount: Number, use_symbol: bool = True) -> str:
    """紧凑格式：1500000 -> "1.5M د.ع."，use_symbol=False 时为 "IQD 1.5M" """
    formatted = _compact_number(amount)
    if use_symbol:
        return f"{formatted} {CURRENCY_SYMBOLS['IQD']}"
    return f"IQD {formatted}"


# ========== USD ==========

def format_usd(
    amount: Number,
    use_grouping: bool = True,
    currency_display: CurrencyDisplay = "symbol",
    min_fraction_digits: int = 2,
    max_fraction_digits: int = 2
) -> str:
    """格式化美元

    symbol: "$196.97"  code: "USD 196.97"  name: "196.97 US Dollar"
    """
    formatted = _format_number(amount, min_fraction_digits, max_fraction_digits, use_grouping)

    if currency_display == "code":
        return f"USD {formatted}"
    if currency_display == "name":
        return f"{formatted} {CURRENCY_NAMES['USD']}"
    return f"${formatted}"


def format_usd_with_meta(amount: Number, **options) -> FormattedCurrency:
    return FormattedCurrency(value=format_usd(amount, **options), numeric_value=amount, currency="USD")


def parse_usd(formatted_value: str) -> Optional[float]:
    """解析 USD 字符串，例如 "$1,500.50" -> 1500.5"""
    if not formatted_value or not isinstance(formatted_value, str):
        return None

    normalized = re.sub(r"USD|[$,\s]", "", formatted_value)
    return _parse_float_prefix(normalized)


def format_usd_compact(amount: Number, use_symbol: bool = True) -> str:
    """紧凑格式：1500.5 -> "$1.5K"，use_symbol=False 时为 "USD1.5K" """
    symbol = "$" if use_symbol else "USD"
    return f"{symbol}{_compact_number(amount)}"


def format_usd_with_optional_cents(amount: Number, show_cents: bool = True) -> str:
    """整数金额可不显示分：1500 -> "$1,500" """
    if not show_cents and amount % 1 == 0:
        return format_usd(amount, min_fraction_digits=0, max_fraction_digits=0)
    return format_usd(amount)
