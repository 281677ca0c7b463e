"""
货币换算与格式化测试
"""
import pytest

from sj_core.utils.currency import (
    IQD_TO_USD,
    convert_and_format_price,
    convert_currency,
    convert_currency_with_details,
    format_iqd,
    format_iqd_compact,
    format_price,
    format_usd,
    format_usd_compact,
    format_usd_with_optional_cents,
    get_currency_symbol,
    parse_formatted_price,
    parse_iqd,
    parse_usd,
)


class TestConversion:
    def test_fixed_rate(self):
        assert IQD_TO_USD == 1320
        assert convert_currency(1320, "IQD", "USD") == 1
        assert convert_currency(1, "USD", "IQD") == 1320

    def test_same_currency_returns_input(self):
        assert convert_currency(260000, "IQD", "IQD") == 260000
        assert convert_currency(19.99, "USD", "USD") == 19.99

    def test_unsupported_currency(self):
        with pytest.raises(ValueError):
            convert_currency(100, "EUR", "USD")

    def test_details_report_rate(self):
        result = convert_currency_with_details(260000, "IQD", "USD")
        assert result.exchange_rate == 1320
        assert result.original_amount == 260000
        assert result.converted_currency == "USD"

        same = convert_currency_with_details(5, "USD", "USD")
        assert same.exchange_rate == 1
        assert same.converted_amount == 5


class TestFormatting:
    def test_iqd_symbol_after_amount(self):
        assert format_price(260000, "IQD") == "260,000 د.ع."

    def test_usd_symbol_before_amount(self):
        assert format_price(196.97, "USD") == "$196.97"
        assert format_price(-50.25, "USD") == "-$50.25"

    def test_half_up_rounding(self):
        assert format_price(0.125, "USD") == "$0.13"
        assert format_price(2.5, "IQD") == "3 د.ع."

    def test_convert_and_format(self):
        assert convert_and_format_price(260000, "IQD", "USD") == "$196.97"
        assert convert_and_format_price(1, "USD", "IQD") == "1,320 د.ع."

    def test_iqd_display_modes(self):
        assert format_iqd(260000) == "260,000 د.ع."
        assert format_iqd(260000, currency_display="code") == "IQD 260,000"
        assert format_iqd(260000, currency_display="name") == "260,000 Iraqi Dinar"
        assert format_iqd(260000, use_grouping=False, currency_display="code") == "IQD 260000"

    def test_usd_display_modes(self):
        assert format_usd(1500.5) == "$1,500.50"
        assert format_usd(1500.5, currency_display="code") == "USD 1,500.50"
        assert format_usd(1500.5, currency_display="name") == "1,500.50 US Dollar"

    def test_optional_cents(self):
        assert format_usd_with_optional_cents(1500, show_cents=False) == "$1,500"
        assert format_usd_with_optional_cents(1500) == "$1,500.00"
        assert format_usd_with_optional_cents(1500.5, show_cents=False) == "$1,500.50"

    def test_symbols(self):
        assert get_currency_symbol("USD") == "$"
        assert get_currency_symbol("IQD") == "د.ع."


class TestCompact:
    def test_iqd_compact(self):
        assert format_iqd_compact(1500000) == "1.5M د.ع."
        assert format_iqd_compact(1500000, use_symbol=False) == "IQD 1.5M"

    def test_usd_compact(self):
        assert format_usd_compact(1500.5) == "$1.5K"
        assert format_usd_compact(1500.5, use_symbol=False) == "USD1.5K"

    def test_rounds_up_into_next_unit(self):
        assert format_usd_compact(999950) == "$1M"

    def test_small_amounts_unscaled(self):
        assert format_usd_compact(950) == "$950"


class TestParsing:
    def test_parse_formatted_price(self):
        assert parse_formatted_price("260,000 د.ع.") == 260000
        assert parse_formatted_price("$1,500.50") == 1500.5

    def test_parse_invalid(self):
        assert parse_formatted_price("") is None
        assert parse_formatted_price("abc") is None
        assert parse_iqd("") is None
        assert parse_usd("not a price") is None

    def test_parse_iqd_and_usd(self):
        assert parse_iqd("IQD 260,000") == 260000
        assert parse_iqd("260,000 د.ع.") == 260000
        assert parse_usd("$1,500.50") == 1500.5
        assert parse_usd("USD 42") == 42
