"""
省份数据与通用校验测试
"""
from sj_core.utils.governorates import (
    GOVERNORATES,
    get_all_regions,
    get_governorate_by_code,
    get_governorate_options,
    get_governorates_by_region,
    resolve_governorate,
)
from sj_core.utils.validators import (
    is_valid_email,
    is_valid_phone,
    is_valid_sku,
    is_valid_slug,
    sanitize_string,
    slugify,
    validate_password_policy,
)


class TestGovernorates:
    def test_all_nineteen(self):
        assert len(GOVERNORATES) == 19
        assert len({gov.code for gov in GOVERNORATES}) == 19

    def test_lookup(self):
        baghdad = get_governorate_by_code("IQ-BG")
        assert baghdad.name_ar == "بغداد"
        assert baghdad.region == "Central Iraq"

    def test_resolve_code_or_name(self):
        assert resolve_governorate("iq-ba").name_en == "Basra"
        assert resolve_governorate("erbil").code == "IQ-AR"
        assert resolve_governorate("Atlantis") is None

    def test_regions(self):
        assert get_all_regions() == [
            "Central Iraq",
            "Northern Iraq",
            "Southern Iraq",
            "Kurdistan Region",
            "Western Iraq",
        ]
        kurdistan = {gov.name_en for gov in get_governorates_by_region("Kurdistan Region")}
        assert kurdistan == {"Sulaymaniyah", "Erbil", "Duhok", "Halabja"}

    def test_options_locale(self):
        assert get_governorate_options()[0] == {"value": "IQ-BG", "label": "Baghdad"}
        assert get_governorate_options("ar")[0] == {"value": "IQ-BG", "label": "بغداد"}


class TestValidators:
    def test_slugify(self):
        assert slugify("Samsung Galaxy S24") == "samsung-galaxy-s24"
        assert slugify("  Café & Bar!! ") == "cafe-bar"
        assert is_valid_slug(slugify("Apple iPhone 15 Pro"))
        assert not is_valid_slug("Bad Slug")

    def test_phone(self):
        assert is_valid_phone("+9647701234567")
        assert is_valid_phone("07701234567")
        assert is_valid_phone("0770 123 4567")
        assert not is_valid_phone("")
        assert not is_valid_phone("phone")

    def test_email(self):
        assert is_valid_email("user@example.com")
        assert not is_valid_email("user@example")

    def test_sku(self):
        assert is_valid_sku("SM-S24-128")
        assert not is_valid_sku("-leading-dash")
        assert not is_valid_sku("A")

    def test_password_policy(self):
        assert validate_password_policy("Str0ng!Pass") == []
        errors = validate_password_policy("weak")
        assert "Password must be at least 8 characters" in errors
        assert "Password must contain at least one uppercase letter" in errors
        assert "Password must contain at least one number" in errors
        assert "Password must contain at least one special character" in errors

    def test_sanitize(self):
        assert sanitize_string(' <b>"Hi"</b> ') == "bHi/b"
