"""
伊拉克省份数据（ISO 3166-2:IQ）
地址的 governorate 字段以此表校验
"""
from dataclasses import dataclass, asdict
from typing import Dict, List, Literal, Optional

Region = Literal[
    "Central Iraq",
    "Southern Iraq",
    "Northern Iraq",
    "Western Iraq",
    "Kurdistan Region",
]


@dataclass(frozen=True)
class Governorate:
    code: str
    name_en: str
    name_ar: str
    region: Region
    capital: str
    capital_ar: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


GOVERNORATES: List[Governorate] = [
    Governorate("IQ-BG", "Baghdad", "بغداد", "Central Iraq", "Baghdad", "بغداد"),
    Governorate("IQ-NI", "Nineveh", "نينوى", "Northern Iraq", "Mosul", "الموصل"),
    Governorate("IQ-BA", "Basra", "البصرة", "Southern Iraq", "Basra", "البصرة"),
    Governorate("IQ-SU", "Sulaymaniyah", "السليمانية", "Kurdistan Region", "Sulaymaniyah", "السليمانية"),
    Governorate("IQ-AR", "Erbil", "أربيل", "Kurdistan Region", "Erbil", "أربيل"),
    Governorate("IQ-DI", "Diyala", "ديالى", "Central Iraq", "Baqubah", "بعقوبة"),
    Governorate("IQ-AN", "Anbar", "الأنبار", "Western Iraq", "Ramadi", "الرمادي"),
    Governorate("IQ-KI", "Kirkuk", "كركوك", "Northern Iraq", "Kirkuk", "كركوك"),
    Governorate("IQ-NA", "Najaf", "النجف", "Central Iraq", "Najaf", "النجف"),
    Governorate("IQ-KA", "Karbala", "كربلاء", "Central Iraq", "Karbala", "كربلاء"),
    Governorate("IQ-BB", "Babylon", "بابل", "Central Iraq", "Hillah", "الحلة"),
    Governorate("IQ-WA", "Wasit", "واسط", "Central Iraq", "Kut", "الكوت"),
    Governorate("IQ-SD", "Saladin", "صلاح الدين", "Central Iraq", "Tikrit", "تكريت"),
    Governorate("IQ-DQ", "Dhi Qar", "ذي قار", "Southern Iraq", "Nasiriyah", "الناصرية"),
    Governorate("IQ-MA", "Maysan", "ميسان", "Southern Iraq", "Amarah", "العمارة"),
    Governorate("IQ-MU", "Muthanna", "المثنى", "Southern Iraq", "Samawah", "السماوة"),
    Governorate("IQ-DA", "Duhok", "دهوك", "Kurdistan Region", "Duhok", "دهوك"),
    Governorate("IQ-QA", "Diwaniyah", "القادسية", "Southern Iraq", "Diwaniyah", "الديوانية"),
    Governorate("IQ-HA", "Halabja", "حلبجة", "Kurdistan Region", "Halabja", "حلبجة"),
]

_BY_CODE = {gov.code: gov for gov in GOVERNORATES}


def get_governorate_by_code(code: str) -> Optional[Governorate]:
    return _BY_CODE.get(code)


def get_governorate_by_name(name_en: str) -> Optional[Governorate]:
    """按英文名查找（忽略大小写）"""
    name = name_en.lower()
    for gov in GOVERNORATES:
        if gov.name_en.lower() == name:
            return gov
    return None


def resolve_governorate(value: str) -> Optional[Governorate]:
    """按代码或英文名查找"""
    return get_governorate_by_code(value.upper()) or get_governorate_by_name(value)


def get_governorates_by_region(region: str) -> List[Governorate]:
    return [gov for gov in GOVERNORATES if gov.region == region]


def get_all_regions() -> List[str]:
    """所有地区（保持首次出现的顺序）"""
    return list(dict.fromkeys(gov.region for gov in GOVERNORATES))


def get_governorate_options(locale: str = "en") -> List[Dict[str, str]]:
    """下拉选项：[{value: code, label: 名称}]"""
    return [
        {"value": gov.code, "label": gov.name_ar if locale == "ar" else gov.name_en}
        for gov in GOVERNORATES
    ]
