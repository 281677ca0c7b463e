"""
Sharq Aljazeera 数据库基础模型
遵循约束：UTC 时间、Decimal 金额、统一命名规范
"""
from datetime import datetime, date
from decimal import Decimal
from typing import Any, Dict, Iterable

from sqlalchemy import CheckConstraint, DateTime
from sqlalchemy.orm import DeclarativeBase


def enum_check(column: str, values: Iterable[str], name: str) -> CheckConstraint:
    """文本枚举列的 CHECK 约束"""
    allowed = ",".join(f"'{value}'" for value in values)
    return CheckConstraint(f"{column} IN ({allowed})", name=name)


class Base(DeclarativeBase):
    """数据库模型基类"""

    # 统一类型映射
    type_annotation_map = {
        datetime: DateTime(timezone=True),  # 强制使用 timezone-aware datetime
    }

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典（键为数据库列名）"""
        result = {}
        for attr in self.__mapper__.column_attrs:
            column_name = attr.columns[0].name
            value = getattr(self, attr.key)

            if isinstance(value, Decimal):
                result[column_name] = str(value)
            elif isinstance(value, (datetime, date)):
                result[column_name] = value.isoformat()
            else:
                result[column_name] = value

        return result
