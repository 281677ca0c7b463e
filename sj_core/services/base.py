"""
基础服务类
"""
from typing import TypeVar, Generic, Optional, Dict, Any, List
from dataclasses import dataclass
from abc import ABC

from sqlalchemy import select, delete as sql_delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sj_core.utils.logger import get_logger
from sj_core.utils.errors import (
    SharqException, InternalServerError, ValidationError, translate_integrity_error
)
from sj_core.database import get_db_manager

T = TypeVar('T')

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


@dataclass
class Page(Generic[T]):
    """分页结果"""
    items: List[T]
    total: int
    page: int
    limit: int

    @property
    def has_more(self) -> bool:
        return self.page * self.limit < self.total


class BaseService(ABC):
    """基础服务类"""

    def __init__(self):
        self.db_manager = get_db_manager()
        self.logger = get_logger(self.__class__.__name__)

    async def execute_with_transaction(
        self,
        operation,
        *args,
        **kwargs
    ) -> Any:
        """在事务中执行操作（正常退出提交，异常回滚）"""
        try:
            async with self.db_manager.get_transaction() as session:
                return await operation(session, *args, **kwargs)
        except SharqException:
            raise
        except IntegrityError as e:
            error = translate_integrity_error(e)
            self.logger.warning("Constraint violation", code=error.code, constraint=error.extra.get("constraint"))
            raise error from e
        except Exception as e:
            self.logger.error("Transaction operation failed", exc_info=True)
            raise InternalServerError(
                code="TRANSACTION_FAILED",
                detail=f"Database transaction failed: {str(e)}"
            ) from e

    async def execute_with_session(
        self,
        operation,
        *args,
        **kwargs
    ) -> Any:
        """使用数据库会话执行只读操作"""
        try:
            async with self.db_manager.get_session() as session:
                return await operation(session, *args, **kwargs)
        except SharqException:
            raise
        except IntegrityError as e:
            raise translate_integrity_error(e) from e
        except Exception as e:
            self.logger.error("Session operation failed", exc_info=True)
            raise InternalServerError(
                code="SESSION_OPERATION_FAILED",
                detail=f"Database operation failed: {str(e)}"
            ) from e

    def validate_required_fields(self, data: Dict[str, Any], required_fields: List[str]) -> None:
        """验证必填字段"""
        missing_fields = [field for field in required_fields if data.get(field) is None]

        if missing_fields:
            raise ValidationError(
                code="MISSING_REQUIRED_FIELDS",
                detail=f"Missing required fields: {', '.join(missing_fields)}",
                details={field: ["This field is required"] for field in missing_fields}
            )

    def sanitize_input(self, data: Dict[str, Any], allowed_fields: List[str]) -> Dict[str, Any]:
        """清理输入数据，只保留允许的字段"""
        return {k: v for k, v in data.items() if k in allowed_fields}


class RepositoryMixin:
    """仓储混入类 - 提供常用的数据库操作"""

    async def get_by_id(
        self,
        session: AsyncSession,
        model_class,
        record_id: int
    ) -> Optional[Any]:
        """根据ID获取记录"""
        return await session.get(model_class, record_id)

    async def get_by_field(
        self,
        session: AsyncSession,
        model_class,
        field_name: str,
        field_value: Any
    ) -> Optional[Any]:
        """根据字段获取记录"""
        stmt = select(model_class).where(getattr(model_class, field_name) == field_value)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_many_by_field(
        self,
        session: AsyncSession,
        model_class,
        field_name: str,
        field_value: Any,
        limit: Optional[int] = None,
        offset: Optional[int] = None
    ) -> List[Any]:
        """根据字段获取多个记录"""
        stmt = select(model_class).where(getattr(model_class, field_name) == field_value)

        if offset:
            stmt = stmt.offset(offset)
        if limit:
            stmt = stmt.limit(limit)

        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def create(
        self,
        session: AsyncSession,
        model_class,
        data: Dict[str, Any]
    ) -> Any:
        """创建记录"""
        instance = model_class(**data)
        session.add(instance)
        await session.flush()  # 获取生成的ID
        return instance

    async def update(
        self,
        session: AsyncSession,
        instance: Any,
        data: Dict[str, Any]
    ) -> Any:
        """更新记录"""
        for key, value in data.items():
            if hasattr(instance, key):
                setattr(instance, key, value)

        await session.flush()
        return instance

    async def delete_by_id(
        self,
        session: AsyncSession,
        model_class,
        record_id: int
    ) -> bool:
        """按ID删除记录，级联与限制由数据库外键决定

        Returns:
            是否删除了记录
        """
        try:
            result = await session.execute(
                sql_delete(model_class).where(model_class.id == record_id)
            )
        except IntegrityError as e:
            raise translate_integrity_error(e, operation="delete") from e
        return result.rowcount > 0

    async def exists(
        self,
        session: AsyncSession,
        model_class,
        **filters
    ) -> bool:
        """检查记录是否存在"""
        stmt = select(model_class.id)
        for field, value in filters.items():
            stmt = stmt.where(getattr(model_class, field) == value)

        result = await session.execute(stmt.limit(1))
        return result.scalar_one_or_none() is not None

    async def paginate(
        self,
        session: AsyncSession,
        stmt,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE
    ) -> Page:
        """分页查询，page 从 1 开始，limit 上限 100"""
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)

        count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
        total = (await session.execute(count_stmt)).scalar_one()

        result = await session.execute(stmt.offset((page - 1) * limit).limit(limit))
        return Page(items=list(result.scalars().unique().all()), total=total, page=page, limit=limit)
