"""
分类服务

分类为树形结构，level 与 path（祖先ID列表）由服务层维护：
- 根分类 level=0，path=[]
- 子分类 level=父级 level+1，path=父级 path+[父级ID]
"""
from typing import Any, Dict, List, Optional

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from sj_core.models.catalog import Category, CATEGORY_STATUSES
from sj_core.services.base import BaseService, RepositoryMixin, Page
from sj_core.services.brand_service import prepare_slug
from sj_core.utils.errors import NotFoundError, ValidationError
from sj_core.utils.logger import get_logger

logger = get_logger(__name__)

CATEGORY_FIELDS = [
    "name", "slug", "description", "parent_id", "icon", "image", "cover_image", "status",
    "featured", "display_order", "show_in_menu", "seo_title", "seo_description", "seo_keywords",
]


def build_category_tree(categories: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """把扁平分类列表组装为树（每个节点带 children）"""
    nodes = {item["id"]: {**item, "children": []} for item in categories}
    roots = []
    for node in nodes.values():
        parent = nodes.get(node["parent_id"]) if node["parent_id"] is not None else None
        if parent is None:
            roots.append(node)
        else:
            parent["children"].append(node)

    def _sort(items: List[Dict[str, Any]]) -> None:
        items.sort(key=lambda item: (item["display_order"], item["name"]))
        for item in items:
            _sort(item["children"])

    _sort(roots)
    return roots


class CategoryService(BaseService, RepositoryMixin):
    """分类服务"""

    async def list_categories(
        self,
        parent_id: Optional[int] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20
    ) -> Page:
        return await self.execute_with_session(self._list_categories_tx, parent_id, status, search, page, limit)

    async def _list_categories_tx(
        self,
        session: AsyncSession,
        parent_id: Optional[int],
        status: Optional[str],
        search: Optional[str],
        page: int,
        limit: int
    ) -> Page:
        stmt = select(Category)
        if parent_id is not None:
            stmt = stmt.where(Category.parent_id == parent_id)
        if status:
            stmt = stmt.where(Category.status == status)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(Category.name.ilike(pattern), Category.slug.ilike(pattern)))
        stmt = stmt.order_by(Category.level, Category.display_order, Category.name)

        result = await self.paginate(session, stmt, page, limit)
        result.items = [category.to_dict() for category in result.items]
        return result

    async def get_category_tree(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self.execute_with_session(self._get_category_tree_tx, status)

    async def _get_category_tree_tx(self, session: AsyncSession, status: Optional[str]) -> List[Dict[str, Any]]:
        stmt = select(Category)
        if status:
            stmt = stmt.where(Category.status == status)
        result = await session.execute(stmt)
        return build_category_tree([category.to_dict() for category in result.scalars()])

    async def get_category(self, category_id: int) -> Dict[str, Any]:
        return await self.execute_with_session(self._get_category_tx, "id", category_id)

    async def get_category_by_slug(self, slug: str) -> Dict[str, Any]:
        return await self.execute_with_session(self._get_category_tx, "slug", slug)

    async def _get_category_tx(self, session: AsyncSession, field_name: str, value: Any) -> Dict[str, Any]:
        category = await self.get_by_field(session, Category, field_name, value)
        if category is None:
            raise NotFoundError(code="CATEGORY_NOT_FOUND", resource="Category")

        data = category.to_dict()
        children = await session.execute(
            select(Category)
            .where(Category.parent_id == category.id)
            .order_by(Category.display_order, Category.name)
        )
        data["children"] = [child.to_dict() for child in children.scalars()]
        return data

    def _validate(self, data: Dict[str, Any]) -> Dict[str, Any]:
        data = self.sanitize_input(data, CATEGORY_FIELDS)
        prepare_slug(data)
        if "status" in data and data["status"] not in CATEGORY_STATUSES:
            raise ValidationError(detail="Invalid category status", details={"status": ["Invalid status"]})
        return data

    async def _load_parent(self, session: AsyncSession, parent_id: int) -> Category:
        parent = await self.get_by_id(session, Category, parent_id)
        if parent is None:
            raise NotFoundError(code="PARENT_CATEGORY_NOT_FOUND", resource="Parent category")
        return parent

    async def create_category(self, data: Dict[str, Any]) -> Dict[str, Any]:
        data = self._validate(data)
        self.validate_required_fields(data, ["name", "slug"])
        category = await self.execute_with_transaction(self._create_category_tx, data)
        logger.info("Category created", category_id=category["id"], level=category["level"])
        return category

    async def _create_category_tx(self, session: AsyncSession, data: Dict[str, Any]) -> Dict[str, Any]:
        if data.get("parent_id") is not None:
            parent = await self._load_parent(session, data["parent_id"])
            data["level"] = parent.level + 1
            data["path"] = list(parent.path or []) + [parent.id]
        else:
            data["level"] = 0
            data["path"] = []

        category = await self.create(session, Category, data)
        await session.refresh(category)
        return category.to_dict()

    async def update_category(self, category_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        data = self._validate(data)
        return await self.execute_with_transaction(self._update_category_tx, category_id, data)

    async def _update_category_tx(
        self,
        session: AsyncSession,
        category_id: int,
        data: Dict[str, Any]
    ) -> Dict[str, Any]:
        category = await self.get_by_id(session, Category, category_id)
        if category is None:
            raise NotFoundError(code="CATEGORY_NOT_FOUND", resource="Category")

        reparent = "parent_id" in data and data["parent_id"] != category.parent_id
        if reparent:
            await self._move(session, category, data.pop("parent_id"))
        else:
            data.pop("parent_id", None)

        await self.update(session, category, data)
        await session.refresh(category)
        return category.to_dict()

    async def _move(self, session: AsyncSession, category: Category, parent_id: Optional[int]) -> None:
        """移动分类并重算自身及所有后代的 level/path"""
        if parent_id is not None:
            parent = await self._load_parent(session, parent_id)
            if parent.id == category.id or category.id in (parent.path or []):
                raise ValidationError(
                    code="CATEGORY_CYCLE",
                    detail="A category cannot be moved under itself or its descendants",
                    details={"parent_id": ["Would create a cycle"]}
                )
            base_path = list(parent.path or []) + [parent.id]
        else:
            base_path = []

        # 分类表规模小，一次载入后在内存中重算
        result = await session.execute(select(Category))
        all_categories = list(result.scalars())
        children_of: Dict[int, List[Category]] = {}
        for item in all_categories:
            if item.parent_id is not None:
                children_of.setdefault(item.parent_id, []).append(item)

        category.parent_id = parent_id
        category.path = base_path
        category.level = len(base_path)

        stack = [category]
        while stack:
            node = stack.pop()
            for child in children_of.get(node.id, []):
                child.path = list(node.path) + [node.id]
                child.level = len(child.path)
                stack.append(child)

        await session.flush()
        logger.info("Category moved", category_id=category.id, parent_id=parent_id, level=category.level)

    async def delete_category(self, category_id: int) -> None:
        """删除分类（子分类级联删除，仍有商品引用时失败）"""
        deleted = await self.execute_with_transaction(self.delete_by_id, Category, category_id)
        if not deleted:
            raise NotFoundError(code="CATEGORY_NOT_FOUND", resource="Category")
        logger.info("Category deleted", category_id=category_id)


_category_service: Optional[CategoryService] = None


def get_category_service() -> CategoryService:
    global _category_service
    if _category_service is None:
        _category_service = CategoryService()
    return _category_service
