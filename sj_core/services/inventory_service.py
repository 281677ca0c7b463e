"""
库存服务

占用、释放、出库都是单条带条件的 UPDATE ... RETURNING，由数据库保证原子性：
- 占用：reserved += n，仅当 policy <> 'track' 或允许缺货下单 或 可售 >= n
- 释放：reserved = GREATEST(reserved - n, 0)
- 出库：quantity 与 reserved 同时扣减 n
"""
from typing import Any, Dict, Optional

from sqlalchemy import select, update, or_, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from sj_core.models.catalog import Product, ProductVariant
from sj_core.models.inventory import ProductInventory, VariantInventory
from sj_core.services.base import BaseService, RepositoryMixin, Page
from sj_core.services.product_service import serialize_inventory, validate_inventory_data
from sj_core.utils.errors import NotFoundError, ValidationError, InsufficientStockError
from sj_core.utils.logger import get_logger

logger = get_logger(__name__)


def _target(variant_id: Optional[int]):
    """返回 (库存模型, 键列)"""
    if variant_id is not None:
        return VariantInventory, VariantInventory.variant_id
    return ProductInventory, ProductInventory.product_id


class InventoryService(BaseService, RepositoryMixin):
    """库存服务"""

    # ========== 占用 / 释放 / 出库（在调用方事务内执行） ==========

    async def reserve(
        self,
        session: AsyncSession,
        product_id: int,
        quantity: int,
        variant_id: Optional[int] = None,
        sku: Optional[str] = None
    ) -> int:
        """占用库存，返回占用后的 reserved

        Raises:
            InsufficientStockError: 可售数量不足
        """
        if quantity <= 0:
            raise ValidationError(detail="Quantity must be positive", details={"quantity": ["Must be positive"]})

        model, key_column = _target(variant_id)
        key = variant_id if variant_id is not None else product_id
        stmt = (
            update(model)
            .where(
                key_column == key,
                or_(
                    model.policy != "track",
                    model.allow_backorder.is_(True),
                    model.quantity - model.reserved >= quantity,
                ),
            )
            .values(reserved=model.reserved + quantity)
            .returning(model.reserved)
        )
        reserved = (await session.execute(stmt)).scalar_one_or_none()

        if reserved is None:
            available = await self._available(session, model, key_column, key)
            logger.warning(
                "Stock reservation rejected",
                product_id=product_id,
                variant_id=variant_id,
                requested=quantity,
                available=available
            )
            raise InsufficientStockError(sku=sku or str(key), requested=quantity, available=available)

        return reserved

    async def release(
        self,
        session: AsyncSession,
        product_id: int,
        quantity: int,
        variant_id: Optional[int] = None
    ) -> None:
        """释放占用"""
        model, key_column = _target(variant_id)
        key = variant_id if variant_id is not None else product_id
        await session.execute(
            update(model)
            .where(key_column == key)
            .values(reserved=func.greatest(model.reserved - quantity, 0))
        )

    async def commit(
        self,
        session: AsyncSession,
        product_id: int,
        quantity: int,
        variant_id: Optional[int] = None
    ) -> None:
        """发货出库：实际库存与占用同时扣减"""
        model, key_column = _target(variant_id)
        key = variant_id if variant_id is not None else product_id
        await session.execute(
            update(model)
            .where(key_column == key)
            .values(
                quantity=func.greatest(model.quantity - quantity, 0),
                reserved=func.greatest(model.reserved - quantity, 0),
            )
        )

    async def _available(self, session: AsyncSession, model, key_column, key: int) -> Optional[int]:
        row = (await session.execute(select(model).where(key_column == key))).scalar_one_or_none()
        return row.available if row is not None else None

    # 独立事务版本

    async def reserve_stock(self, product_id: int, quantity: int, variant_id: Optional[int] = None) -> int:
        return await self.execute_with_transaction(self.reserve, product_id, quantity, variant_id)

    async def release_stock(self, product_id: int, quantity: int, variant_id: Optional[int] = None) -> None:
        await self.execute_with_transaction(self.release, product_id, quantity, variant_id)

    async def commit_stock(self, product_id: int, quantity: int, variant_id: Optional[int] = None) -> None:
        await self.execute_with_transaction(self.commit, product_id, quantity, variant_id)

    # ========== 查询与设置 ==========

    async def get_inventory(self, product_id: int) -> Dict[str, Any]:
        """商品库存及其变体库存"""
        return await self.execute_with_session(self._get_inventory_tx, product_id)

    async def _get_inventory_tx(self, session: AsyncSession, product_id: int) -> Dict[str, Any]:
        result = await session.execute(
            select(Product)
            .options(
                selectinload(Product.inventory),
                selectinload(Product.variants).selectinload(ProductVariant.inventory),
            )
            .where(Product.id == product_id)
            .execution_options(populate_existing=True)
        )
        product = result.scalar_one_or_none()
        if product is None:
            raise NotFoundError(code="PRODUCT_NOT_FOUND", resource="Product")

        return {
            "product_id": product.id,
            "sku": product.sku,
            "inventory": serialize_inventory(product.inventory),
            "variants": [
                {
                    "variant_id": variant.id,
                    "sku": variant.sku,
                    "inventory": serialize_inventory(variant.inventory),
                }
                for variant in product.variants
            ],
        }

    async def set_inventory(self, product_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        data = validate_inventory_data(data)
        inventory = await self.execute_with_transaction(
            self._set_inventory_tx, ProductInventory, "product_id", product_id, data
        )
        logger.info("Inventory updated", product_id=product_id, quantity=inventory["quantity"])
        return inventory

    async def set_variant_inventory(self, variant_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        data = validate_inventory_data(data)
        inventory = await self.execute_with_transaction(
            self._set_inventory_tx, VariantInventory, "variant_id", variant_id, data
        )
        logger.info("Variant inventory updated", variant_id=variant_id, quantity=inventory["quantity"])
        return inventory

    async def _set_inventory_tx(
        self,
        session: AsyncSession,
        model,
        key_field: str,
        key: int,
        data: Dict[str, Any]
    ) -> Dict[str, Any]:
        owner_model = ProductVariant if model is VariantInventory else Product
        if await self.get_by_id(session, owner_model, key) is None:
            raise NotFoundError(code=f"{owner_model.__name__.upper()}_NOT_FOUND", resource=owner_model.__name__)

        inventory = await self.get_by_field(session, model, key_field, key)
        if inventory is None:
            inventory = await self.create(session, model, {**data, key_field: key})
        else:
            await self.update(session, inventory, data)

        await session.refresh(inventory)
        return serialize_inventory(inventory)

    async def list_low_stock(self, page: int = 1, limit: int = 20) -> Page:
        """跟踪库存且可售数量不高于阈值的商品"""
        return await self.execute_with_session(self._list_low_stock_tx, page, limit)

    async def _list_low_stock_tx(self, session: AsyncSession, page: int, limit: int) -> Page:
        available = ProductInventory.quantity - ProductInventory.reserved
        stmt = (
            select(ProductInventory)
            .options(selectinload(ProductInventory.product))
            .where(
                ProductInventory.policy == "track",
                available <= func.coalesce(ProductInventory.low_stock_threshold, 0),
            )
            .order_by(available, ProductInventory.id)
        )
        result = await self.paginate(session, stmt, page, limit)
        result.items = [
            {
                **serialize_inventory(inventory),
                "product": {
                    "id": inventory.product.id,
                    "sku": inventory.product.sku,
                    "name": inventory.product.name,
                    "status": inventory.product.status,
                },
            }
            for inventory in result.items
        ]
        return result


_inventory_service: Optional[InventoryService] = None


def get_inventory_service() -> InventoryService:
    global _inventory_service
    if _inventory_service is None:
        _inventory_service = InventoryService()
    return _inventory_service
