"""
收藏服务，维护商品的 favorite_count
"""
from typing import Any, Dict, Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from sj_core.models.carts import Favorite
from sj_core.models.catalog import Product, ProductVariant
from sj_core.services.base import BaseService, RepositoryMixin, Page
from sj_core.utils.errors import ConflictError, NotFoundError
from sj_core.utils.logger import get_logger

logger = get_logger(__name__)


def serialize_favorite(favorite: Favorite) -> Dict[str, Any]:
    data = favorite.to_dict()
    product = favorite.product
    data["product"] = {
        "id": product.id,
        "sku": product.sku,
        "name": product.name,
        "slug": product.slug,
        "price": str(product.price),
        "currency": product.currency,
        "status": product.status,
        "image": product.main_image,
    }
    data["variant"] = favorite.variant.to_dict() if favorite.variant is not None else None
    return data


class FavoriteService(BaseService, RepositoryMixin):
    """收藏服务"""

    def _stmt(self):
        return select(Favorite).options(
            selectinload(Favorite.product).selectinload(Product.images),
            selectinload(Favorite.variant),
        ).execution_options(populate_existing=True)

    async def list_favorites(self, user_id: int, page: int = 1, limit: int = 20) -> Page:
        return await self.execute_with_session(self._list_favorites_tx, user_id, page, limit)

    async def _list_favorites_tx(self, session: AsyncSession, user_id: int, page: int, limit: int) -> Page:
        stmt = self._stmt().where(Favorite.user_id == user_id).order_by(Favorite.created_at.desc(), Favorite.id.desc())
        result = await self.paginate(session, stmt, page, limit)
        result.items = [serialize_favorite(favorite) for favorite in result.items]
        return result

    async def add_favorite(
        self,
        user_id: int,
        product_id: int,
        variant_id: Optional[int] = None,
        notes: Optional[str] = None
    ) -> Dict[str, Any]:
        favorite = await self.execute_with_transaction(self._add_favorite_tx, user_id, product_id, variant_id, notes)
        logger.info("Favorite added", user_id=user_id, product_id=product_id, variant_id=variant_id)
        return favorite

    async def _add_favorite_tx(
        self,
        session: AsyncSession,
        user_id: int,
        product_id: int,
        variant_id: Optional[int],
        notes: Optional[str]
    ) -> Dict[str, Any]:
        if await self.get_by_id(session, Product, product_id) is None:
            raise NotFoundError(code="PRODUCT_NOT_FOUND", resource="Product")
        if variant_id is not None:
            variant = await self.get_by_id(session, ProductVariant, variant_id)
            if variant is None or variant.product_id != product_id:
                raise NotFoundError(code="VARIANT_NOT_FOUND", resource="Variant")

        # variant_id 为 NULL 时唯一约束不生效，这里显式检查
        duplicate = select(Favorite.id).where(
            Favorite.user_id == user_id,
            Favorite.product_id == product_id,
            Favorite.variant_id.is_(None) if variant_id is None else Favorite.variant_id == variant_id,
        )
        if (await session.execute(duplicate)).scalar_one_or_none() is not None:
            raise ConflictError(code="FAVORITE_ALREADY_EXISTS", detail="Product is already in favorites")

        favorite = await self.create(session, Favorite, {
            "user_id": user_id,
            "product_id": product_id,
            "variant_id": variant_id,
            "notes": notes,
        })
        await session.execute(
            update(Product).where(Product.id == product_id).values(favorite_count=Product.favorite_count + 1)
        )
        result = await session.execute(self._stmt().where(Favorite.id == favorite.id))
        return serialize_favorite(result.scalar_one())

    async def remove_favorite(self, user_id: int, favorite_id: int) -> None:
        await self.execute_with_transaction(self._remove_favorite_tx, user_id, favorite_id)
        logger.info("Favorite removed", user_id=user_id, favorite_id=favorite_id)

    async def _remove_favorite_tx(self, session: AsyncSession, user_id: int, favorite_id: int) -> None:
        favorite = await self.get_by_id(session, Favorite, favorite_id)
        if favorite is None or favorite.user_id != user_id:
            raise NotFoundError(code="FAVORITE_NOT_FOUND", resource="Favorite")

        product_id = favorite.product_id
        await self.delete_by_id(session, Favorite, favorite_id)
        await session.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(favorite_count=func.greatest(Product.favorite_count - 1, 0))
        )


_favorite_service: Optional[FavoriteService] = None


def get_favorite_service() -> FavoriteService:
    global _favorite_service
    if _favorite_service is None:
        _favorite_service = FavoriteService()
    return _favorite_service
