"""
账户服务：个人资料、收货地址、偏好设置、活动记录
"""
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sj_core.models.users import User, Address, UserPreference, UserActivity
from sj_core.services.base import BaseService, RepositoryMixin, Page
from sj_core.utils.errors import NotFoundError, ValidationError
from sj_core.utils.governorates import resolve_governorate
from sj_core.utils.logger import get_logger
from sj_core.utils.validators import is_valid_phone

logger = get_logger(__name__)

PROFILE_FIELDS = ["first_name", "last_name", "phone", "avatar", "date_of_birth", "gender"]
ADDRESS_FIELDS = [
    "type", "is_default", "recipient_name", "recipient_phone", "address_line1", "address_line2",
    "city", "governorate", "district", "nearest_landmark", "postal_code", "country",
    "latitude", "longitude", "delivery_notes",
]
PREFERENCE_FIELDS = ["language", "currency", "theme", "notifications"]


class AccountService(BaseService, RepositoryMixin):
    """账户服务"""

    # ========== 个人资料 ==========

    async def get_profile(self, user_id: int) -> Dict[str, Any]:
        return await self.execute_with_session(self._get_profile_tx, user_id)

    async def _get_profile_tx(self, session: AsyncSession, user_id: int) -> Dict[str, Any]:
        user = await self.get_by_id(session, User, user_id)
        if user is None:
            raise NotFoundError(code="USER_NOT_FOUND", resource="User")
        return user.to_dict()

    async def update_profile(self, user_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        data = self.sanitize_input(data, PROFILE_FIELDS)
        if data.get("phone") and not is_valid_phone(data["phone"]):
            raise ValidationError(detail="Invalid phone number", details={"phone": ["Invalid phone number"]})
        return await self.execute_with_transaction(self._update_profile_tx, user_id, data)

    async def _update_profile_tx(self, session: AsyncSession, user_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        user = await self.get_by_id(session, User, user_id)
        if user is None:
            raise NotFoundError(code="USER_NOT_FOUND", resource="User")

        if "phone" in data and data["phone"] != user.phone:
            user.phone_verified = False
        await self.update(session, user, data)
        await self._log_activity(session, user_id, "profile_update", "Profile updated", {"fields": sorted(data)})
        await session.refresh(user)
        return user.to_dict()

    # ========== 收货地址 ==========

    def _normalize_address(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """校验省份与电话，省份统一存英文名"""
        data = self.sanitize_input(data, ADDRESS_FIELDS)
        if "governorate" in data:
            governorate = resolve_governorate(data["governorate"] or "")
            if governorate is None:
                raise ValidationError(
                    code="INVALID_GOVERNORATE",
                    detail=f"Unknown governorate: {data['governorate']}",
                    details={"governorate": ["Unknown Iraqi governorate"]}
                )
            data["governorate"] = governorate.name_en
        if data.get("recipient_phone") and not is_valid_phone(data["recipient_phone"]):
            raise ValidationError(
                detail="Invalid phone number",
                details={"recipient_phone": ["Invalid phone number"]}
            )
        return data

    async def list_addresses(self, user_id: int) -> List[Dict[str, Any]]:
        return await self.execute_with_session(self._list_addresses_tx, user_id)

    async def _list_addresses_tx(self, session: AsyncSession, user_id: int) -> List[Dict[str, Any]]:
        stmt = (
            select(Address)
            .where(Address.user_id == user_id)
            .order_by(Address.is_default.desc(), Address.id)
        )
        result = await session.execute(stmt)
        return [address.to_dict() for address in result.scalars()]

    async def get_address(self, user_id: int, address_id: int) -> Dict[str, Any]:
        return await self.execute_with_session(self._get_address_tx, user_id, address_id)

    async def _get_address_tx(self, session: AsyncSession, user_id: int, address_id: int) -> Dict[str, Any]:
        return (await self._load_address(session, user_id, address_id)).to_dict()

    async def _load_address(self, session: AsyncSession, user_id: int, address_id: int) -> Address:
        address = await self.get_by_id(session, Address, address_id)
        if address is None or address.user_id != user_id:
            raise NotFoundError(code="ADDRESS_NOT_FOUND", resource="Address")
        return address

    async def _clear_default(self, session: AsyncSession, user_id: int, keep_id: Optional[int] = None) -> None:
        stmt = update(Address).where(Address.user_id == user_id, Address.is_default.is_(True))
        if keep_id is not None:
            stmt = stmt.where(Address.id != keep_id)
        await session.execute(stmt.values(is_default=False))

    async def create_address(self, user_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        data = self._normalize_address(data)
        self.validate_required_fields(
            data, ["recipient_name", "recipient_phone", "address_line1", "city", "governorate"]
        )
        return await self.execute_with_transaction(self._create_address_tx, user_id, data)

    async def _create_address_tx(self, session: AsyncSession, user_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        # 第一个地址自动设为默认
        has_addresses = await self.exists(session, Address, user_id=user_id)
        if not has_addresses:
            data["is_default"] = True
        if data.get("is_default"):
            await self._clear_default(session, user_id)

        address = await self.create(session, Address, {**data, "user_id": user_id})
        await self._log_activity(session, user_id, "address_added", "Address added", {"address_id": address.id})
        await session.refresh(address)
        return address.to_dict()

    async def update_address(self, user_id: int, address_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        data = self._normalize_address(data)
        return await self.execute_with_transaction(self._update_address_tx, user_id, address_id, data)

    async def _update_address_tx(
        self,
        session: AsyncSession,
        user_id: int,
        address_id: int,
        data: Dict[str, Any]
    ) -> Dict[str, Any]:
        address = await self._load_address(session, user_id, address_id)
        if data.get("is_default"):
            await self._clear_default(session, user_id, keep_id=address_id)
        await self.update(session, address, data)
        await self._log_activity(session, user_id, "address_updated", "Address updated", {"address_id": address_id})
        await session.refresh(address)
        return address.to_dict()

    async def set_default_address(self, user_id: int, address_id: int) -> Dict[str, Any]:
        return await self.update_address(user_id, address_id, {"is_default": True})

    async def delete_address(self, user_id: int, address_id: int) -> None:
        await self.execute_with_transaction(self._delete_address_tx, user_id, address_id)

    async def _delete_address_tx(self, session: AsyncSession, user_id: int, address_id: int) -> None:
        address = await self._load_address(session, user_id, address_id)
        was_default = address.is_default
        # 被订单引用的地址由外键限制删除
        await self.delete_by_id(session, Address, address_id)

        if was_default:
            stmt = select(Address).where(Address.user_id == user_id).order_by(Address.id).limit(1)
            replacement = (await session.execute(stmt)).scalar_one_or_none()
            if replacement is not None:
                replacement.is_default = True
        logger.info("Address deleted", user_id=user_id, address_id=address_id)

    # ========== 偏好设置 ==========

    async def get_preferences(self, user_id: int) -> Dict[str, Any]:
        return await self.execute_with_transaction(self._get_preferences_tx, user_id)

    async def _load_preferences(self, session: AsyncSession, user_id: int) -> UserPreference:
        preferences = await self.get_by_field(session, UserPreference, "user_id", user_id)
        if preferences is None:
            preferences = await self.create(session, UserPreference, {"user_id": user_id})
        return preferences

    async def _get_preferences_tx(self, session: AsyncSession, user_id: int) -> Dict[str, Any]:
        preferences = await self._load_preferences(session, user_id)
        await session.refresh(preferences)
        return preferences.to_dict()

    async def update_preferences(self, user_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        data = self.sanitize_input(data, PREFERENCE_FIELDS)
        if "currency" in data and data["currency"] not in ("IQD", "USD"):
            raise ValidationError(detail="Unsupported currency", details={"currency": ["Must be IQD or USD"]})
        return await self.execute_with_transaction(self._update_preferences_tx, user_id, data)

    async def _update_preferences_tx(self, session: AsyncSession, user_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        preferences = await self._load_preferences(session, user_id)
        if "notifications" in data and data["notifications"] is not None:
            # 通知设置按渠道合并
            merged = {key: dict(value) for key, value in (preferences.notifications or {}).items()}
            for channel, settings in data["notifications"].items():
                merged.setdefault(channel, {}).update(settings)
            data["notifications"] = merged
        await self.update(session, preferences, data)
        await session.refresh(preferences)
        return preferences.to_dict()

    # ========== 活动记录 ==========

    async def list_activity(self, user_id: int, page: int = 1, limit: int = 20) -> Page:
        return await self.execute_with_session(self._list_activity_tx, user_id, page, limit)

    async def _list_activity_tx(self, session: AsyncSession, user_id: int, page: int, limit: int) -> Page:
        stmt = (
            select(UserActivity)
            .where(UserActivity.user_id == user_id)
            .order_by(UserActivity.created_at.desc(), UserActivity.id.desc())
        )
        result = await self.paginate(session, stmt, page, limit)
        result.items = [item.to_dict() for item in result.items]
        return result

    async def _log_activity(
        self,
        session: AsyncSession,
        user_id: int,
        activity_type: str,
        description: str,
        extra: Optional[Dict[str, Any]] = None
    ) -> None:
        session.add(UserActivity(user_id=user_id, type=activity_type, description=description, extra_data=extra))
        await session.flush()


_account_service: Optional[AccountService] = None


def get_account_service() -> AccountService:
    global _account_service
    if _account_service is None:
        _account_service = AccountService()
    return _account_service
