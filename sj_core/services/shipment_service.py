"""
发运服务

发运状态有自己的流转表；轨迹事件推进发运状态，并同步推进订单：
- ready_to_ship            -> 订单 ready_to_ship
- picked_up / in_transit   -> 订单 shipped（出库）
- out_for_delivery         -> 订单 out_for_delivery
- delivered                -> 订单 delivered
"""
import secrets
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, FrozenSet, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from sj_core.models.shipments import Shipment, ShipmentTrackingEvent, SHIPMENT_STATUSES
from sj_core.services.base import BaseService, RepositoryMixin
from sj_core.services.order_service import get_order_service
from sj_core.utils.errors import (
    ConflictError, InvalidStatusTransitionError, NotFoundError, ValidationError
)
from sj_core.utils.logger import get_logger

logger = get_logger(__name__)

SHIPMENT_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"processing", "ready_to_ship", "picked_up", "failed"}),
    "processing": frozenset({"ready_to_ship", "failed"}),
    "ready_to_ship": frozenset({"picked_up", "in_transit", "failed"}),
    "picked_up": frozenset({"in_transit", "failed"}),
    "in_transit": frozenset({"out_for_delivery", "delivered", "failed", "returned"}),
    "out_for_delivery": frozenset({"delivered", "failed", "returned"}),
    "failed": frozenset({"in_transit", "returned"}),
    "delivered": frozenset(),
    "returned": frozenset(),
}

# 发运状态 -> 订单目标状态
ORDER_STATUS_FOR_SHIPMENT = {
    "ready_to_ship": "ready_to_ship",
    "picked_up": "shipped",
    "in_transit": "shipped",
    "out_for_delivery": "out_for_delivery",
    "delivered": "delivered",
}

# 订单推进顺序，用于判断订单是否已经越过目标状态
_ORDER_PROGRESS = ["pending", "paid", "processing", "ready_to_ship", "shipped", "out_for_delivery", "delivered"]

WAREHOUSE_ADDRESS = {
    "name": "Sharq Aljazeera Warehouse",
    "city": "Baghdad",
    "governorate": "Baghdad",
    "country": "Iraq",
}

SHIPMENT_FIELDS = [
    "carrier", "tracking_number", "shipping_method_id", "weight", "dimensions", "package_count",
    "estimated_delivery_date", "cost", "notes", "tracking_url",
]


def generate_tracking_number() -> str:
    return f"SJT{secrets.token_hex(5).upper()}"


def can_transition_shipment(from_status: str, to_status: str) -> bool:
    """同状态事件（例如中转扫描）在非终态下允许"""
    if from_status == to_status:
        return bool(SHIPMENT_TRANSITIONS.get(from_status))
    return to_status in SHIPMENT_TRANSITIONS.get(from_status, frozenset())


def serialize_shipment(shipment: Shipment) -> Dict[str, Any]:
    data = shipment.to_dict()
    data["tracking_events"] = [event.to_dict() for event in shipment.tracking_events]
    return data


class ShipmentService(BaseService, RepositoryMixin):
    """发运服务"""

    def __init__(self):
        super().__init__()
        self.orders = get_order_service()

    def _stmt(self):
        return select(Shipment).options(
            selectinload(Shipment.tracking_events)
        ).execution_options(populate_existing=True)

    async def _load(self, session: AsyncSession, condition) -> Shipment:
        shipment = (await session.execute(self._stmt().where(condition))).scalar_one_or_none()
        if shipment is None:
            raise NotFoundError(code="SHIPMENT_NOT_FOUND", resource="Shipment")
        return shipment

    async def get_shipment(self, shipment_id: int, user_id: Optional[int] = None) -> Dict[str, Any]:
        return await self.execute_with_session(self._get_shipment_tx, shipment_id, user_id)

    async def _get_shipment_tx(self, session: AsyncSession, shipment_id: int, user_id: Optional[int]) -> Dict[str, Any]:
        shipment = await self._load(session, Shipment.id == shipment_id)
        if user_id is not None:
            # 非本人订单的发运按不存在处理
            await self.orders.load_order(session, shipment.order_id, user_id=user_id)
        return serialize_shipment(shipment)

    async def track(self, tracking_number: str) -> Dict[str, Any]:
        """按运单号查询轨迹（不含收货地址）"""
        return await self.execute_with_session(self._track_tx, tracking_number)

    async def _track_tx(self, session: AsyncSession, tracking_number: str) -> Dict[str, Any]:
        shipment = await self._load(session, Shipment.tracking_number == tracking_number)
        return {
            "tracking_number": shipment.tracking_number,
            "carrier": shipment.carrier,
            "status": shipment.status,
            "estimated_delivery_date": (
                shipment.estimated_delivery_date.isoformat() if shipment.estimated_delivery_date else None
            ),
            "shipped_at": shipment.shipped_at.isoformat() if shipment.shipped_at else None,
            "delivered_at": shipment.delivered_at.isoformat() if shipment.delivered_at else None,
            "events": [
                {
                    "status": event.status,
                    "location": event.location,
                    "description": event.description,
                    "timestamp": event.timestamp.isoformat(),
                }
                for event in shipment.tracking_events
            ],
        }

    async def create_shipment(
        self,
        order_id: int,
        data: Dict[str, Any],
        changed_by: Optional[int] = None
    ) -> Dict[str, Any]:
        data = self.sanitize_input(data, SHIPMENT_FIELDS)
        if data.get("cost") is not None:
            data["cost"] = Decimal(str(data["cost"]))
            if data["cost"] < 0:
                raise ValidationError(detail="Invalid cost", details={"cost": ["Must not be negative"]})
        shipment = await self.execute_with_transaction(self._create_shipment_tx, order_id, data, changed_by)
        logger.info(
            "Shipment created",
            shipment_id=shipment["id"],
            order_id=order_id,
            tracking_number=shipment["tracking_number"]
        )
        return shipment

    async def _create_shipment_tx(
        self,
        session: AsyncSession,
        order_id: int,
        data: Dict[str, Any],
        changed_by: Optional[int]
    ) -> Dict[str, Any]:
        order = await self.orders.load_order(session, order_id, for_update=True)
        if order.status in ("cancelled", "refunded", "failed", "completed"):
            raise ConflictError(code="ORDER_NOT_SHIPPABLE", detail=f"Order is {order.status}")

        address = order.shipping_address
        destination = {
            "recipient_name": address.recipient_name,
            "recipient_phone": address.recipient_phone,
            "address_line1": address.address_line1,
            "address_line2": address.address_line2,
            "city": address.city,
            "governorate": address.governorate,
            "district": address.district,
            "nearest_landmark": address.nearest_landmark,
            "country": address.country,
        }
        now = datetime.now(timezone.utc)
        shipment = Shipment(
            order_id=order.id,
            tracking_number=data.get("tracking_number") or generate_tracking_number(),
            carrier=data.get("carrier"),
            shipping_method_id=data.get("shipping_method_id") or order.shipping_method_id,
            status="pending",
            origin_address=WAREHOUSE_ADDRESS,
            destination_address=destination,
            weight=data.get("weight"),
            dimensions=data.get("dimensions"),
            package_count=data.get("package_count") or 1,
            estimated_delivery_date=data.get("estimated_delivery_date"),
            cost=data["cost"] if data.get("cost") is not None else order.shipping_cost,
            currency=order.currency,
            notes=data.get("notes"),
            tracking_url=data.get("tracking_url"),
        )
        session.add(shipment)
        await session.flush()
        session.add(ShipmentTrackingEvent(
            shipment_id=shipment.id,
            status="pending",
            description="Shipment created",
            timestamp=now,
        ))

        order.tracking_number = shipment.tracking_number
        if shipment.tracking_url:
            order.tracking_url = shipment.tracking_url
        await session.flush()
        return serialize_shipment(await self._load(session, Shipment.id == shipment.id))

    async def add_event(
        self,
        shipment_id: int,
        status: str,
        description: str,
        location: Optional[str] = None,
        timestamp: Optional[datetime] = None,
        changed_by: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """追加轨迹事件并推进发运状态"""
        if status not in SHIPMENT_STATUSES:
            raise ValidationError(
                code="INVALID_SHIPMENT_STATUS",
                detail=f"Unknown shipment status: {status}",
                details={"status": [f"Must be one of: {', '.join(SHIPMENT_STATUSES)}"]}
            )
        shipment = await self.execute_with_transaction(
            self._add_event_tx, shipment_id, status, description, location, timestamp, changed_by, metadata
        )
        logger.info("Shipment event recorded", shipment_id=shipment_id, status=status)
        return shipment

    async def _add_event_tx(
        self,
        session: AsyncSession,
        shipment_id: int,
        status: str,
        description: str,
        location: Optional[str],
        timestamp: Optional[datetime],
        changed_by: Optional[int],
        metadata: Optional[Dict[str, Any]]
    ) -> Dict[str, Any]:
        shipment = await self._load(session, Shipment.id == shipment_id)
        if not can_transition_shipment(shipment.status, status):
            raise InvalidStatusTransitionError("shipment_status", shipment.status, status)

        timestamp = timestamp or datetime.now(timezone.utc)
        session.add(ShipmentTrackingEvent(
            shipment_id=shipment.id,
            status=status,
            location=location,
            description=description,
            extra_data=metadata,
            timestamp=timestamp,
        ))

        shipment.status = status
        if status in ("picked_up", "in_transit") and shipment.shipped_at is None:
            shipment.shipped_at = timestamp
        if status == "delivered":
            shipment.delivered_at = timestamp
            shipment.actual_delivery_date = timestamp

        target = ORDER_STATUS_FOR_SHIPMENT.get(status)
        if target is not None:
            order = await self.orders.load_order(session, shipment.order_id, for_update=True)
            if self._order_behind(order.status, target):
                await self.orders.advance_to(
                    session, order, target, f"Shipment {shipment.tracking_number}: {description}", changed_by
                )

        await session.flush()
        return serialize_shipment(await self._load(session, Shipment.id == shipment.id))

    @staticmethod
    def _order_behind(order_status: str, target: str) -> bool:
        """订单尚未达到目标状态（多个发运时避免重复推进）"""
        if order_status not in _ORDER_PROGRESS:
            # 交给状态机判定
            return True
        return _ORDER_PROGRESS.index(order_status) < _ORDER_PROGRESS.index(target)


_shipment_service: Optional[ShipmentService] = None


def get_shipment_service() -> ShipmentService:
    global _shipment_service
    if _shipment_service is None:
        _shipment_service = ShipmentService()
    return _shipment_service
