"""
支付服务

只记录支付流水，不对接真实支付渠道。支付流水变化同步推进订单状态：
- 创建（非货到付款）：订单 pending -> payment_pending
- 完成：支付状态 -> paid，订单可流转时 -> paid
- 失败：支付状态 -> failed，订单 payment_pending -> payment_failed
- 退款：新增一条 refund 流水，全额退款时订单 -> refunded
"""
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, FrozenSet, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sj_core.models.payments import Payment, PAYMENT_PROVIDERS
from sj_core.services.base import BaseService, RepositoryMixin
from sj_core.services.order_service import get_order_service, serialize_order
from sj_core.services.order_state import order_status_machine, payment_status_machine
from sj_core.utils.errors import ConflictError, NotFoundError, ValidationError
from sj_core.utils.logger import get_logger

logger = get_logger(__name__)

PAYMENT_FIELDS = [
    "provider", "payment_method_id", "amount", "fee", "provider_transaction_id",
    "provider_reference_id", "metadata",
]

# 流水状态允许的来源状态
COMPLETABLE_STATUSES: FrozenSet[str] = frozenset({"pending", "processing", "authorized"})
FAILABLE_STATUSES: FrozenSet[str] = frozenset({"pending", "processing", "authorized"})
REFUNDABLE_STATUSES: FrozenSet[str] = frozenset({"completed", "partially_refunded"})


def _amount(value: Any, field_name: str = "amount") -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(detail=f"Invalid {field_name}", details={field_name: ["Must be a number"]})
    if amount < 0:
        raise ValidationError(detail=f"Invalid {field_name}", details={field_name: ["Must not be negative"]})
    return amount


class PaymentService(BaseService, RepositoryMixin):
    """支付服务"""

    def __init__(self):
        super().__init__()
        self.orders = get_order_service()

    async def _load_payment(self, session: AsyncSession, payment_id: int, for_update: bool = True) -> Payment:
        stmt = select(Payment).where(Payment.id == payment_id)
        if for_update:
            stmt = stmt.with_for_update()
        payment = (await session.execute(stmt)).scalar_one_or_none()
        if payment is None:
            raise NotFoundError(code="PAYMENT_NOT_FOUND", resource="Payment")
        return payment

    async def _result(self, session: AsyncSession, payment: Payment) -> Dict[str, Any]:
        await session.flush()
        await session.refresh(payment)
        order = await self.orders.load_order(session, payment.order_id)
        return {"payment": payment.to_dict(), "order": serialize_order(order)}

    async def list_payments(self, order_id: int, user_id: Optional[int] = None) -> List[Dict[str, Any]]:
        return await self.execute_with_session(self._list_payments_tx, order_id, user_id)

    async def _list_payments_tx(
        self,
        session: AsyncSession,
        order_id: int,
        user_id: Optional[int]
    ) -> List[Dict[str, Any]]:
        order = await self.orders.load_order(session, order_id, user_id)
        return [payment.to_dict() for payment in order.payments]

    async def create_payment(
        self,
        order_id: int,
        data: Dict[str, Any],
        user_id: Optional[int] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> Dict[str, Any]:
        """为订单创建支付流水

        Args:
            user_id: 非空时只能为自己的订单付款
        """
        data = self.sanitize_input(data, PAYMENT_FIELDS)
        if data.get("provider") is not None and data["provider"] not in PAYMENT_PROVIDERS:
            raise ValidationError(
                code="INVALID_PAYMENT_PROVIDER",
                detail="Unknown payment provider",
                details={"provider": [f"Must be one of: {', '.join(PAYMENT_PROVIDERS)}"]}
            )
        if data.get("amount") is not None:
            data["amount"] = _amount(data["amount"])
        data["fee"] = _amount(data.get("fee") or 0, "fee")

        result = await self.execute_with_transaction(
            self._create_payment_tx, order_id, data, user_id, ip_address, user_agent
        )
        logger.info(
            "Payment created",
            payment_id=result["payment"]["id"],
            order_id=order_id,
            provider=result["payment"]["provider"],
            amount=result["payment"]["amount"]
        )
        return result

    async def _create_payment_tx(
        self,
        session: AsyncSession,
        order_id: int,
        data: Dict[str, Any],
        user_id: Optional[int],
        ip_address: Optional[str],
        user_agent: Optional[str]
    ) -> Dict[str, Any]:
        order = await self.orders.load_order(session, order_id, user_id=user_id, for_update=True)
        if order_status_machine.is_terminal(order.status):
            raise ConflictError(code="ORDER_CLOSED", detail=f"Order is {order.status}")
        if order.payment_status not in ("pending", "failed", "authorized"):
            raise ConflictError(code="ORDER_ALREADY_PAID", detail=f"Order payment status is {order.payment_status}")

        provider = data.get("provider") or order.payment_method_id
        if provider not in PAYMENT_PROVIDERS:
            provider = "cod"
        amount = data.get("amount") if data.get("amount") is not None else order.total

        payment = Payment(
            order_id=order.id,
            user_id=order.user_id,
            type="payment",
            status="pending",
            provider=provider,
            payment_method_id=data.get("payment_method_id") or order.payment_method_id,
            amount=amount,
            currency=order.currency,
            fee=data["fee"],
            net_amount=amount - data["fee"],
            provider_transaction_id=data.get("provider_transaction_id"),
            provider_reference_id=data.get("provider_reference_id"),
            extra_data=data.get("metadata"),
            ip_address=ip_address,
            user_agent=user_agent,
        )
        session.add(payment)

        if order.payment_status == "failed":
            self.orders.set_payment_status(order, "pending")
        if provider != "cod":
            if order.status == "pending" or order.status == "payment_failed":
                await self.orders.apply_status(
                    session, order, "payment_pending", "Payment initiated", user_id
                )
        return await self._result(session, payment)

    async def complete_payment(
        self,
        payment_id: int,
        provider_transaction_id: Optional[str] = None,
        changed_by: Optional[int] = None
    ) -> Dict[str, Any]:
        result = await self.execute_with_transaction(
            self._complete_payment_tx, payment_id, provider_transaction_id, changed_by
        )
        logger.info("Payment completed", payment_id=payment_id, order_id=result["order"]["id"])
        return result

    async def _complete_payment_tx(
        self,
        session: AsyncSession,
        payment_id: int,
        provider_transaction_id: Optional[str],
        changed_by: Optional[int]
    ) -> Dict[str, Any]:
        payment = await self._load_payment(session, payment_id)
        if payment.type != "payment" or payment.status not in COMPLETABLE_STATUSES:
            raise ConflictError(
                code="INVALID_PAYMENT_STATE",
                detail=f"Payment in status {payment.status} cannot be completed"
            )

        payment.status = "completed"
        payment.completed_at = datetime.now(timezone.utc)
        if provider_transaction_id:
            payment.provider_transaction_id = provider_transaction_id

        order = await self.orders.load_order(session, payment.order_id, for_update=True)
        if payment.provider != "cod" and order_status_machine.can_transition(order.status, "paid"):
            await self.orders.apply_status(
                session, order, "paid", "Payment completed", changed_by, {"payment_id": payment.id}
            )
        else:
            # 货到付款在履约过程中收款，订单状态由发运驱动，只更新支付状态
            self.orders.set_payment_status(order, "paid")
            order.paid_at = datetime.now(timezone.utc)
        return await self._result(session, payment)

    async def fail_payment(
        self,
        payment_id: int,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
        changed_by: Optional[int] = None
    ) -> Dict[str, Any]:
        result = await self.execute_with_transaction(
            self._fail_payment_tx, payment_id, error_code, error_message, changed_by
        )
        logger.warning("Payment failed", payment_id=payment_id, error_code=error_code)
        return result

    async def _fail_payment_tx(
        self,
        session: AsyncSession,
        payment_id: int,
        error_code: Optional[str],
        error_message: Optional[str],
        changed_by: Optional[int]
    ) -> Dict[str, Any]:
        payment = await self._load_payment(session, payment_id)
        if payment.type != "payment" or payment.status not in FAILABLE_STATUSES:
            raise ConflictError(
                code="INVALID_PAYMENT_STATE",
                detail=f"Payment in status {payment.status} cannot be failed"
            )

        payment.status = "failed"
        payment.failed_at = datetime.now(timezone.utc)
        payment.error_code = error_code
        payment.error_message = error_message

        order = await self.orders.load_order(session, payment.order_id, for_update=True)
        if payment_status_machine.can_transition(order.payment_status, "failed"):
            self.orders.set_payment_status(order, "failed")
        if order_status_machine.can_transition(order.status, "payment_failed"):
            await self.orders.apply_status(
                session, order, "payment_failed", error_message or "Payment failed", changed_by,
                {"payment_id": payment.id}
            )
        return await self._result(session, payment)

    async def refund_payment(
        self,
        payment_id: int,
        amount: Optional[Any] = None,
        reason: Optional[str] = None,
        changed_by: Optional[int] = None
    ) -> Dict[str, Any]:
        """退款（amount 为空时全额）"""
        refund_amount = _amount(amount) if amount is not None else None
        result = await self.execute_with_transaction(
            self._refund_payment_tx, payment_id, refund_amount, reason, changed_by
        )
        logger.info("Payment refunded", payment_id=payment_id, amount=str(refund_amount or "full"))
        return result

    async def _refund_payment_tx(
        self,
        session: AsyncSession,
        payment_id: int,
        amount: Optional[Decimal],
        reason: Optional[str],
        changed_by: Optional[int]
    ) -> Dict[str, Any]:
        payment = await self._load_payment(session, payment_id)
        if payment.type != "payment" or payment.status not in REFUNDABLE_STATUSES:
            raise ConflictError(
                code="INVALID_PAYMENT_STATE",
                detail=f"Payment in status {payment.status} cannot be refunded"
            )

        order = await self.orders.load_order(session, payment.order_id, for_update=True)
        already_refunded = sum(
            (p.amount for p in order.payments if p.type == "refund" and p.extra_data
             and p.extra_data.get("refund_of") == payment.id),
            Decimal("0")
        )
        refundable = payment.amount - already_refunded
        amount = refundable if amount is None else amount
        if amount <= 0 or amount > refundable:
            raise ValidationError(
                code="INVALID_REFUND_AMOUNT",
                detail=f"Refund amount must be between 0 and {refundable}",
                details={"amount": [f"Must not exceed {refundable}"]}
            )

        now = datetime.now(timezone.utc)
        session.add(Payment(
            order_id=order.id,
            user_id=payment.user_id,
            type="refund",
            status="completed",
            provider=payment.provider,
            payment_method_id=payment.payment_method_id,
            amount=amount,
            currency=payment.currency,
            fee=Decimal("0"),
            net_amount=amount,
            extra_data={"refund_of": payment.id, "reason": reason},
            completed_at=now,
        ))

        full_refund = amount == refundable
        payment.status = "refunded" if full_refund else "partially_refunded"
        payment.refunded_at = now
        order.refund_amount = (order.refund_amount or Decimal("0")) + amount

        if full_refund and order_status_machine.can_transition(order.status, "refunded"):
            await self.orders.apply_status(
                session, order, "refunded", reason or "Payment refunded", changed_by, {"payment_id": payment.id}
            )
        else:
            target = "refunded" if full_refund else "partial"
            if payment_status_machine.can_transition(order.payment_status, target):
                self.orders.set_payment_status(order, target)
        return await self._result(session, payment)


_payment_service: Optional[PaymentService] = None


def get_payment_service() -> PaymentService:
    global _payment_service
    if _payment_service is None:
        _payment_service = PaymentService()
    return _payment_service
