"""
订单状态机
订单状态、支付状态、履约状态各自有一张允许流转表，所有状态修改必须经过这里校验
"""
from typing import Dict, FrozenSet, Optional

from sj_core.utils.errors import InvalidStatusTransitionError


ORDER_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    # 货到付款订单从 pending 直接进入 processing
    "pending": frozenset({"payment_pending", "paid", "processing", "cancelled", "failed"}),
    "payment_pending": frozenset({"paid", "payment_failed", "cancelled"}),
    "payment_failed": frozenset({"payment_pending", "cancelled"}),
    "paid": frozenset({"processing", "cancelled", "refunded"}),
    "processing": frozenset({"ready_to_ship", "cancelled", "failed"}),
    "ready_to_ship": frozenset({"shipped", "cancelled"}),
    "shipped": frozenset({"out_for_delivery", "delivered", "failed"}),
    "out_for_delivery": frozenset({"delivered", "failed"}),
    "delivered": frozenset({"completed", "refunded"}),
    "completed": frozenset({"refunded"}),
    "failed": frozenset({"cancelled"}),
    "cancelled": frozenset(),
    "refunded": frozenset(),
}

PAYMENT_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"authorized", "paid", "failed", "voided"}),
    "authorized": frozenset({"paid", "voided", "failed"}),
    "paid": frozenset({"partial", "refunded"}),
    "partial": frozenset({"refunded"}),
    "failed": frozenset({"pending"}),
    "refunded": frozenset(),
    "voided": frozenset(),
}

FULFILLMENT_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "unfulfilled": frozenset({"partial", "fulfilled"}),
    "partial": frozenset({"fulfilled"}),
    "fulfilled": frozenset({"restocked"}),
    "restocked": frozenset(),
}

# 状态 -> 需要写入的时间戳字段
STATUS_TIMESTAMPS: Dict[str, str] = {
    "paid": "paid_at",
    "shipped": "shipped_at",
    "delivered": "delivered_at",
    "completed": "completed_at",
    "cancelled": "cancelled_at",
}


class OrderStateMachine:
    """单个状态字段的流转表"""

    def __init__(self, field: str, transitions: Dict[str, FrozenSet[str]]):
        self.field = field
        self.transitions = transitions

    @property
    def states(self) -> FrozenSet[str]:
        return frozenset(self.transitions)

    def can_transition(self, from_status: Optional[str], to_status: str) -> bool:
        """判断是否允许从 from_status 流转到 to_status"""
        if from_status not in self.transitions:
            return False
        return to_status in self.transitions[from_status]

    def allowed_transitions(self, from_status: str) -> FrozenSet[str]:
        return self.transitions.get(from_status, frozenset())

    def assert_transition(self, from_status: Optional[str], to_status: str) -> None:
        """校验流转，不合法时抛出 InvalidStatusTransitionError"""
        if not self.can_transition(from_status, to_status):
            raise InvalidStatusTransitionError(self.field, from_status, to_status)

    def is_terminal(self, status: str) -> bool:
        return status in self.transitions and not self.transitions[status]


order_status_machine = OrderStateMachine("status", ORDER_TRANSITIONS)
payment_status_machine = OrderStateMachine("payment_status", PAYMENT_TRANSITIONS)
fulfillment_status_machine = OrderStateMachine("fulfillment_status", FULFILLMENT_TRANSITIONS)
