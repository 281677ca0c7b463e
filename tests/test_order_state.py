"""
订单状态机测试
"""
import pytest

from sj_core.models.orders import FULFILLMENT_STATUSES, ORDER_STATUSES, PAYMENT_STATUSES
from sj_core.services.order_state import (
    FULFILLMENT_TRANSITIONS,
    ORDER_TRANSITIONS,
    PAYMENT_TRANSITIONS,
    fulfillment_status_machine,
    order_status_machine,
    payment_status_machine,
)
from sj_core.utils.errors import InvalidStatusTransitionError


@pytest.mark.parametrize(
    "transitions,statuses",
    [
        (ORDER_TRANSITIONS, ORDER_STATUSES),
        (PAYMENT_TRANSITIONS, PAYMENT_STATUSES),
        (FULFILLMENT_TRANSITIONS, FULFILLMENT_STATUSES),
    ],
)
def test_tables_cover_model_statuses(transitions, statuses):
    """流转表覆盖模型中的全部状态，且目标状态都合法"""
    assert set(transitions) == set(statuses)
    for targets in transitions.values():
        assert targets <= set(statuses)


class TestOrderStatus:
    def test_cod_flow(self):
        path = ["pending", "processing", "ready_to_ship", "shipped", "out_for_delivery", "delivered", "completed"]
        for current, nxt in zip(path, path[1:]):
            assert order_status_machine.can_transition(current, nxt)

    def test_online_payment_flow(self):
        assert order_status_machine.can_transition("pending", "payment_pending")
        assert order_status_machine.can_transition("payment_pending", "payment_failed")
        assert order_status_machine.can_transition("payment_failed", "payment_pending")
        assert order_status_machine.can_transition("payment_pending", "paid")
        assert order_status_machine.can_transition("paid", "refunded")

    def test_rejected_transitions(self):
        assert not order_status_machine.can_transition("delivered", "pending")
        assert not order_status_machine.can_transition("shipped", "cancelled")
        assert not order_status_machine.can_transition("pending", "shipped")
        assert not order_status_machine.can_transition(None, "pending")
        assert not order_status_machine.can_transition("unknown", "pending")

    def test_terminal_states(self):
        assert order_status_machine.is_terminal("cancelled")
        assert order_status_machine.is_terminal("refunded")
        assert not order_status_machine.is_terminal("completed")
        assert order_status_machine.allowed_transitions("cancelled") == frozenset()

    def test_assert_transition_raises_conflict(self):
        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            order_status_machine.assert_transition("delivered", "processing")

        error = exc_info.value
        assert error.status_code == 409
        assert error.code == "INVALID_STATUS_TRANSITION"
        assert error.extra == {"field": "status", "fromStatus": "delivered", "toStatus": "processing"}

    def test_assert_transition_allows_valid(self):
        order_status_machine.assert_transition("ready_to_ship", "shipped")

    def test_states(self):
        assert order_status_machine.states == frozenset(ORDER_STATUSES)


class TestPaymentAndFulfillment:
    def test_payment_flow(self):
        assert payment_status_machine.can_transition("pending", "authorized")
        assert payment_status_machine.can_transition("authorized", "paid")
        assert payment_status_machine.can_transition("paid", "partial")
        assert payment_status_machine.can_transition("partial", "refunded")
        assert payment_status_machine.can_transition("failed", "pending")
        assert not payment_status_machine.can_transition("refunded", "paid")
        assert payment_status_machine.is_terminal("voided")

    def test_payment_error_names_field(self):
        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            payment_status_machine.assert_transition("voided", "paid")
        assert exc_info.value.extra["field"] == "payment_status"

    def test_fulfillment_flow(self):
        assert fulfillment_status_machine.can_transition("unfulfilled", "fulfilled")
        assert fulfillment_status_machine.can_transition("partial", "fulfilled")
        assert fulfillment_status_machine.can_transition("fulfilled", "restocked")
        assert not fulfillment_status_machine.can_transition("restocked", "unfulfilled")
