import pytest
from fastapi import HTTPException

from app.models.order import OrderStatus
from app.models.order_event import OrderEventType
from app.services.state_machine import (
    AdminAction,
    ensure_valid_admin_action,
    event_type_for_status,
    initial_status,
    is_terminal,
    payment_target_status,
    payment_transition,
)


def test_initial_status_depends_on_online_payment():
    assert initial_status(True) == OrderStatus.AWAITING_PAYMENT
    assert initial_status(False) == OrderStatus.IN_PROGRESS


@pytest.mark.parametrize(
    ("provider_status", "expected"),
    [
        ("approved", OrderStatus.IN_PROGRESS),
        ("rejected", OrderStatus.CANCELLED),
        ("cancelled", OrderStatus.CANCELLED),
        (" APPROVED ", OrderStatus.IN_PROGRESS),
        ("pending", None),
        ("in_process", None),
        ("refunded", None),
        ("something_new", None),
        (None, None),
        ("", None),
    ],
)
def test_payment_target_status(provider_status, expected):
    assert payment_target_status(provider_status) == expected


@pytest.mark.parametrize(
    "current",
    [
        OrderStatus.IN_PROGRESS,
        OrderStatus.CONFIRMED,
        OrderStatus.EN_ROUTE,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    ],
)
def test_payment_transition_only_leaves_awaiting_payment(current):
    assert payment_transition(current, "approved") is None
    assert payment_transition(current, "rejected") is None


def test_payment_transition_from_awaiting_payment():
    assert payment_transition(OrderStatus.AWAITING_PAYMENT, "approved") == OrderStatus.IN_PROGRESS
    assert payment_transition(OrderStatus.AWAITING_PAYMENT, "rejected") == OrderStatus.CANCELLED
    assert payment_transition(OrderStatus.AWAITING_PAYMENT, "pending") is None


def test_terminal_statuses():
    assert is_terminal(OrderStatus.DELIVERED)
    assert is_terminal(OrderStatus.CANCELLED)
    assert not is_terminal(OrderStatus.AWAITING_PAYMENT)


def test_admin_actions_follow_fulfilment_chain():
    assert ensure_valid_admin_action(OrderStatus.IN_PROGRESS, AdminAction.CONFIRM) == OrderStatus.CONFIRMED
    assert ensure_valid_admin_action(OrderStatus.CONFIRMED, AdminAction.DISPATCH) == OrderStatus.EN_ROUTE
    assert ensure_valid_admin_action(OrderStatus.EN_ROUTE, AdminAction.DELIVER) == OrderStatus.DELIVERED
    assert (
        ensure_valid_admin_action(OrderStatus.AWAITING_PAYMENT, AdminAction.CANCEL)
        == OrderStatus.CANCELLED
    )


def test_admin_action_rejects_invalid_transition():
    with pytest.raises(HTTPException) as exc_info:
        ensure_valid_admin_action(OrderStatus.AWAITING_PAYMENT, AdminAction.DISPATCH)

    assert exc_info.value.status_code == 409
    assert exc_info.value.detail == "Invalid state transition: AWAITING_PAYMENT -> EN_ROUTE"


def test_cancel_is_rejected_for_terminal_orders():
    for current in (OrderStatus.DELIVERED, OrderStatus.CANCELLED):
        with pytest.raises(HTTPException) as exc_info:
            ensure_valid_admin_action(current, AdminAction.CANCEL)
        assert exc_info.value.status_code == 409


def test_every_status_has_an_event_type():
    for status in OrderStatus:
        assert event_type_for_status(status) == OrderEventType[status.value]
