import enum

from fastapi import HTTPException, status

from app.models.order import PENDING_PAYMENT_STATUSES, TERMINAL_STATUSES, OrderStatus
from app.models.order_event import OrderEventType


class PaymentStatus(str, enum.Enum):
    APPROVED = "approved"
    PENDING = "pending"
    AUTHORIZED = "authorized"
    IN_PROCESS = "in_process"
    IN_MEDIATION = "in_mediation"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    CHARGED_BACK = "charged_back"


class AdminAction(str, enum.Enum):
    CONFIRM = "confirm"
    DISPATCH = "dispatch"
    DELIVER = "deliver"
    CANCEL = "cancel"


# Status an approved payment moves an order into. Fulfilment then starts from
# the same state a cash order is created in.
PAYMENT_APPROVED_STATUS = OrderStatus.IN_PROGRESS

PAYMENT_STATUS_TRANSITIONS: dict[PaymentStatus, OrderStatus] = {
    PaymentStatus.APPROVED: PAYMENT_APPROVED_STATUS,
    PaymentStatus.REJECTED: OrderStatus.CANCELLED,
    PaymentStatus.CANCELLED: OrderStatus.CANCELLED,
}

ADMIN_ACTION_TRANSITIONS: dict[AdminAction, tuple[frozenset[OrderStatus], OrderStatus]] = {
    AdminAction.CONFIRM: (frozenset({OrderStatus.IN_PROGRESS}), OrderStatus.CONFIRMED),
    AdminAction.DISPATCH: (frozenset({OrderStatus.CONFIRMED}), OrderStatus.EN_ROUTE),
    AdminAction.DELIVER: (frozenset({OrderStatus.EN_ROUTE}), OrderStatus.DELIVERED),
    AdminAction.CANCEL: (
        frozenset(status for status in OrderStatus if status not in TERMINAL_STATUSES),
        OrderStatus.CANCELLED,
    ),
}


def is_terminal(current: OrderStatus) -> bool:
    return current in TERMINAL_STATUSES


def is_pending_payment(current: OrderStatus) -> bool:
    return current in PENDING_PAYMENT_STATUSES


def initial_status(payment_is_online: bool) -> OrderStatus:
    return OrderStatus.AWAITING_PAYMENT if payment_is_online else OrderStatus.IN_PROGRESS


def payment_target_status(provider_status: str | None) -> OrderStatus | None:
    """Order status a provider payment status leads to, or None for no change.

    Unknown provider statuses never move an order.
    """
    if not provider_status:
        return None
    try:
        payment_status = PaymentStatus(provider_status.strip().lower())
    except ValueError:
        return None
    return PAYMENT_STATUS_TRANSITIONS.get(payment_status)


def payment_transition(current: OrderStatus, provider_status: str | None) -> OrderStatus | None:
    if not is_pending_payment(current):
        return None
    return payment_target_status(provider_status)


def ensure_valid_admin_action(current: OrderStatus, action: AdminAction) -> OrderStatus:
    allowed_from, next_status = ADMIN_ACTION_TRANSITIONS[action]
    if current not in allowed_from:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Invalid state transition: {current.value} -> {next_status.value}",
        )
    return next_status


def event_type_for_status(status_value: OrderStatus) -> OrderEventType:
    return OrderEventType[status_value.value]
