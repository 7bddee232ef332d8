from collections.abc import Iterable
from datetime import timedelta
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from app.auth.dependencies import AuthContext
from app.config import settings
from app.integrations.payment_provider_client import ProviderPayment
from app.models.domain import new_order_id, now_utc
from app.models.order import Order, OrderStatus, PaymentMethod
from app.models.order_event import OrderEvent, OrderEventSource, OrderEventType
from app.observability import log_event, metrics_store
from app.schemas.order import OrderCreateRequest
from app.services.state_machine import (
    AdminAction,
    ensure_valid_admin_action,
    event_type_for_status,
    initial_status,
    is_pending_payment,
    payment_transition,
)

ADMIN_CANCEL_REASON = "Cancelado pelo administrador"


def append_order_event(
    db: Session,
    *,
    order_id: str,
    event_type: OrderEventType,
    source: OrderEventSource,
    message: str,
    payload: dict[str, Any] | None = None,
) -> None:
    db.add(
        OrderEvent(
            order_id=order_id,
            type=event_type,
            source=source,
            message=message,
            payload=payload or {},
            created_at=now_utc(),
        )
    )


def _guarded_update(
    db: Session,
    order_id: str,
    expected: Iterable[OrderStatus],
    values: dict[str, Any],
    *criteria: Any,
) -> bool:
    """Compare-and-set on status; False when the order left the expected states."""
    result = db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status.in_(list(expected)), *criteria)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def payment_deadline():
    return now_utc() + timedelta(seconds=settings.payment_window_s)


def create_order(db: Session, auth: AuthContext, payload: OrderCreateRequest) -> Order:
    now = now_utc()
    order_id = new_order_id()
    online = payload.payment_method == PaymentMethod.ONLINE
    total = payload.total()
    status_value = initial_status(online)

    order = Order(
        id=order_id,
        customer_id=auth.user_id,
        customer_name=payload.customer_name,
        customer_phone=payload.customer_phone,
        delivery_type=payload.delivery_type,
        payment_method=payload.payment_method,
        change_for=payload.change_for,
        items=[item.model_dump(mode="json", exclude_none=True) for item in payload.items],
        total=total,
        delivery_address=(
            payload.delivery_address.model_dump(mode="json", exclude_none=True)
            if payload.delivery_address
            else None
        ),
        status=status_value,
        external_reference=order_id if online else None,
        expires_at=payment_deadline() if online else None,
        created_at=now,
        updated_at=now,
    )
    db.add(order)
    db.flush()

    append_order_event(
        db,
        order_id=order.id,
        event_type=OrderEventType.CREATED,
        source=OrderEventSource.CHECKOUT,
        message="Order created",
        payload={
            "status": status_value.value,
            "payment_method": payload.payment_method.value,
            "total": str(total),
        },
    )
    db.commit()
    db.refresh(order)

    metrics_store.increment("orders_created_total")
    log_event("order_created", order_id=order.id, detail=f"status={status_value.value}")
    return order


def get_order(db: Session, order_id: str) -> Order:
    order = db.get(Order, order_id)
    if not order:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return order


def find_order_by_external_reference(db: Session, external_reference: str) -> Order | None:
    return db.scalar(select(Order).where(Order.external_reference == external_reference))


def list_orders(db: Session, status_filter: OrderStatus | None = None) -> list[Order]:
    query = select(Order)
    if status_filter:
        query = query.where(Order.status == status_filter)
    return list(db.scalars(query.order_by(Order.created_at.desc(), Order.id)))


def list_order_events(db: Session, order_id: str) -> list[OrderEvent]:
    get_order(db, order_id)
    events = db.scalars(
        select(OrderEvent)
        .where(OrderEvent.order_id == order_id)
        .order_by(OrderEvent.created_at.asc())
    )
    return list(events)


def apply_payment_update(db: Session, order: Order, payment: ProviderPayment) -> OrderStatus | None:
    """Apply an authoritative provider payment to its order.

    Returns the new status, or None when the transition guard did not match
    (wrong reference, order no longer awaiting payment, or a provider status
    that does not move orders). Pending provider statuses are still recorded
    on orders that are awaiting payment, unless the order already tracks a
    different payment attempt.
    """
    if not order.external_reference or payment.external_reference != order.external_reference:
        return None

    current = order.status
    if not is_pending_payment(current):
        return None

    now = now_utc()
    payment_values: dict[str, Any] = {
        "provider_payment_id": payment.id,
        "payment_status": payment.status,
        "payment_status_detail": payment.status_detail,
        "updated_at": now,
    }
    target = payment_transition(current, payment.status)
    if target is None:
        # Only the current payment attempt is recorded.
        _guarded_update(
            db,
            order.id,
            [current],
            payment_values,
            or_(Order.provider_payment_id.is_(None), Order.provider_payment_id == payment.id),
        )
        db.commit()
        return None

    values = {**payment_values, "status": target, "expires_at": None}
    if target == OrderStatus.CANCELLED:
        values["cancelled_at"] = now
        values["cancel_reason"] = f"Pagamento {payment.status}: {payment.status_detail or '-'}"

    if not _guarded_update(db, order.id, [current], values):
        db.rollback()
        return None

    append_order_event(
        db,
        order_id=order.id,
        event_type=event_type_for_status(target),
        source=OrderEventSource.PAYMENT_WEBHOOK,
        message=f"Payment {payment.status}",
        payload={
            "from_status": current.value,
            "to_status": target.value,
            "payment_id": payment.id,
            "payment_status": payment.status,
            "status_detail": payment.status_detail,
        },
    )
    db.commit()
    db.refresh(order)
    return target


def set_order_status(
    db: Session,
    order_id: str,
    requested_status: OrderStatus,
    actor: AuthContext,
) -> Order:
    """Administrative overwrite of an order status.

    The transition table is not enforced here; administrators may move an
    order to any status. Only payment-window and cancellation bookkeeping
    follow the new status.
    """
    if not actor.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")

    order = get_order(db, order_id)
    previous = order.status
    now = now_utc()

    order.status = requested_status
    order.updated_at = now
    if is_pending_payment(requested_status):
        if order.expires_at is None or not is_pending_payment(previous):
            order.expires_at = payment_deadline()
    else:
        order.expires_at = None
    if requested_status == OrderStatus.CANCELLED and previous != OrderStatus.CANCELLED:
        order.cancelled_at = now
        order.cancel_reason = ADMIN_CANCEL_REASON

    append_order_event(
        db,
        order_id=order.id,
        event_type=event_type_for_status(requested_status),
        source=OrderEventSource.ADMIN,
        message="Status changed by administrator",
        payload={
            "from_status": previous.value,
            "to_status": requested_status.value,
            "actor": actor.user_id,
        },
    )
    db.commit()
    db.refresh(order)

    metrics_store.increment("orders_manual_transition_total")
    log_event(
        "order_status_overwritten",
        order_id=order.id,
        detail=f"{previous.value}->{requested_status.value} by {actor.user_id}",
    )
    return order


def apply_admin_action(
    db: Session,
    order_id: str,
    action: AdminAction,
    actor: AuthContext,
) -> Order:
    if not actor.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")

    order = get_order(db, order_id)
    current = order.status
    next_status = ensure_valid_admin_action(current, action)

    now = now_utc()
    values: dict[str, Any] = {"status": next_status, "updated_at": now, "expires_at": None}
    if next_status == OrderStatus.CANCELLED:
        values["cancelled_at"] = now
        values["cancel_reason"] = ADMIN_CANCEL_REASON

    if not _guarded_update(db, order.id, [current], values):
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Order status changed concurrently, retry the action",
        )

    append_order_event(
        db,
        order_id=order.id,
        event_type=event_type_for_status(next_status),
        source=OrderEventSource.ADMIN,
        message=f"Admin action: {action.value}",
        payload={
            "from_status": current.value,
            "to_status": next_status.value,
            "actor": actor.user_id,
        },
    )
    db.commit()
    db.refresh(order)

    log_event(
        "order_admin_action",
        order_id=order.id,
        detail=f"{action.value}: {current.value}->{next_status.value}",
    )
    return order
