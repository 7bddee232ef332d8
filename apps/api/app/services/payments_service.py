import logging
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import update
from sqlalchemy.orm import Session

from app.auth.dependencies import AuthContext
from app.config import checkout_back_urls, webhook_notification_url
from app.integrations.errors import IntegrationError
from app.integrations.payment_provider_client import (
    CardPayment,
    CheckoutPreference,
    PaymentProviderProtocol,
    PixPayment,
)
from app.models.domain import new_id, now_utc
from app.models.order import Order, OrderStatus
from app.models.order_event import OrderEventSource, OrderEventType
from app.observability import log_event, metrics_store
from app.schemas.payments import (
    CardPaymentRequest,
    PaymentStatusResponse,
    PixPaymentRequest,
    PreferenceRequest,
)
from app.services.orders_service import append_order_event, get_order


def _payable_order(db: Session, order_id: str, actor: AuthContext) -> Order:
    order = get_order(db, order_id)
    if not actor.is_admin and order.customer_id != actor.user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your order")
    if order.status != OrderStatus.AWAITING_PAYMENT or not order.external_reference:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Order is not awaiting payment: {order.status.value}",
        )
    return order


def _record_payment_attempt(
    db: Session,
    order: Order,
    *,
    payment_id: str,
    payment_status: str,
    message: str,
    payload: dict[str, Any],
) -> None:
    """Point the order at its newest payment attempt.

    The order status itself only moves when the provider notifies us.
    """
    result = db.execute(
        update(Order)
        .where(Order.id == order.id, Order.status == OrderStatus.AWAITING_PAYMENT)
        .values(
            provider_payment_id=payment_id,
            payment_status=payment_status,
            updated_at=now_utc(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        append_order_event(
            db,
            order_id=order.id,
            event_type=OrderEventType.PAYMENT_CREATED,
            source=OrderEventSource.CHECKOUT,
            message=message,
            payload={"payment_id": payment_id, "payment_status": payment_status, **payload},
        )
    db.commit()


def create_pix_payment_for_order(
    db: Session,
    provider: PaymentProviderProtocol,
    order_id: str,
    actor: AuthContext,
    request: PixPaymentRequest,
) -> PixPayment:
    order = _payable_order(db, order_id, actor)

    # Integration errors propagate; the route translates them.
    pix = provider.create_pix_payment(
        amount=order.total,
        payer_email=request.payer_email,
        description=request.description or f"Pedido {order.id}",
        external_reference=order.external_reference,
        notification_url=webhook_notification_url(),
        idempotency_key=new_id(f"{order.id}-"),
    )
    _record_payment_attempt(
        db,
        order,
        payment_id=pix.id,
        payment_status=pix.status,
        message="PIX payment created",
        payload={"payment_method": "pix"},
    )

    metrics_store.increment("pix_payments_created_total")
    log_event("pix_payment_created", order_id=order.id, payment_id=pix.id)
    return pix


def create_card_payment_for_order(
    db: Session,
    provider: PaymentProviderProtocol,
    order_id: str,
    actor: AuthContext,
    request: CardPaymentRequest,
) -> CardPayment:
    order = _payable_order(db, order_id, actor)

    card = provider.create_card_payment(
        amount=order.total,
        description=request.description or f"Pedido {order.id}",
        form_data=request.form_data(),
        installments=request.installments,
        external_reference=order.external_reference,
        notification_url=webhook_notification_url(),
        idempotency_key=new_id(f"{order.id}-"),
    )
    _record_payment_attempt(
        db,
        order,
        payment_id=card.id,
        payment_status=card.status,
        message="Card payment created",
        payload={
            "payment_method": card.payment_method_id or request.payment_method_id,
            "status_detail": card.status_detail,
        },
    )

    metrics_store.increment("card_payments_created_total")
    log_event(
        "card_payment_created",
        order_id=order.id,
        payment_id=card.id,
        detail=f"status={card.status} status_detail={card.status_detail}",
    )
    return card


def create_preference_for_order(
    db: Session,
    provider: PaymentProviderProtocol,
    order_id: str,
    actor: AuthContext,
    request: PreferenceRequest,
) -> CheckoutPreference:
    order = _payable_order(db, order_id, actor)

    items = [
        {
            "id": item.get("id"),
            "title": item["name"],
            "quantity": item["quantity"],
            "unit_price": item["unit_price"],
        }
        for item in order.items
    ]
    preference = provider.create_preference(
        items=items,
        external_reference=order.external_reference,
        notification_url=webhook_notification_url(),
        back_urls=checkout_back_urls(),
        payer={"email": request.payer_email} if request.payer_email else None,
    )

    metrics_store.increment("checkout_preferences_created_total")
    log_event(
        "checkout_preference_created",
        order_id=order.id,
        detail=f"preference={preference.id}",
    )
    return preference


def query_payment_status(provider: PaymentProviderProtocol, payment_id: str) -> PaymentStatusResponse:
    try:
        payment = provider.get_payment(payment_id)
    except IntegrationError as err:
        log_event(
            "payment_status_query_failed",
            level=logging.WARNING,
            payment_id=payment_id,
            detail=f"{err.code}: {err.message}",
        )
        return PaymentStatusResponse(ok=False, payment_id=payment_id, error=err.code)

    return PaymentStatusResponse(
        ok=True,
        payment_id=payment.id,
        payment_status=payment.status,
        status_detail=payment.status_detail,
    )
