"""Payment notification handling.

Notifications only say that *something* happened to a payment. The order is
never updated from the notification body: the payment is always re-read from
the provider and its external reference is used to find the order.
``handle_payment_webhook`` never raises: every failure is logged, counted and
reported as an outcome so the webhook route can always acknowledge.
"""

import enum
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.integrations.errors import IntegrationError
from app.integrations.payment_provider_client import PaymentProviderProtocol
from app.models.order import OrderStatus
from app.observability import log_event, metrics_store
from app.services.orders_service import apply_payment_update, find_order_by_external_reference
from app.services.webhook_events import (
    RecognizedPaymentEvent,
    UnrecognizedEvent,
    WebhookEvent,
    parse_webhook_payload,
)


class WebhookOutcome(str, enum.Enum):
    IGNORED = "ignored"
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    ORDER_NOT_FOUND = "order_not_found"
    PROVIDER_ERROR = "provider_error"
    STORE_ERROR = "store_error"
    FAILED = "failed"


@dataclass(frozen=True)
class WebhookResult:
    outcome: WebhookOutcome
    event: WebhookEvent
    order_id: str | None = None
    status: OrderStatus | None = None


def apply_webhook_event(
    db: Session,
    provider: PaymentProviderProtocol,
    event: RecognizedPaymentEvent,
) -> WebhookResult:
    try:
        payment = provider.get_payment(event.payment_id)
    except IntegrationError as err:
        metrics_store.increment("payment_webhook_provider_errors_total")
        log_event(
            "payment_webhook_provider_error",
            level=logging.WARNING,
            payment_id=event.payment_id,
            detail=f"{err.code}: {err.message}",
        )
        return WebhookResult(WebhookOutcome.PROVIDER_ERROR, event)

    if not payment.external_reference:
        log_event(
            "payment_webhook_missing_reference",
            level=logging.WARNING,
            payment_id=payment.id,
        )
        return WebhookResult(WebhookOutcome.ORDER_NOT_FOUND, event)

    try:
        order = find_order_by_external_reference(db, payment.external_reference)
        if order is None:
            log_event(
                "payment_webhook_order_not_found",
                level=logging.WARNING,
                payment_id=payment.id,
                detail=f"external_reference={payment.external_reference}",
            )
            return WebhookResult(WebhookOutcome.ORDER_NOT_FOUND, event)

        order_id = order.id
        new_status = apply_payment_update(db, order, payment)
    except SQLAlchemyError:
        db.rollback()
        metrics_store.increment("payment_webhook_store_errors_total")
        log_event(
            "payment_webhook_store_error",
            level=logging.ERROR,
            payment_id=payment.id,
            exc_info=True,
        )
        return WebhookResult(WebhookOutcome.STORE_ERROR, event)

    if new_status is None:
        log_event(
            "payment_webhook_no_transition",
            order_id=order_id,
            payment_id=payment.id,
            detail=f"payment_status={payment.status}",
        )
        return WebhookResult(WebhookOutcome.UNCHANGED, event, order_id=order_id)

    metrics_store.increment("payment_webhook_transitions_total")
    log_event(
        "payment_webhook_applied",
        order_id=order_id,
        payment_id=payment.id,
        detail=f"payment_status={payment.status} status={new_status.value}",
    )
    return WebhookResult(WebhookOutcome.APPLIED, event, order_id=order_id, status=new_status)


def handle_payment_webhook(
    db: Session,
    provider: PaymentProviderProtocol,
    payload: Mapping[str, Any],
) -> WebhookResult:
    metrics_store.increment("payment_webhook_received_total")
    event = parse_webhook_payload(payload)
    if isinstance(event, UnrecognizedEvent):
        metrics_store.increment("payment_webhook_ignored_total")
        log_event(
            "payment_webhook_ignored",
            detail=f"type={event.event_type} reason={event.reason}",
        )
        return WebhookResult(WebhookOutcome.IGNORED, event)

    try:
        return apply_webhook_event(db, provider, event)
    except Exception:
        db.rollback()
        metrics_store.increment("payment_webhook_unexpected_errors_total")
        log_event(
            "payment_webhook_unexpected_error",
            level=logging.ERROR,
            payment_id=event.payment_id,
            exc_info=True,
        )
        return WebhookResult(WebhookOutcome.FAILED, event)
