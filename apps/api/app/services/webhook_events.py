"""Parsing of payment provider webhook payloads.

Mercado Pago has delivered several notification shapes over the years
(webhooks v1, IPN, feed v2). The event type may be in ``type``, ``topic`` or
``action`` and the payment id in ``data.id``, ``resource.id`` or a top-level
``id``. The body is only used to locate the payment; its status fields are
never trusted.
"""

from dataclasses import dataclass
from typing import Any, Mapping

PAYMENT_EVENT_MARKER = "payment"
UNKNOWN_EVENT_TYPE = "unknown"

_EVENT_TYPE_KEYS = ("type", "topic", "action")


@dataclass(frozen=True)
class RecognizedPaymentEvent:
    event_type: str
    payment_id: str


@dataclass(frozen=True)
class UnrecognizedEvent:
    event_type: str
    reason: str


WebhookEvent = RecognizedPaymentEvent | UnrecognizedEvent


def _as_identifier(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _nested_id(payload: Mapping[str, Any], key: str) -> str | None:
    container = payload.get(key)
    if not isinstance(container, Mapping):
        return None
    return _as_identifier(container.get("id"))


def extract_event_type(payload: Mapping[str, Any]) -> str:
    for key in _EVENT_TYPE_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return UNKNOWN_EVENT_TYPE


def extract_payment_id(payload: Mapping[str, Any]) -> str | None:
    return (
        _nested_id(payload, "data")
        or _nested_id(payload, "resource")
        or _as_identifier(payload.get("id"))
    )


def is_payment_event(event_type: str) -> bool:
    return PAYMENT_EVENT_MARKER in event_type.lower()


def parse_webhook_payload(payload: Mapping[str, Any]) -> WebhookEvent:
    event_type = extract_event_type(payload)
    payment_id = extract_payment_id(payload)

    if payment_id is None:
        return UnrecognizedEvent(event_type=event_type, reason="missing_payment_id")
    if not is_payment_event(event_type):
        return UnrecognizedEvent(event_type=event_type, reason="not_a_payment_event")
    return RecognizedPaymentEvent(event_type=event_type, payment_id=payment_id)
