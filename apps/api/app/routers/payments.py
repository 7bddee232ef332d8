from typing import Any

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from app.auth.dependencies import AuthContext, get_auth_context
from app.db.session import get_db
from app.dependencies import get_payment_provider_client
from app.integrations.payment_provider_client import PaymentProviderProtocol
from app.schemas.payments import PaymentStatusResponse, WebhookAck, WebhookProbeResponse
from app.services.payment_webhook_service import handle_payment_webhook
from app.services.payments_service import query_payment_status

router = APIRouter(prefix="/api/v1/payments", tags=["payments"])


@router.post("/webhook", response_model=WebhookAck, summary="Payment provider notification")
def payment_webhook_endpoint(
    payload: dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    provider: PaymentProviderProtocol = Depends(get_payment_provider_client),
) -> WebhookAck:
    """Always acknowledged; the provider would otherwise keep redelivering.

    Processing problems are logged and counted, never returned.
    """
    handle_payment_webhook(db, provider, payload)
    return WebhookAck()


@router.get("/webhook", response_model=WebhookProbeResponse, summary="Webhook reachability probe")
def payment_webhook_probe() -> WebhookProbeResponse:
    return WebhookProbeResponse()


@router.get(
    "/{payment_id}",
    response_model=PaymentStatusResponse,
    summary="Query payment status at the provider",
)
def payment_status_endpoint(
    payment_id: str,
    _auth: AuthContext = Depends(get_auth_context),
    provider: PaymentProviderProtocol = Depends(get_payment_provider_client),
) -> PaymentStatusResponse:
    return query_payment_status(provider, payment_id)
