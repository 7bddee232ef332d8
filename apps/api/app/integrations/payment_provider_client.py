import time
from collections.abc import Mapping
from decimal import Decimal
from typing import Any, Callable, Protocol
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ValidationError, field_validator

from app.config import settings
from app.integrations.errors import (
    IntegrationBadGatewayError,
    IntegrationNotFoundError,
    IntegrationTimeoutError,
    IntegrationUnavailableError,
)
from app.observability import metrics_store, observe_timing

SERVICE_NAME = "mercado_pago"
CURRENCY_ID = "BRL"
MIN_INSTALLMENTS = 1
MAX_INSTALLMENTS = 12


def _coerce_id(value: Any) -> Any:
    if isinstance(value, bool):
        raise ValueError("payment id must be a string or integer")
    if isinstance(value, int):
        return str(value)
    return value


class ProviderPayment(BaseModel):
    id: str
    status: str | None = None
    status_detail: str | None = None
    external_reference: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def normalize_id(cls, value: Any) -> Any:
        return _coerce_id(value)


class PixPayment(BaseModel):
    id: str
    status: str = "pending"
    qr_code: str | None = None
    qr_code_base64: str | None = None
    ticket_url: str | None = None
    date_of_expiration: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def normalize_id(cls, value: Any) -> Any:
        return _coerce_id(value)


class CardPayment(BaseModel):
    id: str
    status: str
    status_detail: str | None = None
    payment_method_id: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def normalize_id(cls, value: Any) -> Any:
        return _coerce_id(value)


class CheckoutPreference(BaseModel):
    id: str
    init_point: str | None = None
    sandbox_init_point: str | None = None


class PaymentProviderProtocol(Protocol):
    def get_payment(self, payment_id: str) -> ProviderPayment: ...

    def create_pix_payment(
        self,
        *,
        amount: Decimal,
        payer_email: str,
        description: str,
        external_reference: str,
        notification_url: str,
        idempotency_key: str,
    ) -> PixPayment: ...

    def create_card_payment(
        self,
        *,
        amount: Decimal,
        description: str,
        form_data: Mapping[str, Any],
        installments: int,
        external_reference: str,
        notification_url: str,
        idempotency_key: str,
    ) -> CardPayment: ...

    def create_preference(
        self,
        *,
        items: list[dict[str, Any]],
        external_reference: str,
        notification_url: str,
        back_urls: dict[str, str],
        payer: dict[str, Any] | None = None,
    ) -> CheckoutPreference: ...

    def close(self) -> None: ...


class MercadoPagoClient:
    """Mercado Pago payments API client.

    One instance is built at application startup and shared by every request.
    All calls apply a bounded timeout and retry transient failures with
    exponential backoff before surfacing an ``IntegrationError``.
    """

    def __init__(
        self,
        base_url: str,
        access_token: str,
        timeout_s: float,
        max_retries: int,
        backoff_s: float,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token.strip()
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.backoff_s = backoff_s
        self._sleep = sleep
        self._http = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(
                connect=timeout_s,
                read=timeout_s,
                write=timeout_s,
                pool=timeout_s,
            ),
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def get_payment(self, payment_id: str) -> ProviderPayment:
        payload = self._request("GET", f"/v1/payments/{quote(payment_id, safe='')}")
        try:
            return ProviderPayment.model_validate(payload)
        except ValidationError as err:
            raise IntegrationBadGatewayError(
                SERVICE_NAME, "Payment lookup returned malformed payload"
            ) from err

    def create_pix_payment(
        self,
        *,
        amount: Decimal,
        payer_email: str,
        description: str,
        external_reference: str,
        notification_url: str,
        idempotency_key: str,
    ) -> PixPayment:
        body = {
            "transaction_amount": float(amount),
            "description": description,
            "payment_method_id": "pix",
            "external_reference": external_reference,
            "notification_url": notification_url,
            "payer": {"email": payer_email},
        }
        payload = self._request(
            "POST",
            "/v1/payments",
            json=body,
            headers={"X-Idempotency-Key": idempotency_key},
        )
        transaction_data = (payload.get("point_of_interaction") or {}).get(
            "transaction_data"
        ) or {}
        try:
            return PixPayment.model_validate(
                {
                    "id": payload.get("id"),
                    "status": payload.get("status") or "pending",
                    "qr_code": transaction_data.get("qr_code"),
                    "qr_code_base64": transaction_data.get("qr_code_base64"),
                    "ticket_url": transaction_data.get("ticket_url"),
                    "date_of_expiration": payload.get("date_of_expiration"),
                }
            )
        except ValidationError as err:
            raise IntegrationBadGatewayError(
                SERVICE_NAME, "PIX payment creation returned malformed payload"
            ) from err

    def create_card_payment(
        self,
        *,
        amount: Decimal,
        description: str,
        form_data: Mapping[str, Any],
        installments: int,
        external_reference: str,
        notification_url: str,
        idempotency_key: str,
    ) -> CardPayment:
        """Charge a card tokenized by the Payment Brick.

        ``form_data`` carries the brick fields (token, payment_method_id,
        issuer_id, payer). Amount, reference and notification URL always come
        from the order and override anything the form sent.
        """
        body = {
            **form_data,
            "transaction_amount": float(amount),
            "description": description,
            "installments": min(max(installments, MIN_INSTALLMENTS), MAX_INSTALLMENTS),
            "external_reference": external_reference,
            "notification_url": notification_url,
        }
        payload = self._request(
            "POST",
            "/v1/payments",
            json=body,
            headers={"X-Idempotency-Key": idempotency_key},
        )
        try:
            return CardPayment.model_validate(payload)
        except ValidationError as err:
            raise IntegrationBadGatewayError(
                SERVICE_NAME, "Card payment returned malformed payload"
            ) from err

    def create_preference(
        self,
        *,
        items: list[dict[str, Any]],
        external_reference: str,
        notification_url: str,
        back_urls: dict[str, str],
        payer: dict[str, Any] | None = None,
    ) -> CheckoutPreference:
        body: dict[str, Any] = {
            "items": [
                {
                    "id": item.get("id"),
                    "title": item["title"],
                    "quantity": item["quantity"],
                    "currency_id": item.get("currency_id") or CURRENCY_ID,
                    "unit_price": float(item["unit_price"]),
                }
                for item in items
            ],
            "back_urls": back_urls,
            "auto_return": "approved",
            "notification_url": notification_url,
            "external_reference": external_reference,
        }
        if payer:
            body["payer"] = payer
        payload = self._request("POST", "/checkout/preferences", json=body)
        try:
            return CheckoutPreference.model_validate(payload)
        except ValidationError as err:
            raise IntegrationBadGatewayError(
                SERVICE_NAME, "Preference creation returned malformed payload"
            ) from err

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        if not self.access_token:
            raise IntegrationUnavailableError(SERVICE_NAME, "MP_ACCESS_TOKEN is not configured")

        request_headers = {"Authorization": f"Bearer {self.access_token}", **(headers or {})}
        attempts = self.max_retries + 1
        for attempt in range(attempts):
            try:
                metrics_store.increment("payment_provider_requests_total")
                with observe_timing("payment_provider_request_seconds"):
                    response = self._http.request(
                        method, path, json=json, headers=request_headers
                    )

                if response.status_code == 404:
                    raise IntegrationNotFoundError(SERVICE_NAME, "Payment not found")
                if response.status_code >= 500:
                    raise IntegrationUnavailableError(
                        SERVICE_NAME, "Mercado Pago returned 5xx"
                    )
                if response.status_code >= 400:
                    raise IntegrationBadGatewayError(
                        SERVICE_NAME,
                        f"Mercado Pago returned {response.status_code}",
                    )

                try:
                    payload = response.json()
                except ValueError as err:
                    raise IntegrationBadGatewayError(
                        SERVICE_NAME, "Mercado Pago returned invalid JSON"
                    ) from err
                if not isinstance(payload, dict):
                    raise IntegrationBadGatewayError(
                        SERVICE_NAME, "Mercado Pago returned malformed payload"
                    )
                return payload
            except httpx.TimeoutException:
                integration_error = IntegrationTimeoutError(SERVICE_NAME)
            except httpx.RequestError as err:
                # Transport failures plus undecodable bodies and redirect loops.
                integration_error = IntegrationUnavailableError(SERVICE_NAME, str(err))
            except IntegrationUnavailableError as err:
                integration_error = err

            metrics_store.increment("payment_provider_errors_total")
            if attempt >= self.max_retries:
                raise integration_error

            self._sleep(self.backoff_s * (2**attempt))

        raise IntegrationUnavailableError(SERVICE_NAME, "retry loop exhausted")


def build_payment_provider_client() -> MercadoPagoClient:
    return MercadoPagoClient(
        base_url=settings.mp_api_base_url,
        access_token=settings.mp_access_token,
        timeout_s=settings.mp_timeout_s,
        max_retries=settings.mp_max_retries,
        backoff_s=settings.mp_backoff_s,
    )
