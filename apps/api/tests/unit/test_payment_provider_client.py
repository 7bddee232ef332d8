import json
from decimal import Decimal

import httpx
import pytest

from app.integrations.errors import (
    IntegrationBadGatewayError,
    IntegrationNotFoundError,
    IntegrationTimeoutError,
    IntegrationUnavailableError,
)
from app.integrations.payment_provider_client import MercadoPagoClient
from app.observability import metrics_store


def _client(handler, *, token: str = "TEST-token", max_retries: int = 1, sleeps=None):
    recorded = sleeps if sleeps is not None else []
    return MercadoPagoClient(
        "https://mp.test/",
        access_token=token,
        timeout_s=1.0,
        max_retries=max_retries,
        backoff_s=0.2,
        transport=httpx.MockTransport(handler),
        sleep=recorded.append,
    )


def test_get_payment_reads_authoritative_status():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        assert request.url.path == "/v1/payments/123"
        assert request.headers["Authorization"] == "Bearer TEST-token"
        return httpx.Response(
            200,
            json={
                "id": 123,
                "status": "approved",
                "status_detail": "accredited",
                "external_reference": "order_abc",
                "transaction_amount": 70.0,
            },
        )

    payment = _client(handler).get_payment("123")

    assert payment.id == "123"
    assert payment.status == "approved"
    assert payment.status_detail == "accredited"
    assert payment.external_reference == "order_abc"


def test_create_pix_payment_sends_reference_and_idempotency_key():
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = json.loads(request.content)
        captured["idempotency"] = request.headers["X-Idempotency-Key"]
        return httpx.Response(
            201,
            json={
                "id": 999,
                "status": "pending",
                "date_of_expiration": "2026-10-19T12:00:00.000-03:00",
                "point_of_interaction": {
                    "transaction_data": {
                        "qr_code": "000201",
                        "qr_code_base64": "aGVsbG8=",
                        "ticket_url": "https://mp.test/ticket/999",
                    }
                },
            },
        )

    pix = _client(handler).create_pix_payment(
        amount=Decimal("70.00"),
        payer_email="cliente@example.com",
        description="Pedido order_abc",
        external_reference="order_abc",
        notification_url="https://loja.test/api/v1/payments/webhook",
        idempotency_key="order_abc-1",
    )

    assert pix.id == "999"
    assert pix.qr_code == "000201"
    assert pix.ticket_url == "https://mp.test/ticket/999"
    assert captured["idempotency"] == "order_abc-1"
    assert captured["body"]["payment_method_id"] == "pix"
    assert captured["body"]["transaction_amount"] == 70.0
    assert captured["body"]["external_reference"] == "order_abc"
    assert captured["body"]["payer"] == {"email": "cliente@example.com"}


def test_timeout_is_retried_with_backoff_then_succeeds():
    calls = {"count": 0}
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] == 1:
            raise httpx.ReadTimeout("slow", request=request)
        return httpx.Response(200, json={"id": "1", "status": "pending"})

    payment = _client(handler, sleeps=sleeps).get_payment("1")

    assert payment.status == "pending"
    assert calls["count"] == 2
    assert sleeps == [0.2]
    assert metrics_store.snapshot().counters["payment_provider_errors_total"] == 1


def test_timeout_after_retries_raises_timeout_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("down", request=request)

    sleeps: list[float] = []
    with pytest.raises(IntegrationTimeoutError) as exc_info:
        _client(handler, max_retries=2, sleeps=sleeps).get_payment("1")

    assert exc_info.value.retryable is True
    assert sleeps == [0.2, 0.4]


def test_server_error_is_retried_and_reported_unavailable():
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(502, json={"message": "bad gateway"})

    with pytest.raises(IntegrationUnavailableError):
        _client(handler).get_payment("1")
    assert calls["count"] == 2


def test_not_found_is_not_retried():
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(404, json={"message": "Payment not found"})

    with pytest.raises(IntegrationNotFoundError):
        _client(handler).get_payment("404")
    assert calls["count"] == 1


def test_client_error_and_malformed_payload_are_bad_gateway():
    def unauthorized(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "invalid token"})

    def not_json(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>")

    def missing_id(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": "approved"})

    for handler in (unauthorized, not_json, missing_id):
        with pytest.raises(IntegrationBadGatewayError):
            _client(handler).get_payment("1")


def test_missing_access_token_fails_without_network_call():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(IntegrationUnavailableError, match="MP_ACCESS_TOKEN"):
        _client(handler, token="  ").get_payment("1")


def test_undecodable_body_is_retried_and_reported_unavailable():
    calls = {"count": 0}
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(
            200,
            headers={"Content-Encoding": "gzip"},
            content=b"not-gzip-at-all",
        )

    with pytest.raises(IntegrationUnavailableError):
        _client(handler, sleeps=sleeps).get_payment("1")
    assert calls["count"] == 2
    assert sleeps == [0.2]


def test_redirect_loop_is_reported_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.TooManyRedirects("loop", request=request)

    with pytest.raises(IntegrationUnavailableError):
        _client(handler, max_retries=0).get_payment("1")


def test_create_card_payment_caps_installments_and_pins_order_fields():
    captured: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/payments"
        captured.append(json.loads(request.content))
        return httpx.Response(
            201,
            json={
                "id": 555,
                "status": "approved",
                "status_detail": "accredited",
                "payment_method_id": "visa",
            },
        )

    client = _client(handler)
    form_data = {
        "token": "card-token",
        "payment_method_id": "visa",
        "transaction_amount": 0.01,
        "external_reference": "tampered",
        "payer": {"email": "cliente@example.com"},
    }
    for installments in (18, 0):
        card = client.create_card_payment(
            amount=Decimal("70.00"),
            description="Pedido order_abc",
            form_data=form_data,
            installments=installments,
            external_reference="order_abc",
            notification_url="https://loja.test/api/v1/payments/webhook",
            idempotency_key="order_abc-2",
        )

    assert card.id == "555"
    assert card.status_detail == "accredited"
    assert [body["installments"] for body in captured] == [12, 1]
    assert captured[0]["token"] == "card-token"
    assert captured[0]["transaction_amount"] == 70.0
    assert captured[0]["external_reference"] == "order_abc"
    assert captured[0]["notification_url"] == "https://loja.test/api/v1/payments/webhook"


def test_create_preference_sends_back_urls_and_auto_return():
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/checkout/preferences"
        captured["body"] = json.loads(request.content)
        return httpx.Response(
            201,
            json={"id": "pref-123", "init_point": "https://mp.test/init/pref-123"},
        )

    back_urls = {
        "success": "https://loja.test/checkout/sucesso",
        "pending": "https://loja.test/checkout/pending",
        "failure": "https://loja.test/checkout/erro",
    }
    preference = _client(handler).create_preference(
        items=[{"id": "bolo-1", "title": "Bolo de cenoura", "quantity": 2, "unit_price": "35.00"}],
        external_reference="order_abc",
        notification_url="https://loja.test/api/v1/payments/webhook",
        back_urls=back_urls,
    )

    assert preference.id == "pref-123"
    assert preference.init_point == "https://mp.test/init/pref-123"
    body = captured["body"]
    assert body["auto_return"] == "approved"
    assert body["back_urls"] == back_urls
    assert body["external_reference"] == "order_abc"
    assert "payer" not in body
    assert body["items"] == [
        {
            "id": "bolo-1",
            "title": "Bolo de cenoura",
            "quantity": 2,
            "currency_id": "BRL",
            "unit_price": 35.0,
        }
    ]


def test_card_payment_without_status_is_bad_gateway():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(201, json={"id": 1})

    with pytest.raises(IntegrationBadGatewayError):
        _client(handler).create_card_payment(
            amount=Decimal("1.00"),
            description="Pedido",
            form_data={"token": "t"},
            installments=1,
            external_reference="order_abc",
            notification_url="https://loja.test/api/v1/payments/webhook",
            idempotency_key="k",
        )
