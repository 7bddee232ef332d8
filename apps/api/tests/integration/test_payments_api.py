from datetime import timedelta

import httpx

from app.dependencies import get_payment_provider_client
from app.integrations.errors import IntegrationUnavailableError
from app.integrations.payment_provider_client import MercadoPagoClient
from app.main import app
from app.models.order import OrderStatus


def test_webhook_probe(client):
    response = client.get("/api/v1/payments/webhook")

    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_approved_webhook_moves_order_once(client, order_factory, fake_provider):
    order = order_factory()
    fake_provider.add_payment("123456", "approved", order.external_reference, "accredited")
    notification = {"type": "payment", "action": "payment.updated", "data": {"id": "123456"}}

    first = client.post("/api/v1/payments/webhook", json=notification)
    second = client.post("/api/v1/payments/webhook", json=notification)

    assert first.status_code == 200
    assert first.json() == {"received": True}
    assert second.json() == {"received": True}

    stored = client.get(f"/api/v1/orders/{order.id}").json()
    assert stored["status"] == "IN_PROGRESS"
    assert stored["payment_status"] == "approved"
    assert fake_provider.lookups == ["123456", "123456"]


def test_webhook_without_payment_id_is_acknowledged(client, fake_provider):
    response = client.post("/api/v1/payments/webhook", json={"type": "payment", "data": {}})

    assert response.status_code == 200
    assert response.json() == {"received": True}
    assert fake_provider.lookups == []


def test_webhook_acknowledges_provider_outage(client, order_factory, fake_provider):
    order = order_factory()
    fake_provider.errors["1"] = IntegrationUnavailableError("mercado_pago")

    response = client.post("/api/v1/payments/webhook", json={"type": "payment", "data": {"id": 1}})

    assert response.status_code == 200
    assert client.get(f"/api/v1/orders/{order.id}").json()["status"] == "AWAITING_PAYMENT"


def test_webhook_acknowledges_undecodable_provider_response(client, order_factory):
    order = order_factory()

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            headers={"Content-Encoding": "gzip"},
            content=b"not-gzip-at-all",
        )

    provider = MercadoPagoClient(
        "https://mp.test",
        access_token="TEST-token",
        timeout_s=1.0,
        max_retries=1,
        backoff_s=0.0,
        transport=httpx.MockTransport(handler),
        sleep=lambda _: None,
    )
    app.dependency_overrides[get_payment_provider_client] = lambda: provider
    try:
        response = client.post(
            "/api/v1/payments/webhook", json={"type": "payment", "data": {"id": "123"}}
        )
    finally:
        provider.close()

    assert response.status_code == 200
    assert response.json() == {"received": True}
    assert client.get(f"/api/v1/orders/{order.id}").json()["status"] == "AWAITING_PAYMENT"


def test_webhook_rejects_non_object_body(client):
    assert client.post("/api/v1/payments/webhook", json=["payment"]).status_code == 422
    assert (
        client.post(
            "/api/v1/payments/webhook",
            content=b"not-json",
            headers={"Content-Type": "application/json"},
        ).status_code
        == 422
    )


def test_sweep_then_late_approval_keeps_order_cancelled(client, order_factory, fake_provider):
    order = order_factory(expires_in=timedelta(minutes=-1))
    fake_provider.add_payment("42", "approved", order.external_reference)

    sweep = client.post("/api/v1/jobs/expire-orders")
    assert sweep.json() == {"ok": True, "updated": 1}

    client.post("/api/v1/payments/webhook", json={"type": "payment", "data": {"id": "42"}})

    assert client.get(f"/api/v1/orders/{order.id}").json()["status"] == OrderStatus.CANCELLED.value


def test_payment_status_query(client, customer_headers, fake_provider):
    fake_provider.add_payment("77", "in_process", "order_x", "pending_review_manual")

    response = client.get("/api/v1/payments/77", headers=customer_headers)

    assert response.status_code == 200
    assert response.json() == {
        "ok": True,
        "payment_id": "77",
        "payment_status": "in_process",
        "status_detail": "pending_review_manual",
        "error": None,
    }


def test_payment_status_query_reports_provider_errors(client, customer_headers):
    response = client.get("/api/v1/payments/unknown", headers=customer_headers)

    assert response.status_code == 200
    assert response.json()["ok"] is False
    assert response.json()["error"] == "NOT_FOUND"


def test_payment_status_query_requires_authentication(client):
    assert client.get("/api/v1/payments/77").status_code == 401
