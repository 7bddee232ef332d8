import threading
from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import app.models  # noqa: F401
from app.auth.jwt import issue_jwt
from app.config import settings
from app.db.base import Base
from app.db.session import engine as app_engine
from app.db.session import get_db
from app.dependencies import get_payment_provider_client
from app.integrations.errors import IntegrationError, IntegrationNotFoundError
from app.integrations.payment_provider_client import (
    SERVICE_NAME,
    CardPayment,
    CheckoutPreference,
    PixPayment,
    ProviderPayment,
)
from app.main import app
from app.models.admin_role import AdminRole
from app.models.domain import new_order_id, now_utc
from app.models.order import DeliveryType, Order, OrderStatus, PaymentMethod
from app.observability import metrics_store

ADMIN_SUBJECT = "admin-1"
CUSTOMER_SUBJECT = "customer-1"


class FakePaymentProvider:
    def __init__(self) -> None:
        self.payments: dict[str, ProviderPayment] = {}
        self.errors: dict[str, Exception] = {}
        self.create_error: IntegrationError | None = None
        self.lookups: list[str] = []
        self.created: list[dict] = []
        self.card_status = "approved"
        self.closed = False

    def add_payment(
        self,
        payment_id: str,
        status: str,
        external_reference: str | None,
        status_detail: str | None = None,
    ) -> ProviderPayment:
        payment = ProviderPayment(
            id=payment_id,
            status=status,
            status_detail=status_detail,
            external_reference=external_reference,
        )
        self.payments[payment_id] = payment
        return payment

    def get_payment(self, payment_id: str) -> ProviderPayment:
        self.lookups.append(payment_id)
        if payment_id in self.errors:
            raise self.errors[payment_id]
        if payment_id not in self.payments:
            raise IntegrationNotFoundError(SERVICE_NAME, "Payment not found")
        return self.payments[payment_id]

    def create_pix_payment(self, **kwargs) -> PixPayment:
        self.created.append(kwargs)
        if self.create_error:
            raise self.create_error
        payment_id = str(9000 + len(self.created))
        self.add_payment(payment_id, "pending", kwargs["external_reference"])
        return PixPayment(
            id=payment_id,
            status="pending",
            qr_code="00020126580014br.gov.bcb.pix",
            qr_code_base64="aVZCT1J3MEtHZ28=",
            ticket_url=f"https://www.mercadopago.com.br/payments/{payment_id}/ticket",
            date_of_expiration="2026-10-19T12:00:00.000-03:00",
        )

    def create_card_payment(self, **kwargs) -> CardPayment:
        self.created.append(kwargs)
        if self.create_error:
            raise self.create_error
        payment_id = str(9000 + len(self.created))
        self.add_payment(payment_id, self.card_status, kwargs["external_reference"])
        return CardPayment(
            id=payment_id,
            status=self.card_status,
            status_detail="accredited" if self.card_status == "approved" else None,
            payment_method_id=kwargs["form_data"].get("payment_method_id"),
        )

    def create_preference(self, **kwargs) -> CheckoutPreference:
        self.created.append(kwargs)
        if self.create_error:
            raise self.create_error
        preference_id = f"pref-{len(self.created)}"
        return CheckoutPreference(
            id=preference_id,
            init_point=f"https://mp.test/checkout/v1/redirect?pref_id={preference_id}",
        )

    def close(self) -> None:
        self.closed = True


@pytest.fixture(scope="session", autouse=True)
def enable_testing_mode():
    original = settings.testing
    settings.testing = True
    yield
    settings.testing = original


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=app_engine)
    Base.metadata.create_all(bind=app_engine)
    yield


@pytest.fixture(autouse=True)
def reset_metrics_store():
    metrics_store.reset()
    yield


@pytest.fixture
def db_session():
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=app_engine)
    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def fake_provider():
    return FakePaymentProvider()


@pytest.fixture
def client(db_session, fake_provider):
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=app_engine)
    db_session_lock = threading.Lock()

    def override_get_db():
        if db_session_lock.acquire(blocking=False):
            try:
                yield db_session
            finally:
                db_session_lock.release()
            return

        db = testing_session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_provider_client] = lambda: fake_provider
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def bearer(subject: str, **claims) -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_jwt(subject, settings.jwt_secret, **claims)}"}


@pytest.fixture
def customer_headers():
    return bearer(CUSTOMER_SUBJECT, email="cliente@example.com")


@pytest.fixture
def admin_headers(db_session):
    db_session.add(AdminRole(subject_id=ADMIN_SUBJECT, granted_by="tests"))
    db_session.commit()
    return bearer(ADMIN_SUBJECT)


@pytest.fixture
def order_factory(db_session):
    def _create(
        status: OrderStatus = OrderStatus.AWAITING_PAYMENT,
        expires_in: timedelta | None = timedelta(hours=24),
        customer_id: str = CUSTOMER_SUBJECT,
        online: bool | None = None,
    ) -> Order:
        now = now_utc()
        order_id = new_order_id()
        if online is None:
            online = status == OrderStatus.AWAITING_PAYMENT
        order = Order(
            id=order_id,
            customer_id=customer_id,
            customer_name="Maria Silva",
            customer_phone="+5511999990000",
            delivery_type=DeliveryType.PICKUP,
            payment_method=PaymentMethod.ONLINE if online else PaymentMethod.CASH,
            items=[{"name": "Bolo de cenoura", "unit_price": "35.00", "quantity": 2}],
            total=Decimal("70.00"),
            status=status,
            external_reference=order_id if online else None,
            expires_at=(
                now + expires_in
                if status == OrderStatus.AWAITING_PAYMENT and expires_in is not None
                else None
            ),
            created_at=now,
            updated_at=now,
        )
        db_session.add(order)
        db_session.commit()
        db_session.refresh(order)
        return order

    return _create


@pytest.fixture
def make_headers():
    return bearer
