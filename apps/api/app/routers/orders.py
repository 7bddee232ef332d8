from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.auth.dependencies import AuthContext, get_auth_context, require_admin, resolve_admin_flag
from app.db.session import get_db
from app.dependencies import get_payment_provider_client
from app.integrations.errors import IntegrationError, IntegrationNotFoundError
from app.integrations.payment_provider_client import PaymentProviderProtocol
from app.models.order import OrderStatus
from app.schemas.order import (
    OrderActionResponse,
    OrderCreateRequest,
    OrderEventResponse,
    OrderEventsResponse,
    OrderResponse,
    OrdersListResponse,
    OrderStatusUpdateRequest,
)
from app.schemas.payments import (
    CardPaymentRequest,
    CardPaymentResponse,
    PixPaymentRequest,
    PixPaymentResponse,
    PreferenceRequest,
    PreferenceResponse,
)
from app.services.orders_service import (
    apply_admin_action,
    create_order,
    get_order,
    list_order_events,
    list_orders,
    set_order_status,
)
from app.services.payments_service import (
    create_card_payment_for_order,
    create_pix_payment_for_order,
    create_preference_for_order,
)
from app.services.state_machine import AdminAction

router = APIRouter(prefix="/api/v1/orders", tags=["orders"])


def translate_integration_error(err: IntegrationError) -> HTTPException:
    detail = {"service": err.service, "code": err.code, "message": err.message}
    if isinstance(err, IntegrationNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
    if err.retryable:
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)


@router.post("", response_model=OrderResponse, summary="Create order", status_code=201)
def create_order_endpoint(
    payload: OrderCreateRequest,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(get_auth_context),
) -> OrderResponse:
    return OrderResponse.model_validate(create_order(db, auth, payload))


@router.get("", response_model=OrdersListResponse, summary="List orders for the back office")
def list_orders_endpoint(
    db: Session = Depends(get_db),
    status_filter: OrderStatus | None = Query(default=None, alias="status"),
    _auth: AuthContext = Depends(require_admin),
) -> OrdersListResponse:
    items = list_orders(db, status_filter)
    return OrdersListResponse(
        items=[OrderResponse.model_validate(order) for order in items],
        total=len(items),
    )


@router.get("/{order_id}", response_model=OrderResponse, summary="Get order detail")
def get_order_endpoint(order_id: str, db: Session = Depends(get_db)) -> OrderResponse:
    return OrderResponse.model_validate(get_order(db, order_id))


@router.patch(
    "/{order_id}/status",
    response_model=OrderResponse,
    summary="Overwrite order status",
)
def update_status_endpoint(
    order_id: str,
    payload: OrderStatusUpdateRequest,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_admin),
) -> OrderResponse:
    return OrderResponse.model_validate(set_order_status(db, order_id, payload.status, auth))


@router.post(
    "/{order_id}/actions/{action}",
    response_model=OrderActionResponse,
    summary="Apply a back-office action",
)
def order_action_endpoint(
    order_id: str,
    action: AdminAction,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_admin),
) -> OrderActionResponse:
    order = apply_admin_action(db, order_id, action, auth)
    return OrderActionResponse(order_id=order.id, action=action, status=order.status)


@router.get(
    "/{order_id}/events",
    response_model=OrderEventsResponse,
    summary="Get order timeline",
)
def get_events_endpoint(
    order_id: str,
    db: Session = Depends(get_db),
    _auth: AuthContext = Depends(require_admin),
) -> OrderEventsResponse:
    events = [OrderEventResponse.model_validate(event) for event in list_order_events(db, order_id)]
    return OrderEventsResponse(items=events)


@router.post(
    "/{order_id}/payments/pix",
    response_model=PixPaymentResponse,
    summary="Create a PIX payment for an order",
    status_code=201,
)
def create_pix_endpoint(
    order_id: str,
    payload: PixPaymentRequest,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(get_auth_context),
    provider: PaymentProviderProtocol = Depends(get_payment_provider_client),
) -> PixPaymentResponse:
    actor = resolve_admin_flag(auth, db)
    try:
        pix = create_pix_payment_for_order(db, provider, order_id, actor, payload)
    except IntegrationError as err:
        raise translate_integration_error(err) from err

    return PixPaymentResponse(
        order_id=order_id,
        payment_id=pix.id,
        status=pix.status,
        qr_code=pix.qr_code,
        qr_code_base64=pix.qr_code_base64,
        ticket_url=pix.ticket_url,
        date_of_expiration=pix.date_of_expiration,
    )


@router.post(
    "/{order_id}/payments/card",
    response_model=CardPaymentResponse,
    summary="Charge a card for an order",
    status_code=201,
)
def create_card_endpoint(
    order_id: str,
    payload: CardPaymentRequest,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(get_auth_context),
    provider: PaymentProviderProtocol = Depends(get_payment_provider_client),
) -> CardPaymentResponse:
    actor = resolve_admin_flag(auth, db)
    try:
        card = create_card_payment_for_order(db, provider, order_id, actor, payload)
    except IntegrationError as err:
        raise translate_integration_error(err) from err

    return CardPaymentResponse(
        order_id=order_id,
        payment_id=card.id,
        status=card.status,
        status_detail=card.status_detail,
        payment_method_id=card.payment_method_id,
    )


@router.post(
    "/{order_id}/payments/preference",
    response_model=PreferenceResponse,
    summary="Create a Checkout Pro preference for an order",
    status_code=201,
)
def create_preference_endpoint(
    order_id: str,
    payload: PreferenceRequest,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(get_auth_context),
    provider: PaymentProviderProtocol = Depends(get_payment_provider_client),
) -> PreferenceResponse:
    actor = resolve_admin_flag(auth, db)
    try:
        preference = create_preference_for_order(db, provider, order_id, actor, payload)
    except IntegrationError as err:
        raise translate_integration_error(err) from err

    return PreferenceResponse(
        order_id=order_id,
        preference_id=preference.id,
        init_point=preference.init_point,
        sandbox_init_point=preference.sandbox_init_point,
    )
