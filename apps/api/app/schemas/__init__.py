from app.schemas.jobs import ExpireOrdersResponse
from app.schemas.order import (
    DeliveryAddress,
    OrderActionResponse,
    OrderCreateRequest,
    OrderEventResponse,
    OrderEventsResponse,
    OrderItem,
    OrderResponse,
    OrdersListResponse,
    OrderStatusUpdateRequest,
)
from app.schemas.payments import (
    PaymentStatusResponse,
    PixPaymentRequest,
    PixPaymentResponse,
    WebhookAck,
    WebhookProbeResponse,
)

__all__ = [
    "DeliveryAddress",
    "ExpireOrdersResponse",
    "OrderActionResponse",
    "OrderCreateRequest",
    "OrderEventResponse",
    "OrderEventsResponse",
    "OrderItem",
    "OrderResponse",
    "OrdersListResponse",
    "OrderStatusUpdateRequest",
    "PaymentStatusResponse",
    "PixPaymentRequest",
    "PixPaymentResponse",
    "WebhookAck",
    "WebhookProbeResponse",
]
