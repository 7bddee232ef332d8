from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.models.order import DeliveryType, OrderStatus, PaymentMethod
from app.models.order_event import OrderEventSource, OrderEventType
from app.services.state_machine import AdminAction

# orders.total is Numeric(12, 2)
MAX_ORDER_TOTAL = Decimal("9999999999.99")
_CENT = Decimal("0.01")


class ResponseModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class OrderItem(BaseModel):
    id: str | None = Field(default=None, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    unit_price: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    quantity: int = Field(ge=1, le=1000)
    image: str | None = Field(default=None, max_length=512)
    type: str | None = Field(default=None, max_length=32)

    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


class DeliveryAddress(BaseModel):
    street: str = Field(min_length=1, max_length=255)
    number: str = Field(min_length=1, max_length=32)
    district: str = Field(min_length=1, max_length=255)
    city: str = Field(min_length=1, max_length=255)
    postal_code: str = Field(min_length=1, max_length=16)
    complement: str | None = Field(default=None, max_length=255)
    reference: str | None = Field(default=None, max_length=255)
    lat: float | None = Field(default=None, ge=-90, le=90)
    lng: float | None = Field(default=None, ge=-180, le=180)


class OrderCreateRequest(BaseModel):
    customer_name: str = Field(min_length=1, max_length=255)
    customer_phone: str = Field(min_length=1, max_length=50)
    delivery_type: DeliveryType
    payment_method: PaymentMethod
    items: list[OrderItem] = Field(min_length=1)
    delivery_address: DeliveryAddress | None = None
    change_for: Decimal | None = Field(default=None, ge=0, max_digits=12, decimal_places=2)

    @field_validator("customer_name", "customer_phone")
    @classmethod
    def strip_strings(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped

    @model_validator(mode="after")
    def check_delivery_and_change(self) -> "OrderCreateRequest":
        if self.delivery_type == DeliveryType.DELIVERY and self.delivery_address is None:
            raise ValueError("delivery_address is required for delivery orders")
        if self.delivery_type == DeliveryType.PICKUP and self.delivery_address is not None:
            raise ValueError("delivery_address is only accepted for delivery orders")
        if self.change_for is not None and self.payment_method != PaymentMethod.CASH:
            raise ValueError("change_for is only accepted for cash payments")
        return self

    @model_validator(mode="after")
    def check_total_fits(self) -> "OrderCreateRequest":
        if self.total() > MAX_ORDER_TOTAL:
            raise ValueError(f"order total must not exceed {MAX_ORDER_TOTAL}")
        return self

    def total(self) -> Decimal:
        return sum((item.subtotal() for item in self.items), Decimal("0")).quantize(_CENT)


class OrderResponse(ResponseModel):
    id: str
    customer_id: str
    customer_name: str
    customer_phone: str
    delivery_type: DeliveryType
    payment_method: PaymentMethod
    change_for: Decimal | None
    items: list[OrderItem]
    total: Decimal
    delivery_address: DeliveryAddress | None
    status: OrderStatus
    external_reference: str | None
    provider_payment_id: str | None
    payment_status: str | None
    payment_status_detail: str | None
    expires_at: datetime | None
    cancel_reason: str | None
    cancelled_at: datetime | None
    created_at: datetime
    updated_at: datetime


class OrdersListResponse(BaseModel):
    items: list[OrderResponse]
    total: int


class OrderStatusUpdateRequest(BaseModel):
    status: OrderStatus


class OrderActionResponse(BaseModel):
    order_id: str
    action: AdminAction | None = None
    status: OrderStatus


class OrderEventResponse(ResponseModel):
    id: str
    order_id: str
    type: OrderEventType
    source: OrderEventSource
    message: str
    payload: dict
    created_at: datetime

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, value: object) -> object:
        return str(value) if value is not None else value


class OrderEventsResponse(BaseModel):
    items: list[OrderEventResponse]
