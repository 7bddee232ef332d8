import enum
import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class OrderEventType(str, enum.Enum):
    CREATED = "CREATED"
    PAYMENT_CREATED = "PAYMENT_CREATED"
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    IN_PROGRESS = "IN_PROGRESS"
    CONFIRMED = "CONFIRMED"
    EN_ROUTE = "EN_ROUTE"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class OrderEventSource(str, enum.Enum):
    CHECKOUT = "checkout"
    PAYMENT_WEBHOOK = "payment_webhook"
    EXPIRATION_SWEEP = "expiration_sweep"
    ADMIN = "admin"


class OrderEvent(Base):
    __tablename__ = "order_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[OrderEventType] = mapped_column(
        Enum(OrderEventType, name="order_event_type", native_enum=False, length=32),
        nullable=False,
    )
    source: Mapped[OrderEventSource] = mapped_column(
        Enum(
            OrderEventSource,
            name="order_event_source",
            native_enum=False,
            length=32,
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
