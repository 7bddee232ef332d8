from datetime import datetime

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.config import settings
from app.models.domain import now_utc
from app.models.order import PENDING_PAYMENT_STATUSES, Order, OrderStatus
from app.models.order_event import OrderEventSource, OrderEventType
from app.observability import log_event, metrics_store, observe_timing
from app.services.orders_service import append_order_event


def sweep_expired_orders(db: Session, now: datetime | None = None) -> int:
    """Cancel every order whose payment window closed at or before ``now``.

    The status guard and the deadline check are part of the same UPDATE, so
    an order paid between selection and write is never cancelled. Status
    changes and their events commit together or not at all; errors propagate
    after rollback.
    """
    now = now or now_utc()
    pending = list(PENDING_PAYMENT_STATUSES)
    reason = settings.expiration_cancel_reason

    with observe_timing("expiration_sweep_seconds"):
        try:
            cancelled_ids = list(
                db.execute(
                    update(Order)
                    .where(
                        Order.status.in_(pending),
                        Order.expires_at.is_not(None),
                        Order.expires_at <= now,
                    )
                    .values(
                        status=OrderStatus.CANCELLED,
                        cancel_reason=reason,
                        cancelled_at=now,
                        expires_at=None,
                        updated_at=now,
                    )
                    .returning(Order.id)
                    .execution_options(synchronize_session=False)
                ).scalars()
            )
            for order_id in cancelled_ids:
                append_order_event(
                    db,
                    order_id=order_id,
                    event_type=OrderEventType.CANCELLED,
                    source=OrderEventSource.EXPIRATION_SWEEP,
                    message=reason,
                    payload={"to_status": OrderStatus.CANCELLED.value},
                )
            db.commit()
        except Exception:
            db.rollback()
            raise

    updated = len(cancelled_ids)
    metrics_store.increment("expiration_sweeps_total")
    metrics_store.increment("orders_expired_total", updated)
    log_event("expiration_sweep_completed", detail=f"updated={updated}")
    return updated
