import logging

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.auth.dependencies import require_expiration_trigger
from app.db.session import get_db
from app.observability import log_event, metrics_store
from app.schemas.jobs import ExpireOrdersResponse
from app.services.expiration_service import sweep_expired_orders

router = APIRouter(prefix="/api/v1/jobs", tags=["jobs"])


@router.post(
    "/expire-orders",
    response_model=ExpireOrdersResponse,
    summary="Cancel orders whose payment window has closed",
    dependencies=[Depends(require_expiration_trigger)],
)
def expire_orders_endpoint(db: Session = Depends(get_db)) -> ExpireOrdersResponse:
    try:
        updated = sweep_expired_orders(db)
    except SQLAlchemyError:
        metrics_store.increment("expiration_sweep_errors_total")
        log_event("expiration_sweep_failed", level=logging.ERROR, exc_info=True)
        return ExpireOrdersResponse(ok=False, updated=0)
    return ExpireOrdersResponse(ok=True, updated=updated)
