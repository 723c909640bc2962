# fulfillment/api/__init__.py
from fastapi import HTTPException, Request
from sqlalchemy.orm import Session

from fulfillment.domain.errors import (
    ConcurrentModification,
    CouponError,
    FulfillmentError,
    IllegalTransition,
    NotFound,
    StoreUnavailable,
)
from fulfillment.services.fulfillment_service import FulfillmentOrchestrator
from fulfillment.services.lock_service import LockService
from fulfillment.utils.settings import ORDER_LOCKS_ENABLED

_STATUS_CODES = (
    (NotFound, 404),
    (IllegalTransition, 409),
    (ConcurrentModification, 409),
    (CouponError, 400),
    (StoreUnavailable, 503),
)

lock_service = LockService() if ORDER_LOCKS_ENABLED else None


def get_service(db: Session, request: Request | None = None) -> FulfillmentOrchestrator:
    detector = getattr(request.app.state, "detector", None) if request is not None else None
    return FulfillmentOrchestrator(
        db=db,
        lock_service=lock_service,
        detector=detector,
    )


def to_http_exception(e: Exception) -> HTTPException:
    """Maps service errors onto HTTP status codes."""
    if isinstance(e, PermissionError):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, FulfillmentError):
        for error_type, status_code in _STATUS_CODES:
            if isinstance(e, error_type):
                return HTTPException(status_code=status_code, detail={"code": e.code, "message": e.message})
        return HTTPException(status_code=400, detail={"code": e.code, "message": e.message})
    return HTTPException(status_code=400, detail=str(e))
