# fulfillment/api/routers/orders.py
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from fulfillment.api import get_service, to_http_exception
from fulfillment.data.database import get_db
from fulfillment.domain.errors import FulfillmentError
from fulfillment.domain.schemas import (
    BulkTransitionIn,
    BulkTransitionOut,
    CustomerCancelIn,
    OrderCreate,
    OrderEventOut,
    OrderOut,
    TransitionIn,
)
from fulfillment.domain.status import OrderStatus

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("/", response_model=OrderOut, status_code=201)
def create_order(
    payload: OrderCreate,
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Sklada zamowienie (checkout).
    Kupon jest walidowany i naliczany w tej samej transakcji.
    """
    svc = get_service(db, request)
    try:
        return svc.place_order(payload)
    except (FulfillmentError, PermissionError, ValueError) as e:
        raise to_http_exception(e)


@router.get("/", response_model=List[OrderOut])
def list_orders(
    request: Request,
    status: Optional[OrderStatus] = Query(None),
    limit: Optional[int] = Query(None, gt=0, le=1000),
    db: Session = Depends(get_db),
):
    """Live orders, newest first."""
    svc = get_service(db, request)
    try:
        return svc.list_orders(status=status, limit=limit)
    except FulfillmentError as e:
        raise to_http_exception(e)


@router.post("/bulk-status", response_model=BulkTransitionOut)
def bulk_transition(
    payload: BulkTransitionIn,
    request: Request,
    db: Session = Depends(get_db),
):
    svc = get_service(db, request)
    result = svc.request_bulk_transition(payload.order_ids, payload.status, payload.actor)
    body = BulkTransitionOut(
        succeeded=[OrderOut.model_validate(o) for o in result.succeeded],
        failed=result.failed,
    )
    if result.is_partial:
        return JSONResponse(status_code=207, content=body.model_dump(mode="json"))
    return body


@router.get("/{order_id}", response_model=OrderOut)
def get_order(
    order_id: str,
    request: Request,
    user_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    """
    Pobiera szczegoly zamowienia.
    Z `user_id` (tracker klienta) tylko wlasne zamowienie.
    """
    svc = get_service(db, request)
    try:
        order = svc.get_order(order_id)
    except FulfillmentError as e:
        raise to_http_exception(e)
    if user_id is not None and order.user_id != user_id:
        raise HTTPException(status_code=403, detail="No access to this order")
    return order


@router.get("/{order_id}/events", response_model=List[OrderEventOut])
def list_order_events(
    order_id: str,
    request: Request,
    db: Session = Depends(get_db),
):
    svc = get_service(db, request)
    try:
        return svc.list_order_events(order_id)
    except FulfillmentError as e:
        raise to_http_exception(e)


@router.patch("/{order_id}/status", response_model=OrderOut)
def transition_order(
    order_id: str,
    payload: TransitionIn,
    request: Request,
    db: Session = Depends(get_db),
):
    """Zmiana statusu z panelu admina."""
    svc = get_service(db, request)
    try:
        return svc.request_transition(order_id, payload.status, payload.actor, note=payload.note)
    except (FulfillmentError, ValueError) as e:
        raise to_http_exception(e)


@router.post("/{order_id}/cancel", response_model=OrderOut)
def cancel_order(
    order_id: str,
    payload: CustomerCancelIn,
    request: Request,
    db: Session = Depends(get_db),
):
    svc = get_service(db, request)
    try:
        return svc.cancel_by_customer(order_id, payload.user_id, payload.reason)
    except (FulfillmentError, PermissionError) as e:
        raise to_http_exception(e)
