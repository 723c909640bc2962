# fulfillment/api/routers/history.py
from datetime import date
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from fulfillment.api import get_service, to_http_exception
from fulfillment.data.database import get_db
from fulfillment.domain.errors import FulfillmentError
from fulfillment.domain.schemas import (
    HistoryFilters,
    HistoryRecordOut,
    MoveToHistoryIn,
    MoveToHistoryOut,
)
from fulfillment.domain.status import OrderStatus

router = APIRouter(prefix="/history", tags=["history"])


@router.post("/move", response_model=MoveToHistoryOut)
def move_to_history(
    payload: MoveToHistoryIn,
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Przenosi zamkniete zamowienia do historii.
    Nieudane batche -> 207 z lista id.
    """
    svc = get_service(db, request)
    try:
        result = svc.move_to_history(payload.order_ids, payload.actor)
    except (FulfillmentError, ValueError) as e:
        raise to_http_exception(e)
    body = MoveToHistoryOut(**result.as_dict())
    if result.is_partial:
        return JSONResponse(status_code=207, content=body.model_dump(mode="json"))
    return body


@router.get("/", response_model=List[HistoryRecordOut])
def query_history(
    request: Request,
    day: Optional[date] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    search: Optional[str] = Query(None, max_length=200),
    status: Optional[OrderStatus] = Query(None),
    sort_by: Literal["moved_to_history_at", "original_created_at"] = Query("moved_to_history_at"),
    descending: bool = Query(True),
    limit: int = Query(100, gt=0, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    filters = HistoryFilters(
        day=day,
        date_from=date_from,
        date_to=date_to,
        search=search,
        status=status,
        sort_by=sort_by,
        descending=descending,
        limit=limit,
        offset=offset,
    )
    svc = get_service(db, request)
    try:
        return svc.query_history(filters)
    except FulfillmentError as e:
        raise to_http_exception(e)


@router.delete("/{order_id}", status_code=204)
def delete_history_record(
    order_id: str,
    request: Request,
    db: Session = Depends(get_db),
):
    svc = get_service(db, request)
    try:
        svc.delete_history_record(order_id)
    except FulfillmentError as e:
        raise to_http_exception(e)


@router.delete("/")
def clear_history(
    request: Request,
    confirm: bool = Query(False),
    db: Session = Depends(get_db),
):
    if not confirm:
        raise HTTPException(status_code=400, detail="pass confirm=true to delete the whole history")
    svc = get_service(db, request)
    try:
        return {"deleted": svc.clear_history()}
    except FulfillmentError as e:
        raise to_http_exception(e)
