# fulfillment/api/routers/coupons.py
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from fulfillment.api import get_service, to_http_exception
from fulfillment.data.database import get_db
from fulfillment.domain.errors import FulfillmentError
from fulfillment.domain.schemas import CouponOut, CouponValidateIn, CouponValidateOut

router = APIRouter(prefix="/coupons", tags=["coupons"])


@router.post("/validate", response_model=CouponValidateOut)
def validate_coupon(
    payload: CouponValidateIn,
    request: Request,
    db: Session = Depends(get_db),
):
    """Sprawdza kupon dla koszyka klienta i zwraca wyliczony rabat (bez naliczania uzycia)."""
    svc = get_service(db, request)
    try:
        coupon = svc.validate_coupon(payload.code, payload.order_subtotal, payload.user_id)
    except FulfillmentError as e:
        raise to_http_exception(e)
    return CouponValidateOut(
        coupon=CouponOut.model_validate(coupon),
        discount_amount=svc.compute_discount(coupon, payload.order_subtotal),
    )
