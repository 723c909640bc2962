# fulfillment/domain/schemas.py
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from fulfillment.domain.status import DiscountType, OrderStatus, PaymentMethod, PaymentStatus


class OrderItemIn(BaseModel):
    """Pozycja zamowienia przy skladaniu (checkout)."""

    product_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=200)
    unit_price: Decimal = Field(..., ge=0, decimal_places=2)
    quantity: int = Field(..., gt=0, description="Ilosc (musi byc > 0)")
    selected_options: Dict[str, str] = Field(default_factory=dict)


class OrderItemOut(BaseModel):
    product_id: str
    name: str
    unit_price: Decimal
    quantity: int
    selected_options: Dict[str, str] = Field(default_factory=dict)


class OrderCreate(BaseModel):
    """Schema dla tworzenia zamowienia."""

    user_id: str = Field(..., min_length=1)
    customer_name: str = Field(..., min_length=1, max_length=200)
    customer_email: str = Field(..., min_length=3, max_length=320)
    customer_phone: Optional[str] = Field(None, max_length=40)
    items: List[OrderItemIn] = Field(..., min_length=1)
    payment_method: PaymentMethod
    delivery_address: Optional[str] = None
    delivery_lat: Optional[float] = Field(None, ge=-90, le=90)
    delivery_lng: Optional[float] = Field(None, ge=-180, le=180)
    customer_note: Optional[str] = Field(None, max_length=1000)
    coupon_code: Optional[str] = Field(None, min_length=1, max_length=64)


class OrderOut(BaseModel):
    """Schema dla zamowienia (response)."""

    id: str
    order_number: str
    user_id: str
    items: List[OrderItemOut]
    subtotal: Decimal
    tax: Decimal
    discount_amount: Decimal
    total: Decimal
    status: OrderStatus
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    delivery_address: Optional[str] = None
    delivery_lat: Optional[float] = None
    delivery_lng: Optional[float] = None
    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None
    customer_note: Optional[str] = None
    admin_note: Optional[str] = None
    applied_coupon: Optional[dict] = None
    estimated_delivery_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancel_reason: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LiveOrderSummary(BaseModel):
    """Fields the new-order notification needs; parsed from the store or from GET /orders."""

    id: str
    order_number: str
    customer_name: str
    items: List[OrderItemOut]
    total: Decimal
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class HistoryRecordOut(OrderOut):
    moved_to_history_at: datetime
    moved_by: str
    original_created_at: datetime


class OrderEventOut(BaseModel):
    order_id: str
    event_type: str
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    actor: str
    note: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransitionIn(BaseModel):
    status: OrderStatus
    actor: str = Field("admin", min_length=1, max_length=200)
    note: Optional[str] = Field(None, max_length=1000)


class BulkTransitionIn(BaseModel):
    order_ids: List[str] = Field(..., min_length=1)
    status: OrderStatus
    actor: str = Field("admin", min_length=1, max_length=200)


class CustomerCancelIn(BaseModel):
    user_id: str = Field(..., min_length=1)
    reason: Optional[str] = Field(None, max_length=500)


class ItemFailure(BaseModel):
    id: str
    reason: str
    message: str = ""


class BulkTransitionOut(BaseModel):
    succeeded: List[OrderOut]
    failed: List[ItemFailure]


class CouponOut(BaseModel):
    id: int
    code: str
    name: str
    discount_type: DiscountType
    value: Decimal
    min_order_amount: Optional[Decimal] = None
    max_discount_amount: Optional[Decimal] = None
    usage_limit: Optional[int] = None
    user_usage_limit: Optional[int] = None
    used_count: int
    valid_from: datetime
    valid_until: datetime
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class CouponValidateIn(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)
    order_subtotal: Decimal = Field(..., gt=0)
    user_id: str = Field(..., min_length=1)


class CouponValidateOut(BaseModel):
    coupon: CouponOut
    discount_amount: Decimal


class MoveToHistoryIn(BaseModel):
    order_ids: List[str] = Field(..., min_length=1)
    actor: str = Field("admin", min_length=1, max_length=200)


class SkippedOrder(BaseModel):
    id: str
    reason: Literal["not_found", "not_terminal"]


class MoveToHistoryOut(BaseModel):
    moved_count: int
    moved_ids: List[str]
    skipped: List[SkippedOrder]
    failed: List[ItemFailure]


class HistoryFilters(BaseModel):
    """Filtry historii; `day` ma pierwszenstwo przed zakresem date_from/date_to."""

    day: Optional[date] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    search: Optional[str] = Field(None, max_length=200)
    status: Optional[OrderStatus] = None
    sort_by: Literal["moved_to_history_at", "original_created_at"] = "moved_to_history_at"
    descending: bool = True
    limit: int = Field(100, gt=0, le=1000)
    offset: int = Field(0, ge=0)
