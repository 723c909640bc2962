# fulfillment/data/models/order.py
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, Numeric, Float, Text, JSON

from fulfillment.data.database import Base


def _now():
    return datetime.now(timezone.utc)


class OrderColumns:
    """Business fields shared by live orders and their history copies."""

    id = Column(String(64), primary_key=True)
    order_number = Column(String(32), nullable=False, unique=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)

    # [{product_id, name, unit_price (str), quantity, selected_options}]
    items = Column(JSON, nullable=False, default=list)
    subtotal = Column(Numeric(10, 2), nullable=False)
    tax = Column(Numeric(10, 2), nullable=False)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    total = Column(Numeric(10, 2), nullable=False)

    status = Column(String(32), nullable=False, default="pending", index=True)
    payment_method = Column(String(16), nullable=False)
    payment_status = Column(String(16), nullable=False, default="pending")

    delivery_address = Column(Text, nullable=True)
    delivery_lat = Column(Float, nullable=True)
    delivery_lng = Column(Float, nullable=True)

    customer_name = Column(String(200), nullable=False)
    customer_email = Column(String(320), nullable=False)
    customer_phone = Column(String(40), nullable=True)
    customer_note = Column(Text, nullable=True)
    admin_note = Column(Text, nullable=True)

    # {coupon_id, code, name, discount_type, value, max_discount_amount}
    applied_coupon = Column(JSON, nullable=True)

    estimated_delivery_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by = Column(String(200), nullable=True)
    cancel_reason = Column(Text, nullable=True)
    updated_by = Column(String(200), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now)


class OrderModel(OrderColumns, Base):
    __tablename__ = "orders"

    # optimistic locking, bumped by every status write
    version = Column(Integer, nullable=False, default=1)
