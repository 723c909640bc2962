import os

# must be set before fulfillment.utils.settings is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["NOTIFICATIONS_DISPATCH_ENABLED"] = "false"
os.environ["ORDER_LOCKS_ENABLED"] = "false"
os.environ["NOTIFY_ENABLED"] = "false"
os.environ["STORE_RETRY_ATTEMPTS"] = "1"

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from fulfillment.data.database import Base, SessionLocal, engine, init_db
from fulfillment.data.models.coupon import CouponModel
from fulfillment.data.models.order import OrderModel
from fulfillment.repos.coupon_repo import CouponRepo


@pytest.fixture
def db():
    init_db(engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_order(db):
    def _make(status="pending", user_id="u1", created_at=None, customer_name="Jan Kowalski", total="21.60"):
        created = created_at or datetime.now(timezone.utc)
        order = OrderModel(
            id=uuid.uuid4().hex,
            order_number=f"ORD-{created:%Y%m%d}-{uuid.uuid4().hex[:6].upper()}",
            user_id=user_id,
            items=[{"product_id": "p1", "name": "Pizza", "unit_price": "10.00", "quantity": 2, "selected_options": {}}],
            subtotal=Decimal("20.00"),
            tax=Decimal("1.60"),
            discount_amount=Decimal("0.00"),
            total=Decimal(total),
            status=status,
            payment_method="card",
            payment_status="pending",
            customer_name=customer_name,
            customer_email=f"{user_id}@example.com",
            created_at=created,
            updated_at=created,
            version=1,
        )
        db.add(order)
        db.commit()
        return order

    return _make


@pytest.fixture
def make_coupon(db):
    def _make(code="SAVE10", **overrides):
        now = datetime.now(timezone.utc)
        fields = dict(
            code=code,
            name="Test coupon",
            discount_type="percentage",
            value=Decimal("10"),
            min_order_amount=None,
            max_discount_amount=None,
            usage_limit=None,
            user_usage_limit=None,
            used_count=0,
            valid_from=now - timedelta(days=1),
            valid_until=now + timedelta(days=1),
            is_active=True,
        )
        fields.update(overrides)
        return CouponRepo(db).create_coupon(CouponModel(**fields))

    return _make
