"""
Checkout and transition orchestration tests.

Guards against:
1. Totals drifting from subtotal + tax - discount
2. Coupon counted without an order (or the other way round)
3. Bulk transitions where one bad id blocks or corrupts the rest
"""
import threading
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from fulfillment.domain.errors import (
    ConcurrentModification,
    CouponExhausted,
    IllegalTransition,
    NotFound,
    OrderBelowMinimum,
    PartialBatchFailure,
    UserCouponLimitReached,
)
from fulfillment.domain.schemas import OrderCreate
from fulfillment.domain.status import OrderStatus
from fulfillment.repos.coupon_repo import CouponRepo
from fulfillment.repos.order_repo import OrderRepo
from fulfillment.services.fulfillment_service import FulfillmentOrchestrator


def _payload(**overrides):
    data = dict(
        user_id="u1",
        customer_name="Jan Kowalski",
        customer_email="jan@example.com",
        items=[
            {"product_id": "p1", "name": "Pizza", "unit_price": "25.00", "quantity": 2},
            {"product_id": "p2", "name": "Cola", "unit_price": "4.99", "quantity": 1},
        ],
        payment_method="card",
    )
    data.update(overrides)
    return OrderCreate(**data)


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def svc(db, notifier):
    return FulfillmentOrchestrator(db, notifier=notifier)


# ---------------------------------------------------------------------------
# place_order
# ---------------------------------------------------------------------------

def test_place_order_totals_and_defaults(svc, db):
    order = svc.place_order(_payload())

    assert order.subtotal == Decimal("54.99")
    assert order.tax == Decimal("4.40")
    assert order.discount_amount == Decimal("0.00")
    assert order.total == order.subtotal + order.tax - order.discount_amount
    assert order.status == "pending"
    assert order.payment_status == "pending"
    assert order.order_number.startswith("ORD-")
    assert order.estimated_delivery_at is not None

    events = OrderRepo(db).list_events(order.id)
    assert [e.event_type for e in events] == ["created"]


def test_place_order_with_coupon(svc, db, make_coupon):
    make_coupon(code="SAVE10", value=Decimal("10"), usage_limit=3)

    order = svc.place_order(_payload(coupon_code="save10"))

    assert order.discount_amount == Decimal("5.50")
    assert order.total == Decimal("53.89")
    assert order.discount_amount <= order.subtotal
    assert order.applied_coupon["code"] == "SAVE10"

    coupon = CouponRepo(db).get_by_code("SAVE10")
    assert coupon.used_count == 1
    assert CouponRepo(db).has_usage_for_order(coupon.id, order.id)


def test_place_order_rejected_coupon_creates_nothing(svc, db, make_coupon):
    make_coupon(code="BIG", min_order_amount=Decimal("100.00"))

    with pytest.raises(OrderBelowMinimum):
        svc.place_order(_payload(coupon_code="BIG"))

    assert OrderRepo(db).count_orders() == 0


def test_place_order_exhausted_coupon(svc, db, make_coupon):
    make_coupon(code="ONCE", usage_limit=1, used_count=1)

    with pytest.raises(CouponExhausted):
        svc.place_order(_payload(coupon_code="ONCE"))

    assert OrderRepo(db).count_orders() == 0


def test_per_user_limit_counts_prior_orders(svc, make_coupon):
    make_coupon(code="WELCOME", user_usage_limit=1)
    svc.place_order(_payload(coupon_code="WELCOME"))

    with pytest.raises(UserCouponLimitReached):
        svc.place_order(_payload(coupon_code="WELCOME"))

    # another customer is unaffected
    assert svc.place_order(_payload(user_id="u2", coupon_code="WELCOME")).discount_amount > 0


def test_unknown_coupon_is_not_found(svc):
    with pytest.raises(NotFound):
        svc.validate_coupon("NOPE", Decimal("10"), "u1")


# ---------------------------------------------------------------------------
# transitions
# ---------------------------------------------------------------------------

def test_transition_notifies_customer(svc, make_order, notifier):
    order = make_order()

    updated = svc.request_transition(order.id, OrderStatus.CONFIRMED, actor="admin")

    assert updated.status == "confirmed"
    notifier.send_status_notification.assert_called_with("u1", order.id, order.order_number, "confirmed")


def test_notification_failure_does_not_fail_transition(svc, make_order, notifier):
    notifier.send_status_notification.side_effect = RuntimeError("broker down")
    order = make_order()

    assert svc.request_transition(order.id, OrderStatus.CONFIRMED, actor="admin").status == "confirmed"


def test_bulk_transition_reports_named_failure(svc, db, make_order):
    a = make_order(status="pending")
    b = make_order(status="pending")
    c = make_order(status="delivered")

    result = svc.request_bulk_transition([a.id, b.id, c.id], OrderStatus.CONFIRMED, actor="admin")

    assert [o.id for o in result.succeeded] == [a.id, b.id]
    assert len(result.failed) == 1
    assert result.failed[0]["id"] == c.id
    assert result.failed[0]["reason"] == IllegalTransition.code

    fresh = OrderRepo(db).get_order(c.id)
    assert fresh.status == "delivered"
    assert fresh.version == 1
    assert OrderRepo(db).list_events(c.id) == []

    with pytest.raises(PartialBatchFailure):
        result.raise_for_partial()


def test_bulk_transition_honours_cancellation(svc, make_order):
    order = make_order()
    cancel = threading.Event()
    cancel.set()

    result = svc.request_bulk_transition([order.id], OrderStatus.CONFIRMED, actor="admin", cancel_event=cancel)

    assert result.succeeded == []
    assert result.failed[0]["reason"] == "cancelled"


# ---------------------------------------------------------------------------
# customer cancellation
# ---------------------------------------------------------------------------

def test_customer_can_cancel_own_pending_order(svc, make_order):
    order = make_order(status="pending", user_id="u1")

    cancelled = svc.cancel_by_customer(order.id, "u1", reason="changed my mind")

    assert cancelled.status == "cancelled"
    assert cancelled.cancelled_by == "customer:u1"
    assert cancelled.cancel_reason == "changed my mind"


def test_customer_cannot_cancel_someone_elses_order(svc, make_order):
    order = make_order(user_id="u1")
    with pytest.raises(PermissionError):
        svc.cancel_by_customer(order.id, "u2")


def test_customer_cannot_cancel_once_preparing(svc, make_order):
    order = make_order(status="preparing", user_id="u1")
    with pytest.raises(IllegalTransition):
        svc.cancel_by_customer(order.id, "u1")


# ---------------------------------------------------------------------------
# locks / subscriptions
# ---------------------------------------------------------------------------

def test_busy_lock_raises_concurrent_modification(db, make_order, notifier):
    lock_service = MagicMock()
    lock_service.acquire_order_lock.return_value = False
    svc = FulfillmentOrchestrator(db, lock_service=lock_service, notifier=notifier)
    order = make_order()

    with pytest.raises(ConcurrentModification):
        svc.request_transition(order.id, OrderStatus.CONFIRMED, actor="admin")
    lock_service.release_order_lock.assert_not_called()


def test_lock_is_released_after_transition(db, make_order, notifier):
    lock_service = MagicMock()
    lock_service.acquire_order_lock.return_value = True
    svc = FulfillmentOrchestrator(db, lock_service=lock_service, notifier=notifier)
    order = make_order()

    svc.request_transition(order.id, OrderStatus.CONFIRMED, actor="admin")

    token = lock_service.acquire_order_lock.call_args.args[1]
    lock_service.release_order_lock.assert_called_once_with(order.id, token)


def test_subscribe_requires_detector(svc):
    with pytest.raises(RuntimeError):
        svc.subscribe_to_new_order_notifications(lambda snapshot: None)


def test_subscribe_delegates_to_detector(db, notifier):
    detector = MagicMock()
    svc = FulfillmentOrchestrator(db, notifier=notifier, detector=detector)
    callback = MagicMock()

    svc.subscribe_to_new_order_notifications(callback)

    detector.subscribe.assert_called_once_with(callback)


def test_oversized_percentage_coupon_never_makes_total_negative(svc, make_coupon):
    make_coupon(code="BIG", value=Decimal("150"))

    order = svc.place_order(
        _payload(
            coupon_code="BIG",
            items=[{"product_id": "p1", "name": "Pizza", "unit_price": "10.00", "quantity": 2}],
        )
    )

    assert order.discount_amount == order.subtotal == Decimal("20.00")
    assert order.total == Decimal("1.60")
    assert order.total >= 0
