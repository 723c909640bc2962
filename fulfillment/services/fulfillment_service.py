# fulfillment/services/fulfillment_service.py
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal

from redis.exceptions import RedisError
from sqlalchemy.orm import Session

from fulfillment.data.models.coupon import CouponModel
from fulfillment.data.models.order import OrderModel
from fulfillment.data.models.order_event import OrderEventModel
from fulfillment.domain.errors import (
    ConcurrentModification,
    FulfillmentError,
    NotFound,
    PartialBatchFailure,
)
from fulfillment.domain.schemas import HistoryFilters, OrderCreate
from fulfillment.domain.status import CUSTOMER_CANCELLABLE, OrderStatus, PaymentStatus
from fulfillment.repos.order_repo import OrderRepo
from fulfillment.services.archival_service import ArchivalService, ArchiveResult
from fulfillment.services.change_detector import ChangeDetector
from fulfillment.services.coupon_engine import CouponEngine, to_money
from fulfillment.services.lock_service import LockService
from fulfillment.services.notification_service import NotificationService
from fulfillment.services.state_machine import OrderStateMachine, TransitionResult
from fulfillment.utils.clock import utcnow
from fulfillment.utils.retry import store_errors, store_retry
from fulfillment.utils.settings import TAX_RATE, ESTIMATED_DELIVERY_MINUTES
from fulfillment.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class BulkTransitionResult:
    succeeded: list[OrderModel] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)  # {id, reason, message}

    @property
    def is_partial(self) -> bool:
        return bool(self.failed)

    def raise_for_partial(self):
        if self.failed:
            raise PartialBatchFailure(self, len(self.failed))


def new_order_number(now) -> str:
    return f"ORD-{now:%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


class FulfillmentOrchestrator:
    """
    Warstwa koordynujaca: checkout, przejscia statusow (pojedyncze i bulk),
    kupony, archiwizacja i subskrypcje nowych zamowien.
    Wolana przez panel admina i tracker zamowien klienta.
    """

    def __init__(
        self,
        db: Session,
        lock_service: LockService | None = None,
        notifier: NotificationService | None = None,
        detector: ChangeDetector | None = None,
    ):
        self.db = db
        self.repo = OrderRepo(db)
        self.state_machine = OrderStateMachine(db)
        self.coupons = CouponEngine(db)
        self.archival = ArchivalService(db)
        self.lock_service = lock_service
        self.notifier = notifier or NotificationService()
        self.detector = detector

    # =====================================================
    # QUERY
    # =====================================================
    @store_retry()
    def get_order(self, order_id: str) -> OrderModel:
        with store_errors(self.db):
            order = self.repo.get_order(order_id)
        if not order:
            raise NotFound("order", order_id)
        return order

    def list_orders(self, status: OrderStatus | None = None, limit: int | None = None) -> list[OrderModel]:
        with store_errors(self.db):
            return self.repo.list_orders(status=status.value if status else None, limit=limit)

    def list_order_events(self, order_id: str) -> list[OrderEventModel]:
        with store_errors(self.db):
            return self.repo.list_events(order_id)

    def query_history(self, filters: HistoryFilters | None = None):
        return self.archival.query_history(filters)

    # =====================================================
    # CHECKOUT
    # =====================================================
    def place_order(self, payload: OrderCreate) -> OrderModel:
        """
        Use Case: zlozenie zamowienia.

        Order row, coupon counter, coupon usage row and the `created` event
        commit together; total = subtotal + tax - discount.
        """
        now = utcnow()
        subtotal = to_money(sum((i.unit_price * i.quantity for i in payload.items), Decimal("0")))
        tax = to_money(subtotal * Decimal(TAX_RATE))

        coupon = None
        discount = Decimal("0.00")
        if payload.coupon_code:
            coupon = self.validate_coupon(payload.coupon_code, subtotal, payload.user_id)
            discount = self.coupons.compute_discount(coupon, subtotal)

        order = OrderModel(
            id=uuid.uuid4().hex,
            order_number=new_order_number(now),
            user_id=payload.user_id,
            items=[
                {
                    "product_id": i.product_id,
                    "name": i.name,
                    "unit_price": str(i.unit_price),
                    "quantity": i.quantity,
                    "selected_options": dict(i.selected_options),
                }
                for i in payload.items
            ],
            subtotal=subtotal,
            tax=tax,
            discount_amount=discount,
            total=subtotal + tax - discount,
            status=OrderStatus.PENDING.value,
            payment_method=payload.payment_method.value,
            payment_status=PaymentStatus.PENDING.value,
            delivery_address=payload.delivery_address,
            delivery_lat=payload.delivery_lat,
            delivery_lng=payload.delivery_lng,
            customer_name=payload.customer_name,
            customer_email=payload.customer_email,
            customer_phone=payload.customer_phone,
            customer_note=payload.customer_note,
            applied_coupon=self._coupon_snapshot(coupon, discount) if coupon else None,
            estimated_delivery_at=now + timedelta(minutes=ESTIMATED_DELIVERY_MINUTES),
            created_at=now,
            updated_at=now,
            version=1,
        )

        with store_errors(self.db):
            try:
                self.repo.add_order(order)
                if coupon:
                    self.coupons.apply_and_commit(coupon, order.id, payload.user_id, commit=False)
                self.repo.add_event(
                    OrderEventModel(
                        order_id=order.id,
                        event_type="created",
                        to_status=OrderStatus.PENDING.value,
                        actor=f"customer:{payload.user_id}",
                        note="order received",
                        created_at=now,
                    )
                )
                self.repo.commit()
            except Exception:
                self.repo.rollback()
                raise

        logger.info(f"Order {order.order_number} ({order.id}) placed, total {order.total}")
        self._notify_status(order)
        return self.repo.get_order(order.id)

    @staticmethod
    def _coupon_snapshot(coupon: CouponModel, discount: Decimal) -> dict:
        return {
            "coupon_id": coupon.id,
            "code": coupon.code,
            "name": coupon.name,
            "discount_type": coupon.discount_type,
            "value": str(coupon.value),
            "max_discount_amount": str(coupon.max_discount_amount) if coupon.max_discount_amount is not None else None,
            "discount_amount": str(discount),
        }

    # =====================================================
    # COUPONS
    # =====================================================
    @store_retry()
    def validate_coupon(self, code: str, order_subtotal, user_id: str) -> CouponModel:
        with store_errors(self.db):
            coupon = self.coupons.repo.get_by_code(code)
            if not coupon:
                raise NotFound("coupon", code.strip().upper())
            prior = self.coupons.prior_usage_count(coupon, user_id)
        return self.coupons.validate(coupon, order_subtotal, utcnow(), user_id, prior)

    def compute_discount(self, coupon: CouponModel, order_subtotal) -> Decimal:
        return self.coupons.compute_discount(coupon, order_subtotal)

    # =====================================================
    # TRANSITIONS
    # =====================================================
    @contextmanager
    def _order_lock(self, order_id: str):
        if self.lock_service is None:
            yield
            return

        token = uuid.uuid4().hex
        try:
            locked = self.lock_service.acquire_order_lock(order_id, token)
        except RedisError as e:
            # optimistic versioning still guards the write
            logger.warning(f"Order lock unavailable for {order_id}, continuing without it: {e}")
            yield
            return

        if not locked:
            logger.warning(f"Order {order_id} is locked by another request")
            raise ConcurrentModification(f"order {order_id} is being updated by another request")
        try:
            yield
        finally:
            try:
                self.lock_service.release_order_lock(order_id, token)
            except RedisError as e:
                logger.warning(f"Failed to release lock for order {order_id}, it will expire: {e}")

    @store_retry()
    def _transition(self, order_id: str, target, actor: str, note: str | None = None, **kwargs) -> TransitionResult:
        with self._order_lock(order_id):
            return self.state_machine.request_transition(order_id, target, actor, note=note, **kwargs)

    def request_transition(self, order_id: str, target, actor: str, note: str | None = None) -> OrderModel:
        result = self._transition(order_id, target, actor, note)
        self._notify_status(result.order)
        return result.order

    def request_bulk_transition(
        self,
        order_ids,
        target,
        actor: str,
        cancel_event: threading.Event | None = None,
    ) -> BulkTransitionResult:
        """Each id is transitioned on its own; failures never undo the others."""
        result = BulkTransitionResult()
        seen = set()
        for order_id in order_ids:
            if order_id in seen:
                continue
            seen.add(order_id)

            if cancel_event is not None and cancel_event.is_set():
                result.failed.append({"id": order_id, "reason": "cancelled", "message": "bulk transition cancelled"})
                continue
            try:
                result.succeeded.append(self.request_transition(order_id, target, actor))
            except FulfillmentError as e:
                logger.info(f"Bulk transition skipped order {order_id}: {e.message}")
                result.failed.append({"id": order_id, "reason": e.code, "message": e.message})

        logger.info(
            f"Bulk transition to {getattr(target, 'value', target)}: "
            f"{len(result.succeeded)} ok, {len(result.failed)} failed"
        )
        return result

    def cancel_by_customer(self, order_id: str, user_id: str, reason: str | None = None) -> OrderModel:
        """Use Case: anulowanie przez klienta, tylko pending/confirmed i tylko wlasne zamowienie."""
        order = self.get_order(order_id)
        if order.user_id != user_id:
            raise PermissionError("No access to this order")

        result = self._transition(
            order_id,
            OrderStatus.CANCELLED,
            f"customer:{user_id}",
            note=reason,
            allowed=CUSTOMER_CANCELLABLE,
            extra={"cancel_reason": reason or "Cancelled by customer"},
        )
        self._notify_status(result.order)
        return result.order

    def _notify_status(self, order: OrderModel):
        # the transition is already committed, a broker outage must not undo the response
        try:
            self.notifier.send_status_notification(order.user_id, order.id, order.order_number, order.status)
        except Exception:
            logger.exception(f"Status notification for order {order.id} could not be dispatched")

    # =====================================================
    # ARCHIVAL
    # =====================================================
    def move_to_history(self, order_ids, actor: str, cancel_event: threading.Event | None = None) -> ArchiveResult:
        return self.archival.move_to_history(order_ids, actor, cancel_event=cancel_event)

    def delete_history_record(self, order_id: str) -> None:
        self.archival.delete_history_record(order_id)

    def clear_history(self) -> int:
        return self.archival.clear_history()

    # =====================================================
    # NOTIFICATIONS
    # =====================================================
    def subscribe_to_new_order_notifications(self, callback):
        if self.detector is None:
            raise RuntimeError("new-order change detector is not configured")
        return self.detector.subscribe(callback)
