# fulfillment/services/state_machine.py
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from fulfillment.data.models.order import OrderModel
from fulfillment.data.models.order_event import OrderEventModel
from fulfillment.domain.errors import ConcurrentModification, IllegalTransition, NotFound
from fulfillment.domain.status import OrderStatus, legal_next_states
from fulfillment.repos.order_repo import OrderRepo
from fulfillment.utils.clock import utcnow
from fulfillment.utils.retry import store_errors
from fulfillment.utils.settings import TRANSITION_CONFLICT_RETRIES
from fulfillment.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of one committed transition; the orchestrator reacts to it."""

    order: OrderModel
    from_status: OrderStatus
    to_status: OrderStatus
    actor: str
    at: datetime


class OrderStateMachine:
    """
    Legal states/transitions of an order and the atomic read-modify-write
    that applies one transition.

    Optimistic concurrency: the legality check is re-run against a fresh read
    on every attempt and the write is conditional on (version, status) still
    matching that read.
    """

    def __init__(self, db: Session, max_attempts: int = TRANSITION_CONFLICT_RETRIES):
        self.db = db
        self.repo = OrderRepo(db)
        self.max_attempts = max(1, max_attempts)

    @staticmethod
    def legal_next_states(status) -> frozenset[OrderStatus]:
        return legal_next_states(status)

    @staticmethod
    def validate(current, target, allowed=None) -> OrderStatus:
        """Raises IllegalTransition unless target is a legal successor of current."""
        legal = legal_next_states(current)
        if allowed is not None:
            legal = legal & frozenset(OrderStatus(a) for a in allowed)
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        if target_value not in {s.value for s in legal}:
            raise IllegalTransition(current_value, target_value, [s.value for s in legal])
        return OrderStatus(target_value)

    def request_transition(
        self,
        order_id: str,
        target,
        actor: str,
        note: str | None = None,
        allowed=None,
        extra: dict | None = None,
    ) -> TransitionResult:
        """
        Moves one order to `target` and appends the audit event, in one commit.

        `allowed` narrows the legal set further (customer cancellation);
        `extra` carries additional columns to write with the status.
        """
        for attempt in range(1, self.max_attempts + 1):
            with store_errors(self.db):
                order = self.repo.get_order(order_id)
                if not order:
                    raise NotFound("order", order_id)

                current = OrderStatus(order.status)
                target_status = self.validate(current, target, allowed)

                now = utcnow()
                new_data = {
                    "status": target_status.value,
                    "updated_at": now,
                    "updated_by": actor,
                }
                if target_status is OrderStatus.DELIVERED:
                    new_data["delivered_at"] = now
                if target_status is OrderStatus.CANCELLED:
                    new_data["cancelled_at"] = now
                    new_data["cancelled_by"] = actor
                if extra:
                    new_data.update(extra)

                rowcount = self.repo.update_status_if_current(
                    order_id=order.id,
                    old_version=order.version,
                    old_status=current.value,
                    new_data=new_data,
                )

                if rowcount == 0:
                    self.repo.rollback()
                    logger.warning(
                        f"Transition conflict on order {order_id} "
                        f"(attempt {attempt}/{self.max_attempts}), re-reading"
                    )
                    continue

                self.repo.add_event(
                    OrderEventModel(
                        order_id=order.id,
                        event_type="status_changed",
                        from_status=current.value,
                        to_status=target_status.value,
                        actor=actor,
                        note=note,
                        created_at=now,
                    )
                )
                self.repo.commit()

            fresh = self.repo.get_order(order_id)
            logger.info(f"Order {order_id}: {current.value} -> {target_status.value} by {actor}")
            return TransitionResult(
                order=fresh,
                from_status=current,
                to_status=target_status,
                actor=actor,
                at=now,
            )

        raise ConcurrentModification(
            f"order {order_id} kept changing underneath the transition, gave up after {self.max_attempts} attempts"
        )
