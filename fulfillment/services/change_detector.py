# fulfillment/services/change_detector.py
"""
Polling change detection for newly arrived live orders.

Every interval the detector samples the live-order set, compares its size
with the previous sample and, when it grew, surfaces the single newest
order to the subscribers. One notification per cycle at most, even when
several orders arrived between two polls.

The first successful poll only sets the baseline. A failed poll keeps the
previous count and is retried on the next tick. When disabled the detector
keeps polling and tracking the count but emits nothing, so re-enabling does
not replay orders that arrived meanwhile.
"""
import threading
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, Protocol, Union

import requests
from pydantic import TypeAdapter, ValidationError
from sqlalchemy.orm import Session, sessionmaker

from fulfillment.domain.errors import StoreUnavailable
from fulfillment.domain.schemas import LiveOrderSummary
from fulfillment.repos.order_repo import OrderRepo
from fulfillment.utils.clock import as_utc
from fulfillment.utils.retry import store_errors
from fulfillment.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class NewOrderSnapshot:
    order_id: str
    order_number: str
    customer_name: str
    items: tuple  # ((name, quantity), ...)
    total: Decimal
    created_at: datetime

    @classmethod
    def from_summary(cls, summary: LiveOrderSummary) -> "NewOrderSnapshot":
        return cls(
            order_id=summary.id,
            order_number=summary.order_number,
            customer_name=summary.customer_name,
            items=tuple((i.name, i.quantity) for i in summary.items),
            total=summary.total,
            created_at=as_utc(summary.created_at),
        )

    def as_payload(self) -> dict:
        return {
            "order_id": self.order_id,
            "order_number": self.order_number,
            "customer_name": self.customer_name,
            "items": [{"name": name, "quantity": qty} for name, qty in self.items],
            "total": str(self.total),
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class NoChange:
    current_count: int
    baseline: bool = False


@dataclass(frozen=True)
class NewOrderDetected:
    current_count: int
    previous_count: int
    snapshot: NewOrderSnapshot


@dataclass(frozen=True)
class PollFailed:
    error: str


PollOutcome = Union[NoChange, NewOrderDetected, PollFailed]


class LiveOrderSource(Protocol):
    def fetch_live_orders(self, status: str | None) -> list[LiveOrderSummary]: ...


class StoreLiveOrderSource:
    """Reads the live-orders table directly, one short session per poll."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def fetch_live_orders(self, status: str | None) -> list[LiveOrderSummary]:
        db: Session = self.session_factory()
        try:
            with store_errors(db):
                orders = OrderRepo(db).list_orders(status=status)
                return [LiveOrderSummary.model_validate(o) for o in orders]
        finally:
            db.close()


_summaries = TypeAdapter(list[LiveOrderSummary])


class HttpLiveOrderSource:
    """Polls GET /orders of a running service instance."""

    def __init__(self, base_url: str, timeout: float = 5):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def fetch_live_orders(self, status: str | None) -> list[LiveOrderSummary]:
        url = f"{self.base_url}/orders/"
        params = {"status": status} if status else None
        try:
            resp = requests.get(url, params=params, timeout=self.timeout)
            resp.raise_for_status()
            return _summaries.validate_python(resp.json())
        except (requests.RequestException, ValueError, ValidationError) as e:
            raise StoreUnavailable(f"GET {url} failed: {e}") from e


def newest_order(orders: list[LiveOrderSummary]) -> LiveOrderSummary:
    # ties on created_at resolved by id, deterministically
    return max(orders, key=lambda o: (as_utc(o.created_at), o.id))


@dataclass(eq=False)
class _Subscriber:
    callback: Callable[[NewOrderSnapshot], None]
    active: bool = field(default=True)


class ChangeDetector:
    def __init__(
        self,
        source: LiveOrderSource,
        interval_seconds: float = 8.0,
        status: str | None = "pending",
        enabled: bool = True,
    ):
        self.source = source
        self.interval_seconds = interval_seconds
        self.status = status
        self.enabled = enabled

        # owned by the polling thread only
        self.last_count: int | None = None

        self._subscribers: list[_Subscriber] = []
        self._subscribers_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    # --- subscriptions ---

    def subscribe(self, callback: Callable[[NewOrderSnapshot], None]) -> Callable[[], None]:
        """Registers a callback; returns the handle that unsubscribes it."""
        sub = _Subscriber(callback)
        with self._subscribers_lock:
            self._subscribers.append(sub)

        def unsubscribe():
            with self._subscribers_lock:
                sub.active = False
                if sub in self._subscribers:
                    self._subscribers.remove(sub)

        return unsubscribe

    def enable(self):
        self.enabled = True

    def disable(self):
        self.enabled = False

    # --- polling ---

    def poll_once(self) -> PollOutcome:
        try:
            orders = self.source.fetch_live_orders(self.status)
        except StoreUnavailable as e:
            logger.warning(f"Live order poll failed, keeping last count {self.last_count}: {e}")
            return PollFailed(error=str(e))

        current = len(orders)
        previous = self.last_count
        self.last_count = current

        if previous is None:
            logger.info(f"Change detector baseline: {current} live order(s)")
            return NoChange(current_count=current, baseline=True)

        if current <= previous or not orders:
            return NoChange(current_count=current)

        outcome = NewOrderDetected(
            current_count=current,
            previous_count=previous,
            snapshot=NewOrderSnapshot.from_summary(newest_order(orders)),
        )
        if self.enabled:
            self._emit(outcome.snapshot)
        return outcome

    def _emit(self, snapshot: NewOrderSnapshot):
        with self._subscribers_lock:
            subscribers = [s for s in self._subscribers if s.active]

        logger.info(f"New order detected: #{snapshot.order_number}, notifying {len(subscribers)} subscriber(s)")
        for sub in subscribers:
            try:
                sub.callback(snapshot)
            except Exception:
                logger.exception(f"New-order subscriber {sub.callback!r} failed")

    def _run(self):
        while not self._stop.is_set():
            try:
                self.poll_once()
            except Exception:
                # poller keeps running, next tick retries
                logger.exception(f"Live order poll crashed, keeping last count {self.last_count}")
            self._stop.wait(self.interval_seconds)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="change-detector", daemon=True)
        self._thread.start()
        logger.info(f"Change detector started (every {self.interval_seconds}s, status={self.status})")

    def stop(self, timeout: float | None = None):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Change detector stopped")
