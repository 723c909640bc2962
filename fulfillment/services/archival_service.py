# fulfillment/services/archival_service.py
import threading
from dataclasses import dataclass, field
from datetime import datetime
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from fulfillment.data.models.order_event import OrderEventModel
from fulfillment.data.models.order_history import OrderHistoryModel
from fulfillment.domain.errors import FulfillmentError, NotFound, PartialBatchFailure, StoreUnavailable
from fulfillment.domain.schemas import HistoryFilters
from fulfillment.domain.status import TERMINAL_STATUSES, is_terminal
from fulfillment.repos.history_repo import HistoryRepo
from fulfillment.repos.order_repo import OrderRepo
from fulfillment.utils.clock import utcnow
from fulfillment.utils.retry import store_errors
from fulfillment.utils.settings import (
    ARCHIVE_BATCH_SIZE,
    BUSINESS_CLOSING_HOUR,
    BUSINESS_OPENING_HOUR,
    BUSINESS_TIMEZONE,
)
from fulfillment.utils.logging import get_logger

logger = get_logger(__name__)

SWEEP_ACTOR = "auto-cleanup"


@dataclass
class ArchiveResult:
    moved_ids: list[str] = field(default_factory=list)
    skipped: list[dict] = field(default_factory=list)  # {id, reason: not_found | not_terminal}
    failed: list[dict] = field(default_factory=list)  # {id, reason, message}

    @property
    def moved_count(self) -> int:
        return len(self.moved_ids)

    @property
    def is_partial(self) -> bool:
        return bool(self.failed)

    def raise_for_partial(self):
        if self.failed:
            raise PartialBatchFailure(self, len(self.failed))

    def as_dict(self) -> dict:
        return {
            "moved_count": self.moved_count,
            "moved_ids": list(self.moved_ids),
            "skipped": list(self.skipped),
            "failed": list(self.failed),
        }


def _unique(ids) -> list[str]:
    seen = set()
    out = []
    for i in ids:
        if i not in seen:
            seen.add(i)
            out.append(i)
    return out


def _chunks(items: list, size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


def is_after_hours(now: datetime, tz: str = BUSINESS_TIMEZONE) -> bool:
    hour = now.astimezone(ZoneInfo(tz)).hour
    return hour >= BUSINESS_CLOSING_HOUR or hour < BUSINESS_OPENING_HOUR


class ArchivalService:
    """
    Przenosi zamkniete zamowienia (delivered / cancelled) do historii.

    Each batch is one transaction: the history insert and the live delete of
    every order in it commit together or not at all. Batches commit
    independently, so a failure reports exactly which ids made it.
    """

    def __init__(self, db: Session, batch_size: int = ARCHIVE_BATCH_SIZE):
        self.db = db
        self.orders = OrderRepo(db)
        self.history = HistoryRepo(db)
        self.batch_size = max(1, batch_size)

    def move_to_history(
        self,
        order_ids,
        actor: str,
        cancel_event: threading.Event | None = None,
    ) -> ArchiveResult:
        ids = _unique(order_ids)
        if not ids:
            raise ValueError("order_ids must not be empty")

        result = ArchiveResult()
        logger.info(f"Moving {len(ids)} candidate order(s) to history by {actor}")

        for batch in _chunks(ids, self.batch_size):
            if cancel_event is not None and cancel_event.is_set():
                result.failed.extend({"id": i, "reason": "cancelled", "message": "bulk archival cancelled"} for i in batch)
                continue
            try:
                moved, skipped = self._move_batch(batch, actor)
            except StoreUnavailable as e:
                logger.warning(f"Archival batch of {len(batch)} order(s) failed: {e}")
                result.failed.extend({"id": i, "reason": StoreUnavailable.code, "message": str(e)} for i in batch)
                continue
            except Exception as e:
                # earlier batches stay committed and reported
                logger.exception(f"Archival batch of {len(batch)} order(s) failed unexpectedly")
                reason = e.code if isinstance(e, FulfillmentError) else "error"
                result.failed.extend({"id": i, "reason": reason, "message": str(e)} for i in batch)
                continue
            result.moved_ids.extend(moved)
            result.skipped.extend(skipped)

        logger.info(
            f"Archival done: moved {result.moved_count}, skipped {len(result.skipped)}, failed {len(result.failed)}"
        )
        return result

    def _move_batch(self, batch: list[str], actor: str):
        moved, skipped = [], []
        now = utcnow()
        with store_errors(self.db):
            try:
                self._stage_batch(batch, actor, now, moved, skipped)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
        return moved, skipped

    def _stage_batch(self, batch: list[str], actor: str, now: datetime, moved: list, skipped: list):
        for order_id in batch:
            # row lock: no transition may slip in between read and delete
            order = self.orders.get_order(order_id, for_update=True)
            if order is None:
                skipped.append({"id": order_id, "reason": "not_found"})
                continue
            if not is_terminal(order.status):
                skipped.append({"id": order_id, "reason": "not_terminal"})
                continue

            self.history.add(OrderHistoryModel.from_order(order, moved_at=now, moved_by=actor))
            self.orders.add_event(
                OrderEventModel(
                    order_id=order.id,
                    event_type="archived",
                    from_status=order.status,
                    to_status=order.status,
                    actor=actor,
                    created_at=now,
                )
            )
            self.orders.delete_order(order)
            moved.append(order_id)

    def sweep(self, now: datetime | None = None, actor: str = SWEEP_ACTOR) -> ArchiveResult:
        """Scheduled path: every terminal order created before `now`."""
        cutoff = now or utcnow()
        with store_errors(self.db):
            ids = self.orders.list_ids_in_status(TERMINAL_STATUSES, created_before=cutoff)
        if not ids:
            logger.info("Archive sweep: nothing to move")
            return ArchiveResult()
        return self.move_to_history(ids, actor=actor)

    # --- history (read / maintenance) ---

    def query_history(self, filters: HistoryFilters | None = None) -> list[OrderHistoryModel]:
        with store_errors(self.db):
            return self.history.query(filters or HistoryFilters())

    def delete_history_record(self, order_id: str) -> None:
        with store_errors(self.db):
            record = self.history.get(order_id)
            if record is None:
                raise NotFound("history record", order_id)
            self.history.delete(record)
            self.db.commit()
        logger.info(f"History record {order_id} deleted")

    def clear_history(self) -> int:
        with store_errors(self.db):
            deleted = self.history.clear()
            self.db.commit()
        logger.info(f"History cleared, {deleted} record(s) deleted")
        return deleted
