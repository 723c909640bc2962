# fulfillment/repos/history_repo.py
from datetime import datetime, time, timedelta, timezone

from sqlalchemy import select, delete, or_, func
from sqlalchemy.orm import Session

from fulfillment.data.models.order_history import OrderHistoryModel
from fulfillment.domain.schemas import HistoryFilters


def _day_start(d) -> datetime:
    return datetime.combine(d, time.min, tzinfo=timezone.utc)


class HistoryRepo:
    def __init__(self, db: Session):
        self.db = db

    def get(self, order_id: str) -> OrderHistoryModel | None:
        return self.db.get(OrderHistoryModel, order_id)

    def add(self, record: OrderHistoryModel) -> OrderHistoryModel:
        self.db.add(record)
        return record

    def query(self, filters: HistoryFilters) -> list[OrderHistoryModel]:
        stmt = select(OrderHistoryModel)

        # day filter wins over the range, like the admin history screen
        if filters.day:
            stmt = stmt.where(
                OrderHistoryModel.original_created_at >= _day_start(filters.day),
                OrderHistoryModel.original_created_at < _day_start(filters.day) + timedelta(days=1),
            )
        else:
            if filters.date_from:
                stmt = stmt.where(OrderHistoryModel.original_created_at >= _day_start(filters.date_from))
            if filters.date_to:
                stmt = stmt.where(
                    OrderHistoryModel.original_created_at < _day_start(filters.date_to) + timedelta(days=1)
                )

        if filters.status:
            stmt = stmt.where(OrderHistoryModel.status == filters.status.value)

        if filters.search:
            term = f"%{filters.search.strip().lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(OrderHistoryModel.order_number).like(term),
                    func.lower(OrderHistoryModel.customer_name).like(term),
                    func.lower(OrderHistoryModel.customer_email).like(term),
                )
            )

        sort_col = getattr(OrderHistoryModel, filters.sort_by)
        if filters.descending:
            stmt = stmt.order_by(sort_col.desc(), OrderHistoryModel.id.desc())
        else:
            stmt = stmt.order_by(sort_col.asc(), OrderHistoryModel.id.asc())

        stmt = stmt.offset(filters.offset).limit(filters.limit)
        return list(self.db.execute(stmt).scalars().all())

    def delete(self, record: OrderHistoryModel) -> None:
        self.db.delete(record)

    def clear(self) -> int:
        result = self.db.execute(delete(OrderHistoryModel))
        return result.rowcount
