# fulfillment/repos/order_repo.py
from datetime import datetime

from sqlalchemy import select, update, func
from sqlalchemy.orm import Session

from fulfillment.data.models.order import OrderModel
from fulfillment.data.models.order_event import OrderEventModel
from fulfillment.domain.status import OrderStatus


class OrderRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_order(self, order_id: str, for_update: bool = False) -> OrderModel | None:
        # populate_existing: always re-read, never trust the identity map
        stmt = select(OrderModel).where(OrderModel.id == order_id).execution_options(populate_existing=True)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_order_number(self, order_number: str) -> OrderModel | None:
        return self.db.execute(
            select(OrderModel).where(OrderModel.order_number == order_number)
        ).scalar_one_or_none()

    def list_orders(self, status: str | None = None, limit: int | None = None) -> list[OrderModel]:
        stmt = select(OrderModel).order_by(OrderModel.created_at.desc(), OrderModel.id.desc())
        if status:
            stmt = stmt.where(OrderModel.status == status)
        if limit:
            stmt = stmt.limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def count_orders(self, status: str | None = None) -> int:
        stmt = select(func.count()).select_from(OrderModel)
        if status:
            stmt = stmt.where(OrderModel.status == status)
        return self.db.execute(stmt).scalar_one()

    def list_ids_in_status(self, statuses, created_before: datetime | None = None) -> list[str]:
        stmt = select(OrderModel.id).where(OrderModel.status.in_([OrderStatus(s).value for s in statuses]))
        if created_before is not None:
            stmt = stmt.where(OrderModel.created_at < created_before)
        return list(self.db.execute(stmt.order_by(OrderModel.created_at, OrderModel.id)).scalars().all())

    def add_order(self, order: OrderModel) -> OrderModel:
        self.db.add(order)
        self.db.flush()
        return order

    def update_status_if_current(
        self,
        order_id: str,
        old_version: int,
        old_status: str,
        new_data: dict,
    ) -> int:
        """Conditional write; 0 rows means another writer got there first."""
        result = self.db.execute(
            update(OrderModel)
            .where(
                OrderModel.id == order_id,
                OrderModel.version == old_version,
                OrderModel.status == old_status,
            )
            .values(version=old_version + 1, **new_data)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def delete_order(self, order: OrderModel) -> None:
        self.db.delete(order)

    def add_event(self, event: OrderEventModel) -> OrderEventModel:
        self.db.add(event)
        return event

    def list_events(self, order_id: str) -> list[OrderEventModel]:
        return list(
            self.db.execute(
                select(OrderEventModel)
                .where(OrderEventModel.order_id == order_id)
                .order_by(OrderEventModel.created_at, OrderEventModel.id)
            ).scalars().all()
        )

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
