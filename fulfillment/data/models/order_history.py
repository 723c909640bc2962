# fulfillment/data/models/order_history.py
from sqlalchemy import Column, String, DateTime

from fulfillment.data.database import Base
from fulfillment.data.models.order import OrderColumns


class OrderHistoryModel(OrderColumns, Base):
    __tablename__ = "order_history"

    moved_to_history_at = Column(DateTime(timezone=True), nullable=False, index=True)
    moved_by = Column(String(200), nullable=False)
    original_created_at = Column(DateTime(timezone=True), nullable=False, index=True)

    @classmethod
    def from_order(cls, order, moved_at, moved_by: str) -> "OrderHistoryModel":
        """Copies every business column of a live order and stamps provenance."""
        shared = {c.key for c in cls.__table__.columns} & {c.key for c in order.__table__.columns}
        record = cls(**{key: getattr(order, key) for key in shared})
        record.moved_to_history_at = moved_at
        record.moved_by = moved_by
        record.original_created_at = order.created_at
        return record
