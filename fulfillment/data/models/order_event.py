# fulfillment/data/models/order_event.py
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, Text

from fulfillment.data.database import Base


class OrderEventModel(Base):
    """Append-only audit trail; survives archival, so no FK to orders."""

    __tablename__ = "order_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(64), nullable=False, index=True)
    event_type = Column(String(32), nullable=False)  # created, status_changed, archived
    from_status = Column(String(32), nullable=True)
    to_status = Column(String(32), nullable=True)
    actor = Column(String(200), nullable=False)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
