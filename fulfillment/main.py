# fulfillment/main.py
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from fulfillment.api.routers import coupons, health, history, orders
from fulfillment.data.database import Base, SessionLocal, init_db
from fulfillment.services.change_detector import ChangeDetector, HttpLiveOrderSource, StoreLiveOrderSource
from fulfillment.services.notification_service import NotificationService
from fulfillment.utils.settings import (
    NOTIFY_ENABLED,
    NOTIFY_POLL_INTERVAL_SECONDS,
    NOTIFY_SOURCE_URL,
    NOTIFY_STATUS_FILTER,
    STORE_TIMEOUT_SECONDS,
)
from fulfillment.utils.logging import get_logger

logger = get_logger(__name__)


def build_detector() -> ChangeDetector:
    if NOTIFY_SOURCE_URL:
        source = HttpLiveOrderSource(NOTIFY_SOURCE_URL, timeout=STORE_TIMEOUT_SECONDS)
    else:
        source = StoreLiveOrderSource(SessionLocal)
    return ChangeDetector(
        source,
        interval_seconds=NOTIFY_POLL_INTERVAL_SECONDS,
        status=NOTIFY_STATUS_FILTER,
        enabled=NOTIFY_ENABLED,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Initializing database")
    init_db()
    logger.info(f"Tables registered: {list(Base.metadata.tables.keys())}")

    # panel admina: dzwiek/push przy nowym zamowieniu
    detector = build_detector()
    detector.subscribe(NotificationService().send_new_order_notification)
    app.state.detector = detector
    detector.start()
    try:
        yield
    finally:
        detector.stop(timeout=NOTIFY_POLL_INTERVAL_SECONDS)
        app.state.detector = None


def create_app() -> FastAPI:
    app = FastAPI(
        title="Order Fulfillment Service",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.include_router(health.router)
    app.include_router(orders.router)
    app.include_router(coupons.router)
    app.include_router(history.router)

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
