# fulfillment/celery_worker.py
from celery import Celery
from celery.schedules import crontab

from fulfillment.utils.settings import (
    CELERY_BROKER_URL,
    CELERY_RESULT_BACKEND,
    ARCHIVE_SWEEP_HOUR,
    ARCHIVE_SWEEP_MINUTE,
    BUSINESS_TIMEZONE,
)

celery_app = Celery(
    "fulfillment",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# taski musza byc zaimportowane, zeby Celery je zarejestrowal
celery_app.conf.imports = (
    "fulfillment.tasks.archive",
    "fulfillment.services.notification_service",
)

# koniec dnia pracy: zamkniete zamowienia ida do historii
celery_app.conf.beat_schedule = {
    "archive-terminal-orders-daily": {
        "task": "fulfillment.tasks.archive.archive_sweep_task",
        "schedule": crontab(hour=ARCHIVE_SWEEP_HOUR, minute=ARCHIVE_SWEEP_MINUTE),
    },
}

celery_app.conf.timezone = BUSINESS_TIMEZONE
