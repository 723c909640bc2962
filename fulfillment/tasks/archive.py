# fulfillment/tasks/archive.py
from fulfillment.celery_worker import celery_app
from fulfillment.data.database import SessionLocal
from fulfillment.services.archival_service import ArchivalService, is_after_hours
from fulfillment.utils.clock import utcnow
from fulfillment.utils.logging import get_logger

logger = get_logger(__name__)


@celery_app.task(name="fulfillment.tasks.archive.archive_sweep_task")
def archive_sweep_task(force: bool = False):
    logger.info("Archive sweep task started")

    now = utcnow()
    if not force and not is_after_hours(now):
        # zamowienia w trakcie dnia zostaja na tablicy
        logger.info(f"Archive sweep skipped, business hours at {now.isoformat()}")
        return {"skipped": "business_hours", "moved_count": 0}

    db = SessionLocal()
    try:
        result = ArchivalService(db).sweep(now=now)
        if result.is_partial:
            logger.warning(f"Archive sweep finished with {len(result.failed)} failed order(s)")
        return result.as_dict()
    finally:
        db.close()
