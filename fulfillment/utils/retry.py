# fulfillment/utils/retry.py
from contextlib import contextmanager

import redis
from sqlalchemy.exc import InterfaceError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from fulfillment.domain.errors import StoreUnavailable
from fulfillment.utils.settings import STORE_RETRY_ATTEMPTS
from fulfillment.utils.logging import get_logger

logger = get_logger(__name__)

TRANSIENT_STORE_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError)


@contextmanager
def store_errors(db: Session):
    """Rolls back and re-raises transport/timeout faults as StoreUnavailable."""
    try:
        yield
    except TRANSIENT_STORE_ERRORS as e:
        logger.warning(f"Store call failed, rolling back: {e}")
        db.rollback()
        raise StoreUnavailable(str(e)) from e


def store_retry():
    return retry(
        reraise=True,
        stop=stop_after_attempt(STORE_RETRY_ATTEMPTS),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(StoreUnavailable),
    )


def redis_retry():
    return retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(redis.RedisError),
    )
