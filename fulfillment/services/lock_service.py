import redis
from fulfillment.utils.retry import redis_retry
from fulfillment.utils.settings import REDIS_URL, ORDER_LOCK_TTL_SECONDS
from fulfillment.utils.logging import get_logger

logger = get_logger(__name__)

#LUA porownaj i usun, atomicity
_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""

#redis wykonuje lua atomowo, nie da sie wcisnac miedzy GET a DEL
#wiec lock zdejmuje tylko ten request ktory go zalozyl


class LockService:
    """
    -serializacja requestow dla jednego zamowienia (lock per order)
    -zwalnianie locka tylko przez wlasciciela (token)
    -TTL, zeby lock po padnietym procesie sam wygasl
    """

    def __init__(self, url: str | None = None, client: redis.Redis | None = None):
        self.redis = client or redis.Redis.from_url(
            url or REDIS_URL,
            decode_responses=True,
        )

    @staticmethod
    def _key(order_id: str) -> str:
        return f"order:{order_id}:lock"

    @redis_retry()
    def acquire_order_lock(self, order_id: str, token: str, ttl: int = ORDER_LOCK_TTL_SECONDS) -> bool:
        key = self._key(order_id)
        logger.info(f"Acquire lock {key} for request {token}")
        #SET order:abc:lock "token" NX EX 30
        return bool(self.redis.set(name=key, value=token, nx=True, ex=ttl))

    @redis_retry()
    def release_order_lock(self, order_id: str, token: str) -> bool:
        key = self._key(order_id)
        logger.info(f"Release lock {key} for request {token}")
        res = self.redis.eval(_RELEASE_LUA, 1, key, token)
        return bool(res)
