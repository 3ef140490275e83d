"""Redis-backed guard against concurrent checkout attempts for one order."""

import redis

from paybridge.common.logging import logger


class CheckoutGuard:
    """Short-lived `SET NX` key per order while a checkout attempt is in flight."""

    def __init__(self, rdb: redis.Redis, ttl_seconds: int = 120) -> None:
        self.rdb = rdb
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _key(order_id: str) -> str:
        return f"checkout:inflight:{order_id}"

    def acquire(self, order_id: str) -> bool:
        try:
            return bool(self.rdb.set(self._key(order_id), "1", nx=True, ex=self.ttl_seconds))
        except redis.RedisError as exc:
            logger.warning("checkout_guard_unavailable order_id=%s error=%s", order_id, exc)
            return True

    def release(self, order_id: str) -> None:
        try:
            self.rdb.delete(self._key(order_id))
        except redis.RedisError as exc:
            logger.warning("checkout_guard_release_failed order_id=%s error=%s", order_id, exc)
