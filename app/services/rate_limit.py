import logging

import redis

LOGGER = logging.getLogger(__name__)


class FixedWindowRateLimiter:
    """Counts calls per key in fixed windows stored in Redis.

    The first increment in a window sets the expiry; the increment and the
    expiry run in one MULTI/EXEC so a key never outlives its window.
    """

    def __init__(self, client: redis.Redis, prefix: str = "rate_limit") -> None:
        self._client = client
        self._prefix = prefix

    def check_and_increment(self, key: str, window_seconds: int, max_count: int) -> bool:
        full_key = self._key(key)
        with self._client.pipeline(transaction=True) as pipe:
            pipe.incr(full_key)
            pipe.expire(full_key, window_seconds, nx=True)
            count, _ = pipe.execute()
        allowed = int(count) <= max_count
        if not allowed:
            LOGGER.warning("Rate limit exceeded key=%s count=%s", full_key, count)
        return allowed

    def seconds_until_reset(self, key: str) -> int:
        ttl = self._client.ttl(self._key(key))
        return max(int(ttl), 0) if ttl is not None else 0

    def reset(self, key: str) -> None:
        self._client.delete(self._key(key))

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"
