"""Per-user Redis token bucket for purchase endpoints."""

from time import time

import redis
from fastapi import HTTPException

from wavepay.common.config import settings
from wavepay.common.logging import logger


class TokenBucket:
    """Capacity and refill rate are both `limit_per_minute`."""

    def __init__(self, rdb: redis.Redis, limit_per_minute: int | None = None, prefix: str = "tokenbucket:purchase") -> None:
        self.rdb = rdb
        self.capacity = float(limit_per_minute or settings.rate_limit_per_minute)
        self.prefix = prefix

    def take(self, user_id: str) -> bool:
        key = f"{self.prefix}:{user_id}"
        now = time()
        refill_per_sec = self.capacity / 60.0

        values = self.rdb.hmget(key, "tokens", "updated_at")
        tokens = float(values[0]) if values[0] is not None else self.capacity
        updated_at = float(values[1]) if values[1] is not None else now
        tokens = min(self.capacity, tokens + max(0.0, now - updated_at) * refill_per_sec)

        allowed = tokens >= 1.0
        if allowed:
            tokens -= 1.0
        self.rdb.hset(key, mapping={"tokens": tokens, "updated_at": now})
        self.rdb.expire(key, 120)
        return allowed

    def enforce(self, user_id: str) -> None:
        """Raise 429 when exhausted; a Redis outage lets the request through."""

        try:
            allowed = self.take(user_id)
        except redis.RedisError as exc:
            logger.warning("rate_limit_unavailable error=%s", exc)
            return
        if not allowed:
            raise HTTPException(status_code=429, detail="rate limit exceeded")
