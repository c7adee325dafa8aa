"""Redis-backed token bucket rate limiter."""

from __future__ import annotations

import math
import time
from typing import Callable, Final

from redis import Redis
from redis.exceptions import ResponseError

from .rate_limiter import retry_after_for


class RedisTokenBucketRateLimiter:
    """Distributed token bucket implemented with one Redis hash per key."""

    _LUA_SCRIPT: Final[str] = """
    local key = KEYS[1]
    local capacity = tonumber(ARGV[1])
    local refill_per_ms = tonumber(ARGV[2])
    local now_ms = tonumber(ARGV[3])
    local ttl_ms = tonumber(ARGV[4])

    local state = redis.call('HMGET', key, 'tokens', 'ts')
    local tokens = tonumber(state[1])
    local ts = tonumber(state[2])
    if tokens == nil or ts == nil then
        tokens = capacity
        ts = now_ms
    end

    local elapsed = math.max(0, now_ms - ts)
    tokens = math.min(capacity, tokens + elapsed * refill_per_ms)
    local allowed = 0
    if tokens >= 1 then
        tokens = tokens - 1
        allowed = 1
    end
    redis.call('HSET', key, 'tokens', tostring(tokens), 'ts', tostring(now_ms))
    redis.call('PEXPIRE', key, ttl_ms)
    return allowed
    """

    def __init__(
        self,
        client: Redis,
        *,
        capacity: int,
        refill_per_second: float,
        key_prefix: str = "rate",
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialise the Redis client, bucket configuration, and Lua script cache."""
        self._client = client
        self._capacity = capacity
        self._refill_per_second = refill_per_second
        self._refill_per_ms = refill_per_second / 1000
        self._key_prefix = key_prefix
        self._clock = clock
        if refill_per_second > 0:
            self._ttl_ms = max(1000, math.ceil(capacity / refill_per_second * 1000))
        else:
            self._ttl_ms = 24 * 3600 * 1000
        self._script = client.register_script(self._LUA_SCRIPT)

    @property
    def retry_after_seconds(self) -> int | None:
        return retry_after_for(self._refill_per_second)

    def allow(self, key: str = "global") -> bool:
        """Return ``True`` when the key's distributed bucket still holds a token."""
        now_ms = int(self._clock() * 1000)
        redis_key = f"{self._key_prefix}:{key}"
        try:
            result = self._script(
                keys=[redis_key],
                args=[self._capacity, self._refill_per_ms, now_ms, self._ttl_ms],
            )
            return int(result) == 1
        except ResponseError as exc:
            message = str(exc).lower()
            if "unknown command" in message and ("evalsha" in message or "eval" in message):
                return self._allow_fallback(redis_key, now_ms)
            raise

    def _allow_fallback(self, redis_key: str, now_ms: int) -> bool:
        """Fallback pure-Python implementation used when Lua is unavailable."""
        tokens_raw, ts_raw = self._client.hmget(redis_key, ["tokens", "ts"])
        if tokens_raw is None or ts_raw is None:
            tokens, ts = float(self._capacity), now_ms
        else:
            tokens, ts = float(tokens_raw), int(float(ts_raw))
        elapsed = max(0, now_ms - ts)
        tokens = min(float(self._capacity), tokens + elapsed * self._refill_per_ms)
        allowed = tokens >= 1
        if allowed:
            tokens -= 1
        self._client.hset(redis_key, mapping={"tokens": str(tokens), "ts": str(now_ms)})
        self._client.pexpire(redis_key, self._ttl_ms)
        return allowed
