"""
Redis-backed sliding window store.

The prune/count/record sequence runs as one Lua script on the server, so two
concurrent requests for the same identity can never both take the last slot.
Scores are integer milliseconds.
"""

from __future__ import annotations

import uuid
from typing import Any

from ai_resilience._features import require_extra
from ai_resilience.stores.base import SlidingWindowStore, WindowSnapshot

_CHECK_AND_RECORD_LUA = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window_start = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
local ttl = tonumber(ARGV[4])
local member = ARGV[5]

redis.call('ZREMRANGEBYSCORE', key, '-inf', window_start)
local count = redis.call('ZCARD', key)
local recorded = 0
if count < limit then
  redis.call('ZADD', key, now, member)
  recorded = 1
end
redis.call('EXPIRE', key, ttl)
local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
local oldest_score = ''
if oldest[2] then
  oldest_score = oldest[2]
end
return {count, recorded, oldest_score}
"""


class RedisSlidingWindowStore(SlidingWindowStore):
    """Sliding window store on Redis sorted sets.

    Example:
        >>> store = RedisSlidingWindowStore.from_url("redis://localhost:6379/0")
        >>> snap = await store.check_and_record("ratelimit:u1", now, 3600, 100)
    """

    def __init__(self, client: Any, key_prefix: str = "") -> None:
        """Initialize with an existing ``redis.asyncio`` client.

        Args:
            client: redis.asyncio.Redis instance (decode_responses=True)
            key_prefix: Prefix prepended to every key
        """
        self._redis = client
        self._key_prefix = key_prefix
        self._script = client.register_script(_CHECK_AND_RECORD_LUA)

    @classmethod
    def from_url(
        cls,
        url: str = "redis://localhost:6379/0",
        key_prefix: str = "",
        **kwargs: Any,
    ) -> RedisSlidingWindowStore:
        """Create a store with a new connection pool.

        Raises:
            ImportError: If the ``redis`` extra is not installed
        """
        require_extra("redis")
        import redis.asyncio as aioredis

        client = aioredis.from_url(url, decode_responses=True, **kwargs)
        return cls(client, key_prefix=key_prefix)

    def _key(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    async def check_and_record(
        self,
        key: str,
        now: float,
        window_seconds: float,
        limit: int,
    ) -> WindowSnapshot:
        now_ms = int(now * 1000)
        window_start_ms = now_ms - int(window_seconds * 1000)
        member = f"{now_ms}-{uuid.uuid4().hex[:8]}"
        ttl = max(1, int(window_seconds))

        count, recorded, oldest = await self._script(
            keys=[self._key(key)],
            args=[now_ms, window_start_ms, limit, ttl, member],
        )
        return WindowSnapshot(
            count=int(count),
            oldest=float(oldest) / 1000 if oldest not in ("", None) else None,
            recorded=bool(int(recorded)),
        )

    async def prune_and_count(
        self,
        key: str,
        now: float,
        window_seconds: float,
    ) -> WindowSnapshot:
        full_key = self._key(key)
        window_start_ms = int(now * 1000) - int(window_seconds * 1000)

        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(full_key, "-inf", window_start_ms)
            pipe.zcard(full_key)
            pipe.zrange(full_key, 0, 0, withscores=True)
            _, count, oldest = await pipe.execute()

        return WindowSnapshot(
            count=int(count),
            oldest=float(oldest[0][1]) / 1000 if oldest else None,
        )

    async def delete(self, key: str) -> None:
        await self._redis.delete(self._key(key))

    async def close(self) -> None:
        await self._redis.aclose()
