"""Redis backend for the cache/rate-limit layer."""

import redis.asyncio as aioredis

# Decrement only a live, positive counter; an expired window must not come back negative.
_DECR_LIVE_SCRIPT = """
local value = redis.call("GET", KEYS[1])
if value and tonumber(value) > 0 then
    return redis.call("DECR", KEYS[1])
end
return 0
"""


class RedisBackend:
    """
    Thin async wrapper over a redis.asyncio client.

    Errors propagate; ResilientCache decides how to degrade. The client is created
    by the process entry point and closed through ``close()``.
    """

    def __init__(self, url: str, prefix: str = "research"):
        self.url = url
        self.prefix = prefix
        self._client = aioredis.from_url(url, decode_responses=True)
        self._decr_live = self._client.register_script(_DECR_LIVE_SCRIPT)

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def get(self, key: str) -> str | None:
        return await self._client.get(self._key(key))

    async def set(self, key: str, value: str, ttl_s: int) -> None:
        await self._client.setex(self._key(key), ttl_s, value)

    async def delete(self, key: str) -> None:
        await self._client.delete(self._key(key))

    async def incr_window(self, key: str, window_s: int) -> tuple[int, int]:
        full_key = self._key(key)
        # INCR and EXPIRE NX in one MULTI so the window starts with the first hit
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.incr(full_key)
            pipe.expire(full_key, window_s, nx=True)
            pipe.ttl(full_key)
            count, _, ttl = await pipe.execute()
        return int(count), max(0, int(ttl))

    async def decr_window(self, key: str) -> int:
        return int(await self._decr_live(keys=[self._key(key)]))

    async def peek(self, key: str) -> tuple[int, int]:
        full_key = self._key(key)
        async with self._client.pipeline(transaction=False) as pipe:
            pipe.get(full_key)
            pipe.ttl(full_key)
            value, ttl = await pipe.execute()
        return int(value or 0), max(0, int(ttl))

    async def ping(self) -> bool:
        return bool(await self._client.ping())

    async def close(self) -> None:
        await self._client.aclose()
