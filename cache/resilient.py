"""
ResilientCache - the shared cache and rate-limit store used by every component.

Wraps a MemoryBackend or RedisBackend. Any backend failure is logged as a warning and
degrades to a safe default: reads miss, writes are dropped, and rate-limit checks
allow the request. A cache outage never fails a user-facing request.
"""

import json
from dataclasses import dataclass
from typing import Any, Protocol

from utils.logger import get_logger

logger = get_logger(__name__)


class CacheBackendProtocol(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_s: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def incr_window(self, key: str, window_s: int) -> tuple[int, int]: ...

    async def decr_window(self, key: str) -> int: ...

    async def peek(self, key: str) -> tuple[int, int]: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    count: int = 0
    reset_in_s: int = 0
    degraded: bool = False


@dataclass(frozen=True)
class CounterState:
    count: int
    reset_in_s: int


class ResilientCache:
    def __init__(self, backend: CacheBackendProtocol, backend_name: str = "memory"):
        self.backend = backend
        self.backend_name = backend_name

    def _warn(self, operation: str, key: str, exc: Exception) -> None:
        logger.warning(
            f"Cache {operation} failed, degrading",
            extra={
                "extra_fields": {
                    "backend": self.backend_name,
                    "operation": operation,
                    "key": key,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                }
            },
        )

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self.backend.get(key)
        except Exception as e:
            self._warn("get", key, e)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            self._warn("decode", key, e)
            return None

    async def set(self, key: str, value: Any, ttl_s: int) -> bool:
        try:
            payload = json.dumps(value, default=str)
            await self.backend.set(key, payload, ttl_s)
            return True
        except Exception as e:
            self._warn("set", key, e)
            return False

    async def delete(self, key: str) -> bool:
        try:
            await self.backend.delete(key)
            return True
        except Exception as e:
            self._warn("delete", key, e)
            return False

    async def increment_and_check(
        self, identifier: str, window_s: int, max_count: int
    ) -> RateLimitResult:
        """
        Atomically count one hit against ``identifier`` in a fixed window.

        The window starts with the first increment and expires ``window_s`` later.
        """
        key = f"ratelimit:{identifier}"
        try:
            count, reset_in = await self.backend.incr_window(key, window_s)
        except Exception as e:
            self._warn("increment", key, e)
            return RateLimitResult(allowed=True, remaining=max_count, degraded=True)

        return RateLimitResult(
            allowed=count <= max_count,
            remaining=max(0, max_count - count),
            count=count,
            reset_in_s=reset_in,
        )

    async def release(self, identifier: str) -> bool:
        """Give back one hit counted by increment_and_check. False when degraded."""
        key = f"ratelimit:{identifier}"
        try:
            await self.backend.decr_window(key)
            return True
        except Exception as e:
            self._warn("release", key, e)
            return False

    async def peek_counter(self, identifier: str) -> CounterState | None:
        key = f"ratelimit:{identifier}"
        try:
            count, reset_in = await self.backend.peek(key)
        except Exception as e:
            self._warn("peek", key, e)
            return None
        return CounterState(count=count, reset_in_s=reset_in)

    async def is_healthy(self) -> bool:
        try:
            return await self.backend.ping()
        except Exception as e:
            self._warn("ping", "-", e)
            return False

    async def close(self) -> None:
        try:
            await self.backend.close()
        except Exception as e:
            self._warn("close", "-", e)
