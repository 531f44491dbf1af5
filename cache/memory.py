"""Thread-safe in-memory TTL backend for the cache/rate-limit layer."""

import threading
import time
from collections.abc import Callable


class MemoryBackend:
    """
    In-process key/value store with per-key expiry.

    A threading.Lock guards every access so the backend can be shared between the
    event loop and executor threads. Values are stored as already-serialized strings,
    matching what the Redis backend stores. Expired entries are dropped when read and
    swept out every ``sweep_every`` writes.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, sweep_every: int = 256):
        self._data: dict[str, tuple[str, float | None]] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._sweep_every = max(1, sweep_every)
        self._writes = 0

    def size(self) -> int:
        with self._lock:
            return len(self._data)

    def _expire(self) -> int:
        # caller holds the lock
        now = self._clock()
        expired = [
            key
            for key, (_, expires_at) in self._data.items()
            if expires_at is not None and now >= expires_at
        ]
        for key in expired:
            del self._data[key]
        return len(expired)

    def _count_write(self) -> None:
        # caller holds the lock
        self._writes += 1
        if self._writes >= self._sweep_every:
            self._writes = 0
            self._expire()

    def sweep(self) -> int:
        """Drop every expired entry now. Returns the number removed."""
        with self._lock:
            return self._expire()

    def _live(self, key: str) -> tuple[str, float | None] | None:
        # caller holds the lock
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return entry

    async def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._live(key)
            return entry[0] if entry else None

    async def set(self, key: str, value: str, ttl_s: int) -> None:
        with self._lock:
            self._data[key] = (value, self._clock() + ttl_s)
            self._count_write()

    async def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    async def incr_window(self, key: str, window_s: int) -> tuple[int, int]:
        """Increment a counter, starting its expiry window on the first increment."""
        with self._lock:
            now = self._clock()
            entry = self._live(key)
            if entry is None:
                expires_at = now + window_s
                count = 1
            else:
                count = int(entry[0]) + 1
                expires_at = entry[1] if entry[1] is not None else now + window_s
            self._data[key] = (str(count), expires_at)
            self._count_write()
            return count, max(0, int(round(expires_at - now)))

    async def decr_window(self, key: str) -> int:
        """Take back one hit from a live counter without touching its window."""
        with self._lock:
            entry = self._live(key)
            if entry is None or int(entry[0]) <= 0:
                return 0
            count = int(entry[0]) - 1
            self._data[key] = (str(count), entry[1])
            return count

    async def peek(self, key: str) -> tuple[int, int]:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return 0, 0
            value, expires_at = entry
            ttl = int(round(expires_at - self._clock())) if expires_at is not None else -1
            return int(value), max(0, ttl)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        with self._lock:
            self._data.clear()
