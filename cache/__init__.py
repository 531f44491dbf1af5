"""Shared cache and rate-limit layer."""

from config.config import CacheBackend, Config
from utils.logger import get_logger

from .memory import MemoryBackend
from .resilient import CounterState, RateLimitResult, ResilientCache

logger = get_logger(__name__)


def create_cache_from_config(config: Config) -> ResilientCache:
    """Build the cache selected by CACHE_BACKEND."""
    if config.cache_backend is CacheBackend.REDIS and config.REDIS_URL:
        from .redis_backend import RedisBackend

        logger.info("Using Redis cache backend")
        return ResilientCache(RedisBackend(config.REDIS_URL), backend_name="redis")

    logger.info("Using in-memory cache backend")
    return ResilientCache(MemoryBackend(), backend_name="memory")


__all__ = [
    "CounterState",
    "MemoryBackend",
    "RateLimitResult",
    "ResilientCache",
    "create_cache_from_config",
]
