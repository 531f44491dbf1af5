"""
SourceAdapter - common behaviour for literature and patent database adapters.

Subclasses implement ``_search`` and ``_lookup`` against one provider. The base
class owns caching (keyed by the full parameter set), per-request timeouts,
retry with exponential backoff and mapping of transport/HTTP failures to
SourceUnavailable.
"""

import asyncio
import hashlib
import json
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx

from cache.resilient import ResilientCache
from models.identifiers import SourceId
from orchestrator.errors import SourceUnavailable
from utils.logger import get_logger

from .contracts import SearchFilters, SourceItem

logger = get_logger(__name__)

T = TypeVar("T")

SEARCH_TTL_S = 3600
LOOKUP_TTL_S = 86400


class SourceAdapter(ABC):
    source_id: SourceId

    def __init__(
        self,
        http: httpx.AsyncClient,
        cache: ResilientCache | None = None,
        *,
        timeout_s: float = 20.0,
        max_retries: int = 2,
        backoff_s: float = 0.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            http: Shared AsyncClient owned by the process entry point
            cache: Shared cache; None disables memoization
            timeout_s: Timeout applied to each outbound HTTP request
            max_retries: Extra attempts after the first for retryable failures
            backoff_s: Base delay, doubled on every retry
            sleep: Injected for tests
        """
        self.http = http
        self.cache = cache
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.backoff_s = backoff_s
        self._sleep = sleep

    @property
    def name(self) -> str:
        return self.source_id.value

    def _cache_key(self, operation: str, params: dict[str, Any]) -> str:
        canonical = json.dumps(params, sort_keys=True, default=str)
        digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:32]
        return f"{self.name}:{operation}:{digest}"

    async def search(
        self, query: str, filters: SearchFilters | None = None, max_results: int = 25
    ) -> list[SourceItem]:
        """
        Search the provider, serving from cache within the search TTL.

        Raises:
            SourceUnavailable: network failure, non-2xx status or malformed payload
        """
        filters = filters or SearchFilters()
        params = {"query": query, "filters": filters.to_params(), "max_results": max_results}
        key = self._cache_key("search", params)

        if self.cache is not None:
            cached = await self.cache.get(key)
            if isinstance(cached, list):
                logger.debug(
                    f"{self.name} search served from cache",
                    extra={"extra_fields": {"source": self.name, "cache_key": key}},
                )
                return [SourceItem.from_dict(d) for d in cached]

        items = await self._with_retries(
            "search", lambda: self._search(query, filters, max_results)
        )

        if self.cache is not None:
            await self.cache.set(key, [item.to_dict() for item in items], SEARCH_TTL_S)

        logger.info(
            f"{self.name} search returned {len(items)} items",
            extra={
                "extra_fields": {
                    "source": self.name,
                    "result_count": len(items),
                    "max_results": max_results,
                }
            },
        )
        return items

    async def lookup(self, external_id: str) -> SourceItem | None:
        """Fetch a single record by provider id, cached for the lookup TTL."""
        key = self._cache_key("lookup", {"id": external_id})

        if self.cache is not None:
            cached = await self.cache.get(key)
            if isinstance(cached, dict):
                return SourceItem.from_dict(cached)

        item = await self._with_retries("lookup", lambda: self._lookup(external_id))

        if item is not None and self.cache is not None:
            await self.cache.set(key, item.to_dict(), LOOKUP_TTL_S)
        return item

    @abstractmethod
    async def _search(
        self, query: str, filters: SearchFilters, max_results: int
    ) -> list[SourceItem]: ...

    @abstractmethod
    async def _lookup(self, external_id: str) -> SourceItem | None: ...

    async def _get(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        allow_not_found: bool = False,
    ) -> httpx.Response | None:
        """Single GET attempt. Returns None on 404 when ``allow_not_found`` is set."""
        try:
            response = await self.http.get(
                url, params=params, headers=headers, timeout=self.timeout_s
            )
        except httpx.TimeoutException as e:
            raise SourceUnavailable(
                self.name, f"timed out after {self.timeout_s}s", retryable=True
            ) from e
        except httpx.TransportError as e:
            raise SourceUnavailable(self.name, f"transport error: {e}", retryable=True) from e

        if response.status_code == 404 and allow_not_found:
            return None
        if response.status_code >= 400:
            raise SourceUnavailable(
                self.name,
                f"HTTP {response.status_code}",
                status=response.status_code,
                retryable=response.status_code == 429 or response.status_code >= 500,
            )
        return response

    async def _with_retries(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await call()
            except SourceUnavailable as e:
                if not e.retryable or attempt > self.max_retries:
                    raise
                delay = self.backoff_s * (2 ** (attempt - 1))
                logger.warning(
                    f"{self.name} {operation} failed, retrying in {delay:.2f}s",
                    extra={
                        "extra_fields": {
                            "source": self.name,
                            "operation": operation,
                            "attempt": attempt,
                            "status": e.status,
                            "error": e.message,
                        }
                    },
                )
                await self._sleep(delay)
            except (ValueError, KeyError, TypeError) as e:
                raise SourceUnavailable(self.name, f"malformed response: {e}") from e
