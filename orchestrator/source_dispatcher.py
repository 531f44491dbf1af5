"""
SourceDispatcher - bounded concurrent fan-out over source adapters.

Every task settles into a SourceOutcome; a failing or timed-out source yields an
outcome with an error and no items, and never cancels its siblings.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

from models.identifiers import SourceId
from sources.base import SourceAdapter
from sources.contracts import SearchFilters, SourceItem
from utils.logger import get_logger

from .errors import SourceUnavailable

logger = get_logger(__name__)


@dataclass(frozen=True)
class SourceOutcome:
    source: SourceId
    items: tuple[SourceItem, ...] = ()
    error: str | None = None
    latency_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": len(self.items),
            "error": self.error,
            "latency_ms": self.latency_ms,
        }


@dataclass(frozen=True)
class AggregatedContext:
    """All items from settled source tasks, ordered by source dispatch order then rank."""

    outcomes: tuple[SourceOutcome, ...] = ()
    items: tuple[SourceItem, ...] = field(default_factory=tuple)

    @classmethod
    def from_outcomes(cls, outcomes: list[SourceOutcome]) -> "AggregatedContext":
        items = [item for outcome in outcomes for item in outcome.items]
        return cls(outcomes=tuple(outcomes), items=tuple(items))

    @property
    def contributing_sources(self) -> list[SourceId]:
        return [o.source for o in self.outcomes if o.items]

    def counts_by_source(self) -> dict[str, int]:
        return {o.source.value: len(o.items) for o in self.outcomes}

    def for_source(self, source: SourceId) -> "AggregatedContext":
        return AggregatedContext.from_outcomes([o for o in self.outcomes if o.source == source])


class SourceDispatcher:
    def __init__(
        self,
        adapters: dict[SourceId, SourceAdapter],
        max_concurrency: int = 4,
        timeout_s: float = 20.0,
    ):
        """
        Args:
            adapters: One adapter per source id
            max_concurrency: Upper bound on simultaneously running source searches
            timeout_s: Overall time limit per source search, retries included
        """
        self.adapters = adapters
        self.max_concurrency = max(1, max_concurrency)
        self.timeout_s = timeout_s

    async def _run_one(
        self,
        semaphore: asyncio.Semaphore,
        source: SourceId,
        query: str,
        filters: SearchFilters,
        max_results: int,
        query_id: str | None,
    ) -> SourceOutcome:
        log_fields = {"query_id": query_id, "source": source.value}
        start = time.time()
        adapter = self.adapters.get(source)
        if adapter is None:
            logger.error(
                f"No adapter registered for source {source.value}",
                extra={"extra_fields": log_fields},
            )
            return SourceOutcome(source=source, error="no adapter registered")

        async with semaphore:
            try:
                items = await asyncio.wait_for(
                    adapter.search(query, filters, max_results), timeout=self.timeout_s
                )
            except asyncio.TimeoutError:
                latency_ms = int((time.time() - start) * 1000)
                logger.warning(
                    f"Source {source.value} timed out after {self.timeout_s}s",
                    extra={"extra_fields": {**log_fields, "timeout_s": self.timeout_s}},
                )
                return SourceOutcome(source=source, error="timeout", latency_ms=latency_ms)
            except SourceUnavailable as e:
                latency_ms = int((time.time() - start) * 1000)
                logger.warning(
                    f"Source {source.value} unavailable: {e.message}",
                    extra={"extra_fields": {**log_fields, "status": e.status, "error": e.message}},
                )
                return SourceOutcome(source=source, error=e.message, latency_ms=latency_ms)
            except Exception as e:
                latency_ms = int((time.time() - start) * 1000)
                logger.error(
                    f"Source {source.value} failed unexpectedly: {e}",
                    extra={"extra_fields": {**log_fields, "error_type": type(e).__name__}},
                    exc_info=True,
                )
                return SourceOutcome(
                    source=source, error=str(e) or type(e).__name__, latency_ms=latency_ms
                )

        latency_ms = int((time.time() - start) * 1000)
        return SourceOutcome(source=source, items=tuple(items), latency_ms=latency_ms)

    async def dispatch(
        self,
        sources: tuple[SourceId, ...] | list[SourceId],
        query: str,
        filters: SearchFilters | None = None,
        max_results: int = 25,
        query_id: str | None = None,
    ) -> AggregatedContext:
        """Search every source concurrently and wait for all of them to settle."""
        filters = filters or SearchFilters()
        semaphore = asyncio.Semaphore(self.max_concurrency)
        outcomes = await asyncio.gather(
            *(
                self._run_one(semaphore, source, query, filters, max_results, query_id)
                for source in sources
            )
        )
        context = AggregatedContext.from_outcomes(list(outcomes))

        logger.info(
            f"Source fan-out settled: {len(context.items)} items "
            f"from {len(context.contributing_sources)}/{len(outcomes)} sources",
            extra={
                "extra_fields": {
                    "query_id": query_id,
                    "counts": context.counts_by_source(),
                    "failed": [o.source.value for o in outcomes if not o.ok],
                }
            },
        )
        return context
