"""
Nightly research aggregation.

Mines the last week of completed queries for trending topics, searches every enabled
source for items published since the previous day, and stores one ResearchDigest.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from functools import partial
from typing import Any

from config.registry import ResearchRegistry, SourceEntry
from db.store import QueryStore, utc_now
from models.identifiers import SourceId
from orchestrator.errors import SourceUnavailable
from orchestrator.refiner import ConceptExtractor
from sources.base import SourceAdapter
from sources.contracts import SearchFilters, SourceItem
from utils.logger import get_logger

logger = get_logger(__name__)

LOOKBACK_DAYS = 7
MAX_RECENT_QUERIES = 50
MAX_TOPICS = 20
TOPICS_TO_SEARCH = 5
DIGEST_TOPICS = 10
TOP_PAPERS_PER_TOPIC = 3


@dataclass(frozen=True)
class NightlyRunResult:
    status: str
    digest_id: str | None = None
    total_articles: int = 0
    topics_processed: int = 0
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.status == "skipped":
            return {"status": self.status, "reason": self.reason}
        return {
            "status": self.status,
            "digest_id": self.digest_id,
            "total_articles": self.total_articles,
            "topics_processed": self.topics_processed,
        }


def rank_topics(topics: list[str], limit: int = MAX_TOPICS) -> list[str]:
    """
    Rank topics by frequency, case-insensitively.

    Ties keep first-seen order; the first spelling seen is the one reported.
    """
    counts: dict[str, int] = {}
    display: dict[str, str] = {}
    for topic in topics:
        key = topic.strip().lower()
        if not key:
            continue
        counts[key] = counts.get(key, 0) + 1
        display.setdefault(key, topic.strip())
    ranked = sorted(counts, key=lambda k: counts[k], reverse=True)
    return [display[k] for k in ranked[:limit]]


class NightlyResearchJob:
    def __init__(
        self,
        store: QueryStore,
        adapters: dict[SourceId, SourceAdapter],
        registry: ResearchRegistry,
        extractor: ConceptExtractor | None = None,
        *,
        timeout_s: float = 20.0,
        max_concurrency: int = 4,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.adapters = adapters
        self.registry = registry
        self.extractor = extractor
        self.timeout_s = timeout_s
        self.max_concurrency = max(1, max_concurrency)
        self.clock = clock

    async def _db(self, fn: Callable, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(fn, *args))

    async def extract_topics(self, now: datetime) -> list[str]:
        since = now - timedelta(days=LOOKBACK_DAYS)
        recent = await self._db(self.store.list_completed_since, since, MAX_RECENT_QUERIES)
        if not recent:
            return []

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def concepts_for(text: str) -> list[str]:
            if self.extractor is None:
                return []
            async with semaphore:
                return await self.extractor.extract(text)

        extracted = await asyncio.gather(*(concepts_for(q.original_query) for q in recent))

        all_topics: list[str] = []
        for query, concepts in zip(recent, extracted):
            all_topics.extend(concepts)
            stored = query.intent.get("concepts")
            if isinstance(stored, list):
                all_topics.extend(c for c in stored if isinstance(c, str))

        topics = rank_topics(all_topics)
        logger.info(
            f"Extracted {len(topics)} topics from {len(recent)} recent queries",
            extra={"extra_fields": {"topics": topics[:DIGEST_TOPICS]}},
        )
        return topics

    async def _search(
        self,
        semaphore: asyncio.Semaphore,
        topic: str,
        entry: SourceEntry,
        since: date,
    ) -> list[SourceItem]:
        adapter = self.adapters[entry.id]
        filters = SearchFilters(
            date_from=since.isoformat(), open_access_only=entry.open_access_only
        )
        async with semaphore:
            try:
                return await asyncio.wait_for(
                    adapter.search(topic, filters, entry.nightly_max_results),
                    timeout=self.timeout_s,
                )
            except (SourceUnavailable, asyncio.TimeoutError) as e:
                logger.warning(
                    f"Nightly search failed for topic '{topic}' on {entry.id.value}",
                    extra={
                        "extra_fields": {
                            "topic": topic,
                            "source": entry.id.value,
                            "error": str(e) or type(e).__name__,
                        }
                    },
                )
                return []
            except Exception as e:
                logger.error(
                    f"Nightly search raised for topic '{topic}' on {entry.id.value}: {e}",
                    extra={"extra_fields": {"topic": topic, "source": entry.id.value}},
                    exc_info=True,
                )
                return []

    async def run(self, run_date: date | None = None) -> NightlyRunResult:
        """
        Execute one aggregation run.

        Raises:
            PersistenceError: the digest could not be stored
        """
        now = self.clock()
        run_date = run_date or now.date()
        sources = [s for s in self.registry.enabled_sources() if s.id in self.adapters]

        logger.info(
            f"Starting nightly research collection for {run_date.isoformat()}",
            extra={"extra_fields": {"sources": [s.id.value for s in sources]}},
        )

        topics = await self.extract_topics(now)
        if not topics:
            logger.info("No topics found, skipping research collection")
            return NightlyRunResult(status="skipped", reason="no topics")

        since = run_date - timedelta(days=1)
        semaphore = asyncio.Semaphore(self.max_concurrency)
        searched = topics[:TOPICS_TO_SEARCH]
        pairs = [(topic, entry) for topic in searched for entry in sources]
        results = await asyncio.gather(
            *(self._search(semaphore, topic, entry, since) for topic, entry in pairs)
        )

        by_topic: dict[str, dict[SourceId, list[SourceItem]]] = {t: {} for t in searched}
        for (topic, entry), items in zip(pairs, results):
            by_topic[topic][entry.id] = items

        total_articles = 0
        key_findings: list[dict[str, Any]] = []
        for topic in searched:
            per_source = by_topic[topic]
            count = sum(len(items) for items in per_source.values())
            total_articles += count
            if count == 0:
                continue
            papers = [i for items in per_source.values() for i in items if i.item_type == "paper"]
            key_findings.append(
                {
                    "topic": topic,
                    "counts": {s.value: len(items) for s, items in per_source.items()},
                    "top_papers": [
                        {"title": p.title, "doi": p.doi, "citations": p.relevance}
                        for p in papers[:TOP_PAPERS_PER_TOPIC]
                    ],
                }
            )

        digest = await self._db(
            self.store.create_digest,
            run_date,
            [s.name for s in sources],
            total_articles,
            topics[:DIGEST_TOPICS],
            key_findings,
            "completed",
        )

        logger.info(
            f"Nightly research completed: {total_articles} articles collected",
            extra={
                "extra_fields": {
                    "digest_id": digest.id,
                    "total_articles": total_articles,
                    "topics_processed": len(topics),
                }
            },
        )
        return NightlyRunResult(
            status="completed",
            digest_id=digest.id,
            total_articles=total_articles,
            topics_processed=len(topics),
        )
