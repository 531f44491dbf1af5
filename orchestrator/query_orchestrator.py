"""
QueryOrchestrator - end-to-end lifecycle of a research query.

Submission validates input, charges the per-user quota, persists a PENDING query and
hands processing to a detached asyncio task. Processing walks the stages strictly in
order: PROCESSING -> refinement -> source fan-out -> full source results ->
model fan-out -> responses -> COMPLETED. Source and model failures are folded into
per-task outcomes; only an exception escaping the pipeline marks the query FAILED.
"""

import asyncio
import re
from collections.abc import Callable
from dataclasses import dataclass, replace
from functools import partial
from statistics import mean
from typing import Any

from api.base_client import BaseAIClient
from cache.resilient import ResilientCache
from config.config import SynthesisMode
from db.store import QueryStore
from models.identifiers import ModelId, QueryStatus, SourceId, parse_identifiers
from models.research import (
    NewResponse,
    NewSourceResult,
    QueryConfig,
    QueryRecord,
    QueryResult,
    SubmitResult,
)
from models.user_context import ProfileDirectory, ResearcherProfile
from sources.contracts import SourceItem
from utils.logger import get_logger

from .errors import NotFound, PersistenceError, RateLimited, ValidationError
from .multi_orchestrator import MultiModelOrchestrator
from .prompts import (
    SYNTHESIS_SYSTEM_PROMPT,
    build_context,
    build_synthesis_prompt,
    select_context_items,
)
from .refiner import QueryRefiner, Refinement, fallback_refinement, skipped_refinement
from .source_dispatcher import AggregatedContext, SourceDispatcher

logger = get_logger(__name__)

MIN_QUERY_LENGTH = 3
MAX_QUERY_LENGTH = 2000
SUBMITTED_MESSAGE = "Query submitted successfully"
SAMPLE_ITEMS_IN_METADATA = 5

_TERM_RE = re.compile(r"[a-z0-9][a-z0-9\-]{2,}")
_STOPWORDS = frozenset(
    "about and are between does effect for from how into not role that the their this "
    "what when which with".split()
)


def query_terms(text: str) -> set[str]:
    return {t for t in _TERM_RE.findall(text.lower()) if t not in _STOPWORDS}


def relevance_score(query: str, items: list[SourceItem]) -> float | None:
    """Share of items whose title or abstract mentions at least one query term."""
    terms = query_terms(query)
    if not items or not terms:
        return None
    hits = 0
    for item in items:
        haystack = f"{item.title} {item.abstract}".lower()
        if any(term in haystack for term in terms):
            hits += 1
    return round(hits / len(items), 3)


def citation_count(items: list[SourceItem]) -> int | None:
    signals = [i.relevance for i in items if i.relevance is not None]
    return round(mean(signals)) if signals else None


def _checked_text(raw: str | None, field: str = "text") -> str:
    text = (raw or "").strip()
    if len(text) < MIN_QUERY_LENGTH:
        raise ValidationError(
            f"Query text must be at least {MIN_QUERY_LENGTH} characters",
            details={"field": field},
        )
    if len(text) > MAX_QUERY_LENGTH:
        raise ValidationError(
            f"Query text must be at most {MAX_QUERY_LENGTH} characters",
            details={"field": field},
        )
    return text


@dataclass(frozen=True)
class SynthesisUnit:
    """One context slice handed to every selected model."""

    label: str
    items: list[SourceItem]
    counts: dict[str, int]


class QueryOrchestrator:
    """
    Owns research queries from submission to their terminal status.

    Example:
        result = await orchestrator.submit_query(
            QueryConfig(text="CAR-T exhaustion mechanisms", sources=["pubmed"],
                        models=["claude"]),
            user_id="u-123",
        )
        await orchestrator.drain()
        query = await orchestrator.get_query_results(result.query_id, "u-123")
    """

    def __init__(
        self,
        store: QueryStore,
        dispatcher: SourceDispatcher,
        model_clients: dict[ModelId, BaseAIClient],
        cache: ResilientCache,
        *,
        models: MultiModelOrchestrator | None = None,
        refiner: QueryRefiner | None = None,
        profiles: ProfileDirectory | None = None,
        synthesis_mode: SynthesisMode = SynthesisMode.COMBINED,
        rate_limit: int = 20,
        rate_limit_window_s: int = 3600,
        max_results: int = 25,
        max_concurrent_queries: int = 8,
        model_timeout_s: float = 120.0,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.model_clients = model_clients
        self.cache = cache
        self.models = models or MultiModelOrchestrator(default_timeout_s=model_timeout_s)
        self.refiner = refiner
        self.profiles = profiles or ProfileDirectory()
        self.synthesis_mode = synthesis_mode
        self.rate_limit = rate_limit
        self.rate_limit_window_s = rate_limit_window_s
        self.max_results = max_results
        self.model_timeout_s = model_timeout_s
        self._semaphore = asyncio.Semaphore(max(1, max_concurrent_queries))
        self._tasks: set[asyncio.Task] = set()

    async def _db(self, fn: Callable, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(fn, *args, **kwargs))

    # ------------------------------------------------------------------ public

    def validate(
        self, config: QueryConfig
    ) -> tuple[str, tuple[SourceId, ...], tuple[ModelId, ...]]:
        """
        Raises:
            ValidationError: text too short or too long, empty or unknown identifiers,
                or a model with no configured client
        """
        text = _checked_text(config.text)
        if not config.sources:
            raise ValidationError("At least one source is required", details={"field": "sources"})
        if not config.models:
            raise ValidationError("At least one model is required", details={"field": "models"})

        try:
            sources = parse_identifiers(config.sources, SourceId)
        except ValueError as e:
            raise ValidationError(str(e), details={"field": "sources"}) from e
        try:
            models = parse_identifiers(config.models, ModelId)
        except ValueError as e:
            raise ValidationError(str(e), details={"field": "models"}) from e

        unconfigured = [m.value for m in models if m not in self.model_clients]
        if unconfigured:
            raise ValidationError(
                f"Model(s) not configured on this server: {', '.join(unconfigured)}",
                details={"field": "models", "unconfigured": unconfigured},
            )
        return text, sources, models

    async def submit_query(self, config: QueryConfig, user_id: str) -> SubmitResult:
        """
        Validate, rate-limit and persist a query, then start processing in the background.

        Raises:
            ValidationError: bad input (quota untouched)
            RateLimited: per-user quota exhausted (no query created)
            PersistenceError: the PENDING record could not be written (quota refunded)
        """
        text, sources, models = self.validate(config)

        limit = await self.cache.increment_and_check(
            f"query:{user_id}", self.rate_limit_window_s, self.rate_limit
        )
        if not limit.allowed:
            logger.warning(
                f"Rate limit exceeded for user {user_id}",
                extra={
                    "extra_fields": {
                        "user_id": user_id,
                        "count": limit.count,
                        "limit": self.rate_limit,
                        "reset_in_s": limit.reset_in_s,
                    }
                },
            )
            raise RateLimited(
                f"Rate limit exceeded: {self.rate_limit} queries per "
                f"{self.rate_limit_window_s // 60} minutes",
                retry_after_s=limit.reset_in_s,
                remaining=0,
            )

        try:
            record = await self._db(self.store.create_query, user_id, text, sources, models)
        except PersistenceError:
            if not limit.degraded:
                # no query exists, so the hit must not count against the quota
                await self.cache.release(f"query:{user_id}")
            raise
        logger.info(
            f"Query submitted: {record.id}",
            extra={
                "extra_fields": {
                    "query_id": record.id,
                    "user_id": user_id,
                    "sources": [s.value for s in sources],
                    "models": [m.value for m in models],
                    "rate_limit_degraded": limit.degraded,
                }
            },
        )
        self._spawn(record.id)
        return SubmitResult(
            query_id=record.id, message=SUBMITTED_MESSAGE, remaining_quota=limit.remaining
        )

    async def execute_query(self, config: QueryConfig, user_id: str) -> str:
        result = await self.submit_query(config, user_id)
        return result.query_id

    async def get_query_results(self, query_id: str, user_id: str | None = None) -> QueryResult:
        """
        Raises:
            NotFound: unknown id, or the query belongs to someone other than ``user_id``
        """
        result = await self._db(self.store.get_result, query_id)
        if result is None or (user_id is not None and result.query.user_id != user_id):
            raise NotFound("Query not found", details={"query_id": query_id})
        return result

    async def get_query_history(self, user_id: str, limit: int = 50) -> list[QueryRecord]:
        return await self._db(self.store.list_history, user_id, limit)

    async def preview_refinement(
        self,
        text: str,
        user_id: str,
        interests: list[str] | None = None,
        expertise_level: str | None = None,
    ) -> Refinement:
        """
        Refine ``text`` for ``user_id`` without creating a query or charging the quota.

        ``interests`` and ``expertise_level`` override the stored profile for this call.
        Model failures come back as the fallback refinement.

        Raises:
            ValidationError: text too short or too long
        """
        text = _checked_text(text, field="query")
        profile = self.profiles.get(user_id)
        cleaned = tuple(i.strip() for i in interests or () if i and i.strip())
        if cleaned:
            profile = replace(profile, interests=cleaned)
        if expertise_level and expertise_level.strip():
            profile = replace(profile, expertise_level=expertise_level.strip())
        return await self._refine_text(text, profile, {"user_id": user_id, "preview": True})

    async def recover_interrupted(self) -> dict[str, int]:
        """
        Resume work left behind by a previous process.

        PENDING queries are dispatched again. PROCESSING queries cannot go back to
        PENDING, so they are closed as FAILED.
        """
        interrupted = await self._db(self.store.list_by_status, QueryStatus.PROCESSING)
        for record in interrupted:
            intent = {**record.intent, "failure": "interrupted by process restart"}
            await self._db(self.store.finish, record.id, QueryStatus.FAILED, intent)

        pending = await self._db(self.store.list_by_status, QueryStatus.PENDING)
        for record in pending:
            self._spawn(record.id)

        if interrupted or pending:
            logger.info(
                f"Recovered queries: {len(pending)} resumed, {len(interrupted)} failed",
                extra={
                    "extra_fields": {
                        "resumed": [r.id for r in pending],
                        "failed": [r.id for r in interrupted],
                    }
                },
            )
        return {"resumed": len(pending), "failed": len(interrupted)}

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every spawned processing task has settled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -------------------------------------------------------------- processing

    def _spawn(self, query_id: str) -> None:
        task = asyncio.create_task(self._run(query_id), name=f"query-{query_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, query_id: str) -> None:
        async with self._semaphore:
            try:
                await self._process(query_id)
            except Exception as e:
                logger.error(
                    f"Query {query_id} failed: {e}",
                    extra={"extra_fields": {"query_id": query_id, "error_type": type(e).__name__}},
                    exc_info=True,
                )
                await self._mark_failed(query_id, e)

    async def _mark_failed(self, query_id: str, exc: Exception) -> None:
        try:
            record = await self._db(self.store.get_query, query_id)
            intent = dict(record.intent) if record else {}
            intent["failure"] = f"{type(exc).__name__}: {exc}"
            await self._db(self.store.finish, query_id, QueryStatus.FAILED, intent)
        except Exception as e:
            # nothing left to do; recover_interrupted closes it on the next start
            logger.critical(
                f"Could not record failure for query {query_id}: {e}",
                extra={"extra_fields": {"query_id": query_id}},
                exc_info=True,
            )

    async def _process(self, query_id: str) -> None:
        record = await self._db(self.store.get_query, query_id)
        if record is None:
            logger.error(f"Query {query_id} vanished before processing")
            return
        if not await self._db(self.store.mark_processing, query_id):
            logger.info(f"Query {query_id} is no longer pending, skipping")
            return

        profile = self.profiles.get(record.user_id)
        refinement = await self._refine(record, profile)
        intent = refinement.to_intent()
        await self._db(
            self.store.record_refinement,
            query_id,
            None if refinement.status == "skipped" else refinement.refined_query,
            intent,
        )

        context = await self.dispatcher.dispatch(
            record.sources,
            refinement.refined_query,
            refinement.search_filters(),
            self.max_results,
            query_id=query_id,
        )
        await self._db(
            self.store.add_source_results,
            query_id,
            [
                NewSourceResult(
                    source=o.source,
                    items=[item.to_dict() for item in o.items],
                    error=o.error,
                    latency_ms=o.latency_ms,
                )
                for o in context.outcomes
            ],
        )

        new_responses, model_outcomes = await self._synthesize(
            query_id, record.models, refinement.refined_query, context
        )
        written = await self._db(self.store.add_responses, query_id, new_responses)

        intent.update(
            {
                "synthesis_mode": self.synthesis_mode.value,
                "source_outcomes": {o.source.value: o.to_dict() for o in context.outcomes},
                "model_outcomes": model_outcomes,
                "response_count": written,
            }
        )
        await self._db(self.store.finish, query_id, QueryStatus.COMPLETED, intent)

        logger.info(
            f"Query {query_id} completed with {written} responses",
            extra={
                "extra_fields": {
                    "query_id": query_id,
                    "responses": written,
                    "items": len(context.items),
                    "refinement_status": refinement.status,
                }
            },
        )

    async def _refine(self, record: QueryRecord, profile: ResearcherProfile) -> Refinement:
        if self.refiner is None:
            return skipped_refinement(record.original_query)
        return await self._refine_text(record.original_query, profile, {"query_id": record.id})

    async def _refine_text(
        self, text: str, profile: ResearcherProfile, log_fields: dict[str, Any]
    ) -> Refinement:
        if self.refiner is None:
            return fallback_refinement(text, None, error="refinement disabled")
        try:
            return await self.refiner.refine(text, profile)
        except Exception as e:
            logger.warning(
                f"Refinement raised, using original text: {e}",
                extra={"extra_fields": log_fields},
            )
            return fallback_refinement(text, self.refiner.model_id.value, str(e))

    def _synthesis_units(self, context: AggregatedContext) -> list[SynthesisUnit]:
        if not context.items:
            return []
        if self.synthesis_mode == SynthesisMode.MATRIX:
            return [
                SynthesisUnit(
                    label=source.value,
                    items=select_context_items(context.for_source(source).items),
                    counts={source.value: len(context.for_source(source).items)},
                )
                for source in context.contributing_sources
            ]
        return [
            SynthesisUnit(
                label=",".join(s.value for s in context.contributing_sources),
                items=select_context_items(context.items),
                counts=context.counts_by_source(),
            )
        ]

    async def _synthesize(
        self,
        query_id: str,
        model_ids: tuple[ModelId, ...],
        query: str,
        context: AggregatedContext,
    ) -> tuple[list[NewResponse], list[dict[str, Any]]]:
        outcomes: list[dict[str, Any]] = []
        clients: dict[ModelId, BaseAIClient] = {}
        for model_id in model_ids:
            client = self.model_clients.get(model_id)
            if client is None:
                outcomes.append(
                    {"model": model_id.value, "status": "skipped", "reason": "not configured"}
                )
            else:
                clients[model_id] = client

        units = self._synthesis_units(context)
        if not units:
            logger.info(
                f"No source items for query {query_id}, skipping synthesis",
                extra={"extra_fields": {"query_id": query_id}},
            )
            for model_id in clients:
                outcomes.append(
                    {"model": model_id.value, "status": "skipped", "reason": "no source items"}
                )
            return [], outcomes
        if not clients:
            return [], outcomes

        prompt = build_synthesis_prompt(query)
        results = await asyncio.gather(
            *(
                self.models.get_comparisons(
                    prompt,
                    clients,
                    timeout_s=self.model_timeout_s,
                    request_group_id=query_id,
                    context=build_context(unit.items),
                    system=SYNTHESIS_SYSTEM_PROMPT,
                )
                for unit in units
            )
        )

        new_responses: list[NewResponse] = []
        for unit, result in zip(units, results):
            score = relevance_score(query, unit.items)
            citations = citation_count(unit.items)
            for model_id in result.skipped:
                outcomes.append(
                    {
                        "model": model_id.value,
                        "sources": unit.label,
                        "status": "skipped",
                        "reason": "unavailable",
                    }
                )
            for model_id, response in result.responses:
                outcome: dict[str, Any] = {
                    "model": model_id.value,
                    "sources": unit.label,
                    "status": "ok" if response.has_content else "error",
                    "latency_ms": response.latency_ms,
                    "input_tokens": response.token_usage.prompt_tokens,
                    "output_tokens": response.token_usage.completion_tokens,
                    "estimated_cost": response.estimated_cost or 0.0,
                }
                if response.error:
                    outcome["error_code"] = response.error.code
                elif not response.has_content:
                    outcome["error_code"] = "empty_response"
                outcomes.append(outcome)

                if not response.has_content:
                    continue
                new_responses.append(
                    NewResponse(
                        source=unit.label,
                        model=model_id,
                        content=response.text,
                        relevance_score=score,
                        citation_count=citations,
                        input_tokens=response.token_usage.prompt_tokens,
                        output_tokens=response.token_usage.completion_tokens,
                        estimated_cost=response.estimated_cost or 0.0,
                        latency_ms=response.latency_ms,
                        metadata={
                            "provider": response.provider,
                            "model_name": response.model,
                            "finish_reason": response.finish_reason,
                            "source_counts": unit.counts,
                            "items": [
                                {
                                    "source": item.source,
                                    "external_id": item.external_id,
                                    "title": item.title,
                                    "doi": item.doi,
                                    "url": item.url,
                                }
                                for item in unit.items[:SAMPLE_ITEMS_IN_METADATA]
                            ],
                        },
                    )
                )
        return new_responses, outcomes
