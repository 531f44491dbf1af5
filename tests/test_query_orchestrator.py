"""
Tests for QueryOrchestrator: submission guardrails and the processing pipeline.

Every test wires the real store (SQLite file), cache and dispatcher around fake model
clients and fake source adapters, so no network or provider account is needed.
"""

import asyncio

import pytest
from conftest import (
    DEFAULT_REFINEMENT,
    FailingBackend,
    FakeModelClient,
    FakeSourceAdapter,
    make_items,
)

from cache.memory import MemoryBackend
from cache.resilient import ResilientCache
from config.config import SynthesisMode
from models.identifiers import ModelId, QueryStatus, SourceId
from models.research import QueryConfig
from orchestrator.errors import (
    NotFound,
    PersistenceError,
    RateLimited,
    SourceUnavailable,
    ValidationError,
)
from orchestrator.multi_orchestrator import MultiModelOrchestrator
from orchestrator.query_orchestrator import (
    SUBMITTED_MESSAGE,
    QueryOrchestrator,
    citation_count,
    relevance_score,
)
from orchestrator.refiner import FALLBACK_REASONING, QueryRefiner
from orchestrator.source_dispatcher import SourceDispatcher

pytestmark = pytest.mark.integration


def build_orchestrator(
    store,
    cache,
    adapters,
    clients,
    *,
    refine_with: ModelId | None = ModelId.CLAUDE,
    **kwargs,
) -> QueryOrchestrator:
    models = MultiModelOrchestrator(default_timeout_s=5)
    refiner = None
    if refine_with is not None:
        refiner = QueryRefiner(refine_with, clients[refine_with], models, timeout_s=5)
    return QueryOrchestrator(
        store,
        SourceDispatcher(adapters, max_concurrency=4, timeout_s=2),
        clients,
        cache,
        models=models,
        refiner=refiner,
        **kwargs,
    )


def default_adapters(**overrides):
    adapters = {
        SourceId.OPENALEX: FakeSourceAdapter(SourceId.OPENALEX, make_items("openalex", 3)),
        SourceId.PUBMED: FakeSourceAdapter(SourceId.PUBMED, make_items("pubmed", 2)),
        SourceId.PATENTS: FakeSourceAdapter(SourceId.PATENTS, make_items("patents", 1)),
    }
    adapters.update(overrides)
    return adapters


class TestEndToEnd:
    """The canonical CAR-T research query, submitted and processed to completion."""

    def test_car_t_query_completes_with_one_response_per_model(self, store, cache):
        claude = FakeModelClient(provider_name="anthropic", model_name="claude-sonnet")
        gpt4 = FakeModelClient(provider_name="openai", model_name="gpt-4-turbo")
        adapters = default_adapters()
        orchestrator = build_orchestrator(
            store, cache, adapters, {ModelId.CLAUDE: claude, ModelId.GPT4: gpt4}
        )

        async def scenario():
            submitted = await orchestrator.submit_query(
                QueryConfig(
                    text="CAR-T exhaustion mechanisms",
                    sources=["openalex", "pubmed"],
                    models=["claude", "gpt4"],
                ),
                user_id="u-1",
            )
            await orchestrator.drain()
            return submitted, await orchestrator.get_query_results(submitted.query_id, "u-1")

        submitted, result = asyncio.run(scenario())

        assert submitted.message == SUBMITTED_MESSAGE
        assert submitted.remaining_quota == 19

        query = result.query
        assert query.status == QueryStatus.COMPLETED
        assert query.refined_query == DEFAULT_REFINEMENT["refinedQuery"]
        assert query.intent["reasoning"] == DEFAULT_REFINEMENT["reasoning"]
        assert query.intent["refinement_status"] == "refined"
        assert query.intent["source_outcomes"]["openalex"]["items"] == 3
        assert query.intent["source_outcomes"]["pubmed"]["items"] == 2
        assert query.intent["response_count"] == 2

        assert len(result.responses) == 2
        assert {r.model for r in result.responses} == {ModelId.CLAUDE, ModelId.GPT4}
        for response in result.responses:
            assert response.sources == ["openalex", "pubmed"]
            assert "Key Findings" in response.content
            assert response.input_tokens == 120
            assert response.output_tokens == 80
            assert response.estimated_cost == pytest.approx(0.002)
            assert response.metadata["source_counts"] == {"openalex": 3, "pubmed": 2}

        # patents was not selected, so it is never searched
        assert adapters[SourceId.PATENTS].calls == []
        # sources were searched with the refined text and refinement filters
        searched_query, filters, _ = adapters[SourceId.OPENALEX].calls[0]
        assert searched_query == DEFAULT_REFINEMENT["refinedQuery"]
        assert filters.date_from == "2020-01-01"
        assert filters.keywords == ("exhaustion",)

    def test_synthesis_context_carries_source_items(self, store, cache):
        claude = FakeModelClient()
        orchestrator = build_orchestrator(
            store, cache, default_adapters(), {ModelId.CLAUDE: claude}, refine_with=None
        )

        async def scenario():
            await orchestrator.submit_query(
                QueryConfig(text="CAR-T exhaustion", sources=["pubmed"], models=["claude"]),
                user_id="u-1",
            )
            await orchestrator.drain()

        asyncio.run(scenario())

        [call] = claude.synthesis_calls()
        assert "CAR-T exhaustion" in call["prompt"]
        assert "[1] (pubmed, paper)" in call["context"]
        assert "[2] (pubmed, paper)" in call["context"]


class TestSourceIsolation:
    """A failing source never fails the query or leaks into other sources' results."""

    def test_failed_source_is_excluded_from_combined_response(self, store, cache):
        adapters = default_adapters(
            **{
                SourceId.PUBMED: FakeSourceAdapter(
                    SourceId.PUBMED, error=SourceUnavailable("pubmed", "HTTP 503", status=503)
                )
            }
        )
        orchestrator = build_orchestrator(
            store, cache, adapters, {ModelId.CLAUDE: FakeModelClient()}
        )

        async def scenario():
            submitted = await orchestrator.submit_query(
                QueryConfig(
                    text="CAR-T exhaustion",
                    sources=["openalex", "pubmed", "patents"],
                    models=["claude"],
                ),
                user_id="u-1",
            )
            await orchestrator.drain()
            return await orchestrator.get_query_results(submitted.query_id)

        result = asyncio.run(scenario())

        assert result.query.status == QueryStatus.COMPLETED
        [response] = result.responses
        assert response.sources == ["openalex", "patents"]
        assert response.metadata["source_counts"] == {"openalex": 3, "pubmed": 0, "patents": 1}
        outcomes = result.query.intent["source_outcomes"]
        assert outcomes["pubmed"]["error"] == "pubmed: HTTP 503"
        assert outcomes["openalex"]["error"] is None

    def test_matrix_mode_produces_a_response_per_contributing_source(self, store, cache):
        adapters = default_adapters(
            **{SourceId.PUBMED: FakeSourceAdapter(SourceId.PUBMED, error=RuntimeError("boom"))}
        )
        orchestrator = build_orchestrator(
            store,
            cache,
            adapters,
            {ModelId.CLAUDE: FakeModelClient(), ModelId.GEMINI: FakeModelClient()},
            synthesis_mode=SynthesisMode.MATRIX,
        )

        async def scenario():
            submitted = await orchestrator.submit_query(
                QueryConfig(
                    text="CAR-T exhaustion",
                    sources=["openalex", "pubmed", "patents"],
                    models=["claude", "gemini"],
                ),
                user_id="u-1",
            )
            await orchestrator.drain()
            return await orchestrator.get_query_results(submitted.query_id)

        result = asyncio.run(scenario())

        assert result.query.status == QueryStatus.COMPLETED
        pairs = {(r.source, r.model) for r in result.responses}
        assert pairs == {
            ("openalex", ModelId.CLAUDE),
            ("openalex", ModelId.GEMINI),
            ("patents", ModelId.CLAUDE),
            ("patents", ModelId.GEMINI),
        }

    def test_slow_source_times_out_without_blocking_others(self, store, cache):
        adapters = default_adapters(
            **{
                SourceId.PATENTS: FakeSourceAdapter(
                    SourceId.PATENTS, make_items("patents"), delay_s=5
                )
            }
        )
        orchestrator = build_orchestrator(
            store, cache, adapters, {ModelId.CLAUDE: FakeModelClient()}, refine_with=None
        )
        orchestrator.dispatcher.timeout_s = 0.1

        async def scenario():
            submitted = await orchestrator.submit_query(
                QueryConfig(text="CAR-T exhaustion", sources=["pubmed", "patents"],
                            models=["claude"]),
                user_id="u-1",
            )
            await orchestrator.drain()
            return await orchestrator.get_query_results(submitted.query_id)

        result = asyncio.run(scenario())

        assert result.query.status == QueryStatus.COMPLETED
        assert result.query.intent["source_outcomes"]["patents"]["error"] == "timeout"
        assert [r.source for r in result.responses] == ["pubmed"]

    def test_all_sources_failing_still_completes_without_responses(self, store, cache):
        adapters = {
            SourceId.PUBMED: FakeSourceAdapter(
                SourceId.PUBMED, error=SourceUnavailable("pubmed", "down")
            )
        }
        claude = FakeModelClient()
        orchestrator = build_orchestrator(
            store, cache, adapters, {ModelId.CLAUDE: claude}, refine_with=None
        )

        async def scenario():
            submitted = await orchestrator.submit_query(
                QueryConfig(text="CAR-T exhaustion", sources=["pubmed"], models=["claude"]),
                user_id="u-1",
            )
            await orchestrator.drain()
            return await orchestrator.get_query_results(submitted.query_id)

        result = asyncio.run(scenario())

        assert result.query.status == QueryStatus.COMPLETED
        assert result.responses == ()
        assert claude.synthesis_calls() == []
        [outcome] = result.query.intent["model_outcomes"]
        assert outcome["reason"] == "no source items"


class TestModelIsolation:
    def test_failing_model_does_not_affect_other_models(self, store, cache):
        clients = {
            ModelId.CLAUDE: FakeModelClient(),
            ModelId.GPT4: FakeModelClient(provider_name="openai", error_code="rate_limit"),
        }
        orchestrator = build_orchestrator(store, cache, default_adapters(), clients)

        async def scenario():
            submitted = await orchestrator.submit_query(
                QueryConfig(text="CAR-T exhaustion", sources=["openalex"],
                            models=["claude", "gpt4"]),
                user_id="u-1",
            )
            await orchestrator.drain()
            return await orchestrator.get_query_results(submitted.query_id)

        result = asyncio.run(scenario())

        assert result.query.status == QueryStatus.COMPLETED
        assert [r.model for r in result.responses] == [ModelId.CLAUDE]
        by_model = {o["model"]: o for o in result.query.intent["model_outcomes"]}
        assert by_model["gpt4"]["status"] == "error"
        assert by_model["gpt4"]["error_code"] == "rate_limit"
        assert by_model["claude"]["status"] == "ok"

    def test_unreachable_local_model_is_skipped(self, store, cache):
        clients = {
            ModelId.CLAUDE: FakeModelClient(),
            ModelId.OLLAMA: FakeModelClient(provider_name="ollama", is_local=True,
                                            available=False),
        }
        orchestrator = build_orchestrator(store, cache, default_adapters(), clients)

        async def scenario():
            submitted = await orchestrator.submit_query(
                QueryConfig(text="CAR-T exhaustion", sources=["openalex"],
                            models=["claude", "ollama"]),
                user_id="u-1",
            )
            await orchestrator.drain()
            return await orchestrator.get_query_results(submitted.query_id)

        result = asyncio.run(scenario())

        assert [r.model for r in result.responses] == [ModelId.CLAUDE]
        assert clients[ModelId.OLLAMA].calls == []
        by_model = {o["model"]: o for o in result.query.intent["model_outcomes"]}
        assert by_model["ollama"]["status"] == "skipped"


class TestRefinementFallback:
    def test_prose_refinement_reply_uses_original_text(self, store, cache):
        claude = FakeModelClient(refinement_reply="Sure! Here is a better query for you.")
        adapters = default_adapters()
        orchestrator = build_orchestrator(store, cache, adapters, {ModelId.CLAUDE: claude})

        async def scenario():
            submitted = await orchestrator.submit_query(
                QueryConfig(text="CAR-T exhaustion", sources=["pubmed"], models=["claude"]),
                user_id="u-1",
            )
            await orchestrator.drain()
            return await orchestrator.get_query_results(submitted.query_id)

        result = asyncio.run(scenario())

        assert result.query.status == QueryStatus.COMPLETED
        assert result.query.refined_query == "CAR-T exhaustion"
        assert result.query.intent["reasoning"] == FALLBACK_REASONING
        assert result.query.intent["refinement_status"] == "fallback"
        assert adapters[SourceId.PUBMED].calls[0][0] == "CAR-T exhaustion"
        assert len(result.responses) == 1

    def test_refinement_model_error_uses_original_text(self, store, cache):
        clients = {
            ModelId.CLAUDE: FakeModelClient(error_code="timeout"),
            ModelId.GPT4: FakeModelClient(provider_name="openai"),
        }
        orchestrator = build_orchestrator(store, cache, default_adapters(), clients)

        async def scenario():
            submitted = await orchestrator.submit_query(
                QueryConfig(text="CAR-T exhaustion", sources=["pubmed"], models=["gpt4"]),
                user_id="u-1",
            )
            await orchestrator.drain()
            return await orchestrator.get_query_results(submitted.query_id)

        result = asyncio.run(scenario())

        assert result.query.status == QueryStatus.COMPLETED
        assert result.query.intent["refinement_error"] == "timeout"
        assert [r.model for r in result.responses] == [ModelId.GPT4]

    def test_no_refiner_leaves_refined_query_empty(self, store, cache):
        orchestrator = build_orchestrator(
            store, cache, default_adapters(), {ModelId.CLAUDE: FakeModelClient()},
            refine_with=None,
        )

        async def scenario():
            submitted = await orchestrator.submit_query(
                QueryConfig(text="CAR-T exhaustion", sources=["pubmed"], models=["claude"]),
                user_id="u-1",
            )
            await orchestrator.drain()
            return await orchestrator.get_query_results(submitted.query_id)

        result = asyncio.run(scenario())

        assert result.query.refined_query is None
        assert result.query.effective_query == "CAR-T exhaustion"
        assert result.query.intent["refinement_status"] == "skipped"


class TestValidation:
    """Invalid input is rejected before quota is charged or anything is persisted."""

    @pytest.fixture
    def orchestrator(self, store, cache):
        return build_orchestrator(
            store, cache, default_adapters(), {ModelId.CLAUDE: FakeModelClient()}
        )

    @pytest.mark.parametrize(
        "config, field",
        [
            (QueryConfig(text="ab", sources=["pubmed"], models=["claude"]), "text"),
            (QueryConfig(text="x" * 2001, sources=["pubmed"], models=["claude"]), "text"),
            (QueryConfig(text="CAR-T", sources=[], models=["claude"]), "sources"),
            (QueryConfig(text="CAR-T", sources=["pubmed"], models=[]), "models"),
            (QueryConfig(text="CAR-T", sources=["scopus"], models=["claude"]), "sources"),
            (QueryConfig(text="CAR-T", sources=["pubmed"], models=["gpt5"]), "models"),
            (QueryConfig(text="CAR-T", sources=["pubmed"], models=["gpt4"]), "models"),
        ],
    )
    def test_rejects_invalid_config(self, orchestrator, store, config, field):
        async def scenario():
            with pytest.raises(ValidationError) as exc_info:
                await orchestrator.submit_query(config, user_id="u-1")
            counter = await orchestrator.cache.peek_counter("query:u-1")
            return exc_info.value, counter

        error, counter = asyncio.run(scenario())

        assert error.details["field"] == field
        assert counter.count == 0
        assert store.list_history("u-1") == []

    def test_identifiers_are_case_insensitive_and_deduplicated(self, orchestrator):
        text, sources, models = orchestrator.validate(
            QueryConfig(text="  CAR-T  ", sources=["PubMed", "pubmed"], models=["Claude"])
        )
        assert text == "CAR-T"
        assert sources == (SourceId.PUBMED,)
        assert models == (ModelId.CLAUDE,)


class TestRateLimit:
    def test_request_over_quota_is_rejected_without_a_record(self, store, clock):
        cache = ResilientCache(MemoryBackend(clock=clock.monotonic))
        orchestrator = build_orchestrator(
            store,
            cache,
            default_adapters(),
            {ModelId.CLAUDE: FakeModelClient()},
            rate_limit=2,
            rate_limit_window_s=3600,
        )
        config = QueryConfig(text="CAR-T exhaustion", sources=["pubmed"], models=["claude"])

        async def scenario():
            first = await orchestrator.submit_query(config, "u-1")
            second = await orchestrator.submit_query(config, "u-1")
            with pytest.raises(RateLimited) as exc_info:
                await orchestrator.submit_query(config, "u-1")
            # other users have their own window
            other = await orchestrator.submit_query(config, "u-2")
            await orchestrator.drain()
            return first, second, exc_info.value, other

        first, second, limited, other = asyncio.run(scenario())

        assert (first.remaining_quota, second.remaining_quota) == (1, 0)
        assert limited.retry_after_s > 0
        assert limited.status_code == 429
        assert len(store.list_history("u-1")) == 2
        assert other.remaining_quota == 1

    def test_quota_resets_after_the_window(self, store, clock):
        cache = ResilientCache(MemoryBackend(clock=clock.monotonic))
        orchestrator = build_orchestrator(
            store,
            cache,
            default_adapters(),
            {ModelId.CLAUDE: FakeModelClient()},
            rate_limit=1,
            rate_limit_window_s=60,
        )
        config = QueryConfig(text="CAR-T exhaustion", sources=["pubmed"], models=["claude"])

        async def scenario():
            await orchestrator.submit_query(config, "u-1")
            with pytest.raises(RateLimited):
                await orchestrator.submit_query(config, "u-1")
            clock.advance(61)
            allowed = await orchestrator.submit_query(config, "u-1")
            await orchestrator.drain()
            return allowed

        allowed = asyncio.run(scenario())

        assert allowed.remaining_quota == 0
        assert len(store.list_history("u-1")) == 2


    def test_failed_write_does_not_use_up_quota(self, store, clock):
        cache = ResilientCache(MemoryBackend(clock=clock.monotonic))
        orchestrator = build_orchestrator(
            store,
            cache,
            default_adapters(),
            {ModelId.CLAUDE: FakeModelClient()},
            rate_limit=2,
            rate_limit_window_s=3600,
        )
        config = QueryConfig(text="CAR-T exhaustion", sources=["pubmed"], models=["claude"])
        create_query = store.create_query

        def broken_create(*args, **kwargs):
            raise PersistenceError("Database operation failed: create_query")

        async def scenario():
            store.create_query = broken_create
            with pytest.raises(PersistenceError):
                await orchestrator.submit_query(config, "u-1")
            counter = await cache.peek_counter("query:u-1")
            store.create_query = create_query
            allowed = await orchestrator.submit_query(config, "u-1")
            await orchestrator.drain()
            return counter, allowed

        counter, allowed = asyncio.run(scenario())

        assert counter.count == 0
        assert allowed.remaining_quota == 1
        assert len(store.list_history("u-1")) == 1

    def test_unreachable_cache_allows_queries_and_searches(self, store):
        cache = ResilientCache(FailingBackend(), backend_name="redis")
        adapters = {
            SourceId.PUBMED: FakeSourceAdapter(
                SourceId.PUBMED, make_items("pubmed", 2), cache=cache
            ),
        }
        orchestrator = build_orchestrator(
            store, cache, adapters, {ModelId.CLAUDE: FakeModelClient()}, rate_limit=5
        )
        config = QueryConfig(text="CAR-T exhaustion", sources=["pubmed"], models=["claude"])

        async def scenario():
            submitted = await orchestrator.submit_query(config, "u-1")
            await orchestrator.drain()
            return submitted, await orchestrator.get_query_results(submitted.query_id)

        submitted, result = asyncio.run(scenario())

        assert submitted.remaining_quota == 5
        assert result.query.status == QueryStatus.COMPLETED
        assert result.query.intent["source_outcomes"]["pubmed"]["items"] == 2
        assert len(result.responses) == 1


class TestLifecycle:
    def test_status_timestamps_are_ordered(self, store, cache):
        orchestrator = build_orchestrator(
            store, cache, default_adapters(), {ModelId.CLAUDE: FakeModelClient()}
        )

        async def scenario():
            submitted = await orchestrator.submit_query(
                QueryConfig(text="CAR-T exhaustion", sources=["pubmed"], models=["claude"]),
                user_id="u-1",
            )
            pending = store.get_query(submitted.query_id)
            await orchestrator.drain()
            return pending, store.get_query(submitted.query_id)

        pending, done = asyncio.run(scenario())

        assert pending.status == QueryStatus.PENDING
        assert pending.started_at is None
        assert done.status == QueryStatus.COMPLETED
        assert done.created_at <= done.started_at <= done.completed_at

    def test_unexpected_pipeline_error_marks_query_failed(self, store, cache):
        orchestrator = build_orchestrator(
            store, cache, default_adapters(), {ModelId.CLAUDE: FakeModelClient()}
        )

        async def broken_dispatch(*args, **kwargs):
            raise RuntimeError("dispatcher exploded")

        orchestrator.dispatcher.dispatch = broken_dispatch

        async def scenario():
            submitted = await orchestrator.submit_query(
                QueryConfig(text="CAR-T exhaustion", sources=["pubmed"], models=["claude"]),
                user_id="u-1",
            )
            await orchestrator.drain()
            return store.get_query(submitted.query_id)

        record = asyncio.run(scenario())

        assert record.status == QueryStatus.FAILED
        assert "dispatcher exploded" in record.intent["failure"]
        assert record.completed_at is not None

    def test_results_are_private_to_their_owner(self, store, cache):
        orchestrator = build_orchestrator(
            store, cache, default_adapters(), {ModelId.CLAUDE: FakeModelClient()}
        )

        async def scenario():
            submitted = await orchestrator.submit_query(
                QueryConfig(text="CAR-T exhaustion", sources=["pubmed"], models=["claude"]),
                user_id="u-1",
            )
            await orchestrator.drain()
            with pytest.raises(NotFound):
                await orchestrator.get_query_results(submitted.query_id, "u-2")
            with pytest.raises(NotFound):
                await orchestrator.get_query_results("missing-id", "u-1")

        asyncio.run(scenario())

    def test_recover_interrupted_resumes_pending_and_fails_processing(self, store, cache):
        orchestrator = build_orchestrator(
            store, cache, default_adapters(), {ModelId.CLAUDE: FakeModelClient()}
        )
        pending = store.create_query(
            "u-1", "CAR-T exhaustion", (SourceId.PUBMED,), (ModelId.CLAUDE,)
        )
        stuck = store.create_query(
            "u-1", "PD-1 resistance", (SourceId.PUBMED,), (ModelId.CLAUDE,)
        )
        store.mark_processing(stuck.id)

        async def scenario():
            counts = await orchestrator.recover_interrupted()
            await orchestrator.drain()
            return counts

        counts = asyncio.run(scenario())

        assert counts == {"resumed": 1, "failed": 1}
        assert store.get_query(pending.id).status == QueryStatus.COMPLETED
        failed = store.get_query(stuck.id)
        assert failed.status == QueryStatus.FAILED
        assert failed.intent["failure"] == "interrupted by process restart"

    def test_history_is_newest_first(self, store, cache, clock):
        store.clock = clock
        for text in ("first query", "second query", "third query"):
            store.create_query("u-1", text, (SourceId.PUBMED,), (ModelId.CLAUDE,))
            clock.advance(60)
        orchestrator = build_orchestrator(
            store, cache, default_adapters(), {ModelId.CLAUDE: FakeModelClient()}
        )

        history = asyncio.run(orchestrator.get_query_history("u-1", limit=2))

        assert [q.original_query for q in history] == ["third query", "second query"]


class TestSourceResults:
    """Every item a source returned is kept, not just what fits the synthesis prompt."""

    def test_full_item_lists_are_persisted_per_source(self, store, cache):
        adapters = default_adapters(
            **{
                SourceId.OPENALEX: FakeSourceAdapter(
                    SourceId.OPENALEX, make_items("openalex", 8)
                ),
                SourceId.PUBMED: FakeSourceAdapter(
                    SourceId.PUBMED, error=SourceUnavailable("pubmed", "HTTP 503", status=503)
                ),
            }
        )
        orchestrator = build_orchestrator(
            store, cache, adapters, {ModelId.CLAUDE: FakeModelClient()}, refine_with=None
        )

        async def scenario():
            submitted = await orchestrator.submit_query(
                QueryConfig(
                    text="CAR-T exhaustion", sources=["openalex", "pubmed"], models=["claude"]
                ),
                user_id="u-1",
            )
            await orchestrator.drain()
            return await orchestrator.get_query_results(submitted.query_id)

        result = asyncio.run(scenario())
        by_source = {r.source: r for r in result.source_results}

        assert set(by_source) == {SourceId.OPENALEX, SourceId.PUBMED}
        openalex = by_source[SourceId.OPENALEX]
        assert openalex.item_count == 8
        assert openalex.summary == "Found 8 results from openalex"
        assert [i["external_id"] for i in openalex.items] == [
            f"openalex-{n}" for n in range(8)
        ]
        pubmed = by_source[SourceId.PUBMED]
        assert pubmed.item_count == 0
        assert pubmed.error == "pubmed: HTTP 503"
        assert pubmed.summary.startswith("No results from pubmed")


class TestScoring:
    @pytest.mark.unit
    def test_relevance_score_is_share_of_matching_items(self):
        items = make_items("pubmed", 2, topic="CAR-T exhaustion") + make_items(
            "openalex", 2, topic="insulin signalling"
        )
        assert relevance_score("CAR-T exhaustion", items) == 0.5
        assert relevance_score("CAR-T exhaustion", []) is None

    @pytest.mark.unit
    def test_citation_count_is_mean_of_item_signals(self):
        assert citation_count(make_items("openalex", 3)) == 20
        assert citation_count([]) is None
