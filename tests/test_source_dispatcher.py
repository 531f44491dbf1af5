import asyncio

import pytest
from conftest import FakeSourceAdapter, make_items

from models.identifiers import SourceId
from orchestrator.errors import SourceUnavailable
from orchestrator.source_dispatcher import AggregatedContext, SourceDispatcher, SourceOutcome
from sources.contracts import SearchFilters

pytestmark = pytest.mark.unit


class ConcurrencyProbe(FakeSourceAdapter):
    """Tracks how many searches are running at once."""

    active = 0
    peak = 0

    async def _search(self, query, filters, max_results):
        ConcurrencyProbe.active += 1
        ConcurrencyProbe.peak = max(ConcurrencyProbe.peak, ConcurrencyProbe.active)
        try:
            await asyncio.sleep(0.05)
            return list(self.items)
        finally:
            ConcurrencyProbe.active -= 1


class TestSourceDispatcher:
    def test_outcomes_follow_requested_order(self):
        adapters = {
            SourceId.OPENALEX: FakeSourceAdapter(SourceId.OPENALEX, make_items("openalex", 2)),
            SourceId.PUBMED: FakeSourceAdapter(SourceId.PUBMED, make_items("pubmed", 1)),
        }
        dispatcher = SourceDispatcher(adapters)

        context = asyncio.run(
            dispatcher.dispatch([SourceId.PUBMED, SourceId.OPENALEX], "CAR-T", max_results=5)
        )

        assert [o.source for o in context.outcomes] == [SourceId.PUBMED, SourceId.OPENALEX]
        assert [i.source for i in context.items] == ["pubmed", "openalex", "openalex"]
        assert context.counts_by_source() == {"pubmed": 1, "openalex": 2}

    def test_filters_and_limit_are_passed_to_every_adapter(self):
        adapter = FakeSourceAdapter(SourceId.PATENTS, make_items("patents", 4))
        filters = SearchFilters(date_from="2023-01-01")

        context = asyncio.run(
            SourceDispatcher({SourceId.PATENTS: adapter}).dispatch(
                [SourceId.PATENTS], "CAR-T", filters, max_results=3
            )
        )

        assert adapter.calls == [("CAR-T", filters, 3)]
        assert len(context.items) == 3

    def test_failures_settle_into_outcomes(self):
        adapters = {
            SourceId.OPENALEX: FakeSourceAdapter(SourceId.OPENALEX, make_items("openalex")),
            SourceId.PUBMED: FakeSourceAdapter(
                SourceId.PUBMED, error=SourceUnavailable("pubmed", "HTTP 502", status=502)
            ),
            SourceId.PATENTS: FakeSourceAdapter(
                SourceId.PATENTS, error=RuntimeError("socket closed")
            ),
        }

        context = asyncio.run(SourceDispatcher(adapters).dispatch(list(adapters), "CAR-T"))

        by_source = {o.source: o for o in context.outcomes}
        assert by_source[SourceId.OPENALEX].ok
        assert by_source[SourceId.PUBMED].error == "pubmed: HTTP 502"
        assert by_source[SourceId.PATENTS].error == "socket closed"
        assert context.contributing_sources == [SourceId.OPENALEX]
        assert len(context.items) == 2

    def test_timeout_does_not_cancel_siblings(self):
        adapters = {
            SourceId.OPENALEX: FakeSourceAdapter(SourceId.OPENALEX, make_items("openalex")),
            SourceId.PUBMED: FakeSourceAdapter(
                SourceId.PUBMED, make_items("pubmed"), delay_s=2
            ),
        }
        dispatcher = SourceDispatcher(adapters, timeout_s=0.05)

        context = asyncio.run(dispatcher.dispatch(list(adapters), "CAR-T"))

        by_source = {o.source: o for o in context.outcomes}
        assert by_source[SourceId.PUBMED].error == "timeout"
        assert by_source[SourceId.PUBMED].items == ()
        assert len(by_source[SourceId.OPENALEX].items) == 2

    def test_missing_adapter_is_reported(self):
        context = asyncio.run(SourceDispatcher({}).dispatch([SourceId.PATENTS], "CAR-T"))
        [outcome] = context.outcomes
        assert outcome.error == "no adapter registered"

    def test_concurrency_is_bounded(self):
        ConcurrencyProbe.active = 0
        ConcurrencyProbe.peak = 0
        adapters = {
            source: ConcurrencyProbe(source, make_items(source.value)) for source in SourceId
        }

        asyncio.run(
            SourceDispatcher(adapters, max_concurrency=2).dispatch(list(SourceId), "CAR-T")
        )

        assert ConcurrencyProbe.peak == 2


class TestAggregatedContext:
    def test_for_source_narrows_to_one_outcome(self):
        context = AggregatedContext.from_outcomes(
            [
                SourceOutcome(SourceId.OPENALEX, tuple(make_items("openalex", 2))),
                SourceOutcome(SourceId.PUBMED, error="timeout"),
            ]
        )

        narrowed = context.for_source(SourceId.OPENALEX)
        assert [o.source for o in narrowed.outcomes] == [SourceId.OPENALEX]
        assert len(narrowed.items) == 2
        assert context.for_source(SourceId.PUBMED).items == ()

    def test_outcome_to_dict(self):
        outcome = SourceOutcome(SourceId.PUBMED, error="timeout", latency_ms=20000)
        assert outcome.to_dict() == {"items": 0, "error": "timeout", "latency_ms": 20000}
