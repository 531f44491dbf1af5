import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest
from dotenv import load_dotenv

from api.base_client import BaseAIClient
from cache.memory import MemoryBackend
from cache.resilient import ResilientCache
from config.config import Config
from db.engine import create_db_engine
from db.store import QueryStore
from models.identifiers import SourceId
from models.unified_response import NormalizedError, TokenUsage, UnifiedResponse
from orchestrator.refiner import REFINEMENT_SYSTEM_PROMPT
from sources.base import SourceAdapter
from sources.contracts import SourceItem

# Load environment variables from .env file for tests
load_dotenv()

DEFAULT_REFINEMENT = {
    "refinedQuery": "CAR-T cell exhaustion mechanisms in solid tumors 2020-2024",
    "reasoning": "Adds the tumor context and a recent timeframe.",
    "suggestions": [{"term": "solid tumors", "explanation": "narrows the disease scope"}],
    "filters": {
        "dateRange": {"from": "2020-01-01", "to": "2024-12-31"},
        "keywords": ["exhaustion"],
        "excludeTerms": [],
    },
    "concepts": ["CAR-T", "T cell exhaustion"],
}

SYNTHESIS_TEXT = (
    "## Key Findings\nTOX drives exhaustion.\n## Research Gaps\nFew in vivo studies.\n"
    "## Methodology Notes\nMostly murine models.\n## Recommendations\nStudy TOX knockouts."
)


class FakeClock:
    """Settable clock usable both as a datetime clock and a monotonic-seconds clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 6, 2, 12, 0, tzinfo=timezone.utc)
        self.seconds = 1000.0

    def __call__(self) -> datetime:
        return self.now

    def monotonic(self) -> float:
        return self.seconds

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)
        self.seconds += seconds


class FailingBackend:
    """Backend whose every operation raises, like an unreachable Redis."""

    async def _fail(self, *args, **kwargs):
        raise ConnectionError("connection refused")

    get = set = delete = incr_window = decr_window = peek = ping = close = _fail


class RecordingBackend(MemoryBackend):
    """MemoryBackend that records every read and every write with its TTL."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.gets: list[str] = []
        self.sets: list[tuple[str, int]] = []

    async def get(self, key):
        self.gets.append(key)
        return await super().get(key)

    async def set(self, key, value, ttl_s):
        self.sets.append((key, ttl_s))
        await super().set(key, value, ttl_s)

    def ttls(self, operation: str) -> list[int]:
        return [ttl for key, ttl in self.sets if f":{operation}:" in key]


class FakeModelClient(BaseAIClient):
    """
    Deterministic model client.

    Refinement calls (recognised by the refinement system prompt) get
    ``refinement_reply``, concept extraction calls get ``concept_reply``, and every
    other call gets ``synthesis_text``.
    """

    def __init__(
        self,
        provider_name: str = "fake",
        model_name: str = "fake-model",
        synthesis_text: str = SYNTHESIS_TEXT,
        refinement_reply: str | None = None,
        concept_reply: str = '["CAR-T", "T cell exhaustion"]',
        error_code: str | None = None,
        is_local: bool = False,
        available: bool = True,
        prompt_tokens: int = 120,
        completion_tokens: int = 80,
        estimated_cost: float = 0.002,
    ):
        super().__init__(None, model_name=model_name)
        self.provider_name = provider_name
        self.synthesis_text = synthesis_text
        self.refinement_reply = (
            refinement_reply if refinement_reply is not None else json.dumps(DEFAULT_REFINEMENT)
        )
        self.concept_reply = concept_reply
        self.error_code = error_code
        self.is_local = is_local
        self.available = available
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.estimated_cost = estimated_cost
        self.calls: list[dict] = []

    def is_available(self) -> bool:
        return self.available

    def get_completion(self, prompt: str, *, context=None, system=None, **kwargs):
        self.calls.append({"prompt": prompt, "context": context, "system": system})
        request_id = f"{self.provider_name}-{len(self.calls)}"

        if self.error_code:
            return UnifiedResponse(
                request_id=request_id,
                text="",
                provider=self.provider_name,
                model=self.model_name,
                latency_ms=5,
                token_usage=TokenUsage(),
                estimated_cost=0.0,
                finish_reason="error",
                error=NormalizedError(
                    code=self.error_code,
                    message=f"Fake {self.error_code} error",
                    provider=self.provider_name,
                    retryable=self.error_code in ("timeout", "rate_limit"),
                ),
            )

        if system == REFINEMENT_SYSTEM_PROMPT:
            text = self.refinement_reply
        elif prompt.startswith("Extract key scientific concepts"):
            text = self.concept_reply
        else:
            text = self.synthesis_text

        return UnifiedResponse(
            request_id=request_id,
            text=text,
            provider=self.provider_name,
            model=self.model_name,
            latency_ms=12,
            token_usage=TokenUsage(
                prompt_tokens=self.prompt_tokens, completion_tokens=self.completion_tokens
            ),
            estimated_cost=self.estimated_cost,
            finish_reason="stop",
        )

    def synthesis_calls(self) -> list[dict]:
        return [
            c
            for c in self.calls
            if c["system"] != REFINEMENT_SYSTEM_PROMPT
            and not c["prompt"].startswith("Extract key scientific concepts")
        ]


class FakeSourceAdapter(SourceAdapter):
    """In-memory adapter; raises ``error`` from every search when set."""

    def __init__(
        self,
        source_id: SourceId,
        items: list[SourceItem] | None = None,
        error: Exception | None = None,
        delay_s: float = 0.0,
        cache: ResilientCache | None = None,
    ):
        super().__init__(None, cache, max_retries=0)
        self.source_id = source_id
        self.items = items or []
        self.error = error
        self.delay_s = delay_s
        self.calls: list[tuple] = []

    async def _search(self, query, filters, max_results):
        self.calls.append((query, filters, max_results))
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return list(self.items)[:max_results]

    async def _lookup(self, external_id):
        return next((i for i in self.items if i.external_id == external_id), None)


def make_items(source: str, count: int = 2, topic: str = "CAR-T exhaustion") -> list[SourceItem]:
    return [
        SourceItem(
            source=source,
            external_id=f"{source}-{i}",
            title=f"{topic} study {i} from {source}",
            abstract=f"We examine {topic} in tumor models ({source} record {i}).",
            published="2024-05-01",
            relevance=10 * (i + 1),
            doi=f"10.1000/{source}.{i}",
            url=f"https://example.org/{source}/{i}",
        )
        for i in range(count)
    ]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    engine = create_db_engine(f"sqlite+pysqlite:///{tmp_path / 'research.db'}")
    query_store = QueryStore(engine)
    query_store.create_tables()
    yield query_store
    engine.dispose()


@pytest.fixture
def cache():
    return ResilientCache(MemoryBackend(), backend_name="memory")


@pytest.fixture
def test_config():
    config = Config(load_env_file=False)
    config.API_KEYS = (
        "res-key:alice:researcher,res2-key:carol,mgr-key:bob:manager,adm-key:root:admin"
    )
    config.REFINEMENT_MODEL = "claude"
    config.CONCEPT_MODEL = "claude"
    config.SYNTHESIS_MODE = "combined"
    config.NIGHTLY_AUTOSCHEDULE = False
    config.RATE_LIMIT_PER_HOUR = 20
    config.RESEARCHER_PROFILES_PATH = None
    config.APP_ENV = "test"
    return config
