"""
Domain records for research queries, their responses and nightly digests.

These are the shapes that cross the persistence boundary: the store maps table
rows into them and the HTTP layer maps them into DTOs.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from models.identifiers import ModelId, QueryStatus, SourceId


@dataclass(frozen=True)
class QueryConfig:
    """Raw submission from a caller. Identifiers are validated by the orchestrator."""

    text: str
    sources: tuple[str, ...] | list[str]
    models: tuple[str, ...] | list[str]


@dataclass(frozen=True)
class QueryRecord:
    id: str
    user_id: str
    original_query: str
    sources: tuple[SourceId, ...]
    models: tuple[ModelId, ...]
    status: QueryStatus
    created_at: datetime
    refined_query: str | None = None
    intent: dict[str, Any] = field(default_factory=dict)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def effective_query(self) -> str:
        return self.refined_query or self.original_query


@dataclass(frozen=True)
class ResponseRecord:
    """
    One synthesized result unit attached to a query.

    ``source`` is the comma-joined list of contributing source ids: a single id in
    matrix mode, every source that returned items in combined mode.
    """

    id: str
    query_id: str
    source: str
    model: ModelId
    content: str
    created_at: datetime
    relevance_score: float | None = None
    citation_count: int | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    estimated_cost: float = 0.0
    latency_ms: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def sources(self) -> list[str]:
        return [s for s in self.source.split(",") if s]


@dataclass(frozen=True)
class NewResponse:
    """A response about to be persisted (id and timestamp assigned by the store)."""

    source: str
    model: ModelId
    content: str
    relevance_score: float | None = None
    citation_count: int | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    estimated_cost: float = 0.0
    latency_ms: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NewSourceResult:
    """Everything one source returned for a query, before it is persisted."""

    source: SourceId
    items: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None
    latency_ms: int | None = None

    @property
    def summary(self) -> str:
        if self.error:
            return f"No results from {self.source.value}: {self.error}"
        return f"Found {len(self.items)} results from {self.source.value}"


@dataclass(frozen=True)
class SourceResultRecord:
    """
    The full result set of one source search, kept alongside the synthesized
    responses. ``items`` are serialized SourceItem dicts in provider rank order.
    """

    id: str
    query_id: str
    source: SourceId
    summary: str
    items: tuple[dict[str, Any], ...]
    created_at: datetime
    error: str | None = None
    latency_ms: int | None = None

    @property
    def item_count(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class QueryResult:
    query: QueryRecord
    responses: tuple[ResponseRecord, ...] = ()
    source_results: tuple[SourceResultRecord, ...] = ()


@dataclass(frozen=True)
class SubmitResult:
    query_id: str
    message: str
    remaining_quota: int


@dataclass(frozen=True)
class ResearchDigest:
    id: str
    digest_date: date
    sources: tuple[str, ...]
    total_articles: int
    top_topics: tuple[str, ...]
    key_findings: list[dict[str, Any]]
    status: str
    created_at: datetime
