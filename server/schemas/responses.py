"""Pydantic response models (DTOs) for FastAPI endpoints."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat().replace("+00:00", "Z")


class ErrorBodyDTO(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class ErrorDTO(BaseModel):
    error: ErrorBodyDTO


class SubmitResponseDTO(BaseModel):
    query_id: str
    message: str
    remaining_quota: int

    @classmethod
    def from_submit_result(cls, result):
        return cls(
            query_id=result.query_id,
            message=result.message,
            remaining_quota=result.remaining_quota,
        )


class QueryDTO(BaseModel):
    id: str
    user_id: str
    original_query: str
    refined_query: str | None = None
    sources: list[str]
    models: list[str]
    status: str
    intent: dict[str, Any] = Field(default_factory=dict)
    created_at: str
    started_at: str | None = None
    completed_at: str | None = None

    @classmethod
    def from_record(cls, record):
        """Convert QueryRecord to DTO."""
        return cls(
            id=record.id,
            user_id=record.user_id,
            original_query=record.original_query,
            refined_query=record.refined_query,
            sources=[s.value for s in record.sources],
            models=[m.value for m in record.models],
            status=record.status.value,
            intent=record.intent,
            created_at=_iso(record.created_at),
            started_at=_iso(record.started_at),
            completed_at=_iso(record.completed_at),
        )


class ResponseDTO(BaseModel):
    id: str
    source: str
    model: str
    content: str
    relevance_score: float | None = None
    citation_count: int | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    estimated_cost: float = 0.0
    cost_currency: str = "USD"
    latency_ms: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: str

    @classmethod
    def from_record(cls, record):
        return cls(
            id=record.id,
            source=record.source,
            model=record.model.value,
            content=record.content,
            relevance_score=record.relevance_score,
            citation_count=record.citation_count,
            input_tokens=record.input_tokens,
            output_tokens=record.output_tokens,
            estimated_cost=record.estimated_cost,
            latency_ms=record.latency_ms,
            metadata=record.metadata,
            created_at=_iso(record.created_at),
        )


class SourceResultDTO(BaseModel):
    id: str
    source: str
    summary: str
    item_count: int
    items: list[dict[str, Any]] = Field(default_factory=list)
    error: str | None = None
    latency_ms: int | None = None
    created_at: str

    @classmethod
    def from_record(cls, record):
        return cls(
            id=record.id,
            source=record.source.value,
            summary=record.summary,
            item_count=record.item_count,
            items=list(record.items),
            error=record.error,
            latency_ms=record.latency_ms,
            created_at=_iso(record.created_at),
        )


class QueryResultDTO(BaseModel):
    query: QueryDTO
    responses: list[ResponseDTO]
    source_results: list[SourceResultDTO] = Field(default_factory=list)
    response_count: int
    total_cost: float

    @classmethod
    def from_query_result(cls, result):
        responses = [ResponseDTO.from_record(r) for r in result.responses]
        return cls(
            query=QueryDTO.from_record(result.query),
            responses=responses,
            source_results=[SourceResultDTO.from_record(r) for r in result.source_results],
            response_count=len(responses),
            total_cost=round(sum(r.estimated_cost for r in responses), 6),
        )


class RefinementDTO(BaseModel):
    original_query: str
    refined_query: str
    reasoning: str
    status: str
    suggestions: list[dict[str, str]] = Field(default_factory=list)
    filters: dict[str, Any] = Field(default_factory=dict)
    concepts: list[str] = Field(default_factory=list)
    model: str | None = None

    @classmethod
    def from_refinement(cls, refinement):
        return cls(
            original_query=refinement.original_query,
            refined_query=refinement.refined_query,
            reasoning=refinement.reasoning,
            status=refinement.status,
            suggestions=[dict(s) for s in refinement.suggestions],
            filters=dict(refinement.filters),
            concepts=list(refinement.concepts),
            model=refinement.model,
        )


class QueryHistoryDTO(BaseModel):
    queries: list[QueryDTO]
    count: int


class CostLineDTO(BaseModel):
    service: str
    type: str
    cost: float
    basis: str
    unit: str = "USD"


class CostEstimateDTO(BaseModel):
    query_id: str
    total_cost: float
    lines: list[CostLineDTO]

    @classmethod
    def from_estimate(cls, estimate):
        """Convert QueryCostEstimate to DTO."""
        return cls(
            query_id=estimate.query_id,
            total_cost=round(estimate.total_cost, 6),
            lines=[
                CostLineDTO(
                    service=line.service,
                    type=line.type,
                    cost=line.cost,
                    basis=line.basis,
                    unit=line.unit,
                )
                for line in estimate.lines
            ],
        )


class DigestDTO(BaseModel):
    id: str
    digest_date: str
    sources: list[str]
    total_articles: int
    top_topics: list[str]
    key_findings: list[dict[str, Any]]
    status: str
    created_at: str

    @classmethod
    def from_digest(cls, digest):
        return cls(
            id=digest.id,
            digest_date=digest.digest_date.isoformat(),
            sources=list(digest.sources),
            total_articles=digest.total_articles,
            top_topics=list(digest.top_topics),
            key_findings=digest.key_findings,
            status=digest.status,
            created_at=_iso(digest.created_at),
        )


class NightlyStatusDTO(BaseModel):
    schedule: dict[str, Any]
    counts: dict[str, int]
    recent: list[dict[str, Any]]


class HealthResponseDTO(BaseModel):
    status: str
    timestamp: str
    version: str = "1.0.0"
    cache_backend: str | None = None
    cache_healthy: bool | None = None
