"""
QueryStore - transactional facade over the repository functions.

Every method opens its own session scope, commits on success and maps rows into
domain records. Database failures surface as PersistenceError. Methods are
synchronous; async callers run them in an executor.
"""

from collections.abc import Callable
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError

from db import repository
from db.session import create_session_factory, session_scope
from db.tables import create_tables
from models.identifiers import ModelId, QueryStatus, SourceId
from models.research import (
    NewResponse,
    NewSourceResult,
    QueryRecord,
    QueryResult,
    ResearchDigest,
    ResponseRecord,
    SourceResultRecord,
)
from orchestrator.errors import PersistenceError
from utils.logger import get_logger

logger = get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back out
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _query_from_row(row: dict[str, Any]) -> QueryRecord:
    return QueryRecord(
        id=row["id"],
        user_id=row["user_id"],
        original_query=row["original_query"],
        sources=tuple(SourceId(s) for s in row["sources"] or []),
        models=tuple(ModelId(m) for m in row["models"] or []),
        status=QueryStatus(row["status"]),
        created_at=_as_utc(row["created_at"]),
        refined_query=row.get("refined_query"),
        intent=dict(row.get("intent") or {}),
        started_at=_as_utc(row.get("started_at")),
        completed_at=_as_utc(row.get("completed_at")),
    )


def _response_from_row(row: dict[str, Any]) -> ResponseRecord:
    return ResponseRecord(
        id=row["id"],
        query_id=row["query_id"],
        source=row["source"],
        model=ModelId(row["model"]),
        content=row["content"],
        created_at=_as_utc(row["created_at"]),
        relevance_score=row.get("relevance_score"),
        citation_count=row.get("citation_count"),
        input_tokens=row.get("input_tokens") or 0,
        output_tokens=row.get("output_tokens") or 0,
        estimated_cost=row.get("estimated_cost") or 0.0,
        latency_ms=row.get("latency_ms"),
        metadata=dict(row.get("extra") or {}),
    )


def _source_result_from_row(row: dict[str, Any]) -> SourceResultRecord:
    return SourceResultRecord(
        id=row["id"],
        query_id=row["query_id"],
        source=SourceId(row["source"]),
        summary=row["summary"],
        items=tuple(row["items"] or []),
        created_at=_as_utc(row["created_at"]),
        error=row.get("error"),
        latency_ms=row.get("latency_ms"),
    )


def _digest_from_row(row: dict[str, Any]) -> ResearchDigest:
    return ResearchDigest(
        id=row["id"],
        digest_date=row["digest_date"],
        sources=tuple(row["sources"] or []),
        total_articles=row["total_articles"],
        top_topics=tuple(row["top_topics"] or []),
        key_findings=list(row["key_findings"] or []),
        status=row["status"],
        created_at=_as_utc(row["created_at"]),
    )


class QueryStore:
    def __init__(self, engine: Engine, clock: Callable[[], datetime] = utc_now):
        self.engine = engine
        self.session_factory = create_session_factory(engine)
        self.clock = clock

    def create_tables(self) -> None:
        create_tables(self.engine)

    def _run(self, operation: str, fn: Callable, *args, **kwargs):
        try:
            with session_scope(self.session_factory) as db:
                return fn(db, *args, **kwargs)
        except SQLAlchemyError as e:
            logger.error(
                f"Database operation failed: {operation}",
                extra={"extra_fields": {"operation": operation, "error": str(e)}},
                exc_info=True,
            )
            raise PersistenceError(f"Database operation failed: {operation}") from e

    # ------------------------------------------------------------------ queries

    def create_query(
        self,
        user_id: str,
        text: str,
        sources: tuple[SourceId, ...],
        models: tuple[ModelId, ...],
    ) -> QueryRecord:
        created_at = self.clock()

        def _create(db):
            query_id = repository.insert_query(
                db,
                user_id=user_id,
                original_query=text,
                sources=[s.value for s in sources],
                models=[m.value for m in models],
                created_at=created_at,
            )
            return repository.get_query(db, query_id)

        return _query_from_row(self._run("create_query", _create))

    def get_query(self, query_id: str) -> QueryRecord | None:
        row = self._run("get_query", repository.get_query, query_id)
        return _query_from_row(row) if row else None

    def get_result(self, query_id: str) -> QueryResult | None:
        def _load(db):
            row = repository.get_query(db, query_id)
            if row is None:
                return None
            return (
                row,
                repository.list_responses(db, query_id),
                repository.list_source_results(db, query_id),
            )

        loaded = self._run("get_result", _load)
        if loaded is None:
            return None
        row, response_rows, source_rows = loaded
        return QueryResult(
            query=_query_from_row(row),
            responses=tuple(_response_from_row(r) for r in response_rows),
            source_results=tuple(_source_result_from_row(r) for r in source_rows),
        )

    def list_history(self, user_id: str, limit: int = 50) -> list[QueryRecord]:
        rows = self._run("list_history", repository.list_queries_for_user, user_id, limit)
        return [_query_from_row(r) for r in rows]

    def list_by_status(self, *statuses: QueryStatus) -> list[QueryRecord]:
        rows = self._run("list_by_status", repository.list_queries_by_status, list(statuses))
        return [_query_from_row(r) for r in rows]

    def list_completed_since(self, since: datetime, limit: int) -> list[QueryRecord]:
        rows = self._run("list_completed_since", repository.list_completed_since, since, limit)
        return [_query_from_row(r) for r in rows]

    def list_queries_since(self, since: datetime, user_id: str | None = None) -> list[QueryRecord]:
        rows = self._run("list_queries_since", repository.list_queries_since, since, user_id)
        return [_query_from_row(r) for r in rows]

    def list_results_since(self, since: datetime, user_id: str | None = None) -> list[QueryResult]:
        """Queries in the window together with their responses, oldest first."""

        def _load(db):
            rows = repository.list_queries_since(db, since, user_id)
            response_rows = repository.list_responses_for_queries(db, [r["id"] for r in rows])
            return rows, response_rows

        rows, response_rows = self._run("list_results_since", _load)
        by_query: dict[str, list[ResponseRecord]] = {}
        for r in response_rows:
            by_query.setdefault(r["query_id"], []).append(_response_from_row(r))
        return [
            QueryResult(query=_query_from_row(r), responses=tuple(by_query.get(r["id"], [])))
            for r in rows
        ]

    def mark_processing(self, query_id: str) -> bool:
        return self._run(
            "mark_processing",
            repository.transition_status,
            query_id,
            QueryStatus.PROCESSING,
            self.clock(),
        )

    def record_refinement(
        self, query_id: str, refined_query: str | None, intent: dict[str, Any]
    ) -> None:
        self._run("record_refinement", repository.set_refinement, query_id, refined_query, intent)

    def finish(
        self, query_id: str, status: QueryStatus, intent: dict[str, Any] | None = None
    ) -> bool:
        """
        Move a query to COMPLETED or FAILED.

        Returns False without writing when the query is already terminal.
        """
        if not status.is_terminal:
            raise ValueError(f"finish() requires a terminal status, got {status.value}")
        return self._run(
            "finish", repository.transition_status, query_id, status, self.clock(), intent
        )

    # ---------------------------------------------------------------- responses

    def add_responses(self, query_id: str, new_responses: list[NewResponse]) -> int:
        """Persist a batch of responses in one transaction. Returns the number written."""
        if not new_responses:
            return 0

        def _insert(db):
            ordinal = repository.next_response_ordinal(db, query_id)
            for offset, response in enumerate(new_responses):
                repository.insert_response(
                    db,
                    query_id,
                    ordinal + offset,
                    {
                        "source": response.source,
                        "model": response.model.value,
                        "content": response.content,
                        "relevance_score": response.relevance_score,
                        "citation_count": response.citation_count,
                        "input_tokens": response.input_tokens,
                        "output_tokens": response.output_tokens,
                        "estimated_cost": response.estimated_cost,
                        "latency_ms": response.latency_ms,
                        "extra": response.metadata,
                    },
                    self.clock(),
                )
            return len(new_responses)

        return self._run("add_responses", _insert)

    def add_source_results(self, query_id: str, results: list[NewSourceResult]) -> int:
        """Persist every source's full result set in one transaction, in the given order."""
        if not results:
            return 0

        def _insert(db):
            for ordinal, result in enumerate(results):
                repository.insert_source_result(
                    db,
                    query_id,
                    ordinal,
                    {
                        "source": result.source.value,
                        "summary": result.summary,
                        "item_count": len(result.items),
                        "items": list(result.items),
                        "error": result.error,
                        "latency_ms": result.latency_ms,
                    },
                    self.clock(),
                )
            return len(results)

        return self._run("add_source_results", _insert)

    # ------------------------------------------------------------------ digests

    def create_digest(
        self,
        digest_date: date,
        sources: list[str],
        total_articles: int,
        top_topics: list[str],
        key_findings: list[dict[str, Any]],
        status: str = "completed",
    ) -> ResearchDigest:
        def _create(db):
            digest_id = repository.insert_digest(
                db,
                digest_date=digest_date,
                sources=sources,
                total_articles=total_articles,
                top_topics=top_topics,
                key_findings=key_findings,
                status=status,
                created_at=self.clock(),
            )
            return repository.get_digest(db, digest_id)

        return _digest_from_row(self._run("create_digest", _create))

    def list_digests(self, limit: int = 30) -> list[ResearchDigest]:
        rows = self._run("list_digests", repository.list_digests, limit)
        return [_digest_from_row(r) for r in rows]
