"""
Repository layer for research query persistence.
All CRUD functions use SQLAlchemy Core against the tables in db.tables.

Design principles:
- Functions do NOT commit - caller commits for transaction control
- Returns None or raises exceptions on errors
- Status writes are conditional: a row only moves forward in its lifecycle
"""

from datetime import date, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import and_, desc, func, insert, select, update
from sqlalchemy.orm import Session

from db.tables import queries, research_digests, responses, source_results
from models.identifiers import ALLOWED_PREDECESSORS, QueryStatus
from utils.logger import get_logger

logger = get_logger(__name__)


def new_id() -> str:
    return str(uuid4())


# ============================================================================
# QUERIES
# ============================================================================


def insert_query(
    db: Session,
    user_id: str,
    original_query: str,
    sources: list[str],
    models: list[str],
    created_at: datetime,
) -> str:
    """
    Insert a new query row in PENDING state.

    Returns:
        str: query_id

    Note:
        Does NOT commit. Caller must commit.
    """
    query_id = new_id()
    db.execute(
        insert(queries).values(
            id=query_id,
            user_id=user_id,
            original_query=original_query,
            sources=sources,
            models=models,
            status=QueryStatus.PENDING.value,
            intent={},
            created_at=created_at,
        )
    )
    logger.info(f"Created query: {query_id} for user: {user_id}")
    return query_id


def get_query(db: Session, query_id: str) -> dict[str, Any] | None:
    result = db.execute(select(queries).where(queries.c.id == query_id)).first()
    if result:
        return dict(result._mapping)
    return None


def list_queries_for_user(db: Session, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
    """Most recent queries for one user, newest first."""
    stmt = (
        select(queries)
        .where(queries.c.user_id == user_id)
        .order_by(desc(queries.c.created_at))
        .limit(limit)
    )
    return [dict(row._mapping) for row in db.execute(stmt)]


def list_queries_by_status(db: Session, statuses: list[QueryStatus]) -> list[dict[str, Any]]:
    stmt = (
        select(queries)
        .where(queries.c.status.in_([s.value for s in statuses]))
        .order_by(queries.c.created_at)
    )
    return [dict(row._mapping) for row in db.execute(stmt)]


def list_completed_since(db: Session, since: datetime, limit: int) -> list[dict[str, Any]]:
    """Completed queries created at or after ``since``, newest first."""
    stmt = (
        select(queries)
        .where(
            and_(
                queries.c.status == QueryStatus.COMPLETED.value,
                queries.c.created_at >= since,
            )
        )
        .order_by(desc(queries.c.created_at))
        .limit(limit)
    )
    return [dict(row._mapping) for row in db.execute(stmt)]


def list_queries_since(
    db: Session, since: datetime, user_id: str | None = None
) -> list[dict[str, Any]]:
    conditions = [queries.c.created_at >= since]
    if user_id is not None:
        conditions.append(queries.c.user_id == user_id)
    stmt = select(queries).where(and_(*conditions)).order_by(queries.c.created_at)
    return [dict(row._mapping) for row in db.execute(stmt)]


def transition_status(
    db: Session,
    query_id: str,
    new_status: QueryStatus,
    at: datetime,
    intent: dict[str, Any] | None = None,
) -> bool:
    """
    Move a query to ``new_status`` if its current status is an allowed predecessor.

    PROCESSING stamps started_at; terminal states stamp completed_at.

    Returns:
        bool: True if the row was updated, False if the write was a no-op

    Note:
        Does NOT commit. Caller must commit.
    """
    values: dict[str, Any] = {"status": new_status.value}
    if new_status == QueryStatus.PROCESSING:
        values["started_at"] = at
    else:
        values["completed_at"] = at
    if intent is not None:
        values["intent"] = intent

    predecessors = [s.value for s in ALLOWED_PREDECESSORS[new_status]]
    stmt = (
        update(queries)
        .where(and_(queries.c.id == query_id, queries.c.status.in_(predecessors)))
        .values(**values)
    )
    updated = db.execute(stmt).rowcount == 1

    if not updated:
        logger.warning(
            f"Status write to {new_status.value} ignored for query {query_id}",
            extra={"extra_fields": {"query_id": query_id, "target_status": new_status.value}},
        )
    return updated


def set_refinement(
    db: Session, query_id: str, refined_query: str | None, intent: dict[str, Any]
) -> None:
    """
    Store the refined query text and refinement telemetry.

    Note:
        Does NOT commit. Caller must commit.
    """
    stmt = (
        update(queries)
        .where(queries.c.id == query_id)
        .values(refined_query=refined_query, intent=intent)
    )
    db.execute(stmt)


# ============================================================================
# RESPONSES
# ============================================================================


def insert_response(
    db: Session,
    query_id: str,
    ordinal: int,
    values: dict[str, Any],
    created_at: datetime,
) -> str:
    """
    Insert one response row.

    Args:
        values: column values except id, query_id, ordinal and created_at

    Note:
        Does NOT commit. Caller must commit.
    """
    response_id = new_id()
    db.execute(
        insert(responses).values(
            id=response_id,
            query_id=query_id,
            ordinal=ordinal,
            created_at=created_at,
            **values,
        )
    )
    return response_id


def next_response_ordinal(db: Session, query_id: str) -> int:
    stmt = select(func.coalesce(func.max(responses.c.ordinal), -1)).where(
        responses.c.query_id == query_id
    )
    return int(db.execute(stmt).scalar_one()) + 1


def list_responses(db: Session, query_id: str) -> list[dict[str, Any]]:
    stmt = (
        select(responses)
        .where(responses.c.query_id == query_id)
        .order_by(responses.c.ordinal)
    )
    return [dict(row._mapping) for row in db.execute(stmt)]


def list_responses_for_queries(db: Session, query_ids: list[str]) -> list[dict[str, Any]]:
    if not query_ids:
        return []
    stmt = (
        select(responses)
        .where(responses.c.query_id.in_(query_ids))
        .order_by(responses.c.query_id, responses.c.ordinal)
    )
    return [dict(row._mapping) for row in db.execute(stmt)]


# ============================================================================
# SOURCE RESULTS
# ============================================================================


def insert_source_result(
    db: Session,
    query_id: str,
    ordinal: int,
    values: dict[str, Any],
    created_at: datetime,
) -> str:
    """
    Insert the full result set of one source search.

    Note:
        Does NOT commit. Caller must commit.
    """
    result_id = new_id()
    db.execute(
        insert(source_results).values(
            id=result_id,
            query_id=query_id,
            ordinal=ordinal,
            created_at=created_at,
            **values,
        )
    )
    return result_id


def list_source_results(db: Session, query_id: str) -> list[dict[str, Any]]:
    stmt = (
        select(source_results)
        .where(source_results.c.query_id == query_id)
        .order_by(source_results.c.ordinal)
    )
    return [dict(row._mapping) for row in db.execute(stmt)]


# ============================================================================
# RESEARCH DIGESTS
# ============================================================================


def insert_digest(
    db: Session,
    digest_date: date,
    sources: list[str],
    total_articles: int,
    top_topics: list[str],
    key_findings: list[dict[str, Any]],
    status: str,
    created_at: datetime,
) -> str:
    """
    Note:
        Does NOT commit. Caller must commit.
    """
    digest_id = new_id()
    db.execute(
        insert(research_digests).values(
            id=digest_id,
            digest_date=digest_date,
            sources=sources,
            total_articles=total_articles,
            top_topics=top_topics,
            key_findings=key_findings,
            status=status,
            created_at=created_at,
        )
    )
    logger.info(f"Created research digest: {digest_id} for {digest_date.isoformat()}")
    return digest_id


def get_digest(db: Session, digest_id: str) -> dict[str, Any] | None:
    result = db.execute(
        select(research_digests).where(research_digests.c.id == digest_id)
    ).first()
    if result:
        return dict(result._mapping)
    return None


def list_digests(db: Session, limit: int = 30) -> list[dict[str, Any]]:
    stmt = (
        select(research_digests)
        .order_by(desc(research_digests.c.digest_date), desc(research_digests.c.created_at))
        .limit(limit)
    )
    return [dict(row._mapping) for row in db.execute(stmt)]
