"""
SQLAlchemy Core table definitions for queries, per-source results, responses and
research digests.

Tables are created with ``metadata.create_all`` at startup; there is no migration
tooling in this project.
"""

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    Engine,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)

from utils.logger import get_logger

logger = get_logger(__name__)

metadata = MetaData()

queries = Table(
    "queries",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(128), nullable=False),
    Column("original_query", Text, nullable=False),
    Column("refined_query", Text),
    Column("sources", JSON, nullable=False),
    Column("models", JSON, nullable=False),
    Column("status", String(16), nullable=False),
    Column("intent", JSON, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("started_at", DateTime(timezone=True)),
    Column("completed_at", DateTime(timezone=True)),
    Index("ix_queries_user_created", "user_id", "created_at"),
    Index("ix_queries_status_created", "status", "created_at"),
)

responses = Table(
    "responses",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("query_id", String(36), ForeignKey("queries.id"), nullable=False, index=True),
    Column("ordinal", Integer, nullable=False),
    Column("source", String(64), nullable=False),
    Column("model", String(32), nullable=False),
    Column("content", Text, nullable=False),
    Column("relevance_score", Float),
    Column("citation_count", Integer),
    Column("input_tokens", Integer, nullable=False, default=0),
    Column("output_tokens", Integer, nullable=False, default=0),
    Column("estimated_cost", Float, nullable=False, default=0.0),
    Column("latency_ms", Integer),
    Column("extra", JSON, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

source_results = Table(
    "source_results",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("query_id", String(36), ForeignKey("queries.id"), nullable=False, index=True),
    Column("ordinal", Integer, nullable=False),
    Column("source", String(32), nullable=False),
    Column("summary", Text, nullable=False),
    Column("item_count", Integer, nullable=False),
    Column("items", JSON, nullable=False),
    Column("error", Text),
    Column("latency_ms", Integer),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

research_digests = Table(
    "research_digests",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("digest_date", Date, nullable=False, index=True),
    Column("sources", JSON, nullable=False),
    Column("total_articles", Integer, nullable=False),
    Column("top_topics", JSON, nullable=False),
    Column("key_findings", JSON, nullable=False),
    Column("status", String(16), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
)


def create_tables(engine: Engine) -> None:
    metadata.create_all(engine)
    logger.info(
        "Database tables ensured",
        extra={"extra_fields": {"tables": sorted(metadata.tables)}},
    )
