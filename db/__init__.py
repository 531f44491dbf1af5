"""
Database package for the research engine.
Provides the SQLAlchemy engine, session management, Core tables, repository functions
and the QueryStore facade.
"""

from db.engine import create_db_engine, get_database_url
from db.session import create_session_factory, session_scope
from db.store import QueryStore
from db.tables import (
    create_tables,
    metadata,
    queries,
    research_digests,
    responses,
    source_results,
)

__all__ = [
    "QueryStore",
    "create_db_engine",
    "create_session_factory",
    "create_tables",
    "get_database_url",
    "metadata",
    "queries",
    "research_digests",
    "responses",
    "session_scope",
    "source_results",
]
