"""
SQLAlchemy session management.

The engine is built by the process entry point and handed to
``create_session_factory``; nothing here binds to a database at import time.
"""

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """
    Transactional scope: commit on success, roll back on any exception.

    Usage:
        with session_scope(factory) as db:
            repository.insert_query(db, values)
    """
    db = factory()
    try:
        yield db
        db.commit()
    except BaseException:
        db.rollback()
        raise
    finally:
        db.close()
