"""Synchronous database engine and session factory for snapmerge.

Usage:
    from snapmerge.db.session import get_session

    with get_session() as session:
        rows = session.execute(select(Role)).scalars().all()

The merge pipeline is request-scoped and single-threaded, so a plain sync
engine is used (same reasoning as a CLI client: no event loop to manage).
Each operation must get its own session; sessions are not shared between
concurrent merges.

SQLite needs two connection hooks to behave like the production store:
- foreign keys are off by default and must be enabled per connection
- pysqlite's implicit transaction handling breaks SAVEPOINT, so the driver's
  own BEGIN handling is disabled and SQLAlchemy emits BEGIN itself
"""

from __future__ import annotations

from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from snapmerge.config import settings


def _install_sqlite_hooks(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # noqa: ARG001
        # Hand transaction control to SQLAlchemy so begin_nested() works
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_store_engine(url: str, echo: bool = False, **kwargs) -> Engine:
    """Create an engine for the merge store, wiring SQLite hooks when needed."""
    engine = create_engine(url, echo=echo, **kwargs)
    if engine.dialect.name == "sqlite":
        _install_sqlite_hooks(engine)
    return engine


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    # Created on first use so importing this module never requires a DB driver
    return create_store_engine(
        settings.database_url,
        echo=settings.database_echo,
        pool_pre_ping=True,
    )


@lru_cache(maxsize=1)
def get_session_factory() -> sessionmaker[Session]:
    # expire_on_commit=False keeps loaded rows readable after commit
    return sessionmaker(bind=get_engine(), expire_on_commit=False)


@contextmanager
def get_session() -> Iterator[Session]:
    """Context manager that yields a fresh database session.

    The session is closed and its connection returned to the pool when the
    context exits, whether normally or via exception.
    """
    with get_session_factory()() as session:
        yield session
