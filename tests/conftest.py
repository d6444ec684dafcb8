"""Shared fixtures: in-memory SQLite store, settings and artifact builders."""

from __future__ import annotations

from typing import Any

import pytest
import sqlalchemy as sa
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from snapmerge.config import Settings
from snapmerge.db.models import Base
from snapmerge.db.session import create_store_engine
from snapmerge.merge.schema import default_registry
from snapmerge.merge.service import MergeService
from snapmerge.merge.store import SqlStore

T0 = "2024-05-01T12:00:00Z"
T1 = "2024-05-02T12:00:00Z"


@pytest.fixture()
def engine():
    engine = create_store_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture()
def session(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture()
def settings(tmp_path):
    return Settings(backup_dir=str(tmp_path / "backups"), database_url="sqlite://")


@pytest.fixture()
def registry():
    return default_registry("updated_at")


@pytest.fixture()
def store(session):
    return SqlStore(session, Base.metadata)


@pytest.fixture()
def service(session, registry, settings):
    return MergeService(session, registry=registry, settings=settings)


# ---------------------------------------------------------------------------
# Row and artifact builders
# ---------------------------------------------------------------------------


def _stamped(row: dict[str, Any], ts: str) -> dict[str, Any]:
    return {"created_at": T0, "updated_at": ts, **row}


@pytest.fixture()
def role_row():
    def build(id: str, name: str, ts: str = T0, **extra: Any) -> dict[str, Any]:
        return _stamped(
            {"id": id, "name": name, "description": None, "is_system": False, **extra}, ts
        )

    return build


@pytest.fixture()
def admin_row():
    def build(id: str, role_id: str | None, ts: str = T0, **extra: Any) -> dict[str, Any]:
        return _stamped(
            {
                "id": id,
                "email": f"{id}@example.org",
                "name": id.title(),
                "password_hash": "x" * 60,
                "is_active": True,
                "last_login": None,
                "role_id": role_id,
                **extra,
            },
            ts,
        )

    return build


@pytest.fixture()
def user_row():
    def build(id: str, role_id: str, ts: str = T0, **extra: Any) -> dict[str, Any]:
        return _stamped(
            {
                "id": id,
                "email": f"{id}@example.org",
                "name": id.title(),
                "phone_number": None,
                "is_active": True,
                "role_id": role_id,
                **extra,
            },
            ts,
        )

    return build


@pytest.fixture()
def make_artifact():
    """Build an artifact document from ``{table: [rows]}`` (insertion order kept)."""

    def build(
        tables: dict[str, list[dict[str, Any]]],
        version: str = "1.0",
        primary_keys: dict[str, str] | None = None,
        record_counts: dict[str, int] | None = None,
    ) -> dict[str, Any]:
        keys = primary_keys or {}
        return {
            "metadata": {
                "exportedAt": T0,
                "exportedBy": "tests",
                "formatVersion": version,
                "recordCounts": (
                    record_counts
                    if record_counts is not None
                    else {name: len(rows) for name, rows in tables.items()}
                ),
            },
            "tables": [
                {"name": name, "primaryKeyField": keys.get(name, "id"), "rows": rows}
                for name, rows in tables.items()
            ],
        }

    return build


@pytest.fixture()
def seed(session, store):
    """Insert rows straight into the store and commit."""

    def insert(table: str, *rows: dict[str, Any]) -> None:
        for row in rows:
            store.insert_row(table, store.coerce_row(table, row))
        session.commit()

    return insert


@pytest.fixture()
def read_table(session):
    """Read a table ordered by primary key, ending the read transaction."""

    def read(table: str) -> list[dict[str, Any]]:
        t = Base.metadata.tables[table]
        try:
            rows = session.execute(sa.select(t).order_by(t.c.id)).mappings().all()
            return [dict(row) for row in rows]
        finally:
            session.rollback()

    return read
