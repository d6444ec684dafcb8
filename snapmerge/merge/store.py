"""SQLAlchemy-backed store adapter used by the analyzer and executor.

SqlStore wraps one Session plus the MetaData describing the tables it may
touch.  All statements are SQLAlchemy Core against ``metadata.tables`` so the
merge engine stays generic over schema shape.

Transactions:
  unit_of_work()  — the atomic unit for a whole merge.  Re-entrant: nested
                    calls join the outer unit.  Commits on success, rolls back
                    on any exception.
  savepoint()     — SAVEPOINT around a single row write so a failed row can be
                    rolled back without aborting the unit of work.
"""

from __future__ import annotations

import datetime
import logging
from contextlib import contextmanager
from typing import Any, Iterator

import sqlalchemy as sa
from sqlalchemy import exc as sa_exc
from sqlalchemy.orm import Session

from snapmerge.errors import UnitOfWorkFailure
from snapmerge.merge.values import parse_date, parse_datetime

logger = logging.getLogger(__name__)

# Driver-level failures that mean the store itself is unusable
FATAL_STORE_ERRORS = (
    sa_exc.OperationalError,
    sa_exc.InterfaceError,
    sa_exc.DisconnectionError,
)


class SqlStore:
    def __init__(self, session: Session, metadata: sa.MetaData) -> None:
        self.session = session
        self.metadata = metadata
        self._uow_active = False

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def has_table(self, name: str) -> bool:
        return name in self.metadata.tables

    def table(self, name: str) -> sa.Table:
        return self.metadata.tables[name]

    def columns(self, name: str) -> list[str]:
        return [column.name for column in self.table(name).columns]

    def coerce_row(self, table_name: str, row: dict[str, Any]) -> dict[str, Any]:
        """Convert wire values into the Python types the table's columns expect.

        ISO strings become datetime/date for date columns and 0/1 become bools
        for boolean columns.  Values that cannot be converted are left as-is;
        the write will fail for that row and be reported as a record error.
        """
        table = self.table(table_name)
        coerced = dict(row)
        for key, value in row.items():
            if key not in table.c or value is None:
                continue
            column_type = table.c[key].type
            try:
                if isinstance(column_type, sa.DateTime) and isinstance(value, str):
                    coerced[key] = parse_datetime(value)
                elif isinstance(column_type, sa.Date) and isinstance(value, str):
                    coerced[key] = parse_date(value)
                elif (
                    isinstance(column_type, sa.DateTime)
                    and isinstance(value, datetime.datetime)
                    and value.tzinfo is not None
                ):
                    coerced[key] = value.astimezone(datetime.timezone.utc)
                elif (
                    isinstance(column_type, sa.Boolean)
                    and isinstance(value, int)
                    and not isinstance(value, bool)
                    and value in (0, 1)
                ):
                    coerced[key] = bool(value)
            except ValueError:
                logger.debug(
                    "Store: could not coerce %s.%s value %r", table_name, key, value
                )
        return coerced

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def fetch_rows(self, table_name: str, primary_key: str) -> list[dict[str, Any]]:
        """Return every row of a table as a field map, ordered by primary key."""
        table = self.table(table_name)
        stmt = sa.select(table).order_by(table.c[primary_key])
        try:
            result = self.session.execute(stmt)
        except FATAL_STORE_ERRORS as exc:
            raise UnitOfWorkFailure(f"Store unavailable while reading {table_name}: {exc}") from exc
        return [dict(row) for row in result.mappings()]

    def get_row(self, table_name: str, primary_key: str, record_id: Any) -> dict[str, Any] | None:
        table = self.table(table_name)
        stmt = sa.select(table).where(table.c[primary_key] == record_id)
        try:
            row = self.session.execute(stmt).mappings().first()
        except FATAL_STORE_ERRORS as exc:
            raise UnitOfWorkFailure(f"Store unavailable while reading {table_name}: {exc}") from exc
        return dict(row) if row is not None else None

    # ------------------------------------------------------------------
    # Writes (SQLAlchemy errors propagate; the executor classifies them)
    # ------------------------------------------------------------------

    def insert_row(self, table_name: str, row: dict[str, Any]) -> None:
        self.session.execute(sa.insert(self.table(table_name)).values(row))

    def update_row(
        self, table_name: str, primary_key: str, record_id: Any, row: dict[str, Any]
    ) -> None:
        table = self.table(table_name)
        values = {key: value for key, value in row.items() if key != primary_key}
        if not values:
            return
        self.session.execute(
            sa.update(table).where(table.c[primary_key] == record_id).values(values)
        )

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        with self.session.begin_nested():
            yield

    @contextmanager
    def unit_of_work(self) -> Iterator[SqlStore]:
        if self._uow_active:
            yield self
            return

        self._uow_active = True
        try:
            if not self.session.in_transaction():
                self.session.begin()
            yield self
            try:
                self.session.commit()
            except FATAL_STORE_ERRORS as exc:
                raise UnitOfWorkFailure(f"Store failed to commit the merge: {exc}") from exc
        except BaseException:
            self.session.rollback()
            raise
        finally:
            self._uow_active = False

    def discard(self) -> None:
        """End a read-only transaction without keeping anything."""
        if self.session.in_transaction():
            self.session.rollback()
