"""Table registry and parent-before-child processing order.

The executor never hard-codes a table list.  Instead each table is described
by a TableSpec (primary key, last-modified column, dependencies, foreign-key
references) and the TableRegistry derives a deterministic topological order
from those dependencies:

  - a table is always ordered after every table it depends on
  - among tables whose dependencies are satisfied, registration order wins

The registry can be built explicitly from configuration or derived from
SQLAlchemy MetaData foreign keys (from_metadata).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy import MetaData

from snapmerge.errors import SchemaOrderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TableSpec:
    """Merge-relevant description of one table.

    Attributes:
        name:            Table name as it appears in artifacts and the store.
        primary_key:     Primary-key field used to match incoming rows.
        timestamp_field: Last-modified column compared by preserve_newer
                         (None disables the comparison for this table).
        depends_on:      Tables that must be processed before this one.
        references:      Foreign-key field → referenced (parent) table.
    """

    name: str
    primary_key: str = "id"
    timestamp_field: str | None = "updated_at"
    depends_on: frozenset[str] = field(default_factory=frozenset)
    references: dict[str, str] = field(default_factory=dict, hash=False)


class TableRegistry:
    """Ordered collection of TableSpecs with dependency validation."""

    def __init__(self, specs: Iterable[TableSpec]) -> None:
        self._specs: dict[str, TableSpec] = {}
        for spec in specs:
            if spec.name in self._specs:
                raise SchemaOrderError(f"Table '{spec.name}' registered twice")
            self._specs[spec.name] = spec

        for spec in self._specs.values():
            missing = set(spec.depends_on) | set(spec.references.values())
            missing -= set(self._specs)
            if missing:
                raise SchemaOrderError(
                    f"Table '{spec.name}' depends on unregistered table(s): "
                    f"{', '.join(sorted(missing))}"
                )

        # Validate acyclicity eagerly so misconfiguration fails at startup
        self._order = self._topological_order()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __iter__(self):
        return iter(self._order)

    def __len__(self) -> int:
        return len(self._specs)

    def get(self, name: str) -> TableSpec | None:
        return self._specs.get(name)

    def spec(self, name: str) -> TableSpec:
        try:
            return self._specs[name]
        except KeyError:
            raise KeyError(f"Table '{name}' is not registered") from None

    @property
    def names(self) -> list[str]:
        return list(self._order)

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    def order(self, names: Iterable[str] | None = None) -> list[str]:
        """Return registered table names in parent-before-child order.

        Args:
            names: Optional subset to order.  Unregistered names are ignored;
                   callers handle them separately.
        """
        if names is None:
            return list(self._order)
        wanted = set(names)
        return [name for name in self._order if name in wanted]

    def _topological_order(self) -> list[str]:
        position = {name: idx for idx, name in enumerate(self._specs)}
        pending = {
            name: set(spec.depends_on) | set(spec.references.values())
            for name, spec in self._specs.items()
        }
        # Self-references (e.g. parent_id on the same table) do not constrain order
        for name, deps in pending.items():
            deps.discard(name)

        ordered: list[str] = []
        while pending:
            ready = sorted(
                (name for name, deps in pending.items() if not deps),
                key=position.__getitem__,
            )
            if not ready:
                raise SchemaOrderError(
                    "Cyclic table dependencies: " + ", ".join(sorted(pending))
                )
            head = ready[0]
            ordered.append(head)
            del pending[head]
            for deps in pending.values():
                deps.discard(head)
        return ordered

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_metadata(
        cls,
        metadata: MetaData,
        timestamp_field: str | None = "updated_at",
        only: Iterable[str] | None = None,
    ) -> TableRegistry:
        """Derive specs (primary key, references, dependencies) from MetaData.

        Tables with composite primary keys are skipped with a warning; rows
        are matched on a single primary-key field.
        """
        wanted = set(only) if only is not None else None
        tables = []
        for table in metadata.tables.values():
            if wanted is not None and table.name not in wanted:
                continue
            if len(table.primary_key.columns) != 1:
                logger.warning(
                    "Registry: table %s has %d primary-key columns, skipped",
                    table.name,
                    len(table.primary_key.columns),
                )
                continue
            tables.append(table)
        eligible = {table.name for table in tables}

        specs: list[TableSpec] = []
        for table in tables:
            pk_columns = list(table.primary_key.columns)
            references: dict[str, str] = {}
            for fk in table.foreign_keys:
                parent = fk.column.table.name
                if parent in eligible:
                    references[fk.parent.name] = parent
            ts_field = timestamp_field if timestamp_field and timestamp_field in table.c else None
            specs.append(
                TableSpec(
                    name=table.name,
                    primary_key=pk_columns[0].name,
                    timestamp_field=ts_field,
                    depends_on=frozenset(references.values()) - {table.name},
                    references=references,
                )
            )
        return cls(specs)


def default_registry(timestamp_field: str | None = None) -> TableRegistry:
    """Registry for the bundled registration schema."""
    from snapmerge.config import settings
    from snapmerge.db.models import Base

    return TableRegistry.from_metadata(
        Base.metadata,
        timestamp_field=timestamp_field or settings.timestamp_field,
    )
