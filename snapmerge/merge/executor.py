"""Merge execution: apply analyzed row decisions to the store atomically.

Tables are processed in the registry's parent-before-child order; rows within
a table in snapshot order.  Per row:

  NEW / resolved CONFLICTING  → insert or update inside a SAVEPOINT
                                success: imported += 1
                                failure: rolled back to the savepoint,
                                errors += 1, ErrorRecord appended, continue
  IDENTICAL / CURRENT_WINS /
  SKIP                        → skipped += 1, no write
  UNDECIDED (manual, no
  caller override)            → skipped += 1 and skipped_unresolved += 1,
                                logged at WARNING
  UNMANAGED table             → errors += 1 per row

For every table: imported + skipped + errors == rows.

Fatal (UnitOfWorkFailure, whole unit rolled back):
  - the store becomes unavailable (operational / connection errors)
  - a row references, through a foreign key, a NEW parent row that failed
    earlier in the same merge

Dry runs perform the same pass without any writes and mark the result
simulated.
"""

from __future__ import annotations

import datetime
import logging
from contextlib import nullcontext

from sqlalchemy import exc as sa_exc

from snapmerge.errors import RecordApplyError, UnitOfWorkFailure
from snapmerge.merge.models import (
    AnalysisResult,
    ArtifactMetadata,
    BackupArtifact,
    ConflictRecord,
    ErrorRecord,
    MergeResult,
    Resolution,
    RowClass,
    RowDecision,
    TableAnalysis,
    TableSnapshot,
    TableStats,
)
from snapmerge.merge.schema import TableRegistry, TableSpec
from snapmerge.merge.store import FATAL_STORE_ERRORS, SqlStore
from snapmerge.merge.values import FieldValue, to_wire

logger = logging.getLogger(__name__)

FORMAT_VERSION = "1.0"


class _FailedParents:
    """Primary keys of NEW rows that failed to insert, per table."""

    def __init__(self) -> None:
        self._keys: dict[str, set[FieldValue]] = {}

    def add(self, table: str, record_id: object) -> None:
        self._keys.setdefault(table, set()).add(FieldValue.of(record_id))

    def check(self, spec: TableSpec, decision: RowDecision) -> None:
        """Reject a row that references a NEW parent which failed earlier.

        Raises:
            UnitOfWorkFailure: If a foreign key points at a failed parent.
            RecordApplyError:  If a foreign key value cannot be compared.
        """
        if not self._keys or decision.row is None:
            return
        for field, parent in spec.references.items():
            value = decision.row.get(field)
            if value is None:
                continue
            try:
                key = FieldValue.of(value)
            except TypeError as exc:
                raise RecordApplyError(spec.name, decision.record_id, f"{field}: {exc}") from exc
            if key in self._keys.get(parent, ()):
                raise UnitOfWorkFailure(
                    f"{spec.name}[{decision.record_id}] references {parent}[{value}], "
                    f"which failed to import in this merge",
                    table=spec.name,
                    record_id=decision.record_id,
                )


def apply(
    store: SqlStore,
    analysis: AnalysisResult,
    artifact: BackupArtifact,
    registry: TableRegistry,
    dry_run: bool = False,
) -> MergeResult:
    """Apply analysis decisions inside one unit of work.

    Args:
        store:    Store to write to.
        analysis: Output of analyze() (with apply_overrides() already applied
                  when the policy is MANUAL).
        artifact: The artifact that was analyzed; supplies row totals.
        registry: Table specs providing processing order and references.
        dry_run:  Count only; issue no writes.

    Returns:
        MergeResult with per-table statistics, final conflict resolutions and
        the list of per-record errors.

    Raises:
        UnitOfWorkFailure: On store unavailability or a failed dependency-
                           required row.  The unit of work is rolled back.
    """
    result = MergeResult(simulated=dry_run)
    conflicts: list[ConflictRecord] = []
    failed_parents = _FailedParents()

    managed = registry.order(analysis.tables)
    unmanaged = [name for name in analysis.tables if name not in managed]

    logger.info(
        "Executor: applying %d table(s)%s in order %s",
        len(analysis.tables),
        " (dry run)" if dry_run else "",
        managed + unmanaged,
    )

    # Dry runs never open a unit of work: there is nothing to commit
    scope = nullcontext() if dry_run else store.unit_of_work()
    with scope:
        for name in managed + unmanaged:
            table = analysis.tables[name]
            spec = registry.get(name)
            snapshot = artifact.table(name)
            stats = TableStats(rows=len(snapshot.rows) if snapshot is not None else table.rows)
            result.per_table[name] = stats

            if table.error or spec is None:
                _account_unmanaged(table, stats, result)
                continue

            for decision in table.decisions:
                if decision.conflict is not None:
                    conflicts.append(_finalize(decision.conflict))
                if not decision.writes:
                    stats.skipped += 1
                    if decision.resolution is Resolution.UNDECIDED:
                        stats.skipped_unresolved += 1
                    continue

                try:
                    failed_parents.check(spec, decision)
                    if not dry_run:
                        _write(store, spec, decision)
                except RecordApplyError as exc:
                    stats.errors += 1
                    result.errors.append(
                        ErrorRecord(table=name, record_id=decision.record_id, message=exc.message)
                    )
                    logger.warning("Executor: record failed: %s", exc)
                    if decision.classification is RowClass.NEW:
                        failed_parents.add(name, decision.record_id)
                else:
                    stats.imported += 1

            if stats.skipped_unresolved:
                logger.warning(
                    "Executor: %d manual conflict(s) in %s had no caller decision; "
                    "incoming rows were NOT applied",
                    stats.skipped_unresolved,
                    name,
                )
            if not stats.balanced:
                logger.error("Executor: accounting mismatch for %s: %s", name, stats)

    result.conflicts = conflicts
    logger.info(
        "Executor: done (imported=%d, skipped=%d, errors=%d, simulated=%s)",
        result.total_imported,
        result.total_skipped,
        result.total_errors,
        dry_run,
    )
    return result


def _finalize(conflict: ConflictRecord) -> ConflictRecord:
    final = conflict.final_resolution
    if final is None:
        if conflict.proposed_resolution is Resolution.UNDECIDED:
            final = Resolution.SKIPPED_UNRESOLVED
        else:
            final = conflict.proposed_resolution
    return conflict.model_copy(update={"final_resolution": final})


def _account_unmanaged(table: TableAnalysis, stats: TableStats, result: MergeResult) -> None:
    message = table.error or f"Table '{table.name}' is not managed by this store"
    for decision in table.decisions:
        stats.errors += 1
        result.errors.append(
            ErrorRecord(table=table.name, record_id=decision.record_id, message=message)
        )


def _write(store: SqlStore, spec: TableSpec, decision: RowDecision) -> None:
    """Write one row inside a savepoint, translating failures.

    Raises:
        RecordApplyError:  Recoverable per-row failure (constraint violation,
                           type mismatch, unknown column).
        UnitOfWorkFailure: The store itself failed.
    """
    row = store.coerce_row(spec.name, decision.row or {})
    try:
        with store.savepoint():
            if decision.classification is RowClass.NEW:
                store.insert_row(spec.name, row)
            else:
                store.update_row(spec.name, spec.primary_key, decision.record_id, row)
    except FATAL_STORE_ERRORS as exc:
        raise UnitOfWorkFailure(
            f"Store failed while writing {spec.name}[{decision.record_id}]: {exc}",
            table=spec.name,
            record_id=decision.record_id,
        ) from exc
    except sa_exc.SQLAlchemyError as exc:
        message = str(getattr(exc, "orig", None) or exc).splitlines()[0]
        raise RecordApplyError(spec.name, decision.record_id, message) from exc


# ---------------------------------------------------------------------------
# Snapshot creation
# ---------------------------------------------------------------------------


def create_incremental_snapshot(
    store: SqlStore,
    registry: TableRegistry,
    exported_by: str | None = None,
) -> BackupArtifact:
    """Capture every registered table's current rows as a fresh artifact.

    Pure read: tables are read in dependency order, rows ordered by primary
    key, values converted to their JSON-safe wire form.
    """
    tables: list[TableSnapshot] = []
    counts: dict[str, int] = {}
    for name in registry.order():
        if not store.has_table(name):
            logger.warning("Executor: registered table %s missing from store, skipped", name)
            continue
        spec = registry.spec(name)
        rows = [to_wire(row) for row in store.fetch_rows(name, spec.primary_key)]
        tables.append(TableSnapshot(name=name, primary_key_field=spec.primary_key, rows=rows))
        counts[name] = len(rows)
        logger.debug("Executor: captured %d row(s) from %s", len(rows), name)

    artifact = BackupArtifact(
        metadata=ArtifactMetadata(
            exported_at=datetime.datetime.now(datetime.timezone.utc),
            exported_by=exported_by,
            format_version=FORMAT_VERSION,
            record_counts=counts,
        ),
        tables=tables,
    )
    logger.info(
        "Executor: incremental snapshot created (%d tables, %d rows)",
        len(tables),
        artifact.total_rows,
    )
    return artifact
