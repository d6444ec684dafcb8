"""Conflict analysis: classify every incoming row against the live store.

For each selected table, each incoming row is looked up by primary key:
  not found         → NEW          (always accepted, whatever the policy)
  found, equal      → IDENTICAL    (no-op)
  found, differing  → CONFLICTING  (resolution proposed by the merge policy)

Equality is evaluated over the fields the incoming row carries, after the
row has been coerced to the store's column types.  Fields the store has but
the artifact does not are never touched by a write, so they cannot make two
rows differ.

Policy outcomes for CONFLICTING rows:
  INCOMING_WINS  — write the incoming row as-is
  CURRENT_WINS   — keep the current row, write nothing
  MERGE_FIELDS   — field-by-field union; incoming wins per field unless
                   preserve_newer is set and the current row's last-modified
                   timestamp is strictly newer, in which case current's value
                   is kept
  MANUAL         — left UNDECIDED for the caller (see apply_overrides)

Analysis is read-only: nothing here writes to the store.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from snapmerge.errors import PolicyViolation
from snapmerge.merge.models import (
    AnalysisResult,
    BackupArtifact,
    ConflictOverride,
    ConflictRecord,
    ConflictResolution,
    MergeOptions,
    OverrideAction,
    Resolution,
    Row,
    RowClass,
    RowDecision,
    TableAnalysis,
)
from snapmerge.merge.schema import TableRegistry, TableSpec
from snapmerge.merge.store import SqlStore
from snapmerge.merge.values import FieldValue, deep_equal, is_newer

logger = logging.getLogger(__name__)

_POLICY_RESOLUTION = {
    ConflictResolution.INCOMING_WINS: Resolution.INCOMING_WINS,
    ConflictResolution.CURRENT_WINS: Resolution.CURRENT_WINS,
    ConflictResolution.MERGE_FIELDS: Resolution.MERGE_FIELDS,
    ConflictResolution.MANUAL: Resolution.UNDECIDED,
}


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


def validate_options(options: MergeOptions, registry: TableRegistry) -> None:
    """Reject invalid MergeOptions before any analysis starts.

    Filters naming a table the registry does not manage are allowed (an
    artifact may carry tables this store never merges) and only logged.

    Raises:
        PolicyViolation: If only_tables minus skip_tables is empty.
    """
    named = set(options.skip_tables) | set(options.only_tables or ())
    unknown = sorted(name for name in named if name not in registry)
    if unknown:
        logger.warning(
            "Analyzer: table filter(s) name unmanaged table(s): %s", ", ".join(unknown)
        )

    if options.only_tables is not None:
        remaining = set(options.only_tables) - set(options.skip_tables)
        if not remaining:
            raise PolicyViolation(
                "only_tables minus skip_tables leaves no table to merge"
            )


def select_tables(options: MergeOptions, names: Iterable[str]) -> tuple[list[str], list[str]]:
    """Split table names into (selected, filtered_out) per the filter rules.

    only_tables takes precedence over skip_tables, minus any explicitly
    skipped name.  Input order is preserved.
    """
    selected: list[str] = []
    filtered: list[str] = []
    for name in names:
        if options.only_tables is not None and name not in options.only_tables:
            filtered.append(name)
        elif name in options.skip_tables:
            filtered.append(name)
        else:
            selected.append(name)
    return selected, filtered


# ---------------------------------------------------------------------------
# Row comparison and policy
# ---------------------------------------------------------------------------


def differing_fields(current: Row, incoming: Row) -> list[str]:
    """Fields carried by ``incoming`` whose value differs from ``current``."""
    fields: list[str] = []
    for key, value in incoming.items():
        if key not in current:
            fields.append(key)
            continue
        try:
            equal = deep_equal(current[key], value)
        except TypeError:
            equal = False
        if not equal:
            fields.append(key)
    return fields


def merge_fields(
    current: Row,
    incoming: Row,
    timestamp_field: str | None,
    preserve_newer: bool,
) -> Row:
    """Field-by-field union of two versions of the same row.

    Fields present on one side only are kept as-is.  For fields on both
    sides incoming wins, unless preserve_newer is set and current's
    last-modified timestamp is strictly newer than incoming's.
    """
    current_is_newer = bool(
        preserve_newer
        and timestamp_field
        and is_newer(current.get(timestamp_field), incoming.get(timestamp_field))
    )
    merged = dict(current)
    for key, value in incoming.items():
        if key in current and current_is_newer:
            continue
        merged[key] = value
    return merged


def _resolve(
    policy: ConflictResolution,
    current: Row,
    incoming: Row,
    spec: TableSpec,
    preserve_newer: bool,
) -> tuple[Resolution, Row | None]:
    resolution = _POLICY_RESOLUTION[policy]
    if resolution is Resolution.INCOMING_WINS:
        return resolution, dict(incoming)
    if resolution is Resolution.MERGE_FIELDS:
        return resolution, merge_fields(current, incoming, spec.timestamp_field, preserve_newer)
    return resolution, None


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------


def analyze(
    store: SqlStore,
    artifact: BackupArtifact,
    options: MergeOptions,
    registry: TableRegistry,
) -> AnalysisResult:
    """Classify every incoming row and propose a resolution per the policy.

    Args:
        store:    Live store to compare against (read only).
        artifact: Extracted backup artifact.
        options:  Merge options; validated here.
        registry: Table specs for the managed schema.

    Returns:
        AnalysisResult with per-table counts, row decisions and conflicts.

    Raises:
        PolicyViolation: If the options are invalid.
    """
    validate_options(options, registry)
    selected, filtered = select_tables(options, artifact.table_names)
    result = AnalysisResult(options=options, skipped_tables=filtered)

    logger.info(
        "Analyzer: starting (policy=%s, preserve_newer=%s, tables=%s, filtered=%s)",
        options.conflict_resolution.value,
        options.preserve_newer,
        selected,
        filtered,
    )

    for name in selected:
        snapshot = artifact.table(name)
        table = TableAnalysis(name=name, rows=len(snapshot.rows))
        result.tables[name] = table

        spec = registry.get(name)
        if spec is None or not store.has_table(name):
            table.error = f"Table '{name}' is not managed by this store"
        elif snapshot.primary_key_field != spec.primary_key:
            table.error = (
                f"Artifact primary key '{snapshot.primary_key_field}' does not match "
                f"store primary key '{spec.primary_key}'"
            )
        if table.error:
            logger.warning("Analyzer: %s; %d row(s) will be reported as errors", table.error, table.rows)
            table.decisions = [
                RowDecision(record_id=row.get(snapshot.primary_key_field), classification=RowClass.UNMANAGED)
                for row in snapshot.rows
            ]
            continue

        _analyze_table(store, spec, snapshot.rows, options, table, result.conflicts)

    logger.info(
        "Analyzer: done (new=%d, identical=%d, conflicting=%d)",
        result.total_new,
        result.total_identical,
        result.total_conflicting,
    )
    return result


def _analyze_table(
    store: SqlStore,
    spec: TableSpec,
    rows: list[Row],
    options: MergeOptions,
    table: TableAnalysis,
    conflicts: list[ConflictRecord],
) -> None:
    current_rows = {
        FieldValue.of(row[spec.primary_key]): row
        for row in store.fetch_rows(spec.name, spec.primary_key)
    }

    for raw in rows:
        incoming = store.coerce_row(spec.name, raw)
        record_id = incoming[spec.primary_key]
        current = current_rows.get(FieldValue.of(record_id))

        if current is None:
            table.new += 1
            table.decisions.append(
                RowDecision(record_id=record_id, classification=RowClass.NEW, row=incoming)
            )
            continue

        changed = differing_fields(current, incoming)
        if not changed:
            table.identical += 1
            table.decisions.append(
                RowDecision(record_id=record_id, classification=RowClass.IDENTICAL)
            )
            continue

        table.conflicting += 1
        resolution, row = _resolve(
            options.conflict_resolution, current, incoming, spec, options.preserve_newer
        )
        conflict = ConflictRecord(
            table=spec.name,
            record_id=record_id,
            current_value=current,
            incoming_value=incoming,
            conflict_fields=changed,
            proposed_resolution=resolution,
        )
        conflicts.append(conflict)
        table.decisions.append(
            RowDecision(
                record_id=record_id,
                classification=RowClass.CONFLICTING,
                row=row,
                conflict=conflict,
            )
        )
        logger.debug(
            "Analyzer: %s[%s] conflicts on %s → %s",
            spec.name,
            record_id,
            changed,
            resolution.value,
        )


# ---------------------------------------------------------------------------
# Manual overrides
# ---------------------------------------------------------------------------


def override_key(table: str, record_id: Any) -> str:
    """Key used in conflict_overrides maps: ``"<table>:<recordId>"``."""
    return f"{table}:{record_id}"


def _override_keys(table: str, record_id: Any) -> tuple[str, str]:
    # The admin merge endpoint keys decisions as "<table>_<recordId>"
    return override_key(table, record_id), f"{table}_{record_id}"


def apply_overrides(
    analysis: AnalysisResult,
    overrides: Mapping[str, ConflictOverride | Mapping[str, Any]] | None,
) -> AnalysisResult:
    """Return a copy of ``analysis`` with caller decisions for MANUAL conflicts.

    ``skip`` keeps the current row; ``use_custom`` writes the incoming row
    with ``custom_data`` laid over it.  Overrides that match no MANUAL
    conflict are logged and ignored.  Conflicts left UNDECIDED are skipped
    at apply time and counted as skipped_unresolved.

    Keys are ``"<table>:<recordId>"``; ``"<table>_<recordId>"`` is accepted
    as well.
    """
    resolved = analysis.model_copy(deep=True)
    if not overrides:
        return resolved

    parsed = {
        key: value if isinstance(value, ConflictOverride) else ConflictOverride.model_validate(value)
        for key, value in overrides.items()
    }
    consumed: set[str] = set()
    conflicts: list[ConflictRecord] = []

    for table in resolved.tables.values():
        for decision in table.decisions:
            conflict = decision.conflict
            if conflict is None:
                continue
            key = next(
                (k for k in _override_keys(table.name, decision.record_id) if k in parsed),
                None,
            )
            override = parsed.get(key) if key is not None else None
            if override is not None and conflict.proposed_resolution is Resolution.UNDECIDED:
                consumed.add(key)
                if override.action is OverrideAction.SKIP:
                    conflict.final_resolution = Resolution.SKIP
                    decision.row = None
                else:
                    conflict.final_resolution = Resolution.USE_CUSTOM
                    decision.row = {**conflict.incoming_value, **(override.custom_data or {})}
            conflicts.append(conflict)

    resolved.conflicts = conflicts

    for key in sorted(set(parsed) - consumed):
        logger.warning(
            "Analyzer: override %s matches no manual conflict, ignored", key
        )
    return resolved
