"""Field-level change tracking for configuration objects.

Configuration objects (system settings, notification settings) are flat
field maps that can be edited from two places.  This module computes the
differences between two versions, produces minimal patches to send over the
wire, applies partial updates with an audit trail and reconciles two
independently edited copies.

Everything here is pure: inputs are never mutated and there is no shared
state, so the functions are safe to call from any thread.
"""

from __future__ import annotations

import datetime
import enum
import logging
from collections import Counter
from typing import Any, Callable, Iterable, Mapping

from pydantic import BaseModel, ConfigDict, Field

from snapmerge.merge.values import deep_equal

logger = logging.getLogger(__name__)

ConfigObject = Mapping[str, Any]

_MISSING = object()


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _same(a: Any, b: Any) -> bool:
    if a is _MISSING or b is _MISSING:
        return a is b
    try:
        return deep_equal(a, b)
    except TypeError:
        return a == b


def _present(value: Any) -> Any:
    return None if value is _MISSING else value


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class ChangeSource(str, enum.Enum):
    LOCAL = "local"
    REMOTE = "remote"
    IMPORT = "import"


class ChangeRecord(BaseModel):
    """One field transition, immutable once recorded."""

    model_config = ConfigDict(frozen=True)

    field: str
    old_value: Any = None
    new_value: Any = None
    timestamp: datetime.datetime
    source: ChangeSource
    actor: str | None = None


class ConfigPatch(BaseModel):
    """Only the fields whose value changed, mapped to their new value."""

    fields: dict[str, Any] = Field(default_factory=dict)

    def __bool__(self) -> bool:
        return bool(self.fields)

    def __len__(self) -> int:
        return len(self.fields)


class FieldMismatch(BaseModel):
    field: str
    left: Any = None
    right: Any = None


class SyncReport(BaseModel):
    in_sync: bool
    mismatches: list[FieldMismatch] = Field(default_factory=list)


class UpdateMeta(BaseModel):
    source: ChangeSource = ChangeSource.LOCAL
    actor: str | None = None
    timestamp: datetime.datetime | None = None


class IncrementalUpdate(BaseModel):
    merged: dict[str, Any]
    changes: list[ChangeRecord] = Field(default_factory=list)
    added_fields: list[str] = Field(default_factory=list)


class ChangeSummary(BaseModel):
    total: int
    by_source: dict[str, int] = Field(default_factory=dict)
    by_field: dict[str, int] = Field(default_factory=dict)
    summary: str


class ReconcileStrategy(str, enum.Enum):
    LOCAL_PRIORITY = "local_priority"
    REMOTE_PRIORITY = "remote_priority"
    MANUAL = "manual"


class FieldConflict(BaseModel):
    field: str
    local_value: Any = None
    remote_value: Any = None
    resolution: ChangeSource | None = None


class ReconcileResult(BaseModel):
    merged: dict[str, Any] = Field(default_factory=dict)
    changes: list[ChangeRecord] = Field(default_factory=list)
    conflicts: list[FieldConflict] = Field(default_factory=list)
    applied: int = 0
    skipped: int = 0


# Returns "local", "remote" or None to leave the field out of the merge
ConflictResolver = Callable[[FieldConflict], "ChangeSource | str | None"]


# ---------------------------------------------------------------------------
# Diff and patch
# ---------------------------------------------------------------------------


def _ordered_fields(first: ConfigObject, second: ConfigObject) -> list[str]:
    fields = list(first)
    fields.extend(key for key in second if key not in first)
    return fields


def diff(
    base: ConfigObject,
    updated: ConfigObject,
    source: ChangeSource | str,
    actor: str | None = None,
    timestamp: datetime.datetime | None = None,
) -> list[ChangeRecord]:
    """One ChangeRecord per field whose value differs between two versions.

    Fields are visited in ``base`` order, then fields only ``updated`` has.
    A field present on one side only is reported with None on the other.

    Args:
        base:      Version before the edit.
        updated:   Version after the edit.
        source:    Who made the edit.
        actor:     Optional user id for the audit trail.
        timestamp: Comparison time; defaults to now (UTC).
    """
    stamp = timestamp or _now()
    source = ChangeSource(source)
    changes: list[ChangeRecord] = []
    for field in _ordered_fields(base, updated):
        old = base.get(field, _MISSING)
        new = updated.get(field, _MISSING)
        if _same(old, new):
            continue
        changes.append(
            ChangeRecord(
                field=field,
                old_value=_present(old),
                new_value=_present(new),
                timestamp=stamp,
                source=source,
                actor=actor,
            )
        )
    return changes


def patch(base: ConfigObject, updated: ConfigObject) -> ConfigPatch:
    """Minimal patch turning ``base`` into ``updated``.

    Removed fields cannot be expressed as ``{field: newValue}`` and are left
    out.
    """
    return ConfigPatch(
        fields={
            field: value
            for field, value in updated.items()
            if not _same(base.get(field, _MISSING), value)
        }
    )


def apply_incremental_update(
    base: ConfigObject,
    partial: ConfigPatch | Mapping[str, Any],
    meta: UpdateMeta | None = None,
) -> IncrementalUpdate:
    """Apply only the fields in ``partial`` on top of a copy of ``base``.

    Fields whose value is unchanged produce no change record.  Fields that
    ``base`` did not have are listed in ``added_fields``.
    """
    meta = meta or UpdateMeta()
    fields = partial.fields if isinstance(partial, ConfigPatch) else partial
    stamp = meta.timestamp or _now()

    merged = dict(base)
    changes: list[ChangeRecord] = []
    added: list[str] = []
    for field, value in fields.items():
        old = base.get(field, _MISSING)
        if _same(old, value):
            continue
        if old is _MISSING:
            added.append(field)
        merged[field] = value
        changes.append(
            ChangeRecord(
                field=field,
                old_value=_present(old),
                new_value=value,
                timestamp=stamp,
                source=meta.source,
                actor=meta.actor,
            )
        )

    if changes:
        logger.info(
            "Tracker: applied %d field change(s) from %s (%d new field(s))",
            len(changes),
            meta.source.value,
            len(added),
        )
    return IncrementalUpdate(merged=merged, changes=changes, added_fields=added)


# ---------------------------------------------------------------------------
# Change trails
# ---------------------------------------------------------------------------


def merge_change_records(*sets: Iterable[ChangeRecord]) -> list[ChangeRecord]:
    """Concatenate change sets into one timeline, oldest first.

    The sort is stable: records with equal timestamps keep their input order.
    """
    combined = [record for records in sets for record in records]
    return sorted(combined, key=lambda record: record.timestamp)


def latest_per_field(changes: Iterable[ChangeRecord]) -> list[ChangeRecord]:
    """Newest record for each field, newest first."""
    latest: dict[str, ChangeRecord] = {}
    for record in changes:
        existing = latest.get(record.field)
        if existing is None or record.timestamp > existing.timestamp:
            latest[record.field] = record
    return sorted(latest.values(), key=lambda record: record.timestamp, reverse=True)


def summarize_changes(changes: Iterable[ChangeRecord]) -> ChangeSummary:
    records = list(changes)
    by_source = Counter(record.source.value for record in records)
    by_field = Counter(record.field for record in records)
    parts = ", ".join(f"{count} from {source}" for source, count in by_source.items())
    summary = f"{len(records)} changes"
    if parts:
        summary += f": {parts}"
    return ChangeSummary(
        total=len(records),
        by_source=dict(by_source),
        by_field=dict(by_field),
        summary=summary,
    )


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------


def validate_sync(a: ConfigObject, b: ConfigObject) -> SyncReport:
    """Compare two supposedly mirrored objects without merging them."""
    mismatches = [
        FieldMismatch(field=field, left=a.get(field), right=b.get(field))
        for field in _ordered_fields(a, b)
        if not _same(a.get(field, _MISSING), b.get(field, _MISSING))
    ]
    if mismatches:
        logger.debug(
            "Tracker: objects out of sync on %s", [m.field for m in mismatches]
        )
    return SyncReport(in_sync=not mismatches, mismatches=mismatches)


def reconcile(
    local: ConfigObject,
    remote: ConfigObject,
    strategy: ReconcileStrategy | str = ReconcileStrategy.REMOTE_PRIORITY,
    resolver: ConflictResolver | None = None,
) -> ReconcileResult:
    """Merge two independently edited copies field by field.

    A field only one side has is taken from that side.  Equal fields are
    kept and counted as skipped.  For fields that differ the strategy picks
    a side; under MANUAL the resolver decides, and a None answer leaves the
    field out of ``merged`` (counted as skipped).  MANUAL without a resolver
    falls back to the remote value.
    """
    strategy = ReconcileStrategy(strategy)
    stamp = _now()
    result = ReconcileResult()

    for field in _ordered_fields(local, remote):
        local_value = local.get(field, _MISSING)
        remote_value = remote.get(field, _MISSING)

        if local_value is _MISSING or remote_value is _MISSING:
            source = ChangeSource.REMOTE if local_value is _MISSING else ChangeSource.LOCAL
            value = remote_value if local_value is _MISSING else local_value
            result.merged[field] = value
            result.changes.append(
                ChangeRecord(field=field, new_value=value, timestamp=stamp, source=source)
            )
            result.applied += 1
            continue

        if _same(local_value, remote_value):
            result.merged[field] = local_value
            result.skipped += 1
            continue

        conflict = FieldConflict(field=field, local_value=local_value, remote_value=remote_value)
        source = _pick_side(strategy, conflict, resolver)
        if source is None:
            logger.info("Tracker: field %s left for manual resolution", field)
            result.conflicts.append(conflict)
            result.skipped += 1
            continue

        conflict.resolution = source
        result.conflicts.append(conflict)
        if source is ChangeSource.LOCAL:
            value, old = local_value, remote_value
        else:
            value, old = remote_value, local_value
        result.merged[field] = value
        result.changes.append(
            ChangeRecord(field=field, old_value=old, new_value=value, timestamp=stamp, source=source)
        )
        result.applied += 1

    logger.debug(
        "Tracker: reconciled %d field(s) (applied=%d, skipped=%d, conflicts=%d)",
        len(result.merged),
        result.applied,
        result.skipped,
        len(result.conflicts),
    )
    return result


def _pick_side(
    strategy: ReconcileStrategy,
    conflict: FieldConflict,
    resolver: ConflictResolver | None,
) -> ChangeSource | None:
    if strategy is ReconcileStrategy.LOCAL_PRIORITY:
        return ChangeSource.LOCAL
    if strategy is ReconcileStrategy.REMOTE_PRIORITY or resolver is None:
        return ChangeSource.REMOTE
    answer = resolver(conflict)
    if answer is None:
        return None
    side = ChangeSource(answer)
    if side is ChangeSource.IMPORT:
        raise ValueError(f"Resolver must answer 'local' or 'remote', got {answer!r}")
    return side
