"""Pydantic models for merge-engine entities.

Wire names are camelCase (exportedAt, primaryKeyField, ...) to match the
export mechanism's documents.  Artifacts written by the older export format
(version / tableName / primaryKey / records) are accepted on input as well.

Row values are kept as an open field map (dict[str, Any]); comparison goes
through snapmerge.merge.values, never through these models.
"""

from __future__ import annotations

import datetime
import enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

Row = dict[str, Any]


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ---------------------------------------------------------------------------
# Artifact
# ---------------------------------------------------------------------------


class ArtifactMetadata(_WireModel):
    exported_at: datetime.datetime
    exported_by: str | None = None
    format_version: str = Field(
        default="1.0",
        validation_alias=AliasChoices("formatVersion", "format_version", "version"),
    )
    record_counts: dict[str, int] = Field(default_factory=dict)


class TableSnapshot(_WireModel):
    name: str = Field(validation_alias=AliasChoices("name", "tableName", "table_name"))
    primary_key_field: str = Field(
        default="id",
        validation_alias=AliasChoices("primaryKeyField", "primary_key_field", "primaryKey"),
    )
    rows: list[Row] = Field(
        default_factory=list,
        validation_alias=AliasChoices("rows", "records"),
    )


class BackupArtifact(_WireModel):
    """Immutable once read; the extractor hands out frozen instances."""

    model_config = ConfigDict(frozen=True)

    metadata: ArtifactMetadata
    tables: list[TableSnapshot] = Field(default_factory=list)

    def table(self, name: str) -> TableSnapshot | None:
        for snapshot in self.tables:
            if snapshot.name == name:
                return snapshot
        return None

    @property
    def table_names(self) -> list[str]:
        return [snapshot.name for snapshot in self.tables]

    @property
    def total_rows(self) -> int:
        return sum(len(snapshot.rows) for snapshot in self.tables)


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


class ConflictResolution(str, enum.Enum):
    """Merge policy applied to rows that exist on both sides and differ."""

    INCOMING_WINS = "incoming_wins"
    CURRENT_WINS = "current_wins"
    MERGE_FIELDS = "merge_fields"
    MANUAL = "manual"

    @classmethod
    def _missing_(cls, value: object):
        # Names used by the older admin backup page
        aliases = {"backup_wins": cls.INCOMING_WINS}
        if isinstance(value, str):
            normalized = value.strip().lower().replace("-", "_")
            if normalized in aliases:
                return aliases[normalized]
            for member in cls:
                if member.value == normalized:
                    return member
        return None


class MergeOptions(_WireModel):
    conflict_resolution: ConflictResolution = ConflictResolution.INCOMING_WINS
    preserve_newer: bool = False
    skip_tables: set[str] = Field(default_factory=set)
    only_tables: set[str] | None = None
    dry_run: bool = False


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------


class Resolution(str, enum.Enum):
    """Proposed or final outcome for one conflicting row."""

    INCOMING_WINS = "incoming_wins"
    CURRENT_WINS = "current_wins"
    MERGE_FIELDS = "merge_fields"
    UNDECIDED = "undecided"
    SKIP = "skip"
    USE_CUSTOM = "use_custom"
    SKIPPED_UNRESOLVED = "skipped_unresolved"


class RowClass(str, enum.Enum):
    NEW = "new"
    IDENTICAL = "identical"
    CONFLICTING = "conflicting"
    UNMANAGED = "unmanaged"


class ConflictRecord(_WireModel):
    table: str
    record_id: Any
    current_value: Row
    incoming_value: Row
    conflict_fields: list[str] = Field(default_factory=list)
    proposed_resolution: Resolution
    final_resolution: Resolution | None = None


class OverrideAction(str, enum.Enum):
    SKIP = "skip"
    USE_CUSTOM = "use_custom"

    @classmethod
    def _missing_(cls, value: object):
        if isinstance(value, str):
            normalized = value.strip().lower().replace("-", "_")
            if normalized == "usecustom":
                return cls.USE_CUSTOM
            for member in cls:
                if member.value == normalized:
                    return member
        return None


class ConflictOverride(_WireModel):
    action: OverrideAction
    custom_data: Row | None = None


class RowDecision(BaseModel):
    """What the executor should do with one incoming row.

    ``row`` is the field map to write (None when nothing is written).
    """

    record_id: Any
    classification: RowClass
    row: Row | None = None
    conflict: ConflictRecord | None = None

    @property
    def resolution(self) -> Resolution | None:
        if self.conflict is None:
            return None
        return self.conflict.final_resolution or self.conflict.proposed_resolution

    @property
    def writes(self) -> bool:
        if self.classification is RowClass.NEW:
            return True
        if self.classification is RowClass.CONFLICTING:
            return self.resolution in (
                Resolution.INCOMING_WINS,
                Resolution.MERGE_FIELDS,
                Resolution.USE_CUSTOM,
            )
        return False


class TableAnalysis(_WireModel):
    name: str
    rows: int = 0
    new: int = 0
    identical: int = 0
    conflicting: int = 0
    error: str | None = None
    decisions: list[RowDecision] = Field(default_factory=list, exclude=True)


class AnalysisResult(_WireModel):
    options: MergeOptions
    tables: dict[str, TableAnalysis] = Field(default_factory=dict)
    conflicts: list[ConflictRecord] = Field(default_factory=list)
    skipped_tables: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def total_new(self) -> int:
        return sum(t.new for t in self.tables.values())

    @computed_field
    @property
    def total_identical(self) -> int:
        return sum(t.identical for t in self.tables.values())

    @computed_field
    @property
    def total_conflicting(self) -> int:
        return sum(t.conflicting for t in self.tables.values())


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


class TableStats(_WireModel):
    rows: int = 0
    imported: int = 0
    skipped: int = 0
    skipped_unresolved: int = 0  # subset of skipped: manual conflicts nobody decided
    errors: int = 0

    @property
    def balanced(self) -> bool:
        return self.imported + self.skipped + self.errors == self.rows


class ErrorRecord(_WireModel):
    table: str | None = None
    record_id: Any = None
    message: str


class MergeResult(_WireModel):
    success: bool = True
    simulated: bool = False
    per_table: dict[str, TableStats] = Field(default_factory=dict)
    conflicts: list[ConflictRecord] = Field(default_factory=list)
    errors: list[ErrorRecord] = Field(default_factory=list)

    @computed_field
    @property
    def status(self) -> str:
        if not self.success:
            return "failed"
        if self.errors:
            return "partial"
        return "success"

    @property
    def total_imported(self) -> int:
        return sum(s.imported for s in self.per_table.values())

    @property
    def total_skipped(self) -> int:
        return sum(s.skipped for s in self.per_table.values())

    @property
    def total_errors(self) -> int:
        return sum(s.errors for s in self.per_table.values())
