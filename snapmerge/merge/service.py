"""Caller-facing merge operations: analyze, merge, create incremental snapshot.

This is the surface an HTTP handler or the CLI calls.  An ``artifact_ref`` may
be an extracted BackupArtifact, a deserialized document, raw bytes, a Path,
or a bare file name that is resolved inside ``settings.backup_dir``.

Failure contract:
  - MalformedArtifact / UnsupportedVersion / PolicyViolation are raised before
    anything touches the store.
  - UnitOfWorkFailure during merge() is returned as MergeResult(success=False)
    with the fatal error listed and no per-table statistics; the store has
    been rolled back.
  - Per-record failures are listed in MergeResult.errors with success=True.

Merges against one store must be serialized by the caller; two concurrent
merges can both classify a row as new and collide on insert.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Mapping

from sqlalchemy import MetaData
from sqlalchemy.orm import Session

from snapmerge.config import Settings, settings as default_settings
from snapmerge.errors import UnitOfWorkFailure
from snapmerge.merge import analyzer, executor
from snapmerge.merge.extractor import (
    extract,
    load_artifact_file,
    resolve_artifact_path,
    save_artifact,
)
from snapmerge.merge.models import (
    AnalysisResult,
    BackupArtifact,
    ConflictOverride,
    ErrorRecord,
    MergeOptions,
    MergeResult,
)
from snapmerge.merge.schema import TableRegistry, default_registry
from snapmerge.merge.store import SqlStore

logger = logging.getLogger(__name__)

ArtifactRef = BackupArtifact | Mapping | bytes | str | os.PathLike


class MergeService:
    """The three merge-engine operations bound to one session.

    Args:
        session:  SQLAlchemy session for the live store.  One service per
                  request; sessions are not shared between merges.
        registry: Table specs; defaults to the bundled registration schema.
        metadata: MetaData describing the store tables; defaults to the ORM
                  models' metadata.
        settings: Settings override (tests pass their own).
    """

    def __init__(
        self,
        session: Session,
        registry: TableRegistry | None = None,
        metadata: MetaData | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or default_settings
        if metadata is None:
            from snapmerge.db.models import Base

            metadata = Base.metadata
        self.registry = registry or default_registry(self.settings.timestamp_field)
        self.store = SqlStore(session, metadata)

    # ------------------------------------------------------------------
    # Artifact resolution
    # ------------------------------------------------------------------

    def load(self, artifact_ref: ArtifactRef) -> BackupArtifact:
        """Turn any supported artifact reference into an extracted artifact."""
        supported = self.settings.supported_format_version
        if isinstance(artifact_ref, BackupArtifact):
            return artifact_ref
        if isinstance(artifact_ref, Mapping):
            return extract(artifact_ref, supported_version=supported)
        if isinstance(artifact_ref, (bytes, bytearray)):
            return extract(bytes(artifact_ref), supported_version=supported)
        if isinstance(artifact_ref, str):
            path = resolve_artifact_path(self.settings.backup_dir, artifact_ref)
        else:
            path = Path(artifact_ref)
        return load_artifact_file(
            path,
            supported_version=supported,
            max_bytes=self.settings.max_artifact_bytes,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def analyze(self, artifact_ref: ArtifactRef, options: MergeOptions | None = None) -> AnalysisResult:
        """Read-only comparison of an artifact against the live store."""
        options = options or self._default_options()
        artifact = self.load(artifact_ref)
        try:
            return analyzer.analyze(self.store, artifact, options, self.registry)
        finally:
            self.store.discard()

    def merge(
        self,
        artifact_ref: ArtifactRef,
        options: MergeOptions | None = None,
        conflict_overrides: Mapping[str, ConflictOverride | Mapping[str, Any]] | None = None,
    ) -> MergeResult:
        """Analyze and apply an artifact; mutates the store unless dry_run."""
        options = options or self._default_options()
        artifact = self.load(artifact_ref)
        # Rejected before any store access
        analyzer.validate_options(options, self.registry)

        logger.info(
            "MergeService: merge requested (tables=%d, rows=%d, policy=%s, dry_run=%s)",
            len(artifact.tables),
            artifact.total_rows,
            options.conflict_resolution.value,
            options.dry_run,
        )

        try:
            if options.dry_run:
                result = self._simulate(artifact, options, conflict_overrides)
            else:
                with self.store.unit_of_work():
                    analysis = analyzer.analyze(self.store, artifact, options, self.registry)
                    analysis = analyzer.apply_overrides(analysis, conflict_overrides)
                    result = executor.apply(self.store, analysis, artifact, self.registry)
        except UnitOfWorkFailure as exc:
            logger.error("MergeService: merge rolled back: %s", exc.message)
            return MergeResult(
                success=False,
                errors=[ErrorRecord(table=exc.table, record_id=exc.record_id, message=exc.message)],
            )

        logger.info(
            "MergeService: merge committed (status=%s, imported=%d, skipped=%d, errors=%d)",
            result.status,
            result.total_imported,
            result.total_skipped,
            result.total_errors,
        )
        return result

    def _simulate(
        self,
        artifact: BackupArtifact,
        options: MergeOptions,
        conflict_overrides: Mapping[str, Any] | None,
    ) -> MergeResult:
        try:
            analysis = analyzer.analyze(self.store, artifact, options, self.registry)
            analysis = analyzer.apply_overrides(analysis, conflict_overrides)
            return executor.apply(self.store, analysis, artifact, self.registry, dry_run=True)
        finally:
            self.store.discard()

    def create_incremental_snapshot(self, exported_by: str | None = None) -> BackupArtifact:
        """Capture the current store state as a new artifact (pure read)."""
        try:
            return executor.create_incremental_snapshot(self.store, self.registry, exported_by)
        finally:
            self.store.discard()

    def save_incremental_snapshot(
        self,
        filename: str | None = None,
        exported_by: str | None = None,
        compress: bool = False,
        directory: str | os.PathLike | None = None,
    ) -> Path:
        """Create a snapshot and write it into the backup directory."""
        artifact = self.create_incremental_snapshot(exported_by=exported_by)
        target = directory if directory is not None else self.settings.backup_dir
        return save_artifact(artifact, target, filename, compress=compress)

    def _default_options(self) -> MergeOptions:
        return MergeOptions(conflict_resolution=self.settings.default_conflict_resolution)
