"""Error taxonomy for the merge engine.

Fatal errors (raised to the caller, no mutation):
  MalformedArtifact   — artifact cannot be parsed into the table/row shape
  UnsupportedVersion  — artifact formatVersion is newer than supported
  PolicyViolation     — invalid MergeOptions, rejected before analysis
  UnitOfWorkFailure   — store-level failure; the whole merge is rolled back
  SchemaOrderError    — table dependency configuration is cyclic or dangling

Recoverable:
  RecordApplyError    — a single row failed to apply; counted and reported in
                        MergeResult.errors, never escapes the executor
"""

from __future__ import annotations


class MergeEngineError(Exception):
    """Base class for every error raised by snapmerge."""


class ArtifactError(MergeEngineError):
    """Extraction-time failure."""


class MalformedArtifact(ArtifactError):
    pass


class UnsupportedVersion(ArtifactError):
    def __init__(self, version: str, supported: str) -> None:
        super().__init__(
            f"Artifact format version {version} is newer than supported version {supported}"
        )
        self.version = version
        self.supported = supported


class PolicyViolation(MergeEngineError):
    pass


class SchemaOrderError(MergeEngineError):
    pass


class RecordApplyError(MergeEngineError):
    def __init__(self, table: str, record_id: object, message: str) -> None:
        super().__init__(f"{table}[{record_id}]: {message}")
        self.table = table
        self.record_id = record_id
        self.message = message


class UnitOfWorkFailure(MergeEngineError):
    def __init__(
        self,
        message: str,
        table: str | None = None,
        record_id: object = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.table = table
        self.record_id = record_id
