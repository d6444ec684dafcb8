"""Artifact extraction: raw exported snapshot → BackupArtifact.

The serialized format is owned by the export mechanism; this module only
requires that the deserialized document is organized as named tables of rows
with a known primary key per table:

    {
      "metadata": {"exportedAt": "...", "formatVersion": "1.0",
                   "recordCounts": {"roles": 2}},
      "tables": [
        {"name": "roles", "primaryKeyField": "id", "rows": [{"id": "r1", ...}]}
      ]
    }

Payloads may be gzip-compressed (detected by magic bytes).  Extraction is a
pure parse: no store access, no side effects beyond logging.
"""

from __future__ import annotations

import datetime
import gzip
import json
import logging
import os
import zlib
from pathlib import Path
from typing import Any, Mapping

from pydantic import ValidationError

from snapmerge.errors import MalformedArtifact, UnsupportedVersion
from snapmerge.merge.models import BackupArtifact
from snapmerge.merge.values import FieldValue, to_wire

logger = logging.getLogger(__name__)

_GZIP_MAGIC = b"\x1f\x8b"

# Fallback when callers do not pass the configured version
SUPPORTED_FORMAT_VERSION = "1.0"


def _parse_version(version: str) -> tuple[int, ...]:
    """Numeric version tuple with trailing zeros dropped, so "1.0.0" == "1.0"."""
    try:
        parts = [int(part) for part in str(version).strip().split(".")]
    except ValueError:
        raise MalformedArtifact(f"Unparseable formatVersion: {version!r}") from None
    while parts and parts[-1] == 0:
        parts.pop()
    return tuple(parts)


def _decode(raw: bytes | str) -> Any:
    if isinstance(raw, str):
        text = raw
    else:
        data = bytes(raw)
        if data[:2] == _GZIP_MAGIC:
            try:
                data = gzip.decompress(data)
            except (OSError, EOFError, zlib.error) as exc:
                raise MalformedArtifact(f"Corrupt gzip payload: {exc}") from exc
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedArtifact(f"Artifact is not UTF-8 text: {exc}") from exc

    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedArtifact(f"Artifact is not valid JSON: {exc}") from exc


def extract(
    raw: bytes | str | Mapping[str, Any],
    supported_version: str = SUPPORTED_FORMAT_VERSION,
) -> BackupArtifact:
    """Parse a raw exported snapshot into a BackupArtifact.

    Args:
        raw:               Serialized artifact (bytes, optionally gzipped, or
                           str) or an already-deserialized mapping.
        supported_version: Newest formatVersion this engine understands.

    Returns:
        A frozen BackupArtifact whose tables satisfy the row invariants.

    Raises:
        MalformedArtifact:  If the document cannot be parsed into the
                            table/row shape or violates a row invariant.
        UnsupportedVersion: If formatVersion is newer than supported_version.
    """
    document = raw if isinstance(raw, Mapping) else _decode(raw)
    if not isinstance(document, Mapping):
        raise MalformedArtifact("Artifact root must be an object")

    try:
        artifact = BackupArtifact.model_validate(document)
    except ValidationError as exc:
        raise MalformedArtifact(f"Artifact does not match the snapshot shape: {exc}") from exc

    version = artifact.metadata.format_version
    if _parse_version(version) > _parse_version(supported_version):
        raise UnsupportedVersion(version, supported_version)

    _check_tables(artifact)

    logger.info(
        "Extractor: parsed artifact (version=%s, tables=%d, rows=%d, exported_at=%s)",
        version,
        len(artifact.tables),
        artifact.total_rows,
        artifact.metadata.exported_at.isoformat(),
    )
    return artifact


def _check_tables(artifact: BackupArtifact) -> None:
    seen_tables: set[str] = set()
    for snapshot in artifact.tables:
        if snapshot.name in seen_tables:
            raise MalformedArtifact(f"Table '{snapshot.name}' appears more than once")
        seen_tables.add(snapshot.name)

        pk_field = snapshot.primary_key_field
        seen_keys: set[FieldValue] = set()
        for index, row in enumerate(snapshot.rows):
            if row.get(pk_field) is None:
                raise MalformedArtifact(
                    f"Row {index} of table '{snapshot.name}' has no primary key '{pk_field}'"
                )
            try:
                key = FieldValue.of(row[pk_field])
            except TypeError as exc:
                raise MalformedArtifact(
                    f"Row {index} of table '{snapshot.name}': {exc}"
                ) from exc
            if key in seen_keys:
                raise MalformedArtifact(
                    f"Duplicate primary key {row[pk_field]!r} in table '{snapshot.name}'"
                )
            seen_keys.add(key)

        declared = artifact.metadata.record_counts.get(snapshot.name)
        if declared is not None and declared != len(snapshot.rows):
            logger.warning(
                "Extractor: recordCounts for %s says %d but table holds %d row(s)",
                snapshot.name,
                declared,
                len(snapshot.rows),
            )


# ---------------------------------------------------------------------------
# File helpers
# ---------------------------------------------------------------------------


def resolve_artifact_path(directory: str | os.PathLike, filename: str) -> Path:
    """Resolve a bare artifact file name inside the backup directory.

    Raises:
        MalformedArtifact: If the name could escape the directory.
    """
    if not filename or ".." in filename or "/" in filename or "\\" in filename:
        raise MalformedArtifact(f"Invalid artifact filename: {filename!r}")
    return Path(directory) / filename


def load_artifact_file(
    path: str | os.PathLike,
    supported_version: str = SUPPORTED_FORMAT_VERSION,
    max_bytes: int | None = None,
) -> BackupArtifact:
    """Read and extract an artifact file (``.json`` or ``.json.gz``)."""
    file_path = Path(path)
    try:
        size = file_path.stat().st_size
        if max_bytes is not None and size > max_bytes:
            raise MalformedArtifact(
                f"Artifact {file_path.name} is {size} bytes; limit is {max_bytes}"
            )
        data = file_path.read_bytes()
    except OSError as exc:
        raise MalformedArtifact(f"Cannot read artifact {file_path}: {exc}") from exc
    logger.debug("Extractor: read %d bytes from %s", len(data), file_path)
    return extract(data, supported_version=supported_version)


def dump_artifact(artifact: BackupArtifact, compress: bool = False) -> bytes:
    """Serialize an artifact to its JSON wire form (optionally gzipped)."""
    document = artifact.model_dump(mode="python", by_alias=True)
    payload = json.dumps(to_wire(document), indent=2).encode("utf-8")
    if compress:
        return gzip.compress(payload)
    return payload


def save_artifact(
    artifact: BackupArtifact,
    directory: str | os.PathLike,
    filename: str | None = None,
    compress: bool = False,
) -> Path:
    """Write an artifact into ``directory`` and return the file path.

    The default name is ``incremental-backup-<UTC timestamp>.json[.gz]``.
    """
    target_dir = Path(directory)
    target_dir.mkdir(parents=True, exist_ok=True)
    if filename is None:
        stamp = datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        filename = f"incremental-backup-{stamp}.json" + (".gz" if compress else "")
    path = resolve_artifact_path(target_dir, filename)
    path.write_bytes(dump_artifact(artifact, compress=compress))
    logger.info("Extractor: saved artifact %s (%d rows)", path, artifact.total_rows)
    return path
