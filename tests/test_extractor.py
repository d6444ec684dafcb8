import gzip
import json
import logging

import pytest

from snapmerge.errors import MalformedArtifact, UnsupportedVersion
from snapmerge.merge.extractor import (
    dump_artifact,
    extract,
    load_artifact_file,
    resolve_artifact_path,
    save_artifact,
)


def test_extract_from_json_bytes(make_artifact, role_row):
    doc = make_artifact({"roles": [role_row("r1", "Admin"), role_row("r2", "Editor")]})

    artifact = extract(json.dumps(doc).encode())

    assert artifact.table_names == ["roles"]
    assert artifact.total_rows == 2
    assert artifact.table("roles").primary_key_field == "id"
    assert artifact.metadata.exported_by == "tests"


def test_extract_gzip_payload(make_artifact, role_row):
    doc = make_artifact({"roles": [role_row("r1", "Admin")]})
    artifact = extract(gzip.compress(json.dumps(doc).encode()))
    assert artifact.total_rows == 1


def test_extract_accepts_older_export_names():
    doc = {
        "metadata": {"exportedAt": "2024-05-01T12:00:00Z", "version": "1.0"},
        "tables": [{"tableName": "roles", "primaryKey": "id", "records": [{"id": "r1"}]}],
    }
    artifact = extract(doc)
    assert artifact.table("roles").rows == [{"id": "r1"}]


@pytest.mark.parametrize(
    "raw",
    [b"not json", b"\x1f\x8bbroken", "[1, 2]", json.dumps({"tables": []})],
)
def test_unparseable_documents_are_malformed(raw):
    with pytest.raises(MalformedArtifact):
        extract(raw)


def test_newer_version_is_unsupported(make_artifact):
    with pytest.raises(UnsupportedVersion) as info:
        extract(make_artifact({}, version="2.0"))
    assert info.value.version == "2.0"


def test_older_version_is_accepted(make_artifact):
    assert extract(make_artifact({}, version="0.9")).tables == []


@pytest.mark.parametrize("version", ["1", "1.0.0", " 1.0 "])
def test_equivalent_version_spellings_are_accepted(make_artifact, version):
    assert extract(make_artifact({}, version=version)).tables == []


def test_patch_level_above_supported_is_unsupported(make_artifact):
    with pytest.raises(UnsupportedVersion):
        extract(make_artifact({}, version="1.0.1"))


def test_missing_primary_key_is_malformed(make_artifact):
    with pytest.raises(MalformedArtifact, match="no primary key"):
        extract(make_artifact({"roles": [{"id": "r1"}, {"name": "no id"}]}))


def test_duplicate_primary_key_is_malformed(make_artifact):
    with pytest.raises(MalformedArtifact, match="Duplicate primary key"):
        extract(make_artifact({"rooms": [{"id": 1}, {"id": 1.0}]}))


def test_duplicate_table_is_malformed():
    doc = {
        "metadata": {"exportedAt": "2024-05-01T12:00:00Z"},
        "tables": [{"name": "roles", "rows": []}, {"name": "roles", "rows": []}],
    }
    with pytest.raises(MalformedArtifact, match="more than once"):
        extract(doc)


def test_record_count_mismatch_only_warns(make_artifact, caplog):
    doc = make_artifact({"roles": [{"id": "r1"}]}, record_counts={"roles": 5})
    with caplog.at_level(logging.WARNING, logger="snapmerge.merge.extractor"):
        artifact = extract(doc)
    assert artifact.total_rows == 1
    assert "recordCounts for roles" in caplog.text


@pytest.mark.parametrize("name", ["", "../secret.json", "a/b.json", "a\\b.json"])
def test_resolve_artifact_path_rejects_escapes(tmp_path, name):
    with pytest.raises(MalformedArtifact):
        resolve_artifact_path(tmp_path, name)


def test_save_and_load_compressed_artifact(tmp_path, make_artifact, role_row):
    artifact = extract(make_artifact({"roles": [role_row("r1", "Admin")]}))

    path = save_artifact(artifact, tmp_path, compress=True)

    assert path.name.startswith("incremental-backup-")
    assert path.name.endswith(".json.gz")
    reloaded = load_artifact_file(path)
    assert reloaded.table("roles").rows == artifact.table("roles").rows


def test_dump_uses_wire_names(make_artifact):
    artifact = extract(make_artifact({"roles": [{"id": "r1"}]}))
    document = json.loads(dump_artifact(artifact))
    assert document["metadata"]["formatVersion"] == "1.0"
    assert document["metadata"]["exportedAt"].endswith("Z")
    assert document["tables"][0]["primaryKeyField"] == "id"


def test_load_rejects_oversized_file(tmp_path, make_artifact):
    path = tmp_path / "big.json"
    path.write_text(json.dumps(make_artifact({"roles": [{"id": "r1"}]})))
    with pytest.raises(MalformedArtifact, match="limit"):
        load_artifact_file(path, max_bytes=10)
