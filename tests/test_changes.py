import datetime

import pytest
from pydantic import ValidationError

from snapmerge.tracking.changes import (
    ChangeRecord,
    ChangeSource,
    ConfigPatch,
    ReconcileStrategy,
    UpdateMeta,
    apply_incremental_update,
    diff,
    latest_per_field,
    merge_change_records,
    patch,
    reconcile,
    summarize_changes,
    validate_sync,
)

BASE = {"smtp_host": "mail.example.org", "smtp_port": 587, "use_tls": True, "from_name": "Events"}


def _at(minute: int) -> datetime.datetime:
    return datetime.datetime(2024, 5, 1, 12, minute, tzinfo=datetime.timezone.utc)


def _record(field: str, minute: int, source: ChangeSource = ChangeSource.LOCAL) -> ChangeRecord:
    return ChangeRecord(field=field, new_value=minute, timestamp=_at(minute), source=source)


# ---------------------------------------------------------------------------
# diff / patch
# ---------------------------------------------------------------------------


def test_diff_reports_each_changed_field():
    updated = {**BASE, "smtp_port": 465, "reply_to": "help@example.org"}
    del updated["from_name"]

    changes = diff(BASE, updated, source="remote", actor="admin-1", timestamp=_at(0))

    assert [(c.field, c.old_value, c.new_value) for c in changes] == [
        ("smtp_port", 587, 465),
        ("from_name", "Events", None),
        ("reply_to", None, "help@example.org"),
    ]
    assert all(c.source is ChangeSource.REMOTE and c.actor == "admin-1" for c in changes)
    assert all(c.timestamp == _at(0) for c in changes)


def test_diff_uses_deep_comparison():
    assert diff({"port": 587, "tags": ["a"]}, {"port": 587.0, "tags": ["a"]}, ChangeSource.LOCAL) == []


def test_patch_is_minimal():
    updated = {**BASE, "use_tls": False, "smtp_port": 587}
    assert patch(BASE, updated).fields == {"use_tls": False}
    assert not patch(BASE, dict(BASE))


def test_patch_omits_removed_fields():
    updated = dict(BASE)
    del updated["from_name"]
    assert patch(BASE, updated).fields == {}


# ---------------------------------------------------------------------------
# Incremental updates
# ---------------------------------------------------------------------------


def test_apply_incremental_update_touches_only_patched_fields():
    meta = UpdateMeta(source=ChangeSource.IMPORT, actor="ops", timestamp=_at(5))

    update = apply_incremental_update(
        BASE, ConfigPatch(fields={"smtp_port": 465, "from_name": "Events", "bcc": "log@x"}), meta
    )

    assert update.merged == {**BASE, "smtp_port": 465, "bcc": "log@x"}
    assert [c.field for c in update.changes] == ["smtp_port", "bcc"]
    assert update.added_fields == ["bcc"]
    assert update.changes[0].source is ChangeSource.IMPORT
    assert BASE["smtp_port"] == 587


def test_apply_incremental_update_accepts_plain_mapping():
    update = apply_incremental_update(BASE, {"use_tls": False})
    assert update.merged["use_tls"] is False
    assert update.changes[0].source is ChangeSource.LOCAL


def test_patch_then_apply_reproduces_the_update():
    updated = {**BASE, "smtp_host": "smtp.example.org", "bcc": "a@b"}
    assert apply_incremental_update(BASE, patch(BASE, updated)).merged == updated


# ---------------------------------------------------------------------------
# Change trails
# ---------------------------------------------------------------------------


def test_merge_change_records_is_a_stable_timeline():
    first = _record("a", 3)
    tie = _record("b", 3, ChangeSource.REMOTE)
    merged = merge_change_records([first, _record("c", 9)], [_record("d", 1), tie])
    assert [(r.field, r.timestamp.minute) for r in merged] == [("d", 1), ("a", 3), ("b", 3), ("c", 9)]


def test_latest_per_field_keeps_newest_first():
    latest = latest_per_field([_record("a", 1), _record("b", 2), _record("a", 5)])
    assert [(r.field, r.timestamp.minute) for r in latest] == [("a", 5), ("b", 2)]


def test_summarize_changes():
    summary = summarize_changes(
        [_record("a", 1), _record("b", 2), _record("a", 3, ChangeSource.REMOTE)]
    )
    assert summary.total == 3
    assert summary.by_source == {"local": 2, "remote": 1}
    assert summary.by_field == {"a": 2, "b": 1}
    assert summary.summary == "3 changes: 2 from local, 1 from remote"


def test_change_records_are_immutable():
    record = _record("a", 1)
    with pytest.raises(ValidationError):
        record.field = "b"


# ---------------------------------------------------------------------------
# Sync and reconcile
# ---------------------------------------------------------------------------


def test_validate_sync():
    assert validate_sync(BASE, dict(BASE)).in_sync

    report = validate_sync(BASE, {**BASE, "use_tls": False, "extra": 1})

    assert not report.in_sync
    assert [(m.field, m.left, m.right) for m in report.mismatches] == [
        ("use_tls", True, False),
        ("extra", None, 1),
    ]


LOCAL = {"host": "a", "port": 25, "only_local": 1}
REMOTE = {"host": "b", "port": 25, "only_remote": 2}


def test_reconcile_remote_priority():
    result = reconcile(LOCAL, REMOTE, ReconcileStrategy.REMOTE_PRIORITY)

    assert result.merged == {"host": "b", "port": 25, "only_local": 1, "only_remote": 2}
    assert result.applied == 3
    assert result.skipped == 1
    [conflict] = result.conflicts
    assert conflict.field == "host" and conflict.resolution is ChangeSource.REMOTE


def test_reconcile_local_priority():
    result = reconcile(LOCAL, REMOTE, "local_priority")
    assert result.merged["host"] == "a"
    host_change = next(c for c in result.changes if c.field == "host")
    assert (host_change.old_value, host_change.new_value) == ("b", "a")


def test_reconcile_manual_defers_undecided_fields():
    result = reconcile(LOCAL, REMOTE, ReconcileStrategy.MANUAL, resolver=lambda conflict: None)
    assert "host" not in result.merged
    assert result.skipped == 2
    assert result.conflicts[0].resolution is None


def test_reconcile_manual_uses_resolver_answer():
    result = reconcile(LOCAL, REMOTE, ReconcileStrategy.MANUAL, resolver=lambda conflict: "local")
    assert result.merged["host"] == "a"
