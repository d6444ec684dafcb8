import datetime

import pytest

from snapmerge.errors import UnitOfWorkFailure


def test_columns_and_lookup(store, seed, role_row):
    seed("roles", role_row("r1", "Admin"))

    assert "updated_at" in store.columns("roles")
    assert store.get_row("roles", "id", "r1")["name"] == "Admin"
    assert store.get_row("roles", "id", "missing") is None


def test_coerce_row_converts_wire_values(store):
    row = store.coerce_row(
        "registrations",
        {
            "id": "g1",
            "date_of_birth": "2001-02-03",
            "verified_at": "2024-05-01T14:00:00+02:00",
            "is_verified": 1,
            "not_a_column": "kept",
        },
    )

    assert row["date_of_birth"] == datetime.date(2001, 2, 3)
    assert row["verified_at"] == datetime.datetime(2024, 5, 1, 12, 0, tzinfo=datetime.timezone.utc)
    assert row["is_verified"] is True
    assert row["not_a_column"] == "kept"


def test_coerce_row_leaves_unparseable_values(store):
    assert store.coerce_row("registrations", {"date_of_birth": "someday"})["date_of_birth"] == "someday"


def test_unit_of_work_commits_and_is_reentrant(store, role_row, read_table):
    with store.unit_of_work():
        with store.unit_of_work():
            store.insert_row("roles", store.coerce_row("roles", role_row("r1", "Admin")))
    assert [row["id"] for row in read_table("roles")] == ["r1"]


def test_unit_of_work_rolls_back_on_error(store, role_row, read_table):
    with pytest.raises(UnitOfWorkFailure):
        with store.unit_of_work():
            store.insert_row("roles", store.coerce_row("roles", role_row("r1", "Admin")))
            raise UnitOfWorkFailure("boom")
    assert read_table("roles") == []


def test_savepoint_discards_only_the_failed_row(store, role_row, read_table):
    from sqlalchemy.exc import IntegrityError

    with store.unit_of_work():
        store.insert_row("roles", store.coerce_row("roles", role_row("r1", "Admin")))
        with pytest.raises(IntegrityError):
            with store.savepoint():
                store.insert_row("roles", store.coerce_row("roles", role_row("r2", "Admin")))
        store.update_row("roles", "id", "r1", {"id": "r1", "description": "kept"})

    [row] = read_table("roles")
    assert row["description"] == "kept"
