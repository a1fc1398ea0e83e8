from __future__ import annotations

import sqlite3
from dataclasses import replace
from datetime import timedelta

import pytest

from fakes import NOW, make_item

from newsrelay.adapters.sqlite_storage import SQLiteStorage
from newsrelay.core.errors import StoreUnavailable


@pytest.fixture
def storage(tmp_path) -> SQLiteStorage:
    store = SQLiteStorage(str(tmp_path / "data" / "newsrelay.sqlite3"))
    store.init_db()
    return store


def test_requires_init(tmp_path) -> None:
    store = SQLiteStorage(str(tmp_path / "db.sqlite3"))
    with pytest.raises(StoreUnavailable):
        store.is_seen("abc")


def test_mark_seen_is_idempotent(storage: SQLiteStorage) -> None:
    item = replace(make_item(1), category="Science")
    assert not storage.is_seen(item.fingerprint)
    storage.mark_seen(item)
    storage.mark_seen(replace(item, category="Other"))
    assert storage.is_seen(item.fingerprint)

    with sqlite3.connect(storage._db_path) as conn:
        rows = conn.execute("SELECT category FROM seen_items").fetchall()
    assert rows == [("Science",)]


def test_retention_cleanup_removes_old_rows(storage: SQLiteStorage) -> None:
    old, fresh = make_item(1), make_item(2)
    storage.mark_seen(old)
    storage.mark_seen(fresh)
    with sqlite3.connect(storage._db_path) as conn:
        conn.execute(
            "UPDATE seen_items SET first_seen = ? WHERE fingerprint = ?",
            ((NOW - timedelta(days=400)).isoformat(), old.fingerprint),
        )

    assert storage.retention_cleanup(days=30) == 1
    assert not storage.is_seen(old.fingerprint)
    assert storage.is_seen(fresh.fingerprint)


def test_destination_upsert_keeps_unset_fields(storage: SQLiteStorage) -> None:
    storage.update_destination("dest-1", address="@news", poll_interval_hours=6)
    storage.update_destination("dest-1", last_updated=NOW)

    (destination,) = storage.get_destinations()
    assert destination.address == "@news"
    assert destination.poll_interval_hours == 6
    assert destination.last_updated == NOW


def test_destination_defaults(storage: SQLiteStorage) -> None:
    storage.update_destination("dest-2")
    (destination,) = storage.get_destinations()
    assert destination.address is None
    assert destination.poll_interval_hours == 2
    assert destination.last_updated is None


@pytest.mark.parametrize("hours", [0, 169])
def test_destination_interval_bounds(storage: SQLiteStorage, hours: int) -> None:
    with pytest.raises(ValueError):
        storage.update_destination("dest-1", poll_interval_hours=hours)


def test_source_crud(storage: SQLiteStorage) -> None:
    source = storage.add_source("https://feeds.example.com/rss", "Example")
    with pytest.raises(ValueError):
        storage.add_source("https://feeds.example.com/rss", "Again")

    storage.update_source_marker(source.id, "abc123")
    (listed,) = storage.list_sources()
    assert listed.name == "Example"
    assert listed.last_seen_marker == "abc123"
    assert listed.is_active

    assert storage.remove_source(source.id)
    assert not storage.remove_source(source.id)
    assert storage.list_sources(active_only=False) == []


def test_exclusion_rule_crud(storage: SQLiteStorage) -> None:
    rule = storage.add_exclusion_rule("sports")
    assert [r.keyword for r in storage.list_exclusion_rules()] == ["sports"]
    assert storage.remove_exclusion_rule(rule.id)
    assert storage.list_exclusion_rules() == []
