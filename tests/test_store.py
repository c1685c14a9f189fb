from pathlib import Path

import pytest

from portal.store import KeyValueStore, Loaded, MemoryStore, SqliteStore, StoreCorruptionError, VersionConflict


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path: Path) -> KeyValueStore:
    if request.param == "memory":
        return MemoryStore()
    return SqliteStore(str(tmp_path / "kv.db"))


def test_missing_key_loads_as_not_found(any_store: KeyValueStore) -> None:
    loaded = any_store.load("nope")
    assert loaded == Loaded()
    assert loaded.found is False
    assert loaded.or_default({"x": 1}) == {"x": 1}


def test_save_then_load_bumps_version(any_store: KeyValueStore) -> None:
    assert any_store.save("k", {"a": 1}) == 1
    assert any_store.save("k", {"a": 2}) == 2
    loaded = any_store.load("k")
    assert loaded.found is True
    assert loaded.value == {"a": 2}
    assert loaded.version == 2


def test_expected_version_guards_writes(any_store: KeyValueStore) -> None:
    any_store.save("k", [1], expected_version=0)
    with pytest.raises(VersionConflict):
        any_store.save("k", [2], expected_version=0)
    any_store.save("k", [3], expected_version=1)
    assert any_store.load("k").value == [3]


def test_unparseable_value_is_reported_not_raised(any_store: KeyValueStore) -> None:
    any_store.save_raw("broken", "{not json")
    loaded = any_store.load("broken")
    assert loaded.found is False
    assert isinstance(loaded.error, StoreCorruptionError)
    assert loaded.error.key == "broken"
    assert loaded.version == 1
    assert loaded.or_default("fallback") == "fallback"


def test_keys_filter_by_literal_prefix(any_store: KeyValueStore) -> None:
    any_store.save("tp_progress:a_b@x.example:s1", {})
    any_store.save("tp_progressXa@x.example:s1", {})
    any_store.save("tp_user", {})
    assert any_store.keys("tp_progress:") == ["tp_progress:a_b@x.example:s1"]
    assert len(any_store.keys()) == 3


def test_delete_removes_key(any_store: KeyValueStore) -> None:
    any_store.save("k", 1)
    any_store.delete("k")
    any_store.delete("never-there")
    assert any_store.load("k").found is False


def test_sqlite_store_persists_across_instances(tmp_path: Path) -> None:
    path = str(tmp_path / "nested" / "kv.db")
    SqliteStore(path).save("k", {"kept": True})
    assert SqliteStore(path).load("k").value == {"kept": True}
