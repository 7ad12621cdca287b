import pytest

from oracle.errors import StorageWriteFailed
from oracle.storage.keyed_store import KeyedStore, Row


def test_put_get_roundtrip_with_blob(store):
    store.put("things", "a", {"x": 1}, blob=b"\x00\x01")
    row = store.get("things", "a")
    assert row == Row(key="a", value={"x": 1}, blob=b"\x00\x01")
    assert store.get_value("things", "missing", default=42) == 42


def test_put_many_upserts(store):
    store.put_many("things", [("a", 1, None), ("b", 2, None)])
    store.put_many("things", [("a", 10, None)])
    assert store.get_value("things", "a") == 10
    assert store.count("things") == 2


def test_scan_is_key_ordered_across_batches(store):
    store.put_many("things", [(f"k{i:03d}", i, None) for i in range(25)])
    keys = [r.key for r in store.scan("things", batch_size=7)]
    assert keys == sorted(keys)
    assert len(keys) == 25


def test_scan_without_blob(store):
    store.put("things", "a", {}, blob=b"abc")
    rows = list(store.scan("things", include_blob=False))
    assert rows[0].blob is None


def test_corrupt_json_row_is_skipped(store):
    store.put("things", "good", 1)
    with store.transaction() as conn:
        conn.execute("INSERT INTO things (key, value, blob) VALUES ('bad', '{not json', NULL)")
    assert [r.key for r in store.scan("things")] == ["good"]
    assert store.get("things", "bad") is None


def test_replace_all_and_clear(store):
    store.put_many("things", [("a", 1, None), ("b", 2, None)])
    store.replace_all("things", [Row("c", 3)])
    assert store.keys("things") == ["c"]
    store.clear("things")
    assert store.count("things") == 0


def test_versions_and_collections(store):
    assert store.get_version("things") == 0
    store.set_version("things", 3)
    assert store.get_version("things") == 3
    store.put("other", "k", 1)
    assert "other" in store.collections()
    assert not any(name.startswith("__") for name in store.collections())


def test_invalid_collection_name(store):
    with pytest.raises(ValueError):
        store.put("bad name; drop", "k", 1)


def test_write_after_close_raises(tmp_path):
    s = KeyedStore(tmp_path / "closed.sqlite3")
    s.close()
    with pytest.raises(StorageWriteFailed):
        s.put("things", "a", 1)


def test_data_survives_reopen(tmp_path):
    path = tmp_path / "persist.sqlite3"
    s = KeyedStore(path)
    s.put("things", "a", {"kept": True})
    s.close()

    reopened = KeyedStore(path)
    assert reopened.get_value("things", "a") == {"kept": True}
    reopened.close()
