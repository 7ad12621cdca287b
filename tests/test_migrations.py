import numpy as np

from oracle.migration.builtin import run_startup_migrations
from oracle.migration.registry import MigrationRegistry
from oracle.storage.keyed_store import Row
from oracle.storage.schema import LIBRARY_EMBEDDINGS, SCHEMA_VERSIONS, SHELF_BANDIT, EmbeddingRecord


def test_fresh_collections_are_stamped(store):
    results = run_startup_migrations(store)
    assert all(r.success for r in results)
    for collection, version in SCHEMA_VERSIONS.items():
        assert store.get_version(collection) == version


def test_bandit_arms_document_is_split_per_shelf(store):
    store.put(SHELF_BANDIT, "arms", {"hero": {"alpha": 3, "beta": 2, "impressions": 4, "clicks": 2}, "deals-for-you": {"alpha": 0.5}})
    run_startup_migrations(store)

    assert sorted(store.keys(SHELF_BANDIT)) == ["deals-for-you", "hero"]
    assert store.get_value(SHELF_BANDIT, "hero") == {"alpha": 3.0, "beta": 2.0, "impressions": 4, "clicks": 2}
    # alpha/beta nunca abaixo de 1
    assert store.get_value(SHELF_BANDIT, "deals-for-you")["alpha"] == 1.0
    assert store.get_version(SHELF_BANDIT) == 1


def test_json_vectors_move_to_blob(store):
    store.put(LIBRARY_EMBEDDINGS, "steam-1", {"vector": [0.5, 0.25, 0.0], "textHash": "abc", "timestamp": 10})
    store.put(LIBRARY_EMBEDDINGS, "steam-2", {"textHash": "no-vector"})
    run_startup_migrations(store)

    rows = store.get_all(LIBRARY_EMBEDDINGS)
    assert [r.key for r in rows] == ["steam-1"]
    rec = EmbeddingRecord.from_row(rows[0])
    np.testing.assert_allclose(rec.vector, [0.5, 0.25, 0.0])
    assert rec.text_hash == "abc"
    assert rec.timestamp == 10


def test_failing_migration_keeps_data_and_version(store):
    registry = MigrationRegistry()

    @registry.register("things", 0)
    def _boom(rows):
        raise RuntimeError("broken")

    store.put("things", "a", 1)
    stats = registry.migrate_collection(store, "things", 1)

    assert not stats.success
    assert store.get_version("things") == 0
    assert store.get_value("things", "a") == 1


def test_migration_returning_nothing_is_refused(store):
    registry = MigrationRegistry()
    registry.register("things", 0)(lambda rows: [])

    store.put("things", "a", 1)
    stats = registry.migrate_collection(store, "things", 1)

    assert "produced no rows" in stats.error
    assert store.count("things") == 1


def test_steps_apply_in_order(store):
    registry = MigrationRegistry()
    registry.register("things", 0)(lambda rows: [Row(r.key, r.value + 1) for r in rows])
    registry.register("things", 2)(lambda rows: [Row(r.key, r.value * 10) for r in rows])

    store.put("things", "a", 1)
    stats = registry.migrate_collection(store, "things", 3)

    assert stats.steps_applied == 2
    assert store.get_value("things", "a") == 20
    assert store.get_version("things") == 3
