import numpy as np
import pytest

from oracle.embeddings.cache import EmbeddingCache
from oracle.embeddings.service import EmbeddingService
from oracle.errors import BackendUnavailable
from oracle.index.ann_index import AnnIndex
from oracle.storage.schema import CATALOG_EMBEDDINGS, LIBRARY_EMBEDDINGS, EmbeddingRecord
from schemas.catalog_entry import CatalogEntry

from tests.factories import DIM, NOW_MS, FakeBackend, make_game

DAY = 24 * 60 * 60 * 1000


class Clock:
    def __init__(self, now: int = NOW_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def ann(tmp_path):
    return AnnIndex(str(tmp_path / "ann.faiss"), str(tmp_path / "ann.json"), dim=DIM, backend="numpy")


def _service(store, backend, clock, ann=None, cache=None):
    return EmbeddingService(store, backend, ann_index=ann, cache=cache, dim=DIM, batch_size=2, clock=clock, catalog_yield_s=0)


def test_generate_missing_is_idempotent(store, backend, clock):
    svc = _service(store, backend, clock)
    games = [make_game("steam-1", "Hades"), make_game("steam-2", "Celeste"), make_game("steam-3", "Doom")]

    assert svc.generate_missing(games, "library") == 3
    assert [len(c) for c in backend.calls] == [2, 1]
    assert store.count(LIBRARY_EMBEDDINGS) == 3
    assert "steam-1" in svc.cache

    assert svc.generate_missing(games, "library") == 0
    assert len(backend.calls) == 2


def test_changed_text_is_regenerated(store, backend, clock):
    svc = _service(store, backend, clock)
    svc.generate_missing([make_game("steam-1", "Hades")], "library")
    before = svc.cache.get("steam-1").copy()

    assert svc.generate_missing([make_game("steam-1", "Hades", user_notes="new notes")], "library") == 1
    assert not np.allclose(before, svc.cache.get("steam-1"))


def test_expired_records_count_as_missing(store, backend, clock):
    svc = _service(store, backend, clock)
    svc.generate_missing([make_game("steam-1", "Hades")], "library")

    clock.now += 31 * DAY
    fresh = _service(store, backend, clock)
    assert fresh.load_cached("library") == 0
    assert fresh.generate_missing([make_game("steam-1", "Hades")], "library") == 1


def test_load_cached_is_idempotent(store, backend, clock):
    _service(store, backend, clock).generate_missing([make_game("steam-1", "Hades")], "library")

    svc = _service(store, backend, clock)
    assert svc.load_cached("library") == 1
    store.clear(LIBRARY_EMBEDDINGS)
    assert svc.load_cached("library") == 1
    assert svc.load_cached("library", force_reload=True) == 0
    # O mapa vivo nunca perde vetores já mesclados
    assert "steam-1" in svc.cache


def test_load_cached_catalog_tier_is_idempotent(store, backend, clock):
    store.put_many(CATALOG_EMBEDDINGS, [EmbeddingRecord("steam-7", np.ones(DIM, dtype=np.float32), "h", NOW_MS).to_row()])
    svc = _service(store, backend, clock)

    assert svc.load_cached("catalog") == 1
    store.put_many(CATALOG_EMBEDDINGS, [EmbeddingRecord("steam-8", np.ones(DIM, dtype=np.float32), "h", NOW_MS).to_row()])
    assert svc.load_cached("catalog") == 1
    assert "steam-8" not in svc.cache

    assert svc.load_cached("catalog", force_reload=True) == 2
    assert "steam-8" in svc.cache

    svc.clear("catalog")
    assert svc.load_cached("catalog") == 0


def test_unavailable_backend_degrades_to_zero(store, clock):
    backend = FakeBackend(running=False)
    svc = _service(store, backend, clock)

    assert svc.generate_missing([make_game("steam-1", "Hades")], "library") == 0
    assert svc.generate_missing([make_game("steam-2", "Celeste")], "library") == 0
    assert backend.health_checks == 1
    assert backend.calls == []


def test_no_backend_is_unavailable(store, clock):
    svc = _service(store, None, clock)
    assert not svc.is_available()
    assert svc.generate_catalog_embeddings([CatalogEntry(app_id=1, name="Doom")]) == 0


class DroppingBackend(FakeBackend):
    """Responde ao primeiro lote e cai em seguida."""

    def generate_embeddings(self, items):
        if self.calls:
            raise BackendUnavailable("connection refused")
        return super().generate_embeddings(items)


def test_backend_dropping_mid_run_keeps_persisted_batches(store, clock):
    backend = DroppingBackend()
    svc = _service(store, backend, clock)
    games = [make_game("steam-1", "Hades"), make_game("steam-2", "Celeste"), make_game("steam-3", "Doom")]

    assert svc.generate_missing(games, "library") == 0
    assert store.count(LIBRARY_EMBEDDINGS) == 2
    assert not svc.is_available()

    svc.reset_availability()
    assert svc.is_available()


def test_enrich_only_fills_missing_ids(store, backend, clock):
    cache = EmbeddingCache()
    cache.merge({"steam-1": np.ones(DIM, dtype=np.float32)})
    svc = _service(store, backend, clock, cache=cache)
    records = [
        EmbeddingRecord("steam-1", np.zeros(DIM, dtype=np.float32) + 2, "h", NOW_MS),
        EmbeddingRecord("steam-2", np.zeros(DIM, dtype=np.float32) + 3, "h", NOW_MS),
        EmbeddingRecord("steam-3", np.zeros(DIM, dtype=np.float32) + 4, "h", NOW_MS - 91 * DAY),
    ]
    store.put_many(CATALOG_EMBEDDINGS, [r.to_row() for r in records])

    assert svc.enrich_with_catalog_embeddings(["steam-1", "steam-2", "steam-3", "steam-4"]) == 1
    assert cache.get("steam-1")[0] == 1.0
    assert cache.get("steam-2")[0] == 3.0
    assert "steam-3" not in cache


def test_catalog_generation_feeds_ann_index(store, backend, clock, ann):
    svc = _service(store, backend, clock, ann=ann)
    entries = [CatalogEntry(app_id=i, name=f"Game {i}", genres=["Action"]) for i in range(1, 6)]

    progress = []
    assert svc.generate_catalog_embeddings(entries, on_progress=lambda d, t: progress.append((d, t))) == 5
    assert store.count(CATALOG_EMBEDDINGS) == 5
    assert ann.vector_count == 5
    assert progress[-1] == (5, 5)
    assert not svc.is_catalog_running

    # Segunda passada: nada a gerar
    assert svc.generate_catalog_embeddings(entries) == 0


def test_catalog_generation_can_be_cancelled(store, backend, clock):
    import threading

    cancel = threading.Event()
    cancel.set()
    svc = _service(store, backend, clock)
    entries = [CatalogEntry(app_id=i, name=f"Game {i}") for i in range(1, 6)]
    assert svc.generate_catalog_embeddings(entries, cancel_event=cancel) == 0
    assert store.count(CATALOG_EMBEDDINGS) == 0


def test_backfill_rebuilds_index_with_library_precedence(store, backend, clock, ann):
    store.put_many(
        LIBRARY_EMBEDDINGS, [EmbeddingRecord("steam-1", np.eye(DIM, dtype=np.float32)[0], "h", NOW_MS).to_row()]
    )
    store.put_many(
        CATALOG_EMBEDDINGS,
        [
            EmbeddingRecord("steam-1", np.eye(DIM, dtype=np.float32)[1], "h", NOW_MS).to_row(),
            EmbeddingRecord("steam-2", np.eye(DIM, dtype=np.float32)[2], "h", NOW_MS).to_row(),
        ],
    )
    svc = _service(store, backend, clock, ann=ann)

    assert svc.backfill_ann_index() == 2
    np.testing.assert_allclose(ann.get_vector("steam-1"), np.eye(DIM)[0], atol=1e-6)

    ids, mat = svc.load_all_vectors()
    assert ids == ["steam-1", "steam-2"]
    assert mat.shape == (2, DIM)


def test_stats_and_clear(store, backend, clock):
    svc = _service(store, backend, clock)
    svc.generate_missing([make_game("steam-1", "Hades")], "library")
    stats = svc.stats()
    assert stats["library"] == {"stored": 1, "valid": 1, "expired": 0}

    svc.clear()
    assert store.count(LIBRARY_EMBEDDINGS) == 0
    assert len(svc.cache) == 0
