import pytest

from oracle.candidates.pool import CandidatePoolAssembler, candidate_from_browse, candidate_from_catalog
from oracle.catalog.browse_cache import BrowseCache
from oracle.catalog.store import CatalogStore
from oracle.embeddings.cache import EmbeddingCache
from oracle.index.ann_index import AnnIndex
from oracle.storage.schema import CATALOG_ENTRIES
from schemas.catalog_entry import CatalogEntry

from tests.factories import DIM, NOW_MS, make_snapshot, unit


def _entries():
    return [
        CatalogEntry(app_id=1, name="Browse Dup", genres=["Action"], review_count=500, review_positivity=0.9),
        CatalogEntry(app_id=2, name="Catalog Only", genres=["Action"], review_count=400, review_positivity=0.9, release_date=1600000000),
        CatalogEntry(app_id=3, name="Semantic", genres=["Puzzle"], review_count=20, review_positivity=0.9),
        CatalogEntry(app_id=4, name="Owned", genres=["Action"], review_count=300, review_positivity=0.9),
    ]


@pytest.fixture
def sources(store, tmp_path):
    store.put_many(CATALOG_ENTRIES, [(str(e.app_id), e.to_store(), None) for e in _entries()])
    catalog = CatalogStore(store, None)
    browse = BrowseCache(store, clock=lambda: NOW_MS)
    browse.save([{"id": "steam-1", "title": "Browse Dup", "genre": ["Action"], "totalPositive": 90, "totalReviews": 100}])
    ann = AnnIndex(str(tmp_path / "a.faiss"), str(tmp_path / "a.json"), dim=DIM, backend="numpy")
    ann.add_vectors([("steam-3", unit(1, 0)), ("steam-2", unit(0.9, 0.1)), ("steam-4", unit(1, 0.05))])
    cache = EmbeddingCache()
    cache.merge({"steam-2": unit(0.9, 0.1)})
    return browse, catalog, ann, cache


def test_sources_are_deduplicated_with_precedence(sources):
    browse, catalog, ann, cache = sources
    assembler = CandidatePoolAssembler(browse, catalog, ann, cache)
    snapshots = [make_snapshot("steam-4", "Owned", embedding=unit(1, 0), rating=4)]

    pool = assembler.assemble(snapshots)

    ids = [c.game_id for c in pool.candidates]
    assert ids == ["steam-1", "steam-2", "steam-3"]
    assert pool.counts == {"browse": 1, "catalog": 1, "ann": 1}
    assert pool.candidates[0].review_positivity == pytest.approx(0.9)
    assert pool.candidates[1].embedding is not None
    assert pool.candidates[2].semantic_retrieved
    assert not pool.candidates[1].semantic_retrieved


def test_exclude_ids_never_enter(sources):
    browse, catalog, ann, cache = sources
    assembler = CandidatePoolAssembler(browse, catalog, ann, cache)
    pool = assembler.assemble([make_snapshot("steam-9", "Other", embedding=unit(1, 0))], exclude_ids={"steam-1", "steam-3"})
    assert "steam-1" not in [c.game_id for c in pool.candidates]
    assert "steam-3" not in [c.game_id for c in pool.candidates]


def test_no_centroid_skips_semantic_source(sources):
    browse, catalog, ann, cache = sources
    pool = CandidatePoolAssembler(browse, catalog, ann, cache).assemble([make_snapshot("steam-9", "No vector")])
    assert pool.counts["ann"] == 0


def test_failing_source_contributes_zero(sources):
    browse, catalog, ann, cache = sources

    class BrokenCatalog:
        def query_for_candidates(self, *args, **kwargs):
            raise RuntimeError("disk on fire")

        def get_entries(self, app_ids):
            raise RuntimeError("disk on fire")

    pool = CandidatePoolAssembler(browse, BrokenCatalog(), ann, cache).assemble(
        [make_snapshot("steam-9", "x", embedding=unit(1, 0))]
    )
    assert pool.counts == {"browse": 1, "catalog": 0, "ann": 0}


def test_malformed_browse_record_is_skipped_alone(sources, store):
    _, catalog, ann, cache = sources
    browse = BrowseCache(store, clock=lambda: NOW_MS)
    browse.save(
        [
            {"id": "steam-10", "title": "Good A", "genre": ["Action"]},
            {"id": "steam-1", "title": "Broken", "price": {"finalFormatted": 9.99}},
            {"id": "steam-11", "title": "Good B", "genre": ["Action"]},
        ]
    )
    snapshots = [make_snapshot("steam-4", "Owned", embedding=unit(1, 0), rating=4)]

    pool = CandidatePoolAssembler(browse, catalog, ann, cache).assemble(snapshots)

    by_id = {c.game_id: c for c in pool.candidates}
    assert pool.counts["browse"] == 2
    assert {"steam-10", "steam-11"} <= set(by_id)
    # O id do registro descartado continua livre para o catálogo
    assert by_id["steam-1"].title == "Browse Dup"
    assert len(by_id) == len(pool.candidates)


def test_missing_sources_are_tolerated():
    pool = CandidatePoolAssembler(None, None, None).assemble([])
    assert len(pool) == 0


def test_profile_hints():
    assembler = CandidatePoolAssembler(None, None, None, top_genres_limit=2)
    snapshots = [
        make_snapshot("a", "A", genres=["RPG", "Action"], developer="FromSoftware", rating=5),
        make_snapshot("b", "B", genres=["rpg"], developer="Valve", rating=2),
        make_snapshot("c", "C", genres=["Puzzle"]),
    ]
    assert assembler.top_genres(snapshots) == ["rpg", "action"]
    assert assembler.loyal_developers(snapshots) == ["fromsoftware"]


def test_browse_conversion_handles_price_and_similar_games():
    c = candidate_from_browse(
        {
            "id": "steam-7",
            "title": "Hollow Knight",
            "genre": ["Metroidvania", 3],
            "price": {"isFree": False, "finalFormatted": "$14.99", "discountPercent": 50},
            "similarGames": [{"name": "Ori"}, {"nope": 1}],
            "reviewVolume": 1000,
        }
    )
    assert c.genres == ["Metroidvania"]
    assert c.price.discount_percent == 50
    assert c.similar_game_titles == ["Ori"]
    assert c.review_volume == 1000
    assert c.review_positivity is None


def test_catalog_conversion():
    entry = CatalogEntry(app_id=2, name="X", windows=True, linux=True, release_date=1600000000, is_free=True)
    c = candidate_from_catalog(entry)
    assert c.game_id == "steam-2"
    assert c.platforms == ["Windows", "Linux"]
    assert c.release_date == "2020-09-13"
    assert c.price.is_free
