import json
from dataclasses import replace

import httpx
import pytest

from oracle.catalog.browse_cache import BrowseCache
from oracle.catalog.steam_client import AppRef, SteamCatalogClient, TagRef
from oracle.catalog.store import CatalogStore
from oracle.storage.schema import CATALOG_ENTRIES
from schemas.catalog_entry import CatalogEntry

from tests.factories import NOW_MS, steam_item

HOUR = 60 * 60 * 1000


class FakeSource:
    def __init__(self, items, fail_batches=(), on_batch=None):
        self.items = {it["appid"]: it for it in items}
        self.fail_batches = set(fail_batches)
        self.on_batch = on_batch
        self.tag_calls = 0
        self.batch_calls = 0

    def get_app_ids(self):
        return [AppRef(app_id=a, name=it["name"]) for a, it in sorted(self.items.items())]

    def fetch_batch(self, app_ids):
        index = self.batch_calls
        self.batch_calls += 1
        if self.on_batch is not None:
            self.on_batch(index)
        if index in self.fail_batches:
            raise httpx.ConnectError("boom")
        return [self.items[a] for a in app_ids]

    def get_tag_list(self):
        self.tag_calls += 1
        return [TagRef(tag_id=19, name="Action"), TagRef(tag_id=122, name="RPG")]


class Clock:
    def __init__(self, now=NOW_MS):
        self.now = now

    def __call__(self):
        return self.now


def _catalog(store, source, clock=None, **kw):
    params = dict(batch_size=2, concurrency=1, progress_every=1, min_reviews=10, min_positivity=0.5)
    params.update(kw)
    return CatalogStore(store, source, clock=clock or Clock(), **params)


def _items(n):
    return [steam_item(i, f"Game {i}") for i in range(1, n + 1)]


def test_sync_stores_normalized_entries(store):
    source = FakeSource(_items(5) + [dict(steam_item(99, "Hidden"), visible=False)])
    catalog = _catalog(store, source)

    progress = []
    catalog.subscribe(progress.append)
    result = catalog.sync()

    assert result.stage == "done"
    assert result.batches_total == 3
    assert result.games_stored == 5
    assert catalog.count() == 5
    assert [p.stage for p in progress][:2] == ["fetching-ids", "fetching-tags"]

    entry = catalog.get_entries([1])[0]
    assert entry.genres == ["Action"]
    assert entry.review_positivity == pytest.approx(0.9)
    assert entry.game_id == "steam-1"

    state = catalog.get_sync_state()
    assert state.total_entries == 5
    assert not state.in_progress
    assert catalog.is_fresh()


def test_fresh_catalog_is_not_resynced(store):
    source = FakeSource(_items(3))
    clock = Clock()
    catalog = _catalog(store, source, clock=clock)
    catalog.sync()
    calls = source.batch_calls

    assert catalog.sync().stage == "done"
    assert source.batch_calls == calls

    clock.now += 25 * HOUR
    assert not catalog.is_fresh()
    catalog.sync()
    assert source.batch_calls > calls


def test_tag_names_are_cached_across_instances(store):
    source = FakeSource(_items(2))
    _catalog(store, source).sync()
    _catalog(store, source).sync(force=True)
    assert source.tag_calls == 1


def test_failed_batch_is_skipped(store):
    source = FakeSource(_items(6), fail_batches={1})
    catalog = _catalog(store, source)
    result = catalog.sync()

    assert result.stage == "done"
    assert result.batches_completed == 3
    assert result.games_stored == 4


def test_cancel_keeps_persisted_batches(store):
    catalog = None

    def _cancel_after_first(index):
        if index == 1:
            catalog.cancel_sync()

    source = FakeSource(_items(6), on_batch=_cancel_after_first)
    catalog = _catalog(store, source)
    result = catalog.sync()

    assert result.stage == "idle"
    # Lote 1 já estava em voo quando o cancelamento chegou: 2 lotes de 2 jogos
    assert result.batches_completed == 2
    assert catalog.count() == 4
    state = catalog.get_sync_state()
    assert state.in_progress
    assert state.batches_completed == 2
    assert not catalog.is_fresh()


def test_cancelled_sync_resumes_without_refetching_tags(store):
    catalog = None

    def _cancel_after_first(index):
        if index == 1:
            catalog.cancel_sync()

    source = FakeSource(_items(6), on_batch=_cancel_after_first)
    catalog = _catalog(store, source)
    catalog.sync()
    assert source.tag_calls == 1

    # Novo processo: outra instância, mesmo armazenamento, sem force
    source.on_batch = None
    resumed = _catalog(store, source).sync()

    assert resumed.stage == "done"
    assert resumed.games_stored == 6
    assert source.tag_calls == 1
    assert _catalog(store, source).count() == 6


def test_sync_without_source_reports_error(store):
    result = _catalog(store, None).sync()
    assert result.stage == "error"
    assert result.error


def test_iter_entries_batches(store):
    _catalog(store, FakeSource(_items(5))).sync()
    catalog = _catalog(store, None)
    batches = list(catalog.iter_entries(batch_size=2))
    assert [len(b) for b in batches] == [2, 2, 1]


def test_query_for_candidates_filters(store):
    entries = [
        CatalogEntry(app_id=1, name="Owned", genres=["RPG"], review_count=500, review_positivity=0.9),
        CatalogEntry(app_id=2, name="Genre match", genres=["rpg"], review_count=50, review_positivity=0.8),
        CatalogEntry(app_id=3, name="Dev match", genres=["Puzzle"], developer="FromSoftware", review_count=40, review_positivity=0.9),
        CatalogEntry(app_id=4, name="Popular", genres=["Sports"], review_count=5000, review_positivity=0.7),
        CatalogEntry(app_id=5, name="Too few reviews", genres=["RPG"], review_count=3, review_positivity=0.9),
        CatalogEntry(app_id=6, name="Disliked", genres=["RPG"], review_count=900, review_positivity=0.3),
        CatalogEntry(app_id=7, name="Unrelated", genres=["Sports"], review_count=100, review_positivity=0.9),
    ]
    store.put_many(CATALOG_ENTRIES, [(str(e.app_id), e.to_store(), None) for e in entries])
    catalog = _catalog(store, None)

    result = catalog.query_for_candidates(["RPG"], ["fromsoftware"], {"steam-1"})
    assert [e.app_id for e in result] == [4, 2, 3]

    assert len(catalog.query_for_candidates(["RPG"], ["fromsoftware"], set(), max_results=1)) == 1


def test_clear_resets_catalog(store):
    source = FakeSource(_items(2))
    catalog = _catalog(store, source)
    catalog.sync()
    catalog.clear()
    assert catalog.count() == 0
    assert catalog.get_sync_state() is None


# ---------- Cliente Steam (httpx.MockTransport) ----------
def test_steam_client_pages_app_list(cfg):
    pages = {
        None: {"apps": [{"appid": 10, "name": "A"}, {"appid": 20, "name": ""}], "have_more_results": True, "last_appid": 20},
        "20": {"apps": [{"appid": 30, "name": "C"}], "have_more_results": False},
    }
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/IStoreService/GetAppList/v1/"
        cursor = request.url.params.get("last_appid")
        seen.append(cursor)
        return httpx.Response(200, json={"response": pages[cursor]})

    with SteamCatalogClient(cfg, transport=httpx.MockTransport(handler)) as client:
        apps = client.get_app_ids()

    assert [a.app_id for a in apps] == [10, 30]
    assert seen == [None, "20"]


def test_steam_client_fetch_batch_and_tags(cfg):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/IStoreBrowseService/GetItems/v1/":
            body = json.loads(request.url.params["input_json"])
            ids = [x["appid"] for x in body["ids"]]
            return httpx.Response(200, json={"response": {"store_items": [steam_item(i, f"G{i}") for i in ids]}})
        return httpx.Response(200, json={"response": {"tags": [{"tagid": 19, "name": "Action"}]}})

    with SteamCatalogClient(cfg, transport=httpx.MockTransport(handler)) as client:
        items = client.fetch_batch([1, 2])
        tags = client.get_tag_list()

    assert [it["appid"] for it in items] == [1, 2]
    assert tags == [TagRef(tag_id=19, name="Action")]
    assert client.fetch_batch([]) == []


def test_steam_client_retries_server_errors(cfg):
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(503, headers={"Retry-After": "0.01"})
        return httpx.Response(200, json={"response": {"tags": []}})

    with SteamCatalogClient(cfg, transport=httpx.MockTransport(handler)) as client:
        assert client.get_tag_list() == []
    assert calls["n"] == 2


def test_steam_client_gives_up_on_client_errors(cfg):
    handler = lambda request: httpx.Response(403, json={})
    with SteamCatalogClient(replace(cfg, HTTP_RETRIES=0), transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(httpx.HTTPStatusError):
            client.get_tag_list()


# ---------- Cache de navegação ----------
def test_browse_cache_ttl(store):
    clock = Clock()
    cache = BrowseCache(store, ttl_days=7, clock=clock)
    assert cache.load() == []

    cache.save([{"gameId": "steam-1"}, "junk"])
    assert cache.load() == [{"gameId": "steam-1"}]

    clock.now += 8 * 24 * HOUR
    assert cache.load() == []
