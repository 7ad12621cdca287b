# oracle/catalog/store.py
"""
CatalogStore — espelho local do catálogo Steam (~156K jogos)

Responsável por:
- Sincronizar o catálogo completo em lotes de 200 app IDs, com 50 workers
  drenando uma fila compartilhada (cada lote é reivindicado por um único worker).
- Persistir cada lote assim que chega (uma interrupção mantém os lotes já gravados).
- Resolver nomes de tags (cache em meta 'tag-name-map', carregado uma vez por processo).
- Pré-filtrar candidatos para o motor de recomendação numa única varredura.

Observações:
- Falha em um lote é registrada e ignorada; não aborta a sincronização.
- Progresso publicado a cada CATALOG_PROGRESS_EVERY lotes e no último.
- Cancelamento cooperativo via cancel_sync(); lotes já persistidos ficam.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterable, Iterator, List, Literal, Optional, Sequence

from pydantic import ValidationError

from oracle.catalog.steam_client import CatalogDataSource
from oracle.errors import StorageWriteFailed
from oracle.storage.keyed_store import KeyedStore
from oracle.storage.schema import CATALOG_ENTRIES, CATALOG_META, SyncState
from schemas.catalog_entry import CatalogEntry

logger = logging.getLogger(__name__)

SyncStage = Literal["idle", "fetching-ids", "fetching-tags", "fetching-metadata", "done", "error"]

TAG_MAP_KEY = "tag-name-map"
SYNC_STATE_KEY = "sync-state"


@dataclass(frozen=True)
class CatalogSyncProgress:
    stage: SyncStage = "idle"
    batches_completed: int = 0
    batches_total: int = 0
    games_stored: int = 0
    error: Optional[str] = None


def _now_ms() -> int:
    return int(time.time() * 1000)


class CatalogStore:
    """
    Uso típico:
        store = CatalogStore.from_config(cfg, keyed_store, SteamCatalogClient.from_config(cfg))
        store.sync()
        entries = store.query_for_candidates(top_genres=["RPG"], loyal_developers=[], exclude_ids=set())
    """

    def __init__(
        self,
        store: KeyedStore,
        source: Optional[CatalogDataSource],
        batch_size: int = 200,
        concurrency: int = 50,
        stale_hours: int = 24,
        progress_every: int = 20,
        scan_batch: int = 500,
        min_reviews: int = 10,
        min_positivity: float = 0.5,
        max_results: int = 25000,
        popularity_escape_reviews: int = 1000,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.store = store
        self.source = source
        self.batch_size = max(1, int(batch_size))
        self.concurrency = max(1, int(concurrency))
        self.stale_ms = int(stale_hours) * 60 * 60 * 1000
        self.progress_every = max(1, int(progress_every))
        self.scan_batch = max(1, int(scan_batch))
        self.min_reviews = int(min_reviews)
        self.min_positivity = float(min_positivity)
        self.max_results = int(max_results)
        self.popularity_escape_reviews = int(popularity_escape_reviews)
        self._clock = clock

        self._lock = threading.Lock()
        self._listeners: List[Callable[[CatalogSyncProgress], None]] = []
        self._progress = CatalogSyncProgress()
        self._syncing = False
        self._cancel: Optional[threading.Event] = None
        self._tag_names: Optional[Dict[int, str]] = None

    # ---------- Fábrica ----------
    @classmethod
    def from_config(cls, cfg, store: KeyedStore, source: Optional[CatalogDataSource]) -> "CatalogStore":
        return cls(
            store=store,
            source=source,
            batch_size=getattr(cfg, "CATALOG_BATCH_SIZE", 200),
            concurrency=getattr(cfg, "CATALOG_CONCURRENCY", 50),
            stale_hours=getattr(cfg, "CATALOG_STALE_HOURS", 24),
            progress_every=getattr(cfg, "CATALOG_PROGRESS_EVERY", 20),
            scan_batch=getattr(cfg, "CATALOG_SCAN_BATCH", 500),
            min_reviews=getattr(cfg, "MIN_REVIEWS", 10),
            min_positivity=getattr(cfg, "MIN_POSITIVITY", 0.5),
            max_results=getattr(cfg, "MAX_CATALOG_RESULTS", 25000),
            popularity_escape_reviews=getattr(cfg, "POPULARITY_ESCAPE_REVIEWS", 1000),
        )

    # ---------- Assinaturas / progresso ----------
    def subscribe(self, listener: Callable[[CatalogSyncProgress], None]) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    @property
    def progress(self) -> CatalogSyncProgress:
        return self._progress

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    def _publish(self, progress: CatalogSyncProgress) -> None:
        with self._lock:
            self._progress = progress
            listeners = list(self._listeners)
        for fn in listeners:
            try:
                fn(progress)
            except Exception as e:
                logger.warning(f"Listener de progresso do catálogo falhou: {e}")

    def cancel_sync(self) -> None:
        if self._cancel is not None:
            self._cancel.set()

    # ---------- Estado de sincronização ----------
    def get_sync_state(self) -> Optional[SyncState]:
        return SyncState.from_dict(self.store.get_value(CATALOG_META, SYNC_STATE_KEY))

    def is_fresh(self) -> bool:
        state = self.get_sync_state()
        return state is not None and state.is_fresh(self._clock(), self.stale_ms)

    def count(self) -> int:
        return self.store.count(CATALOG_ENTRIES)

    def _save_sync_state(self, state: SyncState) -> None:
        try:
            self.store.put(CATALOG_META, SYNC_STATE_KEY, state.to_dict())
        except StorageWriteFailed as e:
            logger.error(f"Falha ao salvar estado da sincronização: {e}")

    # ---------- Tags ----------
    def _load_tag_names(self) -> Dict[int, str]:
        if self._tag_names is not None:
            return self._tag_names

        cached = self.store.get_value(CATALOG_META, TAG_MAP_KEY)
        if isinstance(cached, dict) and cached:
            self._tag_names = {int(k): str(v) for k, v in cached.items()}
            return self._tag_names

        tags = self.source.get_tag_list()
        names = {t.tag_id: t.name for t in tags}
        try:
            self.store.put(CATALOG_META, TAG_MAP_KEY, {str(k): v for k, v in names.items()})
        except StorageWriteFailed as e:
            logger.warning(f"Mapa de tags não persistido: {e}")
        self._tag_names = names
        logger.info(f"Lista de tags carregada: {len(names)} tags")
        return names

    # ---------- Sincronização ----------
    def sync(self, force: bool = False) -> CatalogSyncProgress:
        """
        Sincroniza o catálogo. Não faz nada se já houver uma sincronização em
        andamento ou se os dados estiverem frescos (a menos que force=True).
        """
        with self._lock:
            if self._syncing:
                return self._progress
            self._syncing = True
            self._cancel = threading.Event()
        cancel = self._cancel

        try:
            if not force:
                state = self.get_sync_state()
                if state is not None and state.is_fresh(self._clock(), self.stale_ms):
                    self._publish(
                        CatalogSyncProgress(
                            stage="done",
                            batches_completed=state.batches_completed,
                            batches_total=state.batches_total,
                            games_stored=state.total_entries,
                        )
                    )
                    return self._progress

            if self.source is None:
                raise RuntimeError("Nenhuma fonte de catálogo configurada")
            return self._run_sync(cancel)
        except Exception as e:
            logger.error(f"Sincronização do catálogo falhou: {e}")
            self._publish(replace(self._progress, stage="error", error=str(e)))
            return self._progress
        finally:
            with self._lock:
                self._syncing = False
                self._cancel = None

    def _run_sync(self, cancel: threading.Event) -> CatalogSyncProgress:
        previous = self.get_sync_state() or SyncState()

        # 1) IDs
        self._publish(CatalogSyncProgress(stage="fetching-ids"))
        app_ids = [a.app_id for a in self.source.get_app_ids()]
        logger.info(f"{len(app_ids)} app IDs recebidos")

        # 2) Tags
        self._publish(replace(self._progress, stage="fetching-tags"))
        tag_names = self._load_tag_names()

        # 3) Lotes
        batches = [app_ids[i : i + self.batch_size] for i in range(0, len(app_ids), self.batch_size)]
        total = len(batches)
        self._publish(CatalogSyncProgress(stage="fetching-metadata", batches_total=total))
        self._save_sync_state(replace(previous, batches_completed=0, batches_total=total, in_progress=True))

        work: "queue.Queue[tuple]" = queue.Queue()
        for idx, batch in enumerate(batches):
            work.put((idx, batch))

        counters = {"completed": 0, "stored": 0}
        counter_lock = threading.Lock()

        def _worker() -> None:
            while not cancel.is_set():
                try:
                    idx, batch = work.get_nowait()
                except queue.Empty:
                    return
                stored = 0
                try:
                    entries = self._fetch_entries(batch, tag_names)
                    if entries:
                        self.store.put_many(CATALOG_ENTRIES, ((str(e.app_id), e.to_store(), None) for e in entries))
                        stored = len(entries)
                except Exception as e:
                    logger.warning(f"Lote {idx} falhou: {e}")

                with counter_lock:
                    counters["completed"] += 1
                    counters["stored"] += stored
                    done, games = counters["completed"], counters["stored"]
                if done % self.progress_every == 0 or done == total:
                    self._publish(
                        CatalogSyncProgress(
                            stage="fetching-metadata",
                            batches_completed=done,
                            batches_total=total,
                            games_stored=games,
                        )
                    )

        with ThreadPoolExecutor(max_workers=min(self.concurrency, max(1, total)), thread_name_prefix="catalog-sync") as pool:
            futures = [pool.submit(_worker) for _ in range(min(self.concurrency, max(1, total)))]
            for f in futures:
                f.result()

        done, games = counters["completed"], counters["stored"]
        if cancel.is_set():
            # Mantém o carimbo anterior: a próxima sync(force=False) retoma.
            self._save_sync_state(
                replace(previous, batches_completed=done, batches_total=total, in_progress=True)
            )
            logger.info(f"Sincronização cancelada após {done}/{total} lotes ({games} jogos gravados)")
            self._publish(
                CatalogSyncProgress(stage="idle", batches_completed=done, batches_total=total, games_stored=games)
            )
            return self._progress

        self._save_sync_state(
            SyncState(
                last_sync_timestamp=self._clock(),
                total_entries=games,
                batches_completed=done,
                batches_total=total,
                in_progress=False,
            )
        )
        self._publish(
            CatalogSyncProgress(stage="done", batches_completed=done, batches_total=total, games_stored=games)
        )
        logger.info(f"Sincronização completa: {games} jogos em {total} lotes")
        return self._progress

    def _fetch_entries(self, app_ids: Sequence[int], tag_names: Dict[int, str]) -> List[CatalogEntry]:
        entries: List[CatalogEntry] = []
        for item in self.source.fetch_batch(app_ids):
            try:
                entry = CatalogEntry.from_source(item, tag_names)
            except (ValidationError, KeyError, TypeError, ValueError) as e:
                logger.debug(f"Item de catálogo descartado: {e}")
                continue
            if entry is not None:
                entries.append(entry)
        return entries

    # ---------- Leitura ----------
    def iter_entries(self, batch_size: Optional[int] = None) -> Iterator[List[CatalogEntry]]:
        """Percorre todo o catálogo em lotes (padrão 500) sem carregar tudo em memória."""
        size = int(batch_size or self.scan_batch)
        batch: List[CatalogEntry] = []
        for entry in self._scan():
            batch.append(entry)
            if len(batch) >= size:
                yield batch
                batch = []
        if batch:
            yield batch

    def _scan(self) -> Iterator[CatalogEntry]:
        for row in self.store.scan(CATALOG_ENTRIES, batch_size=self.scan_batch, include_blob=False):
            try:
                yield CatalogEntry.model_validate(row.value)
            except ValidationError as e:
                logger.warning(f"Entrada de catálogo corrompida {row.key!r}: {e.error_count()} erro(s)")

    def get_entries(self, app_ids: Iterable[int]) -> List[CatalogEntry]:
        out: List[CatalogEntry] = []
        for app_id in app_ids:
            row = self.store.get(CATALOG_ENTRIES, str(app_id))
            if row is None:
                continue
            try:
                out.append(CatalogEntry.model_validate(row.value))
            except ValidationError as e:
                logger.warning(f"Entrada de catálogo corrompida {row.key!r}: {e.error_count()} erro(s)")
        return out

    def query_for_candidates(
        self,
        top_genres: Iterable[str],
        loyal_developers: Iterable[str],
        exclude_ids: Iterable[str],
        min_reviews: Optional[int] = None,
        min_positivity: Optional[float] = None,
        max_results: Optional[int] = None,
    ) -> List[CatalogEntry]:
        """
        Uma única varredura aplicando, por linha:
        - exclui ids em exclude_ids (formato "steam-{appid}");
        - exclui reviewCount < min_reviews ou positividade < min_positivity;
        - inclui se há gênero em comum, desenvolvedor fiel, ou reviewCount >= escape de popularidade.
        Para ao atingir max_results; resultado ordenado por reviewCount decrescente.
        """
        min_reviews = self.min_reviews if min_reviews is None else int(min_reviews)
        min_positivity = self.min_positivity if min_positivity is None else float(min_positivity)
        max_results = self.max_results if max_results is None else int(max_results)

        genre_set = {g.lower() for g in top_genres}
        dev_set = {d.lower() for d in loyal_developers}
        excluded = set(exclude_ids)

        results: List[CatalogEntry] = []
        for entry in self._scan():
            if len(results) >= max_results:
                break
            if entry.game_id in excluded:
                continue
            if entry.review_count < min_reviews or entry.review_positivity < min_positivity:
                continue
            genre_match = any(g.lower() in genre_set for g in entry.genres)
            dev_match = bool(entry.developer) and entry.developer.lower() in dev_set
            popular = entry.review_count >= self.popularity_escape_reviews
            if genre_match or dev_match or popular:
                results.append(entry)

        results.sort(key=lambda e: e.review_count, reverse=True)
        return results[:max_results]

    # ---------- Manutenção ----------
    def clear(self) -> None:
        self.store.clear(CATALOG_ENTRIES)
        self.store.clear(CATALOG_META)
        self._tag_names = None
        self._publish(CatalogSyncProgress())
        logger.info("Catálogo local apagado")
