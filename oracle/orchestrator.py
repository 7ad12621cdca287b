# oracle/orchestrator.py
"""
Orquestrador do Motor de Recomendação - Oracle

Este módulo coordena uma rodada completa de recomendação, do estado da
biblioteca até as prateleiras ordenadas pelo bandit.

Fluxo de Processamento:
1. Cache de resultados: se houver uma rodada com menos de 15 min, restaura e para
2. Snapshots: jogos + sessões + mudanças de status (com vetores em cache)
3. Candidatos: cache de navegação + catálogo pré-filtrado + ANN
4. Embeddings: gera os vetores faltantes da biblioteca e mescla os do catálogo
5. Worker: pontuação isolada com watchdog de inatividade
6. Bandit: reordena as prateleiras antes de publicar

Estados: idle -> computing -> done | error. Assinantes são notificados a cada
mudança de estado.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Iterable, List, Literal, Optional, Sequence

from pydantic import ValidationError

from oracle.bandit import ShelfBandit
from oracle.candidates.pool import CandidatePool, CandidatePoolAssembler
from oracle.embeddings.service import EmbeddingService
from oracle.errors import StorageWriteFailed, WorkerCrashed, WorkerStalled
from oracle.history import RecoHistoryStore
from oracle.recommendation_logger import RecommendationLogger
from oracle.scoring.centroid import centroid_from_snapshots
from oracle.scoring.snapshot import build_user_snapshots
from oracle.storage.keyed_store import KeyedStore
from oracle.storage.schema import RECO_RESULTS
from oracle.worker.protocol import ErrorMessage, ProgressMessage, ResultMessage, WorkerInput
from oracle.worker.runner import ScoringWorker, build_worker
from schemas.library import LibraryExport, LibraryGame, PlaySession, StatusChange
from schemas.reco_output import RecoShelf, TasteProfile

logger = logging.getLogger(__name__)

RecoStatus = Literal["idle", "computing", "done", "error"]

RESULT_CACHE_KEY = "latest"

MSG_STALLED = "Recommendation engine stalled — try again"
MSG_CRASHED = "Worker failed — falling back"
MSG_SPAWN_FAILED = "Could not start recommendation engine"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class RecoProgress:
    stage: str = ""
    percent: int = 0


@dataclass(frozen=True)
class RecoState:
    status: RecoStatus = "idle"
    progress: RecoProgress = field(default_factory=RecoProgress)
    taste_profile: Optional[TasteProfile] = None
    shelves: List[RecoShelf] = field(default_factory=list)
    compute_time_ms: int = 0
    last_computed: Optional[int] = None
    error: Optional[str] = None
    library_count: int = 0
    candidate_count: int = 0


class RecoOrchestrator:
    def __init__(
        self,
        store: Optional[KeyedStore],
        assembler: CandidatePoolAssembler,
        embedding_service: Optional[EmbeddingService],
        bandit: ShelfBandit,
        history: RecoHistoryStore,
        worker_factory: Callable[[], ScoringWorker],
        idle_timeout_s: float = 600.0,
        cache_ttl_ms: int = 15 * 60 * 1000,
        run_logger: Optional[RecommendationLogger] = None,
        worker_mode: str = "process",
        mmr_lambda: float = 0.7,
        mmr_limit: int = 80,
        taste_clusters: int = 3,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.store = store
        self.assembler = assembler
        self.embedding_service = embedding_service
        self.bandit = bandit
        self.history = history
        self.worker_factory = worker_factory
        self.idle_timeout_s = float(idle_timeout_s)
        self.cache_ttl_ms = int(cache_ttl_ms)
        self.run_logger = run_logger
        self.worker_mode = worker_mode
        self.mmr_lambda = float(mmr_lambda)
        self.mmr_limit = int(mmr_limit)
        self.taste_clusters = int(taste_clusters)
        self._clock = clock

        self._lock = threading.RLock()
        self._state = RecoState()
        self._listeners: List[Callable[[RecoState], None]] = []
        self._worker: Optional[ScoringWorker] = None
        self._computing = False  # rodada reservada; checagem e reserva sob o mesmo lock

    @classmethod
    def from_config(
        cls,
        cfg,
        store: Optional[KeyedStore],
        assembler: CandidatePoolAssembler,
        embedding_service: Optional[EmbeddingService],
        bandit: ShelfBandit,
        history: RecoHistoryStore,
        run_logger: Optional[RecommendationLogger] = None,
    ) -> "RecoOrchestrator":
        mode = getattr(cfg, "WORKER_MODE", "process")
        return cls(
            store=store,
            assembler=assembler,
            embedding_service=embedding_service,
            bandit=bandit,
            history=history,
            worker_factory=lambda: build_worker(mode),
            idle_timeout_s=getattr(cfg, "WORKER_IDLE_TIMEOUT_S", 600.0),
            cache_ttl_ms=getattr(cfg, "RESULT_CACHE_TTL_MIN", 15) * 60 * 1000,
            run_logger=run_logger,
            worker_mode=mode,
            mmr_lambda=getattr(cfg, "MMR_LAMBDA", 0.7),
            mmr_limit=getattr(cfg, "MMR_LIMIT", 80),
            taste_clusters=getattr(cfg, "TASTE_CLUSTERS", 3),
        )

    # ---------- Estado e assinaturas ----------
    @property
    def state(self) -> RecoState:
        with self._lock:
            return self._state

    def subscribe(self, listener: Callable[[RecoState], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _set_state(self, **changes) -> RecoState:
        with self._lock:
            self._state = replace(self._state, **changes)
            state = self._state
        for fn in list(self._listeners):
            try:
                fn(state)
            except Exception as e:
                logger.warning(f"Assinante falhou ao receber estado: {e}")
        return state

    # ---------- Cache de resultados ----------
    def _load_cached_result(self) -> Optional[dict]:
        if self.store is None:
            return None
        cached = self.store.get_value(RECO_RESULTS, RESULT_CACHE_KEY)
        if not isinstance(cached, dict):
            return None
        last = int(cached.get("lastComputed") or 0)
        if self._clock() - last >= self.cache_ttl_ms:
            return None
        return cached

    def _save_cached_result(self, state: RecoState) -> None:
        if self.store is None:
            return
        payload = {
            "shelves": [s.model_dump(by_alias=True, mode="json") for s in state.shelves],
            "tasteProfile": state.taste_profile.model_dump(by_alias=True, mode="json") if state.taste_profile else None,
            "computeTimeMs": state.compute_time_ms,
            "lastComputed": state.last_computed,
            "libraryCount": state.library_count,
            "candidateCount": state.candidate_count,
        }
        try:
            self.store.put(RECO_RESULTS, RESULT_CACHE_KEY, payload)
        except StorageWriteFailed as e:
            logger.warning(f"Falha ao salvar cache de resultados: {e}")

    def _clear_cached_result(self) -> None:
        if self.store is not None:
            self.store.delete(RECO_RESULTS, RESULT_CACHE_KEY)

    def _restore_from_cache(self) -> bool:
        cached = self._load_cached_result()
        if not cached or not cached.get("shelves"):
            return False
        try:
            shelves = [RecoShelf.model_validate(s) for s in cached["shelves"]]
            profile = TasteProfile.model_validate(cached["tasteProfile"]) if cached.get("tasteProfile") else None
        except ValidationError as e:
            logger.warning(f"Cache de resultados corrompido; recalculando: {e.error_count()} erro(s)")
            return False

        age_s = round((self._clock() - int(cached.get("lastComputed") or 0)) / 1000)
        logger.info(f"Resultados restaurados do cache ({len(shelves)} prateleiras, calculados há {age_s}s)")
        self._set_state(
            status="done",
            progress=RecoProgress("Complete (cached)", 100),
            taste_profile=profile,
            shelves=shelves,
            compute_time_ms=int(cached.get("computeTimeMs") or 0),
            last_computed=int(cached.get("lastComputed") or self._clock()),
            library_count=int(cached.get("libraryCount") or 0),
            candidate_count=int(cached.get("candidateCount") or 0),
            error=None,
        )
        return True

    # ---------- Rodada ----------
    def compute(
        self,
        games: Sequence[LibraryGame],
        sessions: Iterable[PlaySession] = (),
        status_changes: Iterable[StatusChange] = (),
        generate_embeddings: bool = True,
    ) -> RecoState:
        """
        Executa uma rodada (bloqueante). Retorna o estado final.

        Um pedido feito enquanto outra rodada está em curso é recusado e
        devolve o estado atual, sem iniciar outro worker.
        """
        with self._lock:
            if self._computing:
                logger.info("Rodada já em andamento; pedido recusado")
                return self._state
            self._computing = True

        try:
            if self._restore_from_cache():
                return self.state

            self._set_state(status="computing", progress=RecoProgress("Gathering data...", 5), error=None)
            try:
                data, pool = self._prepare(games, sessions, status_changes, generate_embeddings)
            except Exception as e:
                logger.exception("Falha ao preparar a rodada")
                return self._set_state(status="error", error=str(e) or type(e).__name__)

            return self._run_worker(data, pool)
        finally:
            with self._lock:
                self._computing = False

    def compute_export(self, export: LibraryExport, generate_embeddings: bool = True) -> RecoState:
        return self.compute(export.games, export.sessions, export.status_changes, generate_embeddings)

    def _prepare(
        self,
        games: Sequence[LibraryGame],
        sessions: Iterable[PlaySession],
        status_changes: Iterable[StatusChange],
        generate_embeddings: bool,
    ):
        cache = None
        if self.embedding_service is not None:
            self.embedding_service.load_cached("library")
            cache = self.embedding_service.cache

        snapshots = build_user_snapshots(games, sessions, status_changes, cache=cache)
        pool = self.assembler.assemble(snapshots)
        self._set_state(library_count=len(snapshots), candidate_count=len(pool))

        if self.embedding_service is not None and generate_embeddings:
            self._set_state(progress=RecoProgress("Generating semantic embeddings...", 10))
            generated = self.embedding_service.generate_missing(list(games), "library")
            merged = self.embedding_service.enrich_with_catalog_embeddings(c.game_id for c in pool.candidates)
            if generated > 0 or merged > 0:
                for s in snapshots:
                    if s.embedding is None:
                        s.embedding = cache.get(s.game_id)
                for c in pool.candidates:
                    if c.embedding is None:
                        c.embedding = cache.get(c.game_id)

        with_vectors = sum(1 for c in pool.candidates if c.embedding is not None)
        coverage = with_vectors / len(pool.candidates) if pool.candidates else 0.0

        now = self._clock()
        data = WorkerInput(
            user_games=snapshots,
            candidates=pool.candidates,
            now=now,
            current_hour=datetime.fromtimestamp(now / 1000).hour,
            embedding_coverage=coverage,
            dismissed_game_ids=self.history.dismissed_ids(),
            taste_centroid=centroid_from_snapshots(snapshots),
            mmr_lambda=self.mmr_lambda,
            mmr_limit=self.mmr_limit,
            taste_clusters=self.taste_clusters,
        )
        return data, pool

    def _run_worker(self, data: WorkerInput, pool: CandidatePool) -> RecoState:
        self._kill_worker()
        worker = self.worker_factory()
        try:
            worker.start(data)
        except Exception as e:
            logger.error(f"Falha ao iniciar o worker: {e}")
            return self._set_state(status="error", error=MSG_SPAWN_FAILED)

        with self._lock:
            self._worker = worker

        try:
            while True:
                msg = worker.poll(self.idle_timeout_s)
                if self._worker is not worker:
                    # reset()/refresh() derrubou esta rodada
                    return self.state
                if msg is None:
                    raise WorkerStalled(f"no message for {self.idle_timeout_s:.0f}s")
                if isinstance(msg, ProgressMessage):
                    self._set_state(progress=RecoProgress(msg.stage, msg.percent))
                    continue
                if isinstance(msg, ErrorMessage):
                    raise WorkerCrashed(msg.message)
                if isinstance(msg, ResultMessage):
                    return self._publish_result(msg, pool, data.embedding_coverage)
        except WorkerStalled as e:
            if self._worker is not worker:
                return self.state
            logger.error(f"Worker travado: {e}")
            self._log_run(pool, data.embedding_coverage, 0, [], success=False, error=str(e))
            return self._set_state(status="error", error=MSG_STALLED)
        except WorkerCrashed as e:
            if self._worker is not worker:
                return self.state
            logger.error(f"Worker falhou: {e}")
            self._log_run(pool, data.embedding_coverage, 0, [], success=False, error=str(e))
            return self._set_state(status="error", error=MSG_CRASHED)
        finally:
            with self._lock:
                if self._worker is worker:
                    self._worker = None
            worker.terminate()

    def _publish_result(self, msg: ResultMessage, pool: CandidatePool, coverage: float) -> RecoState:
        shelves = self.bandit.reorder_shelves(msg.shelves)
        state = self._set_state(
            status="done",
            progress=RecoProgress("Complete", 100),
            taste_profile=msg.taste_profile,
            shelves=shelves,
            compute_time_ms=msg.compute_time_ms,
            last_computed=self._clock(),
            error=None,
        )
        self._save_cached_result(state)
        self._log_run(pool, coverage, msg.compute_time_ms, shelves)
        logger.info(f"Rodada concluída: {len(shelves)} prateleiras em {msg.compute_time_ms} ms")
        return state

    def _log_run(
        self,
        pool: CandidatePool,
        coverage: float,
        compute_time_ms: int,
        shelves: Sequence[RecoShelf],
        success: bool = True,
        error: Optional[str] = None,
    ) -> None:
        if self.run_logger is None:
            return
        self.run_logger.log_compute_run(
            library_count=self.state.library_count,
            candidate_count=len(pool),
            shelves=shelves,
            compute_time_ms=compute_time_ms,
            source_counts=pool.counts,
            embedding_coverage=coverage,
            worker_mode=self.worker_mode,
            success=success,
            error_message=error,
        )

    # ---------- Controle ----------
    def _kill_worker(self) -> None:
        with self._lock:
            worker, self._worker = self._worker, None
        if worker is not None:
            worker.terminate()

    def refresh(self) -> None:
        """Descarta o cache de resultados e volta ao estado inicial."""
        self._kill_worker()
        self._clear_cached_result()
        with self._lock:
            self._state = RecoState()
        self._set_state()

    def reset(self) -> None:
        """Volta ao estado inicial sem apagar o cache."""
        self._kill_worker()
        with self._lock:
            self._state = RecoState()
        self._set_state()
