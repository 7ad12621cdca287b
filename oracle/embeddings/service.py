# oracle/embeddings/service.py
"""
EmbeddingService — cache de embeddings em dois níveis

Responsável por:
- Verificar (uma vez) se o backend de embeddings está disponível.
- Carregar o nível biblioteca do armazenamento para o mapa vivo (TTL 30 dias).
- Gerar embeddings faltantes/desatualizados em lotes, persistindo cada lote.
- Gerar embeddings do catálogo em segundo plano (TTL 90 dias), alimentando o índice ANN.
- Mesclar, sob demanda, vetores do nível catálogo para os candidatos de uma rodada.
- Reconstruir (backfill) o índice ANN a partir dos vetores já persistidos.

Observações:
- Backend indisponível => toda geração retorna 0 sem levantar exceção; o motor
  segue só com metadados.
- O mapa vivo (EmbeddingCache) só recebe merges; nunca é substituído.
- Registros expirados são tratados como ausentes (não são apagados).
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from oracle.embeddings.backend import EmbeddingBackend, EmbedItem
from oracle.embeddings.cache import EmbeddingCache
from oracle.embeddings.text import catalog_embedding_id, catalog_text, djb2_hash, library_text
from oracle.errors import BackendUnavailable, DataCorrupt, StorageWriteFailed
from oracle.index.ann_index import AnnIndex
from oracle.storage.keyed_store import KeyedStore
from oracle.storage.schema import CATALOG_EMBEDDINGS, LIBRARY_EMBEDDINGS, EmbeddingRecord

logger = logging.getLogger(__name__)

ProgressFn = Callable[[int, int], None]

TIER_COLLECTIONS = {"library": LIBRARY_EMBEDDINGS, "catalog": CATALOG_EMBEDDINGS}


def _now_ms() -> int:
    return int(time.time() * 1000)


class EmbeddingService:
    """
    Serviço de embeddings com cache persistente por nível.

    Uso típico:
        svc = EmbeddingService.from_config(cfg, store, backend, ann, cache)
        svc.load_cached("library")
        svc.generate_missing(library_games, "library")
        svc.enrich_with_catalog_embeddings(candidate_ids)
    """

    def __init__(
        self,
        store: KeyedStore,
        backend: Optional[EmbeddingBackend],
        ann_index: Optional[AnnIndex] = None,
        cache: Optional[EmbeddingCache] = None,
        library_ttl_ms: int = 30 * 24 * 60 * 60 * 1000,
        catalog_ttl_ms: int = 90 * 24 * 60 * 60 * 1000,
        batch_size: int = 100,
        catalog_yield_s: float = 0.05,
        dim: int = 768,
        backfill_batch_size: int = 500,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.store = store
        self.backend = backend
        self.ann_index = ann_index
        self.cache = cache if cache is not None else EmbeddingCache()
        self._ttl = {"library": int(library_ttl_ms), "catalog": int(catalog_ttl_ms)}
        self.batch_size = max(1, int(batch_size))
        self.catalog_yield_s = float(catalog_yield_s)
        self.dim = int(dim)
        self.backfill_batch_size = max(1, int(backfill_batch_size))
        self._clock = clock

        self._availability_lock = threading.Lock()
        self._available: Optional[bool] = None
        self._loaded_counts: Dict[str, int] = {}  # nível -> vetores carregados

        self._catalog_lock = threading.Lock()
        self._catalog_running = False
        self._catalog_progress: Tuple[int, int] = (0, 0)
        self._library_progress: Tuple[int, int] = (0, 0)

    # ---------- Fábrica ----------
    @classmethod
    def from_config(
        cls,
        cfg,
        store: KeyedStore,
        backend: Optional[EmbeddingBackend],
        ann_index: Optional[AnnIndex] = None,
        cache: Optional[EmbeddingCache] = None,
    ) -> "EmbeddingService":
        return cls(
            store=store,
            backend=backend,
            ann_index=ann_index,
            cache=cache,
            library_ttl_ms=cfg.library_ttl_ms,
            catalog_ttl_ms=cfg.catalog_ttl_ms,
            batch_size=getattr(cfg, "EMBEDDING_BATCH_SIZE", 100),
            catalog_yield_s=getattr(cfg, "CATALOG_BATCH_YIELD_S", 0.05),
            dim=getattr(cfg, "EMBED_DIM", 768),
            backfill_batch_size=getattr(cfg, "ANN_BACKFILL_BATCH_SIZE", 500),
        )

    # ---------- Disponibilidade ----------
    def is_available(self) -> bool:
        """Health check + setup do backend, executados uma única vez e memorizados."""
        with self._availability_lock:
            if self._available is not None:
                return self._available
            if self.backend is None:
                self._available = False
                return False
            try:
                health = self.backend.health_check()
                if not health.running:
                    logger.info("Backend de embeddings indisponível; seguindo sem embeddings")
                    self._available = False
                    return False
                setup = self.backend.setup()
                self._available = bool(setup.model_ready)
                if self._available:
                    logger.info(f"Backend de embeddings pronto (versão {setup.backend_version})")
                else:
                    logger.info(f"Modelo de embeddings não está pronto: {setup.error}")
            except Exception as e:
                logger.warning(f"Erro ao verificar backend de embeddings: {e}")
                self._available = False
            return self._available

    def reset_availability(self) -> None:
        with self._availability_lock:
            self._available = None
            self._loaded_counts.clear()

    # ---------- Leitura do armazenamento ----------
    def _collection(self, tier: str) -> str:
        try:
            return TIER_COLLECTIONS[tier]
        except KeyError:
            raise ValueError(f"Nível de embedding desconhecido: {tier!r}") from None

    def _iter_valid(self, tier: str) -> Iterable[EmbeddingRecord]:
        """Registros ainda dentro do TTL do nível; corrompidos são ignorados."""
        now = self._clock()
        ttl = self._ttl[tier]
        for row in self.store.scan(self._collection(tier)):
            try:
                rec = EmbeddingRecord.from_row(row)
            except DataCorrupt as e:
                logger.warning(f"Ignorando embedding corrompido: {e}")
                continue
            if not rec.is_expired(now, ttl):
                yield rec

    def _hash_index(self, tier: str) -> Dict[str, str]:
        now = self._clock()
        ttl = self._ttl[tier]
        index: Dict[str, str] = {}
        for row in self.store.scan(self._collection(tier), include_blob=False):
            value = row.value if isinstance(row.value, dict) else {}
            if now - int(value.get("timestamp", 0) or 0) < ttl:
                index[row.key] = str(value.get("textHash", ""))
        return index

    def catalog_hash_index(self) -> Dict[str, str]:
        """Apenas id -> textHash do nível catálogo (sem carregar vetores)."""
        return self._hash_index("catalog")

    def get_embedding(self, game_id: str) -> Optional[np.ndarray]:
        """Vetor persistido de um id (biblioteca primeiro, depois catálogo)."""
        for tier in ("library", "catalog"):
            row = self.store.get(self._collection(tier), game_id)
            if row is None:
                continue
            try:
                return EmbeddingRecord.from_row(row).vector
            except DataCorrupt as e:
                logger.warning(f"Ignorando embedding corrompido: {e}")
        return None

    def load_cached(self, tier: str = "library", force_reload: bool = False) -> int:
        """
        Carrega o nível no mapa vivo. Idempotente: chamadas repetidas sem
        force_reload retornam a contagem já carregada.
        """
        collection = self._collection(tier)
        if not force_reload and tier in self._loaded_counts:
            return self._loaded_counts[tier]
        try:
            vectors = {rec.id: rec.vector for rec in self._iter_valid(tier)}
        except Exception as e:
            logger.warning(f"Falha ao carregar embeddings de '{collection}': {e}")
            vectors = {}
        self.cache.merge(vectors)
        self._loaded_counts[tier] = len(vectors)
        logger.info(f"Carregados {len(vectors)} embeddings do nível {tier}")
        return len(vectors)

    def enrich_with_catalog_embeddings(self, game_ids: Iterable[str]) -> int:
        """Mescla do nível catálogo apenas os ids ausentes do mapa vivo."""
        now = self._clock()
        ttl = self._ttl["catalog"]
        found: Dict[str, np.ndarray] = {}
        try:
            for gid in game_ids:
                if gid in self.cache:
                    continue
                row = self.store.get(CATALOG_EMBEDDINGS, gid)
                if row is None:
                    continue
                try:
                    rec = EmbeddingRecord.from_row(row)
                except DataCorrupt as e:
                    logger.warning(f"Ignorando embedding corrompido: {e}")
                    continue
                if not rec.is_expired(now, ttl):
                    found[gid] = rec.vector
        except Exception as e:
            logger.warning(f"Falha ao enriquecer candidatos com embeddings do catálogo: {e}")
            return 0
        return self.cache.merge(found, overwrite=False)

    # ---------- Geração ----------
    def _persist(self, tier: str, records: List[EmbeddingRecord]) -> bool:
        try:
            self.store.put_many(self._collection(tier), (r.to_row() for r in records))
            return True
        except StorageWriteFailed as e:
            # Segue em memória; o lote será regerado na próxima execução.
            logger.error(f"Falha ao persistir {len(records)} embeddings ({tier}): {e}")
            return False

    def _embed_batch(self, batch: Sequence[Tuple[str, str, str]]) -> List[EmbeddingRecord]:
        try:
            results = self.backend.generate_embeddings([EmbedItem(id=gid, text=text) for gid, text, _ in batch])
        except BackendUnavailable:
            # Backend caiu no meio da rodada; só volta após reset_availability()
            self._available = False
            raise
        now = self._clock()
        records = []
        for gid, _, text_hash in batch:
            vec = results.get(gid)
            if vec is None or len(vec) == 0:
                continue
            records.append(EmbeddingRecord(id=gid, vector=vec, text_hash=text_hash, timestamp=now))
        return records

    def _feed_ann(self, records: Sequence[EmbeddingRecord]) -> None:
        if self.ann_index is None or not records:
            return
        try:
            self.ann_index.add_vectors((r.id, r.vector) for r in records)
        except Exception as e:
            logger.warning(f"Índice ANN recusou {len(records)} vetores: {e}")

    def generate_missing(
        self,
        items: Sequence[Any],
        tier: str = "library",
        on_progress: Optional[ProgressFn] = None,
    ) -> int:
        """
        Gera embeddings para itens sem vetor válido ou com texto alterado.

        Itens da biblioteca precisam de ``id``; itens do catálogo de ``app_id``.
        Retorna quantos vetores novos foram gerados.
        """
        if not items or not self.is_available():
            return 0

        try:
            existing = self._hash_index(tier)
            pending, _ = self._pending(items, tier, existing)
            if not pending:
                logger.info(f"Todos os embeddings ({tier}) já estão em cache")
                return 0

            total = len(pending)
            logger.info(f"Gerando {total} embeddings ({tier})...")
            generated = 0
            completed = 0
            for i in range(0, total, self.batch_size):
                batch = pending[i : i + self.batch_size]
                records = self._embed_batch(batch)
                if records:
                    self._persist(tier, records)
                    self.cache.merge({r.id: r.vector for r in records})
                    self._feed_ann(records)
                    generated += len(records)
                completed += len(batch)
                self._library_progress = (completed, total)
                if on_progress is not None:
                    on_progress(completed, total)

            self._library_progress = (0, 0)
            if tier in self._loaded_counts:
                self._loaded_counts[tier] += generated
            logger.info(f"Gerados {generated} embeddings novos ({tier}); total no mapa: {len(self.cache)}")
            return generated
        except Exception as e:
            logger.warning(f"Erro ao gerar embeddings ({tier}): {e}")
            return 0

    def _pending(
        self, items: Iterable[Any], tier: str, existing: Dict[str, str]
    ) -> Tuple[List[Tuple[str, str, str]], int]:
        """(id, texto, hash) de quem precisa de vetor novo, e quantos itens foram lidos."""
        pending: List[Tuple[str, str, str]] = []
        seen = set()
        scanned = 0
        for item in items:
            scanned += 1
            if tier == "catalog":
                app_id = item.get("app_id") if isinstance(item, dict) else getattr(item, "app_id", None)
                gid = catalog_embedding_id(app_id)
                text = catalog_text(item)
            else:
                gid = item.get("id") if isinstance(item, dict) else getattr(item, "id", None)
                text = library_text(item)
            if not gid or gid in seen:
                continue
            seen.add(gid)
            text_hash = djb2_hash(text)
            if existing.get(gid) == text_hash:
                continue
            pending.append((gid, text, text_hash))
        return pending, scanned

    # ---------- Nível catálogo (segundo plano) ----------
    @property
    def is_catalog_running(self) -> bool:
        return self._catalog_running

    @property
    def catalog_progress(self) -> Tuple[int, int]:
        return self._catalog_progress

    @property
    def library_progress(self) -> Tuple[int, int]:
        return self._library_progress

    def generate_catalog_embeddings(
        self,
        entries: Iterable[Any],
        cancel_event: Optional[threading.Event] = None,
        on_progress: Optional[ProgressFn] = None,
    ) -> int:
        """
        Gera o nível catálogo a partir de um fluxo de CatalogEntry.

        Cancelável entre lotes; lotes já persistidos permanecem. Sem nada a
        gerar e com o índice ANN vazio, faz o backfill a partir do cache.
        """
        with self._catalog_lock:
            if self._catalog_running:
                logger.info("Geração de embeddings do catálogo já em andamento")
                return 0
            self._catalog_running = True

        cancel = cancel_event or threading.Event()
        try:
            if not self.is_available():
                return 0

            cached_hashes = self.catalog_hash_index()
            pending, scanned = self._pending(entries, "catalog", cached_hashes)
            cached_hashes.clear()

            if not pending:
                logger.info(f"Todos os {scanned} embeddings do catálogo já estão em cache")
                if self.ann_index is not None and not self.ann_index.is_ready:
                    self.backfill_ann_index()
                if self.ann_index is not None:
                    self.ann_index.finish_build()
                return 0

            total = len(pending)
            logger.info(f"Gerando {total} embeddings do catálogo (segundo plano)...")
            self._catalog_progress = (0, total)
            generated = 0
            completed = 0
            for i in range(0, total, self.batch_size):
                if cancel.is_set():
                    logger.info(f"Geração do catálogo cancelada após {completed}/{total}")
                    break
                batch = pending[i : i + self.batch_size]
                records = self._embed_batch(batch)
                if records:
                    self._persist("catalog", records)
                    self._feed_ann(records)
                    generated += len(records)
                completed += len(batch)
                self._catalog_progress = (completed, total)
                if self.ann_index is not None:
                    self.ann_index.set_build_progress(completed, total)
                if on_progress is not None:
                    on_progress(completed, total)
                # Cede a vez a outros trabalhos entre lotes
                if cancel.wait(self.catalog_yield_s):
                    logger.info(f"Geração do catálogo cancelada após {completed}/{total}")
                    break

            if generated > 0 and self.ann_index is not None and self.ann_index.vector_count > 0:
                self.ann_index.save()
            if self.ann_index is not None:
                self.ann_index.finish_build()
            logger.info(f"Embeddings do catálogo concluídos: {generated} gerados")
            return generated
        except Exception as e:
            if not cancel.is_set():
                logger.warning(f"Erro na geração de embeddings do catálogo: {e}")
            return 0
        finally:
            self._catalog_running = False

    def backfill_ann_index(self, on_progress: Optional[ProgressFn] = None) -> int:
        """Popula o índice ANN com todos os vetores persistidos (biblioteca tem precedência)."""
        if self.ann_index is None:
            return 0
        seen = set()
        vectors: List[Tuple[str, np.ndarray]] = []
        for tier in ("library", "catalog"):
            for row in self.store.scan(self._collection(tier)):
                if row.key in seen:
                    continue
                try:
                    rec = EmbeddingRecord.from_row(row)
                except DataCorrupt as e:
                    logger.warning(f"Ignorando embedding corrompido: {e}")
                    continue
                if rec.vector.shape[0] != self.dim:
                    continue
                seen.add(rec.id)
                vectors.append((rec.id, rec.vector))

        if not vectors:
            return 0

        total = len(vectors)
        sent = 0
        for i in range(0, total, self.backfill_batch_size):
            batch = vectors[i : i + self.backfill_batch_size]
            self.ann_index.add_vectors(batch)
            sent += len(batch)
            self.ann_index.set_build_progress(sent, total)
            if on_progress is not None:
                on_progress(sent, total)
        self.ann_index.save()
        logger.info(f"Índice ANN reconstruído: {sent} vetores do cache")
        return sent

    def load_all_vectors(self) -> Tuple[List[str], np.ndarray]:
        """Todos os vetores persistidos (biblioteca tem precedência), para projeções."""
        ids: List[str] = []
        rows: List[np.ndarray] = []
        seen = set()
        for tier in ("library", "catalog"):
            for rec in self._iter_valid(tier):
                if rec.id in seen or rec.vector.shape[0] != self.dim:
                    continue
                seen.add(rec.id)
                ids.append(rec.id)
                rows.append(rec.vector)
        if not rows:
            return [], np.zeros((0, self.dim), dtype=np.float32)
        return ids, np.vstack(rows).astype(np.float32)

    # ---------- Estatísticas ----------
    def stats(self) -> Dict[str, Any]:
        now = self._clock()
        out: Dict[str, Any] = {"live": len(self.cache), "available": self._available}
        for tier in ("library", "catalog"):
            total = 0
            valid = 0
            for row in self.store.scan(self._collection(tier), include_blob=False):
                total += 1
                value = row.value if isinstance(row.value, dict) else {}
                if now - int(value.get("timestamp", 0) or 0) < self._ttl[tier]:
                    valid += 1
            out[tier] = {"stored": total, "valid": valid, "expired": total - valid}
        return out

    def clear(self, tier: Optional[str] = None) -> None:
        tiers = [tier] if tier else list(TIER_COLLECTIONS)
        for t in tiers:
            self.store.clear(self._collection(t))
        self.cache.clear()
        # O mapa vivo é único; nenhum nível continua carregado
        self._loaded_counts.clear()
