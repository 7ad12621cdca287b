# oracle/index/ann_index.py
"""
AnnIndex — índice de vizinhos aproximados (HNSW, métrica cosseno)

Responsável por:
- Manter o espaço de embeddings do catálogo + biblioteca pesquisável por similaridade.
- Buscar os K vizinhos do centróide de gosto (recuperação semântica de candidatos).
- Buscar vizinhos em lote por jogo (excluindo o próprio id).
- Persistir índice + mapeamento de ids em disco e recarregá-los na inicialização.

Backends disponíveis:
- "faiss" (padrão): IndexHNSWFlat com produto interno sobre vetores L2-normalizados.
- "numpy": busca exata por produto escalar; também é o fallback quando o faiss falha.

Operações:
- add_vectors(entries): insere/atualiza vetores; retorna quantos ids são novos
- query(vector, k): [(id, distância)] em ordem crescente de distância
- query_batch(entries, k): {id: [(id_vizinho, distância)]}
- save() / load() / clear() / status()

Observações:
- distância = 1 - cosseno.
- Um id já presente é atualizado no lugar e não conta como adicionado.
- O HNSW não suporta remoção; quando há updates, o índice é reconstruído a partir
  do espelho NumPy na próxima busca.
- Qualquer falha do backend é registrada em log e o índice degrada (busca exata
  ou is_ready=False), nunca propagando exceção para o montador de candidatos.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from typing import Dict, Iterable, List, Literal, Optional, Tuple

import numpy as np

try:
    import faiss  # type: ignore
    _FAISS_AVAILABLE = True
except Exception:
    _FAISS_AVAILABLE = False

logger = logging.getLogger(__name__)

AnnBackend = Literal["faiss", "numpy"]
Neighbor = Tuple[str, float]


def _normalize_rows(mat: np.ndarray, eps: float = 1e-12) -> np.ndarray:
    norms = np.linalg.norm(mat, axis=1, keepdims=True)
    return (mat / np.maximum(norms, eps)).astype(np.float32)


class AnnIndex:
    """
    Índice ANN persistente.

    Uso típico:
        ann = AnnIndex.from_config(cfg)
        ann.load()
        ann.add_vectors([("steam-620", vec), ...])
        neighbors = ann.query(centroid, k=5000)
        ann.save()
    """

    def __init__(
        self,
        index_path: str,
        meta_path: str,
        dim: int = 768,
        backend: AnnBackend = "faiss",
        connectivity: int = 16,
        ef_construction: int = 200,
        ef_search: int = 128,
    ) -> None:
        self.index_path = index_path
        self.meta_path = meta_path
        self.vectors_path = os.path.splitext(index_path)[0] + ".npy"
        self._dim = int(dim)
        self._connectivity = int(connectivity)
        self._ef_construction = int(ef_construction)
        self._ef_search = int(ef_search)

        if backend == "faiss" and not _FAISS_AVAILABLE:
            logger.warning("Backend 'faiss' selecionado, mas o pacote 'faiss' não está instalado; usando busca exata")
            backend = "numpy"
        self._backend: AnnBackend = backend

        self._lock = threading.RLock()
        self._ids: List[str] = []
        self._slots: Dict[str, int] = {}
        # Espelho NumPy com capacidade crescente (linhas [0, len(ids)) são válidas)
        self._matrix = np.empty((0, self._dim), dtype=np.float32)
        self._faiss_index = None
        self._dirty = False  # houve update: reconstruir HNSW antes da próxima busca

        self._build_done = 0
        self._build_total = 0

    # ---------- Fábrica ----------
    @classmethod
    def from_config(cls, cfg) -> "AnnIndex":
        return cls(
            index_path=cfg.ann_index_path,
            meta_path=cfg.ann_meta_path,
            dim=getattr(cfg, "EMBED_DIM", 768),
            backend=getattr(cfg, "ANN_BACKEND", "faiss"),
            connectivity=getattr(cfg, "ANN_CONNECTIVITY", 16),
            ef_construction=getattr(cfg, "ANN_EF_CONSTRUCTION", 200),
            ef_search=getattr(cfg, "ANN_EF_SEARCH", 128),
        )

    # ---------- Estado ----------
    @property
    def dim(self) -> int:
        return self._dim

    @property
    def vector_count(self) -> int:
        return len(self._ids)

    @property
    def is_ready(self) -> bool:
        return len(self._ids) > 0

    def status(self) -> Dict[str, object]:
        return {"ready": self.is_ready, "vectorCount": self.vector_count, "dims": self._dim}

    # Progresso de construção (alimentado pela geração de embeddings do catálogo)
    @property
    def is_building(self) -> bool:
        return self._build_done < self._build_total

    @property
    def build_progress(self) -> Tuple[int, int]:
        return self._build_done, self._build_total

    def set_build_progress(self, done: int, total: int) -> None:
        self._build_done, self._build_total = int(done), int(total)

    def finish_build(self) -> None:
        self._build_done = self._build_total

    # ---------- Operações principais ----------
    def add_vectors(self, entries: Iterable[Tuple[str, np.ndarray]]) -> int:
        """Insere/atualiza vetores. Vetores de dimensão errada são ignorados."""
        with self._lock:
            new_ids: List[str] = []
            new_vecs: List[np.ndarray] = []
            for gid, vec in entries:
                arr = np.asarray(vec, dtype=np.float32).ravel()
                if arr.shape[0] != self._dim:
                    continue
                slot = self._slots.get(gid)
                if slot is not None:
                    self._matrix[slot] = _normalize_rows(arr[None, :])[0]
                    self._dirty = True
                    continue
                if gid in new_ids:
                    # Duplicado no mesmo lote: vale o último
                    new_vecs[new_ids.index(gid)] = arr
                    continue
                new_ids.append(gid)
                new_vecs.append(arr)

            if not new_ids:
                return 0

            block = _normalize_rows(np.vstack(new_vecs))
            start = len(self._ids)
            self._reserve(start + len(new_ids))
            self._matrix[start : start + len(new_ids)] = block
            for offset, gid in enumerate(new_ids):
                self._slots[gid] = start + offset
            self._ids.extend(new_ids)

            if self._backend == "faiss" and not self._dirty:
                try:
                    self._ensure_faiss().add(block)
                except Exception as e:
                    logger.error(f"Falha ao inserir no HNSW, reconstruindo na próxima busca: {e}")
                    self._faiss_index = None
                    self._dirty = True
            return len(new_ids)

    def query(self, vector: np.ndarray, k: int) -> List[Neighbor]:
        """Top-K vizinhos de um vetor (k efetivo = min(k, n))."""
        with self._lock:
            n = len(self._ids)
            k = int(min(k, n))
            if k <= 0:
                return []
            q = np.asarray(vector, dtype=np.float32).ravel()
            if q.shape[0] != self._dim:
                logger.warning(f"Vetor de consulta com dimensão {q.shape[0]} (esperado {self._dim})")
                return []
            scores, idxs = self._search(_normalize_rows(q[None, :]), k)
            return [
                (self._ids[i], float(1.0 - s))
                for s, i in zip(scores[0], idxs[0])
                if 0 <= i < n
            ]

    def query_batch(
        self,
        entries: Iterable[Tuple[str, np.ndarray]],
        k: int,
    ) -> Dict[str, List[Neighbor]]:
        """K vizinhos por entrada, excluindo o próprio id (busca k+1)."""
        with self._lock:
            n = len(self._ids)
            if n == 0:
                return {}
            keep = [(gid, np.asarray(v, dtype=np.float32).ravel()) for gid, v in entries]
            keep = [(gid, v) for gid, v in keep if v.shape[0] == self._dim]
            if not keep:
                return {}
            eff_k = min(int(k) + 1, n)
            mat = _normalize_rows(np.vstack([v for _, v in keep]))
            scores, idxs = self._search(mat, eff_k)

            results: Dict[str, List[Neighbor]] = {}
            for row, (gid, _) in enumerate(keep):
                neighbors = [
                    (self._ids[i], float(1.0 - s))
                    for s, i in zip(scores[row], idxs[row])
                    if 0 <= i < n and self._ids[i] != gid
                ]
                results[gid] = neighbors[: int(k)]
            return results

    def get_vector(self, game_id: str) -> Optional[np.ndarray]:
        with self._lock:
            slot = self._slots.get(game_id)
            return None if slot is None else self._matrix[slot].copy()

    # ---------- Persistência ----------
    def save(self) -> bool:
        with self._lock:
            if not self._ids:
                return False
            try:
                os.makedirs(os.path.dirname(self.index_path) or ".", exist_ok=True)
                np.save(self.vectors_path, self._matrix[: len(self._ids)])
                if self._backend == "faiss":
                    faiss.write_index(self._current_faiss(), self.index_path)
                meta = {"gameIds": self._ids, "vectorCount": len(self._ids), "builtAt": int(time.time() * 1000)}
                tmp = self.meta_path + ".tmp"
                with open(tmp, "w", encoding="utf-8") as f:
                    json.dump(meta, f)
                os.replace(tmp, self.meta_path)
                logger.info(f"Índice ANN salvo: {len(self._ids)} vetores")
                return True
            except Exception as e:
                logger.error(f"Falha ao salvar índice ANN: {e}")
                return False

    def load(self) -> bool:
        with self._lock:
            if not os.path.exists(self.meta_path) or not os.path.exists(self.vectors_path):
                logger.info("Nenhum índice ANN persistido encontrado")
                return False
            try:
                with open(self.meta_path, "r", encoding="utf-8") as f:
                    meta = json.load(f)
                ids = list(meta.get("gameIds") or [])
                if not ids:
                    return False
                matrix = np.load(self.vectors_path).astype(np.float32, copy=False)
                if matrix.shape != (len(ids), self._dim):
                    raise ValueError(f"espelho com forma {matrix.shape}, esperado {(len(ids), self._dim)}")

                self._ids = ids
                self._slots = {gid: i for i, gid in enumerate(ids)}
                self._matrix = matrix
                self._faiss_index = None
                self._dirty = False

                if self._backend == "faiss":
                    loaded = None
                    if os.path.exists(self.index_path):
                        try:
                            loaded = faiss.read_index(self.index_path)
                        except Exception as e:
                            logger.warning(f"Índice HNSW ilegível, reconstruindo a partir do espelho: {e}")
                    if loaded is not None and loaded.ntotal == len(ids):
                        self._faiss_index = loaded
                        self._apply_ef_search(loaded)
                    else:
                        self._dirty = True

                built = meta.get("builtAt")
                logger.info(f"Índice ANN carregado: {len(ids)} vetores (construído em {built})")
                return True
            except Exception as e:
                logger.error(f"Falha ao carregar índice ANN: {e}")
                self._reset_memory()
                return False

    def clear(self) -> None:
        with self._lock:
            self._reset_memory()
            for path in (self.index_path, self.meta_path, self.vectors_path):
                try:
                    if os.path.exists(path):
                        os.remove(path)
                except OSError as e:
                    logger.warning(f"Não foi possível remover {path}: {e}")

    # ---------- Internos ----------
    def _reset_memory(self) -> None:
        self._ids = []
        self._slots = {}
        self._matrix = np.empty((0, self._dim), dtype=np.float32)
        self._faiss_index = None
        self._dirty = False

    def _reserve(self, rows: int) -> None:
        cap = self._matrix.shape[0]
        if rows <= cap:
            return
        new_cap = max(rows, cap * 2, 1024)
        grown = np.empty((new_cap, self._dim), dtype=np.float32)
        grown[: len(self._ids)] = self._matrix[: len(self._ids)]
        self._matrix = grown

    def _new_faiss(self):
        index = faiss.IndexHNSWFlat(self._dim, self._connectivity, faiss.METRIC_INNER_PRODUCT)
        index.hnsw.efConstruction = self._ef_construction
        self._apply_ef_search(index)
        return index

    def _apply_ef_search(self, index) -> None:
        hnsw = getattr(index, "hnsw", None)
        if hnsw is not None:
            hnsw.efSearch = self._ef_search

    def _ensure_faiss(self):
        if self._faiss_index is None:
            self._faiss_index = self._new_faiss()
        return self._faiss_index

    def _current_faiss(self):
        """HNSW coerente com o espelho (reconstrói se houve updates)."""
        if self._dirty or self._faiss_index is None or self._faiss_index.ntotal != len(self._ids):
            index = self._new_faiss()
            if self._ids:
                index.add(self._matrix[: len(self._ids)])
            self._faiss_index = index
            self._dirty = False
        return self._faiss_index

    def _search(self, queries: np.ndarray, k: int) -> Tuple[np.ndarray, np.ndarray]:
        if self._backend == "faiss":
            try:
                return self._current_faiss().search(queries, k)
            except Exception as e:
                logger.error(f"Busca HNSW falhou, usando busca exata: {e}")
                self._faiss_index = None
        return self._search_exact(queries, k)

    def _search_exact(self, queries: np.ndarray, k: int) -> Tuple[np.ndarray, np.ndarray]:
        mat = self._matrix[: len(self._ids)]
        scores = queries @ mat.T  # (Q, N)
        kth = min(k - 1, scores.shape[1] - 1)
        top = np.argpartition(-scores, kth=kth, axis=1)[:, :k]
        top_scores = np.take_along_axis(scores, top, axis=1)
        order = np.argsort(-top_scores, axis=1)
        return np.take_along_axis(top_scores, order, axis=1), np.take_along_axis(top, order, axis=1)

