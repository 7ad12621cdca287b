# oracle/embeddings/cache.py
"""
Mapa vivo de embeddings (id -> vetor float32), união dos dois níveis.

O mapa só cresce por merge: nenhuma operação o substitui por inteiro, então
quem leu um snapshot antes de uma geração em segundo plano nunca perde
vetores já disponíveis.
"""

from __future__ import annotations

import threading
from typing import Dict, Iterable, Mapping, Optional

import numpy as np


class EmbeddingCache:
    """Handle thread-safe com get/merge/snapshot."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._vectors: Dict[str, np.ndarray] = {}

    def get(self, game_id: str) -> Optional[np.ndarray]:
        with self._lock:
            return self._vectors.get(game_id)

    def get_many(self, game_ids: Iterable[str]) -> Dict[str, np.ndarray]:
        with self._lock:
            return {gid: self._vectors[gid] for gid in game_ids if gid in self._vectors}

    def merge(self, vectors: Mapping[str, np.ndarray], overwrite: bool = True) -> int:
        """
        Mescla vetores no mapa. Com overwrite=False só entram ids ausentes.
        Retorna quantos ids foram gravados.
        """
        written = 0
        with self._lock:
            for gid, vec in vectors.items():
                if not overwrite and gid in self._vectors:
                    continue
                self._vectors[gid] = np.asarray(vec, dtype=np.float32)
                written += 1
        return written

    def snapshot(self) -> Dict[str, np.ndarray]:
        """Cópia rasa do mapa (os vetores são compartilhados, não copiados)."""
        with self._lock:
            return dict(self._vectors)

    def clear(self) -> None:
        with self._lock:
            self._vectors.clear()

    def __contains__(self, game_id: object) -> bool:
        with self._lock:
            return game_id in self._vectors

    def __len__(self) -> int:
        with self._lock:
            return len(self._vectors)
