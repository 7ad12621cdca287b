# oracle/catalog/browse_cache.py
"""
Cache de navegação: lista plana de jogos vistos recentemente pelo usuário
(3 000 a 6 000+ objetos brutos), gravada pelo host no documento 'browse-games'.

Aceito mesmo se antigo, até BROWSE_CACHE_TTL_DAYS (7 dias); depois disso é
ignorado e a fonte contribui zero candidatos.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from oracle.storage.keyed_store import KeyedStore
from oracle.storage.schema import BROWSE_CACHE

logger = logging.getLogger(__name__)

CACHE_KEY = "browse-games"


class BrowseCache:
    def __init__(
        self,
        store: KeyedStore,
        ttl_days: int = 7,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self.store = store
        self.ttl_ms = int(ttl_days) * 24 * 60 * 60 * 1000
        self._clock = clock or (lambda: int(time.time() * 1000))

    @classmethod
    def from_config(cls, cfg, store: KeyedStore) -> "BrowseCache":
        return cls(store, ttl_days=getattr(cfg, "BROWSE_CACHE_TTL_DAYS", 7))

    def save(self, games: Sequence[Dict[str, Any]]) -> None:
        self.store.put(BROWSE_CACHE, CACHE_KEY, {"games": list(games), "timestamp": self._clock()})
        logger.debug(f"Cache de navegação salvo ({len(games)} jogos)")

    def load(self) -> List[Dict[str, Any]]:
        """Jogos do cache, ou [] se ausente, vazio ou com mais de 7 dias."""
        entry = self.store.get_value(BROWSE_CACHE, CACHE_KEY)
        if not isinstance(entry, dict):
            return []
        games = entry.get("games")
        if not isinstance(games, list) or not games:
            return []
        age = self._clock() - int(entry.get("timestamp") or 0)
        if age > self.ttl_ms:
            logger.info("Cache de navegação expirado; ignorando")
            return []
        return [g for g in games if isinstance(g, dict)]

    def clear(self) -> None:
        self.store.delete(BROWSE_CACHE, CACHE_KEY)
