# oracle/history.py
"""
Histórico de recomendações: jogos dispensados e conversões.

Responsável por:
- Jogos dispensados ("Not interested"): excluídos das próximas rodadas.
- Ciclo de vida de cada recomendação clicada: clique -> biblioteca -> jogou -> nota.
- Métricas simples de conversão por prateleira.

Persistido na coleção RECO_HISTORY (chaves "dismissed" e "conversions"),
sobrevive a reinícios.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass
from typing import Callable, Dict, List, Optional

from oracle.errors import StorageWriteFailed
from oracle.storage.keyed_store import KeyedStore
from oracle.storage.schema import RECO_HISTORY

logger = logging.getLogger(__name__)

DISMISSED_KEY = "dismissed"
CONVERSIONS_KEY = "conversions"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RecoConversion:
    game_id: str
    title: str
    shelf_type: str
    clicked_at: int
    added_at: Optional[int] = None
    played_at: Optional[int] = None
    rating: Optional[float] = None
    converted: bool = False

    def to_dict(self) -> Dict:
        return {
            "gameId": self.game_id,
            "title": self.title,
            "shelfType": self.shelf_type,
            "clickedAt": self.clicked_at,
            "addedAt": self.added_at,
            "playedAt": self.played_at,
            "rating": self.rating,
            "converted": self.converted,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "RecoConversion":
        return cls(
            game_id=str(data["gameId"]),
            title=str(data.get("title", "")),
            shelf_type=str(data.get("shelfType", "")),
            clicked_at=int(data.get("clickedAt", 0) or 0),
            added_at=data.get("addedAt"),
            played_at=data.get("playedAt"),
            rating=data.get("rating"),
            converted=bool(data.get("converted", False)),
        )


class RecoHistoryStore:
    def __init__(self, store: Optional[KeyedStore], clock: Callable[[], int] = _now_ms) -> None:
        self.store = store
        self._clock = clock
        self._lock = threading.RLock()
        self._dismissed: Dict[str, None] = {}
        self._history: Dict[str, RecoConversion] = {}
        self._listeners: List[Callable[[], None]] = []
        self._load()

    @classmethod
    def from_config(cls, cfg, store: Optional[KeyedStore]) -> "RecoHistoryStore":
        return cls(store)

    # ---------- Assinaturas ----------
    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self) -> None:
        for fn in list(self._listeners):
            fn()

    # ---------- Persistência ----------
    def _load(self) -> None:
        if self.store is None:
            return
        dismissed = self.store.get_value(RECO_HISTORY, DISMISSED_KEY, [])
        if isinstance(dismissed, list):
            self._dismissed = {str(gid): None for gid in dismissed}

        entries = self.store.get_value(RECO_HISTORY, CONVERSIONS_KEY, [])
        for data in entries if isinstance(entries, list) else []:
            try:
                entry = RecoConversion.from_dict(data)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Conversão corrompida ignorada: {e}")
                continue
            self._history[entry.game_id] = entry

    def _save(self) -> None:
        if self.store is None:
            return
        try:
            self.store.put_many(
                RECO_HISTORY,
                [
                    (DISMISSED_KEY, list(self._dismissed), None),
                    (CONVERSIONS_KEY, [e.to_dict() for e in self._history.values()], None),
                ],
            )
        except StorageWriteFailed as e:
            logger.warning(f"Falha ao persistir histórico, seguindo em memória: {e}")

    # ---------- Dispensados ----------
    def dismiss(self, game_id: str) -> None:
        with self._lock:
            self._dismissed[game_id] = None
            self._save()
        self._notify()

    def undismiss(self, game_id: str) -> None:
        with self._lock:
            self._dismissed.pop(game_id, None)
            self._save()
        self._notify()

    def is_dismissed(self, game_id: str) -> bool:
        return game_id in self._dismissed

    def dismissed_ids(self) -> List[str]:
        with self._lock:
            return list(self._dismissed)

    def dismissed_count(self) -> int:
        return len(self._dismissed)

    def clear_dismissed(self) -> None:
        with self._lock:
            self._dismissed.clear()
            self._save()
        self._notify()

    # ---------- Conversões ----------
    def record_click(self, game_id: str, title: str, shelf_type: str) -> None:
        """Só o primeiro clique em um jogo abre o registro."""
        with self._lock:
            if game_id not in self._history:
                self._history[game_id] = RecoConversion(game_id, title, shelf_type, clicked_at=self._clock())
            self._save()

    def record_library_add(self, game_id: str) -> None:
        with self._lock:
            entry = self._history.get(game_id)
            if entry is not None and not entry.added_at:
                entry.added_at = self._clock()
                entry.converted = True
                self._save()

    def record_play(self, game_id: str) -> None:
        with self._lock:
            entry = self._history.get(game_id)
            if entry is not None and not entry.played_at:
                entry.played_at = self._clock()
                entry.converted = True
                self._save()

    def record_rating(self, game_id: str, rating: float) -> None:
        with self._lock:
            entry = self._history.get(game_id)
            if entry is not None:
                entry.rating = rating
                entry.converted = True
                self._save()

    # ---------- Análise ----------
    def conversion_rate(self) -> float:
        with self._lock:
            if not self._history:
                return 0.0
            converted = sum(1 for e in self._history.values() if e.converted)
            return converted / len(self._history)

    def avg_converted_rating(self) -> float:
        with self._lock:
            rated = [e.rating for e in self._history.values() if e.rating and e.rating > 0]
        return sum(rated) / len(rated) if rated else 0.0

    def shelf_conversion_stats(self) -> Dict[str, Dict[str, float]]:
        acc: Dict[str, List[float]] = {}  # clicks, conversions, rating_sum, rated
        with self._lock:
            for e in self._history.values():
                slot = acc.setdefault(e.shelf_type, [0, 0, 0.0, 0])
                slot[0] += 1
                if e.converted:
                    slot[1] += 1
                if e.rating:
                    slot[2] += e.rating
                    slot[3] += 1
        return {
            shelf: {
                "clicks": clicks,
                "conversions": conversions,
                "avgRating": rating_sum / rated if rated else 0.0,
            }
            for shelf, (clicks, conversions, rating_sum, rated) in acc.items()
        }

    def history(self) -> List[RecoConversion]:
        with self._lock:
            return [RecoConversion(**asdict(e)) for e in self._history.values()]

    def reset(self) -> None:
        with self._lock:
            self._dismissed.clear()
            self._history.clear()
            if self.store is not None:
                self.store.clear(RECO_HISTORY)
        self._notify()
