# oracle/scoring/types.py
"""
Estruturas transitórias trocadas entre orquestrador e worker.

UserGameSnapshot junta jogo + sessões + mudanças de status; CandidateGame é a
união dos campos do catálogo/cache de navegação com o vetor opcional.
Datas de evento em epoch ms; release_date permanece string ISO ("" = desconhecida).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import List, Literal, Optional

import numpy as np

from schemas.reco_output import Price

EngagementPattern = Literal["binge-drop", "slow-burn", "honeymoon", "long-tail", "unknown"]

DAY_MS = 24 * 60 * 60 * 1000


@dataclass
class UserGameSnapshot:
    game_id: str
    title: str
    added_at: int
    genres: List[str] = field(default_factory=list)
    themes: List[str] = field(default_factory=list)
    game_modes: List[str] = field(default_factory=list)
    perspectives: List[str] = field(default_factory=list)
    developer: str = ""
    publisher: str = ""
    release_date: str = ""
    status: str = "Want to Play"
    hours_played: float = 0.0
    rating: float = 0.0
    removed_at: Optional[int] = None
    session_count: int = 0
    avg_session_minutes: float = 0.0
    last_session_date: Optional[int] = None
    active_to_idle_ratio: float = 1.0
    status_trajectory: List[str] = field(default_factory=list)
    similar_game_titles: List[str] = field(default_factory=list)
    engagement_pattern: EngagementPattern = "unknown"
    session_timestamps: List[int] = field(default_factory=list)
    session_durations: List[float] = field(default_factory=list)
    embedding: Optional[np.ndarray] = None


@dataclass
class CandidateGame:
    game_id: str
    title: str
    cover_url: Optional[str] = None
    header_image: Optional[str] = None
    developer: str = ""
    publisher: str = ""
    genres: List[str] = field(default_factory=list)
    themes: List[str] = field(default_factory=list)
    game_modes: List[str] = field(default_factory=list)
    perspectives: List[str] = field(default_factory=list)
    platforms: List[str] = field(default_factory=list)
    metacritic_score: Optional[int] = None
    player_count: Optional[int] = None
    release_date: str = ""
    similar_game_titles: List[str] = field(default_factory=list)
    recommendations: Optional[int] = None
    achievements: Optional[int] = None
    coming_soon: bool = False
    review_positivity: Optional[float] = None
    review_volume: Optional[int] = None
    price: Optional[Price] = None
    embedding: Optional[np.ndarray] = None
    semantic_retrieved: bool = False


# ----------------------------
# Datas
# ----------------------------
def parse_date_ms(value: str) -> Optional[int]:
    """ISO date/datetime -> epoch ms (UTC). None se vazio ou inválido."""
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        try:
            d = date.fromisoformat(value[:10])
        except ValueError:
            return None
        dt = datetime(d.year, d.month, d.day)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def release_year(value: str) -> Optional[int]:
    ms = parse_date_ms(value)
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).year


def epoch_seconds_to_iso(seconds: int) -> str:
    if not seconds:
        return ""
    return datetime.fromtimestamp(int(seconds), tz=timezone.utc).date().isoformat()
