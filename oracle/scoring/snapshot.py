# oracle/scoring/snapshot.py
"""
Construção dos snapshots de jogos do usuário.

Junta cada LibraryGame com suas sessões e mudanças de status, calcula as
estatísticas de sessão e classifica o padrão de engajamento:

- unknown:    menos de 3 sessões
- binge-drop: todas as sessões dentro de 3 dias
- slow-burn:  segunda metade das sessões >20% mais longa, espalhadas por >=14 dias
- honeymoon:  três primeiras sessões >50% mais longas que o restante
- long-tail:  espalhadas por >=14 dias sem os padrões acima
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence

from oracle.embeddings.cache import EmbeddingCache
from oracle.scoring.types import DAY_MS, EngagementPattern, UserGameSnapshot
from schemas.library import LibraryGame, PlaySession, StatusChange, to_ms

logger = logging.getLogger(__name__)


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def classify_engagement(
    timestamps: Sequence[int], durations: Sequence[float], session_count: int
) -> EngagementPattern:
    if session_count < 3 or not timestamps:
        return "unknown"

    span_days = (max(timestamps) - min(timestamps)) / DAY_MS
    if span_days <= 3:
        return "binge-drop"

    is_spread = span_days >= 14

    if len(durations) >= 4:
        mid = len(durations) // 2
        if _mean(durations[mid:]) > _mean(durations[:mid]) * 1.2 and is_spread:
            return "slow-burn"

    if len(durations) >= 5:
        if _mean(durations[:3]) > _mean(durations[3:]) * 1.5:
            return "honeymoon"

    if is_spread:
        return "long-tail"
    return "unknown"


def build_user_snapshots(
    games: Iterable[LibraryGame],
    sessions: Iterable[PlaySession] = (),
    status_changes: Iterable[StatusChange] = (),
    cache: Optional[EmbeddingCache] = None,
) -> List[UserGameSnapshot]:
    sessions_by_game: Dict[str, List[PlaySession]] = defaultdict(list)
    for s in sessions:
        sessions_by_game[s.game_id].append(s)

    status_by_game: Dict[str, List[StatusChange]] = defaultdict(list)
    for sc in status_changes:
        status_by_game[sc.game_id].append(sc)

    snapshots: List[UserGameSnapshot] = []
    for game in games:
        game_sessions = sorted(sessions_by_game.get(game.id, []), key=lambda s: to_ms(s.start_time))
        total_duration = sum(s.duration_minutes for s in game_sessions)
        total_idle = sum(s.idle_minutes for s in game_sessions)

        last_session = max(game_sessions, key=lambda s: to_ms(s.end_time)) if game_sessions else None
        trajectory = [
            sc.new_status for sc in sorted(status_by_game.get(game.id, []), key=lambda sc: to_ms(sc.timestamp))
        ]
        timestamps = [to_ms(s.start_time) for s in game_sessions]
        durations = [s.duration_minutes for s in game_sessions]

        snapshots.append(
            UserGameSnapshot(
                game_id=game.id,
                title=game.title,
                added_at=to_ms(game.added_at),
                genres=list(game.genres),
                themes=list(game.themes),
                game_modes=list(game.game_modes),
                perspectives=list(game.perspectives),
                developer=game.developer,
                publisher=game.publisher,
                release_date=game.release_date,
                status=game.status,
                hours_played=game.hours_played,
                rating=game.rating,
                removed_at=to_ms(game.removed_at),
                session_count=len(game_sessions),
                avg_session_minutes=total_duration / len(game_sessions) if game_sessions else 0.0,
                last_session_date=to_ms(last_session.end_time) if last_session else None,
                active_to_idle_ratio=(
                    total_duration / (total_duration + total_idle) if total_duration > 0 else 1.0
                ),
                status_trajectory=trajectory,
                similar_game_titles=list(game.similar_game_titles),
                engagement_pattern=classify_engagement(timestamps, durations, len(game_sessions)),
                session_timestamps=timestamps,
                session_durations=durations,
                embedding=cache.get(game.id) if cache is not None else None,
            )
        )

    logger.debug(f"{len(snapshots)} snapshots construídos")
    return snapshots
