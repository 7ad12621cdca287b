# oracle/scoring/profile.py
"""
Perfil de gosto do usuário.

Responsável por:
- Score de engajamento por jogo (horas, nota, status, profundidade de sessão,
  decaimento temporal com meia-vida de 180 dias, curva de engajamento).
- Mapas de features ponderados (gêneros canônicos, temas, modos, perspectivas,
  desenvolvedores, publicadoras, eras de lançamento).
- Perfil negativo (jogos removidos, abandonados cedo ou esquecidos na lista).
- Multiplicador de trajetória de status.
- Clusters de gosto (k-means sobre tags).
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from oracle.scoring.genres import CANONICAL_GENRES, canonical_norms, norm, to_canonical_genre, to_canonical_genres
from oracle.scoring.types import DAY_MS, UserGameSnapshot, release_year
from schemas.reco_output import FeatureWeight, TasteCluster, TasteProfile

logger = logging.getLogger(__name__)

STATUS_WEIGHTS: Dict[str, float] = {
    "Completed": 1.0,
    "Playing Now": 0.9,
    "Playing": 0.7,
    "On Hold": 0.3,
    "Want to Play": 0.1,
}

CURVE_MULTIPLIERS: Dict[str, float] = {
    "long-tail": 1.4,
    "slow-burn": 1.3,
    "honeymoon": 0.9,
    "binge-drop": 0.6,
    "unknown": 1.0,
}

TRAJECTORY_MULTIPLIERS: Dict[str, float] = {
    "want to play|playing|completed": 1.5,
    "want to play|playing now|completed": 1.6,
    "playing|completed": 1.3,
    "playing now|completed": 1.4,
    "want to play|playing": 1.1,
    "playing|on hold": 0.6,
    "want to play": 0.3,
}

HALF_LIFE_MS = 180 * DAY_MS
MAX_HOURS = 500.0

FeatureVector = Dict[str, float]


def clamp01(v: float) -> float:
    return max(0.0, min(1.0, v))


# ----------------------------
# Engajamento
# ----------------------------
class EngagementScorer:
    """Score de engajamento em [0, 1], memoizado por rodada."""

    def __init__(self, now: int) -> None:
        self.now = now
        self._cache: Dict[str, float] = {}

    def __call__(self, game: UserGameSnapshot) -> float:
        cached = self._cache.get(game.game_id)
        if cached is not None:
            return cached

        normalized_hours = clamp01(min(game.hours_played, MAX_HOURS) / MAX_HOURS)
        normalized_rating = game.rating / 5.0
        status_score = STATUS_WEIGHTS.get(game.status, 0.3)
        if game.session_count > 0:
            session_depth = clamp01(game.avg_session_minutes / 240.0)
        else:
            session_depth = normalized_hours * 0.3

        last_activity = game.last_session_date if game.last_session_date is not None else game.added_at
        temporal_decay = 0.5 ** ((self.now - last_activity) / HALF_LIFE_MS)

        curve_mult = CURVE_MULTIPLIERS.get(game.engagement_pattern or "unknown", 1.0)
        base = (
            normalized_hours * 0.28
            + normalized_rating * 0.25
            + status_score * 0.18
            + session_depth * 0.14
            + temporal_decay * 0.10
            + (curve_mult - 1.0) * 0.05
        )
        result = clamp01(base * curve_mult)
        self._cache[game.game_id] = result
        return result


def trajectory_multiplier(game: UserGameSnapshot) -> float:
    if not game.status_trajectory:
        return 1.0
    key = "|".join(s.lower() for s in game.status_trajectory)
    if key in TRAJECTORY_MULTIPLIERS:
        return TRAJECTORY_MULTIPLIERS[key]
    if game.status == "Completed":
        return 1.3
    if game.status == "On Hold":
        return 0.6
    if game.status in ("Playing", "Playing Now"):
        return 1.0
    if game.removed_at:
        return 0.2
    return 0.5


# ----------------------------
# Perfil
# ----------------------------
def build_feature_map(
    games: Sequence[UserGameSnapshot],
    engagement: EngagementScorer,
    extractor: Callable[[UserGameSnapshot], Iterable[str]],
) -> List[FeatureWeight]:
    acc: Dict[str, list] = {}  # weight, count, hours, rating_sum, rated
    for game in games:
        score = engagement(game)
        for feature in extractor(game):
            key = norm(feature)
            if not key:
                continue
            slot = acc.setdefault(key, [0.0, 0, 0.0, 0.0, 0])
            slot[0] += score
            slot[1] += 1
            slot[2] += game.hours_played
            if game.rating > 0:
                slot[3] += game.rating
                slot[4] += 1

    out = [
        FeatureWeight(
            name=name,
            weight=w,
            game_count=int(count),
            total_hours=hours,
            avg_rating=rating_sum / rated if rated else 0.0,
        )
        for name, (w, count, hours, rating_sum, rated) in acc.items()
    ]
    out.sort(key=lambda f: f.weight, reverse=True)
    return out


def release_bucket(release_date: str) -> str:
    year = release_year(release_date)
    if year is None:
        return "unknown"
    if year >= 2023:
        return "2023+"
    if year >= 2020:
        return "2020-2022"
    if year >= 2015:
        return "2015-2019"
    if year >= 2010:
        return "2010-2014"
    if year >= 2000:
        return "2000-2009"
    return "pre-2000"


def build_taste_profile(games: Sequence[UserGameSnapshot], engagement: EngagementScorer) -> TasteProfile:
    canonical_by_norm = {g.lower(): g for g in CANONICAL_GENRES}
    genres = build_feature_map(games, engagement, lambda g: to_canonical_genres(g.genres))
    for fw in genres:
        fw.name = canonical_by_norm.get(fw.name, fw.name)

    themes = build_feature_map(games, engagement, lambda g: g.themes)
    modes = build_feature_map(games, engagement, lambda g: g.game_modes)
    perspectives = build_feature_map(games, engagement, lambda g: g.perspectives)
    developers = build_feature_map(games, engagement, lambda g: [g.developer] if g.developer else [])
    publishers = build_feature_map(games, engagement, lambda g: [g.publisher] if g.publisher else [])
    eras = build_feature_map(games, engagement, lambda g: [release_bucket(g.release_date)] if g.release_date else [])

    rated = [g.rating for g in games if g.rating > 0]
    # Fiel: >=2 jogos e (nota média >=3.5 ou >=20 horas)
    loyal = [d.name for d in developers if d.game_count >= 2 and (d.avg_rating >= 3.5 or d.total_hours >= 20)]

    return TasteProfile(
        genres=genres,
        themes=themes,
        game_modes=modes,
        perspectives=perspectives,
        developers=developers,
        publishers=publishers,
        eras=eras,
        total_games=len(games),
        total_hours=sum(g.hours_played for g in games),
        avg_rating=sum(rated) / len(rated) if rated else 0.0,
        top_genre=genres[0].name if genres else "",
        top_theme=themes[0].name if themes else "",
        clusters=[],
        loyal_developers=loyal,
    )


def build_negative_profile(games: Sequence[UserGameSnapshot], now: int) -> Tuple[FeatureVector, float]:
    """Vetor de tags dos jogos rejeitados e a força do sinal (no máximo 0.5)."""
    six_months = 180 * DAY_MS

    def _negative(g: UserGameSnapshot) -> bool:
        if g.removed_at:
            return True
        if g.status == "On Hold" and g.hours_played < 2:
            return True
        if g.status == "Want to Play" and (now - g.added_at) > six_months and g.session_count == 0:
            return True
        return False

    negative = [g for g in games if _negative(g)]
    if not negative:
        return {}, 0.0

    vec: FeatureVector = {}
    for g in negative:
        for genre in canonical_norms(g.genres):
            vec[f"g:{genre}"] = vec.get(f"g:{genre}", 0.0) + 1
        for theme in g.themes:
            vec[f"t:{norm(theme)}"] = vec.get(f"t:{norm(theme)}", 0.0) + 1
        if g.developer:
            vec[f"d:{norm(g.developer)}"] = vec.get(f"d:{norm(g.developer)}", 0.0) + 1

    max_val = max([1.0, *vec.values()])
    vec = {k: v / max_val for k, v in vec.items()}
    return vec, min(len(negative) / len(games), 0.5)


# ----------------------------
# Clusters de gosto
# ----------------------------
def _tag_set(g: UserGameSnapshot) -> List[str]:
    keys = [f"g:{c}" for c in canonical_norms(g.genres)]
    keys += [f"t:{norm(t)}" for t in g.themes]
    keys += [f"m:{norm(m)}" for m in g.game_modes]
    return keys


def detect_taste_clusters(
    games: Sequence[UserGameSnapshot],
    engagement: EngagementScorer,
    k: int = 3,
    iterations: int = 10,
    rng: Optional[np.random.Generator] = None,
) -> List[TasteCluster]:
    """k-means sobre vetores binários de tags. Precisa de pelo menos 2k jogos."""
    if len(games) < k * 2:
        return []

    tag_lists = [_tag_set(g) for g in games]
    keys = sorted({t for tags in tag_lists for t in tags})
    if not keys:
        return []
    index = {key: i for i, key in enumerate(keys)}
    vectors = np.zeros((len(games), len(keys)), dtype=np.float64)
    for row, tags in enumerate(tag_lists):
        for t in tags:
            vectors[row, index[t]] = 1.0

    rng = rng or np.random.default_rng()
    seeds = rng.choice(len(games), size=min(k, len(games)), replace=False)
    centroids = vectors[seeds].copy()

    assignments = np.zeros(len(games), dtype=int)
    for _ in range(iterations):
        dists = ((vectors[:, None, :] - centroids[None, :, :]) ** 2).sum(axis=2)
        assignments = dists.argmin(axis=1)
        for c in range(len(centroids)):
            members = vectors[assignments == c]
            if len(members):
                centroids[c] = members.mean(axis=0)

    clusters: List[TasteCluster] = []
    for c in range(len(centroids)):
        member_games = [g for g, a in zip(games, assignments) if a == c]
        if len(member_games) < 2:
            continue
        profile = build_taste_profile(member_games, engagement)
        top_games = [g.title for g in sorted(member_games, key=engagement, reverse=True)[:3]]
        label = profile.top_genre[:1].upper() + profile.top_genre[1:] if profile.top_genre else f"Cluster {c + 1}"

        embedded = [g.embedding for g in member_games if g.embedding is not None]
        semantic = None
        if embedded and all(len(e) == len(embedded[0]) for e in embedded):
            mean = np.mean(np.stack(embedded), axis=0)
            n = float(np.linalg.norm(mean))
            if n > 0:
                semantic = (mean / n).astype(float).tolist()

        clusters.append(
            TasteCluster(
                id=c,
                label=label,
                profile=profile,
                game_count=len(member_games),
                top_games=top_games,
                semantic_centroid=semantic,
            )
        )

    clusters.sort(key=lambda cl: cl.game_count, reverse=True)
    logger.debug(f"{len(clusters)} clusters de gosto detectados")
    return clusters


def canonical_norm_set(genres: Iterable[str]) -> set:
    return {norm(c) for c in (to_canonical_genre(g) for g in genres) if c}
