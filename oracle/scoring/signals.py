# oracle/scoring/signals.py
"""
Sinais de pontuação por candidato.

Cada função devolve um valor em [0, 1] (exceto onde indicado). Contextos caros
(grafo, hora do dia, sequenciamento) são montados uma vez por rodada e
reutilizados para todos os candidatos.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from oracle.scoring.genres import canonical_norms, norm
from oracle.scoring.profile import EngagementScorer, FeatureVector, clamp01, trajectory_multiplier
from oracle.scoring.types import CandidateGame, UserGameSnapshot, release_year
from schemas.reco_output import FeatureWeight, ScoredGame, TasteProfile

MAX_GRAPH_NEIGHBORS = 150  # limita o custo em gêneros populares
STUDIO_LOYALTY_BOOST = 0.35


# ----------------------------
# Similaridade de conteúdo (tags)
# ----------------------------
def profile_to_vector(profile: TasteProfile) -> FeatureVector:
    vec: FeatureVector = {}

    def _add(features: Sequence[FeatureWeight], prefix: str) -> None:
        for f in features:
            vec[f"{prefix}:{norm(f.name)}"] = f.weight

    _add(profile.genres, "g")
    _add(profile.themes, "t")
    _add(profile.game_modes, "m")
    _add(profile.perspectives, "p")
    _add(profile.developers[:20], "d")
    return vec


def candidate_to_vector(c: CandidateGame) -> FeatureVector:
    vec: FeatureVector = {}
    for g in canonical_norms(c.genres):
        vec[f"g:{g}"] = 1.0
    for t in c.themes:
        vec[f"t:{norm(t)}"] = 1.0
    for m in c.game_modes:
        vec[f"m:{norm(m)}"] = 1.0
    for p in c.perspectives:
        vec[f"p:{norm(p)}"] = 1.0
    if c.developer:
        vec[f"d:{norm(c.developer)}"] = 1.0
    return vec


def cosine_similarity(a: FeatureVector, b: FeatureVector) -> float:
    mag_a = sum(v * v for v in a.values())
    mag_b = sum(v * v for v in b.values())
    if mag_a == 0 or mag_b == 0:
        return 0.0
    dot = sum(v * b[k] for k, v in a.items() if k in b)
    return dot / (math.sqrt(mag_a) * math.sqrt(mag_b))


# ----------------------------
# Similaridade semântica
# ----------------------------
def vector_cosine(a: Optional[np.ndarray], b: Optional[np.ndarray]) -> float:
    """Cosseno entre vetores densos; 0 quando algum falta ou tem norma zero."""
    if a is None or b is None or len(a) == 0 or len(a) != len(b):
        return 0.0
    na = float(np.linalg.norm(a))
    nb = float(np.linalg.norm(b))
    if na == 0 or nb == 0:
        return 0.0
    return float(np.dot(a, b) / (na * nb))


def engagement_centroid(
    user_games: Sequence[UserGameSnapshot], engagement: EngagementScorer
) -> Optional[np.ndarray]:
    """Média dos vetores da biblioteca ponderada pelo engajamento (sem normalizar)."""
    embedded = [g for g in user_games if g.embedding is not None and len(g.embedding) > 0]
    if not embedded:
        return None
    dim = len(embedded[0].embedding)
    embedded = [g for g in embedded if len(g.embedding) == dim]
    weights = np.asarray([engagement(g) for g in embedded], dtype=np.float64)
    total = float(weights.sum())
    if total == 0:
        return None
    mat = np.stack([np.asarray(g.embedding, dtype=np.float64) for g in embedded])
    return (mat * weights[:, None]).sum(axis=0) / total


# ----------------------------
# Grafo de coocorrência + jogos similares
# ----------------------------
def build_co_occurrence_edges(candidates: Sequence[CandidateGame]) -> Dict[str, Dict[str, float]]:
    """Arestas de Jaccard entre candidatos que compartilham gênero e >=3 tags."""
    tag_sets: Dict[str, Set[str]] = {}
    genre_index: Dict[str, List[str]] = {}
    for c in candidates:
        genres = canonical_norms(c.genres)
        tags = {f"g:{g}" for g in genres}
        tags |= {f"t:{norm(t)}" for t in c.themes}
        tags |= {f"m:{norm(m)}" for m in c.game_modes}
        tag_sets[c.game_id] = tags
        for g in genres:
            genre_index.setdefault(g, []).append(c.game_id)

    edges: Dict[str, Dict[str, float]] = {}
    for c in candidates:
        mine = tag_sets[c.game_id]
        neighbor_ids: Dict[str, None] = {}
        for g in canonical_norms(c.genres):
            for other in genre_index.get(g, ()):
                if other != c.game_id:
                    neighbor_ids[other] = None

        count = 0
        for other in neighbor_ids:
            if count >= MAX_GRAPH_NEIGHBORS:
                break
            theirs = tag_sets.get(other)
            if not theirs:
                continue
            inter = len(mine & theirs)
            if inter < 3:
                continue
            union = len(mine) + len(theirs) - inter
            edges.setdefault(c.game_id, {})[other] = inter / union if union else 0.0
            count += 1
    return edges


@dataclass
class GraphUserContext:
    similar_norms: Dict[str, Set[str]] = field(default_factory=dict)
    title_norms: Dict[str, str] = field(default_factory=dict)
    weights: Dict[str, float] = field(default_factory=dict)


def build_graph_user_context(
    user_games: Sequence[UserGameSnapshot], engagement: EngagementScorer
) -> GraphUserContext:
    ctx = GraphUserContext()
    for ug in user_games:
        ctx.similar_norms[ug.game_id] = {norm(t) for t in ug.similar_game_titles}
        ctx.title_norms[ug.game_id] = norm(ug.title)
        ctx.weights[ug.game_id] = engagement(ug) * trajectory_multiplier(ug)
    return ctx


def graph_signal(
    candidate: CandidateGame,
    user_games: Sequence[UserGameSnapshot],
    co_occurrence: Dict[str, Dict[str, float]],
    ctx: GraphUserContext,
) -> Tuple[float, List[str]]:
    """
    Pontua ligações do candidato com a biblioteca:
    citado como similar por um jogo do usuário (1.0), cita um jogo do usuário (0.8),
    similar em comum (0.4), ou vizinho de coocorrência (jaccard * 0.3).
    """
    title = norm(candidate.title)
    cand_similar = {norm(t) for t in candidate.similar_game_titles}
    total = 0.0
    similar_to: List[str] = []

    for ug in user_games:
        if len(similar_to) >= 3:
            break
        weight = ctx.weights[ug.game_id]
        ug_similar = ctx.similar_norms[ug.game_id]

        if title in ug_similar:
            total += weight * 1.0
            similar_to.append(ug.title)
            continue

        ug_title = ctx.title_norms[ug.game_id]
        if ug_title in cand_similar:
            total += weight * 0.8
            similar_to.append(ug.title)
            continue

        if ug_similar & cand_similar:
            total += weight * 0.4
            similar_to.append(ug.title)
            continue

        for neighbor_id, jaccard in co_occurrence.get(candidate.game_id, {}).items():
            n = norm(neighbor_id)
            if ug_title == n or n in ug_similar:
                total += weight * jaccard * 0.3
                break

    return clamp01(total / 3), list(dict.fromkeys(similar_to))[:3]


# ----------------------------
# Qualidade e popularidade
# ----------------------------
def quality_signal(c: CandidateGame, max_recommendations: int, max_review_volume: int, current_year: int) -> float:
    metacritic = clamp01((c.metacritic_score - 50) / 50) if c.metacritic_score else 0.3
    reco = (
        clamp01(math.log(c.recommendations + 1) / math.log(max_recommendations + 1))
        if c.recommendations and max_recommendations > 0
        else 0.3
    )

    has_reviews = c.review_positivity is not None and c.review_volume is not None and c.review_volume > 0
    review = 0.0
    if has_reviews:
        volume = (
            clamp01(math.log(c.review_volume + 1) / math.log(max_review_volume + 1)) if max_review_volume > 0 else 0.3
        )
        review = clamp01(c.review_positivity) * 0.7 + volume * 0.3

    achievements = clamp01(c.achievements / 100) if c.achievements else 0.3
    year = release_year(c.release_date)
    maintenance = 0.3 if year is None else clamp01(1 - (current_year - year) / 15)

    if has_reviews:
        return metacritic * 0.30 + reco * 0.20 + review * 0.20 + achievements * 0.15 + maintenance * 0.15
    # Sem avaliações: os 20% vão para metacritic (10%) e recomendações (10%)
    return metacritic * 0.40 + reco * 0.30 + achievements * 0.15 + maintenance * 0.15


def popularity_adjustment(player_count: Optional[int], max_player_count: int) -> float:
    """Desconto de até 25% para os jogos mais populares (pode ser > 0.75)."""
    if not player_count or player_count <= 0 or max_player_count <= 0:
        return 1.0
    return 1.0 - (math.log(player_count + 1) / math.log(max_player_count + 1)) * 0.25


# ----------------------------
# Hora do dia
# ----------------------------
def _hour_bucket(hour: int) -> str:
    if hour < 6:
        return "night"
    if hour < 12:
        return "morning"
    if hour < 18:
        return "afternoon"
    return "evening"


@dataclass
class TimeOfDayContext:
    affinity: Dict[str, float] = field(default_factory=dict)
    has_sufficient_data: bool = False


def build_time_of_day_context(user_games: Sequence[UserGameSnapshot], current_hour: int) -> TimeOfDayContext:
    bucket = _hour_bucket(current_hour)
    affinity: Dict[str, float] = {}
    sessions_in_bucket = 0
    for ug in user_games:
        genres = canonical_norms(ug.genres)
        for ts in ug.session_timestamps:
            if _hour_bucket(datetime.fromtimestamp(ts / 1000).hour) != bucket:
                continue
            sessions_in_bucket += 1
            for g in genres:
                affinity[g] = affinity.get(g, 0.0) + 1

    if sessions_in_bucket < 3:
        return TimeOfDayContext()
    return TimeOfDayContext({k: v / sessions_in_bucket for k, v in affinity.items()}, True)


def time_of_day_boost(c: CandidateGame, ctx: TimeOfDayContext) -> float:
    if not ctx.has_sufficient_data:
        return 0.0
    values = [ctx.affinity[g] for g in canonical_norms(c.genres) if g in ctx.affinity]
    return clamp01(sum(values) / len(values)) if values else 0.0


# ----------------------------
# Estúdios e sequenciamento de sessões
# ----------------------------
def studio_loyalty_boost(c: CandidateGame, loyal_developers: Sequence[str]) -> float:
    if not loyal_developers:
        return 0.0
    dev, pub = norm(c.developer), norm(c.publisher)
    for d in loyal_developers:
        if dev == d or pub == d:
            return STUDIO_LOYALTY_BOOST
    return 0.0


@dataclass
class SequencingContext:
    transitions: Dict[str, Dict[str, int]] = field(default_factory=dict)
    totals: Dict[str, int] = field(default_factory=dict)
    recent_genres: List[List[str]] = field(default_factory=list)
    has_sufficient_data: bool = False


def build_sequencing_context(user_games: Sequence[UserGameSnapshot]) -> SequencingContext:
    """Transições de gênero entre sessões consecutivas de jogos diferentes."""
    sessions: List[Tuple[int, str, List[str]]] = []
    for ug in user_games:
        genres = canonical_norms(ug.genres)
        sessions.extend((ts, ug.game_id, genres) for ts in ug.session_timestamps)
    if len(sessions) < 4:
        return SequencingContext()

    sessions.sort(key=lambda s: s[0])
    transitions: Dict[str, Dict[str, int]] = {}
    for (_, cur_id, cur_genres), (_, next_id, next_genres) in zip(sessions, sessions[1:]):
        if cur_id == next_id:
            continue
        for src in cur_genres:
            row = transitions.setdefault(src, {})
            for dst in next_genres:
                row[dst] = row.get(dst, 0) + 1

    recent = sorted(
        (g for g in user_games if g.last_session_date is not None),
        key=lambda g: g.last_session_date,
        reverse=True,
    )[:3]
    return SequencingContext(
        transitions=transitions,
        totals={k: sum(v.values()) for k, v in transitions.items()},
        recent_genres=[canonical_norms(g.genres) for g in recent],
        has_sufficient_data=bool(recent),
    )


def sequencing_boost(c: CandidateGame, ctx: SequencingContext) -> float:
    if not ctx.has_sufficient_data:
        return 0.0
    cand_genres = canonical_norms(c.genres)
    total, count = 0.0, 0
    for genre_set in ctx.recent_genres:
        for src in genre_set:
            row = ctx.transitions.get(src)
            denom = ctx.totals.get(src, 0)
            if not row or denom == 0:
                continue
            for g in cand_genres:
                total += row.get(g, 0) / denom
                count += 1
    return clamp01(total / count * 2) if count else 0.0


# ----------------------------
# Re-ranking por diversidade (MMR)
# ----------------------------
def mmr_rerank(scored: Sequence[ScoredGame], lam: float, limit: int) -> List[ScoredGame]:
    """Seleciona gulosamente lam*score - (1-lam)*max_jaccard(gêneros) até `limit` itens."""
    if len(scored) <= 1:
        return list(scored)[:limit]

    genre_sets = {s.game_id: set(canonical_norms(s.genres)) for s in scored}
    remaining = sorted(scored, key=lambda s: s.score, reverse=True)
    selected = [remaining.pop(0)]

    while len(selected) < limit and remaining:
        best_idx, best = 0, -math.inf
        for i, cand in enumerate(remaining):
            a = genre_sets[cand.game_id]
            max_sim = 0.0
            for sel in selected:
                b = genre_sets[sel.game_id]
                inter = len(a & b)
                union = len(a) + len(b) - inter
                jac = inter / union if union else 0.0
                if jac > max_sim:
                    max_sim = jac
            value = lam * cand.score - (1 - lam) * max_sim
            if value > best:
                best, best_idx = value, i
        selected.append(remaining.pop(best_idx))
    return selected
