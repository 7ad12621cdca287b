# oracle/scoring/pipeline.py
"""
Pipeline de pontuação executado dentro do worker.

Fluxo:
1) Perfil de gosto + perfil negativo
2) Contextos pré-computados (grafo, hora do dia, sequência, franquias, clusters)
3) Pontuação de cada candidato (combinação linear das camadas)
4) Re-ranking MMR, explicações e montagem das prateleiras

O peso semântico cresce com a cobertura de embeddings dos candidatos; o peso
perdido sai do conteúdo (tags) e do grafo.
"""

from __future__ import annotations

import logging
import math
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from oracle.errors import OracleError
from oracle.scoring.franchise import detect_franchises, franchise_boost
from oracle.scoring.genres import canonical_norms, norm, to_canonical_genres
from oracle.scoring.profile import (
    CURVE_MULTIPLIERS,
    EngagementScorer,
    build_negative_profile,
    build_taste_profile,
    clamp01,
    detect_taste_clusters,
)
from oracle.scoring.shelves import build_shelves, generate_explanation
from oracle.scoring.signals import (
    build_co_occurrence_edges,
    build_graph_user_context,
    build_sequencing_context,
    build_time_of_day_context,
    candidate_to_vector,
    cosine_similarity,
    engagement_centroid,
    graph_signal,
    mmr_rerank,
    popularity_adjustment,
    profile_to_vector,
    quality_signal,
    sequencing_boost,
    studio_loyalty_boost,
    time_of_day_boost,
    vector_cosine,
)
from oracle.scoring.types import release_year
from oracle.worker.protocol import WorkerInput
from schemas.reco_output import LayerScores, MatchReasons, RecoShelf, ScoredGame, TasteProfile

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int], None]

# Pesos fixos das camadas
W_QUALITY = 0.11
W_POPULARITY = 0.06
W_RECENCY = 0.06
W_DIVERSITY = 0.04
W_TIME = 0.03
W_CURVE = 0.03
W_NEGATIVE = 0.06
W_FRANCHISE = 0.08
W_STUDIO = 0.05
W_SEQUENCING = 0.04

# Hidden gem: metacritic alto e menos de 10% dos jogadores do mais popular
HIDDEN_GEM_MIN_METACRITIC = 80
HIDDEN_GEM_POPULARITY_RATIO = 0.1


class ScoringCancelled(OracleError):
    """A rodada foi cancelada pelo orquestrador."""


def layer_weights(coverage: float) -> Tuple[float, float, float]:
    """(conteúdo, semântico, grafo) interpolados pela cobertura de embeddings."""
    cov = clamp01(coverage)
    return 0.23 - 0.08 * cov, 0.12 * cov, 0.19 - 0.05 * cov


def _noop_progress(stage: str, percent: int) -> None:
    pass


def run_pipeline(
    data: WorkerInput,
    on_progress: Optional[ProgressCallback] = None,
    cancel: Optional[threading.Event] = None,
) -> Tuple[TasteProfile, List[RecoShelf]]:
    progress = on_progress or _noop_progress

    def _check_cancel() -> None:
        if cancel is not None and cancel.is_set():
            raise ScoringCancelled("scoring cancelled")

    user_games = data.user_games
    now = data.now
    dismissed = set(data.dismissed_game_ids)
    candidates = [c for c in data.candidates if c.game_id not in dismissed]
    engagement = EngagementScorer(now)

    # ---------- 1. Perfil ----------
    progress("Analyzing your library...", 5)
    profile = build_taste_profile(user_games, engagement)

    if not candidates:
        logger.info("Nenhum candidato após filtros; apenas prateleiras da biblioteca")
        return profile, build_shelves([], [], user_games, profile, [], [], now)

    # Padrões de engajamento já vêm classificados no snapshot
    progress("Analyzing play patterns...", 8)

    progress("Mining negative signals...", 12)
    negative_vec, negative_strength = build_negative_profile(user_games, now)

    progress("Building taste vectors...", 16)
    profile_vec = profile_to_vector(profile)
    w_content, w_semantic, w_graph = layer_weights(data.embedding_coverage)
    taste_vec: Optional[np.ndarray] = None
    if w_semantic > 0:
        taste_vec = data.taste_centroid
        if taste_vec is None:
            taste_vec = engagement_centroid(user_games, engagement)

    progress("Building similarity graph...", 20)
    co_occurrence = build_co_occurrence_edges(candidates)
    _check_cancel()

    progress("Detecting game franchises...", 24)
    franchises = detect_franchises(user_games, candidates)
    user_game_ids = {g.game_id for g in user_games}

    progress("Building scoring contexts...", 26)
    graph_ctx = build_graph_user_context(user_games, engagement)
    tod_ctx = build_time_of_day_context(user_games, data.current_hour)
    seq_ctx = build_sequencing_context(user_games)
    rng = np.random.default_rng(now)
    clusters = detect_taste_clusters(user_games, engagement, k=data.taste_clusters, rng=rng)

    ug_genre_norms: Dict[str, set] = {g.game_id: set(canonical_norms(g.genres)) for g in user_games}
    profile_genres = {norm(g.name) for g in profile.genres}
    profile_themes = {t.name for t in profile.themes}
    profile_modes = {m.name for m in profile.game_modes}
    genre_weight = {norm(g.name): g.weight for g in profile.genres}
    max_genre_weight = profile.genres[0].weight if profile.genres else 1.0

    # ---------- 2. Pontuação ----------
    progress("Scoring candidates...", 28)
    max_player_count = max([1, *(c.player_count or 0 for c in candidates)])
    max_recommendations = max([1, *(c.recommendations or 0 for c in candidates)])
    max_review_volume = max([1, *(c.review_volume or 0 for c in candidates)])
    log_max_players = math.log(max_player_count + 1)
    current_year = datetime.fromtimestamp(now / 1000, tz=timezone.utc).year

    scored: List[ScoredGame] = []
    step = max(1, len(candidates) // 5)

    for i, c in enumerate(candidates):
        cand_vec = candidate_to_vector(c)
        content = cosine_similarity(profile_vec, cand_vec)

        semantic = vector_cosine(taste_vec, c.embedding) if taste_vec is not None else 0.0
        cluster_sim, best_cluster = 0.0, None
        if c.embedding is not None:
            for cl in clusters:
                if cl.semantic_centroid is None:
                    continue
                sim = vector_cosine(np.asarray(cl.semantic_centroid), c.embedding)
                if sim > cluster_sim:
                    cluster_sim, best_cluster = sim, cl.label

        graph, similar_to = graph_signal(c, user_games, co_occurrence, graph_ctx)
        quality = quality_signal(c, max_recommendations, max_review_volume, current_year)

        popularity_raw = clamp01(math.log(c.player_count + 1) / log_max_players) if c.player_count else 0.3
        popularity = popularity_raw * popularity_adjustment(c.player_count, max_player_count)

        year = release_year(c.release_date)
        recency = 0.3 if year is None else clamp01(1 - (current_year - year) / 10)

        cand_genres = canonical_norms(c.genres)
        if cand_genres:
            avg_weight = sum(genre_weight.get(g, 0.0) for g in cand_genres) / len(cand_genres)
        else:
            avg_weight = 0.0
        diversity = clamp01(1 - avg_weight / max_genre_weight) * 0.5 if max_genre_weight > 0 else 0.0

        tod = time_of_day_boost(c, tod_ctx)
        f_boost, franchise_name, is_franchise_entry = franchise_boost(c, franchises, user_game_ids)
        studio = studio_loyalty_boost(c, profile.loyal_developers)
        sequencing = sequencing_boost(c, seq_ctx)
        negative = cosine_similarity(negative_vec, cand_vec) * negative_strength if negative_strength > 0 else 0.0

        cand_genre_set = set(cand_genres)
        curve_bonus = 0.0
        for ug in user_games:
            mult = CURVE_MULTIPLIERS.get(ug.engagement_pattern or "unknown", 1.0)
            if mult <= 1.1:
                continue
            overlap = len(cand_genre_set & ug_genre_norms[ug.game_id])
            if overlap:
                curve_bonus = max(curve_bonus, (mult - 1) * (overlap / max(len(cand_genre_set), 1)))
        curve_bonus = clamp01(curve_bonus)

        shared_genres = [g for g in to_canonical_genres(c.genres) if norm(g) in profile_genres]
        shared_themes = [t for t in c.themes if norm(t) in profile_themes]
        shared_modes = [m for m in c.game_modes if norm(m) in profile_modes]
        player_count = c.player_count if c.player_count is not None else math.inf
        is_hidden_gem = (c.metacritic_score or 0) >= HIDDEN_GEM_MIN_METACRITIC and (
            player_count < max_player_count * HIDDEN_GEM_POPULARITY_RATIO
        )
        is_stretch = bool(cand_genres) and not shared_genres
        is_on_sale = c.price is not None and (c.price.discount_percent or 0) > 0

        score = clamp01(
            content * w_content
            + semantic * w_semantic
            + graph * w_graph
            + quality * W_QUALITY
            + popularity * W_POPULARITY
            + recency * W_RECENCY
            + diversity * W_DIVERSITY
            + tod * W_TIME
            + curve_bonus * W_CURVE
            + f_boost * W_FRANCHISE
            + studio * W_STUDIO
            + sequencing * W_SEQUENCING
            - negative * W_NEGATIVE
        )

        scored.append(
            ScoredGame(
                game_id=c.game_id,
                title=c.title,
                cover_url=c.cover_url,
                header_image=c.header_image,
                developer=c.developer,
                publisher=c.publisher,
                genres=c.genres,
                themes=c.themes,
                game_modes=c.game_modes,
                platforms=c.platforms,
                metacritic_score=c.metacritic_score,
                player_count=c.player_count,
                release_date=c.release_date,
                score=score,
                layer_scores=LayerScores(
                    content_similarity=content,
                    semantic_similarity=semantic,
                    cluster_semantic_sim=cluster_sim,
                    graph_signal=graph,
                    quality_signal=quality,
                    popularity_signal=popularity,
                    recency_boost=recency,
                    diversity_bonus=diversity,
                    trajectory_multiplier=1.0,
                    negative_signal=negative,
                    time_of_day_boost=tod,
                    engagement_curve_bonus=curve_bonus,
                    franchise_boost=f_boost,
                    studio_loyalty_boost=studio,
                    sequencing_boost=sequencing,
                ),
                reasons=MatchReasons(
                    shared_genres=shared_genres,
                    shared_themes=shared_themes,
                    shared_modes=shared_modes,
                    similar_to=similar_to,
                    metacritic_score=c.metacritic_score,
                    popularity_rank=c.player_count,
                    is_hidden_gem=is_hidden_gem,
                    is_stretch_pick=is_stretch,
                    franchise_of=franchise_name,
                    is_franchise_entry=is_franchise_entry,
                    is_on_sale=is_on_sale,
                    semantic_retrieved=c.semantic_retrieved,
                    best_cluster_label=best_cluster,
                ),
                price=c.price,
            )
        )

        if i % step == 0:
            _check_cancel()
            progress("Scoring candidates...", 28 + int(i / len(candidates) * 30))

    # ---------- 3. Diversidade e prateleiras ----------
    progress("Applying diversity filter...", 62)
    scored.sort(key=lambda s: s.score, reverse=True)
    reranked = mmr_rerank(scored, data.mmr_lambda, data.mmr_limit)

    progress("Detecting taste clusters...", 70)
    profile.clusters = clusters

    progress("Generating insights...", 76)
    for s in scored:
        s.reasons.explanation = generate_explanation(s, profile)

    progress("Building shelves...", 84)
    shelves = build_shelves(reranked, scored, user_games, profile, clusters, franchises, now)
    logger.info(f"Pipeline: {len(candidates)} candidatos, {len(reranked)} após MMR, {len(shelves)} prateleiras")
    return profile, shelves
