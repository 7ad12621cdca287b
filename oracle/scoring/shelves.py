# oracle/scoring/shelves.py
"""
Montagem das prateleiras e explicações.

Responsável por:
- Gerar a explicação curta de cada jogo pontuado ("87% match — ...").
- Montar as prateleiras temáticas em ordem fixa, sem repetir jogos entre
  prateleiras (exceto "unfinished-business", que usa a própria biblioteca).

Observações:
- `reranked` é a saída do MMR; `all_scored` é a lista completa (usada para
  lançamentos futuros e entradas de franquia que ficaram fora do MMR).
"""

from __future__ import annotations

from typing import Callable, List, Optional, Sequence, Set

from oracle.scoring.franchise import FranchiseCluster
from oracle.scoring.genres import norm, to_canonical_genre
from oracle.scoring.types import DAY_MS, UserGameSnapshot, parse_date_ms
from schemas.reco_output import LayerScores, MatchReasons, RecoShelf, ScoredGame, TasteCluster, TasteProfile

NEW_RELEASE_WINDOW_MS = 60 * DAY_MS
UNFINISHED_STATUSES = ("Playing", "On Hold", "Playing Now")


# ----------------------------
# Explicação
# ----------------------------
def generate_explanation(scored: ScoredGame, profile: TasteProfile) -> str:
    parts: List[str] = []
    reasons = scored.reasons
    match_pct = round(scored.score * 100)

    if reasons.is_franchise_entry and reasons.franchise_of:
        parts.append(f"part of the {reasons.franchise_of} series you love")

    if reasons.similar_to:
        parts.append(f"similar to {reasons.similar_to[0]}")

    if scored.layer_scores.studio_loyalty_boost > 0.1:
        parts.append(f"from {scored.developer}, a studio you trust")

    if reasons.shared_genres:
        top = reasons.shared_genres[0]
        genre_stats = next((g for g in profile.genres if norm(g.name) == norm(top)), None)
        if genre_stats is not None and genre_stats.total_hours > 10:
            parts.append(f"you've spent {round(genre_stats.total_hours)}h in {top} games")
        else:
            parts.append(f"matches your love of {' & '.join(reasons.shared_genres[:2])}")

    if reasons.is_on_sale and scored.price is not None and scored.price.discount_percent:
        parts.append(f"{scored.price.discount_percent}% off right now")

    if reasons.is_hidden_gem:
        parts.append(f"hidden gem with {scored.metacritic_score} Metacritic")

    if reasons.is_stretch_pick:
        parts.append("outside your comfort zone")

    if not reasons.is_hidden_gem and (scored.metacritic_score or 0) >= 85:
        parts.append(f"critically acclaimed ({scored.metacritic_score}/100)")

    if not parts:
        return f"{match_pct}% match based on your gaming taste"
    return f"{match_pct}% match — {', '.join(parts[:3])}"


# ----------------------------
# Prateleiras
# ----------------------------
def _canon_norm(genre: str) -> str:
    return norm(to_canonical_genre(genre) or genre)


def _capitalize(s: str) -> str:
    return s[:1].upper() + s[1:]


def _is_upcoming(game: ScoredGame, now: int) -> bool:
    if game.release_date == "":
        return True
    ms = parse_date_ms(game.release_date)
    return ms is not None and ms > now


def _unfinished_entry(g: UserGameSnapshot) -> ScoredGame:
    return ScoredGame(
        game_id=g.game_id,
        title=g.title,
        developer=g.developer,
        publisher=g.publisher,
        genres=list(g.genres),
        themes=list(g.themes),
        game_modes=list(g.game_modes),
        release_date=g.release_date,
        score=0.0,
        layer_scores=LayerScores(),
        reasons=MatchReasons(explanation="You've been playing this — pick it back up!"),
    )


class _ShelfBuilder:
    """Acumula prateleiras e o conjunto de jogos já usados."""

    def __init__(self) -> None:
        self.shelves: List[RecoShelf] = []
        self.used: Set[str] = set()

    def available(self, games: Sequence[ScoredGame], pred: Callable[[ScoredGame], bool]) -> List[ScoredGame]:
        return [s for s in games if s.game_id not in self.used and pred(s)]

    def add(
        self,
        shelf_type: str,
        title: str,
        games: List[ScoredGame],
        min_size: int,
        subtitle: Optional[str] = None,
        seed_game_title: Optional[str] = None,
        track_used: bool = True,
    ) -> bool:
        if len(games) < min_size:
            return False
        self.shelves.append(
            RecoShelf(type=shelf_type, title=title, subtitle=subtitle, seed_game_title=seed_game_title, games=games)
        )
        if track_used:
            self.used.update(g.game_id for g in games)
        return True


def build_shelves(
    reranked: Sequence[ScoredGame],
    all_scored: Sequence[ScoredGame],
    user_games: Sequence[UserGameSnapshot],
    profile: TasteProfile,
    clusters: Sequence[TasteCluster],
    franchises: Sequence[FranchiseCluster],
    now: int,
) -> List[RecoShelf]:
    b = _ShelfBuilder()

    # Hero
    if reranked:
        b.add("hero", "Your Next Obsession", [reranked[0]], 1)

    # Complete the series
    by_id = {s.game_id: s for s in all_scored}
    by_id.update({s.game_id: s for s in reranked})
    for franchise in franchises[:3]:
        if franchise.user_avg_rating < 3 and franchise.user_total_hours < 10:
            continue
        missing = [
            by_id[e.game_id]
            for e in franchise.entries
            if not e.is_user_owned and e.game_id in by_id and e.game_id not in b.used
        ]
        b.add(
            "complete-the-series",
            f"Complete the {franchise.display_name} Series",
            missing[:10],
            1,
            subtitle=f"You've played {len(franchise.user_played_ids)} of {len(franchise.entries)} entries",
        )

    # Because you loved X
    loved = [g for g in user_games if g.rating >= 4 or g.hours_played >= 20]
    if loved:
        best = max(loved, key=lambda g: g.rating * 10 + g.hours_played)
        best_norm = norm(best.title)
        games = b.available(reranked, lambda s: any(norm(t) == best_norm for t in s.reasons.similar_to))[:12]
        b.add("because-you-loved", f"Because you loved {best.title}", games, 2, seed_game_title=best.title)

    # From studios you love
    if profile.loyal_developers:
        games = b.available(reranked, lambda s: s.layer_scores.studio_loyalty_boost > 0)[:12]
        studios = ", ".join(_capitalize(d) for d in profile.loyal_developers[:3])
        b.add("from-studios-you-love", "From Studios You Love", games, 2, subtitle=f"Games by {studios}")

    # Deep in genre
    if profile.top_genre:
        top = norm(profile.top_genre)
        games = b.available(reranked, lambda s: any(_canon_norm(g) == top for g in s.genres))[:12]
        b.add(
            "deep-in-genre",
            f"Deep in {_capitalize(profile.top_genre)}",
            games,
            2,
            subtitle="More from your favourite genre",
        )

    # For your mood
    for cluster in clusters:
        if not cluster.label or cluster.game_count < 2:
            continue
        cluster_genres = {norm(g.name) for g in cluster.profile.genres[:3]}
        games = b.available(reranked, lambda s: any(_canon_norm(g) in cluster_genres for g in s.genres))[:10]
        b.add(
            "for-your-mood",
            f"For your {cluster.label} side",
            games,
            3,
            subtitle=f"Based on {' & '.join(cluster.top_games[:2])}",
        )

    b.add(
        "hidden-gems",
        "Hidden Gems",
        b.available(reranked, lambda s: s.reasons.is_hidden_gem)[:12],
        2,
        subtitle="Critically acclaimed, under the radar",
    )

    deals = b.available(
        reranked,
        lambda s: s.reasons.is_on_sale and s.price is not None and (s.price.discount_percent or 0) >= 20,
    )
    deals.sort(key=lambda s: s.price.discount_percent or 0, reverse=True)
    b.add("deals-for-you", "Deals For You", deals[:12], 2, subtitle="Games on sale that match your taste")

    b.add(
        "free-for-you",
        "Free For You",
        b.available(reranked, lambda s: s.price is not None and s.price.is_free)[:12],
        2,
        subtitle="Great free games matching your taste",
    )

    critics = b.available(reranked, lambda s: (s.metacritic_score or 0) >= 85)
    critics.sort(key=lambda s: s.metacritic_score or 0, reverse=True)
    b.add(
        "critics-choice",
        "Critics' Choice",
        critics[:12],
        2,
        subtitle="Top-rated by reviewers, matched to your taste",
    )

    b.add(
        "stretch-picks",
        "Stretch Picks",
        b.available(reranked, lambda s: s.reasons.is_stretch_pick and s.score > 0.12)[:12],
        2,
        subtitle="Outside your comfort zone, but you might love them",
    )

    def _new_release(s: ScoredGame) -> bool:
        ms = parse_date_ms(s.release_date)
        return ms is not None and now - NEW_RELEASE_WINDOW_MS < ms <= now

    b.add(
        "new-releases-for-you",
        "New Releases For You",
        b.available(reranked, _new_release)[:12],
        2,
        subtitle="Recently launched games matching your taste",
    )

    sequels = b.available(all_scored, lambda s: s.reasons.is_franchise_entry and _is_upcoming(s, now))
    sequels.sort(key=lambda s: s.score, reverse=True)
    b.add("upcoming-sequels", "Upcoming Sequels", sequels[:8], 1, subtitle="New entries in franchises you love")

    coming = b.available(all_scored, lambda s: _is_upcoming(s, now) and s.score > 0.15)
    coming.sort(key=lambda s: s.score, reverse=True)
    b.add("coming-soon-for-you", "Coming Soon For You", coming[:12], 2, subtitle="Upcoming games you might love")

    trending = b.available(reranked, lambda s: (s.player_count or 0) > 0)
    trending.sort(key=lambda s: s.player_count or 0, reverse=True)
    b.add("trending-now", "Trending Now", trending[:12], 2, subtitle="Popular games that match your taste")

    # Finish and try
    on_hold = [g for g in user_games if g.status == "On Hold"]
    if on_hold:
        top_on_hold = max(on_hold, key=lambda g: g.hours_played)
        title_norm = norm(top_on_hold.title)
        genre_norms = {norm(c) for c in (to_canonical_genre(g) for g in top_on_hold.genres) if c}
        games = b.available(
            reranked,
            lambda s: any(norm(t) == title_norm for t in s.reasons.similar_to)
            or any(_canon_norm(g) in genre_norms for g in s.genres),
        )[:8]
        b.add(
            "finish-and-try",
            f"Finish {top_on_hold.title}, then try...",
            games,
            2,
            subtitle="Motivation to complete what you started",
            seed_game_title=top_on_hold.title,
        )

    # Unfinished business (fora do conjunto de usados)
    unfinished = sorted(
        (g for g in user_games if g.status in UNFINISHED_STATUSES),
        key=lambda g: g.last_session_date if g.last_session_date is not None else g.added_at,
    )[:8]
    b.add(
        "unfinished-business",
        "Unfinished Business",
        [_unfinished_entry(g) for g in unfinished],
        1,
        subtitle="Games you started but haven't completed",
        track_used=False,
    )

    return b.shelves
