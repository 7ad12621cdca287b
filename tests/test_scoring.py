from datetime import timedelta

import numpy as np
import pytest

from oracle.embeddings.cache import EmbeddingCache
from oracle.scoring.centroid import centroid_from_snapshots, compute_taste_centroid, game_weight
from oracle.scoring.franchise import detect_franchises, extract_franchise_base, franchise_boost
from oracle.scoring.genres import canonical_norms, to_canonical_genres
from oracle.scoring.pipeline import layer_weights
from oracle.scoring.profile import (
    EngagementScorer,
    build_negative_profile,
    build_taste_profile,
    detect_taste_clusters,
    trajectory_multiplier,
)
from oracle.scoring.signals import (
    cosine_similarity,
    mmr_rerank,
    popularity_adjustment,
    quality_signal,
    studio_loyalty_boost,
    vector_cosine,
)
from oracle.scoring.snapshot import build_user_snapshots, classify_engagement
from oracle.scoring.types import DAY_MS
from schemas.library import PlaySession, StatusChange
from schemas.reco_output import ScoredGame

from tests.factories import NOW, NOW_MS, make_candidate, make_game, make_snapshot, unit


# ---------- Padrões de engajamento ----------
def _days(*offsets):
    return [NOW_MS - (30 - d) * DAY_MS for d in offsets]


@pytest.mark.parametrize(
    "timestamps, durations, expected",
    [
        (_days(0, 1), [60, 60], "unknown"),
        (_days(0, 1, 2), [60, 60, 60], "binge-drop"),
        (_days(0, 5, 10, 20), [10, 10, 30, 30], "slow-burn"),
        (_days(0, 2, 4, 6, 10), [100, 100, 100, 10, 10], "honeymoon"),
        (_days(0, 10, 20, 30), [30, 30, 30, 30], "long-tail"),
        (_days(0, 4, 8), [30, 30, 30], "unknown"),
    ],
)
def test_classify_engagement(timestamps, durations, expected):
    assert classify_engagement(timestamps, durations, len(timestamps)) == expected


def test_build_user_snapshots_joins_sessions_and_status():
    game = make_game("steam-1", "Hades", status="Completed")
    start = NOW - timedelta(days=10)
    sessions = [
        PlaySession(game_id="steam-1", start_time=start, end_time=start + timedelta(hours=1), duration_minutes=60, idle_minutes=20),
        PlaySession(game_id="steam-1", start_time=start + timedelta(days=1), end_time=start + timedelta(days=1, hours=1), duration_minutes=20),
        PlaySession(game_id="other", start_time=start, end_time=start, duration_minutes=5),
    ]
    changes = [
        StatusChange(game_id="steam-1", timestamp=start + timedelta(days=2), new_status="Completed"),
        StatusChange(game_id="steam-1", timestamp=start, new_status="Playing"),
    ]
    cache = EmbeddingCache()
    cache.merge({"steam-1": unit(1)})

    (snap,) = build_user_snapshots([game], sessions, changes, cache)

    assert snap.session_count == 2
    assert snap.avg_session_minutes == pytest.approx(40)
    assert snap.active_to_idle_ratio == pytest.approx(80 / 100)
    assert snap.status_trajectory == ["Playing", "Completed"]
    assert snap.last_session_date == NOW_MS - 9 * DAY_MS + 60 * 60 * 1000
    assert snap.engagement_pattern == "unknown"
    assert snap.embedding is not None


def test_snapshot_without_sessions():
    (snap,) = build_user_snapshots([make_game("steam-1", "Hades")])
    assert snap.session_count == 0
    assert snap.active_to_idle_ratio == 1.0
    assert snap.last_session_date is None
    assert snap.embedding is None


# ---------- Centróide ----------
def test_game_weight():
    assert game_weight(0, 0, "Playing") == 1.0
    assert game_weight(100, 5, "Completed") == pytest.approx(1 + 3 + 2 + 1)


def test_centroid_degenerate_cases():
    assert compute_taste_centroid([]) is None
    assert compute_taste_centroid([(unit(1), 0.0)]) is None

    zero = compute_taste_centroid([(unit(1), 1.0), (-unit(1), 1.0)])
    assert zero is not None
    assert np.allclose(zero, 0.0)


def test_centroid_is_weighted_and_normalized():
    c = compute_taste_centroid([(unit(1, 0), 3.0), (unit(0, 1), 1.0)])
    assert np.linalg.norm(c) == pytest.approx(1.0, abs=1e-6)
    assert c[0] > c[1] > 0


def test_centroid_from_snapshots_skips_missing_vectors():
    snaps = [make_snapshot("a", "A", embedding=unit(1)), make_snapshot("b", "B")]
    assert np.allclose(centroid_from_snapshots(snaps), unit(1))
    assert centroid_from_snapshots([make_snapshot("b", "B")]) is None


# ---------- Gêneros ----------
def test_canonical_genres():
    assert to_canonical_genres(["FPS", "Shooter", "Indie", "sport"]) == ["FPS & Shooter", "Sports"]
    assert canonical_norms(["RPG", "rpg"]) == ["rpg", "rpg"]


# ---------- Perfil ----------
def test_engagement_score_is_bounded_and_ordered():
    scorer = EngagementScorer(NOW_MS)
    fan = make_snapshot("a", "A", hours_played=400, rating=5, status="Completed", engagement_pattern="long-tail")
    skim = make_snapshot("b", "B", hours_played=0.5, status="Want to Play")
    assert 0.0 <= scorer(skim) < scorer(fan) <= 1.0


def test_trajectory_multiplier():
    assert trajectory_multiplier(make_snapshot("a", "A")) == 1.0
    assert trajectory_multiplier(make_snapshot("a", "A", status_trajectory=["Playing", "Completed"])) == 1.3
    assert trajectory_multiplier(make_snapshot("a", "A", status_trajectory=["Want to Play", "On Hold"], status="On Hold")) == 0.6


def test_taste_profile_and_loyal_developers():
    scorer = EngagementScorer(NOW_MS)
    games = [
        make_snapshot("a", "Dark Souls", genres=["RPG"], developer="FromSoftware", rating=4),
        make_snapshot("b", "Elden Ring", genres=["RPG", "Action"], developer="FromSoftware", rating=5),
        make_snapshot("c", "Portal", genres=["Puzzle"], developer="Valve", rating=5),
    ]
    profile = build_taste_profile(games, scorer)

    assert profile.top_genre == "RPG"
    assert profile.total_games == 3
    assert profile.avg_rating == pytest.approx(14 / 3)
    assert profile.loyal_developers == ["fromsoftware"]


def test_negative_profile():
    games = [
        make_snapshot("a", "A", genres=["Horror"], removed_at=NOW_MS - DAY_MS),
        make_snapshot("b", "B", genres=["RPG"]),
    ]
    vec, strength = build_negative_profile(games, NOW_MS)
    assert vec == {"g:horror & gore": 1.0}
    assert strength == 0.5
    assert build_negative_profile([make_snapshot("b", "B")], NOW_MS) == ({}, 0.0)


def test_taste_clusters_need_enough_games():
    scorer = EngagementScorer(NOW_MS)
    few = [make_snapshot(str(i), f"G{i}") for i in range(5)]
    assert detect_taste_clusters(few, scorer, k=3) == []

    games = [make_snapshot(f"r{i}", f"RPG {i}", genres=["RPG"], themes=["Fantasy"]) for i in range(4)]
    games += [make_snapshot(f"s{i}", f"Race {i}", genres=["Racing"], themes=["Cars"]) for i in range(4)]
    clusters = detect_taste_clusters(games, scorer, k=2, rng=np.random.default_rng(1))
    assert sum(c.game_count for c in clusters) == 8
    assert {c.label for c in clusters} == {"RPG", "Racing"}


# ---------- Sinais ----------
def test_cosine_similarity():
    assert cosine_similarity({}, {"a": 1.0}) == 0.0
    assert cosine_similarity({"a": 1.0}, {"a": 2.0}) == pytest.approx(1.0)
    assert cosine_similarity({"a": 1.0}, {"b": 1.0}) == 0.0


def test_vector_cosine_handles_missing_and_mismatched():
    assert vector_cosine(None, unit(1)) == 0.0
    assert vector_cosine(unit(1), np.ones(3)) == 0.0
    assert vector_cosine(unit(1, 1), unit(1, 1)) == pytest.approx(1.0)


def test_quality_signal_defaults():
    bare = make_candidate("x", "X")
    assert quality_signal(bare, 0, 0, 2025) == pytest.approx(0.3)

    acclaimed = make_candidate("y", "Y", metacritic_score=100, review_positivity=1.0, review_volume=100, release_date="2025-01-01")
    assert quality_signal(acclaimed, 0, 100, 2025) > quality_signal(bare, 0, 0, 2025)


def test_popularity_adjustment():
    assert popularity_adjustment(None, 1000) == 1.0
    assert popularity_adjustment(1000, 1000) == pytest.approx(0.75)


def test_studio_loyalty_boost():
    c = make_candidate("x", "X", developer="FromSoftware")
    assert studio_loyalty_boost(c, ["fromsoftware"]) == pytest.approx(0.35)
    assert studio_loyalty_boost(c, []) == 0.0


def test_mmr_prefers_diverse_genres():
    scored = [
        ScoredGame(game_id="a", title="A", genres=["Action"], score=0.9),
        ScoredGame(game_id="b", title="B", genres=["Action"], score=0.85),
        ScoredGame(game_id="c", title="C", genres=["Puzzle"], score=0.5),
    ]
    assert [s.game_id for s in mmr_rerank(scored, 0.5, 10)] == ["a", "c", "b"]
    assert [s.game_id for s in mmr_rerank(scored, 1.0, 2)] == ["a", "b"]


def test_layer_weights_interpolate_with_coverage():
    assert layer_weights(0.0) == pytest.approx((0.23, 0.0, 0.19))
    assert layer_weights(1.0) == pytest.approx((0.15, 0.12, 0.14))
    assert layer_weights(5.0) == layer_weights(1.0)


# ---------- Franquias ----------
@pytest.mark.parametrize(
    "title, base",
    [
        ("Dark Souls III", "dark souls"),
        ("Dark Souls: Remastered", "dark souls"),
        ("The Witcher 3: Wild Hunt", "the witcher"),
        ("Portal 2", "portal"),
        ("Hades", "hades"),
    ],
)
def test_extract_franchise_base(title, base):
    assert extract_franchise_base(title) == base


def test_franchise_detection_and_boost():
    user = [make_snapshot("ds1", "Dark Souls", rating=5, hours_played=50, release_date="2011-09-22")]
    candidates = [
        make_candidate("ds3", "Dark Souls III", release_date="2016-04-12"),
        make_candidate("ds2", "Dark Souls II", release_date="2014-03-11"),
        make_candidate("hk", "Hollow Knight"),
    ]
    franchises = detect_franchises(user, candidates)

    assert len(franchises) == 1
    f = franchises[0]
    assert f.display_name == "Dark Souls"
    assert [e.game_id for e in f.entries] == ["ds1", "ds2", "ds3"]
    assert f.user_played_ids == ["ds1"]

    boost, name, is_entry = franchise_boost(candidates[0], franchises, {"ds1"})
    assert boost == pytest.approx((0.4 + 0.5 / 3) * 1.5)
    assert name == "Dark Souls"
    assert is_entry
    assert franchise_boost(candidates[2], franchises, {"ds1"}) == (0.0, None, False)


def test_no_franchise_without_owned_entry():
    candidates = [make_candidate("a", "Portal"), make_candidate("b", "Portal 2")]
    assert detect_franchises([], candidates) == []
