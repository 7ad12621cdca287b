import threading

import pytest

from oracle.scoring.pipeline import ScoringCancelled, run_pipeline
from oracle.scoring.shelves import build_shelves, generate_explanation
from oracle.worker.protocol import WorkerInput
from schemas.reco_output import LayerScores, MatchReasons, Price, ScoredGame, TasteProfile

from tests.factories import NOW_MS, make_candidate, make_snapshot, unit


def _library():
    return [
        make_snapshot("steam-1", "Dark Souls", genres=["RPG", "Action"], developer="FromSoftware", rating=5, hours_played=80, status="Completed", release_date="2011-09-22", embedding=unit(1, 0)),
        make_snapshot("steam-2", "Bloodborne", genres=["RPG", "Action"], developer="FromSoftware", rating=4, hours_played=40, status="Playing", similar_game_titles=["Lies of P"], embedding=unit(1, 0.2)),
        make_snapshot("steam-3", "Celeste", genres=["Platformer"], developer="Maddy Makes Games", rating=3, hours_played=5, status="On Hold"),
    ]


def _candidates():
    return [
        make_candidate("steam-10", "Dark Souls III", genres=["RPG", "Action"], developer="FromSoftware", release_date="2016-04-12", metacritic_score=89, embedding=unit(1, 0.1)),
        make_candidate("steam-11", "Lies of P", genres=["RPG", "Action"], developer="Neowiz", metacritic_score=80, player_count=5000, price=Price(discount_percent=40, final_formatted="$30")),
        make_candidate("steam-12", "Sekiro", genres=["Action"], developer="FromSoftware", metacritic_score=90, player_count=100000),
        make_candidate("steam-13", "Stardew Valley", genres=["Simulation"], developer="ConcernedApe", player_count=200000, price=Price(discount_percent=20)),
        make_candidate("steam-14", "Forza", genres=["Racing"], developer="Playground", price=Price(is_free=True)),
        make_candidate("steam-15", "Vampire Survivors", genres=["Action"], price=Price(is_free=True)),
    ]


def _input(**kw):
    data = dict(user_games=_library(), candidates=_candidates(), now=NOW_MS, current_hour=20, embedding_coverage=0.5)
    data.update(kw)
    return WorkerInput(**data)


def test_pipeline_builds_distinct_shelves():
    stages = []
    profile, shelves = run_pipeline(_input(), on_progress=lambda stage, pct: stages.append(pct))

    assert profile.top_genre in ("RPG", "Action")
    assert profile.loyal_developers == ["fromsoftware"]
    assert shelves[0].type == "hero"
    assert len(shelves[0].games) == 1

    seen = set()
    for shelf in shelves:
        if shelf.type == "unfinished-business":
            continue
        ids = [g.game_id for g in shelf.games]
        assert not seen & set(ids), shelf.type
        seen.update(ids)

    assert stages == sorted(stages)
    assert all(0 <= g.score <= 1 for s in shelves for g in s.games)


def test_pipeline_scores_franchise_and_similar_games():
    _, shelves = run_pipeline(_input())
    games = {g.game_id: g for s in shelves for g in s.games}

    ds3 = games["steam-10"]
    assert ds3.reasons.is_franchise_entry
    assert ds3.reasons.franchise_of == "Dark Souls"
    assert "part of the Dark Souls series you love" in ds3.reasons.explanation

    lies = games["steam-11"]
    assert "Bloodborne" in lies.reasons.similar_to
    assert lies.reasons.is_on_sale


def test_dismissed_games_never_appear():
    _, shelves = run_pipeline(_input(dismissed_game_ids=["steam-10", "steam-11"]))
    ids = {g.game_id for s in shelves for g in s.games}
    assert "steam-10" not in ids
    assert "steam-11" not in ids


def test_no_candidates_yields_library_shelves_only():
    profile, shelves = run_pipeline(_input(candidates=[]))
    assert profile.total_games == 3
    assert [s.type for s in shelves] == ["unfinished-business"]
    assert [g.game_id for g in shelves[0].games] == ["steam-2", "steam-3"]


def test_empty_library_and_candidates():
    profile, shelves = run_pipeline(_input(user_games=[], candidates=[]))
    assert profile.total_games == 0
    assert shelves == []


def test_cancelled_run_raises():
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(ScoringCancelled):
        run_pipeline(_input(), cancel=cancel)


def test_pipeline_without_embeddings():
    library = [make_snapshot(s.game_id, s.title, genres=s.genres, rating=s.rating) for s in _library()]
    candidates = [make_candidate(c.game_id, c.title, genres=c.genres) for c in _candidates()]
    _, shelves = run_pipeline(_input(user_games=library, candidates=candidates, embedding_coverage=0.0))
    games = [g for s in shelves for g in s.games]
    assert all(g.layer_scores.semantic_similarity == 0.0 for g in games)


# ---------- Explicações ----------
def _scored(score=0.5, **reasons):
    return ScoredGame(game_id="x", title="X", score=score, layer_scores=LayerScores(), reasons=MatchReasons(**reasons))


def test_explanation_fallback():
    assert generate_explanation(_scored(0.5), TasteProfile()) == "50% match based on your gaming taste"


def test_explanation_keeps_three_parts():
    text = generate_explanation(
        _scored(
            0.87,
            is_franchise_entry=True,
            franchise_of="Dark Souls",
            similar_to=["Bloodborne"],
            shared_genres=["RPG"],
            is_stretch_pick=True,
        ),
        TasteProfile(),
    )
    assert text == "87% match — part of the Dark Souls series you love, similar to Bloodborne, matches your love of RPG"


# ---------- Prateleiras ----------
def test_deals_shelf_needs_two_discounted_games():
    def _deal(gid, pct):
        return ScoredGame(game_id=gid, title=gid, score=0.5, price=Price(discount_percent=pct), reasons=MatchReasons(is_on_sale=True))

    reranked = [ScoredGame(game_id="top", title="Top", score=0.9), _deal("a", 25), _deal("b", 60), _deal("c", 10)]
    shelves = build_shelves(reranked, reranked, [], TasteProfile(), [], [], NOW_MS)

    by_type = {s.type: s for s in shelves}
    assert [g.game_id for g in by_type["hero"].games] == ["top"]
    assert [g.game_id for g in by_type["deals-for-you"].games] == ["b", "a"]


def test_unfinished_business_reuses_library():
    games = [
        make_snapshot("p", "Playing", status="Playing", last_session_date=NOW_MS - 1000),
        make_snapshot("h", "Hold", status="On Hold", last_session_date=NOW_MS - 5000),
        make_snapshot("c", "Done", status="Completed"),
    ]
    shelves = build_shelves([], [], games, TasteProfile(), [], [], NOW_MS)
    assert [s.type for s in shelves] == ["unfinished-business"]
    assert [g.game_id for g in shelves[0].games] == ["h", "p"]
