from types import SimpleNamespace

import numpy as np
import pytest

from oracle.bandit import ArmState, ShelfBandit
from oracle.history import RecoHistoryStore
from oracle.storage.schema import SHELF_BANDIT

from tests.factories import NOW_MS


def _bandit(store=None, seed=7):
    return ShelfBandit(store, rng=np.random.default_rng(seed))


def _shelves(*types):
    return [SimpleNamespace(type=t) for t in types]


# ---------- Bandit ----------
def test_rewards_update_arm(store):
    bandit = _bandit(store)
    bandit.record_reward("deals-for-you", 1)
    bandit.record_reward("deals-for-you", 0)

    arm = bandit.get_arm("deals-for-you")
    assert arm == ArmState(alpha=2.0, beta=2.0, impressions=2, clicks=1)
    assert bandit.get_stats()["deals-for-you"]["ctr"] == 0.5


def test_alpha_plus_beta_never_decreases_on_reward(store):
    bandit = _bandit(store)
    total = 2.0
    for reward in (0, 1, 1, 0, 1):
        bandit.record_reward("hidden-gems", reward)
        arm = bandit.get_arm("hidden-gems")
        assert arm.alpha + arm.beta > total
        total = arm.alpha + arm.beta


def test_click_with_token_undoes_its_impression_once(store):
    bandit = _bandit(store)
    token = bandit.record_impression("trending-now")
    assert bandit.get_arm("trending-now").beta == 2.0

    bandit.record_click("trending-now", token)
    arm = bandit.get_arm("trending-now")
    assert (arm.alpha, arm.beta, arm.clicks) == (2.0, 1.0, 1)

    bandit.record_click("trending-now", token)
    arm = bandit.get_arm("trending-now")
    assert (arm.alpha, arm.beta) == (3.0, 1.0)


def test_click_with_foreign_token_keeps_beta(store):
    bandit = _bandit(store)
    token = bandit.record_impression("trending-now")
    bandit.record_impression("hidden-gems")
    bandit.record_click("hidden-gems", token)
    assert bandit.get_arm("hidden-gems").beta == 2.0


def test_click_without_token_never_drops_beta_below_one(store):
    bandit = _bandit(store)
    bandit.record_click("free-for-you")
    assert bandit.get_arm("free-for-you").beta == 1.0


def test_open_tokens_are_capped_oldest_first(store):
    bandit = ShelfBandit(store, rng=np.random.default_rng(7), max_open_tokens=3)
    tokens = [bandit.record_impression("hidden-gems") for _ in range(5)]

    assert len(bandit._open_tokens) == 3
    assert bandit.get_arm("hidden-gems").beta == 6.0

    # Token expirado: o clique conta, mas o beta da impressão fica
    bandit.record_click("hidden-gems", tokens[0])
    assert bandit.get_arm("hidden-gems").beta == 6.0

    bandit.record_click("hidden-gems", tokens[-1])
    assert bandit.get_arm("hidden-gems").beta == 5.0
    assert len(bandit._open_tokens) == 2


def test_sample_is_in_unit_interval():
    bandit = _bandit()
    bandit.record_reward("a", 0)
    values = [bandit.sample("a") for _ in range(200)]
    assert all(0.0 <= v <= 1.0 for v in values)


def test_sampling_tracks_arm_quality():
    bandit = _bandit(seed=3)
    for _ in range(60):
        bandit.record_reward("good", 1)
        bandit.record_reward("bad", 0)
    good = np.mean([bandit.sample("good") for _ in range(100)])
    bad = np.mean([bandit.sample("bad") for _ in range(100)])
    assert good > 0.9 > 0.1 > bad


def test_reorder_pins_hero_and_keeps_short_lists():
    bandit = _bandit()
    short = _shelves("deals-for-you", "hero")
    assert bandit.reorder_shelves(short) == short

    shelves = _shelves("deals-for-you", "hero", "trending-now", "hidden-gems")
    for _ in range(20):
        ordered = bandit.reorder_shelves(shelves)
        assert ordered[0].type == "hero"
        assert sorted(s.type for s in ordered) == sorted(s.type for s in shelves)


def test_reorder_without_hero():
    ordered = _bandit().reorder_shelves(_shelves("a", "b", "c"))
    assert sorted(s.type for s in ordered) == ["a", "b", "c"]


def test_arms_persist_per_shelf(store):
    bandit = _bandit(store)
    bandit.record_reward("deals-for-you", 1)
    bandit.record_reward("hidden-gems", 0)

    assert sorted(store.keys(SHELF_BANDIT)) == ["deals-for-you", "hidden-gems"]
    reloaded = _bandit(store)
    assert reloaded.get_arm("deals-for-you").alpha == 2.0

    reloaded.reset()
    assert store.count(SHELF_BANDIT) == 0
    assert reloaded.get_stats() == {}


# ---------- Histórico ----------
class Clock:
    def __init__(self, now=NOW_MS):
        self.now = now

    def __call__(self):
        return self.now


def test_dismiss_and_undismiss(store):
    history = RecoHistoryStore(store)
    notified = []
    history.subscribe(lambda: notified.append(1))

    history.dismiss("steam-1")
    history.dismiss("steam-2")
    history.dismiss("steam-1")
    assert history.dismissed_ids() == ["steam-1", "steam-2"]
    assert history.is_dismissed("steam-1")

    history.undismiss("steam-1")
    assert RecoHistoryStore(store).dismissed_ids() == ["steam-2"]
    assert len(notified) == 4


def test_conversion_lifecycle(store):
    clock = Clock()
    history = RecoHistoryStore(store, clock=clock)
    history.record_click("steam-1", "Hades", "hero")
    clock.now += 1000
    history.record_click("steam-1", "Hades", "deals-for-you")
    history.record_click("steam-2", "Celeste", "hero")

    history.record_library_add("steam-1")
    history.record_play("steam-1")
    history.record_rating("steam-1", 4.5)
    history.record_library_add("steam-unknown")

    (hades,) = [e for e in history.history() if e.game_id == "steam-1"]
    assert hades.shelf_type == "hero"
    assert hades.clicked_at == NOW_MS
    assert hades.added_at == NOW_MS + 1000
    assert hades.converted

    assert history.conversion_rate() == 0.5
    assert history.avg_converted_rating() == 4.5
    assert history.shelf_conversion_stats() == {"hero": {"clicks": 2, "conversions": 1, "avgRating": 4.5}}

    reloaded = RecoHistoryStore(store)
    assert reloaded.conversion_rate() == 0.5


def test_empty_history_metrics():
    history = RecoHistoryStore(None)
    assert history.conversion_rate() == 0.0
    assert history.shelf_conversion_stats() == {}
    history.dismiss("steam-1")
    assert history.dismissed_count() == 1


def test_reset_clears_everything(store):
    history = RecoHistoryStore(store)
    history.dismiss("steam-1")
    history.record_click("steam-1", "Hades", "hero")
    history.reset()

    assert history.dismissed_ids() == []
    assert RecoHistoryStore(store).conversion_rate() == 0.0
