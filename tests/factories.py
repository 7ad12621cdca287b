"""Shared test builders: fake backend, deterministic vectors and record factories."""

import hashlib
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Sequence

import numpy as np

from oracle.embeddings.backend import EmbedItem, HealthStatus, SetupStatus
from oracle.scoring.types import CandidateGame, UserGameSnapshot
from schemas.library import LibraryGame

DIM = 8
NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
NOW_MS = int(NOW.timestamp() * 1000)


class FakeBackend:
    """Deterministic embedding backend: the vector is derived from the text."""

    def __init__(self, dim: int = DIM, running: bool = True, ready: bool = True):
        self.dim = dim
        self.running = running
        self.ready = ready
        self.calls: List[List[str]] = []
        self.health_checks = 0

    def health_check(self) -> HealthStatus:
        self.health_checks += 1
        return HealthStatus(running=self.running, version="test")

    def setup(self) -> SetupStatus:
        return SetupStatus(backend_detected=True, backend_version="test", model_ready=self.ready)

    def generate_embeddings(self, items: Sequence[EmbedItem]) -> Dict[str, np.ndarray]:
        self.calls.append([it.id for it in items])
        return {it.id: text_vector(it.text, self.dim) for it in items}


def text_vector(text: str, dim: int = DIM) -> np.ndarray:
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    vec = np.frombuffer(digest[: dim * 4], dtype=np.uint32).astype(np.float32)
    vec = vec / np.float32(2 ** 32) - np.float32(0.5)
    return vec / np.linalg.norm(vec)


def unit(*values: float) -> np.ndarray:
    vec = np.zeros(DIM, dtype=np.float32)
    vec[: len(values)] = values
    n = np.linalg.norm(vec)
    return vec / n if n else vec


def make_game(game_id: str, title: str, **kwargs) -> LibraryGame:
    data = {
        "id": game_id,
        "title": title,
        "genres": ["Action"],
        "status": "Playing",
        "added_at": NOW - timedelta(days=30),
    }
    data.update(kwargs)
    return LibraryGame(**data)


def make_snapshot(game_id: str, title: str, **kwargs) -> UserGameSnapshot:
    data = {
        "game_id": game_id,
        "title": title,
        "added_at": NOW_MS - 30 * 24 * 60 * 60 * 1000,
        "genres": ["Action"],
        "status": "Playing",
    }
    data.update(kwargs)
    return UserGameSnapshot(**data)


def make_candidate(game_id: str, title: str, **kwargs) -> CandidateGame:
    data = {"game_id": game_id, "title": title, "genres": ["Action"]}
    data.update(kwargs)
    return CandidateGame(**data)


def steam_item(app_id: int, name: str, tags=(19,), reviews: int = 500, positive: int = 90, developer: str = "Studio"):
    """A raw IStoreBrowseService/GetItems item."""
    return {
        "appid": app_id,
        "success": 1,
        "visible": True,
        "name": name,
        "tags": [{"tagid": t, "weight": 100} for t in tags],
        "basic_info": {
            "short_description": f"{name} description",
            "developers": [{"name": developer}],
            "publishers": [{"name": developer}],
        },
        "release": {"steam_release_date": 1600000000},
        "platforms": {"windows": True},
        "reviews": {"summary_filtered": {"review_count": reviews, "percent_positive": positive, "review_score": 8}},
        "best_purchase_option": {"formatted_final_price": "$9.99"},
    }
