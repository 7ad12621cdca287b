# oracle/scoring/centroid.py
"""
Centróide de gosto: média ponderada dos vetores da biblioteca, normalizada (L2).

Peso por jogo: 1 + min(horas/20, 3) + (nota/5)*2 + (1 se Completed).
Sem vetores (ou peso total zero) => None; o chamador pula a recuperação semântica.
Média de norma zero (ex.: vetores opostos com o mesmo peso) => vetor zero sem
normalização.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence, Tuple

import numpy as np

from oracle.scoring.types import UserGameSnapshot


def game_weight(hours_played: float, rating: float, status: str) -> float:
    return 1.0 + min(hours_played / 20.0, 3.0) + (rating / 5.0) * 2.0 + (1.0 if status == "Completed" else 0.0)


def compute_taste_centroid(pairs: Iterable[Tuple[np.ndarray, float]]) -> Optional[np.ndarray]:
    vectors = []
    weights = []
    for vec, w in pairs:
        if vec is None or len(vec) == 0:
            continue
        vectors.append(np.asarray(vec, dtype=np.float64))
        weights.append(float(w))
    if not vectors:
        return None

    dim = vectors[0].shape[0]
    keep = [i for i, v in enumerate(vectors) if v.shape[0] == dim]
    mat = np.stack([vectors[i] for i in keep])
    w = np.asarray([weights[i] for i in keep], dtype=np.float64)

    total = float(w.sum())
    if total == 0.0:
        return None

    mean = (mat * w[:, None]).sum(axis=0) / total
    norm = float(np.linalg.norm(mean))
    if norm == 0.0:
        return mean.astype(np.float32)
    return (mean / norm).astype(np.float32)


def centroid_from_snapshots(snapshots: Sequence[UserGameSnapshot]) -> Optional[np.ndarray]:
    """Centróide a partir dos snapshots que têm vetor."""
    return compute_taste_centroid(
        (s.embedding, game_weight(s.hours_played, s.rating, s.status))
        for s in snapshots
        if s.embedding is not None
    )
