# oracle/scoring/genres.py
"""
Gêneros canônicos.

Gêneros brutos (Steam/Epic) são mapeados para uma lista fixa, de modo que
"FPS" e "Shooter" viram "FPS & Shooter", "Sport" e "Sports" viram "Sports".
Gêneros fora da lista retornam None e não entram no perfil de gênero.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

CANONICAL_GENRES = (
    "Action",
    "Adventure",
    "Casual",
    "Fighting",
    "FPS & Shooter",
    "Horror & Gore",
    "MMO",
    "Puzzle",
    "Racing",
    "RPG",
    "Simulation",
    "Sports",
    "Strategy",
    "Survival",
    "Souls-like",
)

_RAW_TO_CANONICAL = {
    "action": "Action",
    "adventure": "Adventure",
    "casual": "Casual",
    "fighting": "Fighting",
    "fps": "FPS & Shooter",
    "shooter": "FPS & Shooter",
    "horror": "Horror & Gore",
    "gore": "Horror & Gore",
    "violent": "Horror & Gore",
    "mmo": "MMO",
    "massively multiplayer": "MMO",
    "puzzle": "Puzzle",
    "racing": "Racing",
    "rpg": "RPG",
    "simulation": "Simulation",
    "sport": "Sports",
    "sports": "Sports",
    "strategy": "Strategy",
    "survival": "Survival",
    "souls-like": "Souls-like",
    "soulslike": "Souls-like",
}

_BY_NORM = {g.lower(): g for g in CANONICAL_GENRES}


def norm(s: str) -> str:
    return (s or "").lower().strip()


def to_canonical_genre(raw: Optional[str]) -> Optional[str]:
    if not isinstance(raw, str):
        return None
    key = norm(raw)
    if not key:
        return None
    return _RAW_TO_CANONICAL.get(key)


def to_canonical_genres(raw: Optional[Iterable[str]]) -> List[str]:
    """Canônicos sem repetição, na ordem da primeira ocorrência."""
    out: List[str] = []
    for r in raw or []:
        can = to_canonical_genre(r)
        if can is not None and can not in out:
            out.append(can)
    return out


def canonical_norms(raw: Optional[Iterable[str]]) -> List[str]:
    """Canônicos normalizados (minúsculas), com repetição preservada."""
    out = []
    for r in raw or []:
        can = to_canonical_genre(r)
        if can:
            out.append(norm(can))
    return out


def display_name(normalized: str) -> str:
    """Nome canônico de exibição para um gênero já normalizado."""
    return _BY_NORM.get(normalized, normalized)
