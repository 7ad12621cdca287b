# oracle/scoring/franchise.py
"""
Detecção de franquias pelo título.

O nome-base é extraído removendo numeração de sequência, sufixos de edição,
marcadores entre parênteses e subtítulos (até 3 rodadas). Uma franquia existe
quando o mesmo nome-base aparece em >=2 jogos e pelo menos um está na biblioteca.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

from oracle.scoring.genres import norm
from oracle.scoring.types import CandidateGame, UserGameSnapshot, parse_date_ms

_STRIP_PATTERNS = [
    re.compile(r"\s+([\divxlc]+|\d+)$", re.IGNORECASE),
    re.compile(
        r"\s*:\s*(remastered|goty|game of the year|deluxe|ultimate|definitive|complete|enhanced|anniversary"
        r"|remake|hd|collection|gold|premium|special|digital|standard)(\s+edition)?$",
        re.IGNORECASE,
    ),
    re.compile(r"\s+edition$", re.IGNORECASE),
    re.compile(r"\s*\([^)]*\)$"),
    re.compile(r"\s*:\s+[^:]+$"),
    re.compile(r"\s+-\s+.*$"),
]

_DISPLAY_SPLIT = re.compile(r"[:\-–]")


@dataclass
class FranchiseEntry:
    game_id: str
    title: str
    release_date: str
    is_user_owned: bool
    sequence_index: int = 0


@dataclass
class FranchiseCluster:
    base_name: str
    display_name: str
    entries: List[FranchiseEntry]
    user_played_ids: List[str]
    user_avg_rating: float
    user_total_hours: float
    developer: str


@dataclass
class _Acc:
    entries: Dict[str, FranchiseEntry] = field(default_factory=dict)
    developers: Dict[str, int] = field(default_factory=dict)
    user_ratings: List[float] = field(default_factory=list)
    user_hours: float = 0.0


def extract_franchise_base(title: str) -> str:
    base = title.strip()
    for _ in range(3):
        changed = False
        for pattern in _STRIP_PATTERNS:
            stripped = pattern.sub("", base, count=1).strip()
            if len(stripped) >= 3 and stripped != base:
                base = stripped
                changed = True
        if not changed:
            break
    return norm(base)


def _release_sort_key(entry: FranchiseEntry) -> Tuple[int, int]:
    ms = parse_date_ms(entry.release_date)
    return (1, 0) if ms is None else (0, ms)


def detect_franchises(
    user_games: Sequence[UserGameSnapshot], candidates: Sequence[CandidateGame]
) -> List[FranchiseCluster]:
    acc: Dict[str, _Acc] = {}

    def _add(game_id, title, release_date, is_user, developer, rating, hours) -> None:
        base = extract_franchise_base(title)
        if len(base) < 3:
            return
        slot = acc.setdefault(base, _Acc())
        if game_id not in slot.entries:
            slot.entries[game_id] = FranchiseEntry(game_id, title, release_date, is_user)
        elif is_user:
            slot.entries[game_id].is_user_owned = True
        if developer:
            slot.developers[norm(developer)] = slot.developers.get(norm(developer), 0) + 1
        if is_user:
            if rating > 0:
                slot.user_ratings.append(rating)
            slot.user_hours += hours

    for ug in user_games:
        _add(ug.game_id, ug.title, ug.release_date, True, ug.developer, ug.rating, ug.hours_played)
    for c in candidates:
        _add(c.game_id, c.title, c.release_date, False, c.developer, 0, 0)

    franchises: List[FranchiseCluster] = []
    for base, data in acc.items():
        if len(data.entries) < 2 or not any(e.is_user_owned for e in data.entries.values()):
            continue

        entries = sorted(data.entries.values(), key=_release_sort_key)
        for i, e in enumerate(entries):
            e.sequence_index = i

        top_dev, top_count = "", 0
        for dev, count in data.developers.items():
            if count > top_count:
                top_dev, top_count = dev, count

        franchises.append(
            FranchiseCluster(
                base_name=base,
                display_name=_DISPLAY_SPLIT.split(entries[0].title)[0].strip(),
                entries=entries,
                user_played_ids=[e.game_id for e in entries if e.is_user_owned],
                user_avg_rating=sum(data.user_ratings) / len(data.user_ratings) if data.user_ratings else 0.0,
                user_total_hours=data.user_hours,
                developer=top_dev,
            )
        )

    franchises.sort(key=lambda f: f.user_total_hours, reverse=True)
    return franchises


def franchise_boost(
    candidate: CandidateGame, franchises: Sequence[FranchiseCluster], user_game_ids: Set[str]
) -> Tuple[float, Optional[str], bool]:
    """(boost, nome da franquia, é entrada de franquia)."""
    if candidate.game_id in user_game_ids:
        return 0.0, None, False

    base = extract_franchise_base(candidate.title)
    for f in franchises:
        if f.base_name != base and not any(e.game_id == candidate.game_id for e in f.entries):
            continue
        if f.user_avg_rating >= 4:
            rating_mult = 1.5
        elif f.user_avg_rating >= 3:
            rating_mult = 1.0
        else:
            rating_mult = 0.5
        completion = min(len(f.user_played_ids) / len(f.entries), 0.8)
        boost = max(0.0, min(1.0, (0.4 + completion * 0.5) * rating_mult))
        return boost, f.display_name, True

    return 0.0, None, False
