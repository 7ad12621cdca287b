# oracle/catalog/tag_map.py
"""
Classificação estática das tags da Steam (gênero / modo / tema).

A lista completa de tags (450+) vem em tempo de execução do GetTagList; este
mapa só diz quais ids são gêneros, modos de jogo ou temas. Ids não listados
são tratados como tema (costumam ser adjetivos descritivos).
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Literal, Mapping, Tuple

TagCategory = Literal["genre", "mode", "theme"]

GENRE_TAG_IDS = frozenset({
    19,     # Action
    21,     # Adventure
    597,    # Casual
    492,    # Indie
    122,    # RPG
    9,      # Strategy
    599,    # Simulation
    701,    # Sports
    699,    # Racing
    1625,   # Platformer
    1628,   # Metroidvania
    1645,   # Tower Defense
    1646,   # Hack and Slash
    1662,   # Survival
    1663,   # FPS
    1667,   # Horror
    1684,   # Fantasy
    1693,   # Shooter
    1695,   # Open World
    1697,   # Third Person
    1698,   # Point & Click
    1702,   # Crafting
    1708,   # Tactical
    1716,   # Roguelike
    1720,   # Dungeon Crawler
    1741,   # Turn-Based Strategy
    1742,   # Story Rich
    1752,   # City Builder
    1755,   # Space
    1770,   # Board Game
    1773,   # Stealth
    1774,   # Shooter
    1777,   # Card Game
    3799,   # Visual Novel
    3834,   # Exploration
    3859,   # Multiplayer
    3871,   # Real-Time Strategy
    3942,   # Sci-fi
    3959,   # Rogue-lite
    4106,   # Action RPG
    4166,   # Atmospheric
    4191,   # 3D
    4325,   # Turn-Based
    4345,   # Arena Shooter
    4604,   # Dark Fantasy
    5577,   # 2D Platformer
    5611,   # Mature
    5716,   # Soulslike
    6426,   # Choices Matter
    7918,   # Dwarf
    29482,  # Souls-like
    128,    # Massively Multiplayer
})

MODE_TAG_IDS = frozenset({
    1685,   # Co-op
    3839,   # First-Person
    3843,   # Online Co-Op
    3841,   # Local Co-Op
    4182,   # Singleplayer
    1775,   # PvP
    5125,   # Procedural Generation
    4155,   # Class-Based
    4236,   # Loot
    6730,   # PvE
    5055,   # eSports
    17770,  # Asynchronous Multiplayer
    4508,   # Co-op Campaign
    3878,   # Competitive
    5711,   # Team-Based
})


def classify_tag_id(tag_id: int) -> TagCategory:
    if tag_id in GENRE_TAG_IDS:
        return "genre"
    if tag_id in MODE_TAG_IDS:
        return "mode"
    return "theme"


def tag_name(tag_id: int, names: Mapping[int, str]) -> str:
    return names.get(int(tag_id)) or f"tag_{tag_id}"


def classify_tags(tag_ids: Iterable[int], names: Mapping[int, str]) -> Tuple[List[str], List[str], List[str]]:
    """Separa as tags em (gêneros, temas, modos), preservando a ordem de peso da Steam."""
    buckets: Dict[TagCategory, List[str]] = {"genre": [], "theme": [], "mode": []}
    for tid in tag_ids:
        buckets[classify_tag_id(int(tid))].append(tag_name(tid, names))
    return buckets["genre"], buckets["theme"], buckets["mode"]
