# schemas/reco_output.py
"""
Schema de Saída do Motor de Recomendação - Oracle

Este módulo define o resultado entregue ao host após uma rodada de cálculo:
o perfil de gosto do usuário (com clusters) e as prateleiras temáticas de jogos
pontuados, cada jogo com suas notas por camada e os motivos do match.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ShelfType = Literal[
    "hero",
    "because-you-loved",
    "deep-in-genre",
    "hidden-gems",
    "stretch-picks",
    "trending-now",
    "critics-choice",
    "unfinished-business",
    "for-your-mood",
    "new-releases-for-you",
    "coming-soon-for-you",
    "finish-and-try",
    "complete-the-series",
    "upcoming-sequels",
    "deals-for-you",
    "free-for-you",
    "from-studios-you-love",
]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ----------------------------
# Perfil de gosto
# ----------------------------
class FeatureWeight(_CamelModel):
    name: str
    weight: float = 0.0
    game_count: int = 0
    total_hours: float = 0.0
    avg_rating: float = 0.0


class TasteCluster(_CamelModel):
    id: int
    label: str
    profile: "TasteProfile"
    game_count: int = 0
    top_games: List[str] = Field(default_factory=list)
    semantic_centroid: Optional[List[float]] = None


class TasteProfile(_CamelModel):
    """
    Perfil de gosto derivado da biblioteca.

    Cada lista de FeatureWeight vem ordenada por peso decrescente; o peso é a
    soma dos scores de engajamento dos jogos que carregam a feature.
    """

    genres: List[FeatureWeight] = Field(default_factory=list)
    themes: List[FeatureWeight] = Field(default_factory=list)
    game_modes: List[FeatureWeight] = Field(default_factory=list)
    perspectives: List[FeatureWeight] = Field(default_factory=list)
    developers: List[FeatureWeight] = Field(default_factory=list)
    publishers: List[FeatureWeight] = Field(default_factory=list)
    eras: List[FeatureWeight] = Field(default_factory=list)
    total_games: int = 0
    total_hours: float = 0.0
    avg_rating: float = 0.0
    top_genre: str = ""
    top_theme: str = ""
    clusters: List[TasteCluster] = Field(default_factory=list)
    loyal_developers: List[str] = Field(default_factory=list)


TasteCluster.model_rebuild()


# ----------------------------
# Jogos pontuados
# ----------------------------
class LayerScores(_CamelModel):
    content_similarity: float = 0.0
    semantic_similarity: float = 0.0
    cluster_semantic_sim: float = 0.0
    graph_signal: float = 0.0
    quality_signal: float = 0.0
    popularity_signal: float = 0.0
    recency_boost: float = 0.0
    diversity_bonus: float = 0.0
    trajectory_multiplier: float = 0.0
    negative_signal: float = 0.0
    time_of_day_boost: float = 0.0
    engagement_curve_bonus: float = 0.0
    franchise_boost: float = 0.0
    studio_loyalty_boost: float = 0.0
    sequencing_boost: float = 0.0


class MatchReasons(_CamelModel):
    shared_genres: List[str] = Field(default_factory=list)
    shared_themes: List[str] = Field(default_factory=list)
    shared_modes: List[str] = Field(default_factory=list)
    similar_to: List[str] = Field(default_factory=list)
    metacritic_score: Optional[int] = None
    popularity_rank: Optional[int] = None
    is_hidden_gem: bool = False
    is_stretch_pick: bool = False
    franchise_of: Optional[str] = None
    is_franchise_entry: bool = False
    is_on_sale: bool = False
    semantic_retrieved: bool = False
    best_cluster_label: Optional[str] = None
    explanation: str = ""


class Price(_CamelModel):
    is_free: bool = False
    final_formatted: Optional[str] = None
    discount_percent: Optional[int] = None


class ScoredGame(_CamelModel):
    game_id: str
    title: str
    cover_url: Optional[str] = None
    header_image: Optional[str] = None
    developer: str = ""
    publisher: str = ""
    genres: List[str] = Field(default_factory=list)
    themes: List[str] = Field(default_factory=list)
    game_modes: List[str] = Field(default_factory=list)
    platforms: List[str] = Field(default_factory=list)
    metacritic_score: Optional[int] = None
    player_count: Optional[int] = None
    release_date: str = ""
    score: float = Field(default=0.0, ge=0.0, le=1.0)
    layer_scores: LayerScores = Field(default_factory=LayerScores)
    reasons: MatchReasons = Field(default_factory=MatchReasons)
    price: Optional[Price] = None


class RecoShelf(_CamelModel):
    type: ShelfType
    title: str
    subtitle: Optional[str] = None
    seed_game_title: Optional[str] = None
    games: List[ScoredGame] = Field(default_factory=list)
