# schemas/library.py
"""
Schema de Entrada da Biblioteca do Usuário - Oracle

Este módulo define os registros que o host entrega ao motor de recomendação:
os jogos da biblioteca (com metadados em cache), as sessões de jogo registradas
e o histórico de mudanças de status. O construtor de snapshots
(oracle.scoring.snapshot) junta os três por game_id.
"""

from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

GAME_STATUSES = ("Want to Play", "Playing", "Playing Now", "On Hold", "Completed")


def to_ms(dt: Optional[datetime]) -> Optional[int]:
    """Epoch em milissegundos; datetimes sem fuso são tratados como UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


class LibraryGame(BaseModel):
    """
    Um jogo da biblioteca do usuário.

    Campos Essenciais:
    - id: identificador do jogo (ex.: "steam-730"); mesma chave do cache de embeddings
    - status: um de GAME_STATUSES
    - hours_played / rating (0 a 5; 0 = sem nota)

    Observações:
    - Aceita os nomes do host: "genre", "playerPerspectives" e "similarGames"
      (lista de objetos com "name").
    - summary/description/user_notes alimentam o texto canônico do embedding.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    genres: List[str] = Field(default_factory=list, validation_alias=AliasChoices("genres", "genre"))
    themes: List[str] = Field(default_factory=list)
    game_modes: List[str] = Field(default_factory=list)
    perspectives: List[str] = Field(
        default_factory=list, validation_alias=AliasChoices("perspectives", "playerPerspectives")
    )
    developer: str = ""
    publisher: str = ""
    release_date: str = Field(default="", description="Data de lançamento ISO (YYYY-MM-DD) ou vazio.")
    status: str = "Want to Play"
    hours_played: float = Field(default=0.0, ge=0.0)
    rating: float = Field(default=0.0, ge=0.0, le=5.0)
    added_at: datetime
    removed_at: Optional[datetime] = None
    similar_game_titles: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("similarGameTitles", "similar_game_titles", "similarGames"),
    )
    summary: str = ""
    description: str = ""
    user_notes: str = ""

    @field_validator("similar_game_titles", mode="before")
    @classmethod
    def _names_from_objects(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [x.get("name", "") if isinstance(x, dict) else x for x in v if x]
        return v

    @field_validator("similar_game_titles")
    @classmethod
    def _drop_empty(cls, v: List[str]) -> List[str]:
        return [t for t in v if t]


class PlaySession(BaseModel):
    """Uma sessão de jogo registrada pelo rastreador do host."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    game_id: str
    start_time: datetime
    end_time: datetime
    duration_minutes: float = Field(default=0.0, ge=0.0)
    idle_minutes: float = Field(default=0.0, ge=0.0)


class StatusChange(BaseModel):
    """Mudança de status de um jogo (ex.: Playing -> Completed)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    game_id: str
    timestamp: datetime
    new_status: str


class LibraryExport(BaseModel):
    """Exportação completa da biblioteca (entrada da CLI)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    games: List[LibraryGame] = Field(default_factory=list)
    sessions: List[PlaySession] = Field(default_factory=list)
    status_changes: List[StatusChange] = Field(default_factory=list)
    browse_games: List[dict] = Field(default_factory=list, description="Cache de navegação opcional.")
