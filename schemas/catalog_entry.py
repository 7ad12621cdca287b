# schemas/catalog_entry.py
"""
Schema de Entrada do Catálogo Steam - Oracle

Este módulo define a entrada leve do catálogo local (~156K jogos), obtida via
IStoreBrowseService/GetItems e usada como pool de candidatos e como fonte do
texto de embeddings do nível catálogo.
"""

from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from oracle.catalog.tag_map import classify_tags


class CatalogEntry(BaseModel):
    """
    Representa um jogo do catálogo Steam normalizado.

    Campos Essenciais:
    - app_id: appid da Steam (chave da coleção)
    - name: nome exibido (obrigatório; itens sem nome são descartados na origem)
    - genres/themes/modes: tags classificadas pelo mapa estático

    Observações:
    - Serializado em camelCase (appId, reviewCount, ...) no armazenamento local.
    - review_positivity fica em [0, 1] (percent_positive / 100).
    - Substituído por inteiro a cada sincronização.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    app_id: int = Field(..., description="appid da Steam.")
    name: str = Field(..., min_length=1)
    genres: List[str] = Field(default_factory=list)
    themes: List[str] = Field(default_factory=list)
    modes: List[str] = Field(default_factory=list)
    developer: str = Field(default="")
    publisher: str = Field(default="")
    short_description: str = Field(default="")
    release_date: int = Field(default=0, description="Data de lançamento (epoch em segundos).")
    review_score: int = Field(default=0)
    review_count: int = Field(default=0, ge=0)
    review_positivity: float = Field(default=0.0, ge=0.0, le=1.0)
    windows: bool = False
    mac: bool = False
    linux: bool = False
    steam_deck_compat: int = Field(default=0)
    is_free: bool = False
    price_formatted: Optional[str] = None
    discount_percent: Optional[int] = None
    tag_ids: List[int] = Field(default_factory=list)

    @property
    def game_id(self) -> str:
        return f"steam-{self.app_id}"

    def to_store(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)

    @classmethod
    def from_source(cls, item: Mapping[str, Any], tag_names: Mapping[int, str]) -> Optional["CatalogEntry"]:
        """
        Normaliza um item bruto de GetItems.
        Retorna None para itens sem sucesso, invisíveis ou sem nome.
        """
        if not item.get("success") or not item.get("visible") or not item.get("name"):
            return None

        tag_ids = [int(t["tagid"]) for t in (item.get("tags") or []) if isinstance(t, dict) and "tagid" in t]
        genres, themes, modes = classify_tags(tag_ids, tag_names)

        basic = item.get("basic_info") or {}
        release = item.get("release") or {}
        platforms = item.get("platforms") or {}
        purchase = item.get("best_purchase_option") or {}
        review = (item.get("reviews") or {}).get("summary_filtered")

        discount = purchase.get("discount_pct")
        return cls(
            app_id=int(item.get("appid") or item.get("id")),
            name=str(item["name"]),
            genres=genres,
            themes=themes,
            modes=modes,
            developer=_first_name(basic.get("developers")),
            publisher=_first_name(basic.get("publishers")),
            short_description=basic.get("short_description") or "",
            release_date=int(release.get("steam_release_date") or 0),
            review_score=int(review.get("review_score") or 0) if review else 0,
            review_count=int(review.get("review_count") or 0) if review else 0,
            review_positivity=_clamp01((review.get("percent_positive") or 0) / 100) if review else 0.0,
            windows=bool(platforms.get("windows", False)),
            mac=bool(platforms.get("mac", False)),
            linux=bool(platforms.get("linux", False)),
            steam_deck_compat=int(platforms.get("steam_deck_compat_category") or 0),
            is_free=bool(item.get("is_free", False)),
            price_formatted=purchase.get("formatted_final_price"),
            discount_percent=int(discount) if discount is not None else None,
            tag_ids=tag_ids,
        )


# ----------------------------
# Helpers de normalização
# ----------------------------
def _first_name(people) -> str:
    if isinstance(people, list) and people and isinstance(people[0], dict):
        return str(people[0].get("name") or "")
    return ""


def _clamp01(x: float) -> float:
    return max(0.0, min(1.0, float(x)))
