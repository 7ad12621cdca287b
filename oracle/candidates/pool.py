# oracle/candidates/pool.py
"""
Montagem do conjunto de candidatos.

Fontes, em ordem de precedência (a primeira a trazer um id vence):
1) Cache de navegação (objetos brutos vistos pelo usuário)
2) Catálogo local pré-filtrado (gêneros mais frequentes + desenvolvedores fiéis)
3) Recuperação semântica via índice ANN a partir do centróide de gosto

Observações:
- Falha de uma fonte é registrada (SourceFetchFailed) e ela contribui zero.
- Registro malformado é descartado sozinho; o id continua livre para as
  fontes seguintes.
- Vetores em cache são anexados na montagem; os ausentes ficam None.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set

import numpy as np
from pydantic import ValidationError

from oracle.catalog.browse_cache import BrowseCache
from oracle.catalog.store import CatalogStore
from oracle.embeddings.cache import EmbeddingCache
from oracle.errors import SourceFetchFailed
from oracle.index.ann_index import AnnIndex
from oracle.scoring.centroid import centroid_from_snapshots
from oracle.scoring.types import CandidateGame, UserGameSnapshot, epoch_seconds_to_iso
from schemas.catalog_entry import CatalogEntry
from schemas.reco_output import Price

logger = logging.getLogger(__name__)

SOURCE_BROWSE = "browse"
SOURCE_CATALOG = "catalog"
SOURCE_ANN = "ann"


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _str_list(v: Any) -> List[str]:
    return [x for x in v if isinstance(x, str)] if isinstance(v, list) else []


# ----------------------------
# Conversões de registro -> candidato
# ----------------------------
def candidate_from_browse(g: Mapping[str, Any], embedding: Optional[np.ndarray] = None) -> CandidateGame:
    """Converte um objeto bruto do cache de navegação (camelCase)."""
    review_positivity = None
    if _is_number(g.get("reviewPositivity")):
        review_positivity = float(g["reviewPositivity"])
    elif _is_number(g.get("totalPositive")) and _is_number(g.get("totalReviews")) and g["totalReviews"] > 0:
        review_positivity = g["totalPositive"] / g["totalReviews"]

    review_volume = None
    if _is_number(g.get("reviewVolume")):
        review_volume = int(g["reviewVolume"])
    elif _is_number(g.get("totalReviews")):
        review_volume = int(g["totalReviews"])

    price = None
    raw_price = g.get("price")
    if isinstance(raw_price, dict):
        price = Price(
            is_free=raw_price.get("isFree") is True or raw_price.get("final") == 0,
            final_formatted=raw_price.get("finalFormatted") or None,
            discount_percent=int(raw_price["discountPercent"]) if _is_number(raw_price.get("discountPercent")) else None,
        )
    elif g.get("isFree") is True:
        price = Price(is_free=True)

    similar = g.get("similarGames")
    similar_titles = (
        [sg.get("name") for sg in similar if isinstance(sg, dict) and sg.get("name")] if isinstance(similar, list) else []
    )

    return CandidateGame(
        game_id=str(g.get("id") or ""),
        title=g.get("title") or "",
        cover_url=g.get("coverUrl"),
        header_image=g.get("headerImage"),
        developer=g.get("developer") or "",
        publisher=g.get("publisher") or "",
        genres=_str_list(g.get("genre")),
        themes=_str_list(g.get("themes")),
        game_modes=_str_list(g.get("gameModes")),
        perspectives=_str_list(g.get("playerPerspectives")),
        platforms=_str_list(g.get("platform")),
        metacritic_score=int(g["metacriticScore"]) if _is_number(g.get("metacriticScore")) else None,
        player_count=int(g["playerCount"]) if _is_number(g.get("playerCount")) else None,
        release_date=g.get("releaseDate") or "",
        similar_game_titles=similar_titles,
        recommendations=int(g["recommendations"]) if _is_number(g.get("recommendations")) else None,
        achievements=int(g["achievements"]) if _is_number(g.get("achievements")) else None,
        coming_soon=g.get("comingSoon") is True,
        review_positivity=review_positivity,
        review_volume=review_volume,
        price=price,
        embedding=embedding,
    )


def candidate_from_catalog(
    entry: CatalogEntry, embedding: Optional[np.ndarray] = None, semantic_retrieved: bool = False
) -> CandidateGame:
    platforms = [name for name, flag in (("Windows", entry.windows), ("Mac", entry.mac), ("Linux", entry.linux)) if flag]
    return CandidateGame(
        game_id=entry.game_id,
        title=entry.name,
        developer=entry.developer,
        publisher=entry.publisher,
        genres=list(entry.genres),
        themes=list(entry.themes),
        game_modes=list(entry.modes),
        platforms=platforms,
        release_date=epoch_seconds_to_iso(entry.release_date),
        review_positivity=entry.review_positivity,
        review_volume=entry.review_count,
        price=Price(
            is_free=entry.is_free,
            final_formatted=entry.price_formatted,
            discount_percent=entry.discount_percent,
        ),
        embedding=embedding,
        semantic_retrieved=semantic_retrieved,
    )


_RECORD_ERRORS = (ValidationError, TypeError, ValueError, AttributeError)


def _app_id(game_id: str) -> Optional[int]:
    if not game_id.startswith("steam-"):
        return None
    try:
        return int(game_id[len("steam-"):])
    except ValueError:
        return None


# ----------------------------
# Assembler
# ----------------------------
@dataclass
class CandidatePool:
    candidates: List[CandidateGame] = field(default_factory=list)
    counts: Dict[str, int] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.candidates)


class CandidatePoolAssembler:
    def __init__(
        self,
        browse_cache: Optional[BrowseCache],
        catalog_store: Optional[CatalogStore],
        ann_index: Optional[AnnIndex],
        embedding_cache: Optional[EmbeddingCache] = None,
        top_genres_limit: int = 15,
        loyal_min_rating: float = 3.5,
        ann_top_k: int = 5000,
        max_catalog_results: int = 25000,
    ) -> None:
        self.browse_cache = browse_cache
        self.catalog_store = catalog_store
        self.ann_index = ann_index
        self.embedding_cache = embedding_cache
        self.top_genres_limit = int(top_genres_limit)
        self.loyal_min_rating = float(loyal_min_rating)
        self.ann_top_k = int(ann_top_k)
        self.max_catalog_results = int(max_catalog_results)

    @classmethod
    def from_config(
        cls,
        cfg,
        browse_cache: Optional[BrowseCache],
        catalog_store: Optional[CatalogStore],
        ann_index: Optional[AnnIndex],
        embedding_cache: Optional[EmbeddingCache] = None,
    ) -> "CandidatePoolAssembler":
        return cls(
            browse_cache=browse_cache,
            catalog_store=catalog_store,
            ann_index=ann_index,
            embedding_cache=embedding_cache,
            top_genres_limit=getattr(cfg, "TOP_GENRES_LIMIT", 15),
            loyal_min_rating=getattr(cfg, "LOYAL_DEVELOPER_MIN_RATING", 3.5),
            ann_top_k=getattr(cfg, "ANN_TOP_K", 5000),
            max_catalog_results=getattr(cfg, "MAX_CATALOG_RESULTS", 25000),
        )

    # ---------- Pistas do perfil ----------
    def top_genres(self, snapshots: Sequence[UserGameSnapshot]) -> List[str]:
        counts = Counter(g.lower() for s in snapshots for g in s.genres if g)
        return [g for g, _ in counts.most_common(self.top_genres_limit)]

    def loyal_developers(self, snapshots: Sequence[UserGameSnapshot]) -> List[str]:
        return sorted(
            {s.developer.lower() for s in snapshots if s.developer and s.rating >= self.loyal_min_rating}
        )

    def _embedding(self, game_id: str) -> Optional[np.ndarray]:
        return self.embedding_cache.get(game_id) if self.embedding_cache is not None else None

    # ---------- Fontes ----------
    def _from_browse(self, seen: Set[str]) -> List[CandidateGame]:
        if self.browse_cache is None:
            return []
        out: List[CandidateGame] = []
        for raw in self.browse_cache.load():
            if not isinstance(raw, dict):
                continue
            game_id = str(raw.get("id") or "")
            if not game_id or game_id in seen:
                continue
            try:
                candidate = candidate_from_browse(raw, self._embedding(game_id))
            except _RECORD_ERRORS as e:
                logger.warning(f"Registro de navegação descartado ({game_id}): {e}")
                continue
            seen.add(game_id)
            out.append(candidate)
        return out

    def _from_catalog(self, snapshots: Sequence[UserGameSnapshot], seen: Set[str]) -> List[CandidateGame]:
        if self.catalog_store is None:
            return []
        entries = self.catalog_store.query_for_candidates(
            self.top_genres(snapshots),
            self.loyal_developers(snapshots),
            exclude_ids=seen,
            max_results=self.max_catalog_results,
        )
        out: List[CandidateGame] = []
        for entry in entries:
            if entry.game_id in seen:
                continue
            try:
                candidate = candidate_from_catalog(entry, self._embedding(entry.game_id))
            except _RECORD_ERRORS as e:
                logger.warning(f"Entrada do catálogo descartada ({entry.game_id}): {e}")
                continue
            seen.add(entry.game_id)
            out.append(candidate)
        return out

    def _from_ann(self, snapshots: Sequence[UserGameSnapshot], seen: Set[str]) -> List[CandidateGame]:
        if self.ann_index is None or self.catalog_store is None or not self.ann_index.is_ready:
            return []
        centroid = centroid_from_snapshots(snapshots)
        if centroid is None:
            logger.debug("Sem centróide de gosto; recuperação semântica ignorada")
            return []

        neighbors = self.ann_index.query(centroid, self.ann_top_k)
        app_ids = []
        for game_id, _ in neighbors:
            if game_id in seen:
                continue
            app_id = _app_id(game_id)
            if app_id is not None:
                app_ids.append(app_id)

        out: List[CandidateGame] = []
        for entry in self.catalog_store.get_entries(app_ids):
            if entry.game_id in seen:
                continue
            try:
                candidate = candidate_from_catalog(entry, self._embedding(entry.game_id), semantic_retrieved=True)
            except _RECORD_ERRORS as e:
                logger.warning(f"Vizinho ANN descartado ({entry.game_id}): {e}")
                continue
            seen.add(entry.game_id)
            out.append(candidate)
        return out

    # ---------- API pública ----------
    def assemble(
        self, snapshots: Sequence[UserGameSnapshot], exclude_ids: Iterable[str] = ()
    ) -> CandidatePool:
        """Une as três fontes sem duplicatas; ids da biblioteca nunca entram."""
        seen: Set[str] = {s.game_id for s in snapshots}
        seen.update(exclude_ids)

        pool = CandidatePool()
        sources = (
            (SOURCE_BROWSE, lambda: self._from_browse(seen)),
            (SOURCE_CATALOG, lambda: self._from_catalog(snapshots, seen)),
            (SOURCE_ANN, lambda: self._from_ann(snapshots, seen)),
        )
        for name, fetch in sources:
            try:
                found = fetch()
            except Exception as e:
                err = SourceFetchFailed(name, e)
                logger.warning(f"{err}; seguindo sem esta fonte")
                found = []
            pool.candidates.extend(found)
            pool.counts[name] = len(found)

        logger.info(
            f"Candidatos: {len(pool)} (navegação={pool.counts[SOURCE_BROWSE]}, "
            f"catálogo={pool.counts[SOURCE_CATALOG]}, ann={pool.counts[SOURCE_ANN]})"
        )
        return pool
