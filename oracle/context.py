# oracle/context.py
"""
Contexto da aplicação: constrói e possui todos os serviços do motor.

Ordem de montagem:
1. KeyedStore + migrações de inicialização
2. Índice ANN (carregado do disco quando existir)
3. Backend + serviço de embeddings (cache vivo compartilhado)
4. Catálogo local (cliente Steam), cache de navegação
5. Montador de candidatos, bandit, histórico, logger de rodadas
6. Orquestrador

Nada aqui é global: quem precisa de um serviço recebe pelo construtor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from oracle.bandit import ShelfBandit
from oracle.candidates.pool import CandidatePoolAssembler
from oracle.catalog.browse_cache import BrowseCache
from oracle.catalog.steam_client import SteamCatalogClient
from oracle.catalog.store import CatalogStore
from oracle.config import OracleConfig
from oracle.embeddings.backend import build_backend
from oracle.embeddings.cache import EmbeddingCache
from oracle.embeddings.service import EmbeddingService
from oracle.history import RecoHistoryStore
from oracle.index.ann_index import AnnIndex
from oracle.migration.builtin import run_startup_migrations
from oracle.orchestrator import RecoOrchestrator
from oracle.recommendation_logger import RecommendationLogger
from oracle.storage.keyed_store import KeyedStore

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    cfg: OracleConfig
    store: KeyedStore
    ann_index: AnnIndex
    embedding_cache: EmbeddingCache
    embeddings: EmbeddingService
    steam_client: Optional[SteamCatalogClient]
    catalog: CatalogStore
    browse_cache: BrowseCache
    assembler: CandidatePoolAssembler
    bandit: ShelfBandit
    history: RecoHistoryStore
    run_logger: Optional[RecommendationLogger]
    orchestrator: RecoOrchestrator

    @classmethod
    def from_config(cls, cfg: Optional[OracleConfig] = None, with_steam: bool = True) -> "AppContext":
        cfg = cfg or OracleConfig()

        store = KeyedStore.from_config(cfg)
        stats = run_startup_migrations(store)
        if stats:
            logger.info(f"{len(stats)} migração(ões) executada(s) na inicialização")

        ann_index = AnnIndex.from_config(cfg)
        ann_index.load()

        cache = EmbeddingCache()
        embeddings = EmbeddingService.from_config(cfg, store, build_backend(cfg), ann_index, cache)

        steam_client = SteamCatalogClient.from_config(cfg) if with_steam else None
        catalog = CatalogStore.from_config(cfg, store, steam_client)
        browse_cache = BrowseCache.from_config(cfg, store)

        assembler = CandidatePoolAssembler.from_config(cfg, browse_cache, catalog, ann_index, cache)
        bandit = ShelfBandit.from_config(cfg, store)
        history = RecoHistoryStore.from_config(cfg, store)
        run_logger = RecommendationLogger.from_config(cfg)

        orchestrator = RecoOrchestrator.from_config(
            cfg, store, assembler, embeddings, bandit, history, run_logger=run_logger
        )
        logger.info(f"Contexto pronto (dados em {cfg.DATA_DIR}, worker={cfg.WORKER_MODE})")
        return cls(
            cfg=cfg,
            store=store,
            ann_index=ann_index,
            embedding_cache=cache,
            embeddings=embeddings,
            steam_client=steam_client,
            catalog=catalog,
            browse_cache=browse_cache,
            assembler=assembler,
            bandit=bandit,
            history=history,
            run_logger=run_logger,
            orchestrator=orchestrator,
        )

    def close(self) -> None:
        self.orchestrator.reset()
        self.catalog.cancel_sync()
        if self.ann_index.is_ready:
            self.ann_index.save()
        if self.steam_client is not None:
            self.steam_client.close()
        closer = getattr(self.embeddings.backend, "close", None)
        if callable(closer):
            closer()
        self.store.close()

    def __enter__(self) -> "AppContext":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
