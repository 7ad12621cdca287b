# oracle/config.py
"""
Configuração Central do Motor de Recomendação - Oracle

Este módulo centraliza todas as configurações do motor de recomendação local
de jogos, que combina metadados do catálogo, embeddings semânticos e sinais
de engajamento da biblioteca do usuário para montar prateleiras temáticas.

Arquitetura do Sistema:
- Cache de embeddings em dois níveis (biblioteca: TTL curto; catálogo: TTL longo)
- Índice ANN (HNSW) sobre o espaço de embeddings, persistido em disco
- Espelho local do catálogo Steam com sincronização em lotes concorrentes
- Montagem de candidatos a partir de três fontes (cache de navegação, catálogo, ANN)
- Pontuação isolada em worker (processo separado) com watchdog de inatividade
- Bandit (Thompson Sampling) para ordenar prateleiras a partir de cliques

Todos os valores podem ser sobrescritos por variáveis de ambiente (.env).
"""

from dataclasses import dataclass
from typing import Literal, Optional
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


@dataclass(frozen=True)
class OracleConfig:
    # -----------------------------
    # Armazenamento Local
    # -----------------------------
    DATA_DIR: str = os.getenv("ORACLE_DATA_DIR", os.path.join(os.path.expanduser("~"), ".oracle"))
    STORE_FILENAME: str = "oracle.sqlite3"  # Banco sqlite com todas as coleções
    STORE_TIMEOUT_S: float = 30.0  # Timeout de lock do sqlite

    # -----------------------------
    # Cache de Embeddings (dois níveis)
    # -----------------------------
    LIBRARY_TTL_DAYS: int = _env_int("LIBRARY_TTL_DAYS", 30)  # Nível biblioteca (inclui notas do jogador)
    CATALOG_TTL_DAYS: int = _env_int("CATALOG_TTL_DAYS", 90)  # Nível catálogo (só metadados)
    EMBEDDING_BATCH_SIZE: int = _env_int("EMBEDDING_BATCH_SIZE", 100)  # Itens por chamada ao backend
    CATALOG_BATCH_YIELD_S: float = 0.05  # Pausa entre lotes na geração do catálogo
    EMBED_DIM: int = 768  # Dimensão dos vetores de embedding

    # Backend de embeddings: "ollama" | "sentence-transformers" | "none"
    EMBEDDING_BACKEND: Literal["ollama", "sentence-transformers", "none"] = os.getenv(  # type: ignore[assignment]
        "EMBEDDING_BACKEND", "ollama"
    )
    OLLAMA_URL: str = os.getenv("OLLAMA_URL", "http://localhost:11434")
    OLLAMA_EMBED_MODEL: str = os.getenv("OLLAMA_EMBED_MODEL", "nomic-embed-text")
    OLLAMA_PULL_TIMEOUT_S: float = 300.0  # Tempo máximo para baixar o modelo
    EMBEDDING_MODEL: str = os.getenv(
        "EMBEDDING_MODEL", "sentence-transformers/paraphrase-multilingual-mpnet-base-v2"
    )
    EMBEDDING_DEVICE: Optional[str] = os.getenv("EMBEDDING_DEVICE")  # "cpu" | "cuda" | None (auto)
    MODEL_VERSION: str = "nomic_v1"  # Versão lógica do espaço de embeddings

    # -----------------------------
    # Índice ANN (HNSW, métrica cosseno)
    # -----------------------------
    ANN_BACKEND: Literal["faiss", "numpy"] = os.getenv("ANN_BACKEND", "faiss")  # type: ignore[assignment]
    ANN_CONNECTIVITY: int = 16  # M do HNSW
    ANN_EF_CONSTRUCTION: int = 200
    ANN_EF_SEARCH: int = 128
    ANN_TOP_K: int = _env_int("ANN_TOP_K", 5000)  # Vizinhos buscados pelo centróide de gosto
    ANN_BACKFILL_BATCH_SIZE: int = 500  # Vetores por lote no backfill
    ANN_INDEX_FILENAME: str = "ann-hnsw.faiss"
    ANN_META_FILENAME: str = "ann-meta.json"

    # -----------------------------
    # Catálogo Steam (sincronização)
    # -----------------------------
    CATALOG_BATCH_SIZE: int = _env_int("CATALOG_BATCH_SIZE", 200)  # App IDs por requisição GetItems
    CATALOG_CONCURRENCY: int = _env_int("CATALOG_CONCURRENCY", 50)  # Workers simultâneos
    CATALOG_STALE_HOURS: int = _env_int("CATALOG_STALE_HOURS", 24)  # Sincronização considerada fresca
    CATALOG_PROGRESS_EVERY: int = 20  # Publica progresso a cada N lotes
    CATALOG_SCAN_BATCH: int = 500  # Linhas por lote em varreduras completas
    STEAM_WEB_API_BASE: str = os.getenv("STEAM_WEB_API_BASE", "https://api.steampowered.com")
    STEAM_API_KEY: Optional[str] = os.getenv("STEAM_API_KEY")
    STEAM_APP_LIST_PAGE_SIZE: int = 50000
    STEAM_COUNTRY_CODE: str = "US"
    STEAM_LANGUAGE: str = "english"

    # -----------------------------
    # Pré-filtro de Candidatos
    # -----------------------------
    MIN_REVIEWS: int = _env_int("MIN_REVIEWS", 10)
    MIN_POSITIVITY: float = _env_float("MIN_POSITIVITY", 0.5)
    MAX_CATALOG_RESULTS: int = _env_int("MAX_CATALOG_RESULTS", 25000)
    POPULARITY_ESCAPE_REVIEWS: int = _env_int("POPULARITY_ESCAPE_REVIEWS", 1000)  # Escape de popularidade
    TOP_GENRES_LIMIT: int = 15  # Gêneros mais frequentes usados no pré-filtro
    LOYAL_DEVELOPER_MIN_RATING: float = 3.5  # Nota mínima (0-5) para desenvolvedor "fiel"
    BROWSE_CACHE_TTL_DAYS: int = 7  # Cache de navegação aceito mesmo se antigo

    # -----------------------------
    # Orquestrador e Worker
    # -----------------------------
    WORKER_MODE: Literal["process", "thread"] = os.getenv("WORKER_MODE", "process")  # type: ignore[assignment]
    WORKER_IDLE_TIMEOUT_S: float = _env_float("WORKER_IDLE_TIMEOUT_S", 600.0)  # Watchdog (reinicia a cada progresso)
    RESULT_CACHE_TTL_MIN: int = _env_int("RESULT_CACHE_TTL_MIN", 15)  # Cache de resultados (cold start)

    # -----------------------------
    # Pipeline de Pontuação
    # -----------------------------
    MMR_LAMBDA: float = 0.7  # Relevância vs. diversidade
    MMR_LIMIT: int = 80  # Itens mantidos após o re-ranking
    TASTE_CLUSTERS: int = 3  # k do k-means de gosto
    BANDIT_SEED: Optional[int] = None  # Semente do bandit (None = aleatória)
    BANDIT_MAX_OPEN_TOKENS: int = _env_int("BANDIT_MAX_OPEN_TOKENS", 1000)  # Tokens de impressão guardados à espera de clique

    # -----------------------------
    # Integração HTTP (timeouts em segundos)
    # -----------------------------
    HTTP_TIMEOUT_CONNECT: float = 3.0
    HTTP_TIMEOUT_READ: float = 15.0
    HTTP_TIMEOUT_WRITE: float = 3.0
    HTTP_TIMEOUT_POOL: float = 3.0
    HTTP_RETRIES: int = 2  # Número de tentativas: 1 + HTTP_RETRIES
    HTTP_BACKOFF_BASE: float = 0.4  # Base do backoff exponencial

    # -----------------------------
    # Observabilidade
    # -----------------------------
    LOG_COMPUTE_RUNS: bool = os.getenv("LOG_COMPUTE_RUNS", "true").lower() == "true"
    COMPUTE_LOG_FILENAME: str = "compute_runs.jsonl"

    # -----------------------------
    # Configurações Derivadas e Pós-inicialização
    # -----------------------------
    def __post_init__(self):
        # Normaliza o diretório de dados para caminho absoluto
        object.__setattr__(self, "DATA_DIR", os.path.abspath(os.path.expanduser(self.DATA_DIR)))
        if self.EMBEDDING_BACKEND not in ("ollama", "sentence-transformers", "none"):
            raise ValueError(f"EMBEDDING_BACKEND inválido: {self.EMBEDDING_BACKEND!r}")
        if self.WORKER_MODE not in ("process", "thread"):
            raise ValueError(f"WORKER_MODE inválido: {self.WORKER_MODE!r}")

    # Caminhos derivados
    @property
    def store_path(self) -> str:
        return os.path.join(self.DATA_DIR, self.STORE_FILENAME)

    @property
    def ann_index_path(self) -> str:
        return os.path.join(self.DATA_DIR, self.ANN_INDEX_FILENAME)

    @property
    def ann_meta_path(self) -> str:
        return os.path.join(self.DATA_DIR, self.ANN_META_FILENAME)

    @property
    def compute_log_path(self) -> str:
        return os.path.join(self.DATA_DIR, self.COMPUTE_LOG_FILENAME)

    # TTLs em milissegundos (o restante do motor trabalha em epoch ms)
    @property
    def library_ttl_ms(self) -> int:
        return self.LIBRARY_TTL_DAYS * 24 * 60 * 60 * 1000

    @property
    def catalog_ttl_ms(self) -> int:
        return self.CATALOG_TTL_DAYS * 24 * 60 * 60 * 1000
