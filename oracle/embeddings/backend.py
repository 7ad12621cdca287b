# oracle/embeddings/backend.py
"""
Backends de geração de embeddings.

Responsável por:
- Definir o contrato EmbeddingBackend (health_check, setup, generate_embeddings).
- Implementar o backend padrão via servidor Ollama local (modelo nomic-embed-text, 768-d).

Observações:
- generate_embeddings pode devolver resultado parcial: ids ausentes no retorno
  simplesmente não ganham vetor nesta rodada.
- Nenhum método do backend Ollama deixa exceção escapar para o serviço; falhas
  viram HealthStatus/SetupStatus negativos ou resultados vazios.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Sequence, runtime_checkable

import httpx
import numpy as np

from oracle.errors import BackendUnavailable
from oracle.http import RetryingHttpClient, build_timeout, ensure_json

logger = logging.getLogger(__name__)


@dataclass
class HealthStatus:
    running: bool
    version: Optional[str] = None


@dataclass
class SetupStatus:
    backend_detected: bool = False
    backend_version: Optional[str] = None
    model_ready: bool = False
    error: Optional[str] = None


@dataclass
class EmbedItem:
    id: str
    text: str


@runtime_checkable
class EmbeddingBackend(Protocol):
    def health_check(self) -> HealthStatus: ...

    def setup(self) -> SetupStatus: ...

    def generate_embeddings(self, items: Sequence[EmbedItem]) -> Dict[str, np.ndarray]: ...


# -----------------------------
# Ollama
# -----------------------------
class OllamaEmbeddingBackend(RetryingHttpClient):
    """
    Cliente do servidor Ollama local.

    Endpoints usados:
      - GET  /api/version  -> {"version": "..."}
      - GET  /api/tags     -> {"models": [{"name": "nomic-embed-text:latest"}, ...]}
      - POST /api/pull     -> stream NDJSON de progresso
      - POST /api/embed    -> {"embeddings": [[...], ...]}
    """

    REQUEST_CHUNK = 5  # textos por chamada a /api/embed

    def __init__(
        self,
        cfg,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        super().__init__(cfg, base_url or getattr(cfg, "OLLAMA_URL", "http://localhost:11434"), transport=transport)
        self.model = model or getattr(cfg, "OLLAMA_EMBED_MODEL", "nomic-embed-text")
        self.dim = int(getattr(cfg, "EMBED_DIM", 768))
        self._pull_timeout = build_timeout(cfg, read=float(getattr(cfg, "OLLAMA_PULL_TIMEOUT_S", 300.0)))

    @classmethod
    def from_config(cls, cfg) -> "OllamaEmbeddingBackend":
        return cls(cfg)

    # ---------- Saúde e setup ----------
    def health_check(self) -> HealthStatus:
        try:
            resp = self._client.get("/api/version")
        except httpx.HTTPError as e:
            logger.debug(f"Ollama não respondeu: {e}")
            return HealthStatus(running=False)
        try:
            version = ensure_json(resp).get("version") or "unknown"
        except (ValueError, AttributeError):
            version = "unknown"
        return HealthStatus(running=True, version=version)

    def list_models(self) -> List[str]:
        try:
            data = ensure_json(self._request_with_retry("GET", "/api/tags"))
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Falha ao listar modelos do Ollama: {e}")
            return []
        models = data.get("models") if isinstance(data, dict) else None
        return [str(m.get("name", "")).split(":")[0] for m in (models or []) if isinstance(m, dict)]

    def pull_model(self, model: Optional[str] = None) -> bool:
        name = model or self.model
        try:
            with self._client.stream(
                "POST", "/api/pull", json={"name": name, "stream": True}, timeout=self._pull_timeout
            ) as resp:
                resp.raise_for_status()
                for line in resp.iter_lines():
                    if not line.strip():
                        continue
                    try:
                        obj = json.loads(line)
                    except ValueError:
                        continue
                    if obj.get("error"):
                        logger.error(f"Pull de {name} falhou: {obj['error']}")
                        return False
                    total, done = obj.get("total"), obj.get("completed")
                    if total and done:
                        logger.debug(f"Pull {name}: {obj.get('status', 'pulling')} {round(done / total * 100)}%")
        except httpx.HTTPError as e:
            logger.error(f"Pull de {name} falhou: {e}")
            return False
        logger.info(f"Modelo {name} baixado")
        return True

    def setup(self) -> SetupStatus:
        status = SetupStatus()
        health = self.health_check()
        if not health.running:
            logger.info("Ollama não detectado; recomendações seguem sem embeddings")
            status.error = "Ollama not detected"
            return status

        status.backend_detected = True
        status.backend_version = health.version

        installed = self.list_models()
        if any(m.startswith(self.model) or m == self.model for m in installed):
            status.model_ready = True
            return status

        logger.info(f"Baixando modelo de embeddings {self.model}...")
        status.model_ready = self.pull_model()
        if not status.model_ready:
            status.error = f"Failed to pull {self.model}"
        return status

    # ---------- Geração ----------
    def generate_embeddings(self, items: Sequence[EmbedItem]) -> Dict[str, np.ndarray]:
        valid = [it for it in items if it.id and it.text]
        results: Dict[str, np.ndarray] = {}
        for i in range(0, len(valid), self.REQUEST_CHUNK):
            chunk = valid[i : i + self.REQUEST_CHUNK]
            try:
                resp = self._request_with_retry(
                    "POST", "/api/embed", json={"model": self.model, "input": [it.text for it in chunk]}
                )
                vectors = ensure_json(resp).get("embeddings") or []
            except httpx.TransportError as e:
                raise BackendUnavailable(f"Ollama inacessível: {e}") from e
            except (httpx.HTTPError, ValueError, AttributeError) as e:
                logger.warning(f"Falha ao gerar embeddings ({len(chunk)} itens): {e}")
                continue
            for item, vec in zip(chunk, vectors):
                if vec:
                    results[item.id] = np.asarray(vec, dtype=np.float32)
        logger.debug(f"Gerados {len(results)} embeddings de {len(valid)} solicitados")
        return results


def build_backend(cfg) -> Optional[EmbeddingBackend]:
    """Instancia o backend configurado em EMBEDDING_BACKEND (None = desativado)."""
    kind = getattr(cfg, "EMBEDDING_BACKEND", "ollama")
    if kind == "none":
        return None
    if kind == "sentence-transformers":
        # Importação tardia: torch/sentence-transformers só são exigidos neste modo.
        from oracle.embeddings.embedding_provider import SentenceTransformerBackend

        return SentenceTransformerBackend.from_config(cfg)
    return OllamaEmbeddingBackend.from_config(cfg)

