# oracle/embeddings/embedding_provider.py
"""
SentenceTransformerBackend — embeddings locais sem servidor externo

Responsável por:
- Carregar o modelo sentence-transformers de forma preguiçosa (lazy).
- Gerar embeddings em batch para os textos canônicos dos jogos.
- Normalizar vetores (L2) para uso com similaridade por cosseno.
- Cumprir o contrato EmbeddingBackend (health_check, setup, generate_embeddings).

Dependências:
- sentence-transformers
- torch
- numpy

Observações:
- A dimensão (dim) deve bater com config.EMBED_DIM; o índice ANN e o backfill
  descartam vetores de outra dimensão.
- Dispositivo: respeita config.EMBEDDING_DEVICE, senão tenta "cuda" e cai para "cpu".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

import numpy as np

from oracle.embeddings.backend import EmbedItem, HealthStatus, SetupStatus

try:
    import torch
    from sentence_transformers import SentenceTransformer
except Exception as e:
    # Mantemos a exceção explícita para facilitar diagnóstico em ambientes sem deps.
    raise ImportError(
        "Faltam dependências para embeddings locais. Instale: 'sentence-transformers' e 'torch'. "
        "Ex.: pip install sentence-transformers torch"
    ) from e

logger = logging.getLogger(__name__)


def _l2_normalize(mat: np.ndarray, eps: float = 1e-12) -> np.ndarray:
    """Normaliza L2 linha a linha (cada vetor), retornando float32."""
    if mat.ndim == 1:
        denom = np.linalg.norm(mat) + eps
        return (mat / denom).astype(np.float32)
    norms = np.linalg.norm(mat, axis=1, keepdims=True) + eps
    return (mat / norms).astype(np.float32)


@dataclass
class EmbeddingMetadata:
    model_name: str
    model_version: str
    dim: int
    device: str


class SentenceTransformerBackend:
    """
    Backend de embeddings local.

    Interface pública:
      - health_check() -> HealthStatus
      - setup() -> SetupStatus            # carrega o modelo e valida a dimensão
      - generate_embeddings(items) -> {id: np.ndarray}
      - embed_texts(texts, batch_size=None) -> np.ndarray  # (N, dim)
      - get_metadata() -> EmbeddingMetadata
    """

    def __init__(
        self,
        model_name: str,
        model_version: str,
        dim: int,
        device: Optional[str] = None,
        default_batch_size: int = 64,
    ) -> None:
        self._model_name = model_name
        self._model_version = model_version
        self._dim = dim
        self._default_batch = default_batch_size

        self._resolved_device = self._resolve_device(device)
        self._model: Optional[SentenceTransformer] = None

    # --------- Fábrica a partir do OracleConfig ---------
    @classmethod
    def from_config(cls, cfg) -> "SentenceTransformerBackend":
        return cls(
            model_name=cfg.EMBEDDING_MODEL,
            model_version=getattr(cfg, "MODEL_VERSION", "unspecified"),
            dim=getattr(cfg, "EMBED_DIM", 768),
            device=getattr(cfg, "EMBEDDING_DEVICE", None),
            default_batch_size=getattr(cfg, "EMBEDDING_BATCH_SIZE", 64),
        )

    # --------- Contrato EmbeddingBackend ---------
    def health_check(self) -> HealthStatus:
        # Biblioteca local: está "rodando" se as dependências importaram.
        return HealthStatus(running=True, version=self._model_version)

    def setup(self) -> SetupStatus:
        status = SetupStatus(backend_detected=True, backend_version=self._model_version)
        try:
            self._get_model()
            status.model_ready = True
        except (OSError, ValueError, RuntimeError) as e:
            logger.error(f"Falha ao carregar o modelo '{self._model_name}': {e}")
            status.error = str(e)
        return status

    def generate_embeddings(self, items: Sequence[EmbedItem]) -> Dict[str, np.ndarray]:
        valid = [it for it in items if it.id and it.text]
        if not valid:
            return {}
        vecs = self.embed_texts([it.text for it in valid])
        return {it.id: vecs[i] for i, it in enumerate(valid)}

    # --------- API auxiliar ---------
    def embed_texts(
        self,
        texts: Sequence[str],
        batch_size: Optional[int] = None,
        show_progress_bar: bool = False,
    ) -> np.ndarray:
        if not texts:
            return np.zeros((0, self._dim), dtype=np.float32)

        model = self._get_model()
        bs = int(batch_size or self._default_batch)

        # Sanitiza entradas nulas
        safe_texts = [t if t is not None else "" for t in texts]

        embs = model.encode(
            safe_texts,
            batch_size=bs,
            convert_to_numpy=True,
            normalize_embeddings=False,  # normalizamos aqui para manter controle
            device=self._resolved_device,
            show_progress_bar=show_progress_bar,
        )

        if embs.shape[-1] != self._dim:
            raise ValueError(
                f"Dimensão de embedding inesperada: {embs.shape[-1]} (esperado {self._dim}). "
                f"Verifique config.EMBED_DIM e o modelo '{self._model_name}'."
            )
        return _l2_normalize(embs)

    def get_metadata(self) -> EmbeddingMetadata:
        return EmbeddingMetadata(
            model_name=self._model_name,
            model_version=self._model_version,
            dim=self._dim,
            device=self._resolved_device,
        )

    # --------- Internos ---------
    def _get_model(self) -> SentenceTransformer:
        if self._model is None:
            self._model = SentenceTransformer(self._model_name, device=self._resolved_device)
            # Valida dimensão informada vs. real
            test = self._model.encode(["_teste_"], convert_to_numpy=True, normalize_embeddings=False)
            real_dim = int(test.shape[-1])
            if real_dim != self._dim:
                raise ValueError(
                    f"Config.EMBED_DIM={self._dim} não bate com a dimensão real do modelo ({real_dim}). "
                    f"Ajuste EMBED_DIM ou troque o modelo."
                )
        return self._model

    @staticmethod
    def _resolve_device(pref: Optional[str]) -> str:
        if pref in ("cpu", "cuda", "mps"):
            return pref
        return "cuda" if torch.cuda.is_available() else "cpu"
