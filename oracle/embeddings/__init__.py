# oracle/embeddings/__init__.py
"""
Embeddings module for the recommendation engine.

The sentence-transformers backend is imported lazily by build_backend so that
torch is only required when that backend is selected.
"""

from .backend import (
    EmbeddingBackend,
    EmbedItem,
    HealthStatus,
    OllamaEmbeddingBackend,
    SetupStatus,
    build_backend,
)
from .cache import EmbeddingCache
from .service import EmbeddingService
from .text import catalog_embedding_id, catalog_text, djb2_hash, library_text

__all__ = [
    "EmbeddingBackend",
    "EmbedItem",
    "HealthStatus",
    "OllamaEmbeddingBackend",
    "SetupStatus",
    "build_backend",
    "EmbeddingCache",
    "EmbeddingService",
    "catalog_embedding_id",
    "catalog_text",
    "djb2_hash",
    "library_text",
]
