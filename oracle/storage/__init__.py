# oracle/storage/__init__.py
"""
Storage module for the recommendation engine.

Provides the embedded keyed store and the record shapes persisted in it.
"""

from .keyed_store import KeyedStore, Row
from .schema import EmbeddingRecord, SyncState

__all__ = [
    "KeyedStore",
    "Row",
    "EmbeddingRecord",
    "SyncState",
]
