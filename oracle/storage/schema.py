# oracle/storage/schema.py
"""
Record definitions persisted in the keyed store.

Defines the stored shape of embedding records and catalog sync state, plus
the collection names each component owns.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import numpy as np

from oracle.errors import DataCorrupt
from oracle.storage.keyed_store import Row

# Collection names. One owner per collection.
LIBRARY_EMBEDDINGS = "embeddings_library"  # EmbeddingService
CATALOG_EMBEDDINGS = "embeddings_catalog"  # EmbeddingService
CATALOG_ENTRIES = "catalog_entries"  # CatalogStore
CATALOG_META = "catalog_meta"  # CatalogStore
BROWSE_CACHE = "browse_cache"  # BrowseCache
RECO_RESULTS = "reco_results"  # RecoOrchestrator
RECO_HISTORY = "reco_history"  # RecoHistoryStore
SHELF_BANDIT = "shelf_bandit"  # ShelfBandit

# Current schema versions per collection (see oracle.migration.builtin).
SCHEMA_VERSIONS: Dict[str, int] = {
    LIBRARY_EMBEDDINGS: 1,
    CATALOG_EMBEDDINGS: 1,
    CATALOG_ENTRIES: 1,
    CATALOG_META: 1,
    BROWSE_CACHE: 1,
    RECO_RESULTS: 1,
    RECO_HISTORY: 1,
    SHELF_BANDIT: 1,
}


@dataclass
class EmbeddingRecord:
    """One cached embedding for one tier."""

    id: str
    vector: np.ndarray
    text_hash: str
    timestamp: int  # epoch ms

    def __post_init__(self):
        """Validate and normalize the record."""
        if not isinstance(self.vector, np.ndarray):
            self.vector = np.asarray(self.vector, dtype=np.float32)
        if self.vector.ndim != 1:
            raise ValueError(f"Embedding must be 1D, got {self.vector.ndim}D")
        if self.vector.dtype != np.float32:
            self.vector = self.vector.astype(np.float32)

    def to_row(self) -> tuple:
        """Convert to a (key, value, blob) triple for KeyedStore.put_many."""
        value = {
            "textHash": self.text_hash,
            "timestamp": int(self.timestamp),
            "dim": int(self.vector.shape[0]),
        }
        return self.id, value, self.vector.tobytes()

    @classmethod
    def from_row(cls, row: Row) -> "EmbeddingRecord":
        """Create from a stored row. Raises DataCorrupt on malformed data."""
        value = row.value
        if not isinstance(value, dict) or row.blob is None:
            raise DataCorrupt(f"Embedding record {row.key!r} has no vector payload")
        try:
            dim = int(value.get("dim", 0))
            vector = np.frombuffer(row.blob, dtype=np.float32)
            if dim and vector.shape[0] != dim:
                raise DataCorrupt(
                    f"Embedding record {row.key!r} has {vector.shape[0]} floats, expected {dim}"
                )
            return cls(
                id=row.key,
                vector=vector.copy(),
                text_hash=str(value.get("textHash", "")),
                timestamp=int(value.get("timestamp", 0)),
            )
        except (TypeError, ValueError) as e:
            raise DataCorrupt(f"Embedding record {row.key!r} is malformed: {e}") from e

    def is_expired(self, now_ms: int, ttl_ms: int) -> bool:
        """A record is valid only while now - timestamp < ttl."""
        return now_ms - self.timestamp >= ttl_ms

    def is_outdated(self, current_text_hash: str) -> bool:
        """Check if this embedding is outdated based on text hash."""
        return self.text_hash != current_text_hash


@dataclass
class SyncState:
    """Catalog sync bookkeeping stored under the 'sync-state' meta key."""

    last_sync_timestamp: int = 0
    total_entries: int = 0
    batches_completed: int = 0
    batches_total: int = 0
    in_progress: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lastSyncTimestamp": self.last_sync_timestamp,
            "totalEntries": self.total_entries,
            "batchesCompleted": self.batches_completed,
            "batchesTotal": self.batches_total,
            "inProgress": self.in_progress,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["SyncState"]:
        if not isinstance(data, dict):
            return None
        return cls(
            last_sync_timestamp=int(data.get("lastSyncTimestamp", 0) or 0),
            total_entries=int(data.get("totalEntries", 0) or 0),
            batches_completed=int(data.get("batchesCompleted", 0) or 0),
            batches_total=int(data.get("batchesTotal", 0) or 0),
            in_progress=bool(data.get("inProgress", False)),
        )

    def is_fresh(self, now_ms: int, stale_ms: int) -> bool:
        if self.in_progress or self.total_entries <= 0:
            return False
        return (now_ms - self.last_sync_timestamp) < stale_ms
