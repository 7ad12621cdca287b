# oracle/migration/builtin.py
"""
Built-in migrations for the collections the engine owns.

- Embedding tiers v0 -> v1: vectors stored as a JSON list inside the document
  move to a float32 blob.
- Shelf bandit v0 -> v1: one ``arms`` document holding every arm becomes one
  row per shelf key.
"""

from __future__ import annotations

import logging
from typing import List

import numpy as np

from oracle.migration.registry import MigrationRegistry, MigrationStats
from oracle.storage.keyed_store import KeyedStore, Row
from oracle.storage.schema import (
    CATALOG_EMBEDDINGS,
    LIBRARY_EMBEDDINGS,
    SCHEMA_VERSIONS,
    SHELF_BANDIT,
)

logger = logging.getLogger(__name__)

registry = MigrationRegistry()


def _embedding_json_to_blob(rows: List[Row]) -> List[Row]:
    out: List[Row] = []
    for row in rows:
        value = row.value if isinstance(row.value, dict) else {}
        if row.blob is not None:
            out.append(row)
            continue
        vector = value.get("vector")
        if not isinstance(vector, list) or not vector:
            logger.warning(f"Dropping embedding {row.key!r} with no vector during migration")
            continue
        arr = np.asarray(vector, dtype=np.float32)
        doc = {
            "textHash": str(value.get("textHash", "")),
            "timestamp": int(value.get("timestamp", 0) or 0),
            "dim": int(arr.shape[0]),
        }
        out.append(Row(key=row.key, value=doc, blob=arr.tobytes()))
    return out


registry.register(LIBRARY_EMBEDDINGS, 0)(_embedding_json_to_blob)
registry.register(CATALOG_EMBEDDINGS, 0)(_embedding_json_to_blob)


@registry.register(SHELF_BANDIT, 0)
def _split_bandit_arms(rows: List[Row]) -> List[Row]:
    out: List[Row] = []
    for row in rows:
        if row.key != "arms":
            out.append(row)
            continue
        arms = row.value if isinstance(row.value, dict) else {}
        for shelf_key, arm in arms.items():
            if not isinstance(arm, dict):
                continue
            out.append(
                Row(
                    key=str(shelf_key),
                    value={
                        "alpha": max(1.0, float(arm.get("alpha", 1.0))),
                        "beta": max(1.0, float(arm.get("beta", 1.0))),
                        "impressions": int(arm.get("impressions", 0) or 0),
                        "clicks": int(arm.get("clicks", 0) or 0),
                    },
                )
            )
    return out


def run_startup_migrations(store: KeyedStore) -> List[MigrationStats]:
    """Upgrade every owned collection to its current schema version."""
    results = registry.run(store, SCHEMA_VERSIONS)
    failed = [s for s in results if not s.success]
    if failed:
        logger.warning(f"{len(failed)} collection migration(s) failed; old data kept")
    return results
