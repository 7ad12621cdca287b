# oracle/migration/registry.py
"""
Versioned migration registry for keyed-store collections.

Migrations are keyed by (collection, from_version) and upgrade a collection
one version at a time. Each migration receives every row of the collection
and returns the rows to write back.

Safety rule: a migration that raises, or returns nothing for a non-empty
collection, is treated as failed. Nothing is written and the version is left
unchanged, so a broken migration can never wipe user data.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from oracle.storage.keyed_store import KeyedStore, Row

logger = logging.getLogger(__name__)

MigrationFn = Callable[[List[Row]], List[Row]]


@dataclass
class MigrationStats:
    """Statistics from migrating one collection."""

    collection: str
    from_version: int = 0
    to_version: int = 0
    rows_in: int = 0
    rows_out: int = 0
    steps_applied: int = 0
    error: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        """Duration of migration in seconds."""
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class MigrationRegistry:
    """
    Holds migrations and applies them to a KeyedStore.

    Usage:
        registry = MigrationRegistry()

        @registry.register("shelf_bandit", 0)
        def split_arms(rows):
            ...

        registry.run(store, {"shelf_bandit": 1})
    """

    _migrations: Dict[Tuple[str, int], MigrationFn] = field(default_factory=dict)

    def register(self, collection: str, from_version: int) -> Callable[[MigrationFn], MigrationFn]:
        def decorator(fn: MigrationFn) -> MigrationFn:
            key = (collection, int(from_version))
            if key in self._migrations:
                raise ValueError(f"Migration already registered for {collection} v{from_version}")
            self._migrations[key] = fn
            return fn

        return decorator

    def has(self, collection: str, from_version: int) -> bool:
        return (collection, from_version) in self._migrations

    def run(self, store: KeyedStore, targets: Mapping[str, int]) -> List[MigrationStats]:
        """Bring every collection in ``targets`` up to its target version."""
        results = []
        for collection, target in targets.items():
            results.append(self.migrate_collection(store, collection, target))
        return results

    def migrate_collection(self, store: KeyedStore, collection: str, target: int) -> MigrationStats:
        current = store.get_version(collection)
        stats = MigrationStats(
            collection=collection,
            from_version=current,
            to_version=current,
            start_time=datetime.now(),
        )

        try:
            if current >= target:
                return stats

            # Fresh collection: nothing to transform, just stamp the version.
            if store.count(collection) == 0:
                store.set_version(collection, target)
                stats.to_version = target
                return stats

            rows = store.get_all(collection)
            stats.rows_in = len(rows)

            version = current
            while version < target:
                fn = self._migrations.get((collection, version))
                if fn is None:
                    # No data change between these versions.
                    version += 1
                    continue
                try:
                    migrated = fn(list(rows))
                except Exception as e:
                    stats.error = f"v{version} -> v{version + 1} raised: {e}"
                    logger.error(f"Migration of {collection} failed, keeping v{current} data: {stats.error}")
                    return stats
                if rows and not migrated:
                    stats.error = f"v{version} -> v{version + 1} produced no rows from {len(rows)}"
                    logger.error(f"Migration of {collection} refused, keeping v{current} data: {stats.error}")
                    return stats
                rows = migrated
                stats.steps_applied += 1
                version += 1

            if stats.steps_applied:
                store.replace_all(collection, rows)
            store.set_version(collection, target)
            stats.rows_out = len(rows)
            stats.to_version = target
            logger.info(
                f"Migrated {collection} v{current} -> v{target} "
                f"({stats.rows_in} rows in, {stats.rows_out} rows out)"
            )
        except Exception as e:
            stats.error = str(e)
            logger.error(f"Migration of {collection} failed: {e}")
        finally:
            stats.end_time = datetime.now()

        return stats
