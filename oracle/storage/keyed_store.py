# oracle/storage/keyed_store.py
"""
Embedded keyed store for the recommendation engine.

One sqlite database file holds every named collection as its own table:

    key   TEXT PRIMARY KEY   -- record identity
    value TEXT               -- JSON document
    blob  BLOB               -- optional binary payload (float32 vectors)

A small ``__collection_versions`` table tracks the schema version of each
collection so the migration registry can upgrade data once at startup.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
import threading
from contextlib import contextmanager, suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from oracle.errors import StorageWriteFailed

logger = logging.getLogger(__name__)

_COLLECTION_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class Row:
    """A stored record. ``value`` is the decoded JSON document."""

    key: str
    value: Any
    blob: Optional[bytes] = None


class KeyedStore:
    """
    Thread-safe, multi-collection key-value store backed by sqlite.

    Features:
    - One connection shared across threads, serialized by a re-entrant lock
    - WAL journal for concurrent reads while writing
    - Forward cursor scans in key order, fetched in batches
    - Corrupt JSON rows are logged and skipped instead of failing a scan
    """

    def __init__(self, path: Union[str, Path], timeout_s: float = 30.0):
        self.path = str(path)
        self.timeout_s = float(timeout_s)
        self._lock = threading.RLock()
        self._known: set = set()
        self._conn: Optional[sqlite3.Connection] = None
        self._initialize()

    @classmethod
    def from_config(cls, cfg) -> "KeyedStore":
        data_dir = Path(getattr(cfg, "DATA_DIR", "."))
        data_dir.mkdir(parents=True, exist_ok=True)
        return cls(cfg.store_path, timeout_s=getattr(cfg, "STORE_TIMEOUT_S", 30.0))

    def _initialize(self) -> None:
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(
                self.path,
                timeout=self.timeout_s,
                check_same_thread=False,
                isolation_level=None,  # explicit BEGIN/COMMIT below
            )
            with suppress(sqlite3.DatabaseError):
                self._conn.execute("PRAGMA journal_mode=WAL;")
                self._conn.execute("PRAGMA synchronous=NORMAL;")
            self._conn.execute(
                "CREATE TABLE IF NOT EXISTS __collection_versions "
                "(name TEXT PRIMARY KEY, version INTEGER NOT NULL)"
            )
            logger.info(f"Keyed store opened at {self.path}")
        except sqlite3.Error as e:
            logger.error(f"Failed to open keyed store at {self.path}: {e}")
            raise

    # ---------- Connection management ----------

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block of statements atomically."""
        with self._lock:
            conn = self._require_conn()
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                with suppress(sqlite3.Error):
                    conn.execute("ROLLBACK")
                raise

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageWriteFailed(f"Keyed store at {self.path} is closed")
        return self._conn

    def _ensure_collection(self, name: str) -> str:
        if name in self._known:
            return name
        if not _COLLECTION_NAME.match(name):
            raise ValueError(f"Invalid collection name: {name!r}")
        with self._lock:
            self._require_conn().execute(
                f"CREATE TABLE IF NOT EXISTS {name} "
                "(key TEXT PRIMARY KEY, value TEXT NOT NULL, blob BLOB)"
            )
            self._known.add(name)
        return name

    # ---------- Point operations ----------

    def get(self, collection: str, key: str) -> Optional[Row]:
        table = self._ensure_collection(collection)
        with self._lock:
            cur = self._require_conn().execute(
                f"SELECT key, value, blob FROM {table} WHERE key = ?", (str(key),)
            )
            raw = cur.fetchone()
        if raw is None:
            return None
        return self._decode(table, raw)

    def get_value(self, collection: str, key: str, default: Any = None) -> Any:
        row = self.get(collection, key)
        return default if row is None else row.value

    def put(self, collection: str, key: str, value: Any, blob: Optional[bytes] = None) -> None:
        self.put_many(collection, [(key, value, blob)])

    def put_many(self, collection: str, items: Iterable[Tuple[str, Any, Optional[bytes]]]) -> int:
        """Upsert several records in one transaction. Returns rows written."""
        table = self._ensure_collection(collection)
        rows = [
            (str(k), json.dumps(v, ensure_ascii=False), sqlite3.Binary(b) if b is not None else None)
            for k, v, b in items
        ]
        if not rows:
            return 0
        try:
            with self.transaction() as conn:
                conn.executemany(
                    f"INSERT INTO {table} (key, value, blob) VALUES (?, ?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value, blob = excluded.blob",
                    rows,
                )
        except sqlite3.Error as e:
            raise StorageWriteFailed(f"Write to '{collection}' failed: {e}") from e
        return len(rows)

    def delete(self, collection: str, key: str) -> None:
        table = self._ensure_collection(collection)
        try:
            with self.transaction() as conn:
                conn.execute(f"DELETE FROM {table} WHERE key = ?", (str(key),))
        except sqlite3.Error as e:
            raise StorageWriteFailed(f"Delete from '{collection}' failed: {e}") from e

    # ---------- Bulk operations ----------

    def scan(
        self,
        collection: str,
        batch_size: int = 500,
        include_blob: bool = True,
        start_after: Optional[str] = None,
    ) -> Iterator[Row]:
        """
        Forward cursor over a collection in key order.

        Rows are fetched ``batch_size`` at a time using keyset pagination, so
        the lock is only held while a batch is read and writers may interleave
        between batches.
        """
        table = self._ensure_collection(collection)
        cols = "key, value, blob" if include_blob else "key, value, NULL"
        last_key = start_after
        while True:
            with self._lock:
                conn = self._require_conn()
                if last_key is None:
                    cur = conn.execute(
                        f"SELECT {cols} FROM {table} ORDER BY key LIMIT ?", (int(batch_size),)
                    )
                else:
                    cur = conn.execute(
                        f"SELECT {cols} FROM {table} WHERE key > ? ORDER BY key LIMIT ?",
                        (last_key, int(batch_size)),
                    )
                batch = cur.fetchall()
            if not batch:
                return
            for raw in batch:
                row = self._decode(table, raw)
                if row is not None:
                    yield row
            last_key = batch[-1][0]
            if len(batch) < batch_size:
                return

    def get_all(self, collection: str, include_blob: bool = True) -> List[Row]:
        return list(self.scan(collection, include_blob=include_blob))

    def keys(self, collection: str) -> List[str]:
        table = self._ensure_collection(collection)
        with self._lock:
            cur = self._require_conn().execute(f"SELECT key FROM {table} ORDER BY key")
            return [r[0] for r in cur.fetchall()]

    def count(self, collection: str) -> int:
        table = self._ensure_collection(collection)
        with self._lock:
            row = self._require_conn().execute(f"SELECT COUNT(*) FROM {table}").fetchone()
        return int(row[0]) if row else 0

    def clear(self, collection: str) -> None:
        table = self._ensure_collection(collection)
        try:
            with self.transaction() as conn:
                conn.execute(f"DELETE FROM {table}")
        except sqlite3.Error as e:
            raise StorageWriteFailed(f"Clear of '{collection}' failed: {e}") from e

    def replace_all(self, collection: str, rows: Iterable[Row]) -> int:
        """Atomically swap the full contents of a collection."""
        table = self._ensure_collection(collection)
        payload = [
            (r.key, json.dumps(r.value, ensure_ascii=False), sqlite3.Binary(r.blob) if r.blob is not None else None)
            for r in rows
        ]
        try:
            with self.transaction() as conn:
                conn.execute(f"DELETE FROM {table}")
                conn.executemany(f"INSERT INTO {table} (key, value, blob) VALUES (?, ?, ?)", payload)
        except sqlite3.Error as e:
            raise StorageWriteFailed(f"Replace of '{collection}' failed: {e}") from e
        return len(payload)

    # ---------- Versions ----------

    def get_version(self, collection: str) -> int:
        with self._lock:
            row = self._require_conn().execute(
                "SELECT version FROM __collection_versions WHERE name = ?", (collection,)
            ).fetchone()
        return int(row[0]) if row else 0

    def set_version(self, collection: str, version: int) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO __collection_versions (name, version) VALUES (?, ?) "
                "ON CONFLICT(name) DO UPDATE SET version = excluded.version",
                (collection, int(version)),
            )

    def collections(self) -> List[str]:
        with self._lock:
            cur = self._require_conn().execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE '\\_\\_%' ESCAPE '\\' "
                "AND name NOT LIKE 'sqlite_%' ORDER BY name"
            )
            return [r[0] for r in cur.fetchall()]

    # ---------- Utilities ----------

    @staticmethod
    def _decode(table: str, raw: Tuple[Any, Any, Any]) -> Optional[Row]:
        key, value, blob = raw
        try:
            decoded = json.loads(value)
        except (TypeError, ValueError) as e:
            logger.warning(f"Discarding corrupt record {table}/{key}: {e}")
            return None
        return Row(key=key, value=decoded, blob=bytes(blob) if blob is not None else None)

    def stats(self) -> Dict[str, int]:
        return {name: self.count(name) for name in self.collections()}

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.info("Keyed store closed")
