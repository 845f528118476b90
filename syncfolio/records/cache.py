"""SQLite cache for records kept while no identity is signed in."""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator

from ..errors import CacheError
from .model import Record

logger = logging.getLogger(__name__)

# Schema for the local record cache
CACHE_SCHEMA = """
-- Records per collection in insertion order, stored as JSON documents
CREATE TABLE IF NOT EXISTS records (
    collection TEXT NOT NULL,
    id TEXT NOT NULL,
    position INTEGER NOT NULL,
    data TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (collection, id)
);

CREATE INDEX IF NOT EXISTS idx_records_position ON records(collection, position);

-- Small key/value table (order index per collection)
CREATE TABLE IF NOT EXISTS meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


class LocalCache:
    """Durable local copy of one record collection and its order index.

    Several caches may share a database file, one per collection. The cache
    is written only while the coordinator is disconnected from the remote
    store, so it always reflects local-only work.
    """

    def __init__(self, db_path: str | Path, collection: str = "projects"):
        """Initialize the cache.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
            collection: Namespace for the records within the database.
        """
        self._in_memory = str(db_path) == ":memory:"
        self.db_path = Path(db_path).expanduser() if not self._in_memory else Path(":memory:")
        self.collection = collection
        self._order_key = f"{collection}:order"
        self._conn: sqlite3.Connection | None = None

    @contextmanager
    def _errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except (sqlite3.Error, OSError) as e:
            raise CacheError(
                f"Local cache {action} failed: {e}",
                details={"path": str(self.db_path), "collection": self.collection},
                cause=e,
            ) from e

    def connect(self) -> None:
        """Initialize database connection and schema.

        Raises:
            CacheError: If the file cannot be created or opened.
        """
        if self._conn is not None:
            return

        with self._errors("open"):
            if self._in_memory:
                target = ":memory:"
            else:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                target = str(self.db_path)

            conn = sqlite3.connect(target)
            conn.row_factory = sqlite3.Row
            conn.executescript(CACHE_SCHEMA)
            conn.commit()
            self._conn = conn

        logger.info(f"LocalCache connected to {target} ({self.collection})")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        """Ensure database connection exists."""
        if self._conn is None:
            self.connect()
        return self._conn

    def load_records(self) -> list[Record]:
        """Load cached records in their stored order.

        Rows that no longer parse are skipped with a warning.
        """
        conn = self._ensure_connected()

        with self._errors("read"):
            rows = conn.execute(
                "SELECT id, data FROM records WHERE collection = ? ORDER BY position ASC",
                (self.collection,),
            ).fetchall()

        records = []
        for row in rows:
            try:
                records.append(json.loads(row["data"]))
            except json.JSONDecodeError as e:
                logger.warning(f"Skipping unreadable cached record {row['id']}: {e}")

        logger.debug(f"Loaded {len(records)} {self.collection} records from cache")
        return records

    def save_records(self, records: list[Record]) -> None:
        """Replace the cached collection in a single transaction."""
        conn = self._ensure_connected()

        now = datetime.now().isoformat()
        with self._errors("write"), conn:
            conn.execute("DELETE FROM records WHERE collection = ?", (self.collection,))
            conn.executemany(
                "INSERT INTO records (collection, id, position, data, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                [
                    (self.collection, record["id"], position, json.dumps(record), now)
                    for position, record in enumerate(records)
                ],
            )

        logger.debug(f"Saved {len(records)} {self.collection} records to cache")

    def save_snapshot(self, records: list[Record], order: list[str]) -> None:
        """Replace records and order index together in one transaction.

        Raises:
            CacheError: If the write fails; nothing is changed.
        """
        conn = self._ensure_connected()

        now = datetime.now().isoformat()
        with self._errors("write"), conn:
            conn.execute("DELETE FROM records WHERE collection = ?", (self.collection,))
            conn.executemany(
                "INSERT INTO records (collection, id, position, data, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                [
                    (self.collection, record["id"], position, json.dumps(record), now)
                    for position, record in enumerate(records)
                ],
            )
            conn.execute(
                "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)",
                (self._order_key, json.dumps(list(order))),
            )

        logger.debug(f"Saved {len(records)} {self.collection} records and order to cache")

    def load_order(self) -> list[str]:
        conn = self._ensure_connected()

        with self._errors("read"):
            row = conn.execute(
                "SELECT value FROM meta WHERE key = ?", (self._order_key,)
            ).fetchone()
        if row is None:
            return []

        try:
            order = json.loads(row["value"])
        except json.JSONDecodeError:
            logger.warning("Cached order index is unreadable, ignoring it")
            return []
        return [str(i) for i in order] if isinstance(order, list) else []

    def save_order(self, order: list[str]) -> None:
        conn = self._ensure_connected()

        with self._errors("write"), conn:
            conn.execute(
                "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)",
                (self._order_key, json.dumps(list(order))),
            )

    def clear(self) -> None:
        """Delete this collection's cached records and order index."""
        conn = self._ensure_connected()

        with self._errors("clear"), conn:
            conn.execute("DELETE FROM records WHERE collection = ?", (self.collection,))
            conn.execute("DELETE FROM meta WHERE key = ?", (self._order_key,))

        logger.info(f"Local cache cleared ({self.collection})")
