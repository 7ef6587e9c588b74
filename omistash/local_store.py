"""
Local record store using SQLite.

Holds one table per collection (chats, memories, action_items, folders,
sync_state). Each row is a JSON document keyed by its ``id``; fields named
as secondary indexes are copied into indexed columns on write so that
index-scoped scans do not need to parse every document.

The database is opened lazily on first use. Tables are created by a
versioned list of migrations; the applied versions are recorded in the
``schema_version`` table. Migrations only ever add tables, columns and
indexes, so opening an older database never discards data.
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from .errors import StoreError, UnknownCollectionError
from .types import utc_now

logger = logging.getLogger(__name__)

# Ordered migrations: (version, {collection: index fields added}).
# A collection listed again in a later version gains the extra indexes.
MIGRATIONS: list[tuple[int, dict[str, tuple[str, ...]]]] = [
    (1, {
        "chats": ("folderId",),
        "memories": ("folderId",),
        "folders": ("type",),
    }),
    (2, {
        "action_items": ("completed", "folderId"),
    }),
    (3, {
        "chats": ("status",),
        "sync_state": (),
    }),
]

SCHEMA_VERSION = MIGRATIONS[-1][0]


def _declared_collections() -> dict[str, tuple[str, ...]]:
    collections: dict[str, tuple[str, ...]] = {}
    for _, tables in MIGRATIONS:
        for name, indexes in tables.items():
            existing = collections.get(name, ())
            collections[name] = existing + tuple(i for i in indexes if i not in existing)
    return collections


COLLECTIONS = _declared_collections()


def _index_column(index_name: str) -> str:
    return f"ix_{index_name}"


def _encode_index(value: Any) -> Optional[str]:
    # JSON encoding keeps True distinct from "true" and 1
    if value is None:
        return None
    return json.dumps(value)


class LocalStore:
    """
    SQLite-backed store for typed record collections.

    Records are dicts (or objects with ``to_dict()``) carrying an ``id`` key.
    All operations are synchronous; the connection is shared and guarded by
    a lock, so one instance can serve the whole process.
    """

    def __init__(self, db_path: Path):
        """
        Args:
            db_path: Path to SQLite database file
        """
        self._db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._db_path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    # -------------------------------------------------------------------------
    # Opening and migration
    # -------------------------------------------------------------------------

    def _open(self) -> sqlite3.Connection:
        """Open the database on first use. Failures are fatal to the caller."""
        if self._conn is not None:
            return self._conn

        conn = None
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            # isolation_level=None gives us manual transaction control
            conn = sqlite3.connect(
                str(self._db_path), check_same_thread=False,
                isolation_level=None,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA busy_timeout=5000")
            self._migrate(conn)
        except (sqlite3.Error, OSError) as e:
            if conn is not None:
                conn.close()
            raise StoreError(f"Cannot open local store at {self._db_path}: {e}") from e

        self._conn = conn
        logger.debug("Opened local store %s (schema v%d)", self._db_path, SCHEMA_VERSION)
        return conn

    def _current_version(self, conn: sqlite3.Connection) -> int:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL
            )
        """)
        row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return row[0] or 0

    def _migrate(self, conn: sqlite3.Connection) -> None:
        """Apply every migration newer than the recorded schema version."""
        current = self._current_version(conn)
        if current > SCHEMA_VERSION:
            conn.close()
            raise StoreError(
                f"Store schema version {current} is newer than supported ({SCHEMA_VERSION})"
            )

        for version, tables in MIGRATIONS:
            if version <= current:
                continue
            conn.execute("BEGIN IMMEDIATE")
            try:
                for name, indexes in tables.items():
                    self._create_collection(conn, name, indexes)
                conn.execute(
                    "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (version, utc_now()),
                )
                conn.execute("COMMIT")
            except sqlite3.Error:
                conn.execute("ROLLBACK")
                raise
            logger.info("Local store migrated to schema v%d", version)

    def _create_collection(
        self, conn: sqlite3.Connection, name: str, indexes: tuple[str, ...]
    ) -> None:
        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS "{name}" (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL
            )
        """)
        columns = {row[1] for row in conn.execute(f'PRAGMA table_info("{name}")')}
        added = []
        for index_name in indexes:
            column = _index_column(index_name)
            if column not in columns:
                conn.execute(f'ALTER TABLE "{name}" ADD COLUMN "{column}" TEXT')
                added.append(index_name)
            conn.execute(
                f'CREATE INDEX IF NOT EXISTS "idx_{name}_{index_name}" '
                f'ON "{name}"("{column}")'
            )
        if added:
            # Backfill new index columns on rows written before they existed
            rows = conn.execute(f'SELECT id, data FROM "{name}"').fetchall()
            for row in rows:
                doc = json.loads(row["data"])
                for index_name in added:
                    conn.execute(
                        f'UPDATE "{name}" SET "{_index_column(index_name)}" = ? WHERE id = ?',
                        (_encode_index(doc.get(index_name)), row["id"]),
                    )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Yield the open connection under the lock, mapping SQLite errors."""
        with self._lock:
            conn = self._open()
            try:
                yield conn
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def _require(self, collection: str) -> tuple[str, ...]:
        try:
            return COLLECTIONS[collection]
        except KeyError:
            raise UnknownCollectionError(f"Unknown collection: {collection}") from None

    @staticmethod
    def _as_document(record: Any) -> dict[str, Any]:
        doc = record.to_dict() if hasattr(record, "to_dict") else dict(record)
        if not doc.get("id"):
            raise StoreError("Record has no id")
        return doc

    def _row_values(self, doc: dict[str, Any], indexes: tuple[str, ...]) -> tuple:
        data = json.dumps(doc, ensure_ascii=False, sort_keys=True)
        return (doc["id"], data, *(_encode_index(doc.get(i)) for i in indexes))

    def _upsert_sql(self, collection: str, indexes: tuple[str, ...]) -> str:
        columns = ["id", "data", *(f'"{_index_column(i)}"' for i in indexes)]
        placeholders = ", ".join("?" * len(columns))
        return (
            f'INSERT OR REPLACE INTO "{collection}" ({", ".join(columns)}) '
            f"VALUES ({placeholders})"
        )

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get(self, collection: str, id: str) -> Optional[dict[str, Any]]:
        """
        Get a record by ID.

        Returns:
            The record dict if found, None otherwise
        """
        self._require(collection)
        with self._connection() as conn:
            row = conn.execute(
                f'SELECT data FROM "{collection}" WHERE id = ?', (id,)
            ).fetchone()
        return json.loads(row["data"]) if row else None

    def get_all(
        self,
        collection: str,
        index_name: Optional[str] = None,
        index_value: Any = None,
    ) -> list[dict[str, Any]]:
        """
        Scan a collection.

        Without ``index_name`` this is a full scan. With it, only records whose
        indexed field equals ``index_value`` are returned. Order is unspecified.
        """
        indexes = self._require(collection)
        if index_name is None:
            sql = f'SELECT data FROM "{collection}"'
            params: tuple = ()
        else:
            if index_name not in indexes:
                raise StoreError(f"Collection {collection} has no index {index_name}")
            column = _index_column(index_name)
            encoded = _encode_index(index_value)
            if encoded is None:
                sql = f'SELECT data FROM "{collection}" WHERE "{column}" IS NULL'
                params = ()
            else:
                sql = f'SELECT data FROM "{collection}" WHERE "{column}" = ?'
                params = (encoded,)
        with self._connection() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [json.loads(row["data"]) for row in rows]

    def count(self, collection: str) -> int:
        """Number of records in a collection."""
        self._require(collection)
        with self._connection() as conn:
            return conn.execute(f'SELECT COUNT(*) FROM "{collection}"').fetchone()[0]

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def put(self, collection: str, record: Any) -> None:
        """
        Insert or replace a record keyed by its id.

        Writing to an undeclared collection is logged and ignored.
        """
        indexes = COLLECTIONS.get(collection)
        if indexes is None:
            logger.error("Store %s does not exist", collection)
            return
        doc = self._as_document(record)
        with self._transaction() as conn:
            conn.execute(self._upsert_sql(collection, indexes), self._row_values(doc, indexes))

    def bulk_put(self, collection: str, records: Iterable[Any]) -> None:
        """Insert or replace many records in one transaction."""
        indexes = COLLECTIONS.get(collection)
        if indexes is None:
            logger.error("Store %s does not exist", collection)
            return
        rows = [self._row_values(self._as_document(r), indexes) for r in records]
        if not rows:
            return
        with self._transaction() as conn:
            conn.executemany(self._upsert_sql(collection, indexes), rows)

    def delete(self, collection: str, id: str) -> bool:
        """
        Delete a record.

        Returns:
            True if the record existed and was deleted
        """
        self._require(collection)
        with self._transaction() as conn:
            cursor = conn.execute(f'DELETE FROM "{collection}" WHERE id = ?', (id,))
        return cursor.rowcount > 0

    def bulk_delete(self, collection: str, ids: Iterable[str]) -> int:
        """Delete many records. Returns how many existed."""
        self._require(collection)
        ids = list(ids)
        if not ids:
            return 0
        with self._transaction() as conn:
            cursor = conn.executemany(
                f'DELETE FROM "{collection}" WHERE id = ?', [(i,) for i in ids]
            )
        return cursor.rowcount

    def clear(self, collection: str) -> int:
        """Empty a collection. Returns the number of records removed."""
        self._require(collection)
        with self._transaction() as conn:
            cursor = conn.execute(f'DELETE FROM "{collection}"')
        return cursor.rowcount

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def schema_version(self) -> int:
        """Highest applied schema version."""
        with self._connection() as conn:
            return self._current_version(conn)

    def close(self) -> None:
        """Close the database connection. A later operation reopens it."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
