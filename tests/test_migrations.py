"""
Schema migration tests for LocalStore.

Each test constructs a database at a specific schema version using raw SQL,
then opens it via LocalStore and verifies the migration result.
"""

import json
import sqlite3
from pathlib import Path

import pytest

from omistash.errors import StoreError
from omistash.local_store import SCHEMA_VERSION, LocalStore


def _create_v1_db(path: Path, chats: list[dict] = None):
    """Create a v1 database: chats, memories and folders with their first indexes."""
    conn = sqlite3.connect(str(path))
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("CREATE TABLE schema_version (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
    conn.execute("INSERT INTO schema_version VALUES (1, '2024-01-01T00:00:00.000Z')")
    conn.execute("CREATE TABLE chats (id TEXT PRIMARY KEY, data TEXT NOT NULL, ix_folderId TEXT)")
    conn.execute("CREATE TABLE memories (id TEXT PRIMARY KEY, data TEXT NOT NULL, ix_folderId TEXT)")
    conn.execute("CREATE TABLE folders (id TEXT PRIMARY KEY, data TEXT NOT NULL, ix_type TEXT)")
    for chat in chats or []:
        conn.execute(
            "INSERT INTO chats (id, data, ix_folderId) VALUES (?, ?, ?)",
            (chat["id"], json.dumps(chat), json.dumps(chat.get("folderId"))
             if chat.get("folderId") is not None else None),
        )
    conn.commit()
    conn.close()


def _columns(path: Path, table: str) -> set[str]:
    conn = sqlite3.connect(str(path))
    cols = {row[1] for row in conn.execute(f'PRAGMA table_info("{table}")')}
    conn.close()
    return cols


class TestFreshDatabase:
    def test_new_db_at_latest_version(self, tmp_path):
        store = LocalStore(tmp_path / "new.db")
        assert store.schema_version() == SCHEMA_VERSION
        store.close()

    def test_reopen_is_noop(self, tmp_path):
        path = tmp_path / "new.db"
        s1 = LocalStore(path)
        s1.put("chats", {"id": "c1", "status": "active"})
        s1.close()

        s2 = LocalStore(path)
        assert s2.schema_version() == SCHEMA_VERSION
        assert s2.get("chats", "c1") == {"id": "c1", "status": "active"}
        conn = sqlite3.connect(str(path))
        versions = [r[0] for r in conn.execute("SELECT version FROM schema_version ORDER BY version")]
        conn.close()
        assert versions == list(range(1, SCHEMA_VERSION + 1))
        s2.close()


class TestUpgradeFromV1:
    def test_adds_missing_collections(self, tmp_path):
        path = tmp_path / "v1.db"
        _create_v1_db(path)
        store = LocalStore(path)
        assert store.schema_version() == SCHEMA_VERSION
        store.put("action_items", {"id": "t1", "completed": False})
        store.put("sync_state", {"id": "memories", "count": 3})
        assert store.count("action_items") == 1
        assert store.get("sync_state", "memories")["count"] == 3
        store.close()

    def test_existing_records_preserved(self, tmp_path):
        path = tmp_path / "v1.db"
        chats = [
            {"id": "c1", "title": "One", "status": "active", "folderId": "f1"},
            {"id": "c2", "title": "Two", "status": "archived"},
        ]
        _create_v1_db(path, chats)
        store = LocalStore(path)
        assert store.get("chats", "c1") == chats[0]
        assert store.get("chats", "c2") == chats[1]
        assert [r["id"] for r in store.get_all("chats", "folderId", "f1")] == ["c1"]
        store.close()

    def test_new_index_is_backfilled(self, tmp_path):
        path = tmp_path / "v1.db"
        _create_v1_db(path, [
            {"id": "c1", "status": "active"},
            {"id": "c2", "status": "archived"},
            {"id": "c3", "status": "archived"},
        ])
        store = LocalStore(path)
        assert "ix_status" in _columns(path, "chats")
        archived = store.get_all("chats", "status", "archived")
        assert sorted(r["id"] for r in archived) == ["c2", "c3"]
        store.close()


class TestNewerDatabase:
    def test_refuses_future_schema(self, tmp_path):
        path = tmp_path / "future.db"
        conn = sqlite3.connect(str(path))
        conn.execute("CREATE TABLE schema_version (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
        conn.execute("INSERT INTO schema_version VALUES (?, 'x')", (SCHEMA_VERSION + 1,))
        conn.commit()
        conn.close()

        store = LocalStore(path)
        with pytest.raises(StoreError, match="newer than supported"):
            store.count("chats")
        assert not store.is_open
