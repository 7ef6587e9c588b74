"""Tests for the Stash library API — direct mutations, folders and bulk data management."""

import pytest

from conftest import ACTION_ITEMS, CONVERSATIONS, MEMORIES, raw_action_item, raw_conversation, raw_memory
from omistash.api import Stash, resolve_kind
from omistash.errors import StoreError
from omistash.query import RecordFilter
from omistash.types import ActionItem, Conversation, Folder, Memory

T0 = "2024-03-01T10:00:00.000Z"


def _seed(stash):
    stash.store.bulk_put("chats", [
        Conversation(id="c1", title="Standup", summary="", created_at=T0, updated_at=T0),
        Conversation(id="c2", title="Retro", summary="", created_at=T0, updated_at=T0),
    ])
    stash.store.put("memories", Memory(id="m1", content="Likes tea", created_at=T0, updated_at=T0))
    stash.store.put("action_items", ActionItem(id="t1", description="Call Bob", created_at=T0, updated_at=T0))


class TestResolveKind:
    @pytest.mark.parametrize("kind, collection", [
        ("conversations", "chats"),
        ("chats", "chats"),
        ("Memories", "memories"),
        ("action-items", "action_items"),
        ("tasks", "action_items"),
    ])
    def test_aliases(self, kind, collection):
        assert resolve_kind(kind) == collection

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown record kind"):
            resolve_kind("folders")


class TestSync:
    @pytest.mark.asyncio
    async def test_sync_then_list(self, stash, fake_api):
        fake_api.data[CONVERSATIONS] = [raw_conversation("c1"), raw_conversation("c2")]
        fake_api.data[MEMORIES] = [raw_memory("m1")]
        fake_api.data[ACTION_ITEMS] = [raw_action_item("t1")]

        summary = await stash.sync()

        assert summary.to_dict() == {"conversations": 2, "memories": 1, "actionItems": 1}
        assert {c.id for c in stash.list_conversations()} == {"c1", "c2"}
        assert [m.id for m in stash.list_memories()] == ["m1"]
        assert [t.id for t in stash.list_action_items()] == ["t1"]

    @pytest.mark.asyncio
    async def test_sync_status(self, stash, fake_api):
        fake_api.data[MEMORIES] = [raw_memory("m1")]
        fake_api.failures[ACTION_ITEMS] = 404

        await stash.sync()
        status = stash.sync_status()

        assert status["counts"]["memories"] == 1
        assert status["resources"]["memories"]["count"] == 1
        assert status["resources"]["memories"]["lastError"] is None
        assert "not found" in status["resources"]["action_items"]["lastError"].lower()

    def test_status_before_any_sync(self, stash):
        status = stash.sync_status()
        assert status["resources"] == {"conversations": None, "memories": None, "action_items": None}
        assert status["counts"] == {"chats": 0, "memories": 0, "action_items": 0, "folders": 0}


class TestConversationMutations:
    def test_toggle_favorite(self, stash):
        _seed(stash)
        assert stash.toggle_favorite("c1").is_favorite is True
        assert stash.get_record("chats", "c1").is_favorite is True
        assert stash.toggle_favorite("c1").is_favorite is False

    def test_mutation_bumps_updated_at(self, stash):
        _seed(stash)
        updated = stash.toggle_favorite("c1")
        assert updated.updated_at != T0
        assert updated.created_at == T0

    def test_missing_record_returns_none(self, stash):
        assert stash.toggle_favorite("nope") is None
        assert stash.set_archived("nope") is None
        assert stash.set_tags("memories", "nope", ["x"]) is None

    def test_archive_and_restore(self, stash):
        _seed(stash)
        assert stash.set_archived("c1").status == "archived"
        assert [c.id for c in stash.list_conversations(RecordFilter(archived=True))] == ["c1"]
        assert stash.set_archived("c1", False).status == "active"

    def test_update_conversation_fields(self, stash):
        _seed(stash)
        chat = stash.update_conversation("c2", title="Retro notes")
        assert chat.title == "Retro notes"
        assert stash.get_record("conversations", "c2").title == "Retro notes"

    def test_failed_write_leaves_record_unchanged(self, stash, monkeypatch):
        _seed(stash)

        def broken_put(collection, record):
            raise StoreError("disk full")

        monkeypatch.setattr(stash.store, "put", broken_put)
        with pytest.raises(StoreError, match="disk full"):
            stash.set_tags("chats", "c1", ["work"])
        assert stash.get_record("chats", "c1").tags == []


class TestMemoryAndTaskMutations:
    def test_toggle_star(self, stash):
        _seed(stash)
        assert stash.toggle_star("m1").is_starred is True
        assert [m.id for m in stash.list_memories(RecordFilter(favorite=True))] == ["m1"]

    def test_archive_memory(self, stash):
        _seed(stash)
        assert stash.set_memory_archived("m1").is_archived is True
        assert stash.set_memory_archived("m1", False).is_archived is False

    def test_update_memory(self, stash):
        _seed(stash)
        assert stash.update_memory("m1", content="Likes green tea").content == "Likes green tea"

    def test_complete_action_item(self, stash):
        _seed(stash)
        assert stash.set_completed("t1").completed is True
        assert stash.list_action_items(RecordFilter(completed=False)) == []
        assert stash.store.get_all("action_items", "completed", True)[0]["id"] == "t1"

    def test_update_action_item(self, stash):
        _seed(stash)
        item = stash.update_action_item("t1", description="Call Bob back", due_date="2024-04-01")
        assert item.description == "Call Bob back"
        assert item.due_date == "2024-04-01"


class TestTags:
    def test_set_tags_cleans_and_dedupes(self, stash):
        _seed(stash)
        chat = stash.set_tags("conversations", "c1", [" work ", "", "work", "urgent"])
        assert chat.tags == ["work", "urgent"]

    def test_list_tags(self, stash):
        _seed(stash)
        stash.set_tags("chats", "c1", ["work"])
        stash.set_tags("chats", "c2", ["home", "work"])
        assert stash.list_tags("conversations") == ["home", "work"]

    def test_clear_tags(self, stash):
        _seed(stash)
        stash.set_tags("memories", "m1", ["x"])
        assert stash.set_tags("memories", "m1", []).tags == []


class TestFolders:
    def test_create_folder(self, stash):
        folder = stash.create_folder("  Work  ", "memory")
        assert folder.name == "Work"
        assert folder.type == "memory"
        assert folder.icon == "activity"
        assert folder.color == "blue"
        assert stash.store.get("folders", folder.id)["name"] == "Work"

    def test_create_rejects_bad_input(self, stash):
        with pytest.raises(ValueError, match="empty"):
            stash.create_folder("   ")
        with pytest.raises(ValueError, match="type"):
            stash.create_folder("X", "notes")

    def test_list_folders_by_type(self, stash):
        stash.create_folder("b-chat")
        stash.create_folder("A-memory", "memory")
        stash.store.put("folders", Folder(id="legacy", name="Legacy", icon="message"))

        assert [f.name for f in stash.list_folders()] == ["A-memory", "b-chat", "Legacy"]
        assert [f.name for f in stash.list_folders("chat")] == ["b-chat", "Legacy"]
        assert [f.name for f in stash.list_folders("memory")] == ["A-memory"]
        assert stash.list_folders("action_item") == []

    def test_update_folder(self, stash):
        folder = stash.create_folder("Old")
        renamed = stash.update_folder(folder.id, name="New", color="red")
        assert (renamed.name, renamed.color) == ("New", "red")
        assert stash.update_folder("missing", name="x") is None
        with pytest.raises(ValueError):
            stash.update_folder(folder.id, name=" ")

    def test_move_to_folder(self, stash):
        _seed(stash)
        folder = stash.create_folder("Team")

        moved = stash.move_to_folder("conversations", ["c1", "c2", "ghost"], folder.id)

        assert moved == 2
        in_folder = stash.list_conversations(RecordFilter(folder_id=folder.id))
        assert {c.id for c in in_folder} == {"c1", "c2"}
        assert len(stash.store.get_all("chats", "folderId", folder.id)) == 2

    def test_move_out_of_folder(self, stash):
        _seed(stash)
        folder = stash.create_folder("Team")
        stash.move_to_folder("chats", ["c1"], folder.id)
        assert stash.move_to_folder("chats", ["c1"], None) == 1
        assert stash.get_record("chats", "c1").folder_id is None

    def test_move_requires_existing_folder(self, stash):
        _seed(stash)
        with pytest.raises(ValueError, match="not found"):
            stash.move_to_folder("chats", ["c1"], "missing")

    def test_move_requires_matching_type(self, stash):
        _seed(stash)
        folder = stash.create_folder("Memories only", "memory")
        with pytest.raises(ValueError, match="holds memory"):
            stash.move_to_folder("chats", ["c1"], folder.id)
        assert stash.move_to_folder("memories", ["m1"], folder.id) == 1

    def test_delete_folder_keeps_records(self, stash):
        _seed(stash)
        folder = stash.create_folder("Team")
        stash.move_to_folder("chats", ["c1"], folder.id)

        assert stash.delete_folder(folder.id) is True
        assert stash.delete_folder(folder.id) is False
        assert stash.get_record("chats", "c1").folder_id == folder.id


class TestBulk:
    def test_delete_records(self, stash):
        _seed(stash)
        assert stash.delete_records("conversations", ["c1", "ghost"]) == 1
        assert [c.id for c in stash.list_conversations()] == ["c2"]

    def test_clear_all(self, stash):
        _seed(stash)
        stash.create_folder("Team")
        assert stash.clear_all() == {"chats": 2, "memories": 1, "action_items": 1, "folders": 1}
        assert stash.sync_status()["counts"] == {"chats": 0, "memories": 0, "action_items": 0, "folders": 0}

    def test_generate_demo_data(self, stash):
        counts = stash.generate_demo_data()
        assert counts == {"conversations": 5, "memories": 5, "actionItems": 5}
        chats = stash.list_conversations(RecordFilter(tag="demo"))
        assert len(chats) == 5
        assert all(len(c.messages) == 2 for c in chats)
        assert len(stash.list_memories(RecordFilter(tag="demo"))) == 5
        assert len(stash.list_action_items(RecordFilter(completed=False))) == 5


class TestLifecycle:
    def test_store_created_under_store_path(self, tmp_path):
        stash = Stash(tmp_path / "s")
        stash.generate_demo_data()
        assert (tmp_path / "s" / "omistash.db").exists()
        assert (tmp_path / "s" / "omistash.toml").exists()
        stash.close()

    def test_operations_are_logged(self, tmp_path):
        stash = Stash(tmp_path / "s")
        stash.create_folder("Logged")
        stash.close()
        assert "Created chat folder" in (tmp_path / "s" / "omistash-ops.log").read_text()

    def test_close_is_idempotent(self, stash):
        stash.close()
        stash.close()

    def test_data_survives_reopen(self, tmp_path):
        first = Stash(tmp_path / "s")
        first.generate_demo_data()
        first.close()
        second = Stash(tmp_path / "s")
        assert len(second.list_conversations()) == 5
        second.close()

    def test_close_detaches_ops_log(self, tmp_path):
        import logging

        stash = Stash(tmp_path / "s")
        handler = stash._ops_log_handler
        assert handler in logging.getLogger("omistash").handlers
        stash.close()
        assert handler not in logging.getLogger("omistash").handlers
