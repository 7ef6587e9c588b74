"""
Library API for the local mirror.

Stash is the one object a presentation layer talks to. It owns the
configuration, a single LocalStore, the remote client and the sync
orchestrator, and exposes the direct mutations users make (favorites,
folders, tags, completion) which go straight to the store.
"""

import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Optional

from .config import StashConfig, get_default_store_path, load_or_create_config
from .local_store import LocalStore
from .logging_config import configure_ops_log, detach_ops_log
from .query import RecordFilter, collect_tags, filter_records
from .remote import RemoteClient
from .sync import RESOURCES, SYNC_STATE_COLLECTION, SyncOrchestrator
from .types import (
    FOLDER_ACTION_ITEM,
    FOLDER_CHAT,
    FOLDER_MEMORY,
    FOLDER_TYPE_FOR,
    FOLDER_TYPES,
    RECORD_TYPES,
    ActionItem,
    ChatStatus,
    Conversation,
    Folder,
    Memory,
    Message,
    SyncSummary,
    new_id,
    utc_now,
)

logger = logging.getLogger(__name__)

# Accepted names for each synced record collection
KIND_ALIASES = {
    "conversations": Conversation.COLLECTION,
    "conversation": Conversation.COLLECTION,
    "chats": Conversation.COLLECTION,
    "memories": Memory.COLLECTION,
    "memory": Memory.COLLECTION,
    "action-items": ActionItem.COLLECTION,
    "action_items": ActionItem.COLLECTION,
    "tasks": ActionItem.COLLECTION,
}

FOLDER_ICONS = {
    FOLDER_CHAT: "message",
    FOLDER_MEMORY: "activity",
    FOLDER_ACTION_ITEM: "check-square",
}
DEFAULT_FOLDER_COLOR = "blue"

DEMO_COUNT = 5


def resolve_kind(kind: str) -> str:
    """Collection name for a record kind, accepting common aliases."""
    try:
        return KIND_ALIASES[kind.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown record kind: {kind!r} (use conversations, memories or action-items)"
        ) from None


def _clean_tags(tags) -> list[str]:
    seen: dict[str, None] = {}
    for tag in tags:
        tag = tag.strip()
        if tag:
            seen.setdefault(tag, None)
    return list(seen)


class Stash:
    """
    Local-first mirror of a remote account.

    Example:
        stash = Stash()
        summary = asyncio.run(stash.sync())
        favorites = stash.list_conversations(RecordFilter(favorite=True))
    """

    def __init__(
        self,
        store_path: Optional[str | Path] = None,
        *,
        config: Optional[StashConfig] = None,
        store: Optional[LocalStore] = None,
        client: Optional[RemoteClient] = None,
    ) -> None:
        """
        Args:
            store_path: Store directory. Defaults to OMISTASH_STORE_PATH or ~/.omistash.
            config: Pre-loaded config (skips filesystem config discovery).
            store: Injected store (tests, custom setups).
            client: Injected remote client.
        """
        if config is not None:
            self._config = config
        else:
            path = Path(store_path).resolve() if store_path is not None else get_default_store_path()
            self._config = load_or_create_config(path)

        self._ops_log_handler = configure_ops_log(self._config.path)

        self._store = store if store is not None else LocalStore(self._config.database_path)
        self._client = client
        self._orchestrator: Optional[SyncOrchestrator] = None

    @property
    def config(self) -> StashConfig:
        return self._config

    @property
    def store(self) -> LocalStore:
        return self._store

    # -------------------------------------------------------------------------
    # Sync
    # -------------------------------------------------------------------------

    def _get_orchestrator(self) -> SyncOrchestrator:
        if self._orchestrator is None:
            if self._client is None:
                self._client = RemoteClient(
                    self._config.remote.api_url,
                    self._config.remote.token,
                )
            self._orchestrator = SyncOrchestrator(
                self._store,
                self._client,
                timezone=self._config.sync.timezone,
                page_size=self._config.sync.page_size,
            )
        return self._orchestrator

    async def sync(
        self, on_progress: Optional[Callable[[str, int], None]] = None
    ) -> SyncSummary:
        """Pull every resource type from the remote account and merge it."""
        return await self._get_orchestrator().sync(on_progress)

    def sync_status(self) -> dict[str, Any]:
        """Last sync outcome per resource plus local record counts."""
        return {
            "resources": {
                r.name: self._store.get(SYNC_STATE_COLLECTION, r.name) for r in RESOURCES
            },
            "counts": {
                name: self._store.count(name) for name in RECORD_TYPES
            },
        }

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _all(self, collection: str) -> list:
        cls = RECORD_TYPES[collection]
        return [cls.from_dict(doc) for doc in self._store.get_all(collection)]

    def _load(self, collection: str, id: str):
        doc = self._store.get(collection, id)
        return RECORD_TYPES[collection].from_dict(doc) if doc else None

    def _with_timezone(self, criteria: Optional[RecordFilter]) -> RecordFilter:
        criteria = criteria or RecordFilter()
        if criteria.timezone is None:
            criteria = replace(criteria, timezone=self._config.sync.timezone)
        return criteria

    def list_records(self, kind: str, criteria: Optional[RecordFilter] = None) -> list:
        """Filtered, ordered records of one kind."""
        collection = resolve_kind(kind)
        return filter_records(self._all(collection), self._with_timezone(criteria))

    def list_conversations(self, criteria: Optional[RecordFilter] = None) -> list[Conversation]:
        return self.list_records(Conversation.COLLECTION, criteria)

    def list_memories(self, criteria: Optional[RecordFilter] = None) -> list[Memory]:
        return self.list_records(Memory.COLLECTION, criteria)

    def list_action_items(self, criteria: Optional[RecordFilter] = None) -> list[ActionItem]:
        return self.list_records(ActionItem.COLLECTION, criteria)

    def list_tags(self, kind: str) -> list[str]:
        return collect_tags(self._all(resolve_kind(kind)))

    def get_record(self, kind: str, id: str):
        return self._load(resolve_kind(kind), id)

    def list_folders(self, type: Optional[str] = None) -> list[Folder]:
        """Folders of one type. Untyped folders predate typing and count as chat folders."""
        folders = self._all(Folder.COLLECTION)
        if type is None:
            return sorted(folders, key=lambda f: f.name.lower())
        return sorted(
            (f for f in folders if f.type == type or (not f.type and type == FOLDER_CHAT)),
            key=lambda f: f.name.lower(),
        )

    # -------------------------------------------------------------------------
    # Direct mutations
    # -------------------------------------------------------------------------

    def _update(self, collection: str, id: str, **changes):
        """Apply field changes to one record and bump updated_at.

        Returns the updated record, or None if it does not exist. The record
        is written with a single put, so a failed write leaves it unchanged.
        """
        record = self._load(collection, id)
        if record is None:
            return None
        updated = replace(record, **changes, updated_at=utc_now())
        self._store.put(collection, updated)
        logger.info("Updated %s %s: %s", collection, id, ", ".join(sorted(changes)))
        return updated

    def update_conversation(self, id: str, **changes) -> Optional[Conversation]:
        return self._update(Conversation.COLLECTION, id, **changes)

    def toggle_favorite(self, id: str) -> Optional[Conversation]:
        chat = self._load(Conversation.COLLECTION, id)
        if chat is None:
            return None
        return self._update(Conversation.COLLECTION, id, is_favorite=not chat.is_favorite)

    def set_archived(self, id: str, archived: bool = True) -> Optional[Conversation]:
        """Archive or restore a conversation."""
        status = ChatStatus.ARCHIVED if archived else ChatStatus.ACTIVE
        return self._update(Conversation.COLLECTION, id, status=status.value)

    def update_memory(self, id: str, **changes) -> Optional[Memory]:
        return self._update(Memory.COLLECTION, id, **changes)

    def toggle_star(self, id: str) -> Optional[Memory]:
        memory = self._load(Memory.COLLECTION, id)
        if memory is None:
            return None
        return self._update(Memory.COLLECTION, id, is_starred=not memory.is_starred)

    def set_memory_archived(self, id: str, archived: bool = True) -> Optional[Memory]:
        return self._update(Memory.COLLECTION, id, is_archived=archived)

    def update_action_item(self, id: str, **changes) -> Optional[ActionItem]:
        return self._update(ActionItem.COLLECTION, id, **changes)

    def set_completed(self, id: str, completed: bool = True) -> Optional[ActionItem]:
        return self._update(ActionItem.COLLECTION, id, completed=completed)

    def set_tags(self, kind: str, id: str, tags: list[str]):
        """Replace the tags of one record."""
        return self._update(resolve_kind(kind), id, tags=_clean_tags(tags))

    def move_to_folder(self, kind: str, ids: list[str], folder_id: Optional[str]) -> int:
        """Move records into a folder (None removes them from any folder).

        Returns how many records were found and moved.
        """
        collection = resolve_kind(kind)
        if folder_id is not None:
            folder = self._load(Folder.COLLECTION, folder_id)
            if folder is None:
                raise ValueError(f"Folder not found: {folder_id}")
            expected = FOLDER_TYPE_FOR[collection]
            if (folder.type or FOLDER_CHAT) != expected:
                raise ValueError(
                    f"Folder {folder.name!r} holds {folder.type or FOLDER_CHAT} records, not {expected}"
                )
        moved = 0
        for id in ids:
            if self._update(collection, id, folder_id=folder_id) is not None:
                moved += 1
        return moved

    def delete_records(self, kind: str, ids: list[str]) -> int:
        """Delete records of one kind. Returns how many existed."""
        collection = resolve_kind(kind)
        deleted = self._store.bulk_delete(collection, ids)
        logger.info("Deleted %d of %d %s", deleted, len(ids), collection)
        return deleted

    # -------------------------------------------------------------------------
    # Folders
    # -------------------------------------------------------------------------

    def create_folder(self, name: str, type: str = FOLDER_CHAT) -> Folder:
        name = name.strip()
        if not name:
            raise ValueError("Folder name must not be empty")
        if type not in FOLDER_TYPES:
            raise ValueError(f"Folder type must be one of {', '.join(FOLDER_TYPES)} (got {type!r})")
        folder = Folder(
            id=new_id(),
            name=name,
            icon=FOLDER_ICONS[type],
            color=DEFAULT_FOLDER_COLOR,
            type=type,
        )
        self._store.put(Folder.COLLECTION, folder)
        logger.info("Created %s folder %s (%s)", type, folder.id, name)
        return folder

    def update_folder(
        self, id: str, *, name: Optional[str] = None, color: Optional[str] = None
    ) -> Optional[Folder]:
        folder = self._load(Folder.COLLECTION, id)
        if folder is None:
            return None
        changes = {}
        if name is not None:
            if not name.strip():
                raise ValueError("Folder name must not be empty")
            changes["name"] = name.strip()
        if color is not None:
            changes["color"] = color
        updated = replace(folder, **changes)
        self._store.put(Folder.COLLECTION, updated)
        return updated

    def delete_folder(self, id: str) -> bool:
        """Delete a folder. Records that referenced it keep their folder_id."""
        return self._store.delete(Folder.COLLECTION, id)

    # -------------------------------------------------------------------------
    # Bulk data management
    # -------------------------------------------------------------------------

    def clear_all(self) -> dict[str, int]:
        """Remove every conversation, memory, action item and folder."""
        logger.info("Clearing all data from local store")
        return {name: self._store.clear(name) for name in RECORD_TYPES}

    def generate_demo_data(self) -> dict[str, int]:
        """Add a handful of locally generated records of each kind."""
        now = utc_now()
        chats = [
            Conversation(
                id=new_id(),
                title=f"Demo Conversation {i + 1}",
                summary="This is a demo conversation generated locally.",
                preview_text="Demo preview...",
                created_at=now,
                updated_at=now,
                tags=["demo"],
                participants=["User", "Omi"],
                messages=[
                    Message(id="1", role="user", content="Hello, this is a demo message.", timestamp=now),
                    Message(id="2", role="assistant", content="Hi! This is a demo response.", timestamp=now),
                ],
            )
            for i in range(DEMO_COUNT)
        ]
        memories = [
            Memory(
                id=new_id(),
                title=f"Memory {i + 1}",
                content=f"This is a demo memory {i + 1}.",
                category="interesting",
                tags=["demo"],
                created_at=now,
                updated_at=now,
                manually_added=True,
            )
            for i in range(DEMO_COUNT)
        ]
        actions = [
            ActionItem(
                id=new_id(),
                description=f"Follow up on demo item {i + 1}",
                created_at=now,
                updated_at=now,
            )
            for i in range(DEMO_COUNT)
        ]
        self._store.bulk_put(Conversation.COLLECTION, chats)
        self._store.bulk_put(Memory.COLLECTION, memories)
        self._store.bulk_put(ActionItem.COLLECTION, actions)
        return {
            "conversations": len(chats),
            "memories": len(memories),
            "actionItems": len(actions),
        }

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def aclose(self) -> None:
        """Close the remote client (if one was opened) and the store."""
        if self._client is not None:
            await self._client.aclose()
        self.close()

    def close(self) -> None:
        """Close the store and detach the operations log."""
        self._store.close()
        detach_ops_log(self._ops_log_handler)
        self._ops_log_handler = None
