"""
Data types for the local mirror.

Records are plain dataclasses with snake_case attributes. They are persisted
as camelCase JSON documents, which is also the shape the presentation layer
consumes.
"""

import uuid
from dataclasses import MISSING, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


class ChatStatus(str, Enum):
    """Conversation status.

    DELETED is part of the persisted vocabulary but nothing assigns it;
    deletion is always a hard delete from the store.
    """
    ACTIVE = "active"
    ARCHIVED = "archived"
    DELETED = "deleted"


# Folder types, one per record kind
FOLDER_CHAT = "chat"
FOLDER_MEMORY = "memory"
FOLDER_ACTION_ITEM = "action_item"
FOLDER_TYPES = (FOLDER_CHAT, FOLDER_MEMORY, FOLDER_ACTION_ITEM)

MESSAGE_ROLES = ("user", "assistant", "system")


def utc_now() -> str:
    """Current UTC timestamp in ISO-8601 with millisecond precision and 'Z'."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def new_id() -> str:
    """Identifier for a purely local record."""
    return str(uuid.uuid4())


def parse_timestamp(ts: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp to an aware datetime.

    Naive timestamps are taken as UTC. Returns None for empty or
    unparseable input.
    """
    if not ts or not isinstance(ts, str):
        return None
    try:
        dt = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def get_zone(name: Optional[str]) -> ZoneInfo:
    """Resolve an IANA timezone name, falling back to UTC."""
    if not name:
        return ZoneInfo("UTC")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def local_date(ts: Optional[str], tz: Optional[str] = None) -> str:
    """Calendar date (YYYY-MM-DD) of a timestamp in the given timezone.

    Returns an empty string for empty/invalid input.
    """
    dt = parse_timestamp(ts)
    if dt is None:
        return ""
    return dt.astimezone(get_zone(tz)).strftime("%Y-%m-%d")


# Holds document keys a record type does not declare
EXTRA_FIELD = "extra"


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


class _Document:
    """camelCase dict conversion shared by every persisted type.

    Subclasses list nested dataclass fields in ``_nested`` (for a list
    field the type is wrapped in a one-element list). A subclass that
    declares an ``extra`` field keeps document keys it does not know
    about there, and writes them back out unchanged.

    Required string fields missing from a stored document load as "".
    """

    _nested: dict[str, Any] = {}

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for f in fields(self):
            if f.name == EXTRA_FIELD:
                continue
            value = getattr(self, f.name)
            if isinstance(value, _Document):
                value = value.to_dict()
            elif isinstance(value, list):
                value = [v.to_dict() if isinstance(v, _Document) else v for v in value]
            out[_camel(f.name)] = value
        extra = getattr(self, EXTRA_FIELD, None)
        if extra:
            out = {**extra, **out}
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]):
        kwargs: dict[str, Any] = {}
        known = set()
        for f in fields(cls):
            if f.name == EXTRA_FIELD:
                continue
            key = _camel(f.name)
            known.add(key)
            if key not in data:
                if f.default is MISSING and f.default_factory is MISSING:
                    kwargs[f.name] = ""
                continue
            value = data[key]
            nested = cls._nested.get(f.name)
            if nested is not None and value is not None:
                if isinstance(nested, list):
                    value = [nested[0].from_dict(v) for v in value if isinstance(v, dict)]
                elif isinstance(value, dict):
                    value = nested.from_dict(value)
                else:
                    value = None
            kwargs[f.name] = value
        if any(f.name == EXTRA_FIELD for f in fields(cls)):
            kwargs[EXTRA_FIELD] = {k: v for k, v in data.items() if k not in known}
        return cls(**kwargs)


@dataclass
class Message(_Document):
    """One transcript segment of a conversation."""
    id: str
    role: str
    content: str
    timestamp: str
    speaker_id: Optional[str] = None
    start: Optional[float] = None
    end: Optional[float] = None


@dataclass
class Geolocation(_Document):
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    locality: Optional[str] = None
    address: Optional[str] = None
    google_place_id: Optional[str] = None


@dataclass
class Conversation(_Document):
    """A mirrored conversation.

    Local-authority fields: folder_id, is_favorite, tags, status.
    Everything else is owned by the remote source.
    """
    id: str
    title: str
    summary: str
    created_at: str
    updated_at: str
    preview_text: str = ""
    messages: list[Message] = field(default_factory=list)
    status: str = ChatStatus.ACTIVE.value
    is_favorite: bool = False
    folder_id: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    participants: list[str] = field(default_factory=list)
    source: Optional[str] = None
    language: Optional[str] = None
    geolocation: Optional[Geolocation] = None
    discarded: bool = False
    extra: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    COLLECTION = "chats"
    _nested = {"messages": [Message], "geolocation": Geolocation}

    @property
    def favorite(self) -> bool:
        return bool(self.is_favorite)

    @property
    def archived(self) -> bool:
        return self.status == ChatStatus.ARCHIVED.value

    def search_fields(self) -> list[str]:
        return [self.title or "", self.summary or "", *(self.tags or [])]


@dataclass
class Memory(_Document):
    """A mirrored memory.

    Local-authority fields: is_starred, folder_id, is_archived, and any tags
    added locally on top of the remote tag seeds.
    """
    id: str
    content: str
    created_at: str
    updated_at: str
    title: Optional[str] = None
    category: str = "manual"
    visibility: str = "private"
    tags: list[str] = field(default_factory=list)
    is_starred: bool = False
    is_archived: bool = False
    folder_id: Optional[str] = None
    manually_added: bool = False
    scoring: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    COLLECTION = "memories"

    @property
    def favorite(self) -> bool:
        return bool(self.is_starred)

    @property
    def archived(self) -> bool:
        return bool(self.is_archived)

    def search_fields(self) -> list[str]:
        return [self.title or "", self.content or "", *(self.tags or [])]


@dataclass
class ActionItem(_Document):
    """A mirrored task. Fully local-owned once imported."""
    id: str
    description: str
    created_at: str
    updated_at: str
    completed: bool = False
    details: Optional[str] = None
    due_date: Optional[str] = None
    conversation_id: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    folder_id: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    COLLECTION = "action_items"

    @property
    def favorite(self) -> bool:
        return False

    @property
    def archived(self) -> bool:
        return False

    def search_fields(self) -> list[str]:
        return [self.description or "", self.details or "", *(self.tags or [])]


@dataclass
class Folder(_Document):
    """A purely local grouping of records of one kind."""
    id: str
    name: str
    icon: str
    color: Optional[str] = None
    type: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    COLLECTION = "folders"


# Record class per collection name
RECORD_TYPES = {
    Conversation.COLLECTION: Conversation,
    Memory.COLLECTION: Memory,
    ActionItem.COLLECTION: ActionItem,
    Folder.COLLECTION: Folder,
}

# Folder type used to group each kind
FOLDER_TYPE_FOR = {
    Conversation.COLLECTION: FOLDER_CHAT,
    Memory.COLLECTION: FOLDER_MEMORY,
    ActionItem.COLLECTION: FOLDER_ACTION_ITEM,
}


@dataclass
class SyncSummary:
    """Outcome of one full sync: per-resource counts plus any errors."""
    conversations: int = 0
    memories: int = 0
    action_items: int = 0
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, int]:
        return {
            "conversations": self.conversations,
            "memories": self.memories,
            "actionItems": self.action_items,
        }
