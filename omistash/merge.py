"""
Field-precedence merge between a stored record and a freshly synced one.

Each record kind names its local-authority fields explicitly. Those keep the
stored value; every other field comes from the fresh remote copy. Document
keys no record type declares are carried over from the stored record.

Merging is a pure function of (existing, fresh), which is what makes
re-running a sync over an unchanged snapshot a no-op.
"""

from dataclasses import replace

from .types import ActionItem, Conversation, Memory


def merge_conversation(existing: Conversation, fresh: Conversation) -> Conversation:
    """Remote content with local organization (folder, favorite, tags, status)."""
    return replace(
        fresh,
        folder_id=existing.folder_id,
        is_favorite=existing.is_favorite,
        tags=list(existing.tags or []),
        status=existing.status,
        extra=dict(existing.extra),
    )


def merge_memory(existing: Memory, fresh: Memory) -> Memory:
    """Remote content with local flags; tags are the union, local ones first."""
    tags = list(existing.tags or [])
    tags.extend(t for t in fresh.tags if t not in tags)
    return replace(
        fresh,
        is_starred=existing.is_starred,
        is_archived=existing.is_archived,
        folder_id=existing.folder_id,
        tags=tags,
        extra=dict(existing.extra),
    )


def merge_action_item(existing: ActionItem, fresh: ActionItem) -> ActionItem:
    """Tasks are local-owned once imported.

    The stored item is kept as-is; only a missing conversation link is
    filled in from the remote copy.
    """
    return replace(
        existing,
        conversation_id=existing.conversation_id or fresh.conversation_id,
    )


MERGERS = {
    Conversation: merge_conversation,
    Memory: merge_memory,
    ActionItem: merge_action_item,
}


def merge_record(existing, fresh):
    """Merge two records of the same kind. ``existing`` may be None."""
    if existing is None:
        return fresh
    if type(existing) is not type(fresh):
        raise TypeError(
            f"Cannot merge {type(existing).__name__} with {type(fresh).__name__}"
        )
    return MERGERS[type(fresh)](existing, fresh)
