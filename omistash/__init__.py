"""
Omistash

A local-first mirror of the conversations, memories and action items held
in a remote Omi account, with purely local organization on top: folders,
favorites, stars, tags, archiving and completion.

Quick Start:
    import asyncio
    from omistash import Stash, RecordFilter

    stash = Stash()  # uses ~/.omistash/
    asyncio.run(stash.sync())
    favorites = stash.list_conversations(RecordFilter(favorite=True))

CLI Usage:
    omistash configure --token <token>
    omistash sync
    omistash list conversations --tag work --since 2024-03-01

Environment Variables:
    OMISTASH_STORE_PATH   - Override default store location
    OMISTASH_API_URL      - Remote API base URL
    OMISTASH_API_TOKEN    - Bearer token for the remote API
    OMISTASH_TIMEZONE     - Timezone for calendar-date display and filters
    OMISTASH_VERBOSE      - Set to 1 for debug logging in the CLI

Sync never deletes: records removed remotely stay in the local store until
deleted locally.
"""

from .api import Stash
from .errors import StashError, StoreError, SyncError
from .query import RecordFilter
from .types import ActionItem, Conversation, Folder, Memory, SyncSummary

__version__ = "0.1.0"
__all__ = [
    "Stash",
    "RecordFilter",
    "Conversation",
    "Memory",
    "ActionItem",
    "Folder",
    "SyncSummary",
    "StashError",
    "StoreError",
    "SyncError",
]
