"""
Sync orchestration: pull remote snapshots and merge them into the store.

Each resource type (conversations, memories, action items) is synced
independently and in that order. A resource sync pages through the remote
endpoint to exhaustion, normalizes each item, merges it with any stored
record of the same id, and upserts the result, page by page. A failure
aborts only the resource it happened in; the others still run and the
caller always gets a per-resource count summary.

Sync is additive: records missing from the remote snapshot are left alone.

Only one sync runs at a time per orchestrator. A call made while a sync is
in flight joins it and receives the same summary; its progress callback
gets the milestones still to come. Single-resource syncs wait for the
same lock, so two merges never touch the store at once.

Re-running a sync over an unchanged snapshot leaves every record
collection untouched. The ``sync_state`` bookkeeping rows are the
exception: they hold the time of each attempt, so they change on every
run unless the clock is fixed.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from .errors import StashError
from .local_store import LocalStore
from .merge import merge_record
from .normalize import (
    normalize_action_item,
    normalize_conversation,
    normalize_memory,
    record_id,
)
from .remote import RemoteClient
from .types import ActionItem, Conversation, Memory, SyncSummary, utc_now

logger = logging.getLogger(__name__)

SYNC_STATE_COLLECTION = "sync_state"

ProgressCallback = Callable[[str, int], None]


@dataclass(frozen=True)
class Resource:
    """A remote resource type and where it lands locally."""
    name: str
    collection: str
    path: str
    record_type: type
    progress_message: str
    progress_percent: int
    params: dict[str, str] = field(default_factory=dict)


RESOURCES = (
    Resource(
        "conversations", Conversation.COLLECTION, "/user/conversations", Conversation,
        "Syncing conversations...", 10, {"include_transcript": "true"},
    ),
    Resource(
        "memories", Memory.COLLECTION, "/user/memories", Memory,
        "Syncing memories...", 40,
    ),
    Resource(
        "action_items", ActionItem.COLLECTION, "/user/action-items", ActionItem,
        "Syncing action items...", 70,
    ),
)

RESOURCES_BY_NAME = {r.name: r for r in RESOURCES}


class SyncOrchestrator:
    """
    Pulls every resource type from the remote client into the local store.

    Example:
        orchestrator = SyncOrchestrator(store, client, timezone="Europe/Lisbon")
        summary = await orchestrator.sync()
        summary.to_dict()  # {"conversations": 12, "memories": 40, "actionItems": 3}
    """

    def __init__(
        self,
        store: LocalStore,
        client: RemoteClient,
        *,
        timezone: str = "UTC",
        page_size: int = 50,
        clock: Callable[[], str] = utc_now,
    ):
        self._store = store
        self._client = client
        self._timezone = timezone
        self._page_size = page_size
        self._clock = clock
        self._inflight: Optional[asyncio.Task] = None
        self._listeners: list[ProgressCallback] = []
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def sync(self, on_progress: Optional[ProgressCallback] = None) -> SyncSummary:
        """Sync all resource types. Never raises for resource-level failures."""
        if self.running:
            logger.info("Sync already in progress; joining it")
            if on_progress is not None:
                self._listeners.append(on_progress)
            return await asyncio.shield(self._inflight)

        self._listeners = [on_progress] if on_progress is not None else []
        task = asyncio.ensure_future(self._run())
        self._inflight = task
        try:
            return await task
        finally:
            if self._inflight is task:
                self._inflight = None
                self._listeners = []

    async def sync_resource(self, name: str) -> int:
        """Sync a single resource type. Errors propagate to the caller."""
        resource = RESOURCES_BY_NAME[name]
        summary = SyncSummary()
        async with self._lock:
            await self._sync_into(resource, summary)
        return getattr(summary, resource.name)

    async def _run(self) -> SyncSummary:
        async with self._lock:
            return await self._run_locked()

    def _report(self, message: str, percent: int) -> None:
        for callback in list(self._listeners):
            callback(message, percent)

    async def _run_locked(self) -> SyncSummary:
        summary = SyncSummary()
        self._report("Starting sync...", 0)
        for resource in RESOURCES:
            self._report(resource.progress_message, resource.progress_percent)
            try:
                await self._sync_into(resource, summary)
            except StashError as e:
                logger.error("Failed to sync %s: %s", resource.name, e)
                summary.errors[resource.name] = str(e)
            except Exception as e:
                logger.exception("Unexpected error syncing %s", resource.name)
                summary.errors[resource.name] = f"{type(e).__name__}: {e}"
            self._record_state(resource, summary)

        self._report("Sync complete!", 100)
        logger.info(
            "Sync finished: %d conversations, %d memories, %d action items%s",
            summary.conversations, summary.memories, summary.action_items,
            f" ({len(summary.errors)} failed)" if summary.errors else "",
        )
        return summary

    async def _sync_into(self, resource: Resource, summary: SyncSummary) -> None:
        """Page through one resource, merging as pages arrive.

        The count on ``summary`` is kept current so a failure part-way
        through still reports what was merged.
        """
        setattr(summary, resource.name, 0)
        async for page in self._client.iter_pages(
            resource.path, page_size=self._page_size, params=resource.params,
        ):
            merged = self._merge_page(resource, page)
            setattr(summary, resource.name, getattr(summary, resource.name) + merged)
            logger.debug(
                "Fetched %d %s so far", getattr(summary, resource.name), resource.name
            )

    def _normalize(self, resource: Resource, raw: dict, fallback_time: str):
        if resource.record_type is Conversation:
            return normalize_conversation(raw, fallback_time=fallback_time, tz=self._timezone)
        if resource.record_type is Memory:
            return normalize_memory(raw, fallback_time=fallback_time)
        return normalize_action_item(raw, fallback_time=fallback_time)

    def _merge_page(self, resource: Resource, page: list) -> int:
        merged = 0
        for raw in page:
            id = record_id(raw)
            if id is None:
                logger.warning("Skipping %s item without an id", resource.name)
                continue
            stored = self._store.get(resource.collection, id)
            existing = resource.record_type.from_dict(stored) if stored else None
            # Reuse the stored creation time when the remote omits one
            fallback = (existing.created_at if existing else "") or self._clock()
            fresh = self._normalize(resource, raw, fallback)
            self._store.put(resource.collection, merge_record(existing, fresh))
            merged += 1
        return merged

    def _record_state(self, resource: Resource, summary: SyncSummary) -> None:
        """Remember when each resource last synced and how it went."""
        now = self._clock()
        error = summary.errors.get(resource.name)
        try:
            previous = self._store.get(SYNC_STATE_COLLECTION, resource.name) or {}
            self._store.put(SYNC_STATE_COLLECTION, {
                "id": resource.name,
                "lastAttemptAt": now,
                "lastSuccessAt": previous.get("lastSuccessAt") if error else now,
                "count": getattr(summary, resource.name),
                "lastError": error,
            })
        except StashError as e:
            logger.warning("Could not record sync state for %s: %s", resource.name, e)
