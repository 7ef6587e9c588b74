"""
Map raw remote items onto local record types.

Remote schemas are loose: fields go missing, change type, or arrive under
alternate names. Normalization never raises. Missing values get safe
defaults, and a missing creation time falls back to the ``fallback_time``
supplied by the caller.
"""

from typing import Any, Optional

from .types import (
    ActionItem,
    ChatStatus,
    Conversation,
    Geolocation,
    Memory,
    Message,
    local_date,
    parse_timestamp,
)

SUMMARY_SEGMENTS = 3
SUMMARY_MAX_CHARS = 300
MEMORY_TITLE_MAX_CHARS = 60

NO_SUMMARY = "No summary available"
UNTITLED_CONVERSATION = "Untitled Conversation"
UNTITLED_MEMORY = "Untitled Memory"
NO_CONTENT = "_No content available_"
DEFAULT_ACTION_DESCRIPTION = "Action Item"


def _text(value: Any) -> Optional[str]:
    """Non-empty string or None."""
    if isinstance(value, str) and value.strip():
        return value
    return None


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    return None


def _dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _string_list(value: Any) -> list[str]:
    """Coerce a tag-ish value to a list of non-empty strings."""
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return []
    return [v for v in value if isinstance(v, str) and v]


def _unique(values) -> list[str]:
    seen: dict[str, None] = {}
    for v in values:
        seen.setdefault(v, None)
    return list(seen)


def record_id(raw: Any) -> Optional[str]:
    """The remote id of a raw item, as a string, or None if unusable."""
    if not isinstance(raw, dict):
        return None
    value = raw.get("id")
    if isinstance(value, bool) or value is None or value == "":
        return None
    if isinstance(value, (str, int)):
        return str(value)
    return None


def _segment_to_message(seg: dict, index: int, timestamp: str) -> Message:
    is_user = (
        seg.get("is_user") is True
        or (seg.get("speaker_id") == 0 and not isinstance(seg.get("speaker_id"), bool))
        or seg.get("speaker") == "SPEAKER_00"
    )
    speaker_id = seg.get("speaker_id")
    if speaker_id is not None and not isinstance(speaker_id, bool):
        speaker = str(speaker_id)
    else:
        speaker = _text(seg.get("speaker"))
    return Message(
        id=_text(seg.get("id")) or f"seg_{index}",
        role="user" if is_user else "assistant",
        content=seg.get("text") if isinstance(seg.get("text"), str) else "",
        timestamp=timestamp,
        speaker_id=speaker,
        start=_number(seg.get("start")),
        end=_number(seg.get("end")),
    )


def _geolocation(value: Any) -> Optional[Geolocation]:
    geo = _dict(value)
    if not geo:
        return None
    return Geolocation(
        latitude=_number(geo.get("latitude")),
        longitude=_number(geo.get("longitude")),
        locality=_text(geo.get("locality")),
        address=_text(geo.get("address")),
        google_place_id=_text(geo.get("google_place_id")),
    )


def derive_summary(messages: list[Message]) -> str:
    """Summary built from the opening transcript segments."""
    text = " ".join(m.content for m in messages[:SUMMARY_SEGMENTS])[:SUMMARY_MAX_CHARS]
    if len(text) >= SUMMARY_MAX_CHARS:
        text += "..."
    return text


def normalize_conversation(
    raw: dict, *, fallback_time: str, tz: Optional[str] = None
) -> Optional[Conversation]:
    """Build a Conversation from a raw remote conversation.

    Returns None only when the item has no usable id.
    """
    id = record_id(raw)
    if id is None:
        return None

    structured = _dict(raw.get("structured"))
    started = _text(raw.get("started_at"))
    created = _text(raw.get("created_at"))
    finished = _text(raw.get("finished_at"))

    title = _text(structured.get("title"))
    if title is None:
        title = (
            f"Conversation {local_date(started, tz)}"
            if parse_timestamp(started) else UNTITLED_CONVERSATION
        )

    tags = _string_list(structured.get("category"))

    timestamp = started or created or fallback_time
    segments = raw.get("transcript_segments")
    messages = []
    if isinstance(segments, list):
        messages = [
            _segment_to_message(seg, i, timestamp)
            for i, seg in enumerate(segments) if isinstance(seg, dict)
        ]

    summary = _text(structured.get("overview")) or ""
    if not summary and messages:
        summary = derive_summary(messages)
    if not summary:
        summary = NO_SUMMARY

    return Conversation(
        id=id,
        title=title,
        summary=summary,
        preview_text=summary,
        created_at=started or created or fallback_time,
        updated_at=finished or started or created or fallback_time,
        messages=messages,
        status=ChatStatus.ACTIVE.value,
        is_favorite=False,
        folder_id=None,
        tags=tags,
        source=_text(raw.get("source")),
        language=_text(raw.get("language")),
        geolocation=_geolocation(raw.get("geolocation")),
        discarded=raw.get("discarded") is True,
    )


def memory_title(content: str) -> str:
    """Display title from the first line of a memory."""
    title = content.split("\n")[0][:MEMORY_TITLE_MAX_CHARS]
    if len(title) >= MEMORY_TITLE_MAX_CHARS:
        title = title[:MEMORY_TITLE_MAX_CHARS - 3] + "..."
    return title or UNTITLED_MEMORY


def normalize_memory(raw: dict, *, fallback_time: str) -> Optional[Memory]:
    """Build a Memory from a raw remote memory.

    The remote API does not reliably return a creation time for memories;
    several alternate fields are tried before ``fallback_time``.
    """
    id = record_id(raw)
    if id is None:
        return None

    content = _text(raw.get("content")) or NO_CONTENT
    category = _text(raw.get("category"))
    tags = _unique([*([category] if category else []), *_string_list(raw.get("tags"))])

    structured = _dict(raw.get("structured"))
    created = (
        _text(raw.get("created_at"))
        or _text(raw.get("started_at"))
        or _text(raw.get("date"))
        or _text(structured.get("date"))
        or _text(structured.get("created_at"))
        or _text(structured.get("started_at"))
        or fallback_time
    )

    scoring = raw.get("scoring")
    return Memory(
        id=id,
        title=memory_title(content),
        content=content,
        category=category or "manual",
        visibility=_text(raw.get("visibility")) or "private",
        tags=tags,
        created_at=created,
        updated_at=_text(raw.get("updated_at")) or created,
        is_starred=False,
        is_archived=False,
        folder_id=None,
        manually_added=raw.get("manually_added") is True,
        scoring=str(scoring) if scoring is not None else None,
    )


def normalize_action_item(raw: dict, *, fallback_time: str) -> Optional[ActionItem]:
    """Build an ActionItem from a raw remote action item.

    Completion is true when the flag is set or a completion time exists.
    """
    id = record_id(raw)
    if id is None:
        return None

    completed_at = _text(raw.get("completed_at"))
    return ActionItem(
        id=id,
        description=_text(raw.get("description")) or DEFAULT_ACTION_DESCRIPTION,
        completed=raw.get("completed") is True or completed_at is not None,
        created_at=_text(raw.get("created_at")) or fallback_time,
        updated_at=_text(raw.get("updated_at")) or completed_at or fallback_time,
        due_date=_text(raw.get("due_at")),
        conversation_id=_text(raw.get("conversation_id")),
    )
