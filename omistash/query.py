"""
In-memory filtering and ordering of record lists.

Every view works the same way: load the full collection, apply a
RecordFilter, render. Nothing here holds state, so results are safe to
recompute whenever the underlying records change.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Iterable, Optional, Sequence

from .types import local_date, parse_timestamp

NEWEST = "newest"
OLDEST = "oldest"

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class RecordFilter:
    """
    Conjunctive filter over records of any kind.

    A field left at None (or an empty query) does not constrain the result.
    Dates are inclusive YYYY-MM-DD bounds on ``created_at``, compared as
    calendar dates in ``timezone``.
    """
    status: Optional[str] = None
    favorite: Optional[bool] = None
    archived: Optional[bool] = None
    completed: Optional[bool] = None
    folder_id: Optional[str] = None
    tag: Optional[str] = None
    query: str = ""
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    order: str = NEWEST
    timezone: Optional[str] = None

    def __post_init__(self):
        if self.order not in (NEWEST, OLDEST):
            raise ValueError(f"order must be '{NEWEST}' or '{OLDEST}' (got {self.order!r})")
        for bound in (self.start_date, self.end_date):
            if bound is not None:
                date.fromisoformat(bound)


def matches(record, criteria: RecordFilter) -> bool:
    """True if the record satisfies every active predicate of ``criteria``."""
    if criteria.status is not None and getattr(record, "status", None) != criteria.status:
        return False
    if criteria.favorite is not None and record.favorite != criteria.favorite:
        return False
    if criteria.archived is not None and record.archived != criteria.archived:
        return False
    if criteria.completed is not None and getattr(record, "completed", None) != criteria.completed:
        return False
    if criteria.folder_id is not None and record.folder_id != criteria.folder_id:
        return False
    if criteria.tag is not None and criteria.tag not in (record.tags or []):
        return False

    query = criteria.query.strip().lower()
    if query and not any(query in text.lower() for text in record.search_fields()):
        return False

    if criteria.start_date or criteria.end_date:
        day = local_date(record.created_at, criteria.timezone)
        if not day:
            return False
        if criteria.start_date and day < criteria.start_date:
            return False
        if criteria.end_date and day > criteria.end_date:
            return False

    return True


def sort_records(records: Iterable, order: str = NEWEST) -> list:
    """Order by creation time; ties broken by id for a stable result."""
    def key(record):
        return (parse_timestamp(record.created_at) or _EPOCH, record.id)
    return sorted(records, key=key, reverse=(order == NEWEST))


def filter_records(records: Iterable, criteria: Optional[RecordFilter] = None) -> list:
    """Filter then sort. The input is not modified."""
    criteria = criteria or RecordFilter()
    return sort_records((r for r in records if matches(r, criteria)), criteria.order)


def collect_tags(records: Sequence) -> list[str]:
    """Sorted distinct tags across records."""
    return sorted({t for r in records for t in (r.tags or [])})
