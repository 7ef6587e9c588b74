"""
Exception types and error logging for omistash.

Logs full stack traces for debugging while the CLI shows clean messages.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path


class StashError(Exception):
    """Base class for omistash errors."""


class StoreError(StashError):
    """Local storage could not be opened, read or written."""


class UnknownCollectionError(StoreError):
    """Operation addressed a collection the schema does not declare."""


class SyncError(StashError):
    """A resource sync could not complete."""


class AuthorizationError(SyncError):
    """Missing or rejected bearer credential."""


class TransportError(SyncError):
    """HTTP error status or network failure while fetching a page."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(TransportError):
    """The remote endpoint does not exist."""


def _error_log_path() -> Path:
    """Resolve error log path, respecting OMISTASH_STORE_PATH."""
    store = os.environ.get("OMISTASH_STORE_PATH")
    if store:
        return Path(store) / "omistash-errors.log"
    return Path.home() / ".omistash" / "omistash-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # never fail the command over the error log
    return log_path
