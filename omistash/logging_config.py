"""
Logging configuration for omistash.

Library code only ever logs to module loggers under ``omistash``. This module
decides where those records go: nowhere by default in the CLI, stderr in
debug mode, and always a rotating operations log inside the store directory
so that past syncs and mutations can be audited.
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

OPS_LOG_FILENAME = "omistash-ops.log"
OPS_LOG_MAX_BYTES = 1_000_000
OPS_LOG_BACKUPS = 3

# Per-request chatter from the HTTP stack
_NOISY_LOGGERS = ("httpx", "httpcore")


def configure_quiet_mode(quiet: bool = True):
    """
    Keep HTTP client request lines and library warnings off the terminal.

    Args:
        quiet: If False, restore library defaults instead.
    """
    level = logging.WARNING if quiet else logging.NOTSET
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level)
    warnings.filterwarnings("ignore" if quiet else "default")


def enable_debug_mode():
    """Send DEBUG records from omistash and the HTTP stack to stderr."""
    configure_quiet_mode(quiet=False)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    has_stderr = any(
        isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stderr
        for h in root.handlers
    )
    if not has_stderr:
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)-7s %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        ))
        root.addHandler(handler)

    logging.getLogger("omistash").setLevel(logging.DEBUG)


def configure_ops_log(store_path) -> RotatingFileHandler:
    """Attach the store's operations log to the ``omistash`` logger.

    Records INFO and above (sync outcomes, migrations, local mutations) to
    {store_path}/omistash-ops.log regardless of --verbose. Pass the returned
    handler to ``detach_ops_log`` when the store is closed.
    """
    log_path = Path(store_path) / OPS_LOG_FILENAME
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=OPS_LOG_MAX_BYTES,
        backupCount=OPS_LOG_BACKUPS,
        encoding="utf-8",
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    logger = logging.getLogger("omistash")
    logger.addHandler(handler)
    if logger.level == logging.NOTSET or logger.level > logging.INFO:
        logger.setLevel(logging.INFO)
    return handler


def detach_ops_log(handler: Optional[logging.Handler]) -> None:
    """Remove and close a handler returned by ``configure_ops_log``."""
    if handler is None:
        return
    logging.getLogger("omistash").removeHandler(handler)
    handler.close()
