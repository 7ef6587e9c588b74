"""
Configuration management for the local mirror.

The configuration is stored as a TOML file in the store directory. It holds
the remote API location and bearer token, and the sync settings. Environment
variables override the file.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import tomli_w


CONFIG_FILENAME = "omistash.toml"
CONFIG_VERSION = 1
DATABASE_FILENAME = "omistash.db"

DEFAULT_API_URL = "https://api.omi.me/v1/dev"
DEFAULT_TIMEZONE = "UTC"
DEFAULT_PAGE_SIZE = 50

_LOOPBACK_HOSTS = ("localhost", "127.0.0.1", "::1")


@dataclass
class RemoteConfig:
    """Where the remote service lives and how to authenticate."""
    api_url: str = DEFAULT_API_URL
    token: Optional[str] = None


@dataclass
class SyncConfig:
    timezone: str = DEFAULT_TIMEZONE
    page_size: int = DEFAULT_PAGE_SIZE


@dataclass
class StashConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def database_path(self) -> Path:
        return self.path / DATABASE_FILENAME

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def get_default_store_path() -> Path:
    """Store directory: OMISTASH_STORE_PATH or ~/.omistash."""
    env = os.environ.get("OMISTASH_STORE_PATH")
    if env:
        return Path(env).expanduser().resolve()
    return Path.home() / ".omistash"


def validate_api_url(api_url: str) -> str:
    """
    Refuse non-HTTPS API URLs unless they point at this machine.

    The bearer token would otherwise travel in cleartext.
    """
    api_url = api_url.rstrip("/")
    if not api_url.startswith("https://"):
        host = urlparse(api_url).hostname or ""
        if host not in _LOOPBACK_HOSTS:
            raise ValueError(
                f"API URL must use HTTPS (got {api_url}). "
                "Use HTTPS to protect the API token, or use localhost for local development."
            )
    return api_url


def apply_env_overrides(config: StashConfig) -> StashConfig:
    """Environment variables win over the file."""
    api_url = os.environ.get("OMISTASH_API_URL")
    if api_url:
        config.remote.api_url = api_url
    token = os.environ.get("OMISTASH_API_TOKEN")
    if token:
        config.remote.token = token
    tz = os.environ.get("OMISTASH_TIMEZONE")
    if tz:
        config.sync.timezone = tz
    return config


def load_config(store_path: Path) -> StashConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    # Validate version
    version = data.get("store", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    remote = data.get("remote", {})
    sync = data.get("sync", {})
    page_size = sync.get("page_size", DEFAULT_PAGE_SIZE)
    if not isinstance(page_size, int) or page_size < 1:
        raise ValueError(f"sync.page_size must be a positive integer (got {page_size!r})")

    return StashConfig(
        path=store_path,
        version=version,
        created=data.get("store", {}).get("created", ""),
        remote=RemoteConfig(
            api_url=remote.get("api_url", DEFAULT_API_URL),
            token=remote.get("token") or None,
        ),
        sync=SyncConfig(
            timezone=sync.get("timezone", DEFAULT_TIMEZONE),
            page_size=page_size,
        ),
    )


def save_config(config: StashConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist. The file holds the API token,
    so it is written owner-readable only.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    remote: dict = {"api_url": config.remote.api_url}
    if config.remote.token:
        remote["token"] = config.remote.token

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
        "remote": remote,
        "sync": {
            "timezone": config.sync.timezone,
            "page_size": config.sync.page_size,
        },
    }

    fd = os.open(config.config_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> StashConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management. Environment
    overrides are applied after loading and are never written back.
    """
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        config = load_config(store_path)
    else:
        config = StashConfig(path=store_path)
        save_config(config)
    return apply_env_overrides(config)
