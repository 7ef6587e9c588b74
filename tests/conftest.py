"""
Shared pytest fixtures for omistash tests.

Provides an in-process fake of the remote API (served through
httpx.MockTransport) so sync tests never touch the network.
"""

from pathlib import Path

import httpx
import pytest

from omistash import remote
from omistash.api import Stash
from omistash.local_store import LocalStore
from omistash.remote import RemoteClient

API_URL = "https://api.example.com"
TOKEN = "test-token"

CONVERSATIONS = "/user/conversations"
MEMORIES = "/user/memories"
ACTION_ITEMS = "/user/action-items"


class FakeApi:
    """
    Paginated fake of the remote API.

    ``data`` maps endpoint paths to the full item list; each request is
    answered with the ``limit``/``offset`` slice. ``failures`` maps paths to
    an HTTP status returned instead.
    """

    def __init__(self):
        self.data: dict[str, list] = {}
        self.failures: dict[str, int] = {}
        self.requests: list[httpx.Request] = []
        self.transport = httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.headers.get("Authorization") != f"Bearer {TOKEN}":
            return httpx.Response(401, json={"detail": "Invalid token"})
        status = self.failures.get(path)
        if status:
            return httpx.Response(status, json={"detail": "boom"})
        if path not in self.data:
            return httpx.Response(404, json={"detail": "Not Found"})
        limit = int(request.url.params["limit"])
        offset = int(request.url.params["offset"])
        return httpx.Response(200, json=self.data[path][offset:offset + limit])

    def requests_for(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]


def raw_conversation(id, **overrides) -> dict:
    raw = {
        "id": id,
        "started_at": "2024-03-01T10:00:00Z",
        "finished_at": "2024-03-01T10:30:00Z",
        "structured": {"title": f"Chat {id}", "overview": f"Overview of {id}"},
        "transcript_segments": [
            {"text": "Hello there", "speaker": "SPEAKER_00", "speaker_id": 0, "is_user": True},
            {"text": "Hi!", "speaker": "SPEAKER_01", "speaker_id": 1, "is_user": False},
        ],
    }
    raw.update(overrides)
    return raw


def raw_memory(id, **overrides) -> dict:
    raw = {
        "id": id,
        "content": f"Memory {id}",
        "category": "interesting",
        "created_at": "2024-03-02T09:00:00Z",
    }
    raw.update(overrides)
    return raw


def raw_action_item(id, **overrides) -> dict:
    raw = {
        "id": id,
        "description": f"Do {id}",
        "completed": False,
        "created_at": "2024-03-03T08:00:00Z",
    }
    raw.update(overrides)
    return raw


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Keep the developer's environment out of config resolution."""
    for name in ("OMISTASH_STORE_PATH", "OMISTASH_API_URL", "OMISTASH_API_TOKEN",
                 "OMISTASH_TIMEZONE", "OMISTASH_VERBOSE"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    """Retry immediately instead of sleeping."""
    monkeypatch.setattr(remote, "RETRY_BACKOFF_BASE", 0.0)


@pytest.fixture
def store(tmp_path: Path):
    """A LocalStore in a temporary directory."""
    s = LocalStore(tmp_path / "test.db")
    yield s
    s.close()


@pytest.fixture
def fake_api():
    api = FakeApi()
    api.data = {CONVERSATIONS: [], MEMORIES: [], ACTION_ITEMS: []}
    return api


@pytest.fixture
def client(fake_api):
    return RemoteClient(API_URL, TOKEN, transport=fake_api.transport)


@pytest.fixture
def stash(tmp_path: Path, client):
    """A Stash with its own store directory, wired to the fake API."""
    s = Stash(tmp_path / "store", client=client)
    yield s
    s.close()
