"""
Pytest fixtures for shopsync tests.
"""

import asyncio
import itertools
import logging
import uuid
from typing import Any, Dict, List, Optional

import pytest

from shopsync.ids import IdempotencyKeyGenerator
from shopsync.storage import SQLiteBlobStorage
from shopsync.store import LocalStore
from shopsync.types import Bookmark, ServerSnapshot

T0 = 1_700_000_000_000


class FakeClock:
    """Deterministic millisecond clock."""

    def __init__(self, start: int = T0):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


def sequential_ids() -> IdempotencyKeyGenerator:
    counter = itertools.count(1)
    return IdempotencyKeyGenerator(factory=lambda: uuid.UUID(int=next(counter)))


def make_bookmark(url: str = "https://shop.example.com/p/1", title: str = "Linen shirt", **kwargs: Any) -> Bookmark:
    kwargs.setdefault("source", "Example Shop")
    return Bookmark(url=url, title=title, **kwargs)


class FakeTransport:
    """In-memory stand-in for SyncTransport.

    Each endpoint pops the next queued outcome: a ServerSnapshot to return,
    an exception to raise, or a callable producing either. ``gate`` (an
    asyncio.Event) holds every call until set.
    """

    def __init__(self):
        self.calls: List[Dict[str, Any]] = []
        self.outcomes: Dict[str, List[Any]] = {}
        self.gate: Optional[asyncio.Event] = None
        self.active = 0
        self.max_active = 0

    def queue(self, endpoint: str, *outcomes: Any) -> None:
        self.outcomes.setdefault(endpoint, []).extend(outcomes)

    async def _handle(self, endpoint: str, **details: Any) -> Any:
        self.calls.append({"endpoint": endpoint, **details})
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            queued = self.outcomes.get(endpoint) or []
            outcome = queued.pop(0) if queued else ServerSnapshot(server_timestamp=T0)
            if callable(outcome) and not isinstance(outcome, type):
                outcome = outcome()
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        finally:
            self.active -= 1

    def endpoints(self) -> List[str]:
        return [c["endpoint"] for c in self.calls]

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return None

    async def fetch_full(self, token):
        return await self._handle("fetch_full", token=token)

    async def fetch_delta(self, token, since):
        return await self._handle("fetch_delta", token=token, since=since)

    async def push(self, token, request):
        return await self._handle("push", token=token, request=request)

    async def delete_bookmark(self, token, url):
        return await self._handle("delete_bookmark", token=token, url=url)

    async def clear_history(self, token):
        return await self._handle("clear_history", token=token)

    async def delete_all_analytics(self, token):
        return await self._handle("delete_all_analytics", token=token)


async def static_token():
    return "tok-123"


async def no_token():
    return None


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    """In-memory store with tracking consent accepted."""
    s = LocalStore(now_fn=clock, id_generator=sequential_ids())
    s.set_consent("accepted")
    return s


@pytest.fixture
def pending_consent_store(clock):
    return LocalStore(now_fn=clock, id_generator=sequential_ids())


@pytest.fixture
def blob_storage(tmp_path):
    return SQLiteBlobStorage(tmp_path / "shopsync.db")


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep logs and credentials inside the test's tmp dir."""
    monkeypatch.setenv("SHOPSYNC_DATA_DIR", str(tmp_path / "home"))
    for var in ("SHOPSYNC_AUTH_TOKEN", "SHOPSYNC_USER_ID", "SHOPSYNC_BACKEND_URL"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def bookmark():
    """Factory for Bookmark records."""
    return make_bookmark


@pytest.fixture
def ids_factory():
    return sequential_ids


@pytest.fixture
def token_provider():
    return static_token


@pytest.fixture(autouse=True)
def clean_shopsync_logger():
    """Remove handlers added by setup_shopsync_logging before/after each test."""
    logger = logging.getLogger("shopsync")
    logger.handlers.clear()
    logger.setLevel(logging.WARNING)
    yield
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()
    logger.setLevel(logging.WARNING)
