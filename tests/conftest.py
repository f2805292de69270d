# =============================================================================
# tests/conftest.py
# Pytest configuration and shared fixtures
# =============================================================================

import asyncio
import copy
import io
import itertools
from collections.abc import Callable
from typing import Any

import httpx
import pytest
from PIL import Image

from cropcare.api.backend import ChangeFeed
from cropcare.api.functions import FunctionsClient
from cropcare.config import Config
from cropcare.core.subscription import Subscription
from cropcare.storage.cache import LocalCache
from cropcare.storage.queue import PendingQueue
from cropcare.storage.translations import TranslationStore
from cropcare.sync.network import NetworkMonitor

FUNCTIONS_URL = "https://project.test/functions/v1"


# =============================================================================
# CLOCK
# =============================================================================


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


# =============================================================================
# BACKEND
# =============================================================================


class FakeBackend:
    """In-memory stand-in for the managed backend.

    Failures are injected per operation with ``fail``; ``target`` is matched as a
    substring of the table name, or of ``bucket/path`` for storage calls.
    """

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.storage: dict[str, bytes] = {}
        self.calls: list[tuple[str, str]] = []
        self.feeds: list[ChangeFeed] = []
        self._rules: list[dict[str, Any]] = []
        self._ids = itertools.count(1)
        self.gate: asyncio.Event | None = None

    def fail(self, operation: str, error: Exception, target: str | None = None, times: int | None = None) -> None:
        self._rules.append({"operation": operation, "error": error, "target": target, "times": times})

    def _check(self, operation: str, key: str) -> None:
        self.calls.append((operation, key))
        for rule in self._rules:
            if rule["operation"] != operation or (rule["target"] is not None and rule["target"] not in key):
                continue
            if rule["times"] is not None:
                if rule["times"] <= 0:
                    continue
                rule["times"] -= 1
            raise rule["error"]

    def rows(self, table: str) -> list[dict[str, Any]]:
        return self.tables.setdefault(str(table), [])

    @staticmethod
    def _matches(row: dict[str, Any], match: dict[str, Any] | None) -> bool:
        return all(row.get(key) == value for key, value in (match or {}).items())

    async def insert(self, table: str, values: dict[str, Any]) -> dict[str, Any]:
        self._check("insert", str(table))
        if self.gate is not None:
            await self.gate.wait()
        row = {"id": f"row-{next(self._ids)}", **copy.deepcopy(values)}
        self.rows(table).append(row)
        return copy.deepcopy(row)

    async def update(self, table: str, match: dict[str, Any], values: dict[str, Any]) -> list[dict[str, Any]]:
        self._check("update", str(table))
        updated = []
        for row in self.rows(table):
            if self._matches(row, match):
                row.update(copy.deepcopy(values))
                updated.append(copy.deepcopy(row))
        return updated

    async def delete(self, table: str, match: dict[str, Any]) -> None:
        self._check("delete", str(table))
        self.tables[str(table)] = [row for row in self.rows(table) if not self._matches(row, match)]

    async def select(
        self,
        table: str,
        match: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        self._check("select", str(table))
        rows = [copy.deepcopy(row) for row in self.rows(table) if self._matches(row, match)]
        if order_by:
            rows.sort(key=lambda row: str(row.get(order_by) or ""), reverse=descending)
        return rows[:limit] if limit is not None else rows

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str = "image/jpeg") -> None:
        key = f"{bucket}/{path}"
        self._check("upload", key)
        if key in self.storage:
            raise AssertionError(f"object overwritten: {key}")
        self.storage[key] = data

    async def create_signed_url(self, bucket: str, path: str, ttl: int) -> str:
        self._check("sign", f"{bucket}/{path}")
        return f"https://project.test/storage/v1/object/sign/{bucket}/{path}?expires={ttl}"

    async def remove(self, bucket: str, paths: list[str]) -> None:
        for path in paths:
            self._check("remove", f"{bucket}/{path}")
            self.storage.pop(f"{bucket}/{path}", None)

    async def subscribe(self, table: str, filter: str | None = None) -> ChangeFeed:
        self._check("subscribe", str(table))
        feed: ChangeFeed = Subscription()
        self.feeds.append(feed)
        return feed

    async def aclose(self) -> None:
        for feed in self.feeds:
            await feed.close()


@pytest.fixture
def backend():
    return FakeBackend()


# =============================================================================
# SERVERLESS FUNCTIONS
# =============================================================================


@pytest.fixture
def make_functions() -> Callable[[Callable[[httpx.Request], httpx.Response]], FunctionsClient]:
    """Build a functions client whose requests are answered by ``handler``."""

    def factory(handler: Callable[[httpx.Request], httpx.Response]) -> FunctionsClient:
        return FunctionsClient(FUNCTIONS_URL, "test-token", api_key="anon-key", transport=httpx.MockTransport(handler))

    return factory


# =============================================================================
# LOCAL STORAGE
# =============================================================================


@pytest.fixture
def config(tmp_path):
    return Config(
        supabase_url="https://project.test",
        supabase_anon_key="anon-key",
        user_id="user-1",
        data_dir=tmp_path,
        delivery_sent_delay=0,
        delivery_delivered_delay=0,
    )


@pytest.fixture
def cache(tmp_path, clock):
    store = LocalCache(tmp_path, clock=clock)
    yield store
    store.close()


@pytest.fixture
def queue(tmp_path, clock):
    store = PendingQueue(tmp_path, clock=clock)
    yield store
    store.close()


@pytest.fixture
def translation_store(tmp_path):
    store = TranslationStore(tmp_path)
    yield store
    store.close()


@pytest.fixture
def monitor():
    return NetworkMonitor(online=True)


# =============================================================================
# IMAGES
# =============================================================================


def make_image(width: int = 640, height: int = 480, image_format: str = "JPEG", noise: bool = False) -> bytes:
    """Encode a synthetic image; noise makes it hard to compress."""
    if noise:
        image = Image.merge("RGB", [Image.effect_noise((width, height), 80) for _ in range(3)])
    else:
        image = Image.new("RGB", (width, height), (34, 139, 34))
    buffer = io.BytesIO()
    save_kwargs = {"quality": 95} if image_format == "JPEG" else {}
    image.save(buffer, format=image_format, **save_kwargs)
    return buffer.getvalue()


@pytest.fixture
def image_factory():
    return make_image


@pytest.fixture
def leaf_jpeg():
    return make_image()
