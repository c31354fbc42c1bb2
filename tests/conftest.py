"""
Pytest configuration and shared fixtures for the dashboard engine tests.

HTTP is served by httpx.MockTransport; time-dependent caches get a FakeClock.
"""

from typing import Callable

import httpx
import pytest

from dashboard_engine.cache.data_store import DataStore
from dashboard_engine.context import DashboardContext, reset_context
from dashboard_engine.events import EventBus

BASE_URL = "http://dashboard.test"


class FakeClock:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeRedis:
    """Just enough of redis.asyncio.Redis for PersistentCache."""

    def __init__(self):
        self.data = {}
        self.ttls = {}

    async def ping(self):
        return True

    async def get(self, key):
        return self.data.get(key)

    async def setex(self, key, ttl, value):
        self.data[key] = value
        self.ttls[key] = ttl

    async def delete(self, key):
        self.data.pop(key, None)

    async def aclose(self):
        pass


def mock_client(handler: Callable) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)


def make_context(handler: Callable, **kwargs) -> DashboardContext:
    kwargs.setdefault("debounce_ms", 10)
    kwargs.setdefault("retries", 0)
    return DashboardContext(base_url=BASE_URL, client=mock_client(handler), **kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> DataStore:
    return DataStore(clock=clock)


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def fresh_context():
    """Install a context backed by a mock backend as the process-wide one."""
    requests = []

    async def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"total": 1, "rows": [{"id": 1}]})

    ctx = make_context(handler, debounce_ms=0)
    ctx.requests = requests
    previous = reset_context(ctx)
    yield ctx
    reset_context(previous)
