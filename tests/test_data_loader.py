"""
Unit tests for the Data Loader.

Tests cover:
- In-flight request deduplication
- Data Store write-through and reads
- Retry, timeout and fallback behaviour
- Concurrency ceiling, priority and queue management
- Persistent (Redis) second tier
"""

import asyncio
import json

import httpx
import pytest

from dashboard_engine.cache.data_store import MISSING, DataStore
from dashboard_engine.cache.redis_client import PersistentCache
from dashboard_engine.exceptions import (
    HTTPStatusLoadError, LoadError, LoadTimeoutError, RequestDroppedError,
)
from dashboard_engine.loader import DataLoader, compute_max_concurrent, request_signature

from .conftest import BASE_URL, FakeRedis, mock_client


class FakePersistent:
    def __init__(self):
        self.data = {}
        self.ttls = {}

    async def get(self, signature):
        return self.data.get(signature)

    async def set(self, signature, value, ttl_s):
        self.data[signature] = value
        self.ttls[signature] = ttl_s
        return True


def counting_handler(calls, payload=None, delay=0.0, status=200):
    async def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if delay:
            await asyncio.sleep(delay)
        return httpx.Response(status, json=payload if payload is not None else {"total": 7})
    return handler


class TestHelpers:
    """Tests for module-level helpers."""

    @pytest.mark.parametrize("hint,expected", [
        (None, 6), (0, 6), (1, 4), (4, 4), (8, 6), (14, 12), (64, 12),
    ])
    def test_compute_max_concurrent(self, hint, expected):
        assert compute_max_concurrent(hint) == expected

    def test_signature_ignores_param_order(self):
        assert request_signature("/api/x", {"b": 2, "a": 1}) == "/api/x?a=1&b=2"
        assert request_signature("/api/x", {"a": 1, "b": 2}) == request_signature("/api/x", {"b": 2, "a": 1})

    def test_signature_without_params_is_url(self):
        assert request_signature("/api/summary") == "/api/summary"

    def test_signature_distinguishes_post_bodies(self):
        a = request_signature("/api/filter", method="POST", body={"filters": [1]})
        b = request_signature("/api/filter", method="POST", body={"filters": [2]})

        assert a.startswith("POST /api/filter #")
        assert a != b


class TestDeduplication:
    """Tests for in-flight request sharing."""

    def test_concurrent_loads_share_one_request(self):
        calls = []

        async def scenario():
            loader = DataLoader(DataStore(), client=mock_client(counting_handler(calls, delay=0.02)))
            results = await asyncio.gather(*(loader.load("/api/summary") for _ in range(5)))
            pending_after = loader.is_pending("/api/summary")
            again = await loader.load("/api/summary")
            return results, pending_after, again

        results, pending_after, again = asyncio.run(scenario())

        assert len(calls) == 1
        assert results == [{"total": 7}] * 5
        assert pending_after is False
        assert again == {"total": 7}

    def test_different_params_are_different_requests(self):
        calls = []

        async def scenario():
            loader = DataLoader(DataStore(), client=mock_client(counting_handler(calls)))
            await asyncio.gather(
                loader.load("/api/distinct", {"field": "Tema"}),
                loader.load("/api/distinct", {"field": "Status"}),
            )
            await loader.load("/api/distinct", {"field": "Tema"})

        asyncio.run(scenario())

        assert len(calls) == 2
        assert {c.url.params["field"] for c in calls} == {"Tema", "Status"}

    def test_failure_reaches_every_joiner_and_is_not_cached(self):
        calls = []

        async def scenario():
            loader = DataLoader(DataStore(), client=mock_client(
                counting_handler(calls, delay=0.01, status=500)), retries=0)
            results = await asyncio.gather(
                loader.load("/api/summary"), loader.load("/api/summary"),
                return_exceptions=True,
            )
            pending_after = loader.is_pending("/api/summary")
            with pytest.raises(HTTPStatusLoadError):
                await loader.load("/api/summary")
            return results, pending_after

        results, pending_after = asyncio.run(scenario())

        assert all(isinstance(r, HTTPStatusLoadError) and r.status == 500 for r in results)
        assert pending_after is False
        assert len(calls) == 2


class TestStoreIntegration:
    """Tests for Data Store reads and writes."""

    def test_write_through_and_bypass(self):
        calls = []
        store = DataStore()

        async def scenario():
            loader = DataLoader(store, client=mock_client(counting_handler(calls)))
            await loader.load("/api/summary")
            await loader.load("/api/summary")
            await loader.load("/api/summary", use_data_store=False)

        asyncio.run(scenario())

        assert len(calls) == 2
        assert store.get("/api/summary") == {"total": 7}

    def test_dashboard_sections_fan_out(self):
        store = DataStore()
        payload = {
            "manifestationsByMonth":  [{"month": "2025-01", "count": 3}],
            "manifestationsByStatus": [{"status": "Aberto", "count": 2}],
            "manifestationsByTheme":  None,
        }

        async def scenario():
            loader = DataLoader(store, client=mock_client(counting_handler([], payload=payload)))
            await loader.load("/api/dashboard-data")

        asyncio.run(scenario())

        assert store.get("/api/aggregate/by-month") == [{"month": "2025-01", "count": 3}]
        assert store.get("manifestationsByStatus") == [{"status": "Aberto", "count": 2}]
        assert store.get("manifestationsByTheme") is MISSING

    def test_cache_if_rejects_payload(self):
        store = DataStore()

        async def scenario():
            loader = DataLoader(store, client=mock_client(counting_handler([], payload={"total": 0})))
            return await loader.load("/api/summary", cache_if=lambda d: bool(d.get("total")))

        assert asyncio.run(scenario()) == {"total": 0}
        assert store.get("/api/summary") is MISSING

    def test_explicit_ttl(self, clock):
        store = DataStore(clock=clock)

        async def scenario():
            loader = DataLoader(store, client=mock_client(counting_handler([])))
            await loader.load("/api/summary", ttl=60_000)

        asyncio.run(scenario())
        clock.advance(30)

        assert store.get("/api/summary") == {"total": 7}


class TestErrors:
    """Tests for retry, timeout and fallback."""

    def test_transient_status_is_retried(self):
        responses = [httpx.Response(503), httpx.Response(200, json=["ok"])]
        calls = []

        async def handler(request):
            calls.append(request)
            return responses.pop(0)

        async def scenario():
            loader = DataLoader(DataStore(), client=mock_client(handler), retries=1, backoff_base_s=0)
            return await loader.load("/api/summary")

        assert asyncio.run(scenario()) == ["ok"]
        assert len(calls) == 2

    def test_client_error_is_not_retried(self):
        calls = []

        async def scenario():
            loader = DataLoader(DataStore(), client=mock_client(counting_handler(calls, status=404)),
                                retries=3, backoff_base_s=0)
            with pytest.raises(HTTPStatusLoadError) as exc:
                await loader.load("/api/missing")
            return exc.value

        error = asyncio.run(scenario())
        assert error.status == 404
        assert not error.transient
        assert len(calls) == 1

    def test_fallback_returned_on_failure(self):
        async def scenario():
            loader = DataLoader(DataStore(), client=mock_client(counting_handler([], status=404)))
            return await loader.load("/api/missing", fallback=[])

        assert asyncio.run(scenario()) == []

    def test_timeout(self):
        async def scenario():
            loader = DataLoader(DataStore(), client=mock_client(counting_handler([], delay=0.5)))
            with pytest.raises(LoadTimeoutError) as exc:
                await loader.load("/api/slow", timeout=0.01, retries=0)
            return exc.value

        assert asyncio.run(scenario()).timeout == 0.01

    def test_adaptive_timeout_reaches_the_http_client(self):
        seen = {}

        async def handler(request):
            seen[request.url.path] = request.extensions["timeout"]["read"]
            return httpx.Response(200, json={})

        async def scenario():
            client = httpx.AsyncClient(
                transport=httpx.MockTransport(handler), base_url=BASE_URL, timeout=0.5,
            )
            loader = DataLoader(DataStore(), client=client, retries=0)
            await loader.load("/api/dashboard-data")
            await loader.load("/api/sla/resumo")
            await loader.load("/api/summary", timeout=2.5)
            await loader.post("/api/aggregate/by-month", {"filters": []})
            await client.aclose()

        asyncio.run(scenario())

        assert seen == {
            "/api/dashboard-data":      90,
            "/api/sla/resumo":          90,
            "/api/summary":             2.5,
            "/api/aggregate/by-month":  60,
        }

    def test_transport_error(self):
        async def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async def scenario():
            loader = DataLoader(DataStore(), client=mock_client(handler), retries=0)
            with pytest.raises(LoadError) as exc:
                await loader.load("/api/summary")
            return exc.value

        assert "ConnectError" in str(asyncio.run(scenario()))

    def test_invalid_json(self):
        async def handler(request):
            return httpx.Response(200, content=b"<html>not json</html>")

        async def scenario():
            loader = DataLoader(DataStore(), client=mock_client(handler), retries=0)
            with pytest.raises(LoadError, match="invalid JSON"):
                await loader.load("/api/summary")

        asyncio.run(scenario())

    def test_empty_body_is_none(self):
        async def handler(request):
            return httpx.Response(204)

        async def scenario():
            loader = DataLoader(DataStore(), client=mock_client(handler))
            return await loader.load("/api/summary")

        assert asyncio.run(scenario()) is None


class TestQueue:
    """Tests for the concurrency ceiling and queue management."""

    def test_ceiling_queue_stats_and_clear_queue(self):
        async def scenario():
            gate = asyncio.Event()

            async def handler(request):
                await gate.wait()
                return httpx.Response(200, json=[1])

            loader = DataLoader(DataStore(), client=mock_client(handler), max_concurrent=2)
            tasks = [asyncio.ensure_future(loader.load(f"/api/stats/{i}")) for i in range(4)]
            await asyncio.sleep(0.01)
            during = loader.get_queue_stats()
            dropped = loader.clear_queue()
            gate.set()
            results = await asyncio.gather(*tasks, return_exceptions=True)
            return during, dropped, results, loader.get_queue_stats()

        during, dropped, results, after = asyncio.run(scenario())

        assert during == {"active": 2, "queued": 2, "max_concurrent": 2, "pending": 4}
        assert dropped == 2
        assert results[:2] == [[1], [1]]
        assert all(isinstance(r, RequestDroppedError) for r in results[2:])
        assert after == {"active": 0, "queued": 0, "max_concurrent": 2, "pending": 0}

    def test_high_priority_jumps_queue(self):
        order = []

        async def scenario():
            gate = asyncio.Event()

            async def handler(request):
                order.append(request.url.path)
                if request.url.path == "/api/a":
                    await gate.wait()
                return httpx.Response(200, json={})

            loader = DataLoader(DataStore(), client=mock_client(handler), max_concurrent=1)
            first = asyncio.ensure_future(loader.load("/api/a"))
            await asyncio.sleep(0.01)
            normal = asyncio.ensure_future(loader.load("/api/b"))
            high = asyncio.ensure_future(loader.load("/api/c", priority="high"))
            await asyncio.sleep(0.01)
            gate.set()
            await asyncio.gather(first, normal, high)

        asyncio.run(scenario())

        assert order == ["/api/a", "/api/c", "/api/b"]

    def test_slot_is_free_during_retry_backoff(self):
        order = []
        responses = {"/api/a": [httpx.Response(503), httpx.Response(200, json={})]}

        async def handler(request):
            order.append(request.url.path)
            queued = responses.get(request.url.path)
            return queued.pop(0) if queued else httpx.Response(200, json={})

        async def scenario():
            loader = DataLoader(DataStore(), client=mock_client(handler), max_concurrent=1,
                                retries=1, backoff_base_s=0.1)
            first = asyncio.ensure_future(loader.load("/api/a"))
            await asyncio.sleep(0.02)
            during = loader.get_queue_stats()["active"]
            second = await loader.load("/api/b")
            await first
            return during, second

        during, second = asyncio.run(scenario())

        assert during == 0
        assert second == {}
        assert order == ["/api/a", "/api/b", "/api/a"]

    def test_clear_empty_queue(self):
        loader = DataLoader(DataStore(), max_concurrent=3)
        assert loader.clear_queue() == 0
        assert loader.get_queue_stats()["max_concurrent"] == 3


class TestPostAndBatch:
    """Tests for post() and load_many()."""

    def test_post_sends_json_and_is_not_cached(self):
        bodies = []

        async def handler(request):
            assert request.method == "POST"
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"rows": []})

        async def scenario():
            loader = DataLoader(DataStore(), client=mock_client(handler))
            body = {"filters": [{"field": "tema", "op": "eq", "value": "Saneamento"}]}
            await loader.post("/api/filter", body)
            return await loader.post("/api/filter", body)

        assert asyncio.run(scenario()) == {"rows": []}
        assert len(bodies) == 2
        assert bodies[0]["filters"][0]["value"] == "Saneamento"

    def test_load_many_reports_each_endpoint(self):
        async def handler(request):
            if request.url.path == "/api/broken":
                return httpx.Response(500)
            return httpx.Response(200, json={"ok": True})

        async def scenario():
            loader = DataLoader(DataStore(), client=mock_client(handler), retries=0)
            return await loader.load_many(["/api/summary", "/api/broken"])

        ok, broken = asyncio.run(scenario())

        assert ok == {"endpoint": "/api/summary", "data": {"ok": True}, "error": None}
        assert broken["data"] is None
        assert isinstance(broken["error"], HTTPStatusLoadError)


class TestPersistentTier:
    """Tests for the Redis-backed second tier."""

    def test_long_lived_payloads_survive_a_fresh_store(self):
        calls = []
        persistent = FakePersistent()

        async def scenario():
            first = DataLoader(DataStore(), client=mock_client(counting_handler(calls, payload=["Centro"])),
                               persistent=persistent)
            await first.load("/api/distritos")
            await first.load("/api/summary")

            second_store = DataStore()
            second = DataLoader(second_store, client=mock_client(counting_handler(calls)),
                                persistent=persistent)
            data = await second.load("/api/distritos")
            return data, second_store

        data, second_store = asyncio.run(scenario())

        assert data == ["Centro"]
        assert second_store.get("/api/distritos") == ["Centro"]
        assert persistent.ttls == {"/api/distritos": 1800}
        assert len(calls) == 2

    def test_persistent_cache_over_redis(self):
        fake = FakeRedis()

        async def scenario():
            cache = PersistentCache("redis://unused", client=fake)
            assert await cache.set("/api/distritos", ["Centro"], 1800) is True
            value = await cache.get("/api/distritos")
            await cache.delete("/api/distritos")
            return value, await cache.get("/api/distritos")

        value, after_delete = asyncio.run(scenario())

        assert value == ["Centro"]
        assert after_delete is None
        assert fake.ttls == {"dashboard_cache:/api/distritos": 1800}

    def test_persistent_cache_without_redis_is_noop(self):
        async def scenario():
            cache = PersistentCache("")
            return await cache.get_redis(), await cache.get("k"), await cache.set("k", 1, 10)

        assert asyncio.run(scenario()) == (None, None, False)
