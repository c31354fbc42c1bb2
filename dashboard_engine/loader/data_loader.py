"""
Ouvidoria Dashboard — Data Loader
──────────────────────────────────
Turns "load this endpoint" into at most one in-flight HTTP request per
request signature, under a concurrency ceiling.

    load(url)
      ├─ Data Store hit ...................... return, no I/O
      ├─ same signature already in flight .... join that request
      └─ new request
           ├─ persistent (Redis) hit ......... warm Data Store, return
           ├─ wait for a slot (FIFO, "high" priority jumps the queue)
           ├─ GET with adaptive timeout, retry transient failures
           └─ write-through to the Data Store (and Redis for long TTLs)

The pending table holds tasks only, never payloads. Entries leave it as soon
as the request settles, success or failure.
"""

import asyncio
import hashlib
import json
import logging
import os
from collections import deque
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlencode

import httpx

from dashboard_engine.cache.data_store import MISSING, DataStore
from dashboard_engine.cache.ttl_config import PERSIST_MIN_TTL_MS, get_ttl, ms_to_seconds
from dashboard_engine.exceptions import (
    HTTPStatusLoadError, LoadError, LoadTimeoutError, RequestDroppedError,
)

log = logging.getLogger("dash.loader")

HEADERS = {
    "Accept":       "application/json",
    "Content-Type": "application/json",
}

# ── Concurrency ceiling ───────────────────────────────────────
MIN_CONCURRENT      = 4
MAX_CONCURRENT_CAP  = 12
FALLBACK_CONCURRENT = 6

# ── Adaptive timeouts (seconds) ───────────────────────────────
TIMEOUT_CONFIG: Dict[str, float] = {
    "/api/summary":        10,
    "/api/distinct":       10,
    "/api/health":         5,
    "/api/dashboard-data": 90,    # heavy aggregations
    "/api/aggregate":      60,
    "/api/stats":          60,
    "/api/sla":            90,
}
DEFAULT_TIMEOUT_S = 30

BACKOFF_BASE_S = 1.0

# ── /api/dashboard-data sections also cached under their own keys ─
DASHBOARD_ENDPOINT = "/api/dashboard-data"
DASHBOARD_SECTIONS: Dict[str, List[str]] = {
    "manifestationsByMonth":   ["manifestationsByMonth", "/api/aggregate/by-month"],
    "manifestationsByDay":     ["manifestationsByDay", "/api/aggregate/by-day"],
    "manifestationsByStatus":  ["manifestationsByStatus"],
    "manifestationsByTheme":   ["manifestationsByTheme", "/api/aggregate/by-theme"],
    "manifestationsBySubject": ["manifestationsBySubject", "/api/aggregate/by-subject"],
    "manifestationsByOrgan":   ["manifestationsByOrgan"],
}


def compute_max_concurrent(hint: Optional[int]) -> int:
    """hint - 2, kept within [MIN_CONCURRENT, MAX_CONCURRENT_CAP]."""
    if not hint or hint <= 0:
        return FALLBACK_CONCURRENT
    return max(MIN_CONCURRENT, min(MAX_CONCURRENT_CAP, hint - 2))


def get_adaptive_timeout(endpoint: str) -> float:
    for pattern, timeout in TIMEOUT_CONFIG.items():
        if pattern in endpoint:
            return timeout
    return DEFAULT_TIMEOUT_S


def backoff_delay(attempt: int, base: float = BACKOFF_BASE_S) -> float:
    return base * (2 ** attempt)


def request_signature(url: str, params: Optional[dict] = None,
                      method: str = "GET", body: Any = None) -> str:
    """Deterministic key for 'the same logical request'."""
    sig = url
    if params:
        query = urlencode(sorted(params.items(), key=lambda kv: str(kv[0])), doseq=True)
        sig = f"{url}{'&' if '?' in url else '?'}{query}"
    method = method.upper()
    if method != "GET":
        digest = hashlib.md5(json.dumps(body, sort_keys=True, default=str).encode()).hexdigest()[:12]
        sig = f"{method} {sig} #{digest}"
    return sig


def count_items(data: Any) -> int:
    if data is None:
        return 0
    if isinstance(data, list):
        return len(data)
    if isinstance(data, dict):
        for key in ("total", "count"):
            if isinstance(data.get(key), (int, float)) and not isinstance(data.get(key), bool):
                return int(data[key])
        return len(data)
    return 0


class DataLoader:

    def __init__(
        self,
        data_store: DataStore,
        base_url: str = "",
        client: Optional[httpx.AsyncClient] = None,
        max_concurrent: Optional[int] = None,
        persistent=None,
        retries: int = 1,
        backoff_base_s: float = BACKOFF_BASE_S,
        logger: Optional[logging.Logger] = None,
    ):
        self.data_store     = data_store
        self.base_url       = base_url
        self.persistent     = persistent
        self.retries        = retries
        self.backoff_base_s = backoff_base_s
        self.max_concurrent = max_concurrent or compute_max_concurrent(os.cpu_count())
        self.log = logger or log

        self._client = client
        self._owns_client = client is None
        self._pending: Dict[str, asyncio.Task] = {}
        self._queue: Deque[Tuple[str, asyncio.Future]] = deque()
        self._active = 0

    # ── HTTP client ───────────────────────────────────────────
    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=HEADERS,
                limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
                timeout=DEFAULT_TIMEOUT_S,
            )
            self._owns_client = True
        return self._client

    async def aclose(self):
        if self._client is not None and self._owns_client and not self._client.is_closed:
            await self._client.aclose()

    # ── Public API ────────────────────────────────────────────
    async def load(
        self,
        url: str,
        params: Optional[dict] = None,
        *,
        use_data_store: bool = True,
        ttl: Optional[int] = None,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
        priority: str = "normal",
        fallback: Any = None,
        deep_copy: Optional[bool] = None,
        cache_if: Optional[Callable[[Any], bool]] = None,
    ) -> Any:
        """
        Load `url` (GET). `ttl` is in milliseconds and defaults to the TTL
        table. Callers joining an in-flight request share its options.
        Raises LoadError unless `fallback` is given.
        """
        signature = request_signature(url, params)

        if use_data_store:
            cached = self.data_store.get(signature)
            if cached is not MISSING:
                self.log.debug(f"{signature}: served from data store")
                return cached

        task = self._pending.get(signature)
        if task is None:
            task = asyncio.ensure_future(self._execute(
                url, params, signature,
                ttl_ms=ttl if ttl is not None else get_ttl(url),
                timeout=timeout if timeout is not None else get_adaptive_timeout(url),
                retries=retries if retries is not None else self.retries,
                priority=priority,
                deep_copy=deep_copy,
                cache_if=cache_if,
            ))
            self._pending[signature] = task
            task.add_done_callback(lambda t, s=signature: self._forget(s, t))
        else:
            self.log.debug(f"{signature}: joining pending request")

        try:
            return await asyncio.shield(task)
        except LoadError as e:
            if fallback is not None:
                self.log.warning(f"{signature}: {e}, returning fallback")
                return fallback
            raise

    async def post(self, url: str, body: Any, *, timeout: Optional[float] = None,
                   retries: Optional[int] = None, priority: str = "normal") -> Any:
        """Uncached POST through the same slots and retry policy."""
        return await self._fetch_with_retry(
            "POST", url, json_body=body,
            timeout=timeout if timeout is not None else get_adaptive_timeout(url),
            retries=retries if retries is not None else self.retries,
            priority=priority,
        )

    async def load_many(self, urls: Iterable[str], **options) -> List[dict]:
        urls = list(urls)
        results = await asyncio.gather(
            *(self.load(u, **options) for u in urls), return_exceptions=True
        )
        out = []
        for url, result in zip(urls, results):
            failed = isinstance(result, BaseException)
            out.append({
                "endpoint": url,
                "data":     options.get("fallback") if failed else result,
                "error":    result if failed else None,
            })
        return out

    def get_queue_stats(self) -> dict:
        return {
            "active":         self._active,
            "queued":         len(self._queue),
            "max_concurrent": self.max_concurrent,
            "pending":        len(self._pending),
        }

    def clear_queue(self) -> int:
        """Drop queued requests that have not started. In-flight ones continue."""
        dropped = 0
        while self._queue:
            endpoint, waiter = self._queue.popleft()
            if not waiter.done():
                waiter.set_exception(RequestDroppedError(endpoint))
                dropped += 1
        self.log.info(f"Request queue cleared ({dropped} dropped)")
        return dropped

    def is_pending(self, url: str, params: Optional[dict] = None) -> bool:
        return request_signature(url, params) in self._pending

    # ── Internals ─────────────────────────────────────────────
    def _forget(self, signature: str, task: asyncio.Task):
        if self._pending.get(signature) is task:
            del self._pending[signature]
        if not task.cancelled():
            task.exception()   # mark retrieved; callers see it through shield()

    async def _execute(self, url, params, signature, *, ttl_ms, timeout,
                       retries, priority, deep_copy, cache_if):
        if self.persistent is not None and ttl_ms >= PERSIST_MIN_TTL_MS:
            stored = await self.persistent.get(signature)
            if stored is not None:
                self.log.debug(f"{signature}: served from persistent cache")
                self.data_store.set(signature, stored, deep=deep_copy, ttl=ttl_ms)
                return stored

        data = await self._fetch_with_retry(
            "GET", url, params=params, timeout=timeout, retries=retries, priority=priority,
        )

        if cache_if is not None and not cache_if(data):
            self.log.warning(f"{signature}: payload rejected by cache_if, not caching")
            self.data_store.clear(signature)
            return data

        self.data_store.set(signature, data, deep=deep_copy, ttl=ttl_ms)
        if url == DASHBOARD_ENDPOINT and isinstance(data, dict):
            self._fan_out_dashboard(data, deep_copy)
        if self.persistent is not None and ttl_ms >= PERSIST_MIN_TTL_MS:
            await self.persistent.set(signature, data, ms_to_seconds(ttl_ms))

        self.log.info(f"{signature}: {count_items(data)} items")
        return data

    def _fan_out_dashboard(self, data: dict, deep_copy: Optional[bool]):
        for section, keys in DASHBOARD_SECTIONS.items():
            if data.get(section) is None:
                continue
            for key in keys:
                self.data_store.set(key, data[section], deep=deep_copy)

    async def _acquire(self, endpoint: str, priority: str):
        if self._active < self.max_concurrent and not self._queue:
            self._active += 1
            return
        waiter = asyncio.get_running_loop().create_future()
        item = (endpoint, waiter)
        if priority == "high":
            self._queue.appendleft(item)
        else:
            self._queue.append(item)
        self.log.debug(f"{endpoint}: queued ({len(self._queue)} waiting)")
        try:
            await waiter     # slot is handed over by _release()
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled() and waiter.exception() is None:
                self._release()
            elif item in self._queue:
                self._queue.remove(item)
            raise

    def _release(self):
        while self._queue:
            _, waiter = self._queue.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self._active -= 1

    async def _fetch_with_retry(self, method: str, url: str, *, params=None, json_body=None,
                                timeout: float, retries: int, priority: str = "normal") -> Any:
        """Each attempt holds a slot; the backoff between attempts does not."""
        client = self._get_client()
        error: LoadError = LoadError(url, "no attempt made")
        for attempt in range(retries + 1):
            await self._acquire(url, priority)
            try:
                return await self._send(client, method, url, params, json_body, timeout)
            except (asyncio.TimeoutError, httpx.TimeoutException):
                error = LoadTimeoutError(url, timeout)
            except httpx.TransportError as e:
                error = LoadError(url, f"{type(e).__name__}: {e}")
            except HTTPStatusLoadError as e:
                if not e.transient:
                    self.log.error(str(e))
                    raise
                error = e
            finally:
                self._release()

            if attempt < retries:
                delay = backoff_delay(attempt, self.backoff_base_s)
                self.log.warning(
                    f"{url}: attempt {attempt + 1}/{retries + 1} failed ({error}), "
                    f"retrying in {delay:g}s"
                )
                await asyncio.sleep(delay)

        self.log.error(str(error))
        raise error

    async def _send(self, client: httpx.AsyncClient, method: str, url: str,
                    params, json_body, timeout: float) -> Any:
        # httpx and wait_for share the limit
        response = await asyncio.wait_for(
            client.request(method, url, params=params, json=json_body, timeout=timeout),
            timeout,
        )
        if response.status_code >= 400:
            raise HTTPStatusLoadError(url, response.status_code, response.reason_phrase)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise LoadError(url, f"invalid JSON body ({e})")
