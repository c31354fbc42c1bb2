"""
Ouvidoria Dashboard — Filter Result Cache
──────────────────────────────────────────
Caches /api/filter results per (filter set, endpoint) so switching back to a
previous selection does not hit the backend again.

The key ignores filter order: the same selection built in a different click
order maps to the same entry.
"""

import hashlib
import json
import logging
import re
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

log = logging.getLogger("dash.filter_cache")

DEFAULT_TTL_MS = 5 * 60 * 1000

TTL_BY_ENDPOINT: Dict[str, int] = {
    "/api/stats/tempo-medio":     10 * 60 * 1000,
    "/api/aggregate/by-theme":    5 * 60 * 1000,
    "/api/aggregate/by-subject":  5 * 60 * 1000,
    "/api/aggregate/by-month":    10 * 60 * 1000,
}


def _as_dict(f) -> dict:
    return f if isinstance(f, dict) else f.to_dict()


def filter_cache_key(filters: Iterable, endpoint: str) -> str:
    items = [_as_dict(f) for f in (filters or [])]
    slug = re.sub(r"[^a-zA-Z0-9]", "_", endpoint)
    if not items:
        return f"{endpoint}_no-filters"
    ordered = sorted(
        items,
        key=lambda f: (str(f.get("field")), str(f.get("op", "eq")), json.dumps(f.get("value"), default=str)),
    )
    digest = hashlib.md5(
        json.dumps({"filters": ordered, "endpoint": endpoint}, sort_keys=True, default=str).encode()
    ).hexdigest()
    return f"filter_{digest}_{slug}"


def endpoint_ttl(endpoint: str) -> int:
    for pattern, ttl in TTL_BY_ENDPOINT.items():
        if pattern in endpoint:
            return ttl
    return DEFAULT_TTL_MS


class FilterCache:

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, dict] = {}   # key -> {data, ts, ttl, endpoint}

    def get(self, filters: Iterable, endpoint: str) -> Optional[Any]:
        key = filter_cache_key(filters, endpoint)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._expired(entry):
            del self._entries[key]
            log.debug(f"FilterCache: expired for {endpoint}")
            return None
        log.debug(f"FilterCache: hit for {endpoint}")
        return entry["data"]

    def set(self, filters: Iterable, endpoint: str, data: Any, ttl: Optional[int] = None):
        key = filter_cache_key(filters, endpoint)
        self._entries[key] = {
            "data":     data,
            "ts":       self._clock(),
            "ttl":      ttl or endpoint_ttl(endpoint),
            "endpoint": endpoint,
        }

    def invalidate(self, endpoint: Optional[str] = None) -> int:
        if endpoint is None:
            removed = len(self._entries)
            self._entries.clear()
        else:
            dead = [k for k, e in self._entries.items() if e["endpoint"] == endpoint]
            for k in dead:
                del self._entries[k]
            removed = len(dead)
        log.debug(f"FilterCache: invalidated {removed} entries ({endpoint or 'all'})")
        return removed

    def clear_expired(self) -> int:
        dead = [k for k, e in self._entries.items() if self._expired(e)]
        for k in dead:
            del self._entries[k]
        return len(dead)

    def get_stats(self) -> dict:
        now = self._clock()
        entries: List[dict] = [
            {"key": k[:50], "age_ms": int((now - e["ts"]) * 1000), "expired": self._expired(e)}
            for k, e in self._entries.items()
        ]
        return {
            "total":   len(entries),
            "expired": sum(1 for e in entries if e["expired"]),
            "entries": entries,
        }

    def _expired(self, entry: dict) -> bool:
        return (self._clock() - entry["ts"]) * 1000 > entry["ttl"]
