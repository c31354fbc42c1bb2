"""
Ouvidoria Dashboard — Data Store
─────────────────────────────────
The only cache of resolved API payloads.

  - Entries expire at `now + ttl` fixed at write time; reads past the
    deadline behave as a miss and drop the entry (lazy expiry).
  - Copy policy: payloads whose JSON form is under ~5KB are shallow-copied,
    larger ones are deep-copied. Deep-copied entries are handed out as
    deep copies too, so a consumer mutating its result never changes what
    the next get() sees. Shallow entries share nested objects with callers.
  - Subscribers of a key (or of "*") are told about every set/clear.
"""

import copy
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Union

from dashboard_engine.cache.ttl_config import get_default_ttl, get_ttl

log = logging.getLogger("dash.data_store")

MISSING = object()          # absent marker for get()
ALL_KEYS = "*"

COPY_THRESHOLD_BYTES = 5 * 1024

Subscriber = Callable[[Any, str], None]


@dataclass
class CacheEntry:
    key:        str
    value:      Any
    expires_at: float       # clock() seconds
    deep:       bool
    stored_at:  float

    def is_live(self, now: float) -> bool:
        return now < self.expires_at


def payload_size(value: Any) -> Optional[int]:
    """Serialised size in bytes, or None if the payload is not JSON-able."""
    try:
        return len(json.dumps(value, default=str).encode("utf-8"))
    except (TypeError, ValueError) as e:
        log.debug(f"payload_size: not serialisable ({e})")
        return None


class DataStore:

    def __init__(
        self,
        default_ttl_ms: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        copy_threshold_bytes: int = COPY_THRESHOLD_BYTES,
        logger: Optional[logging.Logger] = None,
    ):
        self.default_ttl_ms = default_ttl_ms if default_ttl_ms is not None else get_default_ttl()
        self.copy_threshold = copy_threshold_bytes
        self._clock   = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._subscribers: Dict[str, Set[Subscriber]] = {}
        self.log = logger or log

    # ── Reads ─────────────────────────────────────────────────
    def get(self, key: str, default: Any = MISSING) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default
        if not entry.is_live(self._clock()):
            del self._entries[key]
            self.log.debug(f"{key}: expired")
            return default
        return copy.deepcopy(entry.value) if entry.deep else entry.value

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not MISSING

    def ttl_remaining_ms(self, key: str) -> Optional[int]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        remaining = entry.expires_at - self._clock()
        return int(remaining * 1000) if remaining > 0 else None

    # ── Writes ────────────────────────────────────────────────
    def set(self, key: str, value: Any, deep: Optional[bool] = None,
            ttl: Optional[int] = None) -> bool:
        """
        Store `value` under `key` for `ttl` ms (resolved from the TTL table
        when not given). `deep=None` lets the payload size decide.
        """
        if not isinstance(key, str) or not key.strip():
            self.log.warning("DataStore.set: key must be a non-empty string")
            return False

        stored, is_deep = self._copy_for_store(key, value, deep)
        ttl_ms = ttl if ttl is not None else get_ttl(key)
        now = self._clock()
        self._entries[key] = CacheEntry(
            key=key, value=stored, expires_at=now + ttl_ms / 1000,
            deep=is_deep, stored_at=now,
        )
        self.log.debug(f"{key}: stored ({'deep' if is_deep else 'shallow'}, ttl={ttl_ms}ms)")
        self._notify(key, self.get(key, None))
        return True

    def _copy_for_store(self, key: str, value: Any, deep: Optional[bool]):
        if value is None or isinstance(value, (str, int, float, bool)):
            return value, False
        if deep is None:
            size = payload_size(value)
            if size is None:
                return value, False
            deep = size >= self.copy_threshold
        try:
            return (copy.deepcopy(value), True) if deep else (copy.copy(value), False)
        except Exception as e:
            self.log.warning(f"{key}: copy failed ({e}), storing reference")
            return value, False

    def clear(self, key: Optional[str] = None):
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)
        self._notify(key or ALL_KEYS, None)

    def invalidate(self, keys: Union[None, str, Iterable[str]] = None) -> int:
        """Drop one key, several keys or (None) everything. Returns count removed."""
        if keys is None:
            count = len(self._entries)
            self.clear()
            return count
        if isinstance(keys, str):
            keys = [keys]
        count = 0
        for key in keys:
            if isinstance(key, str) and key in self._entries:
                self.clear(key)
                count += 1
        return count

    def clear_expired(self) -> int:
        now = self._clock()
        dead = [k for k, e in self._entries.items() if not e.is_live(now)]
        for k in dead:
            del self._entries[k]
        if dead:
            self.log.debug(f"Swept {len(dead)} expired entries")
        return len(dead)

    # ── Subscriptions ─────────────────────────────────────────
    def subscribe(self, key: str, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.setdefault(key, set()).add(callback)

        def unsubscribe():
            subs = self._subscribers.get(key)
            if subs is None:
                return
            subs.discard(callback)
            if not subs:
                del self._subscribers[key]

        return unsubscribe

    def _notify(self, key: str, value: Any):
        targets = list(self._subscribers.get(key, ()))
        if key != ALL_KEYS:
            targets += list(self._subscribers.get(ALL_KEYS, ()))
        for callback in targets:
            try:
                callback(value, key)
            except Exception as e:
                self.log.error(f"DataStore subscriber error for {key}: {e!r}")

    # ── Introspection ─────────────────────────────────────────
    def get_default_ttl(self) -> int:
        return self.default_ttl_ms

    def keys(self) -> List[str]:
        now = self._clock()
        return [k for k, e in self._entries.items() if e.is_live(now)]

    def get_stats(self) -> dict:
        now = self._clock()
        return {
            "cache_size":      len(self._entries),
            "live":            sum(1 for e in self._entries.values() if e.is_live(now)),
            "deep_copied":     sum(1 for e in self._entries.values() if e.deep),
            "listeners_count": sum(len(s) for s in self._subscribers.values()),
            "keys":            list(self._entries),
        }
