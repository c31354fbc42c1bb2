"""
Ouvidoria Dashboard — Context
──────────────────────────────
Composition root. One DashboardContext owns one of each collaborator, all
sharing the same Event Bus and Data Store:

    bus ─┬─ filters (GlobalFilters) ── invalidates ──▶ store
         ├─ charts  (ChartRegistry)
         ├─ pages   (PageListenerRegistry)
         └─ loader  (DataLoader) ── reads/writes ──▶ store [+ Redis]

get_context() hands out the process-wide instance; tests and the server
build their own or call reset_context().
"""

import logging
from typing import Callable, Iterable, Optional

import httpx

from dashboard_engine import config
from dashboard_engine.cache.data_store import DataStore
from dashboard_engine.cache.filter_cache import FilterCache
from dashboard_engine.cache.redis_client import PersistentCache
from dashboard_engine.charts import ChartRegistry, PageListenerRegistry
from dashboard_engine.events import EventBus
from dashboard_engine.filters import (
    OUVIDORIA_FIELDS, CrossfilterAdapter, FilterHelper, FilterHistory, GlobalFilters,
)
from dashboard_engine.loader.data_loader import DataLoader

log = logging.getLogger("dash.context")


class DashboardContext:

    def __init__(
        self,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        persistent: Optional[PersistentCache] = None,
        debounce_ms: Optional[float] = None,
        max_concurrent: Optional[int] = None,
        retries: Optional[int] = None,
        allowed_fields: Optional[Iterable[str]] = None,
        store: Optional[DataStore] = None,
    ):
        self.bus     = EventBus(logger=logging.getLogger("dash.event_bus"))
        self.store   = store if store is not None else DataStore()
        self.filters = GlobalFilters(
            self.bus, debounce_ms=debounce_ms, data_store=self.store,
            allowed_fields=OUVIDORIA_FIELDS if allowed_fields is None else allowed_fields,
        )
        self.loader  = DataLoader(
            self.store,
            base_url=config.API_BASE_URL if base_url is None else base_url,
            client=client,
            max_concurrent=max_concurrent if max_concurrent is not None else config.MAX_CONCURRENT,
            persistent=persistent,
            retries=config.REQUEST_RETRIES if retries is None else retries,
        )
        self.charts       = ChartRegistry(self.bus)
        self.pages        = PageListenerRegistry(self.bus)
        self.filter_cache = FilterCache()
        self.history      = FilterHistory()
        self.helper       = FilterHelper(self.loader, self.filter_cache, self.history)
        self.persistent   = persistent
        self._adapters = []

    def crossfilter(self, page_name: str, fields: Optional[Iterable[str]] = None,
                    on_data: Optional[Callable] = None) -> CrossfilterAdapter:
        adapter = CrossfilterAdapter(self, page_name, fields=fields, on_data=on_data).init()
        self._adapters.append(adapter)
        return adapter

    def sweep(self) -> dict:
        """Drop expired entries from both in-memory caches."""
        swept = {
            "data_store":   self.store.clear_expired(),
            "filter_cache": self.filter_cache.clear_expired(),
        }
        if any(swept.values()):
            log.info(f"Cache sweep: {swept}")
        return swept

    async def aclose(self):
        for adapter in self._adapters:
            adapter.destroy()
        self._adapters = []
        self.loader.clear_queue()
        await self.loader.aclose()
        if self.persistent is not None:
            await self.persistent.aclose()


# ── Process-wide instance ─────────────────────────────────────
_context: Optional[DashboardContext] = None


def get_context() -> DashboardContext:
    global _context
    if _context is None:
        persistent = PersistentCache(config.REDIS_URL) if config.REDIS_URL else None
        _context = DashboardContext(persistent=persistent)
    return _context


def reset_context(context: Optional[DashboardContext] = None) -> Optional[DashboardContext]:
    """Replace the process-wide instance. Returns the previous one."""
    global _context
    previous, _context = _context, context
    return previous
