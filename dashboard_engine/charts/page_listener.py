"""
Ouvidoria Dashboard — Page Filter Listeners
────────────────────────────────────────────
Wires a page's reload function to filter changes.

Each page gets one `filters:changed` subscription and its own Debouncer, so
a burst of changes reloads the page once. Pages reported invisible are
skipped. Loaders get one positional argument, `True`, asking for a forced
refresh. A failing loader is logged; the page stays connected and reloads
again on the next change.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

from dashboard_engine import config
from dashboard_engine.events import FILTERS_CHANGED, EventBus
from dashboard_engine.scheduling import Debouncer

log = logging.getLogger("dash.pages")

LoadFunction = Callable[..., Any]


@dataclass
class PageConfig:
    page_id:     str
    loader:      LoadFunction
    debounce_ms: Optional[float] = None
    is_visible:  Optional[Callable[[], bool]] = None


@dataclass
class _PageListener:
    config:      PageConfig
    debouncer:   Debouncer
    unsubscribe: Callable[[], None]
    reloads:     int = 0
    failures:    int = 0


class PageListenerRegistry:

    def __init__(self, bus: EventBus, logger: Optional[logging.Logger] = None):
        self.bus = bus
        self.log = logger or log
        self._pages: Dict[str, _PageListener] = {}

    def create_page_filter_listener(
        self,
        page: Union[str, PageConfig],
        load_function: Optional[LoadFunction] = None,
        debounce_ms: Optional[float] = None,
        is_visible: Optional[Callable[[], bool]] = None,
    ) -> Callable[[], None]:
        """
        Connect `page` to filter changes and return its disconnect function.
        Connecting an already-connected page changes nothing and returns the
        existing disconnect function.
        """
        if isinstance(page, PageConfig):
            cfg = page
        else:
            if load_function is None:
                raise ValueError(f"load_function is required for page '{page}'")
            cfg = PageConfig(page, load_function, debounce_ms, is_visible)

        existing = self._pages.get(cfg.page_id)
        if existing is not None:
            self.log.debug(f"Page {cfg.page_id} already connected, keeping existing listener")
            return existing.unsubscribe

        delay = config.PAGE_DEBOUNCE_MS if cfg.debounce_ms is None else cfg.debounce_ms
        debouncer = Debouncer(delay, lambda: self._reload(cfg.page_id), name=f"page:{cfg.page_id}")

        def on_change(_payload):
            if not self._visible(cfg):
                self.log.debug(f"Page {cfg.page_id} not visible, ignoring filter change")
                return
            debouncer.trigger()

        off = self.bus.on(FILTERS_CHANGED, on_change)

        def unsubscribe():
            off()
            debouncer.cancel()
            current = self._pages.get(cfg.page_id)
            if current is not None and current.debouncer is debouncer:
                del self._pages[cfg.page_id]

        self._pages[cfg.page_id] = _PageListener(cfg, debouncer, unsubscribe)
        self.log.debug(f"Page {cfg.page_id} connected to filter changes")
        return unsubscribe

    def auto_connect_pages(self, loaders: Dict[str, Optional[LoadFunction]]) -> int:
        """Connect every page that has a callable loader. Returns pages newly connected."""
        connected = 0
        for page_id, loader in loaders.items():
            if not callable(loader):
                continue
            if page_id in self._pages:
                continue
            self.create_page_filter_listener(page_id, loader)
            connected += 1
        self.log.info(f"{connected} pages connected to the filter system")
        return connected

    def is_registered(self, page_id: str) -> bool:
        return page_id in self._pages

    def registered_pages(self):
        return list(self._pages)

    def disconnect(self, page_id: str) -> bool:
        listener = self._pages.get(page_id)
        if listener is None:
            return False
        listener.unsubscribe()
        return True

    def stats(self, page_id: str) -> Optional[dict]:
        listener = self._pages.get(page_id)
        if listener is None:
            return None
        return {"reloads": listener.reloads, "failures": listener.failures,
                "pending": listener.debouncer.pending}

    # ── Reload ────────────────────────────────────────────────
    def _visible(self, cfg: PageConfig) -> bool:
        if cfg.is_visible is None:
            return True
        try:
            return bool(cfg.is_visible())
        except Exception as e:
            self.log.warning(f"Page {cfg.page_id}: visibility check failed ({e}), assuming visible")
            return True

    def _reload(self, page_id: str):
        listener = self._pages.get(page_id)
        if listener is None:
            return None
        listener.reloads += 1
        self.log.debug(f"Filters changed, reloading {page_id}")
        try:
            result = listener.config.loader(True)
        except Exception as e:
            listener.failures += 1
            self.log.error(f"Page {page_id}: reload failed: {e!r}")
            return None
        if asyncio.iscoroutine(result):
            return self._await_reload(listener, result)
        return None

    async def _await_reload(self, listener: _PageListener, coro):
        try:
            await coro
        except Exception as e:
            listener.failures += 1
            self.log.error(f"Page {listener.config.page_id}: reload failed: {e!r}")
