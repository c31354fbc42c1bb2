"""
Ouvidoria Dashboard — Filter Helper
────────────────────────────────────
POST /api/filter with the active filters, through the filter result cache,
recording each applied set in the history.
"""

import logging
from typing import Any, Callable, Iterable, List, Optional

from dashboard_engine.cache.filter_cache import FilterCache
from dashboard_engine.filters.history import FilterHistory

log = logging.getLogger("dash.filter_helper")

FILTER_ENDPOINT = "/api/filter"


def _as_dicts(filters: Iterable) -> List[dict]:
    return [f if isinstance(f, dict) else f.to_dict() for f in filters or []]


class FilterHelper:

    def __init__(self, loader, cache: Optional[FilterCache] = None,
                 history: Optional[FilterHistory] = None):
        self.loader  = loader
        self.cache   = cache
        self.history = history

    async def apply_filters(self, filters: Iterable, endpoint: str, force_refresh: bool = False,
                            transform: Optional[Callable[[Any], Any]] = None) -> Any:
        """Filtered rows for `endpoint`. No filters → []. Errors propagate."""
        active = _as_dicts(filters)
        if not active:
            return []

        if self.cache is not None and not force_refresh:
            cached = self.cache.get(active, endpoint)
            if cached is not None:
                log.debug(f"filterHelper: {endpoint} from cache")
                return cached

        try:
            data = await self.loader.post(
                FILTER_ENDPOINT, {"filters": active, "originalUrl": endpoint}
            )
        except Exception as e:
            log.error(f"filterHelper: failed to apply filters to {endpoint}: {e}")
            raise

        if transform is not None:
            data = transform(data)
        if self.cache is not None:
            self.cache.set(active, endpoint, data)
        if self.history is not None:
            self.history.save_recent(active)
        return data

    @staticmethod
    def collect_active_filters(global_filters=None, page_filters: Iterable = ()) -> List[dict]:
        """Global filters first, then the page's own."""
        collected = global_filters.to_api_filters() if global_filters is not None else []
        return collected + _as_dicts(page_filters)
