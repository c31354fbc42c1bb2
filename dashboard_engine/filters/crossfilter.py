"""
Ouvidoria Dashboard — Crossfilter Adapter
──────────────────────────────────────────
Per-page glue: chart clicks on the page's own fields toggle global filters,
and every filter change re-queries /api/filter/aggregated for the page.

Several values on one field travel as a single `op: "in"` filter.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from dashboard_engine.events import CHART_CLICK, DATA_UPDATED, FILTERS_CHANGED

log = logging.getLogger("dash.crossfilter")

AGGREGATED_ENDPOINT = "/api/filter/aggregated"
DEFAULT_FIELDS = ["status", "tema", "orgaos", "tipo", "canal"]


def group_api_filters(filters: Iterable, fields: Optional[Iterable[str]] = None) -> List[dict]:
    """Collapse per-value filters into one wire filter per field."""
    wanted = set(fields) if fields is not None else None
    grouped: Dict[str, List[Any]] = {}
    for f in filters:
        item = f if isinstance(f, dict) else f.to_dict()
        if wanted is not None and item["field"] not in wanted:
            continue
        grouped.setdefault(item["field"], []).append(item["value"])
    return [
        {"field": field, "op": "eq", "value": values[0]} if len(values) == 1
        else {"field": field, "op": "in", "value": values}
        for field, values in grouped.items()
    ]


class CrossfilterAdapter:

    def __init__(
        self,
        context,
        page_name: str,
        fields: Optional[Iterable[str]] = None,
        on_data: Optional[Callable[[Any], None]] = None,
        auto_apply: bool = True,
    ):
        if not page_name:
            raise ValueError("page_name is required")
        self.page_name      = page_name
        self.context        = context
        self.bus            = context.bus
        self.global_filters = context.filters
        self.loader         = context.loader
        self.fields         = list(fields) if fields else list(DEFAULT_FIELDS)
        self.on_data        = on_data
        self.auto_apply     = auto_apply
        self._unsubscribers: List[Callable[[], None]] = []
        self._task: Optional[asyncio.Task] = None

    def init(self) -> "CrossfilterAdapter":
        if self._unsubscribers:
            return self
        self._unsubscribers = [
            self.bus.on(CHART_CLICK, self._on_click),
            self.bus.on(FILTERS_CHANGED, self._on_change),
        ]
        log.debug(f"CrossfilterAdapter[{self.page_name}]: initialised")
        return self

    def destroy(self):
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self._cancel_refresh()

    # ── Filter operations ─────────────────────────────────────
    def apply_filter(self, field: str, value: Any, multi_select: bool = False) -> bool:
        return self.global_filters.toggle(field, value, multi_select=multi_select)

    def clear_filters(self):
        self.global_filters.clear()

    def to_api_filters(self) -> List[dict]:
        return group_api_filters(self.global_filters.filters, self.fields)

    def get_active_filters(self) -> Dict[str, Any]:
        active: Dict[str, Any] = {field: None for field in self.fields}
        for item in self.to_api_filters():
            active[item["field"]] = item["value"]
        return active

    async def refresh(self) -> Optional[Any]:
        filters = self.to_api_filters()
        if not filters:
            self._deliver(None)
            return None
        try:
            data = await self.loader.post(AGGREGATED_ENDPOINT, {"filters": filters})
        except Exception as e:
            log.error(f"CrossfilterAdapter[{self.page_name}]: failed to apply filters: {e}")
            return None
        if filters != self.to_api_filters():
            log.debug(f"CrossfilterAdapter[{self.page_name}]: filters moved on, dropping stale response")
            return None
        self._deliver(data)
        self.bus.emit(DATA_UPDATED, {"page": self.page_name, "data": data})
        return data

    # ── Event handlers ────────────────────────────────────────
    def _on_click(self, event: dict):
        field = (event or {}).get("field")
        if field not in self.fields:
            return
        self.global_filters.toggle(
            field, event.get("value"),
            multi_select=bool(event.get("multi_select")),
            chart_id=event.get("chart_id"),
        )

    def _on_change(self, _payload):
        if not self.auto_apply:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(self.refresh())
            return
        self._cancel_refresh()
        self._task = loop.create_task(self.refresh())

    def _cancel_refresh(self):
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def _deliver(self, data):
        if self.on_data is None:
            return
        try:
            self.on_data(data)
        except Exception as e:
            log.error(f"CrossfilterAdapter[{self.page_name}]: on_data failed: {e!r}")
