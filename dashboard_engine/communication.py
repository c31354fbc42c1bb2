"""
Ouvidoria Dashboard — Chart Communication
──────────────────────────────────────────
Single entry point for chart code: events, filters, the chart registry and
page listeners behind one object.

handle_chart_click() resolves the clicked chart's field and toggles it
directly. Raw `chart:click` events on the bus are for crossfilter pages,
which own their fields themselves.
"""

import logging
from typing import Any, Callable, List, Optional

from dashboard_engine.context import DashboardContext, get_context

log = logging.getLogger("dash.communication")


class ChartCommunication:

    def __init__(self, context: Optional[DashboardContext] = None):
        self.context = context or get_context()

    # ── Events ────────────────────────────────────────────────
    def on(self, event: str, callback: Callable[[Any], None]) -> Callable[[], None]:
        return self.context.bus.on(event, callback)

    def emit(self, event: str, data: Any = None) -> int:
        return self.context.bus.emit(event, data)

    def off(self, event: str):
        self.context.bus.off(event)

    # ── Filters ───────────────────────────────────────────────
    def apply_filter(self, field: str, value: Any, multi_select: bool = False,
                     chart_id: Optional[str] = None, op: str = "eq") -> bool:
        return self.context.filters.apply(field, value, multi_select=multi_select,
                                          chart_id=chart_id, op=op)

    def remove_filter(self, field: str, value: Any = None) -> bool:
        return self.context.filters.remove(field, value)

    def clear_filters(self):
        self.context.filters.clear()

    def is_filter_active(self, field: str, value: Any = None) -> bool:
        return self.context.filters.is_active(field, value)

    def get_filters(self) -> List[dict]:
        return self.context.filters.to_api_filters()

    # ── Charts ────────────────────────────────────────────────
    def register_chart(self, chart_id: str, instance: Any = None, field: Optional[str] = None):
        return self.context.charts.register(chart_id, instance, field=field)

    def unregister_chart(self, chart_id: str) -> bool:
        return self.context.charts.unregister(chart_id)

    def get_chart(self, chart_id: str):
        return self.context.charts.get(chart_id)

    def get_field_mapping(self, chart_id: str):
        return self.context.charts.get_field_mapping(chart_id)

    def handle_chart_click(self, chart_id: str, label: Any, multi_select: bool = False) -> bool:
        """Toggle the filter bound to `chart_id` for `label`. False when nothing changed."""
        mapping = self.context.charts.get_field_mapping(chart_id)
        if mapping is None or mapping[0] is None:
            log.debug(f"Chart {chart_id} has no filter field, click ignored")
            return False
        field, op = mapping
        filters = self.context.filters
        if filters.is_active(field, label):
            return filters.remove(field, label, _reason="toggle")
        return filters.apply(field, label, multi_select=multi_select, chart_id=chart_id,
                             op=op or "eq", _reason="toggle")

    # ── Pages ─────────────────────────────────────────────────
    def create_page_filter_listener(self, page, load_function=None, debounce_ms=None,
                                    is_visible=None) -> Callable[[], None]:
        return self.context.pages.create_page_filter_listener(
            page, load_function, debounce_ms=debounce_ms, is_visible=is_visible,
        )

    def auto_connect_pages(self, loaders) -> int:
        return self.context.pages.auto_connect_pages(loaders)
