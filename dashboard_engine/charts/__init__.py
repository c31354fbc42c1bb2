from .chart_registry import CHART_FIELD_MAP, ChartRegistration, ChartRegistry
from .page_listener import PageConfig, PageListenerRegistry

__all__ = [
    "CHART_FIELD_MAP", "ChartRegistration", "ChartRegistry",
    "PageConfig", "PageListenerRegistry",
]
