from .event_bus import EventBus, Listener

# ── Event names ───────────────────────────────────────────────
FILTERS_CHANGED         = "filters:changed"
FILTER_APPLIED          = "filter:applied"
FILTER_REMOVED          = "filter:removed"
FILTER_CLEARED          = "filter:cleared"
CHARTS_UPDATE_REQUESTED = "charts:update-requested"
CHART_REGISTERED        = "chart:registered"
CHART_UNREGISTERED      = "chart:unregistered"
CHART_CLICK             = "chart:click"
DATA_UPDATED            = "data:updated"

__all__ = [
    "EventBus", "Listener",
    "FILTERS_CHANGED", "FILTER_APPLIED", "FILTER_REMOVED", "FILTER_CLEARED",
    "CHARTS_UPDATE_REQUESTED", "CHART_REGISTERED", "CHART_UNREGISTERED",
    "CHART_CLICK", "DATA_UPDATED",
]
