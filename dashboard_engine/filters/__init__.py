from .crossfilter import CrossfilterAdapter, group_api_filters
from .filter_helper import FilterHelper
from .global_filters import FILTER_SENSITIVE_KEYS, OUVIDORIA_FIELDS, Filter, GlobalFilters
from .history import FilterHistory

__all__ = [
    "CrossfilterAdapter", "group_api_filters", "FilterHelper",
    "FILTER_SENSITIVE_KEYS", "OUVIDORIA_FIELDS", "Filter", "GlobalFilters",
    "FilterHistory",
]
