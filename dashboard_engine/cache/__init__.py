from .data_store import MISSING, DataStore
from .filter_cache import FilterCache
from .ttl_config import get_default_ttl, get_ttl, get_ttl_seconds

__all__ = ["MISSING", "DataStore", "FilterCache", "get_default_ttl", "get_ttl", "get_ttl_seconds"]
