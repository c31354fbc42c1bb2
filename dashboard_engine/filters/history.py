"""
Ouvidoria Dashboard — Filter History
─────────────────────────────────────
Recently used filter sets (newest first, deduplicated) and named favourites.
Kept per process; the service lists them under /api/filters/history.
"""

import hashlib
import json
import logging
import time
import uuid
from typing import Dict, Iterable, List, Optional

log = logging.getLogger("dash.filter_history")

MAX_RECENT    = 10
MAX_FAVORITES = 20

FIELD_LABELS: Dict[str, str] = {
    "Orgaos":      "Órgão",
    "Responsavel": "Responsável",
}


def _as_dicts(filters: Iterable) -> List[dict]:
    return [f if isinstance(f, dict) else f.to_dict() for f in filters]


def filter_set_key(filters: Iterable) -> str:
    items = sorted(
        ({"field": f.get("field"), "op": f.get("op", "eq"), "value": f.get("value")} for f in _as_dicts(filters)),
        key=lambda f: json.dumps(f, sort_keys=True, default=str),
    )
    return hashlib.sha1(json.dumps(items, sort_keys=True, default=str).encode()).hexdigest()[:16]


def default_name(filters: Iterable) -> str:
    parts = [
        f"{FIELD_LABELS.get(f['field'], f['field'])}: {f.get('value')}"
        for f in _as_dicts(filters)
    ]
    if len(parts) > 3:
        return ", ".join(parts[:3]) + f" (+{len(parts) - 3})"
    return ", ".join(parts)


class FilterHistory:

    def __init__(self, max_recent: int = MAX_RECENT, max_favorites: int = MAX_FAVORITES):
        self.max_recent    = max_recent
        self.max_favorites = max_favorites
        self._recent: List[dict] = []
        self._favorites: List[dict] = []

    def save_recent(self, filters: Iterable, name: Optional[str] = None) -> Optional[dict]:
        items = _as_dicts(filters)
        if not items:
            return None
        key = filter_set_key(items)
        self._recent = [r for r in self._recent if r["key"] != key]
        entry = {
            "key":       key,
            "filters":   items,
            "name":      name or default_name(items),
            "timestamp": time.time(),
        }
        self._recent.insert(0, entry)
        del self._recent[self.max_recent:]
        log.debug(f"FilterHistory: saved '{entry['name']}' ({len(self._recent)} recent)")
        return entry

    def get_recent(self) -> List[dict]:
        return list(self._recent)

    def save_favorite(self, filters: Iterable, name: str) -> Optional[dict]:
        items = _as_dicts(filters)
        if not items or not name:
            return None
        key = filter_set_key(items)
        existing = next((f for f in self._favorites if f["key"] == key), None)
        if existing:
            existing["name"] = name
            return existing
        entry = {
            "id":        uuid.uuid4().hex[:12],
            "key":       key,
            "filters":   items,
            "name":      name,
            "timestamp": time.time(),
        }
        self._favorites.append(entry)
        if len(self._favorites) > self.max_favorites:
            del self._favorites[: len(self._favorites) - self.max_favorites]
        return entry

    def get_favorites(self) -> List[dict]:
        return list(self._favorites)

    def remove_favorite(self, favorite_id: str) -> bool:
        before = len(self._favorites)
        self._favorites = [f for f in self._favorites if f["id"] != favorite_id]
        return len(self._favorites) < before

    def clear_recent(self):
        self._recent = []

    def clear_favorites(self):
        self._favorites = []
