"""
Ouvidoria Dashboard — Global Filters
─────────────────────────────────────
Holds the canonical active filter set shared by every chart, KPI card and
page on the dashboard (crossfilter, Power BI style).

Mutations apply to the set immediately; the change notification is
debounced. A burst of apply/remove/toggle calls inside one window produces a
single `filters:changed` carrying the final set. clear() is decisive: it
cancels any pending notification and notifies at once.

Invariant: no two filters share the same (field, value).
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Set

from dashboard_engine import config
from dashboard_engine.events import (
    CHARTS_UPDATE_REQUESTED, FILTER_APPLIED, FILTER_CLEARED, FILTER_REMOVED,
    FILTERS_CHANGED, EventBus,
)
from dashboard_engine.scheduling import Debouncer

log = logging.getLogger("dash.filters")

OPERATORS = {"eq", "in", "contains", "gte", "lte"}

# Fields the ombudsman dashboard can filter on (chart clicks, KPI cards)
OUVIDORIA_FIELDS: Set[str] = {
    "Status", "Tema", "Assunto", "Orgaos", "Tipo", "Canal", "Prioridade",
    "Setor", "Categoria", "Bairro", "UAC", "Responsavel", "Secretaria",
    "Unidade", "Data", "Departamento",
    # lower-case aliases used by the crossfilter pages
    "status", "tema", "assunto", "orgaos", "tipo", "canal", "prioridade",
    "unidade", "bairro",
}

# Data Store keys whose contents depend on the active filters
FILTER_SENSITIVE_KEYS: List[str] = [
    "/api/dashboard-data",
    "/api/summary",
    "/api/aggregate/by-month",
    "/api/aggregate/by-day",
    "/api/aggregate/by-theme",
    "/api/aggregate/by-subject",
    "/api/aggregate/count-by",
    "/api/stats/status-overview",
    "manifestationsByMonth",
    "manifestationsByDay",
    "manifestationsByStatus",
    "manifestationsByTheme",
    "manifestationsBySubject",
    "manifestationsByOrgan",
]


@dataclass
class Filter:
    field:    str
    value:    Any
    op:       str = "eq"
    chart_id: Optional[str] = None

    def matches(self, field: str, value: Any = None) -> bool:
        return self.field == field and (value is None or self.value == value)

    def to_dict(self) -> dict:
        return {"field": self.field, "op": self.op, "value": self.value}


class GlobalFilters:

    def __init__(
        self,
        bus: EventBus,
        debounce_ms: Optional[float] = None,
        data_store=None,
        allowed_fields: Optional[Iterable[str]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.bus = bus
        self.data_store = data_store
        self.allowed_fields = set(allowed_fields) if allowed_fields is not None else None
        self.log = logger or log
        self._filters: List[Filter] = []
        self._reason: Optional[str] = None
        self._debouncer = Debouncer(
            config.FILTER_DEBOUNCE_MS if debounce_ms is None else debounce_ms,
            self._deliver,
            name="global-filters",
        )
        self.notifications = 0

    # ── Queries ───────────────────────────────────────────────
    @property
    def filters(self) -> List[Filter]:
        return [Filter(f.field, f.value, f.op, f.chart_id) for f in self._filters]

    def __len__(self) -> int:
        return len(self._filters)

    def is_active(self, field: str, value: Any = None) -> bool:
        return any(f.matches(field, value) for f in self._filters)

    def to_api_filters(self) -> List[dict]:
        return [f.to_dict() for f in self._filters]

    @property
    def pending(self) -> bool:
        return self._debouncer.pending

    # ── Mutations ─────────────────────────────────────────────
    def apply(self, field: str, value: Any, multi_select: bool = False,
              chart_id: Optional[str] = None, op: str = "eq",
              _reason: str = "apply") -> bool:
        """
        Single-select replaces every filter on `field`; multi-select adds
        alongside them. Re-applying what is already there changes nothing
        and notifies nobody. Returns True when the set changed.
        """
        if not self._accepts(field, op):
            return False

        if multi_select:
            if self.is_active(field, value):
                return False
            self._filters.append(Filter(field, value, op, chart_id))
        else:
            on_field = [f for f in self._filters if f.field == field]
            if len(on_field) == 1 and on_field[0].value == value and on_field[0].op == op:
                return False
            self._filters = [f for f in self._filters if f.field != field]
            self._filters.append(Filter(field, value, op, chart_id))

        self.log.debug(f"Filter applied: {field} = {value!r} (total {len(self._filters)})")
        self.bus.emit(FILTER_APPLIED, {"field": field, "value": value, "chart_id": chart_id})
        self._schedule(_reason)
        return True

    def toggle(self, field: str, value: Any, multi_select: bool = False,
               chart_id: Optional[str] = None) -> bool:
        """Chart-click semantics: remove (field, value) if active, else apply."""
        if self.is_active(field, value):
            return self.remove(field, value, _reason="toggle")
        return self.apply(field, value, multi_select=multi_select,
                          chart_id=chart_id, _reason="toggle")

    def remove(self, field: str, value: Any = None, _reason: str = "remove") -> bool:
        before = len(self._filters)
        self._filters = [f for f in self._filters if not f.matches(field, value)]
        if len(self._filters) == before:
            return False
        self.log.debug(f"Filter removed: {field} = {value!r} (total {len(self._filters)})")
        self.bus.emit(FILTER_REMOVED, {"field": field, "value": value})
        self._schedule(_reason)
        return True

    def clear(self):
        self._debouncer.cancel()
        self._filters = []
        self.bus.emit(FILTER_CLEARED, {})
        self._reason = "clear"
        self._deliver()

    def replace(self, filters: Iterable[dict]):
        """Load a saved filter set (history / favourites) in one notification."""
        self._filters = []
        for item in filters:
            field, value = item.get("field"), item.get("value")
            if field is None or not self._accepts(field, item.get("op", "eq")):
                continue
            if not self.is_active(field, value):
                self._filters.append(Filter(field, value, item.get("op", "eq")))
        self._schedule("apply")

    def flush(self) -> bool:
        return self._debouncer.flush()

    # ── Notification ──────────────────────────────────────────
    def _accepts(self, field: str, op: str) -> bool:
        if op not in OPERATORS:
            self.log.warning(f"Filter operator '{op}' not supported")
            return False
        if self.allowed_fields is not None and field not in self.allowed_fields:
            self.log.warning(f"Field '{field}' is not filterable here")
            return False
        return True

    def _schedule(self, reason: str):
        self._reason = reason
        self._debouncer.trigger()

    def _deliver(self):
        reason, self._reason = self._reason or "apply", None
        snapshot = self.to_api_filters()
        self.notifications += 1
        if self.data_store is not None:
            self.data_store.invalidate(FILTER_SENSITIVE_KEYS)
        payload = {"filters": snapshot, "reason": reason}
        self.log.debug(f"Filters changed ({reason}): {len(snapshot)} active")
        self.bus.emit(FILTERS_CHANGED, payload)
        self.bus.emit(CHARTS_UPDATE_REQUESTED, payload)
