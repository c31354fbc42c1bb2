"""
Ouvidoria Dashboard — Chart Registry
─────────────────────────────────────
Which charts are on screen, and which filter field a click on each one
drives. A `(None, None)` mapping marks a chart whose clicks never filter
(SLA, distribution histograms).
"""

import logging
import time
from dataclasses import dataclass, field as dc_field
from typing import Any, Dict, List, Optional, Tuple

from dashboard_engine.events import CHART_REGISTERED, CHART_UNREGISTERED, EventBus

log = logging.getLogger("dash.charts")

FieldMapping = Tuple[Optional[str], Optional[str]]

# chart id → (field, op)
CHART_FIELD_MAP: Dict[str, FieldMapping] = {
    # Overview
    "chartStatus":             ("Status", "eq"),
    "chartStatusPage":         ("Status", "eq"),
    "chartStatusTema":         ("Status", "eq"),
    "chartStatusAssunto":      ("Status", "eq"),
    "chartFunnelStatus":       ("Status", "eq"),
    "chartTrend":              ("Data", "contains"),
    "chartDailyDistribution":  ("Data", "contains"),
    "chartTopOrgaos":          ("Orgaos", "contains"),
    "chartTopTemas":           ("Tema", "eq"),
    "chartTiposManifestacao":  ("Tipo", "eq"),
    "chartCanais":             ("Canal", "eq"),
    "chartPrioridades":        ("Prioridade", "eq"),
    "chartUnidadesCadastro":   ("Unidade", "contains"),
    "chartSlaOverview":        (None, None),
    "chartSLA":                (None, None),
    # Pages
    "chartStatusMes":          ("Data", "contains"),
    "chartTema":               ("Tema", "eq"),
    "chartTemaMes":            ("Data", "contains"),
    "chartAssunto":            ("Assunto", "contains"),
    "chartAssuntoMes":         ("Data", "contains"),
    "chartTipo":               ("Tipo", "eq"),
    "chartOrgaos":             ("Orgaos", "contains"),
    "chartOrgaoMes":           ("Data", "contains"),
    "chartSecretaria":         ("Secretaria", "contains"),
    "chartSecretariaMes":      ("Data", "contains"),
    "chartSetor":              ("Setor", "contains"),
    "chartCategoria":          ("Categoria", "eq"),
    "chartBairro":             ("Bairro", "contains"),
    "chartBairroMes":          ("Data", "contains"),
    "chartUAC":                ("UAC", "contains"),
    "chartResponsavel":        ("Responsavel", "contains"),
    "chartCanal":              ("Canal", "eq"),
    "chartPrioridade":         ("Prioridade", "eq"),
    "chartTempoMedio":         ("Orgaos", "contains"),
    "chartTempoMedioUnidade":  ("Unidade", "contains"),
    "chartReclamacoesTipo":    ("Tipo", "eq"),
    "chartProjecaoTema":       ("Tema", "eq"),
    "chartProjecaoTipo":       ("Tipo", "eq"),
    "chartUnitTipos":          ("Tipo", "eq"),
    "chartMonth":              ("Data", "contains"),
    # Zeladoria
    "chartZeladoriaStatus":               ("Status", "eq"),
    "chartZeladoriaCategoria":            ("Categoria", "eq"),
    "zeladoria-departamento-chart":       ("Departamento", "contains"),
    "zeladoria-bairro-chart":             ("Bairro", "contains"),
    "zeladoria-tempo-distribuicao-chart": (None, None),
}


@dataclass
class ChartRegistration:
    chart_id:   str
    instance:   Any
    field:      Optional[str]
    op:         Optional[str]
    created_at: float = dc_field(default_factory=time.time)

    @property
    def filterable(self) -> bool:
        return self.field is not None


class ChartRegistry:

    def __init__(self, bus: EventBus, field_map: Optional[Dict[str, FieldMapping]] = None):
        self.bus = bus
        self.field_map = dict(CHART_FIELD_MAP if field_map is None else field_map)
        self._charts: Dict[str, ChartRegistration] = {}

    def register(self, chart_id: str, instance: Any = None,
                 field: Optional[str] = None, op: Optional[str] = None) -> ChartRegistration:
        """Register (or replace) a chart. `field` falls back to the field map."""
        if not chart_id:
            raise ValueError("chart_id is required")
        mapped_field, mapped_op = self.field_map.get(chart_id, (None, None))
        if field is None:
            field, op = mapped_field, op or mapped_op
        entry = ChartRegistration(
            chart_id=chart_id, instance=instance, field=field,
            op=(op or "eq") if field is not None else None,
        )
        if chart_id in self._charts:
            log.debug(f"Chart {chart_id} re-registered, replacing previous entry")
        self._charts[chart_id] = entry
        self.bus.emit(CHART_REGISTERED, {"chart_id": chart_id, "field": entry.field})
        return entry

    def unregister(self, chart_id: str) -> bool:
        if self._charts.pop(chart_id, None) is None:
            return False
        self.bus.emit(CHART_UNREGISTERED, {"chart_id": chart_id})
        return True

    def get(self, chart_id: str) -> Optional[ChartRegistration]:
        return self._charts.get(chart_id)

    def get_all(self) -> List[ChartRegistration]:
        return list(self._charts.values())

    def get_by_field(self, field: str) -> List[ChartRegistration]:
        return [c for c in self._charts.values() if c.field == field]

    def get_field_mapping(self, chart_id: str) -> Optional[FieldMapping]:
        entry = self._charts.get(chart_id)
        if entry is not None:
            return (entry.field, entry.op)
        return self.field_map.get(chart_id)

    def get_field_mappings(self) -> Dict[str, FieldMapping]:
        return dict(self.field_map)

    def __len__(self) -> int:
        return len(self._charts)

    def __contains__(self, chart_id: str) -> bool:
        return chart_id in self._charts
