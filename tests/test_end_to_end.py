"""
End-to-end tests for filter coordination across charts and pages.

Tests cover:
- A chart click filtering every connected page
- The ChartCommunication facade
- DashboardContext wiring and the process-wide instance
"""

import asyncio
import json

import httpx
import pytest

from dashboard_engine import ChartCommunication, DashboardContext, get_context, reset_context
from dashboard_engine.cache.data_store import DataStore
from dashboard_engine.events import FILTERS_CHANGED

from .conftest import FakeClock, make_context


class TestChartClickScenario:
    """A click on "Saneamento" in a chart bound to `tema` reloads every page with that filter."""

    def test_click_reloads_all_pages_with_filter(self):
        bodies = []
        reloads = []

        async def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=[{"tema": "Saneamento", "count": 12}])

        async def scenario():
            ctx = make_context(handler, debounce_ms=10)
            comm = ChartCommunication(ctx)
            comm.register_chart("chartTemaPage", field="tema")

            def page_loader(page, endpoint):
                async def load(force_refresh=False):
                    reloads.append(page)
                    return await ctx.helper.apply_filters(
                        ctx.filters.filters, endpoint, force_refresh=force_refresh,
                    )
                return load

            comm.create_page_filter_listener("page-main", page_loader("page-main", "/api/dashboard-data"), debounce_ms=20)
            comm.create_page_filter_listener("page-tema", page_loader("page-tema", "/api/aggregate/by-theme"), debounce_ms=20)

            assert comm.handle_chart_click("chartTemaPage", "Saneamento") is True
            snapshot = comm.get_filters()
            await asyncio.sleep(0.15)
            await ctx.aclose()
            return snapshot

        snapshot = asyncio.run(scenario())

        assert snapshot == [{"field": "tema", "op": "eq", "value": "Saneamento"}]
        assert sorted(reloads) == ["page-main", "page-tema"]
        assert len(bodies) == 2
        for body in bodies:
            assert {"field": "tema", "op": "eq", "value": "Saneamento"} in body["filters"]
        assert sorted(b["originalUrl"] for b in bodies) == ["/api/aggregate/by-theme", "/api/dashboard-data"]


class TestChartCommunication:
    """Tests for the facade."""

    @pytest.fixture
    def comm(self):
        return ChartCommunication(make_context(lambda request: httpx.Response(200, json={})))

    def test_click_toggles(self, comm):
        comm.register_chart("chartStatus")

        comm.handle_chart_click("chartStatus", "Aberto")
        assert comm.is_filter_active("Status", "Aberto")

        comm.handle_chart_click("chartStatus", "Aberto")
        assert not comm.is_filter_active("Status")

    def test_click_uses_mapped_operator(self, comm):
        comm.handle_chart_click("chartAssunto", "Iluminação")
        assert comm.get_filters() == [{"field": "Assunto", "op": "contains", "value": "Iluminação"}]

    def test_click_multi_select(self, comm):
        comm.handle_chart_click("chartTema", "Saneamento")
        comm.handle_chart_click("chartTema", "Saúde", multi_select=True)

        assert [f["value"] for f in comm.get_filters()] == ["Saneamento", "Saúde"]

    def test_non_filtering_chart_ignored(self, comm):
        assert comm.handle_chart_click("chartSLA", "Atrasado") is False
        assert comm.handle_chart_click("chartUnknown", "x") is False
        assert comm.get_filters() == []

    def test_events_pass_through(self, comm):
        seen = []
        comm.on(FILTERS_CHANGED, seen.append)

        comm.apply_filter("tema", "A")
        comm.remove_filter("tema", "A")
        comm.clear_filters()

        assert [s["reason"] for s in seen] == ["apply", "remove", "clear"]
        comm.off(FILTERS_CHANGED)
        assert comm.emit(FILTERS_CHANGED, {}) == 0

    def test_chart_lifecycle(self, comm):
        comm.register_chart("chartBairro", instance="bar")
        assert comm.get_chart("chartBairro").instance == "bar"
        assert comm.get_field_mapping("chartBairro") == ("Bairro", "contains")
        assert comm.unregister_chart("chartBairro") is True

    def test_auto_connect(self, comm):
        assert comm.auto_connect_pages({"page-tema": lambda force_refresh: None}) == 1


class TestDashboardContext:
    """Tests for DashboardContext and the process-wide instance."""

    def test_components_share_bus_and_store(self):
        ctx = DashboardContext(base_url="http://dashboard.test")

        assert ctx.filters.bus is ctx.bus
        assert ctx.charts.bus is ctx.bus
        assert ctx.pages.bus is ctx.bus
        assert ctx.loader.data_store is ctx.store
        assert ctx.filters.data_store is ctx.store
        assert ctx.helper.loader is ctx.loader

    def test_sweep(self):
        clock = FakeClock()
        ctx = DashboardContext(base_url="http://dashboard.test", store=DataStore(clock=clock))
        ctx.store.set("/api/summary", {"total": 1})
        clock.advance(10)

        assert ctx.sweep() == {"data_store": 1, "filter_cache": 0}

    def test_get_context_is_singleton(self):
        previous = reset_context(None)
        try:
            first = get_context()
            assert get_context() is first
            replacement = DashboardContext(base_url="http://dashboard.test")
            assert reset_context(replacement) is first
            assert get_context() is replacement
        finally:
            reset_context(previous)
