"""
Ouvidoria Dashboard Engine
───────────────────────────
Filter coordination, cache policy and request loading for the ombudsman
dashboard:

    from dashboard_engine import get_context
    ctx = get_context()
    ctx.filters.apply("tema", "Saneamento")
"""

from .communication import ChartCommunication
from .context import DashboardContext, get_context, reset_context

__all__ = ["ChartCommunication", "DashboardContext", "get_context", "reset_context"]
