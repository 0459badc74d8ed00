"""Dashboard configuration.

This module provides:
- Frozen configuration models: Dashboard, Graph, Plot, LogStream
- DashboardConfig: process-wide lookup by position or title
- YAML loading and validation
"""

from heracles.dashboard.models import (
    AxisDefinition,
    Dashboard,
    DashboardConfig,
    Graph,
    LogSourceType,
    LogStream,
    Plot,
    PlotMeta,
    QueryType,
    Span,
)
from heracles.dashboard.loader import (
    load_dashboards_from_string,
    parse_dashboards,
    read_dashboard_list,
)

__all__ = [
    "AxisDefinition",
    "Dashboard",
    "DashboardConfig",
    "Graph",
    "LogSourceType",
    "LogStream",
    "Plot",
    "PlotMeta",
    "QueryType",
    "Span",
    "load_dashboards_from_string",
    "parse_dashboards",
    "read_dashboard_list",
]
