"""Dashboard configuration model.

This module defines the immutable Pydantic models a dashboard YAML file is
validated into. The model is built once at startup and shared read-only by
every request.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field

from heracles.orchestration.errors import ConfigError


class QueryType(str, Enum):
    """Kind of query a graph or log panel issues."""

    RANGE = "Range"
    SCALAR = "Scalar"


class LogSourceType(str, Enum):
    """Log backend protocol."""

    LOKI = "loki"
    LOGSQL = "logsql"


def _timestamp_text(value: Any) -> Any:
    # YAML loads unquoted RFC3339 timestamps as datetimes.
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class Span(BaseModel):
    """Symbolic time window as written in configuration or a request.

    Attributes:
        end: ``now`` or an RFC3339 timestamp.
        duration: Window length, e.g. ``1d``.
        step_duration: Resolution, e.g. ``10min``.
    """

    model_config = ConfigDict(frozen=True)

    end: Annotated[str, BeforeValidator(_timestamp_text)]
    duration: str
    step_duration: str


class PlotMeta(BaseModel):
    """Display settings for one plot, passed through to the renderer."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name_format: str | None = None
    yaxis: str | None = None
    fill: str | None = None
    d3_tick_format: str | None = Field(
        default=None,
        validation_alias=AliasChoices("d3_tick_format", "d3_tickformat"),
    )


class AxisDefinition(BaseModel):
    """A plotly y axis definition.

    Only ``tickformat`` is interpreted; every other key (``anchor``,
    ``overlaying``, ``side``, ``type``...) is passed through as configured.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    tickformat: str | None = None


class Plot(BaseModel):
    """One source and query contributing a group of traces to a graph."""

    model_config = ConfigDict(frozen=True)

    source: str
    query: str
    config: PlotMeta = Field(default_factory=PlotMeta)


class Graph(BaseModel):
    """A metrics graph made of one or more plots."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    title: str
    query_type: QueryType = QueryType.RANGE
    d3_tick_format: str | None = Field(
        default=None,
        validation_alias=AliasChoices("d3_tick_format", "d3_tickformat"),
    )
    legend_orientation: Literal["h", "v"] | None = None
    yaxes: tuple[AxisDefinition, ...] = ()
    plots: tuple[Plot, ...] = ()
    span: Span | None = None
    allow_uri_filters: bool = True


class LogStream(BaseModel):
    """A log panel backed by a single log query."""

    model_config = ConfigDict(frozen=True)

    title: str
    query_type: QueryType = QueryType.RANGE
    source: str
    query: str
    source_type: LogSourceType = LogSourceType.LOKI
    limit: int | None = Field(default=None, gt=0)
    span: Span | None = None
    allow_uri_filters: bool = True


class Dashboard(BaseModel):
    """A titled collection of graphs and log panels."""

    model_config = ConfigDict(frozen=True)

    title: str
    graphs: tuple[Graph, ...] = ()
    logs: tuple[LogStream, ...] = ()
    span: Span | None = None


class DashboardConfig(BaseModel):
    """Every dashboard known to the process, with lookup helpers.

    Lookups raise ``ConfigError`` with reason ``not_found`` when the
    referenced element does not exist.
    """

    model_config = ConfigDict(frozen=True)

    dashboards: tuple[Dashboard, ...] = ()

    def get_dashboard(self, dash_idx: int) -> Dashboard:
        """Get a dashboard by position."""
        if not 0 <= dash_idx < len(self.dashboards):
            raise ConfigError.not_found(f"No such dashboard: {dash_idx}", dashboard=dash_idx)
        return self.dashboards[dash_idx]

    def get_graph(self, dash_idx: int, graph_idx: int) -> tuple[Dashboard, Graph]:
        """Get a graph and its dashboard by position."""
        dashboard = self.get_dashboard(dash_idx)
        if not 0 <= graph_idx < len(dashboard.graphs):
            raise ConfigError.not_found(
                f"No such graph {graph_idx} in dashboard {dash_idx}",
                dashboard=dash_idx,
                graph=graph_idx,
            )
        return dashboard, dashboard.graphs[graph_idx]

    def get_log_stream(self, dash_idx: int, log_idx: int) -> tuple[Dashboard, LogStream]:
        """Get a log panel and its dashboard by position."""
        dashboard = self.get_dashboard(dash_idx)
        if not 0 <= log_idx < len(dashboard.logs):
            raise ConfigError.not_found(
                f"No such log panel {log_idx} in dashboard {dash_idx}",
                dashboard=dash_idx,
                log=log_idx,
            )
        return dashboard, dashboard.logs[log_idx]

    def find_dashboard(self, title: str) -> Dashboard:
        """Get a dashboard by title."""
        for dashboard in self.dashboards:
            if dashboard.title == title:
                return dashboard
        raise ConfigError.not_found(f"No such dashboard: {title!r}", dashboard=title)

    def find_graph(self, dashboard_title: str, graph_title: str) -> Graph:
        """Get a graph by dashboard and graph title."""
        dashboard = self.find_dashboard(dashboard_title)
        for graph in dashboard.graphs:
            if graph.title == graph_title:
                return graph
        raise ConfigError.not_found(
            f"No such graph {graph_title!r} in dashboard {dashboard_title!r}",
            dashboard=dashboard_title,
            graph=graph_title,
        )

    def find_log_stream(self, dashboard_title: str, log_title: str) -> LogStream:
        """Get a log panel by dashboard and panel title."""
        dashboard = self.find_dashboard(dashboard_title)
        for log_stream in dashboard.logs:
            if log_stream.title == log_title:
                return log_stream
        raise ConfigError.not_found(
            f"No such log panel {log_title!r} in dashboard {dashboard_title!r}",
            dashboard=dashboard_title,
            log=log_title,
        )

    def sources(self) -> list[str]:
        """Distinct upstream base URLs, in first-seen order."""
        seen: dict[str, None] = {}
        for dashboard in self.dashboards:
            for graph in dashboard.graphs:
                for plot in graph.plots:
                    seen.setdefault(plot.source, None)
            for log_stream in dashboard.logs:
                seen.setdefault(log_stream.source, None)
        return list(seen)
