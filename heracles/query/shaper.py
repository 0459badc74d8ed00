"""Response shaping.

Turns settled upstream results into the payload envelopes returned to the
browser renderer:

- metrics graphs become ``{"Metrics": QueryData}`` with one plot group per
  configured plot that succeeded, in configuration order
- log panels become ``{"Logs": {"lines": LogLineList}}``

Failed results contribute nothing. Client label filters are applied again
here as an exclusion over returned label sets.
"""

from collections.abc import Sequence
from typing import Any

import structlog

from heracles.dashboard.models import AxisDefinition, Graph, LogSourceType, LogStream, PlotMeta
from heracles.query import logsql, loki, prom
from heracles.query.filters import LabelFilterSet, keep_matching
from heracles.query.models import (
    LogLineList,
    LogLines,
    LogsPayload,
    MetricsPayload,
    PlotList,
    QueryData,
    QueryKind,
    ScalarList,
    SeriesList,
    ShapedResult,
    StreamInstantList,
    StreamList,
    UpstreamResult,
)

logger = structlog.get_logger(__name__)


def shape_result(result: UpstreamResult, meta: PlotMeta | None = None) -> ShapedResult:
    """Classify a successful result by its query kind.

    Args:
        result: A settled result whose ``ok`` is true.
        meta: Display settings of the originating plot (metrics only).

    Returns:
        The shaped variant matching the query kind.
    """
    request = result.request
    payload: Any = result.payload
    kind = request.kind

    if kind == QueryKind.METRICS_RANGE:
        return prom.to_series(payload, meta or PlotMeta())
    if kind == QueryKind.METRICS_INSTANT:
        return prom.to_scalar(payload, meta or PlotMeta())

    protocol = logsql if request.log_source == LogSourceType.LOGSQL else loki
    if kind == QueryKind.LOGS_RANGE:
        return protocol.to_stream(payload)
    return protocol.to_stream_instant(payload)


def apply_filters(shaped: ShapedResult, filters: LabelFilterSet) -> ShapedResult:
    """Drop entries whose labels are excluded by ``filters``."""
    if not filters:
        return shaped
    if isinstance(shaped, SeriesList):
        return SeriesList(Series=keep_matching(shaped.Series, filters))
    if isinstance(shaped, ScalarList):
        return ScalarList(Scalar=keep_matching(shaped.Scalar, filters))
    if isinstance(shaped, StreamList):
        return StreamList(Stream=keep_matching(shaped.Stream, filters))
    return StreamInstantList(StreamInstant=keep_matching(shaped.StreamInstant, filters))


def resolve_yaxes(graph: Graph) -> list[AxisDefinition]:
    """Axes as configured, with missing tick formats taken from the graph."""
    axes = []
    for axis in graph.yaxes:
        if axis.tickformat is None and graph.d3_tick_format is not None:
            axis = axis.model_copy(update={"tickformat": graph.d3_tick_format})
        axes.append(axis)
    return axes


def shape_metrics(
    graph: Graph,
    results: Sequence[UpstreamResult],
    filters: LabelFilterSet | None = None,
) -> MetricsPayload:
    """Assemble the payload for a metrics graph.

    Args:
        graph: The configured graph; ``results`` are positional to its plots.
        results: Settled results, one per plot.
        filters: Label filters to exclude by, when the graph honours them.

    Returns:
        ``{"Metrics": QueryData}``.
    """
    plots: list[PlotList] = []
    for plot, result in zip(graph.plots, results, strict=True):
        if not result.ok:
            continue
        shaped = apply_filters(shape_result(result, plot.config), filters or {})
        if isinstance(shaped, (SeriesList, ScalarList)):
            plots.append(shaped)
        else:
            logger.warning("unexpected_log_result", graph=graph.title, source=plot.source)

    return MetricsPayload(
        Metrics=QueryData(
            yaxes=resolve_yaxes(graph),
            legend_orientation=graph.legend_orientation,
            plots=plots,
        )
    )


def empty_lines(kind: QueryKind) -> LogLineList:
    """An empty line list of the variant ``kind`` would produce."""
    return StreamList() if kind == QueryKind.LOGS_RANGE else StreamInstantList()


def shape_logs(
    panel: LogStream,
    result: UpstreamResult,
    filters: LabelFilterSet | None = None,
) -> LogsPayload:
    """Assemble the payload for a log panel.

    A failed result yields an empty line list of the expected variant.
    """
    kind = result.request.kind
    lines: LogLineList = empty_lines(kind)
    if result.ok:
        shaped = apply_filters(shape_result(result), filters or {})
        if isinstance(shaped, (StreamList, StreamInstantList)):
            lines = shaped
        else:
            logger.warning("unexpected_metrics_result", panel=panel.title, source=panel.source)
    return LogsPayload(Logs=LogLines(lines=lines))
