"""Query layer.

This module provides:
- Span resolution and label filter templating
- UpstreamClient: concurrent Prometheus/Loki/VictoriaLogs dispatch
- Response shaping into the renderer's JSON contract
"""

from heracles.query.client import UpstreamClient
from heracles.query.filters import (
    FILTER_PLACEHOLDER,
    LabelFilterSet,
    build_query,
    filters_from_params,
)
from heracles.query.models import (
    DataPoint,
    LogLine,
    LogsPayload,
    MetricsPayload,
    QueryData,
    QueryKind,
    QueryPayload,
    UpstreamRequest,
    UpstreamResult,
)
from heracles.query.shaper import shape_logs, shape_metrics
from heracles.query.span import AbsoluteSpan, parse_duration, resolve_span, span_from_params

__all__ = [
    "FILTER_PLACEHOLDER",
    "AbsoluteSpan",
    "DataPoint",
    "LabelFilterSet",
    "LogLine",
    "LogsPayload",
    "MetricsPayload",
    "QueryData",
    "QueryKind",
    "QueryPayload",
    "UpstreamClient",
    "UpstreamRequest",
    "UpstreamResult",
    "build_query",
    "filters_from_params",
    "parse_duration",
    "resolve_span",
    "shape_logs",
    "shape_metrics",
    "span_from_params",
]
