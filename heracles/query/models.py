"""Query request and response models.

This module defines:
- QueryKind: which upstream protocol shape a call uses
- UpstreamRequest / UpstreamResult: one dispatched call and its settled outcome
- The four shaped result variants (Series, Scalar, Stream, StreamInstant)
- The response envelopes returned to the browser renderer

Each shaped variant is its own model with a single field named after its
tag, so dumping one yields ``{"Series": [...]}`` and friends directly.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_serializer

from heracles.dashboard.models import AxisDefinition, LogSourceType, PlotMeta
from heracles.orchestration.errors import UpstreamError
from heracles.query.span import AbsoluteSpan

Labels = dict[str, str]


class QueryKind(str, Enum):
    """Upstream protocol shape for a single call."""

    METRICS_RANGE = "metrics_range"
    METRICS_INSTANT = "metrics_instant"
    LOGS_RANGE = "logs_range"
    LOGS_INSTANT = "logs_instant"

    @property
    def is_logs(self) -> bool:
        return self in (QueryKind.LOGS_RANGE, QueryKind.LOGS_INSTANT)

    @property
    def is_range(self) -> bool:
        return self in (QueryKind.METRICS_RANGE, QueryKind.LOGS_RANGE)


# ============================================================================
# Dispatch
# ============================================================================


@dataclass(frozen=True)
class UpstreamRequest:
    """A single upstream call.

    Attributes:
        source: Backend base URL.
        query: Final query string, placeholders already substituted.
        span: Resolved window.
        kind: Protocol shape.
        log_source: Log backend protocol, for log kinds.
        limit: Maximum log lines to request.
        label: Identity of the originating plot, for logging.
    """

    source: str
    query: str
    span: AbsoluteSpan
    kind: QueryKind
    log_source: LogSourceType = LogSourceType.LOKI
    limit: int | None = None
    label: str = ""


@dataclass(frozen=True)
class UpstreamResult:
    """Settled outcome of an upstream call: exactly one of payload or error."""

    request: UpstreamRequest
    payload: Any = None
    error: UpstreamError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ============================================================================
# Shaped Results
# ============================================================================


class DataPoint(BaseModel):
    """A metric sample. Timestamps are unix seconds."""

    timestamp: float
    value: float

    @field_serializer("value")
    def _finite_or_null(self, value: float) -> float | None:
        return value if math.isfinite(value) else None


class LogLine(BaseModel):
    """A log line. Timestamps are nanoseconds in streams, seconds otherwise."""

    timestamp: int | float
    line: str


SeriesEntry = tuple[Labels, PlotMeta, list[DataPoint]]
ScalarEntry = tuple[Labels, PlotMeta, DataPoint]
StreamEntry = tuple[Labels, list[LogLine]]
StreamInstantEntry = tuple[Labels, LogLine]


class SeriesList(BaseModel):
    """Range metric traces for one plot."""

    Series: list[SeriesEntry] = Field(default_factory=list)


class ScalarList(BaseModel):
    """Instant metric values for one plot."""

    Scalar: list[ScalarEntry] = Field(default_factory=list)


class StreamList(BaseModel):
    """Log line sequences per label set."""

    Stream: list[StreamEntry] = Field(default_factory=list)


class StreamInstantList(BaseModel):
    """Most recent log line per label set."""

    StreamInstant: list[StreamInstantEntry] = Field(default_factory=list)


PlotList = SeriesList | ScalarList
LogLineList = StreamList | StreamInstantList
ShapedResult = SeriesList | ScalarList | StreamList | StreamInstantList


def entries_of(shaped: ShapedResult) -> list[Any]:
    """Entries held by whichever variant ``shaped`` is."""
    if isinstance(shaped, SeriesList):
        return shaped.Series
    if isinstance(shaped, ScalarList):
        return shaped.Scalar
    if isinstance(shaped, StreamList):
        return shaped.Stream
    return shaped.StreamInstant


# ============================================================================
# Response Envelopes
# ============================================================================


class QueryData(BaseModel):
    """Everything the renderer needs to draw one graph."""

    yaxes: list[AxisDefinition] = Field(default_factory=list)
    legend_orientation: str | None = None
    plots: list[PlotList] = Field(default_factory=list)


class LogLines(BaseModel):
    """Everything the renderer needs to draw one log panel."""

    lines: LogLineList


class MetricsPayload(BaseModel):
    """``{"Metrics": QueryData}``"""

    Metrics: QueryData


class LogsPayload(BaseModel):
    """``{"Logs": {"lines": LogLineList}}``"""

    Logs: LogLines


QueryPayload = MetricsPayload | LogsPayload
