"""Loki HTTP API protocol.

Builds ``query_range`` and ``query`` requests against a Loki backend and
converts stream results into shaped ``Stream``/``StreamInstant`` entries.
Metric LogQL results (``matrix``/``vector``) are rendered as lines holding
the sample value.
"""

from datetime import UTC, datetime, timedelta
from typing import Annotated, Literal

import httpx
from pydantic import BaseModel, Field

from heracles.orchestration.errors import UpstreamError, UpstreamErrorKind
from heracles.query.models import (
    Labels,
    LogLine,
    QueryKind,
    StreamInstantList,
    StreamList,
    UpstreamRequest,
)

SCALAR_API_PATH = "/loki/api/v1/query"
RANGE_API_PATH = "/loki/api/v1/query_range"

NANOS_PER_SECOND = 1_000_000_000

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def to_unix_nanos(instant: datetime) -> int:
    """Exact nanosecond unix timestamp of ``instant``."""
    return (instant - _EPOCH) // timedelta(microseconds=1) * 1000


# ============================================================================
# Response Envelope
# ============================================================================


class LokiStream(BaseModel):
    stream: Labels = Field(default_factory=dict)
    # (nanosecond timestamp as string, line)
    values: list[tuple[int, str]] = Field(default_factory=list)


class LokiSample(BaseModel):
    metric: Labels = Field(default_factory=dict)
    value: tuple[float, str]


class LokiSeries(BaseModel):
    metric: Labels = Field(default_factory=dict)
    values: list[tuple[float, str]] = Field(default_factory=list)


class StreamsData(BaseModel):
    resultType: Literal["streams"]
    result: list[LokiStream]


class VectorData(BaseModel):
    resultType: Literal["vector"]
    result: list[LokiSample]


class MatrixData(BaseModel):
    resultType: Literal["matrix"]
    result: list[LokiSeries]


LokiData = Annotated[StreamsData | VectorData | MatrixData, Field(discriminator="resultType")]


class LokiResponse(BaseModel):
    """Top level Loki query response."""

    status: str
    data: LokiData | None = None


# ============================================================================
# Requests
# ============================================================================


def build_request(client: httpx.AsyncClient, request: UpstreamRequest) -> httpx.Request:
    """Build the HTTP request for a Loki log query."""
    base = request.source.rstrip("/")
    span = request.span
    params: dict[str, str] = {"query": request.query}
    if request.limit is not None:
        params["limit"] = str(request.limit)

    if request.kind == QueryKind.LOGS_RANGE:
        params["start"] = str(to_unix_nanos(span.start))
        params["end"] = str(to_unix_nanos(span.end))
        params["step"] = f"{span.step_seconds:g}"
        return client.build_request("GET", f"{base}{RANGE_API_PATH}", params=params)

    params["time"] = str(to_unix_nanos(span.end))
    return client.build_request("GET", f"{base}{SCALAR_API_PATH}", params=params)


def decode(
    request: UpstreamRequest, response: httpx.Response
) -> StreamsData | VectorData | MatrixData:
    """Validate a response body against the query kind.

    Raises:
        UpstreamError: ``malformed_body`` for undecodable or mismatched
            bodies, ``bad_status`` when the backend reports an error.
    """
    envelope = LokiResponse.model_validate_json(response.content)
    if envelope.status != "success" or envelope.data is None:
        raise UpstreamError(
            f"{request.source} reported status {envelope.status!r}",
            kind=UpstreamErrorKind.BAD_STATUS,
            source=request.source,
            status=response.status_code,
        )

    data = envelope.data
    allowed = (StreamsData, MatrixData) if request.kind == QueryKind.LOGS_RANGE else (
        StreamsData,
        VectorData,
    )
    if not isinstance(data, allowed):
        raise UpstreamError(
            f"{request.source} returned {data.resultType} for a {request.kind.value} query",
            kind=UpstreamErrorKind.MALFORMED_BODY,
            source=request.source,
        )
    return data


# ============================================================================
# Shaping
# ============================================================================


def to_stream(data: StreamsData | MatrixData) -> StreamList:
    """Convert a range result into ``Stream`` entries (nanosecond timestamps)."""
    if isinstance(data, MatrixData):
        return StreamList(
            Stream=[
                (
                    dict(series.metric),
                    [
                        LogLine(timestamp=int(ts * NANOS_PER_SECOND), line=value)
                        for ts, value in series.values
                    ],
                )
                for series in data.result
            ]
        )
    return StreamList(
        Stream=[
            (
                dict(stream.stream),
                [LogLine(timestamp=ts, line=line) for ts, line in stream.values],
            )
            for stream in data.result
        ]
    )


def to_stream_instant(data: StreamsData | VectorData) -> StreamInstantList:
    """Convert an instant result into ``StreamInstant`` entries (second timestamps).

    Streams keep only their most recent line.
    """
    if isinstance(data, VectorData):
        return StreamInstantList(
            StreamInstant=[
                (dict(sample.metric), LogLine(timestamp=sample.value[0], line=sample.value[1]))
                for sample in data.result
            ]
        )

    entries = []
    for stream in data.result:
        if not stream.values:
            continue
        ts, line = max(stream.values, key=lambda pair: pair[0])
        entries.append((dict(stream.stream), LogLine(timestamp=ts / NANOS_PER_SECOND, line=line)))
    return StreamInstantList(StreamInstant=entries)
