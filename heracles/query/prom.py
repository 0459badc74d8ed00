"""Prometheus HTTP API protocol.

Builds range and instant query requests against a Prometheus compatible
backend, validates the JSON response envelope and converts samples into
shaped ``Series``/``Scalar`` entries.
"""

from typing import Annotated, Any, Literal

import httpx
from pydantic import BaseModel, BeforeValidator, Field

from heracles.dashboard.models import PlotMeta
from heracles.orchestration.errors import UpstreamError, UpstreamErrorKind
from heracles.query.models import (
    DataPoint,
    Labels,
    QueryKind,
    ScalarList,
    SeriesList,
    UpstreamRequest,
)

RANGE_API_PATH = "/api/v1/query_range"
INSTANT_API_PATH = "/api/v1/query"


# ============================================================================
# Response Envelope
# ============================================================================


def _parse_sample(value: Any) -> float:
    return float(value)


# Sample values arrive as strings ("1.5", "NaN", "+Inf").
SampleValue = Annotated[float, BeforeValidator(_parse_sample)]


class RangeVector(BaseModel):
    metric: Labels = Field(default_factory=dict)
    values: list[tuple[float, SampleValue]] = Field(default_factory=list)


class InstantVector(BaseModel):
    metric: Labels = Field(default_factory=dict)
    value: tuple[float, SampleValue]


class MatrixData(BaseModel):
    resultType: Literal["matrix"]
    result: list[RangeVector]


class VectorData(BaseModel):
    resultType: Literal["vector"]
    result: list[InstantVector]


class ScalarData(BaseModel):
    resultType: Literal["scalar"]
    result: tuple[float, SampleValue]


PromData = Annotated[MatrixData | VectorData | ScalarData, Field(discriminator="resultType")]


class PromResponse(BaseModel):
    """Top level ``/api/v1/query*`` response."""

    status: str
    data: PromData | None = None
    errorType: str | None = None
    error: str | None = None


# ============================================================================
# Requests
# ============================================================================


def build_request(client: httpx.AsyncClient, request: UpstreamRequest) -> httpx.Request:
    """Build the HTTP request for a metrics query.

    Range queries send ``start``/``end``/``step`` in unix seconds. Instant
    queries are evaluated at the end of the window.
    """
    base = request.source.rstrip("/")
    span = request.span
    if request.kind == QueryKind.METRICS_RANGE:
        params = {
            "query": request.query,
            "start": _seconds(span.start.timestamp()),
            "end": _seconds(span.end.timestamp()),
            "step": _seconds(span.step_seconds),
        }
        return client.build_request("GET", f"{base}{RANGE_API_PATH}", params=params)

    params = {"query": request.query, "time": _seconds(span.end.timestamp())}
    return client.build_request("GET", f"{base}{INSTANT_API_PATH}", params=params)


def _seconds(value: float) -> str:
    return f"{value:.3f}".rstrip("0").rstrip(".")


def decode(request: UpstreamRequest, response: httpx.Response) -> MatrixData | VectorData | ScalarData:
    """Validate a response body against the query kind.

    Raises:
        UpstreamError: ``malformed_body`` for undecodable or mismatched
            bodies, ``bad_status`` when the backend reports an error.
    """
    envelope = PromResponse.model_validate_json(response.content)
    if envelope.status != "success" or envelope.data is None:
        raise UpstreamError(
            f"{request.source} reported {envelope.errorType or 'error'}: {envelope.error or ''}",
            kind=UpstreamErrorKind.BAD_STATUS,
            source=request.source,
            status=response.status_code,
        )

    data = envelope.data
    if request.kind == QueryKind.METRICS_RANGE and not isinstance(data, MatrixData):
        raise _mismatch(request, data.resultType)
    if request.kind == QueryKind.METRICS_INSTANT and isinstance(data, MatrixData):
        raise _mismatch(request, data.resultType)
    return data


def _mismatch(request: UpstreamRequest, result_type: str) -> UpstreamError:
    return UpstreamError(
        f"{request.source} returned {result_type} for a {request.kind.value} query",
        kind=UpstreamErrorKind.MALFORMED_BODY,
        source=request.source,
    )


# ============================================================================
# Shaping
# ============================================================================


def _point(timestamp: float, value: float) -> DataPoint:
    return DataPoint(timestamp=timestamp, value=value)


def to_series(data: MatrixData, meta: PlotMeta) -> SeriesList:
    """Convert a matrix result into ``Series`` entries."""
    return SeriesList(
        Series=[
            (dict(rv.metric), meta, [_point(ts, v) for ts, v in rv.values])
            for rv in data.result
        ]
    )


def to_scalar(data: VectorData | ScalarData, meta: PlotMeta) -> ScalarList:
    """Convert a vector or scalar result into ``Scalar`` entries."""
    if isinstance(data, ScalarData):
        ts, value = data.result
        return ScalarList(Scalar=[({}, meta, _point(ts, value))])
    return ScalarList(
        Scalar=[(dict(iv.metric), meta, _point(*iv.value)) for iv in data.result]
    )
