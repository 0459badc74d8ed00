"""VictoriaLogs LogsQL protocol.

VictoriaLogs answers ``/select/logsql/query`` with newline delimited JSON,
one record per log entry. The same endpoint serves range and instant
panels; the window travels as ``start``/``end`` form fields.
"""

import re
from datetime import datetime
from typing import Annotated, Any

import httpx
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError

from heracles.orchestration.errors import UpstreamError, UpstreamErrorKind
from heracles.query.loki import NANOS_PER_SECOND, to_unix_nanos
from heracles.query.models import (
    Labels,
    LogLine,
    StreamInstantList,
    StreamList,
    UpstreamRequest,
)

QUERY_API_PATH = "/select/logsql/query"

_RFC3339 = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2})(?:\.(?P<frac>\d+))?(?P<tz>Z|z|[+-]\d{2}:\d{2})$"
)


def parse_rfc3339_nanos(value: Any) -> int:
    """Parse an RFC3339 timestamp keeping nanosecond precision."""
    match = _RFC3339.match(value) if isinstance(value, str) else None
    if match is None:
        raise ValueError(f"invalid RFC3339 timestamp: {value!r}")
    tz = match["tz"]
    base = datetime.fromisoformat(match["base"] + ("+00:00" if tz in ("Z", "z") else tz))
    fraction = (match["frac"] or "").ljust(9, "0")[:9]
    return to_unix_nanos(base) + int(fraction)


class LogsqlRecord(BaseModel):
    """One NDJSON record. Extra fields become labels when they are strings."""

    model_config = ConfigDict(extra="allow")

    msg: str = Field(alias="_msg")
    stream: str = Field(default="", alias="_stream")
    time: Annotated[int, BeforeValidator(parse_rfc3339_nanos)] = Field(alias="_time")

    @property
    def labels(self) -> Labels:
        labels: Labels = {"stream": self.stream}
        for key, value in (self.model_extra or {}).items():
            if isinstance(value, str):
                labels.setdefault(key, value)
        return labels


def build_request(client: httpx.AsyncClient, request: UpstreamRequest) -> httpx.Request:
    """Build the form POST for a LogsQL query."""
    form = {
        "query": request.query,
        "start": request.span.start.isoformat(),
        "end": request.span.end.isoformat(),
    }
    if request.limit is not None:
        form["limit"] = str(request.limit)
    return client.build_request(
        "POST", f"{request.source.rstrip('/')}{QUERY_API_PATH}", data=form
    )


def decode(request: UpstreamRequest, response: httpx.Response) -> list[LogsqlRecord]:
    """Parse an NDJSON body.

    Raises:
        UpstreamError: ``malformed_body`` if any non-blank line is not a
            valid record.
    """
    records: list[LogsqlRecord] = []
    for number, line in enumerate(response.text.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            records.append(LogsqlRecord.model_validate_json(line))
        except ValidationError as e:
            raise UpstreamError(
                f"{request.source} returned an invalid record on line {number}",
                kind=UpstreamErrorKind.MALFORMED_BODY,
                source=request.source,
                details={"line": number},
            ) from e
    return records


def _grouped(records: list[LogsqlRecord]) -> dict[tuple, tuple[Labels, list[LogsqlRecord]]]:
    groups: dict[tuple, tuple[Labels, list[LogsqlRecord]]] = {}
    for record in records:
        labels = record.labels
        key = tuple(sorted(labels.items()))
        groups.setdefault(key, (labels, []))[1].append(record)
    return groups


def to_stream(records: list[LogsqlRecord]) -> StreamList:
    """Group records per label set into ``Stream`` entries, oldest first."""
    entries = []
    for labels, group in _grouped(records).values():
        group.sort(key=lambda r: r.time)
        entries.append(
            (labels, [LogLine(timestamp=r.time, line=r.msg) for r in group])
        )
    return StreamList(Stream=entries)


def to_stream_instant(records: list[LogsqlRecord]) -> StreamInstantList:
    """Keep the most recent record per label set as ``StreamInstant`` entries."""
    entries = []
    for labels, group in _grouped(records).values():
        latest = max(group, key=lambda r: r.time)
        entries.append(
            (labels, LogLine(timestamp=latest.time / NANOS_PER_SECOND, line=latest.msg))
        )
    return StreamInstantList(StreamInstant=entries)
