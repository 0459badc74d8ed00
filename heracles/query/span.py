"""Time span resolution.

Turns the symbolic span descriptors found in dashboard configuration and in
request parameters (``end``, ``duration``, ``step_duration``) into an
absolute window with a positive step.
"""

import re
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from heracles.dashboard.models import Span
from heracles.orchestration.errors import InvalidDuration, InvalidSpan

NOW = "now"

DEFAULT_DURATION = timedelta(minutes=10)
DEFAULT_STEP = timedelta(seconds=30)

_UNIT_SECONDS: dict[str, int] = {
    "s": 1,
    "sec": 1,
    "secs": 1,
    "second": 1,
    "seconds": 1,
    "m": 60,
    "min": 60,
    "mins": 60,
    "minute": 60,
    "minutes": 60,
    "h": 3600,
    "hr": 3600,
    "hrs": 3600,
    "hour": 3600,
    "hours": 3600,
    "d": 86400,
    "day": 86400,
    "days": 86400,
    "w": 604800,
    "wk": 604800,
    "wks": 604800,
    "week": 604800,
    "weeks": 604800,
}

_TERM = re.compile(r"\s*([+-]?\d+(?:\.\d+)?)\s*([A-Za-z]+)\s*")


@dataclass(frozen=True)
class AbsoluteSpan:
    """A resolved window.

    Attributes:
        start: First instant of the window.
        end: Last instant of the window.
        step: Resolution between samples.
    """

    start: datetime
    end: datetime
    step: timedelta

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def step_seconds(self) -> float:
        return self.step.total_seconds()


def parse_duration(value: str) -> timedelta:
    """Parse a human duration such as ``1d``, ``10min`` or ``2 days``.

    Several terms may be chained (``1h 30m``); their magnitudes are summed.

    Args:
        value: Duration text.

    Returns:
        The parsed, strictly positive duration.

    Raises:
        InvalidDuration: If the text is unparsable or not positive.
    """
    text = value.strip() if isinstance(value, str) else ""
    if not text:
        raise InvalidDuration(f"Empty duration: {value!r}", details={"value": value})

    total = 0.0
    pos = 0
    while pos < len(text):
        match = _TERM.match(text, pos)
        if match is None or match.end() == pos:
            raise InvalidDuration(f"Unparsable duration: {value!r}", details={"value": value})
        magnitude, unit = match.groups()
        seconds = _UNIT_SECONDS.get(unit.lower())
        if seconds is None:
            raise InvalidDuration(
                f"Unknown duration unit {unit!r} in {value!r}", details={"value": value}
            )
        total += float(magnitude) * seconds
        pos = match.end()

    try:
        result = timedelta(seconds=total)
    except OverflowError as e:
        raise InvalidDuration(f"Duration out of range: {value!r}", details={"value": value}) from e
    if result <= timedelta(0):
        raise InvalidDuration(f"Duration must be positive: {value!r}", details={"value": value})
    return result


def parse_end(value: str, now: datetime) -> datetime:
    """Parse a span end: the literal ``now`` or an RFC3339 timestamp.

    Args:
        value: End text.
        now: The instant ``now`` stands for in this request.

    Returns:
        A timezone aware UTC datetime.

    Raises:
        InvalidSpan: If the text is not ``now`` and not an absolute timestamp.
    """
    text = value.strip() if isinstance(value, str) else ""
    if text.lower() == NOW:
        return now
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise InvalidSpan(f"Invalid span end: {value!r}", details={"value": value}) from e
    if parsed.tzinfo is None:
        raise InvalidSpan(
            f"Span end must carry a timezone offset: {value!r}", details={"value": value}
        )
    return parsed.astimezone(UTC)


def resolve_span(
    descriptor: Span | None,
    *,
    now: datetime,
    override: Span | None = None,
) -> AbsoluteSpan:
    """Resolve a symbolic span into an absolute window.

    Args:
        descriptor: Configured span (graph or dashboard level), if any.
        now: Wall-clock instant sampled once for the whole request.
        override: Complete request-level span that replaces ``descriptor``.

    Returns:
        The absolute window. Without any span the window is the last
        ten minutes at a thirty second step.

    Raises:
        InvalidSpan: If the end instant is malformed.
        InvalidDuration: If the duration or step is malformed.
    """
    chosen = override or descriptor
    if chosen is None:
        return AbsoluteSpan(start=now - DEFAULT_DURATION, end=now, step=DEFAULT_STEP)

    end = parse_end(chosen.end, now)
    duration = parse_duration(chosen.duration)
    step = parse_duration(chosen.step_duration)
    try:
        start = end - duration
    except OverflowError as e:
        raise InvalidSpan(
            "Span start is out of range", details={"span": chosen.model_dump()}
        ) from e
    if not start < end:
        raise InvalidSpan("Span start must precede its end", details={"span": chosen.model_dump()})
    return AbsoluteSpan(start=start, end=end, step=step)


def span_from_params(params: dict[str, str]) -> Span | None:
    """Build a request override from query parameters.

    All three of ``end``, ``duration`` and ``step_duration`` are needed;
    any smaller subset is ignored entirely.
    """
    end = params.get("end")
    duration = params.get("duration")
    step_duration = params.get("step_duration")
    if end and duration and step_duration:
        return Span(end=end, duration=duration, step_duration=step_duration)
    return None
