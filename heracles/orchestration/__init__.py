"""Render orchestration.

This module contains:
- The error taxonomy shared by every layer
- RenderOrchestrator (``heracles.orchestration.orchestrator``), which
  sequences span resolution, query building, dispatch and shaping
"""

from heracles.orchestration.errors import (
    ConfigError,
    ConfigReason,
    HeraclesError,
    InvalidDuration,
    InvalidSpan,
    SpanError,
    UpstreamError,
    UpstreamErrorKind,
    classify_error,
    execute_with_timeout,
)

__all__ = [
    "ConfigError",
    "ConfigReason",
    "HeraclesError",
    "InvalidDuration",
    "InvalidSpan",
    "SpanError",
    "UpstreamError",
    "UpstreamErrorKind",
    "classify_error",
    "execute_with_timeout",
]
