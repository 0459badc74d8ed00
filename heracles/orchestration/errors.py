"""Error taxonomy for dashboard rendering.

This module provides:
- Custom exception hierarchy for render errors
- Timeout wrapper for upstream calls
- Classification of transport exceptions into upstream error kinds

Exception Hierarchy:
    HeraclesError (base)
    ├── ConfigError - Unknown dashboard/graph/panel or malformed configuration
    ├── SpanError - Malformed time descriptor
    │   ├── InvalidSpan - Unparsable end instant or empty window
    │   └── InvalidDuration - Unparsable or non-positive duration
    └── UpstreamError - Failure of a single upstream call (per plot)

ConfigError and SpanError are request-fatal and surface as client errors.
UpstreamError never leaves the orchestrator: the affected plot is dropped.
"""

import asyncio
from collections.abc import Awaitable
from enum import Enum
from typing import Any, TypeVar

import httpx
import structlog
from pydantic import ValidationError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


# ============================================================================
# Exception Hierarchy
# ============================================================================


class HeraclesError(Exception):
    """Base exception for all Heracles errors.

    Attributes:
        message: Human-readable error message.
        details: Additional error details.
        status_code: HTTP status used when the error reaches the API layer.
    """

    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/API responses."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ConfigReason(str, Enum):
    """Why a configuration error was raised."""

    NOT_FOUND = "not_found"
    MALFORMED = "malformed"


class ConfigError(HeraclesError):
    """Configuration lookup or validation failed.

    Attributes:
        reason: Whether a referenced element is missing or the file is bad.
    """

    def __init__(
        self,
        message: str,
        *,
        reason: ConfigReason = ConfigReason.NOT_FOUND,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.reason = reason

    @property
    def status_code(self) -> int:  # type: ignore[override]
        return 404 if self.reason == ConfigReason.NOT_FOUND else 500

    @classmethod
    def not_found(cls, message: str, **details: Any) -> "ConfigError":
        """Build a lookup failure."""
        return cls(message, reason=ConfigReason.NOT_FOUND, details=details)

    @classmethod
    def malformed(cls, message: str, **details: Any) -> "ConfigError":
        """Build a validation failure."""
        return cls(message, reason=ConfigReason.MALFORMED, details=details)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base["reason"] = self.reason.value
        return base


class SpanError(HeraclesError):
    """A time descriptor could not be resolved."""

    status_code = 400


class InvalidSpan(SpanError):
    """The span end is not ``now`` or an absolute timestamp."""


class InvalidDuration(SpanError):
    """A duration is unparsable or not positive."""


class UpstreamErrorKind(str, Enum):
    """Failure classes for a single upstream call."""

    TIMEOUT = "timeout"
    CONNECTION_FAILED = "connection_failed"
    BAD_STATUS = "bad_status"
    MALFORMED_BODY = "malformed_body"


class UpstreamError(HeraclesError):
    """An upstream metrics or log backend call failed.

    Attributes:
        kind: Failure class.
        source: Base URL of the backend that failed.
        status: HTTP status for ``bad_status`` failures.
    """

    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        kind: UpstreamErrorKind,
        source: str | None = None,
        status: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.kind = kind
        self.source = source
        self.status = status

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base.update({"kind": self.kind.value, "source": self.source, "status": self.status})
        return base


# ============================================================================
# Utility Functions
# ============================================================================


async def execute_with_timeout(
    coro: Awaitable[T],
    timeout_seconds: float,
    operation_name: str = "operation",
    source: str | None = None,
) -> T:
    """Execute a coroutine with a timeout.

    Args:
        coro: The coroutine to execute.
        timeout_seconds: Maximum time to wait.
        operation_name: Name of operation for error messages.
        source: Upstream the operation talks to.

    Returns:
        The coroutine result.

    Raises:
        UpstreamError: With kind ``timeout`` if the operation times out.
    """
    try:
        return await asyncio.wait_for(coro, timeout=timeout_seconds)
    except TimeoutError as e:
        raise UpstreamError(
            f"{operation_name} timed out after {timeout_seconds}s",
            kind=UpstreamErrorKind.TIMEOUT,
            source=source,
            details={"timeout_seconds": timeout_seconds},
        ) from e


def classify_error(error: Exception) -> UpstreamErrorKind:
    """Classify a transport or decoding exception.

    Args:
        error: The error to classify.

    Returns:
        The upstream error kind it corresponds to.
    """
    if isinstance(error, UpstreamError):
        return error.kind
    if isinstance(error, (httpx.TimeoutException, TimeoutError)):
        return UpstreamErrorKind.TIMEOUT
    if isinstance(error, httpx.HTTPStatusError):
        return UpstreamErrorKind.BAD_STATUS
    if isinstance(error, (ValidationError, ValueError, httpx.DecodingError)):
        return UpstreamErrorKind.MALFORMED_BODY
    return UpstreamErrorKind.CONNECTION_FAILED
