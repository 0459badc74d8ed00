"""Concurrent upstream dispatch.

This module provides UpstreamClient, which sends a batch of metrics and log
queries concurrently and returns one settled result per request, in input
order. Failures stay with the call that produced them: a slow or broken
backend never cancels or alters its siblings.
"""

import asyncio
from collections.abc import Sequence
from types import ModuleType
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from heracles.dashboard.models import LogSourceType
from heracles.orchestration.errors import (
    UpstreamError,
    UpstreamErrorKind,
    classify_error,
    execute_with_timeout,
)
from heracles.query import logsql, loki, prom
from heracles.query.models import UpstreamRequest, UpstreamResult

logger = structlog.get_logger(__name__)


def protocol_for(request: UpstreamRequest) -> ModuleType:
    """Select the protocol module that speaks to ``request``'s backend."""
    if not request.kind.is_logs:
        return prom
    if request.log_source == LogSourceType.LOGSQL:
        return logsql
    return loki


class UpstreamClient:
    """Async client for metrics and log backends.

    One client is shared by every request; it owns only the connection
    pool. Each ``dispatch`` call is independent of every other.

    Example:
        client = UpstreamClient(timeout_seconds=10)
        results = await client.dispatch(requests)
        payloads = [r.payload for r in results if r.ok]
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 30.0,
        retries: int = 0,
        max_connections: int = 100,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            timeout_seconds: Deadline for each individual upstream call.
            retries: Connection retries performed by the HTTP transport.
            max_connections: Connection pool size.
            transport: Transport override, used by tests.
        """
        self.timeout_seconds = timeout_seconds
        self._retries = retries
        self._max_connections = max_connections
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._logger = logger.bind(component="upstream_client")

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create httpx client."""
        if self._client is None or self._client.is_closed:
            transport = self._transport or httpx.AsyncHTTPTransport(
                retries=self._retries,
                limits=httpx.Limits(max_connections=self._max_connections),
            )
            self._client = httpx.AsyncClient(
                transport=transport,
                timeout=httpx.Timeout(self.timeout_seconds),
                headers={"Accept": "application/json"},
            )
        return self._client

    async def http_client(self) -> httpx.AsyncClient:
        """The shared pool, for callers such as health probes."""
        return await self._get_client()

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def dispatch(self, requests: Sequence[UpstreamRequest]) -> list[UpstreamResult]:
        """Send every request concurrently and wait for all of them to settle.

        Args:
            requests: Calls to make.

        Returns:
            One result per request, in the same order.
        """
        if not requests:
            return []

        client = await self._get_client()
        results = await asyncio.gather(*(self._settle(client, r) for r in requests))

        failed = sum(1 for r in results if not r.ok)
        self._logger.debug("dispatch_settled", request_count=len(requests), failed=failed)
        return list(results)

    async def _settle(self, client: httpx.AsyncClient, request: UpstreamRequest) -> UpstreamResult:
        try:
            payload = await execute_with_timeout(
                self._fetch(client, request),
                self.timeout_seconds,
                operation_name=f"{request.kind.value} query",
                source=request.source,
            )
        except UpstreamError as e:
            return UpstreamResult(request=request, error=e)
        return UpstreamResult(request=request, payload=payload)

    async def _fetch(self, client: httpx.AsyncClient, request: UpstreamRequest) -> Any:
        """Make one upstream call.

        Raises:
            UpstreamError: For any transport, status or decoding failure.
        """
        protocol = protocol_for(request)
        http_request = protocol.build_request(client, request)

        self._logger.debug(
            "upstream_request",
            source=request.source,
            kind=request.kind.value,
            plot=request.label,
            url=str(http_request.url),
        )

        try:
            response = await client.send(http_request)
        except httpx.HTTPError as e:
            raise UpstreamError(
                f"Request to {request.source} failed: {e!s}",
                kind=classify_error(e),
                source=request.source,
            ) from e

        if not response.is_success:
            raise UpstreamError(
                f"{request.source} answered HTTP {response.status_code}: {response.text[:200]}",
                kind=UpstreamErrorKind.BAD_STATUS,
                source=request.source,
                status=response.status_code,
            )

        try:
            payload = protocol.decode(request, response)
        except (ValidationError, ValueError) as e:
            raise UpstreamError(
                f"{request.source} returned an undecodable body: {e!s}",
                kind=UpstreamErrorKind.MALFORMED_BODY,
                source=request.source,
            ) from e

        self._logger.debug(
            "upstream_response",
            source=request.source,
            kind=request.kind.value,
            status=response.status_code,
        )
        return payload
