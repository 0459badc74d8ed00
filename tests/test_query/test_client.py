"""Tests for concurrent upstream dispatch."""

import asyncio
from datetime import UTC, datetime, timedelta

import httpx
import pytest

from heracles.dashboard.models import LogSourceType
from heracles.orchestration.errors import UpstreamErrorKind
from heracles.query import logsql, loki, prom
from heracles.query.client import UpstreamClient, protocol_for
from heracles.query.models import QueryKind, UpstreamRequest
from heracles.query.prom import MatrixData, VectorData
from heracles.query.span import AbsoluteSpan

NOW = datetime(2024, 3, 1, 12, 0, 0, tzinfo=UTC)
SPAN = AbsoluteSpan(start=NOW - timedelta(hours=1), end=NOW, step=timedelta(minutes=1))

MATRIX_BODY = {
    "status": "success",
    "data": {
        "resultType": "matrix",
        "result": [{"metric": {"job": "node"}, "values": [[1709290800, "1"]]}],
    },
}


# ============================================================================
# Fixtures
# ============================================================================


def metrics_request(source: str, kind: QueryKind = QueryKind.METRICS_RANGE) -> UpstreamRequest:
    return UpstreamRequest(source=source, query="up", span=SPAN, kind=kind, label=source)


def make_client(handler, **kwargs) -> UpstreamClient:
    return UpstreamClient(transport=httpx.MockTransport(handler), **kwargs)


# ============================================================================
# Protocol Selection
# ============================================================================


class TestProtocolFor:
    """Tests for protocol module selection."""

    def test_metrics(self) -> None:
        assert protocol_for(metrics_request("http://p")) is prom
        assert protocol_for(metrics_request("http://p", QueryKind.METRICS_INSTANT)) is prom

    def test_loki(self) -> None:
        request = UpstreamRequest(source="http://l", query="{}", span=SPAN, kind=QueryKind.LOGS_RANGE)
        assert protocol_for(request) is loki

    def test_logsql(self) -> None:
        request = UpstreamRequest(
            source="http://v",
            query="*",
            span=SPAN,
            kind=QueryKind.LOGS_INSTANT,
            log_source=LogSourceType.LOGSQL,
        )
        assert protocol_for(request) is logsql


# ============================================================================
# Dispatch
# ============================================================================


class TestDispatch:
    """Tests for UpstreamClient.dispatch."""

    @pytest.mark.asyncio
    async def test_empty_batch(self) -> None:
        client = make_client(lambda request: httpx.Response(500))
        assert await client.dispatch([]) == []

    @pytest.mark.asyncio
    async def test_success(self) -> None:
        client = make_client(lambda request: httpx.Response(200, json=MATRIX_BODY))

        (result,) = await client.dispatch([metrics_request("http://prom")])

        assert result.ok
        assert isinstance(result.payload, MatrixData)
        await client.close()

    @pytest.mark.asyncio
    async def test_results_keep_input_order(self) -> None:
        delays = {"slow": 0.05, "fast": 0.0}

        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(delays[request.url.host])
            return httpx.Response(200, json=MATRIX_BODY)

        client = make_client(handler)
        results = await client.dispatch([metrics_request("http://slow"), metrics_request("http://fast")])

        assert [r.request.source for r in results] == ["http://slow", "http://fast"]
        assert all(r.ok for r in results)

    @pytest.mark.asyncio
    async def test_calls_run_concurrently(self) -> None:
        in_flight = 0
        peak = 0

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.02)
            in_flight -= 1
            return httpx.Response(200, json=MATRIX_BODY)

        client = make_client(handler)
        await client.dispatch([metrics_request(f"http://p{i}") for i in range(3)])

        assert peak == 3

    @pytest.mark.asyncio
    async def test_bad_status_isolated(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "broken":
                return httpx.Response(503, text="unavailable")
            return httpx.Response(200, json=MATRIX_BODY)

        client = make_client(handler)
        ok, failed = await client.dispatch([metrics_request("http://ok"), metrics_request("http://broken")])

        assert ok.ok
        assert not failed.ok
        assert failed.error.kind == UpstreamErrorKind.BAD_STATUS
        assert failed.error.status == 503
        assert failed.error.source == "http://broken"

    @pytest.mark.asyncio
    async def test_connection_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)
        (result,) = await client.dispatch([metrics_request("http://down")])

        assert result.error.kind == UpstreamErrorKind.CONNECTION_FAILED

    @pytest.mark.asyncio
    async def test_timeout_isolated(self) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "slow":
                await asyncio.sleep(1)
            return httpx.Response(200, json=MATRIX_BODY)

        client = make_client(handler, timeout_seconds=0.05)
        slow, fast = await client.dispatch([metrics_request("http://slow"), metrics_request("http://fast")])

        assert slow.error.kind == UpstreamErrorKind.TIMEOUT
        assert fast.ok

    @pytest.mark.asyncio
    async def test_malformed_body(self) -> None:
        client = make_client(lambda request: httpx.Response(200, text="<html>oops</html>"))

        (result,) = await client.dispatch([metrics_request("http://prom")])

        assert result.error.kind == UpstreamErrorKind.MALFORMED_BODY

    @pytest.mark.asyncio
    async def test_kind_mismatch(self) -> None:
        client = make_client(lambda request: httpx.Response(200, json=MATRIX_BODY))

        (result,) = await client.dispatch([metrics_request("http://prom", QueryKind.METRICS_INSTANT)])

        assert result.error.kind == UpstreamErrorKind.MALFORMED_BODY

    @pytest.mark.asyncio
    async def test_instant_query(self) -> None:
        body = {"status": "success", "data": {"resultType": "vector", "result": []}}
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            return httpx.Response(200, json=body)

        client = make_client(handler)
        (result,) = await client.dispatch([metrics_request("http://prom", QueryKind.METRICS_INSTANT)])

        assert isinstance(result.payload, VectorData)
        assert seen == ["/api/v1/query"]


class TestLifecycle:
    """Tests for client creation and close."""

    @pytest.mark.asyncio
    async def test_client_reused(self) -> None:
        client = make_client(lambda request: httpx.Response(200))
        first = await client.http_client()
        second = await client.http_client()
        assert first is second
        await client.close()

    @pytest.mark.asyncio
    async def test_close_then_reopen(self) -> None:
        client = make_client(lambda request: httpx.Response(200))
        first = await client.http_client()
        await client.close()

        assert first.is_closed
        second = await client.http_client()
        assert second is not first
        await client.close()

    @pytest.mark.asyncio
    async def test_close_without_client(self) -> None:
        client = UpstreamClient()
        await client.close()
