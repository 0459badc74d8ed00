"""Tests for health check module."""

import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from heracles.api.health import (
    ComponentCheck,
    DashboardConfigChecker,
    HealthChecker,
    HealthCheckResult,
    HealthService,
    HealthStatus,
    ServiceStatus,
    UpstreamSourceChecker,
    create_health_service,
)
from heracles.api.routes import create_app
from heracles.dashboard.loader import parse_dashboards
from heracles.query.client import UpstreamClient

DOCUMENT = [
    {
        "title": "d",
        "graphs": [{"title": "g", "plots": [{"source": "http://prom", "query": "up"}]}],
        "logs": [{"title": "l", "source": "http://loki", "query": "{}"}],
    }
]


def mock_http(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class StaticChecker(HealthChecker):
    def __init__(self, name: str, status: HealthStatus, critical: bool = True) -> None:
        super().__init__(name)
        self.status = status
        self.critical = critical

    async def _do_check(self) -> ComponentCheck:
        return ComponentCheck(name=self.name, status=self.status, latency_ms=0)


class TestComponentCheck:
    """Tests for ComponentCheck."""

    def test_to_dict_basic(self) -> None:
        check = ComponentCheck(name="test", status=HealthStatus.OK, latency_ms=5.123)

        data = check.to_dict()
        assert data == {"status": "ok", "latency_ms": 5.12}

    def test_to_dict_with_error_and_details(self) -> None:
        check = ComponentCheck(
            name="test",
            status=HealthStatus.UNHEALTHY,
            latency_ms=1.0,
            error="Connection refused",
            details={"sources": 2},
        )

        data = check.to_dict()
        assert data["error"] == "Connection refused"
        assert data["details"] == {"sources": 2}


class TestHealthChecker:
    """Tests for base HealthChecker."""

    @pytest.mark.asyncio
    async def test_timeout_handling(self) -> None:
        class SlowChecker(HealthChecker):
            async def _do_check(self) -> ComponentCheck:
                await asyncio.sleep(10)
                return ComponentCheck(name=self.name, status=HealthStatus.OK, latency_ms=0)

        result = await SlowChecker("slow", timeout=0.05).check()

        assert result.status == HealthStatus.UNHEALTHY
        assert "Timeout" in result.error

    @pytest.mark.asyncio
    async def test_exception_handling(self) -> None:
        class BrokenChecker(HealthChecker):
            async def _do_check(self) -> ComponentCheck:
                raise RuntimeError("kaput")

        result = await BrokenChecker("broken").check()

        assert result.status == HealthStatus.UNHEALTHY
        assert result.error == "kaput"
        assert result.latency_ms >= 0


class TestDashboardConfigChecker:
    """Tests for the configuration checker."""

    @pytest.mark.asyncio
    async def test_loaded(self) -> None:
        result = await DashboardConfigChecker(parse_dashboards(DOCUMENT)).check()

        assert result.status == HealthStatus.OK
        assert result.details == {"dashboards": 1, "sources": 2}

    @pytest.mark.asyncio
    async def test_missing(self) -> None:
        result = await DashboardConfigChecker(None).check()
        assert result.status == HealthStatus.UNHEALTHY
        assert result.critical


class TestUpstreamSourceChecker:
    """Tests for upstream probes."""

    @pytest.mark.asyncio
    async def test_reachable(self) -> None:
        checker = UpstreamSourceChecker("http://prom", mock_http(lambda r: httpx.Response(404)))
        result = await checker.check()
        assert result.status == HealthStatus.OK
        assert not result.critical

    @pytest.mark.asyncio
    async def test_server_error(self) -> None:
        checker = UpstreamSourceChecker("http://prom", mock_http(lambda r: httpx.Response(503)))
        result = await checker.check()
        assert result.status == HealthStatus.DEGRADED

    @pytest.mark.asyncio
    async def test_unreachable(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        result = await UpstreamSourceChecker("http://prom", mock_http(refuse)).check()
        assert result.status == HealthStatus.UNHEALTHY


class TestHealthService:
    """Tests for HealthService."""

    @pytest.mark.asyncio
    async def test_liveness(self) -> None:
        result = await HealthService().liveness()
        assert result["status"] == "ok"
        assert "timestamp" in result

    @pytest.mark.asyncio
    async def test_ready(self) -> None:
        service = HealthService()
        service.register_checker(StaticChecker("a", HealthStatus.OK))

        result = await service.readiness()

        assert result.status == ServiceStatus.READY
        assert result.checks["a"]["status"] == "ok"

    @pytest.mark.asyncio
    async def test_no_checkers(self) -> None:
        assert (await HealthService().readiness()).status == ServiceStatus.READY

    @pytest.mark.asyncio
    async def test_non_critical_failure_degrades(self) -> None:
        service = HealthService()
        service.register_checker(StaticChecker("config", HealthStatus.OK))
        service.register_checker(StaticChecker("http://prom", HealthStatus.UNHEALTHY, critical=False))

        result = await service.readiness()

        assert result.status == ServiceStatus.DEGRADED

    @pytest.mark.asyncio
    async def test_critical_failure_not_ready(self) -> None:
        service = HealthService()
        service.register_checker(StaticChecker("config", HealthStatus.UNHEALTHY))

        result = await service.readiness()

        assert result.status == ServiceStatus.NOT_READY

    def test_result_to_dict(self) -> None:
        result = HealthCheckResult(status=ServiceStatus.READY, checks={}, version="9.9")
        data = result.to_dict()
        assert data["status"] == "ready"
        assert data["version"] == "9.9"
        assert "timestamp" in data


class TestCreateHealthService:
    """Tests for the health service factory."""

    @pytest.mark.asyncio
    async def test_probes_each_source(self) -> None:
        probed: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            probed.append(request.url.host)
            return httpx.Response(200)

        service = create_health_service(parse_dashboards(DOCUMENT), mock_http(handler))
        result = await service.readiness()

        assert result.status == ServiceStatus.READY
        assert set(result.checks) == {"dashboards", "http://prom", "http://loki"}
        assert sorted(probed) == ["loki", "prom"]

    @pytest.mark.asyncio
    async def test_without_http_client(self) -> None:
        service = create_health_service(parse_dashboards(DOCUMENT))
        result = await service.readiness()
        assert set(result.checks) == {"dashboards"}


class TestHealthEndpoints:
    """Tests for the health routes."""

    @pytest.fixture
    def client(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "loki":
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200)

        app = create_app(
            parse_dashboards(DOCUMENT),
            client=UpstreamClient(transport=httpx.MockTransport(handler)),
        )
        with TestClient(app) as test_client:
            yield test_client

    def test_health(self, client) -> None:
        assert client.get("/health").json()["status"] == "ok"
        assert client.get("/health/live").json()["status"] == "ok"

    def test_ready_degraded_by_upstream(self, client) -> None:
        response = client.get("/health/ready")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "degraded"
        assert body["checks"]["http://loki"]["status"] == "unhealthy"
        assert body["checks"]["dashboards"]["status"] == "ok"
