"""Health check endpoints for monitoring and orchestration.

This module provides:
- /health (liveness): Basic check that the service is running
- /health/live (liveness): Alias for Kubernetes compatibility
- /health/ready (readiness): Dashboard config plus every upstream source

A missing dashboard configuration makes the service not ready. An
unreachable upstream only degrades it, since the affected plots are dropped
while the rest of each dashboard still renders.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import httpx
import structlog

from heracles.dashboard.models import DashboardConfig

logger = structlog.get_logger(__name__)


class HealthStatus(Enum):
    """Health status values."""

    OK = "ok"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class ServiceStatus(Enum):
    """Overall service status."""

    READY = "ready"
    DEGRADED = "degraded"
    NOT_READY = "not_ready"


@dataclass
class ComponentCheck:
    """Result of a component health check.

    Attributes:
        name: Component name.
        status: Health status.
        latency_ms: Check latency in milliseconds.
        error: Error message if unhealthy.
        details: Additional details.
        critical: Whether an unhealthy result makes the service not ready.
    """

    name: str
    status: HealthStatus
    latency_ms: float
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    critical: bool = True

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.error:
            result["error"] = self.error
        if self.details:
            result["details"] = self.details
        return result


class HealthChecker:
    """Base class for component health checkers."""

    critical = True

    def __init__(self, name: str, timeout: float = 5.0) -> None:
        """Initialize health checker.

        Args:
            name: Component name.
            timeout: Check timeout in seconds.
        """
        self.name = name
        self.timeout = timeout

    async def check(self) -> ComponentCheck:
        """Run health check.

        Returns:
            ComponentCheck result.
        """
        start = time.monotonic()
        try:
            result = await asyncio.wait_for(self._do_check(), timeout=self.timeout)
            status, error, details = result.status, result.error, result.details
        except TimeoutError:
            status, error, details = HealthStatus.UNHEALTHY, f"Timeout after {self.timeout}s", {}
        except Exception as e:
            status, error, details = HealthStatus.UNHEALTHY, str(e), {}
        return ComponentCheck(
            name=self.name,
            status=status,
            latency_ms=(time.monotonic() - start) * 1000,
            error=error,
            details=details,
            critical=self.critical,
        )

    async def _do_check(self) -> ComponentCheck:
        """Implement the actual health check."""
        raise NotImplementedError


class DashboardConfigChecker(HealthChecker):
    """Reports whether a dashboard configuration is loaded."""

    def __init__(self, config: DashboardConfig | None) -> None:
        super().__init__("dashboards", timeout=1.0)
        self.config = config

    async def _do_check(self) -> ComponentCheck:
        if self.config is None:
            return ComponentCheck(
                name=self.name,
                status=HealthStatus.UNHEALTHY,
                latency_ms=0,
                error="No dashboard configuration loaded",
            )
        return ComponentCheck(
            name=self.name,
            status=HealthStatus.OK,
            latency_ms=0,
            details={
                "dashboards": len(self.config.dashboards),
                "sources": len(self.config.sources()),
            },
        )


class UpstreamSourceChecker(HealthChecker):
    """Probes an upstream base URL.

    Any HTTP answer, including an error status, proves the source is
    reachable; a 5xx answer is reported as degraded.
    """

    critical = False

    def __init__(self, source: str, client: httpx.AsyncClient, timeout: float = 5.0) -> None:
        super().__init__(source, timeout)
        self.client = client

    async def _do_check(self) -> ComponentCheck:
        response = await self.client.get(self.name, timeout=self.timeout)
        if response.status_code >= 500:
            return ComponentCheck(
                name=self.name,
                status=HealthStatus.DEGRADED,
                latency_ms=0,
                error=f"HTTP {response.status_code}",
            )
        return ComponentCheck(name=self.name, status=HealthStatus.OK, latency_ms=0)


@dataclass
class HealthCheckResult:
    """Result of full health check.

    Attributes:
        status: Overall service status.
        checks: Individual component checks.
        timestamp: When the check was performed.
        version: Service version.
    """

    status: ServiceStatus
    checks: dict[str, dict[str, Any]]
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    version: str = "0.1.0"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "status": self.status.value,
            "checks": self.checks,
            "timestamp": self.timestamp.isoformat(),
            "version": self.version,
        }


class HealthService:
    """Service for running health checks.

    Example:
        service = HealthService()
        service.register_checker(DashboardConfigChecker(config))

        result = await service.readiness()
    """

    def __init__(self, version: str = "0.1.0") -> None:
        self.version = version
        self._checkers: list[HealthChecker] = []

    def register_checker(self, checker: HealthChecker) -> None:
        """Register a health checker."""
        self._checkers.append(checker)
        logger.debug("health_checker_registered", name=checker.name)

    async def liveness(self) -> dict[str, Any]:
        """Basic liveness check.

        Does not check dependencies.
        """
        return {
            "status": "ok",
            "timestamp": datetime.now(UTC).isoformat(),
        }

    async def readiness(self) -> HealthCheckResult:
        """Full readiness check.

        Checks all registered components in parallel.

        Returns:
            Comprehensive health check result.
        """
        results = await asyncio.gather(*(checker.check() for checker in self._checkers))

        checks: dict[str, dict[str, Any]] = {}
        not_ready = False
        degraded = False
        for result in results:
            checks[result.name] = result.to_dict()
            if result.status == HealthStatus.OK:
                continue
            if result.status == HealthStatus.UNHEALTHY and result.critical:
                not_ready = True
            else:
                degraded = True

        if not_ready:
            status = ServiceStatus.NOT_READY
        elif degraded:
            status = ServiceStatus.DEGRADED
        else:
            status = ServiceStatus.READY

        logger.info(
            "health_check_completed",
            status=status.value,
            checks_count=len(checks),
        )
        return HealthCheckResult(status=status, checks=checks, version=self.version)


def create_health_service(
    config: DashboardConfig | None,
    http_client: httpx.AsyncClient | None = None,
    version: str = "0.1.0",
    timeout: float = 5.0,
) -> HealthService:
    """Create a health service for a dashboard configuration.

    Args:
        config: Loaded configuration, or None if loading failed.
        http_client: Client used to probe upstream sources; sources are not
            probed without one.
        version: Service version.
        timeout: Per-source probe timeout.

    Returns:
        Configured HealthService.
    """
    service = HealthService(version=version)
    service.register_checker(DashboardConfigChecker(config))
    if config is not None and http_client is not None:
        for source in sorted(config.sources()):
            service.register_checker(UpstreamSourceChecker(source, http_client, timeout=timeout))
    return service
