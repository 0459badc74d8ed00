"""FastAPI application for the dashboard API.

This module contains:
- Graph and log panel endpoints
- Health check endpoints
- Response models
"""

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
from heracles.api.routes import (
    DashboardIndex,
    ErrorResponse,
    app,
    build_index,
    create_app,
)

__all__ = [
    "ComponentCheck",
    "DashboardConfigChecker",
    "DashboardIndex",
    "ErrorResponse",
    "HealthCheckResult",
    "HealthChecker",
    "HealthService",
    "HealthStatus",
    "ServiceStatus",
    "UpstreamSourceChecker",
    "app",
    "build_index",
    "create_app",
]
