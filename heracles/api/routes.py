"""FastAPI routes for the Heracles dashboard API.

This module provides:
- /api/dash index of every dashboard, graph and log panel
- /api/dash/{dash_idx}/graph/{graph_idx} metrics payloads
- /api/dash/{dash_idx}/log/{log_idx} log payloads
- Health check endpoints integration
- CORS configuration
- Error handling
"""

import asyncio
from collections.abc import Awaitable
from contextlib import asynccontextmanager
from typing import Any, TypeVar

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from heracles import __version__
from heracles.api.health import ServiceStatus, create_health_service
from heracles.config import Settings, configure_logging
from heracles.config import settings as default_settings
from heracles.dashboard.loader import read_dashboard_list
from heracles.dashboard.models import DashboardConfig
from heracles.orchestration.errors import HeraclesError
from heracles.orchestration.orchestrator import Clock, RenderOrchestrator
from heracles.query.client import UpstreamClient
from heracles.query.filters import filters_from_params
from heracles.query.models import QueryPayload
from heracles.query.span import span_from_params

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Status used when the client went away before the payload was ready.
CLIENT_CLOSED_REQUEST = 499

DISCONNECT_POLL_SECONDS = 0.25


# ============================================================================
# Response Models
# ============================================================================


class PanelLink(BaseModel):
    """A graph or log panel and the URI that renders it."""

    title: str
    uri: str


class DashboardSummary(BaseModel):
    """One dashboard in the index."""

    index: int
    title: str
    graphs: list[PanelLink] = Field(default_factory=list)
    logs: list[PanelLink] = Field(default_factory=list)


class DashboardIndex(BaseModel):
    """Every configured dashboard with its panel URIs."""

    dashboards: list[DashboardSummary] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error message")
    detail: Any | None = Field(default=None, description="Detailed error information")


def build_index(config: DashboardConfig) -> DashboardIndex:
    """Describe every dashboard and the URIs of its panels."""
    return DashboardIndex(
        dashboards=[
            DashboardSummary(
                index=dash_idx,
                title=dashboard.title,
                graphs=[
                    PanelLink(title=graph.title, uri=f"/api/dash/{dash_idx}/graph/{graph_idx}")
                    for graph_idx, graph in enumerate(dashboard.graphs)
                ],
                logs=[
                    PanelLink(title=log.title, uri=f"/api/dash/{dash_idx}/log/{log_idx}")
                    for log_idx, log in enumerate(dashboard.logs)
                ],
            )
            for dash_idx, dashboard in enumerate(config.dashboards)
        ]
    )


async def run_until_disconnect(request: Request, work: Awaitable[T]) -> T | None:
    """Run ``work`` as a task, cancelling it if the client disconnects.

    Returns:
        The result of ``work``, or None when the client went away first.
    """
    task = asyncio.ensure_future(work)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
            if done:
                return task.result()
            if await request.is_disconnected():
                logger.info("client_disconnected", path=request.url.path)
                task.cancel()
                await asyncio.wait({task})
                return None
    finally:
        if not task.done():
            task.cancel()


def payload_response(payload: QueryPayload | None) -> Response:
    if payload is None:
        return Response(status_code=CLIENT_CLOSED_REQUEST)
    return JSONResponse(content=payload.model_dump(mode="json"))


# ============================================================================
# Application Setup
# ============================================================================


def create_app(
    dashboards: DashboardConfig | None = None,
    *,
    app_settings: Settings | None = None,
    client: UpstreamClient | None = None,
    clock: Clock | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        dashboards: Dashboard configuration; loaded from
            ``HERACLES_CONFIG`` at startup when omitted.
        app_settings: Settings to use instead of the environment.
        client: Upstream client to use instead of a new one.
        clock: Clock for request ``now`` sampling, used by tests.

    Returns:
        Configured FastAPI application.
    """
    cfg = app_settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(cfg.LOG_LEVEL)
        logger.info("application_starting", version=__version__)

        config = dashboards
        if config is None:
            try:
                config = read_dashboard_list(cfg.HERACLES_CONFIG)
            except HeraclesError as e:
                logger.error("dashboards_unavailable", path=cfg.HERACLES_CONFIG, **e.to_dict())

        upstream = client or UpstreamClient(
            timeout_seconds=cfg.UPSTREAM_TIMEOUT_SECONDS,
            retries=cfg.UPSTREAM_RETRIES,
            max_connections=cfg.MAX_UPSTREAM_CONNECTIONS,
        )
        app.state.dashboards = config
        app.state.upstream = upstream
        app.state.orchestrator = None
        if config is not None:
            app.state.orchestrator = RenderOrchestrator(
                config,
                upstream,
                default_log_limit=cfg.DEFAULT_LOG_LIMIT,
                clock=clock,
            )
        app.state.health_service = create_health_service(
            config,
            await upstream.http_client(),
            version=__version__,
        )

        yield

        logger.info("application_shutting_down")
        await upstream.close()

    app = FastAPI(
        title="Heracles",
        version=__version__,
        description="Renders metrics and log dashboards from Prometheus, Loki and VictoriaLogs.",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.exception_handler(HeraclesError)
    async def heracles_exception_handler(
        request: Request, exc: HeraclesError
    ) -> JSONResponse:
        logger.info(
            "request_rejected",
            path=request.url.path,
            status=exc.status_code,
            error=exc.message,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=exc.message, detail=exc.details or None).model_dump(),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException  # noqa: ARG001
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=exc.detail if isinstance(exc.detail, str) else str(exc.detail),
            ).model_dump(),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception  # noqa: ARG001
    ) -> JSONResponse:
        logger.error("unhandled_exception", error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(error="Internal server error").model_dump(),
        )

    register_routes(app)

    return app


def _orchestrator(request: Request) -> RenderOrchestrator:
    orchestrator = request.app.state.orchestrator
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Dashboard configuration not loaded")
    return orchestrator


def register_routes(app: FastAPI) -> None:
    """Register all routes on the application.

    Args:
        app: FastAPI application.
    """

    @app.get("/health", tags=["Health"])
    async def health(request: Request) -> dict[str, Any]:
        """Basic liveness check."""
        return await request.app.state.health_service.liveness()

    @app.get("/health/live", tags=["Health"])
    async def liveness(request: Request) -> dict[str, Any]:
        """Kubernetes-style liveness probe."""
        return await health(request)

    @app.get("/health/ready", tags=["Health"])
    async def readiness(request: Request) -> JSONResponse:
        """Dashboard configuration and upstream reachability."""
        result = await request.app.state.health_service.readiness()
        status_code = 200 if result.status != ServiceStatus.NOT_READY else 503
        return JSONResponse(content=result.to_dict(), status_code=status_code)

    @app.get("/api/dash", tags=["Dashboards"])
    async def dashboard_index(request: Request) -> DashboardIndex:
        """List dashboards with the URIs of their graphs and log panels."""
        return build_index(_orchestrator(request).config)

    @app.get("/api/dash/{dash_idx}/graph/{graph_idx}", tags=["Dashboards"])
    async def graph_payload(request: Request, dash_idx: int, graph_idx: int) -> Response:
        """Render a metrics graph.

        Accepts ``end``, ``duration`` and ``step_duration`` (all three, or
        none take effect) and ``filter-<label>=v1|v2`` parameters.
        """
        orchestrator = _orchestrator(request)
        params = request.query_params
        payload = await run_until_disconnect(
            request,
            orchestrator.render_graph(
                dash_idx,
                graph_idx,
                override=span_from_params(dict(params)),
                filters=filters_from_params(params),
            ),
        )
        return payload_response(payload)

    @app.get("/api/dash/{dash_idx}/log/{log_idx}", tags=["Dashboards"])
    async def log_payload(request: Request, dash_idx: int, log_idx: int) -> Response:
        """Render a log panel. Takes the same parameters as graphs."""
        orchestrator = _orchestrator(request)
        params = request.query_params
        payload = await run_until_disconnect(
            request,
            orchestrator.render_logs(
                dash_idx,
                log_idx,
                override=span_from_params(dict(params)),
                filters=filters_from_params(params),
            ),
        )
        return payload_response(payload)


app = create_app()
