"""Per-request render orchestration.

Each render request walks through the same stages:

    Received → SpanResolved → QueriesBuilt → UpstreamDispatched
             → AllSettled → Shaped → Responded

Only ``UpstreamDispatched → AllSettled`` is concurrent: every plot query of
the request runs at once and the request waits for all of them. Lookup and
span errors end the request; upstream errors only drop the affected plot.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

import structlog

from heracles.dashboard.models import (
    Dashboard,
    DashboardConfig,
    QueryType,
    Span,
)
from heracles.query.client import UpstreamClient
from heracles.query.filters import LabelFilterSet, build_query
from heracles.query.models import (
    LogsPayload,
    MetricsPayload,
    QueryKind,
    UpstreamRequest,
    UpstreamResult,
)
from heracles.query.shaper import shape_logs, shape_metrics
from heracles.query.span import AbsoluteSpan, resolve_span

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(UTC)


class RenderStage(str, Enum):
    """Stages a render request moves through, strictly in order."""

    RECEIVED = "received"
    SPAN_RESOLVED = "span_resolved"
    QUERIES_BUILT = "queries_built"
    UPSTREAM_DISPATCHED = "upstream_dispatched"
    ALL_SETTLED = "all_settled"
    SHAPED = "shaped"
    RESPONDED = "responded"


_ORDER = list(RenderStage)


@dataclass
class RenderContext:
    """State owned by a single render request.

    Attributes:
        target: Human readable identity of the graph or panel.
        now: Wall-clock instant sampled once when the request arrived.
        override: Complete span supplied by the request, if any.
        filters: Label filters supplied by the request.
        stage: Current stage.
        span: Resolved window, once known.
        requests: Upstream calls built for this request.
        failures: Number of upstream calls that failed.
    """

    target: str
    now: datetime
    override: Span | None = None
    filters: LabelFilterSet = field(default_factory=dict)
    stage: RenderStage = RenderStage.RECEIVED
    span: AbsoluteSpan | None = None
    requests: list[UpstreamRequest] = field(default_factory=list)
    failures: int = 0

    def advance(self, stage: RenderStage) -> None:
        """Move to the next stage.

        Raises:
            RuntimeError: If ``stage`` is not the one right after the current.
        """
        if _ORDER.index(stage) != _ORDER.index(self.stage) + 1:
            raise RuntimeError(f"Cannot move from {self.stage.value} to {stage.value}")
        self.stage = stage
        logger.debug("render_stage", target=self.target, stage=stage.value)


def metrics_kind(query_type: QueryType) -> QueryKind:
    return QueryKind.METRICS_RANGE if query_type == QueryType.RANGE else QueryKind.METRICS_INSTANT


def logs_kind(query_type: QueryType) -> QueryKind:
    return QueryKind.LOGS_RANGE if query_type == QueryType.RANGE else QueryKind.LOGS_INSTANT


class RenderOrchestrator:
    """Resolves graphs and log panels into payloads.

    The orchestrator itself holds no per-request state: the configuration
    and the upstream client are shared read-only, and everything else lives
    in a ``RenderContext`` created per call.

    Example:
        orchestrator = RenderOrchestrator(config, UpstreamClient())
        payload = await orchestrator.render_graph(0, 1, filters={"job": frozenset({"node"})})
    """

    def __init__(
        self,
        config: DashboardConfig,
        client: UpstreamClient,
        *,
        clock: Clock | None = None,
        default_log_limit: int | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Loaded dashboard configuration.
            client: Upstream client used for dispatch.
            clock: Source of the request's ``now``.
            default_log_limit: Line limit for panels that configure none.
        """
        self._config = config
        self._client = client
        self._clock = clock or _utc_now
        self._default_log_limit = default_log_limit
        self._logger = logger.bind(component="render_orchestrator")

    @property
    def config(self) -> DashboardConfig:
        return self._config

    async def render_graph(
        self,
        dash_idx: int,
        graph_idx: int,
        *,
        override: Span | None = None,
        filters: LabelFilterSet | None = None,
    ) -> MetricsPayload:
        """Render a metrics graph.

        Args:
            dash_idx: Dashboard position.
            graph_idx: Graph position within the dashboard.
            override: Complete request-level span.
            filters: Client selected label filters.

        Returns:
            The metrics payload; failed plots are left out.

        Raises:
            ConfigError: If the graph does not exist.
            SpanError: If the applicable span is malformed.
        """
        context = RenderContext(
            target=f"dash/{dash_idx}/graph/{graph_idx}",
            now=self._clock(),
            override=override,
            filters=dict(filters or {}),
        )
        dashboard, graph = self._config.get_graph(dash_idx, graph_idx)

        context.span = resolve_span(graph.span or dashboard.span, now=context.now, override=override)
        context.advance(RenderStage.SPAN_RESOLVED)

        kind = metrics_kind(graph.query_type)
        context.requests = [
            UpstreamRequest(
                source=plot.source,
                query=build_query(plot.query, context.filters, graph.allow_uri_filters),
                span=context.span,
                kind=kind,
                label=f"{dashboard.title}/{graph.title}#{idx}",
            )
            for idx, plot in enumerate(graph.plots)
        ]
        context.advance(RenderStage.QUERIES_BUILT)

        results = await self._dispatch(context)

        filters_applied = context.filters if graph.allow_uri_filters else {}
        payload = shape_metrics(graph, results, filters_applied)
        context.advance(RenderStage.SHAPED)

        self._finish(context, dashboard, graph.title, plot_count=len(payload.Metrics.plots))
        return payload

    async def render_logs(
        self,
        dash_idx: int,
        log_idx: int,
        *,
        override: Span | None = None,
        filters: LabelFilterSet | None = None,
    ) -> LogsPayload:
        """Render a log panel.

        Args:
            dash_idx: Dashboard position.
            log_idx: Log panel position within the dashboard.
            override: Complete request-level span.
            filters: Client selected label filters.

        Returns:
            The logs payload; an upstream failure yields no lines.

        Raises:
            ConfigError: If the panel does not exist.
            SpanError: If the applicable span is malformed.
        """
        context = RenderContext(
            target=f"dash/{dash_idx}/log/{log_idx}",
            now=self._clock(),
            override=override,
            filters=dict(filters or {}),
        )
        dashboard, panel = self._config.get_log_stream(dash_idx, log_idx)

        context.span = resolve_span(panel.span or dashboard.span, now=context.now, override=override)
        context.advance(RenderStage.SPAN_RESOLVED)

        context.requests = [
            UpstreamRequest(
                source=panel.source,
                query=build_query(
                    panel.query, context.filters, panel.allow_uri_filters, panel.source_type
                ),
                span=context.span,
                kind=logs_kind(panel.query_type),
                log_source=panel.source_type,
                limit=panel.limit or self._default_log_limit,
                label=f"{dashboard.title}/{panel.title}",
            )
        ]
        context.advance(RenderStage.QUERIES_BUILT)

        (result,) = await self._dispatch(context)

        filters_applied = context.filters if panel.allow_uri_filters else {}
        payload = shape_logs(panel, result, filters_applied)
        context.advance(RenderStage.SHAPED)

        self._finish(context, dashboard, panel.title, plot_count=1 if result.ok else 0)
        return payload

    async def _dispatch(self, context: RenderContext) -> list[UpstreamResult]:
        context.advance(RenderStage.UPSTREAM_DISPATCHED)
        results = await self._client.dispatch(context.requests)
        context.advance(RenderStage.ALL_SETTLED)

        for idx, result in enumerate(results):
            if result.error is None:
                continue
            context.failures += 1
            self._logger.warning(
                "plot_dropped",
                target=context.target,
                plot=result.request.label,
                plot_index=idx,
                source=result.request.source,
                error_kind=result.error.kind.value,
                status=result.error.status,
                error=result.error.message,
            )
        return results

    def _finish(self, context: RenderContext, dashboard: Dashboard, title: str, plot_count: int) -> None:
        context.advance(RenderStage.RESPONDED)
        self._logger.info(
            "render_completed",
            target=context.target,
            dashboard=dashboard.title,
            title=title,
            requested=len(context.requests),
            failed=context.failures,
            plots=plot_count,
        )

