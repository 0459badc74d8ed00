"""Dashboard YAML loading.

Reads the dashboard list once at startup, validates it into the frozen
configuration model and checks every configured span so malformed time
descriptors are reported before the first request.
"""

from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from heracles.dashboard.models import DashboardConfig, Span
from heracles.orchestration.errors import ConfigError, SpanError
from heracles.query.span import resolve_span

logger = structlog.get_logger(__name__)


def parse_dashboards(document: Any, *, origin: str = "<memory>") -> DashboardConfig:
    """Validate an already parsed YAML document.

    Args:
        document: The document, expected to be a list of dashboards.
        origin: Where the document came from, for error messages.

    Returns:
        The validated configuration.

    Raises:
        ConfigError: If the document does not describe a dashboard list.
    """
    if document is None:
        document = []
    if not isinstance(document, list):
        raise ConfigError.malformed(
            f"{origin}: expected a list of dashboards, got {type(document).__name__}",
            origin=origin,
        )

    try:
        config = DashboardConfig(dashboards=document)
    except ValidationError as e:
        raise ConfigError.malformed(
            f"{origin}: invalid dashboard configuration",
            origin=origin,
            errors=e.errors(include_url=False, include_context=False),
        ) from e

    _check_spans(config, origin)
    return config


def _check_spans(config: DashboardConfig, origin: str) -> None:
    now = datetime.now(UTC)
    for dashboard in config.dashboards:
        spans: list[tuple[str, Span | None]] = [(dashboard.title, dashboard.span)]
        spans.extend((f"{dashboard.title}/{g.title}", g.span) for g in dashboard.graphs)
        spans.extend((f"{dashboard.title}/{log.title}", log.span) for log in dashboard.logs)
        for where, span in spans:
            if span is None:
                continue
            try:
                resolve_span(span, now=now)
            except SpanError as e:
                raise ConfigError.malformed(
                    f"{origin}: bad span in {where}: {e.message}",
                    origin=origin,
                    element=where,
                ) from e


def load_dashboards_from_string(text: str, *, origin: str = "<string>") -> DashboardConfig:
    """Parse and validate dashboard YAML text."""
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError.malformed(f"{origin}: invalid YAML: {e}", origin=origin) from e
    return parse_dashboards(document, origin=origin)


def read_dashboard_list(path: str | Path) -> DashboardConfig:
    """Load the dashboard list from a YAML file.

    Args:
        path: File to read.

    Returns:
        The validated configuration.

    Raises:
        ConfigError: If the file cannot be read or is invalid.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError.malformed(f"Cannot read {path}: {e}", origin=str(path)) from e

    config = load_dashboards_from_string(text, origin=str(path))
    logger.info(
        "dashboards_loaded",
        path=str(path),
        dashboard_count=len(config.dashboards),
        graph_count=sum(len(d.graphs) for d in config.dashboards),
        log_count=sum(len(d.logs) for d in config.dashboards),
    )
    return config
