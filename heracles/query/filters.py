"""Label filters and query templating.

Client-selected label filters narrow a plot in two independent ways:

- as label matchers substituted for the ``FILTERS`` placeholder in the
  plot's query template before it is sent upstream
- as a post-fetch exclusion over returned label sets that carry a
  filtered label

Filter values are regular expressions. Both applications anchor the
alternation of a label's values at both ends, the way PromQL's ``=~``
matcher does, so they always agree on which label sets pass.
"""

import re
from collections.abc import Iterable, Mapping

from heracles.dashboard.models import LogSourceType

FILTER_PLACEHOLDER = "FILTERS"
FILTER_PARAM_PREFIX = "filter-"

LabelFilterSet = dict[str, frozenset[str]]

_LABEL_NAME = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*")


def filters_from_params(params: Mapping[str, str]) -> LabelFilterSet:
    """Collect ``filter-<label>=v1|v2`` query parameters.

    Args:
        params: Request query parameters.

    Returns:
        Mapping of label name to the permitted values. Labels whose value
        list is empty, and names that are not valid label names, are left
        out.
    """
    filters: LabelFilterSet = {}
    for key, raw in params.items():
        if not key.startswith(FILTER_PARAM_PREFIX):
            continue
        label = key[len(FILTER_PARAM_PREFIX) :]
        values = frozenset(v for v in raw.split("|") if v)
        if _LABEL_NAME.fullmatch(label) and values:
            filters[label] = values
    return filters


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _alternation(values: frozenset[str]) -> str:
    return "|".join(sorted(values))


def matcher_fragment(
    filters: LabelFilterSet, source_type: LogSourceType | None = None
) -> str:
    """Render filters as label matchers for the target query language.

    PromQL and LogQL get comma separated ``label=~"v1|v2"`` matchers.
    LogsQL gets space separated ``label:~"^(?:v1|v2)$"`` filters, anchored
    explicitly since LogsQL regexp filters match substrings.
    """
    ordered = sorted(
        (label, values) for label, values in filters.items() if _LABEL_NAME.fullmatch(label)
    )
    if source_type == LogSourceType.LOGSQL:
        return " ".join(
            f"{label}:~{_quote(f'^(?:{_alternation(values)})$')}" for label, values in ordered
        )
    return ",".join(f"{label}=~{_quote(_alternation(values))}" for label, values in ordered)


def build_query(
    template: str,
    filters: LabelFilterSet,
    filters_allowed: bool,
    source_type: LogSourceType | None = None,
) -> str:
    """Substitute the filter placeholder in a query template.

    Every occurrence of the placeholder is replaced by the same fragment.
    With no filters, or when the element does not accept client filters,
    the placeholder is removed.

    Args:
        template: Raw query from the plot configuration.
        filters: Client selected label filters.
        filters_allowed: Whether the element honours client filters.
        source_type: Log backend of a log panel; ``None`` for metrics.

    Returns:
        The final query string.
    """
    if FILTER_PLACEHOLDER not in template:
        return template
    if not filters_allowed or not filters:
        return template.replace(FILTER_PLACEHOLDER, "")
    return template.replace(FILTER_PLACEHOLDER, matcher_fragment(filters, source_type))


def compile_filters(filters: LabelFilterSet) -> dict[str, re.Pattern[str]]:
    """Compile each label's values into one alternation.

    A value set that is not a valid expression is matched literally.
    """
    patterns: dict[str, re.Pattern[str]] = {}
    for label, values in filters.items():
        try:
            patterns[label] = re.compile(_alternation(values))
        except re.error:
            patterns[label] = re.compile("|".join(re.escape(v) for v in sorted(values)))
    return patterns


def is_excluded(labels: Mapping[str, str], patterns: Mapping[str, re.Pattern[str]]) -> bool:
    """Check whether a returned label set falls outside the filters.

    Only labels present on both sides are compared; a label set that lacks
    a filtered label is kept. Values must match in full.
    """
    for label, pattern in patterns.items():
        value = labels.get(label)
        if value is not None and pattern.fullmatch(value) is None:
            return True
    return False


def keep_matching(
    entries: Iterable[tuple], filters: LabelFilterSet
) -> list[tuple]:
    """Drop entries whose leading label mapping is excluded by ``filters``."""
    if not filters:
        return list(entries)
    patterns = compile_filters(filters)
    return [entry for entry in entries if not is_excluded(entry[0], patterns)]
