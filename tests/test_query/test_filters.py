"""Tests for label filters and query templating."""

import pytest

from heracles.dashboard.models import LogSourceType
from heracles.query.filters import (
    FILTER_PLACEHOLDER,
    build_query,
    compile_filters,
    filters_from_params,
    is_excluded,
    keep_matching,
    matcher_fragment,
)


@pytest.fixture
def job_filters():
    return {"job": frozenset({"node", "api"})}


class TestFiltersFromParams:
    """Tests for filter-<label> parameter parsing."""

    def test_pipe_delimited_values(self) -> None:
        filters = filters_from_params({"filter-job": "node|api"})
        assert filters == {"job": frozenset({"node", "api"})}

    def test_multiple_labels(self) -> None:
        filters = filters_from_params({"filter-job": "node", "filter-instance": "a|b"})
        assert filters == {
            "job": frozenset({"node"}),
            "instance": frozenset({"a", "b"}),
        }

    def test_other_params_ignored(self) -> None:
        filters = filters_from_params({"end": "now", "duration": "1h", "filterjob": "x"})
        assert filters == {}

    def test_invalid_label_names_dropped(self) -> None:
        filters = filters_from_params({"filter-job": "a", "filter-bad name": "b", "filter-9x": "c"})
        assert filters == {"job": frozenset({"a"})}

    def test_empty_values_dropped(self) -> None:
        assert filters_from_params({"filter-job": "node||"}) == {"job": frozenset({"node"})}
        assert filters_from_params({"filter-job": ""}) == {}
        assert filters_from_params({"filter-": "x"}) == {}


class TestBuildQuery:
    """Tests for placeholder substitution."""

    def test_template_without_placeholder_unchanged(self, job_filters) -> None:
        query = 'rate(http_requests_total{job="x"}[5m])'
        assert build_query(query, job_filters, True) == query
        assert build_query(query, {}, False) == query

    def test_placeholder_replaced(self, job_filters) -> None:
        query = build_query(f"up{{{FILTER_PLACEHOLDER}}}", job_filters, True)
        assert query == 'up{job=~"api|node"}'

    def test_placeholder_removed_without_filters(self) -> None:
        assert build_query(f"up{{{FILTER_PLACEHOLDER}}}", {}, True) == "up{}"

    def test_placeholder_removed_when_disallowed(self, job_filters) -> None:
        assert build_query(f"up{{{FILTER_PLACEHOLDER}}}", job_filters, False) == "up{}"

    def test_every_occurrence_replaced(self) -> None:
        template = f"sum(a{{{FILTER_PLACEHOLDER}}}) / sum(b{{{FILTER_PLACEHOLDER}}})"
        query = build_query(template, {"job": frozenset({"node"})}, True)
        assert query == 'sum(a{job=~"node"}) / sum(b{job=~"node"})'

    def test_deterministic_label_order(self) -> None:
        filters = {"zone": frozenset({"b", "a"}), "job": frozenset({"node"})}
        assert matcher_fragment(filters) == 'job=~"node",zone=~"a|b"'

    def test_quotes_and_backslashes_escaped(self) -> None:
        filters = {"job": frozenset({'a"b', "c\\.d"})}
        assert matcher_fragment(filters) == 'job=~"a\\"b|c\\\\.d"'

    def test_invalid_label_names_skipped(self) -> None:
        filters = {"job": frozenset({"node"}), 'x"}': frozenset({"y"})}
        assert matcher_fragment(filters) == 'job=~"node"'

    def test_logsql_fragment(self) -> None:
        filters = {"zone": frozenset({"b", "a"}), "job": frozenset({"node"})}
        query = build_query(f"error {FILTER_PLACEHOLDER}", filters, True, LogSourceType.LOGSQL)
        assert query == 'error job:~"^(?:node)$" zone:~"^(?:a|b)$"'

    def test_loki_fragment_matches_metrics(self, job_filters) -> None:
        query = build_query(f"{{{FILTER_PLACEHOLDER}}}", job_filters, True, LogSourceType.LOKI)
        assert query == '{job=~"api|node"}'


class TestExclusion:
    """Tests for post-hoc exclusion of returned label sets."""

    def test_matching_value_kept(self, job_filters) -> None:
        assert not is_excluded({"job": "node"}, compile_filters(job_filters))

    def test_other_value_excluded(self, job_filters) -> None:
        assert is_excluded({"job": "db"}, compile_filters(job_filters))

    def test_missing_label_kept(self, job_filters) -> None:
        assert not is_excluded({"instance": "a"}, compile_filters(job_filters))

    def test_regex_value_agrees_with_query(self) -> None:
        filters = filters_from_params({"filter-job": "api.*"})

        assert build_query(f"up{{{FILTER_PLACEHOLDER}}}", filters, True) == 'up{job=~"api.*"}'
        patterns = compile_filters(filters)
        assert not is_excluded({"job": "api-1"}, patterns)
        assert is_excluded({"job": "db"}, patterns)

    def test_values_are_anchored(self, job_filters) -> None:
        patterns = compile_filters(job_filters)
        assert is_excluded({"job": "node-exporter"}, patterns)
        assert is_excluded({"job": "my-api"}, patterns)

    def test_invalid_expression_matched_literally(self) -> None:
        patterns = compile_filters({"job": frozenset({"a(b"})})
        assert not is_excluded({"job": "a(b"}, patterns)
        assert is_excluded({"job": "ab"}, patterns)

    def test_keep_matching(self, job_filters) -> None:
        entries = [({"job": "node"}, 1), ({"job": "db"}, 2), ({}, 3)]
        assert keep_matching(entries, job_filters) == [({"job": "node"}, 1), ({}, 3)]

    def test_keep_matching_without_filters(self) -> None:
        entries = [({"job": "db"}, 1)]
        assert keep_matching(entries, {}) == entries
