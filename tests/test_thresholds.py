"""
Unit tests for threshold parsing and post-hoc evaluation.
"""

from __future__ import annotations

import pytest

from prload.client import ApiResponse
from prload.config import default_thresholds
from prload.errors import ThresholdSyntaxError
from prload.thresholds import evaluate_thresholds, parse_threshold, parse_thresholds

pytestmark = pytest.mark.unit


def test_parse_percentile_expression():
    threshold = parse_threshold("http_req_duration", "p(95)<300")

    assert threshold.aggregation == "p"
    assert threshold.percentile == 95.0
    assert threshold.op == "<"
    assert threshold.bound == 300.0
    assert threshold.key == "http_req_duration"


def test_parse_rate_expression_with_scenario_selector():
    threshold = parse_threshold("errors{scenario:deactivate_team}", " rate <= 0.01 ")

    assert threshold.metric == "errors"
    assert threshold.scenario == "deactivate_team"
    assert threshold.op == "<="
    assert threshold.bound == pytest.approx(0.01)
    assert threshold.key == "errors{scenario:deactivate_team}"


@pytest.mark.parametrize(
    ("metric", "expression"),
    [
        ("http_req_duration", "p95<300"),
        ("http_req_duration", "rate<0.1"),
        ("http_req_failed", "avg<1"),
        ("http_req_duration", "p(101)<1"),
        ("latency", "avg<1"),
        ("errors{team:x}", "rate<1"),
        ("errors", "rate<<1"),
        ("dropped_iterations", "rate<1"),
        ("dropped_iterations{scenario:get_stats}", "count<1"),
    ],
)
def test_invalid_thresholds_are_rejected(metric, expression):
    with pytest.raises(ThresholdSyntaxError):
        parse_threshold(metric, expression)


def test_default_thresholds_parse():
    thresholds = parse_thresholds(default_thresholds())

    assert [(t.metric, t.expression) for t in thresholds] == [
        ("http_req_duration", "p(95)<300"),
        ("http_req_failed", "rate<0.001"),
        ("errors", "rate<0.001"),
    ]


def test_all_pass_on_a_healthy_run(metrics):
    for _ in range(100):
        metrics.record_request("get_stats", "GET /stats", ApiResponse(200, 50.0), (200,))
        metrics.add_error("get_stats", False)

    report = evaluate_thresholds(parse_thresholds(default_thresholds()), metrics)

    assert report.passed
    assert report.failures == []


def test_slow_tail_breaches_p95(metrics):
    for index in range(100):
        duration = 500.0 if index >= 90 else 50.0
        metrics.record_request("get_stats", "GET /stats", ApiResponse(200, duration), (200,))

    report = evaluate_thresholds(parse_thresholds(default_thresholds()), metrics)

    assert not report.passed
    [failure] = report.failures
    assert failure.threshold.metric == "http_req_duration"
    assert failure.observed == pytest.approx(500.0)


def test_single_error_in_a_small_run_breaches_error_rate(metrics):
    for index in range(100):
        metrics.add_error("merge_pull_request", index == 0)

    report = evaluate_thresholds(parse_thresholds({"errors": ["rate<0.001"]}), metrics)

    assert not report.passed
    assert report.results[0].observed == pytest.approx(0.01)


def test_empty_run_passes_rate_and_trend_thresholds(metrics):
    report = evaluate_thresholds(parse_thresholds(default_thresholds()), metrics)

    assert report.passed
    assert all(result.observed == 0.0 for result in report.results)


@pytest.mark.parametrize(
    ("expression", "passed"),
    [
        ("avg<25", True),
        ("min>=10", True),
        ("max==30", True),
        ("med!=20", False),
        ("count>2", True),
        ("p(50)<=20", True),
    ],
)
def test_trend_aggregations(metrics, expression, passed):
    for duration in (10.0, 20.0, 30.0):
        metrics.record_request("a", "a", ApiResponse(200, duration), (200,))

    report = evaluate_thresholds([parse_threshold("http_req_duration", expression)], metrics)

    assert report.passed is passed


def test_counter_threshold(metrics):
    metrics.increment("dropped_iterations", 3)

    report = evaluate_thresholds([parse_threshold("dropped_iterations", "count<1")], metrics)

    assert not report.passed
    assert report.results[0].observed == 3.0
