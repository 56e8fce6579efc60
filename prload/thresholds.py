"""
Post-hoc threshold evaluation.

Thresholds use the same small grammar as k6: a metric name (optionally narrowed
to one scenario with ``{scenario:<name>}``) maps to one or more expressions of
the form ``<aggregation> <operator> <number>``::

    http_req_duration: ["p(95)<300", "avg<150"]
    http_req_failed:   ["rate<0.001"]
    errors{scenario:merge_pull_request}: ["rate<0.01"]

Nothing here is enforced per request; the verdict is computed once, from the
aggregated observations, after the run has drained.
"""

from __future__ import annotations

import operator
import re
from dataclasses import dataclass
from typing import Callable, Mapping, Sequence

import numpy as np

from .errors import ThresholdSyntaxError
from .metrics import COUNTER_METRICS, RATE_METRICS, TREND_METRICS, MetricsRecorder, percentile

_METRIC_RE = re.compile(r"^(?P<metric>[a-z_]+)(?:\{scenario:(?P<scenario>[a-z_]+)\})?$")
_EXPRESSION_RE = re.compile(
    r"^\s*(?P<aggregation>avg|min|max|med|rate|count|p\(\s*(?P<pct>\d+(?:\.\d+)?)\s*\))"
    r"\s*(?P<op><=|>=|==|!=|<|>)\s*"
    r"(?P<bound>[-+]?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)\s*$"
)

OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}

TREND_AGGREGATIONS = {"avg", "min", "max", "med", "p", "count"}
RATE_AGGREGATIONS = {"rate", "count"}
COUNTER_AGGREGATIONS = {"count"}


@dataclass(frozen=True)
class Threshold:
    metric: str
    expression: str
    aggregation: str
    op: str
    bound: float
    percentile: float | None = None
    scenario: str | None = None

    @property
    def key(self) -> str:
        if self.scenario is None:
            return self.metric
        return f"{self.metric}{{scenario:{self.scenario}}}"


@dataclass(frozen=True)
class ThresholdResult:
    threshold: Threshold
    observed: float
    passed: bool


@dataclass(frozen=True)
class ThresholdReport:
    results: tuple[ThresholdResult, ...]

    @property
    def passed(self) -> bool:
        return all(result.passed for result in self.results)

    @property
    def failures(self) -> list[ThresholdResult]:
        return [result for result in self.results if not result.passed]


def parse_threshold(metric_key: str, expression: str) -> Threshold:
    metric_match = _METRIC_RE.match(metric_key.strip())
    if metric_match is None:
        raise ThresholdSyntaxError(f"invalid metric selector {metric_key!r}")
    metric = metric_match.group("metric")
    scenario = metric_match.group("scenario")

    if metric in TREND_METRICS:
        allowed = TREND_AGGREGATIONS
    elif metric in RATE_METRICS:
        allowed = RATE_AGGREGATIONS
    elif metric in COUNTER_METRICS:
        if scenario is not None:
            raise ThresholdSyntaxError(f"counter {metric!r} is not tagged by scenario")
        allowed = COUNTER_AGGREGATIONS
    else:
        raise ThresholdSyntaxError(f"unknown metric {metric!r}")

    match = _EXPRESSION_RE.match(expression)
    if match is None:
        raise ThresholdSyntaxError(f"invalid threshold expression {expression!r} for {metric}")

    aggregation = match.group("aggregation")
    pct: float | None = None
    if aggregation.startswith("p("):
        aggregation = "p"
        pct = float(match.group("pct"))
        if not 0 <= pct <= 100:
            raise ThresholdSyntaxError(f"percentile out of range in {expression!r}")
    if aggregation not in allowed:
        raise ThresholdSyntaxError(
            f"aggregation {aggregation!r} is not supported for metric {metric!r}"
        )

    return Threshold(
        metric=metric,
        expression=expression.strip(),
        aggregation=aggregation,
        op=match.group("op"),
        bound=float(match.group("bound")),
        percentile=pct,
        scenario=scenario,
    )


def parse_thresholds(config: Mapping[str, Sequence[str]]) -> list[Threshold]:
    return [
        parse_threshold(metric_key, expression)
        for metric_key, expressions in config.items()
        for expression in expressions
    ]


def observe(threshold: Threshold, metrics: MetricsRecorder) -> float:
    if threshold.aggregation == "count":
        return float(metrics.count(threshold.metric, threshold.scenario))
    if threshold.aggregation == "rate":
        return metrics.rate(threshold.metric, threshold.scenario).rate

    values = metrics.trend(threshold.metric, threshold.scenario)
    if values.size == 0:
        return 0.0
    if threshold.aggregation == "avg":
        return float(np.mean(values))
    if threshold.aggregation == "min":
        return float(np.min(values))
    if threshold.aggregation == "max":
        return float(np.max(values))
    if threshold.aggregation == "med":
        return float(np.median(values))
    return percentile(values, threshold.percentile or 0.0)


def evaluate_thresholds(
    thresholds: Sequence[Threshold], metrics: MetricsRecorder
) -> ThresholdReport:
    results = []
    for threshold in thresholds:
        observed = observe(threshold, metrics)
        passed = OPERATORS[threshold.op](observed, threshold.bound)
        results.append(ThresholdResult(threshold=threshold, observed=observed, passed=passed))
    return ThresholdReport(results=tuple(results))


__all__ = [
    "Threshold",
    "ThresholdReport",
    "ThresholdResult",
    "evaluate_thresholds",
    "parse_threshold",
    "parse_thresholds",
]
