from __future__ import annotations

import collections
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Iterable

import numpy as np
import pandas as pd

from .client import ApiResponse

TREND_METRICS: tuple[str, ...] = ("http_req_duration", "iteration_duration")
RATE_METRICS: tuple[str, ...] = ("http_req_failed", "errors", "checks")
COUNTER_METRICS: tuple[str, ...] = (
    "iterations",
    "dropped_iterations",
    "noop_iterations",
    "iteration_errors",
)

REQUEST_COLUMNS = [
    "scenario",
    "name",
    "status",
    "duration_ms",
    "failed",
    "worker",
    "iteration",
    "sent_ts",
]


@dataclass
class RateValue:
    hits: int = 0
    total: int = 0

    @property
    def rate(self) -> float:
        if self.total == 0:
            return 0.0
        return self.hits / self.total

    def add(self, hit: bool) -> None:
        self.hits += int(bool(hit))
        self.total += 1


@dataclass
class RunSummary:
    iterations: int
    noop_iterations: int
    dropped_iterations: int
    iteration_errors: int
    requests: int
    requests_by_scenario: dict[str, int]
    p95_ms: float
    avg_ms: float
    max_ms: float
    failure_rate: float
    error_rate: float
    checks_rate: float
    checks: dict[str, dict[str, int]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "iterations": self.iterations,
            "noop_iterations": self.noop_iterations,
            "dropped_iterations": self.dropped_iterations,
            "iteration_errors": self.iteration_errors,
            "requests": self.requests,
            "requests_by_scenario": dict(self.requests_by_scenario),
            "p95_ms": self.p95_ms,
            "avg_ms": self.avg_ms,
            "max_ms": self.max_ms,
            "failure_rate": self.failure_rate,
            "error_rate": self.error_rate,
            "checks_rate": self.checks_rate,
            "checks": {name: dict(value) for name, value in self.checks.items()},
        }


class MetricsRecorder:
    """Collects every observation of a run; safe to call from worker threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._requests: list[dict[str, Any]] = []
        self._iteration_durations: list[float] = []
        self._checks: dict[str, RateValue] = collections.defaultdict(RateValue)
        self._check_scenarios: dict[str, str] = {}
        self._errors: dict[str, RateValue] = collections.defaultdict(RateValue)
        self._counters: collections.Counter[str] = collections.Counter()

    def record_request(
        self,
        scenario: str,
        name: str,
        response: ApiResponse,
        expected_statuses: Iterable[int],
        worker: int = 0,
        iteration: int = 0,
    ) -> None:
        failed = response.status_code == 0 or not response.has_status(expected_statuses)
        row = {
            "scenario": scenario,
            "name": name,
            "status": response.status_code,
            "duration_ms": response.duration_ms,
            "failed": failed,
            "worker": worker,
            "iteration": iteration,
            "sent_ts": time.time() - response.duration_ms / 1000.0,
        }
        with self._lock:
            self._requests.append(row)

    def record_check(self, scenario: str, check_name: str, passed: bool) -> None:
        with self._lock:
            self._checks[check_name].add(passed)
            self._check_scenarios[check_name] = scenario

    def add_error(self, scenario: str, failed: bool) -> None:
        with self._lock:
            self._errors[scenario].add(failed)

    def record_iteration(self, duration_ms: float) -> None:
        with self._lock:
            self._iteration_durations.append(duration_ms)
            self._counters["iterations"] += 1

    def increment(self, counter: str, amount: int = 1) -> None:
        with self._lock:
            self._counters[counter] += amount

    def counter(self, name: str) -> int:
        with self._lock:
            return self._counters[name]

    def trend(self, metric: str, scenario: str | None = None) -> np.ndarray:
        with self._lock:
            if metric == "http_req_duration":
                values = [
                    row["duration_ms"]
                    for row in self._requests
                    if scenario is None or row["scenario"] == scenario
                ]
            elif metric == "iteration_duration":
                values = list(self._iteration_durations)
            else:
                raise KeyError(f"{metric!r} is not a trend metric")
        return np.asarray(values, dtype=float)

    def rate(self, metric: str, scenario: str | None = None) -> RateValue:
        with self._lock:
            if metric == "http_req_failed":
                value = RateValue()
                for row in self._requests:
                    if scenario is None or row["scenario"] == scenario:
                        value.add(row["failed"])
                return value
            if metric == "errors":
                return _merge_rates(self._errors, scenario)
            if metric == "checks":
                if scenario is None:
                    return _merge_rates(self._checks, None)
                selected = {
                    name: value
                    for name, value in self._checks.items()
                    if self._check_scenarios.get(name) == scenario
                }
                return _merge_rates(selected, None)
        raise KeyError(f"{metric!r} is not a rate metric")

    def count(self, metric: str, scenario: str | None = None) -> int:
        if metric in TREND_METRICS:
            return int(self.trend(metric, scenario).size)
        if metric in RATE_METRICS:
            return self.rate(metric, scenario).total
        return self.counter(metric)

    def checks(self) -> dict[str, dict[str, int]]:
        with self._lock:
            return {
                name: {"passes": value.hits, "fails": value.total - value.hits}
                for name, value in sorted(self._checks.items())
            }

    def to_dataframe(self) -> pd.DataFrame:
        with self._lock:
            rows = list(self._requests)
        if not rows:
            return pd.DataFrame(columns=REQUEST_COLUMNS)
        return pd.DataFrame(rows, columns=REQUEST_COLUMNS)

    def summary(self) -> RunSummary:
        durations = self.trend("http_req_duration")
        df = self.to_dataframe()
        requests_by_scenario = (
            {str(key): int(value) for key, value in df["scenario"].value_counts().items()}
            if not df.empty
            else {}
        )
        return RunSummary(
            iterations=self.counter("iterations"),
            noop_iterations=self.counter("noop_iterations"),
            dropped_iterations=self.counter("dropped_iterations"),
            iteration_errors=self.counter("iteration_errors"),
            requests=int(durations.size),
            requests_by_scenario=requests_by_scenario,
            p95_ms=percentile(durations, 95),
            avg_ms=float(durations.mean()) if durations.size else 0.0,
            max_ms=float(durations.max()) if durations.size else 0.0,
            failure_rate=self.rate("http_req_failed").rate,
            error_rate=self.rate("errors").rate,
            checks_rate=self.rate("checks").rate,
            checks=self.checks(),
        )


def percentile(values: np.ndarray, pct: float) -> float:
    if values.size == 0:
        return 0.0
    return float(np.percentile(values, pct))


def _merge_rates(rates: dict[str, RateValue], key: str | None) -> RateValue:
    if key is not None:
        value = rates.get(key)
        return RateValue(value.hits, value.total) if value else RateValue()
    merged = RateValue()
    for value in rates.values():
        merged.hits += value.hits
        merged.total += value.total
    return merged


__all__ = [
    "COUNTER_METRICS",
    "RATE_METRICS",
    "TREND_METRICS",
    "MetricsRecorder",
    "RateValue",
    "RunSummary",
    "percentile",
]
