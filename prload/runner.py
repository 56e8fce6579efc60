from __future__ import annotations

import json
import logging
import random
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .client import ApiClient
from .config import RunConfig
from .dispatcher import ScenarioDispatcher
from .fixtures import FixtureBuilder, RunFixture
from .metrics import MetricsRecorder, RunSummary
from .registry import PullRequestRegistry
from .scenarios import IterationContext
from .scheduler import ArrivalRateScheduler, SchedulerStatistics
from .thresholds import Threshold, ThresholdReport, evaluate_thresholds, parse_thresholds

LOGGER = logging.getLogger("prload.runner")


@dataclass
class RunResult:
    fixture: RunFixture
    pull_requests_created: int
    scheduler: SchedulerStatistics
    summary: RunSummary
    report: ThresholdReport

    @property
    def passed(self) -> bool:
        return self.report.passed

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "teams": len(self.fixture.teams),
            "users": self.fixture.user_count,
            "pull_requests_created": self.pull_requests_created,
            "scheduler": self.scheduler.to_dict(),
            "summary": self.summary.to_dict(),
            "thresholds": [
                {
                    "metric": result.threshold.key,
                    "expression": result.threshold.expression,
                    "observed": result.observed,
                    "passed": result.passed,
                }
                for result in self.report.results
            ],
        }


class LoadTestRun:
    """Setup, load, drain and teardown for one run against one target."""

    def __init__(
        self,
        config: RunConfig,
        client: ApiClient,
        dispatcher: ScenarioDispatcher | None = None,
    ) -> None:
        self._config = config
        self._client = client
        self._dispatcher = dispatcher or ScenarioDispatcher()
        # Raises ThresholdSyntaxError before setup touches the target.
        self._thresholds: list[Threshold] = parse_thresholds(config.thresholds)
        self._rng = random.Random(config.seed)
        self.metrics = MetricsRecorder()
        self.registry = PullRequestRegistry()
        self._scheduler = ArrivalRateScheduler(
            config.arrival,
            rng=random.Random(self._rng.random()),
            on_drop=lambda: self.metrics.increment("dropped_iterations"),
        )

    def setup(self) -> RunFixture:
        return FixtureBuilder(self._client, self._config.fixture).build()

    def run(self) -> RunResult:
        fixture = self.setup()

        def iteration(worker: int, number: int) -> None:
            started = time.perf_counter()
            ctx = IterationContext(
                client=self._client,
                fixture=fixture,
                registry=self.registry,
                metrics=self.metrics,
                settings=self._config.scenarios,
                rng=self._rng,
                worker=worker,
                iteration=number,
            )
            try:
                self._dispatcher.dispatch(ctx)
            except Exception:
                self.metrics.increment("iteration_errors")
                raise
            finally:
                self.metrics.record_iteration((time.perf_counter() - started) * 1000.0)

        stats = self._scheduler.run(iteration)
        return self.teardown(fixture, stats)

    def stop(self) -> None:
        self._scheduler.stop()

    def teardown(self, fixture: RunFixture, stats: SchedulerStatistics) -> RunResult:
        report = evaluate_thresholds(self._thresholds, self.metrics)
        result = RunResult(
            fixture=fixture,
            pull_requests_created=len(self.registry),
            scheduler=stats,
            summary=self.metrics.summary(),
            report=report,
        )
        LOGGER.info("Load run completed")
        LOGGER.info("Teams created: %d", len(fixture.teams))
        LOGGER.info("PRs created during test: %d", result.pull_requests_created)
        for threshold_result in report.failures:
            LOGGER.warning(
                "Threshold breached: %s %s (observed %.4f)",
                threshold_result.threshold.key,
                threshold_result.threshold.expression,
                threshold_result.observed,
            )
        return result


def format_summary(result: RunResult) -> str:
    summary = result.summary
    stats = result.scheduler
    lines = [
        "Load Run Summary",
        "-" * 64,
        f"{'Teams / users':<34}{len(result.fixture.teams):>10} / {result.fixture.user_count}",
        f"{'PRs created':<34}{result.pull_requests_created:>10}",
        f"{'Iterations scheduled':<34}{stats.scheduled:>10}",
        f"{'Iterations started':<34}{stats.started:>10}",
        f"{'Iterations dropped':<34}{stats.dropped:>10}",
        f"{'Iterations no-op':<34}{summary.noop_iterations:>10}",
        f"{'Iteration errors':<34}{stats.iteration_errors:>10}",
        f"{'Peak workers':<34}{stats.peak_workers:>10}",
        f"{'Iterations / s':<34}{stats.iterations_per_second:>10.2f}",
        f"{'Requests':<34}{summary.requests:>10}",
    ]
    for scenario in sorted(summary.requests_by_scenario):
        lines.append(f"{'  ' + scenario:<34}{summary.requests_by_scenario[scenario]:>10}")
    lines.extend(
        [
            f"{'Latency p95 / avg / max (ms)':<34}{summary.p95_ms:>10.1f} / "
            f"{summary.avg_ms:.1f} / {summary.max_ms:.1f}",
            f"{'http_req_failed rate':<34}{summary.failure_rate:>10.4f}",
            f"{'errors rate':<34}{summary.error_rate:>10.4f}",
            f"{'checks pass rate':<34}{summary.checks_rate:>10.4f}",
            "-" * 64,
            f"{'Threshold':<44}{'Observed':>12}{'Status':>8}",
            "-" * 64,
        ]
    )
    for threshold_result in result.report.results:
        label = f"{threshold_result.threshold.key} {threshold_result.threshold.expression}"
        status = "PASS" if threshold_result.passed else "FAIL"
        lines.append(f"{label:<44}{threshold_result.observed:>12.4f}{status:>8}")
    lines.append("-" * 64)
    lines.append(f"Overall: {'PASS' if result.passed else 'FAIL'}")
    return "\n".join(lines)


def write_artifacts(result: RunResult, metrics: MetricsRecorder, output_dir: Path) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    df = metrics.to_dataframe()
    csv_path = output_dir / "requests.csv"
    df.to_csv(csv_path, index=False)
    LOGGER.info("Saved %d request samples to %s", len(df), csv_path)

    summary_path = output_dir / "summary.json"
    with open(summary_path, "w", encoding="utf-8") as f:
        json.dump(result.to_dict(), f, indent=2)
    LOGGER.info("Run summary written to %s", summary_path)
    return summary_path


__all__ = ["LoadTestRun", "RunResult", "format_summary", "write_artifacts"]
