from __future__ import annotations

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping, TypeVar

import yaml

from .errors import ConfigError

DEFAULT_BASE_URL = "http://localhost:8080"
DEFAULT_LATENCY_TARGET_MS = 300.0
DEFAULT_FAILURE_RATE = 0.001
DEFAULT_ERROR_RATE = 0.001

ARRIVAL_DISTRIBUTIONS: tuple[str, ...] = ("constant", "poisson")

T = TypeVar("T")


@dataclass(frozen=True)
class FixtureSize:
    """How many teams, and members per team, the setup phase seeds."""

    teams: int = 20
    members_per_team: int = 10

    @property
    def user_count(self) -> int:
        return self.teams * self.members_per_team


@dataclass(frozen=True)
class ArrivalProfile:
    """Iteration arrival rate and the worker pool that absorbs it."""

    rate: float = 5.0
    time_unit_s: float = 1.0
    duration_s: float = 30.0
    pre_allocated_workers: int = 10
    max_workers: int = 50
    distribution: str = "constant"
    graceful_stop_s: float = 30.0

    @property
    def rate_per_second(self) -> float:
        return self.rate / self.time_unit_s

    @property
    def expected_iterations(self) -> int:
        return int(self.rate_per_second * self.duration_s)


@dataclass(frozen=True)
class ScenarioSettings:
    latency_target_ms: float = DEFAULT_LATENCY_TARGET_MS
    merge_min_registry: int = 5
    merge_window: int = 10


def default_thresholds(
    latency_ms: float = DEFAULT_LATENCY_TARGET_MS,
    failure_rate: float = DEFAULT_FAILURE_RATE,
    error_rate: float = DEFAULT_ERROR_RATE,
) -> dict[str, list[str]]:
    return {
        "http_req_duration": [f"p(95)<{latency_ms:g}"],
        "http_req_failed": [f"rate<{failure_rate:g}"],
        "errors": [f"rate<{error_rate:g}"],
    }


@dataclass(frozen=True)
class RunConfig:
    """Everything a single load run needs, already resolved and validated."""

    base_url: str = DEFAULT_BASE_URL
    fixture: FixtureSize = field(default_factory=FixtureSize)
    arrival: ArrivalProfile = field(default_factory=ArrivalProfile)
    scenarios: ScenarioSettings = field(default_factory=ScenarioSettings)
    thresholds: dict[str, list[str]] = field(default_factory=default_thresholds)
    request_timeout_s: float = 10.0
    wait_timeout_s: float = 60.0
    output_dir: Path | None = None
    seed: int | None = None

    def validate(self) -> "RunConfig":
        arrival = self.arrival
        if arrival.rate <= 0 or arrival.time_unit_s <= 0:
            raise ConfigError("arrival rate and time unit must be > 0")
        if arrival.duration_s <= 0:
            raise ConfigError("duration must be > 0")
        if arrival.max_workers < 1:
            raise ConfigError("max workers must be >= 1")
        if arrival.pre_allocated_workers < 0:
            raise ConfigError("pre-allocated workers must be >= 0")
        if arrival.pre_allocated_workers > arrival.max_workers:
            raise ConfigError(
                f"pre-allocated workers ({arrival.pre_allocated_workers}) exceed "
                f"max workers ({arrival.max_workers})"
            )
        if arrival.distribution not in ARRIVAL_DISTRIBUTIONS:
            raise ConfigError(f"unknown arrival distribution {arrival.distribution!r}")
        if self.fixture.teams < 0:
            raise ConfigError("team count must be >= 0")
        if self.fixture.members_per_team < 1:
            raise ConfigError("members per team must be >= 1")
        if self.scenarios.merge_window < 1:
            raise ConfigError("merge window must be >= 1")
        if self.scenarios.merge_min_registry < 0:
            raise ConfigError("merge minimum registry size must be >= 0")
        if self.request_timeout_s <= 0:
            raise ConfigError("request timeout must be > 0")
        return self


def load_thresholds_file(path: Path) -> dict[str, list[str]]:
    """
    Read ``metric: expression`` or ``metric: [expressions]`` pairs from YAML.
    """
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    if not isinstance(data, dict):
        raise ConfigError(f"thresholds file {path} must contain a mapping")

    thresholds: dict[str, list[str]] = {}
    for metric, expressions in data.items():
        if isinstance(expressions, str):
            expressions = [expressions]
        if not isinstance(expressions, list) or not all(
            isinstance(item, str) for item in expressions
        ):
            raise ConfigError(
                f"thresholds for {metric!r} must be a string or a list of strings"
            )
        thresholds[str(metric)] = list(expressions)
    return thresholds


def env_value(
    env: Mapping[str, str],
    name: str,
    default: T,
    convert: Callable[[str], T],
) -> T:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return convert(raw)
    except ValueError:
        print(
            f"invalid {name} value {raw!r}; defaulting to {default}",
            file=sys.stderr,
        )
        return default


__all__ = [
    "ARRIVAL_DISTRIBUTIONS",
    "DEFAULT_BASE_URL",
    "ArrivalProfile",
    "FixtureSize",
    "RunConfig",
    "ScenarioSettings",
    "default_thresholds",
    "env_value",
    "load_thresholds_file",
]
