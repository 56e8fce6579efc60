from __future__ import annotations

import argparse
import contextlib
import json
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Any, Callable, Iterator, Mapping, TypeVar

from .client import ApiClient
from .config import (
    ARRIVAL_DISTRIBUTIONS,
    DEFAULT_BASE_URL,
    DEFAULT_ERROR_RATE,
    DEFAULT_FAILURE_RATE,
    DEFAULT_LATENCY_TARGET_MS,
    ArrivalProfile,
    FixtureSize,
    RunConfig,
    ScenarioSettings,
    default_thresholds,
    env_value,
    load_thresholds_file,
)
from .errors import PrloadError

LOGGER = logging.getLogger("prload")

# Three-state exit codes so CI can tell "thresholds breached" from "harness crashed".
EXIT_PASS = 0
EXIT_THRESHOLD_BREACH = 1
EXIT_HARNESS_ERROR = 2

T = TypeVar("T")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Drive a fixed arrival rate of team / pull-request traffic and check SLIs"
    )
    parser.add_argument("--base-url", help="Base URL of the API under test")
    parser.add_argument("--rate", type=float, help="Iterations started per time unit")
    parser.add_argument("--time-unit", type=float, help="Length of the rate's time unit in seconds")
    parser.add_argument("--duration", type=float, help="Seconds to keep scheduling iterations")
    parser.add_argument("--pre-allocated-workers", type=int, help="Workers started up front")
    parser.add_argument("--max-workers", type=int, help="Ceiling on concurrent workers")
    parser.add_argument("--arrival", choices=ARRIVAL_DISTRIBUTIONS, help="Arrival distribution")
    parser.add_argument(
        "--latency-threshold-ms",
        type=float,
        help="Response-time SLI target; used by the per-request checks and the p95 threshold",
    )
    parser.add_argument(
        "--failure-rate-threshold", type=float, help="Maximum http_req_failed rate"
    )
    parser.add_argument("--error-rate-threshold", type=float, help="Maximum custom errors rate")
    parser.add_argument("--teams", type=int, help="Teams created during setup")
    parser.add_argument("--members-per-team", type=int, help="Users per team created during setup")
    parser.add_argument(
        "--merge-min-registry", type=int, help="PRs that must exist before merges start"
    )
    parser.add_argument(
        "--merge-window", type=int, help="Merges pick among this many most recent PRs"
    )
    parser.add_argument("--request-timeout", type=float, help="Per-request timeout in seconds")
    parser.add_argument(
        "--thresholds",
        type=str,
        help="YAML file of metric thresholds (replaces the defaults)",
    )
    parser.add_argument(
        "--wait-timeout",
        type=float,
        help="Seconds to wait for /health before setup (0 disables the wait)",
    )
    parser.add_argument("--output-dir", type=str, help="Directory for CSV, JSON and charts")
    parser.add_argument("--seed", type=int, help="Seed for scenario draws")
    parser.add_argument(
        "--target-image",
        help="Docker image of the API; when set the target is started for the run",
    )
    parser.add_argument("--target-port", type=int, help="Port the target image listens on")
    parser.add_argument(
        "--target-env",
        help="JSON encoded dict of environment variables for the target container",
    )
    parser.add_argument(
        "--networks",
        help="Comma-separated list of docker network names for the target container",
    )
    parser.add_argument("--log-level", help="Logging level")
    return parser.parse_args(argv)


def _resolve(
    value: T | None,
    env: Mapping[str, str],
    name: str,
    default: T,
    convert: Callable[[str], T],
) -> T:
    if value is not None:
        return value
    return env_value(env, name, default, convert)


def build_config(args: argparse.Namespace, env: Mapping[str, str]) -> RunConfig:
    latency_ms = _resolve(
        args.latency_threshold_ms, env, "PRLOAD_LATENCY_THRESHOLD_MS", DEFAULT_LATENCY_TARGET_MS, float
    )
    failure_rate = _resolve(
        args.failure_rate_threshold, env, "PRLOAD_FAILURE_RATE_THRESHOLD", DEFAULT_FAILURE_RATE, float
    )
    error_rate = _resolve(
        args.error_rate_threshold, env, "PRLOAD_ERROR_RATE_THRESHOLD", DEFAULT_ERROR_RATE, float
    )

    thresholds_path = args.thresholds or env.get("PRLOAD_THRESHOLDS_PATH")
    if thresholds_path:
        thresholds = load_thresholds_file(Path(thresholds_path))
    else:
        thresholds = default_thresholds(latency_ms, failure_rate, error_rate)

    output_dir = args.output_dir or env.get("PRLOAD_OUTPUT_DIR")
    seed = _resolve(args.seed, env, "PRLOAD_SEED", None, int)

    config = RunConfig(
        base_url=args.base_url or env.get("PRLOAD_BASE_URL", DEFAULT_BASE_URL),
        fixture=FixtureSize(
            teams=_resolve(args.teams, env, "PRLOAD_TEAMS", 20, int),
            members_per_team=_resolve(
                args.members_per_team, env, "PRLOAD_MEMBERS_PER_TEAM", 10, int
            ),
        ),
        arrival=ArrivalProfile(
            rate=_resolve(args.rate, env, "PRLOAD_RATE", 5.0, float),
            time_unit_s=_resolve(args.time_unit, env, "PRLOAD_TIME_UNIT", 1.0, float),
            duration_s=_resolve(args.duration, env, "PRLOAD_DURATION", 30.0, float),
            pre_allocated_workers=_resolve(
                args.pre_allocated_workers, env, "PRLOAD_PRE_ALLOCATED_WORKERS", 10, int
            ),
            max_workers=_resolve(args.max_workers, env, "PRLOAD_MAX_WORKERS", 50, int),
            distribution=_resolve(args.arrival, env, "PRLOAD_ARRIVAL", "constant", str),
        ),
        scenarios=ScenarioSettings(
            latency_target_ms=latency_ms,
            merge_min_registry=_resolve(
                args.merge_min_registry, env, "PRLOAD_MERGE_MIN_REGISTRY", 5, int
            ),
            merge_window=_resolve(args.merge_window, env, "PRLOAD_MERGE_WINDOW", 10, int),
        ),
        thresholds=thresholds,
        request_timeout_s=_resolve(args.request_timeout, env, "PRLOAD_REQUEST_TIMEOUT", 10.0, float),
        wait_timeout_s=_resolve(args.wait_timeout, env, "PRLOAD_WAIT_TIMEOUT", 60.0, float),
        output_dir=Path(output_dir) if output_dir else None,
        seed=seed,
    )
    return config.validate()


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


@contextlib.contextmanager
def provision_target(args: argparse.Namespace, env: Mapping[str, str], base_url: str) -> Iterator[str]:
    image = args.target_image or env.get("PRLOAD_TARGET_IMAGE")
    if not image:
        yield base_url
        return

    from .docker_control import TargetConfig, TargetServiceManager

    networks_value = args.networks or env.get("PRLOAD_TARGET_NETWORKS") or ""
    networks = [item.strip() for item in networks_value.split(",") if item.strip()]
    target_env: dict[str, Any] = json.loads(args.target_env or env.get("PRLOAD_TARGET_ENV", "{}"))
    manager = TargetServiceManager(network_names=networks)
    with manager.run(
        TargetConfig(
            image=image,
            port=_resolve(args.target_port, env, "PRLOAD_TARGET_PORT", 8080, int),
            environment={key: str(value) for key, value in target_env.items()},
        )
    ) as target_url:
        yield target_url


def execute(config: RunConfig, base_url: str) -> int:
    from .charts import render_run_charts
    from .runner import LoadTestRun, format_summary, write_artifacts

    client = ApiClient(base_url, timeout_s=config.request_timeout_s)
    try:
        if config.wait_timeout_s > 0:
            client.wait_until_healthy(config.wait_timeout_s)

        load_run = LoadTestRun(config, client)

        def handle_signal(signum, frame) -> None:
            print("stopping load run", file=sys.stderr)
            load_run.stop()

        previous = signal.signal(signal.SIGINT, handle_signal)
        try:
            result = load_run.run()
        finally:
            signal.signal(signal.SIGINT, previous)
    finally:
        client.close()

    print(format_summary(result))

    if config.output_dir is not None:
        write_artifacts(result, load_run.metrics, config.output_dir)
        render_run_charts(
            load_run.metrics.to_dataframe(),
            config.output_dir,
            config.scenarios.latency_target_ms,
        )

    return EXIT_PASS if result.passed else EXIT_THRESHOLD_BREACH


def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    env = os.environ
    setup_logging(args.log_level or env.get("PRLOAD_LOG_LEVEL", "INFO"))

    try:
        config = build_config(args, env)
        LOGGER.info("Target: %s", config.base_url)
        with provision_target(args, env, config.base_url) as base_url:
            return execute(config, base_url)
    except PrloadError as exc:
        LOGGER.error("Load run aborted: %s", exc)
        return EXIT_HARNESS_ERROR
    except Exception:
        LOGGER.exception("Load run crashed")
        return EXIT_HARNESS_ERROR


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
