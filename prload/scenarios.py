"""
Scenario executors: one simulated user action each.

Every executor performs at most one request against the target API, runs its
named checks against the response and adds exactly one sample to the ``errors``
rate of its scenario. Executors that decline to act (cold registry) return
``NOOP`` and record nothing.
"""

from __future__ import annotations

import logging
import random
import string
import time
from dataclasses import dataclass
from typing import Callable, Mapping

from .client import ApiClient, ApiResponse
from .config import ScenarioSettings
from .fixtures import RunFixture, Team
from .metrics import MetricsRecorder
from .registry import PullRequestRegistry

LOGGER = logging.getLogger("prload.scenarios")

GET_STATS = "get_stats"
GET_USER_REVIEWS = "get_user_reviews"
CREATE_PULL_REQUEST = "create_pull_request"
MERGE_PULL_REQUEST = "merge_pull_request"
DEACTIVATE_TEAM = "deactivate_team"

SUCCESS = "success"
FAILURE = "failure"
NOOP = "noop"

Check = Callable[[ApiResponse], bool]


@dataclass
class IterationContext:
    client: ApiClient
    fixture: RunFixture
    registry: PullRequestRegistry
    metrics: MetricsRecorder
    settings: ScenarioSettings
    rng: random.Random
    worker: int = 0
    iteration: int = 0

    def random_team(self) -> Team:
        return self.rng.choice(self.fixture.teams)


def random_suffix(rng: random.Random, length: int = 8) -> str:
    return "".join(rng.choices(string.ascii_lowercase + string.digits, k=length))


def new_pull_request_identity(worker: int, rng: random.Random) -> tuple[str, str]:
    """Return ``(pull_request_id, pull_request_name)`` unique across workers."""
    timestamp = int(time.time() * 1000)
    suffix = random_suffix(rng)
    return f"pr-{worker}-{timestamp}-{suffix}", f"Feature-{timestamp}-{suffix}"


def run_checks(
    ctx: IterationContext,
    scenario: str,
    response: ApiResponse,
    checks: Mapping[str, Check],
) -> bool:
    """Evaluate every check (no short-circuit) and record each outcome."""
    passed = True
    for check_name, predicate in checks.items():
        ok = bool(predicate(response))
        ctx.metrics.record_check(scenario, check_name, ok)
        passed = passed and ok
    return passed


def _fast(ctx: IterationContext) -> Check:
    target = ctx.settings.latency_target_ms
    return lambda r: r.duration_ms < target


def _has_total_teams(response: ApiResponse) -> bool:
    try:
        body = response.json()
    except ValueError:
        return False
    if not isinstance(body, dict):
        return False
    total_teams = body.get("total_teams")
    return isinstance(total_teams, (int, float)) and not isinstance(total_teams, bool)


def get_stats(ctx: IterationContext) -> str:
    response = ctx.client.get_stats()
    ctx.metrics.record_request(
        GET_STATS, "GET /stats", response, (200,), ctx.worker, ctx.iteration
    )
    target = ctx.settings.latency_target_ms
    success = run_checks(
        ctx,
        GET_STATS,
        response,
        {
            "stats: status is 200": lambda r: r.status_code == 200,
            f"stats: response time < {target:g}ms": _fast(ctx),
            "stats: has total_teams": _has_total_teams,
        },
    )
    ctx.metrics.add_error(GET_STATS, not success)
    return SUCCESS if success else FAILURE


def get_user_reviews(ctx: IterationContext) -> str:
    team = ctx.random_team()
    user = ctx.rng.choice(team.members)
    response = ctx.client.get_user_reviews(user.user_id)
    ctx.metrics.record_request(
        GET_USER_REVIEWS, "GET /users/getReview", response, (200,), ctx.worker, ctx.iteration
    )
    target = ctx.settings.latency_target_ms
    success = run_checks(
        ctx,
        GET_USER_REVIEWS,
        response,
        {
            "reviews: status is 200": lambda r: r.status_code == 200,
            f"reviews: response time < {target:g}ms": _fast(ctx),
        },
    )
    ctx.metrics.add_error(GET_USER_REVIEWS, not success)
    return SUCCESS if success else FAILURE


def create_pull_request(ctx: IterationContext) -> str:
    team = ctx.random_team()
    author = team.members[0]
    pull_request_id, pull_request_name = new_pull_request_identity(ctx.worker, ctx.rng)

    response = ctx.client.create_pull_request(pull_request_id, pull_request_name, author.user_id)
    ctx.metrics.record_request(
        CREATE_PULL_REQUEST, "POST /pullRequest/create", response, (201,), ctx.worker, ctx.iteration
    )
    target = ctx.settings.latency_target_ms
    success = run_checks(
        ctx,
        CREATE_PULL_REQUEST,
        response,
        {
            "pr create: status is 201": lambda r: r.status_code == 201,
            f"pr create: response time < {target:g}ms": _fast(ctx),
        },
    )
    ctx.metrics.add_error(CREATE_PULL_REQUEST, not success)

    # A slow 201 still created the PR, so it is mergeable later.
    if response.status_code == 201:
        ctx.registry.append(pull_request_id)
    return SUCCESS if success else FAILURE


def merge_pull_request(ctx: IterationContext) -> str:
    if len(ctx.registry) < ctx.settings.merge_min_registry:
        return NOOP

    recent = ctx.registry.snapshot(ctx.settings.merge_window)
    if not recent:
        return NOOP
    pull_request_id = ctx.rng.choice(recent)

    response = ctx.client.merge_pull_request(pull_request_id)
    ctx.metrics.record_request(
        MERGE_PULL_REQUEST, "POST /pullRequest/merge", response, (200,), ctx.worker, ctx.iteration
    )
    target = ctx.settings.latency_target_ms
    success = run_checks(
        ctx,
        MERGE_PULL_REQUEST,
        response,
        {
            "merge: status is 200": lambda r: r.status_code == 200,
            f"merge: response time < {target:g}ms": _fast(ctx),
        },
    )
    ctx.metrics.add_error(MERGE_PULL_REQUEST, not success)
    return SUCCESS if success else FAILURE


def deactivate_team(ctx: IterationContext) -> str:
    team = ctx.random_team()
    response = ctx.client.deactivate_team(team.name)
    ctx.metrics.record_request(
        DEACTIVATE_TEAM, "POST /team/deactivate", response, (200, 404), ctx.worker, ctx.iteration
    )
    target = ctx.settings.latency_target_ms
    success = run_checks(
        ctx,
        DEACTIVATE_TEAM,
        response,
        {
            "deactivate: status is 200 or 404": lambda r: r.status_code in (200, 404),
            f"deactivate: response time < {target:g}ms": _fast(ctx),
        },
    )
    # Another iteration may already have deactivated the team.
    ctx.metrics.add_error(DEACTIVATE_TEAM, not success and response.status_code != 404)
    return SUCCESS if success else FAILURE


EXECUTORS: dict[str, Callable[[IterationContext], str]] = {
    GET_STATS: get_stats,
    GET_USER_REVIEWS: get_user_reviews,
    CREATE_PULL_REQUEST: create_pull_request,
    MERGE_PULL_REQUEST: merge_pull_request,
    DEACTIVATE_TEAM: deactivate_team,
}


__all__ = [
    "CREATE_PULL_REQUEST",
    "DEACTIVATE_TEAM",
    "EXECUTORS",
    "FAILURE",
    "GET_STATS",
    "GET_USER_REVIEWS",
    "MERGE_PULL_REQUEST",
    "NOOP",
    "SUCCESS",
    "IterationContext",
    "new_pull_request_identity",
    "run_checks",
]
