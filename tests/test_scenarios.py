"""
Unit tests for the scenario executors.

Each executor is driven against the fake client so the tests can control the
status code, latency and body of the single request it makes.
"""

from __future__ import annotations

import random
import re

import pytest

from prload.client import ApiResponse
from prload.config import ScenarioSettings
from prload.scenarios import (
    CREATE_PULL_REQUEST,
    DEACTIVATE_TEAM,
    FAILURE,
    GET_STATS,
    GET_USER_REVIEWS,
    MERGE_PULL_REQUEST,
    NOOP,
    SUCCESS,
    create_pull_request,
    deactivate_team,
    get_stats,
    get_user_reviews,
    merge_pull_request,
    new_pull_request_identity,
)

pytestmark = pytest.mark.unit


# -----------------------------------------------------------------------------
# Get stats
# -----------------------------------------------------------------------------


def test_get_stats_success(make_context, metrics):
    assert get_stats(make_context()) == SUCCESS

    assert metrics.rate("errors", GET_STATS).hits == 0
    assert metrics.rate("errors", GET_STATS).total == 1
    assert metrics.count("http_req_duration") == 1
    assert metrics.rate("checks").rate == 1.0


@pytest.mark.parametrize(
    "response",
    [
        ApiResponse(500, 5.0, '{"total_teams": 1}'),
        ApiResponse(200, 450.0, '{"total_teams": 1}'),
        ApiResponse(200, 5.0, '{"teams": 1}'),
        ApiResponse(200, 5.0, "<html>oops</html>"),
        ApiResponse(200, 5.0, "[1, 2]"),
        ApiResponse(200, 5.0, '{"total_teams": "x"}'),
        ApiResponse(200, 5.0, '{"total_teams": null}'),
        ApiResponse(200, 5.0, '{"total_teams": true}'),
        ApiResponse(0, 5.0, error="connection reset"),
    ],
    ids=[
        "status",
        "slow",
        "missing-field",
        "not-json",
        "not-object",
        "string-field",
        "null-field",
        "bool-field",
        "transport",
    ],
)
def test_get_stats_failures(make_context, metrics, fake_client, response):
    fake_client.responses["get_stats"] = response

    assert get_stats(make_context()) == FAILURE
    assert metrics.rate("errors", GET_STATS).hits == 1


def test_get_stats_records_every_check_even_after_a_failure(make_context, metrics, fake_client):
    fake_client.responses["get_stats"] = ApiResponse(503, 5.0, "")

    get_stats(make_context())

    checks = metrics.checks()
    assert checks["stats: status is 200"] == {"passes": 0, "fails": 1}
    assert checks["stats: response time < 300ms"] == {"passes": 1, "fails": 0}
    assert checks["stats: has total_teams"] == {"passes": 0, "fails": 1}


def test_latency_target_is_configurable(make_context, fake_client):
    fake_client.responses["get_stats"] = ApiResponse(200, 120.0, '{"total_teams": 1}')
    ctx = make_context(settings=ScenarioSettings(latency_target_ms=100))

    assert get_stats(ctx) == FAILURE


# -----------------------------------------------------------------------------
# Get user reviews
# -----------------------------------------------------------------------------


def test_get_user_reviews_queries_a_fixture_member(make_context, fake_client, small_fixture):
    assert get_user_reviews(make_context()) == SUCCESS

    [(user_id,)] = fake_client.calls_to("get_user_reviews")
    assert user_id in small_fixture.user_ids()


def test_get_user_reviews_failure_counts_as_error(make_context, fake_client, metrics):
    fake_client.responses["get_user_reviews"] = ApiResponse(404, 5.0)

    assert get_user_reviews(make_context()) == FAILURE
    assert metrics.rate("errors", GET_USER_REVIEWS).hits == 1
    assert metrics.rate("http_req_failed").hits == 1


# -----------------------------------------------------------------------------
# Create pull request
# -----------------------------------------------------------------------------


def test_pull_request_identity_format():
    pr_id, pr_name = new_pull_request_identity(7, random.Random(1))

    match = re.fullmatch(r"pr-7-(\d+)-([a-z0-9]{8})", pr_id)
    assert match is not None
    assert pr_name == f"Feature-{match.group(1)}-{match.group(2)}"


def test_create_pull_request_uses_first_member_as_author(make_context, fake_client, small_fixture):
    create_pull_request(make_context(worker=5))

    [(pr_id, pr_name, author_id)] = fake_client.calls_to("create_pull_request")
    first_members = {team.members[0].user_id for team in small_fixture.teams}
    assert author_id in first_members
    assert pr_id.startswith("pr-5-")
    assert pr_name.startswith("Feature-")


def test_create_pull_request_appends_exactly_once_on_201(make_context, fake_client, registry):
    assert create_pull_request(make_context()) == SUCCESS

    [(pr_id, _, _)] = fake_client.calls_to("create_pull_request")
    assert registry.snapshot() == (pr_id,)


def test_create_pull_request_failure_does_not_register(make_context, fake_client, registry, metrics):
    fake_client.responses["create_pull_request"] = ApiResponse(409, 5.0)

    assert create_pull_request(make_context()) == FAILURE
    assert len(registry) == 0
    assert metrics.rate("errors", CREATE_PULL_REQUEST).hits == 1


def test_slow_create_is_a_failure_but_still_registered(make_context, fake_client, registry):
    fake_client.responses["create_pull_request"] = ApiResponse(201, 900.0)

    assert create_pull_request(make_context()) == FAILURE
    assert len(registry) == 1


def test_created_ids_are_unique_across_iterations(make_context, registry):
    ctx = make_context()
    for _ in range(50):
        create_pull_request(ctx)

    entries = registry.snapshot()
    assert len(entries) == 50
    assert len(set(entries)) == 50


# -----------------------------------------------------------------------------
# Merge pull request
# -----------------------------------------------------------------------------


@pytest.mark.parametrize("existing", [0, 3, 4])
def test_merge_is_a_noop_on_a_cold_registry(make_context, fake_client, registry, metrics, existing):
    for index in range(existing):
        registry.append(f"pr-{index}")

    assert merge_pull_request(make_context()) == NOOP
    assert fake_client.calls_to("merge_pull_request") == []
    assert metrics.rate("errors").total == 0
    assert metrics.count("http_req_duration") == 0
    assert metrics.checks() == {}


def test_merge_picks_from_recent_window(make_context, fake_client, registry):
    for index in range(30):
        registry.append(f"pr-{index}")
    ctx = make_context(settings=ScenarioSettings(merge_window=10))

    for _ in range(40):
        assert merge_pull_request(ctx) == SUCCESS

    merged = {pr_id for (pr_id,) in fake_client.calls_to("merge_pull_request")}
    assert merged <= {f"pr-{index}" for index in range(20, 30)}


def test_merge_threshold_is_configurable(make_context, fake_client, registry):
    registry.append("pr-only")
    ctx = make_context(settings=ScenarioSettings(merge_min_registry=1))

    assert merge_pull_request(ctx) == SUCCESS
    assert fake_client.calls_to("merge_pull_request") == [("pr-only",)]


def test_merge_failure_counts_as_error(make_context, fake_client, registry, metrics):
    for index in range(5):
        registry.append(f"pr-{index}")
    fake_client.responses["merge_pull_request"] = ApiResponse(404, 5.0)

    assert merge_pull_request(make_context()) == FAILURE
    assert metrics.rate("errors", MERGE_PULL_REQUEST).hits == 1
    assert len(registry) == 5


# -----------------------------------------------------------------------------
# Deactivate team
# -----------------------------------------------------------------------------


def test_deactivate_success(make_context, fake_client, small_fixture, metrics):
    assert deactivate_team(make_context()) == SUCCESS

    [(team_name,)] = fake_client.calls_to("deactivate_team")
    assert team_name in {team.name for team in small_fixture.teams}
    assert metrics.rate("errors", DEACTIVATE_TEAM).hits == 0


def test_deactivate_not_found_is_not_an_error(make_context, fake_client, metrics):
    fake_client.responses["deactivate_team"] = ApiResponse(404, 5.0)

    assert deactivate_team(make_context()) == SUCCESS
    assert metrics.rate("errors").hits == 0
    assert metrics.rate("errors").total == 1
    assert metrics.rate("http_req_failed").hits == 0


def test_slow_not_found_fails_its_check_without_counting_as_error(make_context, fake_client, metrics):
    fake_client.responses["deactivate_team"] = ApiResponse(404, 800.0)

    assert deactivate_team(make_context()) == FAILURE
    assert metrics.rate("errors").hits == 0
    assert metrics.checks()["deactivate: response time < 300ms"]["fails"] == 1


@pytest.mark.parametrize("status", [400, 409, 500, 0])
def test_deactivate_other_statuses_count_as_errors(make_context, fake_client, metrics, status):
    fake_client.responses["deactivate_team"] = ApiResponse(status, 5.0)

    assert deactivate_team(make_context()) == FAILURE
    assert metrics.rate("errors", DEACTIVATE_TEAM).hits == 1
