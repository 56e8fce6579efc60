"""
Unit tests for the fixture builder and the run fixture data model.
"""

from __future__ import annotations

import logging

import pytest

from prload.client import ApiResponse
from prload.config import FixtureSize
from prload.fixtures import FixtureBuilder, RunFixture, build_team

pytestmark = pytest.mark.unit


def test_build_team_is_deterministic():
    team = build_team(4, 2)

    assert team.name == "team-4"
    assert [member.user_id for member in team.members] == ["u-t4-0", "u-t4-1"]
    assert [member.username for member in team.members] == ["user_4_0", "user_4_1"]
    assert all(member.is_active for member in team.members)


def test_member_payloads_match_team_add_contract():
    payloads = build_team(0, 1).member_payloads()

    assert payloads == [{"user_id": "u-t0-0", "username": "user_0_0", "is_active": True}]


def test_builder_creates_every_team_with_unique_users(fake_client):
    fixture = FixtureBuilder(fake_client, FixtureSize(teams=2, members_per_team=3)).build()

    assert {team.name for team in fixture.teams} == {"team-0", "team-1"}
    for team in fixture.teams:
        assert len({member.user_id for member in team.members}) == 3
    user_ids = fixture.user_ids()
    assert len(user_ids) == 6
    assert len(set(user_ids)) == 6
    assert fixture.user_count == 6


def test_builder_sends_one_request_per_team_with_full_member_list(fake_client):
    FixtureBuilder(fake_client, FixtureSize(teams=3, members_per_team=4)).build()

    calls = fake_client.calls_to("add_team")
    assert [name for name, _ in calls] == ["team-0", "team-1", "team-2"]
    assert all(len(members) == 4 for _, members in calls)


def test_builder_accepts_200_as_created(fake_client):
    fake_client.responses["add_team"] = ApiResponse(200, 3.0)

    fixture = FixtureBuilder(fake_client, FixtureSize(teams=2, members_per_team=1)).build()

    assert len(fixture.teams) == 2


def test_failed_team_is_logged_and_excluded(fake_client, caplog):
    def respond(team_name, members):
        if team_name == "team-1":
            return ApiResponse(400, 3.0, '{"error": {"code": "TEAM_EXISTS"}}')
        return ApiResponse(201, 3.0)

    fake_client.responses["add_team"] = respond

    with caplog.at_level(logging.ERROR, logger="prload.fixtures"):
        fixture = FixtureBuilder(fake_client, FixtureSize(teams=3, members_per_team=2)).build()

    assert [team.name for team in fixture.teams] == ["team-0", "team-2"]
    assert "Failed to create team team-1: 400" in caplog.text


def test_transport_failure_during_setup_is_tolerated(fake_client):
    fake_client.responses["add_team"] = ApiResponse(0, 1.0, error="connection refused")

    fixture = FixtureBuilder(fake_client, FixtureSize(teams=2, members_per_team=2)).build()

    assert fixture.is_empty
    assert fixture.user_count == 0


def test_zero_teams_requested_yields_empty_fixture(fake_client):
    fixture = FixtureBuilder(fake_client, FixtureSize(teams=0, members_per_team=3)).build()

    assert fixture == RunFixture()
    assert fake_client.calls_to("add_team") == []
