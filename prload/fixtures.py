from __future__ import annotations

import logging
from dataclasses import dataclass

from .client import ApiClient
from .config import FixtureSize

LOGGER = logging.getLogger("prload.fixtures")

TEAM_CREATED_STATUSES: tuple[int, ...] = (200, 201)


@dataclass(frozen=True)
class User:
    user_id: str
    username: str
    is_active: bool = True

    def to_payload(self) -> dict[str, object]:
        return {
            "user_id": self.user_id,
            "username": self.username,
            "is_active": self.is_active,
        }


@dataclass(frozen=True)
class Team:
    name: str
    members: tuple[User, ...]

    def member_payloads(self) -> list[dict[str, object]]:
        return [member.to_payload() for member in self.members]


@dataclass(frozen=True)
class RunFixture:
    """Teams that were successfully created; read-only for the whole run."""

    teams: tuple[Team, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.teams

    @property
    def user_count(self) -> int:
        return sum(len(team.members) for team in self.teams)

    def user_ids(self) -> list[str]:
        return [member.user_id for team in self.teams for member in team.members]


def build_team(team_index: int, members_per_team: int) -> Team:
    members = tuple(
        User(
            user_id=f"u-t{team_index}-{member_index}",
            username=f"user_{team_index}_{member_index}",
        )
        for member_index in range(members_per_team)
    )
    return Team(name=f"team-{team_index}", members=members)


class FixtureBuilder:
    """Creates the run's teams once, before any scenario executes."""

    def __init__(self, client: ApiClient, size: FixtureSize) -> None:
        self._client = client
        self._size = size

    def build(self) -> RunFixture:
        LOGGER.info(
            "Setting up test data: %d teams, %d users...",
            self._size.teams,
            self._size.user_count,
        )
        created: list[Team] = []
        for team_index in range(self._size.teams):
            team = build_team(team_index, self._size.members_per_team)
            response = self._client.add_team(team.name, team.member_payloads())
            if response.status_code in TEAM_CREATED_STATUSES:
                created.append(team)
                LOGGER.info("Created team %s with %d users", team.name, len(team.members))
            else:
                LOGGER.error(
                    "Failed to create team %s: %s%s",
                    team.name,
                    response.status_code,
                    f" ({response.error})" if response.error else "",
                )

        fixture = RunFixture(teams=tuple(created))
        LOGGER.info(
            "Setup complete: %d teams, %d users",
            len(fixture.teams),
            fixture.user_count,
        )
        return fixture


__all__ = ["FixtureBuilder", "RunFixture", "Team", "User", "build_team"]
