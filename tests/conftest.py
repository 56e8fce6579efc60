"""
Shared pytest fixtures for the prload test suite.

Provides a fake API client, a small two-team fixture, and a factory for
iteration contexts so executor tests can arrange exactly the state they need.
"""

from __future__ import annotations

import random

import pytest

from prload.config import ScenarioSettings
from prload.fixtures import RunFixture, build_team
from prload.metrics import MetricsRecorder
from prload.registry import PullRequestRegistry
from prload.scenarios import IterationContext
from tests.fakes import FakeApiClient


@pytest.fixture
def fake_client():
    return FakeApiClient()


@pytest.fixture
def small_fixture():
    """Two teams of three members: ``team-0``/``team-1``, users ``u-t{t}-{m}``."""
    return RunFixture(teams=(build_team(0, 3), build_team(1, 3)))


@pytest.fixture
def metrics():
    return MetricsRecorder()


@pytest.fixture
def registry():
    return PullRequestRegistry()


@pytest.fixture
def make_context(fake_client, small_fixture, metrics, registry):
    """Factory for :class:`IterationContext` with overridable pieces."""

    def _make(**overrides):
        values = {
            "client": fake_client,
            "fixture": small_fixture,
            "registry": registry,
            "metrics": metrics,
            "settings": ScenarioSettings(),
            "rng": random.Random(1234),
            "worker": 3,
            "iteration": 1,
        }
        values.update(overrides)
        return IterationContext(**values)

    return _make
