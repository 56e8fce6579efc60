from __future__ import annotations

import bisect
import logging
import random
from dataclasses import dataclass
from typing import Callable, Mapping, Sequence

from .scenarios import (
    CREATE_PULL_REQUEST,
    DEACTIVATE_TEAM,
    EXECUTORS,
    GET_STATS,
    GET_USER_REVIEWS,
    MERGE_PULL_REQUEST,
    NOOP,
    IterationContext,
)

LOGGER = logging.getLogger("prload.dispatcher")

DEFAULT_SCENARIO_WEIGHTS: tuple[tuple[str, int], ...] = (
    (GET_STATS, 35),
    (GET_USER_REVIEWS, 25),
    (CREATE_PULL_REQUEST, 15),
    (MERGE_PULL_REQUEST, 13),
    (DEACTIVATE_TEAM, 12),
)


class ScenarioTable:
    """Cumulative ``(upper bound, scenario)`` table over ``[0, total)``."""

    def __init__(self, weights: Sequence[tuple[str, int]] = DEFAULT_SCENARIO_WEIGHTS) -> None:
        if not weights:
            raise ValueError("scenario table needs at least one entry")
        names = [name for name, _ in weights]
        if len(set(names)) != len(names):
            raise ValueError("scenario names must be unique")

        bounds: list[int] = []
        upto = 0
        for name, weight in weights:
            if weight <= 0:
                raise ValueError(f"weight for {name!r} must be > 0")
            upto += weight
            bounds.append(upto)

        self._names = names
        self._bounds = bounds

    @property
    def total(self) -> int:
        return self._bounds[-1]

    @property
    def names(self) -> list[str]:
        return list(self._names)

    def ranges(self) -> list[tuple[int, int, str]]:
        lower = 0
        out = []
        for upper, name in zip(self._bounds, self._names):
            out.append((lower, upper, name))
            lower = upper
        return out

    def select(self, draw: float) -> str:
        if not 0 <= draw < self.total:
            raise ValueError(f"draw {draw!r} outside [0, {self.total})")
        return self._names[bisect.bisect_right(self._bounds, draw)]


@dataclass(frozen=True)
class DispatchResult:
    scenario: str | None
    outcome: str


class ScenarioDispatcher:
    def __init__(
        self,
        table: ScenarioTable | None = None,
        executors: Mapping[str, Callable[[IterationContext], str]] | None = None,
    ) -> None:
        self._table = table or ScenarioTable()
        self._executors = dict(executors or EXECUTORS)
        missing = [name for name in self._table.names if name not in self._executors]
        if missing:
            raise ValueError(f"no executor registered for scenarios: {', '.join(missing)}")

    @property
    def table(self) -> ScenarioTable:
        return self._table

    def draw(self, rng: random.Random) -> int:
        return rng.randrange(self._table.total)

    def dispatch(self, ctx: IterationContext, draw: float | None = None) -> DispatchResult:
        if ctx.fixture.is_empty:
            LOGGER.debug("No teams available; iteration %d is a no-op", ctx.iteration)
            ctx.metrics.increment("noop_iterations")
            return DispatchResult(scenario=None, outcome=NOOP)

        if draw is None:
            draw = self.draw(ctx.rng)
        scenario = self._table.select(draw)
        outcome = self._executors[scenario](ctx)
        if outcome == NOOP:
            ctx.metrics.increment("noop_iterations")
        return DispatchResult(scenario=scenario, outcome=outcome)


__all__ = [
    "DEFAULT_SCENARIO_WEIGHTS",
    "DispatchResult",
    "ScenarioDispatcher",
    "ScenarioTable",
]
