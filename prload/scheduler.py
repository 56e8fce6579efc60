from __future__ import annotations

import functools
import logging
import math
import queue
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable

from .config import ArrivalProfile

LOGGER = logging.getLogger("prload.scheduler")

Iteration = Callable[[int, int], None]

DROP_WARNING_INTERVAL_S = 1.0


@dataclass
class SchedulerStatistics:
    scheduled: int
    started: int
    dropped: int
    completed: int
    iteration_errors: int
    peak_workers: int
    started_at: float
    finished_at: float
    drained: bool = True

    @property
    def duration_s(self) -> float:
        return max(self.finished_at - self.started_at, 0.0)

    @property
    def iterations_per_second(self) -> float:
        if self.duration_s == 0:
            return 0.0
        return self.started / self.duration_s

    def to_dict(self) -> dict[str, float | int | bool]:
        return {
            "scheduled": self.scheduled,
            "started": self.started,
            "dropped": self.dropped,
            "completed": self.completed,
            "iteration_errors": self.iteration_errors,
            "peak_workers": self.peak_workers,
            "duration_s": self.duration_s,
            "iterations_per_second": self.iterations_per_second,
            "drained": self.drained,
        }


class _Worker:
    def __init__(self, worker_id: int, pool: "WorkerPool") -> None:
        self.worker_id = worker_id
        self._pool = pool
        self._jobs: queue.Queue[Callable[[int], None] | None] = queue.Queue(maxsize=1)
        self._thread = threading.Thread(
            target=self._loop,
            name=f"prload-worker-{worker_id}",
            daemon=True,
        )

    def start(self) -> None:
        self._thread.start()

    def submit(self, job: Callable[[int], None]) -> None:
        self._jobs.put_nowait(job)

    def stop(self) -> None:
        self._jobs.put(None)

    def join(self, timeout: float | None = None) -> None:
        self._thread.join(timeout)

    def _loop(self) -> None:
        while True:
            job = self._jobs.get()
            if job is None:
                return
            failed = False
            try:
                job(self.worker_id)
            except Exception:
                failed = True
                LOGGER.exception("iteration failed on worker %d", self.worker_id)
            finally:
                self._pool._release(self, failed)


class WorkerPool:
    """Threads kept warm up front, grown on demand up to a hard ceiling.

    ``try_submit`` never blocks: when every worker is busy and the ceiling is
    reached the job is refused and the caller counts it as dropped.
    """

    def __init__(self, pre_allocated: int, max_workers: int) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if not 0 <= pre_allocated <= max_workers:
            raise ValueError("pre_allocated must be within [0, max_workers]")
        self._pre_allocated = pre_allocated
        self._max_workers = max_workers
        self._workers: list[_Worker] = []
        self._idle: list[_Worker] = []
        self._busy = 0
        self._completed = 0
        self._errors = 0
        self._lock = threading.Lock()
        self._idle_condition = threading.Condition(self._lock)

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._workers)

    @property
    def busy(self) -> int:
        with self._lock:
            return self._busy

    @property
    def completed(self) -> int:
        with self._lock:
            return self._completed

    @property
    def errors(self) -> int:
        with self._lock:
            return self._errors

    def start(self) -> None:
        with self._lock:
            for _ in range(self._pre_allocated - len(self._workers)):
                self._idle.append(self._spawn_locked())

    def try_submit(self, job: Callable[[int], None]) -> bool:
        with self._lock:
            if self._idle:
                worker = self._idle.pop()
            elif len(self._workers) < self._max_workers:
                worker = self._spawn_locked()
                LOGGER.debug("Spawned worker %d (pool size %d)", worker.worker_id, len(self._workers))
            else:
                return False
            self._busy += 1
        worker.submit(job)
        return True

    def wait_idle(self, timeout: float | None = None) -> bool:
        with self._idle_condition:
            return self._idle_condition.wait_for(lambda: self._busy == 0, timeout)

    def shutdown(self, timeout: float | None = None) -> bool:
        drained = self.wait_idle(timeout)
        with self._lock:
            workers = list(self._workers)
        for worker in workers:
            worker.stop()
        if drained:
            for worker in workers:
                worker.join(timeout=5.0)
        return drained

    def _spawn_locked(self) -> _Worker:
        worker = _Worker(len(self._workers) + 1, self)
        self._workers.append(worker)
        worker.start()
        return worker

    def _release(self, worker: _Worker, failed: bool) -> None:
        with self._idle_condition:
            self._busy -= 1
            self._completed += 1
            if failed:
                self._errors += 1
            self._idle.append(worker)
            self._idle_condition.notify_all()


class ArrivalRateScheduler:
    """Starts iterations at a fixed rate, independent of how long they take."""

    def __init__(
        self,
        profile: ArrivalProfile,
        rng: random.Random | None = None,
        on_drop: Callable[[], None] | None = None,
    ) -> None:
        if profile.rate_per_second <= 0:
            raise ValueError("ArrivalProfile rate must be > 0")
        self._profile = profile
        self._rng = rng or random.Random()
        self._on_drop = on_drop
        self._stop_event = threading.Event()

    def stop(self) -> None:
        self._stop_event.set()

    def run(self, iteration: Iteration) -> SchedulerStatistics:
        profile = self._profile
        pool = WorkerPool(profile.pre_allocated_workers, profile.max_workers)
        pool.start()

        scheduled = 0
        started = 0
        dropped = 0
        last_drop_warning = float("-inf")

        started_at = time.time()
        origin = time.monotonic()
        # Seconds from origin; tick n of a constant schedule is n / rate.
        offset = 0.0

        LOGGER.info(
            "Starting load: %.2f iterations/s for %.0fs (%s arrivals, workers %d..%d)",
            profile.rate_per_second,
            profile.duration_s,
            profile.distribution,
            profile.pre_allocated_workers,
            profile.max_workers,
        )

        while not self._stop_event.is_set() and offset < profile.duration_s:
            delay = origin + offset - time.monotonic()
            if delay > 0 and self._stop_event.wait(timeout=delay):
                break

            scheduled += 1
            job = functools.partial(_run_iteration, iteration, scheduled)
            if pool.try_submit(job):
                started += 1
            else:
                dropped += 1
                if self._on_drop is not None:
                    self._on_drop()
                now = time.monotonic()
                if now - last_drop_warning >= DROP_WARNING_INTERVAL_S:
                    last_drop_warning = now
                    LOGGER.warning(
                        "Insufficient workers: %d busy at the ceiling, %d iteration(s) dropped so far",
                        profile.max_workers,
                        dropped,
                    )
            offset = self._next_offset(scheduled, offset)

        LOGGER.info("Stopped scheduling after %d iterations; draining in-flight work", scheduled)
        drained = pool.shutdown(timeout=profile.graceful_stop_s)
        if not drained:
            LOGGER.warning(
                "%d iteration(s) still running after %.0fs graceful stop",
                pool.busy,
                profile.graceful_stop_s,
            )

        return SchedulerStatistics(
            scheduled=scheduled,
            started=started,
            dropped=dropped,
            completed=pool.completed,
            iteration_errors=pool.errors,
            peak_workers=pool.size,
            started_at=started_at,
            finished_at=time.time(),
            drained=drained,
        )

    def _next_offset(self, scheduled: int, offset: float) -> float:
        rate = self._profile.rate_per_second
        if self._profile.distribution == "poisson":
            u = self._rng.random()
            return offset - math.log(1.0 - u) / rate
        return scheduled / rate


def _run_iteration(iteration: Iteration, number: int, worker_id: int) -> None:
    iteration(worker_id, number)


__all__ = ["ArrivalRateScheduler", "SchedulerStatistics", "WorkerPool"]
