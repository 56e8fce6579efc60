from __future__ import annotations

import threading


class PullRequestRegistry:
    """Append-only log of pull request ids created during the run.

    Readers get a copy of (a window of) the log; a reader racing an append may
    or may not see the new id.
    """

    def __init__(self) -> None:
        self._ids: list[str] = []
        self._lock = threading.Lock()

    def append(self, pull_request_id: str) -> None:
        with self._lock:
            self._ids.append(pull_request_id)

    def snapshot(self, window: int | None = None) -> tuple[str, ...]:
        """Return the last ``window`` ids (all of them when ``window`` is None)."""
        if window is not None and window < 0:
            raise ValueError("window must be >= 0")
        with self._lock:
            if window is None:
                return tuple(self._ids)
            if window == 0:
                return ()
            return tuple(self._ids[-window:])

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)


__all__ = ["PullRequestRegistry"]
