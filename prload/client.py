from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Iterable

import requests

from .errors import TargetUnavailableError

LOGGER = logging.getLogger("prload.client")

JSON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


@dataclass(frozen=True)
class ApiResponse:
    """What a scenario gets to see of one HTTP exchange.

    ``status_code`` is ``0`` when the request never produced a response
    (connection refused, timeout, ...); ``error`` then carries the reason.
    """

    status_code: int
    duration_ms: float
    text: str = ""
    error: str | None = None

    def json(self) -> Any:
        return json.loads(self.text)

    def has_status(self, expected: Iterable[int]) -> bool:
        return self.status_code in set(expected)


class ApiClient:
    """Thin wrapper over ``requests`` exposing the endpoints the load run uses.

    Sessions are kept per thread so that worker threads reuse connections
    without sharing a ``requests.Session`` between them.
    """

    def __init__(self, base_url: str, timeout_s: float = 10.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._local = threading.local()
        self._sessions: list[requests.Session] = []
        self._sessions_lock = threading.Lock()

    @property
    def base_url(self) -> str:
        return self._base_url

    def add_team(self, team_name: str, members: list[dict[str, object]]) -> ApiResponse:
        return self._request(
            "POST", "/team/add", json_body={"team_name": team_name, "members": members}
        )

    def create_pull_request(
        self, pull_request_id: str, pull_request_name: str, author_id: str
    ) -> ApiResponse:
        return self._request(
            "POST",
            "/pullRequest/create",
            json_body={
                "pull_request_id": pull_request_id,
                "pull_request_name": pull_request_name,
                "author_id": author_id,
            },
        )

    def merge_pull_request(self, pull_request_id: str) -> ApiResponse:
        return self._request(
            "POST", "/pullRequest/merge", json_body={"pull_request_id": pull_request_id}
        )

    def get_stats(self) -> ApiResponse:
        return self._request("GET", "/stats")

    def get_user_reviews(self, user_id: str) -> ApiResponse:
        return self._request("GET", "/users/getReview", params={"user_id": user_id})

    def deactivate_team(self, team_name: str) -> ApiResponse:
        return self._request("POST", "/team/deactivate", json_body={"team_name": team_name})

    def health(self) -> ApiResponse:
        return self._request("GET", "/health")

    def wait_until_healthy(self, timeout_s: float, check_interval: float = 1.0) -> None:
        """Poll ``/health`` with a growing backoff until it answers 200."""
        backoff = check_interval
        max_backoff = 10.0
        deadline = time.time() + timeout_s

        while True:
            response = self.health()
            if response.status_code == 200:
                LOGGER.info("Target %s is healthy", self._base_url)
                return
            if time.time() >= deadline:
                raise TargetUnavailableError(
                    f"{self._base_url} not healthy within {timeout_s:.0f} seconds "
                    f"(last status {response.status_code}, error {response.error})"
                )
            LOGGER.debug(
                "Target not ready (status=%s error=%s); retrying in %.1fs",
                response.status_code,
                response.error,
                backoff,
            )
            time.sleep(backoff)
            backoff = min(backoff * 1.5, max_backoff)

    def close(self) -> None:
        with self._sessions_lock:
            for session in self._sessions:
                session.close()
            self._sessions.clear()

    def _session(self) -> requests.Session:
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            session.headers.update(JSON_HEADERS)
            self._local.session = session
            with self._sessions_lock:
                self._sessions.append(session)
        return session

    def _request(
        self,
        method: str,
        path: str,
        json_body: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> ApiResponse:
        url = f"{self._base_url}{path}"
        started = time.perf_counter()
        try:
            response = self._session().request(
                method,
                url,
                json=json_body,
                params=params,
                timeout=self._timeout_s,
            )
        except requests.RequestException as exc:
            duration_ms = (time.perf_counter() - started) * 1000.0
            LOGGER.debug("%s %s failed after %.1fms: %s", method, path, duration_ms, exc)
            return ApiResponse(status_code=0, duration_ms=duration_ms, error=str(exc))

        duration_ms = (time.perf_counter() - started) * 1000.0
        LOGGER.debug("%s %s -> %d in %.1fms", method, path, response.status_code, duration_ms)
        return ApiResponse(
            status_code=response.status_code,
            duration_ms=duration_ms,
            text=response.text,
        )


__all__ = ["ApiClient", "ApiResponse"]
