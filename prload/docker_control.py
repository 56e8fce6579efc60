from __future__ import annotations

import contextlib
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List

import docker
from docker.models.containers import Container

from .errors import TargetUnavailableError

LOGGER = logging.getLogger("prload.docker")


@dataclass
class TargetConfig:
    image: str
    port: int = 8080
    environment: Dict[str, str] = field(default_factory=dict)


class TargetServiceManager:
    """Start the API under test in a container for the duration of a run."""

    def __init__(
        self,
        network_names: Iterable[str] = (),
        startup_grace_seconds: float = 20.0,
    ) -> None:
        self._network_names = list(network_names)
        self._client = docker.from_env()
        self._containers: List[Container] = []
        self._startup_grace_seconds = startup_grace_seconds

    @contextlib.contextmanager
    def run(self, config: TargetConfig) -> Iterator[str]:
        """Yield the base URL of the started target; the container is removed on exit."""
        container = self._start(config)
        try:
            yield self._base_url(container, config)
        finally:
            self._stop()

    def _start(self, config: TargetConfig) -> Container:
        name = f"prload-target-{int(time.time())}"
        LOGGER.info("Starting target container %s from %s", name, config.image)
        ports = None if self._network_names else {f"{config.port}/tcp": None}
        container = self._client.containers.run(
            config.image,
            name=name,
            detach=True,
            environment=dict(config.environment),
            ports=ports,
            network=self._primary_network(),
        )
        self._attach_additional_networks(container)
        self._containers.append(container)
        self._wait_for_running(container)
        return container

    def _stop(self) -> None:
        LOGGER.info("Stopping %d target container(s)", len(self._containers))
        for container in self._containers:
            with contextlib.suppress(Exception):
                container.stop(timeout=10)
            with contextlib.suppress(Exception):
                container.remove(force=True)
        self._containers.clear()

    def _wait_for_running(self, container: Container) -> None:
        deadline = time.time() + self._startup_grace_seconds
        while time.time() < deadline:
            if self._is_container_running(container):
                return
            time.sleep(1.0)
        LOGGER.warning("Target container may not be running before setup starts")

    def _is_container_running(self, container: Container) -> bool:
        with contextlib.suppress(Exception):
            container.reload()
            status = container.attrs.get("State", {})
            if status.get("Health"):
                return status["Health"]["Status"] == "healthy"
            return status.get("Running", False)
        return False

    def _base_url(self, container: Container, config: TargetConfig) -> str:
        if self._network_names:
            # Reachable by container name on a shared network.
            return f"http://{container.name}:{config.port}"
        bindings = container.attrs.get("NetworkSettings", {}).get("Ports", {}) or {}
        host_ports = bindings.get(f"{config.port}/tcp") or []
        if not host_ports:
            raise TargetUnavailableError(f"target container did not publish port {config.port}")
        return f"http://localhost:{host_ports[0]['HostPort']}"

    def _primary_network(self) -> str | None:
        return self._network_names[0] if self._network_names else None

    def _attach_additional_networks(self, container: Container) -> None:
        for network in self._network_names[1:]:
            with contextlib.suppress(Exception):
                self._client.networks.get(network).connect(container)


__all__ = ["TargetConfig", "TargetServiceManager"]
