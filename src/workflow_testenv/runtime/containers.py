"""Docker-backed service runtime built on testcontainers-python.

Each role runs as a ``DockerContainer`` attached to a per-environment
``Network`` under its descriptor alias, so roles reach each other by alias
(``zeebe:26500``, ``http://elasticsearch:9200``) while tests use the mapped
host ports. Readiness comes from the descriptor's readiness check: an HTTP health
endpoint, or a line in the container output.
"""

from __future__ import annotations

import logging
import socket
import threading
from collections.abc import Iterable

import httpx
from testcontainers.core.container import DockerContainer
from testcontainers.core.network import Network

from workflow_testenv.observability.logging import LOGGER_NAME
from workflow_testenv.runtime.contracts import ServiceInstance, ServiceRuntime
from workflow_testenv.topology.descriptors import ReadinessCheck, ServiceDescriptor


class ContainerLogForwarder:
    # Copies container output line by line into "workflow_testenv.containers.<role>".
    def __init__(self, role: str, logger: logging.Logger | None = None) -> None:
        self.role = role
        self._logger = logger or logging.getLogger(f"{LOGGER_NAME}.containers.{role}")

    def forward(self, chunks: Iterable[bytes]) -> None:
        # Stream chunks do not follow line boundaries; a partial line waits for the next chunk.
        pending = ""
        for chunk in chunks:
            pending += chunk.decode("utf-8", errors="replace")
            *lines, pending = pending.split("\n")
            for line in lines:
                self._emit(line)
        self._emit(pending)

    def _emit(self, line: str) -> None:
        if line.strip():
            self._logger.info("%s", line.rstrip())

    def follow(self, container: DockerContainer) -> threading.Thread:
        # The docker log stream ends when the container stops, which ends the thread.
        stream = container.get_wrapped_container().logs(stream=True, follow=True)
        thread = threading.Thread(target=self.forward, args=(stream,), name=f"testenv-logs-{self.role}", daemon=True)
        thread.start()
        return thread


class ContainerServiceRuntime(ServiceRuntime):
    # Runs service descriptors as Docker containers; requires a reachable Docker daemon.
    def __init__(
        self,
        *,
        check_timeout_seconds: float = 2.0,
        forward_logs: bool = True,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._check_timeout = check_timeout_seconds
        self._forward_logs = forward_logs
        self._http = httpx.Client(transport=transport, timeout=check_timeout_seconds)

    def create_network(self) -> Network:
        network = Network()
        network.create()
        return network

    def remove_network(self, network: object) -> None:
        if not isinstance(network, Network):
            raise TypeError("ContainerServiceRuntime can only remove testcontainers networks")
        network.remove()

    def start(self, descriptor: ServiceDescriptor, network: object) -> ServiceInstance:
        if not isinstance(network, Network):
            raise TypeError("ContainerServiceRuntime requires a testcontainers network")
        container = DockerContainer(descriptor.image)
        for key, value in descriptor.env.items():
            container.with_env(key, value)
        container.with_exposed_ports(*descriptor.ports)
        container.with_network(network)
        container.with_network_aliases(descriptor.alias)
        container.start()
        if self._forward_logs:
            ContainerLogForwarder(descriptor.role).follow(container)
        return ServiceInstance(role=descriptor.role, descriptor=descriptor, ref=container)

    def is_ready(self, instance: ServiceInstance) -> bool:
        container = _container(instance)
        check = instance.descriptor.readiness
        if check is None:
            return self._port_open(container, instance.descriptor.primary_port)
        if check.is_http:
            return self._http_ready(container, check)
        stdout, stderr = container.get_logs()
        output = (stdout or b"") + (stderr or b"")
        return check.log_line in output.decode("utf-8", errors="replace")

    def address(self, instance: ServiceInstance, port: int | None = None) -> str:
        container = _container(instance)
        wanted = port if port is not None else instance.descriptor.primary_port
        host = container.get_container_host_ip()
        return f"{host}:{container.get_exposed_port(wanted)}"

    def stop(self, instance: ServiceInstance, grace_period_seconds: float | None = None) -> None:
        container = _container(instance)
        if grace_period_seconds:
            # docker stop sends SIGTERM and waits up to the grace period before SIGKILL.
            container.get_wrapped_container().stop(timeout=int(grace_period_seconds))
        container.stop()

    def close(self) -> None:
        self._http.close()

    def _http_ready(self, container: DockerContainer, check: ReadinessCheck) -> bool:
        try:
            host = container.get_container_host_ip()
            port = container.get_exposed_port(check.port)
        except Exception:  # noqa: BLE001 - port mapping not published yet
            return False
        try:
            response = self._http.get(f"http://{host}:{port}{check.path}")
        except httpx.HTTPError:
            return False
        return response.is_success

    def _port_open(self, container: DockerContainer, port: int) -> bool:
        # Fallback for descriptors without a readiness check; only proves the port is published.
        try:
            host = container.get_container_host_ip()
            mapped = int(container.get_exposed_port(port))
        except Exception:  # noqa: BLE001 - port mapping not published yet
            return False
        try:
            with socket.create_connection((host, mapped), timeout=self._check_timeout):
                return True
        except OSError:
            return False


def _container(instance: ServiceInstance) -> DockerContainer:
    ref = instance.ref
    if not isinstance(ref, DockerContainer):
        raise TypeError(f"Instance for role '{instance.role}' was not created by ContainerServiceRuntime")
    return ref
