from __future__ import annotations

import itertools
from dataclasses import dataclass
from threading import Lock

from workflow_testenv.runtime.contracts import ServiceInstance, ServiceRuntime
from workflow_testenv.topology.descriptors import ServiceDescriptor


@dataclass(slots=True)
class MemoryNetwork:
    name: str
    removed: bool = False


@dataclass(slots=True)
class MemoryContainer:
    # In-process stand-in for a running service; ports map to fake host ports.
    role: str
    host_ports: dict[int, int]
    running: bool = True
    stop_grace: float | None = None


@dataclass(slots=True)
class _Behaviour:
    fail_start: BaseException | None = None
    never_ready: bool = False
    fail_stop: BaseException | None = None


class InMemoryServiceRuntime(ServiceRuntime):
    # Runtime baseline without Docker: records every call, lets tests inject start/ready/stop failures.
    def __init__(self, host: str = "127.0.0.1") -> None:
        self._host = host
        self._lock = Lock()
        self._ports = itertools.count(32768)
        self._networks = itertools.count(1)
        self._behaviour: dict[str, _Behaviour] = {}
        self.events: list[tuple[str, str]] = []
        self.networks: list[MemoryNetwork] = []
        self.closed = False

    def fail_start(self, role: str, error: BaseException | None = None) -> None:
        self._behaviour.setdefault(role, _Behaviour()).fail_start = error or RuntimeError(f"{role} failed to start")

    def never_ready(self, role: str) -> None:
        self._behaviour.setdefault(role, _Behaviour()).never_ready = True

    def fail_stop(self, role: str, error: BaseException | None = None) -> None:
        self._behaviour.setdefault(role, _Behaviour()).fail_stop = error or RuntimeError(f"{role} failed to stop")

    def started_roles(self) -> list[str]:
        return [role for kind, role in self.events if kind == "start"]

    def stopped_roles(self) -> list[str]:
        return [role for kind, role in self.events if kind == "stop"]

    def create_network(self) -> MemoryNetwork:
        network = MemoryNetwork(name=f"testenv-net-{next(self._networks)}")
        with self._lock:
            self.networks.append(network)
            self.events.append(("network", network.name))
        return network

    def remove_network(self, network: object) -> None:
        if not isinstance(network, MemoryNetwork):
            raise TypeError("InMemoryServiceRuntime can only remove its own networks")
        network.removed = True
        with self._lock:
            self.events.append(("network-removed", network.name))

    def start(self, descriptor: ServiceDescriptor, network: object) -> ServiceInstance:
        _ = network
        with self._lock:
            self.events.append(("start", descriptor.role))
        behaviour = self._behaviour.get(descriptor.role)
        if behaviour is not None and behaviour.fail_start is not None:
            raise behaviour.fail_start
        with self._lock:
            host_ports = {port: next(self._ports) for port in descriptor.ports}
        container = MemoryContainer(role=descriptor.role, host_ports=host_ports)
        return ServiceInstance(role=descriptor.role, descriptor=descriptor, ref=container)

    def is_ready(self, instance: ServiceInstance) -> bool:
        behaviour = self._behaviour.get(instance.role)
        if behaviour is not None and behaviour.never_ready:
            return False
        return _container(instance).running

    def address(self, instance: ServiceInstance, port: int | None = None) -> str:
        container = _container(instance)
        wanted = port if port is not None else instance.descriptor.primary_port
        if wanted not in container.host_ports:
            raise KeyError(f"Role '{instance.role}' does not expose port {wanted}")
        return f"{self._host}:{container.host_ports[wanted]}"

    def stop(self, instance: ServiceInstance, grace_period_seconds: float | None = None) -> None:
        with self._lock:
            self.events.append(("stop", instance.role))
        behaviour = self._behaviour.get(instance.role)
        if behaviour is not None and behaviour.fail_stop is not None:
            raise behaviour.fail_stop
        container = _container(instance)
        container.stop_grace = grace_period_seconds
        container.running = False

    def close(self) -> None:
        self.closed = True


def _container(instance: ServiceInstance) -> MemoryContainer:
    ref = instance.ref
    if not isinstance(ref, MemoryContainer):
        raise TypeError(f"Instance for role '{instance.role}' was not created by InMemoryServiceRuntime")
    return ref
