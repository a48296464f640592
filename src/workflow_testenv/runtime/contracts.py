from __future__ import annotations

from dataclasses import dataclass

from workflow_testenv.topology.descriptors import ServiceDescriptor


@dataclass(frozen=True, slots=True)
class ServiceInstance:
    # One started role; ref is whatever the runtime needs to address or stop it.
    role: str
    descriptor: ServiceDescriptor
    ref: object


class ServiceRuntime:
    # Runtime contract that actually runs service instances on an isolated network.
    def create_network(self) -> object:
        raise NotImplementedError("ServiceRuntime.create_network must be implemented")

    def remove_network(self, network: object) -> None:
        raise NotImplementedError("ServiceRuntime.remove_network must be implemented")

    def start(self, descriptor: ServiceDescriptor, network: object) -> ServiceInstance:
        raise NotImplementedError("ServiceRuntime.start must be implemented")

    def is_ready(self, instance: ServiceInstance) -> bool:
        raise NotImplementedError("ServiceRuntime.is_ready must be implemented")

    def address(self, instance: ServiceInstance, port: int | None = None) -> str:
        raise NotImplementedError("ServiceRuntime.address must be implemented")

    def stop(self, instance: ServiceInstance, grace_period_seconds: float | None = None) -> None:
        raise NotImplementedError("ServiceRuntime.stop must be implemented")

    def close(self) -> None:
        # Releases runtime-wide resources (HTTP health client); instances are stopped separately.
        return None
