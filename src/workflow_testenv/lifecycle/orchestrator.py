from __future__ import annotations

import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Any

from workflow_testenv.config.models import LifecycleSettings
from workflow_testenv.observability.logging import EventLog
from workflow_testenv.runtime.contracts import ServiceInstance, ServiceRuntime
from workflow_testenv.topology.builder import ENGINE_GATEWAY_PORT, ENGINE_REST_PORT
from workflow_testenv.topology.descriptors import ENGINE, KEYCLOAK, DescriptorSet, ServiceDescriptor

NETWORK_ROLE = "network"


class LifecycleError(RuntimeError):
    # Base error for environment lifecycle failures.
    pass


class StartupFailedError(LifecycleError):
    # Raised when a role cannot be started or does not become ready within its budget.
    def __init__(self, role: str, cause: BaseException) -> None:
        super().__init__(f"Role '{role}' failed to start: {cause}")
        self.role = role
        self.cause = cause


class RoleNotStartedError(LifecycleError):
    # Raised when an address is requested outside the Running state.
    def __init__(self, role: str, reason: str) -> None:
        super().__init__(f"Role '{role}' is not started: {reason}")
        self.role = role


class EnvironmentState(Enum):
    NOT_STARTED = "not_started"
    STARTING = "starting"
    RUNNING = "running"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class LifecyclePolicy:
    startup_timeout_seconds: float = 120.0
    graceful_shutdown_seconds: float = 10.0
    readiness_poll_interval_seconds: float = 0.5
    parallel_start: bool = True

    def __post_init__(self) -> None:
        if self.startup_timeout_seconds <= 0:
            raise ValueError("startup_timeout_seconds must be > 0")
        if self.graceful_shutdown_seconds < 0:
            raise ValueError("graceful_shutdown_seconds must be >= 0")
        if self.readiness_poll_interval_seconds <= 0:
            raise ValueError("readiness_poll_interval_seconds must be > 0")

    @classmethod
    def from_settings(cls, settings: LifecycleSettings) -> "LifecyclePolicy":
        return cls(
            startup_timeout_seconds=settings.startup_timeout_seconds,
            graceful_shutdown_seconds=settings.graceful_shutdown_seconds,
            readiness_poll_interval_seconds=settings.readiness_poll_interval_seconds,
            parallel_start=settings.parallel_start,
        )


class EnvironmentHandle:
    # Owns one network and the instances of a topology variant.
    # NOT_STARTED -> STARTING -> RUNNING -> CLOSING -> CLOSED; a failed start goes STARTING -> CLOSING -> CLOSED.
    # Started instances are tracked in start order and unwound in reverse.
    def __init__(
        self,
        descriptors: DescriptorSet,
        runtime: ServiceRuntime,
        *,
        policy: LifecyclePolicy | None = None,
        log: EventLog | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._descriptors = descriptors
        self._runtime = runtime
        self._policy = policy or LifecyclePolicy()
        self._log = log or EventLog()
        self._clock = clock
        self._sleep = sleep
        self._lock = Lock()
        self._state = EnvironmentState.NOT_STARTED
        self._network: object | None = None
        self._started: list[ServiceInstance] = []
        self._instances: dict[str, ServiceInstance] = {}
        self._addresses: dict[tuple[str, int | None], str] = {}

    @property
    def state(self) -> EnvironmentState:
        return self._state

    @property
    def descriptors(self) -> DescriptorSet:
        return self._descriptors

    @property
    def roles(self) -> list[str]:
        return self._descriptors.roles

    @property
    def network(self) -> object | None:
        return self._network

    def has_role(self, role: str) -> bool:
        return role in self._descriptors

    def descriptor(self, role: str) -> ServiceDescriptor:
        return self._descriptors[role]

    def start(self) -> None:
        with self._lock:
            if self._state is not EnvironmentState.NOT_STARTED:
                raise LifecycleError(f"Environment cannot start from state '{self._state.value}'")
            self._state = EnvironmentState.STARTING
            self._log.info("environment starting", roles=",".join(self._descriptors.start_order))
            try:
                self._network = self._runtime.create_network()
            except Exception as exc:
                self._state = EnvironmentState.CLOSED
                raise StartupFailedError(NETWORK_ROLE, exc) from exc

            for index, tier in enumerate(self._descriptors.tiers):
                self._log.info("starting tier", tier=index, roles=",".join(tier))
                failure = self._start_tier(tier)
                if failure is not None:
                    self._log.error("startup failed, rolling back", role=failure.role, cause=repr(failure.cause))
                    self._state = EnvironmentState.CLOSING
                    self._release()
                    self._state = EnvironmentState.CLOSED
                    raise failure

            self._state = EnvironmentState.RUNNING
            self._log.info("environment running", roles=len(self._started))

    def stop(self) -> None:
        with self._lock:
            if self._state is EnvironmentState.CLOSED:
                return
            if self._state is EnvironmentState.NOT_STARTED:
                self._state = EnvironmentState.CLOSED
                return
            self._state = EnvironmentState.CLOSING
            self._log.info("environment closing", roles=len(self._started))
            self._release()
            self._state = EnvironmentState.CLOSED
            self._log.info("environment closed")

    def address_of(self, role: str, port: int | None = None) -> str:
        with self._lock:
            if self._state is not EnvironmentState.RUNNING:
                raise RoleNotStartedError(role, f"environment is {self._state.value}")
            instance = self._instances.get(role)
            if instance is None:
                raise RoleNotStartedError(role, "role is not part of this environment")
            key = (role, port)
            if key not in self._addresses:
                self._addresses[key] = self._runtime.address(instance, port)
            return self._addresses[key]

    def addresses(self) -> dict[str, str]:
        return {role: self.address_of(role) for role in self._descriptors.start_order}

    def engine_gateway_address(self) -> str:
        return self.address_of(ENGINE, ENGINE_GATEWAY_PORT)

    def engine_rest_address(self) -> str:
        return self.address_of(ENGINE, ENGINE_REST_PORT)

    def token_endpoint(self, realm: str) -> str:
        # Keycloak is served under /auth (KEYCLOAK_HTTP_RELATIVE_PATH).
        return f"http://{self.address_of(KEYCLOAK)}/auth/realms/{realm}/protocol/openid-connect/token"

    def __enter__(self) -> "EnvironmentHandle":
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()

    def _start_tier(self, tier: list[str]) -> StartupFailedError | None:
        # Returns the first failure in tier order; successful instances are always tracked.
        if self._policy.parallel_start and len(tier) > 1:
            with ThreadPoolExecutor(max_workers=len(tier), thread_name_prefix="testenv-start") as pool:
                futures = {role: pool.submit(self._start_role, role) for role in tier}
            outcomes = [(role, futures[role]) for role in tier]
            failure: StartupFailedError | None = None
            for role, future in outcomes:
                exc = future.exception()
                if exc is None:
                    self._track(future.result())
                    continue
                if failure is None:
                    failure = exc if isinstance(exc, StartupFailedError) else StartupFailedError(role, exc)
            return failure

        for role in tier:
            try:
                self._track(self._start_role(role))
            except StartupFailedError as exc:
                return exc
        return None

    def _start_role(self, role: str) -> ServiceInstance:
        descriptor = self._descriptors[role]
        self._log.debug("starting role", role=role, image=descriptor.image)
        try:
            instance = self._runtime.start(descriptor, self._network)
        except Exception as exc:
            raise StartupFailedError(role, exc) from exc

        budget = descriptor.startup_timeout_seconds or self._policy.startup_timeout_seconds
        deadline = self._clock() + budget
        while True:
            try:
                ready = self._runtime.is_ready(instance)
            except Exception as exc:
                self._stop_instance(instance)
                raise StartupFailedError(role, exc) from exc
            if ready:
                self._log.info("role ready", role=role)
                return instance
            if self._clock() >= deadline:
                self._stop_instance(instance)
                raise StartupFailedError(role, TimeoutError(f"not ready after {budget} seconds"))
            self._sleep(self._policy.readiness_poll_interval_seconds)

    def _track(self, instance: ServiceInstance) -> None:
        self._started.append(instance)
        self._instances[instance.role] = instance

    def _release(self) -> None:
        # Best effort: every role and the network get a stop attempt regardless of earlier failures.
        for instance in reversed(self._started):
            self._stop_instance(instance)
        self._started.clear()
        self._instances.clear()
        self._addresses.clear()
        if self._network is not None:
            try:
                self._runtime.remove_network(self._network)
            except Exception as exc:  # noqa: BLE001 - teardown keeps going
                self._log.warning("network release failed", error=repr(exc))
            self._network = None

    def _stop_instance(self, instance: ServiceInstance) -> None:
        grace = self._policy.graceful_shutdown_seconds if instance.descriptor.graceful_shutdown else None
        try:
            self._runtime.stop(instance, grace)
        except Exception as exc:  # noqa: BLE001 - teardown keeps going
            self._log.warning("role stop failed", role=instance.role, error=repr(exc))
            return
        self._log.debug("role stopped", role=instance.role, grace=grace)
