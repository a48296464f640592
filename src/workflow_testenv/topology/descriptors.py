from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field

ENGINE = "engine"
INDEX_STORE = "index-store"
OPERATE = "operate"
TASKLIST = "tasklist"
CONNECTORS = "connectors"
RELATIONAL_STORE = "relational-store"
KEYCLOAK = "keycloak"
IDENTITY = "identity"

# Operate is the primary web app; connectors read process state from it.
PRIMARY_WEB_APP = OPERATE
WEB_APPS = (OPERATE, TASKLIST)


@dataclass(frozen=True, slots=True)
class ReadinessCheck:
    # Service-level readiness: an HTTP GET on a container port, or a line in the container output.
    port: int | None = None
    path: str | None = None
    log_line: str | None = None

    def __post_init__(self) -> None:
        http = self.port is not None and bool(self.path)
        if http == bool(self.log_line):
            raise ValueError("ReadinessCheck needs either port+path or log_line")
        if self.path is not None and not self.path.startswith("/"):
            raise ValueError("ReadinessCheck.path must start with '/'")

    @property
    def is_http(self) -> bool:
        return self.log_line is None

    @classmethod
    def http(cls, port: int, path: str) -> "ReadinessCheck":
        return cls(port=port, path=path)

    @classmethod
    def log(cls, line: str) -> "ReadinessCheck":
        return cls(log_line=line)


@dataclass(frozen=True, slots=True)
class ServiceDescriptor:
    # Declarative definition of one role: what to run and how it is reached.
    role: str
    image: str
    alias: str
    ports: tuple[int, ...]
    env: Mapping[str, str] = field(default_factory=dict)
    requires: tuple[str, ...] = ()
    startup_timeout_seconds: float | None = None
    graceful_shutdown: bool = False
    readiness: ReadinessCheck | None = None

    def __post_init__(self) -> None:
        if not self.role:
            raise ValueError("ServiceDescriptor.role must be a non-empty string")
        if not self.image:
            raise ValueError(f"ServiceDescriptor '{self.role}' requires an image")
        if not self.ports:
            raise ValueError(f"ServiceDescriptor '{self.role}' must expose at least one port")
        if self.role in self.requires:
            raise ValueError(f"ServiceDescriptor '{self.role}' cannot require itself")
        if self.readiness is not None and self.readiness.port is not None and self.readiness.port not in self.ports:
            raise ValueError(f"ServiceDescriptor '{self.role}' readiness port {self.readiness.port} is not exposed")

    @property
    def primary_port(self) -> int:
        return self.ports[0]


@dataclass(frozen=True, slots=True)
class DescriptorSet:
    # Descriptors for one topology variant plus the tiered start plan.
    descriptors: dict[str, ServiceDescriptor]
    tiers: list[list[str]]

    def __post_init__(self) -> None:
        planned = [role for tier in self.tiers for role in tier]
        if sorted(planned) != sorted(self.descriptors):
            raise ValueError("DescriptorSet tiers must list every role exactly once")

    def __getitem__(self, role: str) -> ServiceDescriptor:
        return self.descriptors[role]

    def __contains__(self, role: object) -> bool:
        return role in self.descriptors

    def __iter__(self) -> Iterator[ServiceDescriptor]:
        return iter(self.descriptors.values())

    def __len__(self) -> int:
        return len(self.descriptors)

    @property
    def roles(self) -> list[str]:
        return list(self.descriptors)

    @property
    def start_order(self) -> list[str]:
        return [role for tier in self.tiers for role in tier]
