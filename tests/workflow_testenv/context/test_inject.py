from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Optional

import pytest

from workflow_testenv.context.inject import (
    CapabilityRegistry,
    CapabilityRegistryError,
    InjectionContext,
    InjectionFailedError,
    RunningTest,
    find_injection_targets,
    inject,
)
from workflow_testenv.lifecycle.orchestrator import StartupFailedError


class Engine:
    pass


class Client:
    def __init__(self, tenant: str) -> None:
        self.tenant = tenant


class BaseScenario:
    engine: Engine


class OrderScenario(BaseScenario):
    client: Client
    label: str
    shared: ClassVar[Engine]


class OptionalScenario:
    client: Optional[Client]
    engine: Engine | None


class OptOutScenario(BaseScenario):
    engine: str  # type: ignore[assignment]


@dataclass(frozen=True)
class FrozenScenario:
    engine: Engine | None = None


class SlottedScenario:
    __slots__ = ("other",)
    engine: Engine


class UnresolvedScenario:
    engine: Engine
    other: UndefinedName  # noqa: F821


def _registry(engine: Engine | None = None) -> CapabilityRegistry:
    registry = CapabilityRegistry()
    shared = engine or Engine()
    registry.register(Engine, lambda context: shared)
    registry.register(Client, lambda context: Client(context.test.method_name))
    return registry


def _context(method: str = "test_ship") -> InjectionContext:
    return InjectionContext(test=RunningTest("OrderScenario", method), environment=lambda: None)


def test_targets_include_inherited_fields_base_first() -> None:
    targets = find_injection_targets(OrderScenario, _registry())
    assert [(t.name, t.capability, t.owner) for t in targets] == [
        ("engine", Engine, BaseScenario),
        ("client", Client, OrderScenario),
    ]


def test_inject_assigns_every_capability_and_skips_others() -> None:
    engine = Engine()
    scenario = OrderScenario()
    inject(scenario, _context("test_ship"), _registry(engine))

    assert scenario.engine is engine
    assert scenario.client.tenant == "test_ship"
    assert not hasattr(scenario, "label")
    assert "shared" not in OrderScenario.__dict__


def test_optional_annotations_are_matched() -> None:
    registry = _registry()
    assert [t.name for t in find_injection_targets(OptionalScenario, registry)] == ["client", "engine"]


def test_subclass_can_opt_out_by_redeclaring() -> None:
    assert find_injection_targets(OptOutScenario, _registry()) == []


def test_frozen_instances_are_injected() -> None:
    engine = Engine()
    scenario = FrozenScenario()
    inject(scenario, _context(), _registry(engine))
    assert scenario.engine is engine


def test_unassignable_field_raises_injection_failed() -> None:
    with pytest.raises(InjectionFailedError) as excinfo:
        inject(SlottedScenario(), _context(), _registry())
    assert excinfo.value.field == "engine"
    assert isinstance(excinfo.value.cause, AttributeError)


def test_unresolvable_annotations_fall_back_to_names() -> None:
    targets = find_injection_targets(UnresolvedScenario, _registry())
    assert [t.name for t in targets] == ["engine"]


def test_provider_errors_are_wrapped() -> None:
    registry = CapabilityRegistry()
    boom = ValueError("no address")

    def failing(context: InjectionContext) -> Engine:
        raise boom

    registry.register(Engine, failing)
    with pytest.raises(InjectionFailedError) as excinfo:
        inject(BaseScenario(), _context(), registry)
    assert excinfo.value.field == "engine"
    assert excinfo.value.cause is boom


def test_environment_failures_propagate_unwrapped() -> None:
    registry = CapabilityRegistry()

    def failing(context: InjectionContext) -> Engine:
        raise StartupFailedError("engine", TimeoutError("not ready"))

    registry.register(Engine, failing)
    with pytest.raises(StartupFailedError):
        inject(BaseScenario(), _context(), registry)


def test_registry_rejects_duplicates_and_non_classes() -> None:
    registry = _registry()
    with pytest.raises(CapabilityRegistryError):
        registry.register(Engine, lambda context: Engine())
    with pytest.raises(CapabilityRegistryError):
        registry.register("Engine", lambda context: Engine())  # type: ignore[arg-type]
    with pytest.raises(CapabilityRegistryError):
        CapabilityRegistry().provider_for(Engine)
    assert registry.capabilities == (Engine, Client)


def test_string_annotations_match_by_name() -> None:
    registry = _registry()
    assert registry.match("Engine") is Engine
    assert registry.match("Client | None") is Client
    assert registry.match("Optional[Client]") is Client
    assert registry.match("ClassVar[Engine]") is None
    assert registry.match("int") is None
