from __future__ import annotations

import inspect
import types
import typing
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, ClassVar

from workflow_testenv.lifecycle.orchestrator import LifecycleError


class InjectionFailedError(RuntimeError):
    # Raised when a capability cannot be built or assigned to a test field.
    def __init__(self, field_name: str, cause: BaseException) -> None:
        super().__init__(f"Cannot inject field '{field_name}': {cause}")
        self.field = field_name
        self.cause = cause


class CapabilityRegistryError(RuntimeError):
    # Raised when capability bindings are duplicated or malformed.
    pass


@dataclass(frozen=True, slots=True)
class RunningTest:
    # Identity of the test about to run, as reported by the test framework.
    class_name: str
    method_name: str


@dataclass(frozen=True, slots=True)
class InjectionContext:
    test: RunningTest
    # Resolves (and on first use creates) the scope's environment handle.
    environment: Callable[[], Any]


Provider = Callable[[InjectionContext], object]


@dataclass(frozen=True, slots=True)
class InjectionTarget:
    name: str
    capability: type[Any]
    owner: type[Any]


@dataclass(slots=True)
class CapabilityRegistry:
    # Closed set of injectable capability types mapped to provider functions.
    _providers: dict[type[Any], Provider] = field(default_factory=dict)

    def register(self, capability: type[Any], provider: Provider) -> None:
        if not isinstance(capability, type):
            raise CapabilityRegistryError("capability must be a class")
        if capability in self._providers:
            raise CapabilityRegistryError(f"Duplicate capability binding for {capability.__name__}")
        self._providers[capability] = provider

    def provider_for(self, capability: type[Any]) -> Provider:
        if capability not in self._providers:
            raise CapabilityRegistryError(f"Missing capability binding for {capability.__name__}")
        return self._providers[capability]

    @property
    def capabilities(self) -> tuple[type[Any], ...]:
        return tuple(self._providers)

    def match(self, annotation: object) -> type[Any] | None:
        # Exact type match; "X | None" counts as X. ClassVar (static) fields never match.
        if isinstance(annotation, str):
            return self._match_name(annotation)
        if annotation is ClassVar or typing.get_origin(annotation) is ClassVar:
            return None
        if typing.get_origin(annotation) in (typing.Union, types.UnionType):
            members = [arg for arg in typing.get_args(annotation) if arg is not type(None)]
            if len(members) != 1:
                return None
            annotation = members[0]
        if isinstance(annotation, type) and annotation in self._providers:
            return annotation
        return None

    def _match_name(self, annotation: str) -> type[Any] | None:
        # Fallback for annotations that cannot be evaluated in their module namespace.
        text = annotation.strip()
        if text.startswith(("ClassVar", "typing.ClassVar")):
            return None
        for suffix in (" | None", "|None"):
            if text.endswith(suffix):
                text = text[: -len(suffix)].strip()
        if text.startswith("Optional[") and text.endswith("]"):
            text = text[len("Optional[") : -1].strip()
        for capability in self._providers:
            if text in (capability.__name__, f"{capability.__module__}.{capability.__qualname__}"):
                return capability
        return None


def find_injection_targets(cls: type[Any], registry: CapabilityRegistry) -> list[InjectionTarget]:
    # Walk the hierarchy top-down (base classes first) over declared annotations.
    found: dict[str, InjectionTarget] = {}
    for klass in reversed(cls.__mro__):
        if klass is object:
            continue
        for name, annotation in _own_annotations(klass).items():
            capability = registry.match(annotation)
            if capability is None:
                # A subclass redeclaring the name as something else (or ClassVar) opts out.
                found.pop(name, None)
                continue
            found[name] = InjectionTarget(name=name, capability=capability, owner=klass)
    return list(found.values())


def inject(instance: object, context: InjectionContext, registry: CapabilityRegistry) -> list[InjectionTarget]:
    targets = find_injection_targets(type(instance), registry)
    for target in targets:
        provider = registry.provider_for(target.capability)
        try:
            value = provider(context)
        except LifecycleError:
            # Environment failures belong to the whole scope, not to this field.
            raise
        except Exception as exc:
            raise InjectionFailedError(target.name, exc) from exc
        try:
            # Bypass frozen/slots via object.__setattr__.
            object.__setattr__(instance, target.name, value)
        except (AttributeError, TypeError) as exc:
            raise InjectionFailedError(target.name, exc) from exc
    return targets


def _own_annotations(klass: type[Any]) -> dict[str, object]:
    try:
        return dict(inspect.get_annotations(klass, eval_str=True))
    except Exception:  # noqa: BLE001 - unresolved forward refs fall back to raw strings
        return dict(inspect.get_annotations(klass))
