from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    "ContainerServiceRuntime",
    "InMemoryServiceRuntime",
    "ServiceInstance",
    "ServiceRuntime",
]


def __getattr__(name: str) -> Any:
    # Lazy exports keep Docker client imports out of code paths that only need the contract.
    if name in {"ServiceInstance", "ServiceRuntime"}:
        module = import_module("workflow_testenv.runtime.contracts")
        return getattr(module, name)
    if name == "InMemoryServiceRuntime":
        module = import_module("workflow_testenv.runtime.memory")
        return getattr(module, name)
    if name == "ContainerServiceRuntime":
        module = import_module("workflow_testenv.runtime.containers")
        return getattr(module, name)
    raise AttributeError(name)
