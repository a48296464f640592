from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    "ClientFactory",
    "EngineClient",
    "EnvironmentHandle",
    "EnvironmentHarness",
    "EnvironmentSettings",
    "InjectionFailedError",
    "InvalidTopologyError",
    "RoleNotStartedError",
    "ScopeCache",
    "StartupFailedError",
    "TopologyBuilder",
    "TopologyVariant",
    "derive_isolation_key",
]

_EXPORTS = {
    "ClientFactory": "workflow_testenv.client.factory",
    "EngineClient": "workflow_testenv.client.engine",
    "EnvironmentHandle": "workflow_testenv.lifecycle.orchestrator",
    "RoleNotStartedError": "workflow_testenv.lifecycle.orchestrator",
    "StartupFailedError": "workflow_testenv.lifecycle.orchestrator",
    "EnvironmentHarness": "workflow_testenv.harness",
    "EnvironmentSettings": "workflow_testenv.config.models",
    "InjectionFailedError": "workflow_testenv.context.inject",
    "ScopeCache": "workflow_testenv.context.scope_cache",
    "derive_isolation_key": "workflow_testenv.context.isolation",
    "InvalidTopologyError": "workflow_testenv.topology.dag",
    "TopologyBuilder": "workflow_testenv.topology.builder",
    "TopologyVariant": "workflow_testenv.topology.builder",
}


def __getattr__(name: str) -> Any:
    # Lazy exports avoid import cycles between lifecycle, context and the pytest plugin.
    module_name = _EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(name)
    return getattr(import_module(module_name), name)
