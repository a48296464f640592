from workflow_testenv.context.inject import (
    CapabilityRegistry,
    CapabilityRegistryError,
    InjectionContext,
    InjectionFailedError,
    InjectionTarget,
    RunningTest,
    find_injection_targets,
    inject,
)
from workflow_testenv.context.isolation import ISOLATION_KEY_MAX_LENGTH, derive_isolation_key
from workflow_testenv.context.scope_cache import (
    ScopeCache,
    ScopeKey,
    class_scope_key,
    session_scope_key,
    with_connector_secrets,
)

__all__ = [
    "CapabilityRegistry",
    "CapabilityRegistryError",
    "ISOLATION_KEY_MAX_LENGTH",
    "InjectionContext",
    "InjectionFailedError",
    "InjectionTarget",
    "RunningTest",
    "ScopeCache",
    "ScopeKey",
    "class_scope_key",
    "derive_isolation_key",
    "find_injection_targets",
    "inject",
    "session_scope_key",
    "with_connector_secrets",
]
