from workflow_testenv.lifecycle.orchestrator import (
    EnvironmentHandle,
    EnvironmentState,
    LifecycleError,
    LifecyclePolicy,
    RoleNotStartedError,
    StartupFailedError,
)

__all__ = [
    "EnvironmentHandle",
    "EnvironmentState",
    "LifecycleError",
    "LifecyclePolicy",
    "RoleNotStartedError",
    "StartupFailedError",
]
