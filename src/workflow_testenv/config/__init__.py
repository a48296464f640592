from workflow_testenv.config.loader import ConfigError, load_settings, load_yaml_config
from workflow_testenv.config.models import (
    CredentialsSettings,
    EnvironmentSettings,
    LifecycleSettings,
    LoggingSettings,
    RoleSettings,
    VariantSettings,
)

__all__ = [
    "ConfigError",
    "CredentialsSettings",
    "EnvironmentSettings",
    "LifecycleSettings",
    "LoggingSettings",
    "RoleSettings",
    "VariantSettings",
    "load_settings",
    "load_yaml_config",
]
