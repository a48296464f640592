from __future__ import annotations

from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

# Config models map the YAML settings file (and env overrides) to typed structures.


class RoleSettings(BaseModel):
    # Per-role overrides applied on top of the built-in descriptor defaults.
    model_config = ConfigDict(extra="forbid")
    image: str | None = None
    env: dict[str, str] = Field(default_factory=dict)
    startup_timeout_seconds: float | None = Field(default=None, gt=0)


class VariantSettings(BaseModel):
    # Topology toggles; engine + index store is the minimal environment.
    model_config = ConfigDict(extra="forbid")
    engine: bool = True
    index_store: bool = True
    web_apps: bool = True
    connectors: bool = False
    # "multi_tenancy" is accepted as an alias since the identity stack is what enables it.
    identity: bool = Field(default=False, validation_alias=AliasChoices("identity", "multi_tenancy"))


class LifecycleSettings(BaseModel):
    # Startup budget, readiness probing and shutdown grace for the engine.
    model_config = ConfigDict(extra="forbid")
    startup_timeout_seconds: float = Field(default=120.0, gt=0)
    graceful_shutdown_seconds: float = Field(default=10.0, ge=0)
    readiness_poll_interval_seconds: float = Field(default=0.5, gt=0)
    parallel_start: bool = True


class CredentialsSettings(BaseModel):
    # OAuth client used by engine clients in the identity variant.
    model_config = ConfigDict(extra="forbid")
    client_id: str = "zeebe"
    client_secret: str = "zecret"
    audience: str = "zeebe-api"
    realm: str = "camunda-platform"


class LoggingSettings(BaseModel):
    # Structured lifecycle log sink selection.
    model_config = ConfigDict(extra="forbid")
    sink: Literal["logging", "stdout", "jsonl", "none"] = "logging"
    path: str | None = None

    @model_validator(mode="after")
    def _path_for_jsonl(self) -> "LoggingSettings":
        if self.sink == "jsonl" and not self.path:
            raise ValueError("logging.path is required when logging.sink is 'jsonl'")
        return self


class EnvironmentSettings(BaseModel):
    # Root settings for test environments.
    model_config = ConfigDict(extra="forbid")
    scope: Literal["class", "session"] = "class"
    variant: VariantSettings = Field(default_factory=VariantSettings)
    roles: dict[str, RoleSettings] = Field(default_factory=dict)
    connector_secrets: dict[str, str] = Field(default_factory=dict)
    lifecycle: LifecycleSettings = Field(default_factory=LifecycleSettings)
    credentials: CredentialsSettings = Field(default_factory=CredentialsSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    def role(self, name: str) -> RoleSettings:
        return self.roles.get(name) or RoleSettings()
