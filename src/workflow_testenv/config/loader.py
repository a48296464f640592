from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from workflow_testenv.config.models import EnvironmentSettings

CONFIG_ENV = "TESTENV_CONFIG"
SCOPE_ENV = "TESTENV_SCOPE"
IMAGE_ENV_PREFIX = "TESTENV_IMAGE_"
# Variant toggle env vars mapped onto variant settings fields.
TOGGLE_ENVS = {
    "TESTENV_ENABLE_WEB_APPS": "web_apps",
    "TESTENV_ENABLE_CONNECTORS": "connectors",
    "TESTENV_ENABLE_IDENTITY": "identity",
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


class ConfigError(ValueError):
    # Raised for unreadable or invalid environment settings (fail fast).
    pass


def load_yaml_config(path: Path) -> dict[str, Any]:
    # YAML loader; returns a raw mapping for validation.
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Cannot read config file: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in config file: {path}") from exc
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a mapping")
    return raw


def load_settings(
    path: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> EnvironmentSettings:
    # File (explicit path or TESTENV_CONFIG) first, then env overrides on top.
    env = os.environ if environ is None else environ
    if path is None and env.get(CONFIG_ENV):
        path = Path(env[CONFIG_ENV])
    raw: dict[str, Any] = load_yaml_config(path) if path is not None else {}
    apply_env_overrides(raw, env)
    try:
        return EnvironmentSettings.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc


def apply_env_overrides(raw: dict[str, Any], environ: Mapping[str, str]) -> None:
    scope = environ.get(SCOPE_ENV)
    if scope:
        raw["scope"] = scope

    for env_name, field_name in TOGGLE_ENVS.items():
        value = environ.get(env_name)
        if value is None:
            continue
        variant = _section(raw, "variant")
        variant[field_name] = _parse_bool(env_name, value)

    for env_name, value in environ.items():
        if not env_name.startswith(IMAGE_ENV_PREFIX) or not value:
            continue
        # TESTENV_IMAGE_INDEX_STORE -> index-store
        role = env_name[len(IMAGE_ENV_PREFIX) :].lower().replace("_", "-")
        roles = _section(raw, "roles")
        role_cfg = roles.setdefault(role, {})
        if not isinstance(role_cfg, dict):
            raise ConfigError(f"roles.{role} must be a mapping")
        role_cfg["image"] = value


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    section = raw.setdefault(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"{name} must be a mapping")
    return section


def _parse_bool(name: str, value: str) -> bool:
    normalized = value.strip().lower()
    if normalized in _TRUE:
        return True
    if normalized in _FALSE:
        return False
    raise ConfigError(f"{name} must be a boolean flag, got {value!r}")
