"""
Runtime settings (``expense_config.settings``).

Responsibility
--------------
Builds the frozen ``EngineSettings`` the orchestrator and engine factory
run with.  Values come from, in increasing precedence: defaults, an
optional YAML file, environment variables.

Failure modes
-------------
* Missing settings file named explicitly  -> ``FileNotFoundError``.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or bad values  -> ``ConfigurationError``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

from expense_kernel.domain.workflow import MIN_REJECTION_COMMENT_LENGTH
from expense_kernel.exceptions import ConfigurationError

SETTINGS_PATH_ENV = "EXPENSE_WORKFLOW_CONFIG"

_ENV_KEYS = {
    "DATABASE_URL": "database_url",
    "EXPENSE_MIN_REJECTION_COMMENT_LENGTH": "min_rejection_comment_length",
    "EXPENSE_LOG_LEVEL": "log_level",
    "EXPENSE_SQL_ECHO": "sql_echo",
}

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off", ""})


@dataclass(frozen=True)
class EngineSettings:
    """Settings for one running workflow engine."""

    database_url: str = "sqlite:///expense_workflow.db"
    min_rejection_comment_length: int = MIN_REJECTION_COMMENT_LENGTH
    log_level: str = "INFO"
    sql_echo: bool = False


def _coerce_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigurationError(f"{key}: expected a boolean, got {value!r}")


def _coerce(key: str, value: Any) -> Any:
    if key == "min_rejection_comment_length":
        if isinstance(value, bool):
            raise ConfigurationError(f"{key}: expected an integer, got {value!r}")
        try:
            length = int(value)
        except (TypeError, ValueError):
            raise ConfigurationError(f"{key}: expected an integer, got {value!r}") from None
        if length < 0:
            raise ConfigurationError(f"{key}: must be >= 0, got {length}")
        return length
    if key == "log_level":
        level = str(value).upper()
        if level not in _LOG_LEVELS:
            raise ConfigurationError(f"{key}: unknown level {value!r}")
        return level
    if key == "sql_echo":
        return _coerce_bool(key, value)
    if not isinstance(value, str) or not value:
        raise ConfigurationError(f"{key}: expected a non-empty string")
    return value


def _from_mapping(base: EngineSettings, raw: Mapping[str, Any]) -> EngineSettings:
    known = {f.name for f in fields(EngineSettings)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigurationError(f"Unknown settings: {', '.join(unknown)}")
    return replace(base, **{key: _coerce(key, value) for key, value in raw.items()})


def load_settings_file(path: Path) -> dict[str, Any]:
    """Read a settings YAML file; an optional top-level ``settings:`` key is unwrapped."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: settings file must contain a mapping")
    settings = data.get("settings", data)
    if not isinstance(settings, dict):
        raise ConfigurationError(f"{path}: 'settings' must be a mapping")
    return settings


def get_settings(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> EngineSettings:
    """
    Resolve the engine settings.

    Args:
        path: Settings YAML.  Falls back to ``$EXPENSE_WORKFLOW_CONFIG``;
            no file at all is fine.
        environ: Environment mapping (defaults to ``os.environ``).
    """
    env = os.environ if environ is None else environ
    settings = EngineSettings()

    file_path = path or env.get(SETTINGS_PATH_ENV)
    if file_path:
        settings = _from_mapping(settings, load_settings_file(Path(file_path)))

    overrides = {
        field_name: env[env_key]
        for env_key, field_name in _ENV_KEYS.items()
        if env_key in env
    }
    return _from_mapping(settings, overrides)
