"""
Shared YAML configuration loading.

Services declare a pydantic Settings model with no defaults and build a
cached loader from it. A missing file, unparsable YAML, or a document
that does not validate against the model raises ConfigurationError.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

if TYPE_CHECKING:
    from collections.abc import Callable

SettingsT = TypeVar("SettingsT", bound=BaseModel)

REDACTION_MARKER = "***REDACTED***"

_SENSITIVE_FRAGMENTS: tuple[str, ...] = ("secret", "password", "token", "private_key", "api_key")


class ConfigurationError(Exception):
    """Raised when configuration cannot be loaded or is invalid."""


def get_config_path(env_var_name: str, default_filename: str) -> Path:
    """
    Resolve the configuration file path.

    Uses the environment variable when set, otherwise default_filename
    in the current working directory.
    """
    configured = os.environ.get(env_var_name)
    if configured:
        return Path(configured)
    return Path.cwd() / default_filename


def load_yaml_config(path: Path) -> dict[str, Any]:
    """Read a YAML mapping from disk."""
    if not path.is_file():
        msg = f"Configuration file not found: {path}"
        raise ConfigurationError(msg)
    try:
        with path.open(encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        msg = f"Configuration file is not valid YAML: {path}"
        raise ConfigurationError(msg) from exc
    if not isinstance(data, dict):
        msg = f"Configuration root must be a mapping: {path}"
        raise ConfigurationError(msg)
    return data


def create_settings_loader(
    settings_model: type[SettingsT],
    path_resolver: Callable[[], Path],
) -> tuple[Callable[[], SettingsT], Callable[[], None]]:
    """
    Build a cached settings getter and its cache-clear function.

    Returns:
        (get_settings, clear_settings_cache)
    """

    @lru_cache(maxsize=1)
    def get_settings() -> SettingsT:
        data = load_yaml_config(path_resolver())
        try:
            return settings_model.model_validate(data)
        except ValidationError as exc:
            msg = f"Invalid configuration: {exc}"
            raise ConfigurationError(msg) from exc

    def clear_settings_cache() -> None:
        get_settings.cache_clear()

    return get_settings, clear_settings_cache


def _redact(value: Any, marker: str) -> Any:
    if isinstance(value, dict):
        return {
            key: (
                marker
                if any(fragment in str(key).lower() for fragment in _SENSITIVE_FRAGMENTS)
                else _redact(item, marker)
            )
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_redact(item, marker) for item in value]
    return value


def get_safe_model_config(settings: BaseModel, marker: str) -> dict[str, Any]:
    """Dump settings to a dict with sensitive-looking keys replaced by marker."""
    return dict(_redact(settings.model_dump(), marker))
