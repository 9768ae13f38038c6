"""
Configuration management for the marketplace service.

Loads configuration from YAML with ZERO defaults.
Every value must be explicitly specified or startup fails.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field
from service_commons.config import (
    REDACTION_MARKER,
    create_settings_loader,
    get_safe_model_config,
)
from service_commons.config import (
    get_config_path as resolve_config_path,
)

if TYPE_CHECKING:
    from pathlib import Path

# Half of SQLite's INTEGER range, so a capped balance plus a capped amount never overflows
MAX_AMOUNT_CEILING = (2**63 - 1) // 2


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(extra="forbid")
    host: str
    port: int
    log_level: str


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")
    level: str
    directory: str


class DatabaseConfig(BaseModel):
    """Database configuration."""

    model_config = ConfigDict(extra="forbid")
    path: str


class PlatformConfig(BaseModel):
    """Platform account that collects commission."""

    model_config = ConfigDict(extra="forbid")
    account_id: str
    account_name: str


class CommissionConfig(BaseModel):
    """Commission charged to non-PRO workers on approval."""

    model_config = ConfigDict(extra="forbid")
    rate_percent: int = Field(ge=0, le=100)


class ProgressionConfig(BaseModel):
    """Worker XP and level progression."""

    model_config = ConfigDict(extra="forbid")
    xp_per_task: int = Field(ge=0)
    xp_per_level: int = Field(gt=0)


class ProConfig(BaseModel):
    """PRO tier purchase configuration."""

    model_config = ConfigDict(extra="forbid")
    price: int = Field(gt=0)


class RequestConfig(BaseModel):
    """Request handling configuration."""

    model_config = ConfigDict(extra="forbid")
    max_body_size: int


class LimitsConfig(BaseModel):
    """Input size and monetary amount limits."""

    model_config = ConfigDict(extra="forbid")
    max_title_length: int
    max_description_length: int
    max_reason_length: int
    max_attachments: int
    max_amount: int = Field(gt=0, le=MAX_AMOUNT_CEILING)


class Settings(BaseModel):
    """
    Root configuration container.

    All fields are REQUIRED. No defaults exist.
    Missing fields cause immediate startup failure.
    """

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    server: ServerConfig
    logging: LoggingConfig
    database: DatabaseConfig
    platform: PlatformConfig
    commission: CommissionConfig
    progression: ProgressionConfig
    pro: ProConfig
    request: RequestConfig
    limits: LimitsConfig


def get_config_path() -> Path:
    """Determine configuration file path."""
    return resolve_config_path(
        env_var_name="CONFIG_PATH",
        default_filename="config.yaml",
    )


get_settings, clear_settings_cache = create_settings_loader(Settings, get_config_path)  # nosemgrep


def get_safe_config() -> dict[str, Any]:
    """Get configuration with sensitive values redacted."""
    return get_safe_model_config(get_settings(), REDACTION_MARKER)
