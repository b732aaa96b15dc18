"""
Centralized settings for implspine.

Manifesto:
    One validated, cached settings object instead of ad-hoc environment
    parsing in the broker, loader and CLI. Values come from ``IMPLSPINE_*``
    environment variables or a ``.env`` file.

Tags:
    implspine, configuration, settings, pydantic, caching

Doc-Types:
    api-reference
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError


class ImplSpineSettings(BaseSettings):
    """implspine configuration.

    Fields
    ──────
    log_level            : structlog level
    log_format           : ``console`` or ``json``
    service_name         : ``service.name`` attached to every log line
    strict_registration  : raise on a second consumer registration instead of
                           logging and ignoring it
    max_concurrent_loads : upper bound on concurrent fragment reads
    """

    model_config = SettingsConfigDict(
        env_prefix="IMPLSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Logging ──────────────────────────────────────────────────
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["console", "json"] = Field(default="console")
    service_name: str = Field(default="implspine")

    # ── Broker ───────────────────────────────────────────────────
    strict_registration: bool = Field(
        default=False,
        description="Raise ConsumerAlreadyRegisteredError on a second registration",
    )

    # ── Loader ───────────────────────────────────────────────────
    max_concurrent_loads: int = Field(default=16, ge=1)


_settings_cache: dict[str, ImplSpineSettings] = {}


def get_settings(*, _force_reload: bool = False) -> ImplSpineSettings:
    """Load, validate, and cache an :class:`ImplSpineSettings` instance.

    Raises:
        ConfigError: If an environment value fails validation.
    """
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]

    try:
        settings = ImplSpineSettings()
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid implspine settings: {e.error_count()} error(s)", cause=e) from e

    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()


__all__ = ["ImplSpineSettings", "get_settings", "clear_settings_cache"]
