"""Process-level settings for sql-lookup.

Query and pool definitions live in the ``.properties``/YAML configuration
handed to ``LookupService.initialize``. ``LookupSettings`` only covers what
the host process itself needs: which configuration files to load, the
service identifier, logging and the startup validation bound.

Manifesto:
    - **Pydantic validation:** Type-checked at startup, not at first lookup
    - **Environment-driven:** ``SQL_LOOKUP_*`` variables and ``.env`` files
    - **Extra ignore:** Unknown env vars don't cause startup failures

Examples:
    >>> import os
    >>> os.environ["SQL_LOOKUP_SERVICE_ID"] = "users-lookup"
    >>> get_settings(_force_reload=True).service_id
    'users-lookup'

Tags:
    settings, configuration, pydantic, environment, sql-lookup

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LookupSettings(BaseSettings):
    """sql-lookup process configuration.

    Fields
    ──────
    service_id          : Identifier used for health publishing and logs
    config_files        : Configuration files, separated by ``os.pathsep`` or commas
    log_level           : Structlog log level
    log_format          : ``json``, ``console`` or ``auto`` (JSON unless a tty)
    validation_timeout  : Seconds allowed for the startup test query
    """

    model_config = SettingsConfigDict(
        env_prefix="SQL_LOOKUP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Identity ─────────────────────────────────────────────────
    service_id: str = Field(default="sql-lookup", min_length=1)

    # ── Configuration sources ────────────────────────────────────
    config_files: str = Field(default="", description="Configuration files to load, in order")

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "console", "auto"] = Field(default="auto")

    # ── Startup ──────────────────────────────────────────────────
    validation_timeout: float = Field(default=5.0, gt=0)

    @field_validator("log_level")
    @classmethod
    def _normalise_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level

    @property
    def config_paths(self) -> list[Path]:
        """``config_files`` split into paths, empty entries dropped."""
        raw = self.config_files.replace(",", os.pathsep)
        return [Path(part.strip()) for part in raw.split(os.pathsep) if part.strip()]

    @property
    def json_logs(self) -> bool | None:
        """``json_format`` argument for ``configure_logging``."""
        if self.log_format == "auto":
            return None
        return self.log_format == "json"


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: LookupSettings | None = None


def get_settings(*, _force_reload: bool = False) -> LookupSettings:
    """Load, validate and cache a :class:`LookupSettings` instance."""
    global _settings_cache
    if _settings_cache is None or _force_reload:
        _settings_cache = LookupSettings()
    return _settings_cache


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    global _settings_cache
    _settings_cache = None


__all__ = ["LookupSettings", "get_settings", "clear_settings_cache"]
