"""
Centralized settings for cronspine.

One validated, cached settings object holds the scheduler defaults that
would otherwise be hard-coded: the lock namespace and TTL, poll intervals of
the subprocess executor and the worker, the default ``--app`` reference and
logging options.

All fields can be set via ``CRONSPINE_*`` environment variables (e.g.
``CRONSPINE_APP=myproject.schedule:scheduler``) or a ``.env`` file.

Tags:
    cronspine, configuration, settings, pydantic, caching
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulerSettings(BaseSettings):
    """cronspine configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CRONSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app: str | None = Field(
        default=None,
        description="Scheduler reference, 'module:attribute' or 'path/to/file.py:attribute'",
    )

    # ── Locks ────────────────────────────────────────────────────
    lock_namespace: str = Field(default="cronspine.job/")
    lock_ttl_seconds: float = Field(default=300.0, gt=0)

    # ── Executors ────────────────────────────────────────────────
    process_poll_interval: float = Field(default=0.01, gt=0)
    worker_poll_interval: float = Field(default=0.1, gt=0)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console", description="'console' or 'json'")


_settings_cache: dict[str, SchedulerSettings] = {}


def get_settings(*, _force_reload: bool = False) -> SchedulerSettings:
    """Load, validate, and cache a :class:`SchedulerSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]
    settings = SchedulerSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()


__all__ = ["SchedulerSettings", "clear_settings_cache", "get_settings"]
