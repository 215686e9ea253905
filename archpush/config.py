"""Configuration settings for archpush.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.

Only host-level knobs and secrets live here. Everything that describes
*what* a run publishes (platforms, tags, sizes) lives in the run
definition, see :mod:`archpush.definition`.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_cache_dir() -> Path:
    """Return the default build cache directory."""
    return Path("/tmp") / ".buildx-cache"


def _default_logs_dir() -> Path:
    """Return the default build log directory."""
    return Path.home() / ".local" / "share" / "archpush" / "logs"


def _default_db_url() -> str:
    """Return the default run history database URL (SQLite)."""
    db_path = Path.home() / ".local" / "share" / "archpush" / "history.sqlite"
    return f"sqlite:///{db_path}"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the ARCHPUSH_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="ARCHPUSH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    cache_dir: Path = Field(
        default_factory=_default_cache_dir,
        description="Root directory of the shared build cache",
    )
    logs_dir: Path = Field(
        default_factory=_default_logs_dir,
        description="Directory for per-platform build logs",
    )
    db_url: str = Field(
        default_factory=_default_db_url,
        description="Run history database URL",
    )

    # Tools
    docker_bin: str = Field(
        default="docker",
        description="Docker CLI executable",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Registry credentials (read once at run start, never logged)
    registry_username: str | None = Field(
        default=None,
        description="Registry username",
    )
    registry_token: SecretStr | None = Field(
        default=None,
        description="Registry access token",
    )

    # Authentication retries (only rate limiting is retried)
    auth_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries after a rate-limited login",
    )
    auth_backoff_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Initial backoff between login retries",
    )
    auth_timeout: int = Field(
        default=30,
        ge=1,
        description="Timeout for registry credential probes",
    )

    # Timeouts (in seconds); None means wait for completion
    build_timeout: int | None = Field(
        default=None,
        ge=60,
        description="Timeout for one platform build (unset = no timeout)",
    )

    # Cache retention
    cache_keep_generations: int = Field(
        default=2,
        ge=1,
        le=20,
        description="Cache generations kept per platform when pruning",
    )


def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Secret values are masked by pydantic's ``SecretStr``.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
