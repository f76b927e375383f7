"""Aether process settings using pydantic-settings.

Configuration hierarchy:
- LoggingConfig: Logging behavior
- DockerConfig: Container engine connection and lifecycle settings
- StateConfig: Registry file layout and resource naming
- AetherSettings: Main settings aggregating all sub-configs

Environment variable prefix: AETHER_
Example: AETHER_LOGGING_FORMAT=json

Project-level service declarations live in aether.toml (see aether.project),
not here.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LoggingConfig(BaseSettings):
    """Logging configuration.

    Supports both text and JSON formats:
    - text: Human-readable for interactive use
    - json: Structured logging for CI and log aggregation
    """

    model_config = SettingsConfigDict(env_prefix="AETHER_LOGGING_")

    level: str = Field(default="WARNING", description="Log level (DEBUG, INFO, WARNING, ERROR)")
    format: str = Field(default="text", description="Log format (text, json)")
    service_name: str = Field(default="aether", description="Service identifier in logs")


class DockerConfig(BaseSettings):
    """Container engine configuration."""

    model_config = SettingsConfigDict(env_prefix="AETHER_DOCKER_")

    # Connection
    host: str | None = Field(
        default=None,
        description="Docker daemon socket or TCP address (None uses DOCKER_HOST/default socket)",
    )

    # Networking
    network_driver: str = Field(default="bridge", description="Driver for namespace networks")
    host_ip: str = Field(default="0.0.0.0", description="Host interface for published ports")

    # Timeouts
    stop_timeout: int = Field(
        default=10,
        description="Grace period before forced termination on stop/restart (seconds)",
    )

    # Published port conflicts
    port_conflict_retries: int = Field(
        default=3,
        description="Attempts to recreate a container whose published port was taken",
    )


class StateConfig(BaseSettings):
    """Registry layout and naming conventions.

    The registry lives at <repo_root>/<dir_name>/<file_name> with its lock
    file beside it.
    """

    model_config = SettingsConfigDict(env_prefix="AETHER_STATE_")

    dir_name: str = Field(default=".aether", description="State directory under the repo root")
    file_name: str = Field(default="state.json", description="Registry document file name")
    lock_name: str = Field(default="state.lock", description="Lock file name")

    # Resource naming
    namespace_prefix: str = Field(
        default="aether-",
        description="Prefix joined with the workspace name to form its namespace",
    )
    label_prefix: str = Field(
        default="aether.",
        description="Prefix for container discovery labels",
    )


class AetherSettings(BaseSettings):
    """Main settings aggregating all sub-configs.

    Environment variable prefix: AETHER_
    Sub-configs use their own prefixes (AETHER_DOCKER_, AETHER_STATE_, etc.)
    """

    model_config = SettingsConfigDict(
        env_prefix="AETHER_",
        env_nested_delimiter="__",
    )

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    docker: DockerConfig = Field(default_factory=DockerConfig)
    state: StateConfig = Field(default_factory=StateConfig)


@lru_cache
def get_settings() -> AetherSettings:
    """Get cached settings singleton."""
    return AetherSettings()
