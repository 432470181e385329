"""Configuration management using pydantic-settings."""

import tempfile
from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AuthMode(str, Enum):
    """How the database user authenticates through the proxy."""

    IAM = "iam"
    PASSWORD = "password"


class ShellSettings(BaseSettings):
    """cloudsql-shell settings.

    Every field can be set from the environment with the ``CLOUDSQL_SHELL_``
    prefix (or a ``.env`` file). Command-line flags take precedence.
    """

    model_config = SettingsConfigDict(
        env_prefix="CLOUDSQL_SHELL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Proxy settings
    proxy_binary: str = Field(default="cloud-sql-proxy", description="Cloud SQL Auth Proxy executable")
    socket_base_dir: str = Field(
        default_factory=tempfile.gettempdir,
        description="Directory in which the private socket directory is created",
    )
    start_timeout_seconds: float = Field(default=10.0, gt=0, description="Max wait for the proxy socket")
    poll_interval_seconds: float = Field(default=0.1, gt=0, description="Sleep between socket checks")
    shutdown_grace_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Wait after SIGTERM before the proxy is killed",
    )

    # Session settings
    auth_mode: AuthMode = Field(default=AuthMode.IAM)
    engine: str = Field(default="mysql", description="Database engine profile (mysql or postgres)")

    # gcloud defaults
    gcloud_binary: str = Field(default="gcloud")
    project_config_key: str = Field(default="core/project")
    region_config_key: str = Field(default="compute/region")
    gcloud_timeout_seconds: float = Field(default=15.0)

    # Identity
    userinfo_url: str = Field(default="https://openidconnect.googleapis.com/v1/userinfo")
    userinfo_timeout_seconds: float = Field(default=10.0)

    log_level: str = Field(default="WARNING")


@lru_cache
def get_settings() -> ShellSettings:
    """Get cached settings instance."""
    return ShellSettings()
