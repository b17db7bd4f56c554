"""Centralized configuration for the chainplan deployment orchestrator.

Uses pydantic-settings for environment variable loading and validation.
All settings can be overridden via environment variables with the
``CHAINPLAN_`` prefix.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DeploySettings(BaseSettings):
    """Settings for deployment runs.

    Environment variables:
        CHAINPLAN_CONFIG_FILE: Project configuration file (networks, artifacts)
        CHAINPLAN_JOURNAL_DIR: Directory holding per-network journals
        CHAINPLAN_MAX_RETRIES: Transport attempts per action before failing
        CHAINPLAN_RETRY_BACKOFF: Base delay between attempts in seconds
        CHAINPLAN_CONFIRMATION_TIMEOUT: Confirmation wait per attempt in seconds
        CHAINPLAN_POLL_INTERVAL: Receipt polling interval in seconds
        CHAINPLAN_MAX_CONCURRENCY: Actions allowed in flight at once
        CHAINPLAN_FAILURE_POLICY: isolate (default) or abort
        CHAINPLAN_DEFAULT_SENDER: Sender used when a network lists no accounts
        CHAINPLAN_LOG_LEVEL: Logging level
        CHAINPLAN_LOG_JSON: Enable JSON log format
        CHAINPLAN_LOG_FILE: Also write JSON logs to this file
    """

    model_config = SettingsConfigDict(
        env_prefix="CHAINPLAN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    config_file: str = Field(
        default="chainplan.yaml",
        description="Project configuration file",
    )
    journal_dir: str = Field(
        default="deployments",
        description="Directory holding per-network journals",
    )

    # Execution settings
    max_retries: int = Field(
        default=3,
        ge=1,
        description="Transport attempts per action before it is recorded as failed",
    )
    retry_backoff: float = Field(
        default=1.0,
        ge=0.0,
        description="Base delay between attempts in seconds (multiplied by attempt)",
    )
    confirmation_timeout: float = Field(
        default=120.0,
        gt=0.0,
        description="Confirmation wait per attempt in seconds",
    )
    poll_interval: float = Field(
        default=1.0,
        gt=0.0,
        description="Receipt polling interval in seconds",
    )
    max_concurrency: int = Field(
        default=1,
        ge=1,
        description="Independent actions allowed in flight at once",
    )
    failure_policy: Literal["isolate", "abort"] = Field(
        default="isolate",
        description="isolate: skip only dependents of a failed action; abort: stop the run",
    )
    default_sender: str = Field(
        default="0x" + "0" * 39 + "1",
        description="Sender used when a network lists no accounts",
    )

    # Observability settings
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_json: bool = Field(
        default=False,
        description="Enable JSON log format",
    )
    log_file: str | None = Field(
        default=None,
        description="Also write JSON logs to this file",
    )


# Global settings instance - import this directly
settings = DeploySettings()
