"""Central configuration for the OTA updater service."""

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

CONFIG_ENV_VAR = "OTA_UPDATER_CONFIG"


class Settings(BaseSettings):
    """Environment-driven settings (prefix OTA_UPDATER_)."""

    # HTTP server
    host: str = Field("0.0.0.0", description="Bind address")
    port: int = Field(12315, ge=1, le=65535, description="Bind port")

    # Storage
    work_dir: Path = Field(Path("./tmp"), description="Staging area for downloads")
    deployments_dir: Path = Field(
        Path("./deployments"), description="Root of installed deployments"
    )

    # Logging
    log_file: str = Field("./logs/ota-updater.log", description="Rotating log file")
    log_level: str = Field("INFO", description="DEBUG/INFO/WARNING/ERROR")
    log_max_bytes: int = Field(10 * 1024 * 1024, gt=0, description="Rotate the log at this size")
    log_backup_count: int = Field(3, ge=0, description="Rotated log files kept")

    # Update policy
    auto_install_updates: bool = Field(
        False, description="Install without asking for confirmation"
    )
    update_url: Optional[str] = Field(
        None, description="URL checked for an update shortly after startup"
    )
    update_check_delay: float = Field(
        0.5, gt=0, description="Seconds before (and between) update URL attempts"
    )
    download_timeout: float = Field(30.0, gt=0, description="HTTP timeout (seconds)")

    # Notification channel
    watch_keepalive: float = Field(
        15.0, gt=0, description="Seconds between SSE heartbeats"
    )
    watcher_backlog: int = Field(
        256, ge=1, description="Queued snapshots before a watcher is dropped"
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return level

    model_config = SettingsConfigDict(
        env_prefix="OTA_UPDATER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


def load_settings(config_file: Optional[Path] = None) -> Settings:
    """Build settings, optionally layering a JSON config file over the environment.

    Args:
        config_file: JSON file path; defaults to $OTA_UPDATER_CONFIG if set

    Raises:
        FileNotFoundError: If an explicit config file does not exist
        ValueError: If the file is not valid JSON or fails validation
    """
    if config_file is None and os.environ.get(CONFIG_ENV_VAR):
        config_file = Path(os.environ[CONFIG_ENV_VAR])
    if config_file is None:
        return Settings()

    with open(config_file, "r", encoding="utf-8") as f:
        data = json.load(f)
    return Settings(**data)


@lru_cache()
def get_settings() -> Settings:
    """Cached Settings instance for the running service."""
    return load_settings()
