"""Configuration loading and validation for Thread Tracker."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator


class DiscordConfig(BaseModel):
    """Discord connection configuration."""

    presence_interval_seconds: int = 255
    presence_text: str = "over your threads"


class DatabaseConfig(BaseModel):
    """Database configuration."""

    path: str = "threadtracker.db"


class WatcherConfig(BaseModel):
    """Watcher refresh configuration."""

    refresh_interval_seconds: int = Field(120, gt=0)
    # Time budget for a single refresh pass; watchers not reached are
    # picked up first on the next pass.
    tick_budget_seconds: float = Field(90.0, gt=0)
    reply_lookback: int = Field(5, ge=1, le=100)
    reply_cache_seconds: float = Field(60.0, ge=0)
    max_message_chars: int = Field(4096, ge=200)


class SchedulingConfig(BaseModel):
    """Scheduled message dispatch configuration."""

    dispatch_interval_seconds: int = Field(60, gt=0)
    reject_past: bool = True


class MessagingConfig(BaseModel):
    """Outbound chat platform call limits."""

    calls_per_minute: int = Field(50, gt=0)


class Config(BaseModel):
    """Root configuration for Thread Tracker."""

    data_dir: Path = Path("./data")
    log_level: str = "INFO"
    log_json: bool = True

    discord: DiscordConfig = Field(default_factory=DiscordConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    watchers: WatcherConfig = Field(default_factory=WatcherConfig)
    scheduling: SchedulingConfig = Field(default_factory=SchedulingConfig)
    messaging: MessagingConfig = Field(default_factory=MessagingConfig)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log_level is valid."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of: {allowed}")
        return v_upper

    @property
    def database_path(self) -> Path:
        """Get full path to database file."""
        return self.data_dir / self.database.path

    @property
    def discord_token(self) -> str | None:
        """Get Discord token from environment."""
        return os.environ.get("DISCORD_TOKEN")

    @classmethod
    def load(cls, config_path: Path | str = Path("config.yaml")) -> "Config":
        """Load configuration from YAML file with env var overlay.

        Args:
            config_path: Path to YAML configuration file.

        Returns:
            Validated Config instance.

        Raises:
            FileNotFoundError: If config file doesn't exist.
            ValueError: If config is invalid.
        """
        config_path = Path(config_path)

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}

        if "THREADTRACKER_DATA_DIR" in os.environ:
            yaml_config["data_dir"] = os.environ["THREADTRACKER_DATA_DIR"]
        if "THREADTRACKER_LOG_LEVEL" in os.environ:
            yaml_config["log_level"] = os.environ["THREADTRACKER_LOG_LEVEL"]
        if "THREADTRACKER_LOG_JSON" in os.environ:
            yaml_config["log_json"] = os.environ["THREADTRACKER_LOG_JSON"].lower() == "true"

        return cls.model_validate(yaml_config)

    @classmethod
    def load_or_default(cls, config_path: Path | str | None = None) -> "Config":
        """Load configuration, falling back to defaults if file not found.

        Args:
            config_path: Optional path to YAML configuration file.

        Returns:
            Config instance (from file or defaults).
        """
        if config_path is None:
            for path in [Path("config.yaml"), Path("config.yml")]:
                if path.exists():
                    return cls.load(path)
            return cls()

        try:
            return cls.load(config_path)
        except FileNotFoundError:
            return cls()
