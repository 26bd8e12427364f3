"""Tests for the configuration module."""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from threadtracker.config import Config, SchedulingConfig, WatcherConfig


@pytest.fixture
def sample_config_yaml(tmp_path: Path) -> Path:
    """Create a sample config file for testing."""
    config = {
        "data_dir": str(tmp_path / "data"),
        "log_level": "debug",
        "log_json": False,
        "database": {"path": "test.db"},
        "watchers": {"refresh_interval_seconds": 30, "reply_lookback": 10},
        "scheduling": {"dispatch_interval_seconds": 15, "reject_past": False},
    }
    config_path = tmp_path / "config.yaml"
    with open(config_path, "w") as f:
        yaml.dump(config, f)
    return config_path


class TestDefaults:
    """Tests for default values."""

    def test_defaults(self) -> None:
        """Defaults match the documented intervals."""
        config = Config()
        assert config.watchers.refresh_interval_seconds == 120
        assert config.scheduling.dispatch_interval_seconds == 60
        assert config.discord.presence_interval_seconds == 255
        assert config.messaging.calls_per_minute == 50
        assert config.database_path == Path("./data") / "threadtracker.db"

    def test_invalid_log_level(self) -> None:
        with pytest.raises(ValidationError):
            Config(log_level="LOUD")

    def test_section_bounds(self) -> None:
        with pytest.raises(ValidationError):
            WatcherConfig(refresh_interval_seconds=0)
        with pytest.raises(ValidationError):
            SchedulingConfig(dispatch_interval_seconds=-1)


class TestLoad:
    """Tests for loading from YAML and the environment."""

    def test_load_from_yaml(self, sample_config_yaml: Path, tmp_path: Path) -> None:
        config = Config.load(sample_config_yaml)
        assert config.log_level == "DEBUG"
        assert config.log_json is False
        assert config.database_path == tmp_path / "data" / "test.db"
        assert config.watchers.refresh_interval_seconds == 30
        assert config.watchers.reply_lookback == 10
        assert config.scheduling.reject_past is False

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            Config.load(tmp_path / "missing.yaml")

    def test_load_or_default_falls_back(self, tmp_path: Path) -> None:
        config = Config.load_or_default(tmp_path / "missing.yaml")
        assert config.watchers.refresh_interval_seconds == 120

    def test_env_overrides(self, sample_config_yaml: Path, monkeypatch, tmp_path: Path) -> None:
        """Environment variables win over the file."""
        monkeypatch.setenv("THREADTRACKER_DATA_DIR", str(tmp_path / "elsewhere"))
        monkeypatch.setenv("THREADTRACKER_LOG_LEVEL", "WARNING")
        monkeypatch.setenv("THREADTRACKER_LOG_JSON", "true")

        config = Config.load(sample_config_yaml)
        assert config.data_dir == tmp_path / "elsewhere"
        assert config.log_level == "WARNING"
        assert config.log_json is True

    def test_token_from_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("DISCORD_TOKEN", "secret")
        assert Config().discord_token == "secret"
        monkeypatch.delenv("DISCORD_TOKEN")
        assert Config().discord_token is None
