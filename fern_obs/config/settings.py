"""
config/settings.py — Central configuration via env vars + YAML override.

Priority: CLI flags > ENV > obs.yaml > defaults

The YAML file lives at $XDG_CONFIG_HOME/fern/obs.yaml unless
FERN_OBS_CONFIG_FILE or --config points elsewhere.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _xdg_dir(var: str, fallback: str) -> Path:
    value = os.environ.get(var, "")
    # XDG says relative values are invalid and must be ignored.
    if value and Path(value).is_absolute():
        return Path(value)
    return Path.home() / fallback


def default_state_path() -> Path:
    return _xdg_dir("XDG_STATE_HOME", ".local/state") / "fern" / "obs-state.json"


def default_config_path() -> Path:
    return _xdg_dir("XDG_CONFIG_HOME", ".config") / "fern" / "obs.yaml"


class _EnvFirstSettings(BaseSettings):
    """Environment wins over values passed in from the YAML file."""

    @classmethod
    def settings_customise_sources(cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings):
        return env_settings, init_settings, file_secret_settings


class OBSSettings(_EnvFirstSettings):
    host: str = Field("localhost", description="OBS WebSocket host")
    port: int = Field(4455, description="OBS WebSocket port")
    password: Optional[str] = Field(None, description="OBS WebSocket password")
    request_timeout_ms: int = Field(5000, ge=1, description="Per-request response deadline")
    connect_timeout_ms: int = Field(5000, ge=1, description="WebSocket open deadline")

    model_config = SettingsConfigDict(env_prefix="OBS_")

    @property
    def request_timeout(self) -> float:
        return self.request_timeout_ms / 1000

    @property
    def connect_timeout(self) -> float:
        return self.connect_timeout_ms / 1000


class DaemonSettings(_EnvFirstSettings):
    stats: bool = Field(True, description="Poll OBS performance stats")
    stats_interval_ms: int = Field(1000, ge=10, description="Stats / output clock poll interval")
    reconnect_interval_ms: int = Field(5000, ge=1, description="First reconnect delay")
    reconnect_max_interval_ms: int = Field(60000, ge=1, description="Reconnect delay cap")
    max_reconnects: int = Field(0, ge=0, description="Consecutive failed attempts before exiting (0=infinite)")
    auth_fail_fast: bool = Field(False, description="Exit instead of retrying when OBS rejects the password")
    publish_debounce_ms: int = Field(75, ge=0, description="State file write coalescing window")
    state_file: Optional[Path] = Field(None, description="State file path (default: XDG state dir)")

    model_config = SettingsConfigDict(env_prefix="FERN_OBS_")

    @property
    def state_path(self) -> Path:
        return self.state_file or default_state_path()


class Settings(_EnvFirstSettings):
    obs: OBSSettings = Field(default_factory=OBSSettings)
    daemon: DaemonSettings = Field(default_factory=DaemonSettings)
    log_level: str = Field("info", description="Log level")

    model_config = SettingsConfigDict(env_prefix="FERN_OBS_")

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Settings":
        """Load settings, merging YAML file if present."""
        path = config_path or Path(os.environ.get("FERN_OBS_CONFIG_FILE", "") or default_config_path())
        yaml_data: dict = {}

        if path.exists():
            with open(path) as f:
                yaml_data = yaml.safe_load(f) or {}

        obs = OBSSettings(**(yaml_data.get("obs") or {}))
        daemon = DaemonSettings(**(yaml_data.get("daemon") or {}))
        extra = {"log_level": yaml_data["log_level"]} if "log_level" in yaml_data else {}

        return cls(obs=obs, daemon=daemon, **extra)

    def to_yaml(self, path: Path) -> None:
        """Save current settings to YAML."""
        data = {
            "obs": self.obs.model_dump(mode="json"),
            "daemon": self.daemon.model_dump(mode="json"),
            "log_level": self.log_level,
        }
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


# Singleton accessor: call get_settings() anywhere in the app
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def reload_settings(config_path: Optional[Path] = None) -> Settings:
    global _settings
    _settings = Settings.load(config_path)
    return _settings
