"""config — Settings, env loading, YAML config."""
from .settings import (
    DaemonSettings,
    OBSSettings,
    Settings,
    default_config_path,
    default_state_path,
    get_settings,
    reload_settings,
)

__all__ = [
    "Settings", "OBSSettings", "DaemonSettings", "get_settings", "reload_settings",
    "default_config_path", "default_state_path",
]
