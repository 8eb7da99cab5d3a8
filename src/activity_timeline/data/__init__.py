"""Settings loading and configuration management."""

from activity_timeline.data.loader import (
    DEFAULT_SETTINGS_PATH,
    SETTINGS_ENV_VAR,
    ServerConfig,
    Settings,
    get_chain_id,
    get_enabled_servers,
    get_server_config,
    load_settings,
)

__all__ = [
    "DEFAULT_SETTINGS_PATH",
    "SETTINGS_ENV_VAR",
    "ServerConfig",
    "Settings",
    "get_chain_id",
    "get_enabled_servers",
    "get_server_config",
    "load_settings",
]
