"""Settings loader."""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

SETTINGS_ENV_VAR = "ACTIVITY_TIMELINE_SETTINGS"
DEFAULT_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


class ServerConfig(BaseModel):
    """
    Per-server metadata.

    Attributes
    ----------
    chain_id : int
        Numeric chain ID
    symbol : str
        Native currency symbol
    decimals : int
        Native currency decimals
    explorer_api : str | None
        Etherscan-compatible API endpoint

    """

    chain_id: int
    symbol: str
    decimals: int = 18
    explorer_api: str | None = None


class Settings(BaseModel):
    """
    Engine settings.

    Attributes
    ----------
    native_crypto_address : str
        Contract address under which native-currency tokens are stored
    reload_rate_limit_seconds : float
        Window of the throttled view refresh
    recent_events_limit : int
        Bound on events returned per recent-events lookup
    coalesce_reloads : bool
        Run one follow-up reload when a reload is requested mid-flight
    servers : dict[str, ServerConfig]
        Known servers by name
    enabled_servers : list[str]
        Active servers

    """

    native_crypto_address: str = "0x0000000000000000000000000000000000000000"
    reload_rate_limit_seconds: float = 5.0
    recent_events_limit: int = 100
    coalesce_reloads: bool = False
    servers: dict[str, ServerConfig] = Field(default_factory=dict)
    enabled_servers: list[str] = Field(default_factory=list)

    def server(self, name: str) -> ServerConfig:
        """
        Get configuration of a server.

        Raises
        ------
        KeyError
            If the server is unknown

        """
        return self.servers[name]


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        msg = f"Settings file not found: {path}"
        raise FileNotFoundError(msg)
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_settings(path: str | Path | None = None, **overrides: Any) -> Settings:
    """
    Load settings from YAML.

    Parameters
    ----------
    path : str | Path | None
        Settings file. Defaults to ``$ACTIVITY_TIMELINE_SETTINGS`` or the
        packaged ``settings.yaml``.
    **overrides : Any
        Values replacing the loaded ones

    Returns
    -------
    Settings
        Validated settings

    Raises
    ------
    FileNotFoundError
        If the settings file does not exist

    """
    if path is None:
        path = os.getenv(SETTINGS_ENV_VAR) or DEFAULT_SETTINGS_PATH
    data = _read_yaml(Path(path))
    data.update(overrides)
    return Settings.model_validate(data)


def get_server_config(name: str) -> ServerConfig:
    """
    Get configuration for a server from the default settings.

    Parameters
    ----------
    name : str
        Server name (e.g., 'ethereum', 'polygon')

    Returns
    -------
    ServerConfig
        Server configuration

    Raises
    ------
    KeyError
        If the server is not configured

    """
    return load_settings().server(name)


def get_enabled_servers() -> list[str]:
    """
    Get the enabled server names from the default settings.

    Returns
    -------
    list[str]
        Server names

    """
    return list(load_settings().enabled_servers)


def get_chain_id(name: str) -> int:
    """
    Get numeric chain ID.

    Parameters
    ----------
    name : str
        Server name

    Returns
    -------
    int
        Chain ID

    """
    return get_server_config(name).chain_id
