"""Filesystem locations for kinder.

Data lives under the XDG data home and configuration under the XDG
config home, both namespaced by application name.
"""

import os
from pathlib import Path

DEFAULT_APP_NAME = "kinder"

CA_CERT_FILENAME = "ca.crt"
CA_KEY_FILENAME = "ca.key"
CONFIG_FILENAME = "config.yaml"


def xdg_data_home() -> Path:
    """$XDG_DATA_HOME or ~/.local/share."""
    value = os.environ.get("XDG_DATA_HOME")
    return Path(value) if value else Path.home() / ".local" / "share"


def xdg_config_home() -> Path:
    """$XDG_CONFIG_HOME or ~/.config."""
    value = os.environ.get("XDG_CONFIG_HOME")
    return Path(value) if value else Path.home() / ".config"


def data_dir_for(app_name: str = DEFAULT_APP_NAME) -> Path:
    return xdg_data_home() / app_name


def config_dir_for(app_name: str = DEFAULT_APP_NAME) -> Path:
    return xdg_config_home() / app_name


def ensure_data_dir(path: Path) -> Path:
    """Create the data directory (and parents) if missing.

    Args:
        path: Data directory

    Returns:
        The same path, for chaining
    """
    path.mkdir(parents=True, exist_ok=True)
    return path
