"""kinder configuration management.

Settings are read from ~/.config/kinder/config.yaml (or $XDG_CONFIG_HOME),
overridden by KINDER_* environment variables and finally by CLI flags.
"""

from __future__ import annotations

import ipaddress
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigurationError
from .shared.paths import (
    CA_CERT_FILENAME,
    CA_KEY_FILENAME,
    CONFIG_FILENAME,
    DEFAULT_APP_NAME,
    config_dir_for,
    data_dir_for,
)

# Default values
DEFAULT_DOMAIN = "c0000201.sslip.io"
DEFAULT_NETWORK_NAME = "kind"
DEFAULT_NETWORK_CIDR = "172.28.28.0/24"
DEFAULT_BRIDGE_NAME = "kindbr0"
DEFAULT_TRAEFIK_PORT = "8443"
DEFAULT_STEPCA_IMAGE = "smallstep/step-ca:latest"
DEFAULT_ZOT_IMAGE = "ghcr.io/project-zot/zot-linux-amd64:latest"
DEFAULT_GATUS_IMAGE = "twinproduction/gatus:latest"
DEFAULT_TRAEFIK_IMAGE = "traefik:latest"
DEFAULT_KIND_NODE_IMAGE = "kindest/node:v1.32.2"
# Latest patch of the previous minor release
DEFAULT_ARGOCD_VERSION = "v3.1.10"
DEFAULT_ARGOCD_MANIFEST_URL = (
    "https://raw.githubusercontent.com/mattwillsher/kinder-argo/refs/heads/main/root-app.yaml"
)
DEFAULT_REGISTRY_MIRRORS = [
    "ghcr.io",
    "registry-1.docker.io",
    "quay.io",
    "registry.k8s.io",
]

ENV_PREFIX = "KINDER_"

# Dotted config-file key -> KinderConfig attribute
CONFIG_KEYS: dict[str, str] = {
    "appName": "app_name",
    "dataDir": "data_dir",
    "domain": "domain",
    "network.name": "network_name",
    "network.cidr": "network_cidr",
    "network.bridge": "bridge_name",
    "traefik.port": "traefik_port",
    "images.stepca": "stepca_image",
    "images.zot": "zot_image",
    "images.gatus": "gatus_image",
    "images.traefik": "traefik_image",
    "registryMirrors": "registry_mirrors",
    "certPath": "cert_path",
    "keyPath": "key_path",
    "argocd.version": "argocd_version",
    "argocd.manifestURL": "argocd_manifest_url",
    "kind.nodeImage": "kind_node_image",
    "kind.workers": "kind_workers",
}


def env_var_for(key: str) -> str:
    """Environment variable name for a dotted config key.

    >>> env_var_for("traefik.port")
    'KINDER_TRAEFIK_PORT'
    """
    return ENV_PREFIX + key.replace(".", "_").upper()


@dataclass
class KinderConfig:
    """Resolved kinder configuration."""

    app_name: str = DEFAULT_APP_NAME
    data_dir: str | None = None
    domain: str = DEFAULT_DOMAIN
    network_name: str = DEFAULT_NETWORK_NAME
    network_cidr: str = DEFAULT_NETWORK_CIDR
    bridge_name: str = DEFAULT_BRIDGE_NAME
    traefik_port: str = DEFAULT_TRAEFIK_PORT
    stepca_image: str = DEFAULT_STEPCA_IMAGE
    zot_image: str = DEFAULT_ZOT_IMAGE
    gatus_image: str = DEFAULT_GATUS_IMAGE
    traefik_image: str = DEFAULT_TRAEFIK_IMAGE
    registry_mirrors: list[str] = field(default_factory=lambda: list(DEFAULT_REGISTRY_MIRRORS))
    cert_path: str | None = None
    key_path: str | None = None
    argocd_version: str = DEFAULT_ARGOCD_VERSION
    argocd_manifest_url: str = DEFAULT_ARGOCD_MANIFEST_URL
    kind_node_image: str = DEFAULT_KIND_NODE_IMAGE
    kind_workers: int = 0

    # Track where each value came from
    _sources: dict[str, str] = field(default_factory=dict)

    def get_source(self, key: str) -> str:
        """Get the source of a config value (by dotted key)."""
        return self._sources.get(key, "default")

    # Derived values

    @property
    def data_path(self) -> Path:
        if self.data_dir:
            return Path(self.data_dir).expanduser()
        return data_dir_for(self.app_name)

    @property
    def ca_cert_path(self) -> Path:
        if self.cert_path:
            return Path(self.cert_path).expanduser()
        return self.data_path / CA_CERT_FILENAME

    @property
    def ca_key_path(self) -> Path:
        if self.key_path:
            return Path(self.key_path).expanduser()
        return self.data_path / CA_KEY_FILENAME

    @property
    def effective_network_name(self) -> str:
        """Network name, derived from the app name when left at the default."""
        if not self.network_name or self.network_name == DEFAULT_NETWORK_NAME:
            return self.app_name
        return self.network_name

    @property
    def effective_bridge_name(self) -> str:
        if not self.bridge_name or self.bridge_name == DEFAULT_BRIDGE_NAME:
            return f"{self.app_name}br0"
        return self.bridge_name

    @property
    def cluster_name(self) -> str:
        return self.app_name

    @property
    def kube_context(self) -> str:
        return f"kind-{self.app_name}"

    @property
    def stepca_container(self) -> str:
        return f"{self.app_name}-step-ca"

    @property
    def zot_container(self) -> str:
        return f"{self.app_name}-zot"

    @property
    def gatus_container(self) -> str:
        return f"{self.app_name}-gatus"

    @property
    def traefik_container(self) -> str:
        return f"{self.app_name}-traefik"

    @property
    def service_containers(self) -> list[str]:
        """Managed service containers in start order."""
        return [
            self.stepca_container,
            self.zot_container,
            self.gatus_container,
            self.traefik_container,
        ]

    def validate(self) -> None:
        """Raise ConfigurationError for values that cannot work."""
        try:
            ipaddress.ip_network(self.network_cidr, strict=False)
        except ValueError as e:
            raise ConfigurationError(
                message=f"Invalid network CIDR {self.network_cidr!r}: {e}",
                details={"key": "network.cidr"},
            ) from e
        if not str(self.traefik_port).isdigit():
            raise ConfigurationError(
                message=f"Invalid traefik port {self.traefik_port!r}",
                details={"key": "traefik.port"},
            )
        if self.kind_workers < 0:
            raise ConfigurationError(message="kind.workers cannot be negative")


def get_config_path(app_name: str = DEFAULT_APP_NAME) -> Path:
    """Get the config file path.

    Returns:
        Path to $XDG_CONFIG_HOME/<app>/config.yaml
    """
    return config_dir_for(app_name) / CONFIG_FILENAME


def _flatten(data: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    flat: dict[str, Any] = {}
    for key, value in data.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, dotted + "."))
        else:
            flat[dotted] = value
    return flat


def _coerce(key: str, value: Any) -> Any:
    attr = CONFIG_KEYS[key]
    try:
        if attr == "registry_mirrors":
            if isinstance(value, str):
                return [v.strip() for v in value.split(",") if v.strip()]
            return [str(v) for v in value]
        if attr == "kind_workers":
            return int(value)
    except (ValueError, TypeError) as e:
        raise ConfigurationError(
            message=f"Invalid value for {key}: {value!r}",
            details={"key": key},
        ) from e
    return str(value)


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(
            message=f"Cannot read config file {path}: {e}",
            details={"path": str(path)},
        ) from e
    if not isinstance(data, dict):
        raise ConfigurationError(
            message=f"Config file {path} must contain a mapping",
            details={"path": str(path)},
        )
    return _flatten(data)


def load_config(
    config_path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> KinderConfig:
    """Load kinder configuration.

    Precedence (highest to lowest):
    1. overrides (CLI flags), keyed by dotted config key
    2. Environment variables (KINDER_*)
    3. Config file
    4. Defaults

    Args:
        config_path: Explicit config file; defaults to get_config_path()
        overrides: Values from CLI flags; None values are ignored

    Returns:
        KinderConfig with values and sources

    Raises:
        ConfigurationError: If the file exists but is malformed, or a value is invalid.
    """
    config = KinderConfig()
    sources = {key: "default" for key in CONFIG_KEYS}

    path = Path(config_path) if config_path else get_config_path()
    if path.exists():
        for key, value in _read_config_file(path).items():
            attr = CONFIG_KEYS.get(key)
            if attr is None or value is None:
                continue
            setattr(config, attr, _coerce(key, value))
            sources[key] = "config file"
    elif config_path:
        raise ConfigurationError(message=f"Config file not found: {path}")

    for key, attr in CONFIG_KEYS.items():
        value = os.environ.get(env_var_for(key))
        if value:
            try:
                setattr(config, attr, _coerce(key, value))
            except ConfigurationError as e:
                raise ConfigurationError(
                    message=f"Invalid value for {env_var_for(key)}: {value!r}",
                    details=e.details,
                ) from e
            sources[key] = "environment"

    for key, value in (overrides or {}).items():
        if value is None or key not in CONFIG_KEYS:
            continue
        setattr(config, CONFIG_KEYS[key], _coerce(key, value))
        sources[key] = "flag"

    config._sources = sources
    config.validate()
    return config


def to_file_dict(config: KinderConfig) -> dict[str, Any]:
    """Render a config as the nested mapping used in config.yaml."""
    result: dict[str, Any] = {}
    for key, attr in CONFIG_KEYS.items():
        value = getattr(config, attr)
        if value is None:
            continue
        node = result
        *parents, leaf = key.split(".")
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = value
    return result


def init_config(path: Path | None = None, force: bool = False) -> Path:
    """Write a config file populated with defaults.

    Args:
        path: Destination; defaults to get_config_path()
        force: Overwrite an existing file

    Returns:
        Path that was written

    Raises:
        ConfigurationError: If the file exists and force is not set.
    """
    path = path or get_config_path()
    if path.exists() and not force:
        raise ConfigurationError(
            message=f"Config file already exists: {path} (use --force to overwrite)"
        )
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.dump(to_file_dict(KinderConfig()), f, default_flow_style=False, sort_keys=False)
    return path
