"""containerd registry mirror configuration.

Builds a certs.d tree of hosts.toml files that make cluster nodes pull
upstream images through the local zot pull-through cache.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path

from ..errors import ConfigurationError
from ..shared.logging import get_logger

logger = get_logger(__name__)

REGISTRY_PORT = 5000
DEFAULT_REGISTRY_HOST = "zot"
DEFAULT_MIRROR_URL = f"http://{DEFAULT_REGISTRY_HOST}:{REGISTRY_PORT}"
CERTS_D = "certs.d"

CONTAINERD_PATCH = """[plugins."io.containerd.grpc.v1.cri".registry]
  config_path = "/etc/containerd/certs.d"
"""

DOCKER_HUB_HOSTS = ("docker.io", "registry-1.docker.io")


def normalize_registry_name(registry: str) -> str:
    """Directory name containerd looks up for a registry host."""
    if registry == "registry-1.docker.io":
        return "docker.io"
    return registry


def upstream_server(registry: str) -> str:
    """Canonical upstream URL for a registry host."""
    if registry in DOCKER_HUB_HOSTS:
        return "https://registry-1.docker.io"
    return f"https://{registry}"


def mirror_path(registry: str) -> str:
    """Path prefix a registry's content lives under in the shared cache.

    Always derived from the original registry name so that two upstreams
    never share one cache path.
    """
    return "/" + registry


def build_mirror_map(registries: list[str], mirror_url: str = DEFAULT_MIRROR_URL) -> dict[str, str]:
    """Map each upstream registry to the local mirror URL."""
    return {registry: mirror_url for registry in registries}


@dataclass(frozen=True)
class MirrorDescriptor:
    """Routing rule for one upstream registry."""

    registry: str
    normalized: str
    server: str
    host: str

    @classmethod
    def for_registry(cls, registry: str, mirror_url: str = DEFAULT_MIRROR_URL) -> MirrorDescriptor:
        return cls(
            registry=registry,
            normalized=normalize_registry_name(registry),
            server=upstream_server(registry),
            host=mirror_url.rstrip("/") + mirror_path(registry),
        )

    def render(self) -> str:
        return f'server = "{self.server}"\n\n[host."{self.host}"]\n  capabilities = ["pull", "resolve"]\n'


def direct_hosts_toml(registry_addr: str) -> str:
    """hosts.toml for the local registry itself (plain HTTP, push allowed)."""
    return (
        f'server = "http://{registry_addr}"\n\n'
        f'[host."http://{registry_addr}"]\n'
        '  capabilities = ["pull", "resolve", "push"]\n'
        "  skip_verify = true\n"
    )


def write_certs_d(
    data_dir: str | Path,
    mirrors: dict[str, str],
    ca_cert_path: str | Path | None = None,
    registry_host: str | None = DEFAULT_REGISTRY_HOST,
) -> Path:
    """Regenerate <data_dir>/certs.d from scratch.

    Args:
        data_dir: Directory that will contain certs.d
        mirrors: Upstream registry -> mirror URL
        ca_cert_path: CA certificate copied next to each mirror descriptor
        registry_host: Hostname of the local registry on the container network;
            when set, direct descriptors for it and localhost:5000 are written

    Returns:
        Path to the certs.d directory.

    Raises:
        ConfigurationError: If the tree cannot be written or the CA cannot be read.
    """
    certs_dir = Path(data_dir) / CERTS_D
    try:
        if certs_dir.exists():
            shutil.rmtree(certs_dir)

        ca_data = Path(ca_cert_path).read_bytes() if ca_cert_path else None

        if registry_host:
            registry_addr = f"{registry_host}:{REGISTRY_PORT}"
            for name in (registry_addr, f"localhost:{REGISTRY_PORT}"):
                target = certs_dir / name
                target.mkdir(parents=True, exist_ok=True)
                (target / "hosts.toml").write_text(direct_hosts_toml(registry_addr))

        for registry, mirror_url in mirrors.items():
            descriptor = MirrorDescriptor.for_registry(registry, mirror_url)
            target = certs_dir / descriptor.normalized
            target.mkdir(parents=True, exist_ok=True)
            (target / "hosts.toml").write_text(descriptor.render())
            if ca_data:
                (target / "ca.crt").write_bytes(ca_data)
    except OSError as e:
        raise ConfigurationError(message=f"Failed to write {certs_dir}: {e}") from e

    logger.debug("certs.d written", path=str(certs_dir), mirrors=len(mirrors))
    return certs_dir
