"""Container network management.

Creates the bridge network every kinder container and kind node joins.
Containers get addresses from the first half of the subnet; the second
half is left free for load-balancer address pools inside the cluster.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass

import docker
from docker.errors import APIError, NotFound
from docker.types import IPAMConfig, IPAMPool

from ..errors import ConfigurationError, TransientInfrastructureError
from ..shared.logging import get_logger

logger = get_logger(__name__)

BRIDGE_NAME_OPTION = "com.docker.network.bridge.name"


def derive_network_config(cidr: str) -> tuple[str, str]:
    """Derive gateway and container IP range from a CIDR.

    The gateway is the network address + 1. The IP range is the first half
    of the subnet (prefix + 1), or the CIDR unchanged when it is too small
    to split.

    Args:
        cidr: Subnet such as "172.28.28.0/24"

    Returns:
        Tuple of (gateway, ip_range).

    Raises:
        ConfigurationError: If cidr is not a valid network.
    """
    try:
        net = ipaddress.ip_network(cidr, strict=False)
    except ValueError as e:
        raise ConfigurationError(message=f"Invalid CIDR {cidr!r}: {e}") from e

    gateway = str(net.network_address + 1)
    if net.prefixlen >= net.max_prefixlen - 1:
        return gateway, cidr
    return gateway, f"{net.network_address}/{net.prefixlen + 1}"


@dataclass
class NetworkSpec:
    """Network to create."""

    name: str
    cidr: str
    driver: str = "bridge"
    bridge_name: str | None = None

    @property
    def effective_bridge_name(self) -> str:
        return self.bridge_name or f"{self.name}br0"


class NetworkManager:
    """Create, remove and look up networks through an injected client."""

    def __init__(self, client: docker.DockerClient):
        self.client = client

    def _find(self, name: str):
        try:
            networks = self.client.networks.list(names=[name])
        except APIError as e:
            raise TransientInfrastructureError(
                message=f"Failed to list networks: {e}", step="network"
            ) from e
        # names= is a substring filter on some daemons
        for net in networks:
            if net.name == name:
                return net
        return None

    def exists(self, name: str) -> bool:
        return self._find(name) is not None

    def get_id(self, name: str) -> str | None:
        net = self._find(name)
        return net.id if net is not None else None

    def ensure(self, spec: NetworkSpec) -> tuple[str, bool]:
        """Create the network unless one with the same name exists.

        Returns:
            Tuple of (network id, created).

        Raises:
            ConfigurationError: If the CIDR is invalid.
            TransientInfrastructureError: If the daemon rejects the create.
        """
        existing = self._find(spec.name)
        if existing is not None:
            logger.debug("network already exists", name=spec.name, id=existing.id[:12])
            return existing.id, False

        gateway, ip_range = derive_network_config(spec.cidr)
        ipam = IPAMConfig(pool_configs=[IPAMPool(subnet=spec.cidr, iprange=ip_range, gateway=gateway)])
        try:
            net = self.client.networks.create(
                spec.name,
                driver=spec.driver,
                ipam=ipam,
                enable_ipv6=False,
                options={BRIDGE_NAME_OPTION: spec.effective_bridge_name},
            )
        except APIError as e:
            raise TransientInfrastructureError(
                message=f"Failed to create network {spec.name}: {e}", step="network"
            ) from e
        logger.info("network created", name=spec.name, cidr=spec.cidr, gateway=gateway, ip_range=ip_range)
        return net.id, True

    def remove(self, name: str) -> None:
        """Remove a network by name.

        Raises:
            TransientInfrastructureError: If the network is missing or still in use.
        """
        try:
            self.client.networks.get(name).remove()
        except NotFound as e:
            raise TransientInfrastructureError(
                message=f"Network {name} not found", step="network"
            ) from e
        except APIError as e:
            raise TransientInfrastructureError(
                message=f"Failed to remove network {name}: {e}", step="network"
            ) from e
        logger.info("network removed", name=name)
