"""Container lifecycle primitives.

Idempotent create, best-effort remove and read-only inspection of
named containers. Every service adapter goes through ContainerManager.
"""

from __future__ import annotations

import shutil
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from ..errors import TransientInfrastructureError
from ..shared.logging import get_logger

logger = get_logger(__name__)

DEFAULT_RESTART_POLICY = "unless-stopped"
DEFAULT_STOP_TIMEOUT = 10


@dataclass(frozen=True)
class Mount:
    """Bind mount from host to container."""

    source: str
    target: str
    read_only: bool = False


@dataclass(frozen=True)
class PortBinding:
    """Container port, optionally published on the host.

    A binding without host_port is reachable on the container network only.
    """

    container_port: str  # e.g. "5000/tcp"
    host_port: str | None = None
    host_ip: str = ""


@dataclass(frozen=True)
class ContainerSpec:
    """Declarative input to container creation."""

    name: str
    image: str
    hostname: str = ""
    network: str = ""
    aliases: tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)
    command: tuple[str, ...] = ()
    mounts: tuple[Mount, ...] = ()
    ports: tuple[PortBinding, ...] = ()
    restart_policy: str = DEFAULT_RESTART_POLICY


@dataclass
class ContainerState:
    """Runtime state of a named container."""

    name: str
    id: str
    status: str  # running, exited, paused, restarting, created
    running: bool
    started_at: datetime | None = None
    image: str = ""


def _parse_docker_time(value: str | None) -> datetime | None:
    if not value or value.startswith("0001-"):
        return None
    # Docker reports nanoseconds; fromisoformat handles at most microseconds
    head, _, frac = value.rstrip("Z").partition(".")
    text = head + ("." + frac[:6] if frac else "") + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


class ContainerManager:
    """Create, remove and inspect containers through an injected client."""

    def __init__(self, client: docker.DockerClient):
        """Initialize manager.

        Args:
            client: Connected Docker client (not owned by the manager).
        """
        self.client = client

    def _get(self, name: str):
        try:
            return self.client.containers.get(name)
        except NotFound:
            return None
        except APIError as e:
            raise TransientInfrastructureError(
                message=f"Failed to inspect container {name}: {e}", step=name
            ) from e

    def _run_kwargs(self, spec: ContainerSpec) -> dict:
        kwargs: dict = {
            "name": spec.name,
            "detach": True,
            "environment": dict(spec.env),
            "restart_policy": {"Name": spec.restart_policy},
        }
        if spec.hostname:
            kwargs["hostname"] = spec.hostname
        if spec.command:
            kwargs["command"] = list(spec.command)
        if spec.mounts:
            kwargs["volumes"] = {
                m.source: {"bind": m.target, "mode": "ro" if m.read_only else "rw"} for m in spec.mounts
            }
        published = {
            p.container_port: (p.host_ip, int(p.host_port)) if p.host_ip else int(p.host_port)
            for p in spec.ports
            if p.host_port
        }
        if published:
            kwargs["ports"] = published
        if spec.network:
            kwargs["network"] = spec.network
            kwargs["networking_config"] = {
                spec.network: self.client.api.create_endpoint_config(aliases=list(spec.aliases))
            }
        return kwargs

    def create(self, spec: ContainerSpec) -> str:
        """Create and start a container, or start the existing one.

        An existing container is never re-created or reconciled against
        spec; it is only started if it is not running.

        Args:
            spec: Container description

        Returns:
            Container id.

        Raises:
            TransientInfrastructureError: If pull, create or start fails.
        """
        existing = self._get(spec.name)
        if existing is not None:
            if existing.status != "running":
                try:
                    existing.start()
                except APIError as e:
                    raise TransientInfrastructureError(
                        message=f"Failed to start existing container {spec.name}: {e}",
                        step=spec.name,
                    ) from e
                logger.info("container started", name=spec.name, id=existing.id[:12])
            else:
                logger.debug("container already running", name=spec.name)
            return existing.id

        try:
            self.client.images.pull(spec.image)
        except (ImageNotFound, APIError) as e:
            raise TransientInfrastructureError(
                message=f"Failed to pull image {spec.image}: {e}", step=spec.name
            ) from e

        try:
            container = self.client.containers.create(spec.image, **self._run_kwargs(spec))
        except DockerException as e:
            raise TransientInfrastructureError(
                message=f"Failed to create container {spec.name}: {e}", step=spec.name
            ) from e

        try:
            container.start()
        except APIError as e:
            raise TransientInfrastructureError(
                message=f"Failed to start container {spec.name}: {e}", step=spec.name
            ) from e

        logger.info("container created", name=spec.name, image=spec.image, id=container.id[:12])
        return container.id

    def remove(self, name: str, timeout: int = DEFAULT_STOP_TIMEOUT) -> None:
        """Stop then force-remove a container.

        A missing container is not an error. A failed stop is logged and
        removal is still attempted.

        Raises:
            TransientInfrastructureError: If removal itself fails.
        """
        container = self._get(name)
        if container is None:
            logger.debug("container not present", name=name)
            return
        try:
            container.stop(timeout=timeout)
        except APIError as e:
            logger.warning("container stop failed, forcing removal", name=name, error=str(e))
        try:
            container.remove(force=True)
        except NotFound:
            return
        except APIError as e:
            raise TransientInfrastructureError(
                message=f"Failed to remove container {name}: {e}", step=name
            ) from e
        logger.info("container removed", name=name)

    def exists(self, name: str) -> bool:
        """Whether a container with this name exists (any state)."""
        wanted = name.lstrip("/")
        try:
            containers = self.client.containers.list(all=True, filters={"name": wanted})
        except APIError as e:
            raise TransientInfrastructureError(
                message=f"Failed to list containers: {e}", step=name
            ) from e
        # The name filter is a substring match; compare exactly
        return any(c.name.lstrip("/") == wanted for c in containers)

    def get_ip(self, name: str, network: str) -> str:
        """IP address of a container on the given network.

        Raises:
            TransientInfrastructureError: If the container or network attachment is missing.
        """
        container = self._get(name)
        if container is None:
            raise TransientInfrastructureError(message=f"Container {name} not found", step=name)
        networks = container.attrs.get("NetworkSettings", {}).get("Networks", {}) or {}
        settings = networks.get(network)
        if not settings or not settings.get("IPAddress"):
            raise TransientInfrastructureError(
                message=f"Container {name} is not attached to network {network}", step=name
            )
        return settings["IPAddress"]

    def state(self, name: str) -> ContainerState | None:
        """Inspect a container; None if it does not exist."""
        container = self._get(name)
        if container is None:
            return None
        state = container.attrs.get("State", {})
        return ContainerState(
            name=name,
            id=container.id,
            status=state.get("Status", container.status),
            running=bool(state.get("Running")),
            started_at=_parse_docker_time(state.get("StartedAt")),
            image=container.attrs.get("Config", {}).get("Image", ""),
        )

    def list_names(self, prefix: str) -> list[str]:
        """Names of all containers whose name starts with prefix."""
        try:
            containers = self.client.containers.list(all=True, filters={"name": prefix})
        except APIError as e:
            raise TransientInfrastructureError(message=f"Failed to list containers: {e}") from e
        names = [c.name.lstrip("/") for c in containers]
        return sorted(n for n in names if n.startswith(prefix))


def copy_file(src: str | Path, dst: str | Path, mode: int | None = None) -> Path:
    """Copy a file, creating parent directories, optionally setting its mode."""
    dst = Path(dst)
    dst.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(src, dst)
    if mode is not None:
        dst.chmod(mode)
    return dst
