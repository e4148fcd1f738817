"""Container runtime client construction.

The Docker client is built once per command invocation and passed
explicitly to every manager that needs it.
"""

from __future__ import annotations

import docker
from docker.errors import DockerException

from ..errors import TransientInfrastructureError
from ..shared.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 60


def connect(base_url: str | None = None, timeout: int = DEFAULT_TIMEOUT) -> docker.DockerClient:
    """Connect to the Docker daemon and verify it answers.

    Args:
        base_url: Daemon URL; defaults to DOCKER_HOST / the local socket
        timeout: Per-request timeout in seconds

    Returns:
        Connected DockerClient. Callers own it and must close() it.

    Raises:
        TransientInfrastructureError: If the daemon is not reachable.
    """
    try:
        if base_url:
            client = docker.DockerClient(base_url=base_url, timeout=timeout)
        else:
            client = docker.from_env(timeout=timeout)
        client.ping()
    except DockerException as e:
        raise TransientInfrastructureError(
            message=f"Docker daemon not reachable: {e}",
            step="runtime",
        ) from e
    logger.debug("docker client connected", base_url=base_url or "env")
    return client


class LazyClient:
    """Build the Docker client on first use and close it once."""

    def __init__(self, base_url: str | None = None, timeout: int = DEFAULT_TIMEOUT):
        self.base_url = base_url
        self.timeout = timeout
        self._client: docker.DockerClient | None = None

    def get(self) -> docker.DockerClient:
        if self._client is None:
            self._client = connect(self.base_url, self.timeout)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
