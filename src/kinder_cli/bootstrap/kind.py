"""kind cluster provisioning.

Drives the kind CLI as a subprocess. The cluster joins the kinder
network, trusts the kinder root CA and pulls through the local mirror.
"""

from __future__ import annotations

import os
import subprocess
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import docker
import yaml
from docker.errors import APIError

from ..errors import TransientInfrastructureError
from ..shared.logging import get_logger
from .mirrors import CERTS_D, CONTAINERD_PATCH, write_certs_d
from .services import CONTAINER_CA_PATH

logger = get_logger(__name__)

DEFAULT_NETWORK = "kind"
NETWORK_ENV_VAR = "KIND_EXPERIMENTAL_DOCKER_NETWORK"
WAIT_FOR_READY = "5m"
CREATE_TIMEOUT = 600


@dataclass
class KindClusterSpec:
    """Cluster to create."""

    name: str
    node_image: str
    ca_cert_path: Path | None = None
    network: str = DEFAULT_NETWORK
    registry_mirrors: dict[str, str] = field(default_factory=dict)
    registry_host: str | None = "zot"
    workers: int = 0


def build_cluster_config(spec: KindClusterSpec) -> dict[str, Any]:
    """Build the kind v1alpha4 Cluster document.

    Writes the certs.d mirror tree next to the CA certificate when
    mirroring is configured.
    """
    config: dict[str, Any] = {
        "kind": "Cluster",
        "apiVersion": "kind.x-k8s.io/v1alpha4",
        "name": spec.name,
    }
    mirroring = bool(spec.registry_mirrors) or bool(spec.registry_host)
    if mirroring:
        config["containerdConfigPatches"] = [CONTAINERD_PATCH]

    mounts: list[dict[str, Any]] = []
    if spec.ca_cert_path:
        data_dir = Path(spec.ca_cert_path).parent
        if mirroring:
            write_certs_d(data_dir, spec.registry_mirrors, spec.ca_cert_path, spec.registry_host)
        mounts.append(
            {"hostPath": str(spec.ca_cert_path), "containerPath": CONTAINER_CA_PATH, "readOnly": True}
        )
        certs_d = data_dir / CERTS_D
        if certs_d.exists():
            mounts.append(
                {"hostPath": str(certs_d), "containerPath": "/etc/containerd/certs.d", "readOnly": True}
            )

    def node(role: str) -> dict[str, Any]:
        entry: dict[str, Any] = {"role": role}
        if mounts:
            entry["extraMounts"] = mounts
        return entry

    config["nodes"] = [node("control-plane")] + [node("worker") for _ in range(spec.workers)]
    return config


class KindProvisioner:
    """Create, delete and query kind clusters via the kind CLI.

    Cluster creation is steered onto a non-default network through the
    child process environment only; the calling process's environment is
    never modified. Creates are serialized within the process.
    """

    _create_lock = threading.Lock()

    def __init__(self, kind_binary: str = "kind"):
        self.kind_binary = kind_binary

    def _run(
        self,
        args: list[str],
        input: str | None = None,
        env: dict[str, str] | None = None,
        timeout: int = 120,
    ) -> subprocess.CompletedProcess:
        cmd = [self.kind_binary] + args
        try:
            result = subprocess.run(
                cmd,
                input=input,
                env=env,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except FileNotFoundError as e:
            raise TransientInfrastructureError(
                message=f"{self.kind_binary} not found. Is kind installed?", step="kind"
            ) from e
        except subprocess.TimeoutExpired as e:
            raise TransientInfrastructureError(
                message=f"{' '.join(args[:2])} timed out after {timeout}s", step="kind"
            ) from e
        if result.returncode != 0:
            raise TransientInfrastructureError(
                message=f"kind {' '.join(args[:2])} failed: {result.stderr.strip()}",
                step="kind",
                details={"returncode": result.returncode},
            )
        return result

    def list_clusters(self) -> list[str]:
        result = self._run(["get", "clusters"])
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def exists(self, name: str) -> bool:
        return name in self.list_clusters()

    @staticmethod
    def child_env(network: str) -> dict[str, str]:
        """Environment for the kind child process."""
        env = dict(os.environ)
        env.pop(NETWORK_ENV_VAR, None)
        # kind already uses the "kind" network by default
        if network and network != DEFAULT_NETWORK:
            env[NETWORK_ENV_VAR] = network
        return env

    def create(self, spec: KindClusterSpec) -> None:
        """Create the cluster and wait for the control plane.

        Raises:
            TransientInfrastructureError: If the cluster exists or kind fails.
        """
        if self.exists(spec.name):
            raise TransientInfrastructureError(
                message=f"cluster {spec.name} already exists", step="kind"
            )
        document = yaml.safe_dump(build_cluster_config(spec), sort_keys=False)
        args = [
            "create",
            "cluster",
            "--name",
            spec.name,
            "--image",
            spec.node_image,
            "--wait",
            WAIT_FOR_READY,
            "--config",
            "-",
        ]
        with self._create_lock:
            logger.info("creating kind cluster", name=spec.name, network=spec.network, workers=spec.workers)
            self._run(args, input=document, env=self.child_env(spec.network), timeout=CREATE_TIMEOUT)

    def delete(self, name: str) -> None:
        self._run(["delete", "cluster", "--name", name], timeout=300)
        logger.info("kind cluster deleted", name=name)

    def kubeconfig(self, name: str) -> str:
        return self._run(["get", "kubeconfig", "--name", name]).stdout

    def nodes(self, client: docker.DockerClient, name: str) -> list[str]:
        """Node container names for a cluster, read from the runtime."""
        prefixes = (f"{name}-control-plane", f"{name}-worker")
        try:
            containers = client.containers.list(all=True, filters={"name": name})
        except APIError as e:
            raise TransientInfrastructureError(message=f"Failed to list containers: {e}", step="kind") from e
        names = (c.name.lstrip("/") for c in containers)
        return sorted(n for n in names if n.startswith(prefixes))
