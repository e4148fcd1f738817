"""Environment status and diagnostics.

StatusReporter collects a read-only snapshot for display. Diagnostics
runs pass/fail checks, including an optional registry-to-cluster smoke
test that always cleans up after itself.
"""

from __future__ import annotations

import socket
import subprocess
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import docker
from docker.errors import DockerException

from ..config import KinderConfig
from ..errors import KinderError, TransientInfrastructureError
from ..shared.logging import get_logger
from .argocd import ArgoCDConfig, ArgoCDInstaller
from .ca import describe_certificate
from .containers import ContainerManager
from .health import check_endpoint
from .kind import KindProvisioner
from .kubectl import Kubectl
from .mirrors import REGISTRY_PORT
from .network import NetworkManager
from .orchestrator import environment_endpoints

logger = get_logger(__name__)

EXPIRY_WARNING_DAYS = 30
ROUTE_CHECK_ADDRESS = "192.0.2.1"

SERVICE_DISPLAY_NAMES = {
    "step-ca": "Step CA",
    "zot": "Zot Registry",
    "gatus": "Gatus",
    "traefik": "Traefik",
}


def _service_names(config: KinderConfig) -> list[tuple[str, str]]:
    """(display name, container name) pairs in start order."""
    return list(zip(SERVICE_DISPLAY_NAMES.values(), config.service_containers))


def format_uptime(delta: timedelta) -> str:
    """Compact duration: 42s, 5m, 3h 12m, 2d 4h."""
    seconds = max(int(delta.total_seconds()), 0)
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < 86400:
        return f"{seconds // 3600}h {seconds % 3600 // 60}m"
    return f"{seconds // 86400}d {seconds % 86400 // 3600}h"


@dataclass
class CAStatus:
    state: str  # missing, invalid, expired, not_yet_valid, expiring, valid
    path: str
    days_remaining: int | None = None
    detail: str = ""

    @property
    def summary(self) -> str:
        if self.state == "missing":
            return "Not generated"
        if self.state == "invalid":
            return f"Invalid: {self.detail}"
        if self.state == "expired":
            return "Expired"
        if self.state == "not_yet_valid":
            return "Not yet valid"
        if self.state == "expiring":
            return f"Expires in {self.days_remaining} days"
        return f"Valid ({self.days_remaining} days remaining)"


def ca_status(config: KinderConfig, now: datetime | None = None) -> CAStatus:
    path = config.ca_cert_path
    if not path.exists():
        return CAStatus(state="missing", path=str(path))
    try:
        info = describe_certificate(path)
    except KinderError as e:
        return CAStatus(state="invalid", path=str(path), detail=str(e))
    now = now or datetime.now(timezone.utc)
    if now < info.not_before:
        return CAStatus(state="not_yet_valid", path=str(path))
    if now >= info.not_after:
        return CAStatus(state="expired", path=str(path), days_remaining=0)
    days = info.days_remaining(now)
    state = "expiring" if days < EXPIRY_WARNING_DAYS else "valid"
    return CAStatus(state=state, path=str(path), days_remaining=days)


@dataclass
class ContainerStatus:
    name: str
    display: str
    exists: bool
    status: str = "not running"
    uptime: str | None = None


@dataclass
class ClusterStatus:
    name: str
    exists: bool
    nodes: dict[str, str] = field(default_factory=dict)
    error: str | None = None

    @property
    def control_planes(self) -> int:
        return sum(1 for n in self.nodes if "control-plane" in n)

    @property
    def workers(self) -> int:
        return sum(1 for n in self.nodes if "worker" in n)


@dataclass
class StatusReport:
    """Snapshot of the whole environment."""

    ca: CAStatus
    network_name: str
    network_id: str | None
    containers: list[ContainerStatus]
    cluster: ClusterStatus
    argocd: str
    endpoints: dict[str, str] = field(default_factory=dict)


class StatusReporter:
    """Collect a StatusReport from the runtime, kind and kubectl."""

    def __init__(
        self,
        config: KinderConfig,
        containers: ContainerManager,
        networks: NetworkManager,
        kind: KindProvisioner,
        kubectl: Kubectl | None = None,
    ):
        self.config = config
        self.containers = containers
        self.networks = networks
        self.kind = kind
        self.kubectl = kubectl or Kubectl(context=config.kube_context)

    def _container(self, name: str, display: str) -> ContainerStatus:
        state = self.containers.state(name)
        if state is None:
            return ContainerStatus(name=name, display=display, exists=False)
        status = ContainerStatus(name=name, display=display, exists=True, status=state.status)
        if state.running and state.started_at:
            status.uptime = format_uptime(datetime.now(timezone.utc) - state.started_at)
        return status

    def container_statuses(self) -> list[ContainerStatus]:
        return [self._container(name, display) for display, name in _service_names(self.config)]

    def cluster_status(self) -> ClusterStatus:
        name = self.config.cluster_name
        try:
            if not self.kind.exists(name):
                return ClusterStatus(name=name, exists=False)
            nodes = self.kind.nodes(self.containers.client, name)
        except TransientInfrastructureError as e:
            return ClusterStatus(name=name, exists=False, error=str(e))
        node_states = {}
        for node in nodes:
            state = self._container(node, node)
            role = node.removeprefix(f"{name}-")
            node_states[role] = f"{state.status} ({state.uptime})" if state.uptime else state.status
        return ClusterStatus(name=name, exists=True, nodes=node_states)

    def argocd_summary(self, cluster: ClusterStatus) -> str:
        if not cluster.exists:
            return "Kind cluster not running"
        installer = ArgoCDInstaller(ArgoCDConfig(kube_context=self.config.kube_context), self.kubectl)
        status = installer.status()
        if not status.installed:
            return f"Not installed ({status.detail})"
        if status.detail:
            return f"Installed but {status.detail}"
        replicas = f"{status.available_replicas}/{status.replicas}"
        if status.healthy:
            version = f", {status.version}" if status.version else ""
            return f"Running ({replicas} replicas{version})"
        return f"Degraded ({replicas} replicas available)"

    def collect(self) -> StatusReport:
        network_name = self.config.effective_network_name
        network_id = self.networks.get_id(network_name)
        containers = self.container_statuses()
        cluster = self.cluster_status()
        traefik_running = any(c.exists for c in containers if c.name == self.config.traefik_container)
        return StatusReport(
            ca=ca_status(self.config),
            network_name=network_name,
            network_id=network_id[:12] if network_id else None,
            containers=containers,
            cluster=cluster,
            argocd=self.argocd_summary(cluster),
            endpoints=environment_endpoints(self.config) if traefik_running else {},
        )


@dataclass
class CheckResult:
    """Outcome of one diagnostic check."""

    name: str
    passed: bool
    detail: str = ""
    skipped: bool = False


SMOKE_SOURCE_IMAGE = "docker://busybox:1.36"
SMOKE_TARGET_IMAGE = f"docker://localhost:{REGISTRY_PORT}/kinder-diag-test:latest"
SMOKE_POD_IMAGE = f"localhost:{REGISTRY_PORT}/kinder-diag-test:latest"
SMOKE_POD_NAME = "kinder-diag-test"
SMOKE_POD_NAMESPACE = "default"


def smoke_pod_manifest() -> str:
    return (
        "apiVersion: v1\n"
        "kind: Pod\n"
        "metadata:\n"
        f"  name: {SMOKE_POD_NAME}\n"
        f"  namespace: {SMOKE_POD_NAMESPACE}\n"
        "  labels:\n"
        f"    app: {SMOKE_POD_NAME}\n"
        "spec:\n"
        "  containers:\n"
        "  - name: test\n"
        f"    image: {SMOKE_POD_IMAGE}\n"
        '    command: ["sleep", "300"]\n'
        "  restartPolicy: Never\n"
    )


class Diagnostics:
    """Pass/fail checks over the running environment."""

    def __init__(
        self,
        config: KinderConfig,
        client: docker.DockerClient,
        kind: KindProvisioner | None = None,
        kubectl: Kubectl | None = None,
        poll_interval: float = 2.0,
        poll_timeout: float = 60.0,
    ):
        self.config = config
        self.client = client
        self.containers = ContainerManager(client)
        self.networks = NetworkManager(client)
        self.kind = kind or KindProvisioner()
        self.kubectl = kubectl or Kubectl(context=config.kube_context)
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout

    def check_docker(self) -> CheckResult:
        try:
            self.client.ping()
        except DockerException as e:
            return CheckResult("Docker", False, f"Docker daemon not responding: {e}")
        return CheckResult("Docker", True, "Docker daemon is running and accessible")

    def check_route(self, address: str = ROUTE_CHECK_ADDRESS) -> CheckResult:
        # A UDP connect only consults the routing table; nothing is sent
        name = f"Route to {address}"
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
                sock.settimeout(3)
                sock.connect((address, 1))
        except OSError as e:
            return CheckResult(name, False, f"IP {address} is not routable: {e}")
        return CheckResult(name, True, f"IP {address} is routable")

    def check_ca(self) -> CheckResult:
        status = ca_status(self.config)
        passed = status.state in ("valid", "expiring")
        return CheckResult("CA certificate", passed, f"{status.summary} ({status.path})")

    def check_network(self) -> CheckResult:
        name = self.config.effective_network_name
        try:
            exists = self.networks.exists(name)
        except TransientInfrastructureError as e:
            return CheckResult("Network", False, str(e))
        if not exists:
            return CheckResult("Network", False, f"network '{name}' does not exist")
        return CheckResult("Network", True, f"network '{name}' exists")

    def check_containers(self) -> list[CheckResult]:
        results = []
        for display, name in _service_names(self.config):
            try:
                exists = self.containers.exists(name)
            except TransientInfrastructureError as e:
                results.append(CheckResult(display, False, f"Failed to check ({e})"))
                continue
            if exists:
                results.append(CheckResult(display, True, f"Running ({name})"))
            else:
                results.append(CheckResult(display, False, f"Container not found ({name})"))
        return results

    def endpoint_urls(self) -> dict[str, str]:
        domain, port = self.config.domain, self.config.traefik_port
        return {
            "Zot Registry (direct)": f"http://localhost:{REGISTRY_PORT}/v2/",
            "Step CA": f"https://ca.{domain}:{port}/health",
            "Zot Registry": f"https://registry.{domain}:{port}/v2/",
            "Gatus Dashboard": f"https://gatus.{domain}:{port}/",
            "Traefik Dashboard": f"https://traefik.{domain}:{port}/dashboard/",
        }

    def check_endpoints(self) -> list[CheckResult]:
        ca_path = self.config.ca_cert_path
        if not ca_path.exists():
            return [CheckResult("Endpoints", False, f"Cannot load CA certificate {ca_path}")]
        results = []
        for name, url in self.endpoint_urls().items():
            probe = check_endpoint(url, ca_path=ca_path)
            if probe.ok:
                results.append(CheckResult(name, True, f"OK ({probe.status_code})"))
            elif probe.status_code is not None:
                results.append(CheckResult(name, False, f"HTTP {probe.status_code}"))
            else:
                results.append(CheckResult(name, False, f"unreachable ({probe.error})"))
        return results

    def _copy_test_image(self) -> None:
        cmd = [
            "skopeo",
            "copy",
            "--insecure-policy",
            "--dest-tls-verify=false",
            SMOKE_SOURCE_IMAGE,
            SMOKE_TARGET_IMAGE,
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=300)
        except FileNotFoundError as e:
            raise TransientInfrastructureError(message="skopeo not found (required for this check)") from e
        except subprocess.TimeoutExpired as e:
            raise TransientInfrastructureError(message="skopeo copy timed out") from e
        if result.returncode != 0:
            raise TransientInfrastructureError(
                message=f"failed to copy image to registry: {result.stderr.strip()}"
            )

    def _wait_for_pod(self) -> None:
        deadline = time.monotonic() + self.poll_timeout
        while True:
            try:
                phase = self.kubectl.run(
                    "get",
                    "pod",
                    SMOKE_POD_NAME,
                    "-n",
                    SMOKE_POD_NAMESPACE,
                    "-o",
                    "jsonpath={.status.phase}",
                    timeout=30,
                ).strip()
            except TransientInfrastructureError:
                phase = ""
            if phase == "Running":
                return
            if phase in ("Failed", "Error"):
                raise TransientInfrastructureError(message=f"pod failed to start (phase: {phase})")
            logger.debug("smoke test pod pending", phase=phase)
            if time.monotonic() >= deadline:
                break
            time.sleep(self.poll_interval)
        raise TransientInfrastructureError(
            message=f"timeout waiting for pod to be running after {self.poll_timeout:g}s"
        )

    def check_end_to_end(self) -> CheckResult:
        """Push busybox to the registry and run it as a pod on the cluster."""
        name = "Registry to cluster"
        try:
            if not self.kind.exists(self.config.cluster_name):
                return CheckResult(name, True, "Kind cluster not running", skipped=True)
        except TransientInfrastructureError as e:
            return CheckResult(name, True, f"failed to check Kind status: {e}", skipped=True)

        try:
            self._copy_test_image()
            self.kubectl.apply(smoke_pod_manifest())
            self._wait_for_pod()
        except TransientInfrastructureError as e:
            return CheckResult(name, False, str(e))
        finally:
            try:
                self.kubectl.delete("pod", SMOKE_POD_NAME, "-n", SMOKE_POD_NAMESPACE, "--wait=false")
            except TransientInfrastructureError as e:
                logger.warning("smoke test cleanup failed", error=str(e))
        return CheckResult(name, True, "Registry and Kubernetes end-to-end test passed")

    def run(self, end_to_end: bool = True) -> list[CheckResult]:
        results = [self.check_docker(), self.check_route(), self.check_ca(), self.check_network()]
        results.extend(self.check_containers())
        results.extend(self.check_endpoints())
        if end_to_end:
            results.append(self.check_end_to_end())
        return results
