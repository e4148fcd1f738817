"""Environment lifecycle state machine.

Start runs a fixed sequence of steps, each advancing the environment
state. The first failure aborts the sequence. Stop walks the services in
reverse, attempts every step and aggregates the failures.

Only the registry is gated on confirmed readiness; every other service
counts as up once its container has been created.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable

import docker
from docker.errors import DockerException

from ..config import KinderConfig
from ..errors import (
    ConfigurationError,
    KinderError,
    PartialFailure,
    StartAborted,
    StepFailure,
    TransientInfrastructureError,
)
from ..shared.logging import get_logger
from ..shared.paths import ensure_data_dir
from .argocd import ArgoCDConfig, ArgoCDInstaller
from .ca import generate_root
from .containers import ContainerManager
from .health import REGISTRY_READY_URL, ReadinessPoller
from .kind import KindClusterSpec, KindProvisioner
from .mirrors import build_mirror_map
from .network import NetworkManager, NetworkSpec
from .oci import RegistryPusher
from .services import ServiceAdapter, build_services
from .trust import IssuerConfig, TrustPublisher

logger = get_logger(__name__)


class EnvironmentState(Enum):
    """Lifecycle states, in the order start reaches them."""

    NOT_STARTED = "not_started"
    NETWORK_READY = "network_ready"
    CA_READY = "ca_ready"
    REGISTRY_READY = "registry_ready"
    TRUST_ARTIFACTS_PUSHED = "trust_artifacts_pushed"
    HEALTH_DASH_READY = "health_dash_ready"
    PROXY_READY = "proxy_ready"
    CLUSTER_READY = "cluster_ready"
    GITOPS_READY = "gitops_ready"
    ALL_READY = "all_ready"
    ABORTED = "aborted"


@dataclass
class Skipped:
    """Returned by a step action that found nothing to do."""

    reason: str


@dataclass
class Step:
    """One unit of the start or stop sequence.

    Attributes:
        name: Step name used in progress output and errors
        state: State reached when the step succeeds (None leaves it unchanged)
        action: Does the work; may return a detail string or Skipped
        gate: Optional readiness check run after action
    """

    name: str
    state: EnvironmentState | None
    action: Callable[[], object]
    gate: Callable[[], None] | None = None


ProgressCallback = Callable[[str, str, str], None]


class Orchestrator:
    """Bring the kinder environment up and down."""

    def __init__(
        self,
        config: KinderConfig,
        containers: ContainerManager,
        networks: NetworkManager,
        services: dict[str, ServiceAdapter],
        kind: KindProvisioner,
        publisher: TrustPublisher,
        argocd_factory: Callable[[ArgoCDConfig], ArgoCDInstaller] = ArgoCDInstaller,
        poller: ReadinessPoller | None = None,
        on_progress: ProgressCallback | None = None,
        include_public_bundle: bool = True,
    ):
        """Initialize orchestrator.

        Args:
            config: Resolved configuration
            containers: Container manager bound to the runtime client
            networks: Network manager bound to the runtime client
            services: Service adapters keyed by step name
            kind: Cluster provisioner
            publisher: Pushes trust artifacts to the local registry
            argocd_factory: Builds the ArgoCD installer for the cluster
            poller: Registry readiness poller
            on_progress: Called with (step, phase, detail)
            include_public_bundle: Append the Mozilla bundle to the trust bundle
        """
        self.config = config
        self.containers = containers
        self.networks = networks
        self.services = services
        self.kind = kind
        self.publisher = publisher
        self.argocd_factory = argocd_factory
        self.poller = poller or ReadinessPoller()
        self.on_progress = on_progress
        self.include_public_bundle = include_public_bundle

        self.state = EnvironmentState.NOT_STARTED
        self.aborted_step: str | None = None

    @classmethod
    def for_client(
        cls,
        config: KinderConfig,
        client: docker.DockerClient,
        on_progress: ProgressCallback | None = None,
        include_public_bundle: bool = True,
    ) -> Orchestrator:
        """Wire the default collaborators around one runtime client."""
        return cls(
            config=config,
            containers=ContainerManager(client),
            networks=NetworkManager(client),
            services=build_services(config),
            kind=KindProvisioner(),
            publisher=TrustPublisher(RegistryPusher()),
            on_progress=on_progress,
            include_public_bundle=include_public_bundle,
        )

    def _emit(self, step: str, phase: str, detail: str = "") -> None:
        if self.on_progress:
            self.on_progress(step, phase, detail)

    # Start steps

    def _ensure_ca(self) -> object:
        cert, key = self.config.ca_cert_path, self.config.ca_key_path
        if cert.exists() and key.exists():
            return Skipped(f"reusing {cert}")
        if cert.exists() != key.exists():
            missing = key if cert.exists() else cert
            raise ConfigurationError(
                message=f"Incomplete CA material: {missing} is missing",
                details={"cert_path": str(cert), "key_path": str(key)},
            )
        ensure_data_dir(self.config.data_path)
        generate_root(cert, key, self.config.domain, app_name=self.config.app_name)
        return f"generated {cert}"

    def _ensure_network(self) -> object:
        spec = NetworkSpec(
            name=self.config.effective_network_name,
            cidr=self.config.network_cidr,
            bridge_name=self.config.effective_bridge_name,
        )
        network_id, created = self.networks.ensure(spec)
        if not created:
            return Skipped(f"{spec.name} already exists")
        return f"{spec.name} ({network_id[:12]})"

    def _start_service(self, step: str) -> Callable[[], object]:
        def action() -> object:
            container_id = self.services[step].start(self.containers)
            return f"{self.services[step].container_name} ({container_id[:12]})"

        return action

    def _registry_gate(self) -> None:
        result = self.poller.wait_until_ready_sync(REGISTRY_READY_URL)
        if not result.ready:
            raise TransientInfrastructureError(message=result.error or "registry not ready", step="zot")

    def _push_trust_bundles(self) -> object:
        ca = self.config.ca_cert_path
        bundle = self.publisher.publish_trust_bundle(ca, include_public=self.include_public_bundle)
        manager = self.publisher.publish_trust_manager_bundle(ca, include_public=self.include_public_bundle)
        return f"{bundle.reference}, {manager.reference}"

    def _push_issuer(self) -> object:
        issuer = IssuerConfig(domain=self.config.domain, port=str(self.config.traefik_port))
        result = self.publisher.publish_issuer(self.config.ca_cert_path, issuer)
        return result.reference

    def _create_cluster(self) -> object:
        name = self.config.cluster_name
        if self.kind.exists(name):
            return Skipped(f"cluster {name} already exists")
        ca = self.config.ca_cert_path
        if not ca.exists():
            raise ConfigurationError(message=f"CA certificate not found at {ca} - run 'kinder start' first")
        self.kind.create(cluster_spec(self.config))
        return f"cluster {name}"

    def argocd_config(self) -> ArgoCDConfig:
        return ArgoCDConfig(
            version=self.config.argocd_version,
            kube_context=self.config.kube_context,
            ca_cert_pem=self.config.ca_cert_path.read_text(),
            manifest_url=self.config.argocd_manifest_url or None,
            include_kinder_apps=True,
            domain=self.config.domain,
            port=str(self.config.traefik_port),
        )

    def _bootstrap_argocd(self) -> object:
        try:
            argocd_config = self.argocd_config()
        except OSError as e:
            raise ConfigurationError(message=f"Cannot read CA certificate: {e}") from e
        installer = self.argocd_factory(argocd_config)
        installer.install(progress=lambda message: logger.info("argocd progress", detail=message))
        return f"ArgoCD {argocd_config.version}"

    def start_steps(self) -> list[Step]:
        S = EnvironmentState
        return [
            Step("ca", None, self._ensure_ca),
            Step("network", S.NETWORK_READY, self._ensure_network),
            Step("step-ca", S.CA_READY, self._start_service("step-ca")),
            Step("zot", S.REGISTRY_READY, self._start_service("zot"), gate=self._registry_gate),
            Step("trust-bundle", None, self._push_trust_bundles),
            Step("cert-issuer", S.TRUST_ARTIFACTS_PUSHED, self._push_issuer),
            Step("gatus", S.HEALTH_DASH_READY, self._start_service("gatus")),
            Step("traefik", S.PROXY_READY, self._start_service("traefik")),
            Step("kind", S.CLUSTER_READY, self._create_cluster),
            Step("argocd", S.GITOPS_READY, self._bootstrap_argocd),
        ]

    def start(self) -> EnvironmentState:
        """Run the start sequence.

        Returns:
            EnvironmentState.ALL_READY

        Raises:
            StartAborted: The first failing step, with its cause. No later step runs.
        """
        self.aborted_step = None
        for step in self.start_steps():
            self._emit(step.name, "start")
            try:
                outcome = step.action()
                if step.gate is not None and not isinstance(outcome, Skipped):
                    step.gate()
            except (KinderError, OSError, DockerException) as e:
                self.state = EnvironmentState.ABORTED
                self.aborted_step = step.name
                self._emit(step.name, "failed", str(e))
                logger.error("start aborted", step=step.name, error=str(e))
                raise StartAborted(step=step.name, cause=e) from e

            if isinstance(outcome, Skipped):
                self._emit(step.name, "skipped", outcome.reason)
            else:
                self._emit(step.name, "done", str(outcome or ""))
            if step.state is not None:
                self.state = step.state
            logger.debug("step complete", step=step.name, state=self.state.value)

        self.state = EnvironmentState.ALL_READY
        logger.info("environment ready", app=self.config.app_name)
        return self.state

    # Stop steps

    def _delete_cluster(self) -> object:
        name = self.config.cluster_name
        if not self.kind.exists(name):
            return Skipped(f"cluster {name} not found")
        self.kind.delete(name)
        return f"cluster {name}"

    def _stop_service(self, step: str) -> Callable[[], object]:
        def action() -> object:
            adapter = self.services[step]
            if not self.containers.exists(adapter.container_name):
                return Skipped(f"{adapter.container_name} not found")
            adapter.stop(self.containers)
            return adapter.container_name

        return action

    def _remove_network(self) -> object:
        name = self.config.effective_network_name
        if not self.networks.exists(name):
            return Skipped(f"{name} not found")
        self.networks.remove(name)
        return name

    def stop_steps(self, remove_network: bool = True) -> list[Step]:
        steps = [Step("kind", None, self._delete_cluster)]
        for name in reversed(list(self.services)):
            steps.append(Step(name, None, self._stop_service(name)))
        if remove_network:
            steps.append(Step("network", None, self._remove_network))
        return steps

    def stop(self, remove_network: bool = True) -> list[StepFailure]:
        """Tear down every step, continuing past failures.

        Returns:
            Empty list when every step succeeded.

        Raises:
            PartialFailure: Listing every failed step, after all steps ran.
        """
        failures: list[StepFailure] = []
        for step in self.stop_steps(remove_network):
            self._emit(step.name, "start")
            try:
                outcome = step.action()
            except Exception as e:
                failures.append(StepFailure(step=step.name, error=e))
                self._emit(step.name, "failed", str(e))
                logger.warning("teardown step failed", step=step.name, error=str(e))
                continue
            if isinstance(outcome, Skipped):
                self._emit(step.name, "skipped", outcome.reason)
            else:
                self._emit(step.name, "done", str(outcome or ""))

        self.state = EnvironmentState.NOT_STARTED
        if failures:
            raise PartialFailure(failures=failures)
        return failures

    def restart(self) -> EnvironmentState:
        """Stop (keeping the network) then start.

        Teardown failures are logged and do not prevent the start.
        """
        try:
            self.stop(remove_network=False)
        except PartialFailure as e:
            logger.warning("restart teardown incomplete", failed=e.steps)
        return self.start()

    def endpoints(self) -> dict[str, str]:
        """Human-facing URLs of the running environment."""
        return environment_endpoints(self.config)


def environment_endpoints(config: KinderConfig) -> dict[str, str]:
    domain, port = config.domain, config.traefik_port
    return {
        "Traefik Dashboard": f"https://traefik.{domain}:{port}",
        "Step CA": f"https://ca.{domain}:{port}",
        "Zot Registry": f"https://registry.{domain}:{port}",
        "Gatus Dashboard": f"https://gatus.{domain}:{port}",
        "Zot (direct)": "http://localhost:5000",
    }


def usage_hints(config: KinderConfig) -> dict[str, str]:
    return {
        "ArgoCD": "kubectl port-forward svc/argocd-server -n argocd 8080:443",
        "Kubernetes": f"kubectl cluster-info --context {config.kube_context}",
    }


def cluster_spec(config: KinderConfig) -> KindClusterSpec:
    """kind cluster for this environment, mirroring through the local registry."""
    return KindClusterSpec(
        name=config.cluster_name,
        node_image=config.kind_node_image,
        ca_cert_path=config.ca_cert_path,
        network=config.effective_network_name,
        registry_mirrors=build_mirror_map(config.registry_mirrors),
        workers=config.kind_workers,
    )
