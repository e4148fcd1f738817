"""ArgoCD bootstrap for the kind cluster.

Installs upstream ArgoCD with anonymous admin access, mounts the kinder
root CA into the repo-server and optionally creates an initial
Application plus the Applications that consume the trust artifacts.
Every user-supplied value is validated before it reaches a manifest.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import yaml

from ..config import DEFAULT_ARGOCD_VERSION, DEFAULT_DOMAIN, DEFAULT_TRAEFIK_PORT
from ..errors import ConfigurationError, TransientInfrastructureError, ValidationError
from ..shared.logging import get_logger
from .kubectl import Kubectl
from .services import CONTAINER_CA_PATH
from .trust import DEFAULT_TAG, ISSUER_IMAGE, TRUST_MANAGER_IMAGE, TRUST_MANAGER_NAMESPACE
from .validation import (
    reject_control_chars,
    repo_name,
    sanitize_k8s_name,
    validate_git_url,
    validate_url,
)

logger = get_logger(__name__)

ARGOCD_NAMESPACE = "argocd"
ARGOCD_INSTALL_BASE = "https://raw.githubusercontent.com/argoproj/argo-cd"
CA_SECRET_NAME = "kinder-ca-cert"
IN_CLUSTER_SERVER = "https://kubernetes.default.svc"

CREDENTIAL_TYPES = ("none", "http", "ssh")

# Deployments waited on after install; some may be absent in a given version
ROLLOUT_DEPLOYMENTS = ("argocd-server", "argocd-repo-server", "argocd-redis")

AUTH_PATCHES = {
    "argocd-cmd-params-cm": {"data": {"server.insecure": "true"}},
    "argocd-cm": {"data": {"users.anonymous.enabled": "true"}},
    "argocd-rbac-cm": {"data": {"policy.default": "role:admin"}},
}


def install_url(version: str) -> str:
    reject_control_chars(version)
    return f"{ARGOCD_INSTALL_BASE}/{version}/manifests/install.yaml"


@dataclass
class ArgoCDConfig:
    """ArgoCD installation settings."""

    version: str = DEFAULT_ARGOCD_VERSION
    namespace: str = ARGOCD_NAMESPACE
    kube_context: str | None = None
    kubeconfig: str | None = None
    wait_timeout: int = 300
    ca_cert_pem: str = ""
    manifest_url: str | None = None
    include_kinder_apps: bool = False
    registry_url: str | None = None
    domain: str = DEFAULT_DOMAIN
    port: str = DEFAULT_TRAEFIK_PORT

    # Git repository for the initial Application
    repo_url: str | None = None
    repo_path: str = "."
    repo_branch: str = "main"
    app_name: str = "root"
    target_namespace: str = "default"
    skip_initial_app: bool = False

    credential_type: str = "none"
    http_username: str | None = None
    http_password: str | None = None
    ssh_private_key: str | None = None
    ssh_private_key_path: str | None = None

    @property
    def effective_registry_url(self) -> str:
        return self.registry_url or f"registry.{self.domain}:{self.port}"

    def load_ssh_key(self) -> None:
        if self.ssh_private_key_path and not self.ssh_private_key:
            try:
                self.ssh_private_key = Path(self.ssh_private_key_path).expanduser().read_text()
            except OSError as e:
                raise ConfigurationError(message=f"read SSH key: {e}") from e


def _dump(document: dict[str, Any]) -> str:
    return yaml.safe_dump(document, default_flow_style=False, sort_keys=False)


def _b64(value: str) -> str:
    return base64.b64encode(value.encode()).decode()


def namespace_manifest(namespace: str) -> str:
    return _dump(
        {
            "apiVersion": "v1",
            "kind": "Namespace",
            "metadata": {
                "name": sanitize_k8s_name(namespace),
                "labels": {"app.kubernetes.io/name": "argocd"},
            },
        }
    )


def ca_secret_manifest(config: ArgoCDConfig) -> str:
    return _dump(
        {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": {"name": CA_SECRET_NAME, "namespace": sanitize_k8s_name(config.namespace)},
            "type": "Opaque",
            "stringData": {"ca.crt": config.ca_cert_pem},
        }
    )


def repo_secret_manifest(config: ArgoCDConfig) -> str:
    """Repository credentials Secret, values base64 encoded.

    Raises:
        ValidationError: Missing credentials or unsupported credential type.
    """
    validate_git_url(config.repo_url or "")
    data = {"type": _b64("git"), "url": _b64(config.repo_url)}
    if config.credential_type == "http":
        if not config.http_username or not config.http_password:
            raise ValidationError(message="HTTP credentials require username and password")
        data["username"] = _b64(config.http_username)
        data["password"] = _b64(config.http_password)
    elif config.credential_type == "ssh":
        if not config.ssh_private_key:
            raise ValidationError(message="SSH credentials require private key")
        data["sshPrivateKey"] = _b64(config.ssh_private_key)
    else:
        raise ValidationError(message=f"unsupported credential type: {config.credential_type}")

    return _dump(
        {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": {
                "name": sanitize_k8s_name(f"repo-{repo_name(config.repo_url)}"),
                "namespace": sanitize_k8s_name(config.namespace),
                "labels": {"argocd.argoproj.io/secret-type": "repository"},
            },
            "data": data,
        }
    )


def _sync_policy() -> dict[str, Any]:
    return {"automated": {"prune": True, "selfHeal": True}}


def application_manifest(config: ArgoCDConfig) -> str:
    """Initial Application tracking the configured repository."""
    validate_git_url(config.repo_url or "")
    for value in (config.repo_path, config.repo_branch):
        reject_control_chars(value)
    sync_policy = _sync_policy()
    sync_policy["syncOptions"] = ["CreateNamespace=true"]
    return _dump(
        {
            "apiVersion": "argoproj.io/v1alpha1",
            "kind": "Application",
            "metadata": {
                "name": sanitize_k8s_name(config.app_name),
                "namespace": sanitize_k8s_name(config.namespace),
                "finalizers": ["resources-finalizer.argocd.argoproj.io"],
            },
            "spec": {
                "project": "default",
                "source": {
                    "repoURL": config.repo_url,
                    "targetRevision": config.repo_branch,
                    "path": config.repo_path,
                },
                "destination": {
                    "server": IN_CLUSTER_SERVER,
                    "namespace": sanitize_k8s_name(config.target_namespace),
                },
                "syncPolicy": sync_policy,
            },
        }
    )


def kinder_apps_manifest(config: ArgoCDConfig) -> str:
    """Applications syncing the trust-manager and issuer artifacts from the registry."""
    registry = reject_control_chars(config.effective_registry_url)
    namespace = sanitize_k8s_name(config.namespace)

    def app(name: str, image: str) -> dict[str, Any]:
        return {
            "apiVersion": "argoproj.io/v1alpha1",
            "kind": "Application",
            "metadata": {"name": name, "namespace": namespace},
            "spec": {
                "project": "default",
                "source": {"repoURL": f"{registry}/{image}", "targetRevision": DEFAULT_TAG},
                "destination": {"server": IN_CLUSTER_SERVER, "namespace": TRUST_MANAGER_NAMESPACE},
                "syncPolicy": _sync_policy(),
            },
        }

    return yaml.safe_dump_all(
        [app("kinder-trust-bundle", TRUST_MANAGER_IMAGE), app("kinder-cert-issuer", ISSUER_IMAGE)],
        default_flow_style=False,
        sort_keys=False,
    )


def repo_server_patch() -> str:
    """Strategic merge patch mounting the CA secret into argocd-repo-server."""
    patch = {
        "spec": {
            "template": {
                "spec": {
                    "volumes": [{"name": "kinder-ca", "secret": {"secretName": CA_SECRET_NAME}}],
                    "containers": [
                        {
                            "name": "argocd-repo-server",
                            "env": [{"name": "SSL_CERT_FILE", "value": CONTAINER_CA_PATH}],
                            "volumeMounts": [
                                {
                                    "name": "kinder-ca",
                                    "mountPath": CONTAINER_CA_PATH,
                                    "subPath": "ca.crt",
                                    "readOnly": True,
                                }
                            ],
                        }
                    ],
                }
            }
        }
    }
    return json.dumps(patch)


def generate_manifests(config: ArgoCDConfig) -> str:
    """All kinder-generated resources as one multi-document YAML stream.

    The upstream install manifest is referenced, not inlined.
    """
    config.load_ssh_key()
    documents = [f"# Install: kubectl apply -n {config.namespace} -f {install_url(config.version)}\n"]
    documents.append(namespace_manifest(config.namespace))
    if config.ca_cert_pem:
        documents.append(ca_secret_manifest(config))
    if config.credential_type != "none" and config.repo_url:
        documents.append(repo_secret_manifest(config))
    if not config.skip_initial_app and config.repo_url:
        documents.append(application_manifest(config))
    if config.include_kinder_apps:
        documents.append(kinder_apps_manifest(config))
    return documents[0] + "---\n".join(documents[1:])


@dataclass
class ArgoCDStatus:
    installed: bool
    available_replicas: int = 0
    replicas: int = 0
    version: str | None = None
    detail: str = ""

    @property
    def healthy(self) -> bool:
        return self.installed and self.replicas > 0 and self.available_replicas == self.replicas


class ArgoCDInstaller:
    """Install and query ArgoCD through kubectl."""

    def __init__(self, config: ArgoCDConfig, kubectl: Kubectl | None = None):
        if config.credential_type not in CREDENTIAL_TYPES:
            raise ValidationError(message=f"unsupported credential type: {config.credential_type}")
        self.config = config
        self.kubectl = kubectl or Kubectl(context=config.kube_context, kubeconfig=config.kubeconfig)

    def _disable_auth(self) -> None:
        for configmap, patch in AUTH_PATCHES.items():
            self.kubectl.patch("configmap", configmap, self.config.namespace, json.dumps(patch))

    def _wait_ready(self) -> None:
        for deployment in ROLLOUT_DEPLOYMENTS:
            try:
                self.kubectl.run(
                    "rollout",
                    "status",
                    f"deployment/{deployment}",
                    "-n",
                    self.config.namespace,
                    "--timeout",
                    f"{self.config.wait_timeout}s",
                    timeout=self.config.wait_timeout + 30,
                )
            except TransientInfrastructureError as e:
                logger.warning("rollout wait failed", deployment=deployment, error=str(e))

    def install(self, progress: Callable[[str], None] | None = None) -> None:
        """Install ArgoCD and the optional extras.

        Raises:
            ValidationError: A configured value cannot be placed in a manifest.
            TransientInfrastructureError: A kubectl call failed.
        """
        cfg = self.config
        cfg.load_ssh_key()
        namespace = sanitize_k8s_name(cfg.namespace)
        if cfg.manifest_url:
            validate_url(cfg.manifest_url)

        def report(message: str) -> None:
            logger.info("argocd install", step=message)
            if progress:
                progress(message)

        steps: list[tuple[str, Callable[[], Any]]] = [
            ("Creating namespace", lambda: self.kubectl.apply(namespace_manifest(namespace))),
            (
                f"Installing ArgoCD {cfg.version}",
                lambda: self.kubectl.apply_url(install_url(cfg.version), namespace),
            ),
            ("Disabling authentication", self._disable_auth),
            ("Waiting for rollout", self._wait_ready),
        ]
        if cfg.ca_cert_pem:
            steps.append(("Mounting CA certificate", self._mount_ca))
        if cfg.credential_type != "none" and cfg.repo_url:
            steps.append(
                ("Creating repository credentials", lambda: self.kubectl.apply(repo_secret_manifest(cfg)))
            )
        if not cfg.skip_initial_app and cfg.repo_url:
            steps.append(
                (f"Creating application {cfg.app_name}", lambda: self.kubectl.apply(application_manifest(cfg)))
            )
        if cfg.include_kinder_apps:
            steps.append(
                ("Creating kinder applications", lambda: self.kubectl.apply(kinder_apps_manifest(cfg)))
            )
        if cfg.manifest_url:
            steps.append(
                (f"Applying {cfg.manifest_url}", lambda: self.kubectl.apply_url(cfg.manifest_url))
            )

        for message, action in steps:
            report(message)
            try:
                action()
            except TransientInfrastructureError as e:
                raise TransientInfrastructureError(
                    message=f"{message.lower()}: {e}", step="argocd", details=e.details
                ) from e

    def _mount_ca(self) -> None:
        self.kubectl.apply(ca_secret_manifest(self.config))
        self.kubectl.patch("deployment", "argocd-repo-server", self.config.namespace, repo_server_patch())

    def admin_password(self) -> str:
        """Decode the initial admin password secret."""
        encoded = self.kubectl.run(
            "get",
            "secret",
            "argocd-initial-admin-secret",
            "-n",
            self.config.namespace,
            "-o",
            "jsonpath={.data.password}",
        )
        try:
            return base64.b64decode(encoded.strip()).decode()
        except ValueError as e:
            raise TransientInfrastructureError(message=f"failed to decode password: {e}") from e

    def status(self) -> ArgoCDStatus:
        namespace = self.config.namespace
        if not self.kubectl.succeeds("get", "namespace", namespace, "-o", "name"):
            return ArgoCDStatus(installed=False, detail=f"namespace '{namespace}' not found")
        try:
            replicas = self.kubectl.run(
                "get",
                "deployment",
                "argocd-server",
                "-n",
                namespace,
                "-o",
                "jsonpath={.status.availableReplicas}/{.status.replicas}",
                timeout=30,
            ).strip()
        except TransientInfrastructureError:
            return ArgoCDStatus(installed=True, detail="argocd-server deployment not found")

        available, _, total = replicas.partition("/")
        status = ArgoCDStatus(
            installed=True,
            available_replicas=int(available) if available.isdigit() else 0,
            replicas=int(total) if total.isdigit() else 0,
        )
        try:
            image = self.kubectl.run(
                "get",
                "deployment",
                "argocd-server",
                "-n",
                namespace,
                "-o",
                "jsonpath={.spec.template.spec.containers[0].image}",
                timeout=30,
            ).strip()
        except TransientInfrastructureError:
            image = ""
        if ":" in image:
            status.version = image.rsplit(":", 1)[1]
        return status
