"""Trust distribution artifacts.

Combines the kinder root CA with the public Mozilla bundle and packages
trust-manager and cert-manager resources as OCI artifacts in the local
registry, where a GitOps controller can pick them up.
"""

from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx
import yaml

from ..errors import ConfigurationError, TransientInfrastructureError
from ..shared.logging import get_logger
from .validation import reject_control_chars, sanitize_k8s_name
from .oci import SOURCE_URL, PushResult, RegistryPusher, build_artifact

logger = get_logger(__name__)

DEFAULT_REGISTRY = "localhost:5000"
MOZILLA_CA_BUNDLE_URL = "https://curl.se/ca/cacert.pem"

TRUST_BUNDLE_IMAGE = "trust-bundle"
TRUST_BUNDLE_FILE = "trust-bundle.pem"
TRUST_MANAGER_IMAGE = "trust-manager-bundle"
ISSUER_IMAGE = "cert-manager-issuer"
DEFAULT_TAG = "latest"

TRUST_MANAGER_NAMESPACE = "cert-manager"
TRUST_MANAGER_BUNDLE_NAME = "kinder-ca-bundle"
TRUST_MANAGER_CONFIGMAP = "kinder-ca-source"
TRUST_MANAGER_TARGET_KEY = "ca-certificates.crt"

ROOT_HEADER = "# Kinder Root CA Certificate\n"
PUBLIC_HEADER = "\n# Mozilla CA Certificate Bundle\n"

MANAGED_LABELS = {
    "app.kubernetes.io/name": "kinder-ca",
    "app.kubernetes.io/component": "trust-bundle",
    "app.kubernetes.io/managed-by": "kinder",
}


class _LiteralDumper(yaml.SafeDumper):
    """SafeDumper that writes multi-line strings as literal blocks."""


def _str_representer(dumper: yaml.SafeDumper, data: str):
    style = "|" if "\n" in data else None
    return dumper.represent_scalar("tag:yaml.org,2002:str", data, style=style)


_LiteralDumper.add_representer(str, _str_representer)


def dump_yaml(data: dict[str, Any]) -> bytes:
    return yaml.dump(data, Dumper=_LiteralDumper, default_flow_style=False, sort_keys=False).encode()


def combine_bundles(*bundles: bytes) -> bytes:
    """Concatenate PEM bundles, root first, with separating comments.

    Empty bundles are skipped. Position 0 is the kinder root; every
    later position is treated as a public bundle.
    """
    parts: list[bytes] = []
    for index, bundle in enumerate(bundles):
        if not bundle:
            continue
        parts.append((ROOT_HEADER if index == 0 else PUBLIC_HEADER).encode())
        parts.append(bundle)
        if not bundle.endswith(b"\n"):
            parts.append(b"\n")
    return b"".join(parts)


def bundle_hash(root_pem: bytes, public_pem: bytes = b"") -> str:
    """Short content hash of the combined bundle (first 8 bytes of SHA-256)."""
    return hashlib.sha256(combine_bundles(root_pem, public_pem)).digest()[:8].hex()


def fetch_public_bundle(url: str = MOZILLA_CA_BUNDLE_URL, timeout: float = 30.0) -> bytes:
    """Download the public CA bundle.

    Raises:
        TransientInfrastructureError: On transport errors or a non-200 response.
    """
    try:
        response = httpx.get(url, timeout=timeout, follow_redirects=True)
    except httpx.HTTPError as e:
        raise TransientInfrastructureError(
            message=f"Failed to download CA bundle from {url}: {e}", step="trust-bundle"
        ) from e
    if response.status_code != 200:
        raise TransientInfrastructureError(
            message=f"Failed to download CA bundle: HTTP {response.status_code}",
            step="trust-bundle",
        )
    return response.content


def _read_root(path: str | Path) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise ConfigurationError(message=f"Cannot read root CA certificate {path}: {e}") from e


def _kustomization(resources: list[str]) -> bytes:
    return dump_yaml(
        {
            "apiVersion": "kustomize.config.k8s.io/v1beta1",
            "kind": "Kustomization",
            "resources": resources,
        }
    )


def trust_manager_manifests(
    root_pem: bytes,
    public_pem: bytes | None = None,
    namespace: str = TRUST_MANAGER_NAMESPACE,
    bundle_name: str = TRUST_MANAGER_BUNDLE_NAME,
    target_namespace: str | None = None,
) -> dict[str, bytes]:
    """trust-manager kustomization publishing the CA to every namespace.

    Returns:
        File name -> YAML content.
    """
    namespace = sanitize_k8s_name(namespace)
    bundle_name = sanitize_k8s_name(bundle_name)
    bundle_pem = combine_bundles(root_pem, public_pem) if public_pem else root_pem

    configmap = {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {
            "name": TRUST_MANAGER_CONFIGMAP,
            "namespace": namespace,
            "labels": dict(MANAGED_LABELS),
        },
        "data": {"ca.crt": bundle_pem.decode()},
    }

    target: dict[str, Any] = {"configMap": {"key": TRUST_MANAGER_TARGET_KEY}}
    if target_namespace:
        target["namespaceSelector"] = {
            "matchLabels": {"kubernetes.io/metadata.name": sanitize_k8s_name(target_namespace)}
        }
    bundle = {
        "apiVersion": "trust.cert-manager.io/v1alpha1",
        "kind": "Bundle",
        "metadata": {"name": bundle_name, "labels": dict(MANAGED_LABELS)},
        "spec": {
            "sources": [{"configMap": {"name": TRUST_MANAGER_CONFIGMAP, "key": "ca.crt"}}],
            "target": target,
        },
    }
    return {
        "kustomization.yaml": _kustomization(["configmap.yaml", "bundle.yaml"]),
        "configmap.yaml": dump_yaml(configmap),
        "bundle.yaml": dump_yaml(bundle),
    }


@dataclass
class IssuerConfig:
    """cert-manager ClusterIssuer pointing at the Step CA ACME endpoint."""

    domain: str
    port: str
    issuer_name: str = "kinder-ca"
    email: str = "admin@localhost"
    ingress_class: str = "traefik"
    acme_server_url: str | None = None
    dns01_provider: str | None = None
    include_example_cert: bool = False
    example_cert_domain: str | None = None

    @property
    def server_url(self) -> str:
        return self.acme_server_url or f"https://ca.{self.domain}:{self.port}/acme/acme/directory"

    @property
    def example_domain(self) -> str:
        return self.example_cert_domain or f"example.{self.domain}"


def issuer_manifests(config: IssuerConfig, root_pem: bytes) -> dict[str, bytes]:
    """ClusterIssuer (and optional example Certificate) kustomization.

    Returns:
        File name -> YAML content.
    """
    issuer_name = sanitize_k8s_name(config.issuer_name)
    for value in (config.email, config.ingress_class, config.server_url, config.dns01_provider or ""):
        reject_control_chars(value)

    if config.dns01_provider:
        solver: dict[str, Any] = {"dns01": {config.dns01_provider: {}}}
    else:
        solver = {"http01": {"ingress": {"ingressClassName": config.ingress_class}}}

    cluster_issuer = {
        "apiVersion": "cert-manager.io/v1",
        "kind": "ClusterIssuer",
        "metadata": {
            "name": issuer_name,
            "labels": {
                "app.kubernetes.io/name": "kinder-ca-issuer",
                "app.kubernetes.io/component": "certificate-issuer",
                "app.kubernetes.io/managed-by": "kinder",
            },
        },
        "spec": {
            "acme": {
                "server": config.server_url,
                "email": config.email,
                "privateKeySecretRef": {"name": f"{issuer_name}-account-key"},
                "caBundle": base64.b64encode(root_pem).decode(),
                "solvers": [solver],
            }
        },
    }
    files = {"clusterissuer.yaml": dump_yaml(cluster_issuer)}
    resources = ["clusterissuer.yaml"]

    if config.include_example_cert:
        domain = config.example_domain
        reject_control_chars(domain)
        certificate = {
            "apiVersion": "cert-manager.io/v1",
            "kind": "Certificate",
            "metadata": {
                "name": "example-cert",
                "namespace": "default",
                "labels": {
                    "app.kubernetes.io/name": "example-certificate",
                    "app.kubernetes.io/managed-by": "kinder",
                },
            },
            "spec": {
                "secretName": "example-cert-tls",
                "duration": "2160h",
                "renewBefore": "720h",
                "commonName": domain,
                "dnsNames": [domain],
                "issuerRef": {"name": issuer_name, "kind": "ClusterIssuer", "group": "cert-manager.io"},
            },
        }
        files["example-certificate.yaml"] = dump_yaml(certificate)
        resources.append("example-certificate.yaml")

    files["kustomization.yaml"] = _kustomization(resources)
    return files


def save_manifests(directory: str | Path, files: dict[str, bytes]) -> Path:
    """Write generated manifests into directory."""
    directory = Path(directory)
    try:
        directory.mkdir(parents=True, exist_ok=True)
        for name, content in files.items():
            (directory / name).write_bytes(content)
    except OSError as e:
        raise ConfigurationError(message=f"Cannot write manifests to {directory}: {e}") from e
    return directory


def _labels(title: str, description: str, **extra: str) -> dict[str, str]:
    labels = {
        "org.opencontainers.image.title": title,
        "org.opencontainers.image.description": description,
        "org.opencontainers.image.source": SOURCE_URL,
    }
    labels.update(extra)
    return labels


class TrustPublisher:
    """Build and push the trust artifacts to the local registry."""

    def __init__(
        self,
        pusher: RegistryPusher,
        registry: str = DEFAULT_REGISTRY,
        fetch_public=fetch_public_bundle,
    ):
        self.pusher = pusher
        self.registry = registry
        self.fetch_public = fetch_public
        self._public_bundle: bytes | None = None

    def public_bundle(self) -> bytes:
        """Public CA bundle, downloaded at most once per publisher."""
        if self._public_bundle is None:
            self._public_bundle = self.fetch_public()
        return self._public_bundle

    def reference(self, image: str, tag: str = DEFAULT_TAG) -> str:
        return f"{self.registry}/{image}:{tag}"

    def publish_trust_bundle(self, root_path: str | Path, include_public: bool = True) -> PushResult:
        """Push trust-bundle:latest containing trust-bundle.pem."""
        root = _read_root(root_path)
        public = self.public_bundle() if include_public else b""
        artifact = build_artifact(
            {TRUST_BUNDLE_FILE: combine_bundles(root, public)},
            _labels(
                "Trust Bundle",
                "Combined CA certificate bundle with kinder root CA and Mozilla CAs",
                **{"trust-manager.io/bundle": "true"},
            ),
        )
        return self.pusher.push(artifact, self.reference(TRUST_BUNDLE_IMAGE))

    def publish_trust_manager_bundle(
        self,
        root_path: str | Path,
        include_public: bool = True,
        target_namespace: str | None = None,
        save_to: str | Path | None = None,
    ) -> PushResult:
        """Push trust-manager-bundle:latest with the trust-manager kustomization."""
        root = _read_root(root_path)
        public = self.public_bundle() if include_public else None
        files = trust_manager_manifests(root, public, target_namespace=target_namespace)
        if save_to is not None:
            save_manifests(save_to, files)
        artifact = build_artifact(
            files,
            _labels(
                "Trust Manager Bundle",
                "Kustomization bundle with trust-manager resources for kinder CA",
                **{"argocd.argoproj.io/manifest-type": "kustomize"},
            ),
        )
        return self.pusher.push(artifact, self.reference(TRUST_MANAGER_IMAGE))

    def publish_issuer(self, root_path: str | Path, config: IssuerConfig) -> PushResult:
        """Push cert-manager-issuer:latest with the ClusterIssuer kustomization."""
        files = issuer_manifests(config, _read_root(root_path))
        artifact = build_artifact(
            files,
            _labels(
                "Cert-Manager Issuer",
                "ClusterIssuer configuration for Step CA ACME server",
                **{"argocd.argoproj.io/manifest-type": "kustomize"},
            ),
        )
        return self.pusher.push(artifact, self.reference(ISSUER_IMAGE))

    def digest(self, image: str = TRUST_BUNDLE_IMAGE, tag: str = DEFAULT_TAG) -> str:
        return self.pusher.head_digest(self.reference(image, tag))
