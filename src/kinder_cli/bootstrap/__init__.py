"""Bootstrap package for the kinder local environment.

This package brings up and tears down the kinder environment:
1. Generates the root CA and per-service intermediates
2. Creates the container network
3. Starts Step CA, Zot, Gatus and Traefik
4. Pushes trust artifacts to the local registry
5. Creates the kind cluster and bootstraps ArgoCD
"""

from .argocd import (
    ArgoCDConfig,
    ArgoCDInstaller,
    ArgoCDStatus,
    application_manifest,
    ca_secret_manifest,
    generate_manifests,
    install_url,
    kinder_apps_manifest,
    namespace_manifest,
    repo_secret_manifest,
)
from .ca import (
    CertificateInfo,
    describe_certificate,
    generate_intermediate,
    generate_root,
    load_certificate,
    load_private_key,
    permitted_dns_domains,
)
from .containers import ContainerManager, ContainerSpec, ContainerState, Mount, PortBinding
from .health import EndpointCheck, ReadinessPoller, ReadinessResult, check_endpoint
from .kind import KindClusterSpec, KindProvisioner, build_cluster_config
from .kubectl import Kubectl
from .mirrors import (
    MirrorDescriptor,
    build_mirror_map,
    mirror_path,
    normalize_registry_name,
    upstream_server,
    write_certs_d,
)
from .network import NetworkManager, NetworkSpec, derive_network_config
from .oci import ImageReference, OCIArtifact, PushResult, RegistryPusher, build_artifact
from .orchestrator import (
    EnvironmentState,
    Orchestrator,
    Skipped,
    Step,
    cluster_spec,
    environment_endpoints,
    usage_hints,
)
from .runtime import LazyClient, connect
from .services import (
    GatusService,
    ServiceAdapter,
    StepCAService,
    TraefikService,
    ZotService,
    build_services,
)
from .status import (
    CAStatus,
    CheckResult,
    Diagnostics,
    StatusReport,
    StatusReporter,
    ca_status,
    format_uptime,
)
from .trust import (
    IssuerConfig,
    TrustPublisher,
    bundle_hash,
    combine_bundles,
    fetch_public_bundle,
    issuer_manifests,
    save_manifests,
    trust_manager_manifests,
)
from .validation import (
    reject_control_chars,
    repo_name,
    sanitize_k8s_name,
    validate_git_url,
    validate_url,
)

__all__ = [
    # Certificate authority
    "CertificateInfo",
    "describe_certificate",
    "generate_intermediate",
    "generate_root",
    "load_certificate",
    "load_private_key",
    "permitted_dns_domains",
    # Runtime
    "LazyClient",
    "connect",
    "ContainerManager",
    "ContainerSpec",
    "ContainerState",
    "Mount",
    "PortBinding",
    "NetworkManager",
    "NetworkSpec",
    "derive_network_config",
    # Registry mirrors
    "MirrorDescriptor",
    "build_mirror_map",
    "mirror_path",
    "normalize_registry_name",
    "upstream_server",
    "write_certs_d",
    # Services
    "ServiceAdapter",
    "StepCAService",
    "ZotService",
    "GatusService",
    "TraefikService",
    "build_services",
    # Readiness
    "ReadinessPoller",
    "ReadinessResult",
    "EndpointCheck",
    "check_endpoint",
    # Cluster
    "KindClusterSpec",
    "KindProvisioner",
    "build_cluster_config",
    "Kubectl",
    # Trust artifacts
    "ImageReference",
    "OCIArtifact",
    "PushResult",
    "RegistryPusher",
    "build_artifact",
    "IssuerConfig",
    "TrustPublisher",
    "bundle_hash",
    "combine_bundles",
    "fetch_public_bundle",
    "issuer_manifests",
    "save_manifests",
    "trust_manager_manifests",
    # GitOps
    "ArgoCDConfig",
    "ArgoCDInstaller",
    "ArgoCDStatus",
    "application_manifest",
    "ca_secret_manifest",
    "generate_manifests",
    "install_url",
    "kinder_apps_manifest",
    "namespace_manifest",
    "repo_secret_manifest",
    "reject_control_chars",
    "repo_name",
    "sanitize_k8s_name",
    "validate_git_url",
    "validate_url",
    # Orchestration
    "EnvironmentState",
    "Orchestrator",
    "Skipped",
    "Step",
    "cluster_spec",
    "environment_endpoints",
    "usage_hints",
    # Status
    "CAStatus",
    "CheckResult",
    "Diagnostics",
    "StatusReport",
    "StatusReporter",
    "ca_status",
    "format_uptime",
]
