"""Unit tests for the ArgoCD bootstrap."""

from __future__ import annotations

import base64
import json
from unittest.mock import MagicMock

import pytest
import yaml

from kinder_cli.bootstrap import (
    ArgoCDConfig,
    ArgoCDInstaller,
    application_manifest,
    ca_secret_manifest,
    generate_manifests,
    install_url,
    kinder_apps_manifest,
    repo_secret_manifest,
)
from kinder_cli.bootstrap.argocd import repo_server_patch
from kinder_cli.errors import ConfigurationError, TransientInfrastructureError, ValidationError

REPO = "https://github.com/org/gitops.git"


def fake_kubectl(fail_on: str | None = None) -> MagicMock:
    """Kubectl double recording every call; fail_on raises for matching run args."""
    kubectl = MagicMock()

    def run(*args, **kwargs):
        if fail_on and fail_on in args:
            raise TransientInfrastructureError(message=f"{fail_on} failed")
        return ""

    kubectl.run.side_effect = run
    return kubectl


@pytest.mark.cli_unit
class TestManifests:
    """Tests for the manifest builders."""

    def test_install_url(self):
        """Test the upstream manifest URL for a version."""
        assert install_url("v3.1.10") == (
            "https://raw.githubusercontent.com/argoproj/argo-cd/v3.1.10/manifests/install.yaml"
        )

    def test_ca_secret(self):
        """Test the CA secret carries the PEM."""
        secret = yaml.safe_load(ca_secret_manifest(ArgoCDConfig(ca_cert_pem="PEM\n")))
        assert secret["metadata"] == {"name": "kinder-ca-cert", "namespace": "argocd"}
        assert secret["stringData"] == {"ca.crt": "PEM\n"}

    def test_repo_secret_http(self):
        """Test HTTP credentials are base64 encoded."""
        config = ArgoCDConfig(
            repo_url=REPO, credential_type="http", http_username="bot", http_password="s3cret"
        )
        secret = yaml.safe_load(repo_secret_manifest(config))
        assert secret["metadata"]["name"] == "repo-org-gitops"
        assert secret["metadata"]["labels"] == {"argocd.argoproj.io/secret-type": "repository"}
        assert base64.b64decode(secret["data"]["password"]) == b"s3cret"
        assert base64.b64decode(secret["data"]["url"]).decode() == REPO

    def test_repo_secret_ssh(self):
        """Test an SSH key is included."""
        config = ArgoCDConfig(repo_url="git@github.com:org/gitops.git", credential_type="ssh", ssh_private_key="KEY")
        secret = yaml.safe_load(repo_secret_manifest(config))
        assert base64.b64decode(secret["data"]["sshPrivateKey"]) == b"KEY"

    def test_repo_secret_missing_credentials(self):
        """Test missing HTTP password is rejected."""
        config = ArgoCDConfig(repo_url=REPO, credential_type="http", http_username="bot")
        with pytest.raises(ValidationError, match="username and password"):
            repo_secret_manifest(config)

    def test_application(self):
        """Test the initial Application."""
        config = ArgoCDConfig(repo_url=REPO, repo_path="apps", app_name="Root", target_namespace="apps")
        app = yaml.safe_load(application_manifest(config))
        assert app["metadata"]["name"] == "root"
        assert app["metadata"]["finalizers"] == ["resources-finalizer.argocd.argoproj.io"]
        assert app["spec"]["source"] == {"repoURL": REPO, "targetRevision": "main", "path": "apps"}
        assert app["spec"]["destination"]["namespace"] == "apps"
        assert app["spec"]["syncPolicy"]["automated"] == {"prune": True, "selfHeal": True}
        assert app["spec"]["syncPolicy"]["syncOptions"] == ["CreateNamespace=true"]

    def test_application_rejects_injection(self):
        """Test a branch with a newline never reaches the manifest."""
        config = ArgoCDConfig(repo_url=REPO, repo_branch="main\nmalicious: true")
        with pytest.raises(ValidationError):
            application_manifest(config)

    def test_kinder_apps(self):
        """Test the trust and issuer Applications pull from the registry."""
        docs = list(yaml.safe_load_all(kinder_apps_manifest(ArgoCDConfig(domain="d.test", port="8443"))))
        assert [d["metadata"]["name"] for d in docs] == ["kinder-trust-bundle", "kinder-cert-issuer"]
        assert docs[0]["spec"]["source"]["repoURL"] == "registry.d.test:8443/trust-manager-bundle"
        assert docs[1]["spec"]["destination"]["namespace"] == "cert-manager"

    def test_repo_server_patch(self):
        """Test the patch mounts the CA secret and sets SSL_CERT_FILE."""
        spec = json.loads(repo_server_patch())["spec"]["template"]["spec"]
        assert spec["volumes"][0]["secret"]["secretName"] == "kinder-ca-cert"
        container = spec["containers"][0]
        assert container["name"] == "argocd-repo-server"
        assert container["env"][0]["name"] == "SSL_CERT_FILE"

    def test_generate_manifests(self):
        """Test the combined stream with every optional document."""
        config = ArgoCDConfig(
            ca_cert_pem="PEM",
            repo_url=REPO,
            credential_type="http",
            http_username="u",
            http_password="p",
            include_kinder_apps=True,
        )
        text = generate_manifests(config)
        assert text.startswith("# Install: kubectl apply -n argocd -f https://")
        kinds = [d["kind"] for d in yaml.safe_load_all(text) if d]
        assert kinds == ["Namespace", "Secret", "Secret", "Application", "Application", "Application"]

    def test_ssh_key_path(self, tmp_path):
        """Test the SSH key is read from disk."""
        key = tmp_path / "id_ed25519"
        key.write_text("KEY")
        config = ArgoCDConfig(ssh_private_key_path=str(key))
        config.load_ssh_key()
        assert config.ssh_private_key == "KEY"

    def test_ssh_key_missing(self, tmp_path):
        """Test an unreadable key file is a ConfigurationError."""
        with pytest.raises(ConfigurationError):
            ArgoCDConfig(ssh_private_key_path=str(tmp_path / "missing")).load_ssh_key()


@pytest.mark.cli_unit
class TestArgoCDInstaller:
    """Tests for ArgoCDInstaller."""

    def test_unsupported_credential_type(self):
        """Test an unknown credential type fails at construction."""
        with pytest.raises(ValidationError, match="unsupported credential type"):
            ArgoCDInstaller(ArgoCDConfig(credential_type="token"), MagicMock())

    def test_install_order(self):
        """Test the install steps run in order."""
        kubectl = fake_kubectl()
        config = ArgoCDConfig(ca_cert_pem="PEM", repo_url=REPO, include_kinder_apps=True)
        progress = []
        ArgoCDInstaller(config, kubectl).install(progress=progress.append)

        assert progress == [
            "Creating namespace",
            "Installing ArgoCD v3.1.10",
            "Disabling authentication",
            "Waiting for rollout",
            "Mounting CA certificate",
            "Creating application root",
            "Creating kinder applications",
        ]
        kubectl.apply_url.assert_called_once_with(install_url("v3.1.10"), "argocd")
        patched = [c.args[1] for c in kubectl.patch.call_args_list]
        assert patched == ["argocd-cmd-params-cm", "argocd-cm", "argocd-rbac-cm", "argocd-repo-server"]

    def test_rollout_failure_tolerated(self):
        """Test a failed rollout wait does not abort the install."""
        kubectl = fake_kubectl(fail_on="rollout")
        ArgoCDInstaller(ArgoCDConfig(), kubectl).install()
        assert kubectl.run.call_count == 3

    def test_apply_failure_wrapped(self):
        """Test a failing step names the step in the error."""
        kubectl = fake_kubectl()
        kubectl.apply_url.side_effect = TransientInfrastructureError(message="connection refused")
        with pytest.raises(TransientInfrastructureError, match="installing argocd v3.1.10: connection refused") as exc_info:
            ArgoCDInstaller(ArgoCDConfig(), kubectl).install()
        assert exc_info.value.step == "argocd"

    def test_manifest_url_applied_last(self):
        """Test an extra manifest URL is applied after everything else."""
        kubectl = fake_kubectl()
        ArgoCDInstaller(ArgoCDConfig(manifest_url="https://example.com/root.yaml"), kubectl).install()
        assert kubectl.apply_url.call_args_list[-1].args == ("https://example.com/root.yaml",)

    def test_bad_manifest_url(self):
        """Test a non-http manifest URL is rejected before any kubectl call."""
        kubectl = fake_kubectl()
        with pytest.raises(ValidationError):
            ArgoCDInstaller(ArgoCDConfig(manifest_url="file:///etc/passwd"), kubectl).install()
        kubectl.apply.assert_not_called()

    def test_admin_password(self):
        """Test the initial password is decoded."""
        kubectl = MagicMock()
        kubectl.run.return_value = base64.b64encode(b"hunter2").decode()
        assert ArgoCDInstaller(ArgoCDConfig(), kubectl).admin_password() == "hunter2"

    def test_status_not_installed(self):
        """Test a missing namespace means not installed."""
        kubectl = MagicMock()
        kubectl.succeeds.return_value = False
        status = ArgoCDInstaller(ArgoCDConfig(), kubectl).status()
        assert status.installed is False
        assert "not found" in status.detail

    def test_status_healthy(self):
        """Test replicas and version are parsed."""
        kubectl = MagicMock()
        kubectl.succeeds.return_value = True
        kubectl.run.side_effect = ["1/1", "quay.io/argoproj/argocd:v3.1.10"]
        status = ArgoCDInstaller(ArgoCDConfig(), kubectl).status()
        assert status.healthy
        assert (status.available_replicas, status.replicas, status.version) == (1, 1, "v3.1.10")

    def test_status_degraded(self):
        """Test missing available replicas is not healthy."""
        kubectl = MagicMock()
        kubectl.succeeds.return_value = True
        kubectl.run.side_effect = ["/1", ""]
        status = ArgoCDInstaller(ArgoCDConfig(), kubectl).status()
        assert status.installed and not status.healthy
