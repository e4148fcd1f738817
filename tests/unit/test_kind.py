"""Unit tests for kind cluster provisioning."""

import os
import subprocess
from unittest.mock import MagicMock, patch

import pytest
import yaml

from kinder_cli.bootstrap import KindClusterSpec, KindProvisioner, build_cluster_config
from kinder_cli.bootstrap.kind import NETWORK_ENV_VAR
from kinder_cli.errors import TransientInfrastructureError


def completed(stdout="", returncode=0, stderr=""):
    return MagicMock(returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.mark.cli_unit
class TestBuildClusterConfig:
    """Tests for the kind Cluster document."""

    def test_minimal(self):
        """Test a cluster without CA or mirrors has one plain control-plane node."""
        config = build_cluster_config(KindClusterSpec(name="kinder", node_image="img", registry_host=None))
        assert config["kind"] == "Cluster"
        assert config["apiVersion"] == "kind.x-k8s.io/v1alpha4"
        assert config["nodes"] == [{"role": "control-plane"}]
        assert "containerdConfigPatches" not in config

    def test_workers_and_mounts(self, tmp_path):
        """Test every node mounts the CA and certs.d when mirroring."""
        ca = tmp_path / "ca.crt"
        ca.write_text("ROOT")
        spec = KindClusterSpec(
            name="kinder",
            node_image="img",
            ca_cert_path=ca,
            registry_mirrors={"ghcr.io": "http://zot:5000"},
            workers=2,
        )
        config = build_cluster_config(spec)

        assert [n["role"] for n in config["nodes"]] == ["control-plane", "worker", "worker"]
        mounts = config["nodes"][1]["extraMounts"]
        assert {"hostPath": str(ca), "containerPath": "/etc/ssl/certs/kinder-ca.crt", "readOnly": True} in mounts
        assert any(m["containerPath"] == "/etc/containerd/certs.d" for m in mounts)
        assert 'config_path = "/etc/containerd/certs.d"' in config["containerdConfigPatches"][0]
        assert (tmp_path / "certs.d" / "ghcr.io" / "hosts.toml").exists()


@pytest.mark.cli_unit
class TestChildEnv:
    """Tests for steering kind onto a network."""

    def test_custom_network(self, monkeypatch):
        """Test a non-default network is passed to the child only."""
        monkeypatch.delenv(NETWORK_ENV_VAR, raising=False)
        env = KindProvisioner.child_env("kinder")
        assert env[NETWORK_ENV_VAR] == "kinder"
        assert NETWORK_ENV_VAR not in os.environ

    def test_default_network(self, monkeypatch):
        """Test the variable is unset for the default kind network."""
        monkeypatch.setenv(NETWORK_ENV_VAR, "stale")
        env = KindProvisioner.child_env("kind")
        assert NETWORK_ENV_VAR not in env
        assert os.environ[NETWORK_ENV_VAR] == "stale"


@pytest.mark.cli_unit
class TestKindProvisioner:
    """Tests for KindProvisioner subprocess calls."""

    def test_list_clusters(self):
        """Test cluster names are parsed from kind get clusters."""
        with patch("subprocess.run", return_value=completed("kinder\nother\n")):
            assert KindProvisioner().list_clusters() == ["kinder", "other"]
            assert KindProvisioner().exists("kinder") is True

    def test_create(self, monkeypatch):
        """Test create pipes the config and sets the network in the child env."""
        monkeypatch.delenv(NETWORK_ENV_VAR, raising=False)
        with patch("subprocess.run", side_effect=[completed(""), completed("")]) as mock_run:
            KindProvisioner().create(KindClusterSpec(name="kinder", node_image="kindest/node:v1", network="kinder", registry_host=None))

        args, kwargs = mock_run.call_args
        assert args[0][:5] == ["kind", "create", "cluster", "--name", "kinder"]
        assert "--image" in args[0] and "kindest/node:v1" in args[0]
        assert yaml.safe_load(kwargs["input"])["name"] == "kinder"
        assert kwargs["env"][NETWORK_ENV_VAR] == "kinder"
        assert NETWORK_ENV_VAR not in os.environ

    def test_create_existing(self):
        """Test creating an existing cluster is refused."""
        with patch("subprocess.run", return_value=completed("kinder\n")):
            with pytest.raises(TransientInfrastructureError, match="already exists"):
                KindProvisioner().create(KindClusterSpec(name="kinder", node_image="img"))

    def test_failure_includes_stderr(self):
        """Test a non-zero exit reports stderr."""
        with patch("subprocess.run", return_value=completed(returncode=1, stderr="boom\n")):
            with pytest.raises(TransientInfrastructureError, match="boom") as exc_info:
                KindProvisioner().delete("kinder")
        assert exc_info.value.step == "kind"

    def test_not_installed(self):
        """Test a missing kind binary is reported."""
        with patch("subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(TransientInfrastructureError, match="Is kind installed"):
                KindProvisioner().list_clusters()

    def test_timeout(self):
        """Test a timeout is reported."""
        with patch("subprocess.run", side_effect=subprocess.TimeoutExpired("kind", 120)):
            with pytest.raises(TransientInfrastructureError, match="timed out"):
                KindProvisioner().list_clusters()

    def test_kubeconfig(self):
        """Test kubeconfig returns stdout."""
        with patch("subprocess.run", return_value=completed("apiVersion: v1\n")) as mock_run:
            assert KindProvisioner().kubeconfig("kinder") == "apiVersion: v1\n"
        assert mock_run.call_args.args[0] == ["kind", "get", "kubeconfig", "--name", "kinder"]

    def test_nodes(self, fake_client):
        """Test node containers are read from the runtime."""
        for name in ("kinder-control-plane", "kinder-worker", "kinder-worker2", "kinder-zot"):
            fake_client.containers.add(name)
        assert KindProvisioner().nodes(fake_client, "kinder") == [
            "kinder-control-plane",
            "kinder-worker",
            "kinder-worker2",
        ]
