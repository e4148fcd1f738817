"""Integration tests for the lifecycle commands.

The CLI runs in-process through CliRunner with the runtime client
replaced by the in-memory fake from conftest.
"""

import subprocess
import sys
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from kinder_cli.bootstrap import EnvironmentState
from kinder_cli.errors import PartialFailure, StartAborted, StepFailure, TransientInfrastructureError
from kinder_cli.main import cli


@pytest.fixture
def runner():
    """Create CLI runner."""
    return CliRunner()


@pytest.fixture
def invoke(runner, fake_runtime, tmp_path):
    """Invoke the CLI against the fake runtime with data under tmp_path."""

    def _invoke(*args):
        return runner.invoke(
            cli,
            ["--data-dir", str(tmp_path / "kinder"), *args],
            obj={"runtime": fake_runtime},
        )

    return _invoke


@pytest.mark.cli_integration
class TestBasics:
    """Version and help."""

    def test_version(self, invoke):
        """Test the version command."""
        result = invoke("version")
        assert result.exit_code == 0
        assert result.output.startswith("kinder ")

    def test_help_lists_groups(self, runner):
        """Test every command group is registered."""
        result = runner.invoke(cli, ["--help"], obj={})
        assert result.exit_code == 0
        for name in ("start", "stop", "ca", "trust-bundle", "cert-issuer", "argocd", "diagnostics"):
            assert name in result.output

    def test_module_entry_point(self):
        """Test python -m kinder_cli runs."""
        result = subprocess.run(
            [sys.executable, "-m", "kinder_cli", "version"],
            capture_output=True,
            text=True,
        )
        assert result.returncode == 0
        assert "kinder" in result.stdout

    def test_runtime_closed(self, invoke, fake_client):
        """Test the runtime client is closed when the command ends."""
        invoke("version")
        assert fake_client.closed


@pytest.mark.cli_integration
class TestStart:
    """kinder start."""

    @pytest.fixture
    def for_client(self):
        with patch("kinder_cli.commands.lifecycle.Orchestrator.for_client") as mock_for:
            mock_for.return_value.start.return_value = EnvironmentState.ALL_READY
            yield mock_for

    @pytest.fixture
    def orchestrator(self, for_client):
        return for_client.return_value

    def test_success_prints_endpoints(self, invoke, orchestrator):
        """Test a successful start prints the endpoints and usage hints."""
        result = invoke("start")
        assert result.exit_code == 0
        assert "✓ kinder is ready" in result.output
        assert "Zot Registry" in result.output
        assert "kubectl port-forward svc/argocd-server" in result.output

    def test_flags_reach_config(self, invoke, for_client):
        """Test start flags override the configuration."""
        invoke("start", "--domain", "dev.test", "--workers", "2", "--no-public")
        config = for_client.call_args.args[0]
        assert config.domain == "dev.test"
        assert config.kind_workers == 2
        assert for_client.call_args.kwargs["include_public_bundle"] is False

    def test_abort(self, invoke, orchestrator):
        """Test an aborted start names the step and exits 1."""
        cause = TransientInfrastructureError(message="registry not ready", step="zot")
        orchestrator.start.side_effect = StartAborted(step="zot", cause=cause)
        result = invoke("start")
        assert result.exit_code == 1
        assert "✗ Start aborted at zot: registry not ready" in result.output
        assert "kinder is ready" not in result.output

    def test_invalid_cidr(self, invoke, orchestrator):
        """Test a bad CIDR fails before anything runs."""
        result = invoke("start", "--cidr", "not-a-cidr")
        assert result.exit_code == 1
        assert "Invalid network CIDR" in result.output
        orchestrator.start.assert_not_called()

    def test_restart(self, invoke, orchestrator):
        """Test restart runs the orchestrator restart."""
        result = invoke("restart")
        assert result.exit_code == 0
        orchestrator.restart.assert_called_once()


@pytest.mark.cli_integration
class TestStop:
    """kinder stop against the fake runtime."""

    def test_stop_removes_containers_and_network(self, invoke, fake_client):
        """Test stop removes every service container and the network."""
        fake_client.networks.add("kinder")
        for name in ("kinder-step-ca", "kinder-zot", "kinder-gatus", "kinder-traefik"):
            fake_client.containers.add(name)

        with patch("kinder_cli.bootstrap.orchestrator.KindProvisioner") as mock_kind_class:
            mock_kind_class.return_value.exists.return_value = False
            result = invoke("stop")

        assert result.exit_code == 0, result.output
        assert "✓ All services stopped" in result.output
        assert fake_client.containers.items == {}
        assert fake_client.networks.items == {}

    def test_keep_network(self, invoke, fake_client):
        """Test --keep-network leaves the network."""
        fake_client.networks.add("kinder")
        with patch("kinder_cli.bootstrap.orchestrator.KindProvisioner") as mock_kind_class:
            mock_kind_class.return_value.exists.return_value = False
            result = invoke("stop", "--keep-network")
        assert result.exit_code == 0
        assert "kinder" in fake_client.networks.items

    def test_partial_failure(self, invoke, fake_client):
        """Test a failed step is listed and the exit code is 1."""
        fake_client.containers.add("kinder-zot", fail_remove=True)
        fake_client.containers.add("kinder-step-ca")

        with patch("kinder_cli.bootstrap.orchestrator.KindProvisioner") as mock_kind_class:
            mock_kind_class.return_value.exists.return_value = False
            result = invoke("stop")

        assert result.exit_code == 1
        assert "1 step(s) failed" in result.output
        assert "✗ zot:" in result.output
        # step-ca is torn down after zot
        assert "kinder-step-ca" not in fake_client.containers.items

    def test_partial_failure_lists_every_step(self, invoke):
        """Test every failure is printed on its own line."""
        failure = PartialFailure(
            failures=[
                StepFailure(step="kind", error=TransientInfrastructureError(message="kind missing")),
                StepFailure(step="network", error=TransientInfrastructureError(message="in use")),
            ]
        )
        orchestrator = MagicMock()
        orchestrator.stop.side_effect = failure
        with patch("kinder_cli.commands.lifecycle.Orchestrator.for_client", return_value=orchestrator):
            result = invoke("stop")
        assert result.exit_code == 1
        assert "  ✗ kind: kind missing" in result.output
        assert "  ✗ network: in use" in result.output


@pytest.mark.cli_integration
class TestClean:
    """kinder clean."""

    def test_refuses_with_containers(self, invoke, fake_client, tmp_path):
        """Test clean refuses while service containers exist."""
        (tmp_path / "kinder").mkdir()
        fake_client.containers.add("kinder-traefik")
        result = invoke("clean")
        assert result.exit_code == 1
        assert "Cannot clean while containers are running" in result.output
        assert "kinder-traefik" in result.output
        assert (tmp_path / "kinder").exists()

    def test_removes_data(self, invoke, tmp_path):
        """Test clean removes the data directory."""
        (tmp_path / "kinder" / "zot").mkdir(parents=True)
        result = invoke("clean")
        assert result.exit_code == 0
        assert not (tmp_path / "kinder").exists()

    def test_nothing_to_clean(self, invoke):
        """Test clean without data is a no-op."""
        result = invoke("clean")
        assert result.exit_code == 0
        assert "No kinder data found" in result.output
