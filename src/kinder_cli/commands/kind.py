"""kind command group: manage the cluster on its own."""

from __future__ import annotations

import click

from ..bootstrap import (
    ContainerManager,
    KindProvisioner,
    NetworkManager,
    StatusReporter,
    cluster_spec,
)
from ..errors import ConfigurationError
from .common import get_client, get_config, handle_errors


@click.group()
def kind():
    """Manage the kind cluster."""


@kind.command("start")
@click.option("--workers", type=int, help="Number of worker nodes")
@click.option("--node-image", help="kind node image")
@click.pass_context
@handle_errors
def kind_start(ctx, workers, node_image):
    """Create the kind cluster on the kinder network."""
    config = get_config(ctx, {"kind.workers": workers, "kind.nodeImage": node_image})
    provisioner = KindProvisioner()
    if provisioner.exists(config.cluster_name):
        click.echo(f"• Cluster {config.cluster_name} already exists")
        return
    if not config.ca_cert_path.exists():
        raise ConfigurationError(
            message=f"CA certificate not found at {config.ca_cert_path} - run 'kinder start' first"
        )
    click.echo(f"Creating cluster {config.cluster_name}...")
    provisioner.create(cluster_spec(config))
    click.echo(f"✓ Cluster {config.cluster_name} created (context {config.kube_context})")


@kind.command("stop")
@click.pass_context
@handle_errors
def kind_stop(ctx):
    """Delete the kind cluster."""
    config = get_config(ctx)
    provisioner = KindProvisioner()
    if not provisioner.exists(config.cluster_name):
        click.echo(f"• Cluster {config.cluster_name} does not exist")
        return
    provisioner.delete(config.cluster_name)
    click.echo(f"✓ Cluster {config.cluster_name} deleted")


@kind.command("status")
@click.pass_context
@handle_errors
def kind_status(ctx):
    """Show cluster nodes and their state."""
    config = get_config(ctx)
    client = get_client(ctx)
    reporter = StatusReporter(config, ContainerManager(client), NetworkManager(client), KindProvisioner())
    cluster = reporter.cluster_status()
    if cluster.error:
        raise ConfigurationError(message=f"Error checking cluster: {cluster.error}")
    if not cluster.exists:
        click.echo(f"○ {cluster.name} (not created)")
        return
    click.echo(f"● {cluster.name} ({cluster.control_planes} control-plane, {cluster.workers} worker)")
    for role, state in cluster.nodes.items():
        click.echo(f"  {role:<20} {state}")


@kind.command("kubeconfig")
@click.pass_context
@handle_errors
def kind_kubeconfig(ctx):
    """Print the cluster kubeconfig."""
    config = get_config(ctx)
    click.echo(KindProvisioner().kubeconfig(config.cluster_name), nl=False)
