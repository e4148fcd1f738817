"""network and container command groups."""

from __future__ import annotations

import click

from ..bootstrap import ContainerManager, NetworkManager, NetworkSpec, build_services
from .common import get_client, get_config, handle_errors

SERVICES = ("step-ca", "zot", "gatus", "traefik")


@click.group()
def network():
    """Manage the kinder container network."""


@network.command("create")
@click.option("--name", help="Network name")
@click.option("--cidr", help="Network CIDR")
@click.pass_context
@handle_errors
def network_create(ctx, name, cidr):
    """Create the network (no-op when it already exists)."""
    config = get_config(ctx, {"network.name": name, "network.cidr": cidr})
    config.validate()
    spec = NetworkSpec(
        name=config.effective_network_name,
        cidr=config.network_cidr,
        bridge_name=config.effective_bridge_name,
    )
    network_id, created = NetworkManager(get_client(ctx)).ensure(spec)
    if created:
        click.echo(f"✓ Created network {spec.name} ({network_id[:12]}, {spec.cidr})")
    else:
        click.echo(f"• Network {spec.name} already exists ({network_id[:12]})")


@network.command("remove")
@click.option("--name", help="Network name")
@click.pass_context
@handle_errors
def network_remove(ctx, name):
    """Remove the network."""
    config = get_config(ctx, {"network.name": name})
    NetworkManager(get_client(ctx)).remove(config.effective_network_name)
    click.echo(f"✓ Removed network {config.effective_network_name}")


@click.group()
def container():
    """Start or stop a single service container."""


@container.command("start")
@click.argument("service", type=click.Choice(SERVICES))
@click.pass_context
@handle_errors
def container_start(ctx, service):
    """Start SERVICE (an existing container is reused)."""
    config = get_config(ctx)
    adapter = build_services(config)[service]
    container_id = adapter.start(ContainerManager(get_client(ctx)))
    click.echo(f"✓ Started {adapter.container_name} ({container_id[:12]})")


@container.command("stop")
@click.argument("service", type=click.Choice(SERVICES))
@click.pass_context
@handle_errors
def container_stop(ctx, service):
    """Stop and remove SERVICE."""
    config = get_config(ctx)
    adapter = build_services(config)[service]
    adapter.stop(ContainerManager(get_client(ctx)))
    click.echo(f"✓ Stopped {adapter.container_name}")
