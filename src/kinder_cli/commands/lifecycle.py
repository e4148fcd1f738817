"""start, stop, restart and clean.

These commands drive the Orchestrator and print one line per step.
"""

from __future__ import annotations

import shutil
import sys

import click

from ..bootstrap import ContainerManager, Orchestrator, environment_endpoints, usage_hints
from ..config import KinderConfig
from ..errors import ConfigurationError, StartAborted
from .common import get_client, get_config, handle_errors, print_mapping, print_progress


def start_options(func):
    """Flags shared by start and restart, mapped onto config keys."""
    options = [
        click.option("--cert", help="Path to the CA certificate"),
        click.option("--key", help="Path to the CA private key"),
        click.option("--network", help="Docker network name"),
        click.option("--cidr", help="Network CIDR"),
        click.option("--traefik-port", help="Traefik localhost HTTPS port"),
        click.option("--domain", help="Base domain for services"),
        click.option("--workers", type=int, help="Number of kind worker nodes"),
        click.option("--node-image", help="kind node image"),
        click.option("--no-public", is_flag=True, help="Do not add the Mozilla CA bundle"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _overrides(cert, key, network, cidr, traefik_port, domain, workers, node_image) -> dict:
    return {
        "certPath": cert,
        "keyPath": key,
        "network.name": network,
        "network.cidr": cidr,
        "traefik.port": traefik_port,
        "domain": domain,
        "kind.workers": workers,
        "kind.nodeImage": node_image,
    }


def _orchestrator(ctx: click.Context, config: KinderConfig, no_public: bool = False) -> Orchestrator:
    return Orchestrator.for_client(
        config,
        get_client(ctx),
        on_progress=print_progress,
        include_public_bundle=not no_public,
    )


def _run_start(action) -> None:
    try:
        action()
    except StartAborted as e:
        click.echo(f"\n✗ Start aborted at {e.step}: {e.cause}", err=True)
        sys.exit(1)


def _print_summary(config: KinderConfig) -> None:
    click.echo("\n✓ kinder is ready")
    print_mapping("Endpoints", environment_endpoints(config))
    print_mapping("Usage", usage_hints(config))


@click.command()
@start_options
@click.pass_context
@handle_errors
def start(ctx, cert, key, network, cidr, traefik_port, domain, workers, node_image, no_public):
    """Start all kinder services."""
    config = get_config(ctx, _overrides(cert, key, network, cidr, traefik_port, domain, workers, node_image))
    click.echo(f"Starting {config.app_name}...\n")
    orchestrator = _orchestrator(ctx, config, no_public)
    _run_start(orchestrator.start)
    _print_summary(config)


@click.command()
@click.option("--network", help="Docker network name")
@click.option("--keep-network", is_flag=True, help="Leave the Docker network in place")
@click.pass_context
@handle_errors
def stop(ctx, network, keep_network):
    """Stop all kinder services."""
    config = get_config(ctx, {"network.name": network})
    click.echo(f"Stopping {config.app_name}...\n")
    _orchestrator(ctx, config).stop(remove_network=not keep_network)
    click.echo("\n✓ All services stopped")


@click.command()
@start_options
@click.pass_context
@handle_errors
def restart(ctx, cert, key, network, cidr, traefik_port, domain, workers, node_image, no_public):
    """Restart all kinder services (the network is kept)."""
    config = get_config(ctx, _overrides(cert, key, network, cidr, traefik_port, domain, workers, node_image))
    click.echo(f"Restarting {config.app_name}...\n")
    orchestrator = _orchestrator(ctx, config, no_public)
    _run_start(orchestrator.restart)
    _print_summary(config)


@click.command()
@click.pass_context
@handle_errors
def clean(ctx):
    """Remove all kinder data (CA, service data, generated configuration)."""
    config = get_config(ctx)
    manager = ContainerManager(get_client(ctx))
    running = [name for name in config.service_containers if manager.exists(name)]
    if running:
        click.echo("✗ Cannot clean while containers are running", err=True)
        for name in running:
            click.echo(f"  - {name}", err=True)
        click.echo("\nRun 'kinder stop' first.", err=True)
        sys.exit(1)

    data_dir = config.data_path
    if not data_dir.exists():
        click.echo("No kinder data found to clean")
        return
    try:
        shutil.rmtree(data_dir)
    except OSError as e:
        raise ConfigurationError(message=f"Failed to remove data directory {data_dir}: {e}") from e
    click.echo(f"✓ Removed {data_dir}")
