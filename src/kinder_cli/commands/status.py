"""status and diagnostics commands."""

from __future__ import annotations

import sys

import click
from rich.console import Console
from rich.table import Table

from ..bootstrap import (
    ContainerManager,
    Diagnostics,
    KindProvisioner,
    NetworkManager,
    StatusReport,
    StatusReporter,
)
from .common import get_client, get_config, handle_errors

CA_STYLES = {
    "valid": "green",
    "expiring": "yellow",
    "not_yet_valid": "yellow",
    "expired": "red",
    "invalid": "red",
    "missing": "dim",
}


def render_status(report: StatusReport, console: Console) -> None:
    console.print("[bold]kinder status[/bold]\n")

    style = CA_STYLES.get(report.ca.state, "")
    console.print("[bold]CA Certificate[/bold]")
    console.print(f"  [{style}]{report.ca.summary}[/{style}]")
    console.print(f"  Path: {report.ca.path}\n")

    console.print("[bold]Network[/bold]")
    if report.network_id:
        console.print(f"  [green]●[/green] {report.network_name} (ID: {report.network_id})\n")
    else:
        console.print(f"  [dim]○ {report.network_name} (not created)[/dim]\n")

    table = Table(title="Containers", title_justify="left", show_edge=False)
    table.add_column("Service")
    table.add_column("Container")
    table.add_column("State")
    table.add_column("Uptime")
    for container in report.containers:
        state = f"[green]{container.status}[/green]" if container.exists else f"[dim]{container.status}[/dim]"
        table.add_row(container.display, container.name, state, container.uptime or "")
    console.print(table)
    console.print()

    cluster = report.cluster
    console.print("[bold]Kind Cluster[/bold]")
    if cluster.error:
        console.print(f"  [red]✗ Error checking cluster: {cluster.error}[/red]")
    elif not cluster.exists:
        console.print(f"  [dim]○ {cluster.name} (not created)[/dim]")
    else:
        nodes = f"{cluster.control_planes} control-plane"
        if cluster.workers:
            nodes += f", {cluster.workers} worker"
        console.print(f"  [green]●[/green] {cluster.name} ({nodes})")
        for role, state in cluster.nodes.items():
            console.print(f"    {role:<20} {state}")
    console.print()

    console.print("[bold]ArgoCD[/bold]")
    console.print(f"  {report.argocd}\n")

    console.print("[bold]Endpoints[/bold]")
    if not report.endpoints:
        console.print("  [dim]○ Services not running[/dim]")
    for name, url in report.endpoints.items():
        console.print(f"  {name:<18} {url}")


@click.command()
@click.pass_context
@handle_errors
def status(ctx):
    """Show status of kinder components."""
    config = get_config(ctx)
    client = get_client(ctx)
    reporter = StatusReporter(
        config,
        ContainerManager(client),
        NetworkManager(client),
        KindProvisioner(),
    )
    render_status(reporter.collect(), Console())


@click.command()
@click.option("--skip-e2e", is_flag=True, help="Skip the registry to cluster smoke test")
@click.pass_context
@handle_errors
def diagnostics(ctx, skip_e2e):
    """Run diagnostics to verify the kinder environment."""
    config = get_config(ctx)
    click.echo("Running kinder diagnostics...\n")
    results = Diagnostics(config, get_client(ctx)).run(end_to_end=not skip_e2e)

    for result in results:
        if result.skipped:
            click.echo(f"  • {result.name}: skipped ({result.detail})")
        elif result.passed:
            click.echo(f"  ✓ {result.name}: {result.detail}")
        else:
            click.echo(f"  ✗ {result.name}: {result.detail}")

    failed = [r for r in results if not r.passed]
    if failed:
        click.echo(f"\n✗ {len(failed)} diagnostic(s) failed", err=True)
        click.echo("  Run 'kinder start' to ensure all services are running", err=True)
        sys.exit(1)
    click.echo("\n✓ All diagnostics passed")
