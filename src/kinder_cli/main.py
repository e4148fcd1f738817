"""CLI main entry point."""

import click

from . import __version__
from .bootstrap import LazyClient
from .commands.argocd import argocd
from .commands.ca import ca
from .commands.config import config
from .commands.kind import kind
from .commands.lifecycle import clean, restart, start, stop
from .commands.network import container, network
from .commands.status import diagnostics, status
from .commands.trust import cert_issuer, trust_bundle
from .shared.logging import configure_logging, level_for_verbosity


@click.group()
@click.option("-c", "--config", "config_path", type=click.Path(dir_okay=False), help="Config file path")
@click.option("--data-dir", type=click.Path(file_okay=False), help="Directory for CA and service data")
@click.option("-v", "--verbose", count=True, help="Increase verbosity (-v info, -vv debug)")
@click.option("--log-json", is_flag=True, help="Emit logs as JSON lines")
@click.option("--log-file", type=click.Path(dir_okay=False), help="Write logs to a file instead of stderr")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: str | None,
    data_dir: str | None,
    verbose: int,
    log_json: bool,
    log_file: str | None,
) -> None:
    """kinder - local Kubernetes with its own CA, registry and GitOps."""
    configure_logging(level_for_verbosity(verbose), log_file=log_file, json_output=log_json)

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["overrides"] = {"dataDir": data_dir}
    ctx.obj["verbose"] = verbose
    # Created on first use, so commands that never touch containers work without a daemon
    runtime = ctx.obj.setdefault("runtime", LazyClient())
    ctx.call_on_close(runtime.close)


@cli.command()
def version() -> None:
    """Show version."""
    click.echo(f"kinder {__version__}")


for command in (
    start,
    stop,
    restart,
    clean,
    status,
    diagnostics,
    ca,
    network,
    container,
    kind,
    config,
    trust_bundle,
    cert_issuer,
    argocd,
):
    cli.add_command(command)


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
