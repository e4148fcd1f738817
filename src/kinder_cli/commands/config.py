"""config command group."""

from __future__ import annotations

import json
from pathlib import Path

import click
import yaml

from ..config import CONFIG_KEYS, env_var_for, get_config_path, init_config, to_file_dict
from .common import get_config, handle_errors


@click.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option("--yaml", "yaml_output", is_flag=True, help="Output as config.yaml")
@click.pass_context
@handle_errors
def config_show(ctx: click.Context, json_output: bool, yaml_output: bool) -> None:
    """Show the resolved configuration and where each value came from."""
    cfg = get_config(ctx)

    if yaml_output:
        click.echo(yaml.safe_dump(to_file_dict(cfg), default_flow_style=False, sort_keys=False), nl=False)
        return

    rows = []
    for key, attr in CONFIG_KEYS.items():
        value = getattr(cfg, attr)
        if isinstance(value, list):
            value = ", ".join(value)
        rows.append({"key": key, "value": value, "source": cfg.get_source(key), "env": env_var_for(key)})

    if json_output:
        click.echo(json.dumps(rows, indent=2, default=str))
        return

    path = ctx.obj.get("config_path") or get_config_path()
    click.echo("kinder configuration")
    click.echo(f"File: {path}{'' if Path(path).exists() else ' (not found)'}\n")
    width = max(len(row["key"]) for row in rows)
    for row in rows:
        value = row["value"] if row["value"] not in (None, "") else "-"
        click.echo(f"  {row['key']:<{width}}  {value}  [{row['source']}]")
    click.echo("\nDerived:")
    click.echo(f"  data path      {cfg.data_path}")
    click.echo(f"  CA certificate {cfg.ca_cert_path}")
    click.echo(f"  network        {cfg.effective_network_name}")
    click.echo(f"  kube context   {cfg.kube_context}")


@config.command("path")
@click.pass_context
def config_path(ctx: click.Context) -> None:
    """Print the config file path."""
    click.echo(ctx.obj.get("config_path") or get_config_path())


@config.command("init")
@click.option("--force", is_flag=True, help="Overwrite an existing file")
@click.pass_context
@handle_errors
def config_init(ctx: click.Context, force: bool) -> None:
    """Write a config file populated with defaults."""
    explicit = ctx.obj.get("config_path")
    path = init_config(Path(explicit) if explicit else None, force=force)
    click.echo(f"✓ Wrote {path}")
