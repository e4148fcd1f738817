"""ca command group: generate and inspect the root CA."""

from __future__ import annotations

import click

from ..bootstrap import describe_certificate, generate_root
from ..errors import ConfigurationError
from ..shared.paths import ensure_data_dir
from .common import get_config, handle_errors


@click.group()
def ca():
    """Manage the kinder root CA."""


@ca.command("generate")
@click.option("--cert", help="Path to write the CA certificate")
@click.option("--key", help="Path to write the CA private key")
@click.option("--domain", help="Base domain the CA may issue for")
@click.option("--force", is_flag=True, help="Replace an existing CA")
@click.pass_context
@handle_errors
def generate(ctx, cert, key, domain, force):
    """Generate a new name-constrained root CA."""
    config = get_config(ctx, {"certPath": cert, "keyPath": key, "domain": domain})
    cert_path, key_path = config.ca_cert_path, config.ca_key_path

    if (cert_path.exists() or key_path.exists()) and not force:
        raise ConfigurationError(
            message=f"CA already exists at {cert_path} (use --force to replace it)",
            details={"cert_path": str(cert_path)},
        )

    ensure_data_dir(cert_path.parent)
    if key_path.parent != cert_path.parent:
        ensure_data_dir(key_path.parent)
    certificate, _ = generate_root(cert_path, key_path, config.domain, app_name=config.app_name)

    click.echo("✓ Root CA generated")
    click.echo(f"  Certificate: {cert_path}")
    click.echo(f"  Private key: {key_path}")
    click.echo(f"  Expires:     {certificate.not_valid_after_utc:%Y-%m-%d}")


@ca.command("print")
@click.option("--cert", help="Path to the CA certificate")
@click.option("--key", help="Path to the CA private key")
@click.option("--pem", is_flag=True, help="Print the PEM instead of a summary")
@click.pass_context
@handle_errors
def print_ca(ctx, cert, key, pem):
    """Show details of the root CA."""
    config = get_config(ctx, {"certPath": cert, "keyPath": key})
    cert_path = config.ca_cert_path
    if not cert_path.exists():
        raise ConfigurationError(message=f"CA certificate not found at {cert_path} - run 'kinder start' first")

    if pem:
        click.echo(cert_path.read_text(), nl=False)
        return

    info = describe_certificate(cert_path, config.ca_key_path)
    click.echo(f"Certificate: {info.path}")
    click.echo(f"  Subject:      CN={info.common_name}, O={info.organization}")
    click.echo(f"  Serial:       {info.serial_hex}")
    click.echo(f"  Key:          {info.key_type}")
    if info.key_format:
        click.echo(f"  Key format:   {info.key_format}")
    click.echo(f"  CA:           {'yes' if info.is_ca else 'no'}")
    click.echo(f"  Not before:   {info.not_before:%Y-%m-%d %H:%M:%S} UTC")
    click.echo(f"  Not after:    {info.not_after:%Y-%m-%d %H:%M:%S} UTC")
    if info.expired:
        click.echo("  Status:       EXPIRED")
    else:
        click.echo(f"  Status:       valid ({info.days_remaining()} days remaining)")
    if info.key_usages:
        click.echo(f"  Key usage:    {', '.join(info.key_usages)}")
    if info.extended_key_usages:
        click.echo(f"  Ext. usage:   {', '.join(info.extended_key_usages)}")
    if info.permitted_dns or info.permitted_ips:
        critical = " (critical)" if info.name_constraints_critical else ""
        click.echo(f"  Name constraints{critical}:")
        for name in info.permitted_dns:
            click.echo(f"    DNS: {name}")
        for net in info.permitted_ips:
            click.echo(f"    IP:  {net}")
