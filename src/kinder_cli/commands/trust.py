"""trust-bundle and cert-issuer command groups."""

from __future__ import annotations

from pathlib import Path

import click

from ..bootstrap import (
    IssuerConfig,
    RegistryPusher,
    TrustPublisher,
    fetch_public_bundle,
    issuer_manifests,
    save_manifests,
    trust_manager_manifests,
)
from ..bootstrap.trust import DEFAULT_REGISTRY, ISSUER_IMAGE, TRUST_BUNDLE_IMAGE, TRUST_MANAGER_IMAGE
from ..config import KinderConfig
from ..errors import ConfigurationError
from .common import get_config, handle_errors

registry_option = click.option(
    "--registry", default=DEFAULT_REGISTRY, show_default=True, help="Registry to push to"
)


def _root_pem(config: KinderConfig) -> bytes:
    path = config.ca_cert_path
    if not path.exists():
        raise ConfigurationError(message=f"CA certificate not found at {path} - run 'kinder start' first")
    return path.read_bytes()


def _write_or_print(files: dict[str, bytes], output: str | None) -> None:
    if output:
        directory = save_manifests(output, files)
        for name in files:
            click.echo(f"✓ Wrote {directory / name}")
        return
    for name, content in files.items():
        click.echo(f"# {name}")
        click.echo(content.decode(), nl=False)
        click.echo("---")


@click.group("trust-bundle")
def trust_bundle():
    """Publish the CA trust bundle as OCI artifacts."""


@trust_bundle.command("push")
@registry_option
@click.option("--no-public", is_flag=True, help="Only include the kinder root CA")
@click.option("--target-namespace", help="Restrict the trust-manager Bundle to one namespace")
@click.option("--save-local", type=click.Path(file_okay=False), help="Also write the manifests here")
@click.pass_context
@handle_errors
def trust_bundle_push(ctx, registry, no_public, target_namespace, save_local):
    """Push trust-bundle and trust-manager-bundle to the registry."""
    config = get_config(ctx)
    _root_pem(config)
    publisher = TrustPublisher(RegistryPusher(), registry=registry)
    bundle = publisher.publish_trust_bundle(config.ca_cert_path, include_public=not no_public)
    click.echo(f"✓ Pushed {bundle.reference} ({bundle.digest})")
    manager = publisher.publish_trust_manager_bundle(
        config.ca_cert_path,
        include_public=not no_public,
        target_namespace=target_namespace,
        save_to=save_local,
    )
    click.echo(f"✓ Pushed {manager.reference} ({manager.digest})")
    if save_local:
        click.echo(f"✓ Saved manifests to {Path(save_local)}")


@trust_bundle.command("digest")
@registry_option
@click.option(
    "--image",
    type=click.Choice([TRUST_BUNDLE_IMAGE, TRUST_MANAGER_IMAGE, ISSUER_IMAGE]),
    default=TRUST_BUNDLE_IMAGE,
    show_default=True,
)
@handle_errors
def trust_bundle_digest(registry, image):
    """Print the digest of a published artifact."""
    publisher = TrustPublisher(RegistryPusher(), registry=registry)
    click.echo(publisher.digest(image))


@trust_bundle.command("manifests")
@click.option("-o", "--output", type=click.Path(file_okay=False), help="Directory to write into")
@click.option("--target-namespace", help="Restrict the Bundle to one namespace")
@click.option("--no-public", is_flag=True, help="Only include the kinder root CA")
@click.pass_context
@handle_errors
def trust_bundle_manifests(ctx, output, target_namespace, no_public):
    """Show the trust-manager manifests without pushing."""
    config = get_config(ctx)
    root = _root_pem(config)
    public = None if no_public else fetch_public_bundle()
    _write_or_print(trust_manager_manifests(root, public, target_namespace=target_namespace), output)


def issuer_options(func):
    """Flags describing the ClusterIssuer."""
    options = [
        click.option("--issuer-name", default="kinder-ca", show_default=True),
        click.option("--email", default="admin@localhost", show_default=True, help="ACME account email"),
        click.option("--acme-server", help="ACME directory URL (defaults to the Step CA endpoint)"),
        click.option("--ingress-class", default="traefik", show_default=True, help="HTTP-01 ingress class"),
        click.option("--dns01-provider", help="Use a DNS-01 solver with this provider"),
        click.option("--include-example", is_flag=True, help="Add an example Certificate"),
        click.option("--example-domain", help="Domain for the example Certificate"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _issuer_config(config: KinderConfig, **kwargs) -> IssuerConfig:
    return IssuerConfig(
        domain=config.domain,
        port=str(config.traefik_port),
        issuer_name=kwargs["issuer_name"],
        email=kwargs["email"],
        ingress_class=kwargs["ingress_class"],
        acme_server_url=kwargs["acme_server"],
        dns01_provider=kwargs["dns01_provider"],
        include_example_cert=kwargs["include_example"],
        example_cert_domain=kwargs["example_domain"],
    )


@click.group("cert-issuer")
def cert_issuer():
    """Publish the cert-manager ClusterIssuer as an OCI artifact."""


@cert_issuer.command("push")
@registry_option
@issuer_options
@click.pass_context
@handle_errors
def cert_issuer_push(ctx, registry, **kwargs):
    """Push cert-manager-issuer to the registry."""
    config = get_config(ctx)
    _root_pem(config)
    publisher = TrustPublisher(RegistryPusher(), registry=registry)
    result = publisher.publish_issuer(config.ca_cert_path, _issuer_config(config, **kwargs))
    click.echo(f"✓ Pushed {result.reference} ({result.digest})")


@cert_issuer.command("manifests")
@click.option("-o", "--output", type=click.Path(file_okay=False), help="Directory to write into")
@issuer_options
@click.pass_context
@handle_errors
def cert_issuer_manifests(ctx, output, **kwargs):
    """Show the ClusterIssuer manifests without pushing."""
    config = get_config(ctx)
    files = issuer_manifests(_issuer_config(config, **kwargs), _root_pem(config))
    _write_or_print(files, output)
