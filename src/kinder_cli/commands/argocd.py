"""argocd command group."""

from __future__ import annotations

import click

from ..bootstrap import ArgoCDConfig, ArgoCDInstaller, generate_manifests, validate_git_url
from ..bootstrap.argocd import CREDENTIAL_TYPES
from ..config import KinderConfig
from ..errors import ConfigurationError
from .common import get_config, handle_errors


def argocd_options(func):
    """Flags shared by install and manifests."""
    options = [
        click.option("--version", "argocd_version", help="ArgoCD version to install"),
        click.option("--namespace", default="argocd", show_default=True),
        click.option("--repo-url", help="Git repository for the initial Application"),
        click.option("--repo-path", default=".", show_default=True, help="Path within the repository"),
        click.option("--repo-branch", default="main", show_default=True),
        click.option("--app-name", default="root", show_default=True, help="Initial Application name"),
        click.option("--target-namespace", default="default", show_default=True),
        click.option("--skip-app", is_flag=True, help="Do not create the initial Application"),
        click.option(
            "--credential-type",
            type=click.Choice(CREDENTIAL_TYPES),
            default="none",
            show_default=True,
        ),
        click.option("--username", help="HTTP username for the repository"),
        click.option("--password", help="HTTP password or token for the repository"),
        click.option("--ssh-key", type=click.Path(dir_okay=False), help="SSH private key for the repository"),
        click.option("--manifest-url", help="Extra manifest to apply after install"),
        click.option("--no-kinder-apps", is_flag=True, help="Skip the trust bundle and issuer Applications"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def build_argocd_config(config: KinderConfig, **kwargs) -> ArgoCDConfig:
    """ArgoCDConfig from the resolved config plus command flags."""
    if kwargs["repo_url"]:
        validate_git_url(kwargs["repo_url"])
    ca_pem = ""
    if config.ca_cert_path.exists():
        try:
            ca_pem = config.ca_cert_path.read_text()
        except OSError as e:
            raise ConfigurationError(message=f"Cannot read CA certificate: {e}") from e
    return ArgoCDConfig(
        version=kwargs["argocd_version"] or config.argocd_version,
        namespace=kwargs["namespace"],
        kube_context=config.kube_context,
        ca_cert_pem=ca_pem,
        manifest_url=kwargs["manifest_url"] or config.argocd_manifest_url or None,
        include_kinder_apps=not kwargs["no_kinder_apps"],
        domain=config.domain,
        port=str(config.traefik_port),
        repo_url=kwargs["repo_url"],
        repo_path=kwargs["repo_path"],
        repo_branch=kwargs["repo_branch"],
        app_name=kwargs["app_name"],
        target_namespace=kwargs["target_namespace"],
        skip_initial_app=kwargs["skip_app"],
        credential_type=kwargs["credential_type"],
        http_username=kwargs["username"],
        http_password=kwargs["password"],
        ssh_private_key_path=kwargs["ssh_key"],
    )


@click.group()
def argocd():
    """Install and inspect ArgoCD on the kind cluster."""


@argocd.command("install")
@argocd_options
@click.pass_context
@handle_errors
def argocd_install(ctx, **kwargs):
    """Install ArgoCD into the kinder cluster."""
    config = get_config(ctx)
    argocd_config = build_argocd_config(config, **kwargs)
    click.echo(f"Installing ArgoCD {argocd_config.version} (context {argocd_config.kube_context})...\n")
    ArgoCDInstaller(argocd_config).install(progress=lambda message: click.echo(f"  • {message}"))
    click.echo("\n✓ ArgoCD installed")
    click.echo(f"  kubectl port-forward svc/argocd-server -n {argocd_config.namespace} 8080:443")


@argocd.command("manifests")
@argocd_options
@click.pass_context
@handle_errors
def argocd_manifests(ctx, **kwargs):
    """Print the manifests install would apply."""
    config = get_config(ctx)
    click.echo(generate_manifests(build_argocd_config(config, **kwargs)), nl=False)


@argocd.command("password")
@click.option("--namespace", default="argocd", show_default=True)
@click.pass_context
@handle_errors
def argocd_password(ctx, namespace):
    """Print the initial admin password."""
    config = get_config(ctx)
    installer = ArgoCDInstaller(ArgoCDConfig(namespace=namespace, kube_context=config.kube_context))
    click.echo(installer.admin_password())
