"""Validation of values interpolated into generated Kubernetes manifests."""

from __future__ import annotations

import re
from urllib.parse import urlparse

from ..errors import ValidationError

K8S_NAME_PATTERN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
K8S_NAME_MAX_LENGTH = 63
CONTROL_CHARS = ("\n", "\r", "\x00")


def sanitize_k8s_name(name: str) -> str:
    """Normalize a resource name to a valid DNS-1123 label.

    >>> sanitize_k8s_name("My-App")
    'my-app'
    """
    if not name:
        raise ValidationError(message="name cannot be empty")
    name = name.lower()[:K8S_NAME_MAX_LENGTH].rstrip("-")
    if not K8S_NAME_PATTERN.match(name):
        raise ValidationError(message=f"invalid name: {name!r}", details={"name": name})
    return name


def reject_control_chars(value: str) -> str:
    if any(c in value for c in CONTROL_CHARS):
        raise ValidationError(message=f"value contains control characters: {value!r}")
    return value


def validate_url(url: str) -> str:
    reject_control_chars(url)
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise ValidationError(message=f"scheme must be http or https: {url!r}")
    if not parsed.netloc:
        raise ValidationError(message=f"missing host: {url!r}")
    return url


def validate_git_url(url: str) -> str:
    """Accept http(s) URLs and scp-style git@host:path remotes."""
    if not url:
        raise ValidationError(message="empty URL")
    if url.startswith("git@"):
        return reject_control_chars(url)
    return validate_url(url)


def repo_name(url: str) -> str:
    """Derive a secret-friendly name from a repository URL.

    >>> repo_name("git@github.com:org/repo.git")
    'org-repo'
    """
    if url.startswith("git@") and ":" in url:
        path = url.split(":", 1)[1]
        return path.removesuffix(".git").replace("/", "-").lower()
    path = urlparse(url).path.lstrip("/").removesuffix(".git")
    if path:
        return path.replace("/", "-").lower()
    return "repo"
