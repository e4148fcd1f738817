"""Helpers shared by the kinder commands."""

from __future__ import annotations

import sys
from functools import wraps
from typing import Any, Callable

import click
import docker

from ..config import KinderConfig, load_config
from ..errors import KinderError, PartialFailure

PHASE_MARKS = {"done": "✓", "skipped": "•", "failed": "✗"}


def fail(message: str) -> None:
    """Print an error to stderr and exit 1."""
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def handle_errors(func: Callable) -> Callable:
    """Turn KinderError into a one-line error message and exit code 1."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except PartialFailure as e:
            click.echo(f"Error: {e.message}", err=True)
            for failure in e.failures:
                click.echo(f"  ✗ {failure}", err=True)
            sys.exit(1)
        except KinderError as e:
            fail(e.message)

    return wrapper


def get_config(ctx: click.Context, overrides: dict[str, Any] | None = None) -> KinderConfig:
    """Load configuration, applying global and per-command flag overrides."""
    merged = dict(ctx.obj.get("overrides", {}))
    merged.update({k: v for k, v in (overrides or {}).items() if v is not None})
    return load_config(ctx.obj.get("config_path"), merged)


def get_client(ctx: click.Context) -> docker.DockerClient:
    """Runtime client for this invocation, built on first use."""
    return ctx.obj["runtime"].get()


def print_progress(step: str, phase: str, detail: str = "") -> None:
    """Render orchestrator progress events."""
    if phase == "start":
        return
    mark = PHASE_MARKS.get(phase, " ")
    suffix = f" ({detail})" if detail else ""
    click.echo(f"  {mark} {step}{suffix}", err=phase == "failed")


def print_mapping(title: str, items: dict[str, str]) -> None:
    click.echo(f"\n{title}:")
    width = max((len(k) for k in items), default=0)
    for key, value in items.items():
        click.echo(f"  {key:<{width}}  {value}")
