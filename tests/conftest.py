"""Shared test fixtures for kinder-cli tests.

This module provides:
- isolated_env: points XDG directories at tmp_path and clears KINDER_* variables
- FakeDockerClient: in-memory stand-in for docker.DockerClient
- kinder_config: a KinderConfig rooted in tmp_path
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any

import pytest
from docker.errors import APIError, NotFound

from kinder_cli.config import load_config

# =============================================================================
# Fake Docker client - just enough of the SDK surface the managers use
# =============================================================================


@dataclass
class FakeContainer:
    """In-memory container."""

    name: str
    image: str = ""
    status: str = "running"
    id: str = ""
    attrs: dict[str, Any] = field(default_factory=dict)
    kwargs: dict[str, Any] = field(default_factory=dict)
    registry: dict[str, "FakeContainer"] | None = None
    fail_remove: bool = False

    def __post_init__(self) -> None:
        if not self.id:
            self.id = (self.name.encode().hex() + "0" * 64)[:64]
        self.attrs.setdefault(
            "State",
            {
                "Status": self.status,
                "Running": self.status == "running",
                "StartedAt": "2026-01-01T00:00:00.123456789Z",
            },
        )
        self.attrs.setdefault("Config", {"Image": self.image})

    def start(self) -> None:
        self.status = "running"
        self.attrs["State"]["Status"] = "running"
        self.attrs["State"]["Running"] = True

    def stop(self, timeout: int = 10) -> None:
        self.status = "exited"
        self.attrs["State"]["Status"] = "exited"
        self.attrs["State"]["Running"] = False

    def remove(self, force: bool = False) -> None:
        if self.fail_remove:
            raise APIError("device or resource busy")
        if self.registry is not None:
            self.registry.pop(self.name, None)


class FakeContainers:
    def __init__(self) -> None:
        self.items: dict[str, FakeContainer] = {}
        self.created: list[str] = []

    def add(self, name: str, **kwargs: Any) -> FakeContainer:
        container = FakeContainer(name=name, registry=self.items, **kwargs)
        self.items[name] = container
        return container

    def get(self, name: str) -> FakeContainer:
        if name not in self.items:
            raise NotFound(f"No such container: {name}")
        return self.items[name]

    def list(self, all: bool = False, filters: dict[str, str] | None = None) -> list[FakeContainer]:
        wanted = (filters or {}).get("name", "")
        return [c for n, c in self.items.items() if wanted in n]

    def create(self, image: str, **kwargs: Any) -> FakeContainer:
        container = self.add(kwargs["name"], image=image, status="created", kwargs=kwargs)
        self.created.append(container.name)
        return container


class FakeImages:
    def __init__(self) -> None:
        self.pulled: list[str] = []

    def pull(self, image: str) -> None:
        self.pulled.append(image)


@dataclass
class FakeNetwork:
    name: str
    id: str
    kwargs: dict[str, Any] = field(default_factory=dict)
    registry: dict[str, "FakeNetwork"] | None = None

    def remove(self) -> None:
        if self.registry is not None:
            self.registry.pop(self.name, None)


class FakeNetworks:
    def __init__(self) -> None:
        self.items: dict[str, FakeNetwork] = {}

    def add(self, name: str, **kwargs: Any) -> FakeNetwork:
        network = FakeNetwork(name=name, id=f"{len(self.items) + 1:064x}", kwargs=kwargs, registry=self.items)
        self.items[name] = network
        return network

    def list(self, names: list[str] | None = None) -> list[FakeNetwork]:
        wanted = (names or [""])[0]
        return [n for name, n in self.items.items() if wanted in name]

    def get(self, name: str) -> FakeNetwork:
        if name not in self.items:
            raise NotFound(f"network {name} not found")
        return self.items[name]

    def create(self, name: str, **kwargs: Any) -> FakeNetwork:
        return self.add(name, **kwargs)


class FakeAPI:
    def create_endpoint_config(self, aliases: list[str] | None = None) -> dict[str, Any]:
        return {"Aliases": aliases or []}


class FakeDockerClient:
    """Stand-in for docker.DockerClient backed by dictionaries."""

    def __init__(self) -> None:
        self.containers = FakeContainers()
        self.images = FakeImages()
        self.networks = FakeNetworks()
        self.api = FakeAPI()
        self.closed = False

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        self.closed = True


class FakeRuntime:
    """Replaces LazyClient in ctx.obj for CLI tests."""

    def __init__(self, client: FakeDockerClient):
        self.client = client

    def get(self) -> FakeDockerClient:
        return self.client

    def close(self) -> None:
        self.client.close()


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep every test away from the real home directory and environment."""
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    for name in list(os.environ):
        if name.startswith("KINDER_"):
            monkeypatch.delenv(name)
    return tmp_path


@pytest.fixture
def fake_client() -> FakeDockerClient:
    return FakeDockerClient()


@pytest.fixture
def fake_runtime(fake_client) -> FakeRuntime:
    """Runtime holder for ctx.obj so CLI commands use fake_client."""
    return FakeRuntime(fake_client)


@pytest.fixture
def kinder_config(tmp_path):
    """Default configuration with its data directory under tmp_path."""
    return load_config(overrides={"dataDir": str(tmp_path / "kinder")})
