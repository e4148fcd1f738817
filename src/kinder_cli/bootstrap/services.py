"""Service adapters for the kinder containers.

Each adapter renders its configuration under <data_dir>/<service>/ and
turns it into a ContainerSpec for the ContainerManager.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import yaml

from ..config import KinderConfig
from ..errors import ConfigurationError
from ..shared.logging import get_logger
from .ca import generate_intermediate
from .containers import ContainerManager, ContainerSpec, Mount, PortBinding, copy_file
from .mirrors import REGISTRY_PORT

logger = get_logger(__name__)

STEPCA_HOSTNAME = "stepca"
ZOT_HOSTNAME = "zot"
GATUS_HOSTNAME = "gatus"
TRAEFIK_HOSTNAME = "traefik"

STEPCA_PORT = 9000
GATUS_PORT = 8080

# Mount point of the root CA inside containers and kind nodes
CONTAINER_CA_PATH = "/etc/ssl/certs/kinder-ca.crt"


class ServiceAdapter:
    """Base class: render config files, describe the container, start/stop it."""

    step = ""
    hostname = ""

    def __init__(self, config: KinderConfig):
        self.config = config

    @property
    def container_name(self) -> str:
        raise NotImplementedError

    @property
    def service_dir(self) -> Path:
        return self.config.data_path / self.step

    def prepare(self) -> ContainerSpec:
        """Write configuration files and return the container spec."""
        raise NotImplementedError

    def start(self, manager: ContainerManager) -> str:
        try:
            spec = self.prepare()
        except OSError as e:
            raise ConfigurationError(
                message=f"Failed to prepare {self.step} configuration: {e}",
                details={"step": self.step},
            ) from e
        return manager.create(spec)

    def stop(self, manager: ContainerManager) -> None:
        manager.remove(self.container_name)


def _write_yaml(path: Path, data: dict[str, Any], header: str) -> None:
    with open(path, "w") as f:
        f.write(f"# {header}\n")
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


class StepCAService(ServiceAdapter):
    """Step CA: ACME server signing with a fresh intermediate on every start."""

    step = "step-ca"
    hostname = STEPCA_HOSTNAME

    @property
    def container_name(self) -> str:
        return self.config.stepca_container

    def ca_json(self) -> dict[str, Any]:
        return {
            "root": "/home/step/root_ca.crt",
            "federatedRoots": None,
            "crt": "/home/step/certs/intermediate_ca.crt",
            "key": "/home/step/secrets/intermediate_ca_key",
            "address": f":{STEPCA_PORT}",
            "dnsNames": [self.hostname, "localhost", "*.localhost"],
            "logger": {"format": "text"},
            "db": {"type": "badger", "dataSource": "/home/step/db"},
            "authority": {"provisioners": [{"type": "ACME", "name": "acme"}]},
            "tls": {
                "cipherSuites": [
                    "TLS_ECDHE_ECDSA_WITH_CHACHA20_POLY1305",
                    "TLS_ECDHE_ECDSA_WITH_AES_128_GCM_SHA256",
                ],
                "minVersion": 1.2,
                "maxVersion": 1.3,
                "renegotiation": False,
            },
        }

    def prepare(self) -> ContainerSpec:
        base = self.service_dir
        base.mkdir(parents=True, exist_ok=True)
        copy_file(self.config.ca_cert_path, base / "root_ca.crt")
        copy_file(self.config.ca_key_path, base / "root_ca_key", mode=0o600)

        certs_dir = base / "certs"
        secrets_dir = base / "secrets"
        certs_dir.mkdir(mode=0o755, exist_ok=True)
        secrets_dir.mkdir(mode=0o700, exist_ok=True)

        generate_intermediate(
            self.config.ca_cert_path,
            self.config.ca_key_path,
            certs_dir / "intermediate_ca.crt",
            secrets_dir / "intermediate_ca_key",
            app_name=self.config.app_name,
        )

        password = secrets_dir / "password"
        password.write_text("")
        os.chmod(password, 0o600)

        config_dir = base / "config"
        config_dir.mkdir(exist_ok=True)
        with open(config_dir / "ca.json", "w") as f:
            json.dump(self.ca_json(), f, indent=2)

        return ContainerSpec(
            name=self.container_name,
            image=self.config.stepca_image,
            hostname=self.hostname,
            network=self.config.effective_network_name,
            aliases=(self.hostname,),
            env={
                "DOCKER_STEPCA_INIT_NAME": self.config.app_name,
                "DOCKER_STEPCA_INIT_DNS_NAMES": self.hostname,
                "DOCKER_STEPCA_INIT_PROVISIONER_NAME": f"{self.config.app_name}-admin",
            },
            mounts=(Mount(str(base), "/home/step"),),
            ports=(PortBinding(f"{STEPCA_PORT}/tcp"),),
        )


class ZotService(ServiceAdapter):
    """Zot registry acting as pull-through cache for the configured mirrors."""

    step = "zot"
    hostname = ZOT_HOSTNAME

    @property
    def container_name(self) -> str:
        return self.config.zot_container

    def zot_json(self) -> dict[str, Any]:
        sync_registries = [
            {
                "urls": [f"https://{registry}"],
                "onDemand": True,
                "tlsVerify": True,
                "maxRetries": 3,
                "retryDelay": "5m",
                "content": [{"prefix": "**"}],
            }
            for registry in self.config.registry_mirrors
        ]
        return {
            "distSpecVersion": "1.1.0",
            "storage": {"rootDirectory": "/var/lib/registry"},
            "http": {"address": "0.0.0.0", "port": str(REGISTRY_PORT), "compat": ["docker2s2"]},
            "log": {"level": "info"},
            "extensions": {
                "search": {"enable": True},
                "ui": {"enable": True},
                "sync": {"enable": True, "registries": sync_registries},
            },
        }

    def prepare(self) -> ContainerSpec:
        base = self.service_dir
        data = base / "data"
        data.mkdir(parents=True, exist_ok=True)
        with open(base / "config.json", "w") as f:
            json.dump(self.zot_json(), f, indent=2)

        return ContainerSpec(
            name=self.container_name,
            image=self.config.zot_image,
            hostname=self.hostname,
            network=self.config.effective_network_name,
            aliases=(self.hostname,),
            command=("serve", "/etc/zot/config.json"),
            mounts=(
                Mount(str(base), "/etc/zot"),
                Mount(str(data), "/var/lib/registry"),
            ),
            ports=(PortBinding(f"{REGISTRY_PORT}/tcp", str(REGISTRY_PORT), "0.0.0.0"),),
        )


class GatusService(ServiceAdapter):
    """Gatus health dashboard watching the CA, registry and cluster API."""

    step = "gatus"
    hostname = GATUS_HOSTNAME

    @property
    def container_name(self) -> str:
        return self.config.gatus_container

    def gatus_yaml(self) -> dict[str, Any]:
        def endpoint(name: str, url: str, insecure: bool = False) -> dict[str, Any]:
            entry: dict[str, Any] = {"name": name, "url": url, "interval": "30s"}
            if insecure:
                entry["client"] = {"insecure": True}
            entry["conditions"] = ["[STATUS] == 200"]
            return entry

        return {
            "endpoints": [
                endpoint("Step CA", f"https://{STEPCA_HOSTNAME}:{STEPCA_PORT}/health"),
                endpoint("Zot Registry", f"http://{ZOT_HOSTNAME}:{REGISTRY_PORT}/v2/"),
                endpoint(
                    "Kubernetes API",
                    f"https://{self.config.cluster_name}-control-plane:6443/livez",
                    insecure=True,
                ),
            ],
            "web": {"port": GATUS_PORT},
        }

    def prepare(self) -> ContainerSpec:
        base = self.service_dir
        base.mkdir(parents=True, exist_ok=True)
        config_path = base / "config.yaml"
        _write_yaml(config_path, self.gatus_yaml(), f"Gatus configuration for {self.config.app_name}")

        return ContainerSpec(
            name=self.container_name,
            image=self.config.gatus_image,
            hostname=self.hostname,
            network=self.config.effective_network_name,
            aliases=(self.hostname,),
            mounts=(
                Mount(str(config_path), "/config/config.yaml"),
                Mount(str(self.config.ca_cert_path), CONTAINER_CA_PATH),
            ),
            ports=(PortBinding(f"{GATUS_PORT}/tcp"),),
        )


class TraefikService(ServiceAdapter):
    """Traefik reverse proxy obtaining certificates from Step CA over ACME."""

    step = "traefik"
    hostname = TRAEFIK_HOSTNAME

    @property
    def container_name(self) -> str:
        return self.config.traefik_container

    def static_config(self) -> dict[str, Any]:
        return {
            "api": {"dashboard": True},
            "entryPoints": {
                "web": {
                    "address": ":80",
                    "http": {"redirections": {"entryPoint": {"to": "websecure", "scheme": "https"}}},
                },
                "websecure": {"address": ":443"},
            },
            "certificatesResolvers": {
                "stepca": {
                    "acme": {
                        "email": "admin@localhost",
                        "storage": "/etc/traefik/acme.json",
                        "caServer": f"https://{STEPCA_HOSTNAME}:{STEPCA_PORT}/acme/acme/directory",
                        "certificatesDuration": 2160,
                        "httpChallenge": {"entryPoint": "web"},
                        "caCertificates": ["/etc/traefik/ca.crt"],
                    }
                }
            },
            "providers": {"file": {"filename": "/etc/traefik/dynamic.yaml", "watch": True}},
            "log": {"level": "INFO"},
        }

    def dynamic_config(self) -> dict[str, Any]:
        domain = self.config.domain

        def router(host: str, service: str) -> dict[str, Any]:
            return {
                "rule": f"Host(`{host}.{domain}`)",
                "service": service,
                "entryPoints": ["websecure"],
                "tls": {"certResolver": "stepca"},
            }

        def backend(url: str) -> dict[str, Any]:
            return {"loadBalancer": {"servers": [{"url": url}]}}

        stepca_backend = backend(f"https://{STEPCA_HOSTNAME}:{STEPCA_PORT}")
        stepca_backend["loadBalancer"]["serversTransport"] = "stepca-transport"
        return {
            "http": {
                "routers": {
                    "traefik-router": router("traefik", "api@internal"),
                    "zot-router": router("registry", "zot-service"),
                    "gatus-router": router("gatus", "gatus-service"),
                    "stepca-router": router("ca", "stepca-service"),
                },
                "services": {
                    "zot-service": backend(f"http://{ZOT_HOSTNAME}:{REGISTRY_PORT}"),
                    "gatus-service": backend(f"http://{GATUS_HOSTNAME}:{GATUS_PORT}"),
                    "stepca-service": stepca_backend,
                },
                "serversTransports": {"stepca-transport": {}},
            }
        }

    def prepare(self) -> ContainerSpec:
        base = self.service_dir
        base.mkdir(parents=True, exist_ok=True)
        copy_file(self.config.ca_cert_path, base / "ca.crt")
        app = self.config.app_name
        _write_yaml(base / "traefik.yaml", self.static_config(), f"Traefik static configuration for {app}")
        _write_yaml(base / "dynamic.yaml", self.dynamic_config(), f"Traefik dynamic configuration for {app}")

        return ContainerSpec(
            name=self.container_name,
            image=self.config.traefik_image,
            hostname=self.hostname,
            network=self.config.effective_network_name,
            aliases=(self.hostname,),
            command=("--configFile=/etc/traefik/traefik.yaml",),
            env={"SSL_CERT_FILE": "/etc/traefik/ca.crt"},
            mounts=(Mount(str(base), "/etc/traefik"),),
            ports=(
                PortBinding("80/tcp", "80"),
                PortBinding("443/tcp", str(self.config.traefik_port)),
            ),
        )


def build_services(config: KinderConfig) -> dict[str, ServiceAdapter]:
    """All service adapters keyed by step name, in start order."""
    adapters: list[ServiceAdapter] = [
        StepCAService(config),
        ZotService(config),
        GatusService(config),
        TraefikService(config),
    ]
    return {adapter.step: adapter for adapter in adapters}
